"""
Storage backends.
"""

from remote_gallery.backends.mirror import RepositoryMirrorBackend
from remote_gallery.backends.protocol import StorageBackend
from remote_gallery.backends.sftp import RemoteFilesystemBackend

__all__ = ["RemoteFilesystemBackend", "RepositoryMirrorBackend", "StorageBackend"]

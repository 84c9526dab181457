"""
Remote API clients.
"""

from remote_gallery.api.lfs_client import (
    LfsAuth,
    LfsClient,
    authenticate_over_ssh,
    sanitize_for_log,
)

__all__ = ["LfsAuth", "LfsClient", "authenticate_over_ssh", "sanitize_for_log"]

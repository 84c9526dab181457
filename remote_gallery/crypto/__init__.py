"""
Key material handling for remote gallery sessions.
"""

from remote_gallery.crypto.credentials import (
    Credential,
    KeyAlgorithm,
    KeyFormat,
    detect_key_format,
    shred_file,
)
from remote_gallery.crypto.secure_bytes import SecureBytes, wipe

__all__ = [
    "Credential",
    "KeyAlgorithm",
    "KeyFormat",
    "SecureBytes",
    "detect_key_format",
    "shred_file",
    "wipe",
]

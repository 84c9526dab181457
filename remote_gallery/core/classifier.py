"""
Media type detection from file names and byte signatures.

The extension table gives a first answer for every listed entry without
touching the backend. When leading bytes of a file are already in memory
(a completed ``read``), the signature wins over a misleading extension.
"""

import posixpath
from collections import OrderedDict

from remote_gallery.models.files import MediaKind, media_kind_of

PROBE_SIZE = 64

EXTENSION_TYPES: dict[str, str] = {
    # Images
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
    "bmp": "image/bmp",
    "tif": "image/tiff",
    "tiff": "image/tiff",
    "svg": "image/svg+xml",
    "heic": "image/heic",
    "heif": "image/heic",
    "avif": "image/avif",
    # Video
    "mp4": "video/mp4",
    "mov": "video/quicktime",
    "avi": "video/x-msvideo",
    "mkv": "video/x-matroska",
    "webm": "video/webm",
    "m4v": "video/x-m4v",
    # Audio
    "mp3": "audio/mpeg",
    "wav": "audio/wav",
    "flac": "audio/flac",
    "aac": "audio/aac",
    "ogg": "audio/ogg",
    "m4a": "audio/mp4",
    # Documents
    "pdf": "application/pdf",
    "doc": "application/msword",
    "docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "xls": "application/vnd.ms-excel",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "ppt": "application/vnd.ms-powerpoint",
    "pptx": "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    # Text
    "txt": "text/plain",
    "log": "text/plain",
    "md": "text/markdown",
    "csv": "text/csv",
    "json": "application/json",
    "xml": "application/xml",
    # Archives
    "zip": "application/zip",
    "tar": "application/x-tar",
    "gz": "application/gzip",
    "rar": "application/vnd.rar",
    "7z": "application/x-7z-compressed",
}

# Raster formats the thumbnail renderer can decode.
THUMBNAILABLE_TYPES = frozenset(
    {"image/jpeg", "image/png", "image/gif", "image/webp", "image/bmp", "image/tiff"}
)

_ISO_BMFF_BRANDS: dict[bytes, str] = {
    b"heic": "image/heic",
    b"heix": "image/heic",
    b"mif1": "image/heic",
    b"avif": "image/avif",
    b"qt  ": "video/quicktime",
    b"M4V ": "video/x-m4v",
}


def type_from_name(name: str) -> str | None:
    """MIME type from the file extension, or None if unknown."""
    _, ext = posixpath.splitext(name)
    return EXTENSION_TYPES.get(ext[1:].lower()) if ext else None


def type_from_signature(head: bytes) -> str | None:
    """MIME type from leading bytes, or None if no signature matches."""
    if head.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if head.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if head.startswith((b"GIF87a", b"GIF89a")):
        return "image/gif"
    if head.startswith(b"BM") and len(head) >= 14:
        return "image/bmp"
    if head.startswith((b"II*\x00", b"MM\x00*")):
        return "image/tiff"
    if head.startswith(b"RIFF") and len(head) >= 12:
        fourcc = head[8:12]
        if fourcc == b"WEBP":
            return "image/webp"
        if fourcc == b"AVI ":
            return "video/x-msvideo"
        if fourcc == b"WAVE":
            return "audio/wav"
    if len(head) >= 12 and head[4:8] == b"ftyp":
        return _ISO_BMFF_BRANDS.get(head[8:12], "video/mp4")
    if head.startswith(b"\x1a\x45\xdf\xa3"):
        return "video/webm" if b"webm" in head else "video/x-matroska"
    if head.startswith(b"%PDF-"):
        return "application/pdf"
    if head.startswith(b"PK\x03\x04"):
        return "application/zip"
    return None


def is_thumbnailable(mime_type: str | None) -> bool:
    return mime_type in THUMBNAILABLE_TYPES


class ContentClassifier:
    """
    Per-session media classifier.

    Remembers signature probes from completed reads so later listings and
    thumbnail requests see the refined type.
    """

    def __init__(self, max_probes: int = 4096) -> None:
        self._max_probes = max_probes
        self._probes: OrderedDict[str, str] = OrderedDict()

    def classify(self, path: str, head: bytes | None = None) -> str | None:
        """
        Classify a file.

        Args:
            path: Canonical path (its basename carries the extension).
            head: Leading bytes if already available.

        Returns:
            Full MIME type string, or None if unknown.
        """
        if head is not None and (sniffed := type_from_signature(head[:PROBE_SIZE])) is not None:
            return sniffed
        if (probed := self._probes.get(path)) is not None:
            return probed
        return type_from_name(posixpath.basename(path))

    def record_probe(self, path: str, head: bytes) -> str | None:
        """Remember the signature type of ``path``; returns it if recognized."""
        sniffed = type_from_signature(head[:PROBE_SIZE])
        if sniffed is None:
            self._probes.pop(path, None)
            return None
        self._probes[path] = sniffed
        self._probes.move_to_end(path)
        while len(self._probes) > self._max_probes:
            self._probes.popitem(last=False)
        return sniffed

    def media_kind(self, path: str) -> MediaKind:
        return media_kind_of(self.classify(path))

    def clear(self) -> None:
        self._probes.clear()

    def __len__(self) -> int:
        return len(self._probes)

"""
Remote gallery engine configuration.
"""

from dataclasses import dataclass


@dataclass(frozen=True, kw_only=True)
class GalleryConfig:
    """
    Attributes:
        connect_timeout: TCP connect / SSH banner / auth timeout in seconds.
        keepalive_interval: SSH keep-alive interval in seconds (0 disables).
        max_transfer_size: Largest file `read` will buffer, in bytes.
        read_chunk_size: Chunk size for remote reads; also the abort granularity.
        thumbnail_max_dimension: Default long-edge bound for thumbnails.
        thumbnail_cache_bytes: Total encoded-byte budget of the thumbnail cache.
        thumbnail_jpeg_quality: JPEG quality used when re-encoding thumbnails.
        max_image_pixels: Refuse to decode images larger than this many pixels.
        strict_host_keys: Reject hosts missing from the system known_hosts.
        git_executable: Git binary used by the repository mirror backend.
        lfs_timeout: Timeout for LFS batch and download requests in seconds.
        user_agent: User-Agent header value for LFS requests.
    """

    connect_timeout: float = 30.0
    keepalive_interval: int = 30
    max_transfer_size: int = 64 * 1024 * 1024
    read_chunk_size: int = 32 * 1024
    thumbnail_max_dimension: int = 256
    thumbnail_cache_bytes: int = 32 * 1024 * 1024
    thumbnail_jpeg_quality: int = 85
    max_image_pixels: int = 64_000_000
    strict_host_keys: bool = False
    git_executable: str = "git"
    lfs_timeout: float = 120.0
    user_agent: str = "remote-gallery/0.1"

    def __post_init__(self) -> None:
        if self.connect_timeout <= 0:
            msg = "connect_timeout must be positive"
            raise ValueError(msg)
        if self.keepalive_interval < 0:
            msg = "keepalive_interval must be non-negative"
            raise ValueError(msg)
        if self.max_transfer_size <= 0:
            msg = "max_transfer_size must be positive"
            raise ValueError(msg)
        if self.read_chunk_size <= 0:
            msg = "read_chunk_size must be positive"
            raise ValueError(msg)
        if self.thumbnail_max_dimension <= 0:
            msg = "thumbnail_max_dimension must be positive"
            raise ValueError(msg)
        if self.thumbnail_cache_bytes <= 0:
            msg = "thumbnail_cache_bytes must be positive"
            raise ValueError(msg)
        if not 1 <= self.thumbnail_jpeg_quality <= 95:
            msg = "thumbnail_jpeg_quality must be between 1 and 95"
            raise ValueError(msg)
        if self.max_image_pixels <= 0:
            msg = "max_image_pixels must be positive"
            raise ValueError(msg)
        if self.lfs_timeout <= 0:
            msg = "lfs_timeout must be positive"
            raise ValueError(msg)

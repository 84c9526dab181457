"""
Thumbnail rendering with Pillow.

Decoding is bounded: images above ``max_pixels`` are refused before their
pixel data is loaded, and JPEG sources are decoded at a reduced scale via
``Image.draft`` when the target is much smaller than the source.
"""

import io
import warnings

import structlog
from PIL import Image, ImageOps, UnidentifiedImageError

from remote_gallery.exceptions import DecodeError
from remote_gallery.models.files import Thumbnail

logger = structlog.get_logger(__name__)

_DECODE_ERRORS = (
    UnidentifiedImageError,
    OSError,
    ValueError,
    SyntaxError,
    Image.DecompressionBombError,
    Image.DecompressionBombWarning,
)


def _has_alpha(image: Image.Image) -> bool:
    if image.mode in ("RGBA", "LA", "PA"):
        return True
    return image.mode == "P" and "transparency" in image.info


def render_thumbnail(
    data: bytes,
    max_dimension: int,
    *,
    path: str,
    max_pixels: int,
    jpeg_quality: int = 85,
) -> Thumbnail:
    """
    Decode an image and re-encode it to fit within ``max_dimension``.

    Aspect ratio is preserved and images are never upscaled. Opaque images
    are encoded as JPEG; images with transparency as PNG. Only the first
    frame of animated images is used.

    Args:
        data: Encoded source image.
        max_dimension: Bound on the long edge in pixels.
        path: Source path, for error reporting.
        max_pixels: Refuse images with more pixels than this.
        jpeg_quality: JPEG encoder quality.

    Returns:
        The rendered Thumbnail.

    Raises:
        DecodeError: If the image cannot be decoded, is too large, or cannot
            be re-encoded.
    """
    if max_dimension <= 0:
        msg = "max_dimension must be positive"
        raise ValueError(msg)

    try:
        with warnings.catch_warnings():
            warnings.simplefilter("error", Image.DecompressionBombWarning)
            with Image.open(io.BytesIO(data)) as source:
                width, height = source.size
                if width * height > max_pixels:
                    msg = f"Image is {width}x{height}, above the {max_pixels} pixel limit"
                    raise DecodeError(msg, path=path)

                if source.format == "JPEG":
                    source.draft("RGB", (max_dimension, max_dimension))
                image = ImageOps.exif_transpose(source)
                image.thumbnail((max_dimension, max_dimension), Image.Resampling.LANCZOS)

                buffer = io.BytesIO()
                if _has_alpha(image):
                    image.convert("RGBA").save(buffer, format="PNG", optimize=True)
                    mime_type = "image/png"
                else:
                    image.convert("RGB").save(
                        buffer, format="JPEG", quality=jpeg_quality, optimize=True
                    )
                    mime_type = "image/jpeg"
    except DecodeError:
        raise
    except _DECODE_ERRORS as e:
        msg = f"Failed to decode image: {e}"
        raise DecodeError(msg, path=path) from e

    logger.debug(
        "Thumbnail rendered",
        path=path,
        source=f"{width}x{height}",
        thumbnail=f"{image.width}x{image.height}",
        size=buffer.tell(),
    )
    return Thumbnail(
        data=buffer.getvalue(),
        mime_type=mime_type,
        width=image.width,
        height=image.height,
    )

"""Image-processing boundary: metadata, re-encoding and thumbnails via Pillow.

Everything that touches decoded pixels goes through this module.  The
neutralization defense depends on Pillow rejecting malformed input, so every
Pillow failure surfaces as :class:`~ingestly.errors.ProcessingFailure`.
"""

import io
import logging
import warnings
from typing import Dict, NamedTuple, Optional, Tuple

from PIL import Image, ImageOps

from ingestly.errors import InputRejected, ProcessingFailure

logger = logging.getLogger(__name__)

# Pixel ceiling checked against the header right after ``Image.open``, before
# any pixel data is decoded.  Pillow's process-wide ``MAX_IMAGE_PIXELS`` is
# left at its default and still guards anything larger.
MAX_DECODE_PIXELS = 50_000_000

THUMBNAIL_SIZE = (400, 300)
THUMBNAIL_QUALITY = 80

FORMAT_TO_MIME: Dict[str, str] = {
    "JPEG": "image/jpeg",
    "PNG": "image/png",
    "WEBP": "image/webp",
    "GIF": "image/gif",
}

# Claimed MIME type -> (Pillow output format, resulting MIME type).
# GIF is re-encoded as PNG (first frame only).
_REENCODE_TARGETS: Dict[str, Tuple[str, str]] = {
    "image/jpeg": ("JPEG", "image/jpeg"),
    "image/jpg": ("JPEG", "image/jpeg"),
    "image/png": ("PNG", "image/png"),
    "image/webp": ("WEBP", "image/webp"),
    "image/gif": ("PNG", "image/png"),
}

_SAVE_OPTIONS: Dict[str, dict] = {
    "JPEG": {"quality": 90, "optimize": True},
    "PNG": {"compress_level": 9},
    "WEBP": {"quality": 90},
}

# Modes each output format can store without conversion
_NATIVE_MODES: Dict[str, Tuple[str, ...]] = {
    "JPEG": ("L", "RGB", "CMYK"),
    "PNG": ("1", "L", "LA", "P", "RGB", "RGBA", "I", "I;16"),
    "WEBP": ("RGB", "RGBA"),
}

# The only ``info`` entry carried over into the re-encoded file
_KEPT_INFO_KEYS = ("transparency",)


class ImageTooLarge(InputRejected):
    """Pillow's decompression-bomb guard refused to open the image."""


class ImageMetadata(NamedTuple):
    width: int
    height: int
    format: Optional[str]
    has_alpha: bool

    @property
    def mime_type(self) -> Optional[str]:
        return FORMAT_TO_MIME.get(self.format or "")

    @property
    def pixels(self) -> int:
        return self.width * self.height


def _open(data: bytes) -> Image.Image:
    """Open *data*, refusing images above ``MAX_DECODE_PIXELS`` from the header alone."""
    with warnings.catch_warnings():
        warnings.simplefilter("error", Image.DecompressionBombWarning)
        try:
            img = Image.open(io.BytesIO(data))
        except (Image.DecompressionBombError, Image.DecompressionBombWarning) as exc:
            raise ImageTooLarge(str(exc)) from exc
    pixels = img.width * img.height
    if pixels > MAX_DECODE_PIXELS:
        img.close()
        raise ImageTooLarge(
            f"Image size ({pixels} pixels) exceeds limit of {MAX_DECODE_PIXELS} pixels"
        )
    return img


def read_metadata(data: bytes) -> ImageMetadata:
    """Read dimensions and format from the image header.

    Raises:
        ImageTooLarge: when the pixel count trips the decompression-bomb guard.
        ProcessingFailure: when Pillow cannot identify the bytes as an image.
    """
    try:
        with _open(data) as img:
            has_alpha = img.mode in ("RGBA", "LA", "PA") or "transparency" in img.info
            return ImageMetadata(
                width=img.width,
                height=img.height,
                format=img.format,
                has_alpha=has_alpha,
            )
    except ImageTooLarge:
        raise
    except Exception as exc:
        # Pillow raises a wide range of exception types on crafted input
        raise ProcessingFailure(f"Unable to read image metadata: {exc}") from exc


def _convert_for(img: Image.Image, output_format: str) -> Image.Image:
    if img.mode in _NATIVE_MODES[output_format]:
        return img
    if output_format == "JPEG" or img.mode == "CMYK":
        return img.convert("RGB")
    has_alpha = img.mode in ("RGBA", "LA", "PA") or "transparency" in img.info
    return img.convert("RGBA" if has_alpha else "RGB")


def reencode(data: bytes, mime_type: str) -> Tuple[bytes, str]:
    """Decode *data* fully and write a fresh file with no metadata.

    The image is auto-oriented from its EXIF tag first, then every ``info``
    entry (EXIF, ICC profile, XMP, comments, text chunks) is dropped before
    saving, so nothing but pixels survives.

    Returns:
        ``(clean_bytes, output_mime_type)``.
    """
    target = _REENCODE_TARGETS.get((mime_type or "").lower())
    if target is None:
        raise ProcessingFailure("Unsupported image format for sanitization")
    output_format, output_mime = target

    try:
        with _open(data) as img:
            img.load()
            clean = ImageOps.exif_transpose(img)
            clean = _convert_for(clean, output_format)
            clean.info = {k: v for k, v in clean.info.items() if k in _KEPT_INFO_KEYS}

            buffer = io.BytesIO()
            clean.save(buffer, format=output_format, **_SAVE_OPTIONS[output_format])
    except ImageTooLarge:
        raise
    except Exception as exc:
        raise ProcessingFailure(
            f"Image sanitization failed: {exc}. File may be corrupted or contain invalid data."
        ) from exc

    return buffer.getvalue(), output_mime


def make_thumbnail(data: bytes, size: Tuple[int, int] = THUMBNAIL_SIZE) -> bytes:
    """Return a JPEG thumbnail that fits inside *size* without enlarging."""
    try:
        with _open(data) as img:
            img.load()
            thumb = ImageOps.exif_transpose(img)
            thumb.thumbnail(size)
            if thumb.mode != "RGB":
                thumb = thumb.convert("RGB")
            buffer = io.BytesIO()
            thumb.save(buffer, format="JPEG", quality=THUMBNAIL_QUALITY)
    except ImageTooLarge:
        raise
    except Exception as exc:
        raise ProcessingFailure(f"Failed to generate thumbnail: {exc}") from exc
    return buffer.getvalue()

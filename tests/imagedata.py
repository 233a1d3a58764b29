"""Image fixtures generated in-process with Pillow.

Noise images are used so the encoded files are comfortably above the
minimum download size even at small dimensions.
"""

import io
import random
import struct
import zlib

from PIL import Image


def noise_image(width: int = 120, height: int = 90, mode: str = "RGB", seed: int = 0) -> Image.Image:
    rng = random.Random(seed)
    return Image.frombytes(mode, (width, height), rng.randbytes(width * height * len(mode)))


def encode(img: Image.Image, fmt: str, **options) -> bytes:
    buffer = io.BytesIO()
    img.save(buffer, format=fmt, **options)
    return buffer.getvalue()


def noise_png(width: int = 120, height: int = 90, seed: int = 0) -> bytes:
    return encode(noise_image(width, height, seed=seed), "PNG")


def noise_jpeg(width: int = 120, height: int = 90, seed: int = 0, **options) -> bytes:
    return encode(noise_image(width, height, seed=seed), "JPEG", quality=95, **options)


def noise_gif(width: int = 120, height: int = 90, seed: int = 0) -> bytes:
    return encode(noise_image(width, height, seed=seed).convert("P"), "GIF")


def noise_webp(width: int = 120, height: int = 90, seed: int = 0) -> bytes:
    return encode(noise_image(width, height, seed=seed), "WEBP", quality=90)


def jpeg_with_metadata(width: int = 120, height: int = 90, orientation: int = 6) -> bytes:
    """A JPEG carrying EXIF (camera make + orientation) and an ICC profile."""
    exif = Image.Exif()
    exif[0x010F] = "AcmeCam"  # Make
    exif[0x0112] = orientation  # Orientation
    return noise_jpeg(width, height, exif=exif.tobytes(), icc_profile=b"fake-icc-profile" * 8)


def _png_chunk(tag: bytes, data: bytes) -> bytes:
    crc = zlib.crc32(tag + data) & 0xFFFFFFFF
    return struct.pack(">I", len(data)) + tag + data + struct.pack(">I", crc)


def png_header(width: int, height: int) -> bytes:
    """A PNG whose IHDR declares *width* x *height* without real pixel data.

    Enough for Pillow to read dimensions; decoding would fail.
    """
    ihdr = struct.pack(">IIBBBBB", width, height, 8, 2, 0, 0, 0)
    return (
        b"\x89PNG\r\n\x1a\n"
        + _png_chunk(b"IHDR", ihdr)
        + _png_chunk(b"IDAT", zlib.compress(b"\x00" * 16))
        + _png_chunk(b"IEND", b"")
    )

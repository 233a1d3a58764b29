"""Security validation for untrusted image uploads.

:func:`validate_upload` is the single entry point.  It runs, short-circuiting
on the first failure:

1. magic-byte signature check against the claimed MIME type;
2. filename sanitization (path separators, unsafe characters, length);
3. free-text validation of description, alt text and tags;
4. dimension guard against decompression bombs;
5. content neutralization: a full decode and metadata-free re-encode.

Only the sanitized buffer and filename returned on success may be persisted.
"""

import logging
from typing import List, NamedTuple, Optional, Sequence

from ingestly.errors import ProcessingFailure
from ingestly.services.imaging import ImageTooLarge, read_metadata, reencode
from ingestly.services.sanitizer import (
    MAX_ALT_TEXT_LENGTH,
    MAX_DESCRIPTION_LENGTH,
    MAX_TAG_LENGTH,
    replace_extension,
    sanitize_filename,
    sanitize_text_input,
)
from ingestly.services.signatures import verify_file_signature

logger = logging.getLogger(__name__)

MAX_IMAGE_WIDTH = 10_000
MAX_IMAGE_HEIGHT = 10_000
MAX_TOTAL_PIXELS = 50_000_000

_MIME_EXTENSIONS = {"image/jpeg": "jpg", "image/png": "png", "image/webp": "webp"}


class SecurityValidationResult(NamedTuple):
    valid: bool
    error: Optional[str] = None
    warnings: Optional[List[str]] = None
    sanitized_buffer: Optional[bytes] = None
    sanitized_filename: Optional[str] = None
    sanitized_mime_type: Optional[str] = None


def _reject(error: str) -> SecurityValidationResult:
    return SecurityValidationResult(valid=False, error=error)


def validate_image_dimensions(data: bytes) -> SecurityValidationResult:
    """Reject images whose real dimensions exceed the safety ceilings."""
    try:
        metadata = read_metadata(data)
    except ImageTooLarge as exc:
        return _reject(f"Image size exceeds maximum {MAX_TOTAL_PIXELS} pixels: {exc}")
    except ProcessingFailure as exc:
        return _reject(f"Failed to validate image: {exc}")

    if metadata.width > MAX_IMAGE_WIDTH or metadata.height > MAX_IMAGE_HEIGHT:
        return _reject(
            f"Image dimensions {metadata.width}x{metadata.height} exceed maximum "
            f"allowed {MAX_IMAGE_WIDTH}x{MAX_IMAGE_HEIGHT}"
        )

    if metadata.pixels > MAX_TOTAL_PIXELS:
        return _reject(
            f"Image size {metadata.pixels} pixels exceeds maximum {MAX_TOTAL_PIXELS} pixels"
        )

    return SecurityValidationResult(valid=True)


def neutralize_image_content(data: bytes, mime_type: str) -> SecurityValidationResult:
    """Re-encode *data* so only pixel data survives.

    A decode failure here is treated as proof of a malformed or malicious
    file.
    """
    try:
        clean, output_mime = reencode(data, mime_type)
    except (ProcessingFailure, ImageTooLarge) as exc:
        return _reject(str(exc))

    logger.info("Image sanitized: %d bytes -> %d bytes", len(data), len(clean))
    return SecurityValidationResult(
        valid=True, sanitized_buffer=clean, sanitized_mime_type=output_mime
    )


def validate_text_fields(
    tags: Optional[Sequence[str]],
    description: Optional[str],
    alt_text: Optional[str],
) -> Optional[str]:
    """Return an error message for the first invalid text field, if any."""
    if description:
        check = sanitize_text_input(description, MAX_DESCRIPTION_LENGTH)
        if not check.valid:
            return check.error

    if alt_text:
        check = sanitize_text_input(alt_text, MAX_ALT_TEXT_LENGTH)
        if not check.valid:
            return check.error

    for tag in tags or ():
        check = sanitize_text_input(tag, MAX_TAG_LENGTH)
        if not check.valid:
            return f'Invalid tag "{tag}": {check.error}'

    return None


def validate_upload(
    data: bytes,
    filename: str,
    mime_type: str,
    tags: Optional[Sequence[str]] = None,
    description: Optional[str] = None,
    alt_text: Optional[str] = None,
) -> SecurityValidationResult:
    """Run every security check on an uploaded image.

    Returns:
        A :class:`SecurityValidationResult`.  On success it carries the
        sanitized buffer, filename and output MIME type; the original bytes
        must be discarded by the caller.
    """
    warnings: List[str] = []

    signature = verify_file_signature(data, mime_type)
    if not signature.valid:
        return _reject(signature.error)

    sanitized_filename = sanitize_filename(filename)
    if sanitized_filename != filename:
        warnings.append("Filename was sanitized for security")

    text_error = validate_text_fields(tags, description, alt_text)
    if text_error:
        return _reject(text_error)

    dimensions = validate_image_dimensions(data)
    if not dimensions.valid:
        return dimensions

    neutralized = neutralize_image_content(data, mime_type)
    if not neutralized.valid:
        return neutralized

    output_mime = neutralized.sanitized_mime_type
    if output_mime != mime_type.lower() and not (
        output_mime == "image/jpeg" and mime_type.lower() == "image/jpg"
    ):
        sanitized_filename = replace_extension(sanitized_filename, _MIME_EXTENSIONS[output_mime])
        warnings.append(f"Image was converted to {output_mime}")

    return SecurityValidationResult(
        valid=True,
        warnings=warnings or None,
        sanitized_buffer=neutralized.sanitized_buffer,
        sanitized_filename=sanitized_filename,
        sanitized_mime_type=output_mime,
    )

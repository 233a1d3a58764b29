"""Magic-byte verification of claimed image types."""

from typing import Dict, NamedTuple, Optional, Tuple

# Claimed MIME type -> accepted leading byte sequences
FILE_SIGNATURES: Dict[str, Tuple[bytes, ...]] = {
    "image/jpeg": (b"\xff\xd8\xff",),
    "image/jpg": (b"\xff\xd8\xff",),
    "image/png": (b"\x89PNG\r\n\x1a\n",),
    # RIFF container; the "WEBP" form type at offset 8 is checked separately
    "image/webp": (b"RIFF",),
    "image/gif": (b"GIF87a", b"GIF89a"),
}

_WEBP_MARKER = b"WEBP"
_WEBP_MARKER_OFFSET = 8


class SignatureCheck(NamedTuple):
    valid: bool
    error: Optional[str] = None


def verify_file_signature(data: bytes, claimed_mime_type: str) -> SignatureCheck:
    """Return whether *data* starts with a known signature for *claimed_mime_type*.

    The claimed type is whatever the client (or remote server) said the bytes
    are.  A mismatch is the primary indicator of a disguised payload wearing
    an image extension.
    """
    mime_type = (claimed_mime_type or "").strip().lower()
    signatures = FILE_SIGNATURES.get(mime_type)
    if not signatures:
        return SignatureCheck(False, f"Unsupported file type: {claimed_mime_type}")

    if not any(data.startswith(signature) for signature in signatures):
        return SignatureCheck(
            False,
            f"File signature does not match claimed type {claimed_mime_type}. "
            "Possible file type spoofing.",
        )

    if mime_type == "image/webp":
        marker = data[_WEBP_MARKER_OFFSET:_WEBP_MARKER_OFFSET + len(_WEBP_MARKER)]
        if marker != _WEBP_MARKER:
            return SignatureCheck(False, "Invalid WebP file signature")

    return SignatureCheck(True)

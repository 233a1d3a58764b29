import re
import secrets
from typing import Iterable, List, NamedTuple, Optional

MAX_FILENAME_LENGTH = 100
# Extensions longer than this are treated as part of the name when truncating
_MAX_EXTENSION_LENGTH = 10

# Path separators and NUL bytes are removed before anything else
_PATH_CHARS_RE = re.compile(r"[/\\\x00]")

# Anything outside the safe alphabet becomes an underscore
_UNSAFE_CHARS_RE = re.compile(r"[^a-z0-9._-]")

_UNDERSCORE_RUN_RE = re.compile(r"_+")

_EDGE_CHARS = "._-"

# Free-text patterns that reject the whole field.  This is a first-line
# filter; image re-encoding is the real security boundary.
DANGEROUS_PATTERNS = (
    re.compile(r"<\s*script\b", re.IGNORECASE),
    re.compile(r"javascript\s*:", re.IGNORECASE),
    re.compile(r"vbscript\s*:", re.IGNORECASE),
    # Inline event handlers: onclick=, onload = …
    re.compile(r"\bon\w+\s*=", re.IGNORECASE),
    re.compile(r"data\s*:\s*text/html", re.IGNORECASE),
    # Path traversal, plain and URL-encoded
    re.compile(r"\.\.[/\\]"),
    re.compile(r"%2e%2e", re.IGNORECASE),
    # Null bytes, raw and URL-encoded
    re.compile(r"\x00|%00"),
)

MAX_DESCRIPTION_LENGTH = 1000
MAX_ALT_TEXT_LENGTH = 500
MAX_TAG_LENGTH = 50
MAX_TAGS = 20


class TextCheck(NamedTuple):
    valid: bool
    error: Optional[str] = None


def _random_filename() -> str:
    return f"upload_{secrets.token_hex(8)}.jpg"


def _truncate(name: str) -> str:
    """Cut *name* to ``MAX_FILENAME_LENGTH`` characters, keeping its extension."""
    stem, dot, extension = name.rpartition(".")
    if dot and stem and 0 < len(extension) <= _MAX_EXTENSION_LENGTH:
        keep = MAX_FILENAME_LENGTH - len(extension) - 1
        return f"{stem[:keep].rstrip(_EDGE_CHARS)}.{extension}"
    return name[:MAX_FILENAME_LENGTH].rstrip(_EDGE_CHARS)


def sanitize_filename(filename: str) -> str:
    """Return a storage-safe version of *filename*.

    The result only contains ``[a-z0-9._-]``, is at most 100 characters long
    and is stable under repeated application.  Names that sanitize to nothing
    are replaced by a random ``upload_<hex>.jpg``.
    """
    sanitized = _PATH_CHARS_RE.sub("", filename or "")
    sanitized = sanitized.lower()
    sanitized = _UNSAFE_CHARS_RE.sub("_", sanitized)
    sanitized = _UNDERSCORE_RUN_RE.sub("_", sanitized)
    sanitized = sanitized.strip(_EDGE_CHARS)

    if len(sanitized) > MAX_FILENAME_LENGTH:
        sanitized = _truncate(sanitized)

    return sanitized or _random_filename()


def replace_extension(filename: str, extension: str) -> str:
    """Swap the extension of an already-sanitized *filename*."""
    stem, dot, _ = filename.rpartition(".")
    base = stem if dot and stem else filename
    return sanitize_filename(f"{base}.{extension}")


def sanitize_text_input(text: Optional[str], max_length: int = MAX_ALT_TEXT_LENGTH) -> TextCheck:
    """Reject *text* when it matches a dangerous pattern or is too long.

    Matching input is rejected outright rather than stripped: a partial strip
    can leave a still-dangerous remainder behind.
    """
    if not text:
        return TextCheck(True)

    for pattern in DANGEROUS_PATTERNS:
        if pattern.search(text):
            return TextCheck(False, "Input contains potentially malicious content")

    if len(text) > max_length:
        return TextCheck(False, f"Input exceeds maximum length of {max_length} characters")

    return TextCheck(True)


def clean_tags(tags: Iterable[str]) -> List[str]:
    """Normalise machine-produced tags, silently dropping any that fail validation.

    Used for tags coming from the AI classifier or keyword heuristics, where
    one bad tag should not reject the whole asset.
    """
    cleaned: List[str] = []
    for tag in tags:
        if not isinstance(tag, str):
            continue
        tag = " ".join(tag.split()).lower()
        if not tag or not sanitize_text_input(tag, MAX_TAG_LENGTH).valid:
            continue
        if tag not in cleaned:
            cleaned.append(tag)
        if len(cleaned) >= MAX_TAGS:
            break
    return cleaned

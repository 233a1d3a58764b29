"""URL normalisation utilities: seed URLs and filenames derived from image URLs."""

import re
import unicodedata
from urllib.parse import unquote, urlparse

from ingestly.errors import InputRejected
from ingestly.services.sanitizer import sanitize_filename

_ALLOWED_SCHEMES = {"http", "https"}

_MIME_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "image/gif": "gif",
}

_EXTENSION_RE = re.compile(r"\.[a-z0-9]{1,5}$")


def normalize_seed_url(url: str) -> str:
    """Return *url* with a scheme, or raise :class:`InputRejected`.

    ``https://`` is assumed when no scheme is given.  The host must look like
    a real domain (contain a dot) or be ``localhost``.
    """
    candidate = (url or "").strip()
    if not candidate:
        raise InputRejected("Invalid URL provided: URL cannot be empty")

    if "://" not in candidate:
        candidate = f"https://{candidate}"

    try:
        parsed = urlparse(candidate)
        hostname = parsed.hostname
    except ValueError as exc:
        raise InputRejected(f'Invalid URL format: "{url}" - {exc}') from exc

    if parsed.scheme.lower() not in _ALLOWED_SCHEMES:
        raise InputRejected(f"Scheme '{parsed.scheme}' is not allowed. Use http or https.")

    if not hostname or (hostname != "localhost" and "." not in hostname):
        raise InputRejected(f'Invalid URL format: "{url}"')

    if any(ch.isspace() for ch in candidate):
        raise InputRejected(f'Invalid URL format: "{url}"')

    return candidate


def filename_from_url(url: str, mime_type: str = "") -> str:
    """Derive a safe filename from the last path segment of an image *url*.

    The extension is taken from *mime_type* when the path has none, falling
    back to ``extracted-image`` when the path is empty.
    """
    path = unquote(urlparse(url).path)
    segment = path.rstrip("/").split("/")[-1]

    # Normalise unicode, keep only ASCII
    segment = unicodedata.normalize("NFKD", segment)
    segment = segment.encode("ascii", "ignore").decode("ascii")

    name = segment or "extracted-image"
    extension = _MIME_EXTENSIONS.get(mime_type.lower())
    if extension and not _EXTENSION_RE.search(name.lower()):
        name = f"{name}.{extension}"

    return sanitize_filename(name)

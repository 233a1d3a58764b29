"""Cross-page image URL deduplication for a single extraction run.

Sites commonly serve the same image under many URLs that only differ by
cache-busting or resizing query parameters (``?v=3``, ``?w=800``).  URLs are
reduced to ``scheme://host/path`` before comparison so those variants collapse
into one candidate.  Data URIs carry their content inline and are compared
verbatim.
"""

from typing import Set
from urllib.parse import urlparse


def normalize_image_url(url: str) -> str:
    """Return the dedup key for *url*: scheme, host and path only."""
    if url.startswith("data:"):
        return url
    parsed = urlparse(url)
    return f"{parsed.scheme.lower()}://{parsed.netloc.lower()}{parsed.path}"


class DedupTracker:
    """Remembers the dedup keys of every image URL seen so far."""

    def __init__(self) -> None:
        self._seen: Set[str] = set()

    def __contains__(self, url: str) -> bool:
        return normalize_image_url(url) in self._seen

    def __len__(self) -> int:
        return len(self._seen)

    def add(self, url: str) -> bool:
        """Record *url*; return ``False`` when an equivalent URL was already seen."""
        key = normalize_image_url(url)
        if key in self._seen:
            return False
        self._seen.add(key)
        return True

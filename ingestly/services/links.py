"""Same-site link discovery for the image crawl."""

import logging
from typing import List
from urllib.parse import parse_qs, urljoin, urlparse

from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)

# Frontier ceiling for one crawl
MAX_LINKS = 30

_SKIP_SCHEMES = ("mailto:", "tel:", "javascript:", "data:", "#")

# URL path prefixes that never hold content images
_SKIP_PATH_PREFIXES = (
    "/wp-admin",
    "/wp-login",
    "/wp-json",
    "/login",
    "/logout",
    "/signin",
    "/signup",
    "/register",
    "/account",
    "/cart",
    "/checkout",
)

_SKIP_PATH_SUFFIXES = (
    ".xml",
    ".rss",
    ".atom",
    "xmlrpc.php",
    "/feed",
)
_SKIP_PATH_SUFFIXES_STRIPPED = tuple(s.rstrip("/") for s in _SKIP_PATH_SUFFIXES)

# Static assets and downloads
_ASSET_EXTENSIONS = (
    ".jpg", ".jpeg", ".png", ".gif", ".webp", ".svg", ".ico", ".avif",
    ".css", ".js", ".json", ".pdf", ".zip", ".gz", ".mp4", ".mp3", ".webm",
    ".woff", ".woff2", ".ttf", ".doc", ".docx", ".xls", ".xlsx",
)

_SKIP_QUERY_PARAMS = {"feed", "preview", "replytocom", "add-to-cart"}

# Paths that tend to carry brand and product imagery, most valuable first
_PRIORITY_KEYWORDS = (
    ("about", "product", "service", "team"),
    ("portfolio", "gallery", "work", "project", "company"),
)


def _host(netloc: str) -> str:
    host = netloc.lower().split("@")[-1].split(":")[0]
    return host[4:] if host.startswith("www.") else host


def same_site(url: str, base_url: str) -> bool:
    """Return True when *url* and *base_url* share a host, ignoring ``www.``."""
    return _host(urlparse(url).netloc) == _host(urlparse(base_url).netloc)


def _should_skip(url: str) -> bool:
    """Return True for assets, feeds and admin/login/cart pages."""
    parsed = urlparse(url)
    path = parsed.path.lower()

    if any(path.startswith(prefix) for prefix in _SKIP_PATH_PREFIXES):
        return True
    path_stripped = path.rstrip("/")
    if any(path_stripped.endswith(suffix) for suffix in _SKIP_PATH_SUFFIXES_STRIPPED):
        return True
    if path.endswith(_ASSET_EXTENSIONS):
        return True

    query_params = set(parse_qs(parsed.query).keys())
    if query_params & _SKIP_QUERY_PARAMS:
        return True

    return False


def link_priority(url: str) -> int:
    """Rank *url* for crawling: 0 for about/product/services/team, 1 for
    portfolio-style pages, 2 for everything else."""
    path = urlparse(url).path.lower()
    for rank, keywords in enumerate(_PRIORITY_KEYWORDS):
        if any(keyword in path for keyword in keywords):
            return rank
    return len(_PRIORITY_KEYWORDS)


def discover_links(html: str, base_url: str, limit: int = MAX_LINKS) -> List[str]:
    """Return up to *limit* crawlable same-site links from *html*.

    Links are absolute, fragment-free and unique, and sorted by
    :func:`link_priority` (ties keep document order).
    """
    soup = BeautifulSoup(html, "lxml")
    base_normalised = urlparse(base_url)._replace(fragment="").geturl()

    seen = {base_normalised}
    links: List[str] = []
    for anchor in soup.find_all("a", href=True):
        href = str(anchor["href"]).strip()
        if not href or href.lower().startswith(_SKIP_SCHEMES):
            continue
        try:
            absolute = urlparse(urljoin(base_url, href))._replace(fragment="").geturl()
        except ValueError:
            continue
        if urlparse(absolute).scheme not in ("http", "https"):
            continue
        if absolute in seen or not same_site(absolute, base_url) or _should_skip(absolute):
            continue
        seen.add(absolute)
        links.append(absolute)

    links.sort(key=link_priority)
    logger.debug("LinkDiscoverer: %d links on %s", len(links), base_url)
    return links[:limit]

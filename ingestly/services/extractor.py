"""Per-page image discovery.

Plain ``<img src>`` scanning misses most images on modern sites: lazy loaders
park the real URL in ``data-*`` attributes, hero images live in CSS
backgrounds, and JS frameworks embed image URLs in inline scripts or JSON-LD.
:func:`extract_page_images` runs an explicit, ordered list of named
strategies over one page and merges their results through a
:class:`~ingestly.services.deduplicator.DedupTracker`.  Likely logos are
detected separately and placed first.
"""

import json
import logging
import re
from typing import Callable, Iterable, Iterator, List, NamedTuple, Optional, Tuple
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup, Tag

from ingestly.models.candidate import ExtractedImageCandidate
from ingestly.services.deduplicator import DedupTracker

logger = logging.getLogger(__name__)

MAX_CONTEXT_LENGTH = 200
# Inline data URIs shorter than this are lazy-load placeholders
MIN_DATA_URI_LENGTH = 200
# Ancestor levels searched for surrounding text
_CONTEXT_DEPTH = 3
_MAX_JSON_DEPTH = 20

_IMAGE_EXT = r"(?:jpe?g|png|gif|webp|avif|svg)"

# background: url(...) / background-image: url(...) in inline styles and <style> blocks
_BACKGROUND_URL_RE = re.compile(
    r"background(?:-image)?\s*:[^;{}]*?url\(\s*['\"]?([^'\")\s]+)['\"]?\s*\)",
    re.IGNORECASE,
)

# Quoted string literals in inline scripts that look like image paths
_SCRIPT_IMAGE_RE = re.compile(
    r"[\"']((?:https?:)?[^\"'\s<>]*?\." + _IMAGE_EXT + r"(?:\?[^\"'\s<>]*)?)[\"']",
    re.IGNORECASE,
)

# Absolute URLs anywhere in the raw HTML ending in an image extension
_ABSOLUTE_IMAGE_URL_RE = re.compile(
    r"https?://[^\s\"'<>()\\]+?\." + _IMAGE_EXT + r"(?![a-z0-9])",
    re.IGNORECASE,
)

_IMAGE_PATH_RE = re.compile(r"\." + _IMAGE_EXT + r"$", re.IGNORECASE)

_PLACEHOLDER_URL_RE = re.compile(
    r"placeholder|placehold\.(?:co|it)|dummyimage\.com|(?<![0-9])1x1(?![0-9])"
    r"|/(?:blank|spacer|transparent)\.(?:gif|png)",
    re.IGNORECASE,
)

# Unambiguous UI chrome and tracking endpoints
_UI_CHROME_RE = re.compile(
    r"favicon|\bspinner\b|\bloader\b|loading\.(?:gif|svg)|/pixel(?:\.gif|\.png|/|\?|$)"
    r"|facebook\.com/tr|google-analytics\.com|doubleclick\.net|/tracking[/.?]",
    re.IGNORECASE,
)

# Lazy-loading attributes, in the order they are trusted over plain ``src``
_LAZY_ATTRIBUTES = ("data-src", "data-lazy-src", "data-original", "data-url", "data-image")

_META_IMAGE_KEYS = ("og:image", "og:image:url", "og:image:secure_url", "twitter:image")

_JSON_LD_IMAGE_KEYS = ("image", "logo", "photo", "thumbnailUrl")

_CONTEXT_TAGS = ["h1", "h2", "h3", "h4", "h5", "h6", "p", "figcaption"]

_LOGO_CONTAINER_HINTS = ("logo", "brand", "navbar", "header")


class ImageRef(NamedTuple):
    """A raw image reference found by a strategy, before URL resolution."""

    src: str
    element: Optional[Tag] = None
    alt: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None


Strategy = Callable[[BeautifulSoup, str], Iterable[ImageRef]]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def is_placeholder_src(src: str) -> bool:
    """Return True for lazy-load placeholders that cannot be real content."""
    value = src.strip().lower()
    if value.startswith("data:"):
        return value.startswith("data:image/svg+xml") or len(value) < MIN_DATA_URI_LENGTH
    return bool(_PLACEHOLDER_URL_RE.search(value))


def is_relevant(candidate: ExtractedImageCandidate) -> bool:
    """Reject only obvious UI chrome: favicons, tracking pixels, spinners.

    Real size filtering happens after download, once true dimensions are known.
    """
    if candidate.url.startswith("data:"):
        return True
    if _UI_CHROME_RE.search(candidate.url):
        return False
    width, height = candidate.width, candidate.height
    if width is not None and height is not None and width <= 2 and height <= 2:
        return False
    return True


def _attr(tag: Tag, name: str) -> Optional[str]:
    value = tag.get(name)
    if isinstance(value, list):
        value = " ".join(value)
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _int_attr(tag: Tag, name: str) -> Optional[int]:
    match = re.match(r"\s*(\d+)", _attr(tag, name) or "")
    return int(match.group(1)) if match else None


def _first_srcset_url(srcset: Optional[str]) -> Optional[str]:
    """Return the first URL of a ``srcset`` value."""
    if not srcset:
        return None
    value = srcset.strip()
    if value.lower().startswith("data:"):
        # Data URIs contain commas; take everything up to the descriptor
        return value.split()[0]
    first = value.split(",")[0].strip()
    return first.split()[0] if first else None


def _looks_like_image_url(value: str) -> bool:
    if value.lower().startswith("data:image/"):
        return True
    try:
        path = urlparse(value).path
    except ValueError:
        return False
    return bool(_IMAGE_PATH_RE.search(path))


def _surrounding_text(element: Tag) -> Optional[str]:
    """Return nearby heading/paragraph text, collapsed and truncated."""
    node = element.parent
    for _ in range(_CONTEXT_DEPTH):
        if node is None or node.name in ("body", "html", "[document]"):
            break
        texts = [t.get_text(" ", strip=True) for t in node.find_all(_CONTEXT_TAGS, limit=3)]
        text = " ".join(" ".join(texts).split())
        if text:
            return text[:MAX_CONTEXT_LENGTH]
        node = node.parent
    return None


# ---------------------------------------------------------------------------
# <img> source selection: an explicit ranked list of pickers
# ---------------------------------------------------------------------------

def _attribute_picker(name: str) -> Callable[[Tag], Optional[str]]:
    return lambda tag: _attr(tag, name)


def _srcset_picker(name: str) -> Callable[[Tag], Optional[str]]:
    return lambda tag: _first_srcset_url(_attr(tag, name))


IMG_SOURCE_PICKERS: Tuple[Tuple[str, Callable[[Tag], Optional[str]]], ...] = (
    *((name, _attribute_picker(name)) for name in _LAZY_ATTRIBUTES),
    ("data-srcset", _srcset_picker("data-srcset")),
    ("srcset", _srcset_picker("srcset")),
    ("src", _attribute_picker("src")),
)


def pick_image_source(img: Tag) -> Optional[str]:
    """Return the first non-placeholder source offered by *img*."""
    for _name, picker in IMG_SOURCE_PICKERS:
        src = picker(img)
        if src and not is_placeholder_src(src):
            return src
    return None


def _img_ref(img: Tag, src: str) -> ImageRef:
    return ImageRef(
        src=src,
        element=img,
        alt=_attr(img, "alt"),
        width=_int_attr(img, "width"),
        height=_int_attr(img, "height"),
    )


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------

def _from_img_tags(soup: BeautifulSoup, html: str) -> Iterator[ImageRef]:
    for img in soup.find_all("img"):
        src = pick_image_source(img)
        if src:
            yield _img_ref(img, src)


def _from_lazy_attributes(soup: BeautifulSoup, html: str) -> Iterator[ImageRef]:
    """Lazy-load attributes on non-``img`` elements (divs, anchors, figures)."""
    for tag in soup.find_all(True):
        if tag.name == "img":
            continue
        for name in _LAZY_ATTRIBUTES:
            value = _attr(tag, name)
            if value and _looks_like_image_url(value):
                yield ImageRef(src=value, element=tag)


def _from_srcset(soup: BeautifulSoup, html: str) -> Iterator[ImageRef]:
    for tag in soup.find_all(lambda t: t.has_attr("srcset") or t.has_attr("data-srcset")):
        if tag.name == "source" and tag.find_parent("picture") is not None:
            continue
        for name in ("srcset", "data-srcset"):
            src = _first_srcset_url(_attr(tag, name))
            if src:
                yield ImageRef(src=src, element=tag, alt=_attr(tag, "alt"))


def _from_picture_sources(soup: BeautifulSoup, html: str) -> Iterator[ImageRef]:
    for picture in soup.find_all("picture"):
        img = picture.find("img")
        alt = _attr(img, "alt") if img is not None else None
        for source in picture.find_all("source"):
            src = _first_srcset_url(_attr(source, "srcset") or _attr(source, "data-srcset"))
            if src:
                yield ImageRef(src=src, element=picture, alt=alt)


def _from_inline_styles(soup: BeautifulSoup, html: str) -> Iterator[ImageRef]:
    for tag in soup.find_all(style=True):
        for match in _BACKGROUND_URL_RE.finditer(_attr(tag, "style") or ""):
            yield ImageRef(src=match.group(1), element=tag)


def _from_style_blocks(soup: BeautifulSoup, html: str) -> Iterator[ImageRef]:
    for style in soup.find_all("style"):
        for match in _BACKGROUND_URL_RE.finditer(style.get_text()):
            yield ImageRef(src=match.group(1))


def _meta_images(soup: BeautifulSoup) -> Iterator[ImageRef]:
    alt_tag = soup.find("meta", attrs={"property": "og:image:alt"})
    alt = _attr(alt_tag, "content") if alt_tag is not None else None
    for meta in soup.find_all("meta"):
        key = (_attr(meta, "property") or _attr(meta, "name") or "").lower()
        content = _attr(meta, "content")
        if key in _META_IMAGE_KEYS and content:
            yield ImageRef(src=content, alt=alt or "Open Graph Image")


def _from_meta_tags(soup: BeautifulSoup, html: str) -> Iterator[ImageRef]:
    return _meta_images(soup)


def _json_ld_documents(soup: BeautifulSoup) -> Iterator[object]:
    for script in soup.find_all("script", attrs={"type": re.compile(r"ld\+json", re.IGNORECASE)}):
        raw = script.string or script.get_text()
        if not raw or not raw.strip():
            continue
        try:
            yield json.loads(raw)
        except ValueError as exc:
            logger.debug("Skipping malformed JSON-LD block: %s", exc)


def _json_ld_values(value: object) -> Iterator[str]:
    """Yield URLs from a JSON-LD image value: string, list or ImageObject."""
    if isinstance(value, str):
        yield value
    elif isinstance(value, list):
        for item in value:
            yield from _json_ld_values(item)
    elif isinstance(value, dict):
        for key in ("url", "contentUrl"):
            if isinstance(value.get(key), str):
                yield value[key]
                break


def _json_ld_urls(node: object, keys: Tuple[str, ...], depth: int = 0) -> Iterator[str]:
    if depth > _MAX_JSON_DEPTH:
        return
    if isinstance(node, dict):
        for key, value in node.items():
            if key in keys:
                yield from _json_ld_values(value)
            elif isinstance(value, (dict, list)):
                yield from _json_ld_urls(value, keys, depth + 1)
    elif isinstance(node, list):
        for item in node:
            yield from _json_ld_urls(item, keys, depth + 1)


def _from_json_ld(soup: BeautifulSoup, html: str) -> Iterator[ImageRef]:
    for document in _json_ld_documents(soup):
        for url in _json_ld_urls(document, _JSON_LD_IMAGE_KEYS):
            yield ImageRef(src=url)


def _from_inline_scripts(soup: BeautifulSoup, html: str) -> Iterator[ImageRef]:
    for script in soup.find_all("script"):
        if script.get("src") or "json" in (_attr(script, "type") or "").lower():
            continue
        text = (script.string or script.get_text()).replace("\\/", "/")
        for match in _SCRIPT_IMAGE_RE.finditer(text):
            yield ImageRef(src=match.group(1))


def _from_raw_html(soup: BeautifulSoup, html: str) -> Iterator[ImageRef]:
    for match in _ABSOLUTE_IMAGE_URL_RE.finditer(html.replace("\\/", "/")):
        yield ImageRef(src=match.group(0))


# Ordered from most to least reliable; earlier strategies win deduplication
# and so contribute their alt text and context.
IMAGE_STRATEGIES: Tuple[Tuple[str, Strategy], ...] = (
    ("img_tag", _from_img_tags),
    ("picture_source", _from_picture_sources),
    ("srcset", _from_srcset),
    ("lazy_attribute", _from_lazy_attributes),
    ("inline_style", _from_inline_styles),
    ("style_block", _from_style_blocks),
    ("meta_image", _from_meta_tags),
    ("json_ld", _from_json_ld),
    ("inline_script", _from_inline_scripts),
    ("raw_html", _from_raw_html),
)


# ---------------------------------------------------------------------------
# Logo detection
# ---------------------------------------------------------------------------

def _mentions_logo(img: Tag, src: str) -> bool:
    haystack = " ".join(
        [src, _attr(img, "alt") or "", _attr(img, "class") or "", _attr(img, "id") or ""]
    ).lower()
    return "logo" in haystack


def _in_logo_container(tag: Tag) -> bool:
    for parent in tag.parents:
        if parent.name in ("header", "nav"):
            return True
        if parent.name in ("body", "html", "[document]"):
            return False
        hints = f"{_attr(parent, 'class') or ''} {_attr(parent, 'id') or ''}".lower()
        if any(hint in hints for hint in _LOGO_CONTAINER_HINTS):
            return True
    return False


def _is_generic_favicon(href: str) -> bool:
    path = href.lower().split("?")[0]
    return "favicon" in path or path.endswith(".ico")


def _detect_logos(soup: BeautifulSoup) -> Iterator[Tuple[str, ImageRef]]:
    for img in soup.find_all("img"):
        src = pick_image_source(img)
        if src and (_mentions_logo(img, src) or _in_logo_container(img)):
            yield "logo_img", _img_ref(img, src)

    for link in soup.find_all("link", href=True):
        rel = (_attr(link, "rel") or "").lower()
        href = _attr(link, "href")
        if "icon" in rel and href and not _is_generic_favicon(href):
            yield "logo_icon", ImageRef(src=href, alt="Site icon")

    for ref in _meta_images(soup):
        yield "logo_open_graph", ref

    for document in _json_ld_documents(soup):
        for url in _json_ld_urls(document, ("logo",)):
            yield "logo_json_ld", ImageRef(src=url, alt="Logo")


# ---------------------------------------------------------------------------
# Public entry point
# ---------------------------------------------------------------------------

def _to_candidate(
    ref: ImageRef, base_url: str, strategy: str, is_logo: bool = False
) -> Optional[ExtractedImageCandidate]:
    src = ref.src.strip()
    if not src or is_placeholder_src(src):
        return None

    if src.lower().startswith("data:"):
        url = src
    else:
        try:
            url = urljoin(base_url, src)
            scheme = urlparse(url).scheme
        except ValueError:
            return None
        if scheme not in ("http", "https"):
            return None

    context = _surrounding_text(ref.element) if ref.element is not None else None
    return ExtractedImageCandidate(
        url=url,
        alt_text=ref.alt or None,
        width=ref.width,
        height=ref.height,
        context=context,
        is_logo=is_logo,
        strategy=strategy,
    )


def extract_page_images(
    html: str,
    base_url: str,
    tracker: Optional[DedupTracker] = None,
) -> List[ExtractedImageCandidate]:
    """Return the unique, relevant image candidates found in *html*.

    Logo candidates come first, followed by the results of
    :data:`IMAGE_STRATEGIES` in order.  Passing a shared *tracker* suppresses
    images already collected from earlier pages of the same crawl.
    """
    if tracker is None:
        tracker = DedupTracker()
    soup = BeautifulSoup(html, "lxml")

    ordered: List[ExtractedImageCandidate] = []
    for strategy, ref in _detect_logos(soup):
        candidate = _to_candidate(ref, base_url, strategy, is_logo=True)
        if candidate is not None:
            ordered.append(candidate)

    for strategy, find in IMAGE_STRATEGIES:
        for ref in find(soup, html):
            candidate = _to_candidate(ref, base_url, strategy)
            if candidate is not None:
                ordered.append(candidate)

    results: List[ExtractedImageCandidate] = []
    for candidate in ordered:
        if not is_relevant(candidate):
            logger.debug("Extractor: dropping UI chrome %s", candidate.url)
            continue
        if not tracker.add(candidate.url):
            continue
        results.append(candidate)

    logger.debug("Extractor: %d candidates on %s", len(results), base_url)
    return results

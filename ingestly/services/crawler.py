"""Image crawl: priority-ordered walk over the pages of one site, collecting image candidates."""

import asyncio
import heapq
import itertools
import logging
from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Set, Tuple
from urllib.parse import urlparse

import httpx

from ingestly.models.candidate import ExtractedImageCandidate
from ingestly.services.deduplicator import DedupTracker
from ingestly.services.extractor import extract_page_images
from ingestly.services.fetcher import FetchResult, fetch
from ingestly.services.links import MAX_LINKS, discover_links, link_priority
from ingestly.services.normalizer import normalize_seed_url

logger = logging.getLogger(__name__)

MAX_PAGES = 10
MAX_IMAGES = 20
# Collection overshoots the save target so that skips and failures downstream
# still leave enough candidates.
CANDIDATE_MULTIPLIER = 2
MAX_CRAWL_BYTES = 32 * 1024 * 1024  # 32 MB of page HTML per crawl


def _normalise(url: str) -> str:
    """Strip URL fragment so http://x.com/page#sec and http://x.com/page are the same."""
    return urlparse(url)._replace(fragment="").geturl()


@dataclass
class CrawlState:
    """Mutable bookkeeping for one crawl; owned by the call that created it."""

    visited: Set[str] = field(default_factory=set)
    # (link_priority, discovery order, url); a priority page found late still
    # jumps ahead of generic pages found earlier
    queue: List[Tuple[int, int, str]] = field(default_factory=list)
    queued: Set[str] = field(default_factory=set)
    pages_visited: int = 0
    bytes_fetched: int = 0
    images_collected: int = 0
    links_queued: int = 0
    _order: Iterator[int] = field(default_factory=itertools.count, repr=False)

    def enqueue(self, links: List[str], limit: int) -> None:
        for link in links:
            if self.links_queued >= limit:
                return
            if link in self.visited or link in self.queued:
                continue
            heapq.heappush(self.queue, (link_priority(link), next(self._order), link))
            self.queued.add(link)
            self.links_queued += 1

    def pop(self) -> str:
        _, _, link = heapq.heappop(self.queue)
        self.queued.discard(link)
        return link

    def stop_reason(self, max_pages: int, max_candidates: int, max_bytes: int) -> Optional[str]:
        if self.pages_visited >= max_pages:
            return "page limit"
        if self.images_collected >= max_candidates:
            return "candidate limit"
        if self.bytes_fetched >= max_bytes:
            return "byte limit"
        return None


def _collect(
    page: FetchResult,
    state: CrawlState,
    tracker: DedupTracker,
    candidates: List[ExtractedImageCandidate],
    link_limit: int,
) -> None:
    state.pages_visited += 1
    state.bytes_fetched += len(page.content)
    state.visited.add(_normalise(page.url))

    html = page.text
    found = extract_page_images(html, page.url, tracker)
    candidates.extend(found)
    state.images_collected = len(candidates)
    state.enqueue(discover_links(html, page.url, limit=link_limit), link_limit)

    logger.info(
        "Crawler: page processed",
        extra={"url": page.url, "images": len(found), "total_images": state.images_collected},
    )


async def extract_images_from_website(
    seed_url: str,
    *,
    max_pages: int = MAX_PAGES,
    max_images: int = MAX_IMAGES,
    max_bytes: int = MAX_CRAWL_BYTES,
    max_links: int = MAX_LINKS,
    cancel_event: Optional[asyncio.Event] = None,
) -> List[ExtractedImageCandidate]:
    """Crawl the site at *seed_url* and return deduplicated image candidates.

    The seed page is fetched first; a failure there propagates since there is
    nothing to continue with.  Same-site links are then visited in
    :func:`link_priority` order (ties in discovery order) until *max_pages*
    pages were visited, ``2 × max_images`` candidates were collected or
    *max_bytes* of HTML were fetched.  Failing pages after the seed are
    logged and skipped.

    Raises:
        InputRejected: if *seed_url* is malformed or points at a blocked address.
        httpx.HTTPError, TransientNetworkFailure: if the seed page cannot be fetched.
    """
    seed = normalize_seed_url(seed_url)
    max_candidates = max_images * CANDIDATE_MULTIPLIER
    state = CrawlState()
    tracker = DedupTracker()
    candidates: List[ExtractedImageCandidate] = []

    if cancel_event is not None and cancel_event.is_set():
        return candidates

    state.visited.add(_normalise(seed))
    _collect(await fetch(seed), state, tracker, candidates, max_links)

    while state.queue:
        reason = state.stop_reason(max_pages, max_candidates, max_bytes)
        if reason:
            logger.info("Crawler: stopping on %s", reason, extra={"url": seed})
            break
        if cancel_event is not None and cancel_event.is_set():
            logger.info("Crawler: cancelled", extra={"url": seed})
            break

        url = state.pop()
        if url in state.visited:
            continue
        state.visited.add(url)

        try:
            page = await fetch(url)
        except (ValueError, httpx.HTTPError, RuntimeError) as exc:
            # Failed pages still count towards the page budget
            state.pages_visited += 1
            logger.warning("Crawler: skipping %s – %s", url, exc)
            continue

        _collect(page, state, tracker, candidates, max_links)

    logger.info(
        "Crawler: finished",
        extra={
            "url": seed,
            "pages": state.pages_visited,
            "bytes": state.bytes_fetched,
            "candidates": len(candidates),
        },
    )
    return candidates[:max_candidates]

"""AI tagging collaborator and the keyword fallback used when it is unavailable."""

import logging
import re
from typing import Awaitable, Callable, List, Optional

from ingestly.errors import ResourceExceeded
from ingestly.services.rate_limiter import RateLimiter
from ingestly.services.sanitizer import clean_tags

logger = logging.getLogger(__name__)

EXTRACTED_TAG = "website-extracted"
# Token estimate for one vision classification call
ESTIMATED_TOKENS_PER_CALL = 500

# async classify(image_url) -> tags
Classifier = Callable[[str], Awaitable[List[str]]]

_KEYWORD_TAGS = (
    (("logo", "brand", "wordmark"), "logo"),
    (("team", "staff", "founder", "people", "portrait", "ceo"), "people"),
    (("product", "shop", "item"), "product"),
    (("office", "building", "workspace", "store"), "office"),
    (("hero", "banner", "header"), "hero"),
    (("service", "solution"), "service"),
    (("project", "portfolio", "case study", "gallery"), "portfolio"),
    (("icon",), "icon"),
)


class RateLimitedClassifier:
    """Wraps a :data:`Classifier` with :class:`RateLimiter` admission.

    Raises :class:`ResourceExceeded` carrying ``retry_after`` when the hourly
    or daily ceiling would be crossed.
    """

    def __init__(
        self,
        classify: Classifier,
        limiter: RateLimiter,
        estimated_tokens: int = ESTIMATED_TOKENS_PER_CALL,
    ) -> None:
        self._classify = classify
        self.limiter = limiter
        self.estimated_tokens = estimated_tokens

    async def __call__(self, image_url: str) -> List[str]:
        decision = self.limiter.can_make_request(self.estimated_tokens)
        if not decision.allowed:
            raise ResourceExceeded(
                f"AI quota exceeded: {decision.reason}",
                unit="requests",
                retry_after=decision.retry_after,
            )
        tags = await self._classify(image_url)
        self.limiter.record_request(self.estimated_tokens)
        return clean_tags(tags)


def fallback_tags(
    alt_text: Optional[str] = None,
    context: Optional[str] = None,
    is_logo: bool = False,
) -> List[str]:
    """Derive tags from alt text and surrounding page text."""
    text = f"{alt_text or ''} {context or ''}".lower()
    tags = ["logo"] if is_logo else []
    for keywords, tag in _KEYWORD_TAGS:
        if any(re.search(rf"\b{re.escape(k)}", text) for k in keywords):
            tags.append(tag)
    tags.append(EXTRACTED_TAG)
    return clean_tags(tags)

"""Process-wide service wiring used by the routers.

The default wiring keeps media in memory and has no AI classifier; deployments
call :func:`configure` once at startup with their own collaborators.
"""

from typing import Optional

from fastapi import Header

from ingestly.services.media_manager import MediaManager
from ingestly.services.rate_limiter import RateLimiter
from ingestly.services.storage import (
    InMemoryMediaRepository,
    InMemoryObjectStorage,
    MediaRepository,
    ObjectStorage,
)
from ingestly.services.tagging import Classifier, RateLimitedClassifier

rate_limiter = RateLimiter()
media_manager = MediaManager(InMemoryObjectStorage(), InMemoryMediaRepository())


def configure(
    storage: Optional[ObjectStorage] = None,
    repository: Optional[MediaRepository] = None,
    classify: Optional[Classifier] = None,
) -> MediaManager:
    """Replace the shared :class:`MediaManager`.

    *classify* is wrapped in the shared :data:`rate_limiter` so every AI call
    made through the API counts against the same hourly and daily ceilings.
    """
    global media_manager
    classifier = RateLimitedClassifier(classify, rate_limiter) if classify is not None else None
    media_manager = MediaManager(
        storage if storage is not None else InMemoryObjectStorage(),
        repository if repository is not None else InMemoryMediaRepository(),
        classifier=classifier,
    )
    return media_manager


def get_media_manager() -> MediaManager:
    return media_manager


def get_rate_limiter() -> RateLimiter:
    return rate_limiter


def get_user_id(x_user_id: str = Header(min_length=1, max_length=128)) -> str:
    """Caller identity, set by the authenticating proxy in front of the API."""
    return x_user_id

"""Hourly and daily admission control for AI classification calls.

Counters are kept per clock bucket (``hour:<n>`` / ``day:<n>``, where ``n``
is the number of whole hours or days since the epoch) in a
:class:`CounterStore`.  Each bucket expires when its window ends; expired
buckets are dropped lazily on read and swept at most once per hour of clock
time.  No background timer is involved.
"""

import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, NamedTuple, Optional, Protocol

from ingestly.models.quota_status import QuotaStatus, WindowUsage

logger = logging.getLogger(__name__)

HOUR_SECONDS = 3600
DAY_SECONDS = 86400
PURGE_INTERVAL = HOUR_SECONDS


@dataclass(frozen=True)
class QuotaLimits:
    max_requests_per_hour: int = 50
    max_requests_per_day: int = 500
    max_tokens_per_hour: int = 100_000
    max_tokens_per_day: int = 1_000_000


@dataclass
class UsageBucket:
    requests: int = 0
    tokens: int = 0
    expires_at: float = 0.0


class CounterStore(Protocol):
    def get(self, key: str, now: float) -> Optional[UsageBucket]:
        """Return the live bucket for *key*, or None if missing or expired."""

    def put(self, key: str, bucket: UsageBucket) -> None:
        ...

    def purge_expired(self, now: float) -> int:
        """Drop every expired bucket and return how many were dropped."""

    def clear(self) -> None:
        ...


class InMemoryCounterStore:
    def __init__(self) -> None:
        self._buckets: Dict[str, UsageBucket] = {}

    def __len__(self) -> int:
        return len(self._buckets)

    def get(self, key: str, now: float) -> Optional[UsageBucket]:
        bucket = self._buckets.get(key)
        if bucket is not None and bucket.expires_at <= now:
            del self._buckets[key]
            return None
        return bucket

    def put(self, key: str, bucket: UsageBucket) -> None:
        self._buckets[key] = bucket

    def purge_expired(self, now: float) -> int:
        expired = [key for key, bucket in self._buckets.items() if bucket.expires_at <= now]
        for key in expired:
            del self._buckets[key]
        return len(expired)

    def clear(self) -> None:
        self._buckets.clear()


class AdmissionDecision(NamedTuple):
    allowed: bool
    reason: Optional[str] = None
    retry_after: Optional[int] = None  # whole seconds until the blocking window resets


class _Window(NamedTuple):
    label: str
    key: str
    resets_at: float
    max_requests: int
    max_tokens: int


class RateLimiter:
    """Admits or refuses AI calls against hourly and daily ceilings.

    Safe to share between threads; every read-modify-write happens under one
    lock.  *clock* returns epoch seconds and is injectable for tests.
    """

    def __init__(
        self,
        limits: Optional[QuotaLimits] = None,
        store: Optional[CounterStore] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.limits = limits or QuotaLimits()
        self.store = store if store is not None else InMemoryCounterStore()
        self._clock = clock
        self._lock = threading.Lock()
        self._last_purge = clock()

    def _windows(self, now: float) -> List[_Window]:
        hour = int(now // HOUR_SECONDS)
        day = int(now // DAY_SECONDS)
        # Daily first: when it is exhausted, the hourly reset does not help
        return [
            _Window(
                "Daily",
                f"day:{day}",
                (day + 1) * DAY_SECONDS,
                self.limits.max_requests_per_day,
                self.limits.max_tokens_per_day,
            ),
            _Window(
                "Hourly",
                f"hour:{hour}",
                (hour + 1) * HOUR_SECONDS,
                self.limits.max_requests_per_hour,
                self.limits.max_tokens_per_hour,
            ),
        ]

    def _maybe_purge(self, now: float) -> None:
        if now - self._last_purge < PURGE_INTERVAL:
            return
        dropped = self.store.purge_expired(now)
        self._last_purge = now
        if dropped:
            logger.debug("RateLimiter: purged %d expired buckets", dropped)

    def _usage(self, window: _Window, now: float) -> UsageBucket:
        return self.store.get(window.key, now) or UsageBucket(expires_at=window.resets_at)

    def can_make_request(self, estimated_tokens: int = 0) -> AdmissionDecision:
        with self._lock:
            now = self._clock()
            self._maybe_purge(now)
            for window in self._windows(now):
                usage = self._usage(window, now)
                retry_after = max(1, math.ceil(window.resets_at - now))
                if usage.requests + 1 > window.max_requests:
                    return AdmissionDecision(
                        False,
                        f"{window.label} request limit reached ({window.max_requests})",
                        retry_after,
                    )
                if usage.tokens + estimated_tokens > window.max_tokens:
                    return AdmissionDecision(
                        False,
                        f"{window.label} token limit reached ({window.max_tokens})",
                        retry_after,
                    )
            return AdmissionDecision(True)

    def record_request(self, actual_tokens: int = 0) -> None:
        with self._lock:
            now = self._clock()
            self._maybe_purge(now)
            for window in self._windows(now):
                usage = self._usage(window, now)
                usage.requests += 1
                usage.tokens += actual_tokens
                self.store.put(window.key, usage)

    def get_status(self) -> QuotaStatus:
        with self._lock:
            now = self._clock()
            daily, hourly = [self._report(window, now) for window in self._windows(now)]
            return QuotaStatus(hourly=hourly, daily=daily)

    def _report(self, window: _Window, now: float) -> WindowUsage:
        usage = self._usage(window, now)
        return WindowUsage(
            requests=usage.requests,
            tokens=usage.tokens,
            limit=window.max_requests,
            token_limit=window.max_tokens,
        )

    def reset(self) -> None:
        with self._lock:
            self.store.clear()
            self._last_purge = self._clock()

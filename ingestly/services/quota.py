"""Storage quotas: per-file ceiling, per-project ceiling and per-run budget."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, NamedTuple

from ingestly.errors import InputRejected, ResourceExceeded, RunBudgetExceeded
from ingestly.services.storage import MediaRepository

logger = logging.getLogger(__name__)

BYTES_PER_MB = 1024 * 1024
MAX_STORAGE_PER_PROJECT_MB = 32
MAX_FILE_SIZE_MB = 10
MAX_SIZE_BYTES = 32 * BYTES_PER_MB  # saved bytes per extraction run
MAX_IMAGES_PER_RUN = 20

ALLOWED_FILE_TYPES = ("image/jpeg", "image/jpg", "image/png", "image/webp", "image/gif")


class StorageQuota(NamedTuple):
    allowed: bool
    current_usage: float  # MB
    limit: float  # MB


def _to_mb(size: int) -> float:
    return round(size / BYTES_PER_MB, 2)


@dataclass
class ExtractionBudget:
    """Byte and image budget for one extraction run.

    Two byte counters share ``max_bytes``: everything downloaded, whether or
    not it was saved, and the sanitized bytes actually written.  Saved sizes
    are charged after sanitization, so written bytes never exceed the budget.
    """

    max_bytes: int = MAX_SIZE_BYTES
    max_images: int = MAX_IMAGES_PER_RUN
    bytes_used: int = 0
    images_saved: int = 0
    bytes_downloaded: int = 0

    @property
    def exhausted(self) -> bool:
        return (
            self.images_saved >= self.max_images
            or self.bytes_used >= self.max_bytes
            or self.bytes_downloaded >= self.max_bytes
        )

    @property
    def download_allowance(self) -> int:
        return max(0, self.max_bytes - self.bytes_downloaded)

    def record_download(self, size: int) -> None:
        self.bytes_downloaded += size

    def fits(self, size: int) -> bool:
        return self.bytes_used + size <= self.max_bytes

    def ensure_fits(self, size: int) -> None:
        if not self.fits(size):
            raise RunBudgetExceeded(
                "Extraction size budget exceeded",
                current_usage=_to_mb(self.bytes_used),
                limit=_to_mb(self.max_bytes),
            )

    def record(self, size: int) -> None:
        self.bytes_used += size
        self.images_saved += 1


class QuotaEnforcer:
    """Checks uploads against the per-file and per-project storage ceilings.

    Callers hold :meth:`lock_for` across the quota check and the write that
    follows it, so two concurrent uploads to one project cannot both pass.
    """

    def __init__(
        self,
        repository: MediaRepository,
        max_project_mb: float = MAX_STORAGE_PER_PROJECT_MB,
        max_file_mb: float = MAX_FILE_SIZE_MB,
    ) -> None:
        self.repository = repository
        self.max_project_mb = max_project_mb
        self.max_file_mb = max_file_mb
        self._locks: Dict[str, asyncio.Lock] = {}

    def lock_for(self, project_id: str) -> asyncio.Lock:
        return self._locks.setdefault(project_id, asyncio.Lock())

    def validate_file(self, file_type: str, file_size: int) -> None:
        if file_type.lower() not in ALLOWED_FILE_TYPES:
            raise InputRejected(
                f"File type {file_type} not allowed. Allowed types: {', '.join(ALLOWED_FILE_TYPES)}"
            )
        self.check_file_size(file_size)

    def check_file_size(self, file_size: int) -> None:
        if file_size > self.max_file_mb * BYTES_PER_MB:
            raise ResourceExceeded(
                f"File size exceeds maximum of {self.max_file_mb:g}MB",
                current_usage=_to_mb(file_size),
                limit=self.max_file_mb,
            )

    async def check_storage_quota(self, project_id: str, additional_bytes: int = 0) -> StorageQuota:
        used = await self.repository.total_size(project_id)
        allowed = used + additional_bytes <= self.max_project_mb * BYTES_PER_MB
        return StorageQuota(allowed=allowed, current_usage=_to_mb(used), limit=self.max_project_mb)

    async def enforce_storage_quota(self, project_id: str, additional_bytes: int) -> StorageQuota:
        quota = await self.check_storage_quota(project_id, additional_bytes)
        if not quota.allowed:
            logger.warning(
                "Storage quota exceeded",
                extra={"project_id": project_id, "current_usage": quota.current_usage},
            )
            raise ResourceExceeded(
                f"Storage quota exceeded. Current usage: {quota.current_usage:.2f}MB"
                f" / {quota.limit:g}MB",
                current_usage=quota.current_usage,
                limit=quota.limit,
            )
        return quota

"""Media ingestion pipeline: direct uploads, website extraction and asset management.

Every image, whatever its source, goes through :meth:`MediaManager.upload_media`,
which persists only the sanitized output of
:func:`~ingestly.services.security.validate_upload`.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, NamedTuple, Optional, Sequence, Tuple

import httpx

from ingestly.errors import (
    AssetNotFound,
    InputRejected,
    ResourceExceeded,
    ResponseTooLarge,
    RunBudgetExceeded,
)
from ingestly.models.candidate import ExtractedImageCandidate
from ingestly.models.extract_response import SaveError, SaveStats, SkippedCandidate, SkipReason
from ingestly.models.media_asset import MediaAsset, MediaSource
from ingestly.services.crawler import MAX_IMAGES, extract_images_from_website
from ingestly.services.fetcher import MAX_IMAGE_SIZE, fetch_image
from ingestly.services.imaging import make_thumbnail, read_metadata
from ingestly.services.normalizer import filename_from_url
from ingestly.services.quota import MAX_SIZE_BYTES, ExtractionBudget, QuotaEnforcer, StorageQuota
from ingestly.services.sanitizer import (
    MAX_ALT_TEXT_LENGTH,
    MAX_DESCRIPTION_LENGTH,
    clean_tags,
    sanitize_text_input,
)
from ingestly.services.security import validate_text_fields, validate_upload
from ingestly.services.storage import MediaRepository, ObjectStorage
from ingestly.services.tagging import EXTRACTED_TAG, Classifier, fallback_tags

logger = logging.getLogger(__name__)

# Downloads smaller than this are icons or placeholders
MIN_DOWNLOAD_BYTES = 2048
MIN_DIMENSION = 50  # pixels, both axes

_FETCH_ERRORS = (ValueError, httpx.HTTPError, RuntimeError)


class SaveResult(NamedTuple):
    saved: List[MediaAsset]
    errors: List[SaveError]
    skipped: List[SkippedCandidate]
    stats: SaveStats


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _stem(filename: str) -> str:
    stem, dot, _ = filename.rpartition(".")
    return stem if dot and stem else filename


class MediaManager:
    def __init__(
        self,
        storage: ObjectStorage,
        repository: MediaRepository,
        quota: Optional[QuotaEnforcer] = None,
        classifier: Optional[Classifier] = None,
        max_size_bytes: int = MAX_SIZE_BYTES,
    ) -> None:
        self.storage = storage
        self.repository = repository
        self.quota = quota or QuotaEnforcer(repository)
        self.classifier = classifier
        self.max_size_bytes = max_size_bytes

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    async def upload_media(
        self,
        project_id: str,
        user_id: str,
        data: bytes,
        filename: str,
        mime_type: str,
        source: MediaSource = "upload",
        source_url: Optional[str] = None,
        tags: Optional[Sequence[str]] = None,
        description: Optional[str] = None,
        alt_text: Optional[str] = None,
        budget: Optional[ExtractionBudget] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> MediaAsset:
        """Validate, sanitize and persist one image.

        Raises:
            InputRejected: when security validation fails; the message is the
                validator's error verbatim.
            ResourceExceeded: when the file, project or *budget* ceiling would
                be crossed.
        """
        # Raw size first, so an oversized payload is never handed to Pillow
        self.quota.check_file_size(len(data))

        result = validate_upload(data, filename, mime_type, tags, description, alt_text)
        if not result.valid:
            logger.warning(
                "Upload rejected by security validation",
                extra={"project_id": project_id, "upload_filename": filename, "error": result.error},
            )
            raise InputRejected(result.error)

        clean = result.sanitized_buffer
        clean_mime = result.sanitized_mime_type
        clean_name = result.sanitized_filename
        size = len(clean)

        self.quota.validate_file(clean_mime, size)
        if budget is not None:
            budget.ensure_fits(size)

        image = read_metadata(clean)

        async with self.quota.lock_for(project_id):
            await self.quota.enforce_storage_quota(project_id, size)

            timestamp = int(time.time() * 1000)
            path = f"{project_id}/{timestamp}_{clean_name}"
            storage_url = await self.storage.put(path, clean, clean_mime)
            thumbnail_path, thumbnail_url = await self._store_thumbnail(
                project_id, timestamp, clean_name, clean
            )

            asset_metadata: Dict[str, Any] = {
                "original_size": len(data),
                "sanitized": True,
                "format": image.format,
                "warnings": result.warnings or [],
            }
            if thumbnail_path:
                asset_metadata["thumbnail_path"] = thumbnail_path
            asset_metadata.update(metadata or {})

            asset = MediaAsset(
                project_id=project_id,
                user_id=user_id,
                filename=path,
                original_filename=clean_name,
                file_type=clean_mime,
                file_size=size,
                storage_url=storage_url,
                thumbnail_url=thumbnail_url,
                width=image.width,
                height=image.height,
                source=source,
                source_url=source_url,
                tags=clean_tags(tags or []),
                description=description,
                alt_text=alt_text,
                metadata=asset_metadata,
            )
            try:
                asset = await self.repository.insert(asset)
            except Exception:
                await self.storage.delete([p for p in (path, thumbnail_path) if p])
                raise

            if budget is not None:
                budget.record(size)

        logger.info(
            "Media stored",
            extra={"project_id": project_id, "asset_id": asset.id, "size": size, "source": source},
        )
        return asset

    async def _store_thumbnail(
        self, project_id: str, timestamp: int, filename: str, data: bytes
    ) -> Tuple[Optional[str], Optional[str]]:
        """Store a thumbnail; failures are logged and the asset is kept without one."""
        path = f"{project_id}/thumbnails/{timestamp}_thumb_{_stem(filename)}.jpg"
        try:
            url = await self.storage.put(path, make_thumbnail(data), "image/jpeg")
        except Exception as exc:
            logger.warning("Thumbnail generation failed: %s", exc, extra={"project_id": project_id})
            return None, None
        return path, url

    # ------------------------------------------------------------------
    # Website extraction
    # ------------------------------------------------------------------

    async def extract_images_from_website(
        self, seed_url: str, max_images: int = MAX_IMAGES, **crawl_options: Any
    ) -> List[ExtractedImageCandidate]:
        return await extract_images_from_website(seed_url, max_images=max_images, **crawl_options)

    async def _classify(self, image_url: str) -> List[str]:
        """AI tags for *image_url*, or ``[]`` when unavailable; never raises."""
        if self.classifier is None:
            return []
        try:
            return list(await self.classifier(image_url) or [])
        except Exception as exc:
            logger.warning("AI tagging failed for %s, using keyword tags: %s", image_url, exc)
            return []

    async def _apply_ai_tags(self, asset: MediaAsset, image_url: str) -> MediaAsset:
        ai_tags = await self._classify(image_url)
        if not ai_tags:
            return asset
        asset.tags = clean_tags([*ai_tags, EXTRACTED_TAG])
        asset.updated_at = _utcnow()
        return await self.repository.update(asset)

    @staticmethod
    def _safe_text(text: Optional[str], max_length: int) -> Optional[str]:
        """Drop scraped text that would fail text validation."""
        if not text:
            return None
        text = " ".join(text.split())[:max_length]
        return text if sanitize_text_input(text, max_length).valid else None

    async def save_extracted_images(
        self,
        project_id: str,
        user_id: str,
        candidates: Sequence[ExtractedImageCandidate],
        max_images: int = MAX_IMAGES,
    ) -> SaveResult:
        """Download, validate and persist extracted candidates in order.

        Stops once *max_images* assets were saved, or once either the bytes
        downloaded or the bytes saved reach the run's byte budget.  Each
        download is capped at what is left of that budget.  Per-candidate
        problems never abort the run; they are collected as ``errors`` or
        ``skipped`` entries.
        """
        budget = ExtractionBudget(max_bytes=self.max_size_bytes, max_images=max_images)
        saved: List[MediaAsset] = []
        errors: List[SaveError] = []
        skipped: List[SkippedCandidate] = []
        stats = SaveStats(candidates=len(candidates))

        def skip(url: str, reason: SkipReason) -> None:
            skipped.append(SkippedCandidate(url=url, reason=reason))
            stats.skipped[reason] += 1
            logger.debug("Skipping %s: %s", url, reason)

        def fail(url: str, error: str) -> None:
            errors.append(SaveError(url=url, error=error))
            logger.warning("Failed to save extracted image %s: %s", url, error)

        for candidate in candidates:
            if budget.exhausted:
                logger.info(
                    "Extraction budget reached",
                    extra={
                        "project_id": project_id,
                        "saved": len(saved),
                        "bytes": budget.bytes_used,
                        "bytes_downloaded": budget.bytes_downloaded,
                    },
                )
                break
            stats.processed += 1
            url = candidate.url

            if url.startswith("data:"):
                skip(url, "data_uri")
                continue
            if await self.repository.exists_source_url(project_id, url):
                skip(url, "duplicate")
                continue

            allowance = min(MAX_IMAGE_SIZE, budget.download_allowance)
            try:
                download = await fetch_image(url, max_size=allowance)
            except ResponseTooLarge as exc:
                if allowance < MAX_IMAGE_SIZE:
                    skip(url, "size_limit")
                else:
                    fail(url, str(exc))
                continue
            except _FETCH_ERRORS as exc:
                fail(url, str(exc) or type(exc).__name__)
                continue
            data = download.content
            budget.record_download(len(data))
            stats.bytes_downloaded += len(data)

            if len(data) < MIN_DOWNLOAD_BYTES:
                skip(url, "too_small")
                continue

            try:
                image = read_metadata(data)
            except InputRejected as exc:
                fail(url, str(exc))
                continue
            mime_type = image.mime_type
            if mime_type is None:
                fail(url, f"Unsupported image format: {image.format or download.content_type}")
                continue
            if image.width < MIN_DIMENSION or image.height < MIN_DIMENSION:
                skip(url, "too_small")
                continue
            if not budget.fits(len(data)):
                skip(url, "size_limit")
                continue

            try:
                asset = await self.upload_media(
                    project_id,
                    user_id,
                    data,
                    filename_from_url(download.url or url, mime_type),
                    mime_type,
                    source="website_extraction",
                    source_url=url,
                    tags=fallback_tags(candidate.alt_text, candidate.context, candidate.is_logo),
                    alt_text=self._safe_text(candidate.alt_text, MAX_ALT_TEXT_LENGTH),
                    budget=budget,
                    metadata={
                        "extraction_strategy": candidate.strategy,
                        "is_logo": candidate.is_logo,
                        "context": self._safe_text(candidate.context, MAX_DESCRIPTION_LENGTH),
                    },
                )
            except RunBudgetExceeded:
                skip(url, "size_limit")
                continue
            except (InputRejected, ResourceExceeded) as exc:
                fail(url, str(exc))
                continue

            # AI quota is only spent on images that were actually stored
            asset = await self._apply_ai_tags(asset, url)
            saved.append(asset)
            stats.saved += 1
            stats.bytes_saved += asset.file_size

        stats.errors = len(errors)
        logger.info(
            "Extraction save finished",
            extra={
                "project_id": project_id,
                "saved": stats.saved,
                "errors": stats.errors,
                "bytes_saved": stats.bytes_saved,
            },
        )
        return SaveResult(saved=saved, errors=errors, skipped=skipped, stats=stats)

    # ------------------------------------------------------------------
    # Asset management
    # ------------------------------------------------------------------

    async def get_project_media(self, project_id: str, user_id: str) -> List[MediaAsset]:
        assets = await self.repository.list_for_project(project_id)
        return [asset for asset in assets if asset.user_id == user_id]

    async def _owned_asset(self, project_id: str, user_id: str, asset_id: str) -> MediaAsset:
        asset = await self.repository.get(asset_id)
        if asset is None or asset.project_id != project_id or asset.user_id != user_id:
            raise AssetNotFound(f"Media asset {asset_id} not found")
        return asset

    async def update_media_metadata(
        self,
        project_id: str,
        user_id: str,
        asset_id: str,
        tags: Optional[Sequence[str]] = None,
        description: Optional[str] = None,
        alt_text: Optional[str] = None,
    ) -> MediaAsset:
        """Replace whichever of *tags*, *description* and *alt_text* are given."""
        asset = await self._owned_asset(project_id, user_id, asset_id)

        error = validate_text_fields(tags, description, alt_text)
        if error:
            raise InputRejected(error)

        if tags is not None:
            asset.tags = clean_tags(tags)
        if description is not None:
            asset.description = description
        if alt_text is not None:
            asset.alt_text = alt_text
        asset.updated_at = _utcnow()
        return await self.repository.update(asset)

    async def delete_media(self, project_id: str, user_id: str, asset_id: str) -> None:
        """Delete an asset; storage cleanup is best-effort."""
        asset = await self._owned_asset(project_id, user_id, asset_id)
        paths = [asset.filename]
        if asset.metadata.get("thumbnail_path"):
            paths.append(asset.metadata["thumbnail_path"])
        try:
            await self.storage.delete(paths)
        except Exception as exc:
            logger.warning("Storage cleanup failed for %s: %s", asset_id, exc)
        await self.repository.delete(asset_id)
        logger.info("Media deleted", extra={"project_id": project_id, "asset_id": asset_id})

    async def increment_usage_count(self, project_id: str, user_id: str, asset_id: str) -> MediaAsset:
        await self._owned_asset(project_id, user_id, asset_id)
        asset = await self.repository.increment_usage(asset_id)
        if asset is None:
            raise AssetNotFound(f"Media asset {asset_id} not found")
        return asset

    async def check_storage_quota(self, project_id: str) -> StorageQuota:
        return await self.quota.check_storage_quota(project_id)

    async def tag_with_ai(self, project_id: str, user_id: str, asset_id: str) -> MediaAsset:
        """Merge AI tags into the asset's existing tags.

        Returns the asset unchanged when no classifier is configured.
        Classifier errors propagate.
        """
        asset = await self._owned_asset(project_id, user_id, asset_id)
        if self.classifier is None:
            return asset
        ai_tags = await self.classifier(asset.storage_url)
        asset.tags = clean_tags([*asset.tags, *ai_tags])
        asset.updated_at = _utcnow()
        return await self.repository.update(asset)

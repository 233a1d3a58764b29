"""Project media library endpoints: list, upload, website extraction and edits."""

import base64
import binascii
import logging
from typing import List

import httpx
from fastapi import APIRouter, Depends, HTTPException, Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from ingestly.dependencies import get_media_manager, get_user_id
from ingestly.errors import AssetNotFound, InputRejected
from ingestly.models.candidate import ExtractedImageCandidate
from ingestly.models.extract_request import ExtractRequest
from ingestly.models.extract_response import ExtractResponse
from ingestly.models.media_asset import MediaAsset
from ingestly.models.media_response import MediaListResponse, StorageQuotaInfo
from ingestly.models.update_request import MediaUpdateRequest
from ingestly.models.upload_request import UploadRequest
from ingestly.services.media_manager import MediaManager

logger = logging.getLogger(__name__)

limiter = Limiter(key_func=get_remote_address)
router = APIRouter(prefix="/projects/{project_id}/media", tags=["media"])


@router.get("", response_model=MediaListResponse, summary="List a project's media")
async def list_media(
    project_id: str,
    user_id: str = Depends(get_user_id),
    manager: MediaManager = Depends(get_media_manager),
) -> MediaListResponse:
    assets = await manager.get_project_media(project_id, user_id)
    quota = await manager.check_storage_quota(project_id)
    return MediaListResponse(assets=assets, quota=StorageQuotaInfo(**quota._asdict()))


@router.post(
    "/upload",
    response_model=MediaAsset,
    status_code=201,
    summary="Upload an image",
    description=(
        "Accepts a base64-encoded JPEG, PNG, WebP or GIF.  The image is "
        "validated, stripped of all metadata and re-encoded before it is "
        "stored; GIFs are stored as PNG.  AI tags are merged into the "
        "supplied tags when a classifier is configured."
    ),
)
@limiter.limit("20 per 15 minutes")
async def upload_media(
    request: Request,
    project_id: str,
    body: UploadRequest,
    user_id: str = Depends(get_user_id),
    manager: MediaManager = Depends(get_media_manager),
) -> MediaAsset:
    data = _decode_file(body.file)
    logger.info(
        "Upload request received",
        extra={"project_id": project_id, "upload_filename": body.filename, "size": len(data)},
    )

    try:
        asset = await manager.upload_media(
            project_id,
            user_id,
            data,
            body.filename,
            body.file_type,
            tags=body.tags,
            description=body.description,
            alt_text=body.alt_text,
        )
    except InputRejected as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    try:
        asset = await manager.tag_with_ai(project_id, user_id, asset.id)
    except Exception as exc:
        # The asset is already stored; tagging is best-effort
        logger.warning("AI tagging skipped for %s: %s", asset.id, exc)

    return asset


@router.post(
    "/extract",
    response_model=ExtractResponse,
    summary="Extract images from a website",
    description=(
        "Crawls up to 10 pages of *website_url* (same site only), collects "
        "image candidates and saves up to `max_images` of them into the "
        "project.  Per-image failures are reported in `errors` and `skipped` "
        "instead of failing the request."
    ),
)
@limiter.limit("10/hour")
async def extract_media(
    request: Request,
    project_id: str,
    body: ExtractRequest,
    user_id: str = Depends(get_user_id),
    manager: MediaManager = Depends(get_media_manager),
) -> ExtractResponse:
    url = body.website_url
    logger.info(
        "Extract request received",
        extra={"project_id": project_id, "url": url, "max_images": body.max_images},
    )

    candidates = await _crawl(manager, url, body.max_images)
    result = await manager.save_extracted_images(
        project_id, user_id, candidates, max_images=body.max_images
    )

    return ExtractResponse(
        message=f"Extracted {len(result.saved)} images from website",
        saved=result.saved,
        errors=result.errors,
        skipped=result.skipped,
        stats=result.stats,
        total_found=len(candidates),
    )


@router.patch("/{asset_id}", response_model=MediaAsset, summary="Update media metadata")
async def update_media(
    project_id: str,
    asset_id: str,
    body: MediaUpdateRequest,
    user_id: str = Depends(get_user_id),
    manager: MediaManager = Depends(get_media_manager),
) -> MediaAsset:
    try:
        return await manager.update_media_metadata(
            project_id,
            user_id,
            asset_id,
            tags=body.tags,
            description=body.description,
            alt_text=body.alt_text,
        )
    except AssetNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except InputRejected as exc:
        raise HTTPException(status_code=400, detail=str(exc))


@router.delete("/{asset_id}", summary="Delete a media asset")
async def delete_media(
    project_id: str,
    asset_id: str,
    user_id: str = Depends(get_user_id),
    manager: MediaManager = Depends(get_media_manager),
) -> dict:
    try:
        await manager.delete_media(project_id, user_id, asset_id)
    except AssetNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return {"message": "Media deleted successfully"}


@router.post("/{asset_id}/usage", response_model=MediaAsset, summary="Record a media use")
async def record_usage(
    project_id: str,
    asset_id: str,
    user_id: str = Depends(get_user_id),
    manager: MediaManager = Depends(get_media_manager),
) -> MediaAsset:
    try:
        return await manager.increment_usage_count(project_id, user_id, asset_id)
    except AssetNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc))


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _decode_file(payload: str) -> bytes:
    """Decode a base64 upload, accepting an optional ``data:...;base64,`` prefix."""
    if payload.startswith("data:"):
        _, _, payload = payload.partition(",")
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError):
        raise HTTPException(status_code=400, detail="File is not valid base64 data.")


async def _crawl(manager: MediaManager, url: str, max_images: int) -> List[ExtractedImageCandidate]:
    """Run the crawl and propagate seed-page errors as HTTP exceptions."""
    try:
        return await manager.extract_images_from_website(url, max_images=max_images)
    except ValueError as exc:
        logger.warning("Invalid or blocked URL: %s – %s", url, exc)
        raise HTTPException(status_code=400, detail=str(exc))
    except httpx.TimeoutException:
        logger.error("Timeout fetching URL: %s", url)
        raise HTTPException(status_code=504, detail="The target URL timed out.")
    except httpx.HTTPStatusError as exc:
        logger.error("HTTP error fetching URL %s: %s", url, exc)
        raise HTTPException(
            status_code=502, detail=f"Target URL returned HTTP {exc.response.status_code}."
        )
    except (httpx.RequestError, RuntimeError) as exc:
        logger.error("Error fetching URL %s: %s", url, exc)
        raise HTTPException(status_code=502, detail=str(exc))

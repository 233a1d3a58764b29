from typing import List

from pydantic import BaseModel

from ingestly.models.media_asset import MediaAsset


class StorageQuotaInfo(BaseModel):
    allowed: bool
    current_usage: float  # MB
    limit: float  # MB


class MediaListResponse(BaseModel):
    assets: List[MediaAsset]
    quota: StorageQuotaInfo

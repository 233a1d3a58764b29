from typing import Dict, List, Literal

from pydantic import BaseModel, Field

from ingestly.models.media_asset import MediaAsset

SkipReason = Literal["duplicate", "data_uri", "too_small", "size_limit"]


class SaveError(BaseModel):
    url: str
    error: str


class SkippedCandidate(BaseModel):
    url: str
    reason: SkipReason


class SaveStats(BaseModel):
    """Aggregate counters for one save run."""

    candidates: int = 0
    processed: int = 0
    saved: int = 0
    errors: int = 0
    bytes_downloaded: int = 0
    bytes_saved: int = 0
    skipped: Dict[str, int] = Field(
        default_factory=lambda: {"duplicate": 0, "data_uri": 0, "too_small": 0, "size_limit": 0}
    )


class ExtractResponse(BaseModel):
    message: str
    saved: List[MediaAsset]
    errors: List[SaveError]
    skipped: List[SkippedCandidate]
    stats: SaveStats
    total_found: int

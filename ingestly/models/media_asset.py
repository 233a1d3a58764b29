import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

MediaSource = Literal["upload", "website_extraction", "ai_generated"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MediaAsset(BaseModel):
    """A persisted, security-validated image belonging to one project."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    project_id: str
    user_id: str
    filename: str  # object-storage path
    original_filename: str  # sanitized upload name
    file_type: str
    file_size: int
    storage_url: str
    thumbnail_url: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    source: MediaSource
    source_url: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    description: Optional[str] = None
    alt_text: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    usage_count: int = 0
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

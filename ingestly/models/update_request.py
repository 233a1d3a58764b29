from typing import List, Optional

from pydantic import BaseModel, Field


class MediaUpdateRequest(BaseModel):
    tags: Optional[List[str]] = Field(default=None, max_length=20)
    description: Optional[str] = None
    alt_text: Optional[str] = None

import math
from typing import List, Optional

from pydantic import BaseModel, Field

from ingestly.services.quota import BYTES_PER_MB, MAX_FILE_SIZE_MB

# Base64 length of a file at the per-file ceiling, plus room for a data: prefix
MAX_ENCODED_FILE_LENGTH = 4 * math.ceil(MAX_FILE_SIZE_MB * BYTES_PER_MB / 3) + 100


class UploadRequest(BaseModel):
    file: str = Field(
        max_length=MAX_ENCODED_FILE_LENGTH,
        description="Base64-encoded image bytes. A `data:image/...;base64,` prefix is accepted.",
    )
    filename: str = Field(min_length=1, max_length=255)
    file_type: str = Field(examples=["image/png", "image/jpeg"])
    tags: List[str] = Field(default_factory=list, max_length=20)
    description: Optional[str] = None
    alt_text: Optional[str] = None

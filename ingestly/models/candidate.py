from typing import Optional

from pydantic import BaseModel


class ExtractedImageCandidate(BaseModel):
    """An unvalidated image reference discovered while crawling a site."""

    url: str
    alt_text: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    context: Optional[str] = None  # nearby heading/paragraph text, truncated
    is_logo: bool = False
    strategy: str = ""  # name of the extraction strategy that found it

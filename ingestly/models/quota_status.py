from pydantic import BaseModel


class WindowUsage(BaseModel):
    requests: int
    tokens: int
    limit: int
    token_limit: int


class QuotaStatus(BaseModel):
    """Current AI-call usage against the hourly and daily ceilings."""

    hourly: WindowUsage
    daily: WindowUsage

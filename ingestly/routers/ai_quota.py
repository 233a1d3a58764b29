from fastapi import APIRouter, Depends

from ingestly.dependencies import get_rate_limiter
from ingestly.models.quota_status import QuotaStatus
from ingestly.services.rate_limiter import RateLimiter

router = APIRouter(prefix="/ai", tags=["ai"])


@router.get("/quota", response_model=QuotaStatus, summary="Current AI usage against its ceilings")
async def ai_quota(limiter: RateLimiter = Depends(get_rate_limiter)) -> QuotaStatus:
    return limiter.get_status()

import logging
import logging.config

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from ingestly.errors import ResourceExceeded
from ingestly.routers.ai_quota import router as ai_quota_router
from ingestly.routers.media import limiter, router as media_router

logging.config.dictConfig(
    {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {
                "format": '{"time": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s"}',
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "json",
            },
        },
        "root": {"level": "INFO", "handlers": ["console"]},
    }
)

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Ingestly – Media Ingestion API",
    description=(
        "Validates, sanitizes and stores project images uploaded directly or "
        "extracted from a website, under per-file, per-project and per-run quotas."
    ),
    version="1.0.0",
)

# Rate-limiting state
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(ResourceExceeded)
async def resource_exceeded_handler(request: Request, exc: ResourceExceeded) -> JSONResponse:
    logger.warning("Quota exceeded for %s: %s", request.url.path, exc)
    content = {
        "detail": str(exc),
        "current_usage": exc.current_usage,
        "limit": exc.limit,
        "unit": exc.unit,
    }
    if exc.retry_after is not None:
        return JSONResponse(
            status_code=429, content=content, headers={"Retry-After": str(exc.retry_after)}
        )
    return JSONResponse(status_code=413, content=content)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception for %s", request.url)
    return JSONResponse(status_code=500, content={"detail": "An unexpected error occurred."})


app.include_router(media_router)
app.include_router(ai_quota_router)


@app.get("/", summary="Health check")
async def root() -> dict:
    return {"message": "Hello from Ingestly"}

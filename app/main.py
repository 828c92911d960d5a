"""Media processing and secure delivery service."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from .config import AppMode, get_settings
from .db import init_db
from .exceptions import MediaServiceError
from .logging_middleware import UsageLoggingMiddleware, configure_logging, configure_usage_logging
from .processing.dispatcher import dispatcher
from .rate_limit import limiter
from .routes.delivery import router as delivery_router
from .routes.media import public_router as media_public_router
from .routes.media import router as media_router

logger = logging.getLogger("media.app")

openapi_tags = [
    {"name": "Media", "description": "Upload media and follow its processing"},
    {"name": "Delivery", "description": "Signed, time-limited delivery URLs"},
]

settings = get_settings()
configure_logging(settings.LOG_LEVEL)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize the database and run the processing workers."""
    if settings.APP_MODE == AppMode.SAAS:
        for problem in settings.validate_saas_config():
            logger.warning("Configuration: %s", problem)

    await init_db()
    await dispatcher.start()
    try:
        yield
    finally:
        await dispatcher.stop()


app = FastAPI(
    title="Media Service",
    version="1.0.0",
    description="Media intake, conversion tracking and secure delivery",
    openapi_tags=openapi_tags,
    lifespan=lifespan,
)

# Add rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(MediaServiceError)
async def media_service_error_handler(request: Request, exc: MediaServiceError):
    """Translate domain errors into {"error": message} responses."""
    content = {"error": exc.message}
    reason_code = getattr(exc, "reason_code", None)
    if reason_code:
        content["reason_code"] = reason_code
    if exc.detail:
        content["detail"] = exc.detail
    return JSONResponse(status_code=exc.status_code, content=content)


app.include_router(media_router)
app.include_router(media_public_router)
app.include_router(delivery_router)

configure_usage_logging(
    destination=settings.USAGE_LOG_DESTINATION,
    file_path=settings.USAGE_LOG_FILE_PATH,
)
app.add_middleware(UsageLoggingMiddleware)


@app.get("/health", tags=["Media"])
async def health():
    return {"status": "ok", "mode": settings.APP_MODE.value}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)

"""Logging setup and structured usage logging middleware.

Usage records are written in Elasticsearch-compatible JSON format (ECS - Elastic
Common Schema) with a fire-and-forget task so responses are never held up.
"""

import asyncio
import contextlib
import json
import logging
import re
from datetime import UTC, datetime
from pathlib import Path

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

usage_logger = logging.getLogger("media.usage")

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Set level and format for the service loggers."""
    media_logger = logging.getLogger("media")
    media_logger.setLevel(level.upper())
    if not logging.getLogger().handlers and not media_logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        media_logger.addHandler(handler)


class UsageLoggingMiddleware(BaseHTTPMiddleware):
    """Logs API and delivery calls in ECS JSON without blocking requests."""

    # /api/v1/media/{media_id}/...
    MEDIA_ID_PATTERN = re.compile(r"/api/v1/media/([0-9a-fA-F-]{36})")

    LOGGED_PREFIXES = ("/api/", "/media/files/")

    async def dispatch(self, request: Request, call_next) -> Response:
        if not request.url.path.startswith(self.LOGGED_PREFIXES):
            return await call_next(request)

        # Skip health checks and similar
        if request.url.path in ("/api/health", "/api/v1/health"):
            return await call_next(request)

        start_time = datetime.now(UTC)

        response = await call_next(request)

        end_time = datetime.now(UTC)
        duration_ms = (end_time - start_time).total_seconds() * 1000

        # Set by require_auth when the route authenticated the caller
        user_id = getattr(request.state, "user_id", None) if hasattr(request, "state") else None

        media_id = None
        match = self.MEDIA_ID_PATTERN.search(request.url.path)
        if match:
            media_id = match.group(1)

        log_entry = {
            "@timestamp": start_time.isoformat(),
            "event": {
                "category": "api",
                "action": request.method.lower(),
                "duration": int(duration_ms * 1_000_000),  # nanoseconds for ECS
                "outcome": "success" if response.status_code < 400 else "failure",
            },
            "http": {
                "request": {
                    "method": request.method,
                },
                "response": {
                    "status_code": response.status_code,
                },
            },
            "url": {
                "path": request.url.path,
                # Signed query strings are credentials
                "query": None if request.url.path.startswith("/media/files/") else (str(request.url.query) or None),
            },
            "client": {
                "ip": request.client.host if request.client else None,
            },
            "user_agent": {
                "original": request.headers.get("user-agent"),
            },
        }

        if user_id:
            log_entry["user"] = {"id": user_id}

        if media_id:
            log_entry["media"] = {"id": media_id}

        asyncio.create_task(self._write_log(log_entry))

        return response

    async def _write_log(self, entry: dict) -> None:
        with contextlib.suppress(Exception):
            usage_logger.info(json.dumps(entry, default=str))


def configure_usage_logging(destination: str = "stdout", file_path: str | None = None) -> None:
    """Configure the usage logger based on settings.

    Args:
        destination: Where to log - "stdout", "file", or "external"
        file_path: Path to log file (required if destination is "file")
    """
    logger = logging.getLogger("media.usage")
    logger.setLevel(logging.INFO)
    logger.handlers.clear()

    # Usage records are not mixed into the service log
    logger.propagate = False

    if destination == "stdout":
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(message)s"))
        logger.addHandler(handler)
    elif destination == "file" and file_path:
        log_path = Path(file_path)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        handler = logging.FileHandler(file_path)
        handler.setFormatter(logging.Formatter("%(message)s"))
        logger.addHandler(handler)
    # "external" means no local handler - logs go to external service via separate config

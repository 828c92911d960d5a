"""Secure delivery gateway.

Turns a storage path plus an authenticated caller into a short-lived signed
URL. The order is fixed: validate the path, ask the access decider, and only
then ask storage to sign. The gateway keeps no state between requests.
"""

import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta

from .auth import AuthUser
from .authz import AccessDecider, get_access_decider
from .config import Settings, get_settings
from .db import get_database
from .db.base import DatabaseBackend
from .exceptions import (
    AccessError,
    InvalidPathError,
    MissingPathError,
    TransientInfraError,
)
from .models_media import utc_now
from .planner import VIDEO_FORMATS
from .storage import StorageBackend, TransformOptions, get_storage, validate_storage_path
from .variants import variant_for_height

logger = logging.getLogger("media.delivery")


@dataclass
class SignedURLResult:
    url: str
    expires_at: datetime
    cache_control: str
    processed: bool = False

    def to_response(self) -> dict:
        body = {"success": True, "url": self.url, "expires_at": self.expires_at.isoformat()}
        if self.processed:
            body["processed"] = True
        return body


def _parse_dimension(name: str, value: str | None) -> int | None:
    if value is None or value == "":
        return None
    try:
        parsed = int(value)
    except ValueError:
        logger.debug("Ignoring non-numeric %s parameter: %r", name, value)
        return None
    # Zero or negative values are treated as not requested
    return parsed if parsed > 0 else None


def parse_transform(
    width: str | None,
    height: str | None,
    quality: str | None = None,
    settings: Settings | None = None,
) -> TransformOptions | None:
    """Build transform options from query parameters.

    Returns None unless a width or height was requested. Values that do not
    parse as positive integers are ignored rather than rejected.
    """
    settings = settings or get_settings()
    w = _parse_dimension("width", width)
    h = _parse_dimension("height", height)
    if w is None and h is None:
        return None
    q = _parse_dimension("quality", quality) or settings.DEFAULT_TRANSFORM_QUALITY
    return TransformOptions(width=w, height=h, quality=min(q, 100))


def is_video_path(storage_path: str) -> bool:
    return os.path.splitext(storage_path)[1].lower().lstrip(".") in VIDEO_FORMATS


class SecureDeliveryGateway:
    """Issues signed delivery URLs for authorized callers."""

    def __init__(
        self,
        decider: AccessDecider | None = None,
        storage: StorageBackend | None = None,
        db: DatabaseBackend | None = None,
        settings: Settings | None = None,
    ):
        self.decider = decider or get_access_decider()
        self._storage = storage
        self._db = db
        self.settings = settings or get_settings()

    @property
    def storage(self) -> StorageBackend:
        return self._storage or get_storage()

    @property
    def db(self) -> DatabaseBackend:
        return self._db or get_database()

    @property
    def cache_control(self) -> str:
        return f"public, max-age={self.settings.DELIVERY_CACHE_MAX_AGE}"

    async def issue_delivery_url(
        self,
        storage_path: str | None,
        caller: AuthUser | None,
        transform: TransformOptions | None = None,
    ) -> SignedURLResult:
        """Authorize the caller for storage_path and sign a URL for it.

        Raises:
            MissingPathError: no path was given. The decider is not consulted.
            InvalidPathError: the path escapes the storage root.
            AccessError: the decider denied the request.
            TransientInfraError: the access check or storage failed.
        """
        if not storage_path:
            raise MissingPathError()
        try:
            storage_path = validate_storage_path(storage_path)
        except ValueError:
            raise InvalidPathError() from None

        ttl = self.settings.SIGNED_URL_TTL_SECONDS
        try:
            grant = await self.decider.decide(storage_path, caller, ttl)
        except Exception:
            logger.exception("Access check failed for %s", storage_path)
            raise TransientInfraError() from None
        if not grant.granted:
            logger.info(
                "Access denied for path %s (caller=%s): %s",
                storage_path,
                caller.user_id if caller else None,
                grant.reason,
            )
            raise AccessError(grant.reason or "Access denied")

        target_path = storage_path
        if is_video_path(storage_path):
            # Videos are never transformed; a requested height picks a variant
            if transform and transform.height:
                target_path = await self._resolve_variant(storage_path, transform.height)
            transform = None

        try:
            url = await self.storage.create_signed_url(target_path, ttl, transform)
        except Exception:
            logger.exception("Error generating signed URL for %s", target_path)
            raise TransientInfraError() from None

        return SignedURLResult(
            url=url,
            expires_at=utc_now() + timedelta(seconds=ttl),
            cache_control=self.cache_control,
            processed=target_path != storage_path,
        )

    async def _resolve_variant(self, storage_path: str, height: int) -> str:
        try:
            item = await self.db.get_media_item_by_path(storage_path)
        except Exception:
            logger.exception("Variant lookup failed for %s", storage_path)
            raise TransientInfraError() from None
        if item is None:
            return storage_path
        return variant_for_height(item, height) or storage_path

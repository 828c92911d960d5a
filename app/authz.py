"""Access decisions for stored objects.

The delivery gateway asks a decider once per request. Decisions are caller-
and path-specific and are never cached.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass

from .auth import AuthUser
from .config import get_settings
from .db import get_database
from .db.base import DatabaseBackend
from .models_media import MediaItem


@dataclass(frozen=True)
class AccessGrant:
    """Answer to a single delivery request."""

    granted: bool
    expires_in_seconds: int
    reason: str | None = None


def can_access_media(user: AuthUser | None, item: MediaItem) -> bool:
    """Check if a user can read a media item and everything derived from it."""
    settings = get_settings()

    if settings.is_self_hosted:
        return True

    if not user:
        return False

    # Owner can access
    if item.owner_id == user.user_id:
        return True

    # Org members can access org media
    return bool(item.org_id and item.org_id == user.org_id)


class AccessDecider(ABC):
    """External authorization decision keyed on (path, caller)."""

    @abstractmethod
    async def decide(
        self, storage_path: str, caller: AuthUser | None, expires_in_seconds: int
    ) -> AccessGrant:
        pass


class OwnershipAccessDecider(AccessDecider):
    """Grants access to objects under a media item the caller owns."""

    def __init__(self, db: DatabaseBackend | None = None):
        self._db = db

    async def decide(
        self, storage_path: str, caller: AuthUser | None, expires_in_seconds: int
    ) -> AccessGrant:
        if caller is None:
            return AccessGrant(False, expires_in_seconds, "Authentication required")

        db = self._db or get_database()
        item = await db.get_media_item_by_path(storage_path)
        if item is None:
            return AccessGrant(False, expires_in_seconds, "Access denied")
        if not can_access_media(caller, item):
            return AccessGrant(False, expires_in_seconds, "Access denied - not the owner")
        return AccessGrant(True, expires_in_seconds)


def get_access_decider() -> AccessDecider:
    """FastAPI dependency; override in tests or to plug in another policy."""
    return OwnershipAccessDecider()

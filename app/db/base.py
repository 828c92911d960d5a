"""Abstract database interface for the media service.

All database backends must implement this interface.
"""

import json
import posixpath
from abc import ABC, abstractmethod
from datetime import datetime

from ..models_media import ConversionPlan, MediaItem, ProcessingMetrics, ProcessingStatus

MEDIA_COLUMNS = (
    "id",
    "media_type",
    "original_filename",
    "mime_type",
    "original_size_bytes",
    "storage_path",
    "path_prefix",
    "fingerprint",
    "owner_id",
    "org_id",
    "processing_status",
    "processing_path",
    "processing_error",
    "metrics",
    "quality_variants",
    "thumbnail_path",
    "processed_path",
    "width",
    "height",
    "plan",
    "outcome_sequence",
    "status_changed_at",
    "created_at",
    "updated_at",
)


def path_prefix(storage_path: str) -> str:
    """Directory that owns every object derived from this upload."""
    return posixpath.dirname(storage_path).rstrip("/") + "/"


def item_to_row(item: MediaItem) -> dict:
    """Flatten a MediaItem into column values. Nested values are JSON text."""
    return {
        "id": item.id,
        "media_type": item.media_type.value,
        "original_filename": item.original_filename,
        "mime_type": item.mime_type,
        "original_size_bytes": item.original_size_bytes,
        "storage_path": item.storage_path,
        "path_prefix": path_prefix(item.storage_path),
        "fingerprint": item.fingerprint,
        "owner_id": item.owner_id,
        "org_id": item.org_id,
        "processing_status": item.processing_status.value,
        "processing_path": item.processing_path.value if item.processing_path else None,
        "processing_error": item.processing_error,
        "metrics": item.metrics.model_dump_json() if item.metrics else None,
        "quality_variants": json.dumps(item.quality_variants),
        "thumbnail_path": item.thumbnail_path,
        "processed_path": item.processed_path,
        "width": item.width,
        "height": item.height,
        "plan": item.plan.model_dump_json() if item.plan else None,
        "outcome_sequence": item.outcome_sequence,
        "status_changed_at": item.status_changed_at,
        "created_at": item.created_at,
        "updated_at": item.updated_at,
    }


def row_to_item(row: dict) -> MediaItem:
    """Rebuild a MediaItem from a database row."""
    data = dict(row)
    data.pop("path_prefix", None)
    if data.get("metrics"):
        data["metrics"] = ProcessingMetrics.model_validate_json(data["metrics"])
    if data.get("plan"):
        data["plan"] = ConversionPlan.model_validate_json(data["plan"])
    data["quality_variants"] = json.loads(data.get("quality_variants") or "{}")
    return MediaItem.model_validate(data)


class DatabaseBackend(ABC):
    """Abstract base class for database backends."""

    @abstractmethod
    async def init(self) -> None:
        """Initialize the database (create tables, indexes, etc.)."""
        pass

    @abstractmethod
    async def create_media_item(self, item: MediaItem) -> None:
        """Insert a new media item."""
        pass

    @abstractmethod
    async def get_media_item(self, media_id: str) -> MediaItem | None:
        """Get a media item by its ID."""
        pass

    @abstractmethod
    async def get_media_item_by_path(self, storage_path: str) -> MediaItem | None:
        """Get the media item whose storage directory contains this path."""
        pass

    @abstractmethod
    async def save_media_item(self, item: MediaItem) -> bool:
        """Persist every mutable field of an item. Returns True if it existed."""
        pass

    @abstractmethod
    async def list_media_items(
        self,
        limit: int | None = None,
        offset: int = 0,
        owner_id: str | None = None,
        org_id: str | None = None,
        status: ProcessingStatus | None = None,
    ) -> list[MediaItem]:
        """List items, newest first, with optional ownership and status filters."""
        pass

    @abstractmethod
    async def count_media_items(
        self,
        owner_id: str | None = None,
        org_id: str | None = None,
        status: ProcessingStatus | None = None,
    ) -> int:
        """Count items matching the filters."""
        pass

    @abstractmethod
    async def list_in_flight_items(self, changed_before: datetime) -> list[MediaItem]:
        """Items in processing/server_processing whose status is older than the cutoff."""
        pass

    @abstractmethod
    async def delete_media_item(self, media_id: str) -> bool:
        """Delete an item. Returns True if deleted."""
        pass

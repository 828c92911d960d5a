"""SQLite database backend for the media service.

Used in self-hosted mode.
"""

from datetime import datetime
from pathlib import Path

import aiosqlite

from ..config import get_settings
from ..models_media import MediaItem, ProcessingStatus
from .base import MEDIA_COLUMNS, DatabaseBackend, item_to_row, row_to_item


def _to_sql(row: dict) -> dict:
    """SQLite stores timestamps as ISO text."""
    return {k: v.isoformat() if isinstance(v, datetime) else v for k, v in row.items()}


class SQLiteBackend(DatabaseBackend):
    """SQLite implementation of the database backend."""

    def __init__(self, db_path: str | Path | None = None):
        self._db_path: Path | None = Path(db_path) if db_path else None

    @property
    def db_path(self) -> Path:
        """Get the database path from config."""
        if self._db_path is None:
            settings = get_settings()
            path = Path(settings.SQLITE_PATH)
            if not path.is_absolute():
                path = Path(__file__).parent.parent.parent / path
            self._db_path = path
        return self._db_path

    async def init(self) -> None:
        """Initialize the database and create tables."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("""
                CREATE TABLE IF NOT EXISTS media_items (
                    id TEXT PRIMARY KEY,
                    media_type TEXT NOT NULL,
                    original_filename TEXT NOT NULL,
                    mime_type TEXT NOT NULL,
                    original_size_bytes INTEGER NOT NULL,
                    storage_path TEXT NOT NULL,
                    path_prefix TEXT NOT NULL,
                    fingerprint TEXT NOT NULL,
                    owner_id TEXT,
                    org_id TEXT,
                    processing_status TEXT NOT NULL DEFAULT 'pending',
                    processing_path TEXT,
                    processing_error TEXT,
                    metrics TEXT,
                    quality_variants TEXT NOT NULL DEFAULT '{}',
                    thumbnail_path TEXT,
                    processed_path TEXT,
                    width INTEGER,
                    height INTEGER,
                    plan TEXT,
                    outcome_sequence INTEGER NOT NULL DEFAULT 0,
                    status_changed_at TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            await db.execute("""
                CREATE INDEX IF NOT EXISTS idx_media_items_owner ON media_items(owner_id)
            """)
            await db.execute("""
                CREATE INDEX IF NOT EXISTS idx_media_items_status
                ON media_items(processing_status, status_changed_at)
            """)
            await db.commit()

    async def create_media_item(self, item: MediaItem) -> None:
        """Insert a new media item."""
        row = _to_sql(item_to_row(item))
        placeholders = ", ".join("?" for _ in MEDIA_COLUMNS)
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                f"INSERT INTO media_items ({', '.join(MEDIA_COLUMNS)}) VALUES ({placeholders})",
                [row[column] for column in MEDIA_COLUMNS],
            )
            await db.commit()

    async def get_media_item(self, media_id: str) -> MediaItem | None:
        """Get a media item by its ID."""
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                "SELECT * FROM media_items WHERE id = ?", (media_id,)
            ) as cursor:
                row = await cursor.fetchone()
                return row_to_item(dict(row)) if row else None

    async def get_media_item_by_path(self, storage_path: str) -> MediaItem | None:
        """Get the media item whose storage directory contains this path."""
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                """
                SELECT * FROM media_items
                WHERE substr(?, 1, length(path_prefix)) = path_prefix
                ORDER BY length(path_prefix) DESC
                LIMIT 1
                """,
                (storage_path,),
            ) as cursor:
                row = await cursor.fetchone()
                return row_to_item(dict(row)) if row else None

    async def save_media_item(self, item: MediaItem) -> bool:
        """Persist every mutable field of an item."""
        row = _to_sql(item_to_row(item))
        columns = [c for c in MEDIA_COLUMNS if c != "id"]
        assignments = ", ".join(f"{c} = ?" for c in columns)
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(
                f"UPDATE media_items SET {assignments} WHERE id = ?",
                [row[c] for c in columns] + [item.id],
            )
            await db.commit()
            return cursor.rowcount > 0

    @staticmethod
    def _filters(
        owner_id: str | None, org_id: str | None, status: ProcessingStatus | None
    ) -> tuple[str, list]:
        conditions = []
        params: list = []

        if owner_id is not None:
            conditions.append("(owner_id = ? OR org_id = ?)")
            params.extend([owner_id, org_id])
        if status is not None:
            conditions.append("processing_status = ?")
            params.append(status.value)

        where_clause = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        return where_clause, params

    async def list_media_items(
        self,
        limit: int | None = None,
        offset: int = 0,
        owner_id: str | None = None,
        org_id: str | None = None,
        status: ProcessingStatus | None = None,
    ) -> list[MediaItem]:
        """List items with optional pagination and filtering."""
        where_clause, params = self._filters(owner_id, org_id, status)
        query = f"SELECT * FROM media_items {where_clause} ORDER BY created_at DESC"
        if limit:
            query += f" LIMIT {int(limit)} OFFSET {int(offset)}"

        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(query, params) as cursor:
                rows = await cursor.fetchall()
                return [row_to_item(dict(row)) for row in rows]

    async def count_media_items(
        self,
        owner_id: str | None = None,
        org_id: str | None = None,
        status: ProcessingStatus | None = None,
    ) -> int:
        """Count items matching the filters."""
        where_clause, params = self._filters(owner_id, org_id, status)
        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute(
                f"SELECT COUNT(*) FROM media_items {where_clause}", params
            ) as cursor:
                row = await cursor.fetchone()
                return row[0] if row else 0

    async def list_in_flight_items(self, changed_before: datetime) -> list[MediaItem]:
        """Items still processing whose status changed before the cutoff."""
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                """
                SELECT * FROM media_items
                WHERE processing_status IN (?, ?) AND status_changed_at < ?
                """,
                (
                    ProcessingStatus.PROCESSING.value,
                    ProcessingStatus.SERVER_PROCESSING.value,
                    changed_before.isoformat(),
                ),
            ) as cursor:
                rows = await cursor.fetchall()
                return [row_to_item(dict(row)) for row in rows]

    async def delete_media_item(self, media_id: str) -> bool:
        """Delete a media item."""
        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute("DELETE FROM media_items WHERE id = ?", (media_id,))
            await db.commit()
            return cursor.rowcount > 0

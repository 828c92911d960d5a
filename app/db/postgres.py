"""PostgreSQL database backend for the media service.

Used in SaaS mode with Neon or other PostgreSQL providers.
"""

from datetime import datetime

import asyncpg

from ..config import get_settings
from ..models_media import MediaItem, ProcessingStatus
from .base import MEDIA_COLUMNS, DatabaseBackend, item_to_row, row_to_item


class PostgresBackend(DatabaseBackend):
    """PostgreSQL implementation of the database backend."""

    def __init__(self):
        self._pool: asyncpg.Pool | None = None

    async def _get_pool(self) -> asyncpg.Pool:
        """Get or create the connection pool."""
        if self._pool is None:
            settings = get_settings()
            if not settings.DATABASE_URL:
                raise ValueError("DATABASE_URL is required for PostgreSQL backend")
            self._pool = await asyncpg.create_pool(settings.DATABASE_URL)
        return self._pool

    async def init(self) -> None:
        """Initialize the database and create tables."""
        pool = await self._get_pool()

        async with pool.acquire() as conn:
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS media_items (
                    id TEXT PRIMARY KEY,
                    media_type TEXT NOT NULL,
                    original_filename TEXT NOT NULL,
                    mime_type TEXT NOT NULL,
                    original_size_bytes BIGINT NOT NULL,
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
                    status_changed_at TIMESTAMPTZ NOT NULL,
                    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
                )
            """)
            await conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_media_items_owner ON media_items(owner_id)"
            )
            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_media_items_status
                ON media_items(processing_status, status_changed_at)
            """)

    async def create_media_item(self, item: MediaItem) -> None:
        """Insert a new media item."""
        row = item_to_row(item)
        placeholders = ", ".join(f"${i}" for i in range(1, len(MEDIA_COLUMNS) + 1))
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            await conn.execute(
                f"INSERT INTO media_items ({', '.join(MEDIA_COLUMNS)}) VALUES ({placeholders})",
                *[row[column] for column in MEDIA_COLUMNS],
            )

    async def get_media_item(self, media_id: str) -> MediaItem | None:
        """Get a media item by its ID."""
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM media_items WHERE id = $1", media_id)
            return row_to_item(dict(row)) if row else None

    async def get_media_item_by_path(self, storage_path: str) -> MediaItem | None:
        """Get the media item whose storage directory contains this path."""
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT * FROM media_items
                WHERE left($1, length(path_prefix)) = path_prefix
                ORDER BY length(path_prefix) DESC
                LIMIT 1
                """,
                storage_path,
            )
            return row_to_item(dict(row)) if row else None

    async def save_media_item(self, item: MediaItem) -> bool:
        """Persist every mutable field of an item."""
        row = item_to_row(item)
        columns = [c for c in MEDIA_COLUMNS if c != "id"]
        assignments = ", ".join(f"{c} = ${i}" for i, c in enumerate(columns, start=1))
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            result = await conn.execute(
                f"UPDATE media_items SET {assignments} WHERE id = ${len(columns) + 1}",
                *[row[c] for c in columns],
                item.id,
            )
            return result != "UPDATE 0"

    @staticmethod
    def _filters(
        owner_id: str | None, org_id: str | None, status: ProcessingStatus | None
    ) -> tuple[str, list]:
        conditions = []
        params: list = []

        if owner_id is not None:
            params.extend([owner_id, org_id])
            conditions.append(f"(owner_id = ${len(params) - 1} OR org_id = ${len(params)})")
        if status is not None:
            params.append(status.value)
            conditions.append(f"processing_status = ${len(params)}")

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

        pool = await self._get_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(query, *params)
            return [row_to_item(dict(row)) for row in rows]

    async def count_media_items(
        self,
        owner_id: str | None = None,
        org_id: str | None = None,
        status: ProcessingStatus | None = None,
    ) -> int:
        """Count items matching the filters."""
        where_clause, params = self._filters(owner_id, org_id, status)
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            return await conn.fetchval(f"SELECT COUNT(*) FROM media_items {where_clause}", *params)

    async def list_in_flight_items(self, changed_before: datetime) -> list[MediaItem]:
        """Items still processing whose status changed before the cutoff."""
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT * FROM media_items
                WHERE processing_status IN ($1, $2) AND status_changed_at < $3
                """,
                ProcessingStatus.PROCESSING.value,
                ProcessingStatus.SERVER_PROCESSING.value,
                changed_before,
            )
            return [row_to_item(dict(row)) for row in rows]

    async def delete_media_item(self, media_id: str) -> bool:
        """Delete a media item."""
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            result = await conn.execute("DELETE FROM media_items WHERE id = $1", media_id)
            return result != "DELETE 0"

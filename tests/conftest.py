"""Shared fixtures for the media service tests."""

import os
import uuid

# Rate limiting reads this at import time
os.environ.setdefault("TESTING", "1")

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402

from app.db.sqlite import SQLiteBackend  # noqa: E402
from app.models_media import MediaItem, MediaType  # noqa: E402


@pytest_asyncio.fixture
async def sqlite_db(tmp_path):
    """A fresh SQLite backend in a temp directory."""
    db = SQLiteBackend(tmp_path / "media.db")
    await db.init()
    return db


@pytest.fixture
def make_item():
    """Factory for media items with sensible defaults."""

    def _make(
        filename: str = "photo.png",
        media_type: MediaType = MediaType.IMAGE,
        mime_type: str = "image/png",
        owner_id: str | None = "user_1",
        **kwargs,
    ) -> MediaItem:
        media_id = kwargs.pop("id", None) or str(uuid.uuid4())
        return MediaItem(
            id=media_id,
            media_type=media_type,
            original_filename=filename,
            mime_type=mime_type,
            original_size_bytes=kwargs.pop("original_size_bytes", 1000),
            storage_path=kwargs.pop("storage_path", f"{owner_id}/{media_id}/{filename}"),
            fingerprint=kwargs.pop("fingerprint", uuid.uuid4().hex),
            owner_id=owner_id,
            **kwargs,
        )

    return _make

"""Preview cache keyed by content fingerprint.

Each fingerprint maps to one shared computation task. Callers never wait
on it: a lookup either returns the finished preview or reports that it is
still loading. Failures are remembered per version so a broken source does
not trigger a retry on every render.
"""

import asyncio
import hashlib
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from .models_media import MediaType

logger = logging.getLogger("media.thumbnails")

PLACEHOLDERS = {
    MediaType.IMAGE: "image",
    MediaType.VIDEO: "video",
    MediaType.AUDIO: "audio",
}


def placeholder_for(media_type: MediaType | str | None) -> str:
    """Icon name shown while a preview is loading or unavailable."""
    try:
        return PLACEHOLDERS.get(MediaType(media_type), "unknown")
    except ValueError:
        return "unknown"


def fingerprint_bytes(data: bytes) -> str:
    """Content fingerprint used as the cache key. Survives renames."""
    return hashlib.sha256(data).hexdigest()


@dataclass
class ThumbnailCacheEntry:
    version: int
    task: asyncio.Task | None = None
    preview: str | None = None
    failed: bool = False

    @property
    def is_loading(self) -> bool:
        return self.task is not None and not self.task.done()


class ThumbnailCache:
    """At most one in-flight computation per fingerprint."""

    def __init__(self):
        self._entries: dict[str, ThumbnailCacheEntry] = {}

    def __contains__(self, fingerprint: str) -> bool:
        return fingerprint in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def get_or_compute(
        self,
        fingerprint: str,
        compute_fn: Callable[[], Awaitable[str]],
        version: int | None = None,
    ) -> tuple[str | None, bool]:
        """Return (preview, is_loading) without blocking.

        The first call for a fingerprint (or for a newer version) schedules
        compute_fn; concurrent callers share that task. A failed computation
        yields (None, False) until the version is bumped.
        """
        entry = self._entries.get(fingerprint)

        if entry is not None and version is not None and version > entry.version:
            logger.debug("Version bump for %s: %s -> %s", fingerprint, entry.version, version)
            if entry.is_loading:
                entry.task.cancel()
            entry = None

        if entry is None:
            entry = ThumbnailCacheEntry(version=version or 0)
            self._entries[fingerprint] = entry
            entry.task = asyncio.create_task(self._run(fingerprint, entry, compute_fn))
            return None, True

        if entry.is_loading:
            return None, True
        return entry.preview, False

    async def _run(
        self,
        fingerprint: str,
        entry: ThumbnailCacheEntry,
        compute_fn: Callable[[], Awaitable[str]],
    ) -> str | None:
        try:
            preview = await compute_fn()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.warning("Preview computation failed for %s", fingerprint, exc_info=True)
            entry.failed = True
            entry.preview = None
            return None
        entry.preview = preview
        entry.failed = False
        return preview

    async def wait(self, fingerprint: str) -> str | None:
        """Await the in-flight computation for a fingerprint, if any."""
        entry = self._entries.get(fingerprint)
        if entry is None:
            return None
        if entry.task is not None and not entry.task.done():
            await asyncio.shield(entry.task)
        return entry.preview

    def is_negative(self, fingerprint: str) -> bool:
        entry = self._entries.get(fingerprint)
        return bool(entry and entry.failed)

    def version_of(self, fingerprint: str) -> int | None:
        entry = self._entries.get(fingerprint)
        return entry.version if entry else None

    def evict(self, fingerprint: str) -> bool:
        """Drop the entry when its file leaves the working set."""
        entry = self._entries.pop(fingerprint, None)
        if entry is None:
            return False
        if entry.is_loading:
            entry.task.cancel()
        return True

    def clear(self) -> None:
        for fingerprint in list(self._entries):
            self.evict(fingerprint)


# Global instance
thumbnail_cache = ThumbnailCache()

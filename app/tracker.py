"""Processing status state machine for media items.

    pending -> processing | server_processing -> processed | failed

A passthrough plan moves pending straight to processed and a planning
failure moves pending straight to failed. processed and failed are never
left; a processed video may still gain variants from a re-encode plan.

Every mutation goes through a per-item lock held only for the local
read-modify-write, never across a call to a processor.
"""

import asyncio
import logging
import weakref
from datetime import timedelta

from .config import get_settings
from .db import get_database
from .db.base import DatabaseBackend
from .exceptions import InvalidTransition, MediaNotFound, ProcessingTimeout
from .models_media import (
    ConversionPlan,
    MediaItem,
    ProcessingMetrics,
    ProcessingOutcome,
    ProcessingPath,
    ProcessingStatus,
    utc_now,
)

logger = logging.getLogger("media.tracker")

ALLOWED_TRANSITIONS = {
    ProcessingStatus.PENDING: {
        ProcessingStatus.PROCESSING,
        ProcessingStatus.SERVER_PROCESSING,
        ProcessingStatus.PROCESSED,
        ProcessingStatus.FAILED,
    },
    ProcessingStatus.PROCESSING: {ProcessingStatus.PROCESSED, ProcessingStatus.FAILED},
    ProcessingStatus.SERVER_PROCESSING: {ProcessingStatus.PROCESSED, ProcessingStatus.FAILED},
    ProcessingStatus.PROCESSED: set(),
    ProcessingStatus.FAILED: set(),
}

TIMEOUT_REASON = ProcessingTimeout.reason


def can_transition(current: ProcessingStatus, target: ProcessingStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


class ProcessingTracker:
    """Records plan execution progress and terminal outcomes per item."""

    def __init__(self, db: DatabaseBackend | None = None):
        self._db = db
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    @property
    def db(self) -> DatabaseBackend:
        return self._db or get_database()

    def _lock_for(self, item_id: str) -> asyncio.Lock:
        lock = self._locks.get(item_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[item_id] = lock
        return lock

    async def _load(self, item_id: str) -> MediaItem:
        item = await self.db.get_media_item(item_id)
        if item is None:
            raise MediaNotFound(item_id)
        return item

    def _move(self, item: MediaItem, target: ProcessingStatus) -> None:
        if not can_transition(item.processing_status, target):
            raise InvalidTransition(
                f"Cannot move {item.id} from {item.processing_status.value} to {target.value}"
            )
        now = utc_now()
        logger.info("%s: %s -> %s", item.id, item.processing_status.value, target.value)
        item.processing_status = target
        item.status_changed_at = now
        item.updated_at = now

    async def create_item(self, item: MediaItem) -> MediaItem:
        """Register a freshly accepted item in the pending state."""
        item.processing_status = ProcessingStatus.PENDING
        await self.db.create_media_item(item)
        return item

    async def get(self, item_id: str) -> MediaItem:
        return await self._load(item_id)

    async def apply_plan(self, item_id: str, plan: ConversionPlan) -> tuple[MediaItem, bool]:
        """Attach a plan and enter its initial status.

        Returns the item and whether the plan was applied. A plan for an item
        that is already in flight or terminal is ignored, so a duplicate
        intake never starts a second job.
        """
        async with self._lock_for(item_id):
            item = await self._load(item_id)
            if item.processing_status != ProcessingStatus.PENDING:
                logger.info(
                    "Ignoring plan %s for %s in state %s",
                    plan.plan_id,
                    item_id,
                    item.processing_status.value,
                )
                return item, False

            item.plan = plan
            if plan.initial_status == ProcessingStatus.PROCESSED:
                self._serve_as_stored(item, plan.route)
            self._move(item, plan.initial_status)
            await self.db.save_media_item(item)
            return item, True

    def _serve_as_stored(self, item: MediaItem, route: ProcessingPath) -> None:
        item.processed_path = item.storage_path
        item.processing_path = route
        item.metrics = ProcessingMetrics(compression_ratio_percent=0, processing_time_ms=0)

    async def store_unplanned(self, item_id: str) -> MediaItem:
        """Finish an item that never enters conversion, such as a document."""
        async with self._lock_for(item_id):
            item = await self._load(item_id)
            if item.processing_status != ProcessingStatus.PENDING:
                return item
            self._serve_as_stored(item, ProcessingPath.NONE)
            self._move(item, ProcessingStatus.PROCESSED)
            await self.db.save_media_item(item)
            return item

    async def fail(self, item_id: str, reason: str) -> MediaItem:
        """Mark an item failed. A terminal item is returned unchanged."""
        async with self._lock_for(item_id):
            item = await self._load(item_id)
            if item.processing_status.is_terminal:
                return item
            item.processing_error = reason
            self._move(item, ProcessingStatus.FAILED)
            await self.db.save_media_item(item)
            return item

    async def mark_fallback(self, item_id: str) -> ConversionPlan | None:
        """Switch a failed local WebP conversion to the JPEG fallback route.

        Returns the fallback plan, or None when the item is not eligible (not
        in flight, not on webp_local, or already fell back once).
        """
        async with self._lock_for(item_id):
            item = await self._load(item_id)
            plan = item.plan
            if (
                item.processing_status != ProcessingStatus.PROCESSING
                or plan is None
                or plan.route != ProcessingPath.WEBP_LOCAL
            ):
                return None
            item.plan = plan.model_copy(
                update={"route": ProcessingPath.JPEG_FALLBACK, "target_format": "jpeg"}
            )
            item.updated_at = utc_now()
            await self.db.save_media_item(item)
            logger.info("%s: falling back to jpeg_fallback", item_id)
            return item.plan

    async def report_outcome(self, item_id: str, outcome: ProcessingOutcome) -> MediaItem:
        """Apply a processing result. Idempotent.

        Reports for terminal items and reports carrying a sequence number no
        newer than the last applied one are ignored, so a late earlier report
        never overwrites a later terminal state.
        """
        if outcome.reencode and outcome.success:
            return await self.add_variants(item_id, outcome.quality_variants)

        async with self._lock_for(item_id):
            item = await self._load(item_id)
            sequence = outcome.sequence if outcome.sequence is not None else item.outcome_sequence + 1
            if sequence <= item.outcome_sequence:
                logger.info("Ignoring stale outcome #%s for %s", sequence, item_id)
                return item

            if item.processing_status.is_terminal:
                logger.info(
                    "Ignoring outcome for %s already %s", item_id, item.processing_status.value
                )
                return item
            elif item.processing_status == ProcessingStatus.PENDING:
                raise InvalidTransition(f"{item_id} has no plan in flight")
            elif outcome.success:
                item.processed_path = outcome.processed_path
                item.thumbnail_path = outcome.thumbnail_path or item.thumbnail_path
                item.metrics = outcome.metrics or ProcessingMetrics()
                item.processing_path = item.plan.route if item.plan else ProcessingPath.NONE
                item.processing_error = None
                self._merge_variants(item, outcome.quality_variants)
                self._move(item, ProcessingStatus.PROCESSED)
            else:
                item.processing_error = outcome.cause or "Processing failed"
                self._move(item, ProcessingStatus.FAILED)

            item.outcome_sequence = sequence
            item.updated_at = utc_now()
            await self.db.save_media_item(item)
            return item

    def _merge_variants(self, item: MediaItem, variants: dict[str, str]) -> None:
        allowed = set(item.plan.quality_labels) if item.plan else set()
        for label, path in variants.items():
            if label not in allowed:
                logger.warning("Dropping variant %s for %s: not in plan", label, item.id)
                continue
            if label in item.quality_variants:
                # Populated labels are immutable
                continue
            item.quality_variants[label] = path

    async def add_variants(self, item_id: str, variants: dict[str, str]) -> MediaItem:
        """Attach re-encoded variants to a processed item without reopening it."""
        async with self._lock_for(item_id):
            item = await self._load(item_id)
            if item.processing_status != ProcessingStatus.PROCESSED:
                raise InvalidTransition(f"{item_id} is not processed")
            self._merge_variants(item, variants)
            item.updated_at = utc_now()
            await self.db.save_media_item(item)
            return item

    async def apply_reencode_plan(self, item_id: str, plan: ConversionPlan) -> MediaItem:
        """Widen a processed item's plan with new variant labels."""
        async with self._lock_for(item_id):
            item = await self._load(item_id)
            if item.processing_status != ProcessingStatus.PROCESSED:
                raise InvalidTransition(f"{item_id} is not processed")
            item.plan = plan
            item.updated_at = utc_now()
            await self.db.save_media_item(item)
            return item

    async def expire_stale(self, timeout_seconds: int | None = None) -> list[MediaItem]:
        """Fail every in-flight item that has waited longer than the timeout."""
        timeout = timeout_seconds or get_settings().PROCESSING_TIMEOUT_SECONDS
        cutoff = utc_now() - timedelta(seconds=timeout)
        expired = []
        for stale in await self.db.list_in_flight_items(cutoff):
            async with self._lock_for(stale.id):
                item = await self._load(stale.id)
                # Re-check under the lock; a callback may have landed meanwhile
                if not item.processing_status.is_in_flight or item.status_changed_at >= cutoff:
                    continue
                item.processing_error = TIMEOUT_REASON
                self._move(item, ProcessingStatus.FAILED)
                await self.db.save_media_item(item)
                logger.warning("%s timed out after %ss", item.id, timeout)
                expired.append(item)
        return expired


# Global instance
tracker = ProcessingTracker()

"""Intake to dispatch orchestration.

Glues the validator, planner, tracker and dispatcher together for the media
routes. Each accepted file is stored, registered as pending, planned and then
handed to a processing capability when its plan needs one.
"""

import logging
import uuid
from dataclasses import dataclass

from .auth import AuthUser
from .exceptions import ProcessingError
from .intake import BatchValidationResult, EnvironmentCapabilities, FileDescriptor, Rejection, validate_batch
from .models_media import MediaItem, MediaType
from .planner import ProcessingCapabilities, plan_conversion, plan_reencode
from .processing.base import ProcessingJob, thumbnail_path
from .processing.dispatcher import ProcessingDispatcher, dispatcher as default_dispatcher
from .storage import StorageBackend, get_storage
from .thumbnails import fingerprint_bytes
from .tracker import ProcessingTracker, tracker as default_tracker

logger = logging.getLogger("media.intake")


@dataclass
class IncomingFile:
    """An uploaded file with its bytes."""

    descriptor: FileDescriptor
    data: bytes


@dataclass
class IntakeResult:
    accepted: list[MediaItem]
    rejected: list[Rejection]


class MediaPipeline:
    def __init__(
        self,
        tracker: ProcessingTracker | None = None,
        dispatcher: ProcessingDispatcher | None = None,
        storage: StorageBackend | None = None,
    ):
        self.tracker = tracker or default_tracker
        self.dispatcher = dispatcher or default_dispatcher
        self._storage = storage

    @property
    def storage(self) -> StorageBackend:
        return self._storage or get_storage()

    async def ingest(
        self,
        files: list[IncomingFile],
        user: AuthUser | None,
        media_type: MediaType | None = None,
        environment: EnvironmentCapabilities | None = None,
    ) -> IntakeResult:
        """Validate, store and plan a batch.

        Raises:
            BatchTooLargeError: before any file is stored
        """
        environment = environment or EnvironmentCapabilities()
        checked: BatchValidationResult = validate_batch(
            [f.descriptor for f in files], media_type, environment
        )
        data_by_file = {id(f.descriptor): f.data for f in files}
        capabilities = ProcessingCapabilities.from_settings(client_local=environment.local_transcode)

        accepted = []
        for result in checked.accepted:
            item = await self._register(result.file, result.media_type, data_by_file[id(result.file)], user)
            accepted.append(await self.start(item, capabilities))

        logger.info(
            "Intake of %s files: %s accepted, %s rejected",
            len(files),
            len(accepted),
            len(checked.rejected),
        )
        return IntakeResult(accepted=accepted, rejected=checked.rejected)

    async def _register(
        self,
        file: FileDescriptor,
        media_type: MediaType,
        data: bytes,
        user: AuthUser | None,
    ) -> MediaItem:
        media_id = str(uuid.uuid4())
        upload = await self.storage.upload(
            file_data=data,
            filename=file.name or "unnamed",
            content_type=file.mime_type,
            owner_id=user.user_id if user else None,
            object_id=media_id,
        )
        item = MediaItem(
            id=media_id,
            media_type=media_type,
            original_filename=file.name or "unnamed",
            mime_type=file.mime_type,
            original_size_bytes=upload.size_bytes,
            storage_path=upload.storage_path,
            fingerprint=fingerprint_bytes(data),
            owner_id=user.user_id if user else None,
            org_id=user.org_id if user else None,
            width=file.width,
            height=file.height,
        )
        return await self.tracker.create_item(item)

    async def start(self, item: MediaItem, capabilities: ProcessingCapabilities) -> MediaItem:
        """Plan a pending item and dispatch its job if it needs one."""
        if item.media_type == MediaType.DOCUMENT:
            return await self.tracker.store_unplanned(item.id)

        try:
            plan = plan_conversion(item, capabilities)
        except ProcessingError as e:
            logger.info("No plan for %s: %s", item.id, e.message)
            return await self.tracker.fail(item.id, f"{e.reason}: {e.message}")

        item, applied = await self.tracker.apply_plan(item.id, plan)
        if applied and plan.execution != "none":
            await self.dispatcher.submit(ProcessingJob.for_item(item, plan))
            item = await self.tracker.get(item.id)
        return item

    async def reencode(self, item: MediaItem, labels: list[str]) -> MediaItem:
        """Ask for more variants of a processed video. The item stays processed."""
        plan = plan_reencode(item, labels)
        item = await self.tracker.apply_reencode_plan(item.id, plan)
        await self.dispatcher.submit(ProcessingJob.for_item(item, plan, reencode=True))
        return item

    async def remove(self, item: MediaItem) -> None:
        """Delete every stored object derived from an item."""
        # Shared previews under previews/ may belong to other items with the same content
        paths = {item.storage_path, item.processed_path, item.thumbnail_path, thumbnail_path(item.storage_path)}
        paths.update(item.quality_variants.values())
        for path in filter(None, paths):
            try:
                await self.storage.delete(path)
            except Exception:
                logger.warning("Could not delete %s for %s", path, item.id, exc_info=True)


# Global instance
pipeline = MediaPipeline()

"""Abstract base class for processing capabilities."""

import posixpath
from abc import ABC, abstractmethod
from dataclasses import dataclass

from app.models_media import ConversionPlan, MediaItem, MediaType


@dataclass
class ProcessingJob:
    """Job description handed to a processing capability."""

    media_id: str
    media_type: MediaType
    source_path: str
    original_size_bytes: int
    plan: ConversionPlan
    reencode: bool = False

    @classmethod
    def for_item(cls, item: MediaItem, plan: ConversionPlan | None = None, reencode: bool = False):
        return cls(
            media_id=item.id,
            media_type=item.media_type,
            source_path=item.storage_path,
            original_size_bytes=item.original_size_bytes,
            plan=plan or item.plan,
            reencode=reencode,
        )

    @property
    def output_dir(self) -> str:
        return posixpath.dirname(self.source_path)

    @property
    def stem(self) -> str:
        return posixpath.splitext(posixpath.basename(self.source_path))[0]

    def processed_path(self, extension: str) -> str:
        return f"{self.output_dir}/processed/{self.stem}.{extension}"

    def variant_path(self, label: str) -> str:
        return f"{self.output_dir}/variants/{self.stem}_{label}.{self.plan.target_format}"


def thumbnail_path(source_path: str) -> str:
    """Where a transcode writes the thumbnail for an upload."""
    directory = posixpath.dirname(source_path)
    stem = posixpath.splitext(posixpath.basename(source_path))[0]
    return f"{directory}/thumbnails/{stem}.jpg"


def preview_path(fingerprint: str) -> str:
    """Where the shared preview for a content fingerprint is written.

    Identical uploads share one preview, so the path carries no owner or item id.
    """
    return f"previews/{fingerprint[:2]}/{fingerprint}.jpg"


def compression_ratio(original_size: int, output_size: int) -> float:
    """Percent size reduction; negative when the output grew."""
    if original_size <= 0:
        return 0.0
    return round((1 - output_size / original_size) * 100, 1)


class Transcoder(ABC):
    """A capability that performs conversions the core only orchestrates."""

    @abstractmethod
    async def transcode(self, job: ProcessingJob):
        """
        Run or submit a conversion.

        Returns:
            A ProcessingOutcome when the work finished synchronously, or None
            when it was accepted and the outcome will arrive by callback.

        Raises:
            UnsupportedFormat: the source cannot be decoded (never retried)
            ProcessingError: any other failure
        """
        pass

    @abstractmethod
    async def render_preview(self, source_path: str, media_type: MediaType, target_path: str) -> str:
        """
        Produce a preview image for a stored object at target_path.

        Returns:
            Storage path of the preview
        """
        pass

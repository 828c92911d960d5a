"""Conversion planning: choose target format, variants and execution route."""

import logging
import os
import uuid
from dataclasses import dataclass

from .config import QUALITY_LADDER, Settings, get_settings
from .exceptions import EnvironmentUnsupported, UnsupportedFormat
from .models_media import ConversionPlan, MediaItem, MediaType, ProcessingPath, ProcessingStatus

logger = logging.getLogger("media.planner")

JPEG_FORMATS = {"jpg", "jpeg"}
RASTER_FORMATS = {"png", "gif", "webp", "bmp", "heic", "heif"}
PASSTHROUGH_FORMATS = {"svg"}
VIDEO_FORMATS = {"mp4", "mov", "webm", "avi", "mkv"}
AUDIO_FORMATS = {"mp3", "wav", "aac", "ogg", "flac", "opus"}

_MIME_FORMATS = {
    "image/jpeg": "jpeg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
    "image/bmp": "bmp",
    "image/heic": "heic",
    "image/heif": "heif",
    "image/svg+xml": "svg",
    "video/mp4": "mp4",
    "video/quicktime": "mov",
    "video/webm": "webm",
    "video/x-msvideo": "avi",
    "video/x-matroska": "mkv",
}


@dataclass
class ProcessingCapabilities:
    """Injected view of where transcoding can run right now."""

    local_transcode: bool
    remote_available: bool

    @classmethod
    def from_settings(cls, settings: Settings | None = None, client_local: bool = True):
        settings = settings or get_settings()
        return cls(
            local_transcode=settings.LOCAL_TRANSCODE_ENABLED and client_local,
            remote_available=settings.remote_processing_enabled,
        )


def source_format(item: MediaItem) -> str:
    """Container/format of the original, from extension then MIME type."""
    ext = os.path.splitext(item.original_filename)[1].lower().lstrip(".")
    if ext:
        return ext
    return _MIME_FORMATS.get(item.mime_type.lower(), "")


def variant_labels_for(height: int | None, width: int | None = None) -> list[str]:
    """480p always; higher rungs only when the source has the lines for them."""
    lines = min(width, height) if width and height else height
    labels = ["480p"]
    for label, needed in QUALITY_LADDER.items():
        if label != "480p" and lines and lines >= needed:
            labels.append(label)
    return labels


def _local_or_remote(
    capabilities: ProcessingCapabilities,
    local_route: ProcessingPath,
    remote_route: ProcessingPath,
) -> tuple[ProcessingPath, str, ProcessingStatus]:
    if capabilities.local_transcode:
        return local_route, "local", ProcessingStatus.PROCESSING
    if capabilities.remote_available:
        return remote_route, "remote", ProcessingStatus.SERVER_PROCESSING
    raise EnvironmentUnsupported(
        "Local transcoding is unavailable and no remote processor is configured"
    )


def plan_conversion(item: MediaItem, capabilities: ProcessingCapabilities) -> ConversionPlan:
    """Decide how an accepted item will be converted.

    Raises:
        UnsupportedFormat: documents and unknown source formats.
        EnvironmentUnsupported: the route needs a processor that is not available.
    """
    fmt = source_format(item)

    def make(**kwargs) -> ConversionPlan:
        plan = ConversionPlan(plan_id=str(uuid.uuid4()), media_id=item.id, **kwargs)
        logger.info(
            "Planned %s (%s/%s): route=%s execution=%s variants=%s",
            item.id,
            item.media_type.value,
            fmt,
            plan.route.value,
            plan.execution,
            list(plan.quality_labels),
        )
        return plan

    if item.media_type == MediaType.IMAGE:
        if fmt in JPEG_FORMATS:
            return make(
                target_format="jpeg",
                route=ProcessingPath.JPEG_PASSTHROUGH,
                execution="none",
                initial_status=ProcessingStatus.PROCESSED,
            )
        if fmt in PASSTHROUGH_FORMATS:
            return make(
                target_format=fmt,
                route=ProcessingPath.NONE,
                execution="none",
                initial_status=ProcessingStatus.PROCESSED,
            )
        if fmt in RASTER_FORMATS:
            route, execution, status = _local_or_remote(
                capabilities, ProcessingPath.WEBP_LOCAL, ProcessingPath.WEBP_SERVER
            )
            return make(
                target_format="webp", route=route, execution=execution, initial_status=status
            )

    elif item.media_type == MediaType.VIDEO:
        if fmt in VIDEO_FORMATS:
            # Multi-resolution transcodes always run on the remote processor
            if not capabilities.remote_available:
                raise EnvironmentUnsupported("Video processing requires a remote processor")
            return make(
                target_format=fmt,
                quality_labels=tuple(variant_labels_for(item.height, item.width)),
                route=ProcessingPath.NONE,
                execution="remote",
                initial_status=ProcessingStatus.SERVER_PROCESSING,
            )

    elif item.media_type == MediaType.AUDIO:
        if fmt in AUDIO_FORMATS:
            route, execution, status = _local_or_remote(
                capabilities, ProcessingPath.NONE, ProcessingPath.NONE
            )
            return make(
                target_format="webm", route=route, execution=execution, initial_status=status
            )

    raise UnsupportedFormat(f"Cannot convert {item.media_type.value} source format '{fmt}'")


def plan_reencode(item: MediaItem, labels: list[str]) -> ConversionPlan:
    """Plan additional variants for an already processed video.

    The new plan keeps every label of the previous one, so the variants it
    produces never fall outside an issued plan.
    """
    if item.media_type != MediaType.VIDEO or item.plan is None:
        raise UnsupportedFormat("Only processed videos can be re-encoded")

    unknown = [label for label in labels if label not in QUALITY_LADDER]
    if unknown:
        raise UnsupportedFormat(f"Unknown quality labels: {', '.join(unknown)}")

    merged = list(item.plan.quality_labels)
    merged.extend(label for label in labels if label not in merged)
    merged.sort(key=QUALITY_LADDER.get)
    return ConversionPlan(
        plan_id=str(uuid.uuid4()),
        media_id=item.id,
        target_format=item.plan.target_format,
        quality_labels=tuple(merged),
        route=item.plan.route,
        execution="remote",
        initial_status=ProcessingStatus.SERVER_PROCESSING,
    )

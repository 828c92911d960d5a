"""Processing capabilities and job dispatch."""

from functools import lru_cache

from app.config import get_settings
from app.processing.base import (
    ProcessingJob,
    Transcoder,
    compression_ratio,
    preview_path,
    thumbnail_path,
)
from app.processing.local import FFmpegTranscoder
from app.processing.remote import RemoteTranscoder


@lru_cache
def get_transcoder(execution: str) -> Transcoder:
    """Get the processing capability for a plan's execution mode.

    Local plans run in-process through ffmpeg; everything else goes to the
    remote service.
    """
    settings = get_settings()
    if execution == "local" and settings.LOCAL_TRANSCODE_ENABLED:
        return FFmpegTranscoder()
    return RemoteTranscoder()


def get_preview_transcoder() -> Transcoder:
    """Previews render locally unless only the remote service is available."""
    settings = get_settings()
    if not settings.LOCAL_TRANSCODE_ENABLED and settings.remote_processing_enabled:
        return get_transcoder("remote")
    return get_transcoder("local")


def clear_transcoder_cache() -> None:
    """Clear cached capabilities (useful for testing)."""
    get_transcoder.cache_clear()


__all__ = [
    "FFmpegTranscoder",
    "ProcessingJob",
    "RemoteTranscoder",
    "Transcoder",
    "clear_transcoder_cache",
    "compression_ratio",
    "get_preview_transcoder",
    "get_transcoder",
    "preview_path",
    "thumbnail_path",
]

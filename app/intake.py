"""Intake validation for uploaded media.

Every check here is a pure function of the file descriptor, the caller's
environment capabilities and the configured limits. Nothing is queued or
stored until a file passes.
"""

import logging
import os
from dataclasses import dataclass, field

from .config import ACCEPTED_EXTENSIONS, ACCEPTED_MIME_TYPES, Settings, get_settings
from .exceptions import BatchTooLargeError
from .models_media import MediaType

logger = logging.getLogger("media.intake")

# Reason codes surfaced to callers
UNSUPPORTED_FORMAT = "unsupported_format"
FILE_TOO_LARGE = "file_too_large"
RESOLUTION_TOO_HIGH = "resolution_too_high"
RESOLUTION_UNKNOWN = "resolution_unknown"
ENVIRONMENT_UNSUPPORTED = "environment_unsupported"


@dataclass
class FileDescriptor:
    """A candidate file as reported by the uploader."""

    name: str
    size_bytes: int
    mime_type: str
    width: int | None = None
    height: int | None = None
    media_type: MediaType | None = None

    @property
    def extension(self) -> str:
        return os.path.splitext(self.name)[1].lower().lstrip(".")


@dataclass
class EnvironmentCapabilities:
    """Capabilities of the environment that submitted the batch."""

    shared_buffers: bool = True
    local_transcode: bool = True


@dataclass
class Rejection:
    file_name: str
    file_size_bytes: int
    reason_code: str
    human_message: str


@dataclass
class ValidationResult:
    file: FileDescriptor
    media_type: MediaType | None = None
    rejection: Rejection | None = None

    @property
    def accepted(self) -> bool:
        return self.rejection is None


@dataclass
class BatchValidationResult:
    accepted: list[ValidationResult] = field(default_factory=list)
    rejected: list[Rejection] = field(default_factory=list)


def infer_media_type(file: FileDescriptor) -> MediaType | None:
    """Guess the media type from the extension, falling back to the MIME type."""
    ext = file.extension
    for media_type, extensions in ACCEPTED_EXTENSIONS.items():
        if ext in extensions:
            return MediaType(media_type)

    mime = (file.mime_type or "").lower()
    for media_type in (MediaType.IMAGE, MediaType.VIDEO, MediaType.AUDIO):
        if mime.startswith(f"{media_type.value}/"):
            return media_type
    return None


def _mime_matches(mime: str, media_type: MediaType) -> bool:
    accepted = ACCEPTED_MIME_TYPES[media_type.value]
    mime = (mime or "").lower()
    return any(mime.startswith(entry) if entry.endswith("/") else mime == entry for entry in accepted)


def _reject(file: FileDescriptor, code: str, message: str) -> ValidationResult:
    return ValidationResult(
        file=file,
        rejection=Rejection(
            file_name=file.name,
            file_size_bytes=file.size_bytes,
            reason_code=code,
            human_message=message,
        ),
    )


def validate(
    file: FileDescriptor,
    media_type: MediaType | None = None,
    environment: EnvironmentCapabilities | None = None,
    settings: Settings | None = None,
) -> ValidationResult:
    """Validate a single file against the intake limits.

    Checks run in order and stop at the first failure: format, size,
    video resolution, then the environment's ability to decode video.
    """
    settings = settings or get_settings()
    environment = environment or EnvironmentCapabilities()
    media_type = media_type or file.media_type or infer_media_type(file)

    if media_type is None:
        return _reject(file, UNSUPPORTED_FORMAT, f"{file.name}: unrecognised file type.")

    # Either a known extension or a matching MIME type is enough; an octet-stream
    # upload with the right extension is common.
    ext_ok = file.extension in ACCEPTED_EXTENSIONS[media_type.value]
    mime_ok = _mime_matches(file.mime_type, media_type)
    if not ext_ok and not (mime_ok and not file.extension):
        allowed = ", ".join(sorted(ACCEPTED_EXTENSIONS[media_type.value]))
        return _reject(
            file,
            UNSUPPORTED_FORMAT,
            f"{file.name}: not a supported {media_type.value} format. Allowed: {allowed}.",
        )

    if file.size_bytes > settings.max_upload_bytes:
        size_mb = file.size_bytes / (1024 * 1024)
        return _reject(
            file,
            FILE_TOO_LARGE,
            f"{file.name} is {size_mb:.1f}MB. Maximum size is {settings.MAX_UPLOAD_SIZE_MB}MB.",
        )

    if media_type == MediaType.VIDEO:
        # The resolution limit can only hold for videos whose size is known
        if not (file.width and file.height):
            return _reject(
                file,
                RESOLUTION_UNKNOWN,
                f"{file.name}: video dimensions are required to check the "
                f"{settings.MAX_VIDEO_WIDTH}x{settings.MAX_VIDEO_HEIGHT} limit.",
            )
        long_side, short_side = max(file.width, file.height), min(file.width, file.height)
        if long_side > settings.MAX_VIDEO_WIDTH or short_side > settings.MAX_VIDEO_HEIGHT:
            return _reject(
                file,
                RESOLUTION_TOO_HIGH,
                f"{file.name} is {file.width}x{file.height}. Maximum resolution is "
                f"{settings.MAX_VIDEO_WIDTH}x{settings.MAX_VIDEO_HEIGHT}.",
            )

        if not environment.shared_buffers:
            return _reject(
                file,
                ENVIRONMENT_UNSUPPORTED,
                "Video upload requires a browser with SharedArrayBuffer support.",
            )

    return ValidationResult(file=file, media_type=media_type)


def validate_batch(
    files: list[FileDescriptor],
    media_type: MediaType | None = None,
    environment: EnvironmentCapabilities | None = None,
    settings: Settings | None = None,
) -> BatchValidationResult:
    """Validate a batch, keeping accepted files when others are rejected.

    Raises:
        BatchTooLargeError: the batch exceeds MAX_BATCH_FILES. No file is checked.
    """
    settings = settings or get_settings()
    if len(files) > settings.MAX_BATCH_FILES:
        raise BatchTooLargeError(len(files), settings.MAX_BATCH_FILES)

    result = BatchValidationResult()
    for file in files:
        checked = validate(file, media_type, environment, settings)
        if checked.accepted:
            result.accepted.append(checked)
        else:
            logger.info(
                "Rejected %s (%s): %s",
                file.name,
                checked.rejection.reason_code,
                checked.rejection.human_message,
            )
            result.rejected.append(checked.rejection)
    return result

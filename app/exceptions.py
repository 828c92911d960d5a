"""Error taxonomy for intake, processing and delivery."""


class MediaServiceError(Exception):
    """Base class for media service errors."""

    status_code = 500

    def __init__(self, message: str, status_code: int | None = None, detail: dict | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.detail = detail


# ============== Intake ==============


class ValidationError(MediaServiceError):
    """A file or batch failed intake validation. Never retried automatically."""

    status_code = 400

    def __init__(self, message: str, reason_code: str, detail: dict | None = None):
        super().__init__(message, detail=detail)
        self.reason_code = reason_code


class BatchTooLargeError(ValidationError):
    def __init__(self, count: int, limit: int):
        super().__init__(
            f"Too many files: {count}. At most {limit} files can be uploaded at once.",
            reason_code="batch_too_large",
            detail={"file_count": count, "limit": limit},
        )


# ============== Processing ==============


class ProcessingError(MediaServiceError):
    """A transcode failed. Surfaced on the item as failed."""

    status_code = 422
    reason = "ProcessingError"


class UnsupportedFormat(ProcessingError):
    reason = "UnsupportedFormat"


class EnvironmentUnsupported(ProcessingError):
    """Local transcoding is unavailable and no remote fallback is configured."""

    reason = "EnvironmentUnsupported"


class RemoteProcessingFailed(ProcessingError):
    status_code = 502
    reason = "RemoteProcessingFailed"


class ProcessingTimeout(ProcessingError):
    status_code = 504
    reason = "Timeout"


class InvalidTransition(MediaServiceError):
    status_code = 409


class MediaNotFound(MediaServiceError):
    status_code = 404

    def __init__(self, media_id: str):
        super().__init__("Media not found")
        self.media_id = media_id


# ============== Variants ==============


class VariantSelectionError(MediaServiceError):
    status_code = 400


# ============== Delivery ==============


class MissingPathError(MediaServiceError):
    status_code = 400

    def __init__(self, message: str = "Missing path parameter"):
        super().__init__(message)


class InvalidPathError(MediaServiceError):
    status_code = 400

    def __init__(self, message: str = "Invalid path parameter"):
        super().__init__(message)


class AccessError(MediaServiceError):
    """Authorization denied. Surfaced to the caller, never retried."""

    status_code = 403


class TransientInfraError(MediaServiceError):
    """Storage or backend failure. The caller may retry."""

    status_code = 500

    def __init__(self, message: str = "Internal server error"):
        super().__init__(message)

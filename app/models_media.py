"""Pydantic models for media processing and delivery."""

from datetime import UTC, datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class MediaType(str, Enum):
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    DOCUMENT = "document"


class ProcessingStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SERVER_PROCESSING = "server_processing"
    PROCESSED = "processed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ProcessingStatus.PROCESSED, ProcessingStatus.FAILED)

    @property
    def is_in_flight(self) -> bool:
        return self in (ProcessingStatus.PROCESSING, ProcessingStatus.SERVER_PROCESSING)


class ProcessingPath(str, Enum):
    JPEG_PASSTHROUGH = "jpeg_passthrough"
    WEBP_LOCAL = "webp_local"
    WEBP_SERVER = "webp_server"
    JPEG_FALLBACK = "jpeg_fallback"
    NONE = "none"


Execution = Literal["local", "remote", "none"]


def utc_now() -> datetime:
    return datetime.now(UTC)


class ProcessingMetrics(BaseModel):
    """Outcome metrics recorded when an item reaches processed."""

    compression_ratio_percent: float = 0
    processing_time_ms: int = 0


class ConversionPlan(BaseModel):
    """Routing decision for one intake event. Immutable once issued."""

    model_config = ConfigDict(frozen=True)

    plan_id: str
    media_id: str
    target_format: str
    quality_labels: tuple[str, ...] = ()
    route: ProcessingPath = ProcessingPath.NONE
    execution: Execution = "none"
    initial_status: ProcessingStatus
    issued_at: datetime = Field(default_factory=utc_now)


class MediaItem(BaseModel):
    """One user-uploaded asset and its processing state."""

    id: str
    media_type: MediaType
    original_filename: str
    mime_type: str
    original_size_bytes: int
    storage_path: str
    fingerprint: str
    owner_id: str | None = None
    org_id: str | None = None
    processing_status: ProcessingStatus = ProcessingStatus.PENDING
    processing_path: ProcessingPath | None = None
    processing_error: str | None = None
    metrics: ProcessingMetrics | None = None
    quality_variants: dict[str, str] = Field(default_factory=dict)
    thumbnail_path: str | None = None
    processed_path: str | None = None
    width: int | None = None
    height: int | None = None
    plan: ConversionPlan | None = None
    outcome_sequence: int = 0
    status_changed_at: datetime = Field(default_factory=utc_now)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class ProcessingOutcome(BaseModel):
    """Result reported by a processing capability, locally or via callback."""

    success: bool
    processed_path: str | None = None
    thumbnail_path: str | None = None
    quality_variants: dict[str, str] = Field(default_factory=dict)
    metrics: ProcessingMetrics | None = None
    cause: str | None = None
    sequence: int | None = None
    reencode: bool = False

    @classmethod
    def failure(cls, cause: str, sequence: int | None = None) -> "ProcessingOutcome":
        return cls(success=False, cause=cause, sequence=sequence)


# ============== API models ==============


class MediaItemResponse(BaseModel):
    """Public view of a media item."""

    id: str
    media_type: MediaType
    original_filename: str
    mime_type: str
    original_size_bytes: int
    storage_path: str
    processing_status: ProcessingStatus
    processing_path: ProcessingPath | None = None
    processing_error: str | None = None
    metrics: ProcessingMetrics | None = None
    quality_variants: dict[str, str]
    thumbnail_path: str | None = None
    processed_path: str | None = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_item(cls, item: MediaItem) -> "MediaItemResponse":
        return cls(**item.model_dump(include=set(cls.model_fields)))


class RejectionResponse(BaseModel):
    file_name: str
    file_size_bytes: int
    reason_code: str
    human_message: str


class IntakeResponse(BaseModel):
    """Response from a batch intake."""

    success: bool = True
    accepted: list[MediaItemResponse]
    rejected: list[RejectionResponse]


class MediaListResponse(BaseModel):
    media: list[MediaItemResponse]
    total_count: int


class VariantsResponse(BaseModel):
    variants: list[str]
    current: str | None
    has_selector: bool


class PreviewResponse(BaseModel):
    preview_url: str | None
    is_loading: bool
    placeholder: str


class ReencodeRequest(BaseModel):
    quality_labels: list[str]


class DeleteResponse(BaseModel):
    success: bool = True
    message: str = "Media deleted successfully"


class ErrorResponse(BaseModel):
    error: str
    detail: dict | None = None

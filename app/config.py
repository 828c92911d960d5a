"""Application configuration with environment-based settings."""

from enum import Enum
from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings

StorageBackendType = Literal["local", "s3", "r2"]


class AppMode(str, Enum):
    SELF_HOSTED = "self-hosted"
    SAAS = "saas"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application mode
    APP_MODE: AppMode = AppMode.SELF_HOSTED

    # Database settings
    DATABASE_URL: str | None = None  # PostgreSQL connection string for SaaS
    SQLITE_PATH: str = "data/media.db"  # SQLite path for self-hosted

    # Clerk settings (SaaS mode only)
    CLERK_SECRET_KEY: str | None = None
    CLERK_PUBLISHABLE_KEY: str | None = None

    # Storage
    STORAGE_BACKEND: StorageBackendType = "local"
    STORAGE_LOCAL_PATH: str = "data/media"
    STORAGE_SIGNING_SECRET: str | None = None  # HMAC key for local signed URLs
    STORAGE_S3_BUCKET: str | None = None
    STORAGE_S3_REGION: str = "us-east-1"
    STORAGE_S3_ACCESS_KEY: str | None = None
    STORAGE_S3_SECRET_KEY: str | None = None
    STORAGE_S3_ENDPOINT_URL: str | None = None
    STORAGE_R2_BUCKET: str | None = None
    STORAGE_R2_ACCOUNT_ID: str | None = None
    STORAGE_R2_ACCESS_KEY: str | None = None
    STORAGE_R2_SECRET_KEY: str | None = None
    STORAGE_IMAGE_TRANSFORM_URL: str | None = None  # e.g. https://cdn.example.com/cdn-cgi/image

    # Intake limits
    MAX_BATCH_FILES: int = 10
    MAX_UPLOAD_SIZE_MB: int = 200
    MAX_VIDEO_WIDTH: int = 1920
    MAX_VIDEO_HEIGHT: int = 1080

    # Processing
    LOCAL_TRANSCODE_ENABLED: bool = True
    FFMPEG_BINARY: str = "ffmpeg"
    REMOTE_PROCESSING_URL: str | None = None  # e.g. http://transcoder:8080
    REMOTE_PROCESSING_TOKEN: str | None = None
    PROCESSING_CALLBACK_SECRET: str | None = None
    PROCESSING_WORKERS: int = 2
    PROCESSING_TIMEOUT_SECONDS: int = 900
    TIMEOUT_SWEEP_INTERVAL_SECONDS: int = 30

    # Delivery
    SIGNED_URL_TTL_SECONDS: int = 3600
    DELIVERY_CACHE_MAX_AGE: int = 300  # Must stay well below SIGNED_URL_TTL_SECONDS
    DEFAULT_TRANSFORM_QUALITY: int = 75

    # Logging
    LOG_LEVEL: str = "INFO"
    USAGE_LOG_DESTINATION: str = "stdout"  # stdout, file, or external
    USAGE_LOG_FILE_PATH: str = "logs/usage.log"

    # App URL (for signed local URLs and processing callbacks)
    APP_URL: str = "http://localhost:8000"

    class Config:
        env_file = ".env"
        case_sensitive = True

    @property
    def is_saas(self) -> bool:
        """Check if running in SaaS mode."""
        return self.APP_MODE == AppMode.SAAS

    @property
    def is_self_hosted(self) -> bool:
        """Check if running in self-hosted mode."""
        return self.APP_MODE == AppMode.SELF_HOSTED

    @property
    def max_upload_bytes(self) -> int:
        return self.MAX_UPLOAD_SIZE_MB * 1024 * 1024

    @property
    def remote_processing_enabled(self) -> bool:
        return bool(self.REMOTE_PROCESSING_URL)

    def validate_saas_config(self) -> list[str]:
        """Validate that required SaaS settings are present. Returns list of missing settings."""
        if not self.is_saas:
            return []

        missing = []
        if not self.DATABASE_URL:
            missing.append("DATABASE_URL")
        if not self.CLERK_SECRET_KEY:
            missing.append("CLERK_SECRET_KEY")
        if not self.CLERK_PUBLISHABLE_KEY:
            missing.append("CLERK_PUBLISHABLE_KEY")
        if not self.STORAGE_SIGNING_SECRET and self.STORAGE_BACKEND == "local":
            missing.append("STORAGE_SIGNING_SECRET")
        return missing


# Accepted extensions per media type. Documents are stored but never converted.
ACCEPTED_EXTENSIONS = {
    "image": {"jpg", "jpeg", "png", "gif", "webp", "svg", "bmp", "heic", "heif"},
    "video": {"mp4", "mov", "webm", "avi", "mkv"},
    "audio": {"mp3", "wav", "aac", "ogg", "flac", "opus"},
    "document": {"pdf", "txt", "doc", "docx"},
}

# MIME prefixes/types accepted per media type
ACCEPTED_MIME_TYPES = {
    "image": {"image/"},
    "video": {"video/"},
    "audio": {"audio/"},
    "document": {
        "application/pdf",
        "text/plain",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    },
}

# Quality labels with the number of lines each needs from the source
QUALITY_LADDER = {"480p": 480, "720p": 720, "1080p": 1080}


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()

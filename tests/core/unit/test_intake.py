"""Tests for intake validation."""

import pytest

from app.config import Settings
from app.exceptions import BatchTooLargeError
from app.intake import (
    ENVIRONMENT_UNSUPPORTED,
    FILE_TOO_LARGE,
    RESOLUTION_TOO_HIGH,
    RESOLUTION_UNKNOWN,
    UNSUPPORTED_FORMAT,
    EnvironmentCapabilities,
    FileDescriptor,
    infer_media_type,
    validate,
    validate_batch,
)
from app.models_media import MediaType

MB = 1024 * 1024


@pytest.fixture
def settings():
    return Settings(_env_file=None)


def video(name="clip.mp4", size=10 * MB, width=1280, height=720):
    return FileDescriptor(name=name, size_bytes=size, mime_type="video/mp4", width=width, height=height)


class TestSingleFile:
    def test_accepts_png(self, settings):
        result = validate(FileDescriptor("a.png", 1000, "image/png"), settings=settings)
        assert result.accepted
        assert result.media_type == MediaType.IMAGE

    def test_rejects_pdf_as_image(self, settings):
        result = validate(
            FileDescriptor("doc.pdf", 1000, "application/pdf"), MediaType.IMAGE, settings=settings
        )
        assert not result.accepted
        assert result.rejection.reason_code == UNSUPPORTED_FORMAT
        assert "doc.pdf" in result.rejection.human_message

    def test_rejects_unknown_type(self, settings):
        result = validate(FileDescriptor("setup.exe", 10, "application/x-msdownload"), settings=settings)
        assert result.rejection.reason_code == UNSUPPORTED_FORMAT

    def test_size_limit_is_inclusive(self, settings):
        at_limit = validate(FileDescriptor("big.png", 200 * MB, "image/png"), settings=settings)
        over = validate(FileDescriptor("big.png", 200 * MB + 1, "image/png"), settings=settings)
        assert at_limit.accepted
        assert over.rejection.reason_code == FILE_TOO_LARGE
        assert "200MB" in over.rejection.human_message

    def test_video_at_1080p_accepted(self, settings):
        assert validate(video(width=1920, height=1080), settings=settings).accepted

    def test_portrait_video_at_1080p_accepted(self, settings):
        assert validate(video(width=1080, height=1920), settings=settings).accepted

    def test_4k_video_rejected(self, settings):
        result = validate(video(width=3840, height=2160), settings=settings)
        assert result.rejection.reason_code == RESOLUTION_TOO_HIGH
        assert "3840x2160" in result.rejection.human_message

    def test_video_without_dimensions_rejected(self, settings):
        result = validate(FileDescriptor("clip.mp4", 1000, "video/mp4"), MediaType.VIDEO, settings=settings)
        assert not result.accepted
        assert result.rejection.reason_code == RESOLUTION_UNKNOWN
        assert "1920x1080" in result.rejection.human_message

    def test_video_without_shared_buffers_rejected(self, settings):
        result = validate(
            video(),
            environment=EnvironmentCapabilities(shared_buffers=False),
            settings=settings,
        )
        assert result.rejection.reason_code == ENVIRONMENT_UNSUPPORTED

    def test_image_does_not_need_shared_buffers(self, settings):
        result = validate(
            FileDescriptor("a.gif", 10, "image/gif"),
            environment=EnvironmentCapabilities(shared_buffers=False),
            settings=settings,
        )
        assert result.accepted

    def test_format_checked_before_size(self, settings):
        result = validate(FileDescriptor("a.exe", 500 * MB, "image/png"), MediaType.IMAGE, settings=settings)
        assert result.rejection.reason_code == UNSUPPORTED_FORMAT

    def test_size_checked_before_resolution(self, settings):
        result = validate(video(size=300 * MB, width=3840, height=2160), settings=settings)
        assert result.rejection.reason_code == FILE_TOO_LARGE


class TestInferMediaType:
    def test_from_extension(self):
        assert infer_media_type(FileDescriptor("song.mp3", 1, "application/octet-stream")) == MediaType.AUDIO

    def test_from_mime_when_no_extension(self):
        assert infer_media_type(FileDescriptor("clip", 1, "video/mp4")) == MediaType.VIDEO


class TestBatch:
    def test_partial_acceptance(self, settings):
        files = [
            FileDescriptor("a.png", 1000, "image/png"),
            FileDescriptor("b.exe", 1000, "application/octet-stream"),
            FileDescriptor("c.jpg", 1000, "image/jpeg"),
        ]
        result = validate_batch(files, settings=settings)
        assert [r.file.name for r in result.accepted] == ["a.png", "c.jpg"]
        assert [r.file_name for r in result.rejected] == ["b.exe"]

    def test_eleven_files_rejected_before_checks(self, settings):
        files = [FileDescriptor(f"{i}.png", 1000, "image/png") for i in range(11)]
        with pytest.raises(BatchTooLargeError) as exc_info:
            validate_batch(files, settings=settings)
        assert exc_info.value.reason_code == "batch_too_large"
        assert exc_info.value.status_code == 400

    def test_ten_files_allowed(self, settings):
        files = [FileDescriptor(f"{i}.png", 1000, "image/png") for i in range(10)]
        assert len(validate_batch(files, settings=settings).accepted) == 10

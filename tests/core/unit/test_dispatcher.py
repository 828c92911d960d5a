"""Tests for processing job dispatch."""

import pytest

from app.config import Settings
from app.exceptions import EnvironmentUnsupported, ProcessingError, RemoteProcessingFailed, UnsupportedFormat
from app.intake import FileDescriptor, validate
from app.models_media import (
    MediaType,
    ProcessingMetrics,
    ProcessingOutcome,
    ProcessingPath,
    ProcessingStatus,
)
from app.planner import ProcessingCapabilities, plan_conversion
from app.processing.base import ProcessingJob, Transcoder
from app.processing.dispatcher import ProcessingDispatcher
from app.tracker import ProcessingTracker

LOCAL = ProcessingCapabilities(local_transcode=True, remote_available=True)


class ScriptedTranscoder(Transcoder):
    """Plays back a list of results; exceptions are raised."""

    def __init__(self, *results):
        self.results = list(results)
        self.jobs: list[ProcessingJob] = []

    async def transcode(self, job):
        self.jobs.append(job)
        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    async def render_preview(self, source_path, media_type, target_path):
        return "thumbs/preview.jpg"


def done(path):
    return ProcessingOutcome(
        success=True,
        processed_path=path,
        metrics=ProcessingMetrics(compression_ratio_percent=30.0, processing_time_ms=50),
    )


@pytest.fixture
def tracker(sqlite_db):
    return ProcessingTracker(db=sqlite_db)


async def start(tracker, item, capabilities=LOCAL):
    await tracker.create_item(item)
    item, _ = await tracker.apply_plan(item.id, plan_conversion(item, capabilities))
    return ProcessingJob.for_item(item)


def dispatcher_for(tracker, transcoder):
    return ProcessingDispatcher(tracker=tracker, transcoder_factory=lambda execution: transcoder, workers=1)


@pytest.mark.asyncio
class TestHeicUpload:
    async def test_heic_is_converted_to_webp_locally(self, tracker, make_item):
        descriptor = FileDescriptor("IMG_0042.heic", 3 * 1024 * 1024, "image/heic")
        checked = validate(descriptor, settings=Settings(_env_file=None))
        assert checked.accepted
        assert checked.media_type == MediaType.IMAGE

        item = make_item("IMG_0042.heic", mime_type="image/heic", original_size_bytes=descriptor.size_bytes)
        job = await start(tracker, item)
        assert job.plan.route == ProcessingPath.WEBP_LOCAL
        assert job.plan.target_format == "webp"
        assert (await tracker.get(item.id)).processing_status == ProcessingStatus.PROCESSING

        await dispatcher_for(tracker, ScriptedTranscoder(done("u/1/processed/IMG_0042.webp"))).run_job(job)

        item = await tracker.get(item.id)
        assert item.processing_status == ProcessingStatus.PROCESSED
        assert item.processing_path == ProcessingPath.WEBP_LOCAL
        assert item.processed_path == "u/1/processed/IMG_0042.webp"


@pytest.mark.asyncio
class TestRunJob:
    async def test_local_success(self, tracker, make_item):
        job = await start(tracker, make_item())
        transcoder = ScriptedTranscoder(done("out.webp"))
        await dispatcher_for(tracker, transcoder).run_job(job)

        item = await tracker.get(job.media_id)
        assert item.processing_status == ProcessingStatus.PROCESSED
        assert item.processing_path == ProcessingPath.WEBP_LOCAL
        assert item.metrics.compression_ratio_percent == 30.0

    async def test_webp_failure_falls_back_to_jpeg(self, tracker, make_item):
        job = await start(tracker, make_item())
        transcoder = ScriptedTranscoder(ProcessingError("libwebp missing"), done("out.jpg"))
        await dispatcher_for(tracker, transcoder).run_job(job)

        item = await tracker.get(job.media_id)
        assert item.processing_status == ProcessingStatus.PROCESSED
        assert item.processing_path == ProcessingPath.JPEG_FALLBACK
        assert [j.plan.route for j in transcoder.jobs] == [
            ProcessingPath.WEBP_LOCAL,
            ProcessingPath.JPEG_FALLBACK,
        ]

    async def test_fallback_is_tried_once(self, tracker, make_item):
        job = await start(tracker, make_item())
        transcoder = ScriptedTranscoder(ProcessingError("one"), ProcessingError("two"))
        await dispatcher_for(tracker, transcoder).run_job(job)

        item = await tracker.get(job.media_id)
        assert item.processing_status == ProcessingStatus.FAILED
        assert item.processing_error == "ProcessingError: two"
        assert len(transcoder.jobs) == 2

    async def test_unsupported_format_is_not_retried(self, tracker, make_item):
        job = await start(tracker, make_item())
        transcoder = ScriptedTranscoder(UnsupportedFormat("Invalid data found"))
        await dispatcher_for(tracker, transcoder).run_job(job)

        item = await tracker.get(job.media_id)
        assert item.processing_status == ProcessingStatus.FAILED
        assert item.processing_error.startswith("UnsupportedFormat")
        assert len(transcoder.jobs) == 1

    async def test_missing_binary_falls_back_then_fails(self, tracker, make_item):
        job = await start(tracker, make_item())
        transcoder = ScriptedTranscoder(EnvironmentUnsupported("no ffmpeg"), EnvironmentUnsupported("no ffmpeg"))
        await dispatcher_for(tracker, transcoder).run_job(job)
        item = await tracker.get(job.media_id)
        assert item.processing_error == "EnvironmentUnsupported: no ffmpeg"

    async def test_unexpected_errors_become_failures(self, tracker, make_item):
        job = await start(tracker, make_item("song.mp3", MediaType.AUDIO, "audio/mpeg"))
        transcoder = ScriptedTranscoder(OSError("disk full"))
        await dispatcher_for(tracker, transcoder).run_job(job)
        item = await tracker.get(job.media_id)
        assert item.processing_status == ProcessingStatus.FAILED
        assert "disk full" in item.processing_error

    async def test_remote_submission_waits_for_callback(self, tracker, make_item):
        item = make_item("clip.mp4", MediaType.VIDEO, "video/mp4", width=1280, height=720)
        job = await start(tracker, item)
        transcoder = ScriptedTranscoder(None)
        await dispatcher_for(tracker, transcoder).run_job(job)

        item = await tracker.get(job.media_id)
        assert item.processing_status == ProcessingStatus.SERVER_PROCESSING

    async def test_remote_submission_failure(self, tracker, make_item):
        item = make_item("clip.mp4", MediaType.VIDEO, "video/mp4", width=1280, height=720)
        job = await start(tracker, item)
        transcoder = ScriptedTranscoder(RemoteProcessingFailed("Remote processing returned 503"))
        await dispatcher_for(tracker, transcoder).run_job(job)

        item = await tracker.get(job.media_id)
        assert item.processing_status == ProcessingStatus.FAILED
        assert item.processing_error.startswith("RemoteProcessingFailed")
        assert len(transcoder.jobs) == 1


@pytest.mark.asyncio
class TestWorkers:
    async def test_queued_jobs_are_processed(self, tracker, make_item):
        jobs = [await start(tracker, make_item()) for _ in range(3)]
        transcoder = ScriptedTranscoder(*(done(f"{i}.webp") for i in range(3)))
        dispatcher = dispatcher_for(tracker, transcoder)

        await dispatcher.start()
        try:
            for job in jobs:
                await dispatcher.submit(job)
            await dispatcher.drain()
        finally:
            await dispatcher.stop()

        for job in jobs:
            assert (await tracker.get(job.media_id)).processing_status == ProcessingStatus.PROCESSED
        assert not dispatcher.running

    async def test_submit_without_workers_runs_inline(self, tracker, make_item):
        job = await start(tracker, make_item())
        dispatcher = dispatcher_for(tracker, ScriptedTranscoder(done("out.webp")))
        await dispatcher.submit(job)
        assert (await tracker.get(job.media_id)).processing_status == ProcessingStatus.PROCESSED

"""Background dispatch of processing jobs.

A fixed pool of workers drains a queue of jobs. Local jobs run to completion
and report straight to the tracker; remote jobs are only submitted and their
outcome arrives on the callback route. A sweep loop fails in-flight items
that have waited longer than the processing timeout.
"""

import asyncio
import contextlib
import logging
from collections.abc import Callable

from app.config import get_settings
from app.exceptions import ProcessingError, UnsupportedFormat
from app.models_media import ProcessingOutcome, ProcessingPath
from app.processing import Transcoder, get_transcoder
from app.processing.base import ProcessingJob
from app.tracker import ProcessingTracker, tracker as default_tracker

logger = logging.getLogger("media.processing")


def _cause(exc: ProcessingError) -> str:
    return f"{exc.reason}: {exc.message}"


class ProcessingDispatcher:
    """Runs conversion plans against processing capabilities."""

    def __init__(
        self,
        tracker: ProcessingTracker | None = None,
        transcoder_factory: Callable[[str], Transcoder] | None = None,
        workers: int | None = None,
    ):
        self.tracker = tracker or default_tracker
        self.transcoder_factory = transcoder_factory or get_transcoder
        self.workers = workers or get_settings().PROCESSING_WORKERS
        self._queue: asyncio.Queue[ProcessingJob] | None = None
        self._tasks: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    async def start(self) -> None:
        if self.running:
            return
        self._queue = asyncio.Queue()
        self._tasks = [
            asyncio.create_task(self._worker(n), name=f"processing-worker-{n}")
            for n in range(self.workers)
        ]
        self._tasks.append(asyncio.create_task(self._sweep_timeouts(), name="processing-sweep"))
        logger.info("Processing dispatcher started with %s workers", self.workers)

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._tasks = []
        self._queue = None
        logger.info("Processing dispatcher stopped")

    async def submit(self, job: ProcessingJob) -> None:
        """Queue a job, or run it inline when no workers are running."""
        if self._queue is None:
            await self.run_job(job)
            return
        await self._queue.put(job)

    async def drain(self) -> None:
        """Wait until every queued job has been handled."""
        if self._queue is not None:
            await self._queue.join()

    async def _worker(self, n: int) -> None:
        assert self._queue is not None
        while True:
            job = await self._queue.get()
            try:
                await self.run_job(job)
            except Exception:
                logger.exception("Worker %s failed on %s", n, job.media_id)
            finally:
                self._queue.task_done()

    async def run_job(self, job: ProcessingJob) -> None:
        """Execute one job and record what happened."""
        try:
            outcome = await self._attempt(job)
        except UnsupportedFormat as e:
            outcome = ProcessingOutcome.failure(_cause(e))
        except ProcessingError as e:
            outcome = await self._fallback(job, e)

        if outcome is None:
            # Accepted remotely; the callback reports the outcome
            return
        outcome.reencode = job.reencode
        await self.tracker.report_outcome(job.media_id, outcome)

    async def _attempt(self, job: ProcessingJob) -> ProcessingOutcome | None:
        transcoder = self.transcoder_factory(job.plan.execution)
        try:
            return await transcoder.transcode(job)
        except ProcessingError:
            raise
        except Exception as e:
            logger.exception("Unexpected processing failure for %s", job.media_id)
            raise ProcessingError(str(e) or type(e).__name__) from e

    async def _fallback(self, job: ProcessingJob, error: ProcessingError) -> ProcessingOutcome:
        if job.reencode or job.plan.route != ProcessingPath.WEBP_LOCAL:
            return ProcessingOutcome.failure(_cause(error))

        logger.warning("Local conversion of %s failed (%s), retrying as JPEG", job.media_id, error)
        plan = await self.tracker.mark_fallback(job.media_id)
        if plan is None:
            return ProcessingOutcome.failure(_cause(error))

        retry = ProcessingJob(
            media_id=job.media_id,
            media_type=job.media_type,
            source_path=job.source_path,
            original_size_bytes=job.original_size_bytes,
            plan=plan,
        )
        try:
            return await self._attempt(retry)
        except ProcessingError as e:
            return ProcessingOutcome.failure(_cause(e))

    async def _sweep_timeouts(self) -> None:
        settings = get_settings()
        while True:
            await asyncio.sleep(settings.TIMEOUT_SWEEP_INTERVAL_SECONDS)
            try:
                await self.tracker.expire_stale(settings.PROCESSING_TIMEOUT_SECONDS)
            except Exception:
                logger.exception("Timeout sweep failed")


# Global instance
dispatcher = ProcessingDispatcher()

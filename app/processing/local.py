"""Local processing through an ffmpeg subprocess."""

import asyncio
import logging
import shutil
import tempfile
import time
from pathlib import Path

import aiofiles

from app.config import get_settings
from app.exceptions import EnvironmentUnsupported, ProcessingError, UnsupportedFormat
from app.models_media import MediaType, ProcessingMetrics, ProcessingOutcome, ProcessingPath
from app.processing.base import ProcessingJob, Transcoder, compression_ratio
from app.storage import StorageBackend, get_storage

logger = logging.getLogger("media.processing")

# ffmpeg stderr fragments that mean the input itself is unreadable
_FORMAT_ERRORS = (
    "Invalid data found",
    "could not find codec parameters",
    "Unsupported codec",
    "does not contain any stream",
)

# route/target -> (extension, content type, output args)
_OUTPUTS = {
    ProcessingPath.WEBP_LOCAL: ("webp", "image/webp", ["-c:v", "libwebp", "-quality", "80"]),
    ProcessingPath.JPEG_FALLBACK: ("jpg", "image/jpeg", ["-q:v", "3"]),
    "webm": ("webm", "audio/webm", ["-vn", "-c:a", "libopus", "-b:a", "96k"]),
}

PREVIEW_WIDTH = 320


class FFmpegTranscoder(Transcoder):
    """Runs conversions with a local ffmpeg binary."""

    def __init__(self, binary: str | None = None, storage: StorageBackend | None = None):
        self.binary = binary or get_settings().FFMPEG_BINARY
        self._storage = storage

    @property
    def storage(self) -> StorageBackend:
        return self._storage or get_storage()

    def is_available(self) -> bool:
        return shutil.which(self.binary) is not None

    async def _run(self, args: list[str]) -> None:
        try:
            process = await asyncio.create_subprocess_exec(
                self.binary,
                "-hide_banner",
                "-loglevel",
                "error",
                "-y",
                *args,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError:
            raise EnvironmentUnsupported(f"{self.binary} is not installed") from None

        _, stderr = await process.communicate()
        if process.returncode != 0:
            message = stderr.decode("utf-8", errors="replace").strip()[-500:]
            if any(fragment in message for fragment in _FORMAT_ERRORS):
                raise UnsupportedFormat(message or "Unreadable source")
            raise ProcessingError(message or f"ffmpeg exited with {process.returncode}")

    async def _stage(self, storage_path: str, workdir: Path) -> Path:
        """Copy a stored object into the working directory."""
        source = workdir / f"input{Path(storage_path).suffix}"
        data = await self.storage.read(storage_path)
        async with aiofiles.open(source, "wb") as f:
            await f.write(data)
        return source

    async def transcode(self, job: ProcessingJob) -> ProcessingOutcome:
        key = job.plan.route if job.plan.route in _OUTPUTS else job.plan.target_format
        if key not in _OUTPUTS:
            raise UnsupportedFormat(f"No local conversion to {job.plan.target_format}")
        extension, content_type, output_args = _OUTPUTS[key]

        started = time.monotonic()
        with tempfile.TemporaryDirectory(prefix="transcode-") as tmp:
            workdir = Path(tmp)
            source = await self._stage(job.source_path, workdir)
            output = workdir / f"output.{extension}"
            await self._run(["-i", str(source), *output_args, str(output)])

            async with aiofiles.open(output, "rb") as f:
                data = await f.read()

        processed_path = job.processed_path(extension)
        await self.storage.write(processed_path, data, content_type)

        elapsed_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            "Transcoded %s via %s in %sms (%s -> %s bytes)",
            job.media_id,
            job.plan.route.value,
            elapsed_ms,
            job.original_size_bytes,
            len(data),
        )
        return ProcessingOutcome(
            success=True,
            processed_path=processed_path,
            metrics=ProcessingMetrics(
                compression_ratio_percent=compression_ratio(job.original_size_bytes, len(data)),
                processing_time_ms=elapsed_ms,
            ),
        )

    async def render_preview(self, source_path: str, media_type: MediaType, target_path: str) -> str:
        if media_type not in (MediaType.IMAGE, MediaType.VIDEO):
            raise UnsupportedFormat(f"No preview for {media_type.value}")

        with tempfile.TemporaryDirectory(prefix="preview-") as tmp:
            workdir = Path(tmp)
            source = await self._stage(source_path, workdir)
            output = workdir / "preview.jpg"
            seek = ["-ss", "1"] if media_type == MediaType.VIDEO else []
            await self._run(
                [*seek, "-i", str(source), "-frames:v", "1", "-vf", f"scale={PREVIEW_WIDTH}:-2", str(output)]
            )
            async with aiofiles.open(output, "rb") as f:
                data = await f.read()

        await self.storage.write(target_path, data, "image/jpeg")
        return target_path

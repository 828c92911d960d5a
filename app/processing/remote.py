"""Remote transcoding service client.

Jobs are submitted over HTTP and the service reports back on the signed
outcome callback route. Previews are rendered synchronously.
"""

import logging

import httpx

from app.config import get_settings
from app.exceptions import RemoteProcessingFailed, UnsupportedFormat
from app.models_media import MediaType
from app.processing.base import ProcessingJob, Transcoder, thumbnail_path

logger = logging.getLogger("media.processing")

SUBMIT_TIMEOUT_SECONDS = 30.0


class RemoteTranscoder(Transcoder):
    """Client for an external transcoding service."""

    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        app_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        settings = get_settings()
        self.base_url = (base_url or settings.REMOTE_PROCESSING_URL or "").rstrip("/")
        self.token = token if token is not None else settings.REMOTE_PROCESSING_TOKEN
        self.app_url = (app_url or settings.APP_URL).rstrip("/")
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=SUBMIT_TIMEOUT_SECONDS,
            transport=self._transport,
        )

    def callback_url(self, media_id: str) -> str:
        return f"{self.app_url}/api/v1/media/{media_id}/outcome"

    def job_payload(self, job: ProcessingJob) -> dict:
        return {
            "mediaId": job.media_id,
            "planId": job.plan.plan_id,
            "mediaType": job.media_type.value,
            "sourcePath": job.source_path,
            "targetFormat": job.plan.target_format,
            "route": job.plan.route.value,
            "qualities": {label: job.variant_path(label) for label in job.plan.quality_labels},
            "processedPath": job.processed_path(job.plan.target_format),
            "thumbnailPath": thumbnail_path(job.source_path),
            "reencode": job.reencode,
            "callbackUrl": self.callback_url(job.media_id),
        }

    async def _post(self, endpoint: str, payload: dict) -> httpx.Response:
        if not self.base_url:
            raise RemoteProcessingFailed("Remote processing is not configured")
        try:
            async with self._client() as client:
                response = await client.post(endpoint, json=payload)
        except httpx.HTTPError as e:
            logger.warning("Remote processing request to %s failed: %s", endpoint, e)
            raise RemoteProcessingFailed(f"Remote processing unreachable: {e}") from e

        if response.status_code == 415:
            raise UnsupportedFormat(response.text or "Remote service cannot decode source")
        if response.status_code >= 400:
            logger.warning(
                "Remote processing rejected %s: %s %s",
                endpoint,
                response.status_code,
                response.text[:200],
            )
            raise RemoteProcessingFailed(f"Remote processing returned {response.status_code}")
        return response

    async def transcode(self, job: ProcessingJob) -> None:
        await self._post("/jobs/transcode", self.job_payload(job))
        logger.info("Submitted %s to remote processing (%s)", job.media_id, job.plan.route.value)
        return None

    async def render_preview(self, source_path: str, media_type: MediaType, target_path: str) -> str:
        await self._post(
            "/jobs/preview",
            {"sourcePath": source_path, "mediaType": media_type.value, "thumbnailPath": target_path},
        )
        return target_path

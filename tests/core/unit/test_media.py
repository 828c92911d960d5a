"""Tests for the media API."""

import io
import json
import os
import tempfile
import time
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from app.models_media import ProcessingMetrics, ProcessingOutcome
from app.processing.base import Transcoder
from app.storage import get_storage


class FakeTranscoder(Transcoder):
    """Local jobs finish instantly; remote jobs wait for a callback."""

    def __init__(self, execution: str):
        self.execution = execution

    async def transcode(self, job):
        if self.execution == "remote":
            return None
        path = job.processed_path(job.plan.target_format)
        await get_storage().write(path, b"converted", "application/octet-stream")
        return ProcessingOutcome(
            success=True,
            processed_path=path,
            metrics=ProcessingMetrics(compression_ratio_percent=42.5, processing_time_ms=12),
        )

    async def render_preview(self, source_path, media_type, target_path):
        await get_storage().write(target_path, b"preview", "image/jpeg")
        return target_path


# Use a temporary database and storage for tests
@pytest.fixture(scope="module", autouse=True)
def setup_test_environment():
    """Set up a temporary database and storage for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        test_db_path = str(Path(tmpdir) / "test_media.db")
        test_media_path = str(Path(tmpdir) / "media")
        os.makedirs(test_media_path, exist_ok=True)

        os.environ["SQLITE_PATH"] = test_db_path
        os.environ["STORAGE_LOCAL_PATH"] = test_media_path
        os.environ["STORAGE_BACKEND"] = "local"
        os.environ["APP_URL"] = "http://testserver"
        os.environ["REMOTE_PROCESSING_URL"] = "http://transcoder.test"
        os.environ["PROCESSING_CALLBACK_SECRET"] = "callback-secret"

        # Clear the cached settings so it picks up the new env vars
        from app.config import get_settings

        get_settings.cache_clear()

        from app.db.factory import reset_database

        reset_database()

        from app.storage import clear_storage_cache

        clear_storage_cache()

        import app.routes.media as media_routes
        from app.main import app
        from app.processing.dispatcher import dispatcher
        from app.thumbnails import thumbnail_cache

        original_factory = dispatcher.transcoder_factory
        original_preview = media_routes.get_preview_transcoder
        dispatcher.transcoder_factory = FakeTranscoder
        media_routes.get_preview_transcoder = lambda: FakeTranscoder("local")
        thumbnail_cache.clear()

        yield app

        # Clean up
        dispatcher.transcoder_factory = original_factory
        media_routes.get_preview_transcoder = original_preview
        thumbnail_cache.clear()
        for name in ("APP_URL", "REMOTE_PROCESSING_URL", "PROCESSING_CALLBACK_SECRET"):
            os.environ.pop(name, None)
        reset_database()
        clear_storage_cache()
        get_settings.cache_clear()


@pytest.fixture(scope="module")
def client(setup_test_environment):
    """Test client with the lifespan running, so processing workers are live."""
    with TestClient(setup_test_environment) as client:
        yield client


# 1x1 pixel red PNG
PNG = (
    b"\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR\x00\x00\x00\x01"
    b"\x00\x00\x00\x01\x08\x02\x00\x00\x00\x90wS\xde\x00\x00\x00"
    b"\x0cIDATx\x9cc\xf8\xcf\xc0\x00\x00\x00\x03\x00\x01\x00"
    b"\x05\xfe\xd4\x00\x00\x00\x00IEND\xaeB`\x82"
)


def intake(client, *files, **data):
    return client.post(
        "/api/v1/media/intake",
        files=[("files", (name, io.BytesIO(content), mime)) for name, content, mime in files],
        data=data,
    )


def intake_one(client, name="photo.png", content=PNG, mime="image/png", **data) -> dict:
    response = intake(client, (name, content, mime), **data)
    assert response.status_code == 200, response.text
    accepted = response.json()["accepted"]
    assert len(accepted) == 1
    return accepted[0]


def wait_for_terminal(client, media_id, timeout=5.0) -> dict:
    deadline = time.monotonic() + timeout
    while True:
        data = client.get(f"/api/v1/media/{media_id}").json()
        if data["processing_status"] in ("processed", "failed") or time.monotonic() > deadline:
            return data
        time.sleep(0.05)


def post_outcome(client, media_id, payload: dict, signature: str | None = None):
    from app.security import sign_callback

    body = json.dumps(payload).encode()
    return client.post(
        f"/api/v1/media/{media_id}/outcome",
        content=body,
        headers={
            "Content-Type": "application/json",
            "X-Processing-Signature": signature if signature is not None else sign_callback(body),
        },
    )


def upload_video(client, width=1280, height=720) -> dict:
    return intake_one(
        client,
        "clip.mp4",
        b"\x00\x00\x00\x18ftypmp42",
        "video/mp4",
        dimensions=json.dumps([{"width": width, "height": height}]),
    )


class TestIntake:
    def test_png_is_converted_locally(self, client):
        item = intake_one(client)
        assert item["processing_status"] in ("processing", "processed")

        item = wait_for_terminal(client, item["id"])
        assert item["processing_status"] == "processed"
        assert item["processing_path"] == "webp_local"
        assert item["processed_path"].endswith("/processed/photo.webp")
        assert item["metrics"] == {"compression_ratio_percent": 42.5, "processing_time_ms": 12}

    def test_jpeg_passes_through(self, client):
        item = intake_one(client, "photo.jpg", b"\xff\xd8\xff\xe0jpeg", "image/jpeg")
        assert item["processing_status"] == "processed"
        assert item["processing_path"] == "jpeg_passthrough"
        assert item["processed_path"] == item["storage_path"]

    def test_partial_batch(self, client):
        response = intake(
            client,
            ("ok.png", PNG, "image/png"),
            ("virus.exe", b"MZ", "application/octet-stream"),
        )
        assert response.status_code == 200
        data = response.json()
        assert [item["original_filename"] for item in data["accepted"]] == ["ok.png"]
        assert data["rejected"][0]["file_name"] == "virus.exe"
        assert data["rejected"][0]["reason_code"] == "unsupported_format"

    def test_batch_over_limit(self, client):
        files = [(f"{i}.png", PNG, "image/png") for i in range(11)]
        response = intake(client, *files)
        assert response.status_code == 400
        data = response.json()
        assert data["reason_code"] == "batch_too_large"
        assert "11" in data["error"]

    def test_batch_over_limit_is_rejected_unread(self, client, monkeypatch):
        from fastapi.datastructures import UploadFile

        reads = []
        original_read = UploadFile.read

        async def counting_read(self, *args, **kwargs):
            reads.append(self.filename)
            return await original_read(self, *args, **kwargs)

        monkeypatch.setattr(UploadFile, "read", counting_read)
        response = intake(client, *[(f"{i}.png", PNG, "image/png") for i in range(11)])
        assert response.status_code == 400
        assert reads == []

    def test_video_needs_shared_buffers(self, client):
        response = intake(
            client,
            ("clip.mp4", b"\x00", "video/mp4"),
            shared_buffers="false",
            dimensions=json.dumps([{"width": 1280, "height": 720}]),
        )
        data = response.json()
        assert data["accepted"] == []
        assert data["rejected"][0]["reason_code"] == "environment_unsupported"

    def test_oversized_video_rejected(self, client):
        response = intake(
            client,
            ("clip.mp4", b"\x00", "video/mp4"),
            dimensions=json.dumps([{"width": 3840, "height": 2160}]),
        )
        assert response.json()["rejected"][0]["reason_code"] == "resolution_too_high"

    def test_video_without_dimensions_rejected(self, client):
        response = intake(client, ("clip.mp4", b"\x00", "video/mp4"))
        data = response.json()
        assert data["accepted"] == []
        assert data["rejected"][0]["reason_code"] == "resolution_unknown"

    def test_document_is_stored_but_not_converted(self, client):
        item = intake_one(client, "notes.pdf", b"%PDF-1.4", "application/pdf")
        assert item["processing_status"] == "processed"
        assert item["processing_path"] == "none"
        assert item["processed_path"] == item["storage_path"]
        assert item["processing_error"] is None

    def test_bad_dimensions(self, client):
        response = intake(client, ("clip.mp4", b"\x00", "video/mp4"), dimensions="not json")
        assert response.status_code == 400
        assert response.json()["reason_code"] == "invalid_dimensions"


class TestRemoteOutcome:
    def test_video_waits_for_callback(self, client):
        item = upload_video(client)
        assert item["processing_status"] == "server_processing"

        response = post_outcome(
            client,
            item["id"],
            {
                "success": True,
                "processed_path": item["storage_path"],
                "quality_variants": {"480p": "v/480.mp4", "720p": "v/720.mp4"},
                "metrics": {"compression_ratio_percent": 10, "processing_time_ms": 9000},
            },
        )
        assert response.status_code == 200
        data = response.json()
        assert data["processing_status"] == "processed"
        assert data["quality_variants"] == {"480p": "v/480.mp4", "720p": "v/720.mp4"}

    def test_unsigned_callback_rejected(self, client):
        item = upload_video(client)
        response = post_outcome(client, item["id"], {"success": True}, signature="forged")
        assert response.status_code == 401
        assert client.get(f"/api/v1/media/{item['id']}").json()["processing_status"] == "server_processing"

    def test_failure_callback(self, client):
        item = upload_video(client)
        response = post_outcome(client, item["id"], {"success": False, "cause": "RemoteProcessingFailed: codec"})
        assert response.json()["processing_status"] == "failed"
        assert response.json()["processing_error"] == "RemoteProcessingFailed: codec"

    def test_callback_for_unknown_item(self, client):
        response = post_outcome(client, "missing", {"success": True})
        assert response.status_code == 404
        assert response.json() == {"error": "Media not found"}


class TestVariants:
    def processed_video(self, client) -> dict:
        item = upload_video(client)
        post_outcome(
            client,
            item["id"],
            {
                "success": True,
                "processed_path": item["storage_path"],
                "quality_variants": {"480p": "v/480.mp4", "720p": "v/720.mp4"},
            },
        )
        return item

    def test_default_selection(self, client):
        item = self.processed_video(client)
        data = client.get(f"/api/v1/media/{item['id']}/variants").json()
        assert data == {"variants": ["480p", "720p"], "current": "720p", "has_selector": True}

    def test_low_bandwidth_selection(self, client):
        item = self.processed_video(client)
        data = client.get(f"/api/v1/media/{item['id']}/variants?low_bandwidth=true").json()
        assert data["current"] == "480p"

    def test_image_has_no_selector(self, client):
        item = intake_one(client, "photo.jpg", b"\xff\xd8", "image/jpeg")
        data = client.get(f"/api/v1/media/{item['id']}/variants").json()
        assert data == {"variants": [], "current": None, "has_selector": False}

    def test_reencode_adds_variant(self, client):
        item = self.processed_video(client)
        response = client.post(f"/api/v1/media/{item['id']}/reencode", json={"quality_labels": ["1080p"]})
        assert response.status_code == 200
        assert response.json()["processing_status"] == "processed"

        post_outcome(
            client,
            item["id"],
            {
                "success": True,
                "processed_path": item["storage_path"],
                "quality_variants": {"1080p": "v/1080.mp4"},
                "reencode": True,
            },
        )
        data = client.get(f"/api/v1/media/{item['id']}/variants").json()
        assert data["variants"] == ["480p", "720p", "1080p"]

    def test_reencode_needs_processed_video(self, client):
        item = upload_video(client)
        response = client.post(f"/api/v1/media/{item['id']}/reencode", json={"quality_labels": ["1080p"]})
        assert response.status_code == 409


def wait_for_preview(client, media_id, timeout=5.0) -> dict:
    deadline = time.monotonic() + timeout
    while True:
        data = client.get(f"/api/v1/media/{media_id}/preview").json()
        if not data["is_loading"] or time.monotonic() > deadline:
            return data
        time.sleep(0.05)


class TestPreview:
    def test_preview_loads_then_resolves(self, client):
        item = intake_one(client, "preview.png", PNG + b"preview-test", "image/png")
        first = client.get(f"/api/v1/media/{item['id']}/preview").json()
        assert first["placeholder"] == "image"

        deadline = time.monotonic() + 5
        data = first
        while data["is_loading"] and time.monotonic() < deadline:
            time.sleep(0.05)
            data = client.get(f"/api/v1/media/{item['id']}/preview").json()

        assert data["is_loading"] is False
        assert data["preview_url"].startswith("http://testserver/media/files/")

        response = client.get(data["preview_url"])
        assert response.status_code == 200
        assert response.content == b"preview"

    def test_identical_uploads_share_a_neutral_preview(self, client):
        content = PNG + b"shared-preview"
        first = intake_one(client, "first.png", content, "image/png")
        second = intake_one(client, "second.png", content, "image/png")

        first_url = wait_for_preview(client, first["id"])["preview_url"]
        second_url = wait_for_preview(client, second["id"])["preview_url"]
        for url in (first_url, second_url):
            path = url.split("?")[0]
            assert path.startswith("http://testserver/media/files/previews/")
            assert first["id"] not in path
            assert second["id"] not in path

        preview_file = get_storage().get_file_path(first_url.split("/media/files/")[1].split("?")[0])
        assert client.delete(f"/api/v1/media/{first['id']}").status_code == 200
        assert preview_file.exists()

        data = wait_for_preview(client, second["id"])
        assert client.get(data["preview_url"]).content == b"preview"

    def test_audio_gets_placeholder(self, client):
        item = intake_one(client, "song.mp3", b"ID3", "audio/mpeg")
        data = client.get(f"/api/v1/media/{item['id']}/preview").json()
        assert data == {"preview_url": None, "is_loading": False, "placeholder": "audio"}


class TestMediaList:
    def test_list_media(self, client):
        intake_one(client, "list_test.jpg", b"\xff\xd8", "image/jpeg")
        response = client.get("/api/v1/media")

        assert response.status_code == 200
        data = response.json()
        assert data["total_count"] >= 1
        assert len(data["media"]) <= 20

    def test_list_media_pagination(self, client):
        response = client.get("/api/v1/media?page=1&per_page=2")
        assert response.status_code == 200
        assert len(response.json()["media"]) <= 2

    def test_status_filter(self, client):
        response = client.get("/api/v1/media?status=failed")
        assert response.status_code == 200
        for item in response.json()["media"]:
            assert item["processing_status"] == "failed"


class TestMediaGet:
    def test_get_nonexistent_media(self, client):
        response = client.get("/api/v1/media/nonexistent-id")
        assert response.status_code == 404


class TestMediaDelete:
    def test_delete_media(self, client):
        item = intake_one(client, "delete_test.jpg", b"\xff\xd8", "image/jpeg")

        response = client.delete(f"/api/v1/media/{item['id']}")
        assert response.status_code == 200
        assert response.json()["success"] is True

        assert client.get(f"/api/v1/media/{item['id']}").status_code == 404
        assert not get_storage().get_file_path(item["storage_path"]).exists()

    def test_delete_nonexistent_media(self, client):
        assert client.delete("/api/v1/media/nonexistent-id").status_code == 404


class TestDelivery:
    def test_signed_url_serves_file(self, client):
        item = intake_one(client, "serve_test.jpg", b"\xff\xd8served", "image/jpeg")

        response = client.get("/api/v1/secure-media", params={"path": item["storage_path"]})
        assert response.status_code == 200
        url = response.json()["url"]

        served = client.get(url)
        assert served.status_code == 200
        assert served.headers["content-type"] == "image/jpeg"
        assert served.content == b"\xff\xd8served"

    def test_tampered_signature(self, client):
        item = intake_one(client, "tamper.jpg", b"\xff\xd8", "image/jpeg")
        url = client.get("/api/v1/secure-media", params={"path": item["storage_path"]}).json()["url"]
        response = client.get(url.replace("signature=", "signature=00"))
        assert response.status_code == 403

    def test_unsigned_file_request(self, client):
        response = client.get("/media/files/nonexistent/path/file.png")
        assert response.status_code == 403

    def test_unknown_path_denied(self, client):
        response = client.get("/api/v1/secure-media", params={"path": "someone/else/file.png"})
        # Self-hosted mode grants every path it can find a record for
        assert response.status_code == 403
        assert response.json() == {"error": "Access denied"}


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"

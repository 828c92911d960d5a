"""Media intake, status and processing callback endpoints."""

import json
from typing import Annotated

from fastapi import APIRouter, File, Form, Header, HTTPException, Query, Request, UploadFile
from fastapi.responses import FileResponse

from ..auth import AuthUser, RequiredUser
from ..authz import can_access_media
from ..config import get_settings
from ..db import get_database
from ..exceptions import BatchTooLargeError, ValidationError
from ..intake import EnvironmentCapabilities, FileDescriptor
from ..models_media import (
    DeleteResponse,
    ErrorResponse,
    IntakeResponse,
    MediaItem,
    MediaItemResponse,
    MediaListResponse,
    MediaType,
    PreviewResponse,
    ProcessingOutcome,
    ProcessingStatus,
    ReencodeRequest,
    RejectionResponse,
    VariantsResponse,
)
from ..pipeline import IncomingFile, pipeline
from ..processing import get_preview_transcoder, preview_path
from ..rate_limit import RATE_LIMIT_INTAKE, RATE_LIMIT_MUTATE, RATE_LIMIT_READ, limiter
from ..security import verify_callback, verify_signed_query
from ..storage import get_storage
from ..storage.local import LocalStorage
from ..thumbnails import placeholder_for, thumbnail_cache
from ..tracker import tracker
from ..variants import VariantSelector

router = APIRouter(prefix="/api/v1/media", tags=["Media"])

PREVIEWABLE = (MediaType.IMAGE, MediaType.VIDEO)


async def _get_accessible_item(media_id: str, user: AuthUser) -> MediaItem:
    item = await get_database().get_media_item(media_id)
    # Items the caller cannot see are reported as missing
    if item is None or not can_access_media(user, item):
        raise HTTPException(status_code=404, detail="Media not found")
    return item


def _parse_dimensions(raw: str | None, count: int) -> list[dict]:
    """Per-file {width, height} list sent alongside the files."""
    if not raw:
        return [{}] * count
    try:
        parsed = json.loads(raw)
    except ValueError:
        raise ValidationError("dimensions must be a JSON list", reason_code="invalid_dimensions") from None
    if not isinstance(parsed, list):
        raise ValidationError("dimensions must be a JSON list", reason_code="invalid_dimensions")
    parsed = [entry if isinstance(entry, dict) else {} for entry in parsed]
    return (parsed + [{}] * count)[:count]


@router.post(
    "/intake",
    response_model=IntakeResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Batch too large"},
        401: {"model": ErrorResponse, "description": "Authentication required"},
    },
)
@limiter.limit(RATE_LIMIT_INTAKE)
async def intake_media(
    request: Request,
    user: RequiredUser,
    files: list[UploadFile] = File(...),
    media_type: MediaType | None = Form(None),
    dimensions: str | None = Form(None, description="JSON list of {width, height} per file"),
    shared_buffers: bool = Form(True),
    local_transcode: bool = Form(True),
):
    """Upload a batch of files.

    Accepted files are stored and planned immediately; rejected files are
    reported with a reason code and never stored. A batch over the file
    limit is rejected as a whole, before any upload is read.
    """
    settings = get_settings()
    if len(files) > settings.MAX_BATCH_FILES:
        raise BatchTooLargeError(len(files), settings.MAX_BATCH_FILES)

    sizes = _parse_dimensions(dimensions, len(files))
    incoming = []
    for upload, dims in zip(files, sizes, strict=True):
        data = await upload.read()
        incoming.append(
            IncomingFile(
                descriptor=FileDescriptor(
                    name=upload.filename or "unnamed",
                    size_bytes=len(data),
                    mime_type=upload.content_type or "application/octet-stream",
                    width=dims.get("width"),
                    height=dims.get("height"),
                ),
                data=data,
            )
        )

    result = await pipeline.ingest(
        incoming,
        user,
        media_type=media_type,
        environment=EnvironmentCapabilities(
            shared_buffers=shared_buffers, local_transcode=local_transcode
        ),
    )
    return IntakeResponse(
        accepted=[MediaItemResponse.from_item(item) for item in result.accepted],
        rejected=[RejectionResponse(**vars(rejection)) for rejection in result.rejected],
    )


@router.get("", response_model=MediaListResponse)
@limiter.limit(RATE_LIMIT_READ)
async def list_media(
    request: Request,
    user: RequiredUser,
    page: int = Query(1, ge=1, description="Page number"),
    per_page: int = Query(20, ge=1, le=100, description="Items per page"),
    status: ProcessingStatus | None = Query(None, description="Filter by processing status"),
):
    """List media items with pagination.

    In SaaS mode, returns only the caller's and their org's media.
    """
    settings = get_settings()

    owner_id = user.user_id if settings.is_saas else None
    org_id = user.org_id if settings.is_saas else None

    db = get_database()
    items = await db.list_media_items(
        limit=per_page,
        offset=(page - 1) * per_page,
        owner_id=owner_id,
        org_id=org_id,
        status=status,
    )
    total_count = await db.count_media_items(owner_id=owner_id, org_id=org_id, status=status)

    return MediaListResponse(
        media=[MediaItemResponse.from_item(item) for item in items],
        total_count=total_count,
    )


@router.get(
    "/{media_id}",
    response_model=MediaItemResponse,
    responses={404: {"model": ErrorResponse, "description": "Media not found"}},
)
@limiter.limit(RATE_LIMIT_READ)
async def get_media(request: Request, media_id: str, user: RequiredUser):
    """Get status, metrics and variants of a media item."""
    item = await _get_accessible_item(media_id, user)
    return MediaItemResponse.from_item(item)


@router.get("/{media_id}/variants", response_model=VariantsResponse)
@limiter.limit(RATE_LIMIT_READ)
async def get_variants(
    request: Request,
    media_id: str,
    user: RequiredUser,
    low_bandwidth: bool = Query(False, description="Start on the lowest quality"),
):
    """Selectable quality variants and the default pick for a player."""
    item = await _get_accessible_item(media_id, user)
    selector = VariantSelector(item, low_bandwidth=low_bandwidth)
    return VariantsResponse(
        variants=selector.variants,
        current=selector.current,
        has_selector=selector.has_selector,
    )


@router.get("/{media_id}/preview", response_model=PreviewResponse)
@limiter.limit(RATE_LIMIT_READ)
async def get_preview(request: Request, media_id: str, user: RequiredUser):
    """Preview image for a media item.

    Never waits for rendering: while the preview is being computed, or when
    it could not be produced, the response carries only a placeholder icon.
    """
    item = await _get_accessible_item(media_id, user)
    placeholder = placeholder_for(item.media_type)
    if item.media_type not in PREVIEWABLE:
        return PreviewResponse(preview_url=None, is_loading=False, placeholder=placeholder)

    transcoder = get_preview_transcoder()
    target = preview_path(item.fingerprint)
    preview, is_loading = thumbnail_cache.get_or_compute(
        item.fingerprint,
        lambda: transcoder.render_preview(item.storage_path, item.media_type, target),
    )
    preview_url = None
    if preview:
        settings = get_settings()
        preview_url = await get_storage().create_signed_url(preview, settings.SIGNED_URL_TTL_SECONDS)
    return PreviewResponse(preview_url=preview_url, is_loading=is_loading, placeholder=placeholder)


@router.post(
    "/{media_id}/outcome",
    response_model=MediaItemResponse,
    responses={401: {"model": ErrorResponse, "description": "Bad signature"}},
)
async def report_outcome(
    media_id: str,
    request: Request,
    x_processing_signature: Annotated[str | None, Header()] = None,
):
    """Callback for the remote processing service.

    The body is a ProcessingOutcome signed with the shared callback secret.
    Late or duplicate reports are accepted and ignored.
    """
    body = await request.body()
    if not verify_callback(body, x_processing_signature):
        raise HTTPException(status_code=401, detail="Invalid signature")

    try:
        outcome = ProcessingOutcome.model_validate_json(body)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=f"Invalid outcome: {e}") from None

    item = await tracker.report_outcome(media_id, outcome)
    return MediaItemResponse.from_item(item)


@router.post("/{media_id}/reencode", response_model=MediaItemResponse)
@limiter.limit(RATE_LIMIT_MUTATE)
async def reencode_media(
    request: Request,
    media_id: str,
    body: ReencodeRequest,
    user: RequiredUser,
):
    """Request more quality variants for a processed video."""
    item = await _get_accessible_item(media_id, user)
    item = await pipeline.reencode(item, body.quality_labels)
    return MediaItemResponse.from_item(item)


@router.delete(
    "/{media_id}",
    response_model=DeleteResponse,
    responses={404: {"model": ErrorResponse, "description": "Media not found"}},
)
@limiter.limit(RATE_LIMIT_MUTATE)
async def delete_media(request: Request, media_id: str, user: RequiredUser):
    """Delete a media item, its stored objects and its cached preview."""
    item = await _get_accessible_item(media_id, user)
    await pipeline.remove(item)
    await get_database().delete_media_item(item.id)
    thumbnail_cache.evict(item.fingerprint)
    return DeleteResponse()


# Signed file serving for local storage (no session auth; the URL is the credential)
public_router = APIRouter(tags=["Media"])

CONTENT_TYPES = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".svg": "image/svg+xml",
    ".mp4": "video/mp4",
    ".webm": "video/webm",
    ".mov": "video/quicktime",
    ".mp3": "audio/mpeg",
    ".wav": "audio/wav",
    ".ogg": "audio/ogg",
    ".pdf": "application/pdf",
}


@public_router.get("/media/files/{file_path:path}")
async def serve_media_file(file_path: str, request: Request):
    """Serve a locally stored file behind a signed, expiring URL."""
    if not verify_signed_query(file_path, dict(request.query_params)):
        raise HTTPException(status_code=403, detail="Invalid or expired link")

    storage = get_storage()
    if not isinstance(storage, LocalStorage):
        raise HTTPException(status_code=404, detail="File not found")

    try:
        full_path = storage.get_file_path(file_path)
    except ValueError:
        raise HTTPException(status_code=404, detail="File not found") from None
    if not full_path.is_file():
        raise HTTPException(status_code=404, detail="File not found")

    return FileResponse(
        path=full_path,
        media_type=CONTENT_TYPES.get(full_path.suffix.lower(), "application/octet-stream"),
        filename=full_path.name,
    )

"""Secure media delivery endpoint."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request, Response
from fastapi.responses import JSONResponse

from ..auth import OptionalUser
from ..authz import AccessDecider, get_access_decider
from ..delivery import SecureDeliveryGateway, parse_transform
from ..exceptions import MediaServiceError, TransientInfraError
from ..rate_limit import RATE_LIMIT_DELIVERY, limiter

logger = logging.getLogger("media.delivery")

router = APIRouter(prefix="/api/v1", tags=["Delivery"])

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
}


def get_delivery_gateway(
    decider: Annotated[AccessDecider, Depends(get_access_decider)],
) -> SecureDeliveryGateway:
    return SecureDeliveryGateway(decider=decider)


@router.options("/secure-media", include_in_schema=False)
async def secure_media_preflight():
    return Response(status_code=200, headers=CORS_HEADERS)


@router.get(
    "/secure-media",
    responses={
        400: {"description": "Missing or invalid path"},
        403: {"description": "Access denied"},
        500: {"description": "Storage failure"},
    },
)
@limiter.limit(RATE_LIMIT_DELIVERY)
async def secure_media(
    request: Request,
    gateway: Annotated[SecureDeliveryGateway, Depends(get_delivery_gateway)],
    user: OptionalUser = None,
    path: str | None = Query(None, description="Storage path of the object"),
    width: str | None = Query(None, description="Resize width in pixels (images)"),
    height: str | None = Query(None, description="Resize height in pixels, or variant height for videos"),
    quality: str = Query("75", description="Output quality 1-100"),
):
    """Issue a short-lived signed URL for a stored object.

    The caller is authorized for this exact path on every request. Image
    requests with a width or height get a resized WebP.
    """
    try:
        transform = parse_transform(width, height, quality, gateway.settings) if path else None
        result = await gateway.issue_delivery_url(path, user, transform)
    except MediaServiceError as e:
        return JSONResponse(status_code=e.status_code, content={"error": e.message}, headers=CORS_HEADERS)
    except Exception:
        logger.exception("Unhandled error issuing delivery URL for %s", path)
        error = TransientInfraError()
        return JSONResponse(status_code=error.status_code, content={"error": error.message}, headers=CORS_HEADERS)

    return JSONResponse(
        content=result.to_response(),
        headers={**CORS_HEADERS, "Cache-Control": result.cache_control},
    )

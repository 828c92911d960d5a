"""Authentication for the media service.

Handles Clerk authentication in SaaS mode using the official Clerk SDK.
In self-hosted mode, authentication is bypassed and every request acts as
a single self-hosted user.
"""

import logging
from dataclasses import dataclass
from typing import Annotated

from clerk_backend_api import AuthenticateRequestOptions, Clerk
from fastapi import Depends, HTTPException, Request

from .config import get_settings

logger = logging.getLogger("media.auth")

# Clerk SDK instance (lazy initialized)
_clerk_client: Clerk | None = None

SELF_HOSTED_USER_ID = "self-hosted"


def _get_clerk() -> Clerk:
    """Get or create the Clerk client instance."""
    global _clerk_client
    if _clerk_client is None:
        settings = get_settings()
        _clerk_client = Clerk(bearer_auth=settings.CLERK_SECRET_KEY)
    return _clerk_client


@dataclass
class AuthUser:
    """Authenticated user information."""

    user_id: str
    email: str | None = None
    name: str | None = None
    org_id: str | None = None
    org_role: str | None = None


def _has_clerk_token(request: Request) -> bool:
    """Check if request has any Clerk token (cookie or header)."""
    if request.cookies.get("__session"):
        return True
    auth_header = request.headers.get("Authorization", "")
    return bool(auth_header.startswith("Bearer "))


async def get_current_user(request: Request) -> AuthUser | None:
    """Get the current authenticated user, or None if not authenticated."""
    settings = get_settings()

    if settings.is_self_hosted:
        return AuthUser(user_id=SELF_HOSTED_USER_ID, name="Self-Hosted User")

    if not _has_clerk_token(request):
        return None

    try:
        clerk = _get_clerk()
        request_state = clerk.authenticate_request(
            request,
            AuthenticateRequestOptions(
                authorized_parties=[settings.APP_URL.rstrip("/")],
            ),
        )

        if not request_state.is_signed_in:
            if request_state.reason:
                logger.info("Clerk auth failed: %s", request_state.reason)
            return None

        payload = request_state.payload or {}
        user_id = payload.get("sub")
        if not user_id:
            return None

        return AuthUser(
            user_id=user_id,
            email=payload.get("email"),
            name=payload.get("name"),
            org_id=payload.get("org_id"),
            org_role=payload.get("org_role"),
        )

    except Exception:
        logger.exception("Clerk authentication error")
        return None


async def require_auth(request: Request) -> AuthUser:
    """Require authentication - raises 401 if not authenticated."""
    user = await get_current_user(request)
    if not user:
        raise HTTPException(
            status_code=401,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    # Propagated to the usage logging middleware
    request.state.user_id = user.user_id
    return user


# FastAPI dependency types
OptionalUser = Annotated[AuthUser | None, Depends(get_current_user)]
RequiredUser = Annotated[AuthUser, Depends(require_auth)]

"""Tests for request authentication."""

import pytest
from fastapi import HTTPException
from starlette.requests import Request

from app.auth import SELF_HOSTED_USER_ID, get_current_user, require_auth
from app.config import get_settings


def make_request(headers=None) -> Request:
    raw = [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()]
    return Request({"type": "http", "method": "GET", "path": "/", "headers": raw})


@pytest.fixture
def saas_mode(monkeypatch):
    monkeypatch.setenv("APP_MODE", "saas")
    get_settings.cache_clear()
    yield
    monkeypatch.delenv("APP_MODE")
    get_settings.cache_clear()


@pytest.mark.asyncio
class TestRequireAuth:
    async def test_self_hosted_has_fixed_user(self):
        get_settings.cache_clear()
        request = make_request()
        user = await require_auth(request)
        assert user.user_id == SELF_HOSTED_USER_ID
        assert request.state.user_id == SELF_HOSTED_USER_ID

    async def test_saas_without_token(self, saas_mode):
        assert await get_current_user(make_request()) is None
        with pytest.raises(HTTPException) as exc_info:
            await require_auth(make_request())
        assert exc_info.value.status_code == 401
        assert exc_info.value.headers == {"WWW-Authenticate": "Bearer"}

"""HMAC signing for local delivery URLs and processor callbacks."""

import hashlib
import hmac
import secrets
import time
from urllib.parse import urlencode

from .config import get_settings

# Generated once per process when no secret is configured (self-hosted dev)
_ephemeral_secret = secrets.token_hex(32)


def _secret(value: str | None) -> bytes:
    return (value or _ephemeral_secret).encode("utf-8")


def sign(message: str, secret: str | None) -> str:
    return hmac.new(_secret(secret), message.encode("utf-8"), hashlib.sha256).hexdigest()


def verify(message: str, signature: str, secret: str | None) -> bool:
    return hmac.compare_digest(sign(message, secret), signature or "")


def _canonical(storage_path: str, expires: int, params: dict[str, str]) -> str:
    extras = "&".join(f"{k}={params[k]}" for k in sorted(params))
    return f"{storage_path}\n{expires}\n{extras}"


def signed_query(storage_path: str, expires_in: int, params: dict[str, str] | None = None) -> str:
    """Query string carrying an expiry and a signature over path, expiry and params."""
    params = dict(params or {})
    expires = int(time.time()) + expires_in
    secret = get_settings().STORAGE_SIGNING_SECRET
    signature = sign(_canonical(storage_path, expires, params), secret)
    return urlencode({**params, "expires": expires, "signature": signature})


def verify_signed_query(storage_path: str, query: dict[str, str]) -> bool:
    """Check a local delivery URL. Expired or tampered links fail."""
    query = dict(query)
    signature = query.pop("signature", "")
    try:
        expires = int(query.pop("expires", "0"))
    except ValueError:
        return False
    if expires < int(time.time()):
        return False
    secret = get_settings().STORAGE_SIGNING_SECRET
    return verify(_canonical(storage_path, expires, query), signature, secret)


def sign_callback(body: bytes) -> str:
    """Signature a remote processor sends in X-Processing-Signature."""
    secret = get_settings().PROCESSING_CALLBACK_SECRET
    return hmac.new(_secret(secret), body, hashlib.sha256).hexdigest()


def verify_callback(body: bytes, signature: str | None) -> bool:
    return hmac.compare_digest(sign_callback(body), signature or "")

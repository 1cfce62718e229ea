"""
Signed user tokens.

A token is a URL-safe base64 JSON payload (``user_id`` + expiry) followed by
an HMAC-SHA256 signature over it, keyed by ``config.jwt_secret``. Tokens are
issued by the main product; this service only verifies them.
``create_token`` mints the same format for local development and tests.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import time
from base64 import urlsafe_b64decode, urlsafe_b64encode

from fastapi import HTTPException, status

from config.settings import config

_DEFAULT_TTL_SECONDS = 3600


def _sign(raw: bytes) -> str:
    return hmac.new(config.jwt_secret.encode(), raw, hashlib.sha256).hexdigest()


def create_token(user_id: str, ttl_seconds: int = _DEFAULT_TTL_SECONDS) -> str:
    """Create a signed token for ``user_id`` (development and test helper)."""
    raw = json.dumps({"user_id": user_id, "exp": int(time.time()) + ttl_seconds}).encode()
    return urlsafe_b64encode(raw).decode() + "." + _sign(raw)


def verify_token(token: str) -> str:
    """
    Verify token and return ``user_id``.

    Raises ``HTTPException(401)`` on invalid or expired tokens.
    """
    try:
        encoded, sig = token.split(".", 1)
        raw = urlsafe_b64decode(encoded.encode())
        if not hmac.compare_digest(sig, _sign(raw)):
            raise ValueError("bad signature")
        payload = json.loads(raw)
        if payload.get("exp", 0) < time.time():
            raise ValueError("token expired")
        return str(payload["user_id"])
    except (ValueError, KeyError, TypeError) as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid or expired token: {exc}",
        )

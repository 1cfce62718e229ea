"""
FastAPI dependencies for authentication.

``get_current_user_id`` resolves the caller from the Bearer token;
``require_write_access`` additionally refuses the request when the
deployment runs in read-only demo mode.
"""

from __future__ import annotations

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from auth.jwt import verify_token
from config.settings import config
from github_app.errors import DemoModeRestricted

_bearer_scheme = HTTPBearer()


async def get_current_user_id(
    credentials: HTTPAuthorizationCredentials = Depends(_bearer_scheme),
) -> str:
    """Return the authenticated ``user_id``."""
    return verify_token(credentials.credentials)


async def require_write_access(
    user_id: str = Depends(get_current_user_id),
) -> str:
    if config.demo_mode:
        raise DemoModeRestricted()
    return user_id

"""
Global middleware and exception handlers.
"""

from __future__ import annotations

import logging
import time

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from github_app.errors import GitHubAppError, UpstreamUnavailable

logger = logging.getLogger(__name__)


def register_middleware(app: FastAPI) -> None:
    """Attach app-level middleware and error translation."""

    @app.middleware("http")
    async def request_timer(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - start
        response.headers["X-Process-Time"] = f"{elapsed:.4f}"
        logger.debug("%s %s — %.3fs", request.method, request.url.path, elapsed)
        return response

    @app.exception_handler(GitHubAppError)
    async def github_app_error_handler(request: Request, exc: GitHubAppError) -> JSONResponse:
        if isinstance(exc, UpstreamUnavailable):
            logger.error("%s %s — upstream failure: %s", request.method, request.url.path, exc)
        else:
            logger.info("%s %s — %d %s", request.method, request.url.path, exc.status_code, exc)
        return JSONResponse({"detail": exc.message}, status_code=exc.status_code)

"""
GitHub App installation linking service — application entry point.
"""

from __future__ import annotations

import logging
import sys

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.sessions import SessionMiddleware

from api.middleware import register_middleware
from config.settings import config
from github_app.routes import router as github_router

logging.basicConfig(
    level=config.log_level or (logging.DEBUG if config.debug else logging.INFO),
    format="%(asctime)s  %(levelname)-8s  %(name)s — %(message)s",
    stream=sys.stdout,
)
for _noisy in ("httpcore", "httpx", "asyncio"):
    logging.getLogger(_noisy).setLevel(logging.WARNING)
logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    app = FastAPI(
        title="GitHub App Link",
        version="1.0.0",
        description="Links users to GitHub App installations and lists their repositories.",
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Pending OAuth context lives in this signed cookie session
    app.add_middleware(
        SessionMiddleware,
        secret_key=config.session_secret,
        max_age=config.session_max_age,
        same_site="lax",
        https_only=config.session_cookie_secure,
    )

    register_middleware(app)

    app.include_router(github_router, prefix="/api/v1/github")

    @app.on_event("startup")
    async def on_startup():
        if not config.github_app_name or not config.github_client_id:
            logger.warning("GitHub App not configured (GITHUB_APP_NAME / GITHUB_CLIENT_ID missing)")
        if config.demo_mode:
            logger.info("Demo mode: GitHub App linking endpoints are disabled")
        logger.info("Application ready to accept requests.")

    @app.on_event("shutdown")
    async def on_shutdown():
        from database.session import dispose_engine

        await dispose_engine()

    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=config.host,
        port=config.port,
        reload=config.debug,
        log_level="debug" if config.debug else "info",
    )

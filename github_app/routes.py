"""
GitHub App routes — install redirect, OAuth callback, uninstall, repo list.

Route prefix: /api/v1/github

How it works:
  1. ``GET /install`` stores a pending context in the browser session and
     redirects to GitHub's installation page with the state token.
  2. GitHub sends the browser back to ``GET /oauth/callback`` with
     ``state``, ``code``, ``installation_id`` and ``setup_action``.
  3. Once linked, ``GET /repos/list`` returns the installation's repositories.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse

from auth.dependencies import get_current_user_id, require_write_access
from config.settings import config
from github_app import state as oauth_state
from github_app.base import BaseGitHubAppClient
from github_app.client import GitHubAppClient
from github_app.linking import CallbackParams, InstallationLinker, LinkState
from github_app.repositories import get_install_status, list_repositories, uninstall
from github_app.schemas import ApiRepoList, ApiSuccess, InstallStatus
from github_app.store import (
    BaseCredentialStore,
    BaseStateStore,
    SqlCredentialStore,
    SqlStateStore,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["github"])

_NO_STORE = {"Cache-Control": "no-store"}


# ── Dependencies ───────────────────────────────────────────────────────


def get_github_client() -> BaseGitHubAppClient:
    return GitHubAppClient(config)


def get_credential_store() -> BaseCredentialStore:
    from database.session import async_session_factory

    return SqlCredentialStore(async_session_factory)


def get_state_store() -> BaseStateStore:
    from database.session import async_session_factory

    return SqlStateStore(async_session_factory, ttl_seconds=config.oauth_state_ttl)


def get_linker(
    client: BaseGitHubAppClient = Depends(get_github_client),
    store: BaseCredentialStore = Depends(get_credential_store),
    states: BaseStateStore = Depends(get_state_store),
) -> InstallationLinker:
    return InstallationLinker(client, store, states)


# ── Routes ─────────────────────────────────────────────────────────────


@router.get("/install", status_code=302)
async def install_github_app(
    request: Request,
    user_id: str = Depends(require_write_access),
    states: BaseStateStore = Depends(get_state_store),
) -> RedirectResponse:
    """
    Start linking: remember who asked, then send the browser to GitHub's
    installation page for the app.
    """
    state = oauth_state.begin(
        request.session,
        return_to=config.return_to_url,
        user_id=user_id,
        namespace=config.github_redirect_domain,
    )
    await states.register(state, user_id)
    namespace = state.split(oauth_state.STATE_SEPARATOR, 1)[0]
    logger.info("GitHub App install started for user %s (state namespace=%s)", user_id, namespace)
    return RedirectResponse(config.install_url(state), status_code=302, headers=_NO_STORE)


@router.get("/oauth/callback")
async def github_oauth_callback(
    request: Request,
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    installation_id: Optional[str] = Query(None),
    setup_action: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    linker: InstallationLinker = Depends(get_linker),
):
    """
    Callback for GitHub App installation with combined user authorization.

    Not behind bearer auth: the browser arrives from GitHub, and the user is
    recovered from the session context written by ``/install``.
    """
    outcome = await linker.handle_callback(
        request.session,
        CallbackParams(
            code=code,
            state=state,
            installation_id=installation_id,
            setup_action=setup_action,
            error=error,
        ),
    )

    if outcome.state is LinkState.COMMITTED:
        return RedirectResponse(outcome.redirect_to, status_code=302, headers=_NO_STORE)
    if outcome.state is LinkState.REVIEW_REQUESTED:
        return JSONResponse({"status": "ok", "results": None}, status_code=200)
    return JSONResponse(
        {"detail": outcome.error.message if outcome.error else outcome.state.value},
        status_code=outcome.status_code,
    )


@router.delete("/uninstall", response_model=ApiSuccess[None])
async def uninstall_github_app(
    user_id: str = Depends(require_write_access),
    store: BaseCredentialStore = Depends(get_credential_store),
) -> dict:
    """Unlink the caller's GitHub App installation."""
    await uninstall(store, user_id)
    return {"status": "ok", "results": None}


@router.get("/repos/list", response_model=ApiRepoList)
async def get_github_list_repositories(
    user_id: str = Depends(require_write_access),
    store: BaseCredentialStore = Depends(get_credential_store),
    client: BaseGitHubAppClient = Depends(get_github_client),
) -> dict:
    """List repositories visible to the caller's linked installation."""
    repos = await list_repositories(store, client, user_id)
    return {"status": "ok", "results": repos}


@router.get("/install/status", response_model=ApiSuccess[InstallStatus])
async def get_github_install_status(
    user_id: str = Depends(get_current_user_id),
    store: BaseCredentialStore = Depends(get_credential_store),
) -> dict:
    """Whether the caller has a linked installation (tokens are never returned)."""
    return {"status": "ok", "results": await get_install_status(store, user_id)}

"""
GitHubAppClient — httpx implementation of ``BaseGitHubAppClient``.

Uses the GitHub App user-to-server OAuth flow: the code from the
installation callback is exchanged for an expiring user token plus a
refresh token, and every API call is made on the user's behalf with that
token as a bearer credential.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from config.settings import Settings, config
from github_app.base import BaseGitHubAppClient, TokenExpired
from github_app.errors import AuthorizationFailure, UpstreamTimeout, UpstreamUnavailable
from github_app.schemas import GitRepo, Installation, TokenPair

logger = logging.getLogger(__name__)

_PER_PAGE = 100


def _log_gh_error(resp: httpx.Response, operation: str) -> None:
    """Log GitHub API error details including required permissions."""
    accepted = resp.headers.get("X-Accepted-GitHub-Permissions", "(not set)")
    try:
        body = resp.json()
    except ValueError:
        body = resp.text[:500]
    logger.error(
        "[%s] GitHub %d — body=%s | X-Accepted-GitHub-Permissions=%s",
        operation, resp.status_code, body, accepted,
    )


def _json_body(resp: httpx.Response, operation: str) -> Dict[str, Any]:
    """Decode a JSON object body; anything else is provider misbehaviour."""
    try:
        body = resp.json()
    except ValueError as exc:
        logger.error("[%s] GitHub returned a non-JSON body: %s", operation, resp.text[:200])
        raise UpstreamUnavailable("GitHub returned a non-JSON response") from exc
    if not isinstance(body, dict):
        logger.error("[%s] GitHub returned %s instead of an object", operation, type(body).__name__)
        raise UpstreamUnavailable("GitHub returned an unexpected response")
    return body


def _gh_headers(token: str) -> Dict[str, str]:
    """Standard GitHub API headers."""
    return {
        "Authorization": f"Bearer {token}",
        "Accept": "application/vnd.github+json",
        "X-GitHub-Api-Version": "2022-11-28",
    }


class GitHubAppClient(BaseGitHubAppClient):
    """Talks to github.com (or a GitHub Enterprise host) over httpx."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._settings = settings or config
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self._settings.github_api_timeout,
            transport=self._transport,
        )

    async def _send(self, operation: str, request_coro) -> httpx.Response:
        """Await a request, translating transport failures and 5xx responses."""
        try:
            resp = await request_coro
        except httpx.TimeoutException as exc:
            logger.warning("[%s] GitHub timeout: %s", operation, exc)
            raise UpstreamTimeout() from exc
        except httpx.HTTPError as exc:
            logger.warning("[%s] GitHub request failed: %s", operation, exc)
            raise UpstreamUnavailable(f"GitHub request failed: {exc}") from exc

        if resp.status_code >= 500:
            _log_gh_error(resp, operation)
            raise UpstreamUnavailable(f"GitHub returned {resp.status_code}")
        return resp

    # ── OAuth ───────────────────────────────────────────────────────────

    async def _token_request(self, operation: str, data: Dict[str, str]) -> TokenPair:
        async with self._client() as client:
            resp = await self._send(
                operation,
                client.post(
                    f"{self._settings.github_oauth_url}/login/oauth/access_token",
                    data={
                        "client_id": self._settings.github_client_id,
                        "client_secret": self._settings.github_client_secret,
                        **data,
                    },
                    headers={"Accept": "application/json"},
                ),
            )

        if resp.status_code >= 400:
            _log_gh_error(resp, operation)
            raise AuthorizationFailure(f"GitHub token endpoint returned {resp.status_code}")

        token_data = _json_body(resp, operation)
        # The token endpoint reports OAuth errors with a 200 status
        if "error" in token_data:
            raise AuthorizationFailure(
                f"GitHub OAuth error: {token_data.get('error_description', token_data['error'])}"
            )
        if not token_data.get("access_token"):
            raise AuthorizationFailure("No access token in GitHub response")

        return TokenPair(
            access_token=token_data["access_token"],
            refresh_token=token_data.get("refresh_token"),
            expires_in=token_data.get("expires_in"),
            refresh_token_expires_in=token_data.get("refresh_token_expires_in"),
        )

    async def exchange_code(self, code: str) -> TokenPair:
        return await self._token_request("exchange_code", {"code": code})

    async def refresh_token(self, refresh_token: str) -> TokenPair:
        return await self._token_request(
            "refresh_token",
            {"refresh_token": refresh_token, "grant_type": "refresh_token"},
        )

    # ── Installations ───────────────────────────────────────────────────

    async def _paginate(
        self, operation: str, url: str, token: str, key: str
    ) -> List[Dict[str, Any]]:
        """Collect ``key`` from every page of a GitHub list endpoint."""
        items: List[Dict[str, Any]] = []
        page = 1
        async with self._client() as client:
            while True:
                resp = await self._send(
                    operation,
                    client.get(
                        url,
                        headers=_gh_headers(token),
                        params={"per_page": _PER_PAGE, "page": page},
                    ),
                )
                if resp.status_code == 401:
                    raise TokenExpired(operation)
                if resp.status_code >= 400:
                    _log_gh_error(resp, operation)
                    raise UpstreamUnavailable(f"GitHub returned {resp.status_code}")

                batch = _json_body(resp, operation).get(key, [])
                items.extend(batch)
                if len(batch) < _PER_PAGE:
                    return items
                page += 1

    async def list_installations(self, access_token: str) -> List[Installation]:
        try:
            raw = await self._paginate(
                "list_installations",
                f"{self._settings.github_api_url}/user/installations",
                access_token,
                "installations",
            )
        except TokenExpired as exc:
            raise AuthorizationFailure("GitHub rejected the user token") from exc
        return [Installation.from_api(i) for i in raw]

    async def list_installation_repositories(
        self, access_token: str, installation_id: str
    ) -> List[GitRepo]:
        raw = await self._paginate(
            "list_installation_repositories",
            f"{self._settings.github_api_url}/user/installations/{installation_id}/repositories",
            access_token,
            "repositories",
        )
        return [GitRepo.from_api(r) for r in raw]

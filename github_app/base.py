"""
BaseGitHubAppClient — the narrow interface to GitHub used by the linker,
the installation verifier and the repository lister.

``github_app.client.GitHubAppClient`` talks to the real API; tests plug in
a deterministic fake.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List

from github_app.schemas import GitRepo, Installation, TokenPair


class BaseGitHubAppClient(ABC):
    """Abstract base for GitHub App API access."""

    # ── OAuth ───────────────────────────────────────────────────────────

    @abstractmethod
    async def exchange_code(self, code: str) -> TokenPair:
        """
        Exchange the authorization code from the callback for a token pair.

        Raises
        ------
        AuthorizationFailure
            GitHub refused the code (expired, already used, wrong client).
        UpstreamUnavailable
            Transport failure or a 5xx from GitHub.
        """
        ...

    @abstractmethod
    async def refresh_token(self, refresh_token: str) -> TokenPair:
        """Trade a refresh token for a new token pair."""
        ...

    # ── Installations ───────────────────────────────────────────────────

    @abstractmethod
    async def list_installations(self, access_token: str) -> List[Installation]:
        """Every installation the token's owner can access."""
        ...

    @abstractmethod
    async def list_installation_repositories(
        self, access_token: str, installation_id: str
    ) -> List[GitRepo]:
        """
        Repositories of ``installation_id`` visible to the token's owner.

        Raises ``TokenExpired`` when GitHub answers 401.
        """
        ...


class TokenExpired(Exception):
    """GitHub rejected the user token with 401; a refresh may fix it."""

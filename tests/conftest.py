"""
Deterministic fakes for the GitHub API, the credential store and the state store.
"""

from __future__ import annotations

from typing import Dict, List, Optional

import pytest

from github_app.base import BaseGitHubAppClient, TokenExpired
from github_app.schemas import GitRepo, Installation, InstallationCredential, TokenPair
from github_app.state import SESSION_KEY
from github_app.store import BaseCredentialStore, BaseStateStore


class FakeGitHubAppClient(BaseGitHubAppClient):
    """Records every call; behaviour is driven by plain attributes."""

    def __init__(self) -> None:
        self.tokens = TokenPair(access_token="T", refresh_token="R")
        self.refreshed = TokenPair(access_token="T2", refresh_token="R2")
        self.installations: List[Installation] = [Installation(id="55", account_login="acme")]
        self.repositories: List[GitRepo] = [
            GitRepo(id=1, name="dbt", full_name="acme/dbt", owner_name="acme"),
        ]
        self.expired_tokens: set = set()
        self.error: Optional[Exception] = None
        self.calls: List[tuple] = []

    def _maybe_fail(self) -> None:
        if self.error is not None:
            raise self.error

    async def exchange_code(self, code: str) -> TokenPair:
        self.calls.append(("exchange_code", code))
        self._maybe_fail()
        return self.tokens

    async def refresh_token(self, refresh_token: str) -> TokenPair:
        self.calls.append(("refresh_token", refresh_token))
        self._maybe_fail()
        return self.refreshed

    async def list_installations(self, access_token: str) -> List[Installation]:
        self.calls.append(("list_installations", access_token))
        self._maybe_fail()
        return list(self.installations)

    async def list_installation_repositories(
        self, access_token: str, installation_id: str
    ) -> List[GitRepo]:
        self.calls.append(("list_installation_repositories", access_token, installation_id))
        self._maybe_fail()
        if access_token in self.expired_tokens:
            raise TokenExpired(installation_id)
        return list(self.repositories)


class InMemoryCredentialStore(BaseCredentialStore):
    def __init__(self) -> None:
        self.records: Dict[str, InstallationCredential] = {}
        self.writes = 0

    async def upsert(self, credential: InstallationCredential) -> None:
        self.writes += 1
        self.records[credential.user_id] = credential

    async def get(self, user_id: str) -> Optional[InstallationCredential]:
        return self.records.get(user_id)

    async def delete(self, user_id: str) -> bool:
        return self.records.pop(user_id, None) is not None


class InMemoryStateStore(BaseStateStore):
    def __init__(self) -> None:
        self.live: Dict[str, str] = {}

    async def register(self, state: str, user_id: str) -> None:
        self.live = {s: u for s, u in self.live.items() if u != user_id}
        self.live[state] = user_id

    async def is_live(self, state: str) -> bool:
        return state in self.live

    async def claim(self, state: str) -> bool:
        return self.live.pop(state, None) is not None

def _pending_session(
    state: str = "eu_AbC123",
    user_id: Optional[str] = "user-1",
    return_to: Optional[str] = "https://app.example.com/generalSettings/integrations",
) -> dict:
    """A browser session that has just been through ``/install``."""
    return {SESSION_KEY: {"state": state, "return_to": return_to, "user_id": user_id}}


@pytest.fixture
def states() -> InMemoryStateStore:
    return InMemoryStateStore()


@pytest.fixture
def pending_session(states):
    """Builder for sessions whose state is also live on the server."""

    def build(**kwargs) -> dict:
        session = _pending_session(**kwargs)
        context = session[SESSION_KEY]
        states.live[context["state"]] = context["user_id"]
        return session

    return build


@pytest.fixture
def fake_client() -> FakeGitHubAppClient:
    return FakeGitHubAppClient()


@pytest.fixture
def store() -> InMemoryCredentialStore:
    return InMemoryCredentialStore()

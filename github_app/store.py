"""
Credential store — one ``InstallationCredential`` per internal user.

``SqlCredentialStore`` persists to PostgreSQL with a single
``INSERT … ON CONFLICT DO UPDATE`` so the access token and refresh token are
always written together and the last committed link wins.

``SqlStateStore`` keeps the live OAuth state tokens server-side, next to the
credentials.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import delete, insert, or_, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from database.models import GitHubAppInstallation, GitHubOAuthState
from github_app.encryption import decrypt_token, encrypt_token
from github_app.schemas import InstallationCredential

logger = logging.getLogger(__name__)


class BaseCredentialStore(ABC):
    """Key-value persistence of installation credentials, keyed by user id."""

    @abstractmethod
    async def upsert(self, credential: InstallationCredential) -> None:
        ...

    @abstractmethod
    async def get(self, user_id: str) -> Optional[InstallationCredential]:
        ...

    @abstractmethod
    async def delete(self, user_id: str) -> bool:
        """Remove the user's credential. Returns False if there was none."""
        ...


class SqlCredentialStore(BaseCredentialStore):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def upsert(self, credential: InstallationCredential) -> None:
        values = {
            "user_id": credential.user_id,
            "installation_id": credential.installation_id,
            "access_token": encrypt_token(credential.access_token),
            "refresh_token": encrypt_token(credential.refresh_token),
            "updated_at": datetime.now(timezone.utc),
        }
        stmt = pg_insert(GitHubAppInstallation).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id"],
            set_={
                "installation_id": stmt.excluded.installation_id,
                "access_token": stmt.excluded.access_token,
                "refresh_token": stmt.excluded.refresh_token,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        async with self._session_factory() as session:
            try:
                await session.execute(stmt)
                await session.commit()
            except Exception:
                await session.rollback()
                raise
        logger.info(
            "Stored GitHub installation %s for user %s",
            credential.installation_id, credential.user_id,
        )

    async def get(self, user_id: str) -> Optional[InstallationCredential]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(GitHubAppInstallation).where(
                    GitHubAppInstallation.user_id == user_id
                )
            )
            row = result.scalar_one_or_none()
        if row is None:
            return None
        return InstallationCredential(
            user_id=row.user_id,
            installation_id=row.installation_id,
            access_token=decrypt_token(row.access_token),
            refresh_token=decrypt_token(row.refresh_token),
        )

    async def delete(self, user_id: str) -> bool:
        async with self._session_factory() as session:
            try:
                result = await session.execute(
                    delete(GitHubAppInstallation).where(
                        GitHubAppInstallation.user_id == user_id
                    )
                )
                await session.commit()
            except Exception:
                await session.rollback()
                raise
        deleted = result.rowcount > 0
        if deleted:
            logger.info("Deleted GitHub installation for user %s", user_id)
        return deleted


class BaseStateStore(ABC):
    """
    Server-side ledger of live install state tokens.

    The browser session only says which state it expects; this ledger says
    whether that state may still be used. A state stops being live when its
    callback finishes, when a newer install by the same user supersedes it,
    or when it outlives ``oauth_state_ttl``.
    """

    @abstractmethod
    async def register(self, state: str, user_id: str) -> None:
        """Make ``state`` the user's only live state."""
        ...

    @abstractmethod
    async def is_live(self, state: str) -> bool:
        ...

    @abstractmethod
    async def claim(self, state: str) -> bool:
        """Retire ``state``. Returns True for exactly one caller while it is live."""
        ...


class SqlStateStore(BaseStateStore):
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        ttl_seconds: int = 3600,
    ) -> None:
        self._session_factory = session_factory
        self._ttl = timedelta(seconds=ttl_seconds)

    def _cutoff(self) -> datetime:
        return datetime.now(timezone.utc) - self._ttl

    async def register(self, state: str, user_id: str) -> None:
        async with self._session_factory() as session:
            try:
                await session.execute(
                    delete(GitHubOAuthState).where(
                        or_(
                            GitHubOAuthState.user_id == user_id,
                            GitHubOAuthState.created_at < self._cutoff(),
                        )
                    )
                )
                await session.execute(
                    insert(GitHubOAuthState).values(
                        state=state,
                        user_id=user_id,
                        created_at=datetime.now(timezone.utc),
                    )
                )
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def is_live(self, state: str) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(
                select(GitHubOAuthState.state).where(
                    GitHubOAuthState.state == state,
                    GitHubOAuthState.created_at >= self._cutoff(),
                )
            )
            return result.scalar_one_or_none() is not None

    async def claim(self, state: str) -> bool:
        # Single DELETE: at most one concurrent caller sees rowcount 1.
        async with self._session_factory() as session:
            try:
                result = await session.execute(
                    delete(GitHubOAuthState).where(
                        GitHubOAuthState.state == state,
                        GitHubOAuthState.created_at >= self._cutoff(),
                    )
                )
                await session.commit()
            except Exception:
                await session.rollback()
                raise
        return result.rowcount > 0

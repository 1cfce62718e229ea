"""
Read side of a linked installation: list its repositories, or unlink it.

GitHub App user tokens expire after a few hours. When the listing is
refused with 401 the stored refresh token is used once to obtain a new
pair, which replaces the old one in a single upsert before retrying.
"""

from __future__ import annotations

import logging
from typing import List

from github_app.base import BaseGitHubAppClient, TokenExpired
from github_app.errors import AuthorizationFailure, NotLinked
from github_app.schemas import GitRepo, InstallationCredential
from github_app.store import BaseCredentialStore

logger = logging.getLogger(__name__)


async def _refresh_credential(
    store: BaseCredentialStore,
    client: BaseGitHubAppClient,
    credential: InstallationCredential,
) -> InstallationCredential:
    tokens = await client.refresh_token(credential.refresh_token)
    if not tokens.refresh_token:
        raise AuthorizationFailure("GitHub refresh returned no refresh token")

    refreshed = credential.model_copy(
        update={
            "access_token": tokens.access_token,
            "refresh_token": tokens.refresh_token,
        }
    )
    await store.upsert(refreshed)
    logger.info("Refreshed GitHub token for user %s", credential.user_id)
    return refreshed


async def list_repositories(
    store: BaseCredentialStore,
    client: BaseGitHubAppClient,
    user_id: str,
) -> List[GitRepo]:
    """Fetch every repository the user's linked installation can see."""
    credential = await store.get(user_id)
    if credential is None:
        raise NotLinked()

    try:
        return await client.list_installation_repositories(
            credential.access_token, credential.installation_id
        )
    except TokenExpired:
        logger.info("GitHub token expired for user %s, refreshing", user_id)

    credential = await _refresh_credential(store, client, credential)
    try:
        return await client.list_installation_repositories(
            credential.access_token, credential.installation_id
        )
    except TokenExpired as exc:
        raise AuthorizationFailure("GitHub rejected the refreshed token") from exc


async def uninstall(store: BaseCredentialStore, user_id: str) -> None:
    """Forget the user's installation. Safe to call when nothing is linked."""
    deleted = await store.delete(user_id)
    if not deleted:
        logger.debug("Uninstall for user %s: nothing linked", user_id)


async def get_install_status(store: BaseCredentialStore, user_id: str) -> dict:
    credential = await store.get(user_id)
    return {
        "installed": credential is not None,
        "installation_id": credential.installation_id if credential else None,
    }

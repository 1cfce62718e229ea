"""
Installation ownership check.

The ``installation_id`` on the callback URL is client input. Before it is
bound to a user we ask GitHub which installations the freshly issued user
token can see and require an exact id match.
"""

from __future__ import annotations

import logging

from github_app.base import BaseGitHubAppClient
from github_app.errors import VerificationFailure
from github_app.schemas import Installation

logger = logging.getLogger(__name__)


async def verify_installation(
    client: BaseGitHubAppClient,
    access_token: str,
    claimed_installation_id: str,
) -> Installation:
    """Return the matching installation or raise ``VerificationFailure``."""
    installations = await client.list_installations(access_token)
    for installation in installations:
        if str(installation.id) == claimed_installation_id:
            logger.info(
                "Installation %s verified (account=%s)",
                installation.id, installation.account_login,
            )
            return installation

    logger.warning(
        "Installation %s not among %d installations visible to token",
        claimed_installation_id, len(installations),
    )
    raise VerificationFailure()

"""
OAuth state token and the pending linking context kept in the browser session.

A state token looks like ``<namespace>_<random>``. The namespace is the
deployment's routing discriminator (``config.github_redirect_domain``), so the
random part must never contain the ``_`` separator.

The session holds at most one pending context under ``"oauth"``; starting a
new flow overwrites it, which invalidates any redirect still in flight.
"""

from __future__ import annotations

import hmac
import logging
import secrets
from dataclasses import asdict, dataclass
from typing import MutableMapping, Optional

logger = logging.getLogger(__name__)

STATE_SEPARATOR = "_"
SESSION_KEY = "oauth"

_RANDOM_BYTES = 16


def generate_state(namespace: str) -> str:
    """Return a fresh ``<namespace>_<random>`` state token."""
    random_id = ""
    while not random_id:
        random_id = secrets.token_urlsafe(_RANDOM_BYTES).replace(STATE_SEPARATOR, "")
    return f"{namespace}{STATE_SEPARATOR}{random_id}"


def validate_state(received: Optional[str], expected: Optional[str]) -> bool:
    """Exact, constant-time match. No pending state means invalid."""
    if not received or not expected:
        return False
    return hmac.compare_digest(received.encode(), expected.encode())


@dataclass(frozen=True)
class SessionOAuthContext:
    state: str
    return_to: Optional[str]
    user_id: Optional[str]


def begin(
    session: MutableMapping,
    return_to: str,
    user_id: str,
    namespace: str,
) -> str:
    """Store a new pending context on the session and return its state."""
    state = generate_state(namespace)
    if SESSION_KEY in session:
        logger.debug("Replacing pending OAuth context for user %s", user_id)
    session[SESSION_KEY] = asdict(
        SessionOAuthContext(state=state, return_to=return_to, user_id=user_id)
    )
    return state


def consume(session: MutableMapping) -> Optional[SessionOAuthContext]:
    """Read the pending context without clearing it."""
    raw = session.get(SESSION_KEY)
    if not raw or not raw.get("state"):
        return None
    return SessionOAuthContext(
        state=raw["state"],
        return_to=raw.get("return_to"),
        user_id=raw.get("user_id"),
    )


def clear(session: MutableMapping) -> None:
    session.pop(SESSION_KEY, None)

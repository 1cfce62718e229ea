"""
InstallationLinker — the GitHub App installation callback as a state machine.

Flow::

    AWAITING_CALLBACK → STATE_VALIDATED → INPUT_VALIDATED
        → CODE_EXCHANGED → INSTALLATION_VERIFIED → COMMITTED

    STATE_VALIDATED → REVIEW_REQUESTED   (setup_action=review, nothing stored)

    failure exits: REJECTED_STATE, REJECTED_SETUP, REJECTED_INPUT,
                   REJECTED_AUTHORIZATION, REJECTED_VERIFICATION

Each non-terminal state has one transition method. A transition either
returns the next state or raises one of the rejection errors, which the
driver maps onto the matching ``REJECTED_*`` state. Provider transport
errors (``UpstreamUnavailable``) are not rejections and propagate to the
caller with the session untouched.

Side effects are ordered: nothing is persisted before the installation is
verified, and the pending session context survives every rejection except
an explicit consent refusal. A state counts as pending only while the
server-side ``BaseStateStore`` still holds it, so a copy of an old session
cookie cannot replay a finished callback.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Dict, List, MutableMapping, Optional

from github_app import state as oauth_state
from github_app.base import BaseGitHubAppClient
from github_app.errors import (
    AuthorizationFailure,
    GitHubAppError,
    InvalidState,
    MissingInput,
    SetupIncomplete,
    VerificationFailure,
)
from github_app.schemas import Installation, InstallationCredential, TokenPair
from github_app.store import BaseCredentialStore, BaseStateStore
from github_app.verifier import verify_installation

logger = logging.getLogger(__name__)

SETUP_ACTION_REVIEW = "review"


class LinkState(str, Enum):
    AWAITING_CALLBACK = "awaiting_callback"
    STATE_VALIDATED = "state_validated"
    INPUT_VALIDATED = "input_validated"
    CODE_EXCHANGED = "code_exchanged"
    INSTALLATION_VERIFIED = "installation_verified"
    COMMITTED = "committed"
    REVIEW_REQUESTED = "review_requested"
    REJECTED_STATE = "rejected_state"
    REJECTED_SETUP = "rejected_setup"
    REJECTED_INPUT = "rejected_input"
    REJECTED_AUTHORIZATION = "rejected_authorization"
    REJECTED_VERIFICATION = "rejected_verification"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATES

    @property
    def is_rejection(self) -> bool:
        return self.value.startswith("rejected_")


_TERMINAL_STATES = frozenset(
    {
        LinkState.COMMITTED,
        LinkState.REVIEW_REQUESTED,
        LinkState.REJECTED_STATE,
        LinkState.REJECTED_SETUP,
        LinkState.REJECTED_INPUT,
        LinkState.REJECTED_AUTHORIZATION,
        LinkState.REJECTED_VERIFICATION,
    }
)

# Checked in order; first isinstance match wins.
_REJECTIONS = (
    (InvalidState, LinkState.REJECTED_STATE),
    (MissingInput, LinkState.REJECTED_INPUT),
    (SetupIncomplete, LinkState.REJECTED_SETUP),
    (VerificationFailure, LinkState.REJECTED_VERIFICATION),
    (AuthorizationFailure, LinkState.REJECTED_AUTHORIZATION),
)


@dataclass(frozen=True)
class CallbackParams:
    """Query parameters GitHub appends to the setup/callback URL."""

    code: Optional[str] = None
    state: Optional[str] = None
    installation_id: Optional[str] = None
    setup_action: Optional[str] = None
    error: Optional[str] = None


@dataclass
class LinkOutcome:
    state: LinkState
    status_code: int
    trail: List[LinkState]
    redirect_to: Optional[str] = None
    error: Optional[GitHubAppError] = None
    credential: Optional[InstallationCredential] = None

    @property
    def succeeded(self) -> bool:
        return self.state in (LinkState.COMMITTED, LinkState.REVIEW_REQUESTED)


@dataclass
class _LinkRun:
    """Mutable data accumulated while one callback moves through the machine."""

    session: MutableMapping
    params: CallbackParams
    context: Optional[oauth_state.SessionOAuthContext] = None
    tokens: Optional[TokenPair] = None
    installation: Optional[Installation] = None
    credential: Optional[InstallationCredential] = None
    redirect_to: Optional[str] = None
    error: Optional[GitHubAppError] = None
    trail: List[LinkState] = field(default_factory=list)


class InstallationLinker:
    """Drives a callback from ``AWAITING_CALLBACK`` to a terminal state."""

    def __init__(
        self,
        client: BaseGitHubAppClient,
        store: BaseCredentialStore,
        states: BaseStateStore,
    ) -> None:
        self._client = client
        self._store = store
        self._states = states
        self._transitions: Dict[LinkState, Callable[[_LinkRun], Awaitable[LinkState]]] = {
            LinkState.AWAITING_CALLBACK: self._validate_state,
            LinkState.STATE_VALIDATED: self._check_setup,
            LinkState.INPUT_VALIDATED: self._exchange_code,
            LinkState.CODE_EXCHANGED: self._verify_installation,
            LinkState.INSTALLATION_VERIFIED: self._commit,
        }

    async def handle_callback(
        self, session: MutableMapping, params: CallbackParams
    ) -> LinkOutcome:
        run = _LinkRun(session=session, params=params)
        current = LinkState.AWAITING_CALLBACK
        run.trail.append(current)

        while not current.is_terminal:
            current = await self._step(current, run)
            run.trail.append(current)

        outcome = LinkOutcome(
            state=current,
            status_code=self._status_for(current, run),
            trail=run.trail,
            redirect_to=run.redirect_to,
            error=run.error,
            credential=run.credential,
        )
        if current.is_rejection:
            logger.warning(
                "GitHub callback rejected: %s (%s) installation=%s",
                current.value, run.error, params.installation_id,
            )
        else:
            logger.info(
                "GitHub callback finished: %s installation=%s",
                current.value, params.installation_id,
            )
        return outcome

    async def _step(self, current: LinkState, run: _LinkRun) -> LinkState:
        """Run the transition for ``current`` and return the next state."""
        transition = self._transitions[current]
        try:
            return await transition(run)
        except GitHubAppError as exc:
            for error_cls, rejected in _REJECTIONS:
                if isinstance(exc, error_cls):
                    run.error = exc
                    return rejected
            raise

    @staticmethod
    def _status_for(current: LinkState, run: _LinkRun) -> int:
        if current is LinkState.COMMITTED:
            return 302
        if current is LinkState.REVIEW_REQUESTED:
            return 200
        return run.error.status_code if run.error else 400

    # ── Transitions ─────────────────────────────────────────────────────

    async def _finish(self, run: _LinkRun) -> None:
        """Retire the pending state without linking anything."""
        await self._states.claim(run.context.state)
        oauth_state.clear(run.session)

    async def _validate_state(self, run: _LinkRun) -> LinkState:
        context = oauth_state.consume(run.session)
        expected = context.state if context else None
        if not oauth_state.validate_state(run.params.state, expected):
            raise InvalidState()
        # The cookie may be a replayed copy; only the server knows if it is spent.
        if not await self._states.is_live(expected):
            raise InvalidState()
        run.context = context
        return LinkState.STATE_VALIDATED

    async def _check_setup(self, run: _LinkRun) -> LinkState:
        params = run.params

        # The user lacked permission and asked an org admin to approve the
        # install; GitHub sends no installation we could link.
        if params.setup_action == SETUP_ACTION_REVIEW:
            await self._finish(run)
            return LinkState.REVIEW_REQUESTED

        if params.error:
            await self._finish(run)
            raise SetupIncomplete(
                f"GitHub authorization was not granted: {params.error}",
                status_code=403,
            )

        if not run.context.user_id:
            raise MissingInput("User uuid not provided")
        if not params.installation_id:
            raise MissingInput("Installation id not provided")
        if not params.code:
            raise SetupIncomplete("Authorization code not provided")
        return LinkState.INPUT_VALIDATED

    async def _exchange_code(self, run: _LinkRun) -> LinkState:
        tokens = await self._client.exchange_code(run.params.code)
        if not tokens.refresh_token:
            raise AuthorizationFailure("Invalid authentication token")
        run.tokens = tokens
        return LinkState.CODE_EXCHANGED

    async def _verify_installation(self, run: _LinkRun) -> LinkState:
        run.installation = await verify_installation(
            self._client, run.tokens.access_token, run.params.installation_id
        )
        return LinkState.INSTALLATION_VERIFIED

    async def _commit(self, run: _LinkRun) -> LinkState:
        credential = InstallationCredential(
            user_id=run.context.user_id,
            installation_id=run.params.installation_id,
            access_token=run.tokens.access_token,
            refresh_token=run.tokens.refresh_token,
        )
        if not await self._states.claim(run.context.state):
            raise InvalidState()
        await self._store.upsert(credential)
        run.credential = credential
        run.redirect_to = run.context.return_to or "/"
        oauth_state.clear(run.session)
        return LinkState.COMMITTED

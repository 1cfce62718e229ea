"""
Tests for the installation callback state machine.
"""

import copy

import pytest

from github_app.errors import AuthorizationFailure, UpstreamTimeout, UpstreamUnavailable
from github_app.linking import CallbackParams, InstallationLinker, LinkState
from github_app.schemas import Installation, TokenPair
from github_app.state import SESSION_KEY

RETURN_TO = "https://app.example.com/generalSettings/integrations"


def _params(**overrides) -> CallbackParams:
    values = {"state": "eu_AbC123", "code": "codeX", "installation_id": "55"}
    values.update(overrides)
    return CallbackParams(**values)


class TestSuccessfulLink:
    @pytest.mark.asyncio
    async def test_commits_credential_and_redirects(self, fake_client, store, states, pending_session):
        session = pending_session()
        linker = InstallationLinker(fake_client, store, states)

        outcome = await linker.handle_callback(session, _params())

        assert outcome.state is LinkState.COMMITTED
        assert outcome.status_code == 302
        assert outcome.redirect_to == RETURN_TO
        assert outcome.trail == [
            LinkState.AWAITING_CALLBACK,
            LinkState.STATE_VALIDATED,
            LinkState.INPUT_VALIDATED,
            LinkState.CODE_EXCHANGED,
            LinkState.INSTALLATION_VERIFIED,
            LinkState.COMMITTED,
        ]
        credential = store.records["user-1"]
        assert credential.installation_id == "55"
        assert credential.access_token == "T"
        assert credential.refresh_token == "R"
        assert SESSION_KEY not in session

    @pytest.mark.asyncio
    async def test_verifies_with_the_exchanged_token(self, fake_client, store, states, pending_session):
        linker = InstallationLinker(fake_client, store, states)
        await linker.handle_callback(pending_session(), _params())
        assert fake_client.calls == [
            ("exchange_code", "codeX"),
            ("list_installations", "T"),
        ]

    @pytest.mark.asyncio
    async def test_second_link_overwrites(self, fake_client, store, states, pending_session):
        linker = InstallationLinker(fake_client, store, states)
        await linker.handle_callback(pending_session(), _params())

        fake_client.tokens = TokenPair(access_token="T9", refresh_token="R9")
        fake_client.installations = [Installation(id="77")]
        outcome = await linker.handle_callback(
            pending_session(state="eu_Next"), _params(state="eu_Next", installation_id="77")
        )

        assert outcome.state is LinkState.COMMITTED
        assert list(store.records) == ["user-1"]
        assert store.records["user-1"].installation_id == "77"
        assert store.records["user-1"].access_token == "T9"

    @pytest.mark.asyncio
    async def test_missing_return_to_falls_back_to_root(self, fake_client, store, states, pending_session):
        linker = InstallationLinker(fake_client, store, states)
        outcome = await linker.handle_callback(pending_session(return_to=None), _params())
        assert outcome.redirect_to == "/"


class TestStateRejection:
    @pytest.mark.asyncio
    async def test_wrong_state_rejected_without_provider_calls(
        self, fake_client, store, states, pending_session
    ):
        session = pending_session()
        linker = InstallationLinker(fake_client, store, states)

        outcome = await linker.handle_callback(session, _params(state="eu_WRONG"))

        assert outcome.state is LinkState.REJECTED_STATE
        assert outcome.status_code == 400
        assert fake_client.calls == []
        assert store.writes == 0
        assert session[SESSION_KEY]["state"] == "eu_AbC123"

    @pytest.mark.asyncio
    async def test_retry_after_rejection_still_succeeds(self, fake_client, store, states, pending_session):
        session = pending_session()
        linker = InstallationLinker(fake_client, store, states)

        await linker.handle_callback(session, _params(state="eu_WRONG"))
        outcome = await linker.handle_callback(session, _params())

        assert outcome.state is LinkState.COMMITTED

    @pytest.mark.asyncio
    async def test_replayed_session_copy_after_commit(
        self, fake_client, store, states, pending_session
    ):
        session = pending_session()
        replayed = copy.deepcopy(session)
        linker = InstallationLinker(fake_client, store, states)

        first = await linker.handle_callback(session, _params())
        fake_client.calls.clear()
        second = await linker.handle_callback(replayed, _params(code="codeY"))

        assert first.state is LinkState.COMMITTED
        assert second.state is LinkState.REJECTED_STATE
        assert second.status_code == 400
        assert fake_client.calls == []
        assert store.writes == 1

    @pytest.mark.asyncio
    async def test_state_retired_on_server(self, fake_client, store, states, pending_session):
        session = pending_session()
        states.live.clear()
        linker = InstallationLinker(fake_client, store, states)

        outcome = await linker.handle_callback(session, _params())

        assert outcome.state is LinkState.REJECTED_STATE
        assert fake_client.calls == []

    @pytest.mark.asyncio
    async def test_state_spent_between_validation_and_commit(
        self, fake_client, store, states, pending_session
    ):
        session = pending_session()
        linker = InstallationLinker(fake_client, store, states)

        async def spend_during_verification(access_token):
            await states.claim("eu_AbC123")
            return list(fake_client.installations)

        fake_client.list_installations = spend_during_verification
        outcome = await linker.handle_callback(session, _params())

        assert outcome.state is LinkState.REJECTED_STATE
        assert store.writes == 0

    @pytest.mark.asyncio
    async def test_no_pending_context(self, fake_client, store, states):
        linker = InstallationLinker(fake_client, store, states)
        outcome = await linker.handle_callback({}, _params())
        assert outcome.state is LinkState.REJECTED_STATE
        assert fake_client.calls == []

    @pytest.mark.asyncio
    async def test_missing_state_param(self, fake_client, store, states, pending_session):
        linker = InstallationLinker(fake_client, store, states)
        outcome = await linker.handle_callback(pending_session(), _params(state=None))
        assert outcome.state is LinkState.REJECTED_STATE


class TestSetupBranches:
    @pytest.mark.asyncio
    async def test_review_request_is_inert(self, fake_client, store, states, pending_session):
        session = pending_session()
        linker = InstallationLinker(fake_client, store, states)

        outcome = await linker.handle_callback(
            session, _params(setup_action="review", code=None, installation_id=None)
        )

        assert outcome.state is LinkState.REVIEW_REQUESTED
        assert outcome.status_code == 200
        assert outcome.succeeded
        assert fake_client.calls == []
        assert store.writes == 0
        assert SESSION_KEY not in session
        assert states.live == {}

    @pytest.mark.asyncio
    async def test_consent_declined_clears_context(self, fake_client, store, states, pending_session):
        session = pending_session()
        linker = InstallationLinker(fake_client, store, states)

        outcome = await linker.handle_callback(
            session, _params(error="access_denied", code=None)
        )

        assert outcome.state is LinkState.REJECTED_SETUP
        assert outcome.status_code == 403
        assert SESSION_KEY not in session
        assert fake_client.calls == []

    @pytest.mark.asyncio
    async def test_missing_code_is_rejected(self, fake_client, store, states, pending_session):
        session = pending_session()
        linker = InstallationLinker(fake_client, store, states)

        outcome = await linker.handle_callback(session, _params(code=None))

        assert outcome.state is LinkState.REJECTED_SETUP
        assert outcome.status_code == 400
        assert fake_client.calls == []
        assert SESSION_KEY in session


class TestInputRejection:
    @pytest.mark.asyncio
    async def test_missing_user_id(self, fake_client, store, states, pending_session):
        linker = InstallationLinker(fake_client, store, states)
        outcome = await linker.handle_callback(pending_session(user_id=None), _params())
        assert outcome.state is LinkState.REJECTED_INPUT
        assert outcome.status_code == 400
        assert "User uuid" in outcome.error.message
        assert fake_client.calls == []

    @pytest.mark.asyncio
    async def test_missing_installation_id(self, fake_client, store, states, pending_session):
        session = pending_session()
        linker = InstallationLinker(fake_client, store, states)
        outcome = await linker.handle_callback(session, _params(installation_id=None))
        assert outcome.state is LinkState.REJECTED_INPUT
        assert "Installation id" in outcome.error.message
        assert SESSION_KEY in session


class TestAuthorizationAndVerification:
    @pytest.mark.asyncio
    async def test_missing_refresh_token(self, fake_client, store, states, pending_session):
        fake_client.tokens = TokenPair(access_token="T", refresh_token=None)
        linker = InstallationLinker(fake_client, store, states)

        outcome = await linker.handle_callback(pending_session(), _params())

        assert outcome.state is LinkState.REJECTED_AUTHORIZATION
        assert outcome.status_code == 403
        assert store.writes == 0
        assert fake_client.calls == [("exchange_code", "codeX")]

    @pytest.mark.asyncio
    async def test_exchange_refused(self, fake_client, store, states, pending_session):
        fake_client.error = AuthorizationFailure("bad_verification_code")
        linker = InstallationLinker(fake_client, store, states)

        outcome = await linker.handle_callback(pending_session(), _params())

        assert outcome.state is LinkState.REJECTED_AUTHORIZATION
        assert store.writes == 0

    @pytest.mark.asyncio
    async def test_foreign_installation_never_stored(self, fake_client, store, states, pending_session):
        fake_client.installations = [Installation(id="56"), Installation(id="550")]
        session = pending_session()
        linker = InstallationLinker(fake_client, store, states)

        outcome = await linker.handle_callback(session, _params())

        assert outcome.state is LinkState.REJECTED_VERIFICATION
        assert outcome.status_code == 403
        assert store.writes == 0
        assert SESSION_KEY in session

    @pytest.mark.asyncio
    async def test_upstream_failure_propagates(self, fake_client, store, states, pending_session):
        fake_client.error = UpstreamTimeout()
        session = pending_session()
        linker = InstallationLinker(fake_client, store, states)

        with pytest.raises(UpstreamUnavailable):
            await linker.handle_callback(session, _params())

        assert store.writes == 0
        assert SESSION_KEY in session

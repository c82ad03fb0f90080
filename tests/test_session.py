import asyncio
import time
import urllib.parse

import httpx
import pytest

from conftest import TENANT, form, make_jwt
from oidc_playground import session as wizard
from oidc_playground.client import TokenExchanger
from oidc_playground.exceptions import (
    ActionInProgress,
    MissingPkceChallenge,
    ValidationError,
)
from oidc_playground.session import Playground, PlaygroundSession, token_report
from oidc_playground.types import (
    ActionStatus,
    ClientSubtype,
    InvalidToken,
    ResponseType,
    TokenKind,
    TokenResponse,
    TokenStatus,
    WizardStep,
)

TOKEN_PATH = "/acme/oauth2/token"


def params(url: str) -> dict[str, str]:
    return dict(urllib.parse.parse_qsl(urllib.parse.urlsplit(url).query))


class TestWizard:
    def test_select_app_seeds_profile_defaults(self):
        session = wizard.select_app(PlaygroundSession(), TENANT, "spa-demo")

        assert session.step is WizardStep.CONFIGURE
        assert session.config.scope == "openid profile email offline_access"
        assert session.config.use_pkce is True

    def test_confidential_client_defaults_to_no_pkce(self):
        session = wizard.select_app(
            PlaygroundSession(), TENANT, "web", "s3cret", ClientSubtype.API_SERVER
        )

        assert session.config.use_pkce is False
        assert session.app.secret_for_token_endpoint == "s3cret"

    def test_public_client_never_sends_secret(self):
        session = wizard.select_app(PlaygroundSession(), TENANT, "spa-demo", "leaked")
        assert session.app.secret_for_token_endpoint is None

    def test_m2m_clients_are_refused(self):
        with pytest.raises(ValidationError, match="authorization code"):
            wizard.select_app(PlaygroundSession(), TENANT, "svc", "s3cret", ClientSubtype.M2M)

    def test_confidential_client_needs_secret(self):
        with pytest.raises(ValidationError):
            wizard.select_app(PlaygroundSession(), TENANT, "web", None, ClientSubtype.API_SERVER)

    def test_configure_needs_an_app(self):
        with pytest.raises(ValidationError):
            wizard.configure(PlaygroundSession(), redirect_uri="https://app.example.com/cb")

    def test_authorize_requires_redirect_uri(self):
        session = wizard.select_app(PlaygroundSession(), TENANT, "spa-demo")

        with pytest.raises(ValidationError):
            wizard.authorize(session, "https://idp.example.com/acme")

    def test_authorize_requires_a_challenge_when_pkce_is_on(self):
        session = wizard.select_app(PlaygroundSession(), TENANT, "spa-demo")
        session = wizard.configure(session, redirect_uri="https://app.example.com/cb")

        with pytest.raises(MissingPkceChallenge):
            wizard.authorize(session, "https://idp.example.com/acme")

        assert session.step is WizardStep.CONFIGURE

    def test_scenario_a(self, playground):
        session = playground.session
        sent = params(session.authorization_url)

        assert session.step is WizardStep.AUTHORIZE
        assert sent["response_type"] == "code"
        assert sent["client_id"] == "spa-demo"
        assert sent["code_challenge_method"] == "S256"
        assert sent["code_challenge"] == session.pkce.code_challenge
        assert "code_verifier" not in sent
        assert sent["state"] == session.request.state

    def test_back_is_non_destructive(self, playground):
        before = playground.session

        playground.go_back(WizardStep.CONFIGURE)

        assert playground.session.step is WizardStep.CONFIGURE
        assert playground.session.request == before.request
        assert playground.session.pkce == before.pkce

    def test_cannot_jump_forward(self):
        with pytest.raises(ValidationError):
            wizard.go_back(PlaygroundSession(), WizardStep.TOKENS)

    def test_reconfiguring_discards_the_url(self, playground):
        playground.configure(scope="openid")

        assert playground.session.authorization_url is None
        assert playground.session.request is None
        assert playground.session.pkce is not None

    def test_callback_state_must_match(self, playground):
        with pytest.raises(ValidationError, match="state"):
            playground.capture_callback(code="c", state="forged")

    def test_callback_error_is_recorded(self, playground):
        state = playground.session.request.state
        playground.capture_callback(
            state=state, error="access_denied", error_description="user said no"
        )

        assert playground.session.callback.error == "access_denied"

    def test_reset(self, playground):
        assert playground.reset() == PlaygroundSession()


class TestExchange:
    async def test_success_moves_to_tokens(self, playground, provider, access_token):
        provider.on(
            "POST",
            TOKEN_PATH,
            body={"access_token": access_token, "refresh_token": "rt-1", "expires_in": 600},
        )
        state = playground.session.request.state
        playground.capture_callback(code="code-1", state=state)

        session = await playground.exchange_code()

        assert session.step is WizardStep.TOKENS
        assert session.tokens.access_token == access_token
        assert session.action(wizard.EXCHANGE).status is ActionStatus.SUCCESS
        assert session.access_token_expires_at == pytest.approx(time.time() + 600, abs=5)

        sent = form(provider.last)
        assert sent["code"] == "code-1"
        assert sent["code_verifier"] == session.pkce.code_verifier
        assert "client_secret" not in sent

    async def test_failure_stays_at_authorize(self, playground, provider):
        provider.on(
            "POST",
            TOKEN_PATH,
            status=400,
            body={"error": "invalid_grant", "error_description": "bad code"},
        )

        session = await playground.exchange_code("code-1")

        assert session.step is WizardStep.AUTHORIZE
        assert session.tokens is None
        failure = session.action(wizard.EXCHANGE)
        assert failure.status is ActionStatus.FAILURE
        assert failure.error == "bad code"
        assert failure.status_code == 400

    async def test_network_failure_is_recorded(self, playground, provider):
        provider.fail("POST", TOKEN_PATH)

        session = await playground.exchange_code("code-1")

        assert session.action(wizard.EXCHANGE).status is ActionStatus.FAILURE
        assert "Network error" in session.action(wizard.EXCHANGE).error

    async def test_needs_a_code(self, playground):
        with pytest.raises(ValidationError, match="code"):
            await playground.exchange_code()

    async def test_state_must_match_the_verifier_request(self, playground):
        with pytest.raises(ValidationError, match="state"):
            await playground.exchange_code("code-1", state="another-attempt")

    async def test_confidential_client_sends_secret_not_verifier(self, exchanger, provider):
        provider.on("POST", TOKEN_PATH, body={"access_token": "opaque"})
        playground = Playground(exchanger)
        playground.select_app(TENANT, "web", "s3cret", ClientSubtype.API_SERVER)
        playground.configure(redirect_uri="https://app.example.com/cb", scope="openid")
        playground.authorize()

        await playground.exchange_code("code-1")

        sent = form(provider.last)
        assert sent["client_secret"] == "s3cret"
        assert "code_verifier" not in sent

    async def test_opaque_access_token_is_not_a_failure(self, playground, provider):
        provider.on("POST", TOKEN_PATH, body={"access_token": "opaque-value"})

        session = await playground.exchange_code("code-1")

        assert session.step is WizardStep.TOKENS
        assert isinstance(wizard.decoded(session, TokenKind.ACCESS), InvalidToken)
        assert token_report(session).status is TokenStatus.NOT_A_JWT

    async def test_implicit_response_type_has_no_code(self, exchanger):
        playground = Playground(exchanger)
        playground.select_app(TENANT, "spa-demo")
        playground.configure(
            redirect_uri="https://app.example.com/cb", response_type=ResponseType.TOKEN
        )
        playground.authorize()

        with pytest.raises(ValidationError, match="response_type"):
            await playground.exchange_code("code-1")


@pytest.fixture
async def with_tokens(playground, provider, access_token):
    provider.on(
        "POST",
        TOKEN_PATH,
        body={
            "access_token": access_token,
            "id_token": make_jwt({"sub": "u1", "nonce": "n"}),
            "refresh_token": "rt-1",
            "expires_in": 3600,
        },
    )
    await playground.exchange_code("code-1")
    return playground


class TestRefresh:
    async def test_replaces_tokens_wholesale(self, with_tokens, provider):
        provider.on("POST", TOKEN_PATH, body={"access_token": "at-2", "expires_in": 60})

        session = await with_tokens.refresh()

        assert session.tokens == TokenResponse(access_token="at-2", expires_in=60)
        assert session.tokens.refresh_token is None
        assert session.tokens.id_token is None
        assert session.refresh_count == 1
        assert form(provider.last)["refresh_token"] == "rt-1"

    async def test_without_refresh_token(self, with_tokens, provider):
        provider.on("POST", TOKEN_PATH, body={"access_token": "at-2"})
        await with_tokens.refresh()

        with pytest.raises(ValidationError, match="refresh token"):
            await with_tokens.refresh()

    async def test_failure_keeps_tokens(self, with_tokens, provider):
        before = with_tokens.session.tokens
        provider.on("POST", TOKEN_PATH, status=400, body={"error": "invalid_grant"})

        session = await with_tokens.refresh()

        assert session.tokens == before
        assert session.refresh_count == 0
        assert session.action(wizard.REFRESH).error == "invalid_grant"


class TestIntrospection:
    async def test_scenario_c_inactive_beats_local_expiry(self, with_tokens, provider):
        provider.on("POST", "/oauth2/introspect", body={"active": False})
        playground = with_tokens

        assert token_report(playground.session).status is TokenStatus.VALID_UNVERIFIED

        session = await playground.introspect(client_id="web", client_secret="s3cret")
        report = token_report(session)

        assert report.status is TokenStatus.INACTIVE
        assert report.decoded is not None
        assert report.time_remaining != "Expired"

    async def test_active(self, with_tokens, provider):
        provider.on("POST", "/oauth2/introspect", body={"active": True, "sub": "u1"})

        session = await with_tokens.introspect(client_secret="s3cret")

        assert token_report(session).status is TokenStatus.ACTIVE
        assert token_report(session, TokenKind.ID).introspection is None

    async def test_needs_a_secret(self, with_tokens):
        with pytest.raises(ValidationError, match="client secret"):
            await with_tokens.introspect()

    async def test_refresh_clears_introspection(self, with_tokens, provider):
        provider.on("POST", "/oauth2/introspect", body={"active": True})
        await with_tokens.introspect(client_secret="s3cret")
        provider.on("POST", TOKEN_PATH, body={"access_token": "at-2"})

        session = await with_tokens.refresh()

        assert session.introspection is None

    async def test_failure_is_recorded(self, with_tokens, provider):
        provider.on("POST", "/oauth2/introspect", status=401, body={"error": "invalid_client"})

        session = await with_tokens.introspect(client_secret="wrong")

        assert session.action(wizard.INTROSPECT).status is ActionStatus.FAILURE


class TestRevokeAndUserInfo:
    async def test_revoke(self, with_tokens, provider):
        provider.on("POST", "/oauth2/revoke")

        session = await with_tokens.revoke(kind=TokenKind.REFRESH, client_secret="s")

        assert session.action(wizard.REVOKE).status is ActionStatus.SUCCESS
        assert form(provider.last) == {"token": "rt-1"}

    async def test_revoke_failure(self, with_tokens, provider):
        provider.on("POST", "/oauth2/revoke", status=503)

        session = await with_tokens.revoke(client_secret="s")

        assert session.action(wizard.REVOKE).status is ActionStatus.FAILURE
        assert session.action(wizard.REVOKE).status_code == 503

    async def test_userinfo_rejection_is_not_a_failure(self, with_tokens, provider):
        provider.on("GET", "/acme/userinfo", status=401, body={"error": "invalid_token"})

        session = await with_tokens.fetch_userinfo()

        assert session.action(wizard.USERINFO).status is ActionStatus.SUCCESS
        assert session.userinfo.is_error

    async def test_userinfo(self, with_tokens, provider, access_token):
        provider.on("GET", "/acme/userinfo", body={"sub": "u1"})

        session = await with_tokens.fetch_userinfo()

        assert session.userinfo.claims == {"sub": "u1"}
        assert provider.last.headers["Authorization"] == f"Bearer {access_token}"


class TestConcurrency:
    @pytest.fixture
    def gate(self):
        return asyncio.Event()

    @staticmethod
    def gated(gate, status=200, body=None) -> TokenExchanger:
        """An exchanger whose provider answers only once `gate` is set."""

        async def handler(request: httpx.Request) -> httpx.Response:
            await gate.wait()
            return httpx.Response(status, json=body or {"access_token": "late"})

        return TokenExchanger(
            "https://idp.example.com", TENANT, transport=httpx.MockTransport(handler)
        )

    @pytest.fixture
    def slow_playground(self, playground, gate):
        playground.exchanger = self.gated(gate)
        return playground

    @staticmethod
    async def until_pending(playground, action):
        while playground.session.action(action).status is not ActionStatus.PENDING:
            await asyncio.sleep(0)

    async def test_response_after_reset_is_discarded(self, slow_playground, gate):
        task = asyncio.create_task(slow_playground.exchange_code("code-1"))
        await self.until_pending(slow_playground, wizard.EXCHANGE)

        slow_playground.reset()
        gate.set()
        await task

        assert slow_playground.session == PlaygroundSession()

    async def test_refresh_failure_after_reset_is_discarded(self, with_tokens, gate):
        with_tokens.exchanger = self.gated(gate, 400, {"error": "invalid_grant"})
        task = asyncio.create_task(with_tokens.refresh())
        await self.until_pending(with_tokens, wizard.REFRESH)

        with_tokens.reset()
        gate.set()
        session = await task

        assert session == PlaygroundSession()
        assert with_tokens.session == PlaygroundSession()

    async def test_introspection_after_reset_is_discarded(self, with_tokens, gate):
        with_tokens.exchanger = self.gated(gate, body={"active": False})
        task = asyncio.create_task(with_tokens.introspect(client_secret="s3cret"))
        await self.until_pending(with_tokens, wizard.INTROSPECT)

        with_tokens.reset()
        gate.set()
        await task

        assert with_tokens.session == PlaygroundSession()

    async def test_duplicate_submission_is_refused(self, slow_playground, gate):
        task = asyncio.create_task(slow_playground.exchange_code("code-1"))
        await self.until_pending(slow_playground, wizard.EXCHANGE)

        with pytest.raises(ActionInProgress):
            await slow_playground.exchange_code("code-1")

        gate.set()
        session = await task

        assert session.tokens.access_token == "late"
        assert session.action(wizard.EXCHANGE).status is ActionStatus.SUCCESS

    async def test_unexpected_error_does_not_leave_the_action_pending(self, playground):
        def handler(request: httpx.Request) -> httpx.Response:
            raise RuntimeError("boom")

        playground.exchanger = TokenExchanger(
            "https://idp.example.com", TENANT, transport=httpx.MockTransport(handler)
        )

        for _ in range(2):
            with pytest.raises(RuntimeError):
                await playground.exchange_code("code-1")

        failure = playground.session.action(wizard.EXCHANGE)
        assert failure.status is ActionStatus.FAILURE
        assert "boom" in failure.error

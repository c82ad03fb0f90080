import logging
import time
import typing as t
import uuid

from pydantic import BaseModel, ConfigDict, Field, field_validator

from oidc_playground import jwt, pkce, utils
from oidc_playground.authorize import build_authorization_url
from oidc_playground.client import TokenExchanger
from oidc_playground.exceptions import (
    ActionInProgress,
    EndpointError,
    ValidationError,
)
from oidc_playground.types import (
    CLIENT_PROFILES,
    ActionState,
    ActionStatus,
    AuthorizationRequest,
    ClientProfile,
    ClientSubtype,
    ClientType,
    DecodedJwt,
    IntrospectionResult,
    InvalidToken,
    PkcePair,
    ResponseType,
    TokenKind,
    TokenResponse,
    TokenStatus,
    UserInfoResult,
    WizardStep,
    normalize_scope,
)

logger = logging.getLogger("uvicorn")

EXCHANGE = "exchange"
REFRESH = "refresh"
INTROSPECT = "introspect"
REVOKE = "revoke"
USERINFO = "userinfo"


class AppSelection(BaseModel):
    model_config = ConfigDict(frozen=True)

    tenant: str
    client_id: str
    client_secret: str | None = None
    subtype: ClientSubtype = ClientSubtype.SPA

    @property
    def profile(self) -> ClientProfile:
        return CLIENT_PROFILES[self.subtype]

    @property
    def secret_for_token_endpoint(self) -> str | None:
        return None if self.profile.uses_pkce else self.client_secret


class PlaygroundConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    response_type: ResponseType = ResponseType.CODE
    redirect_uri: str = ""
    scope: str = ""
    use_pkce: bool = True
    state: str | None = None
    nonce: str | None = None

    @field_validator("scope", mode="before")
    @classmethod
    def clean_scope(cls, value):
        return normalize_scope(value)


class CallbackResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    code: str | None = None
    state: str | None = None
    error: str | None = None
    error_description: str | None = None


class TokenReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: TokenKind
    status: TokenStatus
    decoded: DecodedJwt | None = None
    invalid_reason: str | None = None
    time_remaining: str | None = None
    introspection: IntrospectionResult | None = None


class PlaygroundSession(BaseModel):
    """
    Everything one run of the playground wizard knows.

    Sessions are immutable. Every transition below returns a new session, so
    resetting is a single assignment and an old value can never be mutated by
    a late response.
    """

    model_config = ConfigDict(frozen=True)

    step: WizardStep = WizardStep.SELECT_APP
    app: AppSelection | None = None
    config: PlaygroundConfig = Field(default_factory=PlaygroundConfig)
    pkce: PkcePair | None = None
    request: AuthorizationRequest | None = None
    authorization_url: str | None = None
    callback: CallbackResult | None = None
    tokens: TokenResponse | None = None
    tokens_received_at: float | None = None
    refresh_count: int = 0
    introspection: IntrospectionResult | None = None
    introspected_token: str | None = None
    userinfo: UserInfoResult | None = None
    actions: dict[str, ActionState] = Field(default_factory=dict)

    def action(self, name: str) -> ActionState:
        return self.actions.get(name, ActionState())

    def token(self, kind: TokenKind) -> str | None:
        return getattr(self.tokens, kind.value) if self.tokens else None

    @property
    def access_token_expires_at(self) -> float | None:
        if not self.tokens or self.tokens.expires_in is None or self.tokens_received_at is None:
            return None

        return self.tokens_received_at + self.tokens.expires_in

    def evolve(self, **changes) -> "PlaygroundSession":
        return self.model_copy(update=changes)


# Wizard transitions


def _require_app(session: PlaygroundSession) -> AppSelection:
    if session.app is None:
        raise ValidationError("Select a tenant and client first")

    return session.app


def select_app(
    session: PlaygroundSession,
    tenant: str,
    client_id: str,
    client_secret: str | None = None,
    subtype: ClientSubtype = ClientSubtype.SPA,
) -> PlaygroundSession:
    if not tenant or not client_id:
        raise ValidationError("A tenant and a client are required")

    app = AppSelection(
        tenant=tenant, client_id=client_id, client_secret=client_secret, subtype=subtype
    )

    if not app.profile.requires_redirect_uris or not app.profile.supports_authorization_code:
        raise ValidationError(
            f"{subtype.value} clients do not use the authorization code flow"
        )

    if app.profile.client_type is ClientType.CONFIDENTIAL and not client_secret:
        raise ValidationError(f"{subtype.value} clients need a client secret")

    if session.app == app:
        return session.evolve(step=WizardStep.CONFIGURE)

    config = session.config.model_copy(
        update={
            "scope": session.config.scope or normalize_scope(app.profile.default_scopes),
            "use_pkce": app.profile.uses_pkce,
        }
    )

    return PlaygroundSession(step=WizardStep.CONFIGURE, app=app, config=config)


def configure(
    session: PlaygroundSession,
    *,
    redirect_uri: str | None = None,
    scope: str | t.Iterable[str] | None = None,
    response_type: ResponseType | None = None,
    use_pkce: bool | None = None,
    state: str | None = None,
    nonce: str | None = None,
) -> PlaygroundSession:
    """
    Update the authorization parameters. Unset arguments keep their current value.

    Any previously built authorization URL is discarded, since it no longer
    matches the configuration.
    """
    _require_app(session)

    changes = {
        "redirect_uri": redirect_uri,
        "scope": scope,
        "response_type": response_type,
        "use_pkce": use_pkce,
        "state": state,
        "nonce": nonce,
    }
    config = PlaygroundConfig.model_validate(
        {
            **session.config.model_dump(),
            **{k: v for k, v in changes.items() if v is not None},
        }
    )

    return session.evolve(
        step=WizardStep.CONFIGURE,
        config=config,
        request=None,
        authorization_url=None,
        callback=None,
    )


def generate_pkce(session: PlaygroundSession) -> PlaygroundSession:
    _require_app(session)
    return session.evolve(
        pkce=pkce.generate(), request=None, authorization_url=None, callback=None
    )


def authorize(session: PlaygroundSession, base_url: str) -> PlaygroundSession:
    """
    Build the authorization URL and move to the Authorize step.
    """
    app = _require_app(session)
    config = session.config
    challenge = session.pkce.code_challenge if config.use_pkce and session.pkce else None

    request = AuthorizationRequest(
        client_id=app.client_id,
        response_type=config.response_type,
        redirect_uri=config.redirect_uri,
        scope=config.scope,
        state=config.state,
        nonce=config.nonce,
        code_challenge=challenge,
    )
    url, request = build_authorization_url(base_url, request, pkce=config.use_pkce)

    return session.evolve(
        step=WizardStep.AUTHORIZE,
        request=request,
        authorization_url=url,
        callback=None,
    )


def capture_callback(
    session: PlaygroundSession,
    *,
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    error_description: str | None = None,
) -> PlaygroundSession:
    """
    Record what the provider sent back to the redirect URI.
    """
    if session.request is None:
        raise ValidationError("Generate an authorization URL first")

    if state is not None and state != session.request.state:
        raise ValidationError("state does not match the authorization request")

    return session.evolve(
        step=WizardStep.AUTHORIZE,
        callback=CallbackResult(
            code=code, state=state, error=error, error_description=error_description
        ),
    )


def go_back(session: PlaygroundSession, step: WizardStep) -> PlaygroundSession:
    if step > session.step:
        raise ValidationError("The wizard only moves forward through its actions")

    return session.evolve(step=step)


def reset() -> PlaygroundSession:
    return PlaygroundSession()


# Request/response bookkeeping


def begin(session: PlaygroundSession, action: str) -> tuple[PlaygroundSession, str]:
    if session.action(action).status is ActionStatus.PENDING:
        raise ActionInProgress(action)

    request_id = uuid.uuid4().hex
    actions = {
        **session.actions,
        action: ActionState(status=ActionStatus.PENDING, request_id=request_id),
    }
    return session.evolve(actions=actions), request_id


def is_current(session: PlaygroundSession, action: str, request_id: str) -> bool:
    state = session.action(action)
    return state.status is ActionStatus.PENDING and state.request_id == request_id


def succeed(
    session: PlaygroundSession, action: str, request_id: str, **changes
) -> PlaygroundSession:
    actions = {
        **session.actions,
        action: ActionState(status=ActionStatus.SUCCESS, request_id=request_id),
    }
    return session.evolve(actions=actions, **changes)


def fail(
    session: PlaygroundSession, action: str, request_id: str, error: EndpointError
) -> PlaygroundSession:
    actions = {
        **session.actions,
        action: ActionState(
            status=ActionStatus.FAILURE,
            request_id=request_id,
            error=error.message,
            status_code=error.status_code,
        ),
    }
    return session.evolve(actions=actions)


# Token exchange inputs


def exchange_arguments(
    session: PlaygroundSession, code: str | None = None, state: str | None = None
) -> dict[str, str | None]:
    """
    Work out the token endpoint arguments for exchanging an authorization code.

    The PKCE verifier is tied to the `state` of the request it was generated
    for: a different `state` is refused, and the verifier is only sent when
    that request carried a code challenge.
    """
    app = _require_app(session)
    request = session.request

    if request is None or session.step < WizardStep.AUTHORIZE:
        raise ValidationError("Generate an authorization URL first")

    if not request.response_type.includes_code:
        raise ValidationError(
            f"response_type {request.response_type.value} does not return an authorization code"
        )

    callback = session.callback or CallbackResult()
    code = code or callback.code
    state = state or callback.state

    if not code:
        raise ValidationError("An authorization code is required")

    if state is not None and state != request.state:
        raise ValidationError("state does not match the authorization request")

    code_verifier = None

    if request.uses_pkce:
        if session.pkce is None or session.pkce.code_challenge != request.code_challenge:
            raise ValidationError("The PKCE verifier for this request is no longer available")

        code_verifier = session.pkce.code_verifier

    return {
        "code": code,
        "redirect_uri": request.redirect_uri,
        "client_id": app.client_id,
        "client_secret": app.secret_for_token_endpoint,
        "code_verifier": code_verifier,
    }


# Token inspection


def decoded(session: PlaygroundSession, kind: TokenKind) -> DecodedJwt | InvalidToken | None:
    token = session.token(kind)
    return jwt.decode(token) if token else None


def token_report(
    session: PlaygroundSession, kind: TokenKind = TokenKind.ACCESS, now: float | None = None
) -> TokenReport:
    """
    Describe one of the session's tokens.

    Introspection, when it was done for this exact token, decides the status.
    Otherwise the status comes from the token's own claims, which are not
    verified.
    """
    token = session.token(kind)

    if not token:
        return TokenReport(kind=kind, status=TokenStatus.MISSING)

    result = jwt.decode(token)
    introspection = (
        session.introspection if session.introspected_token == token else None
    )

    if isinstance(result, InvalidToken):
        decoded_token, reason, remaining = None, result.reason, None
    else:
        decoded_token, reason = result, None
        remaining = jwt.time_remaining(result.payload, now)

    if introspection is not None:
        status = TokenStatus.ACTIVE if introspection.active else TokenStatus.INACTIVE
    elif decoded_token is None:
        status = TokenStatus.NOT_A_JWT
    elif jwt.is_expired(decoded_token.payload, now):
        status = TokenStatus.EXPIRED
    elif jwt.is_not_yet_valid(decoded_token.payload, now):
        status = TokenStatus.NOT_YET_VALID
    else:
        status = TokenStatus.VALID_UNVERIFIED

    return TokenReport(
        kind=kind,
        status=status,
        decoded=decoded_token,
        invalid_reason=reason,
        time_remaining=remaining,
        introspection=introspection,
    )


class Playground:
    """
    Drives one playground session against an identity provider.

    Wizard actions replace `session` with the next value. Network actions go
    through `begin`/`succeed`/`fail`; when their response arrives after a reset
    or after the same action was started again, it is dropped.
    """

    def __init__(
        self,
        exchanger: TokenExchanger | None = None,
        session: PlaygroundSession | None = None,
    ):
        self.exchanger = exchanger or TokenExchanger()
        self.session = session or PlaygroundSession()

    @property
    def base_url(self) -> str:
        app = _require_app(self.session)
        return utils.tenant_url(self.exchanger.issuer, app.tenant, "")

    def _exchanger(self) -> TokenExchanger:
        return self.exchanger.for_tenant(_require_app(self.session).tenant)

    def select_app(
        self,
        tenant: str,
        client_id: str,
        client_secret: str | None = None,
        subtype: ClientSubtype = ClientSubtype.SPA,
    ) -> PlaygroundSession:
        self.session = select_app(self.session, tenant, client_id, client_secret, subtype)
        return self.session

    def configure(self, **changes) -> PlaygroundSession:
        self.session = configure(self.session, **changes)
        return self.session

    def generate_pkce(self) -> PlaygroundSession:
        self.session = generate_pkce(self.session)
        return self.session

    def authorize(self) -> PlaygroundSession:
        self.session = authorize(self.session, self.base_url)
        return self.session

    def capture_callback(self, **params) -> PlaygroundSession:
        self.session = capture_callback(self.session, **params)
        return self.session

    def go_back(self, step: WizardStep) -> PlaygroundSession:
        self.session = go_back(self.session, step)
        return self.session

    def reset(self) -> PlaygroundSession:
        self.session = reset()
        return self.session

    async def _run(
        self,
        action: str,
        call: t.Callable[[], t.Awaitable[t.Any]],
        on_success: t.Callable[[t.Any], dict[str, t.Any]],
    ) -> PlaygroundSession:
        self.session, request_id = begin(self.session, action)

        try:
            result = await call()
        except EndpointError as e:
            if is_current(self.session, action, request_id):
                logger.warning("Playground %s failed: %s", action, e.message)
                self.session = fail(self.session, action, request_id, e)
            else:
                logger.warning("Discarding stale %s failure", action)

            return self.session
        except Exception as e:
            # The action must not stay pending.
            if is_current(self.session, action, request_id):
                error = EndpointError(f"Unexpected error during {action}: {e}")
                self.session = fail(self.session, action, request_id, error)

            raise

        if is_current(self.session, action, request_id):
            self.session = succeed(self.session, action, request_id, **on_success(result))
        else:
            logger.warning("Discarding stale %s response", action)

        return self.session

    def _credentials(
        self, client_id: str | None, client_secret: str | None
    ) -> tuple[str, str]:
        app = _require_app(self.session)
        client_secret = client_secret or app.client_secret

        if not client_secret:
            raise ValidationError("Introspection and revocation need a client secret")

        return client_id or app.client_id, client_secret

    async def exchange_code(
        self, code: str | None = None, state: str | None = None
    ) -> PlaygroundSession:
        arguments = exchange_arguments(self.session, code, state)
        exchanger = self._exchanger()

        return await self._run(
            EXCHANGE,
            lambda: exchanger.exchange_code(**arguments),
            lambda tokens: {
                "step": WizardStep.TOKENS,
                "tokens": tokens,
                "tokens_received_at": time.time(),
                "refresh_count": 0,
                "introspection": None,
                "introspected_token": None,
                "userinfo": None,
            },
        )

    async def refresh(self) -> PlaygroundSession:
        app = _require_app(self.session)
        refresh_token = self.session.token(TokenKind.REFRESH)

        if not refresh_token:
            raise ValidationError("There is no refresh token to use")

        exchanger = self._exchanger()

        return await self._run(
            REFRESH,
            lambda: exchanger.refresh(
                refresh_token, app.client_id, app.secret_for_token_endpoint
            ),
            lambda tokens: {
                "tokens": tokens,
                "tokens_received_at": time.time(),
                "refresh_count": self.session.refresh_count + 1,
                "introspection": None,
                "introspected_token": None,
                "userinfo": None,
            },
        )

    def _token_or_kind(self, token: str | None, kind: TokenKind) -> str:
        token = token or self.session.token(kind)

        if not token:
            raise ValidationError(f"There is no {kind.value} to use")

        return token

    async def introspect(
        self,
        token: str | None = None,
        kind: TokenKind = TokenKind.ACCESS,
        *,
        client_id: str | None = None,
        client_secret: str | None = None,
        include_sys: bool = True,
    ) -> PlaygroundSession:
        token = self._token_or_kind(token, kind)
        client_id, client_secret = self._credentials(client_id, client_secret)
        exchanger = self._exchanger()

        return await self._run(
            INTROSPECT,
            lambda: exchanger.introspect(token, client_id, client_secret, include_sys),
            lambda result: {"introspection": result, "introspected_token": token},
        )

    async def revoke(
        self,
        token: str | None = None,
        kind: TokenKind = TokenKind.ACCESS,
        *,
        client_id: str | None = None,
        client_secret: str | None = None,
    ) -> PlaygroundSession:
        token = self._token_or_kind(token, kind)
        client_id, client_secret = self._credentials(client_id, client_secret)
        exchanger = self._exchanger()

        return await self._run(
            REVOKE,
            lambda: exchanger.revoke(token, client_id, client_secret),
            lambda _: {"introspection": None, "introspected_token": None},
        )

    async def fetch_userinfo(self) -> PlaygroundSession:
        access_token = self._token_or_kind(None, TokenKind.ACCESS)
        exchanger = self._exchanger()

        return await self._run(
            USERINFO,
            lambda: exchanger.fetch_userinfo(access_token),
            lambda result: {"userinfo": result},
        )

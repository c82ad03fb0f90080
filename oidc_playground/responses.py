import typing as t

from pydantic import BaseModel

from oidc_playground.session import PlaygroundSession
from oidc_playground.types import (
    ClientSubtype,
    ResponseType,
    TokenKind,
    WizardStep,
)


class AppSelectionRequest(BaseModel):
    tenant: str
    client_id: str
    client_secret: str = None
    subtype: ClientSubtype = ClientSubtype.SPA


class ConfigureRequest(BaseModel):
    redirect_uri: str = None
    scope: str | list[str] = None
    response_type: ResponseType = None
    use_pkce: bool = None
    state: str = None
    nonce: str = None


class BackRequest(BaseModel):
    step: WizardStep


class ExchangeRequest(BaseModel):
    code: str = None
    state: str = None


class TokenActionRequest(BaseModel):
    token: str = None
    kind: TokenKind = TokenKind.ACCESS
    client_id: str = None
    client_secret: str = None


class IntrospectRequest(TokenActionRequest):
    include_sys: bool = True


class DecodeRequest(BaseModel):
    token: str


class SessionResponse(BaseModel):
    id: str
    step: WizardStep
    session: dict[str, t.Any]

    @classmethod
    def from_session(cls, session_id: str, session: PlaygroundSession) -> t.Self:
        return cls(
            id=session_id,
            step=session.step,
            session=session.model_dump(
                mode="json",
                exclude={"app": {"client_secret"}, "introspected_token": True},
            ),
        )


class AuthorizationUrlResponse(BaseModel):
    authorization_url: str
    state: str
    nonce: str
    code_challenge: str = None
    code_challenge_method: t.Literal["S256"] = None


class DecodeResponse(BaseModel):
    valid: bool
    header: dict[str, t.Any] = None
    payload: dict[str, t.Any] = None
    signature: str = None
    reason: str = None
    expired: bool = None
    not_yet_valid: bool = None
    time_remaining: str = None

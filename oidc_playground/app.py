import typing as t

from fastapi import Depends, FastAPI
from fastapi.middleware.trustedhost import TrustedHostMiddleware

from oidc_playground import jwt, pkce
from oidc_playground.client import TokenExchanger
from oidc_playground.exceptions import SessionNotFound
from oidc_playground.responses import (
    AppSelectionRequest,
    AuthorizationUrlResponse,
    BackRequest,
    ConfigureRequest,
    DecodeRequest,
    DecodeResponse,
    ExchangeRequest,
    IntrospectRequest,
    SessionResponse,
    TokenActionRequest,
)
from oidc_playground.session import Playground, TokenReport, token_report
from oidc_playground.settings import settings
from oidc_playground.store import SessionStore
from oidc_playground.types import InvalidToken, PkcePair, TokenKind

app = FastAPI(
    title="OIDC Playground",
    description="Walk through the OAuth2 authorization code flow with PKCE against "
    "an identity provider, and inspect the tokens it issues.",
    root_path=settings().base_path,
    docs_url=settings().docs_url,
    openapi_url=settings().openapi_url,
)
app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings().allowed_host_list)

sessions = SessionStore()


def get_exchanger() -> TokenExchanger:
    return TokenExchanger()


async def get_playground(session_id: str) -> Playground:
    playground = sessions.get(session_id)

    if playground is None:
        raise SessionNotFound(session_id)

    return playground


PlaygroundDep = t.Annotated[Playground, Depends(get_playground)]


def view(session_id: str, playground: Playground) -> SessionResponse:
    return SessionResponse.from_session(session_id, playground.session)


@app.post("/sessions", status_code=201)
async def create_session(
    exchanger: t.Annotated[TokenExchanger, Depends(get_exchanger)],
) -> SessionResponse:
    playground = Playground(exchanger)
    return view(sessions.create(playground), playground)


@app.get("/sessions/{session_id}")
async def get_session(session_id: str, playground: PlaygroundDep) -> SessionResponse:
    return view(session_id, playground)


@app.delete("/sessions/{session_id}", status_code=204)
async def delete_session(session_id: str, playground: PlaygroundDep):
    sessions.delete(session_id)


@app.post("/sessions/{session_id}/reset")
async def reset(session_id: str, playground: PlaygroundDep) -> SessionResponse:
    playground.reset()
    return view(session_id, playground)


@app.post("/sessions/{session_id}/back")
async def back(
    session_id: str, body: BackRequest, playground: PlaygroundDep
) -> SessionResponse:
    playground.go_back(body.step)
    return view(session_id, playground)


@app.post("/sessions/{session_id}/app")
async def select_app(
    session_id: str, body: AppSelectionRequest, playground: PlaygroundDep
) -> SessionResponse:
    playground.select_app(body.tenant, body.client_id, body.client_secret, body.subtype)
    return view(session_id, playground)


@app.post("/sessions/{session_id}/configure")
async def configure(
    session_id: str, body: ConfigureRequest, playground: PlaygroundDep
) -> SessionResponse:
    playground.configure(**body.model_dump(exclude_none=True))
    return view(session_id, playground)


@app.post("/sessions/{session_id}/pkce")
async def generate_session_pkce(
    session_id: str, playground: PlaygroundDep
) -> SessionResponse:
    playground.generate_pkce()
    return view(session_id, playground)


@app.post("/sessions/{session_id}/authorize")
async def authorize(
    session_id: str, playground: PlaygroundDep
) -> AuthorizationUrlResponse:
    session = playground.authorize()

    return AuthorizationUrlResponse(
        authorization_url=session.authorization_url,
        state=session.request.state,
        nonce=session.request.nonce,
        code_challenge=session.request.code_challenge,
        code_challenge_method=session.request.code_challenge_method,
    )


@app.get("/sessions/{session_id}/callback")
async def callback(
    session_id: str,
    playground: PlaygroundDep,
    code: str = None,
    state: str = None,
    error: str = None,
    error_description: str = None,
) -> SessionResponse:
    playground.capture_callback(
        code=code, state=state, error=error, error_description=error_description
    )
    return view(session_id, playground)


@app.post("/sessions/{session_id}/exchange")
async def exchange(
    session_id: str, body: ExchangeRequest, playground: PlaygroundDep
) -> SessionResponse:
    await playground.exchange_code(body.code, body.state)
    return view(session_id, playground)


@app.post("/sessions/{session_id}/refresh")
async def refresh(session_id: str, playground: PlaygroundDep) -> SessionResponse:
    await playground.refresh()
    return view(session_id, playground)


@app.post("/sessions/{session_id}/introspect")
async def introspect(
    session_id: str, body: IntrospectRequest, playground: PlaygroundDep
) -> SessionResponse:
    await playground.introspect(
        body.token,
        body.kind,
        client_id=body.client_id,
        client_secret=body.client_secret,
        include_sys=body.include_sys,
    )
    return view(session_id, playground)


@app.post("/sessions/{session_id}/revoke")
async def revoke(
    session_id: str, body: TokenActionRequest, playground: PlaygroundDep
) -> SessionResponse:
    await playground.revoke(
        body.token,
        body.kind,
        client_id=body.client_id,
        client_secret=body.client_secret,
    )
    return view(session_id, playground)


@app.post("/sessions/{session_id}/userinfo")
async def userinfo(session_id: str, playground: PlaygroundDep) -> SessionResponse:
    await playground.fetch_userinfo()
    return view(session_id, playground)


@app.get("/sessions/{session_id}/tokens/{kind}")
def inspect_token(playground: PlaygroundDep, kind: TokenKind) -> TokenReport:
    return token_report(playground.session, kind)


@app.post("/pkce")
def generate_pkce() -> PkcePair:
    return pkce.generate()


@app.post("/decode")
def decode(body: DecodeRequest) -> DecodeResponse:
    result = jwt.decode(body.token)

    if isinstance(result, InvalidToken):
        return DecodeResponse(valid=False, reason=result.reason)

    return DecodeResponse(
        valid=True,
        header=result.header,
        payload=result.payload,
        signature=result.signature,
        expired=jwt.is_expired(result.payload),
        not_yet_valid=jwt.is_not_yet_valid(result.payload),
        time_remaining=jwt.time_remaining(result.payload),
    )

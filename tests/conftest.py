import base64
import json
import os
import time
import urllib.parse

import httpx
import pytest
from joserfc import jwt as jose_jwt
from joserfc.jwk import OctKey

# TestClient sends Host: testserver, which the service only accepts when told to.
os.environ.setdefault("PLAYGROUND_ALLOWED_HOSTS", "testserver")

from oidc_playground.client import TokenExchanger
from oidc_playground.session import Playground
from oidc_playground.types import ClientSubtype, ResponseType

ISSUER = "https://idp.example.com"
TENANT = "acme"


def b64url(value: dict | bytes) -> str:
    if isinstance(value, dict):
        value = json.dumps(value).encode()
    return base64.urlsafe_b64encode(value).rstrip(b"=").decode()


def make_jwt(claims: dict) -> str:
    """Mint a real HS256 token."""
    return jose_jwt.encode({"alg": "HS256"}, claims, OctKey.generate_key(256))


def form(request: httpx.Request) -> dict[str, str]:
    return dict(urllib.parse.parse_qsl(request.content.decode()))


class FakeProvider:
    """An identity provider answering from canned (status, body) pairs."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.routes: dict[tuple[str, str], object] = {}

    def on(self, method: str, path: str, status: int = 200, body=None):
        self.routes[(method, path)] = (status, body)

    def fail(self, method: str, path: str):
        self.routes[(method, path)] = httpx.ConnectError

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes[(request.method, request.url.path)]

        if route is httpx.ConnectError:
            raise httpx.ConnectError("connection refused", request=request)

        status, body = route

        if body is None:
            return httpx.Response(status)

        return httpx.Response(status, json=body)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    @property
    def last(self) -> httpx.Request:
        return self.requests[-1]


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def exchanger(provider):
    return TokenExchanger(ISSUER, TENANT, timeout=5, transport=provider.transport)


@pytest.fixture
def access_token():
    return make_jwt({"sub": "u1", "exp": int(time.time()) + 3600})


@pytest.fixture
def playground(exchanger):
    """A playground that has built a PKCE authorization URL for a public client."""
    playground = Playground(exchanger)
    playground.select_app(TENANT, "spa-demo", subtype=ClientSubtype.SPA)
    playground.configure(
        redirect_uri="https://app.example.com/cb",
        scope=["openid", "profile", "offline_access"],
        response_type=ResponseType.CODE,
    )
    playground.generate_pkce()
    playground.authorize()
    return playground

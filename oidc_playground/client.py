import logging

import httpx
from pydantic import ValidationError as ModelValidationError

from oidc_playground import utils
from oidc_playground.exceptions import (
    EndpointError,
    ExchangeFailed,
    IntrospectFailed,
    RefreshFailed,
    RevokeFailed,
    UserInfoFailed,
)
from oidc_playground.settings import settings
from oidc_playground.types import IntrospectionResult, TokenResponse, UserInfoResult

logger = logging.getLogger("uvicorn")


def _json_body(resp: httpx.Response) -> dict | None:
    try:
        body = resp.json()
    except ValueError:
        return None

    return body if isinstance(body, dict) else None


class TokenExchanger:
    """
    Talks to an identity provider's token, introspection, revocation and user info endpoints.

    Nothing is retried. Network failures and non-2xx responses raise the
    `EndpointError` subclass for the operation, carrying the server's
    `error`/`error_description` and HTTP status code when there was a response.
    """

    def __init__(
        self,
        issuer: str | None = None,
        tenant: str | None = None,
        *,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.issuer = (issuer or settings().issuer).rstrip("/")
        self.tenant = tenant or settings().default_tenant
        self.timeout = timeout or settings().http_timeout
        self.transport = transport

    @property
    def token_endpoint(self) -> str:
        return utils.tenant_url(self.issuer, self.tenant, "oauth2/token")

    @property
    def userinfo_endpoint(self) -> str:
        return utils.tenant_url(self.issuer, self.tenant, "userinfo")

    @property
    def introspection_endpoint(self) -> str:
        return utils.issuer_url(self.issuer, "oauth2/introspect")

    @property
    def revocation_endpoint(self) -> str:
        return utils.issuer_url(self.issuer, "oauth2/revoke")

    def for_tenant(self, tenant: str) -> "TokenExchanger":
        return TokenExchanger(
            self.issuer, tenant, timeout=self.timeout, transport=self.transport
        )

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    async def _send(
        self, error_cls: type[EndpointError], method: str, url: str, **kwargs
    ) -> httpx.Response:
        try:
            async with self._client() as client:
                return await client.request(method, url, **kwargs)
        except (httpx.HTTPError, httpx.InvalidURL, UnicodeEncodeError) as e:
            logger.warning("%s to %s failed: %s", error_cls.action, url, e)
            raise error_cls.network(e) from e

    async def _token_request(
        self, error_cls: type[EndpointError], data: dict[str, str]
    ) -> TokenResponse:
        resp = await self._send(error_cls, "POST", self.token_endpoint, data=data)
        body = _json_body(resp)

        if not resp.is_success:
            raise error_cls.from_response(resp.status_code, body)

        if body is None:
            raise error_cls(
                "Token endpoint returned a non-JSON body", status_code=resp.status_code
            )

        try:
            return TokenResponse.model_validate(body)
        except ModelValidationError as e:
            raise error_cls(
                f"Unexpected token response: {e.error_count()} invalid field(s)",
                status_code=resp.status_code,
            ) from e

    async def exchange_code(
        self,
        code: str,
        redirect_uri: str,
        client_id: str,
        client_secret: str | None = None,
        code_verifier: str | None = None,
    ) -> TokenResponse:
        """
        Exchange an authorization code for tokens.

        `client_secret` is only sent for confidential clients and `code_verifier`
        only when the authorization request used PKCE.
        """
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
            "client_id": client_id,
        }

        if client_secret:
            data["client_secret"] = client_secret

        if code_verifier:
            data["code_verifier"] = code_verifier

        tokens = await self._token_request(ExchangeFailed, data)
        logger.info("Exchanged authorization code for %s on tenant %s", client_id, self.tenant)
        return tokens

    async def refresh(
        self, refresh_token: str, client_id: str, client_secret: str | None = None
    ) -> TokenResponse:
        data = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": client_id,
        }

        if client_secret:
            data["client_secret"] = client_secret

        tokens = await self._token_request(RefreshFailed, data)
        logger.info("Refreshed tokens for %s on tenant %s", client_id, self.tenant)
        return tokens

    async def introspect(
        self, token: str, client_id: str, client_secret: str, include_sys: bool = True
    ) -> IntrospectionResult:
        """
        Ask the provider whether a token is active.

        The introspection endpoint requires client credentials even for tokens
        issued to public clients.
        """
        data = {"token": token}

        if include_sys:
            data["include_sys"] = "1"

        resp = await self._send(
            IntrospectFailed,
            "POST",
            self.introspection_endpoint,
            data=data,
            auth=(client_id, client_secret or ""),
        )
        body = _json_body(resp)

        if not resp.is_success:
            raise IntrospectFailed.from_response(resp.status_code, body)

        try:
            return IntrospectionResult.model_validate(body)
        except ModelValidationError as e:
            raise IntrospectFailed(
                "Unexpected introspection response", status_code=resp.status_code
            ) from e

    async def revoke(self, token: str, client_id: str, client_secret: str) -> None:
        resp = await self._send(
            RevokeFailed,
            "POST",
            self.revocation_endpoint,
            data={"token": token},
            auth=(client_id, client_secret or ""),
        )

        if not resp.is_success:
            raise RevokeFailed.from_response(resp.status_code, _json_body(resp))

        logger.info("Revoked a token for %s", client_id)

    async def fetch_userinfo(self, access_token: str) -> UserInfoResult:
        """
        Fetch the user info claims for an access token.

        A 401 or 403 is returned as an error result rather than raised, so an
        invalid or expired token can be shown as such.
        """
        resp = await self._send(
            UserInfoFailed,
            "GET",
            self.userinfo_endpoint,
            headers={"Authorization": f"Bearer {access_token}"},
        )
        body = _json_body(resp)

        if resp.status_code in (401, 403):
            body = body or {}
            return UserInfoResult(
                is_error=True,
                status_code=resp.status_code,
                error=body.get("error") or "invalid_token",
                error_description=body.get("error_description")
                or "Token invalid or expired",
            )

        if not resp.is_success:
            raise UserInfoFailed.from_response(resp.status_code, body)

        if body is None:
            raise UserInfoFailed(
                "User info endpoint returned a non-JSON body", status_code=resp.status_code
            )

        return UserInfoResult(claims=body, status_code=resp.status_code)

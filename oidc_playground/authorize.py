from authlib.common.security import generate_token
from starlette.datastructures import URL

from oidc_playground.exceptions import MissingPkceChallenge, ValidationError
from oidc_playground.settings import settings
from oidc_playground.types import AuthorizationRequest

MIN_CORRELATION_LENGTH = 8


def correlation_token(length: int | None = None) -> str:
    """
    Generate an alphanumeric `state` or `nonce` value.

    These are correlation tokens, not secrets.
    """
    return generate_token(max(MIN_CORRELATION_LENGTH, length or settings().state_length))


def authorization_endpoint(base_url: str) -> str:
    return f"{base_url.rstrip('/')}/oauth2/authorize"


def validate(request: AuthorizationRequest, pkce: bool | None = None) -> None:
    """
    Check the fields an authorization request cannot do without.

    `pkce` says whether the caller asked for PKCE; when omitted, a request
    carrying either `code_challenge` or `code_challenge_method` asks for it.
    """
    if pkce is None:
        pkce = request.code_challenge is not None or request.code_challenge_method is not None

    if not request.client_id:
        raise ValidationError("client_id is required")

    if not request.redirect_uri:
        raise ValidationError("redirect_uri is required")

    if not request.scopes:
        raise ValidationError("At least one scope is required")

    if pkce and request.response_type.includes_code and not request.code_challenge:
        raise MissingPkceChallenge()


def build_authorization_url(
    base_url: str, request: AuthorizationRequest, *, pkce: bool | None = None
) -> tuple[str, AuthorizationRequest]:
    """
    Build the authorization URL for a request against `{base_url}/oauth2/authorize`.

    Returns the URL and the request as sent, with any `state` or `nonce` the
    caller left empty filled in so they can be checked on the callback.
    """
    validate(request, pkce)

    request = request.model_copy(
        update={
            "state": request.state or correlation_token(),
            "nonce": request.nonce or correlation_token(),
            "code_challenge_method": "S256" if request.code_challenge else None,
        }
    )

    params = {
        "client_id": request.client_id,
        "response_type": request.response_type.value,
        "redirect_uri": request.redirect_uri,
        "scope": request.scope,
        "state": request.state,
        "nonce": request.nonce,
    }

    if request.code_challenge:
        params.update(
            {
                "code_challenge": request.code_challenge,
                "code_challenge_method": request.code_challenge_method,
            }
        )

    url = URL(authorization_endpoint(base_url)).include_query_params(**params)
    return str(url), request

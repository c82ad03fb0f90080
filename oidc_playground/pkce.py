import secrets

from authlib.oauth2.rfc7636 import create_s256_code_challenge

from oidc_playground.exceptions import CryptoUnavailable
from oidc_playground.types import PkcePair

VERIFIER_BYTES = 32


def generate() -> PkcePair:
    """
    Generate a PKCE code verifier and its S256 code challenge.

    The verifier is 32 bytes from the operating system's secure random source,
    encoded as unpadded base64url (43 characters). It must be kept until the
    code exchange and is never sent in the authorization request.
    """
    try:
        code_verifier = secrets.token_urlsafe(VERIFIER_BYTES)
    except NotImplementedError as e:
        raise CryptoUnavailable("no secure random source") from e

    try:
        code_challenge = create_s256_code_challenge(code_verifier)
    except ValueError as e:
        raise CryptoUnavailable("SHA-256 is not available") from e

    return PkcePair(code_verifier=code_verifier, code_challenge=code_challenge)

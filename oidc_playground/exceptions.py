from starlette.exceptions import HTTPException


class CryptoUnavailable(HTTPException):
    def __init__(self, reason: str):
        detail = f"A secure random source and SHA-256 are required for PKCE: {reason}"
        super().__init__(status_code=503, detail=detail)


class ValidationError(HTTPException):
    """
    A local input problem. Blocks the wizard from moving forward; never a network error.
    """

    def __init__(self, detail: str, status_code: int = 400):
        super().__init__(status_code=status_code, detail=detail)


class MissingPkceChallenge(ValidationError):
    def __init__(self):
        super().__init__(
            "PKCE is enabled for a code response type but no code_challenge was generated"
        )


class ActionInProgress(ValidationError):
    def __init__(self, action: str):
        super().__init__(f"{action} is already in progress", status_code=409)


class SessionNotFound(HTTPException):
    def __init__(self, session_id: str):
        super().__init__(status_code=404, detail=f"Unknown playground session {session_id}")


class EndpointError(Exception):
    """
    A network failure or non-2xx response from the identity provider.

    `status_code` is the HTTP status passed through verbatim, or `None` when the
    request never got a response.
    """

    action = "request"

    def __init__(
        self,
        message: str | None = None,
        *,
        status_code: int | None = None,
        error: str | None = None,
        error_description: str | None = None,
    ):
        self.status_code = status_code
        self.error = error
        self.error_description = error_description
        self.message = message or error_description or error or f"{self.action} failed"
        super().__init__(self.message)

    @classmethod
    def from_response(cls, status_code: int, body: dict | None):
        body = body or {}
        error = body.get("error")
        description = body.get("error_description")
        message = description or error or f"{cls.action} failed with HTTP {status_code}"
        return cls(
            message,
            status_code=status_code,
            error=error,
            error_description=description,
        )

    @classmethod
    def network(cls, exc: Exception):
        return cls(f"Network error during {cls.action}: {exc}")


class ExchangeFailed(EndpointError):
    action = "code exchange"


class RefreshFailed(EndpointError):
    action = "token refresh"


class IntrospectFailed(EndpointError):
    action = "introspection"


class RevokeFailed(EndpointError):
    action = "revocation"


class UserInfoFailed(EndpointError):
    action = "user info"

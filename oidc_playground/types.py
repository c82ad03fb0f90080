import enum
import typing as t

from authlib.oauth2.rfc6749 import list_to_scope, scope_to_list
from pydantic import BaseModel, ConfigDict, Field, field_validator

from oidc_playground import utils


class ResponseType(str, enum.Enum):
    CODE = "code"
    TOKEN = "token"
    ID_TOKEN = "id_token"
    CODE_ID_TOKEN = "code id_token"

    @property
    def includes_code(self) -> bool:
        return "code" in self.value.split()


class ClientType(str, enum.Enum):
    PUBLIC = "public"
    CONFIDENTIAL = "confidential"


class ClientSubtype(str, enum.Enum):
    SPA = "spa"
    MOBILE = "mobile"
    API_SERVER = "api_server"
    M2M = "m2m"


class ClientProfile(BaseModel):
    model_config = ConfigDict(frozen=True)

    client_type: ClientType
    default_grant_types: tuple[str, ...]
    default_scopes: tuple[str, ...]
    requires_redirect_uris: bool

    @property
    def uses_pkce(self) -> bool:
        return self.client_type is ClientType.PUBLIC

    @property
    def supports_authorization_code(self) -> bool:
        return "authorization_code" in self.default_grant_types


USER_SCOPES = ("openid", "profile", "email", "offline_access")

CLIENT_PROFILES: dict[ClientSubtype, ClientProfile] = {
    ClientSubtype.SPA: ClientProfile(
        client_type=ClientType.PUBLIC,
        default_grant_types=("authorization_code", "refresh_token"),
        default_scopes=USER_SCOPES,
        requires_redirect_uris=True,
    ),
    ClientSubtype.MOBILE: ClientProfile(
        client_type=ClientType.PUBLIC,
        default_grant_types=("authorization_code", "refresh_token"),
        default_scopes=USER_SCOPES,
        requires_redirect_uris=True,
    ),
    ClientSubtype.API_SERVER: ClientProfile(
        client_type=ClientType.CONFIDENTIAL,
        default_grant_types=("authorization_code", "refresh_token"),
        default_scopes=USER_SCOPES,
        requires_redirect_uris=True,
    ),
    ClientSubtype.M2M: ClientProfile(
        client_type=ClientType.CONFIDENTIAL,
        default_grant_types=("client_credentials",),
        default_scopes=(),
        requires_redirect_uris=False,
    ),
}


def normalize_scope(value: str | t.Iterable[str] | None) -> str:
    """
    Turn a scope string or list into a space-joined string of unique scopes, in order.
    """
    return list_to_scope(utils.unique(scope_to_list(value or "")))


class AuthorizationRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    client_id: str
    response_type: ResponseType = ResponseType.CODE
    redirect_uri: str
    scope: str
    state: str | None = None
    nonce: str | None = None
    code_challenge: str | None = None
    code_challenge_method: t.Literal["S256"] | None = None

    @field_validator("scope", mode="before")
    @classmethod
    def clean_scope(cls, value):
        return normalize_scope(value)

    @property
    def scopes(self) -> list[str]:
        return scope_to_list(self.scope)

    @property
    def uses_pkce(self) -> bool:
        return self.code_challenge is not None


class PkcePair(BaseModel):
    model_config = ConfigDict(frozen=True)

    code_verifier: str
    code_challenge: str
    code_challenge_method: t.Literal["S256"] = "S256"


class TokenResponse(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    access_token: str
    id_token: str | None = None
    refresh_token: str | None = None
    token_type: str = "Bearer"
    expires_in: int | None = None
    scope: str | None = None


class DecodedJwt(BaseModel):
    model_config = ConfigDict(frozen=True)

    header: dict[str, t.Any]
    payload: dict[str, t.Any]
    signature: str


class InvalidToken(BaseModel):
    model_config = ConfigDict(frozen=True)

    reason: str


class IntrospectionResult(BaseModel):
    model_config = ConfigDict(frozen=True, extra="allow")

    active: bool
    sub: str | None = None
    client_id: str | None = None
    username: str | None = None
    token_type: str | None = None
    exp: int | None = None
    iat: int | None = None
    nbf: int | None = None
    aud: str | list[str] | None = None
    iss: str | None = None
    jti: str | None = None
    scope: str | None = None
    roles: list[str] | None = None
    permissions: list[str] | None = None


class UserInfoResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    claims: dict[str, t.Any] = Field(default_factory=dict)
    is_error: bool = False
    status_code: int | None = None
    error: str | None = None
    error_description: str | None = None


class WizardStep(enum.IntEnum):
    SELECT_APP = 1
    CONFIGURE = 2
    AUTHORIZE = 3
    TOKENS = 4


class ActionStatus(str, enum.Enum):
    IDLE = "idle"
    PENDING = "pending"
    SUCCESS = "success"
    FAILURE = "failure"


class ActionState(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: ActionStatus = ActionStatus.IDLE
    request_id: str | None = None
    error: str | None = None
    status_code: int | None = None


class TokenKind(str, enum.Enum):
    ACCESS = "access_token"
    ID = "id_token"
    REFRESH = "refresh_token"


class TokenStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    EXPIRED = "expired"
    NOT_YET_VALID = "not_yet_valid"
    VALID_UNVERIFIED = "valid_unverified"
    NOT_A_JWT = "not_a_jwt"
    MISSING = "missing"

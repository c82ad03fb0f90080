import logging
import typing as t
from functools import lru_cache

import durationpy
from pydantic import (
    BeforeValidator,
    Field,
    model_validator,
)
from pydantic_settings import (
    BaseSettings,
    SettingsConfigDict,
)

from oidc_playground import utils

Duration = t.Annotated[
    float, BeforeValidator(lambda v: durationpy.from_str(v).total_seconds())
]


class PlaygroundSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="PLAYGROUND_", env_ignore_empty=True, env_nested_delimiter="__"
    )

    issuer_url: str = "http://localhost:8080"
    default_tenant: str = "local"
    http_timeout: Duration = Field("10s", gt=0)
    session_idle_timeout: Duration = Field("1h", gt=0)
    state_length: int = Field(16, ge=8)
    allowed_hosts: str = ""
    base_path: str = ""
    enable_swagger: bool = False

    @model_validator(mode="after")
    def validate_issuer_url(self):
        if not utils.is_secure_transport(self.issuer_url):
            logging.getLogger("uvicorn").warning(
                "PLAYGROUND_ISSUER_URL is not HTTPS. Tokens will be sent in cleartext."
            )

        return self

    @property
    def issuer(self) -> str:
        return self.issuer_url.rstrip("/")

    @property
    def allowed_host_list(self) -> list[str]:
        return [h for h in self.allowed_hosts.split(",") if h] + [
            "localhost",
            "127.0.0.1",
            "::1",
        ]

    @property
    def docs_url(self):
        return "/docs" if self.enable_swagger else None

    @property
    def openapi_url(self):
        return "/openapi.json" if self.enable_swagger else None


@lru_cache
def settings() -> PlaygroundSettings:
    return PlaygroundSettings()

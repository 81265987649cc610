"""Application settings loaded from environment variables."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel
from pydantic_settings import BaseSettings


class ClientRegistration(BaseModel):
    """OAuth2 client registration used for the client-credentials grant."""

    token_uri: str
    client_id: str
    client_secret: str | None = None
    scope: list[str] = []
    audience: str | None = None
    # client_secret_basic sends credentials in the Authorization header,
    # client_secret_post sends them in the form body.
    auth_method: Literal["client_secret_basic", "client_secret_post"] = "client_secret_basic"


class Settings(BaseSettings):
    # ── Server ──────────────────────────────────────────────────
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    DEBUG: bool = False

    # text | json
    LOG_FORMAT: str = "text"

    # ── Inbound authorization ────────────────────────────────────
    # Set AUTH_ENABLED=true to enforce AUTH_ROLES on every API call.
    # When false (default) every request is permitted, so the service can
    # run without any security layer in local dev.
    AUTH_ENABLED: bool = False

    # HTTP method → roles allowed to call it (JSON dict).
    # Example: AUTH_ROLES='{"GET": ["viewer", "admin"], "POST": ["admin"]}'
    # Realm roles match verbatim; client roles match as "<client>_<role>".
    AUTH_ROLES: dict[str, list[str]] = {}

    # Methods with no entry in AUTH_ROLES still require a valid bearer
    # token unless this is set.
    AUTH_OPEN_FALLBACK: bool = False

    # Key used to verify inbound JWTs.  For RS256/ES256 put the PEM public key here.
    # MUST be changed in production.
    AUTH_SECRET_KEY: str = "change-me-in-production-please"
    AUTH_ALGORITHMS: list[str] = ["HS256"]
    AUTH_AUDIENCE: str | None = None
    AUTH_ISSUER: str | None = None

    # ── Outbound authentication (client credentials) ────────────
    OUTBOUND_AUTH_ENABLED: bool = False

    # Registration used by HTTP tasks when OUTBOUND_AUTH_ENABLED=true.
    OUTBOUND_CLIENT_REGISTRATION_ID: str = "oidc"

    # JSON dict of registration id → ClientRegistration fields.
    # Example:
    #   OAUTH_CLIENT_REGISTRATIONS='{"oidc": {"token_uri": "https://idp/token",
    #     "client_id": "flowgate", "client_secret": "s3cret"}}'
    OAUTH_CLIENT_REGISTRATIONS: dict[str, ClientRegistration] = {}

    # Tokens are refreshed this many seconds before they expire.
    OAUTH_TOKEN_CLOCK_SKEW_SECONDS: int = 60
    OAUTH_TOKEN_TIMEOUT_SECONDS: float = 10.0

    # ── HTTP task client ─────────────────────────────────────────
    # Largest response body an HTTP task will buffer (bytes).
    HTTP_CLIENT_MAX_IN_MEMORY_SIZE: int = 2 * 1024 * 1024
    HTTP_CONNECT_TIMEOUT_SECONDS: float = 10.0

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @property
    def outbound_registration(self) -> ClientRegistration | None:
        return self.OAUTH_CLIENT_REGISTRATIONS.get(self.OUTBOUND_CLIENT_REGISTRATION_ID)


settings = Settings()

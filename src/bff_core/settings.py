"""
bff_core.settings

Central configuration model (Pydantic Settings).

Responsibilities:
- Provide strongly-typed, env-driven settings for all layers.
- Hide secrets from repr/logging (session secret, OAuth client secret, SAML keys).
- Derive the typed OAuth client-credentials and SAML configs consumed by the core.
- Offer a cached settings instance for dependency injection.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from typing import Annotated, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from bff_core.errors import ConfigurationError

_MIN_SECRET_LENGTH = 32
_DEV_SESSION_SECRET = "dev-session-secret-change-in-production"


class OAuthClientConfig(BaseModel):
    """Client-credentials parameters for service-to-service calls to the private backend."""

    model_config = ConfigDict(frozen=True)

    tenant_id: str = Field(min_length=1)
    client_id: str = Field(min_length=1)
    client_secret: str = Field(min_length=1, repr=False)
    scope: str = Field(min_length=1)
    token_endpoint: str = Field(min_length=1)


@dataclass(frozen=True, slots=True)
class SamlConfig:
    # Attribute names are the claim URIs the IdP puts into the assertion.
    entry_point: str
    issuer: str
    callback_url: str
    idp_cert: str
    idp_issuer: str | None = None
    audience: str | None = None
    force_authn: bool = False
    name_id_format: str = "urn:oasis:names:tc:SAML:1.1:nameid-format:emailAddress"
    clock_skew_seconds: int = 120
    attribute_id: str = "http://schemas.xmlsoap.org/ws/2005/05/identity/claims/nameidentifier"
    attribute_email: str = "http://schemas.xmlsoap.org/ws/2005/05/identity/claims/emailaddress"
    attribute_name: str = "http://schemas.xmlsoap.org/ws/2005/05/identity/claims/name"
    attribute_first_name: str = "http://schemas.xmlsoap.org/ws/2005/05/identity/claims/givenname"
    attribute_last_name: str = "http://schemas.xmlsoap.org/ws/2005/05/identity/claims/surname"
    attribute_roles: str = "http://schemas.microsoft.com/ws/2008/06/identity/claims/role"
    default_role: str | None = None
    logout_url: str | None = None
    logout_callback_url: str | None = None


class Settings(BaseSettings):
    """
    Enterprise pattern:
    - Strict env-driven configuration
    - Defaults safe for local dev
    - Single settings object injected across layers
    """

    model_config = SettingsConfigDict(
        env_prefix="BFF_",
        case_sensitive=False,
        populate_by_name=True,
    )

    # `prod` is the production flag: secure cookies, https callback derivation, mock driver refused.
    env: Literal["dev", "test", "prod"] = "dev"
    service_name: str = "bff-core"
    app_name: str = "Public Application BFF"
    log_level: str = "INFO"

    # Frontend / CORS
    web_url: str = "http://localhost:5173"
    cors_origin: str | None = None
    # Comma-separated in the environment: `BFF_ALLOWED_HOSTS=a.example,b.example`.
    allowed_hosts: Annotated[list[str], NoDecode] = Field(default_factory=list)

    # Hardening
    # Requests per client IP per 15-minute window.
    rate_limit_max: int = Field(default=1000, ge=1)
    # Proxies whose X-Forwarded-For is trusted for the audited client IP.
    forwarded_allow_ips: str = "127.0.0.1"

    # Sessions
    session_secret: str | None = Field(default=None, repr=False)
    session_secret_previous: str | None = Field(default=None, repr=False)
    session_store: Literal["memory", "redis"] = "memory"
    redis_url: str = "redis://localhost:6379"
    session_max_age_ms: int = Field(default=28_800_000, ge=60_000)
    session_cookie_name: str = "connect.sid"
    session_cookie_secure: bool | None = None
    session_cookie_same_site: Literal["strict", "lax", "none"] = "lax"

    # Auth driver + callback URL derivation
    auth_driver: str = "mock"
    auth_callback_url: str | None = None
    api_url: str | None = None
    render_external_url: str | None = Field(
        default=None, validation_alias=AliasChoices("RENDER_EXTERNAL_URL", "render_external_url")
    )
    render_external_hostname: str | None = Field(
        default=None,
        validation_alias=AliasChoices("RENDER_EXTERNAL_HOSTNAME", "render_external_hostname"),
    )
    # Bind address for uvicorn, and the fallback for the public callback URL.
    host: str = "localhost"
    port: int = 3000

    # SAML (federated driver)
    saml_entry_point: str | None = None
    saml_issuer: str | None = None
    saml_cert: str | None = Field(default=None, repr=False)
    saml_idp_issuer: str | None = None
    saml_audience: str | None = None
    saml_force_authn: bool = False
    saml_name_id_format: str = "urn:oasis:names:tc:SAML:1.1:nameid-format:emailAddress"
    saml_clock_skew_seconds: int = 120
    saml_attribute_id: str = "http://schemas.xmlsoap.org/ws/2005/05/identity/claims/nameidentifier"
    saml_attribute_email: str = "http://schemas.xmlsoap.org/ws/2005/05/identity/claims/emailaddress"
    saml_attribute_name: str = "http://schemas.xmlsoap.org/ws/2005/05/identity/claims/name"
    saml_attribute_first_name: str = (
        "http://schemas.xmlsoap.org/ws/2005/05/identity/claims/givenname"
    )
    saml_attribute_last_name: str = "http://schemas.xmlsoap.org/ws/2005/05/identity/claims/surname"
    saml_attribute_roles: str = "http://schemas.microsoft.com/ws/2008/06/identity/claims/role"
    saml_default_role: str | None = None
    saml_logout_url: str | None = None
    saml_logout_callback_url: str | None = None

    # API gateway (BFF proxy to the private backend)
    private_api_base_url: str | None = None
    oauth_tenant_id: str | None = None
    oauth_client_id: str | None = None
    oauth_client_secret: str | None = Field(default=None, repr=False)
    oauth_scope: str | None = None
    oauth_token_endpoint: str | None = None

    @field_validator("allowed_hosts", mode="before")
    @classmethod
    def _split_allowed_hosts(cls, value: object) -> object:
        if isinstance(value, str):
            return [h.strip().lower() for h in value.split(",") if h.strip()]
        return value

    @model_validator(mode="after")
    def _check_production_requirements(self) -> Settings:
        for name in ("session_secret", "session_secret_previous"):
            value = getattr(self, name)
            if value is not None and len(value) < _MIN_SECRET_LENGTH:
                raise ValueError(f"{name} must be at least {_MIN_SECRET_LENGTH} characters")
        if self.is_production:
            # A random/dev secret in production would silently invalidate or forge sessions.
            if not self.session_secret:
                raise ValueError("BFF_SESSION_SECRET is required in production")
            if not self.cors_origin:
                raise ValueError("BFF_CORS_ORIGIN is required in production")
        return self

    @property
    def is_production(self) -> bool:
        return self.env == "prod"

    @property
    def session_secrets(self) -> list[str]:
        # First secret signs; the rest are only accepted for verification (rotation).
        secrets = [self.session_secret or _DEV_SESSION_SECRET]
        if self.session_secret_previous:
            secrets.append(self.session_secret_previous)
        return secrets

    @property
    def cookie_secure(self) -> bool:
        if self.session_cookie_secure is not None:
            return self.session_cookie_secure
        return self.is_production

    def oauth_client_config(self) -> OAuthClientConfig | None:
        fields = (
            self.oauth_tenant_id,
            self.oauth_client_id,
            self.oauth_client_secret,
            self.oauth_scope,
        )
        if not any(fields):
            return None
        if not all(fields):
            raise ConfigurationError(
                "OAuth client credentials are partially configured; set "
                "BFF_OAUTH_TENANT_ID, BFF_OAUTH_CLIENT_ID, BFF_OAUTH_CLIENT_SECRET and BFF_OAUTH_SCOPE"
            )
        endpoint = (
            self.oauth_token_endpoint
            or f"https://login.microsoftonline.com/{self.oauth_tenant_id}/oauth2/v2.0/token"
        )
        return OAuthClientConfig(
            tenant_id=self.oauth_tenant_id,
            client_id=self.oauth_client_id,
            client_secret=self.oauth_client_secret,
            scope=self.oauth_scope,
            token_endpoint=endpoint,
        )

    def saml_config(self, *, callback_url: str) -> SamlConfig:
        missing = [
            name
            for name, value in (
                ("BFF_SAML_ENTRY_POINT", self.saml_entry_point),
                ("BFF_SAML_ISSUER", self.saml_issuer),
                ("BFF_SAML_CERT", self.saml_cert),
            )
            if not value
        ]
        if missing:
            raise ConfigurationError(
                f"Federated auth driver requires: {', '.join(missing)}"
            )
        return SamlConfig(
            entry_point=self.saml_entry_point,
            issuer=self.saml_issuer,
            callback_url=callback_url,
            idp_cert=self.saml_cert,
            idp_issuer=self.saml_idp_issuer,
            audience=self.saml_audience or self.saml_issuer,
            force_authn=self.saml_force_authn,
            name_id_format=self.saml_name_id_format,
            clock_skew_seconds=self.saml_clock_skew_seconds,
            attribute_id=self.saml_attribute_id,
            attribute_email=self.saml_attribute_email,
            attribute_name=self.saml_attribute_name,
            attribute_first_name=self.saml_attribute_first_name,
            attribute_last_name=self.saml_attribute_last_name,
            attribute_roles=self.saml_attribute_roles,
            default_role=self.saml_default_role,
            logout_url=self.saml_logout_url,
            logout_callback_url=self.saml_logout_callback_url,
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    # Cache avoids re-parsing env vars for each request dependency.
    return Settings()


# --- Module Notes -----------------------------------------------------------
# OAuth and SAML configs are derived on demand rather than stored, so a test can build
# `Settings(...)` with keyword overrides and get consistent derived objects.

"""Application configuration management."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from functools import lru_cache
from typing import Generic, Literal, TypeVar, Union

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

MIN_SESSION_SECRET_LENGTH = 32
DEFAULT_SESSION_MAX_AGE = 7 * 24 * 60 * 60

T = TypeVar("T")


class Settings(BaseSettings):
    """Runtime configuration derived from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )

    app_name: str = Field("OwnerKey", alias="APP_NAME")
    environment: str = Field("development", alias="ENVIRONMENT")
    debug: bool = Field(False, alias="DEBUG")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_json: bool = Field(False, alias="LOG_JSON")

    auth_mode: Literal["on", "off"] = Field("on", alias="AUTH_MODE")
    rp_id: str | None = Field(None, alias="AUTH_RP_ID")
    rp_name: str = Field("OwnerKey", alias="AUTH_RP_NAME")
    origin: str | None = Field(None, alias="AUTH_ORIGIN")
    session_secret: SecretStr | None = Field(None, alias="AUTH_SESSION_SECRET")
    session_cookie_name: str = Field("ownerkey_session", alias="AUTH_SESSION_COOKIE")
    session_max_age_seconds: int = Field(DEFAULT_SESSION_MAX_AGE, alias="AUTH_SESSION_MAX_AGE", gt=0)

    bootstrap_token: SecretStr | None = Field(None, alias="AUTH_BOOTSTRAP_TOKEN")
    bootstrap_expires_at: datetime | None = Field(None, alias="AUTH_BOOTSTRAP_EXPIRES_AT")
    bootstrap_max_uses: int | None = Field(None, alias="AUTH_BOOTSTRAP_MAX_USES", ge=1)

    challenge_ttl_seconds: int = Field(300, alias="AUTH_CHALLENGE_TTL", gt=0)
    ceremony_timeout_ms: int = Field(60000, alias="AUTH_CEREMONY_TIMEOUT_MS", gt=0)
    user_verification: Literal["required", "preferred", "discouraged"] = Field(
        "preferred", alias="AUTH_USER_VERIFICATION"
    )
    authenticator_attachment: Literal["cross-platform", "platform", "any"] = Field(
        "cross-platform", alias="AUTH_AUTHENTICATOR_ATTACHMENT"
    )
    require_signature_counter: bool = Field(False, alias="AUTH_REQUIRE_COUNTER")
    verification_timeout_seconds: float = Field(10.0, alias="AUTH_VERIFICATION_TIMEOUT", gt=0)

    credential_store: Literal["file", "redis", "database"] = Field("file", alias="CREDENTIAL_STORE")
    credentials_path: str = Field("./data/credentials.json", alias="AUTH_CREDENTIALS_PATH")
    redis_url: str | None = Field(None, alias="REDIS_URL")
    redis_key_prefix: str = Field("ownerkey", alias="REDIS_KEY_PREFIX")
    database_url: str | None = Field(None, alias="DATABASE_URL")
    store_timeout_seconds: float = Field(5.0, alias="STORE_TIMEOUT", gt=0)

    frontend_origins: str = Field("", alias="FRONTEND_ORIGINS")
    rate_limit_per_ip: str = Field("30/minute", alias="RATE_LIMIT_PER_IP")
    rate_limit_storage_uri: str = Field("memory://", alias="RATE_LIMIT_STORAGE_URI")
    security_headers_enabled: bool = Field(True, alias="SECURITY_HEADERS_ENABLED")

    @field_validator("rp_id", "origin", "redis_url", "database_url", mode="before")
    @classmethod
    def blank_as_unset(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("origin")
    @classmethod
    def strip_trailing_slash(cls, value: str | None) -> str | None:
        return value.rstrip("/") if value else value

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def auth_enabled(self) -> bool:
        return self.auth_mode == "on"

    @property
    def cors_origins(self) -> list[str]:
        return [origin.strip() for origin in self.frontend_origins.split(",") if origin.strip()]


@dataclass(frozen=True)
class WebAuthnConfig:
    rp_id: str
    rp_name: str
    origin: str
    user_verification: str = "preferred"
    authenticator_attachment: str | None = "cross-platform"
    challenge_ttl_seconds: int = 300
    ceremony_timeout_ms: int = 60000
    require_signature_counter: bool = False
    verification_timeout_seconds: float = 10.0


@dataclass(frozen=True)
class SessionConfig:
    secret: bytes
    cookie_name: str = "ownerkey_session"
    max_age_seconds: int = DEFAULT_SESSION_MAX_AGE
    secure: bool = False


@dataclass(frozen=True)
class BootstrapConfig:
    token: str = ""
    expires_at: datetime | None = None
    max_uses: int | None = None


@dataclass(frozen=True)
class ConfigOk(Generic[T]):
    value: T

    @property
    def success(self) -> bool:
        return True


@dataclass(frozen=True)
class ConfigFailure:
    """A configuration problem.

    ``error`` names the offending variable and is only meant for server logs;
    clients only ever see ``code``.
    """

    error: str
    code: str = "CONFIG_ERROR"

    @property
    def success(self) -> bool:
        return False


ConfigResult = Union[ConfigOk[T], ConfigFailure]


def build_webauthn_config(settings: Settings) -> ConfigResult[WebAuthnConfig]:
    if not settings.rp_id:
        return ConfigFailure("AUTH_RP_ID environment variable is required")
    if not settings.origin:
        return ConfigFailure("AUTH_ORIGIN environment variable is required")
    if not settings.origin.startswith(("https://", "http://")):
        return ConfigFailure("AUTH_ORIGIN must include the scheme, e.g. https://example.com")
    attachment = None if settings.authenticator_attachment == "any" else settings.authenticator_attachment
    return ConfigOk(
        WebAuthnConfig(
            rp_id=settings.rp_id,
            rp_name=settings.rp_name,
            origin=settings.origin,
            user_verification=settings.user_verification,
            authenticator_attachment=attachment,
            challenge_ttl_seconds=settings.challenge_ttl_seconds,
            ceremony_timeout_ms=settings.ceremony_timeout_ms,
            require_signature_counter=settings.require_signature_counter,
            verification_timeout_seconds=settings.verification_timeout_seconds,
        )
    )


def build_session_config(settings: Settings) -> ConfigResult[SessionConfig]:
    secret = settings.session_secret.get_secret_value() if settings.session_secret else ""
    if len(secret) < MIN_SESSION_SECRET_LENGTH:
        return ConfigFailure(
            f"AUTH_SESSION_SECRET environment variable is required and must be at least "
            f"{MIN_SESSION_SECRET_LENGTH} characters"
        )
    return ConfigOk(
        SessionConfig(
            secret=secret.encode("utf-8"),
            cookie_name=settings.session_cookie_name,
            max_age_seconds=settings.session_max_age_seconds,
            secure=settings.is_production,
        )
    )


def build_bootstrap_config(settings: Settings) -> BootstrapConfig:
    token = settings.bootstrap_token.get_secret_value() if settings.bootstrap_token else ""
    return BootstrapConfig(
        token=token.strip(),
        expires_at=settings.bootstrap_expires_at,
        max_uses=settings.bootstrap_max_uses,
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""

    return Settings()

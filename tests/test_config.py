"""Configuration builder tests."""
from __future__ import annotations

from ownerkey.core.config import (
    ConfigFailure,
    ConfigOk,
    Settings,
    build_bootstrap_config,
    build_session_config,
    build_webauthn_config,
)


def make_settings(**values) -> Settings:
    base = {
        "AUTH_RP_ID": "example.com",
        "AUTH_ORIGIN": "https://example.com/",
        "AUTH_SESSION_SECRET": "x" * 32,
    }
    base.update(values)
    return Settings(_env_file=None, **base)


def test_webauthn_config_ok() -> None:
    result = build_webauthn_config(make_settings())
    assert isinstance(result, ConfigOk)
    assert result.success
    assert result.value.rp_id == "example.com"
    assert result.value.origin == "https://example.com"
    assert result.value.authenticator_attachment == "cross-platform"


def test_webauthn_config_missing_values() -> None:
    missing_rp = build_webauthn_config(make_settings(AUTH_RP_ID=""))
    assert isinstance(missing_rp, ConfigFailure)
    assert not missing_rp.success
    assert missing_rp.code == "CONFIG_ERROR"
    assert "AUTH_RP_ID" in missing_rp.error

    missing_origin = build_webauthn_config(make_settings(AUTH_ORIGIN=None))
    assert isinstance(missing_origin, ConfigFailure)

    schemeless = build_webauthn_config(make_settings(AUTH_ORIGIN="example.com"))
    assert isinstance(schemeless, ConfigFailure)


def test_any_attachment_is_unrestricted() -> None:
    result = build_webauthn_config(make_settings(AUTH_AUTHENTICATOR_ATTACHMENT="any"))
    assert isinstance(result, ConfigOk)
    assert result.value.authenticator_attachment is None


def test_session_secret_length_enforced() -> None:
    short = build_session_config(make_settings(AUTH_SESSION_SECRET="x" * 31))
    assert isinstance(short, ConfigFailure)
    assert "AUTH_SESSION_SECRET" in short.error

    ok = build_session_config(make_settings(ENVIRONMENT="production"))
    assert isinstance(ok, ConfigOk)
    assert ok.value.secure is True
    assert ok.value.secret == b"x" * 32


def test_bootstrap_config_defaults_to_disabled() -> None:
    config = build_bootstrap_config(make_settings())
    assert config.token == ""
    assert config.expires_at is None
    assert config.max_uses is None

    configured = build_bootstrap_config(make_settings(AUTH_BOOTSTRAP_TOKEN=" secret ", AUTH_BOOTSTRAP_MAX_USES=2))
    assert configured.token == "secret"
    assert configured.max_uses == 2

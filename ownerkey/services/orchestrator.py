"""Authentication orchestration.

Sequences the challenge slot, credential store, WebAuthn verifier, session and
bootstrap services for every ceremony and credential-management operation.
"""
from __future__ import annotations

import asyncio
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Any

import structlog

from ownerkey.core.config import (
    ConfigFailure,
    ConfigOk,
    Settings,
    build_bootstrap_config,
    build_session_config,
    build_webauthn_config,
)
from ownerkey.core.errors import (
    AuthError,
    BootstrapRequiredError,
    ConfigurationError,
    CredentialNotFoundError,
    NotFoundError,
    StoreUnavailableError,
    UnauthorizedError,
)
from ownerkey.schemas.credential import Credential, CredentialUpdate, utcnow
from ownerkey.services.audit import log_audit_event
from ownerkey.services.bootstrap import BootstrapService
from ownerkey.services.challenge import build_challenge
from ownerkey.services.credential_store import CredentialStore
from ownerkey.services.session import IssuedSession, SessionData, SessionService
from ownerkey.services.store_factory import create_credential_store
from ownerkey.services.webauthn import WebAuthnVerifier, credential_id_from_response
from ownerkey.utils.request import ClientInfo

logger = structlog.get_logger(__name__)

DEV_BYPASS_CREDENTIAL_ID = "dev-bypass"
DEFAULT_FRIENDLY_NAME = "Hardware Key"
BOOTSTRAP_FRIENDLY_NAME = "Primary Hardware Key"


class AuthOrchestrator:
    def __init__(
        self,
        store: CredentialStore,
        verifier: ConfigOk[WebAuthnVerifier] | ConfigFailure,
        sessions: ConfigOk[SessionService] | ConfigFailure,
        bootstrap: BootstrapService,
        *,
        auth_enabled: bool = True,
        challenge_ttl_seconds: int = 300,
    ) -> None:
        self.store = store
        self.bootstrap = bootstrap
        self.auth_enabled = auth_enabled
        self.challenge_ttl_seconds = challenge_ttl_seconds
        self._verifier = verifier
        self._sessions = sessions
        self._mutation_lock = asyncio.Lock()

    @property
    def verifier(self) -> WebAuthnVerifier:
        if isinstance(self._verifier, ConfigFailure):
            logger.error("auth_misconfigured", component="webauthn", detail=self._verifier.error)
            raise ConfigurationError(code=self._verifier.code)
        return self._verifier.value

    @property
    def sessions(self) -> SessionService:
        if isinstance(self._sessions, ConfigFailure):
            logger.error("auth_misconfigured", component="session", detail=self._sessions.error)
            raise ConfigurationError(code=self._sessions.code)
        return self._sessions.value

    @property
    def session_config_available(self) -> bool:
        return self._sessions.success

    @contextmanager
    def _audited(self, event_type: str, client: ClientInfo | None, credential_id: str | None = None) -> Iterator[None]:
        try:
            yield
        except AuthError as exc:
            log_audit_event(event_type, "failure", client=client, credential_id=credential_id, code=exc.code)
            raise

    async def _issue_challenge(self, value: str) -> None:
        await self.store.set_challenge(build_challenge(value, self.challenge_ttl_seconds))

    def _require_session(self, session: SessionData | None) -> SessionData:
        if session is None:
            raise UnauthorizedError()
        return session

    async def register_options(self, session: SessionData | None, client: ClientInfo | None = None) -> dict[str, Any]:
        """Only an authenticated owner may add keys; an empty allowlist must be bootstrapped instead."""

        with self._audited("register_options", client):
            verifier = self.verifier
            existing = await self.store.get_credentials()
            if not existing:
                raise BootstrapRequiredError()
            owner = self._require_session(session)
            options, challenge = verifier.generate_registration_options(existing)
            await self._issue_challenge(challenge)
        log_audit_event("register_options", "success", client=client, credential_id=owner.credential_id)
        return options

    async def register_verify(
        self,
        session: SessionData | None,
        credential: dict[str, Any],
        friendly_name: str | None = None,
        client: ClientInfo | None = None,
    ) -> Credential:
        with self._audited("register_verify", client, credential_id_from_response(credential)):
            verifier = self.verifier
            challenge = await self.store.consume_challenge()
            if not await self.store.has_credentials():
                raise BootstrapRequiredError()
            self._require_session(session)
            created = await verifier.verify_registration(credential, challenge, friendly_name or DEFAULT_FRIENDLY_NAME)
            await self.store.add_credential(created)
        log_audit_event("register_verify", "success", client=client, credential_id=created.id)
        return created

    async def login_options(self, client: ClientInfo | None = None) -> dict[str, Any]:
        with self._audited("login_options", client):
            verifier = self.verifier
            options, challenge = verifier.generate_authentication_options(await self.store.get_credentials())
            await self._issue_challenge(challenge)
        log_audit_event("login_options", "success", client=client)
        return options

    async def login_verify(
        self, credential: dict[str, Any], client: ClientInfo | None = None
    ) -> tuple[Credential, IssuedSession]:
        credential_id = credential_id_from_response(credential)
        with self._audited("login_verify", client, credential_id):
            verifier = self.verifier
            sessions = self.sessions
            challenge = await self.store.consume_challenge()
            stored = await self.store.get_credential_by_id(credential_id) if credential_id else None
            if stored is None:
                raise CredentialNotFoundError()
            new_counter = await verifier.verify_authentication(credential, challenge, stored)
            updated = await self.store.update_credential(
                stored.id, CredentialUpdate(counter=new_counter, last_used_at=utcnow())
            )
            issued = sessions.create_session(updated.id)
        log_audit_event("login_verify", "success", client=client, credential_id=updated.id)
        return updated, issued

    async def bootstrap_options(self, bootstrap_token: str | None, client: ClientInfo | None = None) -> dict[str, Any]:
        with self._audited("bootstrap_options", client):
            verifier = self.verifier
            await self.bootstrap.verify_bootstrap_allowed(bootstrap_token, consume_use=True)
            options, challenge = verifier.generate_registration_options([])
            await self._issue_challenge(challenge)
        log_audit_event("bootstrap_options", "success", client=client, uses=self.bootstrap.uses)
        return options

    async def bootstrap_verify(
        self,
        bootstrap_token: str | None,
        credential: dict[str, Any],
        friendly_name: str | None = None,
        client: ClientInfo | None = None,
    ) -> tuple[Credential, IssuedSession]:
        with self._audited("bootstrap_verify", client, credential_id_from_response(credential)):
            verifier = self.verifier
            sessions = self.sessions
            challenge = await self.store.consume_challenge()
            async with self._mutation_lock:
                await self.bootstrap.verify_bootstrap_allowed(bootstrap_token)
                created = await verifier.verify_registration(
                    credential, challenge, friendly_name or BOOTSTRAP_FRIENDLY_NAME
                )
                await self.store.add_credential(created)
            issued = sessions.create_session(created.id)
        log_audit_event("bootstrap_verify", "success", client=client, credential_id=created.id)
        return created, issued

    async def bootstrap_status(self) -> dict[str, object]:
        return await self.bootstrap.get_bootstrap_state()

    async def list_credentials(self) -> list[Credential]:
        return await self.store.get_credentials()

    async def rename_credential(
        self, credential_id: str, friendly_name: str, client: ClientInfo | None = None
    ) -> Credential:
        with self._audited("credential_rename", client, credential_id):
            async with self._mutation_lock:
                if await self.store.get_credential_by_id(credential_id) is None:
                    raise NotFoundError()
                updated = await self.store.update_credential(credential_id, CredentialUpdate(friendly_name=friendly_name))
        log_audit_event("credential_rename", "success", client=client, credential_id=credential_id)
        return updated

    async def delete_credential(self, credential_id: str, client: ClientInfo | None = None) -> None:
        with self._audited("credential_delete", client, credential_id):
            await self.store.remove_credential(credential_id, keep_last=True)
        log_audit_event("credential_delete", "success", client=client, credential_id=credential_id)

    def _dev_bypass_session(self) -> SessionData:
        now = datetime.now(timezone.utc)
        max_age = self._sessions.value.config.max_age_seconds if isinstance(self._sessions, ConfigOk) else 3600
        return SessionData(
            credential_id=DEV_BYPASS_CREDENTIAL_ID,
            issued_at=now,
            expires_at=now + timedelta(seconds=max_age),
        )

    async def authenticate(self, token: str | None) -> SessionData | None:
        """Resolve a session cookie for a protected endpoint.

        A session whose credential has since been removed is not authenticated.
        """

        if not self.auth_enabled:
            return self._dev_bypass_session()
        session = self.sessions.validate_session(token)
        if session is None:
            return None
        if await self.store.get_credential_by_id(session.credential_id) is None:
            logger.info("session_credential_revoked", credential_id=session.credential_id)
            return None
        return session

    async def session_status(self, token: str | None) -> SessionData | None:
        """Like ``authenticate`` but never raises."""

        try:
            return await self.authenticate(token)
        except (ConfigurationError, StoreUnavailableError) as exc:
            logger.warning("session_status_unavailable", code=exc.code)
            return None

    def logout(self, client: ClientInfo | None = None) -> dict[str, Any]:
        if isinstance(self._sessions, ConfigFailure):
            logger.error("auth_misconfigured", component="session", detail=self._sessions.error)
            log_audit_event("logout", "failure", client=client, code=self._sessions.code)
            raise ConfigurationError(code=self._sessions.code, status_code=500)
        log_audit_event("logout", "success", client=client)
        return self._sessions.value.get_clear_cookie_options()


def build_auth_services(settings: Settings, store: CredentialStore | None = None) -> AuthOrchestrator:
    """Construct the process-wide service graph from ``settings``."""

    store = store or create_credential_store(settings)
    webauthn_config = build_webauthn_config(settings)
    session_config = build_session_config(settings)

    verifier: ConfigOk[WebAuthnVerifier] | ConfigFailure
    if isinstance(webauthn_config, ConfigOk):
        verifier = ConfigOk(WebAuthnVerifier(webauthn_config.value))
    else:
        logger.warning("webauthn_not_configured", detail=webauthn_config.error)
        verifier = webauthn_config

    sessions: ConfigOk[SessionService] | ConfigFailure
    if isinstance(session_config, ConfigOk):
        sessions = ConfigOk(SessionService(session_config.value))
    else:
        logger.warning("session_not_configured", detail=session_config.error)
        sessions = session_config

    return AuthOrchestrator(
        store,
        verifier,
        sessions,
        BootstrapService(build_bootstrap_config(settings), store),
        auth_enabled=settings.auth_enabled,
        challenge_ttl_seconds=settings.challenge_ttl_seconds,
    )

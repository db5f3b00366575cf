"""First-credential enrolment gate."""
from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import structlog

from ownerkey.core.config import BootstrapConfig
from ownerkey.core.errors import BootstrapExpiredError, BootstrapUnavailableError, InvalidBootstrapTokenError
from ownerkey.core.security import constant_time_compare
from ownerkey.services.credential_store import CredentialStore

logger = structlog.get_logger(__name__)


class BootstrapService:
    """Allows enrolling a credential only while the allowlist is empty.

    Once any credential exists bootstrap is permanently unavailable, whatever
    the token says. ``max_uses`` counts successful token checks made while
    issuing bootstrap options and is tracked per process.
    """

    def __init__(self, config: BootstrapConfig, store: CredentialStore) -> None:
        self.config = config
        self.store = store
        self._uses = 0
        self._lock = asyncio.Lock()

    @property
    def uses(self) -> int:
        return self._uses

    async def is_bootstrap_available(self) -> bool:
        return not await self.store.has_credentials()

    async def get_bootstrap_state(self) -> dict[str, object]:
        count = await self.store.get_credential_count()
        return {"bootstrapAvailable": count == 0, "credentialCount": count}

    def validate_token(self, supplied_token: str | None) -> bool:
        if not self.config.token or not supplied_token:
            return False
        return constant_time_compare(supplied_token.strip(), self.config.token)

    def is_expired(self, *, now: datetime | None = None) -> bool:
        expires_at = self.config.expires_at
        if expires_at is None:
            return False
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return (now or datetime.now(timezone.utc)) >= expires_at

    async def verify_bootstrap_allowed(self, supplied_token: str | None, *, consume_use: bool = False) -> None:
        """Raise unless a bootstrap ceremony may proceed with ``supplied_token``.

        ``consume_use`` counts this check against ``max_uses`` and is set when
        issuing options; the matching verify call only re-checks the token.
        """

        if await self.store.has_credentials():
            raise BootstrapUnavailableError()
        if not self.validate_token(supplied_token):
            logger.warning("bootstrap_token_rejected", token_configured=bool(self.config.token))
            raise InvalidBootstrapTokenError()
        if self.is_expired():
            raise BootstrapExpiredError()
        if not consume_use:
            return
        async with self._lock:
            if self.config.max_uses is not None and self._uses >= self.config.max_uses:
                raise BootstrapExpiredError()
            self._uses += 1

"""Credential store selection."""
from __future__ import annotations

import structlog

from ownerkey.core.config import Settings
from ownerkey.db.session import Database
from ownerkey.services.credential_store import CredentialStore, FileCredentialStore
from ownerkey.services.db_credential_store import DatabaseCredentialStore
from ownerkey.services.kv_credential_store import RedisCredentialStore
from ownerkey.services.redis_client import create_redis_client

logger = structlog.get_logger(__name__)


def create_credential_store(settings: Settings) -> CredentialStore:
    """Build the backend named by ``CREDENTIAL_STORE``. Decided once at startup."""

    if settings.credential_store == "redis":
        store: CredentialStore = RedisCredentialStore(
            create_redis_client(settings),
            key_prefix=settings.redis_key_prefix,
            timeout_seconds=settings.store_timeout_seconds,
        )
    elif settings.credential_store == "database":
        store = DatabaseCredentialStore(
            Database.from_settings(settings),
            timeout_seconds=settings.store_timeout_seconds,
        )
    else:
        store = FileCredentialStore(settings.credentials_path)
    logger.info("credential_store_selected", backend=store.backend)
    return store

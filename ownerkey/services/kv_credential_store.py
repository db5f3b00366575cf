"""Redis-backed credential store for serverless and multi-instance deployments.

The whole allowlist lives under one key as a JSON array, so every mutation is a
read-modify-write of that array. Mutations run inside an optimistic
``WATCH``/``MULTI`` transaction and are retried when another writer got there
first; lost counter updates are impossible. The challenge lives under its own
key with a TTL and is consumed with ``GETDEL``.
"""
from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from typing import Any

import structlog
from pydantic import TypeAdapter, ValidationError
from redis.asyncio import Redis
from redis.exceptions import RedisError, WatchError

from ownerkey.core.errors import (
    DuplicateCredentialError,
    LockoutPreventionError,
    NotFoundError,
    StoreUnavailableError,
)
from ownerkey.schemas.credential import Credential, CredentialUpdate, StoredChallenge, now_epoch_ms
from ownerkey.services.credential_store import CredentialStore, _apply_update

logger = structlog.get_logger(__name__)

CREDENTIALS_KEY = "credentials"
CHALLENGE_KEY = "challenge"
MAX_TRANSACTION_ATTEMPTS = 5
# How long an expired challenge stays readable by consume_challenge.
EXPIRED_CHALLENGE_GRACE_MS = 10 * 60 * 1000

_credential_list = TypeAdapter(list[Credential])


class RedisCredentialStore(CredentialStore):
    backend = "redis"

    def __init__(self, redis: Redis, *, key_prefix: str = "ownerkey", timeout_seconds: float = 5.0) -> None:
        self._redis = redis
        self._credentials_key = f"{key_prefix}:{CREDENTIALS_KEY}"
        self._challenge_key = f"{key_prefix}:{CHALLENGE_KEY}"
        self._timeout = timeout_seconds
        self._lock = asyncio.Lock()

    async def close(self) -> None:
        await self._redis.aclose()

    async def _call(self, awaitable: Any) -> Any:
        try:
            return await asyncio.wait_for(awaitable, timeout=self._timeout)
        except (RedisError, asyncio.TimeoutError) as exc:
            logger.error("redis_store_error", error=type(exc).__name__)
            raise StoreUnavailableError() from exc

    @staticmethod
    def _decode_credentials(payload: str | None) -> list[Credential]:
        if not payload:
            return []
        try:
            return _credential_list.validate_json(payload)
        except ValidationError as exc:
            logger.error("redis_store_corrupt", key=CREDENTIALS_KEY)
            raise StoreUnavailableError() from exc

    @staticmethod
    def _encode_credentials(credentials: list[Credential]) -> str:
        return _credential_list.dump_json(credentials, by_alias=True, exclude_none=True).decode("utf-8")

    async def _mutate(self, change: Callable[[list[Credential]], Any]) -> Any:
        """Run ``change`` against the current array and write it back atomically."""

        async def attempt() -> Any:
            for _ in range(MAX_TRANSACTION_ATTEMPTS):
                async with self._redis.pipeline(transaction=True) as pipe:
                    try:
                        await pipe.watch(self._credentials_key)
                        credentials = self._decode_credentials(await pipe.get(self._credentials_key))
                        result = change(credentials)
                        pipe.multi()
                        pipe.set(self._credentials_key, self._encode_credentials(credentials))
                        await pipe.execute()
                        return result
                    except WatchError:
                        logger.info("redis_store_retry", key=CREDENTIALS_KEY)
                        continue
            raise StoreUnavailableError("Credential store is busy. Please retry.")

        async with self._lock:
            return await self._call(attempt())

    async def get_credentials(self) -> list[Credential]:
        return self._decode_credentials(await self._call(self._redis.get(self._credentials_key)))

    async def get_credential_by_id(self, credential_id: str) -> Credential | None:
        for credential in await self.get_credentials():
            if credential.id == credential_id:
                return credential
        return None

    async def add_credential(self, credential: Credential) -> None:
        def change(credentials: list[Credential]) -> None:
            if any(existing.id == credential.id for existing in credentials):
                raise DuplicateCredentialError()
            credentials.append(credential)

        await self._mutate(change)

    async def update_credential(self, credential_id: str, update: CredentialUpdate) -> Credential:
        def change(credentials: list[Credential]) -> Credential:
            for index, existing in enumerate(credentials):
                if existing.id == credential_id:
                    credentials[index] = _apply_update(existing, update)
                    return credentials[index]
            raise NotFoundError()

        return await self._mutate(change)

    async def remove_credential(self, credential_id: str, *, keep_last: bool = False) -> None:
        def change(credentials: list[Credential]) -> None:
            for index, existing in enumerate(credentials):
                if existing.id == credential_id:
                    if keep_last and len(credentials) == 1:
                        raise LockoutPreventionError()
                    del credentials[index]
                    return
            raise NotFoundError()

        await self._mutate(change)

    async def set_challenge(self, challenge: StoredChallenge) -> None:
        ttl_ms = max(challenge.expires_at - now_epoch_ms(), 1) + EXPIRED_CHALLENGE_GRACE_MS
        payload = challenge.model_dump_json(by_alias=True)
        await self._call(self._redis.set(self._challenge_key, payload, px=ttl_ms))

    def _decode_challenge(self, payload: str | None) -> StoredChallenge | None:
        if not payload:
            return None
        try:
            return StoredChallenge.model_validate(json.loads(payload))
        except (ValueError, ValidationError):
            logger.warning("redis_challenge_corrupt", key=CHALLENGE_KEY)
            return None

    async def get_challenge(self) -> StoredChallenge | None:
        challenge = self._decode_challenge(await self._call(self._redis.get(self._challenge_key)))
        if challenge is None or challenge.is_expired():
            return None
        return challenge

    async def clear_challenge(self) -> None:
        await self._call(self._redis.delete(self._challenge_key))

    async def consume_challenge(self) -> StoredChallenge | None:
        return self._decode_challenge(await self._call(self._redis.getdel(self._challenge_key)))

"""SQL database credential store (SQLAlchemy async ORM)."""
from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import structlog
from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ownerkey.core.errors import (
    AuthError,
    DuplicateCredentialError,
    LockoutPreventionError,
    NotFoundError,
    StoreUnavailableError,
)
from ownerkey.db.session import Database
from ownerkey.models import CHALLENGE_SLOT_ID, ChallengeRecord, CredentialRecord
from ownerkey.schemas.credential import Credential, CredentialUpdate, DeviceType, StoredChallenge
from ownerkey.services.credential_store import CredentialStore

logger = structlog.get_logger(__name__)


def _as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands timezone-aware columns back naive.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _to_credential(record: CredentialRecord) -> Credential:
    return Credential(
        id=record.id,
        public_key=record.public_key,
        counter=record.counter,
        device_type=DeviceType(record.device_type),
        backed_up=record.backed_up,
        transports=record.transports,
        friendly_name=record.friendly_name,
        created_at=_as_utc(record.created_at),
        last_used_at=_as_utc(record.last_used_at),
    )


class DatabaseCredentialStore(CredentialStore):
    backend = "database"

    def __init__(self, database: Database, *, timeout_seconds: float = 5.0) -> None:
        self.database = database
        self._timeout = timeout_seconds
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        try:
            await asyncio.wait_for(self.database.create_all(), timeout=self._timeout)
        except (SQLAlchemyError, asyncio.TimeoutError) as exc:
            logger.error("database_store_init_failed", error=type(exc).__name__)
            raise StoreUnavailableError() from exc

    async def close(self) -> None:
        await self.database.dispose()

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[AsyncSession]:
        try:
            async with asyncio.timeout(self._timeout):
                async with self.database.session()() as session:
                    async with session.begin():
                        yield session
        except AuthError:
            raise
        except IntegrityError as exc:
            raise DuplicateCredentialError() from exc
        except (SQLAlchemyError, TimeoutError) as exc:
            logger.error("database_store_error", error=type(exc).__name__)
            raise StoreUnavailableError() from exc

    async def get_credentials(self) -> list[Credential]:
        async with self._transaction() as session:
            result = await session.execute(select(CredentialRecord).order_by(CredentialRecord.created_at))
            return [_to_credential(record) for record in result.scalars()]

    async def get_credential_by_id(self, credential_id: str) -> Credential | None:
        async with self._transaction() as session:
            record = await session.get(CredentialRecord, credential_id)
            return _to_credential(record) if record else None

    async def get_credential_count(self) -> int:
        async with self._transaction() as session:
            result = await session.execute(select(func.count()).select_from(CredentialRecord))
            return int(result.scalar_one())

    async def add_credential(self, credential: Credential) -> None:
        async with self._lock, self._transaction() as session:
            if await session.get(CredentialRecord, credential.id) is not None:
                raise DuplicateCredentialError()
            session.add(
                CredentialRecord(
                    id=credential.id,
                    public_key=credential.public_key,
                    counter=credential.counter,
                    device_type=credential.device_type.value,
                    backed_up=credential.backed_up,
                    transports=credential.transports,
                    friendly_name=credential.friendly_name,
                    created_at=credential.created_at,
                    last_used_at=credential.last_used_at,
                )
            )

    async def update_credential(self, credential_id: str, update: CredentialUpdate) -> Credential:
        async with self._lock, self._transaction() as session:
            result = await session.execute(
                select(CredentialRecord).where(CredentialRecord.id == credential_id).with_for_update()
            )
            record = result.scalar_one_or_none()
            if record is None:
                raise NotFoundError()
            for field, value in update.as_changes().items():
                setattr(record, field, value)
            await session.flush()
            return _to_credential(record)

    async def remove_credential(self, credential_id: str, *, keep_last: bool = False) -> None:
        async with self._lock, self._transaction() as session:
            if keep_last:
                result = await session.execute(select(CredentialRecord.id).with_for_update())
                ids = set(result.scalars())
                if credential_id not in ids:
                    raise NotFoundError()
                if len(ids) == 1:
                    raise LockoutPreventionError()
            result = await session.execute(delete(CredentialRecord).where(CredentialRecord.id == credential_id))
            if result.rowcount == 0:
                raise NotFoundError()

    async def set_challenge(self, challenge: StoredChallenge) -> None:
        async with self._lock, self._transaction() as session:
            await session.merge(
                ChallengeRecord(id=CHALLENGE_SLOT_ID, value=challenge.value, expires_at=challenge.expires_at)
            )

    async def get_challenge(self) -> StoredChallenge | None:
        async with self._transaction() as session:
            record = await session.get(ChallengeRecord, CHALLENGE_SLOT_ID)
            if record is None:
                return None
            challenge = StoredChallenge(value=record.value, expires_at=record.expires_at)
        if challenge.is_expired():
            return None
        return challenge

    async def clear_challenge(self) -> None:
        async with self._lock, self._transaction() as session:
            await session.execute(delete(ChallengeRecord).where(ChallengeRecord.id == CHALLENGE_SLOT_ID))

    async def consume_challenge(self) -> StoredChallenge | None:
        async with self._lock, self._transaction() as session:
            result = await session.execute(
                select(ChallengeRecord).where(ChallengeRecord.id == CHALLENGE_SLOT_ID).with_for_update()
            )
            record = result.scalar_one_or_none()
            if record is None:
                return None
            challenge = StoredChallenge(value=record.value, expires_at=record.expires_at)
            await session.delete(record)
        return challenge

"""Credential allowlist storage contract and the JSON file backend."""
from __future__ import annotations

import asyncio
import os
import tempfile
from abc import abstractmethod
from pathlib import Path

import structlog
from pydantic import ValidationError

from ownerkey.core.errors import (
    DuplicateCredentialError,
    LockoutPreventionError,
    NotFoundError,
    StoreUnavailableError,
)
from ownerkey.schemas.credential import (
    Credential,
    CredentialStoreData,
    CredentialUpdate,
    StoredChallenge,
)
from ownerkey.services.challenge import ChallengeStore

logger = structlog.get_logger(__name__)


class CredentialStore(ChallengeStore):
    """Persistence contract for the credential allowlist plus the challenge slot.

    ``remove_credential`` is unconditional unless ``keep_last`` is set, in which
    case the last-credential check and the delete are one atomic step.
    """

    backend: str = "abstract"

    async def initialize(self) -> None:
        """Prepare the backend (create tables, directories...)."""

    async def close(self) -> None:
        """Release connections held by the backend."""

    @abstractmethod
    async def get_credentials(self) -> list[Credential]: ...

    @abstractmethod
    async def get_credential_by_id(self, credential_id: str) -> Credential | None: ...

    @abstractmethod
    async def add_credential(self, credential: Credential) -> None:
        """Persist a new credential. Raises DuplicateCredentialError on id clash."""

    @abstractmethod
    async def update_credential(self, credential_id: str, update: CredentialUpdate) -> Credential:
        """Apply ``update`` and return the stored result. Raises NotFoundError."""

    @abstractmethod
    async def remove_credential(self, credential_id: str, *, keep_last: bool = False) -> None:
        """Delete a credential. Raises NotFoundError.

        With ``keep_last`` raises LockoutPreventionError instead of removing
        the only remaining credential.
        """

    async def get_credential_count(self) -> int:
        return len(await self.get_credentials())

    async def has_credentials(self) -> bool:
        return await self.get_credential_count() > 0


def _apply_update(credential: Credential, update: CredentialUpdate) -> Credential:
    return credential.model_copy(update=update.as_changes())


class FileCredentialStore(CredentialStore):
    """Stores the allowlist in a JSON document for single-host deployments."""

    backend = "file"

    def __init__(self, file_path: str | os.PathLike[str]) -> None:
        self.file_path = Path(file_path)
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        async with self._lock:
            self._load()

    def _load(self) -> CredentialStoreData:
        try:
            content = self.file_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return CredentialStoreData()
        except OSError as exc:
            logger.error("credential_file_unreadable", path=str(self.file_path), error=type(exc).__name__)
            raise StoreUnavailableError() from exc
        try:
            return CredentialStoreData.model_validate_json(content)
        except ValidationError as exc:
            logger.error("credential_file_corrupt", path=str(self.file_path))
            raise StoreUnavailableError() from exc

    def _save(self, data: CredentialStoreData) -> None:
        payload = data.model_dump_json(by_alias=True, exclude_none=True, indent=2)
        try:
            self.file_path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self.file_path.parent, prefix=".credentials.", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as tmp:
                    tmp.write(payload)
                    tmp.flush()
                    os.fsync(tmp.fileno())
                os.replace(tmp_name, self.file_path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            logger.error("credential_file_unwritable", path=str(self.file_path), error=type(exc).__name__)
            raise StoreUnavailableError() from exc

    async def get_credentials(self) -> list[Credential]:
        async with self._lock:
            return list(self._load().credentials)

    async def get_credential_by_id(self, credential_id: str) -> Credential | None:
        for credential in await self.get_credentials():
            if credential.id == credential_id:
                return credential
        return None

    async def add_credential(self, credential: Credential) -> None:
        async with self._lock:
            data = self._load()
            if any(existing.id == credential.id for existing in data.credentials):
                raise DuplicateCredentialError()
            data.credentials.append(credential)
            self._save(data)

    async def update_credential(self, credential_id: str, update: CredentialUpdate) -> Credential:
        async with self._lock:
            data = self._load()
            for index, existing in enumerate(data.credentials):
                if existing.id == credential_id:
                    updated = _apply_update(existing, update)
                    data.credentials[index] = updated
                    self._save(data)
                    return updated
            raise NotFoundError()

    async def remove_credential(self, credential_id: str, *, keep_last: bool = False) -> None:
        async with self._lock:
            data = self._load()
            remaining = [c for c in data.credentials if c.id != credential_id]
            if len(remaining) == len(data.credentials):
                raise NotFoundError()
            if keep_last and not remaining:
                raise LockoutPreventionError()
            data.credentials = remaining
            self._save(data)

    async def set_challenge(self, challenge: StoredChallenge) -> None:
        async with self._lock:
            data = self._load()
            data.current_challenge = challenge
            self._save(data)

    async def get_challenge(self) -> StoredChallenge | None:
        async with self._lock:
            challenge = self._load().current_challenge
        if challenge is None or challenge.is_expired():
            return None
        return challenge

    async def clear_challenge(self) -> None:
        async with self._lock:
            data = self._load()
            if data.current_challenge is None:
                return
            data.current_challenge = None
            self._save(data)

    async def consume_challenge(self) -> StoredChallenge | None:
        async with self._lock:
            data = self._load()
            challenge = data.current_challenge
            if challenge is not None:
                data.current_challenge = None
                self._save(data)
        return challenge

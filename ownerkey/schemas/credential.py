"""Credential allowlist and challenge schemas."""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DeviceType(str, Enum):
    PLATFORM = "platform"
    CROSS_PLATFORM = "cross-platform"


class Credential(CamelModel):
    """A registered authenticator bound to the single owner."""

    id: str
    public_key: str
    counter: int = Field(0, ge=0)
    device_type: DeviceType = DeviceType.CROSS_PLATFORM
    backed_up: bool = False
    transports: list[str] | None = None
    friendly_name: str
    created_at: datetime
    last_used_at: datetime | None = None


class CredentialUpdate(CamelModel):
    """Fields of a credential that may change after registration."""

    counter: int | None = Field(None, ge=0)
    last_used_at: datetime | None = None
    friendly_name: str | None = None

    def as_changes(self) -> dict[str, object]:
        return self.model_dump(exclude_unset=True)


class StoredChallenge(CamelModel):
    value: str
    expires_at: int

    def is_expired(self, now_ms: int | None = None) -> bool:
        if now_ms is None:
            now_ms = now_epoch_ms()
        return now_ms >= self.expires_at


class CredentialStoreData(CamelModel):
    """On-disk layout of the file backend."""

    credentials: list[Credential] = Field(default_factory=list)
    current_challenge: StoredChallenge | None = None


def now_epoch_ms() -> int:
    return int(datetime.now(timezone.utc).timestamp() * 1000)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)

"""Single-slot challenge storage contract.

The system is single-user, so at most one ceremony challenge is outstanding at
any time. Issuing a new challenge overwrites the previous one (last write wins)
and every verify attempt consumes it, successful or not.
"""
from __future__ import annotations

from abc import ABC, abstractmethod

from ownerkey.schemas.credential import StoredChallenge, now_epoch_ms


def build_challenge(value: str, ttl_seconds: int) -> StoredChallenge:
    return StoredChallenge(value=value, expires_at=now_epoch_ms() + ttl_seconds * 1000)


class ChallengeStore(ABC):
    @abstractmethod
    async def set_challenge(self, challenge: StoredChallenge) -> None:
        """Store ``challenge``, replacing any outstanding one."""

    @abstractmethod
    async def get_challenge(self) -> StoredChallenge | None:
        """Return the outstanding challenge, or None if absent or expired."""

    @abstractmethod
    async def clear_challenge(self) -> None:
        """Drop the outstanding challenge. Idempotent."""

    @abstractmethod
    async def consume_challenge(self) -> StoredChallenge | None:
        """Atomically return and clear the outstanding challenge.

        An expired challenge is still returned so the caller can tell an
        expired ceremony from a missing one. The slot is empty afterwards in
        every case.
        """

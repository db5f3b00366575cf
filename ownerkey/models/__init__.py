"""SQLAlchemy models."""
from .credential import CHALLENGE_SLOT_ID, ChallengeRecord, CredentialRecord

__all__ = [
    "CHALLENGE_SLOT_ID",
    "ChallengeRecord",
    "CredentialRecord",
]

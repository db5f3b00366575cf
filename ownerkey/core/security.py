"""Security helpers shared by the session and bootstrap services."""
from __future__ import annotations

import base64
import hashlib
import hmac
import secrets


def constant_time_compare(val1: str, val2: str) -> bool:
    return hmac.compare_digest(val1.encode("utf-8"), val2.encode("utf-8"))


def sign(secret: bytes, payload: bytes) -> bytes:
    return hmac.new(secret, payload, hashlib.sha256).digest()


def b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def b64url_decode(data: str) -> bytes:
    padded = data + "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii"))


def normalize_credential_id(value: str) -> str:
    """Credential IDs are stored as unpadded base64url; accept padded input too."""

    return value.strip().rstrip("=")


def generate_secret_key(length: int = 32) -> str:
    """Generate a URL-safe secret suitable for AUTH_SESSION_SECRET or AUTH_BOOTSTRAP_TOKEN."""

    return secrets.token_urlsafe(length)

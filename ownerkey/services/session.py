"""Session management service.

Sessions are self-contained signed tokens: nothing is stored server side beyond
the signing secret, so validation is a pure computation.
"""
from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import structlog

from ownerkey.core.config import SessionConfig
from ownerkey.core.security import b64url_decode, b64url_encode, constant_time_compare, sign

logger = structlog.get_logger(__name__)

SESSION_SUBJECT = "owner"


@dataclass(frozen=True)
class SessionData:
    credential_id: str
    issued_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class IssuedSession:
    token: str
    expires_at: datetime


class SessionService:
    def __init__(self, config: SessionConfig) -> None:
        self.config = config

    def _signature(self, payload_segment: str) -> str:
        return b64url_encode(sign(self.config.secret, payload_segment.encode("utf-8")))

    def create_session(self, credential_id: str, *, now: datetime | None = None) -> IssuedSession:
        issued = int((now or datetime.now(timezone.utc)).timestamp())
        expires = issued + self.config.max_age_seconds
        payload = {"sub": SESSION_SUBJECT, "cid": credential_id, "iat": issued, "exp": expires}
        segment = b64url_encode(json.dumps(payload, separators=(",", ":"), sort_keys=True).encode("utf-8"))
        token = f"{segment}.{self._signature(segment)}"
        return IssuedSession(token=token, expires_at=datetime.fromtimestamp(expires, tz=timezone.utc))

    def validate_session(self, token: str | None, *, now: datetime | None = None) -> SessionData | None:
        """Return the session carried by ``token`` or None when it is unusable for any reason."""

        if not token:
            return None
        segment, _, signature = token.partition(".")
        if not segment or not signature:
            return None
        if not constant_time_compare(signature, self._signature(segment)):
            return None
        try:
            payload: Any = json.loads(b64url_decode(segment))
        except ValueError:
            return None
        if not isinstance(payload, dict) or payload.get("sub") != SESSION_SUBJECT:
            return None
        credential_id, issued, expires = payload.get("cid"), payload.get("iat"), payload.get("exp")
        if not isinstance(credential_id, str) or not isinstance(issued, int) or not isinstance(expires, int):
            return None
        current = int((now or datetime.now(timezone.utc)).timestamp())
        if expires <= current:
            return None
        return SessionData(
            credential_id=credential_id,
            issued_at=datetime.fromtimestamp(issued, tz=timezone.utc),
            expires_at=datetime.fromtimestamp(expires, tz=timezone.utc),
        )

    def get_cookie_options(self) -> dict[str, Any]:
        return {
            "name": self.config.cookie_name,
            "path": "/",
            "httpOnly": True,
            "secure": self.config.secure,
            "sameSite": "lax",
            "maxAge": self.config.max_age_seconds,
        }

    def get_clear_cookie_options(self) -> dict[str, Any]:
        return {**self.get_cookie_options(), "maxAge": 0}

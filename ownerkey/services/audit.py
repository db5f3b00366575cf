"""Audit logging service."""
from __future__ import annotations

from typing import Any

import structlog

from ownerkey.utils.request import ClientInfo

audit_logger = structlog.get_logger("audit")


def log_audit_event(
    event_type: str,
    outcome: str,
    *,
    client: ClientInfo | None = None,
    credential_id: str | None = None,
    code: str | None = None,
    **details: Any,
) -> None:
    """Record one auth-relevant operation.

    Callers pass identifiers and error codes only. Challenges, keys, tokens and
    secrets never go through here.
    """

    client = client or ClientInfo()
    log = audit_logger.warning if outcome == "failure" else audit_logger.info
    log(
        event_type,
        outcome=outcome,
        credential_id=credential_id,
        code=code,
        ip=client.ip,
        user_agent=client.user_agent,
        **details,
    )

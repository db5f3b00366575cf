"""Rate limiting for the ceremony endpoints using slowapi."""
from __future__ import annotations

from slowapi import Limiter
from slowapi.util import get_remote_address

from .config import get_settings


def ceremony_rate_limit() -> str:
    return get_settings().rate_limit_per_ip


limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[ceremony_rate_limit],
    storage_uri=get_settings().rate_limit_storage_uri,
)

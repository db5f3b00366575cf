"""Request utility helpers."""
from __future__ import annotations

from dataclasses import dataclass

from fastapi import Request


@dataclass(frozen=True)
class ClientInfo:
    ip: str | None = None
    user_agent: str | None = None


def get_client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    client = request.client
    return client.host if client else None


def get_user_agent(request: Request) -> str | None:
    return request.headers.get("user-agent")


def get_client_info(request: Request) -> ClientInfo:
    return ClientInfo(ip=get_client_ip(request), user_agent=get_user_agent(request))

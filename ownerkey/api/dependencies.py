"""API dependencies."""
from __future__ import annotations

from fastapi import Depends, Request

from ownerkey.core.errors import UnauthorizedError
from ownerkey.services.orchestrator import AuthOrchestrator
from ownerkey.services.session import SessionData


def get_orchestrator(request: Request) -> AuthOrchestrator:
    return request.app.state.auth


def get_session_token(request: Request, orchestrator: AuthOrchestrator = Depends(get_orchestrator)) -> str | None:
    if not orchestrator.session_config_available:
        return None
    return request.cookies.get(orchestrator.sessions.config.cookie_name)


async def optional_session(
    token: str | None = Depends(get_session_token),
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
) -> SessionData | None:
    return await orchestrator.authenticate(token)


async def require_session(session: SessionData | None = Depends(optional_session)) -> SessionData:
    if session is None:
        raise UnauthorizedError()
    return session

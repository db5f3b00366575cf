"""Authentication API routes."""
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request, Response

from ownerkey.api.dependencies import get_orchestrator, get_session_token, optional_session, require_session
from ownerkey.core.rate_limit import ceremony_rate_limit, limiter
from ownerkey.schemas.auth import (
    BootstrapOptionsRequest,
    BootstrapStatusResponse,
    BootstrapVerifyRequest,
    BootstrapVerifyResponse,
    CeremonyVerifyRequest,
    CredentialInfo,
    CredentialRenameRequest,
    CredentialsResponse,
    LoginVerifyRequest,
    LoginVerifyResponse,
    RegisterVerifyResponse,
    SessionStatusResponse,
    SuccessResponse,
)
from ownerkey.services.orchestrator import AuthOrchestrator
from ownerkey.services.session import IssuedSession, SessionData
from ownerkey.utils.request import get_client_info

router = APIRouter(prefix="/api/auth", tags=["auth"])


def _apply_cookie(response: Response, options: dict[str, Any], value: str) -> None:
    response.set_cookie(
        key=options["name"],
        value=value,
        max_age=options["maxAge"],
        path=options["path"],
        httponly=options["httpOnly"],
        secure=options["secure"],
        samesite=options["sameSite"],
    )


def _set_session_cookie(response: Response, orchestrator: AuthOrchestrator, issued: IssuedSession) -> None:
    _apply_cookie(response, orchestrator.sessions.get_cookie_options(), issued.token)


@router.post("/register/options")
@limiter.limit(ceremony_rate_limit)
async def register_options(
    request: Request,
    session: SessionData | None = Depends(optional_session),
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    return await orchestrator.register_options(session, get_client_info(request))


@router.post("/register/verify", response_model=RegisterVerifyResponse)
@limiter.limit(ceremony_rate_limit)
async def register_verify(
    request: Request,
    payload: CeremonyVerifyRequest,
    session: SessionData | None = Depends(optional_session),
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
) -> RegisterVerifyResponse:
    created = await orchestrator.register_verify(
        session, payload.credential, payload.friendly_name, get_client_info(request)
    )
    return RegisterVerifyResponse(credential_id=created.id)


@router.post("/login/options")
@limiter.limit(ceremony_rate_limit)
async def login_options(
    request: Request,
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    return await orchestrator.login_options(get_client_info(request))


@router.post("/login/verify", response_model=LoginVerifyResponse)
@limiter.limit(ceremony_rate_limit)
async def login_verify(
    request: Request,
    response: Response,
    payload: LoginVerifyRequest,
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
) -> LoginVerifyResponse:
    _, issued = await orchestrator.login_verify(payload.credential, get_client_info(request))
    _set_session_cookie(response, orchestrator, issued)
    return LoginVerifyResponse(expires_at=issued.expires_at)


@router.post("/bootstrap/options")
@limiter.limit(ceremony_rate_limit)
async def bootstrap_options(
    request: Request,
    payload: BootstrapOptionsRequest,
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    return await orchestrator.bootstrap_options(payload.bootstrap_token, get_client_info(request))


@router.post("/bootstrap/verify", response_model=BootstrapVerifyResponse)
@limiter.limit(ceremony_rate_limit)
async def bootstrap_verify(
    request: Request,
    response: Response,
    payload: BootstrapVerifyRequest,
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
) -> BootstrapVerifyResponse:
    created, issued = await orchestrator.bootstrap_verify(
        payload.bootstrap_token, payload.credential, payload.friendly_name, get_client_info(request)
    )
    _set_session_cookie(response, orchestrator, issued)
    return BootstrapVerifyResponse(credential_id=created.id, expires_at=issued.expires_at)


@router.get("/bootstrap/status", response_model=BootstrapStatusResponse)
async def bootstrap_status(orchestrator: AuthOrchestrator = Depends(get_orchestrator)) -> BootstrapStatusResponse:
    return BootstrapStatusResponse.model_validate(await orchestrator.bootstrap_status())


@router.get("/credentials", response_model=CredentialsResponse)
async def list_credentials(
    _: SessionData = Depends(require_session),
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
) -> CredentialsResponse:
    credentials = await orchestrator.list_credentials()
    return CredentialsResponse(credentials=[CredentialInfo.from_credential(c) for c in credentials])


@router.patch("/credentials/{credential_id}", response_model=CredentialInfo)
async def rename_credential(
    request: Request,
    credential_id: str,
    payload: CredentialRenameRequest,
    _: SessionData = Depends(require_session),
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
) -> CredentialInfo:
    updated = await orchestrator.rename_credential(credential_id, payload.friendly_name, get_client_info(request))
    return CredentialInfo.from_credential(updated)


@router.delete("/credentials/{credential_id}", response_model=SuccessResponse)
async def delete_credential(
    request: Request,
    credential_id: str,
    _: SessionData = Depends(require_session),
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
) -> SuccessResponse:
    await orchestrator.delete_credential(credential_id, get_client_info(request))
    return SuccessResponse()


@router.get("/session", response_model=SessionStatusResponse)
async def session_status(
    token: str | None = Depends(get_session_token),
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
) -> SessionStatusResponse:
    session = await orchestrator.session_status(token)
    if session is None:
        return SessionStatusResponse(authenticated=False)
    return SessionStatusResponse(authenticated=True, expires_at=session.expires_at)


@router.post("/logout", response_model=SuccessResponse)
async def logout(
    request: Request,
    response: Response,
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
) -> SuccessResponse:
    options = orchestrator.logout(get_client_info(request))
    _apply_cookie(response, options, "")
    return SuccessResponse()

"""FastAPI application entrypoint."""
from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from ownerkey.api.routes import auth
from ownerkey.core.config import Settings, get_settings
from ownerkey.core.errors import AuthError
from ownerkey.core.logging import setup_logging
from ownerkey.core.rate_limit import limiter
from ownerkey.services.credential_store import CredentialStore
from ownerkey.services.orchestrator import build_auth_services

logger = structlog.get_logger(__name__)

RETRY_AFTER_SECONDS = "1"


def _error_response(status_code: int, code: str, message: str, headers: dict[str, str] | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": True, "code": code, "message": message},
        headers=headers,
    )


def create_app(settings: Settings | None = None, store: CredentialStore | None = None) -> FastAPI:
    settings = settings or get_settings()
    setup_logging(settings)
    orchestrator = build_auth_services(settings, store)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if not settings.auth_enabled:
            logger.warning("auth_bypass_enabled", detail="AUTH_MODE=off is for local development only")
        await orchestrator.store.initialize()
        logger.info("credential_store_ready", backend=orchestrator.store.backend)
        try:
            yield
        finally:
            await orchestrator.store.close()

    app = FastAPI(title=settings.app_name, debug=settings.debug, lifespan=lifespan)
    app.state.auth = orchestrator

    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_handler)
    app.add_middleware(SlowAPIMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type"],
    )

    @app.middleware("http")
    async def security_headers_middleware(request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        response = await call_next(request)
        if settings.security_headers_enabled:
            response.headers.setdefault("X-Content-Type-Options", "nosniff")
            response.headers.setdefault("X-Frame-Options", "DENY")
            response.headers.setdefault("Referrer-Policy", "no-referrer")
            response.headers.setdefault("Strict-Transport-Security", "max-age=31536000; includeSubDomains")
            response.headers.setdefault("Cache-Control", "no-store")
        return response

    @app.exception_handler(AuthError)
    async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
        headers = {"Retry-After": RETRY_AFTER_SECONDS} if exc.retryable else None
        return _error_response(exc.status_code, exc.code, exc.message, headers)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        if any("bootstrapToken" in error.get("loc", ()) for error in exc.errors()):
            return _error_response(400, "MISSING_TOKEN", "Bootstrap token is required")
        return _error_response(400, "INVALID_REQUEST", "Invalid request body")

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        detail = exc.detail if isinstance(exc.detail, str) else "error"
        code = detail.upper().replace(" ", "_")
        return _error_response(exc.status_code, code, detail, getattr(exc, "headers", None))

    app.include_router(auth.router)
    return app


async def _rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    return _error_response(429, "RATE_LIMITED", "Too many requests", {"Retry-After": "60"})

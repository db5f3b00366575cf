"""Test fixtures for the authentication service."""
from __future__ import annotations

import time
from collections.abc import Generator
from pathlib import Path
from typing import Any

import pytest
from fastapi.testclient import TestClient
from redis.exceptions import WatchError

from ownerkey.core import rate_limit
from ownerkey.core.config import get_settings
from ownerkey.main import create_app
from virtual_authenticator import VirtualAuthenticator

SESSION_SECRET = "s" * 48
BOOTSTRAP_TOKEN = "bootstrap-token-for-tests"
ORIGIN = "http://localhost:5173"
RP_ID = "localhost"


class InMemoryRedis:
    """Minimal async Redis replacement for tests."""

    def __init__(self) -> None:
        self._store: dict[str, tuple[str, float | None]] = {}
        self._versions: dict[str, int] = {}

    def _now(self) -> float:
        return time.monotonic()

    def _live(self, key: str) -> str | None:
        payload = self._store.get(key)
        if not payload:
            return None
        value, expires = payload
        if expires is not None and self._now() > expires:
            self._store.pop(key, None)
            return None
        return value

    def _write(self, key: str, value: str, expires: float | None) -> None:
        self._store[key] = (value, expires)
        self._versions[key] = self._versions.get(key, 0) + 1

    async def set(self, key: str, value: str, ex: int | None = None, px: int | None = None) -> bool:
        expires = None
        if ex is not None:
            expires = self._now() + ex
        elif px is not None:
            expires = self._now() + px / 1000
        self._write(key, value, expires)
        return True

    async def get(self, key: str) -> str | None:
        return self._live(key)

    async def getdel(self, key: str) -> str | None:
        value = self._live(key)
        await self.delete(key)
        return value

    async def delete(self, key: str) -> int:
        existed = self._store.pop(key, None) is not None
        if existed:
            self._versions[key] = self._versions.get(key, 0) + 1
        return int(existed)

    def pipeline(self, transaction: bool = True) -> "InMemoryPipeline":
        return InMemoryPipeline(self)

    async def aclose(self) -> None:
        self._store.clear()


class InMemoryPipeline:
    """Just enough of ``redis.asyncio.client.Pipeline`` for WATCH/MULTI/EXEC."""

    def __init__(self, redis: InMemoryRedis) -> None:
        self._redis = redis
        self._watched: dict[str, int] = {}
        self._queued: list[tuple[str, str]] = []

    async def __aenter__(self) -> "InMemoryPipeline":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        self._watched.clear()
        self._queued.clear()

    async def watch(self, *keys: str) -> None:
        for key in keys:
            self._watched[key] = self._redis._versions.get(key, 0)

    async def get(self, key: str) -> str | None:
        return await self._redis.get(key)

    def multi(self) -> None:
        self._queued.clear()

    def set(self, key: str, value: str) -> "InMemoryPipeline":
        self._queued.append((key, value))
        return self

    async def execute(self) -> list[bool]:
        for key, version in self._watched.items():
            if self._redis._versions.get(key, 0) != version:
                raise WatchError("Watched variable changed.")
        for key, value in self._queued:
            self._redis._write(key, value, None)
        return [True] * len(self._queued)


@pytest.fixture
def auth_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> dict[str, str]:
    env = {
        "APP_NAME": "OwnerKey Test",
        "ENVIRONMENT": "test",
        "AUTH_MODE": "on",
        "AUTH_RP_ID": RP_ID,
        "AUTH_RP_NAME": "OwnerKey Test",
        "AUTH_ORIGIN": ORIGIN,
        "AUTH_SESSION_SECRET": SESSION_SECRET,
        "AUTH_BOOTSTRAP_TOKEN": BOOTSTRAP_TOKEN,
        "CREDENTIAL_STORE": "file",
        "AUTH_CREDENTIALS_PATH": str(tmp_path / "credentials.json"),
        "FRONTEND_ORIGINS": ORIGIN,
        "RATE_LIMIT_PER_IP": "1000/minute",
        "SECURITY_HEADERS_ENABLED": "True",
    }
    for key, value in env.items():
        monkeypatch.setenv(key, value)
    get_settings.cache_clear()
    yield env
    get_settings.cache_clear()


@pytest.fixture
def make_client(auth_env: dict[str, str], monkeypatch: pytest.MonkeyPatch):
    """Build a client after applying extra environment overrides."""

    clients: list[TestClient] = []

    def factory(**overrides: str) -> TestClient:
        for key, value in overrides.items():
            monkeypatch.setenv(key, value)
        get_settings.cache_clear()
        rate_limit.limiter.reset()
        test_client = TestClient(create_app())
        test_client.__enter__()
        clients.append(test_client)
        return test_client

    yield factory
    for test_client in clients:
        test_client.__exit__(None, None, None)


@pytest.fixture
def client(make_client) -> Generator[TestClient, None, None]:
    yield make_client()


@pytest.fixture
def authenticator() -> VirtualAuthenticator:
    return VirtualAuthenticator(rp_id=RP_ID, origin=ORIGIN)


def bootstrap_owner(client: TestClient, authenticator: VirtualAuthenticator, **extra: Any) -> dict[str, Any]:
    options = client.post("/api/auth/bootstrap/options", json={"bootstrapToken": BOOTSTRAP_TOKEN})
    assert options.status_code == 200, options.text
    credential = authenticator.register(options.json()["challenge"])
    verified = client.post(
        "/api/auth/bootstrap/verify",
        json={"bootstrapToken": BOOTSTRAP_TOKEN, "credential": credential, **extra},
    )
    assert verified.status_code == 200, verified.text
    return verified.json()


def login(client: TestClient, authenticator: VirtualAuthenticator, **kwargs: Any):
    options = client.post("/api/auth/login/options")
    assert options.status_code == 200, options.text
    assertion = authenticator.authenticate(options.json()["challenge"], **kwargs)
    return client.post("/api/auth/login/verify", json={"credential": assertion})

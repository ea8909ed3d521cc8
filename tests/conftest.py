"""Shared test fixtures and configuration."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta
import os
from pathlib import Path

import pytest
from starlette.requests import Request
from starlette.testclient import TestClient

from server import create_app
from widdler_backend.auth import CredentialStore, hash_secret
from widdler_backend.backup import BackupManager
from widdler_backend.config import BackupSettings, Settings


# Cheap hashes keep the suite fast; cost does not change verification.
TEST_ROUNDS = 4

USERS = {"alice": "wonderland", "bob": "builder"}


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 12, 31, 23, 59, 50)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Make sure no WIDDLER_* variable from the host leaks into a test."""
    for key in list(os.environ):
        if key.startswith("WIDDLER_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def wikis(tmp_path: Path) -> Path:
    root = tmp_path / "wikis"
    root.mkdir()
    return root


@pytest.fixture
def credentials() -> CredentialStore:
    return CredentialStore({name: hash_secret(secret, rounds=TEST_ROUNDS) for name, secret in USERS.items()})


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_settings(wikis: Path, tmp_path: Path) -> Callable[..., Settings]:
    def _make(**overrides) -> Settings:
        values = {
            "wikis_dir": wikis,
            "htpasswd_path": tmp_path / ".htpasswd",
            "listen": "localhost:8080",
        }
        values.update(overrides)
        return Settings(**values)

    return _make


@pytest.fixture
def make_client(make_settings, credentials, clock):
    clients: list[TestClient] = []

    def _make(backup: BackupSettings | None = None, **overrides) -> TestClient:
        if backup is not None:
            overrides["backup"] = backup
        settings = make_settings(**overrides)
        backups = BackupManager(settings.backup, clock=clock)
        app = create_app(settings, credentials=credentials, backups=backups)
        client = TestClient(app)
        client.__enter__()
        clients.append(client)
        return client

    yield _make

    for client in clients:
        client.__exit__(None, None, None)


def make_request(method: str, path: str, headers: dict[str, str] | None = None, body: bytes = b"") -> Request:
    """Build a Request with a raw, unnormalized path."""
    raw_headers = [(k.lower().encode("latin-1"), v.encode("latin-1")) for k, v in (headers or {}).items()]
    scope = {
        "type": "http",
        "http_version": "1.1",
        "method": method,
        "scheme": "http",
        "path": path,
        "raw_path": path.encode("latin-1"),
        "root_path": "",
        "query_string": b"",
        "headers": raw_headers,
        "client": ("127.0.0.1", 12345),
        "server": ("localhost", 8080),
    }
    sent = False

    async def receive():
        nonlocal sent
        if sent:
            return {"type": "http.disconnect"}
        sent = True
        return {"type": "http.request", "body": body, "more_body": False}

    return Request(scope, receive)

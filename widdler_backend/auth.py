"""Credential store and the authentication strategies the router can use.

The store is an htpasswd-style file: one ``identity:bcrypt-hash`` record per
line, ``#`` starts a comment line, leading whitespace is ignored.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Protocol

import bcrypt
from fastapi import HTTPException
from fastapi.security import HTTPBasic
from starlette.requests import Request

from .config import AUTH_HEADER_PREFIX
from .errors import AuthenticationFailure


logger = logging.getLogger(__name__)

HASH_ROUNDS = 11


class CredentialStore:
    def __init__(self, entries: dict[str, str] | None = None) -> None:
        self._entries: dict[str, str] = dict(entries or {})

    @classmethod
    def parse(cls, text: str) -> "CredentialStore":
        entries: dict[str, str] = {}
        for lineno, raw in enumerate(text.splitlines(), start=1):
            line = raw.lstrip()
            if not line or line.startswith("#"):
                continue
            identity, sep, hashed = line.partition(":")
            if not sep:
                raise ValueError(f"line {lineno}: expected 'identity:hash'")
            entries[identity] = hashed.strip()
        return cls(entries)

    @classmethod
    def load(cls, path: Path) -> "CredentialStore":
        return cls.parse(Path(path).read_text(encoding="utf-8"))

    @property
    def identities(self) -> list[str]:
        return list(self._entries)

    def __contains__(self, identity: str) -> bool:
        return identity in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def verify(self, identity: str, secret: str) -> bool:
        hashed = self._entries.get(identity)
        if hashed is None:
            return False
        try:
            return bcrypt.checkpw(secret.encode("utf-8"), hashed.encode("utf-8"))
        except ValueError:
            logger.warning("invalid password hash for %r", identity)
            return False


def hash_secret(secret: str, rounds: int = HASH_ROUNDS) -> str:
    return bcrypt.hashpw(secret.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("ascii")


def append_entry(path: Path, identity: str, secret: str, rounds: int = HASH_ROUNDS) -> None:
    """Add a credential record to the store at ``path``, creating it if needed."""
    if not identity or ":" in identity:
        raise ValueError("identity must be non-empty and must not contain ':'")
    record = f"{identity}:{hash_secret(secret, rounds)}\n"
    fd = os.open(path, os.O_APPEND | os.O_CREAT | os.O_WRONLY, 0o600)
    with os.fdopen(fd, "a", encoding="utf-8") as fh:
        fh.write(record)


class AuthStrategy(Protocol):
    async def verify(self, request: Request) -> str:
        """Return the identity behind ``request`` or raise AuthenticationFailure."""
        ...


class NoAuth:
    async def verify(self, request: Request) -> str:
        return ""


class BasicAuth:
    def __init__(self, credentials: CredentialStore) -> None:
        self.credentials = credentials
        self._scheme = HTTPBasic(auto_error=False)

    async def verify(self, request: Request) -> str:
        try:
            supplied = await self._scheme(request)
        except HTTPException as exc:
            raise AuthenticationFailure("malformed basic credentials") from exc
        if supplied is None:
            raise AuthenticationFailure("no credentials")
        if not self.credentials.verify(supplied.username, supplied.password):
            raise AuthenticationFailure(f"bad credentials for {supplied.username!r}")
        return supplied.username


class HeaderAuth:
    """Credentials carried as ``<prefix><identity>: <secret>`` request headers.

    Header names arrive lower-cased, so identities are matched lower-cased.
    The standard Authorization header is never read as a credential.
    """

    def __init__(self, credentials: CredentialStore, prefix: str = AUTH_HEADER_PREFIX) -> None:
        self.credentials = credentials
        self.prefix = prefix.lower()

    def extract(self, request: Request) -> tuple[str, str] | None:
        for name, value in request.headers.items():
            if name == "authorization" or not name.startswith(self.prefix):
                continue
            return name[len(self.prefix):], value
        return None

    async def verify(self, request: Request) -> str:
        supplied = self.extract(request)
        if supplied is None:
            raise AuthenticationFailure("no credential header")
        identity, secret = supplied
        if not identity or not self.credentials.verify(identity, secret):
            raise AuthenticationFailure(f"bad credentials for {identity!r}")
        return identity


def build_auth(mode: str, credentials: CredentialStore) -> AuthStrategy:
    if mode == "none":
        return NoAuth()
    if mode == "basic":
        return BasicAuth(credentials)
    if mode == "header":
        return HeaderAuth(credentials)
    raise ValueError(f"unknown auth mode: {mode!r}")

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from functools import lru_cache
from importlib import resources
from pathlib import Path

from .auth import CredentialStore
from .browse import Browser
from .config import Settings
from .dav import DavHandler
from .security import is_safe_basename


logger = logging.getLogger(__name__)

EMPTY_DOCUMENT = "empty.html"


@lru_cache(maxsize=1)
def empty_document() -> bytes:
    """The bundled document new wikis are created from."""
    return resources.files(__package__).joinpath(EMPTY_DOCUMENT).read_bytes()


def create_empty(path: Path, payload: bytes | None = None) -> bool:
    """Create ``path`` from the empty document unless it already exists.

    Returns True if the file was created. Never overwrites.
    """
    if path.exists():
        return False
    data = empty_document() if payload is None else payload
    try:
        with open(path, "xb") as fh:
            fh.write(data)
    except FileExistsError:
        return False
    path.chmod(0o600)
    logger.info("creating %r", str(path))
    return True


@dataclass(eq=False)
class TenantHandler:
    """Everything serving one tenant: its root, its protocol handlers, its lock."""

    identity: str
    root: Path
    dav: DavHandler
    browser: Browser
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    @classmethod
    def for_root(cls, identity: str, root: Path) -> "TenantHandler":
        return cls(identity=identity, root=root, dav=DavHandler(root), browser=Browser(root))

    @asynccontextmanager
    async def session(self) -> AsyncIterator["TenantHandler"]:
        """Hold this tenant exclusively for the duration of the block.

        Every request against the tenant's tree, reads included, runs inside
        a session, so a snapshot followed by a write is never interleaved
        with another request for the same tenant.
        """
        async with self._lock:
            yield self

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    def ensure_root(self) -> bool:
        if self.root.is_dir():
            return False
        self.root.mkdir(mode=0o700, parents=True, exist_ok=True)
        return True


class HandlerRegistry:
    """Tenant handlers built once at startup; read-only afterwards."""

    def __init__(self, handlers: Iterable[TenantHandler]) -> None:
        handlers = tuple(handlers)
        seen: set[str] = set()
        for handler in handlers:
            if handler.identity in seen:
                raise ValueError(f"duplicate tenant identity: {handler.identity!r}")
            seen.add(handler.identity)
        self._handlers = handlers

    def find(self, identity: str) -> TenantHandler | None:
        for handler in self._handlers:
            if handler.identity == identity:
                return handler
        return None

    def __iter__(self):
        return iter(self._handlers)

    def __len__(self) -> int:
        return len(self._handlers)


def tenant_root(settings: Settings, identity: str) -> Path:
    if not identity:
        return settings.root
    return settings.root / identity


def build_registry(settings: Settings, credentials: CredentialStore) -> HandlerRegistry:
    if not settings.auth_enabled:
        return HandlerRegistry([TenantHandler.for_root("", settings.root)])

    handlers = []
    for identity in credentials.identities:
        if not is_safe_basename(identity):
            logger.warning("skipping unsafe identity %r", identity)
            continue
        handlers.append(TenantHandler.for_root(identity, tenant_root(settings, identity)))
    return HandlerRegistry(handlers)

"""Per-request control flow.

authenticate -> find the tenant -> hold its session -> guard the path ->
document branch (create, snapshot, WebDAV) or browse branch (listing,
index redirect, landing page).
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from jinja2 import TemplateError
from starlette.concurrency import run_in_threadpool
from starlette.requests import Request
from starlette.responses import HTMLResponse, RedirectResponse, Response

from .auth import AuthStrategy
from .backup import BackupManager
from .config import DEFAULT_DOCUMENT, DOCUMENT_SUFFIX, SUGGESTED_DOCUMENT, WRITE_METHODS, Settings
from .dav import DavRequest
from .errors import FilesystemFailure, RequestTimeout, TemplateFailure, TenantUnknown
from .landing import render_landing
from .security import check_request_path, safe_join
from .workspace import HandlerRegistry, TenantHandler, create_empty


logger = logging.getLogger(__name__)


def is_document(request_path: str) -> bool:
    return request_path.endswith(DOCUMENT_SUFFIX)


class RequestRouter:
    def __init__(
        self,
        settings: Settings,
        auth: AuthStrategy,
        registry: HandlerRegistry,
        backups: BackupManager,
    ) -> None:
        self.settings = settings
        self.auth = auth
        self.registry = registry
        self.backups = backups
        self._forbidden = (settings.credentials_path.name,)

    async def handle(self, request: Request) -> Response:
        request_path = request.url.path or "/"
        check_request_path(request_path, self._forbidden)

        identity = await self.auth.verify(request)
        handler = self.registry.find(identity)
        if handler is None:
            raise TenantUnknown(f"no tenant for {identity!r}")

        body = b""
        if is_document(request_path) and request.method.upper() not in {"GET", "HEAD", "OPTIONS"}:
            # Read before taking the session so a slow client cannot hold it.
            try:
                body = await asyncio.wait_for(request.body(), timeout=self.settings.request_timeout)
            except asyncio.TimeoutError as exc:
                raise RequestTimeout(request_path) from exc

        async with handler.session():
            return await run_in_threadpool(self._serve, handler, request, request_path, body)

    def _serve(self, handler: TenantHandler, request: Request, request_path: str, body: bytes) -> Response:
        full_path = safe_join(handler.root, request_path)
        logger.debug("Resolved file: %s", full_path)

        try:
            handler.ensure_root()
        except OSError as exc:
            raise FilesystemFailure(str(exc)) from exc

        if is_document(request_path):
            return self._serve_document(handler, request, request_path, full_path, body)
        return self._serve_browse(handler, request_path)

    def _serve_document(
        self,
        handler: TenantHandler,
        request: Request,
        request_path: str,
        full_path: Path,
        body: bytes,
    ) -> Response:
        try:
            created = create_empty(full_path)
        except OSError as exc:
            logger.error("create %s error: %s", full_path, exc)
            raise FilesystemFailure(str(exc)) from exc

        method = request.method.upper()
        # A document created by this very request only holds the empty
        # template; there is nothing to preserve yet.
        if method in WRITE_METHODS and self.backups.enabled and not created:
            backup_path = safe_join(handler.root / self.settings.backup.dir, request_path)
            # BackupFailure propagates and the write below never happens.
            self.backups.snapshot(full_path, backup_path)

        dav_request = DavRequest(
            method=method,
            path=request_path,
            headers={k.lower(): v for k, v in request.headers.items()},
            body=body,
        )
        try:
            return handler.dav.serve(dav_request)
        except OSError as exc:
            logger.error("webdav %s %s error: %s", method, request_path, exc)
            raise FilesystemFailure(str(exc)) from exc

    def _serve_browse(self, handler: TenantHandler, request_path: str) -> Response:
        try:
            has_entries = any(handler.root.iterdir())
        except OSError as exc:
            logger.error("list %s error: %s", handler.root, exc)
            raise FilesystemFailure(str(exc)) from exc

        if not has_entries:
            url = f"{self.settings.public_url}/{SUGGESTED_DOCUMENT}"
            try:
                return HTMLResponse(render_landing(handler.identity, url))
            except TemplateError as exc:
                raise TemplateFailure(str(exc)) from exc

        if request_path == "/" and (handler.root / DEFAULT_DOCUMENT).exists():
            # The browser would serve index.html in place of the listing;
            # send the client to the document branch instead.
            return RedirectResponse(url=f"/{DEFAULT_DOCUMENT}", status_code=301)

        try:
            return handler.browser.serve(request_path)
        except OSError as exc:
            raise FilesystemFailure(str(exc)) from exc

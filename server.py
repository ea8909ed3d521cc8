from __future__ import annotations

import logging
import time
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse, Response

from widdler_backend.auth import CredentialStore, build_auth
from widdler_backend.backup import BackupManager
from widdler_backend.cli import build_parser, generate_entry, harden_tls, package_version, settings_from_args
from widdler_backend.config import AUTH_REALM, DOCUMENT_SUFFIX, Settings
from widdler_backend.errors import (
    AuthenticationFailure,
    FilesystemFailure,
    PathEscape,
    PathRejected,
    RequestTimeout,
    TemplateFailure,
    TenantUnknown,
)
from widdler_backend.router import RequestRouter
from widdler_backend.workspace import build_registry


logger = logging.getLogger("widdler")

ROUTE_METHODS = [
    "GET",
    "HEAD",
    "POST",
    "PUT",
    "DELETE",
    "OPTIONS",
    "PATCH",
    "PROPFIND",
    "PROPPATCH",
    "MKCOL",
    "COPY",
    "MOVE",
    "LOCK",
    "UNLOCK",
]


def load_credentials(settings: Settings) -> CredentialStore:
    path = settings.credentials_path
    if not path.exists():
        if settings.auth_enabled:
            raise FileNotFoundError("No .htpasswd file found!")
        return CredentialStore()
    return CredentialStore.load(path)


def create_app(
    settings: Settings,
    credentials: Optional[CredentialStore] = None,
    backups: Optional[BackupManager] = None,
) -> FastAPI:
    if credentials is None:
        credentials = load_credentials(settings)
    if backups is None:
        backups = BackupManager(settings.backup)

    registry = build_registry(settings, credentials)
    router = RequestRouter(settings, build_auth(settings.auth, credentials), registry, backups)

    logger.info("Wikis directory: %s", settings.root)
    logger.info("Auth: %s", settings.auth)
    logger.info(settings.backup.describe())

    # No generated docs: every path belongs to the tenants.
    app = FastAPI(docs_url=None, redoc_url=None, openapi_url=None)
    app.state.settings = settings
    app.state.router = router

    @app.middleware("http")
    async def _access_log(request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        path = request.url.path or ""
        # Documents change underneath the browser; always re-fetch them.
        if path.endswith(DOCUMENT_SUFFIX):
            response.headers["Cache-Control"] = "no-store"
        client = f"{request.client.host}:{request.client.port}" if request.client else "-"
        logger.info(
            '%s "%s %s HTTP/%s" %03d %.1fms',
            client,
            request.method,
            path,
            request.scope.get("http_version", "1.1"),
            response.status_code,
            (time.perf_counter() - started) * 1000,
        )
        return response

    @app.exception_handler(AuthenticationFailure)
    async def _unauthorized(request: Request, exc: AuthenticationFailure) -> Response:
        logger.info("authentication failed: %s", exc)
        return PlainTextResponse(
            "Unauthorized",
            status_code=401,
            headers={"WWW-Authenticate": f'Basic realm="{AUTH_REALM}"'},
        )

    @app.exception_handler(PathRejected)
    async def _rejected(request: Request, exc: PathRejected) -> Response:
        logger.info("rejected path: %s", exc)
        return PlainTextResponse("404 page not found", status_code=404)

    @app.exception_handler(PathEscape)
    async def _escaped(request: Request, exc: PathEscape) -> Response:
        logger.info("rejected path: %s", exc)
        return PlainTextResponse("Bad request", status_code=400)

    @app.exception_handler(TenantUnknown)
    async def _unknown_tenant(request: Request, exc: TenantUnknown) -> Response:
        logger.warning("%s", exc)
        return PlainTextResponse("404 page not found", status_code=404)

    @app.exception_handler(FilesystemFailure)
    async def _filesystem(request: Request, exc: FilesystemFailure) -> Response:
        logger.error("%s", exc)
        return PlainTextResponse(str(exc), status_code=500)

    @app.exception_handler(TemplateFailure)
    async def _template(request: Request, exc: TemplateFailure) -> Response:
        logger.error("render error: %s", exc)
        return PlainTextResponse(str(exc), status_code=500)

    @app.exception_handler(RequestTimeout)
    async def _timeout(request: Request, exc: RequestTimeout) -> Response:
        return PlainTextResponse("Request Timeout", status_code=408)

    @app.api_route("/{path:path}", methods=ROUTE_METHODS)
    async def dispatch(request: Request, path: str) -> Response:
        return await router.handle(request)

    return app


def serve(settings: Settings) -> int:
    try:
        app = create_app(settings)
    except FileNotFoundError as exc:
        print(exc)
        return 1

    config = uvicorn.Config(
        app,
        host=settings.listen_host,
        port=settings.listen_port,
        ssl_certfile=settings.tls_cert or None,
        ssl_keyfile=settings.tls_key or None,
        # Idle connections are dropped; request bodies are bounded separately.
        timeout_keep_alive=5,
        log_level=settings.log_level.lower(),
        access_log=False,
    )
    config.load()
    harden_tls(config)

    scheme = "HTTPS" if settings.tls_enabled else "HTTP"
    logger.info("Listening for %s on '%s'", scheme, settings.public_url)
    uvicorn.Server(config).run()
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    defaults = Settings.from_env()
    args = build_parser(defaults).parse_args(argv)
    settings = settings_from_args(args, defaults)

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.version:
        print(package_version())
        return 0
    if args.gen:
        return generate_entry(settings.credentials_path)
    return serve(settings)


if __name__ == "__main__":
    # Convenience: python server.py --help
    raise SystemExit(main())

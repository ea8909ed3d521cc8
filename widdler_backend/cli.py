"""Command line parsing and the helpers behind the server entrypoint."""

from __future__ import annotations

import argparse
import getpass
import ssl
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path

import uvicorn

from .auth import append_entry
from .config import AUTH_MODES, BackupSettings, Settings


# OpenSSL name of the ECDH curve the server is pinned to when TLS is on.
TLS_CURVE = "secp384r1"


def package_version() -> str:
    try:
        return version("widdler")
    except PackageNotFoundError:
        return "unknown"


def build_parser(defaults: Settings) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="widdler", description="Serve TiddlyWikis over WebDAV.")
    parser.add_argument("--wikis", type=Path, default=defaults.wikis_dir, help="Directory of TiddlyWikis to serve over WebDAV.")
    parser.add_argument("--http", default=defaults.listen, help="Listen on.")
    parser.add_argument("--tlscert", default=defaults.tls_cert, help="TLS certificate.")
    parser.add_argument("--tlskey", default=defaults.tls_key, help="TLS key.")
    parser.add_argument("--htpass", type=Path, default=None, help="Path to .htpasswd file.")
    parser.add_argument("--auth", choices=AUTH_MODES, default=defaults.auth, help="Enable HTTP Basic Authentication (basic, none, header).")
    parser.add_argument("--gen", action="store_true", help="Generate a .htpasswd file or add a new entry to an existing file.")
    parser.add_argument("-v", "--version", action="store_true", help="Show version and exit.")
    parser.add_argument("--timeout", type=float, default=defaults.request_timeout, help="Seconds allowed for reading a request body.")
    parser.add_argument("--log-level", default=defaults.log_level, help="Logging level.")

    backup = defaults.backup
    parser.add_argument("--backup", action="store_true", default=backup.enabled, help="Create backup written files.")
    parser.add_argument("--backup.dir", dest="backup_dir", default=backup.dir, help="Directory for backups in user directory.")
    parser.add_argument("--backup.files", dest="backup_files", type=int, default=backup.files, help="Maximum number of backup each file.")
    parser.add_argument("--backup.age", dest="backup_age", type=int, default=backup.min_age, help="Minimal time between backups (in seconds).")
    parser.add_argument("--backup.compress", dest="backup_compress", action="store_true", default=backup.compress, help="GZIP backup files.")
    return parser


def settings_from_args(args: argparse.Namespace, defaults: Settings) -> Settings:
    return Settings(
        wikis_dir=args.wikis,
        listen=args.http,
        tls_cert=args.tlscert,
        tls_key=args.tlskey,
        htpasswd_path=args.htpass if args.htpass is not None else defaults.htpasswd_path,
        auth=args.auth,
        backup=BackupSettings(
            enabled=args.backup,
            dir=args.backup_dir,
            files=args.backup_files,
            min_age=args.backup_age,
            compress=args.backup_compress,
        ),
        request_timeout=args.timeout,
        log_level=args.log_level.upper(),
    )


def generate_entry(path: Path) -> int:
    identity = input("Username: ").strip()
    secret = getpass.getpass("Password: ")
    append_entry(path, identity, secret)
    print(f"Added {identity!r} to {str(path)!r}")
    return 0


def harden_tls(config: uvicorn.Config) -> None:
    context = config.ssl
    if context is None:
        return
    context.minimum_version = ssl.TLSVersion.TLSv1_2
    context.set_ecdh_curve(TLS_CURVE)


from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


def _default_wikis_root() -> Path:
    # Root directory for all wikis.
    # Default: project-local ./wikis for easier inspection.
    # Override with env var WIDDLER_WIKIS.
    root_raw = os.environ.get("WIDDLER_WIKIS")
    if root_raw and root_raw.strip():
        return Path(root_raw)
    # widdler_backend/ -> project root
    return Path(__file__).resolve().parent.parent / "wikis"


WIKIS_ROOT = _default_wikis_root()

AUTH_MODES = ("none", "basic", "header")

# Files ending with this suffix are documents served over WebDAV; everything
# else goes to the directory browser.
DOCUMENT_SUFFIX = ".html"
DEFAULT_DOCUMENT = "index.html"
SUGGESTED_DOCUMENT = "wiki.html"

# Any request header whose name starts with this prefix carries credentials
# in "header" auth mode.
AUTH_HEADER_PREFIX = "auth"
AUTH_REALM = "widdler"

# Never served, whatever the configured credential store is called.
CREDENTIAL_STORE_NAME = ".htpasswd"

# Methods that overwrite a document and therefore snapshot it first.
WRITE_METHODS = frozenset({"PUT"})


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_str(name: str, default: str) -> str:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip()


class BackupSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    enabled: bool = False
    # Directory for backups inside each tenant directory.
    dir: str = "backups"
    # Maximum number of snapshots kept for each file.
    files: int = Field(default=10, ge=1)
    # Minimal time between two snapshots of the same file, in seconds. 0 disables the gate.
    min_age: int = Field(default=60, ge=0)
    compress: bool = False

    def describe(self) -> str:
        if not self.enabled:
            return "Backups disabled"
        return (
            f"Backups enabled; dir: '{self.dir}'; max files: {self.files}, "
            f"min age: {self.min_age}s, compress: {self.compress}"
        )


class Settings(BaseModel):
    model_config = ConfigDict(frozen=True)

    wikis_dir: Path = WIKIS_ROOT
    listen: str = "localhost:8080"
    tls_cert: str = ""
    tls_key: str = ""
    htpasswd_path: Path | None = None
    auth: Literal["none", "basic", "header"] = "none"
    backup: BackupSettings = BackupSettings()
    # Upper bound for reading a request body, in seconds.
    request_timeout: float = Field(default=30.0, gt=0)
    log_level: str = "INFO"

    @property
    def root(self) -> Path:
        return self.wikis_dir.resolve()

    @property
    def credentials_path(self) -> Path:
        if self.htpasswd_path is not None:
            return self.htpasswd_path
        return self.root.parent / CREDENTIAL_STORE_NAME

    @property
    def tls_enabled(self) -> bool:
        return bool(self.tls_cert and self.tls_key)

    @property
    def auth_enabled(self) -> bool:
        return self.auth != "none"

    @property
    def public_url(self) -> str:
        scheme = "https" if self.tls_enabled else "http"
        return f"{scheme}://{self.listen}"

    @property
    def listen_host(self) -> str:
        host, _, _ = self.listen.rpartition(":")
        # ":8080" listens on every interface.
        return host or "0.0.0.0"

    @property
    def listen_port(self) -> int:
        _, _, port = self.listen.rpartition(":")
        return int(port) if port else 8080

    @classmethod
    def from_env(cls, **overrides) -> "Settings":
        """Build settings from WIDDLER_* environment variables.

        Keyword overrides win over the environment (used by the CLI).
        """
        htpasswd_raw = os.environ.get("WIDDLER_HTPASSWD")
        values = {
            "wikis_dir": _default_wikis_root(),
            "listen": _env_str("WIDDLER_HTTP", "localhost:8080"),
            "tls_cert": _env_str("WIDDLER_TLS_CERT", ""),
            "tls_key": _env_str("WIDDLER_TLS_KEY", ""),
            "htpasswd_path": Path(htpasswd_raw) if htpasswd_raw and htpasswd_raw.strip() else None,
            "auth": _env_str("WIDDLER_AUTH", "none").lower(),
            "backup": BackupSettings(
                enabled=_env_bool("WIDDLER_BACKUP", False),
                dir=_env_str("WIDDLER_BACKUP_DIR", "backups"),
                files=int(_env_str("WIDDLER_BACKUP_FILES", "10")),
                min_age=int(_env_str("WIDDLER_BACKUP_AGE", "60")),
                compress=_env_bool("WIDDLER_BACKUP_COMPRESS", False),
            ),
            "request_timeout": float(_env_str("WIDDLER_REQUEST_TIMEOUT", "30")),
            "log_level": _env_str("WIDDLER_LOG_LEVEL", "INFO").upper(),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

from __future__ import annotations

from pathlib import Path

from pydantic import ValidationError
import pytest

from widdler_backend.cli import build_parser, settings_from_args
from widdler_backend.config import BackupSettings, Settings


def test_defaults(monkeypatch, tmp_path: Path):
    monkeypatch.setenv("WIDDLER_WIKIS", str(tmp_path / "w"))
    settings = Settings.from_env()

    assert settings.wikis_dir == tmp_path / "w"
    assert settings.auth == "none"
    assert not settings.auth_enabled
    assert settings.listen == "localhost:8080"
    assert settings.public_url == "http://localhost:8080"
    assert settings.credentials_path == tmp_path.resolve() / ".htpasswd"
    assert settings.backup == BackupSettings()
    assert settings.backup.files == 10
    assert settings.backup.min_age == 60


@pytest.mark.parametrize(
    "listen, host, port",
    [
        (":8080", "0.0.0.0", 8080),
        ("localhost:9000", "localhost", 9000),
        ("127.0.0.1:", "127.0.0.1", 8080),
    ],
)
def test_listen_address(listen: str, host: str, port: int):
    settings = Settings(listen=listen)
    assert settings.listen_host == host
    assert settings.listen_port == port


def test_environment_overrides(monkeypatch, tmp_path: Path):
    monkeypatch.setenv("WIDDLER_WIKIS", str(tmp_path))
    monkeypatch.setenv("WIDDLER_HTTP", "0.0.0.0:9000")
    monkeypatch.setenv("WIDDLER_AUTH", "Basic")
    monkeypatch.setenv("WIDDLER_HTPASSWD", str(tmp_path / "users"))
    monkeypatch.setenv("WIDDLER_BACKUP", "yes")
    monkeypatch.setenv("WIDDLER_BACKUP_FILES", "3")
    monkeypatch.setenv("WIDDLER_BACKUP_AGE", "0")
    monkeypatch.setenv("WIDDLER_BACKUP_COMPRESS", "true")
    monkeypatch.setenv("WIDDLER_TLS_CERT", "cert.pem")
    monkeypatch.setenv("WIDDLER_TLS_KEY", "key.pem")

    settings = Settings.from_env()
    assert settings.auth == "basic"
    assert settings.credentials_path == tmp_path / "users"
    assert settings.listen_host == "0.0.0.0"
    assert settings.listen_port == 9000
    assert settings.public_url == "https://0.0.0.0:9000"
    assert settings.backup == BackupSettings(enabled=True, files=3, min_age=0, compress=True)


def test_invalid_values_are_rejected():
    with pytest.raises(ValidationError):
        Settings(auth="digest")
    with pytest.raises(ValidationError):
        BackupSettings(files=0)
    with pytest.raises(ValidationError):
        BackupSettings(min_age=-1)


def test_backup_description():
    assert BackupSettings().describe() == "Backups disabled"
    assert BackupSettings(enabled=True, files=2, min_age=5, compress=True).describe() == (
        "Backups enabled; dir: 'backups'; max files: 2, min age: 5s, compress: True"
    )


def test_command_line_wins_over_environment(monkeypatch, tmp_path: Path):
    monkeypatch.setenv("WIDDLER_AUTH", "header")
    monkeypatch.setenv("WIDDLER_BACKUP_FILES", "4")
    defaults = Settings.from_env()

    args = build_parser(defaults).parse_args([
        "--wikis", str(tmp_path),
        "--http", "127.0.0.1:8090",
        "--backup",
        "--backup.age", "30",
        "--backup.compress",
    ])
    settings = settings_from_args(args, defaults)

    assert settings.wikis_dir == tmp_path
    assert settings.listen == "127.0.0.1:8090"
    assert settings.auth == "header"
    assert settings.backup == BackupSettings(enabled=True, files=4, min_age=30, compress=True)

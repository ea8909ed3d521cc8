"""Write-time snapshots of documents.

Before a document is overwritten, its current contents are copied to
``<backup dir>/<name>-YYYYMMDD_HHMMSS<ext>[.gz]``. The timestamp is fixed
width, so sorting snapshot names lexically sorts them chronologically, which
is what retention relies on.
"""

from __future__ import annotations

import glob
import gzip
import logging
import re
import shutil
import threading
from collections.abc import Callable
from datetime import datetime, timedelta
from pathlib import Path

from .config import BackupSettings
from .errors import BackupFailure


logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"
GZIP_SUFFIX = ".gz"


class BackupTimestampCache:
    """Time of the last admitted backup attempt per source path, for the age gate.

    Shared by all tenants and touched from worker threads, so it carries its
    own lock.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._attempts: dict[Path, datetime] = {}

    def admit(self, path: Path, now: datetime, min_age: timedelta) -> bool:
        """Record ``now`` for ``path`` unless the last admitted attempt is younger than ``min_age``.

        Skipped attempts leave the recorded time alone.
        """
        with self._lock:
            previous = self._attempts.get(path)
            if previous is not None and now - previous < min_age:
                return False
            self._attempts[path] = now
            return True

    def get(self, path: Path) -> datetime | None:
        with self._lock:
            return self._attempts.get(path)

    def __len__(self) -> int:
        with self._lock:
            return len(self._attempts)


def split_name(path: Path) -> tuple[Path, str]:
    """Split ``dir/wiki.html`` into ``(dir/wiki, ".html")`` at the last extension."""
    ext = path.suffix
    return path.with_name(path.name[: len(path.name) - len(ext)]), ext


def snapshot_name(backup_path: Path, when: datetime, compress: bool = False) -> Path:
    base, ext = split_name(backup_path)
    name = f"{base.name}-{when.strftime(TIMESTAMP_FORMAT)}{ext}"
    if compress:
        name += GZIP_SUFFIX
    return base.with_name(name)


def _snapshot_pattern(base: Path, ext: str) -> re.Pattern[str]:
    return re.compile(
        rf"^{re.escape(base.name)}-\d{{8}}_\d{{6}}{re.escape(ext)}(?:{re.escape(GZIP_SUFFIX)})?$"
    )


def list_snapshots(backup_path: Path) -> list[Path]:
    """Return existing snapshots of ``backup_path``, oldest first."""
    base, ext = split_name(backup_path)
    directory = base.parent
    if not directory.is_dir():
        return []
    pattern = _snapshot_pattern(base, ext)
    # Glob narrows the scan, the pattern drops names of other documents that
    # merely start with the same base (wiki-old.html for wiki.html).
    candidates = directory.glob(f"{glob.escape(base.name)}-*_*{glob.escape(ext)}*")
    return sorted((p for p in candidates if pattern.match(p.name)), key=lambda p: p.name)


class BackupManager:
    def __init__(
        self,
        settings: BackupSettings,
        cache: BackupTimestampCache | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.settings = settings
        self.cache = cache if cache is not None else BackupTimestampCache()
        self._clock = clock

    @property
    def enabled(self) -> bool:
        return self.settings.enabled

    def snapshot(self, source: Path, backup_path: Path) -> Path | None:
        """Copy the current contents of ``source`` next to ``backup_path``.

        Returns the snapshot written, or None when no snapshot was needed
        (source missing, the age gate is closed, or a snapshot was already
        taken within the same second). Raises BackupFailure if
        the snapshot could not be written.
        """
        if not source.exists():
            return None

        now = self._clock()
        if self.settings.min_age > 0:
            # Recorded before the write, so a failed write still consumes
            # the window.
            if not self.cache.admit(source, now, timedelta(seconds=self.settings.min_age)):
                logger.debug("skip backup of %s, last attempt at %s", source, self.cache.get(source))
                return None

        destination = snapshot_name(backup_path, now, self.settings.compress)
        try:
            destination.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
        except OSError as exc:
            raise BackupFailure(f"create backup dir {destination.parent} error: {exc}") from exc

        if not self._copy(source, destination):
            logger.debug("backup %s already taken this second", destination)
            return None
        logger.info("backup %s -> %s", source, destination)
        self.prune(backup_path)
        return destination

    def _copy(self, source: Path, destination: Path) -> bool:
        """Write ``destination``; False if a snapshot with that name already exists."""
        try:
            src = open(source, "rb")
        except OSError as exc:
            raise BackupFailure(f"open {source} for backup error: {exc}") from exc

        with src:
            try:
                raw = open(destination, "xb")
            except FileExistsError:
                return False
            except OSError as exc:
                raise BackupFailure(f"create backup file {destination} error: {exc}") from exc

            try:
                with raw:
                    if self.settings.compress:
                        with gzip.GzipFile(fileobj=raw, mode="wb", compresslevel=9) as dst:
                            shutil.copyfileobj(src, dst)
                    else:
                        shutil.copyfileobj(src, raw)
            except (OSError, ValueError) as exc:
                try:
                    destination.unlink()
                except OSError:
                    logger.warning("could not remove partial backup %s", destination)
                raise BackupFailure(f"create backup file error: {exc}") from exc
        return True

    def prune(self, backup_path: Path) -> list[Path]:
        """Delete the oldest snapshots beyond the configured maximum.

        Best-effort: failures are logged and never raised.
        """
        try:
            snapshots = list_snapshots(backup_path)
        except OSError as exc:
            logger.warning("delete old backups error: %s", exc)
            return []

        excess = len(snapshots) - self.settings.files
        if excess <= 0:
            return []

        deleted = []
        for path in snapshots[:excess]:
            logger.info("delete old backup: %s", path)
            try:
                path.unlink()
            except OSError as exc:
                logger.warning("delete old backup %s error: %s", path, exc)
                continue
            deleted.append(path)
        return deleted

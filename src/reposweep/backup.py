from __future__ import annotations

import json
import logging
import shutil
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path

from reposweep.config import CleanupConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ArchiveResult:
    success: bool
    original_path: str
    reason: str
    archived_path: str | None = None


@dataclass(frozen=True)
class ArchiveEntry:
    original_path: str
    archived_path: str
    reason: str
    archived_at: datetime
    size: int


class BackupSystem:
    """Copies files into ``<backup_dir>/<timestamp>/<relative path>``.

    The relative path keeps archives of different files apart; the
    microsecond timestamp plus a counter keeps repeat archives of the same
    file apart.
    """

    def __init__(self, root: Path, config: CleanupConfig | None = None) -> None:
        self.root = root.resolve()
        self.config = config or CleanupConfig()
        self.backup_root = self.root / self.config.backup_dir
        self._entries: list[ArchiveEntry] = []
        self._lock = threading.Lock()

    def archive_file(self, path: str, reason: str) -> ArchiveResult:
        source = self.root / path
        destination: Path | None = None
        try:
            size = source.stat().st_size
            destination = self._reserve_destination(path)
            shutil.copy2(source, destination)
        except OSError as exc:
            if destination is not None:
                destination.unlink(missing_ok=True)
            logger.warning("Could not archive %s: %s", path, exc)
            return ArchiveResult(success=False, original_path=path, reason=f"Failed to archive: {exc}")

        archived = destination.relative_to(self.root).as_posix()
        entry = ArchiveEntry(
            original_path=path,
            archived_path=archived,
            reason=reason,
            archived_at=datetime.now(timezone.utc),
            size=size,
        )
        with self._lock:
            self._entries.append(entry)
        logger.debug("Archived %s -> %s", path, archived)
        return ArchiveResult(success=True, original_path=path, reason=reason, archived_path=archived)

    def _reserve_destination(self, path: str) -> Path:
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
        with self._lock:
            destination = self.backup_root / stamp / path
            counter = 1
            while destination.exists():
                destination = self.backup_root / f"{stamp}-{counter}" / path
                counter += 1
            destination.parent.mkdir(parents=True, exist_ok=True)
            # Claim the name before releasing the lock.
            destination.touch(exist_ok=False)
        return destination

    def archived_files(self) -> list[ArchiveEntry]:
        with self._lock:
            return list(self._entries)

    def write_archive_index(self) -> Path:
        with self._lock:
            entries = list(self._entries)
        index = {
            "entries": [
                {
                    "original_path": e.original_path,
                    "archived_path": e.archived_path,
                    "reason": e.reason,
                    "archived_at": e.archived_at.isoformat(),
                    "size": e.size,
                }
                for e in entries
            ],
            "created_at": datetime.now(timezone.utc).isoformat(),
            "total_size": sum(e.size for e in entries),
        }
        self.backup_root.mkdir(parents=True, exist_ok=True)
        index_path = self.backup_root / "archive-index.json"
        index_path.write_text(json.dumps(index, indent=2))
        return index_path

    def purge_older_than(self, days: int = 30) -> int:
        cutoff = datetime.now(timezone.utc) - timedelta(days=days)
        with self._lock:
            expired = [e for e in self._entries if e.archived_at < cutoff]
        removed = 0
        for entry in expired:
            try:
                (self.root / entry.archived_path).unlink()
            except OSError as exc:
                logger.warning("Could not remove old backup %s: %s", entry.archived_path, exc)
                continue
            with self._lock:
                self._entries.remove(entry)
            removed += 1
        return removed

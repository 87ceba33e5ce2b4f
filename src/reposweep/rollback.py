from __future__ import annotations

import json
import logging
import os
import shutil
import threading
import time
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterator

from reposweep.backup import BackupSystem
from reposweep.config import CleanupConfig
from reposweep.errors import BackupFailedError
from reposweep.models import RollbackOperation, RollbackOutcome, RollbackPoint

logger = logging.getLogger(__name__)


class PathLocks:
    """One lock per project-relative path."""

    def __init__(self) -> None:
        self._locks: dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    @contextmanager
    def hold(self, path: str) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(path, threading.Lock())
        with lock:
            yield


class RollbackStore:
    """Closed rollback points keyed by id, persisted as one JSON file."""

    def __init__(self, path: Path | None = None) -> None:
        self.path = path
        self._points: dict[str, RollbackPoint] = {}
        self._lock = threading.Lock()

    def add(self, point: RollbackPoint) -> None:
        with self._lock:
            self._points[point.id] = point

    def get(self, point_id: str) -> RollbackPoint | None:
        with self._lock:
            return self._points.get(point_id)

    def list_points(self) -> list[RollbackPoint]:
        with self._lock:
            points = list(self._points.values())
        return sorted(points, key=lambda p: p.created_at, reverse=True)

    def purge_older_than(self, days: int) -> int:
        cutoff = datetime.now(timezone.utc) - timedelta(days=days)
        with self._lock:
            expired = [pid for pid, point in self._points.items() if point.created_at < cutoff]
            for pid in expired:
                del self._points[pid]
        return len(expired)

    def save(self) -> None:
        if self.path is None:
            return
        with self._lock:
            data = {
                "points": [point.to_dict() for point in self._points.values()],
                "saved_at": datetime.now(timezone.utc).isoformat(),
            }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(".tmp")
        tmp_path.write_text(json.dumps(data, indent=2))
        os.replace(tmp_path, self.path)

    def load(self) -> None:
        if self.path is None or not self.path.exists():
            return
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            points = [RollbackPoint.from_dict(item) for item in data["points"]]
        except (OSError, ValueError, KeyError, TypeError) as exc:
            logger.warning("Could not load rollback points from %s: %s", self.path, exc)
            return
        with self._lock:
            self._points = {point.id: point for point in points}


class RollbackSystem:
    """Records mutating operations and replays them in reverse on demand.

    Operations accumulate until ``create_rollback_point`` closes them into a
    point. Removals and modifications are only recorded once their backup
    exists; a failed backup raises ``BackupFailedError`` and records nothing.
    """

    def __init__(
        self,
        root: Path,
        backup: BackupSystem,
        store: RollbackStore,
        config: CleanupConfig | None = None,
    ) -> None:
        self.root = root.resolve()
        self.backup = backup
        self.store = store
        self.config = config or CleanupConfig()
        self._current: list[RollbackOperation] = []
        self._lock = threading.Lock()

    def pending_operations(self) -> list[RollbackOperation]:
        with self._lock:
            return list(self._current)

    def create_rollback_point(self, name: str, description: str) -> str:
        point_id = f"rollback_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"
        with self._lock:
            operations = tuple(self._current)
            self._current = []
        self.store.add(
            RollbackPoint(
                id=point_id,
                name=name,
                operations=operations,
                created_at=datetime.now(timezone.utc),
                description=description,
            )
        )
        logger.info("Created rollback point %s (%s, %d operations)", point_id, name, len(operations))
        return point_id

    def record_removal(self, path: str, reason: str) -> RollbackOperation:
        return self._record_with_backup("remove", path, reason)

    def record_modification(self, path: str, reason: str) -> RollbackOperation:
        return self._record_with_backup("modify", path, reason)

    def record_move(self, source: str, target: str, reason: str) -> RollbackOperation:
        operation = RollbackOperation(
            type="move",
            original_path=source,
            new_path=target,
            timestamp=datetime.now(timezone.utc),
            reason=reason,
        )
        self._append(operation)
        return operation

    def _record_with_backup(self, kind: str, path: str, reason: str) -> RollbackOperation:
        result = self.backup.archive_file(path, reason)
        if not result.success or not result.archived_path:
            raise BackupFailedError(path, result.reason)
        operation = RollbackOperation(
            type=kind,
            original_path=path,
            backup_path=result.archived_path,
            timestamp=datetime.now(timezone.utc),
            reason=reason,
        )
        self._append(operation)
        return operation

    def _append(self, operation: RollbackOperation) -> None:
        with self._lock:
            self._current.append(operation)

    def rollback_to_point(self, point_id: str) -> RollbackOutcome:
        point = self.store.get(point_id)
        if point is None:
            return RollbackOutcome(success=False, restored_files=[], errors=["Rollback point not found"])

        restored: list[str] = []
        errors: list[str] = []
        for operation in reversed(point.operations):
            try:
                self._undo(operation)
            except (OSError, ValueError) as exc:
                errors.append(f"Failed to rollback {operation.original_path}: {exc}")
                continue
            restored.append(operation.original_path)
        logger.info(
            "Rolled back %s: %d restored, %d errors", point_id, len(restored), len(errors)
        )
        return RollbackOutcome(success=not errors, restored_files=restored, errors=errors)

    def _undo(self, operation: RollbackOperation) -> None:
        original = self.root / operation.original_path
        if operation.type in ("remove", "modify"):
            if not operation.backup_path:
                raise ValueError("No backup path available for restoration")
            backup = self.root / operation.backup_path
            if not backup.is_file():
                raise FileNotFoundError(f"Backup missing: {operation.backup_path}")
            original.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(backup, original)
        elif operation.type == "move":
            if not operation.new_path:
                raise ValueError("No new path available for move rollback")
            moved = self.root / operation.new_path
            if not moved.exists():
                raise FileNotFoundError(f"Moved file missing: {operation.new_path}")
            if original.exists():
                raise FileExistsError(f"Original path is occupied: {operation.original_path}")
            original.parent.mkdir(parents=True, exist_ok=True)
            os.rename(moved, original)
        else:
            raise ValueError(f"Unknown operation type: {operation.type}")

    def list_rollback_points(self) -> list[RollbackPoint]:
        return self.store.list_points()

    def get_rollback_point(self, point_id: str) -> RollbackPoint | None:
        return self.store.get(point_id)

    def cleanup_old_rollback_points(self, days: int | None = None) -> int:
        if days is None:
            days = self.config.rollback_retention_days
        return self.store.purge_older_than(days)

    def generate_rollback_report(self) -> str:
        points = self.list_rollback_points()
        pending = self.pending_operations()
        lines = [
            "# Rollback System Report",
            "",
            f"Total rollback points: {len(points)}",
            f"Current operations recorded: {len(pending)}",
            "",
        ]
        if points:
            lines.extend(["## Available Rollback Points", ""])
            for point in points:
                lines.extend(
                    [
                        f"### {point.name} ({point.id})",
                        f"Created: {point.created_at.isoformat()}",
                        f"Description: {point.description}",
                        f"Operations: {len(point.operations)}",
                        "",
                    ]
                )
        if pending:
            lines.extend(["## Current Operations (not yet saved to rollback point)", ""])
            for op in pending:
                lines.append(f"- {op.type}: {op.original_path} ({op.reason})")
            lines.append("")
        return "\n".join(lines)

from __future__ import annotations

import logging
import os
import threading
from datetime import datetime, timezone

from reposweep.engine import CleanupEngine
from reposweep.errors import BackupFailedError, OperationCancelled, ReposweepError
from reposweep.models import CleanupPhase, CleanupPlan, CleanupResult, ExecutionReport, FileMove
from reposweep.pool import map_files
from reposweep.reports import render_docs_index, render_final_report, render_project_structure
from reposweep.rollback import PathLocks

logger = logging.getLogger(__name__)


class CleanupExecutor:
    """Applies a cleanup plan phase by phase.

    Every removal is archived through the rollback system before the file is
    unlinked, and each phase closes its recorded operations into one rollback
    point. Failures are collected per file; a phase never stops at the first
    error.
    """

    def __init__(self, engine: CleanupEngine) -> None:
        self.engine = engine
        self.root = engine.root
        self.config = engine.config
        self.rollback = engine.rollback
        self.backup = engine.backup
        self.locks = PathLocks()

    def execute_plan(
        self,
        plan: CleanupPlan,
        selectors: list[str] | None = None,
        cancel: threading.Event | None = None,
    ) -> ExecutionReport:
        phases = self.select_phases(plan, selectors)
        self.engine.ensure_dependency_graph(cancel)

        results: list[CleanupResult] = []
        for phase in phases:
            if cancel is not None and cancel.is_set():
                logger.warning("Cancelled before %s", phase.name)
                break
            results.append(self.execute_phase(phase, cancel))

        integrity = self.engine.validation.run_integrity_tests()
        if integrity.passed:
            logger.info("Integrity tests passed")
        else:
            for error in integrity.errors:
                logger.error("Integrity test failed: %s", error)
        for warning in integrity.warnings:
            logger.warning("Integrity: %s", warning)

        report = ExecutionReport(
            results=results,
            integrity=integrity,
            generated_at=datetime.now(timezone.utc),
        )
        (self.root / self.config.final_report).write_text(render_final_report(report))
        if self.backup.archived_files():
            self.backup.write_archive_index()
        return report

    def select_phases(self, plan: CleanupPlan, selectors: list[str] | None) -> list[CleanupPhase]:
        if not selectors:
            return list(plan.phases)
        selected: list[CleanupPhase] = []
        for selector in selectors:
            try:
                selected.append(plan.phase(selector))
            except KeyError:
                raise ReposweepError(f"Unknown phase: {selector}") from None
        return selected

    def execute_phase(
        self, phase: CleanupPhase, cancel: threading.Event | None = None
    ) -> CleanupResult:
        logger.info("Starting %s", phase.name)
        result = CleanupResult(phase=phase.name)
        touched: list[str] = []
        try:
            candidates = [p for p in phase.files_to_remove if (self.root / p).exists()]
            validation = self.engine.validate_cleanup(candidates, cancel)
            for path, reasons in validation.warnings.items():
                logger.debug("%s flagged: %s", path, "; ".join(reasons))

            to_archive = list(dict.fromkeys(list(phase.files_to_archive) + validation.unsafe))
            self._archive(to_archive, result, cancel)
            self._remove(validation.safe, phase, result, touched, cancel)
            if phase.apply_moves:
                self._move(phase.files_to_move, result, touched, cancel)
            elif phase.files_to_move:
                logger.info(
                    "%s: %d planned moves left for manual review", phase.name, len(phase.files_to_move)
                )

            if phase.key == "documentation":
                self._write_generated(self.config.docs_index, render_docs_index(self.root), result)
            elif phase.key == "folders":
                summary = render_project_structure(self.root, self.config.backup_dir)
                self._write_generated(self.config.structure_summary, summary, result)
        except OperationCancelled as exc:
            result.errors.append(f"{phase.name} cancelled: {exc}")
        finally:
            self._prune_empty_parents(touched)
            result.rollback_id = self.rollback.create_rollback_point(phase.name, phase.description)
            self.rollback.store.save()

        logger.info(
            "%s complete: %d removed, %d archived, %d moved, %d errors",
            phase.name,
            len(result.files_removed),
            len(result.files_archived),
            len(result.files_moved),
            len(result.errors),
        )
        return result

    def _archive(
        self, paths: list[str], result: CleanupResult, cancel: threading.Event | None
    ) -> None:
        done: dict[str, str | None] = {}
        lock = threading.Lock()

        def archive(path: str) -> None:
            with self.locks.hold(path):
                outcome = self.backup.archive_file(path, "Important file - archived before cleanup")
            with lock:
                done[path] = None if outcome.success else outcome.reason

        try:
            map_files(archive, paths, self.config.max_workers, cancel)
        finally:
            # Files finished before a cancellation still count.
            for path in paths:
                if path not in done:
                    continue
                error = done[path]
                if error is None:
                    result.files_archived.append(path)
                else:
                    result.errors.append(f"Failed to archive {path}: {error}")

    def _remove(
        self,
        paths: list[str],
        phase: CleanupPhase,
        result: CleanupResult,
        touched: list[str],
        cancel: threading.Event | None,
    ) -> None:
        done: dict[str, tuple[int, str | None]] = {}
        lock = threading.Lock()

        def remove(path: str) -> None:
            full_path = self.root / path
            with self.locks.hold(path):
                try:
                    size = full_path.stat().st_size
                    self.rollback.record_removal(path, phase.name)
                    full_path.unlink()
                except (OSError, BackupFailedError) as exc:
                    outcome: tuple[int, str | None] = (0, str(exc))
                else:
                    outcome = (size, None)
                    logger.debug("Removed %s", path)
            with lock:
                done[path] = outcome

        try:
            map_files(remove, paths, self.config.max_workers, cancel)
        finally:
            for path in paths:
                if path not in done:
                    continue
                size, error = done[path]
                if error is not None:
                    result.errors.append(f"Failed to remove {path}: {error}")
                    continue
                result.files_removed.append(path)
                result.space_saved += size
                touched.append(path)

    def _move(
        self,
        moves: list[FileMove],
        result: CleanupResult,
        touched: list[str],
        cancel: threading.Event | None,
    ) -> None:
        for move in moves:
            if cancel is not None and cancel.is_set():
                raise OperationCancelled("Cancelled between moves")
            source = self.root / move.source
            target = self.root / move.target
            with self.locks.hold(move.source):
                try:
                    if not source.is_file():
                        raise FileNotFoundError(f"Source missing: {move.source}")
                    if target.exists():
                        raise FileExistsError(f"Target exists: {move.target}")
                    target.parent.mkdir(parents=True, exist_ok=True)
                    os.rename(source, target)
                except OSError as exc:
                    result.errors.append(f"Failed to move {move.source}: {exc}")
                    continue
                self.rollback.record_move(move.source, move.target, move.reason)
            result.files_moved.append(move)
            touched.append(move.source)
            logger.debug("Moved %s -> %s", move.source, move.target)

    def _write_generated(self, rel_path: str, content: str, result: CleanupResult) -> None:
        path = self.root / rel_path
        try:
            if path.exists():
                self.rollback.record_modification(rel_path, "Regenerated by cleanup")
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content)
        except (OSError, BackupFailedError) as exc:
            result.errors.append(f"Failed to write {rel_path}: {exc}")

    def _prune_empty_parents(self, paths: list[str]) -> None:
        backup_root = self.root / self.config.backup_dir
        for rel_path in paths:
            directory = (self.root / rel_path).parent
            while directory != self.root and directory != backup_root:
                if not directory.is_dir():
                    break
                try:
                    directory.rmdir()
                except OSError:
                    # Not empty.
                    break
                logger.info("Removed empty directory %s", directory.relative_to(self.root).as_posix())
                directory = directory.parent

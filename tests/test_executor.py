from __future__ import annotations

import json
import threading
from pathlib import Path

import pytest

from reposweep.backup import ArchiveResult
from reposweep.config import CleanupConfig
from reposweep.engine import CleanupEngine
from reposweep.errors import ReposweepError
from reposweep.executor import CleanupExecutor


def _write(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)


def _project(root: Path) -> None:
    _write(
        root / "package.json",
        json.dumps(
            {
                "scripts": {
                    "build": "vite build",
                    "test": "vitest",
                    "deploy": "node ./scripts/deploy.js",
                }
            }
        ),
    )
    _write(root / "logs" / "app.log", "started\n")
    _write(root / "temp" / "cache.tmp", "cached\n")
    _write(root / "README.md", "# Project\n")
    _write(root / "docs" / "api_reference.md", "Endpoints.\n")
    _write(root / "guide.md", "How to use it.\n")
    _write(root / "guide_v2_backup.md", "Outdated copy.\n")
    _write(root / "scripts" / "deploy.js", "console.info('ship');\n")
    _write(root / "scripts" / "old_helper.js", "console.info('unused');\n")
    _write(root / "src" / "main.ts", 'import { x } from "./util";\n')
    _write(root / "src" / "util.ts", "export const x = 1;\n")


def _executor(root: Path) -> CleanupExecutor:
    return CleanupExecutor(CleanupEngine(root, CleanupConfig(max_workers=2)))


def test_execute_all_phases(tmp_path: Path) -> None:
    _project(tmp_path)
    executor = _executor(tmp_path)
    plan = executor.engine.generate_cleanup_plan()

    report = executor.execute_plan(plan)

    assert report.succeeded
    assert len(report.results) == 4
    assert report.results[0].files_removed == ["logs/app.log", "temp/cache.tmp"]
    assert report.results[0].space_saved == len("started\n") + len("cached\n")
    assert not (tmp_path / "logs").exists()
    assert not (tmp_path / "temp").exists()
    assert not (tmp_path / "guide_v2_backup.md").exists()
    assert (tmp_path / "docs" / "user" / "README.md").read_text() == "# Project\n"
    assert (tmp_path / "docs" / "technical" / "api_reference.md").exists()
    assert not (tmp_path / "scripts" / "old_helper.js").exists()
    assert (tmp_path / "scripts" / "deploy.js").exists()
    assert (tmp_path / "package.json").exists()

    index = (tmp_path / "docs" / "INDEX.md").read_text()
    assert "[README.md](./user/README.md)" in index
    assert "[api_reference.md](./technical/api_reference.md)" in index
    assert (tmp_path / "PROJECT_STRUCTURE.md").exists()
    assert "Status: success" in (tmp_path / "cleanup-final-report.md").read_text()
    assert (tmp_path / ".cleanup-backup" / "archive-index.json").exists()

    stored = json.loads(
        (tmp_path / ".cleanup-backup" / "rollback" / "rollback-points.json").read_text()
    )
    assert sorted(p["id"] for p in stored["points"]) == sorted(r.rollback_id for r in report.results)


def test_rollback_restores_documentation_phase(tmp_path: Path) -> None:
    _project(tmp_path)
    executor = _executor(tmp_path)
    plan = executor.engine.generate_cleanup_plan()
    report = executor.execute_plan(plan, ["documentation"])

    outcome = executor.rollback.rollback_to_point(report.results[0].rollback_id)

    assert outcome.success
    assert (tmp_path / "README.md").read_text() == "# Project\n"
    assert (tmp_path / "guide.md").read_text() == "How to use it.\n"
    assert (tmp_path / "guide_v2_backup.md").read_text() == "Outdated copy.\n"
    assert (tmp_path / "docs" / "api_reference.md").exists()
    assert not (tmp_path / "docs" / "user" / "README.md").exists()


def test_existing_docs_index_is_backed_up(tmp_path: Path) -> None:
    _project(tmp_path)
    _write(tmp_path / "docs" / "INDEX.md", "hand written index\n")
    executor = _executor(tmp_path)
    plan = executor.engine.generate_cleanup_plan()
    report = executor.execute_plan(plan, ["2"])

    assert "Documentation Index" in (tmp_path / "docs" / "INDEX.md").read_text()
    executor.rollback.rollback_to_point(report.results[0].rollback_id)

    assert (tmp_path / "docs" / "INDEX.md").read_text() == "hand written index\n"


def test_backup_failure_skips_delete(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _project(tmp_path)
    executor = _executor(tmp_path)
    plan = executor.engine.generate_cleanup_plan()

    def fail(path: str, reason: str) -> ArchiveResult:
        return ArchiveResult(success=False, original_path=path, reason="disk full")

    monkeypatch.setattr(executor.backup, "archive_file", fail)
    report = executor.execute_plan(plan, ["temporary"])

    result = report.results[0]
    assert result.files_removed == []
    assert len(result.errors) == 2
    assert all("disk full" in error for error in result.errors)
    assert (tmp_path / "logs" / "app.log").exists()
    assert (tmp_path / "temp" / "cache.tmp").exists()
    assert not report.succeeded
    point = executor.rollback.get_rollback_point(result.rollback_id)
    assert point is not None
    assert point.operations == ()


def test_files_gone_since_planning_are_skipped(tmp_path: Path) -> None:
    _project(tmp_path)
    executor = _executor(tmp_path)
    plan = executor.engine.generate_cleanup_plan()
    (tmp_path / "logs" / "app.log").unlink()

    result = executor.execute_plan(plan, ["1"]).results[0]

    assert result.files_removed == ["temp/cache.tmp"]
    assert result.errors == []


def test_unknown_phase_selector(tmp_path: Path) -> None:
    _project(tmp_path)
    executor = _executor(tmp_path)
    plan = executor.engine.generate_cleanup_plan()

    with pytest.raises(ReposweepError, match="Unknown phase"):
        executor.execute_plan(plan, ["cleanup-everything"])


def test_cancelled_run_touches_nothing(tmp_path: Path) -> None:
    _project(tmp_path)
    executor = _executor(tmp_path)
    plan = executor.engine.generate_cleanup_plan()
    cancel = threading.Event()
    cancel.set()

    report = executor.execute_plan(plan, cancel=cancel)

    assert report.results == []
    assert (tmp_path / "logs" / "app.log").exists()
    assert (tmp_path / "README.md").exists()


def _single_worker(root: Path) -> CleanupExecutor:
    return CleanupExecutor(CleanupEngine(root, CleanupConfig(max_workers=1)))


def test_cancel_mid_removal_reports_finished_deletions(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    _write(tmp_path / "a.log", "first run\n")
    _write(tmp_path / "b.log", "second run\n")
    executor = _single_worker(tmp_path)
    phase = executor.engine.generate_cleanup_plan().phase("temporary")
    assert phase.files_to_remove == ["a.log", "b.log"]
    cancel = threading.Event()
    record_removal = executor.rollback.record_removal

    def record_then_cancel(path: str, reason: str):
        operation = record_removal(path, reason)
        cancel.set()
        return operation

    monkeypatch.setattr(executor.rollback, "record_removal", record_then_cancel)
    result = executor.execute_phase(phase, cancel)

    assert not (tmp_path / "a.log").exists()
    assert (tmp_path / "b.log").exists()
    assert result.files_removed == ["a.log"]
    assert result.space_saved == len("first run\n")
    assert any("cancelled" in error for error in result.errors)
    point = executor.rollback.get_rollback_point(result.rollback_id)
    assert [op.original_path for op in point.operations] == result.files_removed


def test_cancel_mid_archive_reports_finished_archives(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    _write(tmp_path / "deploy-a.log", "a\n")
    _write(tmp_path / "deploy-b.log", "b\n")
    executor = _single_worker(tmp_path)
    phase = executor.engine.generate_cleanup_plan().phase("temporary")
    assert phase.files_to_archive == ["deploy-a.log", "deploy-b.log"]
    cancel = threading.Event()
    archive_file = executor.backup.archive_file

    def archive_then_cancel(path: str, reason: str) -> ArchiveResult:
        outcome = archive_file(path, reason)
        cancel.set()
        return outcome

    monkeypatch.setattr(executor.backup, "archive_file", archive_then_cancel)
    result = executor.execute_phase(phase, cancel)

    assert result.files_archived == ["deploy-a.log"]
    assert [e.original_path for e in executor.backup.archived_files()] == ["deploy-a.log"]
    assert result.files_removed == []
    assert (tmp_path / "deploy-a.log").exists()
    assert (tmp_path / "deploy-b.log").exists()

from __future__ import annotations

import json
from pathlib import Path

import pytest

from reposweep.errors import GraphNotInitializedError
from reposweep.scanner import FileScanner
from reposweep.validation import ValidationEngine


def _write(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)


def _engine(root: Path) -> ValidationEngine:
    engine = ValidationEngine(root)
    engine.set_dependency_graph(FileScanner(root).scan_all_files())
    return engine


def _project(root: Path) -> None:
    _write(
        root / "package.json",
        json.dumps({"scripts": {"deploy": "node scripts/deploy.js", "build": "vite build"}}),
    )
    _write(root / "README.md", "# Project\n")
    _write(root / "scripts" / "deploy.js", "console.info('shipping');\n")
    _write(root / "temp" / "cache.tmp", "cached\n")
    _write(root / "old_guide.md", "Outdated notes.\n")


def test_queries_require_dependency_graph(tmp_path: Path) -> None:
    engine = ValidationEngine(tmp_path)

    with pytest.raises(GraphNotInitializedError):
        engine.check_file_references("a.txt")
    with pytest.raises(GraphNotInitializedError):
        engine.validate_batch_removal(["a.txt"])


def test_batch_removal_partitions_candidates(tmp_path: Path) -> None:
    _project(tmp_path)
    engine = _engine(tmp_path)

    batch = engine.validate_batch_removal(["README.md", "scripts/deploy.js", "temp/cache.tmp"])

    assert batch.safe == ["temp/cache.tmp"]
    assert batch.unsafe == ["README.md", "scripts/deploy.js"]
    assert "This is a main documentation file" in batch.warnings["README.md"]
    assert "This is a critical script" in batch.warnings["scripts/deploy.js"]
    assert "temp/cache.tmp" not in batch.warnings


def test_manifest_script_usage(tmp_path: Path) -> None:
    _project(tmp_path)
    engine = _engine(tmp_path)

    usage = engine.validate_script_usage("scripts/deploy.js")

    assert usage.is_used
    assert usage.is_critical
    assert "package.json:scripts.deploy" in usage.used_by


def test_referenced_file_is_not_safe(tmp_path: Path) -> None:
    _write(tmp_path / "src" / "main.ts", 'import { x } from "./helpers";\n')
    _write(tmp_path / "src" / "helpers.ts", "export const x = 1;\n")
    engine = _engine(tmp_path)

    check = engine.check_file_references("src/helpers.ts")

    assert check.is_referenced
    assert check.referenced_by == ["src/main.ts"]
    assert not check.safe_to_remove
    assert engine.validate_batch_removal(["src/helpers.ts"]).unsafe == ["src/helpers.ts"]


def test_documentation_with_credentials_is_unsafe(tmp_path: Path) -> None:
    _write(tmp_path / "notes.md", "The admin password lives in the vault.\n")
    _write(tmp_path / "changelog.md", "Fixed a typo.\n")
    engine = _engine(tmp_path)

    risky = engine.verify_documentation_safety("notes.md")
    plain = engine.verify_documentation_safety("changelog.md")

    assert not risky.is_safe
    assert risky.contains_critical_info
    assert "Contains security-related information" in risky.warnings
    assert plain.is_safe
    assert plain.warnings == []


def test_unreadable_documentation_is_unsafe(tmp_path: Path) -> None:
    engine = _engine(tmp_path)

    safety = engine.verify_documentation_safety("docs/missing.md")

    assert not safety.is_safe


def test_partition_is_exact_and_ordered(tmp_path: Path) -> None:
    _project(tmp_path)
    engine = _engine(tmp_path)
    files = ["temp/cache.tmp", "README.md", "old_guide.md", "scripts/deploy.js", "nope.txt"]

    batch = engine.validate_batch_removal(files)

    assert sorted(batch.safe + batch.unsafe) == sorted(files)
    assert not set(batch.safe) & set(batch.unsafe)
    assert batch.safe == [f for f in files if f in batch.safe]


def test_integrity_requires_manifest(tmp_path: Path) -> None:
    result = ValidationEngine(tmp_path).run_integrity_tests()

    assert not result.passed
    assert result.errors == ["package.json not found"]


def test_integrity_warns_about_missing_pieces(tmp_path: Path) -> None:
    _write(tmp_path / "package.json", json.dumps({"scripts": {"build": "vite build"}}))

    result = ValidationEngine(tmp_path).run_integrity_tests()

    assert result.passed
    assert "No test script found in package.json" in result.warnings
    assert "Critical file missing: tsconfig.json" in result.warnings


def test_integrity_fails_on_invalid_manifest(tmp_path: Path) -> None:
    _write(tmp_path / "package.json", "{not json")

    result = ValidationEngine(tmp_path).run_integrity_tests()

    assert not result.passed


def test_validation_report_lists_unsafe_files(tmp_path: Path) -> None:
    _project(tmp_path)
    engine = _engine(tmp_path)
    batch = engine.validate_batch_removal(["README.md", "temp/cache.tmp"])

    report = engine.generate_validation_report(batch)

    assert "Safe to remove: 1" in report
    assert "### README.md" in report
    assert "- temp/cache.tmp" in report

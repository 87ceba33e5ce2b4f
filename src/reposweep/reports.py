from __future__ import annotations

import json
from dataclasses import asdict, is_dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

from reposweep.models import CleanupPlan, ExecutionReport, FileAnalysisReport

ANALYSIS_JSON = "cleanup-analysis-report.json"
PLAN_JSON = "cleanup-plan.json"
PLAN_MD = "cleanup-plan.md"
VALIDATION_MD = "validation-report.md"
DOC_SECTIONS = (("user", "User"), ("technical", "Technical"))
KEY_DIRECTORIES = (
    ("src/", "Source code"),
    ("docs/", "Documentation"),
    ("scripts/", "Build and deployment scripts"),
    ("tests/", "Test files"),
    ("config/", "Configuration"),
)


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    raise TypeError(f"Cannot serialize {type(value).__name__}")


def to_json(value: Any) -> str:
    if is_dataclass(value) and not isinstance(value, type):
        value = asdict(value)
    return json.dumps(value, indent=2, sort_keys=True, default=_json_default)


def format_mb(size: int) -> str:
    return f"{size / (1024 * 1024):.2f} MB"


def write_analysis_report(root: Path, report: FileAnalysisReport) -> Path:
    path = root / ANALYSIS_JSON
    path.write_text(to_json(report))
    return path


def write_plan(root: Path, plan: CleanupPlan) -> None:
    (root / PLAN_JSON).write_text(to_json(plan))
    (root / PLAN_MD).write_text(render_plan_markdown(plan))


def render_plan_markdown(plan: CleanupPlan) -> str:
    lines = [
        "# Cleanup Plan",
        "",
        "WARNING: Review this plan before running `reposweep execute`.",
        "Every removal is archived first and can be undone with `reposweep rollback <id>`.",
        "",
        f"Generated: `{plan.generated_at.isoformat()}`",
        f"Risk level: `{plan.risk_level}`",
        f"Estimated space saved: `{format_mb(plan.estimated_space_saved)}`",
        "",
    ]
    for index, phase in enumerate(plan.phases, start=1):
        lines.append(f"## {index}. {phase.name} (`{phase.key}`)")
        lines.append("")
        lines.append(phase.description)
        lines.append("")
        lines.append(f"- Files to remove: {len(phase.files_to_remove)}")
        lines.append(f"- Files to archive: {len(phase.files_to_archive)}")
        lines.append(f"- Files to move: {len(phase.files_to_move)}")
        lines.append(f"- Validation required: {'yes' if phase.validation_required else 'no'}")
        for path in phase.files_to_remove:
            lines.append(f"  - remove {path}")
        for path in phase.files_to_archive:
            lines.append(f"  - archive {path}")
        for move in phase.files_to_move:
            suffix = "" if phase.apply_moves else " (advisory)"
            lines.append(f"  - move {move.source} -> {move.target}{suffix}")
        lines.append("")
    lines.append("## Validation steps")
    for step in plan.validation_steps:
        required = "required" if step.required else "optional"
        lines.append(f"- {step.type}: {step.description} ({required})")
    lines.append("")
    return "\n".join(lines)


def render_final_report(report: ExecutionReport) -> str:
    lines = [
        "# System Cleanup Report",
        "",
        f"Generated: {report.generated_at.isoformat()}",
        "",
    ]
    for result in report.results:
        lines.extend(
            [
                f"## {result.phase}",
                "",
                f"- Files removed: {len(result.files_removed)}",
                f"- Files archived: {len(result.files_archived)}",
                f"- Files moved: {len(result.files_moved)}",
                f"- Space saved: {format_mb(result.space_saved)}",
                f"- Errors: {len(result.errors)}",
            ]
        )
        if result.rollback_id:
            lines.append(f"- Rollback ID: {result.rollback_id}")
        lines.append("")
        if result.errors:
            lines.append("### Errors")
            lines.extend(f"- {error}" for error in result.errors)
            lines.append("")

    integrity = report.integrity
    lines.append("## Integrity")
    lines.append("")
    lines.append(f"- Passed: {'yes' if integrity.passed else 'no'}")
    lines.extend(f"- Error: {error}" for error in integrity.errors)
    lines.extend(f"- Warning: {warning}" for warning in integrity.warnings)
    lines.append("")

    lines.extend(
        [
            "## Summary",
            "",
            f"- Total files removed: {report.total_removed}",
            f"- Total files archived: {report.total_archived}",
            f"- Total files moved: {report.total_moved}",
            f"- Total space saved: {format_mb(report.total_space_saved)}",
            f"- Total errors: {report.total_errors}",
            f"- Status: {'success' if report.succeeded else 'FAILED'}",
            "",
        ]
    )
    return "\n".join(lines)


def render_docs_index(root: Path) -> str:
    lines = [
        "# Documentation Index",
        "",
        "This index provides an overview of all project documentation.",
        "",
    ]
    for folder, title in DOC_SECTIONS:
        directory = root / "docs" / folder
        if not directory.is_dir():
            continue
        names = sorted(p.name for p in directory.iterdir() if p.suffix == ".md")
        if not names:
            continue
        lines.append(f"## {title} Documentation")
        lines.append("")
        lines.extend(f"- [{name}](./{folder}/{name})" for name in names)
        lines.append("")
    return "\n".join(lines)


def render_project_structure(root: Path, backup_dir: str) -> str:
    lines = [
        "# Project Structure",
        "",
        "Overview of the cleaned and organized project structure.",
        "",
    ]
    for path, description in KEY_DIRECTORIES:
        if (root / path).is_dir():
            lines.append(f"- **{path}** - {description}")
    lines.extend(
        [
            "",
            "## Cleanup Information",
            "",
            "- Temporary files and logs have been cleaned",
            "- Documentation has been organized by type",
            "- Obsolete scripts have been removed",
            "- Empty directories have been cleaned up",
            "",
            f"For rollback information, see `{backup_dir}/`.",
            "",
        ]
    )
    return "\n".join(lines)

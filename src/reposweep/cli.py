from __future__ import annotations

import argparse
import logging
import sys
from collections.abc import Iterable
from pathlib import Path

from reposweep import __version__
from reposweep.config import load_config
from reposweep.engine import CleanupEngine
from reposweep.errors import ReposweepError
from reposweep.executor import CleanupExecutor
from reposweep.reports import VALIDATION_MD, format_mb, write_analysis_report, write_plan

VALIDATE_DEFAULT_LIMIT = 20


def main(argv: Iterable[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    level = logging.INFO
    if args.verbose:
        level = logging.DEBUG
    elif args.quiet:
        level = logging.WARNING
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")

    root = Path(args.path).resolve()
    if not root.exists() or not root.is_dir():
        raise SystemExit(f"Path does not exist or is not a directory: {root}")

    try:
        config = load_config(root, max_workers=args.workers)
        engine = CleanupEngine(root, config)
        return args.handler(engine, args)
    except ReposweepError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="reposweep",
        description=(
            "Scan a project, plan cleanup phases, and execute them with backups "
            "and rollback points. Execute mode requires --yes confirmation."
        ),
    )
    parser.add_argument("--path", default=".", help="Target project directory")
    parser.add_argument("--workers", type=int, default=None, help="Worker threads for per-file work")
    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument("-v", "--verbose", action="store_true", help="Log per-file decisions")
    verbosity.add_argument("-q", "--quiet", action="store_true", help="Only log warnings and errors")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    commands = parser.add_subparsers(dest="command", required=True)

    scan = commands.add_parser("scan", help="Scan and categorize files")
    scan.set_defaults(handler=_cmd_scan)

    plan = commands.add_parser("plan", help="Generate a cleanup plan")
    plan.set_defaults(handler=_cmd_plan)

    validate = commands.add_parser("validate", help="Check files for safe removal")
    validate.add_argument("paths", nargs="*", help="Project-relative paths (default: obsolete files)")
    validate.set_defaults(handler=_cmd_validate)

    execute = commands.add_parser("execute", help="Execute cleanup phases")
    execute.add_argument(
        "phases",
        nargs="*",
        help="Phase numbers (1-4) or keys: temporary, documentation, scripts, folders",
    )
    execute.add_argument("--yes", action="store_true", help="Confirm execution (required)")
    execute.set_defaults(handler=_cmd_execute)

    rollback = commands.add_parser("rollback", help="Undo a rollback point")
    rollback.add_argument("rollback_id")
    rollback.set_defaults(handler=_cmd_rollback)

    listing = commands.add_parser("list-rollback-points", help="List recorded rollback points")
    listing.set_defaults(handler=_cmd_list_rollback_points)

    purge = commands.add_parser("purge-rollback-points", help="Forget old rollback points")
    purge.add_argument("--days", type=int, default=None, help="Age threshold in days")
    purge.set_defaults(handler=_cmd_purge_rollback_points)
    return parser


def _cmd_scan(engine: CleanupEngine, args: argparse.Namespace) -> int:
    report = engine.scan_project()
    print(f"Total files: {report.total_files}")
    print(f"Obsolete files: {len(report.obsolete_files)}")
    print(f"Duplicate groups: {len(report.duplicate_files)}")
    print(f"Large files: {len(report.large_files)}")
    print("File categories:")
    for category, files in report.categorized_files.items():
        print(f"  {category:<15}: {len(files):>4} files")
    path = write_analysis_report(engine.root, report)
    print(f"Report written to {path}")
    return 0


def _cmd_plan(engine: CleanupEngine, args: argparse.Namespace) -> int:
    plan = engine.generate_cleanup_plan()
    print(f"Risk level: {plan.risk_level.upper()}")
    print(f"Estimated space saved: {format_mb(plan.estimated_space_saved)}")
    for index, phase in enumerate(plan.phases, start=1):
        print(f"{index}. {phase.name} [{phase.key}]")
        print(
            f"   remove={len(phase.files_to_remove)} archive={len(phase.files_to_archive)} "
            f"move={len(phase.files_to_move)}"
        )
    write_plan(engine.root, plan)
    print(f"Plan written to {engine.root}")
    return 0


def _cmd_validate(engine: CleanupEngine, args: argparse.Namespace) -> int:
    files = list(args.paths)
    if not files:
        files = engine.scan_project().obsolete_files[:VALIDATE_DEFAULT_LIMIT]
    if not files:
        print("No files to validate")
        return 0
    engine.ensure_dependency_graph()
    batch = engine.validate_cleanup(files)
    print(f"Safe to remove: {len(batch.safe)}")
    print(f"Unsafe to remove: {len(batch.unsafe)}")
    for path in batch.unsafe:
        print(f"  - {path}")
        for warning in batch.warnings.get(path, []):
            print(f"      {warning}")
    report_path = engine.root / VALIDATION_MD
    report_path.write_text(engine.validation.generate_validation_report(batch))
    print(f"Validation report written to {report_path}")
    return 0


def _cmd_execute(engine: CleanupEngine, args: argparse.Namespace) -> int:
    if not args.yes:
        raise SystemExit("Refusing to execute without --yes confirmation.")
    plan = engine.generate_cleanup_plan()
    report = CleanupExecutor(engine).execute_plan(plan, args.phases)
    for result in report.results:
        print(
            f"{result.phase}: removed={len(result.files_removed)} "
            f"archived={len(result.files_archived)} moved={len(result.files_moved)} "
            f"errors={len(result.errors)} rollback={result.rollback_id}"
        )
        for error in result.errors:
            print(f"  ! {error}")
    if not report.integrity.passed:
        print("Integrity tests failed:")
        for error in report.integrity.errors:
            print(f"  ! {error}")
    print(f"Total space saved: {format_mb(report.total_space_saved)}")
    print(f"Report written to {engine.root / engine.config.final_report}")
    return 0 if report.succeeded else 1


def _cmd_rollback(engine: CleanupEngine, args: argparse.Namespace) -> int:
    outcome = engine.rollback.rollback_to_point(args.rollback_id)
    print(f"Restored {len(outcome.restored_files)} files")
    for path in outcome.restored_files:
        print(f"  - {path}")
    for error in outcome.errors:
        print(f"  ! {error}")
    return 0 if outcome.success else 1


def _cmd_list_rollback_points(engine: CleanupEngine, args: argparse.Namespace) -> int:
    points = engine.rollback.list_rollback_points()
    if not points:
        print("No rollback points recorded")
    for point in points:
        print(
            f"{point.id}  {point.created_at.isoformat()}  {point.name} "
            f"({len(point.operations)} operations)"
        )
    return 0


def _cmd_purge_rollback_points(engine: CleanupEngine, args: argparse.Namespace) -> int:
    removed = engine.rollback.cleanup_old_rollback_points(args.days)
    engine.rollback.store.save()
    print(f"Removed {removed} rollback points")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

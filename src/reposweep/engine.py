from __future__ import annotations

import logging
import posixpath
import threading
from datetime import datetime, timezone
from pathlib import Path

from reposweep.backup import BackupSystem
from reposweep.config import MIB, CleanupConfig
from reposweep.dependencies import DependencyAnalyzer
from reposweep.models import (
    BatchValidation,
    CleanupPhase,
    CleanupPlan,
    DependencyGraph,
    FileAnalysisReport,
    FileCategoryMap,
    FileMove,
    ValidationStep,
)
from reposweep.rollback import RollbackStore, RollbackSystem
from reposweep.scanner import FileScanner
from reposweep.validation import ValidationEngine

logger = logging.getLogger(__name__)

PHASE1_OBSOLETE_MARKERS = (
    "temp",
    "cache",
    "analysis-report",
    "complexity-report",
    "refactoring-report",
)
IMPORTANT_MARKERS = ("error", "critical", "deploy", "config")
OLD_DOC_MARKERS = ("old", "deprecated", "archive", "legacy", "backup")
TECHNICAL_DOC_MARKERS = ("technical", "implementation", "architecture", "api")
USER_DOC_MARKERS = ("guide", "tutorial", "getting_started", "readme")
ARCHIVED_SCRIPT_MARKERS = ("archive", "old")
CRITICAL_SCRIPT_MARKERS = ("deploy", "build", "release", "production")
RISKY_SCRIPT_MARKERS = ("deploy", "build", "production")


def _unique(paths: list[str]) -> list[str]:
    return list(dict.fromkeys(paths))


def _has_marker(path: str, markers: tuple[str, ...]) -> bool:
    lowered = path.lower()
    return any(marker in lowered for marker in markers)


class CleanupEngine:
    """Wires the scanner, analyzer and validator together and builds plans."""

    def __init__(
        self,
        root: Path,
        config: CleanupConfig | None = None,
        store: RollbackStore | None = None,
    ) -> None:
        self.root = root.resolve()
        self.config = config or CleanupConfig()
        self.scanner = FileScanner(self.root, self.config)
        self.analyzer = DependencyAnalyzer(self.root, self.config)
        self.validation = ValidationEngine(self.root, self.config, self.analyzer)
        self.backup = BackupSystem(self.root, self.config)
        if store is None:
            store = RollbackStore(self.root / self.config.rollback_file)
            store.load()
        self.rollback = RollbackSystem(self.root, self.backup, store, self.config)
        self._graph: DependencyGraph | None = None

    def scan_project(self, cancel: threading.Event | None = None) -> FileAnalysisReport:
        logger.info("Scanning project files under %s", self.root)
        return self._build_report(self.scanner.scan_all_files(cancel), cancel)

    def _build_report(
        self, files: list[str], cancel: threading.Event | None = None
    ) -> FileAnalysisReport:
        categorized = self.scanner.categorize_files(files)
        for category, paths in categorized.items():
            logger.debug("  %s: %d files", category, len(paths))
        obsolete = self.scanner.identify_obsolete_files(files, cancel)
        duplicates = self.scanner.identify_duplicates(files)
        large = self.scanner.identify_large_files(files, cancel)
        logger.info(
            "Found %d files: %d obsolete, %d duplicate groups, %d large",
            len(files),
            len(obsolete),
            len(duplicates),
            len(large),
        )
        return FileAnalysisReport(
            total_files=len(files),
            categorized_files=categorized,
            obsolete_files=obsolete,
            duplicate_files=duplicates,
            large_files=large,
            generated_at=datetime.now(timezone.utc),
        )

    def categorize_files(self, files: list[str]) -> FileCategoryMap:
        return self.scanner.categorize_files(files)

    def analyze_dependencies(
        self, files: list[str], cancel: threading.Event | None = None
    ) -> DependencyGraph:
        self._graph = self.validation.set_dependency_graph(files, cancel)
        return self._graph

    def ensure_dependency_graph(self, cancel: threading.Event | None = None) -> DependencyGraph:
        if self._graph is None:
            return self.analyze_dependencies(self.scanner.scan_all_files(cancel), cancel)
        return self._graph

    def generate_cleanup_plan(self, cancel: threading.Event | None = None) -> CleanupPlan:
        logger.info("Scanning project files under %s", self.root)
        files = self.scanner.scan_all_files(cancel)
        report = self._build_report(files, cancel)
        # Every scanned file contributes edges, not only categorized ones:
        # sources outside the categories still reference logs and docs.
        graph = self.analyze_dependencies(files, cancel)
        plan = CleanupPlan(
            phases=self.create_cleanup_phases(report, graph),
            estimated_space_saved=self.estimate_space_savings(report),
            risk_level=self.assess_risk_level(report, graph),
            validation_steps=self.create_validation_steps(),
            generated_at=datetime.now(timezone.utc),
        )
        logger.info(
            "Plan ready: %d phases, risk %s, ~%d bytes reclaimable",
            len(plan.phases),
            plan.risk_level,
            plan.estimated_space_saved,
        )
        return plan

    def create_cleanup_phases(
        self, report: FileAnalysisReport, graph: DependencyGraph
    ) -> list[CleanupPhase]:
        return [
            self._temporary_phase(report, graph),
            self._documentation_phase(report),
            self._script_phase(report, graph),
            self._folder_phase(report),
        ]

    def _temporary_phase(self, report: FileAnalysisReport, graph: DependencyGraph) -> CleanupPhase:
        categories = report.categorized_files
        obsolete = [
            f for f in report.obsolete_files
            if f.endswith(".log") or _has_marker(f, PHASE1_OBSOLETE_MARKERS)
        ]
        candidates = _unique(categories.logs + categories.temporary + obsolete)
        archive = self.filter_needs_archiving(candidates, graph)
        archived = set(archive)
        remove = [f for f in self.filter_safe_to_remove(candidates, graph) if f not in archived]
        return CleanupPhase(
            key="temporary",
            name="Phase 1: Temporary and Log Cleanup",
            description="Remove temporary files, old logs, and build artifacts",
            files_to_remove=remove,
            files_to_archive=archive,
            files_to_move=[],
        )

    def _documentation_phase(self, report: FileAnalysisReport) -> CleanupPhase:
        docs = report.categorized_files.documentation
        doc_set = set(docs)
        remove: list[str] = []
        for group in report.duplicate_files:
            if any(f in doc_set for f in group.files):
                remove.extend(f for f in group.files[1:] if f in doc_set)
        remove = _unique(remove)
        removed = set(remove)
        archive = [
            f for f in docs
            if f not in removed and _has_marker(posixpath.basename(f), OLD_DOC_MARKERS)
        ]
        settled = removed | set(archive)
        moves = self.plan_documentation_reorganization([f for f in docs if f not in settled])
        return CleanupPhase(
            key="documentation",
            name="Phase 2: Documentation Organization",
            description="Consolidate and organize documentation files",
            files_to_remove=remove,
            files_to_archive=archive,
            files_to_move=moves,
            apply_moves=True,
        )

    def _script_phase(self, report: FileAnalysisReport, graph: DependencyGraph) -> CleanupPhase:
        scripts = report.categorized_files.scripts
        archive = [
            f for f in scripts
            if _has_marker(f, CRITICAL_SCRIPT_MARKERS) and graph.is_referenced(f)
        ]
        archived = set(archive)
        remove = [
            f for f in scripts
            if f not in archived
            and (not graph.is_referenced(f) or _has_marker(f, ARCHIVED_SCRIPT_MARKERS))
        ]
        return CleanupPhase(
            key="scripts",
            name="Phase 3: Script Cleanup",
            description="Remove unused scripts and consolidate similar ones",
            files_to_remove=remove,
            files_to_archive=archive,
            files_to_move=[],
        )

    def _folder_phase(self, report: FileAnalysisReport) -> CleanupPhase:
        return CleanupPhase(
            key="folders",
            name="Phase 4: Folder Reorganization",
            description="Reorganize folder structure and consolidate configuration",
            files_to_remove=[],
            files_to_archive=[],
            files_to_move=self.plan_folder_reorganization(report.categorized_files),
        )

    def filter_safe_to_remove(self, files: list[str], graph: DependencyGraph) -> list[str]:
        return [f for f in files if not graph.is_referenced(f)]

    def filter_needs_archiving(self, files: list[str], graph: DependencyGraph) -> list[str]:
        return [f for f in files if graph.is_referenced(f) or _has_marker(f, IMPORTANT_MARKERS)]

    def plan_documentation_reorganization(self, docs: list[str]) -> list[FileMove]:
        moves: list[FileMove] = []
        for path in docs:
            name = posixpath.basename(path)
            if _has_marker(name, TECHNICAL_DOC_MARKERS):
                target_dir, reason = "docs/technical", "Organize technical documentation"
            elif _has_marker(name, USER_DOC_MARKERS):
                target_dir, reason = "docs/user", "Organize user documentation"
            else:
                continue
            if path.startswith(target_dir + "/"):
                continue
            moves.append(FileMove(source=path, target=f"{target_dir}/{name}", reason=reason))
        return self._drop_colliding_moves(moves)

    def plan_folder_reorganization(self, categories: FileCategoryMap) -> list[FileMove]:
        moves = [
            FileMove(
                source=path,
                target=f"config/{posixpath.basename(path)}",
                reason="Consolidate configuration files",
            )
            for path in categories.configuration
            if not path.startswith("config/") and not path.startswith(".")
        ]
        return self._drop_colliding_moves(moves)

    def _drop_colliding_moves(self, moves: list[FileMove]) -> list[FileMove]:
        taken: set[str] = set()
        kept: list[FileMove] = []
        for move in moves:
            if move.target in taken or (self.root / move.target).exists():
                logger.debug("Skipping move %s -> %s: target taken", move.source, move.target)
                continue
            taken.add(move.target)
            kept.append(move)
        return kept

    def estimate_space_savings(self, report: FileAnalysisReport) -> int:
        obsolete = set(report.obsolete_files)
        measured = sum(f.size for f in report.large_files if f.path in obsolete)
        categories = report.categorized_files
        # Log and temporary files are not stat'ed at planning time.
        estimated = (len(categories.logs) + len(categories.temporary)) * MIB
        return measured + estimated

    def assess_risk_level(self, report: FileAnalysisReport, graph: DependencyGraph) -> str:
        referenced_obsolete = sum(1 for f in report.obsolete_files if graph.is_referenced(f))
        critical_scripts = sum(
            1 for f in report.categorized_files.scripts if _has_marker(f, RISKY_SCRIPT_MARKERS)
        )
        if referenced_obsolete > 10 or critical_scripts > 5:
            return "high"
        if referenced_obsolete > 5 or critical_scripts > 2:
            return "medium"
        return "low"

    def create_validation_steps(self) -> list[ValidationStep]:
        return [
            ValidationStep("reference-check", "Check file references before removal", True),
            ValidationStep("build-test", "Run build and test processes", True),
            ValidationStep("dependency-check", "Verify no critical dependencies are broken", True),
        ]

    def validate_cleanup(
        self, files: list[str], cancel: threading.Event | None = None
    ) -> BatchValidation:
        return self.validation.validate_batch_removal(files, cancel)

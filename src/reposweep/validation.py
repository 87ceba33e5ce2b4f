from __future__ import annotations

import json
import logging
import posixpath
import re
import threading
from pathlib import Path
from typing import Any

from reposweep.config import CleanupConfig
from reposweep.dependencies import DependencyAnalyzer
from reposweep.errors import GraphNotInitializedError
from reposweep.models import (
    BatchValidation,
    DependencyGraph,
    DocumentationSafety,
    IntegrityResult,
    ReferenceCheck,
    ScriptUsage,
)
from reposweep.pool import map_files
from reposweep.scanner import DOC_EXTENSIONS, SCRIPT_EXTENSIONS

logger = logging.getLogger(__name__)

CRITICAL_SCRIPT_NAMES = {"build", "test", "deploy", "start", "dev"}
CRITICAL_PATH_TOKENS = ("deploy", "build", "release", "production", "migrate", "backup")
PRIMARY_DOCS = {"readme.md", "getting_started.md", "installation.md", "setup.md"}
SENSITIVE_PATTERNS = [
    (re.compile(r"password|secret|key|token|credential", re.I), "Contains security-related information"),
    (re.compile(r"setup|installation|getting.?started", re.I), "Contains setup instructions"),
    (re.compile(r"configuration|config", re.I), "Contains configuration information"),
    (re.compile(r"api.?key|access.?token", re.I), "Contains API credentials"),
    (re.compile(r"database|connection.?string", re.I), "Contains database information"),
    (re.compile(r"deployment|deploy", re.I), "Contains deployment information"),
]
SAFE_LIST_LIMIT = 20


def is_script_like(path: str) -> bool:
    ext = posixpath.splitext(path)[1].lower()
    return ext in SCRIPT_EXTENSIONS or path.startswith("scripts/") or "/scripts/" in path


def is_doc_like(path: str) -> bool:
    ext = posixpath.splitext(path)[1].lower()
    return ext in DOC_EXTENSIONS or path.startswith("docs/") or "/docs/" in path


class ValidationEngine:
    """Decides which candidate files are safe to remove.

    Every file query needs the dependency graph, so ``set_dependency_graph``
    must run first. A failed check never raises for a single file: the file
    is routed to the unsafe side with the reason recorded.
    """

    def __init__(
        self,
        root: Path,
        config: CleanupConfig | None = None,
        analyzer: DependencyAnalyzer | None = None,
    ) -> None:
        self.root = root.resolve()
        self.config = config or CleanupConfig()
        self.analyzer = analyzer or DependencyAnalyzer(self.root, self.config)
        self._graph: DependencyGraph | None = None
        self._manifest_scripts: dict[str, str] | None = None
        self._manifest_lock = threading.Lock()

    @property
    def graph(self) -> DependencyGraph:
        if self._graph is None:
            raise GraphNotInitializedError(
                "Dependency graph not initialized. Call set_dependency_graph first."
            )
        return self._graph

    def set_dependency_graph(
        self, files: list[str], cancel: threading.Event | None = None
    ) -> DependencyGraph:
        self._graph = self.analyzer.analyze_dependencies(files, cancel)
        with self._manifest_lock:
            self._manifest_scripts = None
        return self._graph

    def check_file_references(self, path: str) -> ReferenceCheck:
        referenced_by = self.graph.referencing_files(path)
        return ReferenceCheck(
            is_referenced=bool(referenced_by),
            referenced_by=referenced_by,
            safe_to_remove=not referenced_by,
        )

    def validate_script_usage(self, path: str) -> ScriptUsage:
        graph = self.graph
        used_by: list[str] = []
        is_critical = False
        for name, command in self._scripts().items():
            if path in command:
                used_by.append(f"{self.config.manifest}:scripts.{name}")
                if name in CRITICAL_SCRIPT_NAMES:
                    is_critical = True
        used_by.extend(graph.referencing_files(path))
        if any(token in path.lower() for token in CRITICAL_PATH_TOKENS):
            is_critical = True
        return ScriptUsage(is_used=bool(used_by), used_by=used_by, is_critical=is_critical)

    def verify_documentation_safety(self, path: str) -> DocumentationSafety:
        graph = self.graph
        warnings: list[str] = []
        try:
            content = (self.root / path).read_text(encoding="utf-8", errors="ignore")
        except OSError as exc:
            logger.warning("Could not read %s: %s", path, exc)
            warnings.append(f"Could not read file: {exc}")
            content = None

        critical = content is None
        if content is not None:
            for pattern, message in SENSITIVE_PATTERNS:
                if pattern.search(content):
                    warnings.append(message)
                    critical = True
        if posixpath.basename(path).lower() in PRIMARY_DOCS:
            warnings.append("This is a main documentation file")
            critical = True
        if graph.is_referenced(path):
            warnings.append("This file is referenced by other files")
            critical = True
        return DocumentationSafety(is_safe=not critical, contains_critical_info=critical, warnings=warnings)

    def validate_batch_removal(
        self, files: list[str], cancel: threading.Event | None = None
    ) -> BatchValidation:
        self.graph  # fail fast before fanning out
        verdicts = map_files(self._validate_one, files, self.config.max_workers, cancel)
        safe: list[str] = []
        unsafe: list[str] = []
        warnings: dict[str, list[str]] = {}
        for path, (is_safe, reasons) in zip(files, verdicts):
            (safe if is_safe else unsafe).append(path)
            if reasons:
                warnings.setdefault(path, []).extend(reasons)
        logger.info("Validated %d files: %d safe, %d unsafe", len(files), len(safe), len(unsafe))
        return BatchValidation(safe=safe, unsafe=unsafe, warnings=warnings)

    def _validate_one(self, path: str) -> tuple[bool, list[str]]:
        reasons: list[str] = []
        is_safe = True

        refs = self.check_file_references(path)
        if refs.is_referenced:
            reasons.append(f"Referenced by: {', '.join(refs.referenced_by)}")
            is_safe = False

        if is_script_like(path):
            usage = self.validate_script_usage(path)
            if usage.is_critical:
                reasons.append("This is a critical script")
                is_safe = False
            if usage.is_used:
                reasons.append(f"Used by: {', '.join(usage.used_by)}")
                is_safe = False

        if is_doc_like(path):
            safety = self.verify_documentation_safety(path)
            if not safety.is_safe:
                reasons.extend(safety.warnings)
                is_safe = False

        logger.debug("%s: %s", path, "safe" if is_safe else "; ".join(reasons))
        return is_safe, reasons

    def run_integrity_tests(self) -> IntegrityResult:
        errors: list[str] = []
        warnings: list[str] = []
        manifest = self.root / self.config.manifest
        if not manifest.is_file():
            errors.append(f"{self.config.manifest} not found")
            return IntegrityResult(passed=False, errors=errors, warnings=warnings)
        try:
            data = json.loads(manifest.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            errors.append(f"Could not parse {self.config.manifest}: {exc}")
            return IntegrityResult(passed=False, errors=errors, warnings=warnings)

        for name in self.config.integrity_files:
            if not (self.root / name).exists():
                warnings.append(f"Critical file missing: {name}")

        scripts = data.get("scripts") if isinstance(data, dict) else None
        scripts = scripts if isinstance(scripts, dict) else {}
        for entry in ("build", "test"):
            if not scripts.get(entry):
                warnings.append(f"No {entry} script found in {self.config.manifest}")
        return IntegrityResult(passed=True, errors=errors, warnings=warnings)

    def generate_validation_report(self, batch: BatchValidation) -> str:
        lines = [
            "# Validation Report",
            "",
            f"Total files validated: {len(batch.safe) + len(batch.unsafe)}",
            f"Safe to remove: {len(batch.safe)}",
            f"Unsafe to remove: {len(batch.unsafe)}",
            "",
        ]
        if batch.unsafe:
            lines.extend(["## Unsafe Files", ""])
            for path in batch.unsafe:
                lines.append(f"### {path}")
                for warning in batch.warnings.get(path, []):
                    lines.append(f"  - {warning}")
                lines.append("")
        if batch.safe:
            lines.extend(["## Safe Files", ""])
            for path in batch.safe[:SAFE_LIST_LIMIT]:
                lines.append(f"- {path}")
            if len(batch.safe) > SAFE_LIST_LIMIT:
                lines.append(f"... and {len(batch.safe) - SAFE_LIST_LIMIT} more")
            lines.append("")
        return "\n".join(lines)

    def _scripts(self) -> dict[str, str]:
        with self._manifest_lock:
            if self._manifest_scripts is None:
                self._manifest_scripts = self._read_manifest_scripts()
            return self._manifest_scripts

    def _read_manifest_scripts(self) -> dict[str, str]:
        manifest = self.root / self.config.manifest
        try:
            data: Any = json.loads(manifest.read_text(encoding="utf-8"))
        except FileNotFoundError:
            logger.debug("No %s in %s", self.config.manifest, self.root)
            return {}
        except (OSError, ValueError) as exc:
            logger.warning("Could not read %s: %s", self.config.manifest, exc)
            return {}
        scripts = data.get("scripts") if isinstance(data, dict) else None
        if not isinstance(scripts, dict):
            return {}
        return {name: cmd for name, cmd in scripts.items() if isinstance(cmd, str)}

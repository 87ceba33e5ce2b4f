from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterator

CATEGORY_NAMES = (
    "logs",
    "documentation",
    "scripts",
    "temporary",
    "configuration",
    "tests",
)
EDGE_KINDS = ("import", "reference", "script-call", "config-reference")
RISK_LEVELS = ("low", "medium", "high")
OPERATION_TYPES = ("remove", "move", "modify")


@dataclass
class FileCategoryMap:
    logs: list[str] = field(default_factory=list)
    documentation: list[str] = field(default_factory=list)
    scripts: list[str] = field(default_factory=list)
    temporary: list[str] = field(default_factory=list)
    configuration: list[str] = field(default_factory=list)
    tests: list[str] = field(default_factory=list)

    def get(self, category: str) -> list[str]:
        if category not in CATEGORY_NAMES:
            raise KeyError(category)
        return getattr(self, category)

    def items(self) -> Iterator[tuple[str, list[str]]]:
        for name in CATEGORY_NAMES:
            yield name, getattr(self, name)

    def all_files(self) -> list[str]:
        files: list[str] = []
        for _, paths in self.items():
            files.extend(paths)
        return files


@dataclass(frozen=True)
class LargeFileInfo:
    path: str
    size: int
    type: str  # extension or "no-extension"
    last_modified: datetime


@dataclass(frozen=True)
class DuplicateGroup:
    files: list[str]
    similarity: float
    reason: str


@dataclass(frozen=True)
class DependencyEdge:
    source: str
    target: str
    kind: str  # one of EDGE_KINDS


@dataclass
class DependencyGraph:
    nodes: set[str] = field(default_factory=set)
    edges: list[DependencyEdge] = field(default_factory=list)
    _inbound: dict[str, list[str]] = field(default_factory=dict, repr=False, compare=False)

    def add_edge(self, edge: DependencyEdge) -> None:
        self.edges.append(edge)
        self._inbound.setdefault(edge.target, []).append(edge.source)

    def is_referenced(self, path: str) -> bool:
        return bool(self._inbound.get(path))

    def referencing_files(self, path: str) -> list[str]:
        return list(dict.fromkeys(self._inbound.get(path, [])))


@dataclass(frozen=True)
class FileAnalysisReport:
    total_files: int
    categorized_files: FileCategoryMap
    obsolete_files: list[str]
    duplicate_files: list[DuplicateGroup]
    large_files: list[LargeFileInfo]
    generated_at: datetime


@dataclass(frozen=True)
class FileMove:
    source: str
    target: str
    reason: str


@dataclass(frozen=True)
class CleanupPhase:
    key: str
    name: str
    description: str
    files_to_remove: list[str]
    files_to_archive: list[str]
    files_to_move: list[FileMove]
    validation_required: bool = True
    apply_moves: bool = False


@dataclass(frozen=True)
class ValidationStep:
    type: str  # "reference-check", "build-test" or "dependency-check"
    description: str
    required: bool


@dataclass(frozen=True)
class CleanupPlan:
    phases: list[CleanupPhase]
    estimated_space_saved: int
    risk_level: str
    validation_steps: list[ValidationStep]
    generated_at: datetime

    def phase(self, selector: str) -> CleanupPhase:
        """Look a phase up by 1-based number or key."""
        if selector.isdigit():
            index = int(selector) - 1
            if 0 <= index < len(self.phases):
                return self.phases[index]
        for phase in self.phases:
            if phase.key == selector:
                return phase
        raise KeyError(selector)


@dataclass(frozen=True)
class RollbackOperation:
    type: str  # one of OPERATION_TYPES
    original_path: str
    timestamp: datetime
    reason: str
    backup_path: str | None = None
    new_path: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "original_path": self.original_path,
            "backup_path": self.backup_path,
            "new_path": self.new_path,
            "timestamp": self.timestamp.isoformat(),
            "reason": self.reason,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RollbackOperation:
        return cls(
            type=data["type"],
            original_path=data["original_path"],
            backup_path=data.get("backup_path"),
            new_path=data.get("new_path"),
            timestamp=datetime.fromisoformat(data["timestamp"]),
            reason=data.get("reason", ""),
        )


@dataclass(frozen=True)
class RollbackPoint:
    id: str
    name: str
    operations: tuple[RollbackOperation, ...]
    created_at: datetime
    description: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "operations": [op.to_dict() for op in self.operations],
            "created_at": self.created_at.isoformat(),
            "description": self.description,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RollbackPoint:
        return cls(
            id=data["id"],
            name=data["name"],
            operations=tuple(RollbackOperation.from_dict(op) for op in data["operations"]),
            created_at=datetime.fromisoformat(data["created_at"]),
            description=data.get("description", ""),
        )


@dataclass(frozen=True)
class RollbackOutcome:
    success: bool
    restored_files: list[str]
    errors: list[str]


@dataclass(frozen=True)
class ReferenceCheck:
    is_referenced: bool
    referenced_by: list[str]
    safe_to_remove: bool


@dataclass(frozen=True)
class ScriptUsage:
    is_used: bool
    used_by: list[str]
    is_critical: bool


@dataclass(frozen=True)
class DocumentationSafety:
    is_safe: bool
    contains_critical_info: bool
    warnings: list[str]


@dataclass(frozen=True)
class BatchValidation:
    safe: list[str]
    unsafe: list[str]
    warnings: dict[str, list[str]]


@dataclass(frozen=True)
class IntegrityResult:
    passed: bool
    errors: list[str]
    warnings: list[str]


@dataclass
class CleanupResult:
    phase: str
    files_removed: list[str] = field(default_factory=list)
    files_archived: list[str] = field(default_factory=list)
    files_moved: list[FileMove] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    space_saved: int = 0
    rollback_id: str | None = None


@dataclass(frozen=True)
class ExecutionReport:
    results: list[CleanupResult]
    integrity: IntegrityResult
    generated_at: datetime

    @property
    def total_removed(self) -> int:
        return sum(len(r.files_removed) for r in self.results)

    @property
    def total_archived(self) -> int:
        return sum(len(r.files_archived) for r in self.results)

    @property
    def total_moved(self) -> int:
        return sum(len(r.files_moved) for r in self.results)

    @property
    def total_space_saved(self) -> int:
        return sum(r.space_saved for r in self.results)

    @property
    def total_errors(self) -> int:
        return sum(len(r.errors) for r in self.results)

    @property
    def succeeded(self) -> bool:
        return self.total_errors == 0 and self.integrity.passed

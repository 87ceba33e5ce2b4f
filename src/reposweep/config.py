from __future__ import annotations

import tomllib
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any

from reposweep.errors import ReposweepError

DEFAULT_EXCLUDE_DIRS = (
    "node_modules",
    ".git",
    "dist",
    "build",
    "coverage",
    ".next",
    ".cache",
)
DEFAULT_INTEGRITY_FILES = (
    "package.json",
    "tsconfig.json",
    "vite.config.ts",
    "src/main.tsx",
    "index.html",
)
CONFIG_FILES = ("reposweep.toml", "pyproject.toml")
MIB = 1024 * 1024


@dataclass(frozen=True)
class CleanupConfig:
    exclude_dirs: tuple[str, ...] = DEFAULT_EXCLUDE_DIRS
    large_file_threshold: int = MIB
    obsolete_age_days: int = 30
    obsolete_requires_age: bool = False
    max_workers: int = 8
    backup_dir: str = ".cleanup-backup"
    rollback_retention_days: int = 7
    manifest: str = "package.json"
    integrity_files: tuple[str, ...] = DEFAULT_INTEGRITY_FILES
    final_report: str = "cleanup-final-report.md"
    docs_index: str = "docs/INDEX.md"
    structure_summary: str = "PROJECT_STRUCTURE.md"

    @property
    def rollback_file(self) -> str:
        return f"{self.backup_dir}/rollback/rollback-points.json"


def load_config(root: Path, **overrides: Any) -> CleanupConfig:
    """Build a config from ``[tool.reposweep]`` in the project root plus overrides.

    ``reposweep.toml`` is consulted before ``pyproject.toml``; the first file
    that carries the table wins. Overrides whose value is ``None`` are ignored
    so CLI flags can be passed through unconditionally.
    """
    settings: dict[str, Any] = {}
    for name in CONFIG_FILES:
        path = root / name
        if not path.is_file():
            continue
        try:
            data = tomllib.loads(path.read_text(encoding="utf-8"))
        except (OSError, tomllib.TOMLDecodeError) as exc:
            raise ReposweepError(f"Could not read {path}: {exc}") from exc
        table = data.get("tool", {}).get("reposweep")
        if table is not None:
            settings.update(table)
            break
    settings.update({k: v for k, v in overrides.items() if v is not None})

    known = {f.name for f in fields(CleanupConfig)}
    unknown = sorted(set(settings) - known)
    if unknown:
        raise ReposweepError(f"Unknown configuration keys: {', '.join(unknown)}")
    for key in ("exclude_dirs", "integrity_files"):
        if key in settings:
            settings[key] = tuple(settings[key])
    config = replace(CleanupConfig(), **settings)
    if config.max_workers < 1:
        raise ReposweepError("max_workers must be at least 1")
    return config

from __future__ import annotations

import logging
import os
import posixpath
import re
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable

from reposweep.config import CleanupConfig
from reposweep.errors import OperationCancelled
from reposweep.models import DuplicateGroup, FileCategoryMap, LargeFileInfo
from reposweep.pool import map_files
from reposweep.reports import ANALYSIS_JSON, PLAN_JSON, PLAN_MD, VALIDATION_MD

logger = logging.getLogger(__name__)

GENERATED_FILES = {ANALYSIS_JSON, PLAN_JSON, PLAN_MD, VALIDATION_MD}
DOC_EXTENSIONS = {".md", ".txt", ".rst"}
SCRIPT_EXTENSIONS = {".js", ".mjs", ".cjs", ".sh", ".bat", ".ps1", ".py"}
CONFIG_JSON_MARKERS = ("config", "package", "tsconfig", "eslint", "prettier", "vite")
DUPLICATE_MARKERS = re.compile(r"copy|backup|old")
OBSOLETE_PATTERNS = [
    re.compile(p)
    for p in (
        r"\.log$",
        r"error.*\.txt$",
        r"debug.*\.(txt|log)$",
        r"temp.*\.",
        r"backup.*\.",
        r"old.*\.",
        r"deprecated.*\.",
        r"archive.*\.",
        r"\.bak$",
        r"\.tmp$",
        r"analysis.*\.json$",
        r"report.*\.json$",
        r"complexity.*\.json$",
        r"refactoring.*\.json$",
    )
]

Predicate = Callable[[str, str, str, str], bool]


def _is_log(path: str, ext: str, base: str, parent: str) -> bool:
    return (
        ext == ".log"
        or "log" in base
        or "logs/" in path
        or (base.endswith(".txt") and "error" in base)
    )


def _is_documentation(path: str, ext: str, base: str, parent: str) -> bool:
    return ext in DOC_EXTENSIONS or "docs" in parent or "documentation" in parent


def _is_script(path: str, ext: str, base: str, parent: str) -> bool:
    return ext in SCRIPT_EXTENSIONS and ("scripts" in parent or "script" in base)


def _is_test(path: str, ext: str, base: str, parent: str) -> bool:
    return (
        "test" in base
        or "spec" in base
        or "test" in parent
        or "__tests__" in parent
    )


def _is_configuration(path: str, ext: str, base: str, parent: str) -> bool:
    if ext == ".json" and any(marker in base for marker in CONFIG_JSON_MARKERS):
        return True
    return ext in {".yml", ".yaml", ".toml"} or (base.startswith(".") and not ext)


def _is_temporary(path: str, ext: str, base: str, parent: str) -> bool:
    return (
        ext in {".tmp", ".temp"}
        or "temp" in base
        or "cache" in base
        or "temp" in parent
        or "cache" in parent
    )


# Evaluated top to bottom; the first matching predicate decides the category.
CATEGORY_RULES: list[tuple[str, Predicate]] = [
    ("logs", _is_log),
    ("documentation", _is_documentation),
    ("scripts", _is_script),
    ("tests", _is_test),
    ("configuration", _is_configuration),
    ("temporary", _is_temporary),
]


def categorize_path(path: str) -> str | None:
    base = posixpath.basename(path).lower()
    parent = posixpath.dirname(path).lower()
    ext = posixpath.splitext(base)[1]
    for category, predicate in CATEGORY_RULES:
        if predicate(path, ext, base, parent):
            return category
    return None


def normalize_name(path: str) -> str:
    """Collapse a basename to the key used for near-duplicate grouping."""
    stem = posixpath.splitext(posixpath.basename(path))[0].lower()
    stem = re.sub(r"(?:^|(?<=[-_\s.]))v\d+(?=$|[-_\s.])", "", stem)
    stem = re.sub(r"[-_\s]+", "", stem)
    stem = re.sub(r"\d+", "", stem)
    return re.sub(r"copy|backup|old|new|temp|final", "", stem)


def _has_duplicate_marker(path: str) -> bool:
    return bool(DUPLICATE_MARKERS.search(posixpath.basename(path).lower()))


class FileScanner:
    def __init__(self, root: Path, config: CleanupConfig | None = None) -> None:
        self.root = root.resolve()
        self.config = config or CleanupConfig()

    def scan_all_files(self, cancel: threading.Event | None = None) -> list[str]:
        generated = GENERATED_FILES | {self.config.final_report}
        results: list[str] = []

        def on_error(exc: OSError) -> None:
            logger.warning("Could not scan directory %s: %s", exc.filename, exc)

        for dirpath, dirnames, filenames in os.walk(self.root, onerror=on_error):
            if cancel is not None and cancel.is_set():
                raise OperationCancelled("Scan cancelled")
            rel_dir = Path(dirpath).relative_to(self.root).as_posix()
            dirnames[:] = sorted(
                name for name in dirnames if not self._excluded_dir(rel_dir, name)
            )
            for name in filenames:
                rel_path = name if rel_dir == "." else f"{rel_dir}/{name}"
                if rel_path in generated:
                    continue
                if not os.path.isfile(os.path.join(dirpath, name)):
                    continue
                results.append(rel_path)
        results.sort()
        return results

    def _excluded_dir(self, rel_dir: str, name: str) -> bool:
        rel_path = name if rel_dir == "." else f"{rel_dir}/{name}"
        if rel_path == self.config.backup_dir:
            return True
        return any(token in name for token in self.config.exclude_dirs)

    def categorize_files(self, files: list[str]) -> FileCategoryMap:
        categories = FileCategoryMap()
        for path in files:
            category = categorize_path(path)
            if category is not None:
                categories.get(category).append(path)
        for _, paths in categories.items():
            paths.sort()
        return categories

    def identify_large_files(
        self, files: list[str], cancel: threading.Event | None = None
    ) -> list[LargeFileInfo]:
        threshold = self.config.large_file_threshold

        def inspect(path: str) -> LargeFileInfo | None:
            try:
                stat = (self.root / path).stat()
            except OSError as exc:
                logger.warning("Could not stat file %s: %s", path, exc)
                return None
            if stat.st_size <= threshold:
                return None
            return LargeFileInfo(
                path=path,
                size=stat.st_size,
                type=posixpath.splitext(path)[1] or "no-extension",
                last_modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
            )

        found = map_files(inspect, files, self.config.max_workers, cancel)
        large = [info for info in found if info is not None]
        large.sort(key=lambda info: (-info.size, info.path))
        return large

    def identify_duplicates(self, files: list[str]) -> list[DuplicateGroup]:
        groups: dict[str, list[str]] = {}
        for path in files:
            groups.setdefault(normalize_name(path), []).append(path)

        duplicates: list[DuplicateGroup] = []
        for members in groups.values():
            if len(members) < 2:
                continue
            if not any(_has_duplicate_marker(path) for path in members):
                continue
            # Unmarked originals first, so callers can keep files[0].
            ordered = sorted(members, key=lambda p: (_has_duplicate_marker(p), p))
            duplicates.append(DuplicateGroup(files=ordered, similarity=0.8, reason="similar-name"))
        duplicates.sort(key=lambda group: group.files[0])
        return duplicates

    def identify_obsolete_files(
        self, files: list[str], cancel: threading.Event | None = None
    ) -> list[str]:
        cutoff = datetime.now(timezone.utc) - timedelta(days=self.config.obsolete_age_days)
        matched = [path for path in files if _matches_obsolete_pattern(path)]

        def check(path: str) -> bool:
            try:
                stat = (self.root / path).stat()
            except OSError as exc:
                logger.warning("Could not stat %s, treating as obsolete: %s", path, exc)
                return True
            if not self.config.obsolete_requires_age:
                return True
            modified = datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc)
            return modified < cutoff

        flags = map_files(check, matched, self.config.max_workers, cancel)
        return sorted(path for path, obsolete in zip(matched, flags) if obsolete)


def _matches_obsolete_pattern(path: str) -> bool:
    base = posixpath.basename(path).lower()
    lowered = path.lower()
    return any(p.search(base) or p.search(lowered) for p in OBSOLETE_PATTERNS)

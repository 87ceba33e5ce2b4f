"""Textual reference extraction and the project dependency graph.

Extraction is regex based and deliberately approximate: a path-like string
inside a comment still produces an edge. Over-reporting only makes files
look referenced, which keeps them out of the removal set.
"""

from __future__ import annotations

import json
import logging
import posixpath
import re
import threading
import tomllib
from pathlib import Path
from typing import Any, Iterable

from reposweep.config import CleanupConfig
from reposweep.models import DependencyEdge, DependencyGraph
from reposweep.pool import map_files

logger = logging.getLogger(__name__)

RESOLVE_EXTENSIONS = ("", ".ts", ".tsx", ".js", ".jsx", ".json", ".md")
CONFIG_REFERENCE_KEYS = {"extends", "include", "exclude", "files", "references"}
RELATIVE_PREFIXES = ("./", "../")


class ReferenceExtractor:
    """Pulls raw ``(reference, edge kind)`` pairs out of one file's content."""

    kind = ""

    def extract_references(self, content: str) -> list[tuple[str, str]]:
        raise NotImplementedError


class SourceExtractor(ReferenceExtractor):
    kind = "source"

    _import_from = re.compile(r"""(?:import|export)\s+[^;'"`]*?\s+from\s+['"`]([^'"`]+)['"`]""")
    _side_effect_import = re.compile(r"""^\s*import\s+['"`]([^'"`]+)['"`]""", re.MULTILINE)
    _require = re.compile(r"""require\s*\(\s*['"`]([^'"`]+)['"`]\s*\)""")
    _dynamic_import = re.compile(r"""import\s*\(\s*['"`]([^'"`]+)['"`]\s*\)""")
    _file_literal = re.compile(r"""['"`]([^'"`\s]*\.(?:ts|tsx|js|jsx|json|md))['"`]""")

    def extract_references(self, content: str) -> list[tuple[str, str]]:
        refs: list[tuple[str, str]] = []
        for pattern in (self._import_from, self._side_effect_import, self._require, self._dynamic_import):
            refs.extend((match, "import") for match in pattern.findall(content))
        refs.extend((match, "reference") for match in self._file_literal.findall(content))
        return refs


class ConfigExtractor(ReferenceExtractor):
    kind = "config"

    def __init__(self, fmt: str) -> None:
        self.fmt = fmt

    def extract_references(self, content: str) -> list[tuple[str, str]]:
        try:
            data = tomllib.loads(content) if self.fmt == "toml" else json.loads(content)
        except (ValueError, tomllib.TOMLDecodeError) as exc:
            logger.debug("Skipping unparseable %s config: %s", self.fmt, exc)
            return []
        if not isinstance(data, dict):
            return []
        refs: list[tuple[str, str]] = []
        scripts = data.get("scripts")
        if isinstance(scripts, dict):
            for command in scripts.values():
                if isinstance(command, str):
                    refs.extend((ref, "script-call") for ref in script_path_tokens(command))
        refs.extend((ref, "config-reference") for ref in _config_values(data))
        return refs


class MarkdownExtractor(ReferenceExtractor):
    kind = "markdown"

    _link = re.compile(r"\[[^\]]*\]\(([^)\s]+)(?:\s+\"[^\"]*\")?\)")
    _backticked = re.compile(r"`([^`\s]*\.(?:ts|tsx|js|jsx|json|md|sql))`")

    def extract_references(self, content: str) -> list[tuple[str, str]]:
        refs: list[tuple[str, str]] = []
        for link in self._link.findall(content):
            target = link.split("#", 1)[0].split("?", 1)[0]
            if target:
                refs.append((target, "reference"))
        refs.extend((match, "reference") for match in self._backticked.findall(content))
        return refs


class ScriptExtractor(ReferenceExtractor):
    kind = "script"

    def extract_references(self, content: str) -> list[tuple[str, str]]:
        return [(ref, "script-call") for ref in script_path_tokens(content)]


_SCRIPT_TOKEN = re.compile(r"""(?:^|[\s"'=(])(\.{1,2}[/\\][^\s"';|&)<>]+)""", re.MULTILINE)


def script_path_tokens(command: str) -> list[str]:
    """Relative path tokens in a shell-style command string."""
    return [token.replace("\\", "/") for token in _SCRIPT_TOKEN.findall(command)]


def _config_values(data: Any) -> Iterable[str]:
    if isinstance(data, dict):
        for key, value in data.items():
            if key in CONFIG_REFERENCE_KEYS:
                yield from _path_strings(value)
            elif isinstance(value, (dict, list)):
                yield from _config_values(value)
    elif isinstance(data, list):
        for item in data:
            yield from _config_values(item)


def _path_strings(value: Any) -> Iterable[str]:
    if isinstance(value, str):
        yield value
    elif isinstance(value, list):
        for item in value:
            yield from _path_strings(item)
    elif isinstance(value, dict) and isinstance(value.get("path"), str):
        # tsconfig project references: [{"path": "./packages/core"}]
        yield value["path"]


SOURCE_EXTENSIONS = {".ts", ".tsx", ".js", ".jsx", ".mjs", ".cjs"}
SHELL_EXTENSIONS = {".sh", ".bash", ".bat", ".cmd", ".ps1"}


def extractor_for(path: str) -> ReferenceExtractor | None:
    ext = posixpath.splitext(path)[1].lower()
    if ext in SOURCE_EXTENSIONS:
        return SourceExtractor()
    if ext == ".json":
        return ConfigExtractor("json")
    if ext == ".toml":
        return ConfigExtractor("toml")
    if ext == ".md":
        return MarkdownExtractor()
    if ext in SHELL_EXTENSIONS:
        return ScriptExtractor()
    return None


class DependencyAnalyzer:
    def __init__(self, root: Path, config: CleanupConfig | None = None) -> None:
        self.root = root.resolve()
        self.config = config or CleanupConfig()

    def analyze_dependencies(
        self, files: list[str], cancel: threading.Event | None = None
    ) -> DependencyGraph:
        graph = DependencyGraph(nodes=set(files))
        per_file = map_files(self.find_file_dependencies, files, self.config.max_workers, cancel)
        for edges in per_file:
            for edge in edges:
                graph.add_edge(edge)
        logger.info("Found %d references between %d files", len(graph.edges), len(files))
        return graph

    def find_file_dependencies(self, path: str) -> list[DependencyEdge]:
        extractor = extractor_for(path)
        if extractor is None:
            return []
        try:
            content = (self.root / path).read_text(encoding="utf-8", errors="ignore")
        except OSError as exc:
            logger.warning("Could not analyze dependencies for %s: %s", path, exc)
            return []
        edges: list[DependencyEdge] = []
        seen: set[tuple[str, str]] = set()
        for ref, kind in extractor.extract_references(content):
            target = self.resolve_relative_path(path, ref)
            if target is None or target == path or (target, kind) in seen:
                continue
            seen.add((target, kind))
            edges.append(DependencyEdge(source=path, target=target, kind=kind))
        return edges

    def resolve_relative_path(self, source: str, ref: str) -> str | None:
        """Resolve ``ref`` as written in ``source`` to a project-relative path.

        Returns None for non-relative references and for anything that lands
        outside the project root.
        """
        if not ref.startswith(RELATIVE_PREFIXES):
            return None
        joined = posixpath.normpath(posixpath.join(posixpath.dirname(source), ref))
        if joined == ".." or joined.startswith("../") or joined == ".":
            return None
        for ext in RESOLVE_EXTENSIONS:
            candidate = joined + ext
            if (self.root / candidate).is_file():
                return candidate
        return joined


def is_file_referenced(path: str, graph: DependencyGraph) -> bool:
    return graph.is_referenced(path)


def get_referencing_files(path: str, graph: DependencyGraph) -> list[str]:
    return graph.referencing_files(path)

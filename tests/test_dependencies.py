from __future__ import annotations

import json
from pathlib import Path

from reposweep.dependencies import (
    DependencyAnalyzer,
    MarkdownExtractor,
    SourceExtractor,
    get_referencing_files,
    is_file_referenced,
    script_path_tokens,
)


def _write(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)


def _edges(tmp_path: Path, files: list[str]) -> set[tuple[str, str, str]]:
    graph = DependencyAnalyzer(tmp_path).analyze_dependencies(files)
    return {(e.source, e.target, e.kind) for e in graph.edges}


def test_source_imports_resolve_with_extensions(tmp_path: Path) -> None:
    _write(tmp_path / "src" / "main.ts", 'import { helper } from "./util";\nimport "./styles.css";\n')
    _write(tmp_path / "src" / "util.ts", "export const helper = 1;\n")
    _write(tmp_path / "src" / "styles.css", "body {}\n")

    edges = _edges(tmp_path, ["src/main.ts", "src/util.ts", "src/styles.css"])

    assert ("src/main.ts", "src/util.ts", "import") in edges
    assert ("src/main.ts", "src/styles.css", "import") in edges


def test_require_and_dynamic_import(tmp_path: Path) -> None:
    _write(
        tmp_path / "src" / "a.js",
        "const h = require('../lib/helper.js');\nconst m = await import('./lazy');\n",
    )
    _write(tmp_path / "lib" / "helper.js", "")
    _write(tmp_path / "src" / "lazy.js", "")

    edges = _edges(tmp_path, ["src/a.js", "lib/helper.js", "src/lazy.js"])

    assert ("src/a.js", "lib/helper.js", "import") in edges
    assert ("src/a.js", "src/lazy.js", "import") in edges


def test_markdown_links_drop_anchor(tmp_path: Path) -> None:
    _write(tmp_path / "docs" / "guide.md", "See [setup](./setup.md#install) and `../README.md`.\n")
    _write(tmp_path / "docs" / "setup.md", "")
    _write(tmp_path / "README.md", "")

    edges = _edges(tmp_path, ["docs/guide.md", "docs/setup.md", "README.md"])

    assert ("docs/guide.md", "docs/setup.md", "reference") in edges
    assert ("docs/guide.md", "README.md", "reference") in edges


def test_config_extends_and_manifest_scripts(tmp_path: Path) -> None:
    _write(tmp_path / "tsconfig.json", json.dumps({"extends": "./tsconfig.base.json"}))
    _write(tmp_path / "tsconfig.base.json", "{}")
    _write(
        tmp_path / "package.json",
        json.dumps({"scripts": {"deploy": "node ./scripts/deploy.js --prod"}}),
    )
    _write(tmp_path / "scripts" / "deploy.js", "")

    files = ["tsconfig.json", "tsconfig.base.json", "package.json", "scripts/deploy.js"]
    edges = _edges(tmp_path, files)

    assert ("tsconfig.json", "tsconfig.base.json", "config-reference") in edges
    assert ("package.json", "scripts/deploy.js", "script-call") in edges


def test_unresolvable_and_external_references_are_dropped(tmp_path: Path) -> None:
    _write(
        tmp_path / "src" / "a.ts",
        'import React from "react";\nimport x from "../../outside";\nimport self from "./a";\n',
    )

    graph = DependencyAnalyzer(tmp_path).analyze_dependencies(["src/a.ts"])

    assert graph.edges == []
    assert graph.nodes == {"src/a.ts"}


def test_unreadable_file_contributes_no_edges(tmp_path: Path) -> None:
    analyzer = DependencyAnalyzer(tmp_path)

    assert analyzer.find_file_dependencies("src/missing.ts") == []


def test_referencing_files_lists_each_source_once(tmp_path: Path) -> None:
    _write(tmp_path / "src" / "main.ts", 'import a from "./util";\nconst p = "./util.ts";\n')
    _write(tmp_path / "src" / "other.ts", 'import a from "./util";\n')
    _write(tmp_path / "src" / "util.ts", "")

    graph = DependencyAnalyzer(tmp_path).analyze_dependencies(
        ["src/main.ts", "src/other.ts", "src/util.ts"]
    )

    assert is_file_referenced("src/util.ts", graph)
    assert not is_file_referenced("src/main.ts", graph)
    assert sorted(get_referencing_files("src/util.ts", graph)) == ["src/main.ts", "src/other.ts"]


def test_resolve_relative_path_keeps_unresolved_target(tmp_path: Path) -> None:
    analyzer = DependencyAnalyzer(tmp_path)

    assert analyzer.resolve_relative_path("docs/a.md", "./gone.md") == "docs/gone.md"
    assert analyzer.resolve_relative_path("docs/a.md", "https://example.com") is None
    assert analyzer.resolve_relative_path("a.md", "../b.md") is None


def test_extractors_and_script_tokens() -> None:
    assert ("./x", "import") in SourceExtractor().extract_references("export * from './x';")
    assert MarkdownExtractor().extract_references("[home](#top)") == []
    assert script_path_tokens("sh ./run.sh && node ../tools/gen.js") == [
        "./run.sh",
        "../tools/gen.js",
    ]

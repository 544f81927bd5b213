from __future__ import annotations

from distforge.validate import validate_dependencies, validate_package
from tests._fixtures.context import make_context


def test_validate_dependencies_reports_unused_and_implicit(tmp_path) -> None:
    ctx = make_context(
        tmp_path,
        pkg={
            "dependencies": {"used": "^1.0.0", "unused": "^1.0.0"},
            "devDependencies": {"dev-only": "^1.0.0"},
        },
    )
    ctx.used_imports.update({"used/sub", "dev-only", "node:fs", "fs", "chunks/a.js", "implicit-pkg"})

    validate_dependencies(ctx)

    assert ctx.warnings == [
        "Potential unused dependencies found: unused",
        "Potential implicit dependencies found: implicit-pkg",
    ]


def test_validate_dependencies_honours_externals(tmp_path) -> None:
    ctx = make_context(tmp_path, externals=["implicit-*"], pkg={})
    ctx.used_imports.add("implicit-pkg/sub")

    validate_dependencies(ctx)

    assert ctx.warnings == []


def test_validate_package_reports_missing_entry_files(tmp_path) -> None:
    (tmp_path / "dist").mkdir()
    (tmp_path / "dist" / "index.js").write_text("export {};\n", encoding="utf-8")
    ctx = make_context(
        tmp_path,
        pkg={
            "main": "dist/index.js",
            "types": "dist/index.d.ts",
            "exports": {".": {"import": "./dist/index.js"}, "./package.json": "./package.json"},
        },
    )

    validate_package(ctx)

    assert ctx.warnings == ["Potential missing package.json files: dist/index.d.ts"]

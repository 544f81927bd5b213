"""Tests for the cross-library linker."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from distforge.errors import LinkError
from distforge.linker import LinkMode, OutputRoot, link
from distforge.models import LibraryDescriptor


def _library(root: Path, name: str) -> LibraryDescriptor:
    short = name.split("/")[-1]
    source = root / "src" / "libs" / short
    return LibraryDescriptor(name, source / "index.ts", source)


@pytest.fixture
def workspace(repo_builder):
    repo_builder.write(
        {
            "src/libs/a/index.ts": "export {};\n",
            "src/libs/a/util.ts": "export const util = 1;\n",
            "src/libs/b/index.ts": "export {};\n",
            "src/libs/b/thing.ts": "export const thing = 1;\n",
            "src/shared/helper.ts": 'import { dep } from "./dep";\nexport const helper = dep;\n',
            "src/shared/dep.ts": 'import { helper } from "./helper";\nexport const dep = () => helper;\n',
            "dist-libs/a/npm/bin/util.js": "export const util = 1;\n",
            "dist-libs/a/npm/bin/util.d.ts": "export declare const util = 1;\n",
            "dist-libs/b/npm/bin/thing.js": "export const thing = 1;\n",
            "dist-libs/b/npm/bin/index.js": 'export * from "./thing.js";\n',
        }
    )
    root = repo_builder.path().resolve()
    a = _library(root, "@org/a")
    b = _library(root, "@org/b")
    roots = [
        OutputRoot(a, root / "dist-libs" / "a" / "npm" / "bin", "npm"),
        OutputRoot(b, root / "dist-libs" / "b" / "npm" / "bin", "npm"),
    ]
    return repo_builder, root, roots, [a, b]


def _link(root: Path, roots, libraries, mode: LinkMode = LinkMode.PACKAGE):
    return asyncio.run(link(roots, "~", libraries, root_dir=root, mode=mode))


def test_link_rewrites_same_cross_and_external_references(workspace) -> None:
    repo_builder, root, roots, libraries = workspace
    repo_builder.write(
        {
            "dist-libs/a/npm/bin/index.js": """
                import { util } from "~/libs/a/util";
                import { thing } from "~/libs/b/thing";
                import { helper } from "~/shared/helper";
                // import { ignored } from "~/libs/b/ignored";
                export const lazy = () => import("~/libs/b");
            """,
        }
    )

    result = _link(root, roots, libraries)

    index = repo_builder.read("dist-libs/a/npm/bin/index.js")
    assert index == (
        'import { util } from "./util.js";\n'
        'import { thing } from "@org/b";\n'
        'import { helper } from "./addons/shared_helper.ts";\n'
        '// import { ignored } from "~/libs/b/ignored";\n'
        'export const lazy = () => import("@org/b");\n'
    )
    # Side copies are rewritten too, relative to their new location.
    assert [path.name for path in result.modified] == [
        "shared_dep.ts",
        "shared_helper.ts",
        "index.js",
    ]
    assert result.warnings == []


def test_external_cycle_copies_each_file_once(workspace) -> None:
    repo_builder, root, roots, libraries = workspace
    repo_builder.write(
        {"dist-libs/a/npm/bin/index.js": 'export { helper } from "~/shared/helper";\n'}
    )

    result = _link(root, roots, libraries)

    addons = root / "dist-libs" / "a" / "npm" / "bin" / "addons"
    assert sorted(path.name for path in result.copied) == ["shared_dep.ts", "shared_helper.ts"]
    assert sorted(path.name for path in addons.iterdir()) == ["shared_dep.ts", "shared_helper.ts"]
    assert 'from "./shared_dep.ts"' in (addons / "shared_helper.ts").read_text(encoding="utf-8")
    assert 'from "./shared_helper.ts"' in (addons / "shared_dep.ts").read_text(encoding="utf-8")


def test_link_is_idempotent(workspace) -> None:
    repo_builder, root, roots, libraries = workspace
    repo_builder.write(
        {
            "dist-libs/a/npm/bin/index.js": (
                'import { util } from "~/libs/a/util";\n'
                'import { thing } from "~/libs/b/thing";\n'
                'export { helper } from "~/shared/helper";\n'
            )
        }
    )
    _link(root, roots, libraries)
    snapshot = {
        path: path.read_text(encoding="utf-8")
        for path in (root / "dist-libs").rglob("*")
        if path.is_file()
    }

    second = _link(root, roots, libraries)

    assert second.modified == []
    assert second.copied == {}
    assert {
        path: path.read_text(encoding="utf-8")
        for path in (root / "dist-libs").rglob("*")
        if path.is_file()
    } == snapshot


def test_relative_paths_inside_the_output_are_untouched(workspace) -> None:
    repo_builder, root, roots, libraries = workspace
    repo_builder.write(
        {"dist-libs/a/npm/bin/sub/x.js": 'import { util } from "../util.js";\nimport "./y.js";\n'}
    )

    result = _link(root, roots, libraries)

    assert result.modified == []


def test_declaration_files_get_extensionless_specifiers(workspace) -> None:
    repo_builder, root, roots, libraries = workspace
    repo_builder.write({"dist-libs/a/npm/bin/index.d.ts": 'export * from "~/libs/a/util";\n'})

    _link(root, roots, libraries)

    assert repo_builder.read("dist-libs/a/npm/bin/index.d.ts") == 'export * from "./util";\n'


def test_unresolved_local_imports_warn_and_stay(workspace) -> None:
    repo_builder, root, roots, libraries = workspace
    repo_builder.write({"dist-libs/a/npm/bin/index.js": 'import x from "~/nope/missing";\n'})

    result = _link(root, roots, libraries)

    assert repo_builder.read("dist-libs/a/npm/bin/index.js") == 'import x from "~/nope/missing";\n'
    assert len(result.warnings) == 1
    assert "Unresolved import '~/nope/missing'" in result.warnings[0]


def test_inline_mode_embeds_sibling_output(workspace) -> None:
    repo_builder, root, roots, libraries = workspace
    repo_builder.write(
        {
            "dist-libs/a/npm/bin/index.js": (
                'import { thing } from "~/libs/b/thing";\n'
                "export const value = thing;\n"
            )
        }
    )

    _link(root, roots, libraries, mode=LinkMode.INLINE)
    first = repo_builder.read("dist-libs/a/npm/bin/index.js")
    second_result = _link(root, roots, libraries, mode=LinkMode.INLINE)

    assert first == (
        "/* inlined-start ~/libs/b/thing */\n"
        "export const thing = 1;\n"
        "/* inlined-end */\n"
        "export const value = thing;\n"
    )
    assert second_result.modified == []
    assert repo_builder.read("dist-libs/a/npm/bin/index.js") == first


def test_inline_mode_fails_for_unbuilt_targets(workspace) -> None:
    repo_builder, root, roots, libraries = workspace
    repo_builder.write({"dist-libs/a/npm/bin/index.js": 'import { x } from "~/libs/b/absent";\n'})

    with pytest.raises(LinkError, match="Cannot inline '~/libs/b/absent' from library @org/b"):
        _link(root, roots, libraries, mode=LinkMode.INLINE)


def test_copy_names_are_unique_per_root(workspace) -> None:
    repo_builder, root, roots, libraries = workspace
    repo_builder.write(
        {
            "src/x/shared/conf.ts": "export const a = 1;\n",
            "src/y/shared/conf.ts": "export const b = 2;\n",
            "dist-libs/a/npm/bin/index.js": (
                'import { a } from "~/x/shared/conf";\n'
                'import { b } from "~/y/shared/conf";\n'
            ),
        }
    )

    _link(root, roots, libraries)

    assert repo_builder.read("dist-libs/a/npm/bin/index.js") == (
        'import { a } from "./addons/shared_conf.ts";\n'
        'import { b } from "./addons/shared_conf_2.ts";\n'
    )


def test_relative_paths_into_a_sibling_library_become_package_names(workspace) -> None:
    repo_builder, root, roots, libraries = workspace
    repo_builder.write(
        {"dist-libs/a/npm/bin/feature/x.js": 'import { thing } from "../../b/thing";\n'}
    )

    first = _link(root, roots, libraries)
    second = _link(root, roots, libraries)

    assert repo_builder.read("dist-libs/a/npm/bin/feature/x.js") == 'import { thing } from "@org/b";\n'
    assert [path.name for path in first.modified] == ["x.js"]
    assert second.modified == []


@pytest.mark.parametrize("reverse", [False, True])
def test_inline_mode_links_inlined_text_for_its_new_location(workspace, reverse: bool) -> None:
    repo_builder, root, roots, libraries = workspace
    repo_builder.write(
        {
            "dist-libs/a/npm/bin/index.js": (
                'import { thing } from "~/libs/b/thing";\n'
                "export const value = thing;\n"
            ),
            "dist-libs/b/npm/bin/thing.js": (
                'import { util } from "~/libs/a/util";\n'
                "export const thing = util;\n"
            ),
        }
    )

    ordered = list(reversed(roots)) if reverse else roots

    result = _link(root, ordered, libraries, mode=LinkMode.INLINE)

    assert repo_builder.read("dist-libs/a/npm/bin/index.js") == (
        "/* inlined-start ~/libs/b/thing */\n"
        'import { util } from "./util.js";\n'
        "export const thing = util;\n"
        "/* inlined-end */\n"
        "export const value = thing;\n"
    )
    assert result.warnings == []


def test_copy_mode_points_at_copied_library_trees(workspace) -> None:
    repo_builder, root, roots, libraries = workspace
    repo_builder.write(
        {
            "dist-libs/a/npm/bin/index.js": (
                'import { thing } from "~/libs/b/thing";\n'
                "export const value = thing;\n"
            ),
            "dist-libs/b/npm/bin/uses-a.js": 'export { util } from "~/libs/a/util";\n',
        }
    )

    first = _link(root, roots, libraries, mode=LinkMode.COPY)

    assert repo_builder.read("dist-libs/a/npm/bin/index.js") == (
        'import { thing } from "../../../#b/npm/bin/thing.js";\n'
        "export const value = thing;\n"
    )
    linked_b = 'export { util } from "../../../#a/npm/bin/util.js";\n'
    assert repo_builder.read("dist-libs/b/npm/bin/uses-a.js") == linked_b
    assert first.copied_libraries == {
        "@org/a": root / "dist-libs" / "#a",
        "@org/b": root / "dist-libs" / "#b",
    }
    # Copies are taken after linking, with every registry tree of the library.
    assert repo_builder.read("dist-libs/#b/npm/bin/uses-a.js") == linked_b
    assert repo_builder.read("dist-libs/#b/npm/bin/thing.js") == "export const thing = 1;\n"
    assert (root / "dist-libs" / "#a" / "npm" / "bin" / "util.d.ts").is_file()

    snapshot = {
        path: path.read_text(encoding="utf-8")
        for path in (root / "dist-libs").rglob("*")
        if path.is_file()
    }
    second = _link(root, roots, libraries, mode=LinkMode.COPY)

    assert second.modified == []
    assert second.copied_libraries == {}
    assert second.warnings == []
    assert {
        path: path.read_text(encoding="utf-8")
        for path in (root / "dist-libs").rglob("*")
        if path.is_file()
    } == snapshot


def test_copy_mode_requires_outputs_under_the_copies_dir(workspace, tmp_path: Path) -> None:
    repo_builder, root, roots, libraries = workspace
    repo_builder.write({"dist-libs/a/npm/bin/index.js": 'import { thing } from "~/libs/b/thing";\n'})

    with pytest.raises(LinkError, match="Cannot copy library @org/b"):
        asyncio.run(
            link(
                roots,
                "~",
                libraries,
                root_dir=root,
                mode=LinkMode.COPY,
                copies_dir=tmp_path / "elsewhere",
            )
        )

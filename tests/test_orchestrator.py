"""Tests for distforge.orchestrator."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import List

import pytest

from distforge.config import EntryConfig
from distforge.errors import BuildError, ConfigError, EntryError
from distforge.hooks import HookStage
from distforge.models import BuilderKind
from distforge.orchestrator import Orchestrator, clean_dirs, infer_entry_name, normalize_entry
from distforge.publish import Publisher
from tests._fixtures.fakes import FakeBundler, FakeDeclarationExtractor, FakeTranspiler, RecordingRunner

INDEX_SOURCE = """
import pc from "picocolors";
export type Id = string;
export const id = pc;
"""


def _seed_package(repo_builder, **dependencies: str) -> Path:
    repo_builder.write({"src/index.ts": INDEX_SOURCE})
    repo_builder.write_package(dependencies=dependencies or {"picocolors": "^1.0.0"})
    return repo_builder.path()


def test_auto_build_writes_one_tree_per_registry(repo_builder, orchestrator) -> None:
    root = _seed_package(repo_builder)

    ctx = orchestrator.build(root)

    assert repo_builder.read("dist-npm/bin/index.js") == (
        'import pc from "picocolors";\nexport const id = pc;\n'
    )
    assert repo_builder.read("dist-npm/bin/index.d.ts").startswith("// decl\n")
    # The JSR tree ships TypeScript sources untouched.
    assert repo_builder.read("dist-jsr/bin/index.ts") == repo_builder.read("src/index.ts")

    npm_manifest = json.loads(repo_builder.read("dist-npm/package.json"))
    assert npm_manifest["name"] == "demo"
    assert npm_manifest["version"] == "1.2.3"
    assert npm_manifest["main"] == "./bin/index.js"
    assert npm_manifest["types"] == "./bin/index.d.ts"
    assert npm_manifest["dependencies"] == {"picocolors": "^1.0.0"}
    jsr_manifest = json.loads(repo_builder.read("dist-jsr/jsr.json"))
    assert jsr_manifest["exports"] == "./bin/index.ts"

    assert ctx.warnings == []
    assert ctx.manifest.find("dist-npm/bin") is not None
    chunk = ctx.manifest.find("dist-npm/bin/index.js")
    assert chunk.chunk is True
    assert chunk.bytes == (root / "dist-npm" / "bin" / "index.js").stat().st_size


def test_build_fails_on_warnings_unless_disabled(repo_builder, orchestrator) -> None:
    root = _seed_package(repo_builder, picocolors="^1.0.0", **{"left-pad": "^1.3.0"})

    with pytest.raises(BuildError, match="Potential unused dependencies found: left-pad") as excinfo:
        orchestrator.build(root)
    assert excinfo.value.warnings == ["Potential unused dependencies found: left-pad"]

    ctx = orchestrator.build(root, overrides={"fail_on_warn": False})

    assert ctx.warnings == ["Potential unused dependencies found: left-pad"]
    # Unused runtime dependencies never reach the published manifest.
    assert json.loads(repo_builder.read("dist-npm/package.json"))["dependencies"] == {
        "picocolors": "^1.0.0"
    }


def test_configured_entries_replace_registry_builds(repo_builder, orchestrator) -> None:
    repo_builder.write(
        {
            "src/cli.ts": "export function run() {}\n",
            "assets/logo.svg": "<svg/>",
        }
    )
    repo_builder.write_package()
    repo_builder.write_config(
        """
        entries:
          - input: src/cli.ts
            ext: mjs
          - input: assets/
            builder: copy
            out_dir: dist/assets
        """
    )
    root = repo_builder.path()

    ctx = orchestrator.build(root)

    assert ctx.manifest.find("dist/cli.mjs").exports == ["run"]
    logo = ctx.manifest.find("dist/assets/logo.svg")
    assert logo.chunk is True
    assert logo.bytes == len("<svg/>")
    assert not (root / "dist-npm").exists()


def test_clean_removes_stale_outputs(repo_builder, orchestrator) -> None:
    root = _seed_package(repo_builder)
    repo_builder.write({"dist-npm/bin/stale.js": "export {};\n"})
    repo_builder.write_config("clean: true\n")

    orchestrator.build(root)

    assert not (root / "dist-npm" / "bin" / "stale.js").exists()
    assert (root / "dist-npm" / "bin" / "index.js").exists()


def test_stub_build_links_sources_and_skips_validation(repo_builder, orchestrator) -> None:
    root = _seed_package(repo_builder, **{"left-pad": "^1.3.0"})
    stages = []
    for stage in (HookStage.BUILD_PREPARE, HookStage.BUILD_BEFORE, HookStage.BUILD_DONE):
        orchestrator.on(stage, lambda ctx, stage=stage: stages.append(stage))

    ctx = orchestrator.build(root, stub=True)

    out = root / "dist-npm" / "bin"
    assert out.is_symlink()
    assert out.resolve() == (root / "src").resolve()
    assert not (root / "dist-npm" / "package.json").exists()
    assert ctx.warnings == []
    assert stages == [HookStage.BUILD_PREPARE, HookStage.BUILD_BEFORE, HookStage.BUILD_DONE]


PARALLEL_CONFIG = """
parallel: {parallel}
entries:
  - input: src/
    out_dir: dist/lib
  - input: assets/
    builder: copy
    out_dir: dist/assets
"""


class _RecordingTranspiler(FakeTranspiler):
    def __init__(self, events: List[str]) -> None:
        super().__init__()
        self.events = events

    async def transpile(self, source: str, *, extension: str, format: str) -> str:
        self.events.append("transpile")
        return await super().transpile(source, extension=extension, format=format)


@pytest.mark.parametrize(
    "parallel, expected",
    [
        (True, ["mirror", "copy", "transpile"]),
        (False, ["mirror", "transpile", "copy"]),
    ],
)
def test_parallel_flag_runs_backends_concurrently(
    repo_builder, parallel: bool, expected: List[str]
) -> None:
    repo_builder.write({"src/cli.ts": "export function run() {}\n", "assets/logo.svg": "<svg/>"})
    repo_builder.write_package()
    repo_builder.write_config(PARALLEL_CONFIG.format(parallel=str(parallel).lower()))
    events: List[str] = []
    orchestrator = Orchestrator(
        transpiler=_RecordingTranspiler(events),
        declaration_extractor=FakeDeclarationExtractor(),
        bundler=FakeBundler(),
    )
    orchestrator.on(HookStage.TRANSFORM_ENTRIES, lambda ctx, entries: events.append("mirror"))
    orchestrator.on(HookStage.COPY_ENTRIES, lambda ctx, entries: events.append("copy"))

    ctx = orchestrator.build(repo_builder.path())

    assert events == expected
    assert repo_builder.read("dist/lib/cli.js") == "export function run() {}\n"
    assert repo_builder.read("dist/assets/logo.svg") == "<svg/>"
    assert ctx.warnings == []


def test_backend_failure_carries_accumulated_warnings(repo_builder, orchestrator) -> None:
    repo_builder.write({"src/cli.ts": "export function run() {}\n", "src/broken.ts": "// @fail\n"})
    repo_builder.write_package()
    repo_builder.write_config(PARALLEL_CONFIG.format(parallel="false"))

    with pytest.raises(EntryError, match="input does not exist") as excinfo:
        orchestrator.build(repo_builder.path())

    assert len(excinfo.value.warnings) == 1
    assert excinfo.value.warnings[0].startswith("Transform failed for `dist/lib/broken")
    assert repo_builder.read("dist/lib/cli.js") == "export function run() {}\n"


class _BlockingTranspiler(FakeTranspiler):
    def __init__(self) -> None:
        super().__init__()
        self.started = asyncio.Event()
        self.cancelled = False

    async def transpile(self, source: str, *, extension: str, format: str) -> str:
        self.started.set()
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        return source


class _CrashingBundler:
    def __init__(self, started: asyncio.Event) -> None:
        self.started = started

    async def bundle(self, request):
        await self.started.wait()
        raise BuildError("bundler crashed")


def test_parallel_failure_cancels_sibling_backends(repo_builder) -> None:
    repo_builder.write(
        {"src/cli.ts": "export function run() {}\n", "plugins/plugin.ts": "export default {};\n"}
    )
    repo_builder.write_package()
    repo_builder.write_config(
        """
        parallel: true
        entries:
          - input: src/
            out_dir: dist/lib
          - input: plugins/plugin.ts
            builder: plugin-bundle
        """
    )

    async def scenario() -> _BlockingTranspiler:
        transpiler = _BlockingTranspiler()
        orchestrator = Orchestrator(
            transpiler=transpiler,
            declaration_extractor=FakeDeclarationExtractor(),
            bundler=_CrashingBundler(transpiler.started),
        )
        with pytest.raises(BuildError, match="bundler crashed"):
            await orchestrator.build_async(repo_builder.path())
        return transpiler

    transpiler = asyncio.run(scenario())

    assert transpiler.cancelled is True
    assert not (repo_builder.path() / "dist" / "lib" / "cli.js").exists()


def test_clean_dirs_skips_root_ancestors_and_nested(tmp_path: Path) -> None:
    root = (tmp_path / "repo").resolve()

    cleaned = clean_dirs(
        [root, root.parent, root / "dist", root / "dist" / "bin", root / "other", root / "dist"],
        root,
    )

    assert cleaned == [root / "dist", root / "other"]


@pytest.mark.parametrize(
    ("input_path", "expected"),
    [
        ("./src/cli.ts", "cli"),
        ("src/cli/", "cli"),
        ("src/", "index"),
        ("lib/tool.mjs", "lib/tool"),
        ("config.yml", "config"),
    ],
)
def test_infer_entry_name(input_path: str, expected: str) -> None:
    assert infer_entry_name(input_path) == expected


def test_normalize_entry_defaults(tmp_path: Path) -> None:
    root = tmp_path.resolve()
    out_dir = root / "dist"

    mirror = normalize_entry(
        EntryConfig(input="./src/runtime/"), root_dir=root, out_dir=out_dir, declaration=True
    )
    transform = normalize_entry(
        EntryConfig(input="src/cli.ts", out_dir="build", declaration=False),
        root_dir=root,
        out_dir=out_dir,
        declaration=True,
    )

    assert mirror.builder is BuilderKind.MIRROR
    assert mirror.name == "runtime"
    assert mirror.input == root / "src" / "runtime"
    assert mirror.out_dir == out_dir
    assert mirror.declaration is True
    assert transform.builder is BuilderKind.TRANSFORM
    assert transform.out_dir == root / "build"
    assert transform.declaration is False


def test_normalize_entry_rejects_invalid_entries(tmp_path: Path) -> None:
    with pytest.raises(EntryError, match="Missing entry input"):
        normalize_entry(EntryConfig(), root_dir=tmp_path, out_dir=tmp_path, declaration=False)
    with pytest.raises(EntryError, match="Unknown builder 'rollup'"):
        normalize_entry(
            EntryConfig(input="src/x.ts", builder="rollup"),
            root_dir=tmp_path,
            out_dir=tmp_path,
            declaration=False,
        )


LIBRARIES_CONFIG = """
libraries:
  "@org/a": {}
  "@org/b":
    registries: [npm]
"""


def _seed_libraries(repo_builder) -> Path:
    repo_builder.write(
        {
            "src/libs/a/index.ts": (
                'import { thing } from "~/libs/b/thing";\n'
                'import pc from "picocolors";\n'
                "export const a = [thing, pc];\n"
            ),
            "src/libs/b/index.ts": "export const b = 1;\n",
            "src/libs/b/thing.ts": "export const thing = 1;\n",
        }
    )
    repo_builder.write_package(dependencies={"picocolors": "^1.0.0", "left-pad": "^1.3.0"})
    repo_builder.write_config(LIBRARIES_CONFIG)
    return repo_builder.path()


def test_build_libraries_links_and_writes_manifests(repo_builder, orchestrator) -> None:
    root = _seed_libraries(repo_builder)
    done = []
    orchestrator.on(HookStage.LINK_DONE, lambda ctx, result: done.append(result))

    result = orchestrator.build_libraries(root)

    assert [(r.library.package_name, r.registry) for r in result.roots] == [
        ("@org/a", "npm"),
        ("@org/a", "jsr"),
        ("@org/b", "npm"),
    ]
    assert 'import { thing } from "@org/b";' in repo_builder.read("dist-libs/a/npm/bin/index.js")
    assert 'import { thing } from "@org/b";' in repo_builder.read("dist-libs/a/jsr/bin/index.ts")
    assert root.resolve() / "dist-libs" / "a" / "npm" / "bin" / "index.js" in result.modified

    a_manifest = json.loads(repo_builder.read("dist-libs/a/npm/package.json"))
    assert a_manifest["name"] == "@org/a"
    assert a_manifest["main"] == "./bin/index.js"
    assert a_manifest["dependencies"] == {"@org/b": "^1.2.3", "picocolors": "^1.0.0"}
    b_manifest = json.loads(repo_builder.read("dist-libs/b/npm/package.json"))
    assert "dependencies" not in b_manifest
    assert json.loads(repo_builder.read("dist-libs/a/jsr/jsr.json"))["exports"] == "./bin/index.ts"
    assert not (root / "dist-libs" / "b" / "jsr").exists()
    assert len(result.manifests) == 3
    assert done == [result]


def test_build_libraries_copy_mode_links_into_copied_trees(repo_builder, orchestrator) -> None:
    root = _seed_libraries(repo_builder)

    orchestrator.build_libraries(root, overrides={"link": {"mode": "copy"}})

    assert 'import { thing } from "../../../#b/npm/bin/thing.js";' in repo_builder.read(
        "dist-libs/a/npm/bin/index.js"
    )
    assert 'import { thing } from "../../../#b/npm/bin/thing.js";' in repo_builder.read(
        "dist-libs/a/jsr/bin/index.ts"
    )
    assert (root / "dist-libs" / "#b" / "npm" / "bin" / "thing.js").is_file()


def test_build_libraries_without_libraries_is_a_no_op(repo_builder, orchestrator) -> None:
    repo_builder.write_package()

    result = orchestrator.build_libraries(repo_builder.path())

    assert result.roots == []
    assert result.warnings == []


def test_build_libraries_rejects_unknown_registry(repo_builder, orchestrator) -> None:
    repo_builder.write_package()
    repo_builder.write_config(
        """
        libraries:
          "@org/a":
            registries: [pypi]
        """
    )

    with pytest.raises(ConfigError, match="unknown registry 'pypi'"):
        orchestrator.build_libraries(repo_builder.path())


def test_publish_runs_registry_commands_for_every_package(repo_builder) -> None:
    repo_builder.write_config(LIBRARIES_CONFIG)
    root = repo_builder.path().resolve()
    for directory in ("dist-npm", "dist-jsr", "dist-libs/a/npm", "dist-libs/b/npm"):
        (root / directory).mkdir(parents=True)
    runner = RecordingRunner()
    orchestrator = Orchestrator(
        transpiler=FakeTranspiler(),
        declaration_extractor=FakeDeclarationExtractor(),
        bundler=FakeBundler(),
        publisher=Publisher(runner=runner),
    )

    results = orchestrator.publish(root, dry_run=True)

    assert results == {
        root / "dist-npm": True,
        root / "dist-libs" / "a" / "npm": True,
        root / "dist-libs" / "b" / "npm": True,
        root / "dist-jsr": True,
        # Never built, so there is nothing to publish.
        root / "dist-libs" / "a" / "jsr": False,
    }
    assert [call["cwd"] for call in runner.calls] == [
        root / "dist-npm",
        root / "dist-libs" / "a" / "npm",
        root / "dist-libs" / "b" / "npm",
        root / "dist-jsr",
    ]
    assert runner.calls[0]["args"] == ["npm", "publish", "--access", "public", "--dry-run"]
    assert runner.calls[-1]["args"] == ["npx", "jsr", "publish", "--dry-run", "--allow-dirty"]


def test_publish_rejects_unknown_registry(repo_builder, orchestrator) -> None:
    with pytest.raises(ConfigError, match="Registry 'pypi' is not configured or disabled"):
        orchestrator.publish(repo_builder.path(), registries=["pypi"])


def test_unknown_loader_is_a_config_error(repo_builder, orchestrator) -> None:
    root = _seed_package(repo_builder)
    repo_builder.write_config("transform:\n  loaders: [js, vue]\n")

    with pytest.raises(ConfigError, match="Unknown loaders requested: vue"):
        orchestrator.build(root)


def test_build_libraries_rejects_unknown_link_mode(repo_builder, orchestrator) -> None:
    root = _seed_libraries(repo_builder)

    with pytest.raises(ConfigError, match="Invalid value 'symlink' for 'overrides.link.mode'"):
        orchestrator.build_libraries(root, overrides={"link": {"mode": "symlink"}})

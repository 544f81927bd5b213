from __future__ import annotations

import json
import subprocess
from pathlib import Path

import pytest

from distforge.publish import (
    JsrManifestWriter,
    NpmManifestWriter,
    PackageMetadata,
    Publisher,
    filter_dependencies,
)
from tests._fixtures.fakes import RecordingRunner


def test_filter_dependencies_keeps_used_packages() -> None:
    declared = {"picocolors": "^1.0.0", "@scope/tool": "^2.0.0", "left-pad": "^1.3.0"}

    assert filter_dependencies(declared, ["picocolors", "@scope/tool/sub"]) == {
        "picocolors": "^1.0.0",
        "@scope/tool": "^2.0.0",
    }
    assert filter_dependencies(declared, [], keep=True) == declared


def test_npm_manifest_writer(tmp_path: Path) -> None:
    metadata = PackageMetadata(
        name="@org/a",
        version="1.2.3",
        description="Tools",
        license="MIT",
        main="bin/index.js",
        types="bin/index.d.ts",
        bin={"a": "./bin/cli.js"},
        dependencies={"zod": "^3.0.0", "@org/b": "^1.2.3"},
    )

    path = NpmManifestWriter().write(tmp_path / "pkg", metadata)

    manifest = json.loads(path.read_text(encoding="utf-8"))
    assert path == tmp_path / "pkg" / "package.json"
    assert manifest["type"] == "module"
    assert manifest["main"] == "./bin/index.js"
    assert manifest["exports"] == {".": {"types": "./bin/index.d.ts", "import": "./bin/index.js"}}
    assert manifest["bin"] == {"a": "./bin/cli.js"}
    assert list(manifest["dependencies"]) == ["@org/b", "zod"]


def test_npm_manifest_omits_empty_fields() -> None:
    manifest = NpmManifestWriter().render(PackageMetadata(name="demo"))

    assert "types" not in manifest
    assert "dependencies" not in manifest
    assert "description" not in manifest
    assert manifest["exports"] == {".": {"import": "./bin/main.js"}}


def test_jsr_manifest_writer(tmp_path: Path) -> None:
    path = JsrManifestWriter().write(
        tmp_path, PackageMetadata(name="@org/a", version="0.1.0", main="./bin/mod.ts", license="MIT")
    )

    assert json.loads(path.read_text(encoding="utf-8")) == {
        "name": "@org/a",
        "version": "0.1.0",
        "exports": "./bin/mod.ts",
        "license": "MIT",
    }


def test_publisher_runs_registry_command(tmp_path: Path) -> None:
    runner = RecordingRunner()
    publisher = Publisher(runner=runner)

    assert publisher.publish(tmp_path, "npm") is True
    assert publisher.publish(tmp_path, "jsr", dry_run=True) is True

    assert runner.calls[0]["args"] == ["npm", "publish", "--access", "public"]
    assert runner.calls[0]["cwd"] == tmp_path
    assert runner.calls[1]["args"] == ["npx", "jsr", "publish", "--dry-run", "--allow-dirty"]


def test_publisher_reports_failures(tmp_path: Path) -> None:
    failing = Publisher(runner=RecordingRunner(error=subprocess.CalledProcessError(1, ["npm"])))
    missing_tool = Publisher(runner=RecordingRunner(error=FileNotFoundError("npx")))
    untouched = RecordingRunner()

    assert failing.publish(tmp_path, "npm") is False
    assert missing_tool.publish(tmp_path, "jsr") is False
    assert Publisher(runner=untouched).publish(tmp_path / "missing", "npm") is False
    assert untouched.calls == []


def test_publisher_rejects_unknown_registry(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="Unknown registry 'pypi'"):
        Publisher(runner=RecordingRunner()).publish(tmp_path, "pypi")

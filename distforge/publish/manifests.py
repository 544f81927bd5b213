"""Registry-specific manifest writers."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, Mapping, Optional, Protocol

from ..package_json import package_name


@dataclass
class PackageMetadata:
    """Common package metadata shared by every registry manifest."""

    name: str
    version: str = "0.0.0"
    description: Optional[str] = None
    license: Optional[str] = None
    main: str = "bin/main.js"
    types: Optional[str] = None
    bin: Dict[str, str] = field(default_factory=dict)
    dependencies: Dict[str, str] = field(default_factory=dict)


class ManifestWriter(Protocol):
    filename: str

    def write(self, out_dir: Path, metadata: PackageMetadata) -> Path:
        ...


def filter_dependencies(
    declared: Mapping[str, str], used: Iterable[str], *, keep: bool = False
) -> Dict[str, str]:
    """Keep only runtime dependencies whose package is actually imported."""
    if keep:
        return dict(declared)
    used_packages = {package_name(specifier) for specifier in used}
    return {name: version for name, version in declared.items() if name in used_packages}


def _dot_slash(path: str) -> str:
    return path if path.startswith("./") else f"./{path}"


def _write_json(path: Path, data: Mapping[str, object]) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2) + "\n", encoding="utf-8")
    return path


class NpmManifestWriter:
    filename = "package.json"

    def render(self, metadata: PackageMetadata) -> Dict[str, object]:
        main = _dot_slash(metadata.main)
        export: Dict[str, str] = {}
        if metadata.types:
            export["types"] = _dot_slash(metadata.types)
        export["import"] = main
        manifest: Dict[str, object] = {
            "name": metadata.name,
            "version": metadata.version,
        }
        if metadata.description:
            manifest["description"] = metadata.description
        if metadata.license:
            manifest["license"] = metadata.license
        manifest["type"] = "module"
        manifest["main"] = main
        manifest["module"] = main
        if metadata.types:
            manifest["types"] = export["types"]
        manifest["exports"] = {".": export}
        if metadata.bin:
            manifest["bin"] = dict(metadata.bin)
        manifest["files"] = ["bin", "package.json", "README.md", "LICENSE"]
        if metadata.dependencies:
            manifest["dependencies"] = dict(sorted(metadata.dependencies.items()))
        return manifest

    def write(self, out_dir: Path, metadata: PackageMetadata) -> Path:
        return _write_json(out_dir / self.filename, self.render(metadata))


class JsrManifestWriter:
    filename = "jsr.json"

    def render(self, metadata: PackageMetadata) -> Dict[str, object]:
        main = _dot_slash(metadata.main)
        manifest: Dict[str, object] = {
            "name": metadata.name,
            "version": metadata.version,
            "exports": main,
        }
        if metadata.license:
            manifest["license"] = metadata.license
        return manifest

    def write(self, out_dir: Path, metadata: PackageMetadata) -> Path:
        return _write_json(out_dir / self.filename, self.render(metadata))


MANIFEST_WRITERS: Dict[str, ManifestWriter] = {
    "npm": NpmManifestWriter(),
    "jsr": JsrManifestWriter(),
}


__all__ = [
    "JsrManifestWriter",
    "MANIFEST_WRITERS",
    "ManifestWriter",
    "NpmManifestWriter",
    "PackageMetadata",
    "filter_dependencies",
]

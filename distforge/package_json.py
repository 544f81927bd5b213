"""Helpers for reading package.json metadata and inferring externals."""

from __future__ import annotations

import json
import re
from fnmatch import fnmatchcase
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Tuple

_NODE_BUILTIN_NAMES = (
    "assert",
    "assert/strict",
    "async_hooks",
    "buffer",
    "child_process",
    "cluster",
    "console",
    "constants",
    "crypto",
    "dgram",
    "diagnostics_channel",
    "dns",
    "dns/promises",
    "domain",
    "events",
    "fs",
    "fs/promises",
    "http",
    "http2",
    "https",
    "inspector",
    "module",
    "net",
    "os",
    "path",
    "path/posix",
    "path/win32",
    "perf_hooks",
    "process",
    "punycode",
    "querystring",
    "readline",
    "readline/promises",
    "repl",
    "stream",
    "stream/consumers",
    "stream/promises",
    "stream/web",
    "string_decoder",
    "sys",
    "timers",
    "timers/promises",
    "tls",
    "trace_events",
    "tty",
    "url",
    "util",
    "util/types",
    "v8",
    "vm",
    "wasi",
    "worker_threads",
    "zlib",
)

NODE_BUILTINS: Tuple[str, ...] = _NODE_BUILTIN_NAMES + tuple(
    f"node:{name}" for name in _NODE_BUILTIN_NAMES
)

_DEPENDENCY_KEYS = ("dependencies", "peerDependencies", "devDependencies", "optionalDependencies")


def load_package_json(root: Path) -> Dict[str, object]:
    """Return the parsed package.json contents or an empty dict."""
    package_json = root / "package.json"
    if not package_json.exists():
        return {}
    try:
        data = json.loads(package_json.read_text(encoding="utf-8"))
    except json.JSONDecodeError:
        return {}
    if isinstance(data, dict):
        return data
    return {}


def dependency_names(pkg: Mapping[str, object], key: str) -> List[str]:
    """Return the declared dependency names under ``key`` in declaration order."""
    deps = pkg.get(key, {})
    if isinstance(deps, dict):
        return [str(name) for name in deps.keys()]
    return []


def dependency_map(pkg: Mapping[str, object], key: str) -> Dict[str, str]:
    deps = pkg.get(key, {})
    if isinstance(deps, dict):
        return {str(name): str(version) for name, version in deps.items()}
    return {}


def package_name(module_id: str) -> str:
    """Return the installable package portion of a bare module specifier."""
    parts = module_id.split("/")
    if parts[0].startswith("@"):
        return f"{parts[0]}/{parts[1] if len(parts) > 1 else ''}"
    return parts[0]


def is_builtin(module_id: str) -> bool:
    if module_id.startswith("node:"):
        return True
    return module_id in NODE_BUILTINS or package_name(module_id) in NODE_BUILTINS


def infer_externals(pkg: Mapping[str, object]) -> List[str]:
    """Modules expected to be resolved by the installer rather than vendored."""
    externals: List[str] = []
    externals.extend(dependency_names(pkg, "dependencies"))
    externals.extend(dependency_names(pkg, "peerDependencies"))
    externals.extend(dependency_names(pkg, "devDependencies"))
    externals.extend(dependency_names(pkg, "optionalDependencies"))

    name = pkg.get("name")
    if isinstance(name, str) and name:
        externals.append(name)
        exports = pkg.get("exports")
        if isinstance(exports, dict):
            for subpath in exports:
                if isinstance(subpath, str) and subpath.startswith("./"):
                    externals.append(f"{name}/{subpath[2:]}")

    imports = pkg.get("imports")
    if isinstance(imports, dict):
        externals.extend(key for key in imports if isinstance(key, str) and key.startswith("#"))

    return list(dict.fromkeys(externals))


def declared_dependencies(pkg: Mapping[str, object]) -> List[str]:
    """Every dependency key across runtime, peer, dev and optional dependencies."""
    names: List[str] = []
    for key in _DEPENDENCY_KEYS:
        names.extend(dependency_names(pkg, key))
    return list(dict.fromkeys(names))


def matches_external(patterns: Iterable[str], module_id: str) -> bool:
    """Return True when ``module_id`` matches any exact or ``*`` pattern."""
    for pattern in patterns:
        if "*" in pattern:
            if fnmatchcase(module_id, pattern):
                return True
        elif pattern == module_id:
            return True
    return False


def extract_export_filenames(exports: object) -> List[str]:
    """Flatten a package.json ``exports`` value into referenced file paths."""
    if not exports:
        return []
    if isinstance(exports, str):
        return [exports]
    if isinstance(exports, list):
        files: List[str] = []
        for item in exports:
            files.extend(extract_export_filenames(item))
        return files
    if isinstance(exports, dict):
        files = []
        for subpath, value in exports.items():
            if isinstance(subpath, str) and subpath.endswith(".json"):
                continue
            files.extend(extract_export_filenames(value))
        return files
    return []


def referenced_files(pkg: Mapping[str, object]) -> List[str]:
    """Entry-point files a package.json promises to ship."""
    files: List[str] = []
    bin_field = pkg.get("bin")
    if isinstance(bin_field, str):
        files.append(bin_field)
    elif isinstance(bin_field, dict):
        files.extend(str(value) for value in bin_field.values() if isinstance(value, str))
    for key in ("main", "module", "types", "typings"):
        value = pkg.get(key)
        if isinstance(value, str) and value:
            files.append(value)
    files.extend(extract_export_filenames(pkg.get("exports")))
    # Wildcard subpaths are checked up to their directory component.
    return [re.sub(r"/[^/]*\*.*$", "", item) for item in dict.fromkeys(files)]


__all__ = [
    "NODE_BUILTINS",
    "declared_dependencies",
    "dependency_map",
    "dependency_names",
    "extract_export_filenames",
    "infer_externals",
    "is_builtin",
    "load_package_json",
    "matches_external",
    "package_name",
    "referenced_files",
]

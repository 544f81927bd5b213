"""Post-build validation: dependency usage and package.json entry points."""

from __future__ import annotations

from typing import List, Set

from .context import BuildContext
from .package_json import (
    declared_dependencies,
    dependency_names,
    is_builtin,
    matches_external,
    package_name,
    referenced_files,
)


def validate_dependencies(ctx: BuildContext) -> None:
    """Warn about declared-but-unused and used-but-undeclared dependencies."""
    pkg = ctx.pkg
    unused: List[str] = dependency_names(pkg, "dependencies")
    declared = set(declared_dependencies(pkg))
    ignored = set(ctx.options.dependencies)

    used_packages: Set[str] = set()
    implicit: Set[str] = set()
    for specifier in sorted(ctx.used_imports):
        name = package_name(specifier)
        used_packages.add(name)
        if is_builtin(specifier) or specifier.startswith("chunks/"):
            continue
        if name in declared or name in ignored:
            continue
        if matches_external(ctx.options.externals, specifier) or matches_external(
            ctx.options.externals, name
        ):
            continue
        implicit.add(specifier)

    unused = [name for name in unused if name not in used_packages and name not in ignored]
    if unused:
        ctx.warn("Potential unused dependencies found: " + ", ".join(unused))
    if implicit:
        ctx.warn("Potential implicit dependencies found: " + ", ".join(sorted(implicit)))


def validate_package(ctx: BuildContext) -> None:
    """Warn about package.json entry points missing from disk."""
    root = ctx.options.root_dir
    missing = [
        path
        for path in referenced_files(ctx.pkg)
        if path and not (root / path).exists()
    ]
    if missing:
        ctx.warn("Potential missing package.json files: " + ", ".join(missing))


__all__ = ["validate_dependencies", "validate_package"]

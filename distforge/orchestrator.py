"""Pipeline orchestration for build, library and publish flows."""

from __future__ import annotations

import asyncio
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from .builders import plan_tasks
from .builders.bundle import Bundler
from .concurrency import gather_or_cancel, run_sync
from .config import BuildConfig, EntryConfig, LibraryConfig, RegistryConfig, load_config
from .context import BuildContext, BuildOptions, Toolchain
from .errors import BuildError, ConfigError, EntryError
from .files import IGNORED_DIRS, is_within, iter_files, remove_path
from .hooks import Hook, HookRegistry, HookStage
from .linker import LinkMode, OutputRoot, find_main_file, link
from .logging import get_logger
from .models import BuildEntry, BuilderKind, LibraryDescriptor, ManifestEntry
from .package_json import (
    NODE_BUILTINS,
    dependency_map,
    infer_externals,
    load_package_json,
    package_name,
)
from .publish import MANIFEST_WRITERS, PackageMetadata, Publisher, filter_dependencies
from .report import render_report
from .transform.declarations import DeclarationExtractor, TscDeclarationExtractor
from .transform.specifiers import find_bare_imports
from .transform.transpile import EsbuildTranspiler, Transpiler
from .validate import validate_dependencies, validate_package

_SOURCE_EXT_RE = re.compile(r"\.(?:[cm]?[jt]sx?|json|ya?ml)$")
_CODE_EXT_RE = re.compile(r"\.(?:[cm]?[jt]s|[jt]sx)$")


@dataclass
class RegistryTarget:
    """One registry-specific output tree and the package it describes."""

    registry: str
    out_dir: Path
    package_name: str
    main_file: Path
    source_dir: Path
    description: Optional[str] = None
    keep_dependencies: bool = False
    library: Optional[LibraryDescriptor] = None

    @property
    def package_dir(self) -> Path:
        return self.out_dir.parent


@dataclass
class LibraryBuildResult:
    """Outcome of building and linking every configured library."""

    context: Optional[BuildContext] = None
    roots: List[OutputRoot] = field(default_factory=list)
    modified: List[Path] = field(default_factory=list)
    copied: Dict[Path, Path] = field(default_factory=dict)
    manifests: List[Path] = field(default_factory=list)

    @property
    def warnings(self) -> List[str]:
        return self.context.warnings if self.context else []


def infer_entry_name(input_path: str) -> str:
    """Derive an entry name from its input path (``./src/cli.ts`` -> ``cli``)."""
    name = input_path.replace(os.sep, "/")
    if name.startswith("./"):
        name = name[2:]
    if name.startswith("src/"):
        name = name[4:]
    name = name.rstrip("/")
    return _SOURCE_EXT_RE.sub("", name) or "index"


def normalize_entry(
    raw: EntryConfig, *, root_dir: Path, out_dir: Path, declaration: bool
) -> BuildEntry:
    """Turn a configured entry into an absolute, fully-populated build entry."""
    if not raw.input:
        raise EntryError(f"Missing entry input: {raw}")
    if raw.builder:
        try:
            builder = BuilderKind.parse(raw.builder)
        except ValueError as exc:
            raise EntryError(str(exc)) from None
    elif raw.input.endswith("/"):
        builder = BuilderKind.MIRROR
    else:
        builder = BuilderKind.TRANSFORM

    if Path(raw.input).is_absolute():
        try:
            relative_input = Path(raw.input).relative_to(root_dir).as_posix()
        except ValueError:
            relative_input = raw.input
    else:
        relative_input = raw.input
    return BuildEntry(
        builder=builder,
        input=(root_dir / raw.input).resolve(),
        out_dir=(root_dir / raw.out_dir).resolve() if raw.out_dir else out_dir,
        name=raw.name or infer_entry_name(relative_input),
        declaration=declaration if raw.declaration is None else raw.declaration,
        pattern=raw.pattern,
        ext=raw.ext,
    )


def clean_dirs(dirs: Iterable[Path], root_dir: Path) -> List[Path]:
    """Directories safe to wipe: never the root, its ancestors or nested duplicates."""
    cleaned: List[Path] = []
    for directory in sorted({Path(item).resolve() for item in dirs}):
        if directory == root_dir or is_within(root_dir, directory):
            continue
        if any(is_within(directory, parent) for parent in cleaned):
            continue
        cleaned.append(directory)
    return cleaned


def enabled_registries(config: BuildConfig) -> Dict[str, RegistryConfig]:
    return {
        name: registry
        for name, registry in (config.registries or {}).items()
        if registry.enabled is not False
    }


class Orchestrator:
    """Coordinates build, library and publish pipelines."""

    def __init__(
        self,
        transpiler: Transpiler | None = None,
        declaration_extractor: DeclarationExtractor | None = None,
        bundler: Bundler | None = None,
        publisher: Publisher | None = None,
        hooks: HookRegistry | None = None,
    ) -> None:
        self.transpiler = transpiler
        self.declaration_extractor = declaration_extractor
        self.bundler = bundler
        self.publisher = publisher or Publisher()
        self.hooks = hooks or HookRegistry()
        self.logger = get_logger("orchestrator")

    def on(self, stage: HookStage, callback: Hook) -> None:
        self.hooks.register(stage, callback)

    # ------------------------------------------------------------------
    # Build

    def build(
        self,
        root_dir: Path,
        *,
        stub: bool = False,
        overrides: Optional[Mapping[str, Any]] = None,
    ) -> BuildContext:
        """Run every configured entry through its backend and validate the result."""
        return run_sync(self.build_async(root_dir, stub=stub, overrides=overrides))

    async def build_async(
        self,
        root_dir: Path,
        *,
        stub: bool = False,
        overrides: Optional[Mapping[str, Any]] = None,
    ) -> BuildContext:
        root = Path(root_dir).expanduser().resolve()
        config = load_config(root, overrides)
        pkg = load_package_json(root)

        targets: List[RegistryTarget] = []
        if config.entries:
            entries = self._configured_entries(root, config, pkg)
        else:
            entries, targets = self._registry_entries(root, config, pkg)

        ctx = self._create_context(root, config, pkg, entries, stub=stub)
        self.logger.info("Building %s (%d entries)", pkg.get("name") or root.name, len(entries))
        ctx.hooks.call(HookStage.BUILD_PREPARE, ctx)

        await self._run_entries(ctx)

        if stub:
            ctx.hooks.call(HookStage.BUILD_DONE, ctx)
            return ctx

        for target in targets:
            self._write_manifest(ctx, target, pkg, siblings=())
        self._collect_chunks(ctx)
        validate_dependencies(ctx)
        validate_package(ctx)
        self.logger.info(render_report(ctx.manifest, name=str(pkg.get("name") or root.name)))
        ctx.hooks.call(HookStage.BUILD_DONE, ctx)

        if ctx.options.fail_on_warn and ctx.warnings:
            details = "\n".join(f"- {warning}" for warning in ctx.warnings)
            raise BuildError(
                f"Build finished with {len(ctx.warnings)} warning(s):\n{details}",
                warnings=ctx.warnings,
            )
        return ctx

    def _configured_entries(
        self, root: Path, config: BuildConfig, pkg: Mapping[str, Any]
    ) -> List[BuildEntry]:
        out_dir = (root / (config.out_dir or "dist")).resolve()
        declaration = self._declaration_default(config, pkg)
        return [
            normalize_entry(raw, root_dir=root, out_dir=out_dir, declaration=declaration)
            for raw in config.entries or []
        ]

    def _registry_entries(
        self, root: Path, config: BuildConfig, pkg: Mapping[str, Any]
    ) -> Tuple[List[BuildEntry], List[RegistryTarget]]:
        source_dir = (root / (config.entry_src_dir or "src")).resolve()
        main_file = find_main_file(source_dir) or source_dir / "index.ts"
        entries: List[BuildEntry] = []
        targets: List[RegistryTarget] = []
        for name, registry in enabled_registries(config).items():
            out_dir = (root / (registry.dist_dir or f"dist-{name}") / "bin").resolve()
            entry = BuildEntry(
                builder=BuilderKind.MIRROR,
                input=source_dir,
                out_dir=out_dir,
                name=name,
                declaration=bool(registry.declaration),
                ext=registry.ext,
                transpile=registry.transpile is not False,
            )
            entries.append(entry)
            targets.append(
                RegistryTarget(
                    registry=name,
                    out_dir=out_dir,
                    package_name=str(pkg.get("name") or root.name),
                    main_file=main_file,
                    source_dir=source_dir,
                    description=pkg.get("description"),
                )
            )
        return entries, targets

    @staticmethod
    def _declaration_default(config: BuildConfig, pkg: Mapping[str, Any]) -> bool:
        if config.declaration is not None:
            return config.declaration
        return bool(pkg.get("types") or pkg.get("typings"))

    def _create_context(
        self,
        root: Path,
        config: BuildConfig,
        pkg: Mapping[str, Any],
        entries: Sequence[BuildEntry],
        *,
        stub: bool,
        fail_on_warn: Optional[bool] = None,
    ) -> BuildContext:
        externals: List[str] = []
        for name in [*NODE_BUILTINS, *infer_externals(pkg), *(config.externals or [])]:
            if name not in externals:
                externals.append(name)

        transform = config.transform
        options = BuildOptions(
            root_dir=root,
            out_dir=(root / (config.out_dir or "dist")).resolve(),
            entries=tuple(entries),
            externals=tuple(externals),
            clean=bool(config.clean),
            parallel=bool(config.parallel),
            fail_on_warn=bool(config.fail_on_warn) if fail_on_warn is None else fail_on_warn,
            declaration=self._declaration_default(config, pkg),
            stub=stub,
            transform=transform,
            bundle=config.bundle,
            dependencies=tuple(config.dependencies or ()),
            concurrency=(transform.concurrency if transform else None) or 16,
        )
        toolchain = Toolchain(
            transpiler=self.transpiler or EsbuildTranspiler(),
            declaration_extractor=self.declaration_extractor or TscDeclarationExtractor(),
            bundler=self.bundler,
        )
        return BuildContext(options=options, pkg=dict(pkg), hooks=self.hooks, toolchain=toolchain)

    async def _run_entries(self, ctx: BuildContext) -> None:
        options = ctx.options
        if options.clean:
            for directory in clean_dirs((entry.out_dir for entry in options.entries), options.root_dir):
                self.logger.info("Cleaning %s", ctx.relative(directory))
                await asyncio.to_thread(remove_path, directory)
                await asyncio.to_thread(directory.mkdir, parents=True, exist_ok=True)

        ctx.hooks.call(HookStage.BUILD_BEFORE, ctx)
        tasks = plan_tasks(options.entries)
        try:
            if options.parallel:
                await gather_or_cancel(task(ctx, entries) for task, entries in tasks)
            else:
                for task, entries in tasks:
                    await task(ctx, entries)
        except BuildError as exc:
            if ctx.warnings and not exc.warnings:
                exc.warnings = list(ctx.warnings)
            raise

    def _collect_chunks(self, ctx: BuildContext) -> None:
        """Record every on-disk output the backends did not already report."""
        options = ctx.options
        directories = {options.out_dir, *(entry.out_dir for entry in options.entries)}
        seen: Set[str] = set()
        for directory in sorted(directories):
            if not directory.is_dir():
                continue
            for relative in iter_files(directory, ["**"], ignored_dirs=IGNORED_DIRS):
                path = ctx.relative(directory / relative)
                if path in seen:
                    continue
                seen.add(path)
                if ctx.manifest.find(path) is None:
                    ctx.manifest.add(ManifestEntry(path=path, chunk=True))

        root = options.root_dir
        for entry in ctx.manifest.entries:
            if entry.bytes is None:
                target = root / entry.path
                if target.is_file():
                    entry.bytes = target.stat().st_size

    # ------------------------------------------------------------------
    # Libraries

    def build_libraries(
        self, root_dir: Path, *, overrides: Optional[Mapping[str, Any]] = None
    ) -> LibraryBuildResult:
        """Build each sibling library per registry, then link the produced trees."""
        return run_sync(self.build_libraries_async(root_dir, overrides=overrides))

    async def build_libraries_async(
        self, root_dir: Path, *, overrides: Optional[Mapping[str, Any]] = None
    ) -> LibraryBuildResult:
        root = Path(root_dir).expanduser().resolve()
        config = load_config(root, overrides)
        pkg = load_package_json(root)
        targets = self._library_targets(root, config)
        if not targets:
            self.logger.warning("No libraries configured in %s", root)
            return LibraryBuildResult()

        entries = [
            BuildEntry(
                builder=BuilderKind.MIRROR,
                input=target.source_dir,
                out_dir=target.out_dir,
                name=f"{target.package_name} ({target.registry})",
                declaration=bool(config.registries[target.registry].declaration),
                is_lib=True,
                ext=config.registries[target.registry].ext,
                transpile=config.registries[target.registry].transpile is not False,
            )
            for target in targets
        ]
        ctx = self._create_context(root, config, pkg, entries, stub=False, fail_on_warn=False)
        ctx.hooks.call(HookStage.BUILD_PREPARE, ctx)
        for target in targets:
            await asyncio.to_thread(remove_path, target.out_dir)
        await self._run_entries(ctx)

        roots = [
            OutputRoot(target.library, target.out_dir, target.registry)
            for target in targets
            if target.library is not None
        ]
        descriptors = list({root.library.package_name: root.library for root in roots}.values())
        link_config = config.link
        outcome = await link(
            roots,
            link_config.alias or "~",
            descriptors,
            root_dir=root,
            alias_root=link_config.alias_root or "src",
            side_dir=link_config.side_dir or "addons",
            mode=LinkMode(link_config.mode or LinkMode.PACKAGE.value),
            copies_dir=root / (config.libs_dist_dir or "dist-libs"),
            concurrency=ctx.options.concurrency,
        )
        for warning in outcome.warnings:
            ctx.warn(warning)

        manifests: List[Path] = []
        for target in targets:
            written = self._write_manifest(ctx, target, pkg, siblings=descriptors)
            if written is not None:
                manifests.append(written)

        self._collect_chunks(ctx)
        self.logger.info(render_report(ctx.manifest, name=str(pkg.get("name") or root.name)))
        result = LibraryBuildResult(
            context=ctx,
            roots=roots,
            modified=list(outcome.modified),
            copied=dict(outcome.copied),
            manifests=manifests,
        )
        ctx.hooks.call(HookStage.LINK_DONE, ctx, result)
        return result

    def _library_targets(self, root: Path, config: BuildConfig) -> List[RegistryTarget]:
        registries = enabled_registries(config)
        libs_dist = root / (config.libs_dist_dir or "dist-libs")
        src_dir = config.entry_src_dir or "src"
        targets: List[RegistryTarget] = []
        for name, library in (config.libraries or {}).items():
            descriptor = self._library_descriptor(root, src_dir, name, library)
            for registry in library.registries or list(registries):
                if registry not in (config.registries or {}):
                    raise ConfigError(f"Library '{name}' targets unknown registry '{registry}'")
                targets.append(
                    RegistryTarget(
                        registry=registry,
                        out_dir=(libs_dist / descriptor.short_name / registry / "bin").resolve(),
                        package_name=name,
                        main_file=descriptor.main_file,
                        source_dir=descriptor.source_dir,
                        description=library.description,
                        keep_dependencies=bool(library.keep_dependencies),
                        library=descriptor,
                    )
                )
        return targets

    @staticmethod
    def _library_descriptor(
        root: Path, src_dir: str, name: str, library: LibraryConfig
    ) -> LibraryDescriptor:
        short_name = name.split("/")[-1]
        source_dir = (root / (library.source_dir or f"{src_dir}/libs/{short_name}")).resolve()
        if library.main:
            main_file = (source_dir / library.main).resolve()
        else:
            main_file = find_main_file(source_dir) or source_dir / "index.ts"
        return LibraryDescriptor(package_name=name, main_file=main_file, source_dir=source_dir)

    def _write_manifest(
        self,
        ctx: BuildContext,
        target: RegistryTarget,
        pkg: Mapping[str, Any],
        *,
        siblings: Sequence[LibraryDescriptor],
    ) -> Optional[Path]:
        writer = MANIFEST_WRITERS.get(target.registry)
        if writer is None:
            self.logger.debug("No manifest writer for registry %s", target.registry)
            return None
        if not target.out_dir.is_dir():
            return None

        entry = next(e for e in ctx.options.entries if e.out_dir == target.out_dir)
        used = _scan_bare_imports(target.out_dir)
        version = str(pkg.get("version") or "0.0.0")
        dependencies = filter_dependencies(
            dependency_map(pkg, "dependencies"), used, keep=target.keep_dependencies
        )
        used_packages = {package_name(specifier) for specifier in used}
        for sibling in siblings:
            if sibling.package_name != target.package_name and sibling.package_name in used_packages:
                dependencies[sibling.package_name] = f"^{version}"

        main = _built_main(target, entry)
        types = None
        if entry.declaration:
            types = _CODE_EXT_RE.sub(".d.ts", main)
        metadata = PackageMetadata(
            name=target.package_name,
            version=version,
            description=target.description,
            license=pkg.get("license"),
            main=main,
            types=types,
            dependencies=dependencies,
        )
        path = writer.write(target.package_dir, metadata)
        self.logger.info("Wrote %s", ctx.relative(path))
        return path

    # ------------------------------------------------------------------
    # Publish

    def publish(
        self,
        root_dir: Path,
        *,
        registries: Optional[Sequence[str]] = None,
        dry_run: bool = False,
        overrides: Optional[Mapping[str, Any]] = None,
    ) -> Dict[Path, bool]:
        """Publish the main package and every library for each selected registry."""
        root = Path(root_dir).expanduser().resolve()
        config = load_config(root, overrides)
        available = enabled_registries(config)
        selected = list(registries) if registries else list(available)
        for name in selected:
            if name not in available:
                raise ConfigError(f"Registry '{name}' is not configured or disabled")

        results: Dict[Path, bool] = {}
        for name in selected:
            registry = available[name]
            directory = root / (registry.dist_dir or f"dist-{name}")
            results[directory] = self.publisher.publish(directory, name, dry_run=dry_run)
            libs_dist = root / (config.libs_dist_dir or "dist-libs")
            for library_name, library in (config.libraries or {}).items():
                if library.registries and name not in library.registries:
                    continue
                directory = libs_dist / library_name.split("/")[-1] / name
                results[directory] = self.publisher.publish(directory, name, dry_run=dry_run)
        return results


def _scan_bare_imports(directory: Path) -> Set[str]:
    used: Set[str] = set()
    for relative in iter_files(directory, ["**"]):
        if not _CODE_EXT_RE.search(relative):
            continue
        contents = (directory / relative).read_text(encoding="utf-8")
        used.update(find_bare_imports(contents))
    return used


def _built_main(target: RegistryTarget, entry: BuildEntry) -> str:
    try:
        relative = target.main_file.relative_to(target.source_dir).as_posix()
    except ValueError:
        relative = target.main_file.name
    if entry.ext and entry.transpile:
        relative = _CODE_EXT_RE.sub("." + entry.ext.lstrip("."), relative)
    return f"{target.out_dir.name}/{relative}"


__all__ = [
    "LibraryBuildResult",
    "Orchestrator",
    "RegistryTarget",
    "clean_dirs",
    "enabled_registries",
    "infer_entry_name",
    "normalize_entry",
]

"""Plugin-bundle backend: hands a resolved entry to a pluggable bundler."""

from __future__ import annotations

import asyncio
import subprocess
from dataclasses import dataclass, field
from importlib import metadata
from pathlib import Path
from typing import Callable, Iterable, List, Protocol, Sequence

from ..context import BuildContext
from ..errors import BuildError, ConfigError, EntryError
from ..hooks import HookStage
from ..logging import get_logger
from ..models import BuildEntry, ManifestEntry
from ..transform.specifiers import find_bare_imports, find_exports
from .stub import write_reexport_stub

_LOGGER = get_logger("builders.bundle")

_ENTRY_POINT_GROUP = "distforge.bundlers"

CommandRunner = Callable[..., str]


@dataclass(frozen=True)
class BundleRequest:
    entry_point: Path
    out_file: Path
    format: str = "esm"
    externals: Sequence[str] = field(default_factory=tuple)
    minify: bool = False
    sourcemap: bool = False
    target: str = "es2020"


class Bundler(Protocol):
    async def bundle(self, request: BundleRequest) -> List[Path]:
        ...


class EsbuildBundler:
    """Bundles one entry with the ``esbuild`` CLI."""

    def __init__(self, runner: CommandRunner | None = None, *, executable: str = "esbuild") -> None:
        self._runner = runner or self._default_runner
        self.executable = executable

    def command(self, request: BundleRequest) -> List[str]:
        args = [
            self.executable,
            str(request.entry_point),
            "--bundle",
            f"--outfile={request.out_file}",
            f"--format={request.format}",
            "--platform=node",
            f"--target={request.target}",
        ]
        args.extend(f"--external:{name}" for name in request.externals)
        if request.minify:
            args.append("--minify")
        if request.sourcemap:
            args.append("--sourcemap")
        return args

    async def bundle(self, request: BundleRequest) -> List[Path]:
        request.out_file.parent.mkdir(parents=True, exist_ok=True)
        args = self.command(request)
        _LOGGER.debug("Running %s", " ".join(args))
        await asyncio.to_thread(self._runner, args, cwd=request.entry_point.parent)
        produced = [request.out_file]
        if request.sourcemap:
            produced.append(request.out_file.with_name(request.out_file.name + ".map"))
        return [path for path in produced if path.exists()]

    @staticmethod
    def _default_runner(args: Iterable[str], *, cwd: Path) -> str:
        try:
            completed = subprocess.run(
                list(args),
                cwd=str(cwd),
                check=True,
                text=True,
                capture_output=True,
            )
        except FileNotFoundError as exc:
            raise BuildError(f"Bundler executable not found: {exc.filename}") from exc
        except subprocess.CalledProcessError as exc:
            raise BuildError(f"Bundling failed:\n{exc.stderr.strip()}") from exc
        return completed.stdout


def resolve_bundler(name: str) -> Bundler:
    """Return the bundler registered as ``name``."""
    if name == "esbuild":
        return EsbuildBundler()
    for entry in _iter_entry_points():
        if entry.name != name:
            continue
        try:
            loaded = entry.load()
        except Exception as exc:  # pragma: no cover - defensive guard
            raise RuntimeError(f"Failed to load bundler entry point '{name}': {exc}") from exc
        instance = loaded() if isinstance(loaded, type) else loaded
        if not hasattr(instance, "bundle"):
            raise TypeError(f"Bundler entry point '{name}' does not provide a bundle() method")
        return instance
    raise ConfigError(f"Unknown bundler requested: {name}")


def _iter_entry_points() -> Iterable[metadata.EntryPoint]:
    try:
        entry_points = metadata.entry_points()
    except Exception:  # pragma: no cover - defensive guard
        return []
    return entry_points.select(group=_ENTRY_POINT_GROUP)


async def bundle_build(ctx: BuildContext, entries: Sequence[BuildEntry]) -> None:
    ctx.hooks.call(HookStage.BUNDLE_ENTRIES, ctx, list(entries))
    settings = ctx.options.bundle
    ext = ctx.options.transform.ext or "mjs"
    for entry in entries:
        if not entry.input.is_file():
            raise EntryError(f"Bundle entry '{entry.name}' input is not a file: {entry.input}")

        entry_ext = entry.ext or ext
        if ctx.options.stub:
            await asyncio.to_thread(write_reexport_stub, entry, entry_ext)
            continue

        bundler = ctx.toolchain.bundler or resolve_bundler(settings.bundler or "esbuild")
        entry_ext = entry_ext if entry_ext.startswith(".") else f".{entry_ext}"
        request = BundleRequest(
            entry_point=entry.input,
            out_file=entry.out_dir / f"{entry.name}{entry_ext}",
            format="cjs" if ctx.options.transform.format == "cjs" else "esm",
            externals=tuple(ctx.options.externals),
            minify=bool(settings.minify),
            sourcemap=bool(settings.sourcemap),
            target=settings.target or "es2020",
        )
        produced = await bundler.bundle(request)
        ctx.written.extend(produced)

        for path in produced:
            if path == request.out_file:
                contents = path.read_text(encoding="utf-8")
                ctx.used_imports.update(find_bare_imports(contents))
                ctx.manifest.add(
                    ManifestEntry(
                        path=ctx.relative(path),
                        bytes=path.stat().st_size,
                        exports=find_exports(contents),
                        is_lib=entry.is_lib,
                    )
                )
        _LOGGER.info("Bundled %s", ctx.relative(request.out_file))
    ctx.hooks.call(HookStage.BUNDLE_DONE, ctx)


__all__ = ["BundleRequest", "Bundler", "EsbuildBundler", "bundle_build", "resolve_bundler"]

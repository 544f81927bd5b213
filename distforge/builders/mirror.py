"""Transformer-backed builders for directory and single-file entries."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Iterator, Sequence, Tuple

from ..context import BuildContext
from ..errors import EntryError
from ..files import remove_path, symlink
from ..hooks import HookStage
from ..logging import get_logger
from ..models import BuildEntry, BuilderKind, ManifestEntry
from ..transform.make import TransformOptions, TransformResult, transform
from ..transform.specifiers import find_exports
from .stub import write_reexport_stub

_LOGGER = get_logger("builders.mirror")


def transform_options(ctx: BuildContext, entry: BuildEntry) -> TransformOptions:
    """Translate one entry plus the build-wide transform settings."""
    settings = ctx.options.transform
    if entry.builder is BuilderKind.MIRROR:
        src_dir = entry.input
        pattern = [entry.pattern] if entry.pattern else list(settings.pattern or ["**"])
    else:
        src_dir = entry.input.parent
        pattern = [entry.input.name]
    return TransformOptions(
        src_dir=src_dir,
        dist_dir=entry.out_dir,
        root_dir=ctx.options.root_dir,
        pattern=pattern,
        exclude=list(settings.exclude or []),
        clean=False,
        loaders=list(settings.loaders or ["js", "json"]),
        ext=entry.ext or settings.ext,
        format=settings.format or "esm",
        declaration=entry.declaration,
        json_modules=bool(settings.json_modules),
        transpiler=ctx.toolchain.transpiler if settings.transpile and entry.transpile else None,
        declaration_extractor=ctx.toolchain.declaration_extractor,
        concurrency=ctx.options.concurrency,
    )


async def mirror_build(ctx: BuildContext, entries: Sequence[BuildEntry]) -> None:
    ctx.hooks.call(HookStage.TRANSFORM_ENTRIES, ctx, list(entries))
    for entry in entries:
        if entry.builder is BuilderKind.MIRROR and not entry.input.is_dir():
            raise EntryError(
                f"Entry '{entry.name}' requires a directory input, got file: {entry.input}"
            )

        if ctx.options.stub:
            await _stub(ctx, entry)
            continue

        result = await transform(transform_options(ctx, entry))
        _record(ctx, entry, result)
        ctx.hooks.call(HookStage.TRANSFORM_ENTRY_DONE, ctx, entry, result)
    ctx.hooks.call(HookStage.TRANSFORM_DONE, ctx)


async def _stub(ctx: BuildContext, entry: BuildEntry) -> None:
    if entry.builder is BuilderKind.MIRROR:
        await asyncio.to_thread(remove_path, entry.out_dir)
        await asyncio.to_thread(symlink, entry.input, entry.out_dir)
        _LOGGER.info("Linked %s -> %s", ctx.relative(entry.out_dir), ctx.relative(entry.input))
        return
    ext = entry.ext or ctx.options.transform.ext or "mjs"
    written = await asyncio.to_thread(write_reexport_stub, entry, ext)
    for path in written:
        ctx.manifest.add(ManifestEntry(path=ctx.relative(path), is_lib=entry.is_lib))


def _record(ctx: BuildContext, entry: BuildEntry, result: TransformResult) -> None:
    ctx.used_imports.update(result.bare_imports)
    ctx.written.extend(result.written)
    chunks = [ctx.relative(path) for path in result.written]

    if entry.builder is BuilderKind.MIRROR:
        ctx.manifest.add(
            ManifestEntry(path=ctx.relative(entry.out_dir), chunks=chunks, is_lib=entry.is_lib)
        )
    else:
        for output, path in _code_outputs(entry, result):
            ctx.manifest.add(
                ManifestEntry(
                    path=ctx.relative(path),
                    bytes=path.stat().st_size,
                    exports=find_exports(output),
                    is_lib=entry.is_lib,
                )
            )

    for failure in result.errors:
        details = "\n".join(f"  - {message}" for message in failure.errors)
        ctx.warn(f"Transform failed for `{ctx.relative(Path(failure.filename))}`:\n{details}")


def _code_outputs(entry: BuildEntry, result: TransformResult) -> Iterator[Tuple[str, Path]]:
    written = set(result.written)
    for output in result.outputs:
        if output.skip or output.declaration or output.raw:
            continue
        path = (entry.out_dir / output.path).resolve()
        if path in written:
            yield output.contents or "", path


__all__ = ["mirror_build", "transform_options"]

"""Plain file-copy builder."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import List, Sequence

from ..concurrency import gather_limited
from ..context import BuildContext
from ..errors import EntryError
from ..files import copy_file, iter_files, remove_path, symlink
from ..hooks import HookStage
from ..logging import get_logger
from ..models import BuildEntry, ManifestEntry

_LOGGER = get_logger("builders.copy")


async def copy_build(ctx: BuildContext, entries: Sequence[BuildEntry]) -> None:
    ctx.hooks.call(HookStage.COPY_ENTRIES, ctx, list(entries))
    for entry in entries:
        if not entry.input.exists():
            raise EntryError(f"Copy entry '{entry.name}' input does not exist: {entry.input}")

        if ctx.options.stub:
            target = entry.out_dir if entry.input.is_dir() else entry.out_dir / entry.input.name
            await asyncio.to_thread(remove_path, target)
            await asyncio.to_thread(symlink, entry.input, target)
            continue

        if entry.input.is_dir():
            src_dir = entry.input
            paths = await asyncio.to_thread(iter_files, src_dir, [entry.pattern or "**"], ())
        else:
            src_dir = entry.input.parent
            paths = [entry.input.name]

        async def _copy(rel: str, src_dir: Path = src_dir, entry: BuildEntry = entry) -> Path:
            target = entry.out_dir / rel
            await asyncio.to_thread(copy_file, src_dir / rel, target)
            return target

        outcomes = await gather_limited(
            paths, _copy, limit=ctx.options.concurrency, return_exceptions=True
        )
        copied: List[Path] = []
        for rel, outcome in zip(paths, outcomes):
            if isinstance(outcome, Exception):
                ctx.warn(f"Failed to copy `{rel}` for entry '{entry.name}': {outcome}")
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                copied.append(outcome)

        ctx.written.extend(copied)
        ctx.manifest.add(
            ManifestEntry(
                path=ctx.relative(entry.out_dir),
                chunks=[ctx.relative(path) for path in copied],
                is_lib=entry.is_lib,
            )
        )
        _LOGGER.info("Copied %d files to %s", len(copied), ctx.relative(entry.out_dir))
    ctx.hooks.call(HookStage.COPY_DONE, ctx)


__all__ = ["copy_build"]

"""Source-to-output transformer driving the loader pipeline over a tree."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Set, Union

from ..concurrency import DEFAULT_CONCURRENCY, gather_limited
from ..errors import OutputConflictError
from ..files import copy_file, remove_path, scan
from ..logging import get_logger
from ..models import FileErrors, InputFile, OutputFile
from .declarations import (
    DeclarationExtractor,
    TscDeclarationExtractor,
    add_relative_declaration_extensions,
)
from .loader import Loader, LoaderOptions, LoaderPipeline
from .loaders import resolve_loaders
from .specifiers import find_bare_imports, resolve_specifiers
from .transpile import Transpiler

_LOGGER = get_logger("transform")


@dataclass
class TransformOptions:
    src_dir: Path
    dist_dir: Path
    root_dir: Optional[Path] = None
    pattern: Sequence[str] = ("**",)
    exclude: Sequence[str] = ()
    clean: bool = True
    loaders: Sequence[Union[str, Loader]] = ("js", "json")
    ext: Optional[str] = None
    format: str = "esm"
    declaration: bool = False
    json_modules: bool = False
    transpiler: Optional[Transpiler] = None
    declaration_extractor: Optional[DeclarationExtractor] = None
    compiler_options: Mapping[str, Any] = field(default_factory=dict)
    add_relative_declaration_extensions: bool = False
    concurrency: int = DEFAULT_CONCURRENCY


@dataclass
class TransformResult:
    written: List[Path] = field(default_factory=list)
    errors: List[FileErrors] = field(default_factory=list)
    outputs: List[OutputFile] = field(default_factory=list)
    bare_imports: Set[str] = field(default_factory=set)


async def transform(options: TransformOptions) -> TransformResult:
    """Load, validate, resolve and write every file under ``options.src_dir``.

    All outputs are computed and checked for path conflicts before the first
    write, so a conflict leaves the distribution directory untouched beyond
    the initial clean.
    """
    root_dir = (options.root_dir or Path.cwd()).resolve()
    src_dir = (root_dir / options.src_dir).resolve()
    dist_dir = (root_dir / options.dist_dir).resolve()

    if options.clean:
        await asyncio.to_thread(remove_path, dist_dir)
    await asyncio.to_thread(dist_dir.mkdir, parents=True, exist_ok=True)

    paths = await scan(src_dir, list(options.pattern), list(options.exclude))
    files = [
        InputFile(path=path, src_path=src_dir / path, extension=Path(path).suffix)
        for path in paths
    ]
    _LOGGER.debug("Discovered %d files under %s", len(files), src_dir)

    pipeline = LoaderPipeline(
        resolve_loaders(options.loaders),
        LoaderOptions(
            ext=options.ext,
            format=options.format,
            declaration=options.declaration,
            json_modules=options.json_modules,
            transpiler=options.transpiler,
        ),
    )
    loaded = await gather_limited(files, pipeline.load_file, limit=options.concurrency)
    outputs: List[OutputFile] = [output for batch in loaded for output in batch]

    for output in outputs:
        output.normalize_path()
    _check_conflicts(outputs)

    await _attach_declarations(outputs, options)
    resolve_specifiers(outputs)

    result = TransformResult(outputs=outputs)
    for output in outputs:
        if output.skip or output.raw or output.declaration or not output.contents:
            continue
        result.bare_imports.update(find_bare_imports(output.contents))

    pending = [output for output in outputs if not output.skip]

    async def _write(output: OutputFile) -> Path:
        target = dist_dir / output.path
        if output.raw and output.src_path is not None:
            await asyncio.to_thread(copy_file, output.src_path, target)
        else:
            await asyncio.to_thread(target.parent.mkdir, parents=True, exist_ok=True)
            await asyncio.to_thread(target.write_text, output.contents or "", encoding="utf-8")
        return target

    written = await gather_limited(
        pending, _write, limit=options.concurrency, return_exceptions=True
    )
    for output, outcome in zip(pending, written):
        if isinstance(outcome, BaseException):
            if not isinstance(outcome, Exception):
                raise outcome
            output.errors.append(f"Failed to write {output.path}: {outcome}")
        else:
            result.written.append(outcome)

    for output in outputs:
        if output.errors:
            result.errors.append(
                FileErrors(filename=str(dist_dir / output.path), errors=list(output.errors))
            )
            for message in output.errors:
                _LOGGER.warning("%s: %s", output.path, message)

    _LOGGER.info("Wrote %d files to %s", len(result.written), dist_dir)
    return result


def _check_conflicts(outputs: Sequence[OutputFile]) -> None:
    seen: Dict[str, OutputFile] = {}
    for output in outputs:
        if output.skip:
            continue
        previous = seen.get(output.path)
        if previous is not None:
            raise OutputConflictError(
                output.path, str(previous.src_path or ""), str(output.src_path or "")
            )
        seen[output.path] = output


async def _attach_declarations(outputs: Sequence[OutputFile], options: TransformOptions) -> None:
    requested = [output for output in outputs if output.declaration and not output.skip]
    if not requested:
        return

    vfs = {str(output.src_path): output.contents or "" for output in requested}
    extractor = options.declaration_extractor or TscDeclarationExtractor()
    _LOGGER.debug("Extracting declarations for %d files", len(vfs))
    declarations = await extractor.extract(vfs, dict(options.compiler_options))

    runtime_ext = options.ext or ("js" if options.format == "cjs" else "mjs")
    runtime_ext = runtime_ext if runtime_ext.startswith(".") else f".{runtime_ext}"
    for output in requested:
        result = declarations.get(str(output.src_path))
        if result is None:
            output.errors.append("No declaration produced")
            output.skip = True
            continue
        output.errors.extend(result.errors)
        if result.contents is None:
            output.skip = True
            continue
        contents = result.contents
        if options.add_relative_declaration_extensions:
            contents = add_relative_declaration_extensions(contents, runtime_ext)
        output.contents = contents


__all__ = ["TransformOptions", "TransformResult", "transform"]

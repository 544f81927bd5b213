"""Built-in loaders and loader discovery utilities."""

from __future__ import annotations

import json
import re
from importlib import metadata
from typing import Callable, Dict, Iterable, List, Sequence, Union

from ..errors import ConfigError
from ..logging import get_logger
from ..models import InputFile, OutputFile
from .loader import Loader, LoaderContext, LoaderResult
from .transpile import TranspileError

_LOGGER = get_logger("loaders")

_ENTRY_POINT_GROUP = "distforge.loaders"

DECLARATION_RE = re.compile(r"\.d\.[cm]?ts$")
KNOWN_EXT_RE = re.compile(r"\.(c|m)?[jt]sx?$")
_CM_LETTER_RE = re.compile(r"(?<=\.)(c|m)(?=[jt]s$)")


async def js_loader(input_file: InputFile, context: LoaderContext) -> LoaderResult:
    """Transpile JavaScript/TypeScript sources and request declarations."""
    if not KNOWN_EXT_RE.search(input_file.path) or DECLARATION_RE.search(input_file.path):
        return None

    options = context.options
    contents = await input_file.read()
    outputs: List[OutputFile] = []

    if options.declaration:
        match = _CM_LETTER_RE.search(input_file.path)
        cm = match.group(0) if match else ""
        outputs.append(
            OutputFile(
                path=input_file.path,
                src_path=input_file.src_path,
                extension=f".d.{cm}ts",
                contents=contents,
                declaration=True,
            )
        )

    extension = ".js" if options.format == "cjs" else ".mjs"
    if options.ext:
        extension = options.ext if options.ext.startswith(".") else f".{options.ext}"

    code = OutputFile(path=input_file.path, src_path=input_file.src_path, extension=extension)
    if options.transpiler is None:
        code.contents = contents
    else:
        try:
            code.contents = await options.transpiler.transpile(
                contents, extension=input_file.extension, format=options.format
            )
        except TranspileError as exc:
            code.errors.append(str(exc))
            code.skip = True
        else:
            if not code.contents.strip():
                _LOGGER.debug("Skipping type-only module %s", input_file.path)
                code.skip = True
    outputs.append(code)
    return outputs


async def json_loader(input_file: InputFile, context: LoaderContext) -> LoaderResult:
    """Emit JSON files as ES modules alongside a normalized copy."""
    options = context.options
    if input_file.extension != ".json" or not options.json_modules or options.format == "cjs":
        return None
    raw = await input_file.read()
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        _LOGGER.warning("Copying %s verbatim: invalid JSON (%s)", input_file.path, exc)
        return None
    normalized = json.dumps(data, indent=2, ensure_ascii=False) + "\n"
    return [
        OutputFile(path=input_file.path, src_path=input_file.src_path, contents=normalized),
        OutputFile(
            path=input_file.path,
            src_path=input_file.src_path,
            extension=".json.js",
            contents=f"export default {normalized.rstrip()};\n",
        ),
    ]


BUILTIN_LOADERS: Dict[str, Loader] = {
    "js": js_loader,
    "json": json_loader,
}


def resolve_loaders(names: Sequence[Union[str, Loader]]) -> List[Loader]:
    """Return loaders for ``names``: built-ins, entry points, or callables as-is."""
    registered: Dict[str, Callable[[], Loader]] = {}
    for entry in _iter_entry_points():
        registered.setdefault(entry.name, entry.load)

    loaders: List[Loader] = []
    missing: List[str] = []
    for name in names:
        if callable(name):
            loaders.append(name)
        elif name in BUILTIN_LOADERS:
            loaders.append(BUILTIN_LOADERS[name])
        elif name in registered:
            try:
                loaded = registered[name]()
            except Exception as exc:  # pragma: no cover - defensive guard
                raise RuntimeError(f"Failed to load loader entry point '{name}': {exc}") from exc
            if not callable(loaded):
                raise TypeError(f"Loader entry point '{name}' is not callable")
            loaders.append(loaded)
        else:
            missing.append(str(name))

    if missing:
        raise ConfigError(f"Unknown loaders requested: {', '.join(sorted(missing))}")
    return loaders


def _iter_entry_points() -> Iterable[metadata.EntryPoint]:
    try:
        entry_points = metadata.entry_points()
    except Exception:  # pragma: no cover - defensive guard
        return []
    return entry_points.select(group=_ENTRY_POINT_GROUP)


__all__ = [
    "BUILTIN_LOADERS",
    "DECLARATION_RE",
    "KNOWN_EXT_RE",
    "js_loader",
    "json_loader",
    "resolve_loaders",
]

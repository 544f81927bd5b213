"""Import specifier resolution against the in-memory output set."""

from __future__ import annotations

import posixpath
import re
from typing import Iterable, List, Sequence, Set

from ..models import OutputFile

ESM_RESOLVE_EXTENSIONS = ("", "/index.mjs", "/index.js", ".mjs", ".ts", ".js")
CJS_RESOLVE_EXTENSIONS = ("", "/index.cjs", ".cjs")

ESM_OUTPUT_EXTENSIONS = frozenset({".mjs", ".js", ".ts", ".mts"})
CJS_OUTPUT_EXTENSIONS = frozenset({".cjs", ".cts"})

_ESM_STATIC_RE = re.compile(
    r"""(import|export)(\s+(?:.+|{[\s\w,]+})\s+from\s+["'])([^"'\n]*)(["'])"""
)
_ESM_DYNAMIC_RE = re.compile(r"""import\((["'])([^"'\n]*)(["'])\)""")
_CJS_REQUIRE_RE = re.compile(r"""require\((["'])([^"'\n]*)(["'])\)""")

_ANY_SPECIFIER_RES = (
    re.compile(r"""\bfrom\s*["']([^"'\n]+)["']"""),
    re.compile(r"""^\s*import\s*["']([^"'\n]+)["']""", re.MULTILINE),
    re.compile(r"""\b(?:import|require)\s*\(\s*["']([^"'\n]+)["']\s*\)"""),
)

_EXPORT_DECL_RE = re.compile(
    r"\bexport\s+(?:declare\s+)?(?:async\s+)?"
    r"(?:function\*?|class|const|let|var|enum|interface|type|abstract\s+class)\s+([A-Za-z_$][\w$]*)"
)
_EXPORT_DEFAULT_RE = re.compile(r"\bexport\s+default\b")
_EXPORT_LIST_RE = re.compile(r"\bexport\s+(?:type\s+)?{([^}]*)}")


def resolve_id(from_path: str, specifier: str, extensions: Sequence[str], out_paths: Set[str]) -> str:
    """Return ``specifier`` plus the first candidate suffix present in ``out_paths``."""
    if not specifier.startswith("."):
        return specifier
    base = posixpath.dirname(from_path)
    for extension in extensions:
        candidate = posixpath.normpath(posixpath.join(base, specifier + extension))
        if candidate in out_paths:
            return specifier + extension
    return specifier


def resolve_specifiers(outputs: Iterable[OutputFile]) -> None:
    """Rewrite extensionless relative specifiers in code outputs, in place."""
    candidates = [output for output in outputs if not output.skip]
    out_paths = {output.path for output in candidates}

    for output in candidates:
        if not output.contents or output.declaration or output.raw:
            continue
        path = output.path

        if output.extension in ESM_OUTPUT_EXTENSIONS:
            contents = _ESM_STATIC_RE.sub(
                lambda m: m.group(1)
                + m.group(2)
                + resolve_id(path, m.group(3), ESM_RESOLVE_EXTENSIONS, out_paths)
                + m.group(4),
                output.contents,
            )
            output.contents = _ESM_DYNAMIC_RE.sub(
                lambda m: "import("
                + m.group(1)
                + resolve_id(path, m.group(2), ESM_RESOLVE_EXTENSIONS, out_paths)
                + m.group(3)
                + ")",
                contents,
            )
        elif output.extension in CJS_OUTPUT_EXTENSIONS:
            output.contents = _CJS_REQUIRE_RE.sub(
                lambda m: "require("
                + m.group(1)
                + resolve_id(path, m.group(2), CJS_RESOLVE_EXTENSIONS, out_paths)
                + m.group(3)
                + ")",
                output.contents,
            )


def find_specifiers(contents: str) -> List[str]:
    found: List[str] = []
    for pattern in _ANY_SPECIFIER_RES:
        found.extend(match.group(1) for match in pattern.finditer(contents))
    return list(dict.fromkeys(found))


def find_bare_imports(contents: str) -> Set[str]:
    """Specifiers that name packages rather than files."""
    return {
        specifier
        for specifier in find_specifiers(contents)
        if not specifier.startswith((".", "/", "~", "#", "http:", "https:", "data:"))
    }


def find_exports(contents: str) -> List[str]:
    """Best-effort list of exported symbol names, ``default`` included."""
    names: List[str] = []
    names.extend(match.group(1) for match in _EXPORT_DECL_RE.finditer(contents))
    if _EXPORT_DEFAULT_RE.search(contents):
        names.append("default")
    for match in _EXPORT_LIST_RE.finditer(contents):
        for part in match.group(1).split(","):
            part = part.strip()
            if not part:
                continue
            alias = re.split(r"\s+as\s+", part)[-1].strip()
            if alias.startswith("type "):
                alias = alias[len("type "):].strip()
            names.append(alias)
    return sorted(dict.fromkeys(names))


__all__ = [
    "CJS_RESOLVE_EXTENSIONS",
    "ESM_RESOLVE_EXTENSIONS",
    "find_bare_imports",
    "find_exports",
    "find_specifiers",
    "resolve_id",
    "resolve_specifiers",
]

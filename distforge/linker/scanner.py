"""Line-oriented scanning of module specifiers in built output files."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, List

INLINED_START_RE = re.compile(r"/\*\s*inlined-start\b[^*]*\*/")
INLINED_END_RE = re.compile(r"/\*\s*inlined-end\s*\*/")

_FROM_RE = re.compile(r"""(?:^|[\s;}])from\s*(['"])([^'"\n]+)\1""")
_SIDE_EFFECT_RE = re.compile(r"""^\s*import\s*(['"])([^'"\n]+)\1""")
_CALL_RE = re.compile(r"""\b(?:import|require)\s*\(\s*(['"])([^'"\n]+)\1\s*\)""")
_STATEMENT_START_RE = re.compile(r"^[ \t]*(import|export)\b", re.MULTILINE)
_KEYWORD_RE = re.compile(r"\b(?:import|export)\b")
_STATEMENT_END_RE = re.compile(r"[ \t]*;?")


@dataclass(frozen=True)
class SpecifierMatch:
    """One module specifier found in a file.

    ``start``/``end`` delimit the specifier text without quotes.
    ``statement_start``/``statement_end`` delimit the whole static statement.
    """

    specifier: str
    kind: str
    line: int
    start: int
    end: int
    statement_start: int
    statement_end: int


def inlined_block(specifier: str, contents: str) -> str:
    """Wrap inlined ``contents`` in provenance sentinels."""
    return f"/* inlined-start {specifier} */\n{contents.rstrip()}\n/* inlined-end */"


def scan_specifiers(content: str) -> List[SpecifierMatch]:
    """Return specifiers outside comments and inlined regions, in file order."""
    found: Dict[int, SpecifierMatch] = {}
    depth = 0
    offset = 0
    for number, line in enumerate(content.splitlines(keepends=True), start=1):
        starts = len(INLINED_START_RE.findall(line))
        ends = len(INLINED_END_RE.findall(line))
        opaque = depth > 0 or starts > 0
        depth = max(0, depth + starts - ends)
        stripped = line.lstrip()
        if opaque or stripped.startswith(("//", "*", "/*")):
            offset += len(line)
            continue

        for kind, pattern in (("from", _FROM_RE), ("side-effect", _SIDE_EFFECT_RE), ("call", _CALL_RE)):
            for match in pattern.finditer(line):
                start = offset + match.start(2)
                if start in found:
                    continue
                end = offset + match.end(2)
                if kind == "call":
                    statement_start, statement_end = offset + match.start(), offset + match.end()
                else:
                    statement_start = _statement_start(content, offset, offset + match.start())
                    tail = _STATEMENT_END_RE.match(content, offset + match.end())
                    statement_end = tail.end() if tail else offset + match.end()
                found[start] = SpecifierMatch(
                    specifier=match.group(2),
                    kind=kind,
                    line=number,
                    start=start,
                    end=end,
                    statement_start=statement_start,
                    statement_end=statement_end,
                )
        offset += len(line)
    return [found[key] for key in sorted(found)]


def _statement_start(content: str, line_offset: int, position: int) -> int:
    """Offset of the ``import``/``export`` keyword opening the statement at ``position``."""
    same_line = list(_KEYWORD_RE.finditer(content, line_offset, position))
    if same_line:
        return same_line[-1].start()
    candidates = list(_STATEMENT_START_RE.finditer(content, 0, position))
    if not candidates:
        return line_offset
    return candidates[-1].end() - len(candidates[-1].group(1))


__all__ = ["INLINED_END_RE", "INLINED_START_RE", "SpecifierMatch", "inlined_block", "scan_specifiers"]

"""Cross-library import linker for multi-package builds."""

from __future__ import annotations

from .resolver import (
    LinkMode,
    LinkResult,
    Linker,
    OutputRoot,
    find_main_file,
    link,
    resolve_local_file,
)
from .scanner import SpecifierMatch, inlined_block, scan_specifiers

__all__ = [
    "LinkMode",
    "LinkResult",
    "Linker",
    "OutputRoot",
    "SpecifierMatch",
    "find_main_file",
    "inlined_block",
    "link",
    "resolve_local_file",
    "scan_specifiers",
]

"""Core data models shared across distforge components."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence


class BuilderKind(str, Enum):
    """Backend strategy used to produce one build entry."""

    TRANSFORM = "transform"
    MIRROR = "mirror"
    SPEC_GENERATE = "spec-generate"
    COPY = "copy"
    PLUGIN_BUNDLE = "plugin-bundle"

    @classmethod
    def parse(cls, value: str) -> "BuilderKind":
        try:
            return cls(value)
        except ValueError:
            choices = ", ".join(kind.value for kind in cls)
            raise ValueError(f"Unknown builder '{value}' (expected one of: {choices})") from None


@dataclass(frozen=True)
class BuildEntry:
    """One normalized unit of work mapping an input to an output directory."""

    builder: BuilderKind
    input: Path
    out_dir: Path
    name: str
    declaration: bool = False
    is_lib: bool = False
    pattern: Optional[str] = None
    ext: Optional[str] = None
    transpile: bool = True


@dataclass(frozen=True)
class InputFile:
    """Read-only view over one discovered source file."""

    path: str
    src_path: Path
    extension: str

    async def read(self) -> str:
        return await asyncio.to_thread(self.src_path.read_text, encoding="utf-8")


@dataclass
class OutputFile:
    """A pending output produced by a loader.

    ``path`` is relative to the distribution directory and stays mutable until
    :meth:`normalize_path` applies ``extension`` to it.
    """

    path: str
    src_path: Optional[Path] = None
    extension: Optional[str] = None
    contents: Optional[str] = None
    declaration: bool = False
    raw: bool = False
    skip: bool = False
    errors: List[str] = field(default_factory=list)
    normalized: bool = False

    def normalize_path(self) -> str:
        """Replace the original suffix of ``path`` with ``extension``."""
        if self.normalized:
            raise RuntimeError(f"Output path already normalized: {self.path}")
        self.normalized = True
        if not self.extension:
            return self.path
        directory, _, filename = self.path.rpartition("/")
        stem = filename
        dot = filename.rfind(".")
        if dot > 0:
            stem = filename[:dot]
        renamed = stem + self.extension
        self.path = f"{directory}/{renamed}" if directory else renamed
        return self.path


@dataclass(frozen=True)
class FileErrors:
    """Per-file recoverable errors collected during a transform pass."""

    filename: str
    errors: Sequence[str]


@dataclass(frozen=True)
class LibraryDescriptor:
    """A sibling package published from the same repository."""

    package_name: str
    main_file: Path
    source_dir: Path

    @property
    def short_name(self) -> str:
        return self.package_name.split("/")[-1]


@dataclass(frozen=True)
class Replacement:
    """A pending text edit against one file's original content."""

    start: int
    end: int
    text: str


def apply_replacements(content: str, replacements: Iterable[Replacement]) -> str:
    """Apply edits in descending offset order; overlapping edits are rejected."""
    ordered = sorted(replacements, key=lambda item: item.start, reverse=True)
    result = content
    previous_start: Optional[int] = None
    for replacement in ordered:
        if replacement.start > replacement.end:
            raise ValueError(f"Invalid replacement span {replacement.start}-{replacement.end}")
        if previous_start is not None and replacement.end > previous_start:
            raise ValueError(
                f"Overlapping replacements at offsets {replacement.start}-{replacement.end}"
            )
        result = result[: replacement.start] + replacement.text + result[replacement.end :]
        previous_start = replacement.start
    return result


@dataclass
class ManifestEntry:
    """A produced file (or entry directory) recorded in the build manifest."""

    path: str
    bytes: Optional[int] = None
    chunk: bool = False
    chunks: List[str] = field(default_factory=list)
    exports: List[str] = field(default_factory=list)
    is_lib: bool = False


@dataclass
class BuildManifest:
    """Records every produced file and the warnings raised along the way."""

    entries: List[ManifestEntry] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def add(self, entry: ManifestEntry) -> ManifestEntry:
        self.entries.append(entry)
        return entry

    def find(self, path: str) -> Optional[ManifestEntry]:
        for entry in self.entries:
            if entry.path == path:
                return entry
        return None

    def warn(self, message: str) -> bool:
        """Record a warning once; return False when it was already present."""
        if message in self.warnings:
            return False
        self.warnings.append(message)
        return True

    def sizes(self) -> Dict[str, int]:
        return {entry.path: entry.bytes or 0 for entry in self.entries}

    @property
    def total_bytes(self) -> int:
        return sum(entry.bytes or 0 for entry in self.entries)

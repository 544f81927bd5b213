"""Exception types raised by distforge components."""

from __future__ import annotations

from pathlib import Path
from typing import Sequence


class DistforgeError(RuntimeError):
    """Base class for fatal distforge failures."""


class ConfigError(DistforgeError):
    """Raised when the configuration file cannot be parsed or validated."""


class BuildError(DistforgeError):
    """Raised when a build step fails and the invocation must abort."""

    def __init__(self, message: str, warnings: Sequence[str] | None = None) -> None:
        super().__init__(message)
        self.warnings = list(warnings or [])


class EntryError(BuildError):
    """Raised for malformed build entries."""


class OutputConflictError(BuildError):
    """Raised when two sources would be written to the same output path."""

    def __init__(self, output_path: str, first: Path | str, second: Path | str) -> None:
        message = (
            "Output path conflict detected:\n"
            f"- File 1: {first} -> {output_path}\n"
            f"- File 2: {second} -> {output_path}\n"
            f"Both files would be written to the same path: {output_path}"
        )
        super().__init__(message)
        self.output_path = output_path
        self.sources = (str(first), str(second))


class LinkError(BuildError):
    """Raised when a cross-library reference cannot be resolved for inlining."""


__all__ = [
    "BuildError",
    "ConfigError",
    "DistforgeError",
    "EntryError",
    "LinkError",
    "OutputConflictError",
]

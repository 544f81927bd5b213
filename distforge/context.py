"""Per-invocation build state passed through the pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Dict, List, Optional, Set, Tuple

from .config import BundleConfig, TransformConfig
from .hooks import HookRegistry
from .logging import get_logger
from .models import BuildEntry, BuildManifest

if TYPE_CHECKING:
    from .builders.bundle import Bundler
    from .transform.declarations import DeclarationExtractor
    from .transform.transpile import Transpiler

_LOGGER = get_logger("build")


@dataclass(frozen=True)
class BuildOptions:
    """Normalized settings for one build invocation."""

    root_dir: Path
    out_dir: Path
    entries: Tuple[BuildEntry, ...]
    externals: Tuple[str, ...]
    clean: bool
    parallel: bool
    fail_on_warn: bool
    declaration: bool
    stub: bool
    transform: TransformConfig
    bundle: BundleConfig
    dependencies: Tuple[str, ...] = ()
    concurrency: int = 16


@dataclass
class Toolchain:
    """External collaborators the builder backends hand work to."""

    transpiler: Optional["Transpiler"] = None
    declaration_extractor: Optional["DeclarationExtractor"] = None
    bundler: Optional["Bundler"] = None


@dataclass
class BuildContext:
    """Aggregates options, the growing manifest and the hook registry."""

    options: BuildOptions
    pkg: Dict[str, object] = field(default_factory=dict)
    manifest: BuildManifest = field(default_factory=BuildManifest)
    hooks: HookRegistry = field(default_factory=HookRegistry)
    toolchain: Toolchain = field(default_factory=Toolchain)
    used_imports: Set[str] = field(default_factory=set)
    written: List[Path] = field(default_factory=list)

    @property
    def warnings(self) -> List[str]:
        return self.manifest.warnings

    def warn(self, message: str) -> None:
        if self.manifest.warn(message):
            _LOGGER.warning(message)

    def relative(self, path: Path) -> str:
        """Render ``path`` relative to the project root when it lives inside it."""
        try:
            return path.resolve().relative_to(self.options.root_dir).as_posix()
        except ValueError:
            return path.as_posix()


__all__ = ["BuildContext", "BuildOptions", "Toolchain"]

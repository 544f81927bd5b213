"""Builder backends and their dispatch order."""

from __future__ import annotations

from typing import Awaitable, Callable, List, Sequence, Tuple

from ..context import BuildContext
from ..models import BuildEntry, BuilderKind
from .bundle import Bundler, BundleRequest, EsbuildBundler, bundle_build, resolve_bundler
from .copy import copy_build
from .mirror import mirror_build, transform_options
from .spec import spec_build

BuilderTask = Callable[[BuildContext, Sequence[BuildEntry]], Awaitable[None]]

# Dispatch order; each backend claims the entries of its kinds.
BACKENDS: Tuple[Tuple[Tuple[BuilderKind, ...], BuilderTask], ...] = (
    ((BuilderKind.SPEC_GENERATE,), spec_build),
    ((BuilderKind.MIRROR, BuilderKind.TRANSFORM), mirror_build),
    ((BuilderKind.PLUGIN_BUNDLE,), bundle_build),
    ((BuilderKind.COPY,), copy_build),
)


def plan_tasks(entries: Sequence[BuildEntry]) -> List[Tuple[BuilderTask, List[BuildEntry]]]:
    """Group entries by backend in dispatch order, dropping idle backends."""
    tasks: List[Tuple[BuilderTask, List[BuildEntry]]] = []
    for kinds, task in BACKENDS:
        claimed = [entry for entry in entries if entry.builder in kinds]
        if claimed:
            tasks.append((task, claimed))
    return tasks


__all__ = [
    "BACKENDS",
    "BuilderTask",
    "BundleRequest",
    "Bundler",
    "EsbuildBundler",
    "bundle_build",
    "copy_build",
    "mirror_build",
    "plan_tasks",
    "resolve_bundler",
    "spec_build",
    "transform_options",
]

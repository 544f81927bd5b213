"""Ordered lifecycle callbacks invoked by the orchestrator."""

from __future__ import annotations

from enum import Enum
from typing import Any, Callable, Dict, List


class HookStage(Enum):
    BUILD_PREPARE = "build:prepare"
    BUILD_BEFORE = "build:before"
    TRANSFORM_ENTRIES = "transform:entries"
    TRANSFORM_ENTRY_DONE = "transform:entry:done"
    TRANSFORM_DONE = "transform:done"
    COPY_ENTRIES = "copy:entries"
    COPY_DONE = "copy:done"
    SPEC_ENTRIES = "spec:entries"
    SPEC_DONE = "spec:done"
    BUNDLE_ENTRIES = "bundle:entries"
    BUNDLE_DONE = "bundle:done"
    BUILD_DONE = "build:done"
    LINK_DONE = "link:done"


Hook = Callable[..., Any]


class HookRegistry:
    """Callbacks keyed by :class:`HookStage`, run synchronously in registration order."""

    def __init__(self) -> None:
        self._hooks: Dict[HookStage, List[Hook]] = {}

    def register(self, stage: HookStage, callback: Hook) -> None:
        if not isinstance(stage, HookStage):
            raise TypeError(f"Hook stage must be a HookStage, got {stage!r}")
        self._hooks.setdefault(stage, []).append(callback)

    def callbacks(self, stage: HookStage) -> List[Hook]:
        return list(self._hooks.get(stage, []))

    def call(self, stage: HookStage, *args: Any) -> None:
        for callback in self.callbacks(stage):
            callback(*args)


__all__ = ["Hook", "HookRegistry", "HookStage"]

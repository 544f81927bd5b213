"""Transpiler collaborators that turn TypeScript/JSX sources into JavaScript."""

from __future__ import annotations

import asyncio
import subprocess
from typing import Callable, Iterable, Optional, Protocol

from ..logging import get_logger

_LOGGER = get_logger("transpile")

CommandRunner = Callable[..., str]

_LOADER_BY_EXTENSION = {
    ".ts": "ts",
    ".mts": "ts",
    ".cts": "ts",
    ".tsx": "tsx",
    ".jsx": "jsx",
    ".js": "js",
    ".mjs": "js",
    ".cjs": "js",
}


class TranspileError(RuntimeError):
    """Raised when the transpiler rejects a source file."""


class Transpiler(Protocol):
    async def transpile(self, source: str, *, extension: str, format: str) -> str:
        ...


class PassthroughTranspiler:
    """Leaves sources untouched, for registries that publish TypeScript."""

    async def transpile(self, source: str, *, extension: str, format: str) -> str:
        return source


class EsbuildTranspiler:
    """Invokes the ``esbuild`` CLI over stdin."""

    def __init__(
        self,
        runner: CommandRunner | None = None,
        *,
        executable: str = "esbuild",
        target: str = "es2022",
        extra_args: Optional[Iterable[str]] = None,
    ) -> None:
        self._runner = runner or self._default_runner
        self.executable = executable
        self.target = target
        self.extra_args = list(extra_args or [])

    def command(self, *, extension: str, format: str) -> list[str]:
        loader = _LOADER_BY_EXTENSION.get(extension, "js")
        return [
            self.executable,
            f"--loader={loader}",
            f"--format={'cjs' if format == 'cjs' else 'esm'}",
            f"--target={self.target}",
            "--supported:top-level-await=true",
            *self.extra_args,
        ]

    async def transpile(self, source: str, *, extension: str, format: str) -> str:
        args = self.command(extension=extension, format=format)
        _LOGGER.debug("Running %s", " ".join(args))
        return await asyncio.to_thread(self._runner, args, input=source)

    @staticmethod
    def _default_runner(args: Iterable[str], *, input: str) -> str:
        try:
            completed = subprocess.run(
                list(args),
                input=input,
                check=True,
                text=True,
                capture_output=True,
            )
        except FileNotFoundError as exc:
            raise TranspileError(f"Transpiler executable not found: {exc.filename}") from exc
        except subprocess.CalledProcessError as exc:
            raise TranspileError(exc.stderr.strip() or str(exc)) from exc
        return completed.stdout


__all__ = ["EsbuildTranspiler", "PassthroughTranspiler", "TranspileError", "Transpiler"]

"""Declaration-extraction collaborators."""

from __future__ import annotations

import asyncio
import json
import os
import re
import subprocess
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Protocol

from ..logging import get_logger

_LOGGER = get_logger("declarations")

CommandRunner = Callable[..., str]

_DIAGNOSTIC_RE = re.compile(
    r"^(?P<file>.+?)\((?P<line>\d+),(?P<col>\d+)\): error (?P<code>TS\d+): (?P<message>.*)$"
)
_SOURCE_EXT_RE = re.compile(r"\.([cm]?)[jt]sx?$")
_RELATIVE_SPECIFIER_RE = re.compile(
    r"""((?:import|export)\b[^'"]*?\bfrom\s*|import\s*\(\s*|import\s+)(['"])(\.{1,2}/[^'"]*)\2"""
)
_HAS_RUNTIME_EXT_RE = re.compile(r"\.(?:[cm]?js|json)$")

DEFAULT_COMPILER_OPTIONS: Dict[str, Any] = {
    "allowJs": True,
    "declaration": True,
    "emitDeclarationOnly": True,
    "skipLibCheck": True,
    "strict": False,
    "target": "ES2022",
    "module": "ESNext",
    "moduleResolution": "Bundler",
    "jsx": "preserve",
}


@dataclass
class DeclarationResult:
    contents: Optional[str] = None
    errors: List[str] = field(default_factory=list)


class DeclarationExtractor(Protocol):
    async def extract(
        self, vfs: Mapping[str, str], compiler_options: Optional[Mapping[str, Any]] = None
    ) -> Dict[str, DeclarationResult]:
        ...


def declaration_filename(source: str) -> str:
    """Map ``a/b.mts`` to ``a/b.d.mts`` the way the compiler names its output."""
    return _SOURCE_EXT_RE.sub(lambda match: f".d.{match.group(1)}ts", source)


class TscDeclarationExtractor:
    """Runs ``tsc --declaration --emitDeclarationOnly`` over one batch of on-disk sources."""

    def __init__(self, runner: CommandRunner | None = None, *, executable: str = "tsc") -> None:
        self._runner = runner or self._default_runner
        self.executable = executable

    async def extract(
        self, vfs: Mapping[str, str], compiler_options: Optional[Mapping[str, Any]] = None
    ) -> Dict[str, DeclarationResult]:
        if not vfs:
            return {}
        return await asyncio.to_thread(self._extract_sync, dict(vfs), dict(compiler_options or {}))

    def _extract_sync(
        self, vfs: Dict[str, str], compiler_options: Dict[str, Any]
    ) -> Dict[str, DeclarationResult]:
        results = {source: DeclarationResult() for source in vfs}
        base = Path(os.path.commonpath([str(Path(source).parent) for source in vfs]))

        # Sources compile in place; only the emitted declarations land in the temp dir.
        relative: Dict[str, str] = {}
        for source in vfs:
            if not Path(source).is_file():
                results[source].errors.append(f"Source file not found: {source}")
                continue
            relative[Path(source).relative_to(base).as_posix()] = source
        if not relative:
            return results

        with tempfile.TemporaryDirectory(prefix="distforge-dts-") as tmp:
            workdir = Path(tmp)
            options = {**DEFAULT_COMPILER_OPTIONS, **compiler_options}
            options.update({"rootDir": str(base), "outDir": str(workdir / "out"), "noEmit": False})
            tsconfig = {"compilerOptions": options, "files": list(relative.values())}
            tsconfig_path = workdir / "tsconfig.json"
            tsconfig_path.write_text(json.dumps(tsconfig, indent=2), encoding="utf-8")

            try:
                output = self._runner(
                    [self.executable, "--project", str(tsconfig_path), "--pretty", "false"],
                    cwd=base,
                )
            except FileNotFoundError:
                message = f"Declaration compiler '{self.executable}' is not installed"
                for result in results.values():
                    result.errors.append(message)
                return results

            for line in output.splitlines():
                match = _DIAGNOSTIC_RE.match(line.strip())
                if not match:
                    continue
                reported = Path(match.group("file").replace("\\", "/"))
                if not reported.is_absolute():
                    reported = base / reported
                rel = Path(os.path.relpath(os.path.normpath(reported), base)).as_posix()
                source = relative.get(rel)
                if source is None:
                    continue
                results[source].errors.append(
                    f"{rel}({match.group('line')},{match.group('col')}): "
                    f"{match.group('code')}: {match.group('message')}"
                )

            for rel, source in relative.items():
                emitted = workdir / "out" / declaration_filename(rel)
                if emitted.exists():
                    results[source].contents = emitted.read_text(encoding="utf-8")
                elif not results[source].errors:
                    results[source].errors.append(f"No declaration emitted for {rel}")

        return results

    @staticmethod
    def _default_runner(args: Iterable[str], *, cwd: Path) -> str:
        completed = subprocess.run(
            list(args),
            cwd=str(cwd),
            check=False,
            text=True,
            capture_output=True,
        )
        return completed.stdout + completed.stderr


def add_relative_declaration_extensions(contents: str, ext: str) -> str:
    """Append ``ext`` to extensionless relative specifiers inside a declaration."""

    def _rewrite(match: re.Match[str]) -> str:
        specifier = match.group(3)
        if _HAS_RUNTIME_EXT_RE.search(specifier) or specifier.endswith("/"):
            return match.group(0)
        return f"{match.group(1)}{match.group(2)}{specifier}{ext}{match.group(2)}"

    return _RELATIVE_SPECIFIER_RE.sub(_rewrite, contents)


__all__ = [
    "DEFAULT_COMPILER_OPTIONS",
    "DeclarationExtractor",
    "DeclarationResult",
    "TscDeclarationExtractor",
    "add_relative_declaration_extensions",
    "declaration_filename",
]

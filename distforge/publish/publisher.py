"""Registry publishing utilities."""

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Callable, Dict, Iterable, List

from ..logging import get_logger

_COMMANDS: Dict[str, List[str]] = {
    "npm": ["npm", "publish", "--access", "public"],
    "jsr": ["npx", "jsr", "publish"],
}

_DRY_RUN_FLAGS: Dict[str, List[str]] = {
    "npm": ["--dry-run"],
    "jsr": ["--dry-run", "--allow-dirty"],
}


class Publisher:
    """Hands a built directory to the registry's publish command."""

    def __init__(self, runner: Callable[..., str] | None = None) -> None:
        self._runner = runner or self._default_runner
        self.logger = get_logger("publisher")

    def command(self, registry: str, *, dry_run: bool = False) -> List[str]:
        try:
            args = list(_COMMANDS[registry])
        except KeyError:
            choices = ", ".join(sorted(_COMMANDS))
            raise ValueError(f"Unknown registry '{registry}' (expected one of: {choices})") from None
        if dry_run:
            args.extend(_DRY_RUN_FLAGS[registry])
        return args

    def publish(self, directory: Path, registry: str, *, dry_run: bool = False) -> bool:
        """Run the publish command in ``directory``; return False when it fails."""
        args = self.command(registry, dry_run=dry_run)
        if not directory.is_dir():
            self.logger.error("Cannot publish %s: directory %s does not exist", registry, directory)
            return False
        self.logger.info("Publishing %s to %s%s", directory, registry, " (dry-run)" if dry_run else "")
        try:
            self._run(args, cwd=directory)
        except (OSError, subprocess.CalledProcessError) as exc:
            self.logger.error("Publishing %s to %s failed: %s", directory, registry, exc)
            return False
        return True

    # ------------------------------------------------------------------
    # Helpers

    def _run(self, args: Iterable[str], *, cwd: Path, capture_output: bool = False) -> str:
        return self._runner(args, cwd=cwd, env=None, capture_output=capture_output)

    @staticmethod
    def _default_runner(
        args: Iterable[str],
        *,
        cwd: Path,
        env: dict[str, str] | None = None,
        capture_output: bool = False,
    ) -> str:
        completed = subprocess.run(
            list(args),
            cwd=str(cwd),
            env=env,
            check=True,
            text=True,
            capture_output=capture_output,
        )
        if capture_output:
            return completed.stdout
        return ""


__all__ = ["Publisher"]

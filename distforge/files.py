"""Filesystem helpers: glob matching, directory walks, copies and cleaning."""

from __future__ import annotations

import asyncio
import os
import re
import shutil
from functools import lru_cache
from pathlib import Path
from typing import Iterable, List, Sequence

IGNORED_DIRS = frozenset({"node_modules", "coverage", ".git"})

_COPY_CHUNK = 1024 * 1024


@lru_cache(maxsize=256)
def glob_to_regex(pattern: str) -> re.Pattern[str]:
    """Compile a ``**``-aware glob into a regex over POSIX relative paths."""
    pattern = pattern[2:] if pattern.startswith("./") else pattern
    parts: List[str] = []
    index = 0
    while index < len(pattern):
        char = pattern[index]
        if pattern.startswith("**/", index):
            parts.append("(?:.*/)?")
            index += 3
            continue
        if pattern.startswith("**", index):
            parts.append(".*")
            index += 2
            continue
        if char == "*":
            parts.append("[^/]*")
        elif char == "?":
            parts.append("[^/]")
        elif char == "{":
            end = pattern.find("}", index)
            if end == -1:
                parts.append(re.escape(char))
            else:
                options = pattern[index + 1 : end].split(",")
                parts.append("(?:" + "|".join(re.escape(option) for option in options) + ")")
                index = end
        else:
            parts.append(re.escape(char))
        index += 1
    return re.compile("^" + "".join(parts) + "$")


def match_any(patterns: Iterable[str], rel_path: str) -> bool:
    return any(glob_to_regex(pattern).match(rel_path) for pattern in patterns)


def _excluded(exclude: Sequence[str], rel_path: str) -> bool:
    """True when ``rel_path`` or one of its parent directories is excluded."""
    if match_any(exclude, rel_path):
        return True
    parts = rel_path.split("/")
    return any(match_any(exclude, "/".join(parts[:depth])) for depth in range(1, len(parts)))


def iter_files(
    root: Path,
    patterns: Sequence[str] = ("**",),
    exclude: Sequence[str] = (),
    *,
    ignored_dirs: Iterable[str] = IGNORED_DIRS,
) -> List[str]:
    """Return sorted POSIX paths under ``root`` matching ``patterns``."""
    ignored = set(ignored_dirs)
    results: List[str] = []
    if not root.is_dir():
        return results
    for dirpath, dirnames, filenames in os.walk(root, followlinks=True):
        rel_dir = Path(dirpath).relative_to(root).as_posix()
        rel_dir = "" if rel_dir == "." else rel_dir
        dirnames[:] = sorted(
            name
            for name in dirnames
            if name not in ignored
            and not (exclude and match_any(exclude, f"{rel_dir}/{name}" if rel_dir else name))
        )
        for filename in sorted(filenames):
            rel_path = f"{rel_dir}/{filename}" if rel_dir else filename
            if exclude and _excluded(exclude, rel_path):
                continue
            if match_any(patterns, rel_path):
                results.append(rel_path)
    return sorted(results)


async def scan(
    root: Path, patterns: Sequence[str] = ("**",), exclude: Sequence[str] = ()
) -> List[str]:
    return await asyncio.to_thread(iter_files, root, patterns, exclude)


def remove_path(path: Path) -> None:
    """Delete a file, symlink or directory tree if it exists."""
    if path.is_symlink() or path.is_file():
        path.unlink()
    elif path.is_dir():
        shutil.rmtree(path)


def copy_file(source: Path, target: Path) -> None:
    """Stream-copy ``source`` to ``target``, creating parent directories."""
    target.parent.mkdir(parents=True, exist_ok=True)
    with source.open("rb") as reader, target.open("wb") as writer:
        shutil.copyfileobj(reader, writer, _COPY_CHUNK)


def copy_tree(source: Path, target: Path) -> None:
    """Replace ``target`` with a copy of the ``source`` directory tree."""
    remove_path(target)
    shutil.copytree(source, target, symlinks=True)


def symlink(source: Path, target: Path) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    remove_path(target)
    target.symlink_to(source, target_is_directory=source.is_dir())


def is_within(path: Path, parent: Path) -> bool:
    try:
        path.relative_to(parent)
    except ValueError:
        return False
    return True


__all__ = [
    "IGNORED_DIRS",
    "copy_file",
    "copy_tree",
    "glob_to_regex",
    "is_within",
    "iter_files",
    "match_any",
    "remove_path",
    "scan",
    "symlink",
]

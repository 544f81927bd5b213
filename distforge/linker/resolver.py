"""Cross-library import resolution over already-built output trees."""

from __future__ import annotations

import asyncio
import os
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Set, Tuple

from ..concurrency import DEFAULT_CONCURRENCY, gather_limited
from ..errors import LinkError
from ..files import copy_file, copy_tree, is_within, iter_files
from ..logging import get_logger
from ..models import LibraryDescriptor, Replacement, apply_replacements
from .scanner import SpecifierMatch, inlined_block, scan_specifiers

_LOGGER = get_logger("linker")

DECLARATION_RE = re.compile(r"\.d\.[cm]?ts$")
DECLARATION_FIRST = (".d.ts", ".ts", ".js")
CODE_FIRST = (".ts", ".js", ".d.ts")
BUILT_CODE_FIRST = CODE_FIRST + (".mjs", ".cjs")
LOCAL_EXTENSIONS = (".ts", ".tsx", ".js", ".jsx", ".json")
MAIN_FILES = ("index.ts", "index.js", "main.ts", "main.js")
LIBRARY_COPY_PREFIX = "#"
_STRIP_EXT_RE = re.compile(r"(\.d)?\.[cm]?[jt]sx?$")


class LinkMode(str, Enum):
    PACKAGE = "package"
    INLINE = "inline"
    COPY = "copy"


@dataclass(frozen=True)
class OutputRoot:
    """A built output directory and the library it was produced from."""

    library: LibraryDescriptor
    path: Path
    registry: str = ""


@dataclass
class LinkResult:
    modified: List[Path] = field(default_factory=list)
    copied: Dict[Path, Path] = field(default_factory=dict)
    copied_libraries: Dict[str, Path] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)


class Linker:
    """Rewrites specifiers that cross library boundaries.

    A specifier that lands inside a declared library's source directory is a
    library reference: same-library references become relative paths and
    cross-library references follow :attr:`mode`:

    * ``PACKAGE`` rewrites them to the target's package name.
    * ``INLINE`` replaces the statement with the target's built contents.
    * ``COPY`` points them at ``<copies_dir>/#<lib>``, a copy of the target
      library's whole output tree made once the roots are linked.

    Anything else local is copied into the root's side directory and
    processed recursively.
    """

    def __init__(
        self,
        roots: Sequence[OutputRoot],
        libraries: Sequence[LibraryDescriptor],
        *,
        root_dir: Path,
        alias: str = "~",
        alias_root: str = "src",
        side_dir: str = "addons",
        mode: LinkMode = LinkMode.PACKAGE,
        copies_dir: Optional[Path] = None,
        concurrency: int = DEFAULT_CONCURRENCY,
    ) -> None:
        self.roots = [OutputRoot(root.library, root.path.resolve(), root.registry) for root in roots]
        self.libraries = sorted(
            (
                LibraryDescriptor(lib.package_name, lib.main_file.resolve(), lib.source_dir.resolve())
                for lib in libraries
            ),
            key=lambda lib: len(lib.source_dir.parts),
            reverse=True,
        )
        self.root_dir = root_dir.resolve()
        self.alias = alias.rstrip("/")
        self.alias_dir = self.root_dir / alias_root
        self.side_dir = side_dir
        self.mode = LinkMode(mode)
        self.copies_dir = (copies_dir or self.root_dir / "dist-libs").resolve()
        self.concurrency = concurrency
        self.result = LinkResult()
        self._visited: Set[Tuple[Path, Path]] = set()
        self._copies: Dict[Tuple[Path, Path], Path] = {}
        self._originals: Dict[Path, str] = {}
        self._library_trees: Dict[str, Path] = {}

    async def run(self) -> LinkResult:
        for root in self.roots:
            files = await asyncio.to_thread(iter_files, root.path, ["**"], [self.side_dir])
            await gather_limited(
                [root.path / rel for rel in files],
                lambda path, root=root: self._process(path, root, None),
                limit=self.concurrency,
            )
        # Library trees are copied only once every root is linked.
        for name, tree in sorted(self._library_trees.items()):
            destination = self.copies_dir / f"{LIBRARY_COPY_PREFIX}{tree.name}"
            await asyncio.to_thread(copy_tree, tree, destination)
            self.result.copied_libraries[name] = destination
            _LOGGER.info("Copied library %s to %s", name, destination)
        self.result.modified.sort()
        _LOGGER.info("Linked %d roots, modified %d files", len(self.roots), len(self.result.modified))
        return self.result

    # ------------------------------------------------------------------
    # Per-file processing

    async def _process(self, file: Path, root: OutputRoot, origin_dir: Optional[Path]) -> None:
        if not _is_text_module(file):
            return
        content = await asyncio.to_thread(file.read_text, encoding="utf-8")
        self._originals.setdefault(file, content)
        replacements: List[Replacement] = []
        for match in scan_specifiers(content):
            replacement = await self._rewrite(file, root, origin_dir, match)
            if replacement is not None:
                replacements.append(replacement)
        if not replacements:
            return
        updated = apply_replacements(content, replacements)
        if updated == content:
            return
        await asyncio.to_thread(file.write_text, updated, encoding="utf-8")
        self.result.modified.append(file)
        _LOGGER.debug("Rewrote %d specifiers in %s", len(replacements), file)

    async def _rewrite(
        self, file: Path, root: OutputRoot, origin_dir: Optional[Path], match: SpecifierMatch
    ) -> Optional[Replacement]:
        specifier = match.specifier
        alias_prefix = f"{self.alias}/"
        if specifier.startswith("./") and origin_dir is None:
            return None
        if not (
            specifier.startswith(alias_prefix)
            or specifier.startswith("../")
            or specifier.startswith("./")
        ):
            return None

        if specifier.startswith(alias_prefix):
            target = _normalize(self.alias_dir / specifier[len(alias_prefix):])
        elif origin_dir is not None:
            target = _normalize(origin_dir / specifier)
        else:
            in_output = _normalize(file.parent / specifier)
            if is_within(in_output, root.path) or self._is_library_copy(in_output):
                return None
            relative_dir = file.parent.relative_to(root.path)
            target = _normalize(root.library.source_dir / relative_dir / specifier)

        declaration = bool(DECLARATION_RE.search(file.name))
        library = self._library_for(target)
        if library is not None:
            if library.package_name == root.library.package_name:
                return self._same_library(file, root, target, declaration, match)
            return await self._cross_library(file, root, library, target, declaration, match)
        return await self._external(file, root, target, declaration, match)

    def _same_library(
        self, file: Path, root: OutputRoot, target: Path, declaration: bool, match: SpecifierMatch
    ) -> Optional[Replacement]:
        relative = target.relative_to(root.library.source_dir)
        built = root.path / relative
        found = _find_with_extensions(built, DECLARATION_FIRST if declaration else BUILT_CODE_FIRST)
        if found is None and built.is_dir():
            found = find_main_file(built)
        if found is not None:
            built = found
        if declaration or found is None:
            built = built.with_name(_STRIP_EXT_RE.sub("", built.name))
        new_specifier = _relative_specifier(file.parent, built)
        if new_specifier == match.specifier:
            return None
        return Replacement(match.start, match.end, new_specifier)

    async def _cross_library(
        self,
        file: Path,
        origin: OutputRoot,
        library: LibraryDescriptor,
        target: Path,
        declaration: bool,
        match: SpecifierMatch,
    ) -> Optional[Replacement]:
        if self.mode is LinkMode.INLINE and match.kind != "call":
            contents = await self._inline_contents(file, origin, library, target, declaration, match)
            return Replacement(
                match.statement_start,
                match.statement_end,
                inlined_block(match.specifier, contents),
            )
        if self.mode is LinkMode.COPY:
            return self._copied_reference(file, origin, library, target, declaration, match)
        if match.specifier == library.package_name:
            return None
        return Replacement(match.start, match.end, library.package_name)

    async def _inline_contents(
        self,
        file: Path,
        origin: OutputRoot,
        library: LibraryDescriptor,
        target: Path,
        declaration: bool,
        match: SpecifierMatch,
    ) -> str:
        source_root, built = self._locate_built(origin, library, target, declaration, match, "inline")
        contents = self._originals.get(built)
        if contents is None:
            contents = await asyncio.to_thread(built.read_text, encoding="utf-8")
            contents = self._originals.get(built, contents)
        return self._link_inlined(contents, built, source_root, file, origin, declaration)

    def _link_inlined(
        self,
        contents: str,
        source_file: Path,
        source_root: OutputRoot,
        file: Path,
        root: OutputRoot,
        declaration: bool,
    ) -> str:
        """Rewrite the pre-link text of ``source_file`` for its new home in ``file``."""
        replacements: List[Replacement] = []
        for match in scan_specifiers(contents):
            target = self._inlined_target(match.specifier, source_file, source_root)
            if target is None:
                continue
            library = self._library_for(target)
            if library is None:
                self._warn(f"Unresolved import '{match.specifier}' inlined from {source_file} into {file}")
                continue
            if library.package_name == root.library.package_name:
                replacement = self._same_library(file, root, target, declaration, match)
            elif match.specifier != library.package_name:
                replacement = Replacement(match.start, match.end, library.package_name)
            else:
                replacement = None
            if replacement is not None:
                replacements.append(replacement)
        return apply_replacements(contents, replacements) if replacements else contents

    def _inlined_target(
        self, specifier: str, source_file: Path, source_root: OutputRoot
    ) -> Optional[Path]:
        alias_prefix = f"{self.alias}/"
        if specifier.startswith(alias_prefix):
            return _normalize(self.alias_dir / specifier[len(alias_prefix):])
        if not specifier.startswith(("./", "../")):
            return None
        in_output = _normalize(source_file.parent / specifier)
        if is_within(in_output, source_root.path):
            return source_root.library.source_dir / in_output.relative_to(source_root.path)
        relative_dir = source_file.parent.relative_to(source_root.path)
        return _normalize(source_root.library.source_dir / relative_dir / specifier)

    def _copied_reference(
        self,
        file: Path,
        origin: OutputRoot,
        library: LibraryDescriptor,
        target: Path,
        declaration: bool,
        match: SpecifierMatch,
    ) -> Optional[Replacement]:
        source_root, built = self._locate_built(origin, library, target, declaration, match, "copy")
        try:
            tree_relative = source_root.path.relative_to(self.copies_dir)
        except ValueError:
            raise LinkError(
                f"Cannot copy library {library.package_name}: {source_root.path} is not inside "
                f"{self.copies_dir}"
            ) from None
        tree = self.copies_dir / tree_relative.parts[0]
        self._library_trees.setdefault(library.package_name, tree)

        copy_path = self.copies_dir / f"{LIBRARY_COPY_PREFIX}{tree.name}" / built.relative_to(tree)
        if declaration:
            copy_path = copy_path.with_name(_STRIP_EXT_RE.sub("", copy_path.name))
        new_specifier = _relative_specifier(file.parent, copy_path)
        if new_specifier == match.specifier:
            return None
        return Replacement(match.start, match.end, new_specifier)

    def _locate_built(
        self,
        origin: OutputRoot,
        library: LibraryDescriptor,
        target: Path,
        declaration: bool,
        match: SpecifierMatch,
        action: str,
    ) -> Tuple[OutputRoot, Path]:
        relative = target.relative_to(library.source_dir)
        if relative == Path("."):
            relative = library.main_file.relative_to(library.source_dir)
        relative = relative.with_name(_STRIP_EXT_RE.sub("", relative.name))
        extensions = DECLARATION_FIRST if declaration else BUILT_CODE_FIRST
        searched: List[str] = []
        # Roots built for the same registry as the importing file are searched first.
        candidates = sorted(
            (root for root in self.roots if root.library.package_name == library.package_name),
            key=lambda root: root.registry != origin.registry,
        )
        for root in candidates:
            candidate = _find_with_extensions(root.path / relative, extensions)
            searched.append(str(root.path))
            if candidate is not None:
                return root, candidate
        raise LinkError(
            f"Cannot {action} '{match.specifier}' from library {library.package_name}: "
            f"no built file for '{relative.as_posix()}' in {', '.join(searched) or 'any output root'}"
        )

    async def _external(
        self, file: Path, root: OutputRoot, target: Path, declaration: bool, match: SpecifierMatch
    ) -> Optional[Replacement]:
        resolved = resolve_local_file(target, DECLARATION_FIRST if declaration else CODE_FIRST)
        if resolved is None:
            self._warn(f"Unresolved import '{match.specifier}' in {file}")
            return None

        resolved = resolved.resolve()
        key = (root.path, resolved)
        if key not in self._visited:
            self._visited.add(key)
            copy_path = self._allocate_copy(root, resolved)
            self._copies[key] = copy_path
            self.result.copied[copy_path] = resolved
            await asyncio.to_thread(copy_file, resolved, copy_path)
            _LOGGER.debug("Copied %s -> %s", resolved, copy_path)
            await self._process(copy_path, root, resolved.parent)
        copy_path = self._copies[key]

        new_specifier = _relative_specifier(file.parent, copy_path)
        if new_specifier == match.specifier:
            return None
        return Replacement(match.start, match.end, new_specifier)

    # ------------------------------------------------------------------
    # Helpers

    def _warn(self, message: str) -> None:
        if message not in self.result.warnings:
            self.result.warnings.append(message)
            _LOGGER.warning(message)

    def _library_for(self, target: Path) -> Optional[LibraryDescriptor]:
        for library in self.libraries:
            if is_within(target, library.source_dir):
                return library
        return None

    def _is_library_copy(self, path: Path) -> bool:
        if not is_within(path, self.copies_dir) or path == self.copies_dir:
            return False
        return path.relative_to(self.copies_dir).parts[0].startswith(LIBRARY_COPY_PREFIX)

    def _allocate_copy(self, root: OutputRoot, source: Path) -> Path:
        side = root.path / self.side_dir
        taken = {path for (owner, _), path in self._copies.items() if owner == root.path}
        stem = f"{source.parent.name}_{source.stem}"
        candidate = side / f"{stem}{source.suffix}"
        counter = 2
        while candidate in taken:
            candidate = side / f"{stem}_{counter}{source.suffix}"
            counter += 1
        return candidate


def resolve_local_file(target: Path, extensions: Sequence[str]) -> Optional[Path]:
    """Resolve an import target to a concrete file on disk."""
    if target.is_file():
        return target
    found = _find_with_extensions(target, tuple(extensions) + LOCAL_EXTENSIONS)
    if found is not None:
        return found
    if target.is_dir():
        return find_main_file(target)
    return None


def find_main_file(directory: Path) -> Optional[Path]:
    for name in MAIN_FILES + (f"{directory.name}-main.ts", f"{directory.name}-main.js"):
        candidate = directory / name
        if candidate.is_file():
            return candidate
    for pattern in ("*-main.*", "*.mod.*"):
        matches = sorted(path for path in directory.glob(pattern) if path.is_file())
        if matches:
            return matches[0]
    return None


def _find_with_extensions(base: Path, extensions: Sequence[str]) -> Optional[Path]:
    if base.name and base.is_file():
        return base
    stripped = base.with_name(_STRIP_EXT_RE.sub("", base.name)) if base.name else base
    for candidate_base in dict.fromkeys((base, stripped)):
        for extension in extensions:
            candidate = candidate_base.with_name(candidate_base.name + extension)
            if candidate.is_file():
                return candidate
    return None


def _normalize(path: Path) -> Path:
    return Path(os.path.normpath(path))


def _relative_specifier(from_dir: Path, target: Path) -> str:
    relative = Path(os.path.relpath(target, from_dir)).as_posix()
    if not relative.startswith("../"):
        relative = f"./{relative}"
    return relative


def _is_text_module(path: Path) -> bool:
    return bool(re.search(r"\.[cm]?[jt]sx?$", path.name))


async def link(
    roots: Sequence[OutputRoot],
    alias: str,
    libraries: Sequence[LibraryDescriptor],
    *,
    root_dir: Path,
    alias_root: str = "src",
    side_dir: str = "addons",
    mode: LinkMode = LinkMode.PACKAGE,
    copies_dir: Optional[Path] = None,
    concurrency: int = DEFAULT_CONCURRENCY,
) -> LinkResult:
    """Link every output root once; return the files that were rewritten."""
    linker = Linker(
        roots,
        libraries,
        root_dir=root_dir,
        alias=alias,
        alias_root=alias_root,
        side_dir=side_dir,
        mode=mode,
        copies_dir=copies_dir,
        concurrency=concurrency,
    )
    return await linker.run()


__all__ = [
    "CODE_FIRST",
    "DECLARATION_FIRST",
    "LinkMode",
    "LinkResult",
    "Linker",
    "OutputRoot",
    "find_main_file",
    "link",
    "resolve_local_file",
]

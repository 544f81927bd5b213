"""Loader pipeline: an ordered chain of per-file loaders."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Awaitable, Callable, List, Optional, Sequence

from ..models import InputFile, OutputFile

if TYPE_CHECKING:
    from .transpile import Transpiler

LoaderResult = Optional[List[OutputFile]]


@dataclass
class LoaderOptions:
    """Options shared by every loader in one transform pass."""

    ext: Optional[str] = None
    format: str = "esm"
    declaration: bool = False
    json_modules: bool = False
    transpiler: Optional["Transpiler"] = None


@dataclass
class LoaderContext:
    options: LoaderOptions
    load_file: Callable[[InputFile], Awaitable[List[OutputFile]]] = field(repr=False)


Loader = Callable[[InputFile, LoaderContext], Awaitable[LoaderResult]]


class LoaderPipeline:
    """Runs loaders in order until one claims the file.

    A loader returns ``None`` to decline. Any list, including an empty one,
    claims the file. Files no loader claims are copied through unchanged.
    """

    def __init__(self, loaders: Sequence[Loader], options: LoaderOptions) -> None:
        self.loaders = list(loaders)
        self.options = options

    async def load_file(self, input_file: InputFile) -> List[OutputFile]:
        context = LoaderContext(options=self.options, load_file=self.load_file)
        for loader in self.loaders:
            outputs = await loader(input_file, context)
            if outputs is not None:
                return outputs
        return [OutputFile(path=input_file.path, src_path=input_file.src_path, raw=True)]


__all__ = ["Loader", "LoaderContext", "LoaderOptions", "LoaderPipeline", "LoaderResult"]

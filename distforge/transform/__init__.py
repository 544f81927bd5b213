"""Source-to-output transformation pipeline."""

from __future__ import annotations

from .declarations import DeclarationExtractor, DeclarationResult, TscDeclarationExtractor
from .loader import Loader, LoaderContext, LoaderOptions, LoaderPipeline
from .loaders import BUILTIN_LOADERS, resolve_loaders
from .make import TransformOptions, TransformResult, transform
from .transpile import EsbuildTranspiler, PassthroughTranspiler, Transpiler

__all__ = [
    "BUILTIN_LOADERS",
    "DeclarationExtractor",
    "DeclarationResult",
    "EsbuildTranspiler",
    "Loader",
    "LoaderContext",
    "LoaderOptions",
    "LoaderPipeline",
    "PassthroughTranspiler",
    "TransformOptions",
    "TransformResult",
    "Transpiler",
    "TscDeclarationExtractor",
    "resolve_loaders",
    "transform",
]

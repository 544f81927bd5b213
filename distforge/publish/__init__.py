"""Publish collaborators: manifest writers and the registry publisher."""

from __future__ import annotations

from .manifests import (
    MANIFEST_WRITERS,
    JsrManifestWriter,
    ManifestWriter,
    NpmManifestWriter,
    PackageMetadata,
    filter_dependencies,
)
from .publisher import Publisher

__all__ = [
    "JsrManifestWriter",
    "MANIFEST_WRITERS",
    "ManifestWriter",
    "NpmManifestWriter",
    "PackageMetadata",
    "Publisher",
    "filter_dependencies",
]

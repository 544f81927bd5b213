"""Human-readable build summaries rendered from Jinja templates."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional

from jinja2 import Environment, FileSystemLoader

from .models import BuildManifest

_TEMPLATES_DIR = Path(__file__).with_name("templates")


def format_size(size: Optional[int]) -> str:
    value = size or 0
    if value < 1000:
        return f"{value} B"
    if value < 1000 * 1000:
        return f"{value / 1000:.2f} kB"
    return f"{value / (1000 * 1000):.2f} MB"


def create_environment(templates_dir: Path | None = None) -> Environment:
    directories = [str(templates_dir)] if templates_dir else []
    directories.append(str(_TEMPLATES_DIR))
    env = Environment(
        loader=FileSystemLoader(directories),
        autoescape=False,
        trim_blocks=True,
        lstrip_blocks=True,
    )
    env.filters["filesize"] = format_size
    return env


def render_template(name: str, **context: Any) -> str:
    return create_environment().get_template(name).render(**context)


def summarize(manifest: BuildManifest) -> List[Dict[str, Any]]:
    """Named entries with their chunk sizes, in manifest order."""
    sizes = manifest.sizes()
    rows: List[Dict[str, Any]] = []
    for entry in manifest.entries:
        if entry.chunk:
            continue
        chunks = [{"path": path, "bytes": sizes.get(path, 0)} for path in entry.chunks]
        chunk_total = sum(chunk["bytes"] for chunk in chunks)
        rows.append(
            {
                "path": entry.path,
                "total": (entry.bytes or 0) + chunk_total,
                "bytes": entry.bytes,
                "exports": entry.exports,
                "chunks": chunks,
            }
        )
    return rows


def render_report(
    manifest: BuildManifest, *, name: str, templates_dir: Path | None = None
) -> str:
    env = create_environment(templates_dir)
    return env.get_template("report.txt.j2").render(
        name=name,
        entries=summarize(manifest),
        total=manifest.total_bytes,
        warnings=manifest.warnings,
    )


__all__ = ["create_environment", "format_size", "render_report", "render_template", "summarize"]

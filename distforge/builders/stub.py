"""Development stubs that re-export sources instead of building them."""

from __future__ import annotations

import json
from pathlib import Path
from typing import List

from ..models import BuildEntry
from ..transform.specifiers import find_exports


def write_reexport_stub(entry: BuildEntry, ext: str) -> List[Path]:
    """Write ``<name><ext>`` (and a declaration) re-exporting the absolute source."""
    ext = ext if ext.startswith(".") else f".{ext}"
    target = entry.out_dir / f"{entry.name}{ext}"
    target.parent.mkdir(parents=True, exist_ok=True)
    source = json.dumps(entry.input.resolve().as_posix())

    lines = [f"export * from {source};"]
    if "default" in find_exports(entry.input.read_text(encoding="utf-8")):
        lines.append(f"export {{ default }} from {source};")
    body = "\n".join(lines) + "\n"

    if ext in {".cjs", ".cts"}:
        target.write_text(f"module.exports = require({source});\n", encoding="utf-8")
    else:
        target.write_text(body, encoding="utf-8")
    written = [target]

    if entry.declaration:
        declaration = entry.out_dir / f"{entry.name}.d.ts"
        declaration.write_text(body, encoding="utf-8")
        written.append(declaration)
    return written


__all__ = ["write_reexport_stub"]

"""Schema/defaults/documentation generator for configuration spec entries.

Input is a YAML or JSON document describing defaults. Leaves may carry
annotations instead of a bare value::

    port:
      $default: 3000
      $type: number
      $description: Port the dev server listens on.

The builder resolves a JSON schema from the document and writes the schema,
the plain defaults, a Markdown reference and (with declarations) a TypeScript
interface.
"""

from __future__ import annotations

import asyncio
import json
import re
from pathlib import Path
from typing import Any, Dict, List, Sequence, Tuple

import yaml

from ..context import BuildContext
from ..errors import EntryError
from ..hooks import HookStage
from ..logging import get_logger
from ..models import BuildEntry, ManifestEntry
from ..report import render_template

_LOGGER = get_logger("builders.spec")

_ANNOTATION_PREFIX = "$"
_LEAF_MARKERS = ("$default", "$type")
_IDENTIFIER_RE = re.compile(r"^[A-Za-z_$][\w$]*$")


def pascal_case(value: str) -> str:
    words = re.split(r"[^A-Za-z0-9]+", value)
    return "".join(word[:1].upper() + word[1:] for word in words if word)


def infer_type(value: Any) -> str:
    if value is None:
        return "any"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    if isinstance(value, dict):
        return "object"
    return "any"


def _is_leaf(node: Any) -> bool:
    return not isinstance(node, dict) or any(marker in node for marker in _LEAF_MARKERS)


def resolve_schema(node: Any, path: Tuple[str, ...] = ()) -> Dict[str, Any]:
    """Return a JSON-schema-like description of ``node``."""
    node_id = "#" + "/".join(path)
    if not _is_leaf(node):
        properties = {
            str(key): resolve_schema(value, path + (str(key),))
            for key, value in node.items()
            if not str(key).startswith(_ANNOTATION_PREFIX)
        }
        schema: Dict[str, Any] = {
            "type": "object",
            "id": node_id,
            "properties": properties,
            "default": {key: prop.get("default") for key, prop in properties.items()},
        }
        if node.get("$description"):
            schema["description"] = str(node["$description"])
        return schema

    if isinstance(node, dict):
        default = node.get("$default")
        type_name = str(node.get("$type") or infer_type(default))
        description = node.get("$description")
    else:
        default = node
        type_name = infer_type(node)
        description = None

    schema = {"type": type_name, "id": node_id, "default": default}
    if description:
        schema["description"] = str(description)
    if type_name == "array":
        item_types = sorted({infer_type(item) for item in default or []})
        schema["items"] = {"type": item_types[0] if len(item_types) == 1 else item_types or "any"}
    return schema


def resolve_defaults(node: Any) -> Any:
    if _is_leaf(node):
        return node.get("$default") if isinstance(node, dict) else node
    return {
        str(key): resolve_defaults(value)
        for key, value in node.items()
        if not str(key).startswith(_ANNOTATION_PREFIX)
    }


def _ts_type(schema: Dict[str, Any], indent: int) -> str:
    type_name = schema.get("type")
    if type_name == "object":
        return _ts_object(schema.get("properties", {}), indent)
    if type_name == "array":
        items = schema.get("items", {}).get("type", "any")
        names = items if isinstance(items, list) else [items]
        return "Array<" + " | ".join(_ts_scalar(name) for name in names) + ">"
    return _ts_scalar(str(type_name))


def _ts_scalar(type_name: str) -> str:
    return type_name if type_name in {"string", "number", "boolean", "any"} else "any"


def _ts_object(properties: Dict[str, Dict[str, Any]], indent: int) -> str:
    pad = "  " * (indent + 1)
    lines = ["{"]
    for key, prop in properties.items():
        name = key if _IDENTIFIER_RE.match(key) else json.dumps(key)
        doc = []
        if prop.get("description"):
            doc.append(f"{pad} * {prop['description']}")
        if prop.get("type") != "object":
            doc.append(f"{pad} * @default {json.dumps(prop.get('default'))}")
        if doc:
            lines.append(f"{pad}/**")
            lines.extend(doc)
            lines.append(f"{pad} */")
        lines.append(f"{pad}{name}: {_ts_type(prop, indent + 1)};")
    lines.append("  " * indent + "}")
    return "\n".join(lines)


def generate_types(schema: Dict[str, Any], interface_name: str) -> str:
    return f"export interface {interface_name} {_ts_object(schema.get('properties', {}), 0)}\n"


def _markdown_items(schema: Dict[str, Any], path: Tuple[str, ...] = ()) -> List[Dict[str, Any]]:
    items: List[Dict[str, Any]] = []
    for key, prop in schema.get("properties", {}).items():
        child = path + (key,)
        if prop.get("type") == "object":
            items.append(
                {
                    "kind": "object",
                    "path": ".".join(child),
                    "depth": len(child),
                    "description": prop.get("description"),
                }
            )
            items.extend(_markdown_items(prop, child))
        else:
            items.append(
                {
                    "kind": "leaf",
                    "path": ".".join(child),
                    "depth": len(child),
                    "type": prop.get("type"),
                    "default": json.dumps(prop.get("default")),
                    "description": prop.get("description"),
                }
            )
    return items


def generate_markdown(schema: Dict[str, Any]) -> str:
    return render_template("spec.md.j2", items=_markdown_items(schema))


def render_outputs(entry: BuildEntry, document: Any) -> Dict[str, str]:
    """Return output filename -> contents for one spec entry."""
    schema = resolve_schema(document)
    outputs = {
        f"{entry.name}.md": generate_markdown(schema),
        f"{entry.name}.schema.json": json.dumps(schema, indent=2) + "\n",
        f"{entry.name}.defaults.json": json.dumps(resolve_defaults(document), indent=2) + "\n",
    }
    if entry.declaration:
        outputs[f"{entry.name}.d.ts"] = generate_types(
            schema, pascal_case(f"{entry.name}-schema")
        )
    return outputs


def _load_document(entry: BuildEntry) -> Dict[str, Any]:
    if not entry.input.is_file():
        raise EntryError(f"Spec entry '{entry.name}' input is not a file: {entry.input}")
    try:
        document = yaml.safe_load(entry.input.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise EntryError(f"Failed to parse spec entry '{entry.name}': {exc}") from exc
    if document is None:
        return {}
    if not isinstance(document, dict):
        raise EntryError(f"Spec entry '{entry.name}' must contain a mapping at the root")
    return document


def _write_outputs(out_dir: Path, outputs: Dict[str, str]) -> List[Path]:
    written: List[Path] = []
    for filename, contents in outputs.items():
        target = out_dir / filename
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(contents, encoding="utf-8")
        written.append(target)
    return written


async def spec_build(ctx: BuildContext, entries: Sequence[BuildEntry]) -> None:
    ctx.hooks.call(HookStage.SPEC_ENTRIES, ctx, list(entries))
    for entry in entries:
        document = await asyncio.to_thread(_load_document, entry)
        outputs = render_outputs(entry, document)
        written = await asyncio.to_thread(_write_outputs, entry.out_dir, outputs)
        ctx.written.extend(written)
        for path in written:
            ctx.manifest.add(
                ManifestEntry(path=ctx.relative(path), bytes=path.stat().st_size, is_lib=entry.is_lib)
            )
        _LOGGER.info("Generated %d spec files for %s", len(written), entry.name)
    ctx.hooks.call(HookStage.SPEC_DONE, ctx)


__all__ = [
    "generate_markdown",
    "generate_types",
    "pascal_case",
    "render_outputs",
    "resolve_defaults",
    "resolve_schema",
    "spec_build",
]

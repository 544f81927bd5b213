"""Configuration loading for distforge (.distforge.yml).

Configuration is assembled from three layers: a named preset, the project
file, and invocation overrides (typically from the CLI). Every layer is parsed
into the same typed dataclasses, where ``None`` means "not set by this layer",
and layers are folded together with :func:`merge_config`.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, is_dataclass, replace
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

import yaml

from .errors import ConfigError

CONFIG_FILENAME = ".distforge.yml"


def _setting(kind: str, section: Optional[type] = None, choices: Sequence[str] = ()) -> Any:
    return field(default=None, metadata={"kind": kind, "section": section, "choices": tuple(choices)})


@dataclass
class TransformConfig:
    """Options for the source-to-output transformer."""

    ext: Optional[str] = _setting("str")
    format: Optional[str] = _setting("str", choices=("esm", "cjs"))
    declaration: Optional[bool] = _setting("bool")
    transpile: Optional[bool] = _setting("bool")
    pattern: Optional[List[str]] = _setting("str_list")
    exclude: Optional[List[str]] = _setting("str_list")
    loaders: Optional[List[str]] = _setting("str_list")
    json_modules: Optional[bool] = _setting("bool")
    concurrency: Optional[int] = _setting("int")


@dataclass
class BundleConfig:
    """Options handed to the plugin bundler backend."""

    bundler: Optional[str] = _setting("str")
    minify: Optional[bool] = _setting("bool")
    sourcemap: Optional[bool] = _setting("bool")
    target: Optional[str] = _setting("str")


@dataclass
class EntryConfig:
    """A raw build entry as written in configuration."""

    input: Optional[str] = _setting("str")
    builder: Optional[str] = _setting("str")
    out_dir: Optional[str] = _setting("str")
    name: Optional[str] = _setting("str")
    declaration: Optional[bool] = _setting("bool")
    pattern: Optional[str] = _setting("str")
    ext: Optional[str] = _setting("str")


@dataclass
class RegistryConfig:
    """Per-registry output settings."""

    enabled: Optional[bool] = _setting("bool")
    dist_dir: Optional[str] = _setting("str")
    ext: Optional[str] = _setting("str")
    declaration: Optional[bool] = _setting("bool")
    transpile: Optional[bool] = _setting("bool")


@dataclass
class LibraryConfig:
    """A sibling library published from the same repository."""

    main: Optional[str] = _setting("str")
    source_dir: Optional[str] = _setting("str")
    description: Optional[str] = _setting("str")
    registries: Optional[List[str]] = _setting("str_list")
    keep_dependencies: Optional[bool] = _setting("bool")


@dataclass
class LinkConfig:
    """Cross-library linker settings."""

    alias: Optional[str] = _setting("str")
    alias_root: Optional[str] = _setting("str")
    side_dir: Optional[str] = _setting("str")
    mode: Optional[str] = _setting("str", choices=("package", "inline", "copy"))


@dataclass
class BuildConfig:
    """Represents the settings defined in .distforge.yml."""

    preset: Optional[str] = _setting("str")
    out_dir: Optional[str] = _setting("str")
    entry_src_dir: Optional[str] = _setting("str")
    entries: Optional[List[EntryConfig]] = _setting("section_list", EntryConfig)
    externals: Optional[List[str]] = _setting("str_list")
    dependencies: Optional[List[str]] = _setting("str_list")
    clean: Optional[bool] = _setting("bool")
    parallel: Optional[bool] = _setting("bool")
    fail_on_warn: Optional[bool] = _setting("bool")
    declaration: Optional[bool] = _setting("bool")
    transform: Optional[TransformConfig] = _setting("section", TransformConfig)
    bundle: Optional[BundleConfig] = _setting("section", BundleConfig)
    registries: Optional[Dict[str, RegistryConfig]] = _setting("section_map", RegistryConfig)
    libraries: Optional[Dict[str, LibraryConfig]] = _setting("section_map", LibraryConfig)
    libs_dist_dir: Optional[str] = _setting("str")
    link: Optional[LinkConfig] = _setting("section", LinkConfig)


DEFAULTS = BuildConfig(
    preset="auto",
    out_dir="dist",
    entry_src_dir="src",
    entries=[],
    externals=[],
    dependencies=[],
    clean=False,
    parallel=False,
    fail_on_warn=True,
    transform=TransformConfig(
        ext="js",
        format="esm",
        transpile=True,
        pattern=["**"],
        exclude=[],
        loaders=["js", "json"],
        json_modules=False,
        concurrency=16,
    ),
    bundle=BundleConfig(bundler="esbuild", minify=False, sourcemap=False, target="es2020"),
    registries={
        "npm": RegistryConfig(
            enabled=True, dist_dir="dist-npm", ext="js", declaration=True, transpile=True
        ),
        "jsr": RegistryConfig(
            enabled=True, dist_dir="dist-jsr", ext="ts", declaration=False, transpile=False
        ),
    },
    libraries={},
    libs_dist_dir="dist-libs",
    link=LinkConfig(alias="~", alias_root="src", side_dir="addons", mode="package"),
)

PRESETS: Dict[str, BuildConfig] = {
    "auto": BuildConfig(),
    "library": BuildConfig(declaration=True, clean=True),
}


def merge_config(base: Any, override: Any) -> Any:
    """Fold ``override`` onto ``base`` field by field.

    Set scalars and lists in ``override`` replace the base value, nested
    sections merge recursively and mapping sections merge per key.
    """
    if override is None:
        return base
    if base is None:
        return override
    if is_dataclass(base):
        changes: Dict[str, Any] = {}
        for item in fields(base):
            changes[item.name] = merge_config(
                getattr(base, item.name), getattr(override, item.name)
            )
        return replace(base, **changes)
    if isinstance(base, dict):
        merged = dict(base)
        for key, value in override.items():
            merged[key] = merge_config(merged.get(key), value)
        return merged
    return override


def load_config(root: Path, overrides: Optional[Mapping[str, Any]] = None) -> BuildConfig:
    """Resolve the effective configuration for the project at ``root``."""
    project_layer = load_config_layer(_resolve_config_path(root))
    override_layer = parse_config(overrides or {}, source="overrides")

    preset_name = override_layer.preset or project_layer.preset or DEFAULTS.preset or "auto"
    preset_layer = PRESETS.get(preset_name)
    if preset_layer is None:
        choices = ", ".join(sorted(PRESETS))
        raise ConfigError(f"Unknown preset '{preset_name}' (expected one of: {choices})")

    config = DEFAULTS
    for layer in (preset_layer, project_layer, override_layer):
        config = merge_config(config, layer)
    return config


def load_config_layer(config_file: Path) -> BuildConfig:
    """Parse one configuration file; a missing or empty file is an empty layer."""
    if not config_file.exists():
        return BuildConfig()
    data = _read_config(config_file)
    if not isinstance(data, dict):
        raise ConfigError(f"{config_file.name} must contain a mapping at the root")
    return parse_config(data, source=config_file.name)


def parse_config(data: Mapping[str, Any], *, source: str = CONFIG_FILENAME) -> BuildConfig:
    return _parse_section(BuildConfig, data, source)


def _resolve_config_path(config_path: Path) -> Path:
    config_path = config_path.expanduser()
    if config_path.is_dir():
        return (config_path / CONFIG_FILENAME).resolve()
    return config_path.resolve()


def _read_config(path: Path) -> Any:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"Failed to read {path.name}: {exc}") from exc
    if not text.strip():
        return {}
    try:
        loaded = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to parse {path.name}: {exc}") from exc
    return {} if loaded is None else loaded


def _parse_section(cls: type, data: Any, where: str) -> Any:
    if not isinstance(data, Mapping):
        raise ConfigError(f"Expected a mapping for '{where}'")
    known = {item.name: item for item in fields(cls)}
    values: Dict[str, Any] = {}
    for key, raw in data.items():
        item = known.get(str(key))
        if item is None:
            raise ConfigError(f"Unknown key '{key}' in '{where}'")
        if raw is None:
            continue
        kind = item.metadata["kind"]
        section = item.metadata["section"]
        location = f"{where}.{key}"
        if kind == "section":
            values[item.name] = _parse_section(section, raw, location)
        elif kind == "section_map":
            if not isinstance(raw, Mapping):
                raise ConfigError(f"Expected a mapping for '{location}'")
            values[item.name] = {
                str(name): _parse_section(section, value or {}, f"{location}.{name}")
                for name, value in raw.items()
            }
        elif kind == "section_list":
            if not isinstance(raw, list):
                raise ConfigError(f"Expected a list for '{location}'")
            values[item.name] = [
                _parse_section(section, value, f"{location}[{index}]")
                for index, value in enumerate(raw)
            ]
        else:
            value = _SCALARS[kind](raw, location)
            choices = item.metadata["choices"]
            if choices and value not in choices:
                raise ConfigError(
                    f"Invalid value '{value}' for '{location}' (expected one of: {', '.join(choices)})"
                )
            values[item.name] = value
    return cls(**values)


def _as_str(value: Any, where: str) -> str:
    if isinstance(value, bool) or not isinstance(value, (str, int, float)):
        raise ConfigError(f"Expected a string for '{where}'")
    return str(value)


def _as_bool(value: Any, where: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "yes", "1"}:
            return True
        if lowered in {"false", "no", "0"}:
            return False
    raise ConfigError(f"Expected a boolean for '{where}'")


def _as_int(value: Any, where: str) -> int:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            pass
    raise ConfigError(f"Expected an integer for '{where}'")


def _as_str_list(value: Any, where: str) -> List[str]:
    if isinstance(value, str):
        return [value]
    if isinstance(value, list):
        return [_as_str(item, where) for item in value]
    raise ConfigError(f"Expected a list of strings for '{where}'")


_SCALARS: Dict[str, Callable[[Any, str], Any]] = {
    "str": _as_str,
    "bool": _as_bool,
    "int": _as_int,
    "str_list": _as_str_list,
}


__all__ = [
    "BuildConfig",
    "BundleConfig",
    "CONFIG_FILENAME",
    "ConfigError",
    "DEFAULTS",
    "EntryConfig",
    "LibraryConfig",
    "LinkConfig",
    "PRESETS",
    "RegistryConfig",
    "TransformConfig",
    "load_config",
    "load_config_layer",
    "merge_config",
    "parse_config",
]

import json
import tomllib
from pathlib import Path
from typing import Any, Mapping

import yaml

from .types import (
    DEFAULT_DEPRECATED,
    OPTIONAL_TOOLS,
    REQUIRED_TOOLS,
    BuildConfig,
    ConfigError,
    PathsConfig,
    ToolConfig,
    UnsupportedConfigFormatError,
    WatchConfig,
)


def load_config(path: str | Path) -> BuildConfig:
    pure_path = Path(path).expanduser().resolve()
    raw_file = read_mapping(pure_path)
    return _build_config(pure_path.parent, raw_file)


def read_mapping(path: str | Path) -> Mapping[str, Any]:
    pure_path = Path(path).expanduser().resolve()

    if not pure_path.exists():
        raise ConfigError(f"File not found: {pure_path}")

    if not pure_path.is_file():
        raise ConfigError(f"Path is not a file: {pure_path}")

    fmt = _detect_format(pure_path)
    return _parse_file(pure_path, fmt)


def _detect_format(path: Path) -> str:
    fmt = path.suffix
    match fmt:
        case ".yaml" | ".yml":
            return "yaml"
        case ".toml":
            return "toml"
        case ".json":
            return "json"
        case _:
            raise UnsupportedConfigFormatError(
                f"Non supported file extension: {fmt}\n Expected format: .yml/.yaml, .toml, .json"
            )


def _parse_file(path: Path, fmt: str) -> Mapping[str, Any]:
    match fmt:
        case "yaml":
            return _parse_yaml(path)
        case "toml":
            return _parse_toml(path)
        case "json":
            return _parse_json(path)
        case _:
            raise AssertionError("Unreachable")


def _read_text(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigError(f"{path}: cannot read file") from exc


def _parse_yaml(path: Path) -> Mapping[str, Any]:
    try:
        raw_file = yaml.safe_load(_read_text(path))
    except yaml.YAMLError as exc:
        raise ConfigError(f"{path}: invalid YAML") from exc

    return _require_mapping(path, "YAML", raw_file)


def _parse_toml(path: Path) -> Mapping[str, Any]:
    try:
        raw_file = tomllib.loads(_read_text(path))
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"{path}: invalid TOML") from exc

    return _require_mapping(path, "TOML", raw_file)


def _parse_json(path: Path) -> Mapping[str, Any]:
    try:
        raw_file = json.loads(_read_text(path))
    except json.JSONDecodeError as exc:
        raise ConfigError(f"{path}: invalid JSON") from exc

    return _require_mapping(path, "JSON", raw_file)


def _require_mapping(path: Path, kind: str, raw_file: Any) -> Mapping[str, Any]:
    if not isinstance(raw_file, Mapping):
        raise ConfigError(
            f"{path}: {kind} parsed succesfully but top-level value is not an object: {type(raw_file)}"
        )

    return raw_file


def _build_config(root: Path, raw: Mapping[str, Any]) -> BuildConfig:
    keys = {"paths", "tools", "deprecated", "watch"}

    for field in raw.keys():
        if field not in keys:
            raise ConfigError(f"Can't process: {field}")

    if not "tools" in raw:
        raise ConfigError("Missing 'tools' field")

    paths = _build_paths(raw.get("paths", {}))
    tools = _build_tools(raw["tools"])
    deprecated = _build_deprecated(raw.get("deprecated", DEFAULT_DEPRECATED))
    watch = _build_watch(raw.get("watch", {}))

    return BuildConfig(root, paths, tools, deprecated, watch)


def _build_paths(fields: Any) -> PathsConfig:
    if not isinstance(fields, Mapping):
        raise ConfigError(f"'paths' must be a mapping, got {type(fields)}")

    known = PathsConfig.keys()
    values = {}

    for key, item in fields.items():
        if key not in known:
            raise ConfigError(f"paths: Can't process: {key}")

        if not isinstance(item, str):
            raise ConfigError(f"paths: {key} should be a string")

        if len(item.strip()) < 1:
            raise ConfigError(f"paths: {key} can't be empty")

        values[key] = item.strip()

    return PathsConfig(**values)


def _build_tools(raw: Any) -> dict[str, ToolConfig]:
    if not isinstance(raw, Mapping):
        raise ConfigError(f"'tools' must be a mapping, got {type(raw)}")

    tools = {}
    known = set(REQUIRED_TOOLS) | set(OPTIONAL_TOOLS)

    for name, fields in raw.items():
        if name not in known:
            raise ConfigError(f"Unknown tool: {name}")

        tools[name] = _build_tool_config(name, fields)

    for name in REQUIRED_TOOLS:
        if name not in tools:
            raise ConfigError(f"Missing tool: {name}")

    return tools


def _build_tool_config(name: str, fields: Any) -> ToolConfig:
    keys = {"command", "callable", "env"}
    env = {}

    # A bare string is shorthand for {command: ...}
    if isinstance(fields, str):
        fields = {"command": fields}

    if not isinstance(fields, Mapping):
        raise ConfigError(f"{name} must be a mapping or a command string")

    for field in fields.keys():
        if field not in keys:
            raise ConfigError(f"{name}: Can't process: {field}")

    if ("command" in fields) == ("callable" in fields):
        raise ConfigError(f"{name}: exactly one of 'command' or 'callable' is required")

    for key in ("command", "callable"):
        if key in fields:
            if not isinstance(fields[key], str):
                raise ConfigError(f"{name}: The {key} should be a string")

            if len(fields[key].strip()) < 1:
                raise ConfigError(f"{name}: {key.capitalize()} missing")

    if "callable" in fields and ":" not in fields["callable"]:
        raise ConfigError(f"{name}: callable must look like 'module:function'")

    if "env" in fields:
        if not isinstance(fields["env"], Mapping):
            raise ConfigError(f"{name}: Env should be a mapping")

        for key, item in fields["env"].items():
            if not isinstance(key, str):
                raise ConfigError(f"{name}: {key} should be a string")

            if len(key.strip()) < 1:
                raise ConfigError(f"{name}: A key can't be empty")

            if not isinstance(item, str):
                raise ConfigError(f"{name}: {item} should be a string")

            env[key.strip()] = item

    command = fields["command"].strip() if "command" in fields else None
    ref = fields["callable"].strip() if "callable" in fields else None
    return ToolConfig(name, command, ref, env)


def _build_deprecated(raw: Any) -> dict[str, str]:
    if not isinstance(raw, Mapping):
        raise ConfigError(f"'deprecated' must be a mapping, got {type(raw)}")

    aliases = {}
    for key, item in raw.items():
        if not isinstance(key, str) or not isinstance(item, str):
            raise ConfigError(f"deprecated: {key} -> {item} should be strings")

        if len(key.strip()) < 1 or len(item.strip()) < 1:
            raise ConfigError("deprecated: names can't be empty")

        aliases[key.strip()] = item.strip()

    return aliases


def _build_watch(fields: Any) -> WatchConfig:
    keys = {"paths", "exclude", "delay_ms", "subset"}
    watch = WatchConfig()

    if not isinstance(fields, Mapping):
        raise ConfigError(f"'watch' must be a mapping, got {type(fields)}")

    for field in fields.keys():
        if field not in keys:
            raise ConfigError(f"watch: Can't process: {field}")

    for key in ("paths", "exclude", "subset"):
        if key in fields:
            setattr(watch, key, _string_list(f"watch.{key}", fields[key]))

    if "delay_ms" in fields:
        delay = fields["delay_ms"]
        # bool is an int subclass
        if not isinstance(delay, int) or isinstance(delay, bool) or delay < 1:
            raise ConfigError("watch: delay_ms should be a positive integer")

        watch.delay_ms = delay

    if len(watch.paths) < 1:
        raise ConfigError("watch: There must be at least one path to watch")

    if len(watch.subset) < 1:
        raise ConfigError("watch: The subset can't be empty")

    return watch


def _string_list(where: str, raw: Any) -> list[str]:
    if not isinstance(raw, list):
        raise ConfigError(f"{where}: should be a list")

    out = []
    for item in raw:
        if not isinstance(item, str):
            raise ConfigError(f"{where}: {item} should be a string")

        if len(item.strip()) < 1:
            raise ConfigError(f"{where}: An entry is empty")

        # Allows to ignore duplicates
        if item.strip() in out:
            continue

        out.append(item.strip())

    return out

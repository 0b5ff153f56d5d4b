"""Configuration loading for tether.

Layers, lowest priority first:
    1. Model defaults
    2. ``$XDG_CONFIG_HOME/tether/config.toml`` (``~/.config`` fallback)
    3. ``./tether.toml``
    4. the file named by ``$TETHER_CONFIG``
    5. an explicit ``path``
    6. single-setting environment variables (``TETHER_ASSISTANT_ID``,
       ``TETHER_LOG_LEVEL``, ``TETHER_WATCH_DIR``)
    7. programmatic ``overrides``

After validation, ``~`` is expanded in the tool and log paths and the
service API key is taken from ``service.api_key_env`` if not set.
"""

from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from tether.core.errors import ConfigError

from .schema import TetherConfig

ENV_SETTINGS: dict[str, tuple[str, str]] = {
    "TETHER_ASSISTANT_ID": ("service", "assistant_id"),
    "TETHER_LOG_LEVEL": ("logging", "level"),
    "TETHER_WATCH_DIR": ("tools", "watch_dir"),
}


def config_files(path: str | Path | None = None) -> list[Path]:
    """Config files that apply, in merge order.

    Raises:
        ConfigError: If ``$TETHER_CONFIG`` or *path* names a missing file.
    """
    xdg = os.environ.get("XDG_CONFIG_HOME")
    user_dir = Path(xdg) if xdg else Path.home() / ".config"
    candidates = (user_dir / "tether" / "config.toml", Path.cwd() / "tether.toml")
    found = [p for p in candidates if p.is_file()]

    explicit_paths = (
        ("TETHER_CONFIG", os.environ.get("TETHER_CONFIG")),
        ("path", path),
    )
    for label, explicit in explicit_paths:
        if not explicit:
            continue
        p = Path(explicit)
        if not p.is_file():
            msg = f"Config file not found ({label}): {explicit}"
            raise ConfigError(msg)
        found.append(p)
    return found


def _read_toml(path: Path) -> dict[str, Any]:
    try:
        with path.open("rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        msg = f"Invalid TOML in {path}: {e}"
        raise ConfigError(msg) from e
    except OSError as e:
        msg = f"Cannot read config file {path}: {e}"
        raise ConfigError(msg) from e


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Merge *override* into a copy of *base*; tables merge key by key."""
    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = _deep_merge(current, value)
        else:
            merged[key] = value
    return merged


def _env_layer() -> dict[str, Any]:
    layer: dict[str, Any] = {}
    for var, (section, key) in ENV_SETTINGS.items():
        value = os.environ.get(var)
        if value:
            layer.setdefault(section, {})[key] = value
    return layer


def _describe(error: ValidationError) -> str:
    """One ``section.key: reason`` line per invalid setting."""
    lines = []
    for item in error.errors():
        where = ".".join(str(part) for part in item["loc"]) or "(root)"
        lines.append(f"{where}: {item['msg']}")
    return "; ".join(lines)


def _finalize(config: TetherConfig) -> TetherConfig:
    tools = config.tools
    tools.store_dir = str(Path(tools.store_dir).expanduser())
    if tools.watch_dir:
        tools.watch_dir = str(Path(tools.watch_dir).expanduser())
    if config.logging.file:
        config.logging.file = str(Path(config.logging.file).expanduser())

    service = config.service
    if service.api_key is None and service.api_key_env:
        service.api_key = os.environ.get(service.api_key_env)
    return config


def load_config(
    path: str | Path | None = None,
    overrides: dict[str, Any] | None = None,
) -> TetherConfig:
    """Load, merge and validate configuration.

    Raises:
        ConfigError: On a missing file, invalid TOML, or a setting that
            fails validation.
    """
    merged: dict[str, Any] = {}
    for config_file in config_files(path):
        merged = _deep_merge(merged, _read_toml(config_file))
    merged = _deep_merge(merged, _env_layer())
    if overrides:
        merged = _deep_merge(merged, overrides)

    try:
        config = TetherConfig.model_validate(merged)
    except ValidationError as e:
        msg = f"Configuration validation failed: {_describe(e)}"
        raise ConfigError(msg) from e
    return _finalize(config)

"""Locates and loads .tandem.yaml into a TandemConfig.

String values may reference the environment as ``${NAME}`` or
``${NAME:-fallback}``. Relative entries under ``paths`` are taken relative
to the directory holding the config file, so a checked-in config keeps
working from any working directory.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from tandem_lb.config.models import TandemConfig

CONFIG_FILENAME = ".tandem.yaml"
CONFIG_ENV_VAR = "TANDEM_CONFIG"

_ENV_REF = re.compile(r"\$\{(?P<name>[A-Za-z_][A-Za-z0-9_]*)(?::-(?P<fallback>[^}]*))?\}")


def expand_env(value: str) -> str:
    """Expand environment references in *value*.

    An unset name with no fallback is left as written.
    """

    def _sub(match: re.Match[str]) -> str:
        name = match.group("name")
        if name in os.environ:
            return os.environ[name]
        fallback = match.group("fallback")
        return fallback if fallback is not None else match.group(0)

    return _ENV_REF.sub(_sub, value)


def expand_env_tree(data: Any) -> Any:
    """Apply expand_env to every string inside nested dicts and lists."""
    if isinstance(data, dict):
        return {key: expand_env_tree(value) for key, value in data.items()}
    if isinstance(data, list):
        return [expand_env_tree(item) for item in data]
    return expand_env(data) if isinstance(data, str) else data


def resolve_paths(data: dict[str, Any], base: Path) -> dict[str, Any]:
    """Anchor relative ``paths.*`` entries at *base*."""
    paths = data.get("paths")
    if not isinstance(paths, dict):
        return data
    anchored = {
        key: str(base / value) if isinstance(value, str) and value and not os.path.isabs(value) else value
        for key, value in paths.items()
    }
    return {**data, "paths": anchored}


def find_config_file(start: Path | None = None) -> Path | None:
    """Nearest .tandem.yaml in *start* (default cwd) or one of its parents."""
    here = (start or Path.cwd()).resolve()
    for directory in (here, *here.parents):
        if (directory / CONFIG_FILENAME).exists():
            return directory / CONFIG_FILENAME
    return None


def load_config(path: Path | None = None) -> TandemConfig:
    """Load and validate the config file.

    Lookup order: *path*, then ``$TANDEM_CONFIG``, then the nearest
    .tandem.yaml upwards from the working directory.
    """
    env_path = os.environ.get(CONFIG_ENV_VAR)
    config_path = path or (Path(env_path) if env_path else None) or find_config_file()
    if not config_path or not config_path.exists():
        raise FileNotFoundError(
            f"Could not find {CONFIG_FILENAME}. Copy .tandem.yaml.example, set ${CONFIG_ENV_VAR}, "
            "or pass --config."
        )

    raw = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ValueError(f"Invalid configuration in {config_path}: top level must be a mapping")

    data = resolve_paths(expand_env_tree(raw), config_path.resolve().parent)
    try:
        return TandemConfig(**data)
    except ValidationError as exc:
        raise ValueError(f"Invalid configuration in {config_path}: {exc}") from exc

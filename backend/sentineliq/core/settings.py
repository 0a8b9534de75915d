from __future__ import annotations

"""Crawler settings loader.

Resolution order for each crawler model (lowest to highest):
1. model defaults
2. optional YAML file (`SENTINELIQ_CONFIG_YAML`), section named after the crawler
3. environment variables `<PREFIX><FIELD_NAME_UPPER>`

Tuning is controllable without code changes; unknown YAML keys are rejected.
"""

import json
import os
from pathlib import Path
from typing import Any, Optional, TypeVar

import yaml
from pydantic import BaseModel, ValidationError

from sentineliq.core.env import load_env_if_present
from sentineliq.core.errors import ConfigError


CONFIG_YAML_ENV = "SENTINELIQ_CONFIG_YAML"

M = TypeVar("M", bound=BaseModel)


def load_yaml_section(path: Path, section: str) -> dict[str, Any]:
    raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(raw, dict):
        raise ConfigError(f"Invalid {path.name}: expected a top-level mapping.")
    data = raw.get(section) or {}
    if not isinstance(data, dict):
        raise ConfigError(f"Invalid {path.name}: section {section!r} must be a mapping.")
    return {str(k).lower(): v for k, v in data.items()}


def _env_value(raw: str) -> Any:
    # Lists/objects may be given as JSON (e.g. CORTEX_BLOCK_RESOURCES='["image"]').
    stripped = raw.strip()
    if stripped[:1] in ("[", "{"):
        try:
            return json.loads(stripped)
        except json.JSONDecodeError:
            return raw
    return raw


def env_overrides(model: type[BaseModel], prefix: str) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for name in model.model_fields:
        raw = os.environ.get(f"{prefix}{name.upper()}")
        if raw is not None and raw.strip() != "":
            out[name] = _env_value(raw)
    return out


def load_settings(model: type[M], *, section: str, env_prefix: str, yaml_path: Optional[Path] = None) -> M:
    load_env_if_present()
    data: dict[str, Any] = {}

    path = yaml_path
    if path is None and os.environ.get(CONFIG_YAML_ENV):
        path = Path(os.environ[CONFIG_YAML_ENV])
    if path is not None:
        if not path.is_file():
            raise ConfigError(f"Config file not found: {path}")
        data.update(load_yaml_section(path, section))

    data.update(env_overrides(model, env_prefix))
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid {section} settings: {e}") from e

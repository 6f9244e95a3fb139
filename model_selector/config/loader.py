"""Load and save the model-selector JSON config file."""

from __future__ import annotations

import json
import os
from pathlib import Path

from loguru import logger
from pydantic import ValidationError

from model_selector.config.schema import Config


class ConfigError(Exception):
    """The config file exists but cannot be used."""


def get_config_path() -> Path:
    """Return the config file path (``MODEL_SELECTOR_CONFIG`` overrides the default)."""
    override = os.environ.get("MODEL_SELECTOR_CONFIG", "").strip()
    if override:
        return Path(override).expanduser()
    return Path.home() / ".model-selector" / "config.json"


def read_config(path: Path | None = None) -> Config:
    """Read *path* strictly, raising ``ConfigError`` on any problem."""
    target = path or get_config_path()
    if not target.exists():
        return Config()
    try:
        payload = json.loads(target.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigError(f"Failed to read {target}: {exc}") from exc
    if not isinstance(payload, dict):
        raise ConfigError(f"Failed to read {target}: expected a JSON object")
    try:
        return Config(**payload)
    except ValidationError as exc:
        raise ConfigError(f"Invalid config {target}: {exc}") from exc


def load_config(path: Path | None = None) -> Config:
    """Load config from disk, falling back to defaults when it is unusable."""
    try:
        return read_config(path)
    except ConfigError as exc:
        logger.warning(f"[config] {exc}; using defaults")
        return Config()


def save_config(config: Config, path: Path | None = None) -> None:
    """Persist *config* to disk."""
    target = path or get_config_path()
    target.parent.mkdir(parents=True, exist_ok=True)
    payload = config.model_dump(mode="json", by_alias=True, exclude_none=True)
    target.write_text(json.dumps(payload, indent=2), encoding="utf-8")

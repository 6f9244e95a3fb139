"""Configuration module for model-selector."""

from model_selector.config.loader import ConfigError, get_config_path, load_config, save_config
from model_selector.config.schema import Config, MappingEntry, ModelTarget, UsageMatcher

__all__ = [
    "Config",
    "ConfigError",
    "MappingEntry",
    "ModelTarget",
    "UsageMatcher",
    "get_config_path",
    "load_config",
    "save_config",
]

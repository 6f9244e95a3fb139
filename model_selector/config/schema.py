"""Configuration schema for model-selector."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel
from pydantic_settings import BaseSettings, SettingsConfigDict

PriorityRule = Literal["fullAvailability", "remainingPercent", "earliestReset"]

PRIORITY_RULES: tuple[str, ...] = ("fullAvailability", "remainingPercent", "earliestReset")

DEFAULT_PRIORITY: list[str] = ["fullAvailability", "earliestReset", "remainingPercent"]

DEFAULT_DISABLED_PROVIDERS: list[str] = ["kiro"]

_ROOT_ALIASES = {
    "disabledProviders": "disabled_providers",
    "fetchTimeoutS": "fetch_timeout_s",
    "cooldownS": "cooldown_s",
    "debugLog": "debug_log",
}


def validate_priority(chain: list[str]) -> list[str]:
    """Ensure *chain* is a permutation of all three priority rules."""
    if sorted(chain) != sorted(PRIORITY_RULES):
        raise ValueError(
            "priority must list each of "
            + ", ".join(PRIORITY_RULES)
            + f" exactly once (got {chain!r})"
        )
    return list(chain)


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class UsageMatcher(_CamelModel):
    """Which usage windows a mapping entry applies to."""

    provider: str
    account: str | None = None
    window: str | None = None
    window_pattern: str | None = None


class ModelTarget(_CamelModel):
    """Logical model a usage window maps to."""

    provider: str
    id: str


class MappingEntry(_CamelModel):
    """One ordered mapping rule; the first matching entry wins."""

    usage: UsageMatcher
    model: ModelTarget | None = None
    ignore: bool = False
    # Percent of quota to keep untouched; buckets at or below it are skipped.
    reserve: int = Field(default=0, ge=0, le=99)


class ProviderConfig(BaseModel):
    """Command override for one usage provider."""

    command: str = ""
    timeout_s: float = 0.0


class ProvidersConfig(BaseModel):
    """Per-provider command overrides."""

    anthropic: ProviderConfig = Field(default_factory=ProviderConfig)
    copilot: ProviderConfig = Field(default_factory=ProviderConfig)
    gemini: ProviderConfig = Field(default_factory=ProviderConfig)
    codex: ProviderConfig = Field(default_factory=ProviderConfig)
    kiro: ProviderConfig = Field(default_factory=ProviderConfig)


class DisplayConfig(_CamelModel):
    """Status table configuration."""

    show_count: int = 3


class DebugLogConfig(BaseModel):
    """Optional debug log file."""

    enabled: bool = False
    path: str = "~/.model-selector/debug.log"


class Config(BaseSettings):
    """Root configuration for model-selector."""

    mappings: list[MappingEntry] = Field(default_factory=list)
    priority: list[PriorityRule] = Field(default_factory=lambda: list(DEFAULT_PRIORITY))
    disabled_providers: list[str] = Field(
        default_factory=lambda: list(DEFAULT_DISABLED_PROVIDERS)
    )
    providers: ProvidersConfig = Field(default_factory=ProvidersConfig)
    fetch_timeout_s: float = 6.0
    cooldown_s: float = 3600.0
    fallback: ModelTarget | None = None
    display: DisplayConfig = Field(default_factory=DisplayConfig)
    debug_log: DebugLogConfig = Field(default_factory=DebugLogConfig)

    model_config = SettingsConfigDict(
        env_prefix="MODEL_SELECTOR_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    @model_validator(mode="before")
    @classmethod
    def _accept_camel_case(cls, data: Any) -> Any:
        # Config files written for the editor extension use camelCase keys.
        if isinstance(data, dict):
            return {_ROOT_ALIASES.get(k, k): v for k, v in data.items()}
        return data

    @field_validator("priority")
    @classmethod
    def _check_priority(cls, value: list[str]) -> list[str]:
        return validate_priority(value)

    @field_validator("disabled_providers")
    @classmethod
    def _normalize_disabled(cls, value: list[str]) -> list[str]:
        return [p.strip().lower() for p in value if p and p.strip()]

    @property
    def debug_log_path(self) -> Path:
        return Path(self.debug_log.path).expanduser()

    def get_provider_config(self, name: str) -> ProviderConfig | None:
        """Get provider-specific configuration by key."""
        key = (name or "").strip().lower()
        value = getattr(self.providers, key, None)
        return value if isinstance(value, ProviderConfig) else None

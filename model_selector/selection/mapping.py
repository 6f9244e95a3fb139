"""Mapping resolution: which usage windows are ignored and which model they feed.

Mappings are scanned in list order and the first matching entry wins.
Lists hold tens of entries at most, so a linear scan is all that is needed.
"""

from __future__ import annotations

import re
from functools import lru_cache
from typing import Any, Callable, Sequence

from loguru import logger

from model_selector.config.schema import MappingEntry, UsageMatcher
from model_selector.host import ModelIdentity
from model_selector.usage.models import UsageCandidate

CATCH_ALL_PATTERNS: tuple[str, ...] = ("*", ".*", "^.*$", "^.*", ".*$", ".+", "^.+$")


def _field(usage: UsageMatcher | dict[str, Any], name: str, alias: str | None = None) -> Any:
    if isinstance(usage, dict):
        value = usage.get(name)
        if value is None and alias:
            value = usage.get(alias)
        return value
    return getattr(usage, name, None)


def is_catch_all_ignore_mapping(usage: UsageMatcher | dict[str, Any]) -> bool:
    """True when the matcher covers every window of its provider/account."""
    window = _field(usage, "window")
    pattern = _field(usage, "window_pattern", "windowPattern")
    if not window and not pattern:
        return True
    return bool(pattern) and pattern in CATCH_ALL_PATTERNS


@lru_cache(maxsize=256)
def _compile(pattern: str) -> re.Pattern[str] | None:
    try:
        return re.compile(pattern)
    except re.error as exc:
        logger.debug(f"[mapping] Invalid windowPattern {pattern!r}: {exc}")
        return None


def matches(usage: UsageMatcher, candidate: UsageCandidate) -> bool:
    """Does *usage* select *candidate*?"""
    if usage.provider != candidate.provider:
        return False
    if usage.account is not None and usage.account != candidate.account:
        return False
    if is_catch_all_ignore_mapping(usage):
        return True
    if usage.window:
        return usage.window == candidate.window_label
    compiled = _compile(usage.window_pattern or "")
    return compiled is not None and compiled.search(candidate.window_label) is not None


def _find(
    candidate: UsageCandidate,
    mappings: Sequence[MappingEntry],
    predicate: Callable[[MappingEntry], bool],
) -> MappingEntry | None:
    for mapping in mappings:
        if predicate(mapping) and matches(mapping.usage, candidate):
            return mapping
    return None


def find_ignore_mapping(
    candidate: UsageCandidate, mappings: Sequence[MappingEntry]
) -> MappingEntry | None:
    return _find(candidate, mappings, lambda m: m.ignore)


def find_model_mapping(
    candidate: UsageCandidate, mappings: Sequence[MappingEntry]
) -> MappingEntry | None:
    return _find(candidate, mappings, lambda m: not m.ignore and m.model is not None)


def is_provider_ignored(
    provider: str, account: str | None, mappings: Sequence[MappingEntry]
) -> bool:
    """True when a catch-all ignore mapping silences the whole provider/account."""
    return any(
        m.ignore
        and m.usage.provider == provider
        and (m.usage.account is None or m.usage.account == account)
        and is_catch_all_ignore_mapping(m.usage)
        for m in mappings
    )


def resolve_model(candidate: UsageCandidate, mappings: Sequence[MappingEntry]) -> ModelIdentity:
    """Mapped model for *candidate*, or its raw provider/window identity."""
    mapping = find_model_mapping(candidate, mappings)
    if mapping is not None and mapping.model is not None:
        return ModelIdentity(provider=mapping.model.provider, id=mapping.model.id)
    return ModelIdentity(provider=candidate.provider, id=candidate.window_label)


def reserve_for(candidate: UsageCandidate, mappings: Sequence[MappingEntry]) -> int:
    """Reserve percent of the model mapping that feeds *candidate* (0 if unmapped)."""
    mapping = find_model_mapping(candidate, mappings)
    return mapping.reserve if mapping is not None else 0


def is_above_reserve(candidate: UsageCandidate, mappings: Sequence[MappingEntry]) -> bool:
    return candidate.remaining_percent > reserve_for(candidate, mappings)


def cooldown_key(candidate: UsageCandidate, mappings: Sequence[MappingEntry]) -> str:
    """Key under which *candidate* is cooled down.

    Mapped candidates cool down per logical model so every bucket feeding
    that model is skipped together.
    """
    mapping = find_model_mapping(candidate, mappings)
    if mapping is not None and mapping.model is not None:
        return f"model|{mapping.model.provider}/{mapping.model.id}"
    return f"usage|{candidate.provider}|{candidate.account or ''}|{candidate.window_label}"


def provider_cooldown_key(provider: str, account: str | None) -> str:
    """Wildcard key covering every window of a provider/account."""
    return f"usage|{provider}|{account or ''}|*"

"""Mapping, ranking, cooldowns and the select/skip orchestrator."""

from model_selector.selection.cooldown import DEFAULT_COOLDOWN_S, CooldownStore
from model_selector.selection.mapping import (
    cooldown_key,
    find_ignore_mapping,
    find_model_mapping,
    is_catch_all_ignore_mapping,
    provider_cooldown_key,
    resolve_model,
)
from model_selector.selection.ranking import pick_best, selection_reason, sort_candidates
from model_selector.selection.selector import (
    ModelSelector,
    SelectionOutcome,
    SelectionStatus,
)

__all__ = [
    "CooldownStore",
    "DEFAULT_COOLDOWN_S",
    "ModelSelector",
    "SelectionOutcome",
    "SelectionStatus",
    "cooldown_key",
    "find_ignore_mapping",
    "find_model_mapping",
    "is_catch_all_ignore_mapping",
    "pick_best",
    "provider_cooldown_key",
    "resolve_model",
    "selection_reason",
    "sort_candidates",
]

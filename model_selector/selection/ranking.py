"""Priority ranking of usage candidates.

The priority chain is applied lexicographically: a later rule only breaks
ties left by every earlier rule.  Full ties keep the aggregator's order.
"""

from __future__ import annotations

from datetime import datetime
from functools import cmp_to_key
from typing import Sequence

from model_selector.config.schema import validate_priority
from model_selector.usage.models import UsageCandidate
from model_selector.usage.parsing import format_reset


def _sign(value: float) -> int:
    return (value > 0) - (value < 0)


def compare_candidates(
    a: UsageCandidate, b: UsageCandidate, priority: Sequence[str]
) -> tuple[int, str | None]:
    """Compare two candidates; a positive result means *a* ranks better.

    Returns ``(diff, rule)`` where *rule* names the deciding priority rule.
    """
    for rule in priority:
        if rule == "fullAvailability":
            diff = int(a.used_percent == 0) - int(b.used_percent == 0)
        elif rule == "remainingPercent":
            diff = _sign(a.remaining_percent - b.remaining_percent)
        elif rule == "earliestReset":
            if a.resets_at is None and b.resets_at is None:
                continue
            if a.resets_at is None:
                diff = -1
            elif b.resets_at is None:
                diff = 1
            else:
                diff = _sign((b.resets_at - a.resets_at).total_seconds())
        else:
            raise ValueError(f"Unknown priority rule {rule!r}")
        if diff:
            return diff, rule
    return 0, None


def sort_candidates(
    candidates: Sequence[UsageCandidate], priority: Sequence[str]
) -> list[UsageCandidate]:
    """Return candidates best-first; stable for full ties."""
    validate_priority(list(priority))
    return sorted(
        candidates,
        key=cmp_to_key(lambda a, b: -compare_candidates(a, b, priority)[0]),
    )


def pick_best(
    candidates: Sequence[UsageCandidate], priority: Sequence[str]
) -> UsageCandidate | None:
    """Best candidate under *priority*, or None when nothing is eligible."""
    ranked = sort_candidates(candidates, priority)
    return ranked[0] if ranked else None


def selection_reason(
    best: UsageCandidate,
    runner_up: UsageCandidate | None,
    priority: Sequence[str],
    now: datetime | None = None,
) -> str:
    """Short explanation of why *best* beat *runner_up*."""
    if runner_up is None:
        return "only available bucket"
    diff, rule = compare_candidates(best, runner_up, priority)
    if not diff or rule is None:
        return "tied after applying priority"
    if rule == "fullAvailability":
        return (
            f"fullAvailability ({best.remaining_percent:.0f}% vs "
            f"{runner_up.remaining_percent:.0f}%)"
        )
    if rule == "remainingPercent":
        return (
            f"higher remainingPercent ({best.remaining_percent:.0f}% vs "
            f"{runner_up.remaining_percent:.0f}%)"
        )
    best_reset = format_reset(best.resets_at, now) if best.resets_at else "unknown"
    runner_reset = format_reset(runner_up.resets_at, now) if runner_up.resets_at else "unknown"
    return f"earlier reset ({best_reset} vs {runner_reset})"

"""Gemini CLI usage probe via the ``/stats`` command.

Parsed output looks like (after ANSI stripping)::

    │  Auto (Gemini 3) Usage
    │  Model              Reqs    Usage remaining
    │  gemini-2.5-flash   -       99.9% resets in 23h 49m
    │  gemini-2.5-pro     -      100.0% resets in 23h 9m
"""

from __future__ import annotations

import re
from datetime import datetime

from model_selector.usage.base import UsageAdapter
from model_selector.usage.models import UsageReport, UsageWindow
from model_selector.usage.parsing import format_reset, local_now, parse_duration

# Per-model row in /stats output:
#   gemini-2.5-flash   -   99.9% resets in 23h 49m
_MODEL_ROW_RE = re.compile(
    r"(gemini-[\w./-]+)\s+[-\d]+\s+(\d+(?:\.\d+)?)%(?:\s+resets in\s+(\d+h(?:\s*\d+m)?|\d+m))?",
    re.IGNORECASE,
)

# Tier / plan label
_TIER_RE = re.compile(r"Tier:\s*(.+?)(?:\s{2,}|$)", re.MULTILINE | re.IGNORECASE)


def parse_gemini_stats(text: str, now: datetime | None = None) -> list[UsageWindow]:
    """Extract per-model usage from ``/stats`` panel output."""
    now = now or local_now()
    windows: list[UsageWindow] = []
    seen: set[str] = set()

    for m in _MODEL_ROW_RE.finditer(text):
        model = m.group(1).strip()
        if model in seen:
            continue
        seen.add(model)
        resets_at = None
        description = None
        if m.group(3):
            delta = parse_duration(m.group(3))
            if delta is not None:
                resets_at = now + delta
                description = format_reset(resets_at, now)
        windows.append(
            UsageWindow(
                label=model,
                used_percent=100.0 - float(m.group(2)),
                resets_at=resets_at,
                reset_description=description,
            )
        )

    return windows


class GeminiUsageAdapter(UsageAdapter):
    provider = "gemini"
    display_name = "Gemini"
    default_command = "gemini /stats"

    def parse(self, text: str, now: datetime | None = None) -> list[UsageWindow]:
        return parse_gemini_stats(text, now)

    def build_report(self, text: str, now: datetime | None = None) -> UsageReport:
        report = super().build_report(text, now)
        tier_m = _TIER_RE.search(text)
        if tier_m:
            report.plan = tier_m.group(1).strip()
        return report

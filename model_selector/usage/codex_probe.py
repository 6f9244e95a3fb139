"""Codex rate-limit probe via ``codex /status``.

Supports two output formats:

**Explicit window format**::

    5h limit: 75% left (resets in 3h 45m)
    Weekly limit: 60% left (resets in 6d 2h)

**TUI status-bar format** (codex v0.100+)::

    gpt-5.3-codex high · 100% left · ~/path
"""

from __future__ import annotations

import re
from datetime import datetime

from model_selector.usage.base import UsageAdapter
from model_selector.usage.models import UsageWindow
from model_selector.usage.parsing import format_reset, local_now, parse_duration

_5H_RE = re.compile(r"5[h\-](?:hour)?\s+limit", re.IGNORECASE)
_WEEKLY_RE = re.compile(r"weekly\s+limit", re.IGNORECASE)
_PCT_LEFT_RE = re.compile(r"(\d+(?:\.\d+)?)\s*%\s+left", re.IGNORECASE)
_PCT_USED_RE = re.compile(r"(\d+(?:\.\d+)?)\s*%\s+used", re.IGNORECASE)
_RESET_RE = re.compile(r"resets?\s+in\s+([\w ,]+)", re.IGNORECASE)
# The separator is U+00B7 (·) or › or similar.
_TUI_STATUS_RE = re.compile(r"[·›>]\s*(\d+(?:\.\d+)?)%\s+left", re.IGNORECASE)


def _parse_used_percent(line: str) -> float | None:
    m = _PCT_LEFT_RE.search(line)
    if m:
        return 100.0 - float(m.group(1))
    m = _PCT_USED_RE.search(line)
    if m:
        return float(m.group(1))
    return None


def _window(label: str, line: str, now: datetime) -> UsageWindow | None:
    used = _parse_used_percent(line)
    if used is None:
        return None
    resets_at = None
    description = None
    reset_m = _RESET_RE.search(line)
    if reset_m:
        delta = parse_duration(reset_m.group(1))
        if delta is not None:
            resets_at = now + delta
            description = format_reset(resets_at, now)
        else:
            description = reset_m.group(1).strip()
    return UsageWindow(
        label=label,
        used_percent=used,
        resets_at=resets_at,
        reset_description=description,
    )


def parse_codex_status_text(text: str, now: datetime | None = None) -> list[UsageWindow]:
    """Parse codex status output into a UsageWindow list."""
    now = now or local_now()
    windows: list[UsageWindow] = []
    seen: set[str] = set()

    # --- Pass 1: explicit-window format ---
    for line in text.splitlines():
        line = line.strip()
        if not line:
            continue
        if _5H_RE.search(line):
            label = "5h"
        elif _WEEKLY_RE.search(line):
            label = "Weekly"
        else:
            continue
        if label in seen:
            continue
        window = _window(label, line, now)
        if window is not None:
            seen.add(label)
            windows.append(window)

    if windows:
        return windows

    # --- Pass 2: TUI status-bar format "model · N% left · dir" ---
    for line in text.splitlines():
        m = _TUI_STATUS_RE.search(line)
        if m:
            windows.append(UsageWindow(label="Quota", used_percent=100.0 - float(m.group(1))))
            break

    return windows


class CodexUsageAdapter(UsageAdapter):
    provider = "codex"
    display_name = "Codex"
    default_command = "codex /status"

    def parse(self, text: str, now: datetime | None = None) -> list[UsageWindow]:
        return parse_codex_status_text(text, now)

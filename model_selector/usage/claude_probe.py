"""Claude Code usage probe via the ``/usage`` command.

Parsed output looks like (after ANSI stripping)::

    Current session
    █████████████ 76% used
    Resets 3:59pm (Asia/Oral)
    Current week (all models)
    █▌                 9% used
    Resets Mar 6, 9:59am (Asia/Oral)
    Current week (Opus)
    ▌                  2% used

Each "Current …" heading starts a section; the first ``N% used`` inside it
is the quota and an optional ``Resets Mon D`` line gives the reset date.
"""

from __future__ import annotations

import re
from datetime import datetime

from model_selector.usage.base import UsageAdapter
from model_selector.usage.models import UsageWindow
from model_selector.usage.parsing import format_reset, parse_month_name_day

# TUI strips spaces during rendering so "Current session" may appear as
# "Currentsession" and "Resets Mar 6" may appear as "ResetsMar6…".
_SECTION_RE = re.compile(
    r"Current\s*(session|week)\s*(?:\(([^)]*)\))?", re.IGNORECASE
)
_USED_RE = re.compile(r"(\d+(?:\.\d+)?)\s*%\s*used", re.IGNORECASE)
_RESET_RE = re.compile(r"Resets\s*(\S.*?)(?:\n|$)", re.IGNORECASE)


def _section_label(kind: str, scope: str | None) -> str:
    if kind.lower() == "session":
        return "Session"
    scope = (scope or "").strip().lower()
    if not scope or scope.startswith("all"):
        return "Week"
    # "Sonnet only" -> "Sonnet"
    return scope.split()[0].capitalize()


def _parse_reset(section: str, now: datetime | None) -> tuple[datetime | None, str | None]:
    reset_m = _RESET_RE.search(section)
    if not reset_m:
        return None, None
    reset_full = reset_m.group(1).strip()
    # Insert space between letters and digits if stripped by TUI
    spaced = re.sub(r"([A-Za-z])(\d)", r"\1 \2", reset_full)
    resets_at = parse_month_name_day(spaced, now)
    if resets_at is not None:
        return resets_at, format_reset(resets_at, now)
    # Same-day resets only print a clock time ("3:59pm").
    return None, reset_full[:20]


def parse_claude_usage(text: str, now: datetime | None = None) -> list[UsageWindow]:
    """Extract session and weekly usage from ``/usage`` panel output."""
    headings = list(_SECTION_RE.finditer(text))
    windows: list[UsageWindow] = []
    seen: set[str] = set()

    for idx, heading in enumerate(headings):
        end = headings[idx + 1].start() if idx + 1 < len(headings) else len(text)
        section = text[heading.end():end]
        used_m = _USED_RE.search(section)
        if not used_m:
            continue
        label = _section_label(heading.group(1), heading.group(2))
        if label in seen:
            continue
        seen.add(label)
        resets_at, description = _parse_reset(section, now)
        windows.append(
            UsageWindow(
                label=label,
                used_percent=float(used_m.group(1)),
                resets_at=resets_at,
                reset_description=description,
            )
        )

    return windows


class ClaudeUsageAdapter(UsageAdapter):
    provider = "anthropic"
    display_name = "Claude"
    default_command = "claude /usage"

    def parse(self, text: str, now: datetime | None = None) -> list[UsageWindow]:
        return parse_claude_usage(text, now)

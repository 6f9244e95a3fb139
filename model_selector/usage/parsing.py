"""Text helpers shared by the usage adapters.

Provider CLIs print loosely formatted, often ANSI-coloured text.  These
helpers normalise the common pieces: escape stripping, reset dates
(``resets on 02/10``, ``Resets Mar 6``), relative countdowns
(``resets in 3h 45m``) and human-readable reset descriptions.
"""

from __future__ import annotations

import calendar
import re
from datetime import date, datetime, timedelta

_ANSI_RE = re.compile(
    r"\x1b(?:\[[0-9;?]*[A-Za-z]|\][^\x07]*\x07|[PX^_].*?\x1b\\|.)"
)
_DURATION_PART_RE = re.compile(
    r"(\d+(?:\.\d+)?)\s*(d|h|m|s)(?:ays?|ours?|ins?|inutes?|econds?)?\b",
    re.IGNORECASE,
)
_MONTHS = {name.lower(): idx for idx, name in enumerate(calendar.month_abbr) if name}

# Years to try when a month/day (Feb 29) does not exist in the current year.
_MAX_YEAR_LOOKAHEAD = 8


def strip_ansi(text: str) -> str:
    return _ANSI_RE.sub("", text)


def local_now() -> datetime:
    return datetime.now().astimezone()


def normalize_label(label: str) -> str:
    """Fold case and whitespace so near-identical labels collapse together."""
    return " ".join(label.lower().split())


def next_occurrence(month: int, day: int, now: datetime | None = None) -> datetime | None:
    """Return midnight of the next ``month/day`` on or after today.

    A date equal to today counts as today (the reset has not been skipped
    yet); a date earlier in the year rolls to the following year.  Returns
    None when the month/day never exists.
    """
    now = now or local_now()
    today = now.date()
    for year in range(today.year, today.year + _MAX_YEAR_LOOKAHEAD):
        try:
            candidate = date(year, month, day)
        except ValueError:
            continue
        if candidate >= today:
            return datetime(year, month, day, tzinfo=now.tzinfo)
    return None


def parse_month_day(value: str, now: datetime | None = None) -> datetime | None:
    """Parse ``MM/DD`` into its next occurrence."""
    parts = value.strip().split("/")
    if len(parts) != 2:
        return None
    try:
        month, day = int(parts[0]), int(parts[1])
    except ValueError:
        return None
    if not 1 <= month <= 12:
        return None
    return next_occurrence(month, day, now)


def parse_month_name_day(value: str, now: datetime | None = None) -> datetime | None:
    """Parse ``Mar 6`` / ``March 6`` into its next occurrence."""
    m = re.match(r"\s*([A-Za-z]{3,})\.?\s*(\d{1,2})", value)
    if not m:
        return None
    month = _MONTHS.get(m.group(1)[:3].lower())
    if month is None:
        return None
    return next_occurrence(month, int(m.group(2)), now)


def parse_duration(text: str) -> timedelta | None:
    """Parse ``3h 45m`` / ``6d 2h`` / ``45 minutes`` into a timedelta."""
    total = timedelta()
    found = False
    for m in _DURATION_PART_RE.finditer(text):
        found = True
        amount = float(m.group(1))
        unit = m.group(2).lower()
        if unit == "d":
            total += timedelta(days=amount)
        elif unit == "h":
            total += timedelta(hours=amount)
        elif unit == "m":
            total += timedelta(minutes=amount)
        else:
            total += timedelta(seconds=amount)
    return total if found else None


def format_reset(resets_at: datetime, now: datetime | None = None) -> str:
    """Render a reset time relative to *now* (``now``, ``45m``, ``3h 5m``, ``2d 4h``, ``Mar 6``)."""
    now = now or local_now()
    if resets_at.tzinfo is None and now.tzinfo is not None:
        resets_at = resets_at.replace(tzinfo=now.tzinfo)
    diff = resets_at - now
    total_minutes = int(diff.total_seconds() // 60)
    if total_minutes <= 0:
        return "now"
    if total_minutes < 60:
        return f"{total_minutes}m"

    hours, mins = divmod(total_minutes, 60)
    if hours < 24:
        return f"{hours}h {mins}m" if mins else f"{hours}h"

    days, rem_hours = divmod(hours, 24)
    if days < 7:
        return f"{days}d {rem_hours}h" if rem_hours else f"{days}d"

    return f"{calendar.month_abbr[resets_at.month]} {resets_at.day}"

"""Usage data models for provider quota tracking."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime


def clamp_percent(value: float) -> float:
    """Clamp *value* into [0, 100]; NaN stays NaN so callers can drop it."""
    if math.isnan(value):
        return value
    return max(0.0, min(100.0, float(value)))


@dataclass(frozen=True)
class UsageWindow:
    """A single quota bucket reported by a provider (e.g. 5h, Weekly, Bonus)."""

    label: str
    used_percent: float = 0.0   # 0.0–100.0
    resets_at: datetime | None = None
    reset_description: str | None = None  # "3h 45m", "3d left", …

    def __post_init__(self) -> None:
        object.__setattr__(self, "used_percent", clamp_percent(self.used_percent))
        if self.resets_at is not None and self.resets_at.tzinfo is None:
            # Naive reset times are local wall-clock times.
            object.__setattr__(self, "resets_at", self.resets_at.astimezone())

    @property
    def remaining_percent(self) -> float:
        return 100.0 - self.used_percent

    def format_status(self) -> str:
        """Return the human-readable status string."""
        # Show one decimal place only when there is a fractional part (e.g. 99.9%)
        pct = f"{self.remaining_percent:.1f}".rstrip("0").rstrip(".")
        base = f"{pct}% left"
        if self.reset_description:
            return f"{base} · {self.reset_description}"
        return base


@dataclass
class UsageReport:
    """Usage snapshot for one provider account.

    A report with ``error`` set means the provider was unavailable; a report
    without windows and without an error is a valid "no active quotas" result.
    """

    provider: str
    display_name: str
    windows: list[UsageWindow] = field(default_factory=list)
    account: str | None = None
    plan: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class UsageCandidate:
    """One provider/account/window triple eligible for selection."""

    provider: str
    display_name: str
    window_label: str
    used_percent: float
    remaining_percent: float
    account: str | None = None
    resets_at: datetime | None = None
    reset_description: str | None = None

    @classmethod
    def from_window(cls, report: UsageReport, window: UsageWindow) -> "UsageCandidate":
        return cls(
            provider=report.provider,
            display_name=report.display_name,
            window_label=window.label,
            used_percent=window.used_percent,
            remaining_percent=window.remaining_percent,
            account=report.account,
            resets_at=window.resets_at,
            reset_description=window.reset_description,
        )

    @property
    def identity(self) -> tuple[str, str | None, str]:
        return (self.provider, self.account, self.window_label)

    @property
    def is_exhausted(self) -> bool:
        return self.remaining_percent <= 0

    def describe(self) -> str:
        return f"{self.display_name}/{self.window_label} ({self.remaining_percent:.0f}% left)"

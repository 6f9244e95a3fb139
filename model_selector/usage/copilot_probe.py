"""GitHub Copilot quota probe via ``gh api /copilot_internal/user``.

The ``gh`` CLI handles authentication; its output is the JSON user payload::

    {
      "login": "octocat",
      "copilot_plan": "individual",
      "quota_reset_date_utc": "2026-11-01T00:00:00Z",
      "quota_snapshots": {
        "premium_interactions": {"remaining": 120, "entitlement": 300},
        "chat": {"unlimited": true}
      }
    }
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any

from loguru import logger

from model_selector.usage.base import UsageAdapter
from model_selector.usage.models import UsageReport, UsageWindow
from model_selector.usage.parsing import format_reset, local_now


def _safe_date(value: Any) -> datetime | None:
    if not value or not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _used_from_snapshot(snapshot: dict[str, Any]) -> float:
    percent_remaining = snapshot.get("percent_remaining")
    if isinstance(percent_remaining, (int, float)):
        return max(0.0, 100.0 - percent_remaining)
    remaining = snapshot.get("remaining")
    entitlement = snapshot.get("entitlement")
    if isinstance(remaining, (int, float)) and isinstance(entitlement, (int, float)) and entitlement > 0:
        return max(0.0, 100.0 - remaining / entitlement * 100.0)
    return 0.0


def parse_copilot_user(payload: dict[str, Any], now: datetime | None = None) -> list[UsageWindow]:
    """Build Premium/Chat windows from the Copilot user payload."""
    now = now or local_now()
    snapshots = payload.get("quota_snapshots") or {}
    resets_at = _safe_date(payload.get("quota_reset_date_utc"))
    reset_desc = format_reset(resets_at, now) if resets_at else None
    windows: list[UsageWindow] = []

    premium = snapshots.get("premium_interactions")
    if isinstance(premium, dict):
        remaining = premium.get("remaining", 0)
        entitlement = premium.get("entitlement", 0)
        counts = f"{remaining}/{entitlement}"
        windows.append(
            UsageWindow(
                label="Premium",
                used_percent=_used_from_snapshot(premium),
                resets_at=resets_at,
                reset_description=f"{reset_desc} ({counts})" if reset_desc else counts,
            )
        )

    chat = snapshots.get("chat")
    if isinstance(chat, dict) and not chat.get("unlimited"):
        windows.append(
            UsageWindow(
                label="Chat",
                used_percent=_used_from_snapshot(chat),
                resets_at=resets_at,
                reset_description=reset_desc,
            )
        )

    if not windows:
        windows.append(UsageWindow(label="Access", used_percent=0.0, reset_description="Active"))
    return windows


class CopilotUsageAdapter(UsageAdapter):
    provider = "copilot"
    display_name = "Copilot"
    default_command = "gh api /copilot_internal/user"

    def _load(self, text: str) -> dict[str, Any] | None:
        try:
            payload = json.loads(text)
        except json.JSONDecodeError as exc:
            logger.debug(f"[usage] copilot payload is not JSON: {exc}")
            return None
        return payload if isinstance(payload, dict) else None

    def parse(self, text: str, now: datetime | None = None) -> list[UsageWindow]:
        payload = self._load(text)
        return parse_copilot_user(payload, now) if payload is not None else []

    def build_report(self, text: str, now: datetime | None = None) -> UsageReport:
        payload = self._load(text)
        if payload is None:
            return self.unavailable("Unexpected response from gh api")
        return UsageReport(
            provider=self.provider,
            display_name=self.display_name,
            windows=parse_copilot_user(payload, now),
            account=payload.get("login") or None,
            plan=payload.get("copilot_plan") or None,
        )

"""Kiro usage probe via ``kiro-cli chat --no-interactive /usage``.

Kiro prints a free-form panel where every quota is a ``label: value`` pair.
Parsed output looks like (after ANSI stripping)::

    | KIRO PRO |
    Model A Quota: 50/100
    Model B Usage: 75%
    resets on 10/11
    Bonus credits: 2/10
    expires in 3 days

Values are either percentages or ``n/m`` ratios.  ``Credits``,
``Remaining`` and ``Bonus`` quotas report what is *left*, everything else
reports what is *used*.  ``resets on``/``expires in`` phrases attach to the
quota printed just before them.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime

from loguru import logger

from model_selector.usage.base import CommandUnavailable, UsageAdapter, run_command
from model_selector.usage.models import UsageReport, UsageWindow, clamp_percent
from model_selector.usage.parsing import format_reset, normalize_label, parse_month_day

# ---------------------------------------------------------------------------
# Patterns
# ---------------------------------------------------------------------------

_VALUE = (
    r"(?:"
    r"(?:[█▓▒░]+|[#=]+)?\s*(?P<pct>\d+(?:\.\d+)?)\s*%"
    r"|\(?(?P<num>\d+(?:\.\d+)?)\s*(?:/|of)\s*(?P<den>\d+(?:\.\d+)?)\)?"
    r")"
)
_QUOTA_RE = re.compile(
    r"(?P<prefix>[^|]*?)"
    r"(?P<keyword>Progress|Usage|Credits|Quota|Remaining|Bonus)\s*:?\s*" + _VALUE,
    re.IGNORECASE,
)
# "Label: value" without a known keyword, e.g. "Premium: 40%".
_GENERIC_RE = re.compile(
    r"(?P<label>[A-Za-z][^:|]*?)\s*:\s*" + _VALUE,
    re.IGNORECASE,
)
_RESET_RE = re.compile(r"resets\s+on\s+\b(\d{1,2}/\d{1,2})\b", re.IGNORECASE)
_EXPIRY_RE = re.compile(r"expires\s+in\s+(\d+)\s+days?", re.IGNORECASE)
_PLAN_RE = re.compile(r"\|\s*(KIRO\s+\w+)", re.IGNORECASE)
_BONUS_LABEL_RE = re.compile(r"^(?:remaining\s+)?bonus(?:\s+credits)?$", re.IGNORECASE)

_PREFIX_NOISE = (
    re.compile(r"resets\s+on\s+\b\d{1,2}/\d{1,2}\b\s*", re.IGNORECASE),
    re.compile(r"expires\s+in\s+\d+\s+days?\s*", re.IGNORECASE),
    re.compile(r"\d+(?:\.\d+)?\s*%\s*"),
    re.compile(r"\(?\d+(?:\.\d+)?\s*(?:/|of)\s*\d+(?:\.\d+)?\)?\s*"),
)

_IGNORED_LABELS = ("system health", "disk usage", "cpu", "memory", "bandwidth")
_REMAINING_KEYWORDS = ("remaining", "credits", "bonus")


@dataclass
class _Draft:
    label: str
    used_percent: float
    end: int = 0
    resets_at: datetime | None = None
    reset_description: str | None = None

    @property
    def has_reset(self) -> bool:
        return bool(self.resets_at or self.reset_description)

    def freeze(self) -> UsageWindow:
        return UsageWindow(
            label=self.label,
            used_percent=self.used_percent,
            resets_at=self.resets_at,
            reset_description=self.reset_description,
        )


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def _clean_prefix(prefix: str) -> str:
    for pattern in _PREFIX_NOISE:
        prefix = pattern.sub("", prefix)
    return prefix.strip().strip(":- \t").strip()


def _used_from_match(m: re.Match[str], counts_remaining: bool) -> float:
    if m.group("pct") is not None:
        value = float(m.group("pct"))
        return 100.0 - value if counts_remaining else value
    num = float(m.group("num"))
    den = float(m.group("den"))
    if den <= 0:
        return 0.0
    ratio = num / den * 100.0
    return 100.0 - ratio if counts_remaining else ratio


def _label_for(prefix: str, keyword: str) -> str:
    label = _clean_prefix(prefix)
    if not label:
        return keyword or "Credits"
    if keyword and keyword.lower() not in label.lower():
        return f"{label} {keyword}"
    return label


def _is_ignored(label: str) -> bool:
    lowered = label.lower()
    return any(item in lowered for item in _IGNORED_LABELS)


def _quotas_in_line(line: str) -> list[_Draft]:
    drafts: list[_Draft] = []
    for m in _QUOTA_RE.finditer(line):
        keyword = m.group("keyword")
        label = _label_for(m.group("prefix"), keyword)
        if _is_ignored(label):
            continue
        counts_remaining = (
            keyword.lower() in _REMAINING_KEYWORDS or "bonus" in label.lower()
        )
        used = clamp_percent(_used_from_match(m, counts_remaining))
        if "bonus" in label.lower() or (
            label.lower() == "remaining" and "bonus" in line.lower()
        ):
            if _BONUS_LABEL_RE.match(label) or label.lower() == "remaining":
                label = "Bonus"
        drafts.append(_Draft(label=label, used_percent=used, end=m.end()))

    if drafts:
        return drafts

    for m in _GENERIC_RE.finditer(line):
        label = _clean_prefix(m.group("label"))
        if not label or _is_ignored(label):
            continue
        used = clamp_percent(_used_from_match(m, counts_remaining=False))
        drafts.append(_Draft(label=label, used_percent=used, end=m.end()))
    return drafts


def _target_before(line_quotas: list[_Draft], index: int) -> _Draft | None:
    for draft in reversed(line_quotas):
        if draft.end <= index:
            return draft
    return None


def _dedupe(drafts: list[_Draft]) -> list[_Draft]:
    """Collapse drafts sharing a normalized label.

    The more pessimistic (higher used) entry wins; on a tie the one carrying
    reset info wins; a surviving entry without reset info inherits it.
    """
    by_label: dict[str, _Draft] = {}
    for draft in drafts:
        key = normalize_label(draft.label)
        existing = by_label.get(key)
        if existing is None:
            by_label[key] = draft
            continue
        if draft.used_percent > existing.used_percent or (
            draft.used_percent == existing.used_percent
            and draft.has_reset
            and not existing.has_reset
        ):
            keep, drop = draft, existing
        else:
            keep, drop = existing, draft
        if not keep.has_reset and drop.has_reset:
            keep.resets_at = drop.resets_at
            keep.reset_description = drop.reset_description
        by_label[key] = keep
    return list(by_label.values())


def parse_kiro_windows(text: str, now: datetime | None = None) -> list[UsageWindow]:
    """Extract every recognizable quota from Kiro ``/usage`` output."""
    drafts: list[_Draft] = []

    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line:
            continue

        line_quotas = _quotas_in_line(line)
        drafts.extend(line_quotas)

        for m in _RESET_RE.finditer(line):
            resets_at = parse_month_day(m.group(1), now)
            if resets_at is None:
                continue
            target = _target_before(line_quotas, m.start())
            if target is None and drafts and drafts[-1].resets_at is None:
                target = drafts[-1]
            if target is not None:
                target.resets_at = resets_at
                target.reset_description = format_reset(resets_at, now)

        for m in _EXPIRY_RE.finditer(line):
            description = f"{m.group(1)}d left"
            target = _target_before(line_quotas, m.start())
            if target is None and drafts and not drafts[-1].reset_description:
                target = drafts[-1]
            if target is not None:
                target.reset_description = description

    return [draft.freeze() for draft in _dedupe(drafts)]


# ---------------------------------------------------------------------------
# Adapter
# ---------------------------------------------------------------------------

class KiroUsageAdapter(UsageAdapter):
    provider = "kiro"
    display_name = "Kiro"
    default_command = "kiro-cli chat --no-interactive /usage"
    account = "cli"

    def parse(self, text: str, now: datetime | None = None) -> list[UsageWindow]:
        return parse_kiro_windows(text, now)

    def build_report(self, text: str, now: datetime | None = None) -> UsageReport:
        report = super().build_report(text, now)
        plan_m = _PLAN_RE.search(text)
        report.plan = plan_m.group(1).strip() if plan_m else "Kiro"
        return report

    async def fetch(self) -> UsageReport:
        binary = self.argv[0] if self.argv else "kiro-cli"
        try:
            await run_command([binary, "whoami"], timeout_s=min(self.timeout_s, 5.0))
        except CommandUnavailable as exc:
            logger.debug(f"[usage] kiro login check failed: {exc}")
            reason = str(exc) if "not found" in str(exc) else "Not logged in"
            return self.unavailable(reason)
        except OSError as exc:
            return self.unavailable(f"failed to start: {exc}")
        return await super().fetch()

"""Run every enabled usage adapter and flatten the results into candidates."""

from __future__ import annotations

import asyncio
import math
from typing import TYPE_CHECKING, Iterable, Sequence

from loguru import logger

from model_selector.usage.base import UsageAdapter
from model_selector.usage.claude_probe import ClaudeUsageAdapter
from model_selector.usage.codex_probe import CodexUsageAdapter
from model_selector.usage.copilot_probe import CopilotUsageAdapter
from model_selector.usage.gemini_probe import GeminiUsageAdapter
from model_selector.usage.kiro_probe import KiroUsageAdapter
from model_selector.usage.models import UsageCandidate, UsageReport

if TYPE_CHECKING:
    from model_selector.config.schema import Config

# Registration order is also the candidate output order.
ADAPTER_TYPES: dict[str, type[UsageAdapter]] = {
    "anthropic": ClaudeUsageAdapter,
    "copilot": CopilotUsageAdapter,
    "gemini": GeminiUsageAdapter,
    "codex": CodexUsageAdapter,
    "kiro": KiroUsageAdapter,
}


def build_adapters(config: "Config") -> list[UsageAdapter]:
    """Instantiate all known adapters with per-provider overrides applied."""
    adapters: list[UsageAdapter] = []
    for key, adapter_type in ADAPTER_TYPES.items():
        provider_cfg = config.get_provider_config(key)
        command = provider_cfg.command if provider_cfg else ""
        timeout_s = (
            provider_cfg.timeout_s
            if provider_cfg and provider_cfg.timeout_s
            else config.fetch_timeout_s
        )
        adapters.append(adapter_type(command=command, timeout_s=timeout_s))
    return adapters


def build_candidates(reports: Iterable[UsageReport]) -> list[UsageCandidate]:
    """Flatten reports into candidates, one per (provider, account, window).

    Error reports contribute nothing.  Duplicate identities keep the entry
    with more remaining quota, at the position where the identity was first
    seen.
    """
    by_identity: dict[tuple[str, str | None, str], UsageCandidate] = {}
    for report in reports:
        if not report.ok:
            continue
        for window in report.windows:
            if math.isnan(window.used_percent):
                continue
            candidate = UsageCandidate.from_window(report, window)
            existing = by_identity.get(candidate.identity)
            if existing is None or candidate.remaining_percent > existing.remaining_percent:
                by_identity[candidate.identity] = candidate
    return list(by_identity.values())


class UsageAggregator:
    """Concurrent fan-out over the configured usage adapters."""

    def __init__(
        self,
        adapters: Sequence[UsageAdapter],
        disabled_providers: Iterable[str] = (),
        timeout_s: float = 6.0,
        grace_s: float = 1.0,
    ) -> None:
        self.adapters = list(adapters)
        self.disabled = {p.strip().lower() for p in disabled_providers}
        self.timeout_s = timeout_s
        self.grace_s = grace_s

    @classmethod
    def from_config(cls, config: "Config") -> "UsageAggregator":
        return cls(
            build_adapters(config),
            disabled_providers=config.disabled_providers,
            timeout_s=config.fetch_timeout_s,
        )

    @property
    def active_adapters(self) -> list[UsageAdapter]:
        return [a for a in self.adapters if a.provider.lower() not in self.disabled]

    async def _fetch_one(self, adapter: UsageAdapter) -> UsageReport:
        # Outlasts the adapter's command timeout; covers hangs outside the subprocess.
        limit = max(self.timeout_s, adapter.timeout_s) + self.grace_s
        try:
            return await asyncio.wait_for(adapter.fetch(), timeout=limit)
        except asyncio.TimeoutError:
            logger.warning(f"[usage] {adapter.provider} timed out after {limit:g}s")
            return adapter.unavailable("Timeout")
        except Exception as exc:
            logger.warning(f"[usage] {adapter.provider} fetch failed: {exc}")
            return adapter.unavailable(str(exc)[:120])

    async def fetch_reports(self) -> list[UsageReport]:
        """Fetch all enabled providers concurrently, in registration order."""
        active = self.active_adapters
        if not active:
            logger.info("[usage] All providers are disabled")
            return []
        reports = await asyncio.gather(*(self._fetch_one(a) for a in active))
        ok = sum(1 for r in reports if r.ok)
        logger.debug(f"[usage] Fetched {ok}/{len(reports)} provider(s) successfully")
        return list(reports)

    async def collect(self) -> list[UsageCandidate]:
        return build_candidates(await self.fetch_reports())

"""Selection orchestrator: fetch → map → filter → rank → switch.

Usage:
    selector = ModelSelector(config, aggregator, CooldownStore(), FileModelHost(),
                             on_notify=print_notification)   # (level, message)
    outcome = await selector.select()
    outcome = await selector.skip()

``select()`` and ``skip()`` are not re-entrant; callers must run them one
at a time.
"""

from __future__ import annotations

import inspect
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Sequence

from loguru import logger

from model_selector.config.schema import Config
from model_selector.host import ModelHost, ModelIdentity
from model_selector.selection.cooldown import CooldownStore
from model_selector.selection.mapping import (
    cooldown_key,
    find_ignore_mapping,
    is_above_reserve,
    is_provider_ignored,
    provider_cooldown_key,
    resolve_model,
)
from model_selector.selection.ranking import selection_reason, sort_candidates
from model_selector.usage.aggregator import UsageAggregator, build_candidates
from model_selector.usage.models import UsageCandidate, UsageReport

OnNotify = Callable[[str, str], None]  # (level, message)

_RATE_LIMIT_MARKERS = ("429", "rate limit", "rate-limit", "too many requests")


class SelectionStatus(str, Enum):
    SWITCHED = "switched"
    ALREADY_USING = "already_using"
    NO_CANDIDATE = "no_candidate"
    SWITCH_FAILED = "switch_failed"


@dataclass
class SelectionOutcome:
    """Result of one select/skip run."""

    status: SelectionStatus
    message: str
    model: ModelIdentity | None = None
    candidate: UsageCandidate | None = None
    key: str | None = None
    notices: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.status in (SelectionStatus.SWITCHED, SelectionStatus.ALREADY_USING)


@dataclass
class _Eligibility:
    candidates: list[UsageCandidate]
    eligible: list[UsageCandidate]
    cooling: int


def format_duration(seconds: float) -> str:
    return f"{max(1, round(seconds / 60))}m"


def _display_key(key: str) -> str:
    if key.startswith("model|"):
        return key[len("model|"):]
    if key.startswith("usage|"):
        return "/".join(part for part in key[len("usage|"):].split("|") if part)
    return key


class ModelSelector:
    """Composes aggregation, mapping, cooldowns and ranking into select/skip."""

    def __init__(
        self,
        config: Config,
        aggregator: UsageAggregator,
        cooldowns: CooldownStore,
        host: ModelHost,
        on_notify: OnNotify | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config
        self.aggregator = aggregator
        self.cooldowns = cooldowns
        self.host = host
        self.clock = clock

        self.on_notify = on_notify

        self.last_reports: list[UsageReport] = []
        self.ranked: list[UsageCandidate] = []

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def select(
        self,
        reason: str = "command",
        reports: Sequence[UsageReport] | None = None,
    ) -> SelectionOutcome:
        """Pick the best usable candidate and switch the host to it."""
        self.cooldowns.load()
        now = self.clock()
        preloaded = reports is not None
        if reports is None:
            reports = await self.aggregator.fetch_reports()
        self.last_reports = list(reports)
        logger.debug(f"[selector] Running selection (reason: {reason})")

        self._apply_provider_errors(self.last_reports, now, warn=not preloaded)
        state = self._eligibility(self.last_reports, now)

        if state.cooling and reason == "command":
            self._notify(
                "info",
                f"{state.cooling} usage bucket(s) skipped due to temporary cooldown.",
            )

        self.ranked = sort_candidates(state.eligible, self.config.priority)
        if not state.eligible:
            if not state.candidates:
                detail = "no usage windows found. Check provider CLIs and logins."
            elif state.cooling:
                detail = "every remaining usage bucket is on cooldown."
            else:
                detail = "all usage buckets are ignored. Remove an ignore mapping or add a model mapping."
            return self._no_candidate(f"No usable provider: {detail}")

        # Buckets at or below their reserve stay visible in self.ranked but are
        # never picked.
        usable = [c for c in self.ranked if is_above_reserve(c, self.config.mappings)]
        if not usable:
            return await self._use_fallback(
                reserved=any(not c.is_exhausted for c in self.ranked)
            )

        best = usable[0]
        runner_up = usable[1] if len(usable) > 1 else None
        model = resolve_model(best, self.config.mappings)
        key = cooldown_key(best, self.config.mappings)

        self.cooldowns.last_selected = key
        self.cooldowns.flush(now)

        return await self._switch(
            model,
            key=key,
            candidate=best,
            via=best.describe(),
            reason_text=selection_reason(best, runner_up, self.config.priority),
        )

    async def skip(self) -> SelectionOutcome:
        """Cool down the last selection and switch to the next-best candidate."""
        self.cooldowns.load()
        key = self.cooldowns.last_selected
        reports: list[UsageReport] | None = None

        if key is None:
            first = await self.select(reason="skip")
            if first.key is None:
                return first
            key = first.key
            reports = self.last_reports

        now = self.clock()
        duration = self.config.cooldown_s
        self.cooldowns.put_cooldown(key, duration, now)
        self.cooldowns.last_selected = None
        self.cooldowns.flush(now)

        notice = f"Skipped {_display_key(key)}; cooldown for {format_duration(duration)}."
        logger.info(f"[selector] {notice}")
        self._notify("info", notice)

        outcome = await self.select(reason="skip", reports=reports)
        outcome.notices.insert(0, notice)
        return outcome

    async def preview(self) -> list[UsageCandidate]:
        """Rank current candidates without switching (for status display)."""
        self.cooldowns.load()
        now = self.clock()
        self.last_reports = await self.aggregator.fetch_reports()
        state = self._eligibility(self.last_reports, now)
        self.ranked = sort_candidates(state.eligible, self.config.priority)
        return self.ranked

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _notify(self, level: str, message: str) -> None:
        if self.on_notify is None:
            return
        try:
            self.on_notify(level, message)
        except Exception as exc:
            logger.debug(f"[selector] on_notify callback error: {exc}")

    def _is_cooling(self, candidate: UsageCandidate, now: float) -> bool:
        return self.cooldowns.is_cooling_down(
            cooldown_key(candidate, self.config.mappings), now
        ) or self.cooldowns.is_cooling_down(
            provider_cooldown_key(candidate.provider, candidate.account), now
        )

    def _eligibility(self, reports: Sequence[UsageReport], now: float) -> _Eligibility:
        candidates = build_candidates(reports)
        eligible = [
            c for c in candidates if find_ignore_mapping(c, self.config.mappings) is None
        ]
        cooling = [c for c in eligible if self._is_cooling(c, now)]
        if cooling:
            eligible = [c for c in eligible if c not in cooling]
        return _Eligibility(candidates=candidates, eligible=eligible, cooling=len(cooling))

    def _apply_provider_errors(
        self, reports: Sequence[UsageReport], now: float, warn: bool
    ) -> None:
        """Pause rate-limited providers and surface other fetch failures."""
        changed = False

        for report in reports:
            if report.ok:
                continue
            if is_provider_ignored(report.provider, report.account, self.config.mappings):
                continue
            key = provider_cooldown_key(report.provider, report.account)
            error = report.error or ""

            if any(marker in error.lower() for marker in _RATE_LIMIT_MARKERS):
                already_paused = self.cooldowns.is_cooling_down(key, now)
                if self.cooldowns.extend_cooldown(key, self.config.cooldown_s, now):
                    changed = True
                if not already_paused:
                    self._notify(
                        "warning",
                        f"Rate limit detected for {report.display_name}. "
                        f"Pausing this provider for {format_duration(self.config.cooldown_s)}.",
                    )
                continue

            logger.debug(f"[selector] {report.display_name} unavailable: {error}")
            if warn and not self.cooldowns.is_cooling_down(key, now):
                self._notify("warning", f"Usage check failed for {report.display_name}: {error}")

        if changed:
            self.cooldowns.flush(now)

    def _no_candidate(self, message: str) -> SelectionOutcome:
        logger.info(f"[selector] {message}")
        self._notify("error", message)
        return SelectionOutcome(status=SelectionStatus.NO_CANDIDATE, message=message)

    async def _use_fallback(self, reserved: bool = False) -> SelectionOutcome:
        fallback = self.config.fallback
        if fallback is None:
            if reserved:
                return self._no_candidate(
                    "No usable provider: all non-ignored usage buckets are at or below "
                    "their reserve thresholds."
                )
            return self._no_candidate(
                "No usable provider: all non-ignored usage buckets are exhausted (0% remaining)."
            )
        model = ModelIdentity(provider=fallback.provider, id=fallback.id)
        key = f"fallback:{model}"
        self.cooldowns.last_selected = key
        self.cooldowns.flush(self.clock())
        return await self._switch(
            model,
            key=key,
            candidate=None,
            via="last-resort fallback",
            reason_text="all quota-tracked models exhausted",
        )

    async def _switch(
        self,
        model: ModelIdentity,
        key: str,
        candidate: UsageCandidate | None,
        via: str,
        reason_text: str,
    ) -> SelectionOutcome:
        current = self.host.current_model()
        if current is not None and current == model:
            message = f"Already using {model} via {via}. Reason: {reason_text}."
            self._notify("info", message)
            return SelectionOutcome(
                status=SelectionStatus.ALREADY_USING,
                message=message,
                model=model,
                candidate=candidate,
                key=key,
            )

        try:
            result = self.host.set_model(model)
            if inspect.isawaitable(result):
                result = await result
        except Exception as exc:
            message = f"Failed to set model to {model}: {exc}"
            result = None
        else:
            message = (
                f"Failed to set model to {model}. Check provider status or credentials."
            )

        if not result:
            logger.warning(f"[selector] {message}")
            self._notify("error", message)
            return SelectionOutcome(
                status=SelectionStatus.SWITCH_FAILED,
                message=message,
                model=model,
                candidate=candidate,
                key=key,
            )

        message = f"Set model to {model} via {via}. Reason: {reason_text}."
        logger.info(f"[selector] {message}")
        self._notify("info", message)
        return SelectionOutcome(
            status=SelectionStatus.SWITCHED,
            message=message,
            model=model,
            candidate=candidate,
            key=key,
        )

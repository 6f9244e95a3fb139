from __future__ import annotations

from datetime import timedelta

import pytest

from model_selector.config.schema import Config
from model_selector.host import ModelIdentity
from model_selector.selection.cooldown import CooldownStore
from model_selector.selection.selector import ModelSelector, SelectionStatus
from model_selector.usage.aggregator import UsageAggregator
from model_selector.usage.copilot_probe import parse_copilot_user
from model_selector.usage.models import UsageWindow
from tests.conftest import NOW, FakeAdapter, FakeHost

pytestmark = pytest.mark.unit

TWO_PROVIDER_CONFIG = {
    "priority": ["remainingPercent", "fullAvailability", "earliestReset"],
    "disabledProviders": [],
    "mappings": [
        {"usage": {"provider": "p1", "window": "w"}, "model": {"provider": "p1", "id": "m1"}},
        {"usage": {"provider": "p2", "window": "w"}, "model": {"provider": "p2", "id": "m2"}},
    ],
}


def _selector(adapters, host, cooldown_path, clock, config=None, notes=None):
    cfg = Config.model_validate(config or TWO_PROVIDER_CONFIG)
    selector = ModelSelector(
        cfg,
        UsageAggregator(adapters, disabled_providers=cfg.disabled_providers),
        CooldownStore(cooldown_path),
        host,
        on_notify=(lambda level, msg: notes.append((level, msg))) if notes is not None else None,
        clock=clock,
    )
    return selector


def _two_providers():
    return [
        FakeAdapter("p1", [UsageWindow("w", 10)]),
        FakeAdapter("p2", [UsageWindow("w", 20)]),
    ]


@pytest.mark.asyncio
async def test_select_keeps_current_model(cooldown_path, clock):
    host = FakeHost(current=ModelIdentity("p1", "m1"))
    notes = []
    selector = _selector(_two_providers(), host, cooldown_path, clock, notes=notes)

    outcome = await selector.select()

    assert outcome.status is SelectionStatus.ALREADY_USING
    assert outcome.message.startswith("Already using p1/m1")
    assert host.calls == []
    assert notes[-1][1] == outcome.message


@pytest.mark.asyncio
async def test_skip_after_select_moves_to_next_provider(cooldown_path, clock):
    host = FakeHost(current=ModelIdentity("p1", "m1"))
    selector = _selector(_two_providers(), host, cooldown_path, clock)
    await selector.select()

    outcome = await selector.skip()

    assert outcome.status is SelectionStatus.SWITCHED
    assert host.calls == [ModelIdentity("p2", "m2")]
    assert "Set model to p2/m2" in outcome.message
    assert any("cooldown" in notice for notice in outcome.notices)
    assert selector.cooldowns.is_cooling_down("model|p1/m1", clock.value + 1800)


@pytest.mark.asyncio
async def test_skip_state_persists_across_instances(cooldown_path, clock):
    host = FakeHost(current=ModelIdentity("p1", "m1"))
    await _selector(_two_providers(), host, cooldown_path, clock).select()

    outcome = await _selector(_two_providers(), host, cooldown_path, clock).skip()

    assert outcome.model == ModelIdentity("p2", "m2")
    third = await _selector(_two_providers(), host, cooldown_path, clock).select()
    assert third.status is SelectionStatus.ALREADY_USING
    assert third.model == ModelIdentity("p2", "m2")


@pytest.mark.asyncio
async def test_skip_without_prior_selection(cooldown_path, clock):
    host = FakeHost(current=ModelIdentity("p1", "m1"))
    adapters = _two_providers()
    selector = _selector(adapters, host, cooldown_path, clock)

    outcome = await selector.skip()

    assert outcome.status is SelectionStatus.SWITCHED
    assert outcome.model == ModelIdentity("p2", "m2")
    assert outcome.notices[0] == "Skipped p1/m1; cooldown for 60m."
    assert [a.calls for a in adapters] == [1, 1]


@pytest.mark.asyncio
async def test_cooldown_expires(cooldown_path, clock):
    host = FakeHost(current=ModelIdentity("p2", "m2"))
    selector = _selector(_two_providers(), host, cooldown_path, clock)
    selector.cooldowns.load()
    selector.cooldowns.put_cooldown("model|p1/m1", 3600, clock.value)

    assert (await selector.select()).model == ModelIdentity("p2", "m2")
    clock.value += 7200
    outcome = await selector.select()
    assert outcome.status is SelectionStatus.SWITCHED
    assert outcome.model == ModelIdentity("p1", "m1")


@pytest.mark.asyncio
async def test_no_candidates(cooldown_path, clock):
    host = FakeHost()
    notes = []
    selector = _selector([FakeAdapter("p1", error="p1 not found")], host, cooldown_path, clock, notes=notes)

    outcome = await selector.select()

    assert outcome.status is SelectionStatus.NO_CANDIDATE
    assert outcome.message.startswith("No usable provider")
    assert not outcome.success
    assert host.calls == []
    assert ("warning", "Usage check failed for P1: p1 not found") in notes


@pytest.mark.asyncio
async def test_ignored_candidates_are_not_selected(cooldown_path, clock):
    config = dict(TWO_PROVIDER_CONFIG)
    config["mappings"] = [{"usage": {"provider": "p1"}, "ignore": True}] + TWO_PROVIDER_CONFIG["mappings"]
    host = FakeHost()
    selector = _selector(_two_providers(), host, cooldown_path, clock, config=config)

    outcome = await selector.select()

    assert outcome.model == ModelIdentity("p2", "m2")


@pytest.mark.asyncio
async def test_unmapped_candidate_uses_raw_identity(cooldown_path, clock):
    host = FakeHost()
    config = {"disabledProviders": [], "mappings": []}
    selector = _selector([FakeAdapter("codex", [UsageWindow("5h", 30)])], host, cooldown_path, clock, config=config)

    outcome = await selector.select()

    assert outcome.model == ModelIdentity("codex", "5h")
    assert selector.cooldowns.last_selected == "usage|codex||5h"


@pytest.mark.asyncio
async def test_switch_failure_is_reported(cooldown_path, clock):
    host = FakeHost(succeed=False)
    selector = _selector(_two_providers(), host, cooldown_path, clock)

    outcome = await selector.select()

    assert outcome.status is SelectionStatus.SWITCH_FAILED
    assert "p1/m1" in outcome.message
    assert host.calls == [ModelIdentity("p1", "m1")]


@pytest.mark.asyncio
async def test_host_exception_message_is_surfaced(cooldown_path, clock):
    class BrokenHost(FakeHost):
        def set_model(self, model):
            raise RuntimeError("model registry offline")

    selector = _selector(_two_providers(), BrokenHost(), cooldown_path, clock)
    outcome = await selector.select()
    assert outcome.status is SelectionStatus.SWITCH_FAILED
    assert "model registry offline" in outcome.message


@pytest.mark.asyncio
async def test_rate_limited_provider_is_paused(cooldown_path, clock):
    host = FakeHost()
    notes = []
    adapters = [
        FakeAdapter("p1", error="HTTP 429 Too Many Requests"),
        FakeAdapter("p2", [UsageWindow("w", 20)]),
    ]
    selector = _selector(adapters, host, cooldown_path, clock, notes=notes)

    outcome = await selector.select()

    assert outcome.model == ModelIdentity("p2", "m2")
    assert selector.cooldowns.is_cooling_down("usage|p1||*", clock.value + 60)
    assert sum(1 for level, msg in notes if "Rate limit" in msg) == 1

    await selector.select()
    assert sum(1 for level, msg in notes if "Rate limit" in msg) == 1


@pytest.mark.asyncio
async def test_provider_cooldown_blocks_its_buckets(cooldown_path, clock):
    host = FakeHost()
    selector = _selector(_two_providers(), host, cooldown_path, clock)
    selector.cooldowns.load()
    selector.cooldowns.put_cooldown("usage|p1||*", 600, clock.value)

    outcome = await selector.select()

    assert outcome.model == ModelIdentity("p2", "m2")


@pytest.mark.asyncio
async def test_exhausted_buckets_use_fallback(cooldown_path, clock):
    config = dict(TWO_PROVIDER_CONFIG, fallback={"provider": "local", "id": "tiny"})
    adapters = [FakeAdapter("p1", [UsageWindow("w", 100)]), FakeAdapter("p2", [UsageWindow("w", 100)])]
    host = FakeHost()
    selector = _selector(adapters, host, cooldown_path, clock, config=config)

    outcome = await selector.select()

    assert outcome.status is SelectionStatus.SWITCHED
    assert outcome.model == ModelIdentity("local", "tiny")
    assert outcome.candidate is None


@pytest.mark.asyncio
async def test_exhausted_buckets_without_fallback(cooldown_path, clock):
    adapters = [FakeAdapter("p1", [UsageWindow("w", 100)])]
    selector = _selector(adapters, FakeHost(), cooldown_path, clock)

    outcome = await selector.select()

    assert outcome.status is SelectionStatus.NO_CANDIDATE
    assert "exhausted" in outcome.message


@pytest.mark.asyncio
async def test_exhausted_bucket_is_never_picked_over_partial(cooldown_path, clock):
    config = dict(TWO_PROVIDER_CONFIG, priority=["earliestReset", "fullAvailability", "remainingPercent"])
    adapters = [
        FakeAdapter("p1", [UsageWindow("w", 100, resets_at=NOW)]),
        FakeAdapter("p2", [UsageWindow("w", 95)]),
    ]
    selector = _selector(adapters, FakeHost(), cooldown_path, clock, config=config)

    outcome = await selector.select()

    assert outcome.model == ModelIdentity("p2", "m2")


@pytest.mark.asyncio
async def test_preview_ranks_without_switching(cooldown_path, clock):
    host = FakeHost()
    selector = _selector(_two_providers(), host, cooldown_path, clock)

    ranked = await selector.preview()

    assert [c.provider for c in ranked] == ["p1", "p2"]
    assert host.calls == []


def _reserve_config(reserve, **extra):
    config = {
        "priority": ["remainingPercent", "fullAvailability", "earliestReset"],
        "disabledProviders": [],
        "mappings": [
            {
                "usage": {"provider": "p1", "window": "w"},
                "model": {"provider": "p1", "id": "m1"},
                "reserve": reserve,
            },
            {"usage": {"provider": "p2", "window": "w"}, "model": {"provider": "p2", "id": "m2"}},
        ],
    }
    config.update(extra)
    return config


@pytest.mark.asyncio
@pytest.mark.parametrize("used", [85, 80])
async def test_bucket_at_or_below_reserve_is_not_selected(cooldown_path, clock, used):
    host = FakeHost()
    notes = []
    adapters = [FakeAdapter("p1", [UsageWindow("w", used)])]
    selector = _selector(adapters, host, cooldown_path, clock, config=_reserve_config(20), notes=notes)

    outcome = await selector.select()

    assert outcome.status is SelectionStatus.NO_CANDIDATE
    assert "at or below their reserve thresholds" in outcome.message
    assert notes[-1] == ("error", outcome.message)
    assert host.calls == []


@pytest.mark.asyncio
async def test_bucket_above_reserve_is_selected(cooldown_path, clock):
    host = FakeHost()
    adapters = [FakeAdapter("p1", [UsageWindow("w", 75)])]
    selector = _selector(adapters, host, cooldown_path, clock, config=_reserve_config(20))

    outcome = await selector.select()

    assert outcome.status is SelectionStatus.SWITCHED
    assert outcome.model == ModelIdentity("p1", "m1")


@pytest.mark.asyncio
async def test_all_buckets_below_reserve_use_fallback(cooldown_path, clock):
    host = FakeHost()
    config = _reserve_config(20, fallback={"provider": "fallback", "id": "fallback-model"})
    adapters = [FakeAdapter("p1", [UsageWindow("w", 85)])]
    selector = _selector(adapters, host, cooldown_path, clock, config=config)

    outcome = await selector.select()

    assert outcome.status is SelectionStatus.SWITCHED
    assert outcome.model == ModelIdentity("fallback", "fallback-model")
    assert "last-resort fallback" in outcome.message


@pytest.mark.asyncio
async def test_reserved_bucket_loses_to_bucket_without_reserve(cooldown_path, clock):
    host = FakeHost()
    adapters = [
        FakeAdapter("p1", [UsageWindow("w", 50)]),
        FakeAdapter("p2", [UsageWindow("w", 70)]),
    ]
    selector = _selector(adapters, host, cooldown_path, clock, config=_reserve_config(60))

    outcome = await selector.select()

    assert outcome.model == ModelIdentity("p2", "m2")
    assert [c.provider for c in selector.ranked] == ["p1", "p2"]


@pytest.mark.asyncio
async def test_zero_reserve_allows_nearly_empty_bucket(cooldown_path, clock):
    host = FakeHost()
    adapters = [FakeAdapter("p1", [UsageWindow("w", 99)])]
    selector = _selector(adapters, host, cooldown_path, clock, config=_reserve_config(0))

    outcome = await selector.select()

    assert outcome.model == ModelIdentity("p1", "m1")


@pytest.mark.asyncio
async def test_copilot_reset_without_offset_ranks_by_earliest_reset(cooldown_path, clock):
    copilot_windows = parse_copilot_user(
        {
            "quota_reset_date_utc": "2026-11-01T00:00:00",
            "quota_snapshots": {"premium_interactions": {"remaining": 150, "entitlement": 300}},
        },
        NOW,
    )
    config = {
        "priority": ["earliestReset", "remainingPercent", "fullAvailability"],
        "disabledProviders": [],
        "mappings": [
            {"usage": {"provider": "copilot"}, "model": {"provider": "github", "id": "gpt-5"}},
            {"usage": {"provider": "p2"}, "model": {"provider": "p2", "id": "m2"}},
        ],
    }
    adapters = [
        FakeAdapter("copilot", copilot_windows),
        FakeAdapter("p2", [UsageWindow("w", 50, resets_at=NOW + timedelta(hours=1))]),
    ]
    selector = _selector(adapters, FakeHost(), cooldown_path, clock, config=config)

    outcome = await selector.select()

    assert outcome.status is SelectionStatus.SWITCHED
    assert outcome.model == ModelIdentity("p2", "m2")

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from model_selector.host import ModelIdentity
from model_selector.usage.base import UsageAdapter
from model_selector.usage.models import UsageReport, UsageWindow

NOW = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)
T0 = 1_700_000_000.0


class FakeAdapter(UsageAdapter):
    """Adapter returning a canned report (or raising) without a subprocess."""

    default_command = "fake"

    def __init__(
        self,
        provider: str,
        windows: list[UsageWindow] | None = None,
        error: str | None = None,
        account: str | None = None,
        raises: Exception | None = None,
        delay: float = 0.0,
        timeout_s: float = 1.0,
    ) -> None:
        super().__init__(timeout_s=timeout_s)
        self.provider = provider
        self.display_name = provider.capitalize()
        self.account = account
        self._windows = windows or []
        self._error = error
        self._raises = raises
        self._delay = delay
        self.calls = 0

    def parse(self, text, now=None):
        return list(self._windows)

    async def fetch(self) -> UsageReport:
        import asyncio

        self.calls += 1
        if self._delay:
            await asyncio.sleep(self._delay)
        if self._raises is not None:
            raise self._raises
        if self._error is not None:
            return self.unavailable(self._error)
        return UsageReport(
            provider=self.provider,
            display_name=self.display_name,
            windows=list(self._windows),
            account=self.account,
        )


class FakeHost:
    def __init__(self, current: ModelIdentity | None = None, succeed: bool = True) -> None:
        self.current = current
        self.succeed = succeed
        self.calls: list[ModelIdentity] = []

    def current_model(self) -> ModelIdentity | None:
        return self.current

    def set_model(self, model: ModelIdentity) -> bool:
        self.calls.append(model)
        if self.succeed:
            self.current = model
        return self.succeed


class Clock:
    def __init__(self, start: float = T0) -> None:
        self.value = start

    def __call__(self) -> float:
        return self.value


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def cooldown_path(tmp_path):
    return tmp_path / "cooldowns.json"

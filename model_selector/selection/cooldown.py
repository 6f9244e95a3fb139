"""Persisted cooldown store at ~/.model-selector/cooldowns.json.

File layout::

    {
      "cooldowns": {"model|p1/m1": 1760000000.0, ...},
      "lastSelected": "model|p1/m1"
    }

Expiries are epoch seconds.  Epoch milliseconds (older files) and ISO-8601
strings are accepted on read.  A missing, unreadable or malformed file is
an empty store.  There is no cross-process lock: concurrent writers race
and the last one wins.
"""

from __future__ import annotations

import json
import math
import os
import tempfile
import time
from datetime import datetime
from pathlib import Path
from typing import Any

from loguru import logger

DEFAULT_COOLDOWN_S = 60 * 60  # 1 hour

# Anything larger is an epoch in milliseconds (year 5138 in seconds).
_EPOCH_MS_THRESHOLD = 1e11


def default_cooldown_path() -> Path:
    """Return default path for the persisted cooldown state."""
    return Path.home() / ".model-selector" / "cooldowns.json"


def _parse_expiry(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            expiry = float(value)
        except OverflowError:
            return None
        if not math.isfinite(expiry):
            return None
        return expiry / 1000.0 if expiry > _EPOCH_MS_THRESHOLD else expiry
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
        if parsed.tzinfo is None:
            parsed = parsed.astimezone()
        return parsed.timestamp()
    return None


class CooldownStore:
    """Key -> expiry map persisted as JSON.

    Loaded once per orchestration cycle; expired entries read as absent and
    are purged on the next ``flush()``.
    """

    def __init__(self, path: Path | None = None) -> None:
        self.path = path or default_cooldown_path()
        self._cooldowns: dict[str, float] = {}
        self._extra: dict[str, Any] = {}
        self._loaded = False
        self.last_selected: str | None = None

    # ------------------------------------------------------------------ #
    # Load / flush                                                         #
    # ------------------------------------------------------------------ #

    def load(self, force: bool = False) -> None:
        """Read persisted state; corrupt state is treated as empty."""
        if self._loaded and not force:
            return
        self._loaded = True
        self._cooldowns = {}
        self._extra = {}
        self.last_selected = None
        if not self.path.exists():
            return
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning(f"[cooldown] Ignoring unreadable state {self.path}: {exc}")
            return
        if not isinstance(payload, dict):
            logger.warning(f"[cooldown] Ignoring malformed state {self.path}")
            return

        raw = payload.get("cooldowns")
        if isinstance(raw, dict):
            for key, value in raw.items():
                expiry = _parse_expiry(value)
                if isinstance(key, str) and expiry is not None:
                    self._cooldowns[key] = expiry
        last = payload.get("lastSelected")
        self.last_selected = last if isinstance(last, str) else None
        self._extra = {
            k: v for k, v in payload.items() if k not in ("cooldowns", "lastSelected")
        }

    def flush(self, now: float | None = None) -> None:
        """Write state atomically, dropping expired entries."""
        self.prune(now)
        payload: dict[str, Any] = dict(self._extra)
        payload["cooldowns"] = dict(self._cooldowns)
        payload["lastSelected"] = self.last_selected
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f"{self.path.name}.", suffix=".tmp", dir=self.path.parent
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    json.dump(payload, fh, indent=2)
                os.replace(tmp_name, self.path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            logger.error(f"[cooldown] Failed to save cooldown state: {exc}")

    # ------------------------------------------------------------------ #
    # Queries / updates                                                    #
    # ------------------------------------------------------------------ #

    def is_cooling_down(self, key: str, now: float | None = None) -> bool:
        expiry = self._cooldowns.get(key)
        if expiry is None:
            return False
        return (time.time() if now is None else now) < expiry

    def expiry(self, key: str) -> float | None:
        return self._cooldowns.get(key)

    def put_cooldown(
        self, key: str, duration: float = DEFAULT_COOLDOWN_S, now: float | None = None
    ) -> float:
        """Upsert ``key`` to expire ``duration`` seconds after *now*."""
        expires_at = (time.time() if now is None else now) + duration
        self._cooldowns[key] = expires_at
        return expires_at

    def extend_cooldown(
        self, key: str, duration: float = DEFAULT_COOLDOWN_S, now: float | None = None
    ) -> bool:
        """Like ``put_cooldown`` but never shortens an existing cooldown."""
        expires_at = (time.time() if now is None else now) + duration
        if expires_at <= self._cooldowns.get(key, 0.0):
            return False
        self._cooldowns[key] = expires_at
        return True

    def prune(self, now: float | None = None) -> bool:
        now = time.time() if now is None else now
        expired = [k for k, expiry in self._cooldowns.items() if expiry <= now]
        for key in expired:
            del self._cooldowns[key]
        return bool(expired)

    def clear(self) -> None:
        self._cooldowns.clear()

    def active(self, now: float | None = None) -> dict[str, float]:
        now = time.time() if now is None else now
        return {k: v for k, v in self._cooldowns.items() if now < v}

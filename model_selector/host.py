"""Host capability used by the selector to read and switch the active model."""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from loguru import logger


@dataclass(frozen=True)
class ModelIdentity:
    """Logical model the host can switch to."""

    provider: str
    id: str

    def __str__(self) -> str:
        return f"{self.provider}/{self.id}"


class ModelHost(Protocol):
    """Minimal host contract."""

    def current_model(self) -> ModelIdentity | None:
        """Return the active model, if any."""

    def set_model(self, model: ModelIdentity) -> bool:
        """Switch to *model*; return False on failure."""


def default_active_model_path() -> Path:
    """Return default path for the persisted active model."""
    return Path.home() / ".model-selector" / "active_model.json"


class FileModelHost:
    """Host that records the active model in a small JSON file.

    Lets the command line run select/skip without an editor process; other
    tools read the file to pick up the chosen model.
    """

    def __init__(self, path: Path | None = None) -> None:
        self.path = path or default_active_model_path()

    def current_model(self) -> ModelIdentity | None:
        if not self.path.exists():
            return None
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
            return ModelIdentity(provider=str(payload["provider"]), id=str(payload["id"]))
        except (OSError, ValueError, KeyError, TypeError):
            return None

    def set_model(self, model: ModelIdentity) -> bool:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(
                json.dumps({"provider": model.provider, "id": model.id}, indent=2),
                encoding="utf-8",
            )
        except OSError as exc:
            logger.error(f"[host] Failed to record active model {model}: {exc}")
            return False
        return True

"""Fetch adapter contract and the shared command runner.

Every provider adapter runs one external command, captures its standard
output and parses it into ``UsageWindow`` objects.  Missing binaries,
non-zero exits, timeouts and empty output all degrade to an "unavailable"
``UsageReport`` instead of raising.
"""

from __future__ import annotations

import asyncio
import contextlib
import os
import shlex
import shutil
from abc import ABC, abstractmethod
from datetime import datetime

from loguru import logger

from model_selector.usage.models import UsageReport, UsageWindow
from model_selector.usage.parsing import local_now, strip_ansi


class CommandUnavailable(Exception):
    """The provider command could not produce usable output."""


async def run_command(argv: list[str], timeout_s: float = 10.0) -> str:
    """Run *argv* and return its decoded standard output.

    Raises ``CommandUnavailable`` when the binary is not on PATH, exits
    non-zero, exceeds *timeout_s* or prints nothing.
    """
    if not argv:
        raise CommandUnavailable("empty command")
    binary = shutil.which(argv[0])
    if binary is None:
        raise CommandUnavailable(f"{argv[0]} not found")

    env = dict(os.environ)
    env.setdefault("TERM", "xterm-256color")
    # Nested agent sessions refuse to start when this is inherited.
    env.pop("CLAUDECODE", None)

    proc = await asyncio.create_subprocess_exec(
        binary,
        *argv[1:],
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        env=env,
    )
    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout_s)
    except asyncio.TimeoutError:
        raise CommandUnavailable(f"{argv[0]} timed out after {timeout_s:g}s") from None
    finally:
        # Also reached when an outer deadline cancels us mid-communicate.
        if proc.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                proc.kill()
            await proc.wait()

    if proc.returncode != 0:
        detail = stderr.decode("utf-8", errors="ignore").strip()[:120]
        raise CommandUnavailable(
            f"{argv[0]} exited with {proc.returncode}" + (f": {detail}" if detail else "")
        )

    text = stdout.decode("utf-8", errors="ignore")
    if not text.strip():
        raise CommandUnavailable(f"{argv[0]} produced no output")
    return text


class UsageAdapter(ABC):
    """Base class for one provider's usage probe."""

    provider: str = ""
    display_name: str = ""
    default_command: str = ""
    account: str | None = None

    def __init__(self, command: str = "", timeout_s: float = 10.0) -> None:
        self.command = (command or "").strip() or self.default_command
        self.timeout_s = timeout_s

    @property
    def argv(self) -> list[str]:
        return shlex.split(self.command)

    @abstractmethod
    def parse(self, text: str, now: datetime | None = None) -> list[UsageWindow]:
        """Turn raw (ANSI-stripped) command output into usage windows."""

    def build_report(self, text: str, now: datetime | None = None) -> UsageReport:
        """Parse *text* into a report.  Subclasses may also extract plan/account."""
        return UsageReport(
            provider=self.provider,
            display_name=self.display_name,
            windows=self.parse(text, now),
            account=self.account,
        )

    def unavailable(self, reason: str) -> UsageReport:
        return UsageReport(
            provider=self.provider,
            display_name=self.display_name,
            account=self.account,
            error=reason,
        )

    async def fetch(self) -> UsageReport:
        """Run the provider command and parse its output."""
        try:
            output = await run_command(self.argv, timeout_s=self.timeout_s)
        except CommandUnavailable as exc:
            logger.debug(f"[usage] {self.provider} unavailable: {exc}")
            return self.unavailable(str(exc))
        except OSError as exc:
            logger.debug(f"[usage] {self.provider} failed to start: {exc}")
            return self.unavailable(f"failed to start: {exc}")

        report = self.build_report(strip_ansi(output), local_now())
        logger.debug(
            f"[usage] {self.provider} windows: "
            + (", ".join(f"{w.label} {w.format_status()}" for w in report.windows) or "none")
        )
        return report

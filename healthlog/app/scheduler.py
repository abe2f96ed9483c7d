from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import Protocol

from healthlog.app.errors import SchedulerUnavailable


logger = logging.getLogger(__name__)


class CrontabBackend(Protocol):
    def read(self) -> str: ...

    def write(self, text: str) -> None: ...


class SubprocessCrontab:
    """The invoking account's crontab, through the ``crontab`` binary."""

    def __init__(self, binary: str = "crontab", timeout: int = 10) -> None:
        self._binary = binary
        self._timeout = timeout

    def _run(self, args: list[str], stdin: str | None = None) -> subprocess.CompletedProcess[str]:
        try:
            return subprocess.run(
                [self._binary, *args],
                input=stdin,
                check=False,
                capture_output=True,
                text=True,
                timeout=self._timeout,
            )
        except (OSError, subprocess.SubprocessError) as exc:
            raise SchedulerUnavailable(f"{self._binary} unavailable: {exc}") from exc

    def read(self) -> str:
        result = self._run(["-l"])
        if result.returncode == 0:
            return result.stdout
        stderr = (result.stderr or "").strip()
        if "no crontab for" in stderr.lower():
            return ""
        raise SchedulerUnavailable(f"{self._binary} -l failed ({result.returncode}): {stderr}")

    def write(self, text: str) -> None:
        result = self._run(["-"], stdin=text)
        if result.returncode != 0:
            stderr = (result.stderr or "").strip()
            raise SchedulerUnavailable(f"{self._binary} - failed ({result.returncode}): {stderr}")


def render_entry(path: Path | str, interval: int) -> str:
    return f"*/{interval} * * * * {path} monitor >/dev/null 2>&1"


class CronScheduler:
    def __init__(self, backend: CrontabBackend | None = None) -> None:
        self._backend = backend or SubprocessCrontab()

    def find_entries(self, path: Path | str) -> list[str]:
        needle = str(path)
        return [line for line in self._backend.read().splitlines() if needle in line]

    def ensure_scheduled(self, path: Path | str, interval: int = 5) -> bool:
        """Register ``path monitor`` every ``interval`` minutes unless already present.

        The crontab is the source of truth: any line mentioning ``path``
        counts as the existing registration. Returns True when a line was added.
        """
        current = self._backend.read()
        if str(path) in current:
            logger.warning("Cron job already exists, skipping...")
            return False
        entry = render_entry(path, interval)
        if current and not current.endswith("\n"):
            current += "\n"
        self._backend.write(f"{current}{entry}\n")
        logger.info("Added cron entry: %s", entry)
        return True

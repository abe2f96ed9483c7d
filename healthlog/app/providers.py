"""Sources of raw host readings.

Collectors in :mod:`healthlog.app.metrics` only talk to a
:class:`MetricsProvider`; the two implementations here differ in where the
readings come from. ``NativeMetricsProvider`` asks psutil and the OS
directly, ``SubprocessMetricsProvider`` parses the output of the usual
command line tools (``top``, ``df``, ``hostname``, ``uptime``). Both read
``/proc/stat`` and ``/proc/meminfo`` the same way.
"""
from __future__ import annotations

import logging
import math
import os
import re
import socket
import subprocess
from pathlib import Path
from typing import Protocol

import psutil

from healthlog.app.config import Settings
from healthlog.app.schemas import DiskUsage


logger = logging.getLogger(__name__)

_LOAD_RE = re.compile(r"load averages?:\s*(.+)$")
_TOP_CPU_RE = re.compile(r"Cpu\(s\):\s*(\d+(?:\.\d+)?)")


class MetricsProvider(Protocol):
    def cpu_snapshot_percent(self) -> str | None: ...

    def cpu_times(self) -> list[int] | None: ...

    def meminfo(self) -> dict[str, int] | None: ...

    def disk_usage(self, path: str) -> DiskUsage | None: ...

    def hostname(self) -> str: ...

    def load_average(self) -> tuple[float, float, float] | None: ...


def parse_cpu_times(text: str) -> list[int] | None:
    for line in text.splitlines():
        fields = line.split()
        if fields and fields[0] == "cpu":
            try:
                return [int(field) for field in fields[1:]]
            except ValueError:
                return None
    return None


def parse_meminfo(text: str) -> dict[str, int]:
    values: dict[str, int] = {}
    for line in text.splitlines():
        name, sep, rest = line.partition(":")
        if not sep:
            continue
        parts = rest.split()
        if not parts:
            continue
        try:
            values[name.strip()] = int(parts[0])
        except ValueError:
            continue
    return values


def parse_top_cpu(text: str) -> str | None:
    """Return the user CPU figure from the ``Cpu(s)`` line of ``top -bn1``."""
    # "%Cpu(s):  2.3 us,", "Cpu(s):  2.3%us," or "%Cpu(s):100.0 us," at full load.
    match = _TOP_CPU_RE.search(text)
    return match.group(1) if match else None


def parse_df(text: str) -> DiskUsage | None:
    """Read size, used and use% from the second row of ``df -hP`` output."""
    rows = [row for row in text.splitlines() if row.strip()]
    if len(rows) < 2:
        return None
    columns = rows[1].split()
    if len(columns) < 5:
        return None
    return DiskUsage(percent=columns[4], used=columns[2], total=columns[1])


def parse_load_average(text: str) -> tuple[float, float, float] | None:
    match = _LOAD_RE.search(text.strip())
    if not match:
        return None
    figures = [item for item in re.split(r"[,\s]+", match.group(1)) if item]
    if len(figures) < 3:
        return None
    try:
        one, five, fifteen = (float(item) for item in figures[:3])
    except ValueError:
        return None
    return one, five, fifteen


def human_size(num_bytes: int) -> str:
    """Format a byte count the way ``df -h`` does (powers of 1024, rounded up)."""
    if num_bytes < 1024:
        return str(num_bytes)
    value = float(num_bytes)
    units = ["K", "M", "G", "T", "P", "E"]
    index = -1
    while value >= 1024 and index < len(units) - 1:
        value /= 1024
        index += 1
    if value < 10:
        rendered = math.ceil(value * 10) / 10
        if rendered < 10:
            return f"{rendered:.1f}{units[index]}"
    rounded = math.ceil(value)
    if rounded >= 1024 and index < len(units) - 1:
        return f"1.0{units[index + 1]}"
    return f"{rounded}{units[index]}"


class ProcFilesProvider:
    """Shared readers for the kernel pseudo-files."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    @property
    def proc_root(self) -> Path:
        return self._settings.proc_root

    def _read_proc(self, name: str) -> str | None:
        try:
            return (self.proc_root / name).read_text()
        except OSError as exc:
            logger.debug("Could not read %s: %s", self.proc_root / name, exc)
            return None

    def cpu_times(self) -> list[int] | None:
        text = self._read_proc("stat")
        return parse_cpu_times(text) if text else None

    def meminfo(self) -> dict[str, int] | None:
        text = self._read_proc("meminfo")
        if not text:
            return None
        return parse_meminfo(text) or None


class NativeMetricsProvider(ProcFilesProvider):
    def cpu_snapshot_percent(self) -> str | None:
        try:
            value = psutil.cpu_percent(interval=self._settings.cpu_sample_seconds)
        except (OSError, RuntimeError) as exc:
            logger.debug("psutil cpu_percent failed: %s", exc)
            return None
        return f"{value:.1f}"

    def disk_usage(self, path: str) -> DiskUsage | None:
        try:
            stats = psutil.disk_usage(path)
        except (FileNotFoundError, PermissionError, OSError) as exc:
            logger.debug("psutil disk_usage(%s) failed: %s", path, exc)
            return None
        capacity = stats.used + stats.free
        percent = math.ceil(stats.used * 100 / capacity) if capacity else 0
        return DiskUsage(percent=f"{percent}%", used=human_size(stats.used), total=human_size(stats.total))

    def hostname(self) -> str:
        return socket.gethostname()

    def load_average(self) -> tuple[float, float, float] | None:
        try:
            return os.getloadavg()
        except (AttributeError, OSError):
            return None


class SubprocessMetricsProvider(ProcFilesProvider):
    def _run(self, args: list[str]) -> str | None:
        try:
            result = subprocess.run(
                args,
                check=False,
                capture_output=True,
                text=True,
                timeout=self._settings.command_timeout_seconds,
            )
        except (OSError, subprocess.SubprocessError) as exc:
            logger.debug("%s failed: %s", " ".join(args), exc)
            return None
        if result.returncode != 0:
            logger.debug("%s exited with %s: %s", " ".join(args), result.returncode, (result.stderr or "").strip())
            return None
        return result.stdout

    def cpu_snapshot_percent(self) -> str | None:
        output = self._run(["top", "-bn1"])
        return parse_top_cpu(output) if output else None

    def disk_usage(self, path: str) -> DiskUsage | None:
        output = self._run(["df", "-hP", path])
        return parse_df(output) if output else None

    def hostname(self) -> str:
        output = self._run(["hostname"])
        if output and output.strip():
            return output.strip()
        return socket.gethostname()

    def load_average(self) -> tuple[float, float, float] | None:
        output = self._run(["uptime"])
        return parse_load_average(output) if output else None


def build_provider(settings: Settings) -> MetricsProvider:
    if settings.provider == "subprocess":
        return SubprocessMetricsProvider(settings)
    return NativeMetricsProvider(settings)

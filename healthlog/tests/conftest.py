from __future__ import annotations

from pathlib import Path

import pytest

from healthlog.app.config import Settings
from healthlog.app.schemas import DiskUsage
from healthlog.app.scheduler import CronScheduler

MEMINFO = {"MemTotal": 8_000_000, "MemFree": 1_000_000, "MemAvailable": 2_000_000, "Cached": 500_000}


class FakeProvider:
    def __init__(
        self,
        snapshot: str | None = "12.5",
        times: list[int] | None = None,
        meminfo: dict[str, int] | None = None,
        disk: DiskUsage | None = DiskUsage(percent="43%", used="8.0G", total="20G"),
        hostname: str = "test-node",
        load: tuple[float, float, float] | None = (0.15, 0.1, 0.05),
    ) -> None:
        self.snapshot = snapshot
        self.times = times
        self.memory = dict(MEMINFO) if meminfo is None else meminfo
        self.disk = disk
        self.host = hostname
        self.load = load

    def cpu_snapshot_percent(self) -> str | None:
        return self.snapshot

    def cpu_times(self) -> list[int] | None:
        return self.times

    def meminfo(self) -> dict[str, int] | None:
        return self.memory

    def disk_usage(self, path: str) -> DiskUsage | None:
        return self.disk

    def hostname(self) -> str:
        return self.host

    def load_average(self) -> tuple[float, float, float] | None:
        return self.load


class FakeCrontab:
    def __init__(self, text: str = "") -> None:
        self.text = text
        self.writes = 0

    def read(self) -> str:
        return self.text

    def write(self, text: str) -> None:
        self.writes += 1
        self.text = text


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        _env_file=None,
        log_file=tmp_path / "log" / "sys_health.log",
        script_path=tmp_path / "bin" / "system_monitor.sh",
        logrotate_path=tmp_path / "logrotate.d" / "sys_health",
        proc_root=tmp_path / "proc",
    )


@pytest.fixture
def log_dir(settings: Settings) -> Path:
    settings.log_file.parent.mkdir(parents=True, exist_ok=True)
    return settings.log_file.parent


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def crontab() -> FakeCrontab:
    return FakeCrontab()


@pytest.fixture
def scheduler(crontab: FakeCrontab) -> CronScheduler:
    return CronScheduler(crontab)

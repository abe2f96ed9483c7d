from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator


UNAVAILABLE = "unavailable"


class CpuSource(StrEnum):
    SNAPSHOT = "snapshot"
    PROC_STAT = "proc_stat"
    UNAVAILABLE = "unavailable"


class MemoryUsage(BaseModel):
    model_config = ConfigDict(frozen=True)

    percent: float = Field(ge=0, le=100)
    used_gb: float = Field(ge=0)
    total_gb: float = Field(ge=0)

    def render(self) -> str:
        return f"{self.percent:.1f}% ({self.used_gb:.1f}GB/{self.total_gb:.1f}GB)"


class DiskUsage(BaseModel):
    model_config = ConfigDict(frozen=True)

    percent: str
    used: str
    total: str

    def render(self) -> str:
        return f"{self.percent} ({self.used}/{self.total})"


class MetricSample(BaseModel):
    """One cycle's readings. ``None`` marks a reading that could not be taken."""

    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    cpu_percent: float | None = Field(None, ge=0, le=100)
    cpu_source: CpuSource = CpuSource.UNAVAILABLE
    memory: MemoryUsage | None = None
    disk: DiskUsage | None = None
    hostname: str
    load_average: str | None = None

    @field_validator("timestamp")
    @classmethod
    def _truncate_to_seconds(cls, value: datetime) -> datetime:
        return value.replace(microsecond=0)

    @property
    def degraded(self) -> bool:
        return self.cpu_source is not CpuSource.SNAPSHOT or None in (
            self.memory,
            self.disk,
            self.load_average,
        )

    def report_fields(self) -> list[tuple[str, str]]:
        cpu = f"{self.cpu_percent:.1f}%" if self.cpu_percent is not None else UNAVAILABLE
        return [
            ("CPU Usage", cpu),
            ("Memory Usage", self.memory.render() if self.memory else UNAVAILABLE),
            ("Disk Usage", self.disk.render() if self.disk else UNAVAILABLE),
            ("Hostname", self.hostname or UNAVAILABLE),
            ("Load Average", self.load_average or UNAVAILABLE),
        ]


class ReportBlock(BaseModel):
    """A report block read back from the telemetry log."""

    timestamp: datetime
    cpu_percent: float | None = None
    memory: str | None = None
    disk: str | None = None
    hostname: str | None = None
    load_average: str | None = None

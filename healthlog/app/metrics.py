from __future__ import annotations

import logging
from datetime import datetime
from typing import Mapping, Sequence

from healthlog.app.config import Settings, settings as default_settings
from healthlog.app.providers import MetricsProvider
from healthlog.app.schemas import CpuSource, DiskUsage, MemoryUsage, MetricSample


logger = logging.getLogger(__name__)

KIB_PER_GIB = 1024 * 1024


def cpu_usage_from_times(times: Sequence[int]) -> float:
    """Utilisation since boot from the aggregate ``/proc/stat`` cpu line.

    The first seven fields (user, nice, system, idle, iowait, irq, softirq)
    make up the total; the fourth is idle. Integer division, like the
    reading it replaces.
    """
    fields = list(times[:7])
    if len(fields) < 4:
        raise ValueError(f"Expected at least 4 cpu time fields, got {len(fields)}")
    total_time = sum(fields)
    idle_time = fields[3]
    if total_time <= 0:
        return 0.0
    return float(100 * (total_time - idle_time) // total_time)


def _parse_snapshot(raw: str | None) -> float | None:
    if raw is None:
        return None
    text = str(raw).strip().rstrip("%")
    if not text:
        return None
    try:
        value = float(text)
    except ValueError:
        return None
    # An exact zero is what the snapshot reports when it has nothing to say.
    if value == 0.0:
        return None
    return min(100.0, max(0.0, value))


def get_cpu_usage(provider: MetricsProvider) -> tuple[float | None, CpuSource]:
    value = _parse_snapshot(provider.cpu_snapshot_percent())
    if value is not None:
        return round(value, 1), CpuSource.SNAPSHOT

    times = provider.cpu_times()
    if times:
        try:
            usage = cpu_usage_from_times(times)
        except ValueError as exc:
            logger.warning("CPU counters unusable: %s", exc)
        else:
            logger.warning("CPU snapshot unavailable, using cumulative /proc/stat reading")
            return usage, CpuSource.PROC_STAT

    logger.warning("CPU usage unavailable from every source")
    return None, CpuSource.UNAVAILABLE


def memory_usage_from_meminfo(info: Mapping[str, int]) -> MemoryUsage | None:
    total = info.get("MemTotal")
    if not total or total <= 0:
        return None
    available = info.get("MemAvailable")
    if available is None:
        available = info.get("MemFree", 0) + info.get("Cached", 0)
    used = max(0, total - available)
    return MemoryUsage(
        percent=min(100.0, round(100 * used / total, 1)),
        used_gb=round(used / KIB_PER_GIB, 1),
        total_gb=round(total / KIB_PER_GIB, 1),
    )


def get_memory_usage(provider: MetricsProvider) -> MemoryUsage | None:
    info = provider.meminfo()
    usage = memory_usage_from_meminfo(info) if info else None
    if usage is None:
        logger.warning("Memory usage unavailable")
    return usage


def get_disk_usage(provider: MetricsProvider, path: str = "/") -> DiskUsage | None:
    usage = provider.disk_usage(path)
    if usage is None:
        logger.warning("Disk usage unavailable for %s", path)
    return usage


def format_load_average(values: Sequence[float] | None) -> str | None:
    if not values:
        return None
    return ", ".join(f"{value:.2f}" for value in values[:3])


def collect_sample(provider: MetricsProvider, settings: Settings | None = None) -> MetricSample:
    settings = settings or default_settings
    cpu_percent, cpu_source = get_cpu_usage(provider)
    sample = MetricSample(
        timestamp=datetime.now(),
        cpu_percent=cpu_percent,
        cpu_source=cpu_source,
        memory=get_memory_usage(provider),
        disk=get_disk_usage(provider, settings.disk_path),
        hostname=provider.hostname(),
        load_average=format_load_average(provider.load_average()),
    )
    logger.log(
        logging.WARNING if sample.degraded else logging.DEBUG,
        "Collected sample for %s (cpu source: %s, degraded: %s)",
        sample.hostname,
        sample.cpu_source.value,
        sample.degraded,
    )
    return sample

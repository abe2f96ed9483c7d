import subprocess
from types import SimpleNamespace

import pytest

from healthlog.app import providers
from healthlog.app.schemas import DiskUsage


TOP_OUTPUT = """top - 10:01:02 up 3 days,  2:03,  2 users,  load average: 0.00, 0.01, 0.05
Tasks: 201 total,   1 running, 200 sleeping,   0 stopped,   0 zombie
%Cpu(s):  2.3 us,  0.8 sy,  0.0 ni, 96.7 id,  0.1 wa,  0.0 hi,  0.1 si,  0.0 st
MiB Mem :  15932.0 total,   1021.3 free,   5120.1 used,   9790.6 buff/cache
"""

DF_OUTPUT = """Filesystem      Size  Used Avail Use% Mounted on
/dev/sda1        20G  8.0G   11G  43% /
"""

PROC_STAT = """cpu  100 0 100 700 50 25 25 0 0 0
cpu0 50 0 50 350 25 12 13 0 0 0
intr 12345
"""

PROC_MEMINFO = """MemTotal:        8000000 kB
MemFree:         1000000 kB
MemAvailable:    2000000 kB
Cached:           500000 kB
HugePages_Total:       0
"""


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        (TOP_OUTPUT, "2.3"),
        ("Cpu(s):  4.1%us,  1.0%sy,  0.0%ni, 94.9%id", "4.1"),
        ("%Cpu(s):100.0 us,  0.0 sy,  0.0 ni,  0.0 id,  0.0 wa", "100.0"),
        ("%Cpu(s): us, sy", None),
        ("no cpu line here", None),
        ("", None),
    ],
)
def test_parse_top_cpu(text, expected):
    assert providers.parse_top_cpu(text) == expected


def test_parse_df_reads_second_row():
    assert providers.parse_df(DF_OUTPUT) == DiskUsage(percent="43%", used="8.0G", total="20G")


@pytest.mark.parametrize("text", ["", "Filesystem Size Used Avail Use% Mounted on\n", "header\nshort row\n"])
def test_parse_df_without_data_row(text):
    assert providers.parse_df(text) is None


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        (" 10:01:02 up 3 days,  2 users,  load average: 0.00, 0.01, 0.05\n", (0.0, 0.01, 0.05)),
        ("10:01  up 2 days, 3 users, load averages: 1.23 1.45 1.67", (1.23, 1.45, 1.67)),
        ("up 3 days", None),
    ],
)
def test_parse_load_average(text, expected):
    assert providers.parse_load_average(text) == expected


def test_parse_cpu_times_uses_aggregate_line():
    assert providers.parse_cpu_times(PROC_STAT) == [100, 0, 100, 700, 50, 25, 25, 0, 0, 0]
    assert providers.parse_cpu_times("cpu0 1 2 3\n") is None


def test_parse_meminfo_keeps_kib_values():
    info = providers.parse_meminfo(PROC_MEMINFO)

    assert info["MemTotal"] == 8_000_000
    assert info["MemAvailable"] == 2_000_000
    assert info["HugePages_Total"] == 0


@pytest.mark.parametrize(
    ("num_bytes", "expected"),
    [
        (0, "0"),
        (512, "512"),
        (1024, "1.0K"),
        (1536, "1.5K"),
        (20 * 1024**3, "20G"),
        (8 * 1024**3, "8.0G"),
        (1024**2 - 1, "1.0M"),
    ],
)
def test_human_size(num_bytes, expected):
    assert providers.human_size(num_bytes) == expected


def test_proc_files_read_from_configured_root(settings):
    settings.proc_root.mkdir(parents=True)
    (settings.proc_root / "stat").write_text(PROC_STAT)
    (settings.proc_root / "meminfo").write_text(PROC_MEMINFO)

    provider = providers.NativeMetricsProvider(settings)

    assert provider.cpu_times()[:7] == [100, 0, 100, 700, 50, 25, 25]
    assert provider.meminfo()["MemTotal"] == 8_000_000


def test_proc_files_missing(settings):
    provider = providers.NativeMetricsProvider(settings)

    assert provider.cpu_times() is None
    assert provider.meminfo() is None


def test_native_disk_usage_matches_df_rounding(monkeypatch, settings):
    stats = SimpleNamespace(total=20 * 1024**3, used=8 * 1024**3, free=11 * 1024**3)
    monkeypatch.setattr(providers.psutil, "disk_usage", lambda path: stats)

    usage = providers.NativeMetricsProvider(settings).disk_usage("/")

    # 8 / 19 of the usable space, rounded up like df.
    assert usage == DiskUsage(percent="43%", used="8.0G", total="20G")


def test_native_disk_usage_unreadable(monkeypatch, settings):
    def _raise(path):
        raise PermissionError(path)

    monkeypatch.setattr(providers.psutil, "disk_usage", _raise)

    assert providers.NativeMetricsProvider(settings).disk_usage("/") is None


def test_native_cpu_snapshot(monkeypatch, settings):
    monkeypatch.setattr(providers.psutil, "cpu_percent", lambda interval: 17.0)

    assert providers.NativeMetricsProvider(settings).cpu_snapshot_percent() == "17.0"


def _fake_run(outputs):
    def _run(args, **kwargs):
        command = args[0]
        if command not in outputs:
            raise FileNotFoundError(command)
        returncode, stdout = outputs[command]
        return subprocess.CompletedProcess(args, returncode, stdout=stdout, stderr="")

    return _run


def test_subprocess_provider_parses_tool_output(monkeypatch, settings):
    monkeypatch.setattr(
        providers.subprocess,
        "run",
        _fake_run(
            {
                "top": (0, TOP_OUTPUT),
                "df": (0, DF_OUTPUT),
                "hostname": (0, "box-01\n"),
                "uptime": (0, " 10:01:02 up 3 days,  load average: 0.50, 0.40, 0.30\n"),
            }
        ),
    )
    provider = providers.SubprocessMetricsProvider(settings)

    assert provider.cpu_snapshot_percent() == "2.3"
    assert provider.disk_usage("/") == DiskUsage(percent="43%", used="8.0G", total="20G")
    assert provider.hostname() == "box-01"
    assert provider.load_average() == (0.5, 0.4, 0.3)


def test_subprocess_provider_tolerates_missing_tools(monkeypatch, settings):
    monkeypatch.setattr(providers.subprocess, "run", _fake_run({"df": (1, "")}))
    monkeypatch.setattr(providers.socket, "gethostname", lambda: "fallback-host")
    provider = providers.SubprocessMetricsProvider(settings)

    assert provider.cpu_snapshot_percent() is None
    assert provider.disk_usage("/") is None
    assert provider.load_average() is None
    assert provider.hostname() == "fallback-host"


def test_build_provider_follows_settings(settings):
    assert isinstance(providers.build_provider(settings), providers.NativeMetricsProvider)

    subprocess_settings = settings.model_copy(update={"provider": "subprocess"})
    assert isinstance(providers.build_provider(subprocess_settings), providers.SubprocessMetricsProvider)

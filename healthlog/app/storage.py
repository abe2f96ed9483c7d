from __future__ import annotations

import fcntl
import logging
import os
import re
import shutil
from collections import deque
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Deque, Iterator

from healthlog.app.config import Settings
from healthlog.app.errors import OwnershipError, WriteAccessError
from healthlog.app.schemas import UNAVAILABLE, MetricSample, ReportBlock


logger = logging.getLogger(__name__)

DELIMITER = "=" * 41
REPORT_TITLE = "SYSTEM HEALTH REPORT"
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
INIT_MARKER = "System monitoring log initialized"
SETUP_MARKER = "System monitoring initialized"

_LINE_RE = re.compile(r"^\[(?P<ts>\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2})\] (?P<text>.*)$")
_FIELD_KEYS = {
    "CPU Usage": "cpu_percent",
    "Memory Usage": "memory",
    "Disk Usage": "disk",
    "Hostname": "hostname",
    "Load Average": "load_average",
}


def _stamp(moment: datetime | None = None) -> str:
    return (moment or datetime.now()).strftime(TIMESTAMP_FORMAT)


def render_block(sample: MetricSample) -> str:
    stamp = _stamp(sample.timestamp)
    lines = [DELIMITER, REPORT_TITLE]
    lines.extend(f"{label}: {value}" for label, value in sample.report_fields())
    lines.append(DELIMITER)
    return "".join(f"[{stamp}] {line}\n" for line in lines) + "\n"


def _parse_cpu(value: str) -> float | None:
    text = value.strip().rstrip("%")
    if not text or text == UNAVAILABLE:
        return None
    try:
        return float(text)
    except ValueError:
        return None


def parse_reports(text: str) -> list[ReportBlock]:
    """Read report blocks back out of telemetry log text.

    Lines outside a delimited block (initialisation markers, blank
    separators) are skipped, as is a block cut short by a killed writer.
    """
    reports: list[ReportBlock] = []
    current: dict[str, object] | None = None
    opened = False
    for line in text.splitlines():
        match = _LINE_RE.match(line)
        if not match:
            continue
        body = match.group("text")
        if body == DELIMITER:
            if current is not None and len(current) == len(_FIELD_KEYS) + 1:
                reports.append(ReportBlock.model_validate(current))
            current = None
            opened = True
            continue
        if body == REPORT_TITLE and opened:
            current = {"timestamp": datetime.strptime(match.group("ts"), TIMESTAMP_FORMAT)}
            opened = False
            continue
        opened = False
        if current is None:
            continue
        label, sep, value = body.partition(": ")
        key = _FIELD_KEYS.get(label)
        if not sep or key is None:
            continue
        if key == "cpu_percent":
            current[key] = _parse_cpu(value)
        else:
            current[key] = None if value == UNAVAILABLE else value
    return reports


class TelemetryLog:
    """Append-only health report log with size-triggered rotation."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    @property
    def path(self) -> Path:
        return self._settings.log_file

    @property
    def rotated_path(self) -> Path:
        return self._settings.rotated_log_file

    def exists(self) -> bool:
        return self.path.is_file()

    def size(self) -> int:
        try:
            return self.path.stat().st_size
        except FileNotFoundError:
            return 0

    def is_writable(self) -> bool:
        return os.access(self.path, os.W_OK)

    def _create(self) -> bool:
        """Create the log with the configured mode. Returns False if it already existed."""
        try:
            fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, self._settings.log_mode)
        except FileExistsError:
            return False
        except OSError as exc:
            raise WriteAccessError(self.path, exc.strerror) from exc
        os.close(fd)
        # The umask may have stripped bits from the open() mode.
        os.chmod(self.path, self._settings.log_mode)
        return True

    def _write(self, text: str) -> None:
        try:
            with self.path.open("a", encoding="utf-8") as handle:
                handle.write(text)
        except OSError as exc:
            raise WriteAccessError(self.path, exc.strerror) from exc

    def ensure_initialized(self) -> bool:
        if self.exists():
            return False
        if not self._create():
            return False
        self._write(f"[{_stamp()}] {INIT_MARKER}\n\n")
        logger.info("Initialized telemetry log at %s", self.path)
        return True

    def initialize(self) -> None:
        """Create or reset ownership of the log during setup and mark it."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._create()
        os.chmod(self.path, self._settings.log_mode)
        if os.geteuid() == 0:
            try:
                shutil.chown(self.path, self._settings.log_owner, self._settings.log_group)
            except LookupError as exc:
                raise OwnershipError(self.path, self._settings.log_owner, self._settings.log_group, str(exc)) from exc
        self._write(f"[{_stamp()}] {SETUP_MARKER}\n")

    @contextmanager
    def _locked(self) -> Iterator[None]:
        if not self._settings.lock_writes:
            yield
            return
        try:
            handle = open(self._settings.lock_file, "a")
        except OSError as exc:
            logger.debug("Could not open lock file %s: %s", self._settings.lock_file, exc)
            yield
            return
        with handle:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(handle.fileno(), fcntl.LOCK_UN)

    def append(self, sample: MetricSample) -> bool:
        """Write one report block, then rotate if the log grew past the limit.

        Returns True when the log was rotated after this write.
        """
        block = render_block(sample)
        with self._locked():
            self.ensure_initialized()
            if not self.is_writable():
                raise WriteAccessError(self.path)
            self._write(block)
            return self.rotate_if_needed()

    def rotate_if_needed(self) -> bool:
        size = self.size()
        if size <= self._settings.rotate_max_bytes:
            return False
        os.replace(self.path, self.rotated_path)
        self._create()
        logger.warning(
            "Log file rotated due to size limit (%d bytes > %d), previous log kept at %s",
            size,
            self._settings.rotate_max_bytes,
            self.rotated_path,
        )
        return True

    def read_text(self) -> str:
        try:
            return self.path.read_text(encoding="utf-8", errors="replace")
        except FileNotFoundError:
            return ""

    def tail(self, lines: int) -> list[str]:
        recent: Deque[str] = deque(maxlen=max(0, lines))
        try:
            with self.path.open("r", encoding="utf-8", errors="replace") as handle:
                for line in handle:
                    recent.append(line.rstrip("\n"))
        except FileNotFoundError:
            return []
        return list(recent)

    def reports(self) -> list[ReportBlock]:
        return parse_reports(self.read_text())

from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


PROVIDERS = ("native", "subprocess")
LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")


def _coerce_int(value: Any, default: int, minimum: int) -> int:
    if value in (None, ""):
        return default
    try:
        numeric = int(value, 0) if isinstance(value, str) else int(value)
    except (TypeError, ValueError):
        return default
    return max(minimum, numeric)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="HEALTHLOG_",
        case_sensitive=False,
        extra="ignore",
    )

    debug: bool = False
    log_level: str = "WARNING"

    script_path: Path = Path("/usr/local/bin/system_monitor.sh")
    log_file: Path = Path("/var/log/sys_health.log")
    rotate_max_bytes: int = 10 * 1024 * 1024  # 10 MiB
    rotated_suffix: str = ".old"
    log_mode: int = 0o644
    log_owner: str = "root"
    log_group: str = "root"
    lock_writes: bool = True

    cron_interval_minutes: int = 5
    logrotate_path: Path = Path("/etc/logrotate.d/sys_health")

    provider: str = "native"
    proc_root: Path = Path("/proc")
    disk_path: str = "/"
    cpu_sample_seconds: float = 0.5
    command_timeout_seconds: int = 10

    status_tail_lines: int = 20
    logs_tail_lines: int = 50
    test_tail_lines: int = 10

    @field_validator("provider", mode="before")
    @classmethod
    def _normalize_provider(cls, value: str | None) -> str:
        if value is None:
            return "native"
        token = str(value).strip().lower()
        return token if token in PROVIDERS else "native"

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_level(cls, value: str | None) -> str:
        level = str(value or "").strip().upper()
        return level if level in LOG_LEVELS else "WARNING"

    @field_validator("rotated_suffix", mode="before")
    @classmethod
    def _normalize_suffix(cls, value: str | None) -> str:
        if value is None or not str(value).strip():
            return ".old"
        suffix = str(value).strip()
        if not suffix.startswith("."):
            suffix = f".{suffix}"
        return suffix

    @field_validator("log_mode", mode="before")
    @classmethod
    def _validate_mode(cls, value: int | str | None) -> int:
        # Accepts "644", "0644", "0o644" or an int.
        if isinstance(value, str):
            stripped = value.strip()
            if stripped and stripped.isdigit():
                return int(stripped, 8)
        return _coerce_int(value, 0o644, 0)

    @field_validator("rotate_max_bytes", mode="before")
    @classmethod
    def _validate_rotate_size(cls, value: int | str | None) -> int:
        return _coerce_int(value, 10 * 1024 * 1024, 1)

    @field_validator("cron_interval_minutes", mode="before")
    @classmethod
    def _validate_interval(cls, value: int | str | None) -> int:
        return min(59, _coerce_int(value, 5, 1))

    @field_validator("command_timeout_seconds", mode="before")
    @classmethod
    def _validate_timeout(cls, value: int | str | None) -> int:
        return _coerce_int(value, 10, 1)

    @field_validator("status_tail_lines", mode="before")
    @classmethod
    def _validate_status_tail(cls, value: int | str | None) -> int:
        return _coerce_int(value, 20, 1)

    @field_validator("logs_tail_lines", mode="before")
    @classmethod
    def _validate_logs_tail(cls, value: int | str | None) -> int:
        return _coerce_int(value, 50, 1)

    @field_validator("test_tail_lines", mode="before")
    @classmethod
    def _validate_test_tail(cls, value: int | str | None) -> int:
        return _coerce_int(value, 10, 1)

    @property
    def rotated_log_file(self) -> Path:
        return self.log_file.with_name(self.log_file.name + self.rotated_suffix)

    @property
    def lock_file(self) -> Path:
        return self.log_file.with_name(self.log_file.name + ".lock")


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()

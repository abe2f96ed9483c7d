from __future__ import annotations

import argparse
import os
import re
import stat
import sys
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Callable, Sequence, TextIO

from healthlog.app.config import Settings, get_settings
from healthlog.app.errors import HealthLogError, PrivilegeError, SchedulerUnavailable, UsageError, WriteAccessError
from healthlog.app.installer import install_launcher, install_logrotate_policy, is_privileged
from healthlog.app.logging_config import configure_logging
from healthlog.app.metrics import collect_sample
from healthlog.app.providers import MetricsProvider, build_provider, human_size
from healthlog.app.scheduler import CronScheduler
from healthlog.app.storage import TelemetryLog


PROG = "healthlog"


class ExecutionMode(StrEnum):
    SETUP = "setup"
    MONITOR = "monitor"
    STATUS = "status"
    LOGS = "logs"
    TEST = "test"
    HELP = "help"
    INTERACTIVE = "interactive"


_TOKENS = {
    "setup": ExecutionMode.SETUP,
    "monitor": ExecutionMode.MONITOR,
    "status": ExecutionMode.STATUS,
    "logs": ExecutionMode.LOGS,
    "test": ExecutionMode.TEST,
    "help": ExecutionMode.HELP,
    "-h": ExecutionMode.HELP,
    "--help": ExecutionMode.HELP,
}


def parse_mode(token: str | None) -> ExecutionMode:
    if not token:
        return ExecutionMode.INTERACTIVE
    try:
        return _TOKENS[token]
    except KeyError:
        raise UsageError(token) from None


def usage_text(prog: str = PROG) -> str:
    return "\n".join(
        [
            f"Usage: {prog} [OPTION]",
            "",
            "Options:",
            "  setup     - Complete setup of system monitoring",
            "  monitor   - Run monitoring (used by cron job)",
            "  status    - Show monitoring system status",
            "  logs      - Show recent monitoring logs",
            "  test      - Test monitoring functionality",
            "  help      - Show this help message",
            "",
            "If no option is provided, interactive setup will begin.",
        ]
    )


@dataclass
class Context:
    settings: Settings
    provider: MetricsProvider
    scheduler: CronScheduler
    out: TextIO
    prompt: Callable[[str], str]
    prog: str = PROG
    log: TelemetryLog = field(init=False)

    def __post_init__(self) -> None:
        self.log = TelemetryLog(self.settings)

    def echo(self, text: str = "") -> None:
        print(text, file=self.out)

    def info(self, text: str) -> None:
        self.echo(f"[INFO] {text}")

    def warn(self, text: str) -> None:
        self.echo(f"[WARN] {text}")

    def error(self, text: str) -> None:
        self.echo(f"[ERROR] {text}")

    def header(self, text: str) -> None:
        self.echo("================================")
        self.echo(f" {text}")
        self.echo("================================")

    def show_tail(self, lines: int) -> None:
        for line in self.log.tail(lines):
            self.echo(line)


def _require_privilege() -> None:
    if not is_privileged():
        raise PrivilegeError()


def _describe(path) -> str:
    info = os.stat(path)
    return f"{stat.filemode(info.st_mode)} {info.st_size} {path}"


def run_cycle(ctx: Context) -> bool:
    """Collect one sample and append it. Returns True if the log was rotated."""
    sample = collect_sample(ctx.provider, ctx.settings)
    return ctx.log.append(sample)


def verify_cycle(ctx: Context) -> int:
    ctx.info("Testing the monitoring system...")
    rotated = run_cycle(ctx)
    written = ctx.log.size() > 0
    if rotated and not written:
        written = ctx.settings.rotated_log_file.stat().st_size > 0
    if not written:
        ctx.error("✗ Monitoring test failed!")
        return 1
    ctx.info("✓ Monitoring test successful!")
    ctx.echo()
    ctx.echo("Recent log entries:")
    ctx.echo("===================")
    ctx.show_tail(ctx.settings.test_tail_lines)
    ctx.echo()
    return 0


def handle_monitor(ctx: Context) -> int:
    if run_cycle(ctx):
        ctx.echo(f"Log file rotated due to size (>{human_size(ctx.settings.rotate_max_bytes)})")
    return 0


def handle_setup(ctx: Context) -> int:
    _require_privilege()
    settings = ctx.settings
    ctx.header("SYSTEM MONITORING SETUP")
    ctx.echo("This will set up system monitoring with the following:")
    ctx.echo("• CPU, Memory, and Disk usage monitoring")
    ctx.echo(f"• Logging every {settings.cron_interval_minutes} minutes to {settings.log_file}")
    ctx.echo("• Automatic log rotation")
    ctx.echo()

    ctx.info(f"Creating monitoring script at {settings.script_path}")
    install_launcher(settings)
    ctx.info("Monitoring script created and configured")

    ctx.info(f"Setting up log file at {settings.log_file}")
    ctx.log.initialize()
    ctx.info("Log file created and initialized")

    ctx.info(f"Setting up cron job to run every {settings.cron_interval_minutes} minutes")
    try:
        if ctx.scheduler.ensure_scheduled(settings.script_path, settings.cron_interval_minutes):
            ctx.info("Cron job added successfully")
        else:
            ctx.warn("Cron job already exists, skipping...")
    except SchedulerUnavailable as exc:
        ctx.warn(f"Could not configure cron job: {exc}")

    ctx.info("Setting up log rotation")
    install_logrotate_policy(settings)
    ctx.info("Log rotation configured")

    if verify_cycle(ctx) != 0:
        return 1

    ctx.echo()
    ctx.header("SETUP COMPLETE")
    ctx.info("System monitoring is now active!")
    ctx.info(f"Logs will be written to: {settings.log_file}")
    ctx.info(f"Monitoring runs every {settings.cron_interval_minutes} minutes")
    ctx.echo()
    ctx.info(f"To view logs in real-time: sudo tail -f {settings.log_file}")
    ctx.info(f"To check status: {ctx.prog} status")
    ctx.info(f"To view recent logs: {ctx.prog} logs")
    return 0


def handle_status(ctx: Context) -> int:
    settings = ctx.settings
    ctx.header("SYSTEM MONITORING STATUS")

    if settings.script_path.is_file():
        ctx.info(f"✓ Monitoring script: {settings.script_path}")
        ctx.echo(_describe(settings.script_path))
    else:
        ctx.error("✗ Monitoring script not found")
    ctx.echo()

    if ctx.log.exists():
        ctx.info(f"✓ Log file: {settings.log_file}")
        ctx.echo(_describe(settings.log_file))
        ctx.echo(f"Log file size: {human_size(ctx.log.size())}")
    else:
        ctx.error("✗ Log file not found")
    ctx.echo()

    try:
        entries = ctx.scheduler.find_entries(settings.script_path)
    except SchedulerUnavailable as exc:
        ctx.error(f"✗ Cron job status unavailable: {exc}")
    else:
        if entries:
            ctx.info("✓ Cron job configured:")
            for entry in entries:
                ctx.echo(entry)
        else:
            ctx.error("✗ Cron job not found")
    ctx.echo()

    if ctx.log.size() > 0:
        ctx.info("Recent monitoring data:")
        ctx.echo("=======================")
        ctx.show_tail(settings.status_tail_lines)
    return 0


def handle_logs(ctx: Context) -> int:
    if not ctx.log.exists():
        ctx.error(f"Log file not found: {ctx.settings.log_file}")
        return 0
    ctx.header("RECENT SYSTEM MONITORING LOGS")
    ctx.show_tail(ctx.settings.logs_tail_lines)
    return 0


def handle_test(ctx: Context) -> int:
    _require_privilege()
    return verify_cycle(ctx)


def handle_help(ctx: Context) -> int:
    ctx.echo(usage_text(ctx.prog))
    return 0


def handle_interactive(ctx: Context) -> int:
    ctx.header("SYSTEM MONITORING INTERACTIVE SETUP")
    ctx.echo("This will set up automated system monitoring.")
    try:
        response = ctx.prompt("Do you want to proceed? (y/N): ")
    except EOFError:
        response = ""
    if re.fullmatch(r"[Yy]", response.strip()):
        return handle_setup(ctx)
    ctx.echo("Setup cancelled.")
    return 0


HANDLERS: dict[ExecutionMode, Callable[[Context], int]] = {
    ExecutionMode.SETUP: handle_setup,
    ExecutionMode.MONITOR: handle_monitor,
    ExecutionMode.STATUS: handle_status,
    ExecutionMode.LOGS: handle_logs,
    ExecutionMode.TEST: handle_test,
    ExecutionMode.HELP: handle_help,
    ExecutionMode.INTERACTIVE: handle_interactive,
}


def _build_parser(prog: str) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=prog,
        description="Collect CPU, memory and disk usage into a rotating health log.",
        add_help=False,
    )
    parser.add_argument("mode", nargs="?", default=None, help="setup | monitor | status | logs | test | help")
    return parser


def main(
    argv: Sequence[str] | None = None,
    *,
    settings: Settings | None = None,
    provider: MetricsProvider | None = None,
    scheduler: CronScheduler | None = None,
    out: TextIO | None = None,
    prompt: Callable[[str], str] = input,
    prog: str = PROG,
) -> int:
    settings = settings or get_settings()
    ctx = Context(
        settings=settings,
        provider=provider or build_provider(settings),
        scheduler=scheduler or CronScheduler(),
        out=out or sys.stdout,
        prompt=prompt,
        prog=prog,
    )

    # Unrecognised options such as "-x" are treated as unknown mode tokens.
    args, extras = _build_parser(prog).parse_known_args(argv)
    tokens = ([args.mode] if args.mode is not None else []) + extras
    try:
        mode = parse_mode(tokens[0] if tokens else None)
    except UsageError as exc:
        ctx.error(str(exc))
        ctx.echo(usage_text(prog))
        return 1

    try:
        return HANDLERS[mode](ctx)
    except WriteAccessError as exc:
        ctx.echo(f"Error: {exc}")
        return 1
    except HealthLogError as exc:
        ctx.error(str(exc))
        return 1
    except OSError as exc:
        ctx.error(f"{mode.value} failed: {exc}")
        return 1


def run() -> None:
    settings = get_settings()
    configure_logging(settings)
    sys.exit(main(settings=settings))


if __name__ == "__main__":
    run()

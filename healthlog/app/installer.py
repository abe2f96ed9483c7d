from __future__ import annotations

import logging
import os
import shutil
import sys
from pathlib import Path

from healthlog.app.config import Settings
from healthlog.app.errors import OwnershipError


logger = logging.getLogger(__name__)

LAUNCHER_MODE = 0o755
LAUNCHER_OWNER = "root"

LOGROTATE_TEMPLATE = """{log_file} {{
    weekly
    rotate 4
    compress
    delaycompress
    missingok
    notifempty
    create {mode:o} {owner} {group}
}}
"""


def is_privileged() -> bool:
    return os.geteuid() == 0


def render_launcher(python: str | None = None) -> str:
    interpreter = python or sys.executable
    return f'#!/bin/sh\nexec "{interpreter}" -m healthlog.app.main "$@"\n'


def install_launcher(settings: Settings) -> Path:
    """Write the executable the scheduler invokes."""
    target = settings.script_path
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(render_launcher())
    os.chmod(target, LAUNCHER_MODE)
    if is_privileged():
        try:
            shutil.chown(target, LAUNCHER_OWNER, LAUNCHER_OWNER)
        except LookupError as exc:
            raise OwnershipError(target, LAUNCHER_OWNER, LAUNCHER_OWNER, str(exc)) from exc
    logger.info("Installed launcher at %s", target)
    return target


def render_logrotate_policy(log_file: Path | str, owner: str, group: str, mode: int = 0o644) -> str:
    return LOGROTATE_TEMPLATE.format(log_file=log_file, mode=mode, owner=owner, group=group)


def install_logrotate_policy(settings: Settings) -> Path:
    target = settings.logrotate_path
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(
        render_logrotate_policy(settings.log_file, settings.log_owner, settings.log_group, settings.log_mode)
    )
    logger.info("Installed logrotate policy at %s", target)
    return target

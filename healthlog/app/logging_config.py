"""Logging utilities."""
from __future__ import annotations

import logging
import sys

from healthlog.app.config import Settings


def configure_logging(settings: Settings) -> None:
    """Send diagnostics to stderr so stdout stays free for operator output."""
    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    level = logging.DEBUG if settings.debug else settings.log_level
    logging.basicConfig(level=level, handlers=[handler], force=True)

    logging.getLogger(__name__).debug("Logging configured at level %s", level)

"""structlog configuration shared by the CLI and library entry points."""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog

from entitymigrate.config import is_debug_enabled

_configured = False


def _stderr_logger(*args: Any) -> structlog.PrintLogger:
    # looked up per call; sys.stderr may be swapped after configuration
    return structlog.PrintLogger(sys.stderr)


def configure_logging(verbose: bool = False, force: bool = False) -> None:
    """Configure structlog to render key/value events on stderr.

    Debug output is enabled by ``verbose`` or the ENTITYMIGRATE_DEBUG env var.
    Repeated calls are no-ops unless ``force`` is set.
    """
    global _configured
    if _configured and not force:
        return

    level = logging.DEBUG if verbose or is_debug_enabled() else logging.INFO

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="%H:%M:%S"),
            structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=_stderr_logger,
        cache_logger_on_first_use=False,
    )
    _configured = True

"""Logging setup for the ledger.

Service modules log through ``logging.getLogger(__name__)`` while the
facade and workers use ``structlog.get_logger()``. Both end up in one root
handler whose ``ProcessorFormatter`` renders every record as JSON or
console output according to ``Settings.log_format``.
"""

from __future__ import annotations

import logging
import sys
from typing import IO

import structlog

from edq.config import Settings

HANDLER_NAME = "edq"

SHARED_PROCESSORS: list[structlog.types.Processor] = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_log_level,
    structlog.stdlib.add_logger_name,
    structlog.processors.TimeStamper(fmt="iso"),
    structlog.processors.StackInfoRenderer(),
]


def build_formatter(log_format: str) -> structlog.stdlib.ProcessorFormatter:
    """Formatter for the root handler. ``log_format`` is "json" or "console"."""
    if log_format == "json":
        tail: list[structlog.types.Processor] = [
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(),
        ]
    else:
        # ConsoleRenderer prints exc_info itself.
        tail = [structlog.dev.ConsoleRenderer()]

    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=[*SHARED_PROCESSORS, structlog.stdlib.ExtraAdder()],
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, *tail],
    )


def setup_logging(settings: Settings, stream: IO[str] | None = None) -> logging.Handler:
    """Route structlog and stdlib logging through one structlog-rendered handler.

    Calling it again replaces the handler installed by the previous call.
    Returns the installed handler.
    """
    structlog.configure(
        processors=[*SHARED_PROCESSORS, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.set_name(HANDLER_NAME)
    handler.setFormatter(build_formatter(settings.log_format))

    root = logging.getLogger()
    for existing in list(root.handlers):
        if existing.get_name() == HANDLER_NAME:
            root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))
    return handler

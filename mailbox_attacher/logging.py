"""Structured logging setup using structlog.

The caller owns the lifecycle: call :func:`setup_logging` once at process
start and :func:`teardown_logging` on exit.  Components never configure
logging themselves; they receive a logger at construction.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import structlog

_SHARED_PROCESSORS: list[structlog.types.Processor] = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_log_level,
    structlog.stdlib.add_logger_name,
    structlog.processors.TimeStamper(fmt="iso"),
    structlog.processors.StackInfoRenderer(),
    structlog.processors.format_exc_info,
]


def setup_logging(
    *,
    json: bool = True,
    level: str = "INFO",
    log_file: str | Path | None = None,
) -> None:
    """Configure structlog for the attacher process.

    Parameters
    ----------
    json:
        If *True* (the default), output JSON lines on stdout.  If *False*,
        use a human-friendly console renderer.
    level:
        Root log level name (e.g. ``"DEBUG"``, ``"INFO"``).
    log_file:
        Optional path that additionally receives JSON lines.
    """
    if json:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())

    structlog.configure(
        processors=[
            *_SHARED_PROCESSORS,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
            foreign_pre_chain=_SHARED_PROCESSORS,
        )
    )

    root = logging.getLogger()
    teardown_logging()
    root.addHandler(handler)

    if log_file is not None:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(
            structlog.stdlib.ProcessorFormatter(
                processors=[
                    structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                    structlog.processors.JSONRenderer(),
                ],
                foreign_pre_chain=_SHARED_PROCESSORS,
            )
        )
        root.addHandler(file_handler)

    root.setLevel(level.upper())


def teardown_logging() -> None:
    """Flush and detach every handler on the root logger."""
    root = logging.getLogger()
    for handler in list(root.handlers):
        handler.flush()
        handler.close()
        root.removeHandler(handler)


def component_logger(
    component: str,
    logger: structlog.stdlib.BoundLogger | None = None,
) -> structlog.stdlib.BoundLogger:
    """Bind *component* onto the injected logger, or onto a fresh one."""
    return (logger or structlog.get_logger()).bind(component=component)

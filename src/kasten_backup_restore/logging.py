from __future__ import annotations

import logging
import sys
from typing import Any

import structlog


def configure_logging(level: int | str = logging.INFO, *, json_logs: bool = False) -> None:
    """Configure structlog on top of the standard logging module.

    Events below WARNING go to stdout, WARNING and above to stderr.
    """

    timestamper = structlog.processors.TimeStamper(fmt="iso", utc=True)
    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        timestamper,
        structlog.processors.StackInfoRenderer(),
    ]
    if json_logs:
        processors.extend([structlog.processors.format_exc_info, structlog.processors.JSONRenderer()])
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=processors,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.addFilter(lambda record: record.levelno < logging.WARNING)
    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setLevel(logging.WARNING)

    logging.basicConfig(level=level, format="%(message)s", handlers=[stdout_handler, stderr_handler])


def bind_context(**kwargs: Any) -> structlog.stdlib.BoundLogger:
    logger = structlog.get_logger()
    return logger.bind(**kwargs)

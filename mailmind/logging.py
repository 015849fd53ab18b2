"""structlog configuration for the API process."""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterable

import structlog

# Third-party loggers that log every request at INFO.
NOISY_LOGGERS = ("httpx", "httpcore")


def setup_logging(
    *,
    json: bool = True,
    level: str = "INFO",
    quiet: Iterable[str] = NOISY_LOGGERS,
) -> None:
    """Send structlog events and uvicorn's stdlib records to stdout in one format.

    Any handlers already on the root logger are replaced. *json* picks a
    JSON line per event; otherwise structlog's console renderer is used
    for local runs. *level* is a logging level name in any case. Every
    logger listed in *quiet* stays at WARNING even when *level* is lower,
    which keeps httpx from logging each provider call.
    """
    timestamper = structlog.processors.TimeStamper(fmt="iso", utc=True)
    pre_chain: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        timestamper,
    ]

    structlog.configure(
        processors=[
            *pre_chain,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    renderer: structlog.types.Processor
    if json:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    # foreign_pre_chain formats records emitted by uvicorn and other
    # stdlib loggers the same way as structlog events.
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=pre_chain,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level.upper())

    for name in quiet:
        logging.getLogger(name).setLevel(logging.WARNING)

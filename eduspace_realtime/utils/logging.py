"""Logging setup.

Modules log through ``logging.getLogger(__name__)``; this configures
structlog as the renderer (coloured console in debug, JSON otherwise) and
routes the standard library handlers to stdout.
"""

import logging
import sys
from typing import TYPE_CHECKING, List

import structlog
from structlog.types import Processor

if TYPE_CHECKING:
    from eduspace_realtime.config import Settings


NOISY_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "asyncio", "pymongo", "motor")


def setup_logging(settings: "Settings") -> None:
    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)

    shared_processors: List[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]
    if settings.debug:
        renderer: Processor = structlog.dev.ConsoleRenderer(colors=True)
    else:
        renderer = structlog.processors.JSONRenderer()

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            renderer,
        ],
    )
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(log_level)

    structlog.configure(
        processors=[*shared_processors, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    logging.getLogger("eduspace_realtime").setLevel(log_level)


def bind_context(**kwargs: object) -> None:
    """Attach request/session scoped fields (user_id, conversation_id) to log lines."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()

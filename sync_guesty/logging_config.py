from __future__ import annotations

import logging
import sys
from typing import Any, Callable, MutableMapping

import structlog

from sync_guesty.config import LOG_LEVEL

Processor = Callable[[Any, str, MutableMapping[str, Any]], Any]

QUIET_LOGGERS = ("urllib3", "requests", "stripe", "uvicorn.access")

# Applied to structlog events and to foreign (stdlib) records alike
SHARED_PROCESSORS: list[Processor] = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_logger_name,
    structlog.stdlib.add_log_level,
    structlog.stdlib.PositionalArgumentsFormatter(),
    structlog.processors.TimeStamper(fmt="iso", utc=True),
    structlog.processors.StackInfoRenderer(),
]


def _render_chain() -> list[Processor]:
    if LOG_LEVEL == "INFO":
        return [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    # ConsoleRenderer formats exceptions itself
    return [structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())]


def setup_logging() -> None:
    """
    Route structlog and standard-library logging through one stdout handler.

    LOG_LEVEL=INFO renders JSON lines for log aggregation; any other level
    renders the human-readable console format. Services log through
    structlog, the pollers and scripts through logging.getLogger; both end up
    with the same timestamp, level and bound request_id fields.

    Safe to call more than once: the root handler is replaced, not added.
    """
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=SHARED_PROCESSORS,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            *_render_chain(),
        ],
    )
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(LOG_LEVEL)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *SHARED_PROCESSORS,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

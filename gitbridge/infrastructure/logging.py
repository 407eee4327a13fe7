import logging
import sys
from typing import Any

import structlog
from structlog.types import Processor

from gitbridge.core.config import settings
from gitbridge.infrastructure.logging_processors import (
    add_request_context,
    add_service_context,
    format_exception_info,
    sanitize_sensitive_data,
    set_log_severity,
)


def setup_logging(debug: bool = False) -> None:
    """Configure structlog and the stdlib root logger; debug forces DEBUG"""
    timestamper = structlog.processors.TimeStamper(fmt="iso")

    shared_processors: list[Processor] = [
        # Add contextvars (correlation ID, repository, etc.)
        structlog.contextvars.merge_contextvars,

        add_service_context,
        add_request_context,

        structlog.processors.add_log_level,
        set_log_severity,

        format_exception_info,

        timestamper,

        # Should be last before rendering
        sanitize_sensitive_data,
    ]

    if settings.log_format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(
            colors=True,
            exception_formatter=structlog.dev.rich_traceback
        )

    structlog.configure(
        processors=shared_processors + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    level = logging.DEBUG if debug else getattr(logging, settings.effective_log_level)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    for logger_name in ["uvicorn", "uvicorn.access", "uvicorn.error"]:
        logger = logging.getLogger(logger_name)
        logger.handlers.clear()
        logger.addHandler(handler)
        logger.setLevel(level)
        logger.propagate = False


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()


def unbind_context(*keys: str) -> None:
    structlog.contextvars.unbind_contextvars(*keys)

"""Structured logging configuration."""
import logging
import structlog
from typing import Any, Optional, TextIO
from app.core.errors import BaseServiceError


def configure_logging(settings: Any, stream: Optional[TextIO] = None) -> None:
    """
    Configure structured logging.

    Args:
        settings: Application settings (debug selects the console renderer)
        stream: Output stream, stdout when None
    """
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer() if not settings.debug else structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.DEBUG if settings.debug else logging.INFO
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=stream),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str):
    """Get a structured logger."""
    return structlog.get_logger(name)


def log_error(
    logger: structlog.BoundLogger,
    error: BaseServiceError,
    additional_context: Optional[dict[str, Any]] = None,
) -> None:
    """
    Log a service error at a level matching its category.

    Args:
        logger: Structured logger instance
        error: BaseServiceError instance
        additional_context: Extra fields merged into the event
    """
    error_dict = error.to_dict()
    if additional_context:
        error_dict.update(additional_context)

    if error.category.value == "transient":
        logger.warning("error_transient", **error_dict)
    else:
        logger.error("error_permanent", **error_dict)

    if error.original_error:
        logger.error(
            "error_original_exception",
            error_type=type(error.original_error).__name__,
            original_error=str(error.original_error),
            correlation_id=error.correlation_id,
        )

import logging
import sys

import structlog


def configure_logging(debug: bool = False, level: str | None = None) -> None:
    """JSON lines in production, console renderer in debug. ``level`` overrides the debug-derived level."""
    log_level = logging.DEBUG if debug else logging.INFO
    if level:
        log_level = getattr(logging, level.upper(), log_level)
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=log_level,
    )
    # httpx logs every outbound request at INFO; blob copies make that thousands of lines.
    logging.getLogger("httpx").setLevel(max(log_level, logging.WARNING))
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer() if debug else structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None, **context) -> structlog.BoundLogger:
    """Logger with ``context`` bound, e.g. ``get_logger(__name__, remix_id=...)``."""
    logger = structlog.get_logger(name)
    return logger.bind(**context) if context else logger


def bind_request_id(request_id: str) -> None:
    structlog.contextvars.bind_contextvars(request_id=request_id)


def bind_user_id(user_id: str) -> None:
    structlog.contextvars.bind_contextvars(user_id=user_id)

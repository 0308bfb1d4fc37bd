"""Structured logging configuration using structlog."""

import logging
import sys
from collections.abc import MutableMapping
from typing import Any

import structlog

_LEVEL_OUTCOMES: dict[str, str] = {
    "debug": "info",
    "info": "info",
    "warning": "failure",
    "error": "failure",
    "critical": "failure",
}


def add_outcome(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """Tag every log line with an outcome derived from its level.

    Call sites that pass ``outcome`` explicitly keep their value.

    Args:
        logger: Wrapped logger (unused).
        method_name: Name of the log method that was called.
        event_dict: Event dictionary being processed.

    Returns:
        The event dictionary with an ``outcome`` key.
    """
    event_dict.setdefault("outcome", _LEVEL_OUTCOMES.get(method_name, "info"))
    return event_dict


def configure_logging(debug: bool = False) -> None:
    """Configure structlog for JSON output.

    Args:
        debug: Enable debug-level logging when True.
    """
    level = logging.DEBUG if debug else logging.INFO

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            add_outcome,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.format_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        level=level,
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    for name in ["uvicorn", "uvicorn.error", "uvicorn.access", "elastic_transport"]:
        logging.getLogger(name).handlers = []
        logging.getLogger(name).propagate = True
    logging.getLogger("pymongo").setLevel(logging.WARNING)

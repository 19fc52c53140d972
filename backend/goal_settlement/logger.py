"""
Structured logging for the settlement service.

structlog with ISO timestamps and log level; JSON by default so gateway and
orchestrator events aggregate cleanly. Modules call get_logger(__name__) and
log a snake_case event name plus keyword context (goal_id, function, code).
"""

from __future__ import annotations

import logging
import sys
from datetime import datetime, timezone
from typing import Any

import structlog

from .config import settings


def _add_timestamp(
    logger: Any,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    if "timestamp" not in event_dict:
        event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()
    return event_dict


def configure_structlog(level: str | None = None, fmt: str | None = None) -> None:
    """Configure structlog once: level filter, timestamp, JSON or console output."""
    level_value = getattr(logging, (level or settings.log_level).upper(), logging.INFO)
    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        _add_timestamp,
    ]
    if (fmt or settings.log_format) == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level_value),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )


if not structlog.is_configured():
    configure_structlog()


def get_logger(name: str) -> structlog.BoundLogger:
    """
    Return a structured logger bound to the module name.

        logger = get_logger(__name__)
        logger.warning("contract_deposit_failed", goal_id=goal.id, code=exc.code)
    """
    return structlog.get_logger(name).bind(logger=name)

"""
Structured logging for the pipeline.

Keyword arguments passed to a log call are kept as structured data on the
record (record.extra_data) instead of being formatted into the message:

    logger.info("Soft delete applied", entity_type="Post", soft_deleted=3)

Production output is one JSON object per line; development output is a
coloured single line. Both include the correlation id and acting user of
the unit of work that emitted the record (see CorrelationIdFilter).
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from shared.config.settings import settings

# Third-party loggers that are too chatty below WARNING
QUIET_LOGGERS = ("sqlalchemy.engine", "sqlalchemy.pool", "redis")


def _record_context(record: logging.LogRecord) -> dict[str, Any]:
    """Unit-of-work context attached by CorrelationIdFilter, if any."""
    context = {}
    correlation_id = getattr(record, "correlation_id", None)
    if correlation_id and correlation_id != "-":
        context["correlation_id"] = correlation_id
    actor_id = getattr(record, "actor_id", None)
    if actor_id:
        context["actor_id"] = actor_id
    return context


class StructuredFormatter(logging.Formatter):
    """JSON lines for log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **_record_context(record),
        }

        data = getattr(record, "extra_data", None)
        if data:
            log_data["data"] = data

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if settings.debug:
            log_data["source"] = f"{record.pathname}:{record.lineno} in {record.funcName}"

        return json.dumps(log_data, default=str)


class DevelopmentFormatter(logging.Formatter):
    """Readable single-line output for a terminal."""

    LEVEL_COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"
    DIM = "\033[2m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelno, self.RESET)
        parts = [
            f"{color}{datetime.fromtimestamp(record.created):%H:%M:%S} {record.levelname:<8}{self.RESET}",
        ]

        context = _record_context(record)
        if context:
            tag = "/".join(str(v)[:8] for v in context.values())
            parts.append(f"{self.DIM}[{tag}]{self.RESET}")

        parts.append(f"{record.name}: {record.getMessage()}")

        data = getattr(record, "extra_data", None)
        if data:
            parts.append("(" + ", ".join(f"{key}={value}" for key, value in data.items()) + ")")

        line = " ".join(parts)
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


class StructuredLogger(logging.Logger):
    """
    Logger whose debug/info/warning/error/critical accept keyword data.

    Standard keyword arguments (exc_info, extra, stack_info, stacklevel)
    keep their usual meaning; any other keyword becomes structured data.
    """

    def _log(
        self,
        level: int,
        msg: object,
        args: Any,
        exc_info: Any = None,
        extra: dict | None = None,
        stack_info: bool = False,
        stacklevel: int = 1,
        **data: Any,
    ) -> None:
        extra = dict(extra or {})
        extra["extra_data"] = data or None
        # One more frame between the caller and findCaller()
        super()._log(
            level,
            msg,
            args,
            exc_info=exc_info,
            extra=extra,
            stack_info=stack_info,
            stacklevel=stacklevel + 1,
        )


logging.setLoggerClass(StructuredLogger)


def setup_logging() -> None:
    """
    Install one stdout handler on the root logger.

    JSON output in production, coloured output elsewhere. Call once at
    process start; calling again replaces the handler.
    """
    from shared.infrastructure.context import CorrelationIdFilter

    level = logging.DEBUG if settings.debug else logging.INFO

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.addFilter(CorrelationIdFilter())
    handler.setFormatter(
        StructuredFormatter() if settings.environment == "production" else DevelopmentFormatter()
    )

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    root.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> StructuredLogger:
    """
    Get a structured logger.

    Usage:
        from shared.config.logging import get_logger
        logger = get_logger(__name__)

        logger.info("Unit of work saved", committed=4, dispatched=2)
        logger.error("Dispatch failed", event_type="ENTITY_DELETED", exc_info=True)
    """
    return logging.getLogger(name)  # type: ignore

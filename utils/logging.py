import json
import logging
import sys
from datetime import datetime, timezone

from config import settings

LOGGER_NAMESPACE = "picket"


class StructuredFormatter(logging.Formatter):
    """One JSON object per line, shaped for log aggregators.

    Fields: severity, logger, message, timestamp, and when present on the
    record, request_id, context and traceback. Resolved IPs and upstream
    details belong in ``context``; they are never sent to the client.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "severity": record.levelname if record.levelno else "DEFAULT",
            "logger": record.name,
            "message": record.getMessage(),
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
        }

        request_id = getattr(record, "request_id", None)
        if request_id:
            log_entry["request_id"] = request_id

        context = getattr(record, "context", None)
        if context:
            log_entry["context"] = context

        if record.exc_info and record.exc_info[0]:
            log_entry["traceback"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


def setup_logging(log_level: str | None = None) -> logging.Logger:
    """Configure structured JSON logging.

    ``log_level`` defaults to settings.log_level; unknown names fall back to ERROR.

    Call once at application startup (in main.py lifespan).
    """
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StructuredFormatter())

    root_logger = logging.getLogger(LOGGER_NAMESPACE)
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    level_name = (log_level or settings.log_level).upper()
    root_logger.setLevel(getattr(logging, level_name, logging.ERROR))

    # Outbound URLs would otherwise be logged by httpx at INFO
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    return root_logger


def get_logger(name: str) -> logging.Logger:
    """Get a child logger under the 'picket' namespace."""
    return logging.getLogger(f"{LOGGER_NAMESPACE}.{name}")

"""
Structured logging configuration.

Two output shapes, chosen per environment:

    text   coloured one-liners for development, engine context appended as
           ``key=value`` pairs
    json   one JSON object per line for log aggregation (production default)

``LOG_LEVEL`` and ``LOG_FORMAT`` override the defaults. Services attach
engine context through ``extra``:

    logger.info("Assigned to user %s", user.id,
                extra={"work_item_id": item.id, "user_id": user.id, "batch_id": batch_id})
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

# ``extra`` keys that are carried into the formatted output, in display order
CONTEXT_FIELDS = (
    "request_id",
    "method",
    "path",
    "endpoint",
    "status",
    "job_name",
    "batch_id",
    "item_type",
    "work_item_id",
    "assignment_id",
    "user_id",
    "sla_status",
    "duration_ms",
)


def record_context(record: logging.LogRecord) -> dict:
    """Engine context attached to ``record`` via ``extra``."""
    return {
        key: getattr(record, key)
        for key in CONTEXT_FIELDS
        if getattr(record, key, None) is not None
    }


class JSONFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "where": f"{record.module}:{record.lineno}",
        }
        entry.update(record_context(record))
        if record.exc_info and record.exc_info[0] is not None:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Coloured single-line output for a developer terminal."""

    LEVEL_COLORS = {
        logging.DEBUG: "\033[2m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[1;31m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        stamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S.%f")[:-3]
        color = self.LEVEL_COLORS.get(record.levelno, "")
        context = " ".join(f"{k}={v}" for k, v in record_context(record).items())
        line = f"{stamp} {color}{record.levelname[:4]}{self.RESET} {record.name} | {record.getMessage()}"
        if context:
            line += f"  [{context}]"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app) -> None:
    """Install one root handler for ``app``.

    Defaults: DEBUG + text when DEBUG or TESTING is set, INFO + json
    otherwise. Calling it again (one app per test session, CLI runs) replaces
    the handler instead of stacking a second one.
    """
    verbose = app.config.get("DEBUG", False) or app.config.get("TESTING", False)
    level_name = os.getenv("LOG_LEVEL", "DEBUG" if verbose else "INFO").upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO
    fmt = os.getenv("LOG_FORMAT", "text" if verbose else "json").lower()

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if fmt == "json" else ReadableFormatter())

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)

    # SQL echo and werkzeug access lines drown out engine logs
    for name in ("sqlalchemy.engine", "werkzeug", "alembic"):
        logging.getLogger(name).setLevel(logging.WARNING)

    app.logger.setLevel(level)
    if not app.config.get("TESTING", False):
        app.logger.info("Logging configured: level=%s format=%s", level_name, fmt)

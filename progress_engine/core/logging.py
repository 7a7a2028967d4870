"""Logging configuration for the progress engine.

Engine code attaches learner context to records through ``extra=``
(user_id, course_id, event_id, attempt) and the request middleware
stamps request_id on every record.  Both output shapes, selected by
LOG_JSON, surface that context:

  _ContainerFormatter: one human-readable line for local dev, context
    appended as key=value.  WARNING and above also carry [file:line],
    so a rejected event or a run of version conflicts points straight
    at the guard that fired.

      2026-03-02T09:00:00.123+00:00 WARNING  progress_engine.services.engine  \
Rejected event  user_id=u-42 event_id=e-7  [engine.py:212]

  _JsonFormatter: one JSON object per line for log aggregation, context
    as top-level keys, so one learner's apply cycles can be filtered out
    of interleaved output:

      level == "WARNING" AND user_id == "u-42"

Everything goes to stdout; the container runtime collects it.
"""

from __future__ import annotations

import datetime
import json
import logging
import sys

# Learner context shown by both formatters.
ENGINE_CONTEXT = ("user_id", "course_id", "event_id", "attempt")

# Set by RequestContextMiddleware; JSON output only.
REQUEST_CONTEXT = ("request_id", "method", "path", "status_code", "duration_ms")

QUIET_LOGGERS = (
    "uvicorn",
    "uvicorn.access",
    "uvicorn.error",
    "httpcore",
    "httpx",
    "sqlalchemy.engine",
)


def _context(record: logging.LogRecord, fields: tuple[str, ...]) -> dict[str, object]:
    return {
        key: value for key in fields if (value := getattr(record, key, None)) is not None
    }


def _timestamp(record: logging.LogRecord) -> str:
    created = datetime.datetime.fromtimestamp(record.created).astimezone()
    return created.isoformat(timespec="milliseconds")


class _ContainerFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        line = f"{_timestamp(record)} {record.levelname:<8} {record.name}  {record.getMessage()}"
        context = _context(record, ENGINE_CONTEXT)
        if context:
            line += "  " + " ".join(f"{k}={v}" for k, v in context.items())
        if record.levelno >= logging.WARNING:
            line += f"  [{record.filename}:{record.lineno}]"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


class _JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, object] = {
            "timestamp": _timestamp(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(_context(record, REQUEST_CONTEXT + ENGINE_CONTEXT))
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def setup_logging(level_name: str, *, json_format: bool = False) -> None:
    """Route every logger to one stdout handler at ``level_name``.

    Unknown level names fall back to INFO.  Chatty third-party loggers
    never go below WARNING.
    """
    level = getattr(logging, level_name.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(_JsonFormatter() if json_format else _ContainerFormatter())

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    root.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

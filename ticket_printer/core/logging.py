"""
Logging for Ticket Printer.

Log lines come from three places: Flask request handlers, the dispatcher's
print threads and the out-of-process bridge worker. Each record is tagged
with whatever context applies:

- ``request_id``/``path`` inside a Flask request
- ``job_id`` while a print job is being processed (see job_context())

configure_logging() installs one handler on the root logger (journald when
python-systemd is importable, stderr otherwise) with a plain or JSON format.
"""

from __future__ import annotations

import contextvars
import json
import logging
import os
from contextlib import contextmanager
from typing import Iterator

_JOB_ID: contextvars.ContextVar[str] = contextvars.ContextVar("ticketprinter_job_id", default="-")

PLAIN_FORMAT = "[%(asctime)s] %(levelname)s %(request_id)s job=%(job_id)s %(name)s %(message)s"


@contextmanager
def job_context(job_id: str) -> Iterator[None]:
    """Tag every record logged in this context (thread or copied context) with ``job_id``."""
    token = _JOB_ID.set(job_id)
    try:
        yield
    finally:
        _JOB_ID.reset(token)


def current_job_id() -> str:
    return _JOB_ID.get()


class LogContextFilter(logging.Filter):
    """
    Attach request_id, path and job_id to every record.
    Outside a Flask request (print threads, the bridge worker) request fields are "-".
    """

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        record.job_id = _JOB_ID.get()
        try:
            from flask import g, has_request_context, request  # lazy import

            in_request = has_request_context()
            record.request_id = getattr(g, "request_id", "-") if in_request else "-"
            record.path = request.path if in_request else "-"
        except ImportError:
            record.request_id = "-"
            record.path = "-"
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line: ts, level, logger, msg, request_id, job_id, path, exc."""

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        base = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "request_id": getattr(record, "request_id", "-"),
            "job_id": getattr(record, "job_id", "-"),
        }
        path = getattr(record, "path", None)
        if path not in (None, "-"):
            base["path"] = path
        if record.exc_info:
            base["exc"] = self.formatException(record.exc_info)
        return json.dumps(base, ensure_ascii=False)


def _resolve_level(default: int) -> int:
    env_level = os.environ.get("TICKETPRINTER_LOG_LEVEL")
    if not env_level:
        return default
    if env_level.isdigit():
        return int(env_level)
    level = logging.getLevelName(env_level.upper())
    return level if isinstance(level, int) else default


def configure_logging(level: int = logging.INFO) -> logging.Logger:
    """
    Configure root logging for the web app or the bridge worker.

    TICKETPRINTER_LOG_LEVEL overrides ``level``; TICKETPRINTER_JSON_LOGS
    switches to JsonFormatter. Existing root handlers are replaced, so
    repeated create_app() calls do not duplicate output. Flask's app logger
    propagates to root.

    Returns the configured root logger.
    """
    root = logging.getLogger()
    root.setLevel(_resolve_level(level))
    root.handlers = []

    json_logs = os.environ.get("TICKETPRINTER_JSON_LOGS", "false").lower() in ("1", "true", "yes")
    formatter: logging.Formatter = JsonFormatter() if json_logs else logging.Formatter(PLAIN_FORMAT)

    try:
        from systemd.journal import JournalHandler  # type: ignore

        handler: logging.Handler = JournalHandler(SYSLOG_IDENTIFIER="ticket-printer")
    except ImportError:
        handler = logging.StreamHandler()
    handler.setFormatter(formatter)
    handler.addFilter(LogContextFilter())
    root.addHandler(handler)

    flask_logger = logging.getLogger("flask.app")
    flask_logger.handlers = []
    flask_logger.propagate = True

    return root


__all__ = ["JsonFormatter", "LogContextFilter", "configure_logging", "current_job_id", "job_context"]

"""
Logging setup for the API process and the reconcile CLI.

Production writes one JSON object per line; every other environment gets
a coloured single-line format. Both formatters pick up:

    • the bound log context (request id for API calls, pass number for
      scheduled reconciliation) from a ContextVar
    • the structured ``extra`` fields below, when a call site sets them

Usage:
    from bantay.core.logging_config import get_logger, log_context

    logger = get_logger(__name__)
    with log_context(pass_number=3):
        logger.info("Status written", extra={"threat_level": "danger", "version": "ab12"})
"""

from __future__ import annotations

import json
import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Dict, Iterator, Optional

from bantay.core.config import settings
from bantay.core.timeutil import format_timestamp, utc_now

_log_context: ContextVar[Dict[str, Any]] = ContextVar("bantay_log_context", default={})

STRUCTURED_FIELDS = (
    "threat_level", "outcome", "path", "version", "user_id",
    "duration_ms", "status_code", "endpoint",
)


@contextmanager
def log_context(**values: Any) -> Iterator[Dict[str, Any]]:
    """Merge ``values`` into the log context for the duration of the block."""
    merged = {**_log_context.get(), **values}
    token = _log_context.set(merged)
    try:
        yield merged
    finally:
        _log_context.reset(token)


def current_log_context() -> Dict[str, Any]:
    return _log_context.get()


def _structured(record: logging.LogRecord) -> Dict[str, Any]:
    return {k: record.__dict__[k] for k in STRUCTURED_FIELDS if k in record.__dict__}


class JSONFormatter(logging.Formatter):
    """One JSON document per record."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "ts": format_timestamp(utc_now()),
            "severity": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "at": f"{record.module}:{record.lineno}",
        }
        entry.update(_structured(record))
        ctx = current_log_context()
        if ctx:
            entry["ctx"] = ctx
        if record.exc_info and record.exc_info[1] is not None:
            entry["exc_type"] = type(record.exc_info[1]).__name__
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class PrettyFormatter(logging.Formatter):
    """
    ``HH:MM:SS LEVEL [ctx] logger: message {threat_level=danger ...}``

    Threat levels get their own colour so a danger transition stands out
    in a scrolling terminal.
    """

    LEVEL_COLOURS = {
        "DEBUG": "\033[2m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[1;31m",
    }
    THREAT_COLOURS = {"safe": "\033[32m", "warning": "\033[33m", "danger": "\033[1;31m"}
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        colour = self.LEVEL_COLOURS.get(record.levelname, "")
        line = f"{colour}{self.formatTime(record, '%H:%M:%S')} {record.levelname:<8}{self.RESET}"

        ctx = current_log_context()
        if "request_id" in ctx:
            line += f" [{str(ctx['request_id'])[:8]}]"
        elif "pass_number" in ctx:
            line += f" [pass {ctx['pass_number']}]"

        line += f" {record.name}: {record.getMessage()}"

        fields = _structured(record)
        if fields:
            parts = []
            for key, value in fields.items():
                if key == "threat_level" and value in self.THREAT_COLOURS:
                    value = f"{self.THREAT_COLOURS[value]}{value}{self.RESET}"
                parts.append(f"{key}={value}")
            line += " {" + " ".join(parts) + "}"

        if record.exc_info and record.exc_info[1] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging(level: Optional[str] = None, json_output: Optional[bool] = None) -> None:
    """
    Install a single stdout handler on the root logger.

    ``json_output`` defaults to True in production. Safe to call twice:
    previous handlers are replaced.
    """
    if json_output is None:
        json_output = settings.is_production

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if json_output else PrettyFormatter())

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO))

    # Per-request lines come from RequestLoggingMiddleware
    for noisy in ("uvicorn.access", "httpx", "httpcore"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)

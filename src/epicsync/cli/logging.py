"""
Logging - Log setup for the command line tool.

Two output formats:
- text: human readable, optionally colored
- json: one JSON object per line, for log aggregation

A RedactingFilter is attached to every handler so that tracker tokens never
reach a log line, whichever logger emitted it.
"""

from __future__ import annotations

import json
import logging
import re
import sys
import traceback
from datetime import datetime, timezone
from typing import Any


REDACTED = "[REDACTED]"

# Attributes every LogRecord has; anything else came in through `extra`
_RECORD_ATTRS = frozenset(
    {
        "args",
        "asctime",
        "created",
        "exc_info",
        "exc_text",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "message",
        "module",
        "msecs",
        "msg",
        "name",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "taskName",
        "thread",
        "threadName",
    }
)

# Token shapes worth masking even when nobody registered them
_SECRET_PATTERNS = (
    re.compile(r"\b(gh[pousr]_[A-Za-z0-9]{20,})\b"),
    re.compile(r"\b(github_pat_[A-Za-z0-9_]{20,})\b"),
    re.compile(r"(?i)(?<=bearer )[A-Za-z0-9._~+/=-]{8,}"),
    re.compile(r"(?i)(?<=basic )[A-Za-z0-9+/=]{8,}"),
)


def _record_context(record: logging.LogRecord) -> dict[str, Any]:
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _RECORD_ATTRS and not key.startswith("_")
    }


class JSONFormatter(logging.Formatter):
    """Formats records as single-line JSON objects."""

    def __init__(
        self,
        include_timestamp: bool = True,
        include_level: bool = True,
        include_logger: bool = True,
        include_location: bool = False,
        static_fields: dict[str, Any] | None = None,
    ):
        super().__init__()
        self.include_timestamp = include_timestamp
        self.include_level = include_level
        self.include_logger = include_logger
        self.include_location = include_location
        self.static_fields = dict(static_fields or {})

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {}

        if self.include_timestamp:
            created = datetime.fromtimestamp(record.created, tz=timezone.utc)
            entry["timestamp"] = created.strftime("%Y-%m-%dT%H:%M:%S.") + f"{int(record.msecs):03d}Z"
        if self.include_level:
            entry["level"] = record.levelname
        if self.include_logger:
            entry["logger"] = record.name

        entry["message"] = record.getMessage()
        entry.update(self.static_fields)

        if self.include_location:
            entry["location"] = {
                "file": record.filename,
                "line": record.lineno,
                "function": record.funcName,
            }

        context = _record_context(record)
        if context:
            entry["context"] = context

        if record.exc_info and record.exc_info[0] is not None:
            exc_type, exc_value, exc_tb = record.exc_info
            entry["exception"] = {
                "type": exc_type.__name__,
                "message": str(exc_value),
                "traceback": "".join(traceback.format_exception(exc_type, exc_value, exc_tb)),
            }

        return json.dumps(entry, default=str, ensure_ascii=False)


class TextFormatter(logging.Formatter):
    """Human readable formatter with optional colors and `extra` context."""

    LEVEL_COLORS = {
        logging.DEBUG: "\033[2m",
        logging.INFO: "\033[36m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[1;31m",
    }
    RESET = "\033[0m"

    def __init__(self, use_colors: bool = False, include_context: bool = True):
        super().__init__(fmt="%(asctime)s %(levelname)-8s %(name)s: %(message)s", datefmt="%H:%M:%S")
        self.use_colors = use_colors
        self.include_context = include_context

    def format(self, record: logging.LogRecord) -> str:
        output = super().format(record)

        if self.include_context:
            context = _record_context(record)
            if context:
                output += " " + " ".join(f"{key}={value!r}" for key, value in context.items())

        if self.use_colors:
            color = self.LEVEL_COLORS.get(record.levelno, "")
            output = f"{color}{output}{self.RESET}"
        return output


class RedactingFilter(logging.Filter):
    """
    Masks secrets in log records.

    Registered secrets (the configured tokens) are replaced wherever they
    appear; well-known token shapes are masked as well. Records are never
    dropped.
    """

    def __init__(self, secrets: list[str] | None = None):
        super().__init__()
        self._secrets: set[str] = set()
        self.register_secrets(*(secrets or []))

    @property
    def registered_count(self) -> int:
        return len(self._secrets)

    def register_secret(self, secret: str | None) -> None:
        # Very short values would mask unrelated text
        if secret and len(secret) >= 4:
            self._secrets.add(secret)

    def register_secrets(self, *secrets: str | None) -> None:
        for secret in secrets:
            self.register_secret(secret)

    def redact(self, text: str) -> str:
        for secret in sorted(self._secrets, key=len, reverse=True):
            text = text.replace(secret, REDACTED)
        for pattern in _SECRET_PATTERNS:
            text = pattern.sub(REDACTED, text)
        return text

    def _redact_value(self, value: Any) -> Any:
        if isinstance(value, str):
            return self.redact(value)
        if isinstance(value, dict):
            return {key: self._redact_value(item) for key, item in value.items()}
        if isinstance(value, (list, tuple)):
            return type(value)(self._redact_value(item) for item in value)
        return value

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = self.redact(record.msg)
        if record.args:
            if isinstance(record.args, dict):
                record.args = self._redact_value(record.args)
            else:
                record.args = tuple(self._redact_value(arg) for arg in record.args)
        return True


def setup_logging(
    level: int = logging.INFO,
    log_format: str = "text",
    log_file: str | None = None,
    static_fields: dict[str, Any] | None = None,
    secrets: list[str] | None = None,
) -> RedactingFilter:
    """
    Configure the root logger.

    Existing root handlers are replaced. Noisy third-party loggers are
    capped at WARNING.

    Args:
        level: Root log level
        log_format: "text" or "json"
        log_file: Also write logs to this file
        static_fields: Fields added to every JSON record
        secrets: Values masked in every record

    Returns:
        The redaction filter, so more secrets can be registered later
    """
    redactor = RedactingFilter(secrets)

    def make_formatter(stream_is_tty: bool) -> logging.Formatter:
        if log_format == "json":
            return JSONFormatter(static_fields=static_fields)
        return TextFormatter(use_colors=stream_is_tty)

    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)
    root.setLevel(level)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(make_formatter(sys.stderr.isatty()))
    console_handler.addFilter(redactor)
    root.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(make_formatter(False))
        file_handler.addFilter(redactor)
        root.addHandler(file_handler)

    for noisy in ("urllib3", "requests"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    return redactor

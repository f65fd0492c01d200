"""
Structured logging for toolchat.

Three sinks share one ``logging.Logger``:

- stderr: colored one-liners (``HH:MM:SS [LEVEL] name - message``)
- ``logs/toolchat.jsonl``: INFO and above as JSON, one object per line
- ``logs/errors.jsonl``: ERROR and above as JSON

Keyword arguments passed to the ``ChatLogger`` methods become fields of the
JSON record, together with the current request context.
"""

from __future__ import annotations

import logging
import logging.handlers
import os
import re
import sys
import uuid

from typing import Any, cast

from pythonjsonlogger import json as jsonlogger

from api.middleware.request_context import get_request_context
from core.constants import (
    LOG_BACKUP_COUNT_APP,
    LOG_BACKUP_COUNT_ERRORS,
    LOG_DIR,
    LOG_MAX_SIZE,
    LOG_PREVIEW_LENGTH,
    SESSION_ID_LENGTH,
    get_settings,
)

#: Applied in order to tool arguments and results before they reach a log line
REDACTION_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"\b[\w.%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"), "[EMAIL]"),
    (re.compile(r"\b(?:\d{4}[- ]?){3}\d{4}\b"), "[CARD]"),
    (re.compile(r"\b(?:sk-|pk-|api[-_]?key[-_]?)[A-Za-z0-9]{20,}\b"), "[API_KEY]"),
    (re.compile(r"\b(?:password|secret|token)\s*[:=]\s*\S+"), "[REDACTED]"),
]

APP_LOG_FIELDS = "%(timestamp)s %(levelname)s %(message)s %(chat_id)s %(server_id)s %(tool)s"
ERROR_LOG_FIELDS = "%(timestamp)s %(levelname)s %(name)s %(message)s"


class _MinLevelFilter(logging.Filter):
    min_level = logging.NOTSET

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno >= self.min_level


class InfoFilter(_MinLevelFilter):
    """Keeps DEBUG chatter out of the application file."""

    min_level = logging.INFO


class ErrorFilter(_MinLevelFilter):
    min_level = logging.ERROR


class ColoredConsoleFormatter(logging.Formatter):
    """Colors the level tag; uvicorn access lines also get a colored status code."""

    GREY = "\x1b[38;20m"
    GREEN = "\x1b[32;20m"
    YELLOW = "\x1b[33;20m"
    RED = "\x1b[31;20m"
    BOLD_RED = "\x1b[31;1m"
    BOLD = "\x1b[1m"
    RESET = "\x1b[0m"

    LEVEL_COLORS = {
        logging.DEBUG: GREY,
        logging.INFO: GREEN,
        logging.WARNING: YELLOW,
        logging.ERROR: RED,
        logging.CRITICAL: BOLD_RED,
    }

    def _paint(self, color: str | None, text: str) -> str:
        return f"{color}{text}{self.RESET}" if color else text

    def _status_color(self, status: int) -> str:
        if status >= 500:
            return self.RED
        return self.YELLOW if status >= 400 else self.GREEN

    def _access_line(self, args: tuple[Any, ...]) -> str:
        # uvicorn passes (client_addr, method, full_path, http_version, status_code)
        client, method, path, version, status = args
        painted_status = self._paint(self._status_color(int(status)), str(status))
        return f'{client} - "{self._paint(self.BOLD, method)} {path} HTTP/{version}" {painted_status}'

    def format(self, record: logging.LogRecord) -> str:
        stamp = self.formatTime(record, "%H:%M:%S")
        level = self._paint(self.LEVEL_COLORS.get(record.levelno), f"[{record.levelname}]")

        args = record.args
        if record.name == "uvicorn.access" and isinstance(args, tuple) and len(args) == 5:
            body = self._access_line(cast(tuple[Any, ...], args))
        else:
            body = record.getMessage()
            if record.exc_info:
                body += "\n" + self.formatException(record.exc_info)
        return f"{stamp} {level} {record.name} - {body}"


def configure_uvicorn_logging() -> None:
    """Route uvicorn's own loggers through the colored console format."""
    logging.getLogger("uvicorn").handlers = []
    logging.getLogger("uvicorn").setLevel(logging.INFO)

    for name in ("uvicorn.access", "uvicorn.error"):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(ColoredConsoleFormatter())
        uv_logger = logging.getLogger(name)
        uv_logger.handlers = [handler]
        uv_logger.setLevel(logging.INFO)
        uv_logger.propagate = False


def _json_file_handler(
    filename: str,
    backup_count: int,
    log_filter: logging.Filter,
    fields: str,
) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        LOG_DIR / filename,
        maxBytes=LOG_MAX_SIZE,
        backupCount=backup_count,
        encoding="utf-8",
    )
    handler.addFilter(log_filter)
    handler.setFormatter(jsonlogger.JsonFormatter(fields, timestamp=True))
    return handler


def setup_logging(name: str = "toolchat", debug: bool | None = None) -> logging.Logger:
    """
    Build the named logger with its console and JSON file handlers.

    ``debug`` lowers the console threshold to DEBUG; when omitted it is read
    from the ``DEBUG`` environment variable so logging works before settings
    have been validated.
    """
    if debug is None:
        debug = os.getenv("DEBUG", "").lower() in ("1", "true", "yes")

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(logging.DEBUG if debug else logging.INFO)
    console.setFormatter(ColoredConsoleFormatter())

    LOG_DIR.mkdir(exist_ok=True)
    handlers = [
        console,
        _json_file_handler("toolchat.jsonl", LOG_BACKUP_COUNT_APP, InfoFilter(), APP_LOG_FIELDS),
        _json_file_handler("errors.jsonl", LOG_BACKUP_COUNT_ERRORS, ErrorFilter(), ERROR_LOG_FIELDS),
    ]

    log = logging.getLogger(name)
    # Handlers decide what is emitted
    log.setLevel(logging.DEBUG)
    log.handlers = handlers
    return log


class ChatLogger:
    """Application logger: keyword arguments become structured fields."""

    def __init__(self, name: str = "toolchat"):
        self.logger = setup_logging(name)
        self.process_id = uuid.uuid4().hex[:SESSION_ID_LENGTH]

    def _fields(self, fields: dict[str, Any]) -> dict[str, Any]:
        fields.setdefault("process_id", self.process_id)
        ctx = get_request_context()
        if ctx is not None:
            for key, value in ctx.to_log_context().items():
                fields.setdefault(key, value)
        return fields

    def debug(self, message: str, **fields: Any) -> None:
        self.logger.debug(message, extra=self._fields(fields))

    def info(self, message: str, **fields: Any) -> None:
        self.logger.info(message, extra=self._fields(fields))

    def warning(self, message: str, **fields: Any) -> None:
        self.logger.warning(message, extra=self._fields(fields))

    def error(self, message: str, exc_info: bool = False, **fields: Any) -> None:
        self.logger.error(message, extra=self._fields(fields), exc_info=exc_info)

    def _should_log_content(self) -> bool:
        try:
            return bool(get_settings().enable_content_logging)
        except ValueError:
            # No valid settings yet (e.g. missing API key): keep content out
            return False

    def _redact_content(self, text: str) -> str:
        for pattern, replacement in REDACTION_PATTERNS:
            text = pattern.sub(replacement, text)
        return text

    def _preview(self, value: Any) -> str:
        """Single-line, redacted, truncated rendering of a tool argument or result."""
        text = self._redact_content(str(value).replace("\n", " "))
        return text if len(text) <= LOG_PREVIEW_LENGTH else text[:LOG_PREVIEW_LENGTH] + "..."

    def log_tool_call(
        self,
        tool_name: str,
        server_id: str | None,
        args: Any,
        result: Any,
        success: bool,
        duration_ms: float | None = None,
    ) -> None:
        """
        One line per tool invocation.

        Arguments and results appear only with ``ENABLE_CONTENT_LOGGING`` on,
        and then only redacted and truncated; otherwise the line says ``[HIDDEN]``.
        """
        with_content = self._should_log_content()
        if with_content:
            line = f"Tool call: {tool_name}({self._preview(args)}) → {self._preview(result)}"
        else:
            line = f"Tool call: {tool_name}(...) → [HIDDEN]"

        fields: dict[str, Any] = {
            "tool": tool_name,
            "server_id": server_id,
            "success": success,
            "content_logging": with_content,
        }
        if not success:
            line += " [FAILED]"
        if duration_ms is not None:
            line += f" [{duration_ms:.0f}ms]"
            fields["ms"] = int(duration_ms)

        self.logger.info(line, extra=self._fields(fields))

    def log_chat_run(self, chat_id: str, steps: int, tool_calls: int, duration_ms: float, outcome: str) -> None:
        """Summary of one orchestration run (``outcome``: completed, cancelled or failed)."""
        self.logger.info(
            f"Chat run {outcome}: {steps} steps, {tool_calls} tool calls [{duration_ms:.0f}ms]",
            extra=self._fields(
                {
                    "chat_id": chat_id,
                    "steps": steps,
                    "tool_calls": tool_calls,
                    "ms": int(duration_ms),
                    "outcome": outcome,
                }
            ),
        )


logger = ChatLogger()

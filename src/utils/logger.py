"""
Application logging.

One named logger fans out to three sinks:

- stderr, colored and short, for whoever runs the server
- logs/events.jsonl, JSON lines at INFO and up (sessions, terminals, executions)
- logs/errors.jsonl, JSON lines at ERROR and up

Records pick up the active RequestContext automatically, so a log line
written deep inside the execution dispatcher still carries the request id
and session id of the call that caused it.
"""

from __future__ import annotations

import logging
import logging.handlers
import os
import re
import sys

from pathlib import Path
from typing import Any

from pythonjsonlogger import json as jsonlogger

from api.middleware.request_context import get_request_context
from core.constants import (
    LOG_BACKUP_COUNT_ERRORS,
    LOG_BACKUP_COUNT_EVENTS,
    LOG_MAX_SIZE,
    LOG_PREVIEW_LENGTH,
    PROJECT_ROOT,
    get_settings,
)

DEFAULT_LOGGER_NAME = "sandbox-ide"

# Applied to code previews before they reach a log sink
_SECRET_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"), "[EMAIL]"),
    (re.compile(r"\b(sk-|pk-|api[-_]?key[-_]?)[A-Za-z0-9]{20,}\b"), "[API_KEY]"),
    (re.compile(r"\b(password|passwd|secret|token)\s*[:=]\s*\S+"), "[REDACTED]"),
]


class _MinimumLevelFilter(logging.Filter):
    threshold = logging.NOTSET

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno >= self.threshold


class EventFilter(_MinimumLevelFilter):
    """Everything from INFO up goes to the event log."""

    threshold = logging.INFO


class ErrorFilter(_MinimumLevelFilter):
    threshold = logging.ERROR


class ColoredConsoleFormatter(logging.Formatter):
    """Terminal output: ``HH:MM:SS [LEVEL] name - message``.

    uvicorn access records are rebuilt so the method is bold and the status
    code is colored by class (2xx/3xx green, 4xx yellow, 5xx red).
    """

    RESET = "\x1b[0m"
    BOLD = "\x1b[1m"
    GREY = "\x1b[38;20m"
    GREEN = "\x1b[32;20m"
    YELLOW = "\x1b[33;20m"
    RED = "\x1b[31;20m"
    BOLD_RED = "\x1b[31;1m"

    LEVEL_COLORS = {
        logging.DEBUG: GREY,
        logging.INFO: GREEN,
        logging.WARNING: YELLOW,
        logging.ERROR: RED,
        logging.CRITICAL: BOLD_RED,
    }

    def _paint(self, color: str, text: str) -> str:
        return f"{color}{text}{self.RESET}"

    def _status_color(self, status: int) -> str:
        if status >= 500:
            return self.RED
        if status >= 400:
            return self.YELLOW
        return self.GREEN

    def _access_line(self, args: tuple[Any, ...]) -> str:
        client, method, path, http_version, status = args
        status_text = self._paint(self._status_color(int(status)), str(status))
        return f'{client} - "{self._paint(self.BOLD, str(method))} {path} HTTP/{http_version}" {status_text}'

    def format(self, record: logging.LogRecord) -> str:
        record.asctime = self.formatTime(record, "%H:%M:%S")
        level = f"[{record.levelname}]"
        if record.levelno in self.LEVEL_COLORS:
            level = self._paint(self.LEVEL_COLORS[record.levelno], level)

        args = record.args
        if record.name == "uvicorn.access" and isinstance(args, tuple) and len(args) == 5:
            body = self._access_line(args)
        else:
            body = record.getMessage()
            if record.exc_info:
                body += "\n" + self.formatException(record.exc_info)

        return f"{record.asctime} {level} {record.name} - {body}"


def configure_uvicorn_logging() -> None:
    """Route uvicorn's own loggers through ColoredConsoleFormatter."""
    logging.getLogger("uvicorn").handlers = []
    logging.getLogger("uvicorn").setLevel(logging.INFO)

    formatter = ColoredConsoleFormatter()
    for name in ("uvicorn.access", "uvicorn.error"):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(formatter)

        uv_logger = logging.getLogger(name)
        uv_logger.handlers = [handler]
        uv_logger.setLevel(logging.INFO)
        uv_logger.propagate = False


def _debug_from_env() -> bool:
    return os.getenv("DEBUG", "false").lower() in ("true", "1", "yes")


def _json_file_handler(
    path: Path,
    level: int,
    backup_count: int,
    fields: str,
    level_filter: logging.Filter,
) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        path,
        maxBytes=LOG_MAX_SIZE,
        backupCount=backup_count,
        encoding="utf-8",
    )
    handler.setLevel(level)
    handler.addFilter(level_filter)
    handler.setFormatter(jsonlogger.JsonFormatter(fields, timestamp=True))
    return handler


def setup_logging(name: str = DEFAULT_LOGGER_NAME, debug: bool | None = None) -> logging.Logger:
    """
    Build (or rebuild) the named logger with its console and JSON sinks.

    Args:
        name: Logger name
        debug: Show DEBUG records on the console; defaults to the DEBUG env var

    Returns:
        The configured logger
    """
    if debug is None:
        debug = _debug_from_env()

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(logging.DEBUG if debug else logging.INFO)
    console.setFormatter(ColoredConsoleFormatter())

    log_dir = PROJECT_ROOT / "logs"
    log_dir.mkdir(exist_ok=True)

    app_logger = logging.getLogger(name)
    # Handlers do the level filtering
    app_logger.setLevel(logging.DEBUG)
    app_logger.handlers = [
        console,
        _json_file_handler(
            log_dir / "events.jsonl",
            logging.INFO,
            LOG_BACKUP_COUNT_EVENTS,
            "%(timestamp)s %(levelname)s %(message)s %(session_id)s %(request_id)s",
            EventFilter(),
        ),
        _json_file_handler(
            log_dir / "errors.jsonl",
            logging.ERROR,
            LOG_BACKUP_COUNT_ERRORS,
            "%(timestamp)s %(levelname)s %(name)s %(message)s",
            ErrorFilter(),
        ),
    ]
    return app_logger


class AppLogger:
    """Thin wrapper that merges request context into every record's extra."""

    def __init__(self, name: str = DEFAULT_LOGGER_NAME):
        self.logger = setup_logging(name)

    def _enrich_context(self, kwargs: dict[str, Any]) -> dict[str, Any]:
        ctx = get_request_context()
        if ctx is None:
            return kwargs
        # A session id passed by the caller beats the one parsed from the URL
        explicit_session = kwargs.get("session_id")
        kwargs.update(ctx.to_log_context())
        if explicit_session:
            kwargs["session_id"] = explicit_session
        return kwargs

    def debug(self, message: str, **kwargs: Any) -> None:
        self.logger.debug(message, extra=self._enrich_context(kwargs))

    def info(self, message: str, **kwargs: Any) -> None:
        self.logger.info(message, extra=self._enrich_context(kwargs))

    def warning(self, message: str, **kwargs: Any) -> None:
        self.logger.warning(message, extra=self._enrich_context(kwargs))

    def error(self, message: str, exc_info: bool = False, **kwargs: Any) -> None:
        self.logger.error(message, exc_info=exc_info, extra=self._enrich_context(kwargs))

    def _should_log_content(self) -> bool:
        return bool(get_settings().enable_content_logging)

    def _redact_content(self, text: str) -> str:
        """Mask emails, API keys and password-like assignments."""
        for pattern, replacement in _SECRET_PATTERNS:
            text = pattern.sub(replacement, text)
        return text

    def _source_label(self, code: str | None, filepath: str | None, show_content: bool) -> str:
        if filepath:
            return filepath
        if code is None or not show_content:
            return "[HIDDEN]"
        preview = self._redact_content(code[:LOG_PREVIEW_LENGTH].replace("\n", " "))
        return preview + "..." if len(code) > LOG_PREVIEW_LENGTH else preview

    def log_execution(
        self,
        session_id: str,
        language: str,
        exit_code: int | None,
        timed_out: bool,
        duration_ms: float,
        code: str | None = None,
        filepath: str | None = None,
    ) -> None:
        """
        Record one finished execution.

        Inline code shows up only as "[HIDDEN]" unless content logging is on,
        in which case a short redacted preview is used. Timeouts log at WARNING.
        """
        show_content = self._should_log_content()
        source = self._source_label(code, filepath, show_content)
        outcome = "timeout" if timed_out else f"exit={exit_code}"

        extra: dict[str, Any] = {
            "execution": True,
            "session_id": session_id,
            "language": language,
            "exit_code": exit_code,
            "timed_out": timed_out,
            "ms": int(duration_ms),
            "content_logging": show_content,
        }
        if code is not None:
            extra["chars_code"] = len(code)

        emit = self.logger.warning if timed_out else self.logger.info
        emit(
            f"Execution {language}: {source} [{outcome}] [{duration_ms:.0f}ms]",
            extra=self._enrich_context(extra),
        )


logger = AppLogger()

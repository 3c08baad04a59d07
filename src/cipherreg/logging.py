"""
Structured logging for cipherreg

Every registry mutation runs inside a log context naming the caller, the
operation and the registry, so a single rejected call can be traced from
its log line alone. Output is either a compact console line or one JSON
object per line.

Configuration comes from configure_logging() or, lazily, from:
    CIPHERREG_LOG_LEVEL   DEBUG, INFO, WARNING, ERROR (default INFO)
    CIPHERREG_LOG_FORMAT  console, json or pretty (default console)
    CIPHERREG_LOG_FILE    also append JSON lines to this file
"""

import json
import logging
import os
import sys
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Union

LOGGER_NAME = "cipherreg"

LOG_LEVEL_ENV = "CIPHERREG_LOG_LEVEL"
LOG_FORMAT_ENV = "CIPHERREG_LOG_FORMAT"
LOG_FILE_ENV = "CIPHERREG_LOG_FILE"


class LogFormat(Enum):
    CONSOLE = "console"
    JSON = "json"
    PRETTY_JSON = "pretty"


class LogLevel(Enum):
    DEBUG = logging.DEBUG
    INFO = logging.INFO
    WARNING = logging.WARNING
    ERROR = logging.ERROR
    CRITICAL = logging.CRITICAL


@dataclass(frozen=True)
class LogContext:
    """
    Fields attached to every record emitted while the context is active.

    identity is the acting caller, handle a shortened ciphertext handle.
    """
    identity: Optional[str] = None
    operation: Optional[str] = None
    handle: Optional[str] = None
    registry_id: Optional[str] = None
    trace_id: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        named = {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if f.name != "extra" and getattr(self, f.name)
        }
        named.update(self.extra)
        return named

    def merge(self, other: "LogContext") -> "LogContext":
        """Layer other on top of self; unset fields in other keep ours."""
        overrides = {
            f.name: getattr(other, f.name)
            for f in fields(other)
            if f.name != "extra" and getattr(other, f.name)
        }
        return replace(self, extra={**self.extra, **other.extra}, **overrides)


_local = threading.local()


def get_current_log_context() -> LogContext:
    return getattr(_local, "context", None) or LogContext()


def set_current_log_context(context: LogContext) -> None:
    _local.context = context


@contextmanager
def log_context(**kwargs):
    """
    Push context fields for the duration of a block.

    Usage:
        with log_context(identity=caller, operation="clear"):
            logger.info("Record cleared")
    """
    outer = get_current_log_context()
    inner = outer.merge(LogContext(**kwargs))
    set_current_log_context(inner)
    try:
        yield inner
    finally:
        set_current_log_context(outer)


class StructuredFormatter(logging.Formatter):
    """One JSON object per record: time, level, message, context, fields."""

    def __init__(self, pretty: bool = False):
        super().__init__()
        self.indent = 2 if pretty else None

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        context = get_current_log_context().to_dict()
        if context:
            entry["context"] = context
        entry.update(getattr(record, "extra_fields", {}))
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        separators = None if self.indent else (",", ":")
        return json.dumps(entry, indent=self.indent, separators=separators, default=str)


class ConsoleFormatter(logging.Formatter):
    """
    Single-line output for terminals:

        12:01:07 WARNING  clear rejected: ... [clear 0xadad..]
    """

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors and sys.stderr.isatty()

    def _level(self, name: str) -> str:
        padded = f"{name:8}"
        if self.use_colors and name in self.COLORS:
            return f"{self.COLORS[name]}{padded}{self.RESET}"
        return padded

    def format(self, record: logging.LogRecord) -> str:
        context = get_current_log_context()
        tags = [
            value[:10] if key != "operation" else value
            for key, value in (
                ("operation", context.operation),
                ("identity", context.identity),
                ("handle", context.handle),
            )
            if value
        ]
        suffix = f" [{' '.join(tags)}]" if tags else ""

        line = f"{datetime.now():%H:%M:%S} {self._level(record.levelname)} {record.getMessage()}{suffix}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def _make_formatter(format: LogFormat) -> logging.Formatter:
    if format is LogFormat.JSON:
        return StructuredFormatter()
    if format is LogFormat.PRETTY_JSON:
        return StructuredFormatter(pretty=True)
    return ConsoleFormatter()


class RegistryLogger:
    """
    Thin wrapper over a stdlib logger.

    Keyword arguments to the level methods become structured fields:

        logger.info("Attribute disclosed", target=identity)
    """

    def __init__(self, name: str = LOGGER_NAME):
        self._logger = logging.getLogger(name)
        self._configured = False

    def configure(
        self,
        level: Union[str, LogLevel] = LogLevel.INFO,
        format: Union[str, LogFormat] = LogFormat.CONSOLE,
        log_file: Optional[Path] = None,
        propagate: bool = False,
    ) -> None:
        """
        Replace the handlers of the cipherreg logger.

        Args:
            level: Minimum level, as LogLevel or its name
            format: Stderr format, as LogFormat or its value
            log_file: Optional file receiving JSON lines
            propagate: Pass records on to the root logger as well
        """
        level = LogLevel[level.upper()] if isinstance(level, str) else level
        format = LogFormat(format.lower()) if isinstance(format, str) else format

        self._logger.setLevel(level.value)
        self._logger.propagate = propagate
        for handler in list(self._logger.handlers):
            self._logger.removeHandler(handler)
            handler.close()

        stderr = logging.StreamHandler(sys.stderr)
        stderr.setFormatter(_make_formatter(format))
        self._logger.addHandler(stderr)

        if log_file:
            to_file = logging.FileHandler(log_file)
            to_file.setFormatter(StructuredFormatter())
            self._logger.addHandler(to_file)

        self._configured = True

    def _configure_from_env(self) -> None:
        log_file = os.environ.get(LOG_FILE_ENV)
        self.configure(
            level=os.environ.get(LOG_LEVEL_ENV, "INFO"),
            format=os.environ.get(LOG_FORMAT_ENV, "console"),
            log_file=Path(log_file) if log_file else None,
        )

    def _log(self, level: int, msg: str, *args, exc_info: bool = False, **kwargs) -> None:
        if not self._configured:
            self._configure_from_env()
        extra = {"extra_fields": kwargs} if kwargs else None
        self._logger.log(level, msg, *args, exc_info=exc_info, extra=extra)

    def debug(self, msg: str, *args, **kwargs) -> None:
        self._log(logging.DEBUG, msg, *args, **kwargs)

    def info(self, msg: str, *args, **kwargs) -> None:
        self._log(logging.INFO, msg, *args, **kwargs)

    def warning(self, msg: str, *args, **kwargs) -> None:
        self._log(logging.WARNING, msg, *args, **kwargs)

    def error(self, msg: str, *args, exc_info: bool = False, **kwargs) -> None:
        self._log(logging.ERROR, msg, *args, exc_info=exc_info, **kwargs)

    @contextmanager
    def timed(self, operation: str, level: int = logging.DEBUG):
        """
        Log the start and duration of a block.

        Usage:
            with logger.timed("user_decrypt"):
                reply = backend.user_decrypt(credential)
        """
        self._log(level, f"Starting: {operation}")
        started = time.perf_counter()
        try:
            yield
        finally:
            duration_ms = round((time.perf_counter() - started) * 1000, 2)
            self._log(level, f"Completed: {operation}", duration_ms=duration_ms)


_logger: Optional[RegistryLogger] = None


def get_logger(name: str = LOGGER_NAME) -> RegistryLogger:
    """Shared cipherreg logger."""
    global _logger
    if _logger is None:
        _logger = RegistryLogger(name)
    return _logger


def configure_logging(
    level: Union[str, LogLevel] = LogLevel.INFO,
    format: Union[str, LogFormat] = LogFormat.CONSOLE,
    log_file: Optional[Path] = None,
) -> RegistryLogger:
    """
    Configure the shared logger explicitly.

    Example:
        configure_logging(level="DEBUG", format="json")
    """
    logger = get_logger()
    logger.configure(level=level, format=format, log_file=log_file)
    return logger


__all__ = [
    "LogFormat",
    "LogLevel",
    "LogContext",
    "RegistryLogger",
    "StructuredFormatter",
    "ConsoleFormatter",
    "get_logger",
    "configure_logging",
    "log_context",
    "get_current_log_context",
    "set_current_log_context",
]

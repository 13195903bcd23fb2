"""
Structured Logging Configuration

Provides consistent logging across the orchestrator with support for:
- Console output (development)
- JSON format (production)
- File output (optional)
- Request correlation IDs and the cache key being served
"""

import logging
import sys
import json
import uuid
from datetime import datetime, timezone
from typing import Optional, Any
from contextvars import ContextVar


correlation_id: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)
current_cache_key: ContextVar[Optional[str]] = ContextVar("current_cache_key", default=None)

_RESERVED_ATTRS = frozenset((
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "pathname", "process", "processName", "relativeCreated",
    "stack_info", "exc_info", "exc_text", "thread", "threadName",
    "taskName", "message",
))

# Loggers of libraries we call on every request
_NOISY_LOGGERS = ("httpx", "httpcore", "anthropic", "redis", "aiosqlite", "asyncio")


def _short_key(key: Optional[str]) -> Optional[str]:
    # ai:<kind>:<sha256> is long; the tail is enough to correlate lines
    if not key:
        return None
    return key if len(key) <= 24 else f"{key[:12]}..{key[-8:]}"


class JsonFormatter(logging.Formatter):
    """One JSON object per line, for log shippers"""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        corr_id = correlation_id.get()
        if corr_id:
            log_data["correlation_id"] = corr_id

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS:
                continue
            try:
                json.dumps(value)
                log_data[key] = value
            except (TypeError, ValueError):
                log_data[key] = str(value)

        return json.dumps(log_data)


class ColoredFormatter(logging.Formatter):
    """Colored formatter for development console output"""

    COLORS = {
        "DEBUG": "\033[36m",     # Cyan
        "INFO": "\033[32m",      # Green
        "WARNING": "\033[33m",   # Yellow
        "ERROR": "\033[31m",     # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        # Work on a copy so file handlers still see the raw level name
        record = logging.makeLogRecord(record.__dict__)
        color = self.COLORS.get(record.levelname, "")
        record.levelname = f"{color}{record.levelname:8}{self.RESET}"

        prefix = ""
        corr_id = correlation_id.get()
        if corr_id:
            prefix += f"[{corr_id[:8]}] "
        key = _short_key(current_cache_key.get())
        if key:
            prefix += f"<{key}> "
        if prefix:
            record.msg = f"{prefix}{record.msg}"

        return super().format(record)


class ContextualAdapter(logging.LoggerAdapter):
    """Logger adapter that adds correlation id and cache key to every record"""

    def process(self, msg: str, kwargs: dict) -> tuple[str, dict]:
        extra = dict(kwargs.get("extra") or {})

        corr_id = correlation_id.get()
        if corr_id:
            extra.setdefault("correlation_id", corr_id)

        key = current_cache_key.get()
        if key:
            extra.setdefault("cache_key", key)

        kwargs["extra"] = extra
        return msg, kwargs


_logging_initialized = False


def setup_logging(
    level: str = "INFO",
    json_format: bool = False,
    log_file: Optional[str] = None,
    force: bool = False
) -> None:
    """
    Configure application logging.

    Should be called once at process startup (the CLI does this).

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON format (for production)
        log_file: Optional file path for logging, always JSON
        force: Force reconfiguration even if already initialized
    """
    global _logging_initialized

    if _logging_initialized and not force:
        return

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(logging.DEBUG)

    if json_format:
        console_handler.setFormatter(JsonFormatter())
    else:
        console_handler.setFormatter(ColoredFormatter(
            "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
            datefmt="%H:%M:%S"
        ))

    root_logger.addHandler(console_handler)

    if log_file:
        try:
            file_handler = logging.FileHandler(log_file, encoding="utf-8")
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(JsonFormatter())
            root_logger.addHandler(file_handler)
        except OSError as e:
            root_logger.warning(f"Could not create log file {log_file}: {e}")

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    _logging_initialized = True

    root_logger.debug(f"Logging initialized: level={level}, json={json_format}")


def get_logger(name: str) -> ContextualAdapter:
    """
    Get a contextual logger for a module.

    Usage:
        logger = get_logger(__name__)
        logger.info("Cache hit", extra={"kind": "realtime"})
    """
    return ContextualAdapter(logging.getLogger(name), {})


def set_correlation_id(corr_id: str) -> None:
    """Set the correlation ID for the current context"""
    correlation_id.set(corr_id)


def get_correlation_id() -> Optional[str]:
    """Get the current correlation ID"""
    return correlation_id.get()


def generate_correlation_id() -> str:
    """Generate and install a new correlation ID"""
    corr_id = str(uuid.uuid4())
    set_correlation_id(corr_id)
    return corr_id


class LogContext:
    """
    Context manager that scopes a correlation id and/or cache key.

    Usage:
        with LogContext(cache_key=key):
            logger.info("Calling provider")
    """

    def __init__(self, **kwargs: Any):
        self.extra = kwargs
        self._tokens: list[tuple[ContextVar, Any]] = []

    def __enter__(self) -> "LogContext":
        if "correlation_id" in self.extra:
            self._tokens.append((correlation_id, correlation_id.set(self.extra["correlation_id"])))
        if "cache_key" in self.extra:
            self._tokens.append((current_cache_key, current_cache_key.set(self.extra["cache_key"])))
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        while self._tokens:
            var, token = self._tokens.pop()
            var.reset(token)

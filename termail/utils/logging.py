"""Logging for termail

Console output goes through rich at WARNING and above so it does not fight
the TUI. Everything else lands in rotating JSON files under the logs
directory: ``app.log`` for all records and ``events.log`` for records tagged
with an ``event_type`` (label refreshes, remote confirmations). Bearer
tokens, credential fields, raw message payloads and addresses are masked
before any handler sees them.
"""

import inspect
import json
import logging
import re
import time
from datetime import datetime, timezone
from functools import wraps
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from rich.logging import RichHandler

from .paths import LOGS_DIR

ROOT_LOGGER = "termail"


## Formatting


class JSONFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "function": record.funcName,
            "line": record.lineno,
            "message": record.getMessage(),
        }
        for attr in ("event_type", "context"):
            if hasattr(record, attr):
                entry[attr] = getattr(record, attr)
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


## Masking


def _redact(value: str) -> str:
    return "[REDACTED]"


def _partial(value: str) -> str:
    if len(value) <= 6:
        return "[REDACTED]"
    return value[:3] + "*" * (len(value) - 6) + value[-3:]


class SensitiveDataMasker:
    """Masks credentials, raw payloads and addresses in log text."""

    CREDENTIAL_FIELDS = (
        "access_token",
        "refresh_token",
        "client_secret",
        "authorization",
        "password",
        "secret",
        "token",
    )

    BEARER = re.compile(r"(bearer\s+)([A-Za-z0-9\-._~+/]+=*)", re.IGNORECASE)
    FIELD = re.compile(
        r'((?:%s)["\']?\s*[:=]\s*["\']?)([^"\'}\s,]+)' % "|".join(CREDENTIAL_FIELDS),
        re.IGNORECASE,
    )
    # base64url bodies handed to the send endpoint
    RAW_PAYLOAD = re.compile(r'("raw"\s*:\s*")([A-Za-z0-9\-_=]{16,})(")')
    ADDRESS = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")

    STRATEGIES: Dict[str, Callable[[str], str]] = {
        "full": _redact,
        "partial": _partial,
    }

    def __init__(self, strategy: str = "full"):
        self.strategy = strategy
        self.mask_func = self.STRATEGIES[strategy]

    def mask_string(self, text: str) -> str:
        if not text or not isinstance(text, str):
            return text

        masked = self.BEARER.sub(lambda m: m.group(1) + self.mask_func(m.group(2)), text)
        masked = self.FIELD.sub(lambda m: m.group(1) + self.mask_func(m.group(2)), masked)
        masked = self.RAW_PAYLOAD.sub(lambda m: m.group(1) + "[PAYLOAD]" + m.group(3), masked)
        return self.ADDRESS.sub(lambda m: self._mask_address(m.group(0)), masked)

    def mask_dict(self, data: Dict[str, Any]) -> Dict[str, Any]:
        masked = {}
        for key, value in data.items():
            if str(key).lower() in self.CREDENTIAL_FIELDS:
                masked[key] = self.mask_func(str(value))
            elif isinstance(value, dict):
                masked[key] = self.mask_dict(value)
            elif isinstance(value, str):
                masked[key] = self.mask_string(value)
            else:
                masked[key] = value
        return masked

    @staticmethod
    def _mask_address(address: str) -> str:
        """alice@example.com -> a***@e***"""
        local, _, domain = address.partition("@")
        return f"{local[0] if len(local) > 1 else ''}***@{domain[0]}***"


class SensitiveDataFilter(logging.Filter):
    """Applies :class:`SensitiveDataMasker` to the message and its context."""

    def __init__(self, strategy: str = "full"):
        super().__init__()
        self.masker = SensitiveDataMasker(strategy)

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = self.masker.mask_string(record.msg)

        context = getattr(record, "context", None)
        if isinstance(context, dict):
            record.context = self.masker.mask_dict(context)

        return True


## Log manager


def _parse_level(level: str) -> int:
    value = logging.getLevelName(level.upper())
    if not isinstance(value, int):
        raise ValueError(f"Invalid logging level: {level}")
    return value


class LogManager:
    """Owns the handlers of the ``termail`` logger tree."""

    APP_LOG = ("app.log", 5 * 1024 * 1024, 5)
    EVENT_LOG = ("events.log", 2 * 1024 * 1024, 3)

    def __init__(self, log_level: str = "INFO", log_dir: Optional[Path] = None):
        self.log_level = _parse_level(log_level)
        self.log_dir = log_dir or LOGS_DIR
        self.root_logger = logging.getLogger(ROOT_LOGGER)
        self.root_logger.setLevel(logging.DEBUG)
        self._masking = SensitiveDataFilter()
        self._app_handler: Optional[RotatingFileHandler] = None

        self.root_logger.handlers.clear()
        self.root_logger.addHandler(self._console_handler())
        self._attach_file_handlers()

    def _console_handler(self) -> RichHandler:
        handler = RichHandler(
            show_time=True,
            show_path=False,
            markup=False,
            rich_tracebacks=True,
        )
        handler.setLevel(logging.WARNING)
        handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))
        handler.addFilter(self._masking)
        return handler

    def _file_handler(
        self, rotation: tuple[str, int, int], level: int
    ) -> RotatingFileHandler:
        filename, max_bytes, backups = rotation
        handler = RotatingFileHandler(
            self.log_dir / filename,
            maxBytes=max_bytes,
            backupCount=backups,
            encoding="utf-8",
        )
        handler.setLevel(level)
        handler.setFormatter(JSONFormatter())
        handler.addFilter(self._masking)
        return handler

    def _attach_file_handlers(self) -> None:
        try:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            app_handler = self._file_handler(self.APP_LOG, self.log_level)
            event_handler = self._file_handler(self.EVENT_LOG, logging.INFO)
        except OSError as e:
            self.root_logger.warning(
                f"File logging disabled, cannot write to {self.log_dir}: {e}"
            )
            return

        event_handler.addFilter(lambda record: hasattr(record, "event_type"))
        self.root_logger.addHandler(app_handler)
        self.root_logger.addHandler(event_handler)
        self._app_handler = app_handler

    def get_logger(self, name: Optional[str] = None) -> logging.Logger:
        """Logger under the ``termail`` namespace."""
        if name and name != ROOT_LOGGER and not name.startswith(ROOT_LOGGER + "."):
            name = f"{ROOT_LOGGER}.{name}"
        return logging.getLogger(name or ROOT_LOGGER)

    def set_level(self, level: str) -> None:
        """Change the level written to ``app.log``."""
        self.log_level = _parse_level(level)
        if self._app_handler is not None:
            self._app_handler.setLevel(self.log_level)

    def log_event(self, event_type: str, message: str, level: str = "INFO", **context):
        self.root_logger.log(
            _parse_level(level),
            message,
            extra={"event_type": event_type, "context": context},
        )


## Decorators


def log_call(func):
    """Log entry, exit and duration of a function or coroutine at DEBUG."""
    logger = logging.getLogger(ROOT_LOGGER)
    name = f"{func.__module__}.{func.__qualname__}"

    def _done(started: float, error: Optional[BaseException] = None) -> None:
        elapsed = time.perf_counter() - started
        if error is None:
            logger.debug(f"<- {name} ({elapsed:.3f}s)")
        else:
            logger.debug(f"<- {name} raised after {elapsed:.3f}s: {error}")

    if inspect.iscoroutinefunction(func):

        @wraps(func)
        async def async_wrapper(*args, **kwargs):
            logger.debug(f"-> {name} (async)")
            started = time.perf_counter()
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                _done(started, e)
                raise
            _done(started)
            return result

        return async_wrapper

    @wraps(func)
    def wrapper(*args, **kwargs):
        logger.debug(f"-> {name}")
        started = time.perf_counter()
        try:
            result = func(*args, **kwargs)
        except Exception as e:
            _done(started, e)
            raise
        _done(started)
        return result

    return wrapper


## Module-level helpers

_log_manager: Optional[LogManager] = None


def init_logging(log_level: str = "INFO", log_dir: Optional[Path] = None) -> LogManager:
    """Create the shared LogManager, or update its level if it exists."""
    global _log_manager

    if _log_manager is None:
        _log_manager = LogManager(log_level, log_dir=log_dir)
    else:
        _log_manager.set_level(log_level)

    return _log_manager


def get_logger(name: Optional[str] = None) -> logging.Logger:
    if _log_manager is None:
        init_logging()
    return _log_manager.get_logger(name)


def log_event(event_type: str, message: str, **context) -> None:
    """Write a typed event to ``events.log`` and ``app.log``."""
    if _log_manager is None:
        init_logging()
    _log_manager.log_event(event_type, message, **context)

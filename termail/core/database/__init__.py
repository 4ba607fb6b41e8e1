"""Database access layer - public API."""

from .base import UTCDateTime, metadata
from .batch_result import BatchResult
from .config import DatabaseConfig, get_config, reset_config
from .engine_manager import EngineManager
from .store import MailStore
from .transaction import TransactionManager

__all__ = [
    "BatchResult",
    "DatabaseConfig",
    "EngineManager",
    "MailStore",
    "TransactionManager",
    "UTCDateTime",
    "get_config",
    "metadata",
    "reset_config",
]

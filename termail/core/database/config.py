"""Cache database tuning, read from ``TERMAIL_DB_*`` environment variables."""

import os
from dataclasses import dataclass, field
from typing import Callable, Optional, TypeVar

ENV_PREFIX = "TERMAIL_DB_"

T = TypeVar("T")


def _env_bool(raw: str) -> bool:
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _from_env(name: str, default: T, cast: Callable[[str], T]) -> Callable[[], T]:
    """Field factory reading ``TERMAIL_DB_<name>`` at construction time."""

    def factory() -> T:
        raw = os.getenv(ENV_PREFIX + name)
        return default if raw is None else cast(raw)

    return factory


@dataclass
class DatabaseConfig:
    """Engine and write-path settings for the local message cache."""

    pool_size: int = field(default_factory=_from_env("POOL_SIZE", 5, int))
    max_overflow: int = field(default_factory=_from_env("MAX_OVERFLOW", 10, int))

    # Seconds SQLite waits on a locked database before failing
    busy_timeout: float = field(default_factory=_from_env("BUSY_TIMEOUT", 30.0, float))
    transaction_timeout: float = field(
        default_factory=_from_env("TRANSACTION_TIMEOUT", 60.0, float)
    )

    # Messages written between cancellation checks in a bulk upsert
    upsert_batch_size: int = field(
        default_factory=_from_env("UPSERT_BATCH_SIZE", 100, int)
    )

    echo_sql: bool = field(default_factory=_from_env("ECHO", False, _env_bool))
    slow_write_threshold: float = field(
        default_factory=_from_env("SLOW_WRITE_THRESHOLD", 1.0, float)
    )

    def __post_init__(self):
        checks = {
            "pool_size": self.pool_size >= 1,
            "max_overflow": self.max_overflow >= 0,
            "busy_timeout": self.busy_timeout > 0,
            "transaction_timeout": self.transaction_timeout > 0,
            "upsert_batch_size": self.upsert_batch_size >= 1,
        }
        invalid = [name for name, ok in checks.items() if not ok]
        if invalid:
            raise ValueError(f"Invalid cache database settings: {', '.join(invalid)}")


_config: Optional[DatabaseConfig] = None


def get_config() -> DatabaseConfig:
    """Return the process-wide settings, built from the environment on first use."""
    global _config
    if _config is None:
        _config = DatabaseConfig()
    return _config


def reset_config() -> None:
    """Forget the cached settings so the environment is read again."""
    global _config
    _config = None

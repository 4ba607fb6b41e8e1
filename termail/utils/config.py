"""Persistent settings, stored as JSON next to the cache.

The file is created with defaults on first run. Unknown sections are
rejected on ``set_config`` but tolerated in the file itself, so a config
written by a newer version still loads.
"""

import logging
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from .errors import ConfigurationError, InvalidConfigError, MissingConfigError
from .logging import get_logger, log_call
from .paths import CONFIG_PATH, DATABASE_PATH

logger = get_logger(__name__)


class SyncConfig(BaseModel):
    """Cache freshness, polling and retention."""

    stale_after_seconds: int = 300
    poll_interval_seconds: int = 15
    fetch_timeout_seconds: float = 30.0
    # Screens of messages fetched on first open of a label
    initial_batch_screens: int = 2
    retention_days: int = 30
    cleanup_interval_hours: int = 24
    # Refreshed first by sync_all; the rest follow in name order
    priority_labels: list[str] = Field(
        default_factory=lambda: ["INBOX", "IMPORTANT", "SENT", "DRAFT"]
    )


class AccountConfig(BaseModel):
    api_base_url: str = "https://gmail.googleapis.com/gmail/v1/users/me"
    keyring_service: str = "termail-gmail-credentials"
    keyring_username: str = "default"
    network_timeout: int = 30


class LoggingConfig(BaseModel):
    log_level: str = "INFO"

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        value = value.upper()
        if not isinstance(logging.getLevelName(value), int):
            raise ValueError(f"unknown log level {value!r}")
        return value


class DatabaseConfig(BaseModel):
    database_path: str = str(DATABASE_PATH)


class AppConfig(BaseModel):
    account: AccountConfig = Field(default_factory=AccountConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)


class ConfigManager:
    """Process-wide owner of the loaded :class:`AppConfig`.

    The first instantiation loads (or creates) the file; later ones return
    the same object regardless of ``config_path``. ``reset`` forgets it.
    """

    _instance = None
    _initialized = False

    def __new__(cls, *args, **kwargs):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self, config_path: Optional[Path] = None):
        if ConfigManager._initialized:
            return

        self.path = Path(config_path or CONFIG_PATH)
        self.config = self._load()
        ConfigManager._initialized = True
        logger.info(f"Configuration loaded from {self.path}")

    @classmethod
    def reset(cls) -> None:
        cls._instance = None
        cls._initialized = False

    def _load(self) -> AppConfig:
        if not self.path.exists():
            logger.info(f"No config file at {self.path}, writing defaults")
            config = AppConfig()
            self._save(config)
            return config

        try:
            raw = self.path.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigurationError(
                f"Failed to read configuration file {self.path}: {e}"
            ) from e

        try:
            return AppConfig.model_validate_json(raw)
        except ValidationError as e:
            logger.error(f"Rejected config file {self.path}: {e}")
            raise InvalidConfigError(
                f"Configuration file {self.path} is invalid: {e}",
                details={"path": str(self.path)},
            ) from e

    def _save(self, config: Optional[AppConfig] = None) -> None:
        config = config or self.config
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(config.model_dump_json(indent=2), encoding="utf-8")
        except OSError as e:
            raise ConfigurationError(
                f"Failed to write configuration file {self.path}: {e}"
            ) from e

    def _section(self, key_path: str) -> tuple[BaseModel, str]:
        """Resolve ``"sync.retention_days"`` to (SyncConfig instance, field name)."""
        *parents, field = key_path.split(".")
        section: BaseModel = self.config

        for name in parents:
            child = getattr(section, name, None)
            if not isinstance(child, BaseModel):
                raise MissingConfigError(
                    f"Configuration path '{key_path}' is invalid: '{name}' not found"
                )
            section = child

        if field not in type(section).model_fields:
            raise MissingConfigError(
                f"Configuration key '{field}' does not exist in path '{key_path}'"
            )
        return section, field

    @log_call
    def set_config(self, key_path: str, value: Any, persist: bool = True) -> None:
        """Set a dotted key, validating the value against its field.

        Raises:
            MissingConfigError: If the path does not name a setting
            InvalidConfigError: If the value does not validate
        """
        section, field = self._section(key_path)

        try:
            candidate = section.model_validate({**section.model_dump(), field: value})
        except ValidationError as e:
            raise InvalidConfigError(
                f"Invalid value for configuration key '{key_path}': {e}"
            ) from e

        setattr(section, field, getattr(candidate, field))
        if persist:
            self._save()
        logger.info(f"Config key '{key_path}' set to {getattr(section, field)!r}")

    @log_call
    def reset_to_defaults(self) -> None:
        logger.warning("Resetting configuration to default values")
        self.config = AppConfig()
        self._save()


def get_config() -> AppConfig:
    """Return the loaded application configuration."""
    return ConfigManager().config

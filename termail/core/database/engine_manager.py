"""Lifecycle of the aiosqlite engine backing the message cache."""

import asyncio
from pathlib import Path
from typing import Optional

from sqlalchemy import event, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import AsyncAdaptedQueuePool

from termail.core.database.config import DatabaseConfig, get_config
from termail.utils.errors import DatabaseConnectionError
from termail.utils.logging import get_logger

logger = get_logger(__name__)

# Applied to every new DB-API connection
CACHE_PRAGMAS = (
    "PRAGMA foreign_keys=ON",
    "PRAGMA journal_mode=WAL",
    "PRAGMA synchronous=NORMAL",
)


def _apply_pragmas(dbapi_conn, connection_record) -> None:
    cursor = dbapi_conn.cursor()
    try:
        for pragma in CACHE_PRAGMAS:
            cursor.execute(pragma)
    finally:
        cursor.close()


class EngineManager:
    """Lazily opens one pooled engine per cache file and disposes it on close.

    The engine is rebuilt on the next ``get_engine`` after ``close``, so a
    store can be shut down and reopened.
    """

    def __init__(
        self,
        db_path: Path,
        config: Optional[DatabaseConfig] = None,
        echo: Optional[bool] = None,
    ) -> None:
        self.db_path = Path(db_path)
        self.config = config or get_config()
        self.echo = self.config.echo_sql if echo is None else echo

        self._engine: Optional[AsyncEngine] = None
        self._lock = asyncio.Lock()

    def _build_engine(self) -> AsyncEngine:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        engine = create_async_engine(
            f"sqlite+aiosqlite:///{self.db_path}",
            echo=self.echo,
            poolclass=AsyncAdaptedQueuePool,
            pool_size=self.config.pool_size,
            max_overflow=self.config.max_overflow,
            pool_pre_ping=True,
            connect_args={
                "timeout": self.config.busy_timeout,
                "check_same_thread": False,
            },
        )
        event.listen(engine.sync_engine, "connect", _apply_pragmas)
        return engine

    async def get_engine(self) -> AsyncEngine:
        """Return the engine, creating it on first use.

        Raises:
            DatabaseConnectionError: If the cache directory or engine cannot be created
        """
        async with self._lock:
            if self._engine is None:
                try:
                    self._engine = self._build_engine()
                except (OSError, SQLAlchemyError) as e:
                    raise DatabaseConnectionError(
                        "Could not open the message cache",
                        details={"db_path": str(self.db_path), "error": str(e)},
                    ) from e
                logger.info(
                    f"Cache engine opened at {self.db_path} "
                    f"(pool_size={self.config.pool_size})"
                )

        return self._engine

    async def close(self) -> None:
        async with self._lock:
            engine, self._engine = self._engine, None
        if engine is None:
            return

        try:
            await engine.dispose()
        except SQLAlchemyError as e:
            logger.error(f"Error disposing cache engine: {e}")
        else:
            logger.info("Cache engine disposed")

    async def health_check(self) -> bool:
        """True when ``SELECT 1`` succeeds against the cache file."""
        try:
            async with (await self.get_engine()).connect() as conn:
                value = (await conn.execute(text("SELECT 1"))).scalar()
        except (DatabaseConnectionError, SQLAlchemyError, OSError) as e:
            logger.error(f"Cache health check failed: {e}")
            return False

        return value == 1

    async def __aenter__(self) -> "EngineManager":
        await self.get_engine()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        await self.close()
        return False

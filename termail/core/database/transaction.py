"""Single-connection write transaction for the cache."""

import time
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, AsyncTransaction

from termail.core.database.config import get_config
from termail.utils.errors import DatabaseTransactionError
from termail.utils.logging import get_logger

logger = get_logger(__name__)


class TransactionManager:
    """Commit on clean exit, roll back on error or when the deadline passed.

    Usage:
        async with TransactionManager(engine, operation="mark_deleted") as tx:
            await tx.connection.execute(query)
    """

    def __init__(
        self,
        engine: AsyncEngine,
        timeout: Optional[float] = None,
        operation: str = "transaction",
    ):
        config = get_config()
        self.engine = engine
        self.operation = operation
        self.timeout = timeout or config.transaction_timeout
        self.slow_threshold = config.slow_write_threshold

        self._connection: Optional[AsyncConnection] = None
        self._transaction: Optional[AsyncTransaction] = None
        self._started = 0.0

    @property
    def connection(self) -> AsyncConnection:
        if self._connection is None:
            raise RuntimeError("Connection only available within transaction context")
        return self._connection

    async def __aenter__(self) -> "TransactionManager":
        self._started = time.monotonic()
        try:
            self._connection = await self.engine.connect()
            self._transaction = await self._connection.begin()
        except (SQLAlchemyError, OSError) as e:
            await self._release()
            raise DatabaseTransactionError(
                f"Could not start {self.operation}",
                details={"operation": self.operation, "error": str(e)},
            ) from e
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        elapsed = time.monotonic() - self._started
        try:
            if exc_type is not None:
                await self._transaction.rollback()
                logger.warning(
                    f"{self.operation} rolled back after {elapsed:.2f}s: "
                    f"{exc_type.__name__}: {exc_val}"
                )
                return False

            if elapsed > self.timeout:
                await self._transaction.rollback()
                raise DatabaseTransactionError(
                    f"{self.operation} exceeded {self.timeout}s and was rolled back",
                    details={"operation": self.operation, "duration": elapsed},
                )

            await self._transaction.commit()
            if elapsed > self.slow_threshold:
                logger.warning(f"Slow cache write: {self.operation} took {elapsed:.2f}s")
            return False
        finally:
            await self._release()

    async def _release(self) -> None:
        if self._connection is not None:
            await self._connection.close()
            self._connection = None

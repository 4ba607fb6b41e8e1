"""MailStore: persistent cache of labels, messages and sync state."""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Set

from sqlalchemy import delete, func, select
from sqlalchemy.dialects.sqlite import insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection

from termail.core.database.base import metadata
from termail.core.database.batch_result import BatchResult
from termail.core.database.config import DatabaseConfig
from termail.core.database.engine_manager import EngineManager
from termail.core.database.models import labels, message_labels, messages, sync_state
from termail.core.database.transaction import TransactionManager
from termail.core.database.utils import (
    message_to_row,
    row_to_label,
    row_to_message,
    row_to_sync_state,
)
from termail.core.models.message import (
    CachedLabel,
    CachedMessage,
    SyncState,
    WellKnownLabel,
    is_allmail,
)
from termail.utils.errors import MessageNotFoundError, StorageError, TermailError
from termail.utils.logging import get_logger

logger = get_logger(__name__)

INBOX = WellKnownLabel.INBOX.value
TRASH = WellKnownLabel.TRASH.value


class MailStore:
    """Durable cache of the remote mailbox on an async SQLite engine.

    Every failure surfaces as :class:`StorageError`; no network calls are
    made from here.
    """

    def __init__(
        self,
        db_path: Path,
        config: Optional[DatabaseConfig] = None,
        engine_manager: Optional[EngineManager] = None,
    ):
        """Initialise the store.

        Args:
            db_path: Path to SQLite database file
            config: Engine tuning (uses the env-driven singleton if None)
            engine_manager: Shared engine manager, created from db_path if None
        """
        self.db_path = Path(db_path)
        self.engine_mgr = engine_manager or EngineManager(self.db_path, config=config)

    @asynccontextmanager
    async def _storage_errors(self, operation: str, **details):
        """Convert driver and filesystem failures into StorageError."""
        try:
            yield
        except TermailError:
            raise
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Store operation '{operation}' failed: {e}")
            raise StorageError(
                f"{operation} failed: {e}",
                details={"operation": operation, **details},
            ) from e

    @asynccontextmanager
    async def _write(self, operation: str, **details):
        """Yield a connection inside a named write transaction."""
        async with self._storage_errors(operation, **details):
            engine = await self.engine_mgr.get_engine()
            async with TransactionManager(engine, operation=operation) as tx:
                yield tx.connection

    ## Lifecycle

    async def initialise(self) -> None:
        """Create tables and indexes if they do not exist."""
        async with self._storage_errors("initialise", db_path=str(self.db_path)):
            engine = await self.engine_mgr.get_engine()
            async with engine.begin() as conn:
                await conn.run_sync(metadata.create_all)
        logger.info(f"Mail store ready at {self.db_path}")

    async def close(self) -> None:
        await self.engine_mgr.close()

    ## Labels

    async def upsert_label(self, label: CachedLabel) -> None:
        """Insert or rename a label; repeating the call is a no-op."""
        await self.upsert_labels([label])

    async def upsert_labels(self, items: Iterable[CachedLabel]) -> None:
        """Insert or rename several labels in one transaction."""
        items = [label for label in items if not is_allmail(label.id)]
        if not items:
            return

        async with self._write("upsert_labels", count=len(items)) as conn:
            for label in items:
                query = insert(labels).values(id=label.id, name=label.name)
                query = query.on_conflict_do_update(
                    index_elements=["id"],
                    set_={"name": label.name},
                )
                await conn.execute(query)

        logger.debug(f"Upserted {len(items)} labels")

    async def get_labels(self) -> List[CachedLabel]:
        """Return every cached label ordered by name."""
        async with self._storage_errors("get_labels"):
            engine = await self.engine_mgr.get_engine()
            async with engine.connect() as conn:
                result = await conn.execute(
                    select(labels).order_by(labels.c.name, labels.c.id)
                )
                return [row_to_label(row) for row in result.fetchall()]

    ## Messages

    async def _ensure_labels(
        self, conn: AsyncConnection, label_ids: Iterable[str]
    ) -> None:
        """Insert placeholder rows for label ids not yet known."""
        for label_id in label_ids:
            query = insert(labels).values(id=label_id, name=label_id)
            await conn.execute(query.on_conflict_do_nothing(index_elements=["id"]))

    async def _set_message_labels(
        self, conn: AsyncConnection, message_id: str, label_ids: Iterable[str]
    ) -> None:
        """Replace the label associations of a message."""
        label_ids = sorted({lid for lid in label_ids if not is_allmail(lid)})

        await conn.execute(
            delete(message_labels).where(message_labels.c.message_id == message_id)
        )
        if not label_ids:
            return

        await self._ensure_labels(conn, label_ids)
        await conn.execute(
            insert(message_labels),
            [{"message_id": message_id, "label_id": lid} for lid in label_ids],
        )

    async def _write_message(
        self, conn: AsyncConnection, message: CachedMessage
    ) -> None:
        values = message_to_row(message)
        query = insert(messages).values(**values)
        query = query.on_conflict_do_update(
            index_elements=["id"],
            set_={k: v for k, v in values.items() if k != "id"},
        )
        await conn.execute(query)
        await self._set_message_labels(conn, message.id, message.label_ids)

    async def upsert_message(self, message: CachedMessage) -> None:
        """Replace a message row and all of its label associations atomically."""
        async with self._write("upsert_message", message_id=message.id) as conn:
            await self._write_message(conn, message)

        logger.debug(f"Upserted message {message.id}")

    async def upsert_messages(
        self,
        items: List[CachedMessage],
        batch_size: Optional[int] = None,
        progress: Optional[Callable[[int, int], None]] = None,
        cancel_token: Optional[asyncio.Event] = None,
    ) -> BatchResult:
        """Upsert many messages, each one its own transaction.

        A failing message is recorded in the result and does not prevent
        the others from being written.

        Args:
            items: Messages to write
            batch_size: Messages between cancellation checks and progress reports
            progress: Optional callback(current, total)
            cancel_token: Optional event to stop before the next batch

        Returns:
            BatchResult with operation statistics
        """
        if not items:
            return BatchResult(total=0, succeeded=0, failed=0)

        batch_size = batch_size or self.engine_mgr.config.upsert_batch_size
        start_time = asyncio.get_running_loop().time()
        result = BatchResult(total=len(items), succeeded=0, failed=0)

        async with self._storage_errors("upsert_messages"):
            engine = await self.engine_mgr.get_engine()

        for i in range(0, len(items), batch_size):
            if cancel_token and cancel_token.is_set():
                result.cancelled = True
                logger.info(
                    f"Batch upsert cancelled at {result.succeeded}/{result.total}"
                )
                break

            for message in items[i : i + batch_size]:
                try:
                    async with TransactionManager(
                        engine, operation="upsert_messages"
                    ) as tx:
                        await self._write_message(tx.connection, message)
                    result.succeeded += 1

                except (SQLAlchemyError, OSError, StorageError) as e:
                    result.failed += 1
                    result.errors.append((message.id, str(e)))
                    logger.error(f"Upsert failed for message {message.id}: {e}")

            if progress:
                progress(result.succeeded + result.failed, result.total)

        result.duration_seconds = asyncio.get_running_loop().time() - start_time
        logger.info(
            f"Batch upsert complete: {result.succeeded}/{result.total} succeeded "
            f"({result.success_rate:.1f}%) in {result.duration_seconds:.2f}s"
        )

        return result

    async def _load_label_ids(
        self, conn: AsyncConnection, message_ids: List[str]
    ) -> Dict[str, Set[str]]:
        found: Dict[str, Set[str]] = {mid: set() for mid in message_ids}
        if not message_ids:
            return found

        result = await conn.execute(
            select(message_labels.c.message_id, message_labels.c.label_id).where(
                message_labels.c.message_id.in_(message_ids)
            )
        )
        for row in result.fetchall():
            found[row.message_id].add(row.label_id)

        return found

    async def get_messages_for_label(
        self, label_id: str, limit: int = 50, offset: int = 0
    ) -> List[CachedMessage]:
        """Return a page of messages newest first.

        ``ALLMAIL`` (any case) ignores label membership and pages through
        every cached message.
        """
        query = select(messages)
        if not is_allmail(label_id):
            query = query.join(
                message_labels, message_labels.c.message_id == messages.c.id
            ).where(message_labels.c.label_id == label_id)

        query = (
            query.order_by(messages.c.internal_at.desc(), messages.c.id.desc())
            .limit(limit)
            .offset(offset)
        )

        async with self._storage_errors("get_messages_for_label", label_id=label_id):
            engine = await self.engine_mgr.get_engine()
            async with engine.connect() as conn:
                rows = (await conn.execute(query)).fetchall()
                label_map = await self._load_label_ids(conn, [row.id for row in rows])

        return [row_to_message(row, label_map[row.id]) for row in rows]

    async def get_message(self, message_id: str) -> Optional[CachedMessage]:
        """Return a single cached message, or None if it is not cached."""
        async with self._storage_errors("get_message", message_id=message_id):
            engine = await self.engine_mgr.get_engine()
            async with engine.connect() as conn:
                result = await conn.execute(
                    select(messages).where(messages.c.id == message_id)
                )
                row = result.fetchone()
                if row is None:
                    return None
                label_map = await self._load_label_ids(conn, [row.id])

        return row_to_message(row, label_map[row.id])

    async def count_messages(self, label_id: str) -> int:
        query = select(func.count()).select_from(messages)
        if not is_allmail(label_id):
            query = (
                select(func.count())
                .select_from(message_labels)
                .where(message_labels.c.label_id == label_id)
            )

        async with self._storage_errors("count_messages", label_id=label_id):
            engine = await self.engine_mgr.get_engine()
            async with engine.connect() as conn:
                return (await conn.execute(query)).scalar_one()

    ## Optimistic mutations

    async def mark_archived(self, message_id: str) -> None:
        """Remove the INBOX association only; other labels are untouched."""
        async with self._write("mark_archived", message_id=message_id) as conn:
            await conn.execute(
                delete(message_labels).where(
                    message_labels.c.message_id == message_id,
                    message_labels.c.label_id == INBOX,
                )
            )

        logger.debug(f"Archived message {message_id} locally")

    async def mark_deleted(self, message_id: str) -> None:
        """Replace every association of a message with TRASH.

        Raises:
            MessageNotFoundError: If the message is not cached
        """
        async with self._write("mark_deleted", message_id=message_id) as conn:
            exists = await conn.execute(
                select(messages.c.id).where(messages.c.id == message_id)
            )
            if exists.fetchone() is None:
                raise MessageNotFoundError(
                    f"Message {message_id} is not cached",
                    details={"message_id": message_id},
                )
            await self._set_message_labels(conn, message_id, [TRASH])

        logger.debug(f"Moved message {message_id} to trash locally")

    ## Sync state

    async def update_sync_state(
        self, label_id: str, cursor: Optional[str] = None
    ) -> SyncState:
        """Record a completed refresh of a label at the current time.

        ``ALLMAIL`` has no label row, so its state is returned without being
        persisted.
        """
        state = SyncState(
            label_id=label_id,
            last_synced_at=datetime.now(timezone.utc),
            history_cursor=cursor,
        )
        if is_allmail(label_id):
            return state

        values = {
            "label_id": state.label_id,
            "history_cursor": state.history_cursor,
            "last_synced_at": state.last_synced_at,
        }

        async with self._write("update_sync_state", label_id=label_id) as conn:
            await self._ensure_labels(conn, [label_id])
            query = insert(sync_state).values(**values)
            query = query.on_conflict_do_update(
                index_elements=["label_id"],
                set_={
                    "history_cursor": state.history_cursor,
                    "last_synced_at": state.last_synced_at,
                },
            )
            await conn.execute(query)

        return state

    async def get_sync_state(self, label_id: str) -> Optional[SyncState]:
        async with self._storage_errors("get_sync_state", label_id=label_id):
            engine = await self.engine_mgr.get_engine()
            async with engine.connect() as conn:
                result = await conn.execute(
                    select(sync_state).where(sync_state.c.label_id == label_id)
                )
                row = result.fetchone()

        return row_to_sync_state(row) if row else None

    ## Retention

    async def cleanup_older_than(self, duration: timedelta) -> int:
        """Delete messages cached before ``now - duration``.

        Label associations go with them through the foreign key cascade.

        Returns:
            Number of messages deleted
        """
        cutoff = datetime.now(timezone.utc) - duration

        async with self._write("cleanup_older_than", cutoff=cutoff.isoformat()) as conn:
            result = await conn.execute(
                delete(messages).where(messages.c.cached_at < cutoff)
            )
            deleted = result.rowcount or 0

        logger.info(f"Retention sweep removed {deleted} messages cached before {cutoff}")
        return deleted

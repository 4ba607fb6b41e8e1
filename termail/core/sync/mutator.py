"""Optimistic archive and delete with background remote confirmation."""

import asyncio
import inspect
from dataclasses import dataclass, replace
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional, Set, Union

from termail.core.database.store import MailStore
from termail.core.gmail.base import MailClient
from termail.core.models.message import WellKnownLabel
from termail.utils.errors import RemoteMutationError, StorageError, TermailError
from termail.utils.logging import get_logger, log_event

logger = get_logger(__name__)

ErrorCallback = Callable[[RemoteMutationError], Union[None, Awaitable[None]]]


class MutationKind(str, Enum):
    ARCHIVE = "archive"
    DELETE = "delete"


@dataclass
class PendingMutation:
    """A local change the server has not confirmed yet."""

    message_id: str
    kind: MutationKind
    attempts: int = 0
    last_error: Optional[str] = None


class OptimisticMutator:
    """Applies archive/delete to the store first, then confirms remotely.

    The caller gets the local result at once. The remote call runs as a
    background task; if it fails the change stays applied locally, the
    message is kept in the pending list for :meth:`retry_pending` and the
    failure is handed to ``on_error``.
    """

    def __init__(
        self,
        store: MailStore,
        client: MailClient,
        on_error: Optional[ErrorCallback] = None,
        timeout: Optional[float] = None,
    ):
        """Initialise the mutator.

        Args:
            store: Local cache receiving the optimistic change
            client: Remote mailbox confirming the change
            on_error: Called with a RemoteMutationError when confirmation fails
            timeout: Deadline in seconds for each remote confirmation
        """
        self.store = store
        self.client = client
        self.on_error = on_error
        self.timeout = timeout

        self._pending: Dict[str, PendingMutation] = {}
        self._confirming: Set[str] = set()
        self._tasks: Set[asyncio.Task] = set()

    async def archive(self, message_id: str) -> bool:
        """Remove a message from INBOX locally and confirm in the background.

        Returns:
            True if the local change was applied
        """
        try:
            await self.store.mark_archived(message_id)
        except StorageError as e:
            logger.error(f"Local archive of {message_id} failed: {e}")
            return False

        self._track(message_id, MutationKind.ARCHIVE)
        return True

    async def delete(self, message_id: str) -> bool:
        """Move a message to TRASH locally and confirm in the background.

        Returns:
            True if the local change was applied
        """
        try:
            await self.store.mark_deleted(message_id)
        except StorageError as e:
            logger.error(f"Local delete of {message_id} failed: {e}")
            return False

        self._track(message_id, MutationKind.DELETE)
        return True

    def _track(self, message_id: str, kind: MutationKind) -> None:
        current = self._pending.get(message_id)
        # A pending delete already covers a later archive.
        if current is not None and current.kind is MutationKind.DELETE:
            kind = MutationKind.DELETE

        self._pending[message_id] = PendingMutation(message_id=message_id, kind=kind)
        self._schedule(message_id)

    def _schedule(self, message_id: str) -> bool:
        if message_id in self._confirming:
            return False

        self._confirming.add(message_id)
        task = asyncio.create_task(self._confirm(message_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return True

    async def _remote_call(self, pending: PendingMutation) -> None:
        if pending.kind is MutationKind.ARCHIVE:
            await self.client.modify_labels(
                pending.message_id, remove=[WellKnownLabel.INBOX.value]
            )
        else:
            await self.client.trash(pending.message_id)

    async def _confirm(self, message_id: str) -> None:
        pending = self._pending.get(message_id)
        try:
            if pending is not None:
                await self._attempt(pending)
        finally:
            self._confirming.discard(message_id)

        # A newer mutation arrived while this confirmation was in flight.
        newer = self._pending.get(message_id)
        if newer is not None and newer is not pending and newer.attempts == 0:
            self._schedule(message_id)

    async def _attempt(self, pending: PendingMutation) -> None:
        pending.attempts += 1
        try:
            await asyncio.wait_for(self._remote_call(pending), self.timeout)

        except asyncio.TimeoutError:
            await self._failed(pending, f"no response within {self.timeout}s")
            return
        except TermailError as e:
            await self._failed(pending, e.message, cause=e)
            return
        except Exception as e:
            logger.exception(f"Unexpected error confirming {pending.kind.value}")
            await self._failed(pending, str(e), cause=e)
            return

        if self._pending.get(pending.message_id) is pending:
            del self._pending[pending.message_id]
        log_event(
            "mutation_confirmed",
            f"{pending.kind.value} of {pending.message_id} confirmed",
            message_id=pending.message_id,
            attempts=pending.attempts,
        )

    async def _failed(
        self,
        pending: PendingMutation,
        reason: str,
        cause: Optional[Exception] = None,
    ) -> None:
        pending.last_error = reason
        error = RemoteMutationError(
            f"Could not {pending.kind.value} message on the server: {reason}",
            details={
                "message_id": pending.message_id,
                "kind": pending.kind.value,
                "attempts": pending.attempts,
            },
        )
        error.__cause__ = cause
        logger.warning(f"{error.message} ({pending.message_id})")

        if self.on_error is not None:
            result = self.on_error(error)
            if inspect.isawaitable(result):
                await result

    def pending(self) -> List[PendingMutation]:
        """Unconfirmed mutations, oldest first."""
        return [replace(p) for p in self._pending.values()]

    def retry_pending(self) -> int:
        """Re-issue remote calls for every unconfirmed mutation.

        Returns:
            Number of confirmations started
        """
        started = sum(1 for mid in list(self._pending) if self._schedule(mid))
        if started:
            logger.info(f"Retrying {started} unconfirmed mutations")
        return started

    async def drain(self) -> None:
        """Wait for all outstanding confirmation tasks."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

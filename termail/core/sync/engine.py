"""Cache-first synchronisation engine.

Serves label contents from the local store straight away, then refreshes
them from the remote mailbox in the background when they are stale. Each
refresh is deduplicated per label by the :class:`FetchCoordinator`, bounded
by an explicit deadline and merged into the visible list without moving the
selection.
"""

import asyncio
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set

from termail.core.database.store import MailStore
from termail.core.gmail.base import MailClient
from termail.core.gmail.content import is_chat_label, order_labels
from termail.core.models.message import (
    CachedLabel,
    CachedMessage,
    SyncState,
    WellKnownLabel,
    is_allmail,
)
from termail.core.sync.coordinator import FetchCoordinator
from termail.core.sync.mutator import MutationKind, OptimisticMutator
from termail.core.sync.reconciler import (
    ViewState,
    extend,
    load_more,
    page_size_for_height,
    reconcile,
    resize,
    select_id,
    select_next,
    select_previous,
)
from termail.core.sync.staleness import is_stale
from termail.core.sync.state import AppState
from termail.utils.config import SyncConfig
from termail.utils.errors import (
    ErrorHandler,
    RemoteMutationError,
    StorageError,
    TermailError,
    format_error_message,
)
from termail.utils.logging import get_logger, log_event

logger = get_logger(__name__)

INBOX = WellKnownLabel.INBOX.value
TRASH = WellKnownLabel.TRASH.value
SENT = WellKnownLabel.SENT.value

DEFAULT_PAGE_SIZE = 20


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _newest_first(items: Iterable[CachedMessage]) -> List[CachedMessage]:
    return sorted(items, key=lambda m: (m.internal_at, m.id), reverse=True)


class SyncEngine:
    """Coordinates store reads, background refreshes and optimistic mutations."""

    def __init__(
        self,
        store: MailStore,
        client: MailClient,
        coordinator: Optional[FetchCoordinator] = None,
        state: Optional[AppState] = None,
        config: Optional[SyncConfig] = None,
        clock: Callable[[], datetime] = _utc_now,
    ):
        """Initialise the engine.

        Args:
            store: Persistent cache
            client: Remote mailbox
            coordinator: Per-label refresh registry owned by the caller
            state: Shared application state
            config: Sync tuning, defaults to ``SyncConfig()``
            clock: Source of the current time
        """
        self.store = store
        self.client = client
        self.coordinator = coordinator or FetchCoordinator()
        self.state = state or AppState()
        self.config = config or SyncConfig()
        self.clock = clock
        self.page_size = DEFAULT_PAGE_SIZE

        self.mutator = OptimisticMutator(
            store,
            client,
            on_error=self._on_mutation_error,
            timeout=self.config.fetch_timeout_seconds,
        )

        self._tasks: Set[asyncio.Task] = set()
        # ALLMAIL has no row in the labels table, so its sync time lives here.
        self._allmail_synced_at: Optional[datetime] = None

    @property
    def stale_after(self) -> timedelta:
        return timedelta(seconds=self.config.stale_after_seconds)

    @property
    def initial_limit(self) -> int:
        return self.page_size * self.config.initial_batch_screens

    async def _remote(self, coro):
        """Await a remote call under the configured deadline."""
        return await asyncio.wait_for(coro, timeout=self.config.fetch_timeout_seconds)

    async def _report(self, error: Exception, context: str) -> None:
        """Put an error into the status slot."""
        message = ErrorHandler.handle(error, context, log_traceback=False)
        if isinstance(error, asyncio.TimeoutError):
            message = f"{context}: no response within {self.config.fetch_timeout_seconds}s"
        await self.state.set_status(message)

    ## Labels

    async def load_labels(self) -> List[CachedLabel]:
        """Show cached labels, fetching them remotely if none are cached."""
        try:
            cached = await self.store.get_labels()
        except StorageError as e:
            logger.warning(f"Reading cached labels failed, treating as empty: {e}")
            cached = []

        labels = order_labels(cached)
        await self.state.set_labels(labels)

        if not cached:
            return await self.refresh_labels()
        return labels

    async def refresh_labels(self) -> List[CachedLabel]:
        """Fetch labels from the server, cache them and update the state."""
        try:
            remote = await self._remote(self.client.fetch_labels())
        except (TermailError, asyncio.TimeoutError) as e:
            await self._report(e, "Failed to fetch labels")
            return list(await self.state.labels())

        remote = [label for label in remote if not is_chat_label(label)]
        try:
            await self.store.upsert_labels(remote)
        except StorageError as e:
            await self._report(e, "Failed to cache labels")

        labels = order_labels(remote)
        await self.state.set_labels(labels)
        log_event("labels_refreshed", f"{len(labels)} labels loaded", count=len(labels))
        return labels

    ## Sync state

    async def get_sync_state(self, label_id: str) -> Optional[SyncState]:
        if is_allmail(label_id):
            if self._allmail_synced_at is None:
                return None
            return SyncState(label_id=label_id, last_synced_at=self._allmail_synced_at)

        try:
            return await self.store.get_sync_state(label_id)
        except StorageError as e:
            logger.warning(f"Reading sync state for {label_id} failed: {e}")
            return None

    async def _mark_synced(self, label_id: str) -> None:
        if is_allmail(label_id):
            self._allmail_synced_at = self.clock()
            return
        await self.store.update_sync_state(label_id)

    async def needs_refresh(self, label_id: str) -> bool:
        sync_state = await self.get_sync_state(label_id)
        return is_stale(sync_state, self.clock(), self.stale_after)

    ## Label selection and refresh

    async def select_label(self, label_id: str) -> ViewState:
        """Show a label from the cache and refresh it in the background.

        Returns as soon as the cached rows are in the view; a refresh is
        spawned when the label is stale or nothing is cached.
        """
        try:
            cached = await self.store.get_messages_for_label(
                label_id, self.initial_limit, 0
            )
        except StorageError as e:
            logger.warning(f"Cache read for {label_id} failed, treating as miss: {e}")
            cached = []

        current = await self.state.view()
        if current is not None and current.label_id == label_id:
            view = reconcile(current, cached)
        else:
            view = reconcile(ViewState(label_id=label_id, page_size=self.page_size), cached)
        await self.state.show(view)

        if not cached or await self.needs_refresh(label_id):
            self.spawn_refresh(label_id)

        return view

    def spawn_refresh(self, label_id: str) -> Optional[asyncio.Task]:
        """Start a background refresh unless one is already running."""
        if self.coordinator.in_flight(label_id):
            return None

        task = asyncio.create_task(self.refresh_label(label_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _apply_pending(self, items: Sequence[CachedMessage]) -> List[CachedMessage]:
        """Keep unconfirmed local mutations on top of fetched server data."""
        pending = {p.message_id: p.kind for p in self.mutator.pending()}
        if not pending:
            return list(items)

        result = []
        for message in items:
            kind = pending.get(message.id)
            if kind is MutationKind.ARCHIVE:
                message = message.with_labels(message.label_ids - {INBOX})
            elif kind is MutationKind.DELETE:
                message = message.with_labels({TRASH})
            result.append(message)
        return result

    async def _refresh_limit(self, label_id: str) -> int:
        view = await self.state.view()
        if view is not None and view.label_id == label_id:
            return max(len(view.messages), self.initial_limit)
        return self.initial_limit

    async def refresh_label(self, label_id: str) -> bool:
        """Fetch a label from the server, persist it and merge it into the view.

        Returns:
            True if a refresh ran to completion, False if another refresh of
            the same label was in flight or the remote call failed
        """
        with self.coordinator.claim(label_id) as won:
            if not won:
                return False

            limit = await self._refresh_limit(label_id)
            try:
                fetched = await self._remote(
                    self.client.fetch_messages(label_id, 0, limit)
                )
            except (TermailError, asyncio.TimeoutError) as e:
                await self._report(e, f"Failed to sync {label_id}")
                return False

            fetched = self._apply_pending(fetched)
            try:
                result = await self.store.upsert_messages(fetched)
                if result.failed:
                    await self.state.set_status(
                        f"Failed to cache {result.failed} of {result.total} messages"
                    )
                await self._mark_synced(label_id)
                fresh = await self.store.get_messages_for_label(label_id, limit, 0)
            except StorageError as e:
                await self._report(e, f"Failed to cache {label_id}")
                fresh = _newest_first(
                    m
                    for m in fetched
                    if is_allmail(label_id) or m.has_label(label_id)
                )

            await self.state.update_view(label_id, lambda v: reconcile(v, fresh))

        log_event(
            "label_refreshed",
            f"{label_id} refreshed with {len(fetched)} messages",
            label_id=label_id,
            count=len(fetched),
        )
        return True

    async def handle_refresh_requested(self) -> None:
        """React to a poller signal by refreshing the label on screen."""
        label_id = await self.state.current_label()
        if label_id is not None:
            self.spawn_refresh(label_id)

    async def sync_all(self) -> None:
        """Refresh labels, then every stale priority label."""
        await self.refresh_labels()

        for label_id in self.config.priority_labels:
            if await self.needs_refresh(label_id):
                self.spawn_refresh(label_id)

    ## Pagination

    async def fetch_page(
        self, label_id: str, offset: int, limit: int
    ) -> List[CachedMessage]:
        """Return a page from the cache, falling back to the server."""
        try:
            cached = await self.store.get_messages_for_label(label_id, limit, offset)
        except StorageError as e:
            logger.warning(f"Cache read for {label_id} failed: {e}")
            cached = []

        if len(cached) >= limit:
            return cached

        try:
            remote = await self._remote(
                self.client.fetch_messages(label_id, offset, limit)
            )
        except (TermailError, asyncio.TimeoutError) as e:
            await self._report(e, "Failed to load more messages")
            return cached

        remote = self._apply_pending(remote)
        try:
            await self.store.upsert_messages(remote)
        except StorageError as e:
            await self._report(e, "Failed to cache messages")

        return [m for m in remote if is_allmail(label_id) or m.has_label(label_id)]

    async def load_more(self) -> Optional[ViewState]:
        """Append the next page to the current view."""
        view = await self.state.view()
        if view is None or not view.can_load_more:
            return view

        grown = await load_more(view, self.fetch_page)
        page = grown.messages[len(view.messages) :]
        return await self.state.update_view(view.label_id, lambda v: extend(v, page))

    async def move_selection(self, step: int) -> Optional[ViewState]:
        """Move the selection by ``step`` rows, loading more at the end of the list."""
        label_id = await self.state.current_label()
        if label_id is None:
            return None

        move = select_next if step > 0 else select_previous

        def move_by(view: ViewState) -> ViewState:
            for _ in range(min(abs(step), len(view.messages))):
                view = move(view)
            return view

        view = await self.state.update_view(label_id, move_by)
        if (
            view is not None
            and step > 0
            and view.selected == len(view.messages) - 1
            and view.can_load_more
        ):
            view = await self.load_more()
        return view

    async def select_message(self, message_id: str) -> Optional[ViewState]:
        """Select a message of the current view by id."""
        label_id = await self.state.current_label()
        if label_id is None:
            return None
        return await self.state.update_view(label_id, lambda v: select_id(v, message_id))

    def resize(self, height: int) -> None:
        """Adapt page size to the terminal height."""
        self.page_size = page_size_for_height(height)

    async def apply_resize(self, height: int) -> Optional[ViewState]:
        self.resize(height)
        label_id = await self.state.current_label()
        if label_id is None:
            return None
        return await self.state.update_view(label_id, lambda v: resize(v, height))

    ## Message content

    async def open_message(self, message_id: str) -> Optional[CachedMessage]:
        """Return a message with its body, fetching it if it is not cached."""
        try:
            cached = await self.store.get_message(message_id)
        except StorageError as e:
            logger.warning(f"Cache read for message {message_id} failed: {e}")
            cached = None

        if cached is not None and cached.has_body:
            return cached

        try:
            full = await self._remote(self.client.fetch_full_message(message_id))
        except (TermailError, asyncio.TimeoutError) as e:
            await self._report(e, "Failed to load message")
            return cached

        if cached is not None:
            full = replace(full, label_ids=cached.label_ids)
        try:
            await self.store.upsert_message(full)
        except StorageError as e:
            await self._report(e, "Failed to cache message")

        return full

    async def send(
        self,
        to: str,
        subject: str,
        body: str,
        cc: Optional[str] = None,
        bcc: Optional[str] = None,
    ) -> bool:
        try:
            await self._remote(self.client.send(to, subject, body, cc=cc, bcc=bcc))
        except (TermailError, asyncio.TimeoutError) as e:
            await self._report(e, "Failed to send message")
            return False

        await self.state.set_status("Message sent")
        self.spawn_refresh(SENT)
        return True

    ## Optimistic mutations

    async def _after_mutation(
        self, message_id: str, leaves: Callable[[str], bool]
    ) -> None:
        """Re-read the current view after a local mutation.

        Args:
            message_id: The mutated message
            leaves: True for labels the message no longer belongs to
        """
        view = await self.state.view()
        if view is None:
            return

        # Move the selection off the mutated message before it disappears.
        ids = [m.id for m in view.messages]
        if leaves(view.label_id) and view.selected_id == message_id and len(ids) > 1:
            index = ids.index(message_id)
            neighbour = index + 1 if index + 1 < len(ids) else index - 1
            await self.state.update_view(
                view.label_id, lambda v: replace(v, selected=neighbour)
            )

        try:
            fresh = await self.store.get_messages_for_label(
                view.label_id, max(len(view.messages), self.initial_limit), 0
            )
        except StorageError as e:
            await self._report(e, "Failed to reload messages")
            return

        await self.state.update_view(view.label_id, lambda v: reconcile(v, fresh))

    async def archive(self, message_id: str) -> bool:
        if not await self.mutator.archive(message_id):
            await self.state.set_status("Failed to archive message")
            return False

        await self.state.set_status("Message archived")
        await self._after_mutation(message_id, lambda label_id: label_id == INBOX)
        return True

    async def delete(self, message_id: str) -> bool:
        if not await self.mutator.delete(message_id):
            await self.state.set_status("Failed to delete message")
            return False

        await self.state.set_status("Message moved to trash")
        await self._after_mutation(
            message_id,
            lambda label_id: not is_allmail(label_id) and label_id != TRASH,
        )
        return True

    async def _on_mutation_error(self, error: RemoteMutationError) -> None:
        await self.state.set_status(format_error_message(error))

    def retry_pending(self) -> int:
        return self.mutator.retry_pending()

    ## Maintenance

    async def cleanup(self) -> int:
        """Drop messages cached longer ago than the retention period."""
        try:
            return await self.store.cleanup_older_than(
                timedelta(days=self.config.retention_days)
            )
        except StorageError as e:
            await self._report(e, "Cache cleanup failed")
            return 0

    def background_tasks(self) -> Dict[str, int]:
        return {
            "refreshes": len(self._tasks),
            "pending_mutations": len(self.mutator.pending()),
        }

    async def drain(self) -> None:
        """Wait for every background refresh and confirmation to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        await self.mutator.drain()

    async def shutdown(self) -> None:
        """Cancel refreshes, let confirmations finish and close the client."""
        for task in list(self._tasks):
            task.cancel()
        await self.drain()
        await self.client.close()

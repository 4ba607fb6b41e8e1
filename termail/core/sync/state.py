"""Shared application state guarded by a reader-writer lock."""

from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from termail.core.models.message import CachedLabel
from termail.core.sync.reconciler import ViewState
from termail.core.sync.rwlock import RWLock


@dataclass(frozen=True)
class StateSnapshot:
    """Consistent copy of the state handed to the rendering layer."""

    labels: Tuple[CachedLabel, ...]
    current_label: Optional[str]
    view: Optional[ViewState]
    status: Optional[str]


class AppState:
    """Labels, the current message view and the status message slot.

    Only in-memory updates happen under the write lock; callers do their
    store and network I/O before taking it.
    """

    def __init__(self):
        self.lock = RWLock()
        self._labels: Tuple[CachedLabel, ...] = ()
        self._current_label: Optional[str] = None
        self._view: Optional[ViewState] = None
        self._status: Optional[str] = None

    async def snapshot(self) -> StateSnapshot:
        async with self.lock.read():
            return StateSnapshot(
                labels=self._labels,
                current_label=self._current_label,
                view=self._view,
                status=self._status,
            )

    async def labels(self) -> Tuple[CachedLabel, ...]:
        async with self.lock.read():
            return self._labels

    async def current_label(self) -> Optional[str]:
        async with self.lock.read():
            return self._current_label

    async def view(self) -> Optional[ViewState]:
        async with self.lock.read():
            return self._view

    async def set_labels(self, labels: List[CachedLabel]) -> None:
        async with self.lock.write():
            self._labels = tuple(labels)

    async def show(self, view: ViewState) -> None:
        """Make ``view`` the current view and its label the current label."""
        async with self.lock.write():
            self._current_label = view.label_id
            self._view = view

    async def update_view(
        self, label_id: str, update: Callable[[ViewState], ViewState]
    ) -> Optional[ViewState]:
        """Apply ``update`` if ``label_id`` is still the label on screen.

        Returns:
            The new view, or None if the user has moved to another label
        """
        async with self.lock.write():
            if self._view is None or self._view.label_id != label_id:
                return None
            self._view = update(self._view)
            return self._view

    ## Status message slot

    async def set_status(self, message: str) -> None:
        """Replace the status message; only one is shown at a time."""
        async with self.lock.write():
            self._status = message

    async def clear_status(self) -> None:
        async with self.lock.write():
            self._status = None

    async def status(self) -> Optional[str]:
        async with self.lock.read():
            return self._status

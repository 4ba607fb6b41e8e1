"""Fetch coordinator guaranteeing one in-flight refresh per label."""

import threading
from contextlib import contextmanager
from typing import FrozenSet, Iterator, Set

from termail.utils.logging import get_logger

logger = get_logger(__name__)


class FetchCoordinator:
    """Registry of labels with a remote refresh in progress.

    One instance is owned by the application root and handed to whoever
    starts refreshes. Check-and-insert happens under a single lock with
    no suspension point, so concurrent callers cannot both win.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._in_flight: Set[str] = set()

    def try_begin(self, label_id: str) -> bool:
        """Claim the label; False if a refresh is already running."""
        with self._lock:
            if label_id in self._in_flight:
                logger.debug(f"Refresh already in flight for {label_id}")
                return False
            self._in_flight.add(label_id)
            return True

    def end(self, label_id: str) -> None:
        """Release the label. Releasing an unclaimed label is a no-op."""
        with self._lock:
            self._in_flight.discard(label_id)

    @contextmanager
    def claim(self, label_id: str) -> Iterator[bool]:
        """Try to claim a label for the duration of the block.

        Yields True if this caller won the claim; the claim is released on
        exit however the block ends.

        Usage:
            with coordinator.claim("INBOX") as won:
                if won:
                    await refresh()
        """
        won = self.try_begin(label_id)
        try:
            yield won
        finally:
            if won:
                self.end(label_id)

    def in_flight(self, label_id: str) -> bool:
        with self._lock:
            return label_id in self._in_flight

    def active(self) -> FrozenSet[str]:
        with self._lock:
            return frozenset(self._in_flight)

"""Staleness policy for cached label contents."""

from datetime import datetime, timedelta
from typing import Optional

from termail.core.models.message import SyncState

DEFAULT_STALE_AFTER = timedelta(minutes=5)


def is_stale(
    sync_state: Optional[SyncState],
    now: datetime,
    threshold: timedelta = DEFAULT_STALE_AFTER,
) -> bool:
    """Decide whether a label needs a remote refresh.

    A label that was never synced is always stale; otherwise it is stale
    once ``threshold`` has elapsed since the last completed refresh.
    """
    if sync_state is None:
        return True

    return now - sync_state.last_synced_at >= threshold

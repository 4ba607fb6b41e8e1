"""Database row conversion utilities."""

from typing import Iterable

from termail.core.models.message import CachedLabel, CachedMessage, SyncState


def row_to_label(row) -> CachedLabel:
    return CachedLabel(id=row.id, name=row.name)


def row_to_message(row, label_ids: Iterable[str] = ()) -> CachedMessage:
    """Convert a ``messages`` row and its label ids into a CachedMessage.

    Args:
        row: SQLAlchemy Row from the messages table
        label_ids: Label ids joined from ``message_labels``

    Returns:
        CachedMessage domain object
    """
    return CachedMessage(
        id=row.id,
        thread_id=row.thread_id,
        label_ids=frozenset(label_ids),
        snippet=row.snippet,
        subject=row.subject,
        from_addr=row.from_addr,
        to_addr=row.to_addr,
        raw_date=row.raw_date,
        body_text=row.body_text,
        body_html=row.body_html,
        received_at=row.received_at,
        internal_at=row.internal_at,
        is_unread=bool(row.is_unread),
        is_starred=bool(row.is_starred),
        cached_at=row.cached_at,
    )


def message_to_row(message: CachedMessage) -> dict:
    """Convert a CachedMessage into ``messages`` column values."""
    return {
        "id": message.id,
        "thread_id": message.thread_id,
        "snippet": message.snippet,
        "subject": message.subject,
        "from_addr": message.from_addr,
        "to_addr": message.to_addr,
        "raw_date": message.raw_date,
        "body_text": message.body_text,
        "body_html": message.body_html,
        "received_at": message.received_at,
        "internal_at": message.internal_at,
        "is_unread": message.is_unread,
        "is_starred": message.is_starred,
        "cached_at": message.cached_at,
    }


def row_to_sync_state(row) -> SyncState:
    return SyncState(
        label_id=row.label_id,
        last_synced_at=row.last_synced_at,
        history_cursor=row.history_cursor,
    )

"""SQLAlchemy table definitions for the mail cache."""

from sqlalchemy import (
    Boolean,
    Column,
    ForeignKey,
    Index,
    String,
    Table,
    Text,
)

from termail.core.database.base import UTCDateTime, metadata

labels = Table(
    "labels",
    metadata,
    Column("id", String(255), primary_key=True),
    Column("name", String(500), nullable=False),
)

messages = Table(
    "messages",
    metadata,
    Column("id", String(255), primary_key=True),
    Column("thread_id", String(255), nullable=False, default="", server_default=""),
    Column("snippet", Text, nullable=False, default="", server_default=""),
    Column("subject", String(1000), nullable=False, default="", server_default=""),
    Column("from_addr", String(1000), nullable=False, default="", server_default=""),
    Column("to_addr", Text, nullable=False, default="", server_default=""),
    Column("raw_date", String(255), nullable=False, default="", server_default=""),
    Column("body_text", Text, nullable=True),
    Column("body_html", Text, nullable=True),
    Column("received_at", UTCDateTime, nullable=False),
    Column("internal_at", UTCDateTime, nullable=False),
    Column("is_unread", Boolean, nullable=False, default=False, server_default="0"),
    Column("is_starred", Boolean, nullable=False, default=False, server_default="0"),
    Column("cached_at", UTCDateTime, nullable=False),
    Index("ix_messages_internal_at", "internal_at"),
    Index("ix_messages_cached_at", "cached_at"),
)

message_labels = Table(
    "message_labels",
    metadata,
    Column(
        "message_id",
        String(255),
        ForeignKey("messages.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column(
        "label_id",
        String(255),
        ForeignKey("labels.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Index("ix_message_labels_label_id", "label_id"),
)

sync_state = Table(
    "sync_state",
    metadata,
    Column(
        "label_id",
        String(255),
        ForeignKey("labels.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column("history_cursor", String(255), nullable=True),
    Column("last_synced_at", UTCDateTime, nullable=False),
)

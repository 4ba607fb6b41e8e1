"""Cached mail domain models"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import FrozenSet, Iterable, Optional


class WellKnownLabel(str, Enum):
    """System label identifiers used by the remote mailbox."""

    INBOX = "INBOX"
    TRASH = "TRASH"
    SENT = "SENT"
    IMPORTANT = "IMPORTANT"
    STARRED = "STARRED"
    DRAFT = "DRAFT"
    SPAM = "SPAM"
    UNREAD = "UNREAD"
    ALLMAIL = "ALLMAIL"


ALLMAIL_LABEL_ID = WellKnownLabel.ALLMAIL.value
ALLMAIL_LABEL_NAME = "ALL MAIL"


def is_allmail(label_id: str) -> bool:
    """Return True if the label id names the virtual all-mail view."""
    return label_id.upper() == ALLMAIL_LABEL_ID


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class CachedLabel:
    """A mailbox label as persisted in the local cache."""

    id: str
    name: str

    def __post_init__(self):
        if not self.id or not self.id.strip():
            raise ValueError("Label ID cannot be empty")


ALLMAIL_LABEL = CachedLabel(id=ALLMAIL_LABEL_ID, name=ALLMAIL_LABEL_NAME)


@dataclass(frozen=True)
class CachedMessage:
    """A message as persisted in the local cache.

    ``internal_at`` is the server-assigned timestamp and drives list
    ordering; ``raw_date`` keeps the original Date header untouched.
    """

    id: str
    thread_id: str
    label_ids: FrozenSet[str] = field(default_factory=frozenset)
    snippet: str = ""
    subject: str = ""
    from_addr: str = ""
    to_addr: str = ""
    raw_date: str = ""
    body_text: Optional[str] = None
    body_html: Optional[str] = None
    received_at: datetime = field(default_factory=utc_now)
    internal_at: datetime = field(default_factory=utc_now)
    is_unread: bool = False
    is_starred: bool = False
    cached_at: datetime = field(default_factory=utc_now)

    def __post_init__(self):
        if not self.id or not self.id.strip():
            raise ValueError("Message ID cannot be empty")
        if not isinstance(self.label_ids, frozenset):
            object.__setattr__(self, "label_ids", frozenset(self.label_ids))

    def has_label(self, label_id: str) -> bool:
        return label_id in self.label_ids

    def with_labels(self, label_ids: Iterable[str]) -> "CachedMessage":
        """Return a copy with the label set replaced."""
        return replace(self, label_ids=frozenset(label_ids))

    @property
    def has_body(self) -> bool:
        return bool(self.body_text or self.body_html)


@dataclass(frozen=True)
class SyncState:
    """Per-label record of the last completed refresh."""

    label_id: str
    last_synced_at: datetime
    history_cursor: Optional[str] = None

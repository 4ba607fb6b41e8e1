"""Domain models for the mail cache."""

from .message import (
    ALLMAIL_LABEL,
    ALLMAIL_LABEL_ID,
    ALLMAIL_LABEL_NAME,
    CachedLabel,
    CachedMessage,
    SyncState,
    WellKnownLabel,
    is_allmail,
)

__all__ = [
    "ALLMAIL_LABEL",
    "ALLMAIL_LABEL_ID",
    "ALLMAIL_LABEL_NAME",
    "CachedLabel",
    "CachedMessage",
    "SyncState",
    "WellKnownLabel",
    "is_allmail",
]

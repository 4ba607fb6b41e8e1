"""Conversion of Gmail API resources into cached domain objects."""

import base64
import binascii
import html
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Dict, Iterable, List, Optional

from termail.core.models.message import (
    ALLMAIL_LABEL,
    CachedLabel,
    CachedMessage,
    WellKnownLabel,
    is_allmail,
)
from termail.utils.logging import get_logger

logger = get_logger(__name__)

# Display order of system labels; user labels follow alphabetically.
LABEL_PRIORITY = [
    WellKnownLabel.INBOX.value,
    WellKnownLabel.IMPORTANT.value,
    WellKnownLabel.STARRED.value,
    WellKnownLabel.SENT.value,
    WellKnownLabel.DRAFT.value,
    WellKnownLabel.ALLMAIL.value,
    WellKnownLabel.SPAM.value,
    WellKnownLabel.TRASH.value,
]


## Headers


def get_header(payload: Optional[Dict[str, Any]], name: str) -> Optional[str]:
    """Case-insensitive lookup of a header in a message payload."""
    if not payload:
        return None

    wanted = name.lower()
    for header in payload.get("headers") or []:
        if str(header.get("name", "")).lower() == wanted:
            return header.get("value")

    return None


def parse_date_header(value: Optional[str]) -> Optional[datetime]:
    """Parse an RFC 2822 Date header into an aware UTC datetime."""
    if not value:
        return None

    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        logger.debug(f"Unparseable Date header: {value!r}")
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


## Bodies


def decode_body_data(data: Optional[str]) -> Optional[str]:
    """Decode a base64url body, returning None for invalid or non-UTF-8 data."""
    if not data:
        return None

    try:
        raw = base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))
        return raw.decode("utf-8")
    except (binascii.Error, ValueError):
        return None


def _extract_body(part: Optional[Dict[str, Any]], mime_type: str) -> Optional[str]:
    if not part:
        return None

    if part.get("mimeType") == mime_type:
        text = decode_body_data((part.get("body") or {}).get("data"))
        if text and text.strip():
            return text

    for child in part.get("parts") or []:
        text = _extract_body(child, mime_type)
        if text:
            return text

    return None


def extract_plain_text_body(payload: Optional[Dict[str, Any]]) -> Optional[str]:
    """First non-empty ``text/plain`` part, searched depth-first."""
    return _extract_body(payload, "text/plain")


def extract_html_body(payload: Optional[Dict[str, Any]]) -> Optional[str]:
    """First non-empty ``text/html`` part, searched depth-first."""
    return _extract_body(payload, "text/html")


## Messages


def _internal_timestamp(data: Dict[str, Any]) -> Optional[datetime]:
    value = data.get("internalDate")
    if value is None:
        return None

    try:
        return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        return None


def to_cached_message(
    data: Dict[str, Any], cached_at: Optional[datetime] = None
) -> CachedMessage:
    """Build a CachedMessage from a ``users.messages.get`` response.

    Works for both ``format=metadata`` (no bodies) and ``format=full``.

    Args:
        data: Decoded JSON message resource
        cached_at: Write timestamp, defaults to now

    Returns:
        CachedMessage with ``internal_at`` from ``internalDate``, falling
        back to the Date header and finally to the current time
    """
    now = datetime.now(timezone.utc)
    payload = data.get("payload") or {}
    label_ids = frozenset(data.get("labelIds") or [])

    raw_date = get_header(payload, "Date") or ""
    header_date = parse_date_header(raw_date)
    internal_at = _internal_timestamp(data) or header_date or now

    return CachedMessage(
        id=data["id"],
        thread_id=data.get("threadId") or data["id"],
        label_ids=label_ids,
        snippet=html.unescape(data.get("snippet") or ""),
        subject=get_header(payload, "Subject") or "",
        from_addr=get_header(payload, "From") or "",
        to_addr=get_header(payload, "To") or "",
        raw_date=raw_date,
        body_text=extract_plain_text_body(payload),
        body_html=extract_html_body(payload),
        received_at=header_date or internal_at,
        internal_at=internal_at,
        is_unread=WellKnownLabel.UNREAD.value in label_ids,
        is_starred=WellKnownLabel.STARRED.value in label_ids,
        cached_at=cached_at or now,
    )


## Labels


def is_chat_label(label: CachedLabel) -> bool:
    """Hangouts chat labels are not mail folders."""
    return label.id.lower().startswith("chat/") or label.name.lower() == "chat"


def to_cached_label(data: Dict[str, Any]) -> CachedLabel:
    return CachedLabel(id=data["id"], name=data.get("name") or data["id"])


def order_labels(labels: Iterable[CachedLabel]) -> List[CachedLabel]:
    """Sort labels for display and add the virtual ALL MAIL label.

    Chat labels are dropped. System labels come first in a fixed order,
    then user labels by name. ALL MAIL is only added when at least one
    real label is known.
    """
    by_id = {label.id: label for label in labels if not is_chat_label(label)}
    if not by_id:
        return []

    if not any(is_allmail(label_id) for label_id in by_id):
        by_id[ALLMAIL_LABEL.id] = ALLMAIL_LABEL

    def sort_key(label: CachedLabel):
        label_id = label.id.upper()
        if label_id in LABEL_PRIORITY:
            return (0, LABEL_PRIORITY.index(label_id), "")
        return (1, 0, label.name.lower())

    return sorted(by_id.values(), key=sort_key)

"""
Test doubles and builders shared across the test suite
"""
import asyncio
from datetime import datetime, timedelta, timezone

from termail.core.gmail.base import MailClient
from termail.core.models.message import CachedMessage, is_allmail

BASE_TIME = datetime(2024, 1, 15, 10, 30, 0, 123456, tzinfo=timezone.utc)


def make_message(
    message_id: str,
    labels=("INBOX",),
    minutes: int = 0,
    **overrides,
) -> CachedMessage:
    """Build a message whose internal time is BASE_TIME + minutes."""
    when = BASE_TIME + timedelta(minutes=minutes)
    values = dict(
        id=message_id,
        thread_id=f"thread-{message_id}",
        label_ids=frozenset(labels),
        snippet=f"Snippet {message_id}",
        subject=f"Subject {message_id}",
        from_addr="Alice <alice@example.com>",
        to_addr="bob@example.com",
        raw_date="Mon, 15 Jan 2024 10:30:00 +0000",
        body_text=None,
        body_html=None,
        received_at=when,
        internal_at=when,
        is_unread="UNREAD" in labels,
        is_starred="STARRED" in labels,
        cached_at=datetime.now(timezone.utc),
    )
    values.update(overrides)
    return CachedMessage(**values)


class FakeMailClient(MailClient):
    """In-memory remote mailbox recording every call.

    Set ``gate`` to an unset asyncio.Event to make fetch_messages hang until
    it is set; set ``fail_with`` to an exception to make calls fail.
    """

    def __init__(self, labels=None, messages=None):
        self.labels = list(labels or [])
        self.messages = {m.id: m for m in (messages or [])}
        self.gate = None
        self.fail_with = None
        self.mutation_error = None
        self.fetch_calls = []
        self.full_calls = []
        self.modify_calls = []
        self.trash_calls = []
        self.sent = []
        self.closed = False

    async def fetch_labels(self):
        if self.fail_with:
            raise self.fail_with
        return list(self.labels)

    async def fetch_messages(self, label_id, offset, limit):
        self.fetch_calls.append((label_id, offset, limit))
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_with:
            raise self.fail_with

        matching = [
            m
            for m in self.messages.values()
            if is_allmail(label_id) or label_id in m.label_ids
        ]
        matching.sort(key=lambda m: (m.internal_at, m.id), reverse=True)
        return matching[offset : offset + limit]

    async def fetch_full_message(self, message_id):
        self.full_calls.append(message_id)
        if self.fail_with:
            raise self.fail_with
        return self.messages[message_id]

    async def send(self, to, subject, body, cc=None, bcc=None):
        if self.fail_with:
            raise self.fail_with
        self.sent.append({"to": to, "subject": subject, "body": body, "cc": cc, "bcc": bcc})
        return f"sent-{len(self.sent)}"

    async def modify_labels(self, message_id, add=(), remove=()):
        self.modify_calls.append((message_id, tuple(add), tuple(remove)))
        if self.mutation_error:
            raise self.mutation_error

    async def trash(self, message_id):
        self.trash_calls.append(message_id)
        if self.mutation_error:
            raise self.mutation_error

    async def close(self):
        self.closed = True


async def wait_until(predicate, timeout: float = 2.0) -> None:
    """Poll ``predicate`` until it is true or fail after ``timeout`` seconds."""
    async def _poll():
        while not predicate():
            await asyncio.sleep(0.01)

    await asyncio.wait_for(_poll(), timeout)

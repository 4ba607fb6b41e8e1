"""
Tests for the local mail store

Tests cover:
- Label upserts and ordering
- Message round trips and label associations
- ALLMAIL aggregation and pagination order
- Local archive and delete
- Sync state bookkeeping
- Retention cleanup
- Batch upserts and storage error mapping
"""
import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from termail.core.models.message import CachedLabel
from termail.utils.errors import MessageNotFoundError, StorageError
from helpers import BASE_TIME, make_message


class TestLabels:
    """Tests for label persistence"""

    async def test_upsert_label_is_idempotent(self, store):
        """Test upserting a label twice"""
        label = CachedLabel(id="Label_1", name="Receipts")

        await store.upsert_label(label)
        await store.upsert_label(label)

        assert await store.get_labels() == [label]

    async def test_upsert_label_renames_existing(self, store):
        """Test upserting renames a label"""
        await store.upsert_label(CachedLabel(id="Label_1", name="Old"))
        await store.upsert_label(CachedLabel(id="Label_1", name="New"))

        labels = await store.get_labels()
        assert [l.name for l in labels] == ["New"]

    async def test_labels_ordered_by_name(self, store, sample_labels):
        """Test labels are ordered by name"""
        await store.upsert_labels(sample_labels)

        names = [l.name for l in await store.get_labels()]
        assert names == sorted(names)

    async def test_allmail_label_is_not_stored(self, store):
        """Test ALLMAIL is never stored as a label"""
        await store.upsert_labels(
            [CachedLabel(id="ALLMAIL", name="ALL MAIL"), CachedLabel(id="INBOX", name="INBOX")]
        )

        assert [l.id for l in await store.get_labels()] == ["INBOX"]


class TestMessages:
    """Tests for message persistence"""

    async def test_round_trip(self, store):
        """Test messages read back through every label equal what was written"""
        ist = timezone(timedelta(hours=5, minutes=30))
        local_time = datetime(2024, 1, 15, 16, 0, 0, 250000, tzinfo=ist)
        empty_body = make_message(
            "m1",
            labels=("INBOX", "UNREAD", "Label_1"),
            body_text="",
            body_html="<p></p>",
            internal_at=local_time,
            received_at=local_time - timedelta(seconds=5),
        )
        no_body = make_message("m2", labels=("SENT",), body_text=None, minutes=-60)

        await store.upsert_message(empty_body)
        await store.upsert_message(no_body)

        for label_id in ("INBOX", "UNREAD", "Label_1"):
            assert await store.get_messages_for_label(label_id) == [empty_body]
        assert await store.get_messages_for_label("SENT") == [no_body]
        assert await store.get_messages_for_label("ALLMAIL") == [empty_body, no_body]

        loaded = await store.get_message("m1")
        assert loaded == empty_body
        assert loaded.body_text == ""
        assert loaded.internal_at.utcoffset() == timedelta(0)
        assert (await store.get_message("m2")).body_text is None

    async def test_get_missing_message_returns_none(self, store):
        """Test reading a missing message"""
        assert await store.get_message("nope") is None

    async def test_upsert_replaces_label_set(self, store):
        """Test upserting replaces all label associations"""
        await store.upsert_message(make_message("m1", labels=("INBOX", "Label_1")))
        await store.upsert_message(make_message("m1", labels=("SENT",)))

        loaded = await store.get_message("m1")
        assert loaded.label_ids == frozenset({"SENT"})
        assert await store.get_messages_for_label("INBOX") == []
        assert await store.count_messages("Label_1") == 0

    async def test_unknown_labels_get_placeholder_rows(self, store):
        """Test unknown labels get placeholder rows"""
        await store.upsert_message(make_message("m1", labels=("Label_9",)))

        labels = await store.get_labels()
        assert CachedLabel(id="Label_9", name="Label_9") in labels

    async def test_messages_newest_first(self, store):
        """Test messages are listed newest first"""
        for i in range(5):
            await store.upsert_message(make_message(f"m{i}", minutes=i))

        page = await store.get_messages_for_label("INBOX", limit=10)
        assert [m.id for m in page] == ["m4", "m3", "m2", "m1", "m0"]

    async def test_equal_timestamps_ordered_by_id(self, store):
        """Test equal timestamps are ordered by id"""
        await store.upsert_message(make_message("a"))
        await store.upsert_message(make_message("b"))

        page = await store.get_messages_for_label("INBOX")
        assert [m.id for m in page] == ["b", "a"]

    async def test_pagination(self, store):
        """Test limit and offset"""
        for i in range(7):
            await store.upsert_message(make_message(f"m{i}", minutes=i))

        first = await store.get_messages_for_label("INBOX", limit=3, offset=0)
        second = await store.get_messages_for_label("INBOX", limit=3, offset=3)
        third = await store.get_messages_for_label("INBOX", limit=3, offset=6)

        assert [m.id for m in first] == ["m6", "m5", "m4"]
        assert [m.id for m in second] == ["m3", "m2", "m1"]
        assert [m.id for m in third] == ["m0"]

    @pytest.mark.parametrize("label_id", ["ALLMAIL", "allmail", "AllMail"])
    async def test_allmail_returns_every_message(self, store, label_id):
        """Test ALLMAIL in any case lists every message"""
        await store.upsert_message(make_message("m1", labels=("INBOX",), minutes=1))
        await store.upsert_message(make_message("m2", labels=("SENT",), minutes=2))
        await store.upsert_message(make_message("m3", labels=(), minutes=3))

        page = await store.get_messages_for_label(label_id)

        assert [m.id for m in page] == ["m3", "m2", "m1"]
        assert await store.count_messages(label_id) == 3

    async def test_allmail_is_never_an_association(self, store):
        """Test ALLMAIL is never stored as a message label"""
        await store.upsert_message(make_message("m1", labels=("INBOX", "ALLMAIL")))

        loaded = await store.get_message("m1")
        assert loaded.label_ids == frozenset({"INBOX"})


class TestLocalMutations:
    """Tests for optimistic archive and delete in the store"""

    async def test_archive_removes_only_inbox(self, store):
        """Test archiving removes only INBOX"""
        await store.upsert_message(make_message("m1", labels=("INBOX", "IMPORTANT")))

        await store.mark_archived("m1")

        loaded = await store.get_message("m1")
        assert loaded.label_ids == frozenset({"IMPORTANT"})
        assert await store.get_messages_for_label("INBOX") == []

    async def test_archive_is_idempotent(self, store):
        """Test archiving twice"""
        await store.upsert_message(make_message("m1", labels=("INBOX", "IMPORTANT")))

        await store.mark_archived("m1")
        await store.mark_archived("m1")

        assert (await store.get_message("m1")).label_ids == frozenset({"IMPORTANT"})

    async def test_archive_unknown_message_is_noop(self, store):
        """Test archiving an unknown message"""
        await store.mark_archived("missing")

    async def test_delete_leaves_only_trash(self, store):
        """Test deleting leaves only TRASH"""
        await store.upsert_message(make_message("m1", labels=("INBOX", "Label_1", "UNREAD")))

        await store.mark_deleted("m1")

        loaded = await store.get_message("m1")
        assert loaded.label_ids == frozenset({"TRASH"})
        assert [m.id for m in await store.get_messages_for_label("TRASH")] == ["m1"]
        assert [m.id for m in await store.get_messages_for_label("ALLMAIL")] == ["m1"]

    async def test_delete_is_idempotent(self, store):
        """Test deleting twice"""
        await store.upsert_message(make_message("m1"))

        await store.mark_deleted("m1")
        await store.mark_deleted("m1")

        assert (await store.get_message("m1")).label_ids == frozenset({"TRASH"})

    async def test_delete_missing_message_raises(self, store):
        """Test deleting a missing message"""
        with pytest.raises(MessageNotFoundError):
            await store.mark_deleted("missing")


class TestSyncState:
    """Tests for per-label sync bookkeeping"""

    async def test_never_synced_label_has_no_state(self, store):
        """Test a label never synced has no state"""
        assert await store.get_sync_state("INBOX") is None

    async def test_update_records_current_time(self, store):
        """Test recording a sync stores the current time"""
        before = datetime.now(timezone.utc)
        state = await store.update_sync_state("INBOX")
        after = datetime.now(timezone.utc)

        loaded = await store.get_sync_state("INBOX")
        assert before <= loaded.last_synced_at <= after
        assert loaded.last_synced_at == state.last_synced_at

    async def test_update_overwrites_previous_state(self, store):
        """Test recording a sync replaces the previous one"""
        first = await store.update_sync_state("INBOX", cursor="1")
        await asyncio.sleep(0.01)
        second = await store.update_sync_state("INBOX", cursor="2")

        loaded = await store.get_sync_state("INBOX")
        assert loaded.history_cursor == "2"
        assert loaded.last_synced_at == second.last_synced_at
        assert second.last_synced_at > first.last_synced_at

    async def test_allmail_sync_adds_no_label_row(self, store):
        """Test recording an ALLMAIL sync leaves the label table alone"""
        state = await store.update_sync_state("ALLMAIL")

        assert state.label_id == "ALLMAIL"
        assert await store.get_labels() == []
        assert await store.get_sync_state("ALLMAIL") is None


class TestRetention:
    """Tests for the retention sweep"""

    async def test_cleanup_removes_old_messages_and_associations(self, store):
        """Test cleanup removes old messages and their labels"""
        old = datetime.now(timezone.utc) - timedelta(days=40)
        await store.upsert_message(make_message("old", cached_at=old))
        await store.upsert_message(make_message("new", minutes=1))

        deleted = await store.cleanup_older_than(timedelta(days=30))

        assert deleted == 1
        assert await store.get_message("old") is None
        assert [m.id for m in await store.get_messages_for_label("INBOX")] == ["new"]
        assert await store.count_messages("INBOX") == 1

    async def test_cleanup_with_nothing_old(self, store):
        """Test cleanup with no old messages"""
        await store.upsert_message(make_message("m1"))

        assert await store.cleanup_older_than(timedelta(days=30)) == 0


class TestBatchUpsert:
    """Tests for upsert_messages"""

    async def test_empty_batch(self, store):
        """Test upserting an empty batch"""
        result = await store.upsert_messages([])

        assert result.total == 0
        assert result.success_rate == 0.0

    async def test_batch_reports_progress(self, store):
        """Test batch progress callbacks"""
        items = [make_message(f"m{i}", minutes=i) for i in range(5)]
        calls = []

        result = await store.upsert_messages(
            items, batch_size=2, progress=lambda done, total: calls.append((done, total))
        )

        assert result.succeeded == 5
        assert result.failed == 0
        assert result.success_rate == 100.0
        assert calls == [(2, 5), (4, 5), (5, 5)]
        assert await store.count_messages("INBOX") == 5

    async def test_batch_cancellation(self, store):
        """Test cancelling a batch part way"""
        items = [make_message(f"m{i}", minutes=i) for i in range(4)]
        cancel = asyncio.Event()

        def stop_after_first_batch(done, total):
            cancel.set()

        result = await store.upsert_messages(
            items, batch_size=2, progress=stop_after_first_batch, cancel_token=cancel
        )

        assert result.cancelled is True
        assert result.succeeded == 2
        assert await store.count_messages("INBOX") == 2


class TestStorageErrors:
    """Tests for driver failures surfacing as StorageError"""

    async def test_unopenable_database_raises_storage_error(self, broken_store):
        """Test an unopenable database raises StorageError"""
        with pytest.raises(StorageError):
            await broken_store.get_messages_for_label("INBOX")

    async def test_initialise_failure_raises_storage_error(self, broken_store):
        """Test a failed initialise raises StorageError"""
        with pytest.raises(StorageError):
            await broken_store.initialise()

    async def test_timestamps_survive_round_trip(self, store):
        """Test timestamps keep microseconds and UTC"""
        await store.upsert_message(make_message("m1"))

        loaded = await store.get_message("m1")
        assert loaded.internal_at == BASE_TIME

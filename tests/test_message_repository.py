"""
Unit tests for the message store.
Tests the dual write, partition ordering, replay and live notifications.
"""

import pytest
from bson import ObjectId
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, Mock
from pymongo.errors import ConnectionFailure, WriteError

from chatsync.errors import InvalidDocument, ReadFailed, WriteFailed
from chatsync.repositories.message_repository import MessageRepository
from chatsync.utils.change_stream import ChangeEvent


class TestSend:
    """Test the two-partition write."""

    @pytest.mark.asyncio
    async def test_send_writes_one_copy_per_partition(self, message_repo):
        """send("hi") from A to B lands in (A, B) and in (B, A)."""
        sent = await message_repo.send("alice", "bob", "hi")

        outbox = await message_repo.list_messages("alice", "bob")
        inbox = await message_repo.list_messages("bob", "alice")

        assert [m.id for m in outbox] == [sent.id]
        assert len(inbox) == 1
        assert inbox[0].id != sent.id
        for copy in (outbox[0], inbox[0]):
            assert copy.from_id == "alice"
            assert copy.to_id == "bob"
            assert copy.text == "hi"

    @pytest.mark.asyncio
    async def test_both_copies_share_one_timestamp(self, message_repo):
        """One timestamp is computed and reused for both writes."""
        await message_repo.send("alice", "bob", "hi")

        outbox = await message_repo.list_messages("alice", "bob")
        inbox = await message_repo.list_messages("bob", "alice")

        assert outbox[0].timestamp == inbox[0].timestamp

    @pytest.mark.asyncio
    async def test_explicit_timestamp_is_used(self, message_repo):
        ts = datetime(2024, 10, 2, 12, 0, tzinfo=timezone.utc)

        sent = await message_repo.send("alice", "bob", "hi", timestamp=ts)

        assert sent.timestamp == ts

    @pytest.mark.asyncio
    async def test_empty_text_is_accepted(self, message_repo):
        """Empty bodies are not validated (current behavior)."""
        sent = await message_repo.send("alice", "bob", "")

        assert sent.text == ""
        assert len(await message_repo.list_messages("bob", "alice")) == 1

    @pytest.mark.asyncio
    async def test_non_string_text_is_rejected_before_writing(self, message_repo, bus):
        """A message that would not decode never reaches the store, so later reads keep working."""
        with pytest.raises(InvalidDocument):
            await message_repo.send("alice", "bob", 123)

        assert await message_repo.collection.count_documents({}) == 0
        assert await message_repo.list_messages("alice", "bob") == []

    @pytest.mark.asyncio
    async def test_second_write_failure_keeps_first_copy(self):
        """A failed recipient copy raises but does not roll back the sender copy."""
        collection = MagicMock()
        collection.insert_one = AsyncMock(side_effect=[Mock(inserted_id=ObjectId()), ConnectionFailure("node down")])
        db = MagicMock()
        db.__getitem__.return_value = collection
        bus = Mock(publish=AsyncMock())
        repo = MessageRepository(db, bus)

        with pytest.raises(WriteFailed) as exc_info:
            await repo.send("alice", "bob", "hi")

        assert exc_info.value.transient is True
        assert collection.insert_one.await_count == 2
        # the sender's copy was written and announced
        bus.publish.assert_awaited_once()
        assert bus.publish.await_args[0][0] == "messages:alice:bob"

    @pytest.mark.asyncio
    async def test_first_write_failure_aborts_second(self):
        collection = MagicMock()
        collection.insert_one = AsyncMock(side_effect=WriteError("rejected"))
        db = MagicMock()
        db.__getitem__.return_value = collection
        repo = MessageRepository(db, Mock(publish=AsyncMock()))

        with pytest.raises(WriteFailed) as exc_info:
            await repo.send("alice", "bob", "hi")

        assert exc_info.value.transient is False
        assert collection.insert_one.await_count == 1

    @pytest.mark.asyncio
    async def test_publish_failure_does_not_fail_the_write(self, message_repo, bus):
        bus.publish = AsyncMock(side_effect=RuntimeError("bus down"))

        sent = await message_repo.send("alice", "bob", "hi")

        assert [m.id for m in await message_repo.list_messages("alice", "bob")] == [sent.id]


class TestListMessages:

    @pytest.mark.asyncio
    async def test_messages_are_ordered_by_timestamp(self, message_repo):
        late = datetime(2024, 10, 2, 12, 5, tzinfo=timezone.utc)
        early = datetime(2024, 10, 2, 12, 0, tzinfo=timezone.utc)
        await message_repo.send("alice", "bob", "second", timestamp=late)
        await message_repo.send("bob", "alice", "first", timestamp=early)

        texts = [m.text for m in await message_repo.list_messages("alice", "bob")]

        assert texts == ["first", "second"]

    @pytest.mark.asyncio
    async def test_partitions_are_isolated(self, message_repo):
        await message_repo.send("alice", "bob", "to bob")
        await message_repo.send("alice", "carol", "to carol")

        texts = [m.text for m in await message_repo.list_messages("alice", "bob")]

        assert texts == ["to bob"]

    @pytest.mark.asyncio
    async def test_read_failure_raises_read_failed(self):
        collection = MagicMock()
        collection.find.side_effect = ConnectionFailure("timeout")
        db = MagicMock()
        db.__getitem__.return_value = collection
        repo = MessageRepository(db, Mock())

        with pytest.raises(ReadFailed) as exc_info:
            await repo.list_messages("alice", "bob")

        assert exc_info.value.transient is True


class TestSubscribe:

    @pytest.mark.asyncio
    async def test_replay_then_live_events(self, message_repo, eventually):
        await message_repo.send("alice", "bob", "old")
        batches = []

        async def on_batch(events):
            batches.append(events)

        stream = await message_repo.subscribe("alice", "bob", on_batch)
        await eventually(lambda: len(batches) == 1)
        await message_repo.send("bob", "alice", "new")
        await eventually(lambda: len(batches) == 2)
        await stream.cancel()

        assert [e.document["text"] for e in batches[0]] == ["old"]
        assert [e.type for e in batches[1]] == ["added"]
        assert batches[1][0].document["text"] == "new"

    @pytest.mark.asyncio
    async def test_cancel_unsubscribes_from_bus(self, message_repo, bus, eventually):
        async def on_batch(events):
            return None

        stream = await message_repo.subscribe("alice", "bob", on_batch)
        assert bus.subscriber_count("messages:alice:bob") == 1

        await stream.cancel()

        assert bus.subscriber_count("messages:alice:bob") == 0

    def test_channel_is_scoped_to_partition(self):
        assert MessageRepository.channel("alice", "bob") == "messages:alice:bob"
        assert ChangeEvent(type="added", id="x").document == {}

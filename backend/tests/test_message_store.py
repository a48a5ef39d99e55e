"""Tests for the message store backends."""
from datetime import datetime, timedelta, timezone

import pytest

from friendstalk.config import StoreSettings
from friendstalk.errors import PersistenceError
from friendstalk.messages import (
    DuckDBMessageStore,
    InMemoryMessageStore,
    MediaRef,
    Message,
    MessageKind,
    build_message_store,
)

BASE_TIME = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


def _message(sender: str, receiver: str, body: str, minutes: int, **kwargs) -> Message:
    return Message(
        senderId=sender,
        receiverId=receiver,
        body=body,
        createdAt=BASE_TIME + timedelta(minutes=minutes),
        **kwargs,
    )


@pytest.fixture
def duckdb_store(tmp_path):
    """DuckDB store on a temporary database file."""
    store = DuckDBMessageStore(db_path=str(tmp_path / "messages.duckdb"))
    yield store
    if store._connection is not None:
        store._connection.close()


@pytest.fixture(params=["memory", "duckdb"])
def store(request, tmp_path):
    if request.param == "memory":
        yield InMemoryMessageStore()
        return
    store = DuckDBMessageStore(db_path=str(tmp_path / "messages.duckdb"))
    yield store
    if store._connection is not None:
        store._connection.close()


class TestMessageStore:
    @pytest.mark.asyncio
    async def test_create_and_get(self, store):
        created = await store.create(_message("alice", "bob", "hi", 0))

        fetched = await store.get(created.id)

        assert fetched.id == created.id
        assert fetched.senderId == "alice"
        assert fetched.body == "hi"
        assert fetched.createdAt == BASE_TIME
        assert fetched.deliveredAt is None
        assert fetched.readAt is None

    @pytest.mark.asyncio
    async def test_get_missing_returns_none(self, store):
        assert await store.get("missing") is None

    @pytest.mark.asyncio
    async def test_media_reference_survives(self, store):
        media = MediaRef(url="https://cdn.example.com/v.mp4", mime="video/mp4", name="v.mp4", size=1024)
        created = await store.create(_message("alice", "bob", "", 0, kind=MessageKind.VIDEO, media=media))

        fetched = await store.get(created.id)

        assert fetched.kind == MessageKind.VIDEO
        assert fetched.media == media

    @pytest.mark.asyncio
    async def test_mark_delivered_only_once(self, store):
        created = await store.create(_message("alice", "bob", "hi", 0))
        first_time = BASE_TIME + timedelta(seconds=5)

        assert await store.mark_delivered(created.id, first_time) is True
        assert await store.mark_delivered(created.id, first_time + timedelta(seconds=5)) is False
        assert (await store.get(created.id)).deliveredAt == first_time

    @pytest.mark.asyncio
    async def test_mark_read_batch(self, store):
        older = await store.create(_message("alice", "bob", "one", 0))
        newer = await store.create(_message("alice", "bob", "two", 1))
        other = await store.create(_message("bob", "alice", "reply", 2))
        delivered_at = BASE_TIME + timedelta(minutes=3)
        read_at = BASE_TIME + timedelta(minutes=5)
        await store.mark_delivered(newer.id, delivered_at)

        ids = await store.mark_read("alice", "bob", read_at, limit=100)

        assert ids == [older.id, newer.id]
        backfilled = await store.get(older.id)
        assert backfilled.readAt == read_at
        assert backfilled.deliveredAt == read_at
        kept = await store.get(newer.id)
        assert kept.deliveredAt == delivered_at
        assert (await store.get(other.id)).readAt is None

        assert await store.mark_read("alice", "bob", read_at, limit=100) == []

    @pytest.mark.asyncio
    async def test_conversation_pages_newest_first(self, store):
        created = []
        for minute in range(5):
            sender, receiver = ("alice", "bob") if minute % 2 == 0 else ("bob", "alice")
            created.append(await store.create(_message(sender, receiver, f"m{minute}", minute)))
        await store.create(_message("alice", "carol", "elsewhere", 10))

        latest = await store.conversation("alice", "bob", limit=2)
        assert [msg.body for msg in latest] == ["m3", "m4"]

        older = await store.conversation("bob", "alice", before=latest[0].createdAt, limit=10)
        assert [msg.body for msg in older] == ["m0", "m1", "m2"]

    @pytest.mark.asyncio
    async def test_conversation_cursor_keeps_messages_sharing_a_timestamp(self, store):
        for msg_id in ("m0", "m1", "m2"):
            await store.create(_message("alice", "bob", msg_id, 0, id=msg_id))

        first_page = await store.conversation("alice", "bob", limit=2)
        assert [msg.id for msg in first_page] == ["m1", "m2"]

        oldest = first_page[0]
        second_page = await store.conversation(
            "alice", "bob", before=oldest.createdAt, before_id=oldest.id, limit=2
        )
        assert [msg.id for msg in second_page] == ["m0"]

        assert await store.conversation(
            "alice", "bob", before=BASE_TIME, before_id="m0", limit=2
        ) == []

    @pytest.mark.asyncio
    async def test_conversation_cursor_spans_timestamps(self, store):
        await store.create(_message("alice", "bob", "early", 0, id="z-early"))
        await store.create(_message("bob", "alice", "tied-a", 1, id="a-tied"))
        await store.create(_message("alice", "bob", "tied-b", 1, id="b-tied"))

        page = await store.conversation(
            "alice", "bob", before=BASE_TIME + timedelta(minutes=1), before_id="b-tied"
        )

        assert [msg.body for msg in page] == ["early", "tied-a"]

    @pytest.mark.asyncio
    async def test_conversation_empty(self, store):
        assert await store.conversation("alice", "bob") == []


class TestDuckDBMessageStore:
    @pytest.mark.asyncio
    async def test_data_persists_across_instances(self, tmp_path):
        db_path = str(tmp_path / "messages.duckdb")
        first = DuckDBMessageStore(db_path=db_path)
        created = await first.create(_message("alice", "bob", "durable", 0))
        await first.close()

        second = DuckDBMessageStore(db_path=db_path)
        fetched = await second.get(created.id)
        await second.close()

        assert fetched.body == "durable"

    @pytest.mark.asyncio
    async def test_duplicate_id_raises_persistence_error(self, duckdb_store):
        message = _message("alice", "bob", "hi", 0)
        await duckdb_store.create(message)

        with pytest.raises(PersistenceError):
            await duckdb_store.create(message)


class TestBuildMessageStore:
    def test_memory_backend(self):
        assert isinstance(build_message_store(StoreSettings(backend="memory")), InMemoryMessageStore)

    def test_duckdb_backend(self, tmp_path):
        store = build_message_store(
            StoreSettings(backend="duckdb", db_path=str(tmp_path / "m.duckdb"))
        )
        assert isinstance(store, DuckDBMessageStore)
        store._connection.close()

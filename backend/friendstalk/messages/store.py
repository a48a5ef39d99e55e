"""Message persistence.

The relay treats the message store as an external collaborator behind the
``MessageStore`` interface. Two implementations ship with the service:

    InMemoryMessageStore: process-local, used by tests and ``backend: memory``.
    DuckDBMessageStore:   embedded DuckDB file, the default backend.

Database Schema (DuckDB):
    messages table:
        - id: Message ID (primary key)
        - sender_id / receiver_id: Conversation participants
        - kind: text, image, video, audio or file
        - body: Trimmed text body
        - media_url, media_mime, media_name, media_size: Media reference
        - created_at: Creation time (UTC)
        - delivered_at / read_at: Receipt times (UTC), NULL until set

Thread Safety:
    DuckDB calls are blocking, so the async methods run them in the default
    executor. A single connection is shared and guarded by a threading lock.
"""
import asyncio
import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import duckdb

from friendstalk.config import StoreSettings
from friendstalk.errors import PersistenceError

from .schemas import MediaRef, Message, MessageKind

logger = logging.getLogger(__name__)


class MessageStore(ABC):
    """Durable message storage used by the delivery pipeline.

    Every method raises PersistenceError when the backend is unavailable.
    """

    @abstractmethod
    async def create(self, message: Message) -> Message:
        """Persist a new message and return the stored copy."""

    @abstractmethod
    async def mark_delivered(self, message_id: str, delivered_at: datetime) -> bool:
        """Set ``deliveredAt`` if it is still unset.

        Returns:
            True if the timestamp was written.
        """

    @abstractmethod
    async def mark_read(
        self, sender_id: str, receiver_id: str, read_at: datetime, limit: int
    ) -> List[str]:
        """Mark up to *limit* unread messages from sender to receiver as read.

        The whole batch is updated atomically. ``deliveredAt`` is backfilled
        with *read_at* for messages that were never marked delivered.

        Returns:
            IDs of the messages that transitioned, oldest first.
        """

    @abstractmethod
    async def get(self, message_id: str) -> Optional[Message]:
        """Fetch a single message by ID."""

    @abstractmethod
    async def conversation(
        self,
        user_id: str,
        peer_id: str,
        before: Optional[datetime] = None,
        limit: int = 50,
        before_id: Optional[str] = None,
    ) -> List[Message]:
        """Return the newest *limit* messages between two users.

        Messages are ordered by ``(createdAt, id)`` and returned oldest
        first. The cursor *before* alone keeps messages created strictly
        earlier; together with *before_id* it keeps messages that sort
        strictly before ``(before, before_id)``, so messages sharing a
        timestamp are never skipped between pages.
        """

    async def close(self) -> None:
        """Release backend resources."""


# =============================================================================
# In-memory store
# =============================================================================


class InMemoryMessageStore(MessageStore):
    """Dictionary-backed store. Returns copies so callers cannot mutate state."""

    def __init__(self) -> None:
        self._messages: Dict[str, Message] = {}

    async def create(self, message: Message) -> Message:
        if message.id in self._messages:
            raise PersistenceError(f"Duplicate message id {message.id}")
        self._messages[message.id] = message.model_copy(deep=True)
        return message.model_copy(deep=True)

    async def mark_delivered(self, message_id: str, delivered_at: datetime) -> bool:
        stored = self._messages.get(message_id)
        if stored is None or stored.deliveredAt is not None:
            return False
        stored.deliveredAt = delivered_at
        return True

    async def mark_read(
        self, sender_id: str, receiver_id: str, read_at: datetime, limit: int
    ) -> List[str]:
        unread = [
            msg for msg in self._ordered()
            if msg.senderId == sender_id
            and msg.receiverId == receiver_id
            and msg.readAt is None
        ][:limit]
        for msg in unread:
            msg.readAt = read_at
            if msg.deliveredAt is None:
                msg.deliveredAt = read_at
        return [msg.id for msg in unread]

    async def get(self, message_id: str) -> Optional[Message]:
        stored = self._messages.get(message_id)
        return stored.model_copy(deep=True) if stored else None

    async def conversation(
        self,
        user_id: str,
        peer_id: str,
        before: Optional[datetime] = None,
        limit: int = 50,
        before_id: Optional[str] = None,
    ) -> List[Message]:
        participants = {(user_id, peer_id), (peer_id, user_id)}
        messages = sorted(
            (msg for msg in self._messages.values()
             if (msg.senderId, msg.receiverId) in participants),
            key=lambda msg: (msg.createdAt, msg.id),
        )
        if before is not None:
            if before_id is None:
                messages = [msg for msg in messages if msg.createdAt < before]
            else:
                messages = [msg for msg in messages if (msg.createdAt, msg.id) < (before, before_id)]
        return [msg.model_copy(deep=True) for msg in messages[-limit:]] if messages else []

    def _ordered(self) -> List[Message]:
        # dicts keep insertion order, so equal timestamps stay in send order
        return sorted(self._messages.values(), key=lambda msg: msg.createdAt)


# =============================================================================
# DuckDB store
# =============================================================================


_COLUMNS = (
    "id, sender_id, receiver_id, kind, body, media_url, media_mime, "
    "media_name, media_size, created_at, delivered_at, read_at"
)


def _to_db_time(value: Optional[datetime]) -> Optional[datetime]:
    """DuckDB TIMESTAMP is naive; store everything as naive UTC."""
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _from_db_time(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    return value.replace(tzinfo=timezone.utc)


class DuckDBMessageStore(MessageStore):
    """Message store backed by an embedded DuckDB database file.

    Attributes:
        _db_path: Path to the DuckDB file (":memory:" for a throwaway DB).
    """

    def __init__(self, db_path: str = "messages.duckdb") -> None:
        self._db_path = db_path
        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._lock = threading.Lock()
        self._initialize_db()

    def _get_connection(self) -> duckdb.DuckDBPyConnection:
        if self._connection is None:
            self._connection = duckdb.connect(self._db_path)
        return self._connection

    def _initialize_db(self) -> None:
        """Create the messages table and index if they don't exist."""
        try:
            conn = self._get_connection()
            conn.execute("""
                CREATE TABLE IF NOT EXISTS messages (
                    id VARCHAR PRIMARY KEY,
                    sender_id VARCHAR NOT NULL,
                    receiver_id VARCHAR NOT NULL,
                    kind VARCHAR NOT NULL,
                    body VARCHAR NOT NULL,
                    media_url VARCHAR,
                    media_mime VARCHAR,
                    media_name VARCHAR,
                    media_size BIGINT,
                    created_at TIMESTAMP NOT NULL,
                    delivered_at TIMESTAMP,
                    read_at TIMESTAMP
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_messages_pair
                ON messages (sender_id, receiver_id, created_at)
            """)
        except duckdb.Error as exc:
            raise PersistenceError(f"Could not initialise message store: {exc}") from exc

    async def _run(self, fn: Callable[..., Any], *args: Any) -> Any:
        """Run a blocking DuckDB operation in the executor under the lock."""
        def locked() -> Any:
            with self._lock:
                try:
                    return fn(self._get_connection(), *args)
                except duckdb.Error as exc:
                    raise PersistenceError(str(exc)) from exc

        return await asyncio.get_event_loop().run_in_executor(None, locked)

    # ------------------------------------------------------------------
    # Row mapping
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_message(row: tuple) -> Message:
        (msg_id, sender_id, receiver_id, kind, body, media_url, media_mime,
         media_name, media_size, created_at, delivered_at, read_at) = row
        media = None
        if media_url:
            media = MediaRef(url=media_url, mime=media_mime, name=media_name, size=media_size)
        return Message(
            id=msg_id,
            senderId=sender_id,
            receiverId=receiver_id,
            kind=MessageKind(kind),
            body=body or "",
            media=media,
            createdAt=_from_db_time(created_at),
            deliveredAt=_from_db_time(delivered_at),
            readAt=_from_db_time(read_at),
        )

    # ------------------------------------------------------------------
    # MessageStore
    # ------------------------------------------------------------------

    async def create(self, message: Message) -> Message:
        def insert(conn: duckdb.DuckDBPyConnection) -> None:
            media = message.media
            conn.execute(
                f"INSERT INTO messages ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                [
                    message.id,
                    message.senderId,
                    message.receiverId,
                    message.kind.value,
                    message.body,
                    media.url if media else None,
                    media.mime if media else None,
                    media.name if media else None,
                    media.size if media else None,
                    _to_db_time(message.createdAt),
                    _to_db_time(message.deliveredAt),
                    _to_db_time(message.readAt),
                ],
            )

        await self._run(insert)
        return message.model_copy(deep=True)

    async def mark_delivered(self, message_id: str, delivered_at: datetime) -> bool:
        def update(conn: duckdb.DuckDBPyConnection) -> bool:
            row = conn.execute(
                "SELECT 1 FROM messages WHERE id = ? AND delivered_at IS NULL",
                [message_id],
            ).fetchone()
            if row is None:
                return False
            conn.execute(
                "UPDATE messages SET delivered_at = ? WHERE id = ?",
                [_to_db_time(delivered_at), message_id],
            )
            return True

        return await self._run(update)

    async def mark_read(
        self, sender_id: str, receiver_id: str, read_at: datetime, limit: int
    ) -> List[str]:
        db_time = _to_db_time(read_at)

        def update(conn: duckdb.DuckDBPyConnection) -> List[str]:
            conn.execute("BEGIN TRANSACTION")
            try:
                rows = conn.execute(
                    """
                    SELECT id FROM messages
                    WHERE sender_id = ? AND receiver_id = ? AND read_at IS NULL
                    ORDER BY created_at, id
                    LIMIT ?
                    """,
                    [sender_id, receiver_id, limit],
                ).fetchall()
                ids = [row[0] for row in rows]
                if ids:
                    placeholders = ", ".join("?" for _ in ids)
                    conn.execute(
                        f"""
                        UPDATE messages
                        SET read_at = ?, delivered_at = COALESCE(delivered_at, ?)
                        WHERE id IN ({placeholders})
                        """,
                        [db_time, db_time, *ids],
                    )
                conn.execute("COMMIT")
                return ids
            except duckdb.Error:
                conn.execute("ROLLBACK")
                raise

        return await self._run(update)

    async def get(self, message_id: str) -> Optional[Message]:
        def select(conn: duckdb.DuckDBPyConnection) -> Optional[tuple]:
            return conn.execute(
                f"SELECT {_COLUMNS} FROM messages WHERE id = ?", [message_id]
            ).fetchone()

        row = await self._run(select)
        return self._row_to_message(row) if row else None

    async def conversation(
        self,
        user_id: str,
        peer_id: str,
        before: Optional[datetime] = None,
        limit: int = 50,
        before_id: Optional[str] = None,
    ) -> List[Message]:
        def select(conn: duckdb.DuckDBPyConnection) -> List[tuple]:
            query = f"""
                SELECT {_COLUMNS} FROM messages
                WHERE ((sender_id = ? AND receiver_id = ?)
                    OR (sender_id = ? AND receiver_id = ?))
            """
            params: List[Any] = [user_id, peer_id, peer_id, user_id]
            if before is not None and before_id is not None:
                query += " AND (created_at < ? OR (created_at = ? AND id < ?))"
                params.extend([_to_db_time(before), _to_db_time(before), before_id])
            elif before is not None:
                query += " AND created_at < ?"
                params.append(_to_db_time(before))
            query += " ORDER BY created_at DESC, id DESC LIMIT ?"
            params.append(limit)
            return conn.execute(query, params).fetchall()

        rows = await self._run(select)
        return [self._row_to_message(row) for row in reversed(rows)]

    async def close(self) -> None:
        with self._lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None


def build_message_store(settings: StoreSettings) -> MessageStore:
    """Create the store selected by the ``store.backend`` setting."""
    if settings.backend == "memory":
        logger.info("[Messages] Using in-memory message store")
        return InMemoryMessageStore()
    logger.info(f"[Messages] Using DuckDB message store at {settings.db_path}")
    return DuckDBMessageStore(db_path=settings.db_path)

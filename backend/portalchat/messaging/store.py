"""DuckDB-based message store.

This module provides durable, append-only storage for direct messages.
Messages are only ever inserted or have their read flag flipped; nothing is
deleted. The service follows the singleton pattern so a single connection
is shared by the WebSocket handlers and the HTTP read path.

Database Schema:
    messages table:
        - seq: Auto-incrementing position (authoritative order)
        - id: Message UUID
        - conversation_id: Room id of the sender/recipient pair
        - sender_id, recipient_id: User ids
        - body: Message text
        - created_at: Server timestamp (UTC), never decreasing
        - is_read: Read flag

    conversation_prefs table:
        - conversation_id, user_id: Primary key
        - pinned: Conversation pinned by this user
        - hidden_at: When this user last hid the conversation
        - hidden_through_seq: Hidden up to this message (NULL = visible)

Thread Safety:
    The DuckDB connection is NOT thread-safe. All calls are made from the
    event loop thread, which also makes each call atomic with respect to
    other coroutines.

Usage:
    store = MessageStore.get_instance()
    message = store.append("a", "b", "a:b", "hello")
    history = store.list_conversation("a:b")
"""
import logging
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, List, Optional

import duckdb

from .errors import StorageError
from .schemas import ConversationPreference, Message

logger = logging.getLogger(__name__)

_MESSAGE_COLUMNS = (
    "seq, id, conversation_id, sender_id, recipient_id, body, created_at, is_read"
)


def _utcnow() -> datetime:
    """Naive UTC, the form stored in TIMESTAMP columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class MessageStore:
    """Singleton service for persisting messages in DuckDB."""

    _instance: Optional["MessageStore"] = None
    _db_path: str = "messages.duckdb"

    def __init__(self, db_path: Optional[str] = None) -> None:
        """Open the database and create the schema if needed.

        Args:
            db_path: Path to DuckDB file. Defaults to "messages.duckdb".
        """
        if db_path:
            self._db_path = db_path
        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._last_created_at: Optional[datetime] = None
        self._initialize_db()

    @classmethod
    def get_instance(cls, db_path: Optional[str] = None) -> "MessageStore":
        """Get or create the singleton instance.

        Args:
            db_path: Optional database path (only used on first call).
        """
        if cls._instance is None:
            cls._instance = cls(db_path)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Close the connection and drop the singleton (used by tests)."""
        if cls._instance is not None:
            cls._instance.close()
            cls._instance = None

    def _get_connection(self) -> duckdb.DuckDBPyConnection:
        if self._connection is None:
            self._connection = duckdb.connect(self._db_path)
        return self._connection

    def _initialize_db(self) -> None:
        """Create tables and sequence. Safe to call multiple times."""
        conn = self._get_connection()
        conn.execute("CREATE SEQUENCE IF NOT EXISTS messages_seq START 1")
        conn.execute("""
            CREATE TABLE IF NOT EXISTS messages (
                seq BIGINT DEFAULT nextval('messages_seq') PRIMARY KEY,
                id VARCHAR NOT NULL UNIQUE,
                conversation_id VARCHAR NOT NULL,
                sender_id VARCHAR NOT NULL,
                recipient_id VARCHAR NOT NULL,
                body VARCHAR NOT NULL,
                created_at TIMESTAMP NOT NULL,
                is_read BOOLEAN NOT NULL DEFAULT FALSE
            )
        """)
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_messages_conversation "
            "ON messages(conversation_id)"
        )
        conn.execute("""
            CREATE TABLE IF NOT EXISTS conversation_prefs (
                conversation_id VARCHAR NOT NULL,
                user_id VARCHAR NOT NULL,
                pinned BOOLEAN NOT NULL DEFAULT FALSE,
                hidden_at TIMESTAMP,
                hidden_through_seq BIGINT,
                PRIMARY KEY (conversation_id, user_id)
            )
        """)
        row = conn.execute("SELECT max(created_at) FROM messages").fetchone()
        self._last_created_at = row[0] if row else None
        logger.info("[MessageStore] Initialized with db=%s", self._db_path)

    @contextmanager
    def _storage_errors(self, operation: str) -> Iterator[duckdb.DuckDBPyConnection]:
        try:
            yield self._get_connection()
        except duckdb.Error as exc:
            logger.error("[MessageStore] %s failed: %s", operation, exc)
            raise StorageError(f"{operation} failed") from exc

    def _next_timestamp(self) -> datetime:
        now = _utcnow()
        if self._last_created_at is not None and now < self._last_created_at:
            now = self._last_created_at
        self._last_created_at = now
        return now

    # =========================================================================
    # Messages
    # =========================================================================

    def append(
        self,
        sender_id: str,
        recipient_id: str,
        conversation_id: str,
        body: str,
    ) -> Message:
        """Persist a new unread message and return it with id, seq and time.

        Raises:
            StorageError: If the database rejects the write.
        """
        message_id = str(uuid.uuid4())
        with self._storage_errors("append") as conn:
            created_at = self._next_timestamp()
            row = conn.execute(
                """
                INSERT INTO messages
                  (id, conversation_id, sender_id, recipient_id, body, created_at, is_read)
                VALUES (?, ?, ?, ?, ?, ?, FALSE)
                RETURNING seq
                """,
                [message_id, conversation_id, sender_id, recipient_id, body, created_at],
            ).fetchone()

        return Message(
            id=message_id,
            senderId=sender_id,
            recipientId=recipient_id,
            conversationId=conversation_id,
            body=body,
            createdAt=_as_utc(created_at),
            read=False,
            seq=row[0],
        )

    def list_conversation(self, conversation_id: str) -> List[Message]:
        """All messages of a conversation in persistence order."""
        with self._storage_errors("list_conversation") as conn:
            rows = conn.execute(
                f"SELECT {_MESSAGE_COLUMNS} FROM messages "
                "WHERE conversation_id = ? ORDER BY seq ASC",
                [conversation_id],
            ).fetchall()
        return [self._row_to_message(r) for r in rows]

    def last_message(self, conversation_id: str) -> Optional[Message]:
        with self._storage_errors("last_message") as conn:
            row = conn.execute(
                f"SELECT {_MESSAGE_COLUMNS} FROM messages "
                "WHERE conversation_id = ? ORDER BY seq DESC LIMIT 1",
                [conversation_id],
            ).fetchone()
        return self._row_to_message(row) if row else None

    def mark_read(self, conversation_id: str, recipient_id: str) -> int:
        """Flag every unread message addressed to *recipient_id* as read.

        Returns:
            Number of messages that changed.
        """
        with self._storage_errors("mark_read") as conn:
            rows = conn.execute(
                """
                UPDATE messages SET is_read = TRUE
                WHERE conversation_id = ? AND recipient_id = ? AND NOT is_read
                RETURNING id
                """,
                [conversation_id, recipient_id],
            ).fetchall()
        return len(rows)

    def unread_count(self, recipient_id: str) -> int:
        with self._storage_errors("unread_count") as conn:
            row = conn.execute(
                "SELECT count(*) FROM messages WHERE recipient_id = ? AND NOT is_read",
                [recipient_id],
            ).fetchone()
        return int(row[0])

    # =========================================================================
    # Conversation preferences
    # =========================================================================

    def get_preference(self, conversation_id: str, user_id: str) -> ConversationPreference:
        with self._storage_errors("get_preference") as conn:
            row = conn.execute(
                "SELECT pinned, hidden_at, hidden_through_seq FROM conversation_prefs "
                "WHERE conversation_id = ? AND user_id = ?",
                [conversation_id, user_id],
            ).fetchone()
        if row is None:
            return ConversationPreference(conversationId=conversation_id, userId=user_id)
        return ConversationPreference(
            conversationId=conversation_id,
            userId=user_id,
            pinned=bool(row[0]),
            hiddenAt=_as_utc(row[1]),
            hiddenThroughSeq=row[2],
        )

    def set_pinned(self, conversation_id: str, user_id: str, pinned: bool) -> None:
        with self._storage_errors("set_pinned") as conn:
            conn.execute(
                """
                INSERT INTO conversation_prefs (conversation_id, user_id, pinned)
                VALUES (?, ?, ?)
                ON CONFLICT (conversation_id, user_id)
                DO UPDATE SET pinned = excluded.pinned
                """,
                [conversation_id, user_id, pinned],
            )

    def set_hidden(self, conversation_id: str, user_id: str) -> ConversationPreference:
        """Hide the conversation for *user_id* up to its current last message.

        A later message makes the conversation visible again.
        """
        hidden_at = _utcnow()
        with self._storage_errors("set_hidden") as conn:
            row = conn.execute(
                "SELECT coalesce(max(seq), 0) FROM messages WHERE conversation_id = ?",
                [conversation_id],
            ).fetchone()
            conn.execute(
                """
                INSERT INTO conversation_prefs
                  (conversation_id, user_id, hidden_at, hidden_through_seq)
                VALUES (?, ?, ?, ?)
                ON CONFLICT (conversation_id, user_id)
                DO UPDATE SET hidden_at = excluded.hidden_at,
                              hidden_through_seq = excluded.hidden_through_seq
                """,
                [conversation_id, user_id, hidden_at, row[0]],
            )
        return self.get_preference(conversation_id, user_id)

    def close(self) -> None:
        """Close the database connection."""
        if self._connection is not None:
            self._connection.close()
            self._connection = None

    @staticmethod
    def _row_to_message(row) -> Message:
        return Message(
            seq=row[0],
            id=row[1],
            conversationId=row[2],
            senderId=row[3],
            recipientId=row[4],
            body=row[5],
            createdAt=_as_utc(row[6]),
            read=bool(row[7]),
        )


def get_message_store() -> MessageStore:
    """Return the store singleton, opening the configured database."""
    from portalchat.config import get_config
    return MessageStore.get_instance(get_config().storage.messages_db)

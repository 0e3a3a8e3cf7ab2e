"""Conversation broadcaster for live direct messaging.

This module owns the live side of messaging: which authenticated
connections exist, which conversation rooms each one has joined, and the
send path that persists a message and pushes it to everyone in the room.

Key features:
    - Connection arena keyed by connection id (cheap removal on disconnect)
    - Explicit room table: conversation id -> set of connection ids
    - Policy-checked sends, persisted before they are broadcast
    - Per-conversation lock so broadcast order equals persistence order
    - Concurrent fan-out with asyncio.gather()
    - Automatic dead connection cleanup
    - Bulk read receipts scoped to (conversation, recipient)

Thread Safety:
    This implementation is designed for async/await usage with a single event loop.
    It is NOT thread-safe for concurrent access from multiple threads.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Iterable, Optional, Set

from portalchat.directory import UserDirectoryService, get_directory

from .errors import (
    ForbiddenError,
    InvalidMessageError,
    InvalidTargetError,
    RecipientNotFoundError,
)
from .gateway import Connection
from .policy import REASON_UNAVAILABLE, evaluate_send
from .rooms import is_valid_user_id, participants, room_id
from .schemas import Message
from .store import MessageStore, get_message_store

logger = logging.getLogger(__name__)


class ConversationBroadcaster:
    """Routes messages between authenticated connections.

    State:
        - connections: connection id -> Connection
        - rooms: conversation id -> set of connection ids

    The room table is only mutated by join() and disconnect() (dead
    connections found during a broadcast are disconnected).

    Note:
        This is a singleton-style global instance. All WebSocket handlers
        share the same broadcaster to maintain consistent state.
    """

    def __init__(
        self,
        store: Optional[MessageStore] = None,
        directory: Optional[UserDirectoryService] = None,
        max_body_length: Optional[int] = None,
    ) -> None:
        self._store = store
        self._directory = directory
        self._max_body_length = max_body_length

        self.connections: Dict[str, Connection] = {}
        self.rooms: Dict[str, Set[str]] = {}
        self._room_locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}

    @property
    def store(self) -> MessageStore:
        return self._store or get_message_store()

    @property
    def directory(self) -> UserDirectoryService:
        return self._directory or get_directory()

    @property
    def max_body_length(self) -> int:
        if self._max_body_length is not None:
            return self._max_body_length
        from portalchat.config import get_config
        return get_config().messaging.max_body_length

    # =========================================================================
    # Connection arena
    # =========================================================================

    def register(self, connection: Connection) -> None:
        """Add an authenticated connection to the arena."""
        if not connection.is_authenticated:
            raise ValueError(f"Refusing to register unauthenticated {connection!r}")
        self.connections[connection.id] = connection
        logger.info(
            f"[Broadcaster] Registered {connection.id} for user {connection.user.id} "
            f"({len(self.connections)} live connections)"
        )

    def get_connection(self, connection_id: str) -> Optional[Connection]:
        return self.connections.get(connection_id)

    def connection_count_for_user(self, user_id: str) -> int:
        return sum(1 for c in self.connections.values() if c.user and c.user.id == user_id)

    def disconnect(self, connection_id: str) -> Optional[Connection]:
        """Drop a connection and remove it from every room it joined.

        Returns:
            The removed Connection, or None if it was not registered.
        """
        connection = self.connections.pop(connection_id, None)
        if connection is None:
            return None

        for rid in connection.rooms:
            members = self.rooms.get(rid)
            if members is None:
                continue
            members.discard(connection_id)
            if not members:
                del self.rooms[rid]
                self._discard_idle_lock(rid)
        connection.rooms.clear()
        logger.info(f"[Broadcaster] Disconnected {connection_id}")
        return connection

    def _require_connection(self, connection_id: str) -> Connection:
        connection = self.connections.get(connection_id)
        if connection is None or not connection.is_authenticated:
            raise KeyError(f"Unknown or unauthenticated connection {connection_id}")
        return connection

    # =========================================================================
    # Rooms
    # =========================================================================

    def join(self, connection_id: str, target_user_id: object) -> Optional[str]:
        """Subscribe a connection to its conversation with *target_user_id*.

        Joining is presence only: the policy is not checked and the target
        does not need to exist. Joining twice is a no-op.

        Returns:
            The conversation id, or None when the target id is malformed.
        """
        connection = self._require_connection(connection_id)
        try:
            rid = room_id(connection.user.id, target_user_id)
        except InvalidTargetError:
            logger.debug(f"[Broadcaster] Ignoring join to invalid target {target_user_id!r}")
            return None

        self.rooms.setdefault(rid, set()).add(connection_id)
        connection.rooms.add(rid)
        return rid

    def room_members(self, conversation_id: str) -> Set[str]:
        return set(self.rooms.get(conversation_id, set()))

    @asynccontextmanager
    async def _locked_room(self, conversation_id: str) -> AsyncIterator[None]:
        """Hold the conversation's lock; it is dropped once idle and unjoined."""
        lock = self._room_locks.get(conversation_id)
        if lock is None:
            lock = self._room_locks[conversation_id] = asyncio.Lock()
        self._lock_users[conversation_id] = self._lock_users.get(conversation_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[conversation_id] = self._lock_users.get(conversation_id, 1) - 1
            self._discard_idle_lock(conversation_id)

    def _discard_idle_lock(self, conversation_id: str) -> None:
        # Holders and waiters are counted in _lock_users
        if conversation_id in self.rooms or self._lock_users.get(conversation_id, 0) > 0:
            return
        self._room_locks.pop(conversation_id, None)
        self._lock_users.pop(conversation_id, None)

    # =========================================================================
    # Operations
    # =========================================================================

    async def send(self, connection_id: str, target_user_id: object, body: object) -> Message:
        """Validate, persist and broadcast a direct message.

        The message is either persisted and then broadcast to the room, or
        neither happens.

        Raises:
            InvalidMessageError: Blank/oversized body, malformed or self target.
            RecipientNotFoundError: Target is not in the directory.
            ForbiddenError: Policy refused (inactive recipient or roles).
            StorageError: The store could not persist the message.
        """
        connection = self._require_connection(connection_id)
        sender = connection.user

        if not isinstance(body, str) or not body.strip():
            raise InvalidMessageError("Message body is required")
        if len(body) > self.max_body_length:
            raise InvalidMessageError(
                f"Message body exceeds {self.max_body_length} characters"
            )
        if not is_valid_user_id(target_user_id):
            raise InvalidMessageError("Invalid target user")
        if target_user_id == sender.id:
            raise InvalidMessageError("Cannot send a message to yourself")

        recipient = self.directory.get_user(target_user_id)
        if recipient is None:
            raise RecipientNotFoundError(f"User {target_user_id} not found")

        decision = evaluate_send(sender, recipient)
        if not decision:
            if REASON_UNAVAILABLE in decision.reasons:
                raise ForbiddenError("Recipient unavailable")
            raise ForbiddenError(
                f"Role {sender.role.value} may not message role {recipient.role.value}"
            )

        rid = room_id(sender.id, recipient.id)
        async with self._locked_room(rid):
            message = self.store.append(sender.id, recipient.id, rid, body)
            logger.info(
                f"[Broadcaster] Message {message.id} (seq={message.seq}) "
                f"{sender.id} -> {recipient.id}, broadcasting to "
                f"{len(self.rooms.get(rid, ()))} connections"
            )
            await self.broadcast(message.to_event(), rid)
        return message

    async def mark_read(self, connection_id: str, conversation_id: object) -> int:
        """Mark every message addressed to the caller in a conversation read.

        Other connections in the room are told that a read happened. Calls
        for conversations the caller is not part of are ignored.

        Returns:
            Number of messages whose flag changed.
        """
        connection = self._require_connection(connection_id)
        user_id = connection.user.id
        try:
            members = participants(conversation_id)
        except InvalidTargetError:
            return 0
        if user_id not in members:
            logger.warning(
                f"[Broadcaster] {user_id} tried to mark foreign conversation {conversation_id} read"
            )
            return 0

        updated = self.store.mark_read(conversation_id, user_id)
        await self.broadcast(
            {"type": "messagesRead", "conversationId": conversation_id, "by": user_id},
            conversation_id,
            exclude=connection_id,
        )
        return updated

    # =========================================================================
    # Fan-out
    # =========================================================================

    async def broadcast(
        self, payload: dict, conversation_id: str, exclude: Optional[str] = None
    ) -> None:
        """Send *payload* to every connection joined to a room concurrently.

        Connections whose send fails are treated as gone and disconnected.
        """
        targets = [
            self.connections[cid]
            for cid in self.rooms.get(conversation_id, set())
            if cid != exclude and cid in self.connections
        ]
        if not targets:
            return

        results = await asyncio.gather(
            *[self._safe_send(conn, payload) for conn in targets],
            return_exceptions=True
        )

        failed = [conn.id for conn, ok in zip(targets, results) if ok is not True]
        self._cleanup_connections(failed)

    async def _safe_send(self, connection: Connection, payload: dict) -> bool:
        try:
            await connection.send_json(payload)
            return True
        except Exception as e:
            logger.debug(f"Failed to send to connection {connection.id}: {e}")
            return False

    def _cleanup_connections(self, connection_ids: Iterable[str]) -> None:
        for cid in connection_ids:
            if self.disconnect(cid) is not None:
                logger.debug(f"Removed dead connection {cid}")

    def reset(self) -> None:
        """Forget every connection and room (used by tests)."""
        self.connections.clear()
        self.rooms.clear()
        self._room_locks.clear()
        self._lock_users.clear()


# Global singleton instance used by all WebSocket handlers
broadcaster = ConversationBroadcaster()

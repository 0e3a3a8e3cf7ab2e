"""Synchronous read path for direct messages.

Backs the HTTP endpoints used for history backfill and the contact picker.
Nothing here touches live connections; it only reads the message store
(and writes per-user conversation preferences).
"""
import logging
from datetime import datetime, timezone
from typing import List, Optional

from portalchat.directory import User, UserDirectoryService, get_directory

from .errors import ForbiddenError, InvalidTargetError, RecipientNotFoundError
from .policy import can_read_history
from .rooms import is_valid_user_id, room_id
from .schemas import ConversationPreference, LastMessage, Message, PartnerSummary
from .store import MessageStore, get_message_store

logger = logging.getLogger(__name__)

_NEVER = datetime.min.replace(tzinfo=timezone.utc)


class HistoryService:
    """Read-side operations scoped to the calling user."""

    def __init__(
        self,
        store: Optional[MessageStore] = None,
        directory: Optional[UserDirectoryService] = None,
    ) -> None:
        self._store = store
        self._directory = directory

    @property
    def store(self) -> MessageStore:
        return self._store or get_message_store()

    @property
    def directory(self) -> UserDirectoryService:
        return self._directory or get_directory()

    def _resolve_partner(self, caller: User, other_user_id: str) -> User:
        """Look up *other_user_id* and check the pair may share history.

        Raises:
            RecipientNotFoundError: Unknown or malformed user id.
            ForbiddenError: Neither user may message the other.
        """
        other = self.directory.get_user(other_user_id) if is_valid_user_id(other_user_id) else None
        if other is None:
            raise RecipientNotFoundError(f"User {other_user_id} not found")
        if not can_read_history(caller, other):
            raise ForbiddenError("Forbidden")
        return other

    def get_history(self, caller: User, other_user_id: str) -> List[Message]:
        """Every message between the caller and another user, oldest first."""
        other = self._resolve_partner(caller, other_user_id)
        return self.store.list_conversation(room_id(caller.id, other.id))

    def list_partners(self, caller: User) -> List[PartnerSummary]:
        """Active users the caller can talk to in either direction.

        Conversations the caller hid are left out until a newer message
        arrives. Pinned conversations come first, then the most recently
        active ones.
        """
        partners: List[PartnerSummary] = []
        for user in self.directory.list_users(exclude_id=caller.id):
            if not user.active or not can_read_history(caller, user):
                continue

            try:
                rid = room_id(caller.id, user.id)
            except InvalidTargetError:
                logger.warning(f"[History] Skipping partner with non-canonical id {user.id!r}")
                continue
            last = self.store.last_message(rid)
            pref = self.store.get_preference(rid, caller.id)
            if pref.hides(last):
                continue

            partners.append(PartnerSummary(
                **user.summary().model_dump(),
                pinned=pref.pinned,
                lastMessage=LastMessage(
                    body=last.body,
                    senderId=last.senderId,
                    createdAt=last.createdAt,
                ) if last else None,
            ))

        partners.sort(key=lambda p: p.name)
        partners.sort(
            key=lambda p: p.lastMessage.createdAt if p.lastMessage else _NEVER,
            reverse=True,
        )
        partners.sort(key=lambda p: not p.pinned)
        return partners

    def toggle_pin(self, caller: User, other_user_id: str) -> bool:
        """Flip the caller's pin on a conversation.

        Returns:
            The new pinned state.
        """
        other = self._resolve_partner(caller, other_user_id)
        rid = room_id(caller.id, other.id)
        pinned = not self.store.get_preference(rid, caller.id).pinned
        self.store.set_pinned(rid, caller.id, pinned)
        logger.info(f"[History] {caller.id} {'pinned' if pinned else 'unpinned'} {rid}")
        return pinned

    def hide_conversation(self, caller: User, other_user_id: str) -> ConversationPreference:
        """Hide a conversation from the caller's partner list.

        Messages are kept; the conversation shows up again on the next message.
        """
        other = self._resolve_partner(caller, other_user_id)
        rid = room_id(caller.id, other.id)
        logger.info(f"[History] {caller.id} hid {rid}")
        return self.store.set_hidden(rid, caller.id)

    def unread_count(self, caller: User) -> int:
        return self.store.unread_count(caller.id)


# Global singleton instance used by the HTTP endpoints
history_service = HistoryService()

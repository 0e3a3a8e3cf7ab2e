"""Pydantic schemas for direct messaging.

Field names are camelCase because these models are sent as-is to the
browser clients over the WebSocket and the HTTP read path.
"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from portalchat.directory import UserSummary


class Message(BaseModel):
    """A persisted direct message.

    Attributes:
        id: Server-assigned message id (UUID).
        senderId: User who sent the message.
        recipientId: User the message is addressed to.
        conversationId: Room id derived from the two user ids.
        body: Message text, never blank.
        createdAt: Server timestamp, timezone-aware UTC, non-decreasing per store.
        read: Set once the recipient marks the conversation read.
        seq: Store-assigned position; the authoritative order.
    """
    id: str = Field(..., description="Message ID")
    senderId: str = Field(..., description="Sender user ID")
    recipientId: str = Field(..., description="Recipient user ID")
    conversationId: str = Field(..., description="Conversation (room) ID")
    body: str = Field(..., min_length=1, description="Message text")
    createdAt: datetime = Field(..., description="Creation time (UTC)")
    read: bool = Field(default=False, description="Read by recipient")
    seq: int = Field(..., description="Store order position")

    def to_event(self) -> dict:
        """Payload of the ``newMessage`` broadcast."""
        return {"type": "newMessage", **self.model_dump(mode="json")}


class LastMessage(BaseModel):
    body: str
    senderId: str
    createdAt: datetime


class PartnerSummary(UserSummary):
    """A user the caller can talk to, with conversation metadata."""
    pinned: bool = Field(default=False, description="Pinned by the caller")
    lastMessage: Optional[LastMessage] = Field(
        default=None, description="Most recent message in the conversation"
    )


class ConversationPreference(BaseModel):
    """Per-user pin/hide state for a conversation."""
    conversationId: str
    userId: str
    pinned: bool = False
    hiddenAt: Optional[datetime] = None
    hiddenThroughSeq: Optional[int] = None

    def hides(self, last_message: Optional[Message]) -> bool:
        """Whether the conversation is hidden given its latest message."""
        if self.hiddenThroughSeq is None:
            return False
        return last_message is None or last_message.seq <= self.hiddenThroughSeq

"""Messaging router providing WebSocket and HTTP endpoints.

This module provides:
    - WebSocket /ws/messages: Real-time direct messaging
    - GET /messages: Contact picker (users the caller can talk to)
    - GET /messages/unread-count: Unread messages addressed to the caller
    - GET /messages/{other_user_id}: Conversation history
    - POST /messages/{other_user_id}/pin: Toggle pin on a conversation
    - POST /messages/{other_user_id}/hide: Hide a conversation

The WebSocket protocol:
    - Connect with ?token=<jwt> (or an Authorization header). Bad tokens
      are rejected during the handshake.
    - Server sends: {type: "connected", user: {...}}
    - join:     {type: "join", targetUserId}
                → {type: "joined", conversationId} (nothing if target invalid)
    - send:     {type: "send", targetUserId, body, requestId?}
                → room gets {type: "newMessage", ...message}
                → caller gets {type: "sendResult", requestId, success, message | error}
    - markRead: {type: "markRead", conversationId}
                → other room members get {type: "messagesRead", conversationId, by}
"""
import json
import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect
from pydantic import BaseModel

from portalchat.auth.dependencies import get_current_user
from portalchat.auth.service import get_token_service
from portalchat.config import get_config
from portalchat.directory import User, get_directory

from .broadcaster import broadcaster
from .errors import ErrorCode, MessagingError
from .gateway import ConnectionGateway
from .history import history_service
from .schemas import Message, PartnerSummary

logger = logging.getLogger(__name__)

router = APIRouter(tags=["messages"])


# =============================================================================
# Response Models
# =============================================================================


class UnreadCountResponse(BaseModel):
    count: int


class PinResponse(BaseModel):
    success: bool
    pinned: bool


class HideResponse(BaseModel):
    success: bool
    hidden: bool


def _http_error(exc: MessagingError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.detail)


# =============================================================================
# HTTP read path
# =============================================================================


@router.get("/messages", response_model=List[PartnerSummary])
async def list_partners(current_user: User = Depends(get_current_user)) -> List[PartnerSummary]:
    """List users the caller may message or be messaged by."""
    try:
        return history_service.list_partners(current_user)
    except MessagingError as exc:
        raise _http_error(exc)


@router.get("/messages/unread-count", response_model=UnreadCountResponse)
async def unread_count(current_user: User = Depends(get_current_user)) -> UnreadCountResponse:
    try:
        return UnreadCountResponse(count=history_service.unread_count(current_user))
    except MessagingError as exc:
        raise _http_error(exc)


@router.get("/messages/{other_user_id}", response_model=List[Message])
async def get_history(
    other_user_id: str,
    current_user: User = Depends(get_current_user),
) -> List[Message]:
    """Return the full conversation with another user, oldest first.

    Returns:
        200 with the ordered messages, 403 if neither user may message
        the other, 404 if the other user does not exist.
    """
    try:
        return history_service.get_history(current_user, other_user_id)
    except MessagingError as exc:
        raise _http_error(exc)


@router.post("/messages/{other_user_id}/pin", response_model=PinResponse)
async def toggle_pin(
    other_user_id: str,
    current_user: User = Depends(get_current_user),
) -> PinResponse:
    try:
        pinned = history_service.toggle_pin(current_user, other_user_id)
    except MessagingError as exc:
        raise _http_error(exc)
    return PinResponse(success=True, pinned=pinned)


@router.post("/messages/{other_user_id}/hide", response_model=HideResponse)
async def hide_conversation(
    other_user_id: str,
    current_user: User = Depends(get_current_user),
) -> HideResponse:
    try:
        history_service.hide_conversation(current_user, other_user_id)
    except MessagingError as exc:
        raise _http_error(exc)
    return HideResponse(success=True, hidden=True)


# =============================================================================
# WebSocket live channel
# =============================================================================


def _error_frame(detail: str) -> dict:
    return {"type": "error", "error": ErrorCode.INVALID_MESSAGE.value, "detail": detail}


@router.websocket("/ws/messages")
async def messages_websocket(websocket: WebSocket) -> None:
    """WebSocket endpoint for live direct messaging.

    Args:
        websocket: The WebSocket connection (not yet accepted).
    """
    gateway = ConnectionGateway(
        token_service=get_token_service(),
        directory=get_directory(),
        max_connections_per_user=get_config().messaging.max_connections_per_user,
        count_for_user=broadcaster.connection_count_for_user,
        register=broadcaster.register,
        unregister=broadcaster.disconnect,
    )
    connection = await gateway.authenticate(websocket)
    if connection is None:
        return

    user = connection.user

    try:
        await websocket.send_json({
            "type": "connected",
            "user": user.summary().model_dump(mode="json"),
        })

        while True:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(frame.get("code", 1000))
            raw = frame.get("text")
            if raw is None:
                await websocket.send_json(_error_frame("Binary frames are not supported"))
                continue
            try:
                data = json.loads(raw)
            except ValueError:
                await websocket.send_json(_error_frame("Frame is not valid JSON"))
                continue
            if not isinstance(data, dict):
                await websocket.send_json(_error_frame("Frame must be a JSON object"))
                continue

            event = data.get("type")
            logger.debug("[WS] %s received: type=%s", connection.id, event)

            # --- JOIN: subscribe to the conversation with targetUserId ---
            if event == "join":
                rid = broadcaster.join(connection.id, data.get("targetUserId"))
                if rid is not None:
                    await websocket.send_json({"type": "joined", "conversationId": rid})
                continue

            # --- SEND: persist, broadcast, acknowledge ---
            if event == "send":
                request_id = data.get("requestId")
                try:
                    message = await broadcaster.send(
                        connection.id, data.get("targetUserId"), data.get("body")
                    )
                except MessagingError as exc:
                    logger.info(
                        f"[WS] send by {user.id} failed: {exc.code.value} ({exc.detail})"
                    )
                    await websocket.send_json({
                        "type": "sendResult",
                        "requestId": request_id,
                        "success": False,
                        "error": exc.code.value,
                        "detail": exc.detail,
                    })
                    continue

                await websocket.send_json({
                    "type": "sendResult",
                    "requestId": request_id,
                    "success": True,
                    "message": message.model_dump(mode="json"),
                })
                continue

            # --- MARK READ: flag caller's incoming messages as read ---
            if event == "markRead":
                try:
                    await broadcaster.mark_read(connection.id, data.get("conversationId"))
                except MessagingError as exc:
                    await websocket.send_json({
                        "type": "error",
                        "error": exc.code.value,
                        "detail": exc.detail,
                    })
                continue

            await websocket.send_json(_error_frame(f"Unknown event type: {event!r}"))

    except WebSocketDisconnect:
        logger.info(f"[WS] {connection.id} ({user.id}) disconnected")
    finally:
        broadcaster.disconnect(connection.id)

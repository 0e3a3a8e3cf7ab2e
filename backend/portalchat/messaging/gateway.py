"""Connection gateway for the messaging WebSocket.

Every WebSocket is authenticated before it is accepted. The bearer token is
read from the ``token`` query parameter (browser clients cannot set headers
on a WebSocket) or, failing that, from an ``Authorization: Bearer`` header.

    UNAUTHENTICATED -> AUTHENTICATING -> AUTHENTICATED
                                      -> REJECTED (terminal)

A rejected socket is closed with 1008 (policy violation) without ever being
accepted, so the client sees the handshake fail and no events are read.
"""
import logging
import uuid
from enum import Enum
from typing import Any, Callable, Optional, Set

from fastapi import WebSocket, status

from portalchat.auth.service import AuthenticationFailure, TokenService
from portalchat.directory import User, UserDirectoryService

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    REJECTED = "rejected"


class Connection:
    """A live WebSocket plus the identity attached to it.

    Attributes:
        id: Server-generated connection id.
        websocket: Underlying socket.
        state: Authentication state.
        user: Authenticated user (None until AUTHENTICATED).
        rooms: Conversation ids this connection has joined.
    """

    def __init__(self, websocket: WebSocket, connection_id: Optional[str] = None) -> None:
        self.id = connection_id or str(uuid.uuid4())
        self.websocket = websocket
        self.state = ConnectionState.UNAUTHENTICATED
        self.user: Optional[User] = None
        self.rooms: Set[str] = set()

    @property
    def is_authenticated(self) -> bool:
        return self.state == ConnectionState.AUTHENTICATED and self.user is not None

    async def send_json(self, payload: dict) -> None:
        await self.websocket.send_json(payload)

    def __repr__(self) -> str:
        user_id = self.user.id if self.user else None
        return f"Connection(id={self.id!r}, user={user_id!r}, state={self.state.value})"


def extract_token(websocket: WebSocket) -> Optional[str]:
    """Return the bearer token offered by a WebSocket handshake, if any."""
    token = websocket.query_params.get("token")
    if token:
        return token

    auth_header = websocket.headers.get("authorization", "")
    if auth_header.lower().startswith("bearer "):
        token = auth_header.split(" ", 1)[1].strip()
        if token:
            return token

    return None


class ConnectionGateway:
    """Authenticates WebSocket handshakes (fail-closed)."""

    def __init__(
        self,
        token_service: TokenService,
        directory: UserDirectoryService,
        max_connections_per_user: int = 0,
        count_for_user: Optional[Callable[[str], int]] = None,
        register: Optional[Callable[[Connection], None]] = None,
        unregister: Optional[Callable[[str], Any]] = None,
    ) -> None:
        self.token_service = token_service
        self.directory = directory
        self.max_connections_per_user = max_connections_per_user
        self.count_for_user = count_for_user
        self.register = register
        self.unregister = unregister

    def _check_capacity(self, user: User) -> None:
        if self.max_connections_per_user <= 0 or self.count_for_user is None:
            return
        if self.count_for_user(user.id) >= self.max_connections_per_user:
            raise AuthenticationFailure(
                "too_many_connections",
                f"User {user.id} already has {self.max_connections_per_user} connections",
            )

    async def authenticate(self, websocket: WebSocket) -> Optional[Connection]:
        """Authenticate and accept *websocket*.

        The connection is passed to ``register`` before the socket is
        accepted, with no await between the capacity check and the
        registration, so concurrent handshakes cannot both take the last
        slot.

        Returns:
            An AUTHENTICATED Connection, or None if the handshake was
            rejected (the socket is already closed in that case).
        """
        connection = Connection(websocket)
        connection.state = ConnectionState.AUTHENTICATING

        try:
            user = self.token_service.authenticate(extract_token(websocket), self.directory)
            self._check_capacity(user)
        except AuthenticationFailure as exc:
            connection.state = ConnectionState.REJECTED
            logger.warning("[Gateway] Rejected connection %s: %s", connection.id, exc.reason)
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=exc.reason)
            return None

        connection.user = user
        connection.state = ConnectionState.AUTHENTICATED
        if self.register is not None:
            self.register(connection)

        try:
            await websocket.accept()
        except Exception:
            if self.unregister is not None:
                self.unregister(connection.id)
            raise

        logger.info(
            "[Gateway] Connection %s authenticated as %s (%s)",
            connection.id, user.id, user.role.value,
        )
        return connection

"""Conversation (room) id derivation.

A conversation between two users is identified by their ids, sorted and
joined with ``:``. Canonical user ids only use letters, digits and hyphens,
so the separator can never appear inside an id and distinct pairs never
produce the same room id.
"""
import re
from typing import Tuple

from portalchat.directory.schemas import USER_ID_PATTERN as _USER_ID_REGEX

from .errors import InvalidTargetError

ROOM_SEPARATOR = ":"

USER_ID_PATTERN = re.compile(_USER_ID_REGEX)


def is_valid_user_id(value: object) -> bool:
    return isinstance(value, str) and USER_ID_PATTERN.fullmatch(value) is not None


def _require_user_id(value: object) -> str:
    if not is_valid_user_id(value):
        raise InvalidTargetError(f"Malformed user id: {value!r}")
    return value  # type: ignore[return-value]


def room_id(user_a: str, user_b: str) -> str:
    """Return the conversation id for an unordered pair of user ids.

    Raises:
        InvalidTargetError: If either id is not in canonical form.
    """
    a = _require_user_id(user_a)
    b = _require_user_id(user_b)
    first, second = sorted((a, b))
    return f"{first}{ROOM_SEPARATOR}{second}"


def participants(conversation_id: str) -> Tuple[str, str]:
    """Split a conversation id back into its two user ids."""
    if not isinstance(conversation_id, str):
        raise InvalidTargetError(f"Malformed conversation id: {conversation_id!r}")
    parts = conversation_id.split(ROOM_SEPARATOR)
    if len(parts) != 2 or not all(is_valid_user_id(p) for p in parts):
        raise InvalidTargetError(f"Malformed conversation id: {conversation_id!r}")
    if parts[0] > parts[1]:
        raise InvalidTargetError(f"Non-canonical conversation id: {conversation_id!r}")
    return parts[0], parts[1]

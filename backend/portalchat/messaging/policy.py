"""Role-based communication policy.

Decides whether one portal user may open a direct message to another.
The rules are directional:

    student / alumni -> student, alumni, coordinator
    coordinator      -> student, alumni, admin
    admin            -> coordinator

Reading a conversation's history only needs one of the two directions to be
allowed, so read access is deliberately broader than send access.

An inactive recipient is unreachable whatever the roles; that check runs
before the role table.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import FrozenSet, List, Mapping

from portalchat.directory import User, UserRole

ALLOWED_RECIPIENTS: Mapping[UserRole, FrozenSet[UserRole]] = MappingProxyType({
    UserRole.STUDENT: frozenset({UserRole.STUDENT, UserRole.ALUMNI, UserRole.COORDINATOR}),
    UserRole.ALUMNI: frozenset({UserRole.STUDENT, UserRole.ALUMNI, UserRole.COORDINATOR}),
    UserRole.COORDINATOR: frozenset({UserRole.STUDENT, UserRole.ALUMNI, UserRole.ADMIN}),
    UserRole.ADMIN: frozenset({UserRole.COORDINATOR}),
})

REASON_SELF = "self_target"
REASON_UNAVAILABLE = "recipient_unavailable"
REASON_ROLE = "role_not_permitted"


@dataclass
class PolicyResult:
    """Result of a policy evaluation.

    Attributes:
        allowed: Whether the send is allowed
        reasons: Why it was refused (empty if allowed)
    """
    allowed: bool
    reasons: List[str] = field(default_factory=list)

    def __bool__(self) -> bool:
        return self.allowed


def roles_permit(sender_role: UserRole, recipient_role: UserRole) -> bool:
    """Role table lookup only, ignoring identity and active flags."""
    return recipient_role in ALLOWED_RECIPIENTS.get(sender_role, frozenset())


def evaluate_send(sender: User, recipient: User) -> PolicyResult:
    if sender.id == recipient.id:
        return PolicyResult(allowed=False, reasons=[REASON_SELF])
    if not recipient.active:
        return PolicyResult(allowed=False, reasons=[REASON_UNAVAILABLE])
    if not roles_permit(sender.role, recipient.role):
        return PolicyResult(
            allowed=False,
            reasons=[REASON_ROLE, f"{sender.role.value} -> {recipient.role.value}"],
        )
    return PolicyResult(allowed=True)


def can_send(sender: User, recipient: User) -> bool:
    return evaluate_send(sender, recipient).allowed


def can_read_history(caller: User, other: User) -> bool:
    if caller.id == other.id:
        return False
    return roles_permit(caller.role, other.role) or roles_permit(other.role, caller.role)

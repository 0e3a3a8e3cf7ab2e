"""Pydantic schemas for portal users.

Users are owned by the portal's account system; messaging only reads them
to authorize and address conversations.
"""
from enum import Enum

from pydantic import BaseModel, Field

# Canonical user id: letters, digits and hyphens. Room ids join two of these
# with ":", so the separator can never occur inside an id.
USER_ID_PATTERN = r"^[A-Za-z0-9-]{1,64}$"


class UserRole(str, Enum):
    """Portal role of a user.

    Attributes:
        ADMIN: Portal administrator.
        COORDINATOR: Department coordinator (staff).
        STUDENT: Enrolled student.
        ALUMNI: Graduate.
    """
    ADMIN = "admin"
    COORDINATOR = "coordinator"
    STUDENT = "student"
    ALUMNI = "alumni"


class UserSummary(BaseModel):
    """Public view of a user, used in contact lists and on connect."""
    id: str = Field(..., description="User ID")
    name: str = Field(..., description="Display name")
    role: UserRole = Field(..., description="Portal role")
    department: str = Field(..., description="Department name")


class User(BaseModel):
    """A portal user as resolved by the directory.

    Attributes:
        id: Canonical user id (letters, digits and hyphens).
        name: Display name.
        email: Login email, may be empty.
        role: Portal role; fixed for the lifetime of a connection.
        department: Department the user belongs to.
        active: Inactive users cannot receive messages.
    """
    id: str = Field(..., pattern=USER_ID_PATTERN, description="User ID")
    name: str = Field(..., description="Display name")
    email: str = Field(default="", description="Login email")
    role: UserRole = Field(..., description="Portal role")
    department: str = Field(default="", description="Department name")
    active: bool = Field(default=True, description="Whether the account is active")

    def summary(self) -> UserSummary:
        return UserSummary(
            id=self.id,
            name=self.name,
            role=self.role,
            department=self.department,
        )

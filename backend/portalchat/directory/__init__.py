"""User directory: read-only view of portal accounts used by messaging."""

from .schemas import User, UserRole, UserSummary
from .service import UserDirectoryService, get_directory

__all__ = [
    "User",
    "UserRole",
    "UserSummary",
    "UserDirectoryService",
    "get_directory",
]

from .user import Role, User
from .session import UserSession

__all__ = [
    "Role",
    "User",
    "UserSession",
]

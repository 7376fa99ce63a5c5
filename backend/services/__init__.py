"""Services package."""

from .session_sweeper import SessionSweeper
from .user_admin import (
    SyncResult,
    UserChanges,
    UserNotFoundError,
    apply_role,
    approve_user,
    get_user,
    list_users,
    reject_user,
    sync_users_from_directory,
    update_user,
    update_user_role,
    update_user_status,
)

__all__ = [
    "SessionSweeper",
    "SyncResult",
    "UserChanges",
    "UserNotFoundError",
    "apply_role",
    "approve_user",
    "get_user",
    "list_users",
    "reject_user",
    "sync_users_from_directory",
    "update_user",
    "update_user_role",
    "update_user_status",
]

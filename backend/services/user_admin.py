"""
Administrative user management.

Handles:
- Listing and fetching users
- Role assignment (any real role implies approval and activation)
- Activation / deactivation
- Approval and rejection (rejection never deletes the user)
- Store and department assignment
- Directory sync (upsert every tenant user by email)
"""

import json
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from models import Role, User

logger = logging.getLogger(__name__)


class UserNotFoundError(LookupError):
    """No user with the requested id."""


@dataclass
class UserChanges:
    """Partial update applied by :func:`update_user`. ``None`` means unchanged."""
    role: Optional[Role] = None
    display_name: Optional[str] = None
    is_approved: Optional[bool] = None
    is_active: Optional[bool] = None
    assigned_stores: Optional[list] = None
    assigned_department: Optional[str] = None


async def list_users(db: AsyncSession) -> list[User]:
    result = await db.execute(select(User).order_by(User.created_at.desc(), User.id.desc()))
    return list(result.scalars().all())


async def get_user(db: AsyncSession, user_id: int) -> User:
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if user is None:
        raise UserNotFoundError(user_id)
    return user


def apply_role(user: User, role) -> None:
    """
    Set ``user.role``. A non-Pending role also sets approved and active,
    regardless of their previous values; Pending clears approval only.
    """
    role = Role.parse(role)
    user.role = role.value
    if role is Role.PENDING:
        user.is_approved = False
    else:
        user.is_approved = True
        user.is_active = True


async def update_user(db: AsyncSession, user_id: int, changes: UserChanges) -> User:
    """
    Apply a partial update. The role rule is applied last, so a non-Pending
    role always leaves the user approved and active.
    """
    user = await get_user(db, user_id)

    if changes.display_name is not None:
        user.display_name = changes.display_name
    if changes.is_approved is not None:
        user.is_approved = changes.is_approved
    if changes.is_active is not None:
        user.is_active = changes.is_active
    if changes.role is not None:
        apply_role(user, changes.role)
    if changes.assigned_stores is not None:
        user.assigned_stores = json.dumps(changes.assigned_stores)
    if changes.assigned_department is not None:
        user.assigned_department = changes.assigned_department

    await db.commit()
    await db.refresh(user)
    return user


async def update_user_role(db: AsyncSession, user_id: int, role) -> User:
    user = await get_user(db, user_id)
    apply_role(user, role)
    await db.commit()
    await db.refresh(user)
    logger.info(f"User {user_id} role set to {user.role}")
    return user


async def update_user_status(db: AsyncSession, user_id: int, is_active: bool) -> User:
    """Activate or deactivate. Deactivation invalidates the user's live sessions."""
    user = await get_user(db, user_id)
    user.is_active = is_active
    await db.commit()
    await db.refresh(user)
    logger.info(f"User {user_id} {'activated' if is_active else 'deactivated'}")
    return user


async def approve_user(db: AsyncSession, user_id: int, role=Role.AUDITOR) -> User:
    """Approve a pending user, assigning ``role`` (Auditor unless given)."""
    role = Role.parse(role)
    if role is Role.PENDING:
        raise ValueError("Approval requires a non-Pending role")
    return await update_user_role(db, user_id, role)


async def reject_user(db: AsyncSession, user_id: int) -> User:
    user = await get_user(db, user_id)
    user.is_approved = False
    user.is_active = False
    await db.commit()
    await db.refresh(user)
    logger.info(f"User {user_id} rejected")
    return user


@dataclass
class SyncResult:
    new_users: int = 0
    updated_users: int = 0


async def sync_users_from_directory(db: AsyncSession, directory_users) -> SyncResult:
    """
    Upsert directory entries into the user table by email.

    Existing users get their display name and directory id refreshed; role,
    approval and activation are left alone. Unknown emails are added as
    ``Pending``, active and unapproved. Entries with neither ``mail`` nor
    ``userPrincipalName`` are skipped.
    """
    result = SyncResult()
    existing = {u.email: u for u in (await db.execute(select(User))).scalars().all()}

    for entry in directory_users:
        email = entry.email
        if not email:
            continue
        display_name = entry.display_name or email.split("@")[0]

        user = existing.get(email)
        if user is None:
            user = User(
                external_id=entry.external_id,
                email=email,
                display_name=display_name,
                role=Role.PENDING.value,
                is_active=True,
                is_approved=False,
            )
            db.add(user)
            existing[email] = user
            result.new_users += 1
        else:
            user.display_name = display_name
            user.external_id = entry.external_id
            result.updated_users += 1

    await db.commit()
    logger.info(
        f"Directory sync: {result.new_users} new, {result.updated_users} updated"
    )
    return result

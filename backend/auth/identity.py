"""Map a directory profile onto a local :class:`User` record."""

import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from models import Role, User
from utils.clock import utcnow

from .oauth_service import UserProfile

logger = logging.getLogger(__name__)


async def check_or_create_user(db: AsyncSession, profile: UserProfile) -> User:
    """
    Find the user by email and refresh it, or create it as ``Pending``.

    Existing users get their directory fields and ``last_login_at`` updated;
    role, approval and activation are left alone. New users start with
    ``role=Pending``, ``is_active=True`` and ``is_approved=False``.

    Email uniqueness is enforced by the database. If a concurrent login for
    the same new email wins the insert, the losing side falls back to
    updating the row the winner created.
    """
    user = await _find_by_email(db, profile.email)
    if user is None:
        user = User(
            external_id=profile.external_id,
            email=profile.email,
            display_name=profile.display_name,
            photo_url=profile.photo_url,
            job_title=profile.job_title,
            department=profile.department,
            role=Role.PENDING.value,
            is_active=True,
            is_approved=False,
            last_login_at=utcnow(),
        )
        db.add(user)
        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            logger.info(f"Concurrent first login for {profile.email}, reusing existing row")
            user = await _find_by_email(db, profile.email)
            if user is None:
                raise
        else:
            await db.refresh(user)
            logger.info(f"New user {profile.email} created with role {Role.PENDING.value}")
            return user

    user.external_id = profile.external_id
    user.display_name = profile.display_name
    user.photo_url = profile.photo_url
    user.job_title = profile.job_title
    user.department = profile.department
    user.last_login_at = utcnow()
    await db.commit()
    await db.refresh(user)
    return user


async def _find_by_email(db: AsyncSession, email: str):
    result = await db.execute(select(User).where(User.email == email))
    return result.scalar_one_or_none()

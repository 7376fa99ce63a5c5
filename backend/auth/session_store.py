"""
Server-side session store.

Owns the whole session token lifecycle: creation, lookup with expiry and
active-user checks, activity refresh, deletion and the periodic sweep of
expired rows. Every operation opens its own database session from the
injected factory, so a best-effort ``touch`` can run outside the request's
own unit of work.
"""

import logging
import re
import secrets
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import contains_eager

from config import settings
from database import AsyncSessionLocal
from models import User, UserSession
from utils.clock import utcnow

from .errors import CollisionError, MalformedTokenError, SessionLookupError

logger = logging.getLogger(__name__)

TOKEN_BYTES = 32
TOKEN_PATTERN = re.compile(r"^[0-9a-f]{64}$")


def generate_session_token() -> str:
    """32 random bytes, hex-encoded (64 lowercase hex characters)."""
    return secrets.token_hex(TOKEN_BYTES)


def is_valid_token_format(token) -> bool:
    return isinstance(token, str) and TOKEN_PATTERN.fullmatch(token) is not None


def ensure_token_format(token) -> str:
    """
    Return ``token`` unchanged if it matches the generated format.

    Raises:
        MalformedTokenError: otherwise.
    """
    if not is_valid_token_format(token):
        raise MalformedTokenError("Session token does not match the expected format")
    return token


class SessionStore:
    """
    Database-backed session store.

    Args:
        session_factory: ``async_sessionmaker`` bound to the application engine.
        ttl: Session lifetime (defaults to ``SESSION_TTL_HOURS``).
        clock: Callable returning the current naive-UTC time.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        ttl: Optional[timedelta] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.ttl = ttl if ttl is not None else timedelta(hours=settings.SESSION_TTL_HOURS)
        self.clock = clock

    async def create(
        self,
        user_id: int,
        access_token: Optional[str],
        refresh_token: Optional[str] = None,
    ) -> UserSession:
        """
        Create a session for ``user_id`` expiring ``ttl`` from now.

        Raises:
            CollisionError: if the generated token already exists.
            SessionLookupError: if the store is unavailable.
        """
        now = self.clock()
        record = UserSession(
            token=generate_session_token(),
            user_id=user_id,
            access_token=access_token,
            refresh_token=refresh_token,
            created_at=now,
            expires_at=now + self.ttl,
            last_activity=now,
        )
        async with self.session_factory() as db:
            db.add(record)
            try:
                await db.commit()
            except IntegrityError as exc:
                await db.rollback()
                raise CollisionError("Generated session token already exists") from exc
            except SQLAlchemyError as exc:
                await db.rollback()
                raise SessionLookupError(f"Could not create session: {exc}") from exc
            await db.refresh(record)

        hours = self.ttl.total_seconds() / 3600
        logger.info(f"Session created for user {user_id}, expires in {hours:g} hours")
        return record

    async def lookup(self, token) -> Optional[UserSession]:
        """
        Return the live session for ``token`` with its ``user`` loaded.

        Returns ``None`` for malformed tokens (without touching storage), for
        unknown tokens, for expired sessions and for deactivated users; the
        caller cannot tell these apart.

        Raises:
            SessionLookupError: if the store is unavailable.
        """
        if not is_valid_token_format(token):
            return None

        now = self.clock()
        stmt = (
            select(UserSession)
            .join(UserSession.user)
            .options(contains_eager(UserSession.user))
            .where(
                UserSession.token == token,
                UserSession.expires_at > now,
                User.is_active.is_(True),
            )
        )
        try:
            async with self.session_factory() as db:
                result = await db.execute(stmt)
                return result.scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise SessionLookupError(f"Session lookup failed: {exc}") from exc

    async def touch(self, token: str) -> None:
        """Refresh ``last_activity``. Best-effort: failures are only logged."""
        try:
            async with self.session_factory() as db:
                await db.execute(
                    update(UserSession)
                    .where(UserSession.token == token)
                    .values(last_activity=self.clock())
                )
                await db.commit()
        except Exception:
            logger.warning("Failed to update session activity", exc_info=True)

    async def destroy(self, token) -> None:
        """Delete the session. Deleting an unknown token is not an error."""
        if not is_valid_token_format(token):
            return
        try:
            async with self.session_factory() as db:
                await db.execute(delete(UserSession).where(UserSession.token == token))
                await db.commit()
        except SQLAlchemyError as exc:
            raise SessionLookupError(f"Session delete failed: {exc}") from exc
        logger.info("Session deleted")

    async def sweep(self) -> int:
        """Delete every session whose expiry is at or before now. Returns the count."""
        now = self.clock()
        try:
            async with self.session_factory() as db:
                result = await db.execute(
                    delete(UserSession).where(UserSession.expires_at <= now)
                )
                await db.commit()
        except SQLAlchemyError as exc:
            raise SessionLookupError(f"Session sweep failed: {exc}") from exc

        count = result.rowcount or 0
        if count > 0:
            logger.info(f"Cleaned up {count} expired session(s)")
        return count


def get_session_store() -> SessionStore:
    """Dependency returning the application's session store."""
    return _default_store


_default_store = SessionStore(AsyncSessionLocal)

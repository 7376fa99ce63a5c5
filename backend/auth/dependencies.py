"""
FastAPI dependencies for session authentication and role-based access control.

Usage in routers::

    from auth.dependencies import Principal, require_authenticated, require_role
    from models import Role

    @router.get("/reports")
    async def reports(principal: Principal = Depends(require_role(Role.ADMIN, Role.AUDITOR))):
        ...

    @router.get("/profile")
    async def profile(principal: Principal = Depends(require_authenticated)):
        ...
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Sequence

from fastapi import BackgroundTasks, Depends, Request

from config import settings
from models import Role, UserSession
from utils.audit import audit

from .errors import (
    AccessDeniedError,
    ConfigurationError,
    MalformedTokenError,
    NotAuthenticatedError,
)
from .roles import parse_allowed_roles
from .session_store import SessionStore, ensure_token_format, get_session_store

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Principal:
    """The authenticated identity handed to route handlers."""

    id: int
    external_id: Optional[str]
    email: str
    display_name: Optional[str]
    role: Role
    is_active: bool
    is_approved: bool
    session_token: str
    access_token: Optional[str] = field(default=None, repr=False)
    photo_url: Optional[str] = None
    job_title: Optional[str] = None
    department: Optional[str] = None
    assigned_stores: list = field(default_factory=list)
    assigned_department: Optional[str] = None
    session_created_at: Optional[datetime] = None
    session_expires_at: Optional[datetime] = None
    last_activity: Optional[datetime] = None

    @classmethod
    def from_session(cls, session: UserSession) -> "Principal":
        """
        Build a principal from a live session with its user loaded.

        Raises:
            UnknownRoleError: if the stored role is not a known role.
        """
        user = session.user
        return cls(
            id=user.id,
            external_id=user.external_id,
            email=user.email,
            display_name=user.display_name,
            role=Role.parse(user.role),
            is_active=user.is_active,
            is_approved=user.is_approved,
            session_token=session.token,
            access_token=session.access_token,
            photo_url=user.photo_url,
            job_title=user.job_title,
            department=user.department,
            assigned_stores=user.store_list,
            assigned_department=user.assigned_department,
            session_created_at=session.created_at,
            session_expires_at=session.expires_at,
            last_activity=session.last_activity,
        )


async def require_authenticated(
    request: Request,
    background_tasks: BackgroundTasks,
    store: SessionStore = Depends(get_session_store),
) -> Principal:
    """
    Resolve the session cookie to a :class:`Principal`.

    The activity refresh is scheduled as a background task, so its outcome
    never affects the response.

    Raises:
        NotAuthenticatedError: no cookie, malformed cookie, or no live session.
        SessionLookupError: the session store is unavailable.
    """
    token = request.cookies.get(settings.SESSION_COOKIE_NAME)
    if not token:
        logger.debug("No session token found")
        raise NotAuthenticatedError("no_token")

    try:
        ensure_token_format(token)
    except MalformedTokenError:
        logger.debug("Invalid session token format")
        raise NotAuthenticatedError("malformed_token")

    session = await store.lookup(token)
    if session is None:
        logger.debug("Session not found or expired")
        raise NotAuthenticatedError("session_not_found")

    principal = Principal.from_session(session)
    background_tasks.add_task(store.touch, token)
    audit.set_actor(f"user:{principal.id}")

    logger.debug(f"Authenticated: {principal.email} ({principal.role.value})")
    return principal


def check_role(
    principal: Optional[Principal],
    allowed_roles: Sequence[Role],
    path: str = "",
) -> Principal:
    """
    Exact-match authorization decision. There is no role hierarchy: ``Admin``
    is not implied by an ``Auditor``-only allow-list.

    Raises:
        ConfigurationError: if no principal was resolved first.
        AccessDeniedError: if the principal's role is not in ``allowed_roles``.
    """
    if principal is None:
        logger.error("Role check reached without an authenticated principal")
        raise ConfigurationError("Server configuration error")

    if principal.role in allowed_roles:
        logger.debug(f"Authorized: {principal.email} has role {principal.role.value}")
        return principal

    required = [role.value for role in allowed_roles]
    logger.info(
        f"Access denied: {principal.email} ({principal.role.value}) tried to access "
        f"{path or 'a protected route'}, required: {', '.join(required)}"
    )
    raise AccessDeniedError(principal.role.value, required)


def require_role(*allowed_roles):
    """
    Dependency factory for role-based access control.

    The allow-list is validated immediately, so a typo in a role name fails
    at import time instead of silently denying every request.

    Usage::

        @router.get("/admin/users")
        async def list_users(principal: Principal = Depends(require_role(Role.ADMIN))):
            ...
    """
    roles = parse_allowed_roles(allowed_roles)

    async def _check_role(
        request: Request,
        principal: Principal = Depends(require_authenticated),
    ) -> Principal:
        return check_role(principal, roles, request.url.path)

    return _check_role


# ── Convenience shortcuts ──────────────────────────────────────────────
require_admin = require_role(Role.ADMIN)
require_admin_or_auditor = require_role(Role.ADMIN, Role.AUDITOR)

"""
Wiring of the auth layer into a FastAPI application.

    handles = initialize_auth(app)

    @app.get("/reports")
    async def reports(principal = Depends(handles.require_role(Role.ADMIN))):
        ...

The sweeper is created here but started and stopped by the host
application's lifespan, which owns the event loop.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from fastapi import FastAPI

from services.session_sweeper import SessionSweeper

from .dependencies import require_authenticated, require_role
from .responses import register_exception_handlers
from .session_store import SessionStore, get_session_store

logger = logging.getLogger(__name__)


@dataclass
class AuthHandles:
    require_authenticated: Callable
    require_role: Callable
    sweeper: SessionSweeper


def initialize_auth(app: FastAPI, store: Optional[SessionStore] = None) -> AuthHandles:
    """
    Register the auth routes and exception handlers on ``app``.

    Returns the two gate dependencies for reuse by host routes, plus the
    session sweeper (also stored on ``app.state.session_sweeper``).
    """
    from routers import admin_router, auth_router

    register_exception_handlers(app)
    app.include_router(auth_router)
    app.include_router(admin_router)

    sweeper = SessionSweeper(store or get_session_store())
    app.state.session_sweeper = sweeper

    logger.info("Authentication system initialized")
    for route in ("/auth/login", "/auth/config", "/auth/callback", "/auth/logout"):
        logger.debug(f"  public    GET {route}")
    for route in ("/auth/pending", "/auth/session"):
        logger.debug(f"  protected GET {route}")
    logger.debug("  admin     /api/admin/users[...]")

    return AuthHandles(
        require_authenticated=require_authenticated,
        require_role=require_role,
        sweeper=sweeper,
    )

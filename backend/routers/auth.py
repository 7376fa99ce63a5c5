"""
Authentication endpoints.

Public endpoints:
    GET  /auth/login      - redirect to the identity provider (signed state)
    GET  /auth/config     - client configuration for building the authorize URL
    GET  /auth/callback   - exchange the code, resolve the user, issue the session cookie
    GET  /auth/logout     - destroy the session and clear the cookie

Protected endpoints:
    GET  /auth/pending    - status page for users awaiting approval
    GET  /auth/session    - current principal and session timestamps
"""

import logging
from datetime import datetime
from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from database import get_db
from auth import oauth_service
from auth.dependencies import Principal, require_authenticated
from auth.errors import (
    CollisionError,
    ProfileFetchError,
    SessionLookupError,
    TokenExchangeError,
    UnknownRoleError,
)
from auth.identity import check_or_create_user
from auth.roles import landing_route
from auth.session_store import SessionStore, get_session_store
from auth.state import create_state, decode_state, safe_return_url
from models import Role, UserSession
from utils.audit import audit

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth", tags=["auth"])

_SESSION_CREATE_ATTEMPTS = 3


# ── Schemas ────────────────────────────────────────────────────────────


class ClientConfigResponse(BaseModel):
    client_id: Optional[str] = None
    tenant_id: Optional[str] = None
    redirect_uri: str
    scopes: list[str]
    authorization_endpoint: str


class LoginStatusResponse(BaseModel):
    error: Optional[str] = None
    message: Optional[str] = None
    authorize_url: str


class PendingStatusResponse(BaseModel):
    status: str = "pending"
    email: str
    display_name: Optional[str] = None
    message: str


class SessionUser(BaseModel):
    id: int
    email: str
    display_name: Optional[str] = None
    role: str
    assigned_stores: list
    assigned_department: Optional[str] = None
    department: Optional[str] = None
    is_active: bool
    is_approved: bool


class SessionTimes(BaseModel):
    created_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    last_activity: Optional[datetime] = None


class SessionInfoResponse(BaseModel):
    user: SessionUser
    session: SessionTimes


# ── Helpers ────────────────────────────────────────────────────────────


def _login_redirect(**params) -> RedirectResponse:
    query = urlencode({k: v for k, v in params.items() if v})
    url = settings.LOGIN_PATH + (f"?{query}" if query else "")
    return RedirectResponse(url, status_code=302)


def _set_session_cookie(response, token: str) -> None:
    response.set_cookie(
        key=settings.SESSION_COOKIE_NAME,
        value=token,
        max_age=settings.SESSION_TTL_HOURS * 3600,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="lax",
    )


def _clear_session_cookie(response) -> None:
    response.delete_cookie(
        key=settings.SESSION_COOKIE_NAME,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="lax",
    )


def _client_ip(request: Request) -> Optional[str]:
    return request.client.host if request.client else None


async def _create_session(store: SessionStore, user_id: int, tokens) -> UserSession:
    for attempt in range(1, _SESSION_CREATE_ATTEMPTS + 1):
        try:
            return await store.create(
                user_id, tokens.access_token, tokens.refresh_token
            )
        except CollisionError:
            if attempt == _SESSION_CREATE_ATTEMPTS:
                raise
            logger.warning(f"Session token collision, retrying ({attempt})")


# ── Public endpoints ───────────────────────────────────────────────────


@router.get("/login")
async def login(
    returnUrl: Optional[str] = None,
    error: Optional[str] = None,
    message: Optional[str] = None,
):
    """
    Start an interactive login.

    Redirects to the provider with a signed state. When the login page is
    being shown after a failure or a logout (``error`` / ``message``), the
    authorize URL is returned as JSON instead so the front end can render it.
    """
    state, nonce = create_state(returnUrl)
    authorize_url = oauth_service.build_authorize_url(state)

    if error or message:
        response = JSONResponse(
            LoginStatusResponse(
                error=error, message=message, authorize_url=authorize_url
            ).model_dump()
        )
    else:
        response = RedirectResponse(authorize_url, status_code=302)

    response.set_cookie(
        key=settings.STATE_COOKIE_NAME,
        value=nonce,
        max_age=settings.STATE_EXPIRATION_MINUTES * 60,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="lax",
    )
    return response


@router.get("/config", response_model=ClientConfigResponse)
async def client_config():
    """Login configuration for client-side authorize URL building."""
    return ClientConfigResponse(
        client_id=settings.AZURE_CLIENT_ID,
        tenant_id=settings.AZURE_TENANT_ID,
        redirect_uri=settings.REDIRECT_URI,
        scopes=settings.OAUTH_SCOPES,
        authorization_endpoint=oauth_service.authorize_endpoint(),
    )


@router.get("/callback")
async def oauth_callback(
    request: Request,
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    error_description: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    store: SessionStore = Depends(get_session_store),
):
    """
    Complete the OAuth2 login: exchange the code, resolve the user, create a
    session and set the session cookie.

    Provider failures never surface provider detail to the browser; they
    redirect to the login page with a generic error indicator.
    """
    if error:
        logger.warning(f"OAuth error from provider: {error} {error_description or ''}")
        audit.log_login_failure(f"provider:{error}", _client_ip(request))
        return _login_redirect(error="authentication_failed")

    parsed_state = decode_state(state)
    state_nonce = request.cookies.get(settings.STATE_COOKIE_NAME)
    if parsed_state and parsed_state.signed and state_nonce and parsed_state.nonce != state_nonce:
        logger.warning("OAuth state nonce does not match the login cookie")
        audit.log_login_failure("invalid_state", _client_ip(request))
        return _login_redirect(error="invalid_state")

    if not code:
        return _login_redirect(error="no_code")

    try:
        tokens = await oauth_service.exchange_code(code)
        profile = await oauth_service.fetch_profile(tokens.access_token)
    except (TokenExchangeError, ProfileFetchError) as exc:
        logger.error(f"Callback handling failed: {exc}")
        audit.log_login_failure(exc.error_code, _client_ip(request))
        return _login_redirect(error="authentication_failed")

    user = await check_or_create_user(db, profile)

    if not user.is_active:
        # Inactive users never get a session
        logger.warning(f"Login refused for deactivated user {user.email}")
        audit.log_login_failure("account_disabled", _client_ip(request))
        return _login_redirect(error="account_disabled")

    try:
        destination = landing_route(user.role)
    except UnknownRoleError:
        logger.error(f"User {user.email} has unknown role {user.role!r}")
        audit.log_login_failure("unknown_role", _client_ip(request))
        return _login_redirect(error="unknown_role")

    return_url = parsed_state.return_url if parsed_state else None
    if return_url and Role.parse(user.role) is not Role.PENDING:
        destination = safe_return_url(return_url) or destination

    session = await _create_session(store, user.id, tokens)

    response = RedirectResponse(destination, status_code=302)
    _set_session_cookie(response, session.token)
    response.delete_cookie(settings.STATE_COOKIE_NAME)

    audit.log_login(
        user.id, user.email, _client_ip(request), request.headers.get("user-agent")
    )
    logger.info(f"Login: {user.email} ({user.role}) -> {destination}")
    return response


@router.get("/logout")
async def logout(
    request: Request,
    store: SessionStore = Depends(get_session_store),
):
    """Destroy the current session (if any), clear the cookie, back to login."""
    token = request.cookies.get(settings.SESSION_COOKIE_NAME)
    try:
        email = None
        if token:
            session = await store.lookup(token)
            email = session.user.email if session else None
            await store.destroy(token)
    except SessionLookupError:
        logger.exception("Error during logout")
        response = _login_redirect(error="logout_error")
        _clear_session_cookie(response)
        return response

    audit.log_logout(email)
    response = _login_redirect(message="logged_out")
    _clear_session_cookie(response)
    return response


# ── Protected endpoints ────────────────────────────────────────────────


@router.get("/pending")
async def pending_approval(principal: Principal = Depends(require_authenticated)):
    """Shown to users whose account still awaits an administrator."""
    if principal.role is not Role.PENDING:
        return RedirectResponse(landing_route(principal.role), status_code=302)
    return PendingStatusResponse(
        email=principal.email,
        display_name=principal.display_name,
        message="Your account is awaiting approval by an administrator.",
    )


@router.get("/session", response_model=SessionInfoResponse)
async def session_info(principal: Principal = Depends(require_authenticated)):
    """Current principal and session timestamps."""
    return SessionInfoResponse(
        user=SessionUser(
            id=principal.id,
            email=principal.email,
            display_name=principal.display_name,
            role=principal.role.value,
            assigned_stores=principal.assigned_stores,
            assigned_department=principal.assigned_department,
            department=principal.department,
            is_active=principal.is_active,
            is_approved=principal.is_approved,
        ),
        session=SessionTimes(
            created_at=principal.session_created_at,
            expires_at=principal.session_expires_at,
            last_activity=principal.last_activity,
        ),
    )

"""
Exception handlers that turn gate errors into responses.

API-shaped paths (``/api/...``) always get a JSON body with ``detail`` and a
machine-checkable ``error`` code. Page-shaped paths get a login redirect
(401), a small access-denied page (403) or a plain-text error (500).
"""

import html
import logging
from urllib.parse import quote

from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse, JSONResponse, PlainTextResponse, RedirectResponse

from config import settings

from .errors import AccessDeniedError, AuthError, NotAuthenticatedError

logger = logging.getLogger(__name__)

API_PREFIX = "/api/"


def is_api_request(request: Request) -> bool:
    return request.url.path.startswith(API_PREFIX)


def login_redirect(request: Request) -> RedirectResponse:
    """Redirect to the login entry point, carrying the originally requested URL."""
    original = request.url.path
    if request.url.query:
        original = f"{original}?{request.url.query}"
    return RedirectResponse(
        f"{settings.LOGIN_PATH}?returnUrl={quote(original, safe='')}",
        status_code=302,
    )


def _access_denied_page(user_role, required_roles) -> str:
    role = html.escape(str(user_role))
    required = html.escape(", ".join(required_roles))
    home = html.escape(settings.DEFAULT_LANDING_PATH)
    return (
        "<!DOCTYPE html>\n"
        '<html lang="en"><head><meta charset="UTF-8"><title>Access Denied</title></head>'
        "<body><h1>Access Denied</h1>"
        "<p>You don't have permission to access this page.</p>"
        f"<p><strong>Your Role:</strong> {role}</p>"
        f"<p><strong>Required Role(s):</strong> {required}</p>"
        "<p>If you believe this is an error, please contact your administrator.</p>"
        f'<a href="{home}">Back to Dashboard</a>'
        "</body></html>"
    )


async def not_authenticated_handler(request: Request, exc: NotAuthenticatedError):
    if is_api_request(request):
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "detail": exc.detail,
                "error": exc.error_code,
                "message": "Please login to access this resource",
            },
        )
    return login_redirect(request)


async def access_denied_handler(request: Request, exc: AccessDeniedError):
    if is_api_request(request):
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "detail": exc.detail,
                "error": exc.error_code,
                "message": str(exc),
                "user_role": exc.user_role,
                "required_roles": exc.required_roles,
            },
        )
    return HTMLResponse(
        _access_denied_page(exc.user_role, exc.required_roles),
        status_code=exc.status_code,
    )


async def auth_error_handler(request: Request, exc: AuthError):
    if exc.status_code >= 500:
        logger.error(f"{type(exc).__name__} on {request.url.path}: {exc}")
    else:
        logger.info(f"{type(exc).__name__} on {request.url.path}: {exc}")

    if is_api_request(request):
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail, "error": exc.error_code},
        )
    return PlainTextResponse(exc.detail, status_code=exc.status_code)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(NotAuthenticatedError, not_authenticated_handler)
    app.add_exception_handler(AccessDeniedError, access_denied_handler)
    app.add_exception_handler(AuthError, auth_error_handler)

"""Exception taxonomy for the authentication and authorization layer."""

from typing import Optional, Sequence


class AuthError(Exception):
    """Base class for every error raised by the auth layer."""

    status_code = 500
    error_code = "auth_error"
    detail = "Authentication error. Please try again."


class TokenExchangeError(AuthError):
    """The identity provider rejected the authorization code (or timed out)."""

    status_code = 401
    error_code = "token_exchange_failed"
    detail = "Authentication failed. Please try again."


class ProfileFetchError(AuthError):
    """The directory profile call failed after a valid token exchange."""

    status_code = 401
    error_code = "profile_fetch_failed"
    detail = "Authentication failed. Please try again."


class DirectoryError(AuthError):
    """The app-only directory listing failed (token or a users page)."""

    status_code = 502
    error_code = "directory_unavailable"
    detail = "Directory service unavailable"


class SessionLookupError(AuthError):
    """The session store is unavailable. Infrastructure failure, not user error."""

    status_code = 500
    error_code = "session_store_unavailable"
    detail = "Authentication service unavailable"


class MalformedTokenError(AuthError):
    """A session token does not match the generated token format."""

    status_code = 401
    error_code = "malformed_token"
    detail = "Not authenticated"


class CollisionError(AuthError):
    """A freshly generated session token already exists. Callers retry."""

    status_code = 500
    error_code = "token_collision"


class ConfigurationError(AuthError):
    """The gate chain is wired incorrectly (a deployment bug)."""

    status_code = 500
    error_code = "server_configuration_error"
    detail = "Server configuration error"


class UnknownRoleError(ConfigurationError):
    """A role string that is not part of the closed role enumeration."""

    status_code = 403
    error_code = "unknown_role"
    detail = "Your account role is not recognised. Please contact your administrator."

    def __init__(self, role):
        super().__init__(f"Unknown role: {role!r}")
        self.role = role


class NotAuthenticatedError(AuthError):
    """
    Raised by the authentication gate when a request carries no usable session.

    ``reason`` is one of ``no_token``, ``malformed_token`` or
    ``session_not_found`` and only ever appears in logs.
    """

    status_code = 401
    error_code = "not_authenticated"
    detail = "Not authenticated"

    def __init__(self, reason: str):
        super().__init__("Not authenticated")
        self.reason = reason


class AccessDeniedError(AuthError):
    """Raised by the authorization gate when the principal's role is not allowed."""

    status_code = 403
    error_code = "access_denied"
    detail = "Access denied"

    def __init__(self, user_role: Optional[str], required_roles: Sequence[str]):
        super().__init__(
            f"This action requires one of these roles: {', '.join(required_roles)}"
        )
        self.user_role = user_role
        self.required_roles = list(required_roles)

"""Role helpers: allow-list parsing and post-login landing routes."""

from typing import Iterable

from config import settings
from models import Role

from .errors import ConfigurationError

# Every Role member must appear here; tests enforce it
_LANDING_ROUTES = {
    Role.ADMIN: lambda: settings.DEFAULT_LANDING_PATH,
    Role.AUDITOR: lambda: settings.AUDITOR_LANDING_PATH,
    Role.STORE_MANAGER: lambda: settings.DEFAULT_LANDING_PATH,
    Role.CLEANING_HEAD: lambda: settings.DEFAULT_LANDING_PATH,
    Role.PROCUREMENT_HEAD: lambda: settings.DEFAULT_LANDING_PATH,
    Role.MAINTENANCE_HEAD: lambda: settings.DEFAULT_LANDING_PATH,
    Role.PENDING: lambda: settings.PENDING_PATH,
}

APPROVED_ROLES = tuple(role for role in Role if role is not Role.PENDING)


def landing_route(role) -> str:
    """
    Default destination after login for ``role``.

    Raises:
        UnknownRoleError: if ``role`` is not a known role.
    """
    return _LANDING_ROUTES[Role.parse(role)]()


def parse_allowed_roles(roles: Iterable) -> tuple[Role, ...]:
    """
    Validate a role allow-list when a gate is built, not when it is hit.

    Raises:
        ConfigurationError: if the list is empty or names an unknown role.
    """
    parsed = tuple(Role.parse(role) for role in roles)
    if not parsed:
        raise ConfigurationError("A role gate needs at least one allowed role")
    return parsed

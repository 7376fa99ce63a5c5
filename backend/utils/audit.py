"""
Structured audit logging for authentication events.

This module provides an AuditLogger class that logs events to a dedicated 'audit' logger
in structured JSON format. It supports context-aware request_id propagation across async
calls using contextvars.ContextVar.

Audit writes are best-effort: a failure to serialize or emit an event is logged
on the module logger and never reaches the caller.
"""

import json
import logging
from contextvars import ContextVar
from typing import Any, Dict, Optional

from utils.clock import utcnow


# Context variable for tracking request_id across async calls
_request_id_context: ContextVar[Optional[str]] = ContextVar(
    'request_id', default=None
)

# Context variable for tracking actor (authenticated user) across async calls
_actor_context: ContextVar[Optional[str]] = ContextVar(
    'actor', default=None
)

logger = logging.getLogger(__name__)


class AuditLogger:
    """
    Structured audit logger for login, logout and user administration events.

    All events are written to a dedicated 'audit' logger in JSON format.
    """

    def __init__(self):
        self.logger = logging.getLogger('audit')

    def set_request_id(self, request_id: str) -> None:
        """Set the request_id for the current context."""
        _request_id_context.set(request_id)

    def get_request_id(self) -> Optional[str]:
        return _request_id_context.get()

    def set_actor(self, actor: str) -> None:
        """Set the authenticated user for this request context."""
        _actor_context.set(actor)

    def get_actor(self) -> Optional[str]:
        return _actor_context.get()

    def log(
        self,
        action: str,
        actor: str,
        resource: str,
        resource_id: str,
        status: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Core method to log a structured audit event.

        Args:
            action: Type of action performed (e.g., 'LOGIN', 'UPDATE_ROLE')
            actor: User performing the action; 'user' means "take it from context"
            resource: Type of resource affected (e.g., 'User', 'Session')
            resource_id: Unique identifier of the affected resource
            status: Result status (e.g., 'success', 'failure')
            details: Optional dict of additional context
        """
        try:
            event = {
                'timestamp': utcnow().isoformat() + 'Z',
                'action': action,
                'actor': actor if actor != 'user' else (self.get_actor() or 'user'),
                'resource': resource,
                'resource_id': resource_id,
                'status': status,
                'request_id': self.get_request_id(),
                'details': details or {},
            }
            self.logger.info(json.dumps(event, default=str))
        except Exception:
            logger.warning(f"Failed to write audit event {action}", exc_info=True)

    def log_login(
        self,
        user_id: int,
        email: str,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> None:
        """Log a successful interactive login."""
        self.log(
            action='LOGIN',
            actor=email,
            resource='User',
            resource_id=str(user_id),
            status='success',
            details={'ip_address': ip_address, 'user_agent': user_agent},
        )

    def log_login_failure(self, reason: str, ip_address: Optional[str] = None) -> None:
        """Log a failed callback (provider error, exchange or profile failure)."""
        self.log(
            action='LOGIN_FAILED',
            actor='anonymous',
            resource='User',
            resource_id='unknown',
            status='failure',
            details={'reason': reason, 'ip_address': ip_address},
        )

    def log_logout(self, email: Optional[str]) -> None:
        self.log(
            action='LOGOUT',
            actor=email or 'unknown',
            resource='Session',
            resource_id='current',
            status='success',
        )

    def log_user_change(
        self,
        action: str,
        actor: str,
        target_user_id: int,
        changes: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Log an administrative change to a user.

        Args:
            action: 'UPDATE_USER', 'UPDATE_ROLE', 'ACTIVATE_USER', 'DEACTIVATE_USER',
                'APPROVE_USER' or 'REJECT_USER'
            actor: Email of the administrator
            target_user_id: The user that was changed
            changes: Optional dict of changed fields
        """
        self.log(
            action=action,
            actor=actor,
            resource='User',
            resource_id=str(target_user_id),
            status='success',
            details={'changes': changes} if changes else None,
        )

    def log_directory_sync(self, actor: str, new_users: int, updated_users: int) -> None:
        """Log an administrator-triggered directory import."""
        self.log(
            action='SYNC_GRAPH_USERS',
            actor=actor,
            resource='User',
            resource_id='directory',
            status='success',
            details={'new_users': new_users, 'updated_users': updated_users},
        )


# Global audit logger instance for convenient import
audit = AuditLogger()

"""User model and role enumeration."""

import json
import logging
from enum import Enum

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text

from database import Base
from utils.clock import utcnow

logger = logging.getLogger(__name__)


class Role(str, Enum):
    """
    Closed set of application roles.

    ``Pending`` is the role every newly discovered directory principal gets;
    it grants nothing until an administrator assigns a real role.
    """

    PENDING = "Pending"
    ADMIN = "Admin"
    AUDITOR = "Auditor"
    STORE_MANAGER = "StoreManager"
    CLEANING_HEAD = "CleaningHead"
    PROCUREMENT_HEAD = "ProcurementHead"
    MAINTENANCE_HEAD = "MaintenanceHead"

    @classmethod
    def parse(cls, value) -> "Role":
        """
        Convert a stored role string into a :class:`Role`.

        Raises:
            UnknownRoleError: if the value is not one of the known roles.
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            from auth.errors import UnknownRoleError

            raise UnknownRoleError(value)


class User(Base):
    """
    Directory principal mirrored locally.

    Created on the first successful login for an unseen email, refreshed on
    every later login, and mutated by administrators (role, approval,
    activation). Users are never hard-deleted; rejection clears the approval
    and active flags instead.
    """

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    external_id = Column(String(255), nullable=True, index=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    display_name = Column(String(255), nullable=True)
    photo_url = Column(String(1000), nullable=True)
    job_title = Column(String(255), nullable=True)
    department = Column(String(255), nullable=True)

    role = Column(String(32), nullable=False, default=Role.PENDING.value, index=True)
    is_active = Column(Boolean, default=True, nullable=False, index=True)
    is_approved = Column(Boolean, default=False, nullable=False)

    # JSON-serialized list of store identifiers
    assigned_stores = Column(Text, nullable=True)
    assigned_department = Column(String(255), nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=True)
    last_login_at = Column(DateTime, nullable=True)

    @property
    def store_list(self) -> list:
        """Assigned stores decoded from their stored JSON form."""
        if not self.assigned_stores:
            return []
        try:
            stores = json.loads(self.assigned_stores)
        except ValueError:
            logger.warning(f"Unparseable assigned_stores for user {self.id}")
            return []
        return stores if isinstance(stores, list) else []

    def __repr__(self):
        return f"<User {self.email} role={self.role} active={self.is_active}>"

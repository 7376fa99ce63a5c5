"""
User administration endpoints (Admin only).

    GET   /api/admin/users                  - list users
    GET   /api/admin/users/{id}             - one user
    PATCH /api/admin/users/{id}             - partial update
    PATCH /api/admin/users/{id}/role        - assign a role
    PATCH /api/admin/users/{id}/status      - activate / deactivate
    POST  /api/admin/users/{id}/approve     - approve with a role (default Auditor)
    POST  /api/admin/users/{id}/reject      - reject (never deletes)
    POST  /api/admin/sync-graph               - import/refresh users from the directory
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, field_validator, model_validator
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from auth import oauth_service
from auth.dependencies import Principal, require_admin
from models import Role, User
from services import user_admin
from services.user_admin import UserChanges, UserNotFoundError
from utils.audit import audit

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/admin", tags=["admin"])


# ── Schemas ────────────────────────────────────────────────────────────


class UserResponse(BaseModel):
    id: int
    external_id: Optional[str] = None
    email: str
    display_name: Optional[str] = None
    job_title: Optional[str] = None
    department: Optional[str] = None
    role: str
    assigned_stores: list
    assigned_department: Optional[str] = None
    is_active: bool
    is_approved: bool
    created_at: datetime
    last_login_at: Optional[datetime] = None

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            external_id=user.external_id,
            email=user.email,
            display_name=user.display_name,
            job_title=user.job_title,
            department=user.department,
            role=user.role,
            assigned_stores=user.store_list,
            assigned_department=user.assigned_department,
            is_active=user.is_active,
            is_approved=user.is_approved,
            created_at=user.created_at,
            last_login_at=user.last_login_at,
        )


class UserListResponse(BaseModel):
    users: list[UserResponse]


class SyncResponse(BaseModel):
    new_users: int
    updated_users: int


class UserUpdateRequest(BaseModel):
    role: Optional[Role] = None
    display_name: Optional[str] = None
    is_approved: Optional[bool] = None
    is_active: Optional[bool] = None
    assigned_stores: Optional[list[str]] = None
    assigned_department: Optional[str] = None

    @model_validator(mode="after")
    def _role_implies_approval(self) -> "UserUpdateRequest":
        if self.role is not None and self.role is not Role.PENDING:
            if self.is_approved is False or self.is_active is False:
                raise ValueError(
                    "A non-Pending role cannot be combined with is_approved or is_active false"
                )
        return self


class RoleUpdateRequest(BaseModel):
    role: Role


class StatusUpdateRequest(BaseModel):
    is_active: bool


class ApproveRequest(BaseModel):
    role: Role = Role.AUDITOR

    @field_validator("role")
    @classmethod
    def _not_pending(cls, value: Role) -> Role:
        if value is Role.PENDING:
            raise ValueError("Approval requires a non-Pending role")
        return value


def _not_found(user_id: int) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND, detail=f"User {user_id} not found"
    )


# ── Endpoints ──────────────────────────────────────────────────────────


@router.get("/users", response_model=UserListResponse)
async def list_users(
    principal: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """List all users, newest first."""
    users = await user_admin.list_users(db)
    return UserListResponse(users=[UserResponse.from_user(u) for u in users])


@router.get("/users/{user_id}", response_model=UserResponse)
async def get_user(
    user_id: int,
    principal: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    try:
        return UserResponse.from_user(await user_admin.get_user(db, user_id))
    except UserNotFoundError:
        raise _not_found(user_id)


@router.patch("/users/{user_id}", response_model=UserResponse)
async def update_user(
    user_id: int,
    body: UserUpdateRequest,
    principal: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Partial update of role, approval, activation and assignments."""
    changes = body.model_dump(exclude_none=True)
    try:
        user = await user_admin.update_user(db, user_id, UserChanges(**changes))
    except UserNotFoundError:
        raise _not_found(user_id)

    audit.log_user_change(
        "UPDATE_USER",
        principal.email,
        user_id,
        body.model_dump(mode="json", exclude_none=True),
    )
    return UserResponse.from_user(user)


@router.patch("/users/{user_id}/role", response_model=UserResponse)
async def update_user_role(
    user_id: int,
    body: RoleUpdateRequest,
    principal: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Assign a role. Any role other than Pending also approves and activates."""
    try:
        target = await user_admin.get_user(db, user_id)
        old_role = target.role
        user = await user_admin.update_user_role(db, user_id, body.role)
    except UserNotFoundError:
        raise _not_found(user_id)

    audit.log_user_change(
        "UPDATE_ROLE",
        principal.email,
        user_id,
        {"old_role": old_role, "new_role": body.role.value},
    )
    return UserResponse.from_user(user)


@router.patch("/users/{user_id}/status", response_model=UserResponse)
async def update_user_status(
    user_id: int,
    body: StatusUpdateRequest,
    principal: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    try:
        user = await user_admin.update_user_status(db, user_id, body.is_active)
    except UserNotFoundError:
        raise _not_found(user_id)

    audit.log_user_change(
        "ACTIVATE_USER" if body.is_active else "DEACTIVATE_USER",
        principal.email,
        user_id,
    )
    return UserResponse.from_user(user)


@router.post("/users/{user_id}/approve", response_model=UserResponse)
async def approve_user(
    user_id: int,
    body: Optional[ApproveRequest] = None,
    principal: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    role = body.role if body else Role.AUDITOR
    try:
        user = await user_admin.approve_user(db, user_id, role)
    except UserNotFoundError:
        raise _not_found(user_id)

    audit.log_user_change("APPROVE_USER", principal.email, user_id, {"role": role.value})
    return UserResponse.from_user(user)


@router.post("/users/{user_id}/reject", response_model=UserResponse)
async def reject_user(
    user_id: int,
    principal: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    try:
        user = await user_admin.reject_user(db, user_id)
    except UserNotFoundError:
        raise _not_found(user_id)

    audit.log_user_change("REJECT_USER", principal.email, user_id)
    return UserResponse.from_user(user)


@router.post("/sync-graph", response_model=SyncResponse)
async def sync_graph_users(
    principal: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """
    Pull every tenant user from Microsoft Graph and upsert them locally.

    New users arrive as Pending; existing users keep their role and flags.
    A directory failure surfaces as 502 ``directory_unavailable``.
    """
    directory_users = await oauth_service.list_directory_users()
    result = await user_admin.sync_users_from_directory(db, directory_users)

    audit.log_directory_sync(principal.email, result.new_users, result.updated_users)
    return SyncResponse(new_users=result.new_users, updated_users=result.updated_users)

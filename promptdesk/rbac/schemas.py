"""RBAC request and response models."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class DepartmentLevel(str, Enum):
    READ = "read"
    WRITE = "write"
    MANAGE = "manage"
    ADMIN = "admin"


class RoleOut(BaseModel):
    id: str
    name: str
    display_name: str
    description: str | None = None
    role_level: int
    is_system_role: bool
    is_assignable: bool
    color_code: str | None = None
    created_at: str
    updated_at: str


class CreateRoleRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    display_name: str = Field(..., min_length=1)
    description: str | None = None
    role_level: int = Field(default=0, ge=0, le=100)
    color_code: str | None = None
    is_assignable: bool = True


class UpdateRoleRequest(BaseModel):
    display_name: str | None = None
    description: str | None = None
    role_level: int | None = Field(default=None, ge=0, le=100)
    color_code: str | None = None
    is_assignable: bool | None = None


class PermissionOut(BaseModel):
    id: str
    name: str
    resource: str
    action: str
    description: str | None = None


class SetRolePermissionsRequest(BaseModel):
    permission_ids: list[str]


class AssignRoleRequest(BaseModel):
    user_id: str
    role_id: str
    department: str | None = None
    workflow: str | None = None
    valid_from: datetime | None = None
    valid_until: datetime | None = None
    reason: str | None = None


class RevokeRoleRequest(BaseModel):
    reason: str | None = None


class AssignmentOut(BaseModel):
    id: str
    user_id: str
    role_id: str
    assigned_by: str | None = None
    department: str | None = None
    workflow: str | None = None
    valid_from: str
    valid_until: str | None = None
    is_active: bool
    assignment_reason: str | None = None
    revoked_at: str | None = None
    revoked_by: str | None = None
    revoke_reason: str | None = None
    created_at: str
    role_name: str | None = None
    display_name: str | None = None
    role_level: int | None = None


class UserPermissionsOut(BaseModel):
    user_id: str
    permissions: list[str]
    highest_role_level: int


class PermissionCheckOut(BaseModel):
    user_id: str
    permission: str
    allowed: bool


class DepartmentPermissionRequest(BaseModel):
    user_id: str
    department: str
    permission_level: DepartmentLevel


class ApplyTemplateRequest(BaseModel):
    user_id: str


class ChangeLogEntry(BaseModel):
    id: str
    event_type: str
    action: str
    actor_id: str | None = None
    target_user_id: str | None = None
    role_id: str | None = None
    permission_id: str | None = None
    details: dict[str, Any] | None = None
    created_at: str

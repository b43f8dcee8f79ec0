"""RBAC API routes: roles, permissions, assignments and templates."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query

from promptdesk.core.security import require_permission

from .schemas import (
    ApplyTemplateRequest,
    AssignmentOut,
    AssignRoleRequest,
    ChangeLogEntry,
    CreateRoleRequest,
    DepartmentPermissionRequest,
    PermissionCheckOut,
    PermissionOut,
    RevokeRoleRequest,
    RoleOut,
    SetRolePermissionsRequest,
    UpdateRoleRequest,
    UserPermissionsOut,
)
from .service import get_rbac_service

router = APIRouter(prefix="/rbac", tags=["rbac"])

manage_roles = require_permission("roles.manage")


# =============================================================================
# Roles
# =============================================================================


@router.get("/roles", response_model=list[RoleOut])
def list_roles() -> list[dict[str, Any]]:
    return get_rbac_service().list_roles()


@router.post("/roles", response_model=RoleOut, status_code=201)
def create_role(request: CreateRoleRequest, actor_id: str = Depends(manage_roles)) -> dict[str, Any]:
    return get_rbac_service().create_role(actor_id=actor_id, **request.model_dump())


@router.get("/roles/{role_id}", response_model=RoleOut)
def get_role(role_id: str) -> dict[str, Any]:
    return get_rbac_service().get_role(role_id)


@router.patch("/roles/{role_id}", response_model=RoleOut)
def update_role(
    role_id: str,
    request: UpdateRoleRequest,
    actor_id: str = Depends(manage_roles),
) -> dict[str, Any]:
    return get_rbac_service().update_role(role_id, request.model_dump(exclude_none=True), actor_id)


@router.delete("/roles/{role_id}", status_code=204)
def delete_role(role_id: str, actor_id: str = Depends(manage_roles)) -> None:
    get_rbac_service().delete_role(role_id, actor_id)


@router.get("/roles/{role_id}/permissions", response_model=list[PermissionOut])
def get_role_permissions(role_id: str) -> list[dict[str, Any]]:
    get_rbac_service().get_role(role_id)
    return get_rbac_service().get_role_permissions(role_id)


@router.put("/roles/{role_id}/permissions", response_model=list[PermissionOut])
def set_role_permissions(
    role_id: str,
    request: SetRolePermissionsRequest,
    actor_id: str = Depends(manage_roles),
) -> list[dict[str, Any]]:
    """Replace the role's permission set."""
    return get_rbac_service().assign_permissions_to_role(role_id, request.permission_ids, actor_id)


@router.get("/permissions", response_model=list[PermissionOut])
def list_permissions() -> list[dict[str, Any]]:
    return get_rbac_service().list_permissions()


# =============================================================================
# Assignments
# =============================================================================


@router.post("/assignments", response_model=AssignmentOut, status_code=201)
def assign_role(request: AssignRoleRequest, actor_id: str = Depends(manage_roles)) -> dict[str, Any]:
    return get_rbac_service().assign_role(
        user_id=request.user_id,
        role_id=request.role_id,
        assigned_by=actor_id,
        department=request.department,
        workflow=request.workflow,
        valid_from=request.valid_from,
        valid_until=request.valid_until,
        reason=request.reason,
    )


@router.post("/assignments/{assignment_id}/revoke", response_model=AssignmentOut)
def revoke_role(
    assignment_id: str,
    request: RevokeRoleRequest,
    actor_id: str = Depends(manage_roles),
) -> dict[str, Any]:
    return get_rbac_service().revoke_role(assignment_id, actor_id, request.reason)


@router.get("/users/{user_id}/roles", response_model=list[AssignmentOut])
def get_user_roles(user_id: str, include_inactive: bool = Query(default=False)) -> list[dict[str, Any]]:
    return get_rbac_service().get_user_roles(user_id, include_inactive)


@router.get("/users/{user_id}/permissions", response_model=UserPermissionsOut)
def get_user_permissions(user_id: str) -> UserPermissionsOut:
    service = get_rbac_service()
    return UserPermissionsOut(
        user_id=user_id,
        permissions=service.get_user_permission_keys(user_id),
        highest_role_level=service.get_highest_role_level(user_id),
    )


@router.get("/users/{user_id}/check", response_model=PermissionCheckOut)
def check_permission(user_id: str, permission: str = Query(...)) -> PermissionCheckOut:
    return PermissionCheckOut(
        user_id=user_id,
        permission=permission,
        allowed=get_rbac_service().check_permission(user_id, permission),
    )


@router.post("/assignments/expire")
def expire_assignments(actor_id: str = Depends(manage_roles)) -> dict[str, int]:
    return {"expired": get_rbac_service().expire_role_assignments()}


# =============================================================================
# Department Permissions
# =============================================================================


@router.put("/department-permissions")
def set_department_permission(
    request: DepartmentPermissionRequest,
    actor_id: str = Depends(manage_roles),
) -> dict[str, Any]:
    return get_rbac_service().set_department_permission(
        request.user_id, request.department, request.permission_level.value, actor_id
    )


@router.get("/users/{user_id}/department-permissions")
def get_department_permissions(user_id: str) -> list[dict[str, Any]]:
    return get_rbac_service().get_department_permissions(user_id)


@router.get("/users/{user_id}/department-access")
def check_department_access(
    user_id: str,
    department: str = Query(...),
    level: str = Query(default="read"),
) -> dict[str, Any]:
    allowed = get_rbac_service().check_department_access(user_id, department, level)
    return {"user_id": user_id, "department": department, "level": level, "allowed": allowed}


# =============================================================================
# Templates and Change Log
# =============================================================================


@router.get("/templates")
def list_templates() -> list[dict[str, Any]]:
    return get_rbac_service().list_templates()


@router.post("/templates/{template_id}/apply")
def apply_template(
    template_id: str,
    request: ApplyTemplateRequest,
    actor_id: str = Depends(manage_roles),
) -> dict[str, Any]:
    """Create a custom role from the template and assign it to the user."""
    return get_rbac_service().apply_template(template_id, request.user_id, actor_id)


@router.get("/change-log", response_model=list[ChangeLogEntry])
def get_change_log(
    target_user_id: str | None = None,
    event_type: str | None = None,
    limit: int = Query(default=100, ge=1, le=1000),
    actor_id: str = Depends(require_permission("audit.read")),
) -> list[dict[str, Any]]:
    return get_rbac_service().get_change_log(target_user_id, event_type, limit)

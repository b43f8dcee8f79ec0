"""
Request actor and permission dependencies.

There is no authentication layer: the acting user is whatever the caller
puts in the ``X-User-Id`` header. Permissions are still enforced against
the RBAC tables for that user.
"""

from __future__ import annotations

from typing import Callable

from fastapi import Header

from promptdesk.core.errors import AuthenticationError, PermissionDeniedError


def get_actor_id(x_user_id: str | None = Header(default=None)) -> str | None:
    """Acting user, if one was supplied."""
    return x_user_id or None


def require_actor(x_user_id: str | None = Header(default=None)) -> str:
    """Acting user; 401 when missing."""
    if not x_user_id:
        raise AuthenticationError()
    return x_user_id


def require_permission(permission: str) -> Callable[..., str]:
    """Build a dependency that requires the actor to hold ``permission``.

    Usage:
        @router.post("/roles")
        def create_role(..., actor_id: str = Depends(require_permission("roles.manage"))):
    """
    resource, _, action = permission.partition(".")

    def dependency(x_user_id: str | None = Header(default=None)) -> str:
        actor_id = require_actor(x_user_id)
        from promptdesk.rbac.service import get_rbac_service

        if not get_rbac_service().check_permission(actor_id, permission):
            raise PermissionDeniedError(action or permission, resource)
        return actor_id

    return dependency

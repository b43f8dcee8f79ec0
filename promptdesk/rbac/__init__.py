"""RBAC domain - roles, permissions, assignments, department scopes."""

from .router import router
from .service import DEPARTMENT_LEVELS, RBACService, get_rbac_service, reset_rbac_service

__all__ = [
    "router",
    "RBACService",
    "get_rbac_service",
    "reset_rbac_service",
    "DEPARTMENT_LEVELS",
]

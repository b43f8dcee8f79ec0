"""
Role-based access control.

Users hold roles through time-bounded assignments; roles carry
``<resource>.<action>`` permissions. Department scoped grants sit beside
the role model and are checked by level order.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import text
from sqlalchemy.engine import Connection

from promptdesk.audit.schemas import AuditCategory, AuditEventType, AuditSeverity
from promptdesk.audit.service import get_audit_service
from promptdesk.core.errors import ConflictError, NotFoundError, ValidationError
from promptdesk.core.logging import get_logger
from promptdesk.storage.database import get_db
from promptdesk.storage.models import (
    dumps,
    generate_uuid,
    loads,
    now_iso,
    row_to_dict,
    to_iso,
    utcnow,
)

log = get_logger(__name__)

DEPARTMENT_LEVELS = ["read", "write", "manage", "admin"]

_ROLE_BOOLS = ("is_system_role", "is_assignable")


class RBACService:
    """Roles, permissions, assignments and the RBAC change log."""

    # =========================================================================
    # Roles
    # =========================================================================

    def list_roles(self) -> list[dict[str, Any]]:
        with get_db() as conn:
            result = conn.execute(text("SELECT * FROM roles ORDER BY role_level DESC, name"))
            return [row_to_dict(r, bool_fields=_ROLE_BOOLS) for r in result.fetchall()]

    def get_role(self, role_id: str) -> dict[str, Any]:
        with get_db() as conn:
            row = conn.execute(text("SELECT * FROM roles WHERE id = :id"), {"id": role_id}).fetchone()
        if row is None:
            raise NotFoundError("Role", role_id)
        return row_to_dict(row, bool_fields=_ROLE_BOOLS)

    def get_role_by_name(self, name: str) -> dict[str, Any] | None:
        with get_db() as conn:
            row = conn.execute(text("SELECT * FROM roles WHERE name = :name"), {"name": name}).fetchone()
        return row_to_dict(row, bool_fields=_ROLE_BOOLS) if row else None

    def create_role(
        self,
        name: str,
        display_name: str,
        description: str | None = None,
        role_level: int = 0,
        color_code: str | None = None,
        is_assignable: bool = True,
        actor_id: str | None = None,
    ) -> dict[str, Any]:
        """Create a custom (non-system) role."""
        if not name or not name.strip():
            raise ValidationError("name", "Role name is required")
        if not 0 <= role_level <= 100:
            raise ValidationError("role_level", "Must be between 0 and 100")

        role_id = generate_uuid()
        ts = now_iso()
        with get_db() as conn:
            if conn.execute(text("SELECT 1 FROM roles WHERE name = :name"), {"name": name}).fetchone():
                raise ConflictError(f"Role '{name}' already exists", {"name": name})
            conn.execute(
                text("""
                INSERT INTO roles
                (id, name, display_name, description, role_level, is_system_role,
                 is_assignable, color_code, created_at, updated_at)
                VALUES (:id, :name, :display_name, :description, :role_level, 0,
                        :is_assignable, :color_code, :ts, :ts)
                """),
                {
                    "id": role_id, "name": name, "display_name": display_name,
                    "description": description, "role_level": role_level,
                    "is_assignable": 1 if is_assignable else 0,
                    "color_code": color_code, "ts": ts,
                },
            )
            self._log_change(conn, "role_created", "create", actor_id, role_id=role_id,
                             details={"name": name, "role_level": role_level})
            conn.commit()

        log.info("role_created", role_id=role_id, name=name)
        return self.get_role(role_id)

    def update_role(self, role_id: str, updates: dict[str, Any], actor_id: str | None = None) -> dict[str, Any]:
        """Update display fields of a role. System role names are fixed."""
        role = self.get_role(role_id)
        allowed = {"display_name", "description", "role_level", "color_code", "is_assignable"}
        changes = {k: v for k, v in updates.items() if k in allowed and v is not None}
        if "role_level" in changes and not 0 <= changes["role_level"] <= 100:
            raise ValidationError("role_level", "Must be between 0 and 100")
        if not changes:
            return role
        if "is_assignable" in changes:
            changes["is_assignable"] = 1 if changes["is_assignable"] else 0

        assignments = ", ".join(f"{k} = :{k}" for k in changes)
        with get_db() as conn:
            conn.execute(
                text(f"UPDATE roles SET {assignments}, updated_at = :ts WHERE id = :id"),
                {**changes, "ts": now_iso(), "id": role_id},
            )
            self._log_change(conn, "role_updated", "update", actor_id, role_id=role_id, details=changes)
            conn.commit()
        return self.get_role(role_id)

    def delete_role(self, role_id: str, actor_id: str | None = None) -> None:
        role = self.get_role(role_id)
        if role["is_system_role"]:
            raise ConflictError("System roles cannot be deleted", {"role_id": role_id})

        with get_db() as conn:
            conn.execute(text("DELETE FROM roles WHERE id = :id"), {"id": role_id})
            self._log_change(conn, "role_deleted", "delete", actor_id, role_id=role_id,
                             details={"name": role["name"]})
            conn.commit()
        log.info("role_deleted", role_id=role_id)

    # =========================================================================
    # Permissions
    # =========================================================================

    def list_permissions(self) -> list[dict[str, Any]]:
        with get_db() as conn:
            result = conn.execute(text("SELECT * FROM permissions ORDER BY resource, action"))
            return [dict(r._mapping) for r in result.fetchall()]

    def get_role_permissions(self, role_id: str) -> list[dict[str, Any]]:
        with get_db() as conn:
            result = conn.execute(
                text("""
                SELECT p.* FROM permissions p
                JOIN role_permissions rp ON rp.permission_id = p.id
                WHERE rp.role_id = :role_id
                ORDER BY p.name
                """),
                {"role_id": role_id},
            )
            return [dict(r._mapping) for r in result.fetchall()]

    def assign_permissions_to_role(
        self,
        role_id: str,
        permission_ids: list[str],
        actor_id: str | None = None,
    ) -> list[dict[str, Any]]:
        """Replace a role's permission set.

        Returns:
            The role's permissions after the change
        """
        self.get_role(role_id)
        wanted = set(permission_ids)
        with get_db() as conn:
            known = {
                r.id for r in conn.execute(text("SELECT id FROM permissions")).fetchall()
            }
            unknown = wanted - known
            if unknown:
                raise ValidationError("permission_ids", f"Unknown permissions: {', '.join(sorted(unknown))}")

            current = {
                r.permission_id
                for r in conn.execute(
                    text("SELECT permission_id FROM role_permissions WHERE role_id = :role_id"),
                    {"role_id": role_id},
                ).fetchall()
            }
            ts = now_iso()
            for permission_id in sorted(current - wanted):
                conn.execute(
                    text("DELETE FROM role_permissions WHERE role_id = :role_id AND permission_id = :pid"),
                    {"role_id": role_id, "pid": permission_id},
                )
                self._log_change(conn, "permission_revoked", "revoke", actor_id,
                                 role_id=role_id, permission_id=permission_id)
            for permission_id in sorted(wanted - current):
                conn.execute(
                    text("""
                    INSERT INTO role_permissions (role_id, permission_id, granted_by, granted_at)
                    VALUES (:role_id, :pid, :actor, :ts)
                    """),
                    {"role_id": role_id, "pid": permission_id, "actor": actor_id, "ts": ts},
                )
                self._log_change(conn, "permission_granted", "grant", actor_id,
                                 role_id=role_id, permission_id=permission_id)

            if current != wanted:
                get_audit_service().log_event(
                    AuditEventType.PERMISSION_GRANT,
                    AuditCategory.SECURITY,
                    "update_role_permissions",
                    actor_id=actor_id,
                    resource_type="role",
                    resource_id=role_id,
                    severity=AuditSeverity.HIGH,
                    old_values={"permissions": sorted(current)},
                    new_values={"permissions": sorted(wanted)},
                    conn=conn,
                )
            conn.commit()

        return self.get_role_permissions(role_id)

    # =========================================================================
    # User Role Assignments
    # =========================================================================

    def assign_role(
        self,
        user_id: str,
        role_id: str,
        assigned_by: str | None = None,
        department: str | None = None,
        workflow: str | None = None,
        valid_from: datetime | None = None,
        valid_until: datetime | None = None,
        reason: str | None = None,
    ) -> dict[str, Any]:
        """Give a user a role, optionally scoped and time-bounded.

        Raises:
            ConflictError: The user already holds the role
            ValidationError: valid_until is not after valid_from
        """
        role = self.get_role(role_id)
        if not role["is_assignable"]:
            raise ValidationError("role_id", "Role is not assignable")

        valid_from = valid_from or utcnow()
        if valid_until is not None and to_iso(valid_until) <= to_iso(valid_from):
            raise ValidationError("valid_until", "Must be after valid_from")

        params = {
            "user_id": user_id,
            "role_id": role_id,
            "assigned_by": assigned_by,
            "department": department,
            "workflow": workflow,
            "valid_from": to_iso(valid_from),
            "valid_until": to_iso(valid_until) if valid_until else None,
            "reason": reason,
            "ts": now_iso(),
        }

        with get_db() as conn:
            existing = conn.execute(
                text("SELECT id, is_active FROM user_role_assignments WHERE user_id = :user_id AND role_id = :role_id"),
                {"user_id": user_id, "role_id": role_id},
            ).fetchone()

            if existing is not None and existing.is_active:
                raise ConflictError(
                    f"User '{user_id}' already has role '{role['name']}'",
                    {"user_id": user_id, "role_id": role_id},
                )

            if existing is not None:
                assignment_id = existing.id
                conn.execute(
                    text("""
                    UPDATE user_role_assignments
                    SET assigned_by = :assigned_by, department = :department, workflow = :workflow,
                        valid_from = :valid_from, valid_until = :valid_until, is_active = 1,
                        assignment_reason = :reason, revoked_at = NULL, revoked_by = NULL,
                        revoke_reason = NULL
                    WHERE id = :id
                    """),
                    {**params, "id": assignment_id},
                )
            else:
                assignment_id = generate_uuid()
                conn.execute(
                    text("""
                    INSERT INTO user_role_assignments
                    (id, user_id, role_id, assigned_by, department, workflow, valid_from,
                     valid_until, is_active, assignment_reason, created_at)
                    VALUES (:id, :user_id, :role_id, :assigned_by, :department, :workflow,
                            :valid_from, :valid_until, 1, :reason, :ts)
                    """),
                    {**params, "id": assignment_id},
                )

            self._log_change(conn, "user_role_assigned", "assign", assigned_by,
                             target_user_id=user_id, role_id=role_id,
                             details={"department": department, "workflow": workflow})
            get_audit_service().log_event(
                AuditEventType.ROLE_ASSIGN,
                AuditCategory.USER_MANAGEMENT,
                "assign_role",
                actor_id=assigned_by,
                resource_type="user",
                resource_id=user_id,
                metadata={"role_id": role_id, "role_name": role["name"]},
                conn=conn,
            )
            conn.commit()

        log.info("role_assigned", user_id=user_id, role=role["name"])
        return self.get_assignment(assignment_id)

    def get_assignment(self, assignment_id: str) -> dict[str, Any]:
        with get_db() as conn:
            row = conn.execute(
                text("SELECT * FROM user_role_assignments WHERE id = :id"), {"id": assignment_id}
            ).fetchone()
        if row is None:
            raise NotFoundError("Role assignment", assignment_id)
        return row_to_dict(row, bool_fields=("is_active",))

    def revoke_role(self, assignment_id: str, revoked_by: str | None = None, reason: str | None = None) -> dict[str, Any]:
        assignment = self.get_assignment(assignment_id)
        if not assignment["is_active"]:
            raise ConflictError("Role assignment is already inactive", {"assignment_id": assignment_id})

        with get_db() as conn:
            conn.execute(
                text("""
                UPDATE user_role_assignments
                SET is_active = 0, revoked_at = :ts, revoked_by = :revoked_by, revoke_reason = :reason
                WHERE id = :id
                """),
                {"ts": now_iso(), "revoked_by": revoked_by, "reason": reason, "id": assignment_id},
            )
            self._log_change(conn, "user_role_revoked", "revoke", revoked_by,
                             target_user_id=assignment["user_id"], role_id=assignment["role_id"],
                             details={"reason": reason})
            get_audit_service().log_event(
                AuditEventType.ROLE_REVOKE,
                AuditCategory.USER_MANAGEMENT,
                "revoke_role",
                actor_id=revoked_by,
                resource_type="user",
                resource_id=assignment["user_id"],
                metadata={"role_id": assignment["role_id"], "reason": reason},
                conn=conn,
            )
            conn.commit()
        return self.get_assignment(assignment_id)

    def get_user_roles(self, user_id: str, include_inactive: bool = False) -> list[dict[str, Any]]:
        sql = """
            SELECT a.*, r.name AS role_name, r.display_name, r.role_level
            FROM user_role_assignments a
            JOIN roles r ON r.id = a.role_id
            WHERE a.user_id = :user_id
        """
        if not include_inactive:
            sql += " AND a.is_active = 1"
        sql += " ORDER BY r.role_level DESC"
        with get_db() as conn:
            result = conn.execute(text(sql), {"user_id": user_id})
            return [row_to_dict(r, bool_fields=("is_active",)) for r in result.fetchall()]

    def get_user_permission_keys(self, user_id: str, now: datetime | None = None) -> list[str]:
        """Distinct permission names granted through effective assignments."""
        ts = to_iso(now or utcnow())
        with get_db() as conn:
            result = conn.execute(
                text("""
                SELECT DISTINCT p.name
                FROM user_role_assignments a
                JOIN role_permissions rp ON rp.role_id = a.role_id
                JOIN permissions p ON p.id = rp.permission_id
                WHERE a.user_id = :user_id
                  AND a.is_active = 1
                  AND a.valid_from <= :now
                  AND (a.valid_until IS NULL OR a.valid_until > :now)
                ORDER BY p.name
                """),
                {"user_id": user_id, "now": ts},
            )
            return [row[0] for row in result.fetchall()]

    def check_permission(self, user_id: str, permission: str, now: datetime | None = None) -> bool:
        return permission in self.get_user_permission_keys(user_id, now)

    def get_highest_role_level(self, user_id: str, now: datetime | None = None) -> int:
        ts = to_iso(now or utcnow())
        with get_db() as conn:
            row = conn.execute(
                text("""
                SELECT MAX(r.role_level)
                FROM user_role_assignments a
                JOIN roles r ON r.id = a.role_id
                WHERE a.user_id = :user_id AND a.is_active = 1
                  AND a.valid_from <= :now
                  AND (a.valid_until IS NULL OR a.valid_until > :now)
                """),
                {"user_id": user_id, "now": ts},
            ).fetchone()
        return row[0] or 0

    def expire_role_assignments(self, now: datetime | None = None) -> int:
        """Deactivate assignments past valid_until.

        Returns:
            Number of assignments expired
        """
        ts = to_iso(now or utcnow())
        with get_db() as conn:
            expired = conn.execute(
                text("""
                SELECT id, user_id, role_id FROM user_role_assignments
                WHERE is_active = 1 AND valid_until IS NOT NULL AND valid_until <= :now
                """),
                {"now": ts},
            ).fetchall()
            for row in expired:
                conn.execute(
                    text("""
                    UPDATE user_role_assignments
                    SET is_active = 0, revoked_at = :now, revoke_reason = 'Automatic expiration'
                    WHERE id = :id
                    """),
                    {"now": ts, "id": row.id},
                )
                self._log_change(conn, "user_role_revoked", "revoke", None,
                                 target_user_id=row.user_id, role_id=row.role_id,
                                 details={"reason": "Automatic expiration"})
            conn.commit()

        if expired:
            log.info("role_assignments_expired", count=len(expired))
        return len(expired)

    # =========================================================================
    # Department Scoped Permissions
    # =========================================================================

    def set_department_permission(
        self,
        user_id: str,
        department: str,
        permission_level: str,
        granted_by: str | None = None,
    ) -> dict[str, Any]:
        if permission_level not in DEPARTMENT_LEVELS:
            raise ValidationError("permission_level", f"Must be one of: {', '.join(DEPARTMENT_LEVELS)}")

        ts = now_iso()
        with get_db() as conn:
            conn.execute(
                text("""
                INSERT INTO department_scoped_permissions
                (id, user_id, department, permission_level, granted_by, created_at, updated_at)
                VALUES (:id, :user_id, :department, :level, :granted_by, :ts, :ts)
                ON CONFLICT (user_id, department) DO UPDATE SET
                    permission_level = excluded.permission_level,
                    granted_by = excluded.granted_by,
                    updated_at = excluded.updated_at
                """),
                {"id": generate_uuid(), "user_id": user_id, "department": department,
                 "level": permission_level, "granted_by": granted_by, "ts": ts},
            )
            self._log_change(conn, "department_permission_changed", "modify", granted_by,
                             target_user_id=user_id,
                             details={"department": department, "permission_level": permission_level})
            conn.commit()

            row = conn.execute(
                text("SELECT * FROM department_scoped_permissions WHERE user_id = :u AND department = :d"),
                {"u": user_id, "d": department},
            ).fetchone()
        return dict(row._mapping)

    def get_department_permissions(self, user_id: str) -> list[dict[str, Any]]:
        with get_db() as conn:
            result = conn.execute(
                text("SELECT * FROM department_scoped_permissions WHERE user_id = :u ORDER BY department"),
                {"u": user_id},
            )
            return [dict(r._mapping) for r in result.fetchall()]

    def check_department_access(self, user_id: str, department: str, required_level: str) -> bool:
        if required_level not in DEPARTMENT_LEVELS:
            raise ValidationError("required_level", f"Must be one of: {', '.join(DEPARTMENT_LEVELS)}")
        with get_db() as conn:
            row = conn.execute(
                text("""
                SELECT permission_level FROM department_scoped_permissions
                WHERE user_id = :u AND department = :d
                """),
                {"u": user_id, "d": department},
            ).fetchone()
        if row is None:
            return False
        return DEPARTMENT_LEVELS.index(row.permission_level) >= DEPARTMENT_LEVELS.index(required_level)

    # =========================================================================
    # Role Templates
    # =========================================================================

    def list_templates(self) -> list[dict[str, Any]]:
        with get_db() as conn:
            result = conn.execute(text("SELECT * FROM role_templates ORDER BY role_level DESC"))
            return [row_to_dict(r, json_fields=("permissions",)) for r in result.fetchall()]

    def apply_template(self, template_id: str, user_id: str, actor_id: str | None = None) -> dict[str, Any]:
        """Create a custom role from a template and assign it to a user.

        Returns:
            Dict with role, assignment and permissions
        """
        with get_db() as conn:
            template = conn.execute(
                text("SELECT * FROM role_templates WHERE id = :id"), {"id": template_id}
            ).fetchone()
        if template is None:
            raise NotFoundError("Role template", template_id)

        role_name = f"{template.template_name}_{user_id}".lower()
        role = self.get_role_by_name(role_name) or self.create_role(
            name=role_name,
            display_name=f"{template.display_name} (Custom)",
            description=template.description,
            role_level=template.role_level,
            actor_id=actor_id,
        )

        names = loads(template.permissions, [])
        with get_db() as conn:
            permission_ids = [
                r.id for r in conn.execute(
                    text("SELECT id, name FROM permissions ORDER BY name")
                ).fetchall()
                if r.name in names
            ]
        permissions = self.assign_permissions_to_role(role["id"], permission_ids, actor_id)
        assignment = self.assign_role(user_id, role["id"], assigned_by=actor_id,
                                      reason=f"Applied template {template.template_name}")

        with get_db() as conn:
            conn.execute(
                text("UPDATE role_templates SET usage_count = usage_count + 1 WHERE id = :id"),
                {"id": template_id},
            )
            conn.commit()

        return {"role": role, "assignment": assignment, "permissions": permissions}

    # =========================================================================
    # Change Log
    # =========================================================================

    def get_change_log(
        self,
        target_user_id: str | None = None,
        event_type: str | None = None,
        limit: int = 100,
    ) -> list[dict[str, Any]]:
        sql = "SELECT * FROM rbac_change_log WHERE 1=1"
        params: dict[str, Any] = {"limit": limit}
        if target_user_id:
            sql += " AND target_user_id = :target_user_id"
            params["target_user_id"] = target_user_id
        if event_type:
            sql += " AND event_type = :event_type"
            params["event_type"] = event_type
        sql += " ORDER BY created_at DESC LIMIT :limit"
        with get_db() as conn:
            result = conn.execute(text(sql), params)
            return [row_to_dict(r, json_fields=("details",)) for r in result.fetchall()]

    @staticmethod
    def _log_change(
        conn: Connection,
        event_type: str,
        action: str,
        actor_id: str | None,
        target_user_id: str | None = None,
        role_id: str | None = None,
        permission_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        conn.execute(
            text("""
            INSERT INTO rbac_change_log
            (id, event_type, action, actor_id, target_user_id, role_id, permission_id, details, created_at)
            VALUES (:id, :event_type, :action, :actor_id, :target_user_id, :role_id,
                    :permission_id, :details, :created_at)
            """),
            {
                "id": generate_uuid(),
                "event_type": event_type,
                "action": action,
                "actor_id": actor_id,
                "target_user_id": target_user_id,
                "role_id": role_id,
                "permission_id": permission_id,
                "details": dumps(details),
                "created_at": now_iso(),
            },
        )


# Global service instance
_rbac_service: RBACService | None = None


def get_rbac_service() -> RBACService:
    """Get or create the global RBAC service."""
    global _rbac_service
    if _rbac_service is None:
        _rbac_service = RBACService()
    return _rbac_service


def reset_rbac_service() -> None:
    global _rbac_service
    _rbac_service = None

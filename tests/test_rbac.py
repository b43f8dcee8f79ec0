"""Tests for roles, permissions, assignments and department scopes."""

from datetime import timedelta

import pytest

from promptdesk.core.errors import ConflictError, NotFoundError, ValidationError
from promptdesk.rbac.service import RBACService
from promptdesk.storage.models import utcnow


@pytest.fixture
def rbac() -> RBACService:
    return RBACService()


def _permission_ids(rbac, *names):
    by_name = {p["name"]: p["id"] for p in rbac.list_permissions()}
    return [by_name[name] for name in names]


class TestRoles:
    """Test role CRUD."""

    def test_system_roles_seeded(self, rbac):
        names = [r["name"] for r in rbac.list_roles()]
        assert names[0] == "admin"
        assert set(names) == {"admin", "manager", "reviewer", "user", "viewer"}

    def test_create_custom_role(self, rbac):
        role = rbac.create_role("editor", "Editor", role_level=40, actor_id="admin-1")

        assert role["is_system_role"] is False
        assert rbac.get_change_log(event_type="role_created")[0]["role_id"] == role["id"]

    def test_duplicate_role_name(self, rbac):
        with pytest.raises(ConflictError):
            rbac.create_role("admin", "Another admin")

    def test_role_level_bounds(self, rbac):
        with pytest.raises(ValidationError):
            rbac.create_role("too-high", "Too high", role_level=101)

    def test_update_role(self, rbac):
        role = rbac.create_role("editor", "Editor")
        updated = rbac.update_role(role["id"], {"display_name": "Senior Editor", "name": "ignored"})
        assert updated["display_name"] == "Senior Editor"
        assert updated["name"] == "editor"

    def test_system_roles_cannot_be_deleted(self, rbac):
        admin = rbac.get_role_by_name("admin")
        with pytest.raises(ConflictError):
            rbac.delete_role(admin["id"])

    def test_delete_custom_role(self, rbac):
        role = rbac.create_role("temp", "Temp")
        rbac.delete_role(role["id"])
        with pytest.raises(NotFoundError):
            rbac.get_role(role["id"])


class TestPermissions:
    """Test permission sets and checks."""

    def test_seeded_role_permissions(self, rbac):
        reviewer = rbac.get_role_by_name("reviewer")
        names = {p["name"] for p in rbac.get_role_permissions(reviewer["id"])}
        assert names == {"prompts.read", "prompts.approve", "analytics.read", "library.access", "collaborate.review"}

    def test_replace_permission_set(self, rbac):
        """Assigning a permission list replaces the previous set."""
        role = rbac.create_role("editor", "Editor")
        rbac.assign_permissions_to_role(role["id"], _permission_ids(rbac, "prompts.read", "prompts.update"))
        result = rbac.assign_permissions_to_role(role["id"], _permission_ids(rbac, "prompts.read"), "admin-1")

        assert [p["name"] for p in result] == ["prompts.read"]
        events = {e["event_type"] for e in rbac.get_change_log()}
        assert {"permission_granted", "permission_revoked"} <= events

    def test_unknown_permission_rejected(self, rbac):
        role = rbac.create_role("editor", "Editor")
        with pytest.raises(ValidationError):
            rbac.assign_permissions_to_role(role["id"], ["nope"])

    def test_check_permission_via_role(self, rbac, reviewer):
        assert rbac.check_permission(reviewer, "prompts.approve") is True
        assert rbac.check_permission(reviewer, "roles.manage") is False
        assert rbac.check_permission("nobody", "prompts.read") is False

    def test_highest_role_level(self, rbac, admin, grant_role):
        grant_role(admin, "viewer")
        assert rbac.get_highest_role_level(admin) == 100
        assert rbac.get_highest_role_level("nobody") == 0


class TestAssignments:
    """Test role assignment lifecycle."""

    def test_duplicate_active_assignment(self, rbac):
        role = rbac.get_role_by_name("user")
        rbac.assign_role("u1", role["id"])
        with pytest.raises(ConflictError):
            rbac.assign_role("u1", role["id"])

    def test_revoke_and_reassign(self, rbac):
        """Reassigning a revoked role reactivates the same assignment."""
        role = rbac.get_role_by_name("user")
        assignment = rbac.assign_role("u1", role["id"], assigned_by="admin-1")

        revoked = rbac.revoke_role(assignment["id"], revoked_by="admin-1", reason="left team")
        assert revoked["is_active"] is False
        assert rbac.check_permission("u1", "prompts.create") is False
        with pytest.raises(ConflictError):
            rbac.revoke_role(assignment["id"])

        again = rbac.assign_role("u1", role["id"])
        assert again["id"] == assignment["id"]
        assert again["is_active"] is True
        assert again["revoked_at"] is None

    def test_time_bounded_assignment(self, rbac):
        role = rbac.get_role_by_name("reviewer")
        now = utcnow()
        rbac.assign_role("temp", role["id"], valid_from=now, valid_until=now + timedelta(hours=1))

        assert rbac.check_permission("temp", "prompts.approve", now=now) is True
        assert rbac.check_permission("temp", "prompts.approve", now=now + timedelta(hours=2)) is False

    def test_future_assignment_not_yet_effective(self, rbac):
        role = rbac.get_role_by_name("reviewer")
        now = utcnow()
        rbac.assign_role("later", role["id"], valid_from=now + timedelta(days=1))
        assert rbac.get_user_permission_keys("later", now=now) == []

    def test_invalid_window(self, rbac):
        role = rbac.get_role_by_name("user")
        now = utcnow()
        with pytest.raises(ValidationError):
            rbac.assign_role("u", role["id"], valid_from=now, valid_until=now)

    def test_expire_role_assignments(self, rbac):
        """Expired assignments are deactivated with an automatic reason."""
        role = rbac.get_role_by_name("user")
        now = utcnow()
        assignment = rbac.assign_role("u1", role["id"], valid_until=now + timedelta(minutes=5))

        assert rbac.expire_role_assignments(now) == 0
        assert rbac.expire_role_assignments(now + timedelta(minutes=10)) == 1

        expired = rbac.get_assignment(assignment["id"])
        assert expired["is_active"] is False
        assert expired["revoke_reason"] == "Automatic expiration"
        assert rbac.get_user_roles("u1") == []
        assert len(rbac.get_user_roles("u1", include_inactive=True)) == 1


class TestDepartmentScopes:
    """Test department scoped permission levels."""

    def test_level_hierarchy(self, rbac):
        rbac.set_department_permission("u1", "Finance", "manage", granted_by="admin-1")

        assert rbac.check_department_access("u1", "Finance", "write") is True
        assert rbac.check_department_access("u1", "Finance", "admin") is False
        assert rbac.check_department_access("u1", "Sales", "read") is False

    def test_upsert_replaces_level(self, rbac):
        rbac.set_department_permission("u1", "Finance", "read")
        rbac.set_department_permission("u1", "Finance", "admin")
        perms = rbac.get_department_permissions("u1")
        assert len(perms) == 1
        assert perms[0]["permission_level"] == "admin"

    def test_invalid_level(self, rbac):
        with pytest.raises(ValidationError):
            rbac.set_department_permission("u1", "Finance", "owner")


class TestTemplates:
    def test_apply_template_creates_custom_role(self, rbac):
        """Applying a template creates and assigns a per-user role."""
        template = next(t for t in rbac.list_templates() if t["template_name"] == "quality_reviewer")

        result = rbac.apply_template(template["id"], "qa-1", actor_id="admin-1")

        assert result["role"]["name"] == "quality_reviewer_qa-1"
        assert rbac.check_permission("qa-1", "collaborate.review") is True
        assert {p["name"] for p in result["permissions"]} == set(template["permissions"])
        refreshed = next(t for t in rbac.list_templates() if t["id"] == template["id"])
        assert refreshed["usage_count"] == 1

    def test_unknown_template(self, rbac):
        with pytest.raises(NotFoundError):
            rbac.apply_template("missing", "u1")

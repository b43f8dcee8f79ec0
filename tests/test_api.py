"""Tests for the HTTP API: routing, actor headers, permissions and error bodies."""

import pytest


def as_user(user_id: str) -> dict[str, str]:
    return {"X-User-Id": user_id}


@pytest.fixture
def prompt_id(client, author) -> str:
    response = client.post(
        "/prompts",
        json={"title": "Weekly status update", "content": "Summarize the week for {team}", "visibility": "public"},
        headers=as_user(author),
    )
    assert response.status_code == 201
    return response.json()["id"]


# =============================================================================
# App Endpoints
# =============================================================================


class TestAppEndpoints:
    def test_health(self, client):
        assert client.get("/health").json() == {"status": "healthy"}

    def test_root_lists_endpoints(self, client):
        data = client.get("/").json()
        assert "prompts" in data["endpoints"]
        assert "version" in data


# =============================================================================
# Prompts
# =============================================================================


class TestPromptRoutes:
    """Test prompt CRUD through the API."""

    def test_create_and_get(self, client, author, prompt_id):
        response = client.get(f"/prompts/{prompt_id}", headers=as_user(author))

        assert response.status_code == 200
        body = response.json()
        assert body["prompt"]["title"] == "Weekly status update"
        assert body["prompt"]["author_id"] == author
        assert [v["version_number"] for v in body["versions"]] == [1]

    def test_update_creates_version(self, client, author, prompt_id):
        response = client.patch(
            f"/prompts/{prompt_id}",
            json={"content": "Summarize the week for {team} in five bullets"},
            headers=as_user(author),
        )
        assert response.status_code == 200

        versions = client.get(f"/prompts/{prompt_id}/versions", headers=as_user(author)).json()
        assert versions["pagination"]["total"] == 2

    def test_list_includes_public_prompt(self, client, prompt_id):
        body = client.get("/prompts").json()
        assert [p["id"] for p in body["data"]] == [prompt_id]

    def test_use_and_rate(self, client, reviewer, prompt_id):
        assert client.post(f"/prompts/{prompt_id}/use", headers=as_user(reviewer)).json()["usage_count"] == 1

        rated = client.post(f"/prompts/{prompt_id}/rate", json={"rating": 4}, headers=as_user(reviewer)).json()
        assert rated["rating_count"] == 1
        assert rated["rating_average"] == 4

    def test_search_finds_prompt(self, client, prompt_id):
        response = client.post("/search", json={"filters": {"query": "status"}})

        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 1
        assert body["cached"] is False


# =============================================================================
# Errors and Permissions
# =============================================================================


class TestErrorHandling:
    """Test actor resolution, permission checks and error bodies."""

    def test_missing_actor_is_401(self, client):
        response = client.post("/prompts", json={"title": "Untitled", "content": "Anything at all"})

        assert response.status_code == 401
        assert response.json()["error"] == "AUTHENTICATION_ERROR"

    def test_missing_permission_is_403(self, client):
        response = client.post(
            "/prompts",
            json={"title": "Untitled prompt", "content": "Anything at all"},
            headers=as_user("stranger"),
        )

        assert response.status_code == 403
        assert response.json()["details"] == {"action": "create", "resource": "prompts"}

    def test_not_found_body(self, client):
        response = client.get("/prompts/missing")

        assert response.status_code == 404
        body = response.json()
        assert set(body) == {"error", "message", "status_code", "details"}
        assert body["status_code"] == 404
        assert body["details"]["id"] == "missing"

    def test_validation_error_names_field(self, client, author):
        response = client.post("/prompts", json={"title": "ab", "content": "Too short title"}, headers=as_user(author))

        assert response.status_code == 400
        assert response.json()["details"]["field"] == "title"

    def test_rbac_routes_require_manage(self, client, author, admin):
        assert client.get("/rbac/roles", headers=as_user(author)).status_code == 403
        assert client.get("/rbac/roles", headers=as_user(admin)).status_code == 200


# =============================================================================
# Approvals and Notifications
# =============================================================================


class TestApprovalFlow:
    """Test the approval queue end to end with notifications."""

    def test_approve_publishes_and_notifies(self, client, author, reviewer, prompt_id):
        queued = client.post("/approvals/queue", json={"prompt_id": prompt_id, "priority": 5}, headers=as_user(author))
        assert queued.status_code == 201
        queue_id = queued.json()["id"]

        sla = client.get(f"/approvals/queue/{queue_id}/sla", headers=as_user(author)).json()
        assert sla["is_within_sla"] is True
        assert sla["completed_at"] is None

        result = client.post(
            f"/approvals/queue/{queue_id}/actions",
            json={"action_type": "approve", "comments": "Looks good"},
            headers=as_user(reviewer),
        )
        assert result.status_code == 200
        assert result.json()["item"]["status"] == "approved"

        prompt = client.get(f"/prompts/{prompt_id}", headers=as_user(author)).json()["prompt"]
        assert prompt["status"] == "published"

        unread = client.get("/notifications/approval/unread-count", headers=as_user(author)).json()
        assert unread == {"channel": "approval", "unread": 1}
        assert client.post("/notifications/approval/read-all", headers=as_user(author)).json() == {"updated": 1}

    def test_author_cannot_approve(self, client, author, prompt_id):
        queue_id = client.post("/approvals/queue", json={"prompt_id": prompt_id}, headers=as_user(author)).json()["id"]
        response = client.post(
            f"/approvals/queue/{queue_id}/actions",
            json={"action_type": "approve"},
            headers=as_user(author),
        )
        assert response.status_code == 403

    def test_unknown_notification(self, client, author):
        response = client.post("/notifications/review/missing/read", headers=as_user(author))
        assert response.status_code == 404

    def test_unknown_channel_rejected(self, client, author):
        assert client.get("/notifications/email", headers=as_user(author)).status_code == 422


# =============================================================================
# Peer Review
# =============================================================================


class TestPeerReviewRoutes:
    def test_submit_and_fetch(self, client, author):
        response = client.post(
            "/peer-review/submissions",
            json={
                "title": "Escalation triage",
                "workflow": "support",
                "role": "agent",
                "prompt_content": "Triage the ticket by severity",
            },
            headers=as_user(author),
        )
        assert response.status_code == 201
        submission = response.json()
        assert submission["status"] == "pending"

        detail = client.get(f"/peer-review/submissions/{submission['id']}", headers=as_user(author))
        assert detail.status_code == 200
        assert detail.json()["assignments"] == []

    def test_escalation_routes_require_review_permission(self, client, author, reviewer):
        assert client.get("/peer-review/escalations", headers=as_user(author)).status_code == 403
        assert client.get("/peer-review/escalations", headers=as_user(reviewer)).json() == []
        missing = client.post("/peer-review/escalations/missing/resolve", json={}, headers=as_user(reviewer))
        assert missing.status_code == 404


# =============================================================================
# Tags
# =============================================================================


class TestTagRoutes:
    def test_create_assign_and_list(self, client, author, prompt_id):
        created = client.post("/tags", json={"name": "Release Notes", "tag_type": "workflow"}, headers=as_user(author))
        assert created.status_code == 201
        tag = created.json()
        assert tag["slug"] == "release-notes"

        assigned = client.post(f"/tags/prompts/{prompt_id}", json={"tag_id": tag["id"]}, headers=as_user(author))
        assert assigned.status_code == 201

        tags = client.get(f"/tags/prompts/{prompt_id}", headers=as_user(author)).json()
        assert [t["slug"] for t in tags] == ["release-notes"]
        trending = client.get("/tags/trending", headers=as_user(author)).json()
        assert trending[0]["slug"] == "release-notes"
        assert trending[0]["trend"] == "up"

        removed = client.delete(f"/tags/prompts/{prompt_id}/{tag['id']}", headers=as_user(author))
        assert removed.status_code == 204

    def test_duplicate_tag_is_conflict(self, client, author):
        client.post("/tags", json={"name": "Legal"}, headers=as_user(author))
        response = client.post("/tags", json={"name": "legal"}, headers=as_user(author))
        assert response.status_code == 409

    def test_bad_color_rejected(self, client, author):
        response = client.post("/tags", json={"name": "Legal", "color": "red"}, headers=as_user(author))
        assert response.status_code == 422


# =============================================================================
# Reports and System
# =============================================================================


class TestReportsAndSystem:
    """Test report export and the operational routes."""

    def test_report_export_content_type(self, client, admin):
        templates = client.get("/reports/templates").json()
        template_id = next(t["id"] for t in templates if t["template_slug"] == "usage_summary")

        execution = client.post("/reports/generate", json={"template_id": template_id}, headers=as_user(admin))
        assert execution.status_code == 201
        execution_id = execution.json()["id"]

        exported = client.get(f"/reports/executions/{execution_id}/export?format=csv", headers=as_user(admin))

        assert exported.status_code == 200
        assert exported.headers["content-type"].startswith("text/csv")
        assert "attachment" in exported.headers["content-disposition"]
        assert exported.text.startswith("Report Title,Usage Summary")

    def test_table_stats(self, client, admin):
        tables = client.get("/system/tables", headers=as_user(admin)).json()
        assert tables["roles"] == 5

    def test_maintenance_requires_manage(self, client, author):
        assert client.post("/system/maintenance", headers=as_user(author)).status_code == 403

    def test_maintenance_runs_jobs(self, client, admin):
        response = client.post("/system/maintenance", headers=as_user(admin))

        assert response.status_code == 200
        body = response.json()
        assert body["expired_role_assignments"] == 0
        assert body["scheduled_reports"] == []
        assert set(body["sla"]) >= {"warnings", "breaches"}
        assert body["review_reminders"] == {"checked": 0, "sent": 0, "escalated": 0}

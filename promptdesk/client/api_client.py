"""
PromptDesk API client.

Thin wrapper over the HTTP API for scripts and dashboards. Every request
carries the acting user in the ``X-User-Id`` header.
"""

from __future__ import annotations

from typing import Any
import requests

# Default API URL
DEFAULT_API_URL = "http://localhost:8000"


class PromptDeskClient:
    """Client for the PromptDesk API."""

    def __init__(self, base_url: str = DEFAULT_API_URL, user_id: str | None = None, timeout: float = 30):
        """Initialize the client.

        Args:
            base_url: Base URL of the API server
            user_id: Acting user sent as X-User-Id
            timeout: Per-request timeout in seconds
        """
        self.base_url = base_url.rstrip("/")
        self.user_id = user_id
        self.timeout = timeout

    def _headers(self) -> dict[str, str]:
        return {"X-User-Id": self.user_id} if self.user_id else {}

    def _request(
        self,
        method: str,
        endpoint: str,
        params: dict | None = None,
        data: dict | list | None = None,
    ) -> Any:
        url = f"{self.base_url}{endpoint}"
        if params:
            params = {k: v for k, v in params.items() if v is not None}
        response = requests.request(
            method, url, params=params, json=data, headers=self._headers(), timeout=self.timeout
        )
        response.raise_for_status()
        if response.status_code == 204 or not response.content:
            return None
        if response.headers.get("content-type", "").startswith("application/json"):
            return response.json()
        return response.text

    def _get(self, endpoint: str, params: dict | None = None) -> Any:
        return self._request("GET", endpoint, params=params)

    def _post(self, endpoint: str, data: dict | list | None = None, params: dict | None = None) -> Any:
        return self._request("POST", endpoint, params=params, data=data)

    def _put(self, endpoint: str, data: dict | None = None, params: dict | None = None) -> Any:
        return self._request("PUT", endpoint, params=params, data=data)

    def _patch(self, endpoint: str, data: dict) -> Any:
        return self._request("PATCH", endpoint, data=data)

    def _delete(self, endpoint: str) -> Any:
        return self._request("DELETE", endpoint)

    def health(self) -> dict:
        return self._get("/health")

    # =========================================================================
    # Prompts
    # =========================================================================

    def create_prompt(self, title: str, content: str, **fields: Any) -> dict:
        """Create a prompt.

        Args:
            title: Prompt title
            content: Prompt text
            **fields: Optional fields (role, department, workflow, prompt_type,
                status, visibility, tags, metadata, ...)
        """
        return self._post("/prompts", {"title": title, "content": content, **fields})

    def list_prompts(self, page: int = 1, limit: int = 20, **filters: Any) -> dict:
        return self._get("/prompts", {"page": page, "limit": limit, **filters})

    def get_prompt(self, prompt_id: str) -> dict:
        return self._get(f"/prompts/{prompt_id}")

    def update_prompt(self, prompt_id: str, **updates: Any) -> dict:
        return self._patch(f"/prompts/{prompt_id}", updates)

    def delete_prompt(self, prompt_id: str) -> dict:
        return self._delete(f"/prompts/{prompt_id}")

    def get_versions(self, prompt_id: str, page: int = 1, limit: int = 20) -> dict:
        return self._get(f"/prompts/{prompt_id}/versions", {"page": page, "limit": limit})

    def revert_prompt(self, prompt_id: str, version_id: str, reason: str | None = None) -> dict:
        return self._post(f"/prompts/{prompt_id}/revert", {"version_id": version_id, "reason": reason})

    def use_prompt(self, prompt_id: str) -> dict:
        return self._post(f"/prompts/{prompt_id}/use")

    def rate_prompt(self, prompt_id: str, rating: int) -> dict:
        return self._post(f"/prompts/{prompt_id}/rate", {"rating": rating})

    # =========================================================================
    # Search
    # =========================================================================

    def search(self, filters: dict | None = None, options: dict | None = None) -> dict:
        """Search prompts.

        Args:
            filters: query, roles, departments, workflows, types, statuses, ...
            options: sort_by, sort_order, page, limit

        Returns:
            Dict with results, total, facets and cached flag
        """
        return self._post("/search", {"filters": filters or {}, "options": options or {}})

    def get_facets(self) -> dict:
        return self._get("/search/facets")

    def get_popular_searches(self, limit: int = 10) -> list:
        return self._get("/search/popular", {"limit": limit})

    # =========================================================================
    # Peer Review
    # =========================================================================

    def create_submission(self, title: str, workflow: str, role: str, prompt_content: str, **fields: Any) -> dict:
        data = {"title": title, "workflow": workflow, "role": role, "prompt_content": prompt_content, **fields}
        return self._post("/peer-review/submissions", data)

    def list_submissions(self, **filters: Any) -> list:
        return self._get("/peer-review/submissions", filters)

    def get_submission(self, submission_id: str) -> dict:
        return self._get(f"/peer-review/submissions/{submission_id}")

    def auto_assign_reviewers(self, submission_id: str) -> list:
        return self._post(f"/peer-review/submissions/{submission_id}/auto-assign")

    def assign_reviewer(self, submission_id: str, reviewer_id: str) -> dict:
        return self._post(f"/peer-review/submissions/{submission_id}/assignments", {"reviewer_id": reviewer_id})

    def submit_review(
        self,
        submission_id: str,
        ratings: dict[str, int],
        recommendation: str,
        **feedback: Any,
    ) -> dict:
        """Submit a review.

        Args:
            submission_id: Submission under review
            ratings: accuracy, clarity, usefulness, completeness, overall (1-5)
            recommendation: approve, reject or request_changes
            **feedback: strengths, weaknesses, suggestions
        """
        data = {"ratings": ratings, "recommendation": recommendation, **feedback}
        return self._post(f"/peer-review/submissions/{submission_id}/reviews", data)

    def add_comment(
        self,
        submission_id: str,
        comment_text: str,
        comment_type: str = "general",
        parent_comment_id: str | None = None,
    ) -> dict:
        data = {"comment_text": comment_text, "comment_type": comment_type, "parent_comment_id": parent_comment_id}
        return self._post(f"/peer-review/submissions/{submission_id}/comments", data)

    def get_comments(self, submission_id: str) -> list:
        return self._get(f"/peer-review/submissions/{submission_id}/comments")

    def get_reviewer_queue(self, reviewer_id: str) -> list:
        return self._get(f"/peer-review/reviewers/{reviewer_id}/queue")

    def run_review_reminders(self) -> dict:
        return self._post("/peer-review/reminders/run")

    def get_active_escalations(self, limit: int = 50) -> list:
        return self._get("/peer-review/escalations", {"limit": limit})

    def resolve_escalation(self, escalation_id: str, notes: str | None = None) -> dict:
        return self._post(f"/peer-review/escalations/{escalation_id}/resolve", {"notes": notes})

    # =========================================================================
    # Tags
    # =========================================================================

    def list_tags(self, **filters: Any) -> list:
        return self._get("/tags", filters)

    def create_tag(self, name: str, **fields: Any) -> dict:
        return self._post("/tags", {"name": name, **fields})

    def tag_prompt(self, prompt_id: str, tag_id: str, source: str = "manual") -> dict:
        return self._post(f"/tags/prompts/{prompt_id}", {"tag_id": tag_id, "source": source})

    def untag_prompt(self, prompt_id: str, tag_id: str) -> Any:
        return self._delete(f"/tags/prompts/{prompt_id}/{tag_id}")

    def get_trending_tags(self, limit: int = 10, days: int = 7) -> list:
        return self._get("/tags/trending", {"limit": limit, "days": days})

    # =========================================================================
    # Approvals
    # =========================================================================

    def submit_for_approval(self, prompt_id: str, priority: int = 5, **fields: Any) -> dict:
        return self._post("/approvals/queue", {"prompt_id": prompt_id, "priority": priority, **fields})

    def get_queue(self, **filters: Any) -> list:
        return self._get("/approvals/queue", filters)

    def get_queue_item(self, queue_id: str) -> dict:
        return self._get(f"/approvals/queue/{queue_id}")

    def process_approval_action(self, queue_id: str, action_type: str, **fields: Any) -> dict:
        """Apply a reviewer action (approve, reject, request_revision, escalate, ...)."""
        return self._post(f"/approvals/queue/{queue_id}/actions", {"action_type": action_type, **fields})

    def request_revision(self, queue_id: str, revision_type: str, description: str, **fields: Any) -> dict:
        data = {"revision_type": revision_type, "description": description, **fields}
        return self._post(f"/approvals/queue/{queue_id}/revisions", data)

    def bulk_approve(self, queue_ids: list[str], comments: str | None = None) -> dict:
        return self._post("/approvals/bulk/approve", {"queue_ids": queue_ids, "comments": comments})

    def bulk_reject(self, queue_ids: list[str], comments: str | None = None) -> dict:
        return self._post("/approvals/bulk/reject", {"queue_ids": queue_ids, "comments": comments})

    def check_sla_compliance(self) -> dict:
        return self._post("/approvals/sla/check")

    def get_queue_statistics(self) -> dict:
        return self._get("/approvals/statistics")

    # =========================================================================
    # Audit
    # =========================================================================

    def query_audit_events(self, **filters: Any) -> list:
        return self._get("/audit/events", filters)

    def verify_audit_chain(self, **params: Any) -> dict:
        return self._post("/audit/verify", params=params)

    def get_resource_history(self, resource_type: str, resource_id: str) -> list:
        return self._get(f"/audit/resources/{resource_type}/{resource_id}/history")

    def export_audit_events(self, format: str = "json", **filters: Any) -> str:
        return self._get("/audit/export", {"format": format, **filters})

    # =========================================================================
    # RBAC
    # =========================================================================

    def list_roles(self) -> list:
        return self._get("/rbac/roles")

    def assign_role(self, user_id: str, role_id: str, **fields: Any) -> dict:
        return self._post("/rbac/assignments", {"user_id": user_id, "role_id": role_id, **fields})

    def revoke_role(self, assignment_id: str, reason: str | None = None) -> dict:
        return self._post(f"/rbac/assignments/{assignment_id}/revoke", {"reason": reason})

    def get_user_permissions(self, user_id: str) -> dict:
        return self._get(f"/rbac/users/{user_id}/permissions")

    def check_permission(self, user_id: str, permission: str) -> bool:
        return self._get(f"/rbac/users/{user_id}/check", {"permission": permission})["allowed"]

    # =========================================================================
    # Governance
    # =========================================================================

    def create_retention_policy(self, **fields: Any) -> dict:
        return self._post("/governance/retention-policies", fields)

    def classify_data(self, resource_type: str, resource_id: str, classification_level: str, **fields: Any) -> dict:
        data = {
            "resource_type": resource_type,
            "resource_id": resource_id,
            "classification_level": classification_level,
            **fields,
        }
        return self._post("/governance/classifications", data)

    def create_privacy_request(self, request_type: str, subject_user_id: str | None = None, **fields: Any) -> dict:
        data = {"request_type": request_type, "subject_user_id": subject_user_id, **fields}
        return self._post("/governance/privacy-requests", data)

    def get_compliance_score(self) -> int:
        return self._get("/governance/compliance-score")["score"]

    # =========================================================================
    # Analytics and Reports
    # =========================================================================

    def track_event(self, event_type: str, event_name: str, **fields: Any) -> dict:
        return self._post("/analytics/events", {"event_type": event_type, "event_name": event_name, **fields})

    def get_usage_metrics(self, start: str | None = None, end: str | None = None) -> dict:
        return self._get("/analytics/usage", {"start": start, "end": end})

    def get_performance_metrics(self, start: str | None = None, end: str | None = None) -> dict:
        return self._get("/analytics/performance", {"start": start, "end": end})

    def list_report_templates(self) -> list:
        return self._get("/reports/templates")

    def generate_report(self, template_id: str, start: str | None = None, end: str | None = None) -> dict:
        return self._post("/reports/generate", {"template_id": template_id, "start": start, "end": end})

    def get_report(self, execution_id: str) -> dict:
        return self._get(f"/reports/executions/{execution_id}")

    def export_report(self, execution_id: str, format: str = "json") -> str:
        """Download a rendered report as text."""
        url = f"{self.base_url}/reports/executions/{execution_id}/export"
        response = requests.get(url, params={"format": format}, headers=self._headers(), timeout=self.timeout)
        response.raise_for_status()
        return response.text

    # =========================================================================
    # Notifications and System
    # =========================================================================

    def get_notifications(self, channel: str = "review", unread_only: bool = False) -> list:
        return self._get(f"/notifications/{channel}", {"unread_only": unread_only})

    def mark_all_notifications_read(self, channel: str = "review") -> int:
        return self._post(f"/notifications/{channel}/read-all")["updated"]

    def run_maintenance(self) -> dict:
        return self._post("/system/maintenance")

"""Data governance API routes."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query, Response

from promptdesk.core.security import require_actor, require_permission

from .schemas import (
    ApplyMaskingRequest,
    ClassifyRequest,
    GovernanceReportRequest,
    LifecycleEventRequest,
    LineageRequest,
    MaskingRuleRequest,
    PrivacyRequestCreate,
    PrivacyStatusUpdate,
    RetentionPolicyRequest,
)
from .service import get_governance_service

router = APIRouter(prefix="/governance", tags=["governance"])

can_read = require_permission("audit.read")
can_manage = require_permission("roles.manage")


# =============================================================================
# Retention
# =============================================================================


@router.get("/retention-policies")
def list_retention_policies(active_only: bool = False, _: str = Depends(can_read)) -> list[dict[str, Any]]:
    return get_governance_service().list_retention_policies(active_only)


@router.post("/retention-policies", status_code=201)
def create_retention_policy(request: RetentionPolicyRequest, actor_id: str = Depends(can_manage)) -> dict[str, Any]:
    return get_governance_service().create_retention_policy(
        request.policy_name,
        request.data_type,
        request.retention_days,
        soft_delete=request.soft_delete,
        execution_schedule=request.execution_schedule.value,
        description=request.description,
        actor_id=actor_id,
    )


@router.put("/retention-policies/{policy_id}/active")
def set_policy_active(policy_id: str, is_active: bool = Query(...), _: str = Depends(can_manage)) -> dict[str, Any]:
    return get_governance_service().set_policy_active(policy_id, is_active)


@router.post("/retention-policies/{policy_id}/apply")
def apply_retention_policy(policy_id: str, _: str = Depends(can_manage)) -> dict[str, Any]:
    return get_governance_service().apply_retention_policy(policy_id)


@router.post("/retention/run-due")
def run_due_policies(_: str = Depends(can_manage)) -> list[dict[str, Any]]:
    return get_governance_service().run_due_policies()


# =============================================================================
# Classification and Lineage
# =============================================================================


@router.post("/classifications")
def classify_data(request: ClassifyRequest, actor_id: str = Depends(can_manage)) -> dict[str, Any]:
    return get_governance_service().classify_data(
        request.resource_type,
        request.resource_id,
        request.classification_level.value,
        contains_pii=request.contains_pii,
        pii_types=request.pii_types,
        tags=request.tags,
        actor_id=actor_id,
    )


@router.get("/classifications")
def list_classifications(
    level: str | None = None,
    contains_pii: bool | None = None,
    _: str = Depends(can_read),
) -> list[dict[str, Any]]:
    return get_governance_service().list_classifications(level, contains_pii)


@router.get("/classifications/{resource_type}/{resource_id}")
def get_classification(resource_type: str, resource_id: str, _: str = Depends(can_read)) -> dict[str, Any]:
    return get_governance_service().get_classification(resource_type, resource_id)


@router.get("/inventory")
def get_data_inventory(_: str = Depends(can_read)) -> dict[str, Any]:
    return get_governance_service().get_data_inventory()


@router.post("/lineage", status_code=201)
def record_lineage(request: LineageRequest, actor_id: str = Depends(require_actor)) -> dict[str, Any]:
    return get_governance_service().record_lineage(actor_id=actor_id, **request.model_dump())


@router.get("/lineage/{resource_type}/{resource_id}")
def get_lineage(
    resource_type: str,
    resource_id: str,
    direction: str = "both",
    _: str = Depends(can_read),
) -> dict[str, list]:
    return get_governance_service().get_lineage(resource_type, resource_id, direction)


# =============================================================================
# Masking
# =============================================================================


@router.get("/masking-rules")
def list_masking_rules(resource_type: str | None = None, _: str = Depends(can_read)) -> list[dict[str, Any]]:
    return get_governance_service().list_masking_rules(resource_type)


@router.post("/masking-rules", status_code=201)
def create_masking_rule(request: MaskingRuleRequest, _: str = Depends(can_manage)) -> dict[str, Any]:
    return get_governance_service().create_masking_rule(
        request.rule_name,
        request.resource_type,
        request.field_name,
        request.masking_method.value,
        request.preserve_length,
    )


@router.put("/masking-rules/{rule_id}/active", status_code=204)
def set_masking_rule_active(rule_id: str, is_active: bool = Query(...), _: str = Depends(can_manage)) -> Response:
    get_governance_service().set_masking_rule_active(rule_id, is_active)
    return Response(status_code=204)


@router.delete("/masking-rules/{rule_id}", status_code=204)
def delete_masking_rule(rule_id: str, _: str = Depends(can_manage)) -> Response:
    get_governance_service().delete_masking_rule(rule_id)
    return Response(status_code=204)


@router.post("/masking/apply")
def apply_masking(request: ApplyMaskingRequest, _: str = Depends(require_actor)) -> dict[str, Any]:
    return get_governance_service().apply_masking(request.resource_type, request.record)


# =============================================================================
# Privacy Requests
# =============================================================================


@router.post("/privacy-requests", status_code=201)
def create_privacy_request(request: PrivacyRequestCreate, actor_id: str = Depends(require_actor)) -> dict[str, Any]:
    return get_governance_service().create_privacy_request(
        request.request_type,
        request.subject_user_id or actor_id,
        requester_email=request.requester_email,
        description=request.description,
    )


@router.get("/privacy-requests")
def list_privacy_requests(
    status: str | None = None,
    subject_user_id: str | None = None,
    _: str = Depends(can_read),
) -> list[dict[str, Any]]:
    return get_governance_service().list_privacy_requests(status, subject_user_id)


@router.put("/privacy-requests/{request_id}/status")
def update_privacy_request_status(
    request_id: str,
    request: PrivacyStatusUpdate,
    _: str = Depends(can_manage),
) -> dict[str, Any]:
    return get_governance_service().update_privacy_request_status(request_id, request.status, request.notes)


@router.post("/privacy-requests/{request_id}/process")
def process_privacy_request(request_id: str, actor_id: str = Depends(can_manage)) -> dict[str, Any]:
    return get_governance_service().process_privacy_request(request_id, actor_id)


# =============================================================================
# Lifecycle, Reports and Score
# =============================================================================


@router.get("/lifecycle-events")
def get_lifecycle_events(
    event_type: str | None = None,
    resource_type: str | None = None,
    resource_id: str | None = None,
    limit: int = Query(default=100, ge=1, le=1000),
    _: str = Depends(can_read),
) -> list[dict[str, Any]]:
    return get_governance_service().get_lifecycle_events(event_type, resource_type, resource_id, limit=limit)


@router.post("/lifecycle-events", status_code=201)
def record_lifecycle_event(request: LifecycleEventRequest, actor_id: str = Depends(can_manage)) -> dict[str, Any]:
    return get_governance_service().record_lifecycle_event(performed_by=actor_id, **request.model_dump())


@router.post("/reports", status_code=201)
def generate_governance_report(request: GovernanceReportRequest, actor_id: str = Depends(can_read)) -> dict[str, Any]:
    return get_governance_service().generate_governance_report(request.report_type, actor_id)


@router.get("/reports")
def list_governance_reports(report_type: str | None = None, _: str = Depends(can_read)) -> list[dict[str, Any]]:
    return get_governance_service().list_governance_reports(report_type)


@router.get("/compliance-score")
def get_compliance_score(_: str = Depends(can_read)) -> dict[str, int]:
    return {"score": get_governance_service().calculate_compliance_score()}

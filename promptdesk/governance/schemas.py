"""Data governance request models."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class ClassificationLevel(str, Enum):
    PUBLIC = "public"
    INTERNAL = "internal"
    CONFIDENTIAL = "confidential"
    RESTRICTED = "restricted"
    HIGHLY_RESTRICTED = "highly_restricted"


class ExecutionSchedule(str, Enum):
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class MaskingMethod(str, Enum):
    REDACT = "redact"
    PARTIAL = "partial"
    HASH = "hash"
    NULL = "null"
    STATIC = "static"


class RetentionPolicyRequest(BaseModel):
    policy_name: str = Field(..., min_length=1)
    data_type: str
    retention_days: int = Field(..., gt=0)
    soft_delete: bool = True
    execution_schedule: ExecutionSchedule = ExecutionSchedule.DAILY
    description: str | None = None


class ClassifyRequest(BaseModel):
    resource_type: str
    resource_id: str
    classification_level: ClassificationLevel
    contains_pii: bool = False
    pii_types: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)


class LineageRequest(BaseModel):
    source_type: str
    source_id: str
    target_type: str
    target_id: str
    relationship_type: str
    transformation: str | None = None


class MaskingRuleRequest(BaseModel):
    rule_name: str = Field(..., min_length=1)
    resource_type: str
    field_name: str
    masking_method: MaskingMethod
    preserve_length: bool = False


class ApplyMaskingRequest(BaseModel):
    resource_type: str
    record: dict[str, Any]


class PrivacyRequestCreate(BaseModel):
    request_type: str
    subject_user_id: str | None = Field(default=None, description="Defaults to the acting user")
    requester_email: str | None = None
    description: str | None = None


class PrivacyStatusUpdate(BaseModel):
    status: str
    notes: str | None = None


class LifecycleEventRequest(BaseModel):
    event_type: str
    resource_type: str
    resource_id: str
    action_taken: str
    reason: str | None = None
    policy_id: str | None = None


class GovernanceReportRequest(BaseModel):
    report_type: str

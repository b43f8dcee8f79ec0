"""Analytics request and response models."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class TrackEventRequest(BaseModel):
    """A client-reported usage event."""

    event_type: str = Field(..., min_length=1, description="prompt, sandbox, review, feature, ...")
    event_name: str = Field(..., min_length=1)
    prompt_id: str | None = None
    department_id: str | None = None
    session_id: str | None = None
    duration_seconds: float | None = Field(default=None, ge=0)
    properties: dict[str, Any] = Field(default_factory=dict)


class UsageMetrics(BaseModel):
    total_events: int
    unique_users: int
    prompt_views: int
    prompt_uses: int
    sandbox_sessions: int
    reviews_completed: int


class DepartmentMetrics(BaseModel):
    department_id: str
    total_events: int
    unique_users: int
    prompt_uses: int
    avg_engagement: float


class TrendingPrompt(BaseModel):
    prompt_id: str
    title: str | None = None
    use_count: int
    view_count: int
    days_active: int
    growth_rate: float
    trending_score: int


class AdoptionPoint(BaseModel):
    date: str
    unique_users: int


class CohortAnalysis(BaseModel):
    total_users: int
    active_today: int
    retention_rate: float
    avg_events_per_user: float


class FeatureUsage(BaseModel):
    feature_name: str
    usage_count: int
    unique_users: int
    actions: dict[str, int]


class PerformanceMetrics(BaseModel):
    avg_ai_accuracy: float
    avg_clarity_score: float
    avg_usefulness_score: float
    avg_satisfaction_rating: float
    sandbox_success_rate: float
    avg_time_to_approval_hours: float
    revision_frequency: float


class PeriodComparison(BaseModel):
    current_period: dict[str, str]
    previous_period: dict[str, str]
    current: dict[str, float]
    previous: dict[str, float]
    changes: dict[str, float]

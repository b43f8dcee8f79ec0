"""Usage analytics API routes.

Time windows default to the last 30 days when start/end are omitted.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

from fastapi import APIRouter, Depends, Query

from promptdesk.core.errors import ValidationError
from promptdesk.core.security import get_actor_id, require_permission
from promptdesk.storage.models import utcnow

from .schemas import (
    AdoptionPoint,
    CohortAnalysis,
    DepartmentMetrics,
    FeatureUsage,
    PerformanceMetrics,
    PeriodComparison,
    TrackEventRequest,
    TrendingPrompt,
    UsageMetrics,
)
from .service import get_analytics_service

router = APIRouter(prefix="/analytics", tags=["analytics"])

read_analytics = require_permission("analytics.read")


def _window(start: datetime | None, end: datetime | None) -> tuple[datetime, datetime]:
    end = end or utcnow()
    start = start or end - timedelta(days=30)
    if start >= end:
        raise ValidationError("start", "Start must be before end")
    return start, end


@router.post("/events", status_code=201)
def track_event(request: TrackEventRequest, actor_id: str | None = Depends(get_actor_id)) -> dict[str, str]:
    event_id = get_analytics_service().track_event(
        event_type=request.event_type,
        event_name=request.event_name,
        user_id=actor_id,
        prompt_id=request.prompt_id,
        department_id=request.department_id,
        session_id=request.session_id,
        duration_seconds=request.duration_seconds,
        properties=request.properties,
    )
    return {"id": event_id}


# =============================================================================
# Usage
# =============================================================================


@router.get("/usage", response_model=UsageMetrics)
def get_usage_metrics(
    start: datetime | None = None,
    end: datetime | None = None,
    _: str = Depends(read_analytics),
) -> dict[str, Any]:
    return get_analytics_service().get_usage_metrics(*_window(start, end))


@router.get("/departments", response_model=list[DepartmentMetrics])
def get_department_metrics(
    start: datetime | None = None,
    end: datetime | None = None,
    _: str = Depends(read_analytics),
) -> list[dict[str, Any]]:
    return get_analytics_service().get_department_metrics(*_window(start, end))


@router.get("/prompts/top", response_model=list[TrendingPrompt])
def get_most_used_prompts(
    limit: int = Query(default=10, ge=1, le=100),
    days: int = Query(default=30, ge=1, le=365),
    _: str = Depends(read_analytics),
) -> list[dict[str, Any]]:
    return get_analytics_service().get_most_used_prompts(limit, days)


@router.get("/adoption/{feature}", response_model=list[AdoptionPoint])
def get_adoption_time_series(
    feature: str,
    days: int = Query(default=30, ge=1, le=365),
    _: str = Depends(read_analytics),
) -> list[dict[str, Any]]:
    return get_analytics_service().get_adoption_time_series(feature, days)


@router.get("/cohort", response_model=CohortAnalysis)
def get_cohort_analysis(
    start: datetime | None = None,
    end: datetime | None = None,
    _: str = Depends(read_analytics),
) -> dict[str, Any]:
    return get_analytics_service().get_cohort_analysis(*_window(start, end))


@router.get("/features", response_model=list[FeatureUsage])
def get_feature_usage(
    days: int = Query(default=30, ge=1, le=365),
    _: str = Depends(read_analytics),
) -> list[dict[str, Any]]:
    return get_analytics_service().get_feature_usage_breakdown(days)


# =============================================================================
# Performance
# =============================================================================


@router.get("/performance", response_model=PerformanceMetrics)
def get_performance_metrics(
    start: datetime | None = None,
    end: datetime | None = None,
    _: str = Depends(read_analytics),
) -> dict[str, Any]:
    return get_analytics_service().get_performance_metrics(*_window(start, end))


@router.get("/compare", response_model=PeriodComparison)
def compare_periods(
    start: datetime | None = None,
    end: datetime | None = None,
    _: str = Depends(read_analytics),
) -> dict[str, Any]:
    """Compare the window with the equally long window before it."""
    return get_analytics_service().compare_periods(*_window(start, end))

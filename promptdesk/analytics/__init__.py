"""Analytics domain - usage tracking, engagement and quality metrics."""

from .router import router
from .service import (
    AnalyticsService,
    get_analytics_service,
    percent_change,
    reset_analytics_service,
)
from .schemas import (
    TrackEventRequest,
    UsageMetrics,
    DepartmentMetrics,
    TrendingPrompt,
    CohortAnalysis,
    PerformanceMetrics,
    PeriodComparison,
)

__all__ = [
    "router",
    "AnalyticsService",
    "get_analytics_service",
    "reset_analytics_service",
    "percent_change",
    "TrackEventRequest",
    "UsageMetrics",
    "DepartmentMetrics",
    "TrendingPrompt",
    "CohortAnalysis",
    "PerformanceMetrics",
    "PeriodComparison",
]

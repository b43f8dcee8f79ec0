"""Reports domain - template-driven report generation, export and scheduling."""

from .models import (
    ReportDistribution,
    ReportExecution,
    ReportExport,
    ReportSchedule,
    ReportSection,
    ReportTemplate,
)
from .router import router
from .service import ReportService, generate_key_insights, seed_report_templates

__all__ = [
    "router",
    "ReportService",
    "seed_report_templates",
    "generate_key_insights",
    "ReportTemplate",
    "ReportSchedule",
    "ReportExecution",
    "ReportSection",
    "ReportDistribution",
    "ReportExport",
]

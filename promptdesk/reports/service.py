"""
Report generation engine.

Templates are rendered into executions: metrics are collected from the
analytics service, summarized, turned into insights and stored as ordered
sections. Executions can be exported, distributed and scheduled.
"""

from __future__ import annotations

import csv
import io
import json
import time
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlmodel import Session, select

from promptdesk.analytics.service import AnalyticsService, get_analytics_service
from promptdesk.core.errors import NotFoundError, ValidationError
from promptdesk.core.logging import get_logger
from promptdesk.storage.models import dumps, loads, to_iso, utcnow

from .models import (
    ReportDistribution,
    ReportExecution,
    ReportExport,
    ReportSchedule,
    ReportSection,
    ReportTemplate,
)

log = get_logger(__name__)

EXPORT_FORMATS = ["csv", "json", "pdf"]
FREQUENCIES = {
    "daily": timedelta(days=1),
    "weekly": timedelta(days=7),
    "monthly": timedelta(days=30),
}

DEFAULT_TEMPLATES = [
    {
        "template_name": "Executive Overview",
        "template_slug": "executive_overview",
        "description": "Headline quality and adoption metrics for leadership",
        "category": "performance",
        "report_type": "executive",
        "metrics": ["avg_ai_accuracy", "avg_satisfaction_rating", "sandbox_success_rate", "unique_users"],
        "breakdown_dimensions": ["department"],
    },
    {
        "template_name": "Usage Summary",
        "template_slug": "usage_summary",
        "description": "Event volume, active users and prompt usage",
        "category": "usage",
        "report_type": "analytical",
        "metrics": ["total_events", "unique_users", "prompt_views", "prompt_uses"],
        "breakdown_dimensions": ["department", "role"],
    },
    {
        "template_name": "Quality & Performance",
        "template_slug": "quality_performance",
        "description": "Review ratings, sandbox outcomes and approval turnaround",
        "category": "quality",
        "report_type": "operational",
        "metrics": ["avg_ai_accuracy", "sandbox_success_rate", "avg_time_to_approval_hours", "revision_frequency"],
        "breakdown_dimensions": ["workflow"],
    },
]


def seed_report_templates(session: Session) -> int:
    """Insert the default templates that are missing.

    Returns:
        Number of templates created
    """
    existing = set(session.exec(select(ReportTemplate.template_slug)).all())
    created = 0
    for template in DEFAULT_TEMPLATES:
        if template["template_slug"] in existing:
            continue
        session.add(ReportTemplate(
            **{k: v for k, v in template.items() if k not in ("metrics", "breakdown_dimensions")},
            metrics=json.dumps(template["metrics"]),
            breakdown_dimensions=json.dumps(template["breakdown_dimensions"]),
        ))
        created += 1
    session.commit()
    return created


def generate_key_insights(metrics: dict[str, Any]) -> list[str]:
    """Turn collected metrics into short findings."""
    insights = []
    performance = metrics.get("performance")
    if performance:
        accuracy = performance.get("avg_ai_accuracy", 0)
        if accuracy >= 4.5:
            insights.append("AI accuracy is excellent, exceeding 4.5/5 benchmark")
        elif accuracy < 3.5:
            insights.append("AI accuracy needs improvement, falling below 3.5/5 threshold")
        if performance.get("sandbox_success_rate", 0) >= 90:
            insights.append("Sandbox testing shows outstanding quality with 90%+ success rate")
        if performance.get("avg_time_to_approval_hours", 0) > 48:
            insights.append("Approval process is slow, averaging over 48 hours")

    usage = metrics.get("usage")
    if usage:
        if usage.get("unique_users", 0) > 100:
            insights.append(f"Strong adoption with {usage['unique_users']} active users")
        total = usage.get("total_events", 0)
        if total and usage.get("prompt_uses", 0) / total * 100 > 50:
            insights.append("High user engagement with over 50% conversion rate")

    return insights or ["All metrics are within normal ranges"]


def build_executive_summary(metrics: dict[str, Any], start: datetime, end: datetime) -> dict[str, Any]:
    performance = metrics.get("performance") or {}
    usage = metrics.get("usage") or {}
    return {
        "period": {
            "start": start.date().isoformat(),
            "end": end.date().isoformat(),
            "days": max((end - start).days, 1),
        },
        "overview": {"total_metrics": len(metrics)},
        "performance": {
            "accuracy": performance.get("avg_ai_accuracy", 0),
            "satisfaction": performance.get("avg_satisfaction_rating", 0),
            "success_rate": performance.get("sandbox_success_rate", 0),
        },
        "usage": {
            "total_events": usage.get("total_events", 0),
            "unique_users": usage.get("unique_users", 0),
            "engagement": usage.get("prompt_uses", 0),
        },
    }


class ReportService:
    """Service for report templates, executions, exports and schedules."""

    def __init__(self, session: Session, analytics: Optional[AnalyticsService] = None):
        self.session = session
        self.analytics = analytics or get_analytics_service()

    # =========================================================================
    # Templates
    # =========================================================================

    def list_templates(self, category: Optional[str] = None) -> list[ReportTemplate]:
        statement = select(ReportTemplate).where(ReportTemplate.is_active == True)  # noqa: E712
        if category:
            statement = statement.where(ReportTemplate.category == category)
        return list(self.session.exec(statement.order_by(ReportTemplate.template_name)).all())

    def get_template(self, template_id: str) -> ReportTemplate:
        template = self.session.get(ReportTemplate, template_id)
        if template is None:
            raise NotFoundError("Report template", template_id)
        return template

    # =========================================================================
    # Generation
    # =========================================================================

    def generate_report(
        self,
        template_id: str,
        start: datetime,
        end: datetime,
        actor_id: Optional[str] = None,
        execution_type: str = "manual",
        schedule_id: Optional[str] = None,
    ) -> ReportExecution:
        """Generate a report for a date range.

        The execution is stored as ``processing`` first; any failure while
        building it marks the execution ``failed`` and re-raises.
        """
        if start >= end:
            raise ValidationError("start", "Start must be before end")
        template = self.get_template(template_id)

        execution = ReportExecution(
            template_id=template.id,
            schedule_id=schedule_id,
            report_title=template.template_name,
            report_subtitle=f"{start.date().isoformat()} - {end.date().isoformat()}",
            execution_type=execution_type,
            date_range_start=start.date().isoformat(),
            date_range_end=end.date().isoformat(),
            status="processing",
            generated_by=actor_id,
        )
        self.session.add(execution)
        self.session.commit()

        started = time.monotonic()
        try:
            metrics = {
                "performance": self.analytics.get_performance_metrics(start, end),
                "usage": self.analytics.get_usage_metrics(start, end),
            }
            execution.executive_summary = dumps(build_executive_summary(metrics, start, end))
            execution.key_insights = dumps(generate_key_insights(metrics))
            execution.metrics_calculated = dumps(metrics)
            for section in self._build_sections(metrics):
                section.execution_id = execution.id
                self.session.add(section)
            execution.status = "completed"
            execution.processing_time_seconds = round(time.monotonic() - started, 3)
            self.session.add(execution)
            self.session.commit()
        except Exception as exc:
            self.session.rollback()
            execution.status = "failed"
            execution.error_message = str(exc)
            self.session.add(execution)
            self.session.commit()
            log.error("report_generation_failed", execution_id=execution.id, error=str(exc))
            raise

        self.session.refresh(execution)
        log.info("report_generated", execution_id=execution.id, template=template.template_slug)
        return execution

    @staticmethod
    def _build_sections(metrics: dict[str, Any]) -> list[ReportSection]:
        return [
            ReportSection(
                section_order=1,
                section_type="summary",
                section_title="Executive Summary",
                content=dumps({"type": "summary", "data": metrics}),
            ),
            ReportSection(
                section_order=2,
                section_type="metrics",
                section_title="Key Performance Indicators",
                content=dumps({"type": "metrics", "data": metrics["performance"]}),
            ),
            ReportSection(
                section_order=3,
                section_type="chart",
                section_title="Usage Trends",
                content=dumps({"type": "usage", "data": metrics["usage"]}),
                visualization_type="line_chart",
            ),
        ]

    def list_executions(self, limit: int = 20) -> list[ReportExecution]:
        statement = select(ReportExecution).order_by(ReportExecution.generated_at.desc()).limit(limit)
        return list(self.session.exec(statement).all())

    def get_execution(self, execution_id: str) -> ReportExecution:
        execution = self.session.get(ReportExecution, execution_id)
        if execution is None:
            raise NotFoundError("Report", execution_id)
        return execution

    def get_report_details(self, execution_id: str) -> dict[str, Any]:
        """Execution with decoded JSON fields and its ordered sections."""
        execution = self.get_execution(execution_id)
        details = execution.model_dump()
        for name in ("executive_summary", "key_insights", "metrics_calculated"):
            details[name] = loads(details[name])
        details["sections"] = [
            {
                "section_order": s.section_order,
                "section_type": s.section_type,
                "section_title": s.section_title,
                "content": loads(s.content),
                "visualization_type": s.visualization_type,
            }
            for s in execution.sections
        ]
        return details

    # =========================================================================
    # Export and Distribution
    # =========================================================================

    def export_report(self, execution_id: str, format: str) -> tuple[ReportExport, str]:
        """Render a report as csv, json or pdf (plain text).

        Returns:
            The stored export record and the rendered content
        """
        if format not in EXPORT_FORMATS:
            raise ValidationError("format", f"Must be one of: {', '.join(EXPORT_FORMATS)}")
        report = self.get_report_details(execution_id)

        if format == "csv":
            content = self._render_csv(report)
        elif format == "json":
            content = json.dumps(report, indent=2, default=str)
        else:
            content = self._render_text(report)

        export = ReportExport(
            execution_id=execution_id,
            export_format=format,
            file_name=f"report_{execution_id}_{int(utcnow().timestamp() * 1000)}.{format}",
            file_size_bytes=len(content.encode("utf-8")),
        )
        self.session.add(export)
        self.session.commit()
        self.session.refresh(export)
        return export, content

    @staticmethod
    def _render_csv(report: dict[str, Any]) -> str:
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow(["Report Title", report["report_title"]])
        writer.writerow(["Period", f"{report['date_range_start']} to {report['date_range_end']}"])
        writer.writerow(["Generated", report["generated_at"]])
        writer.writerow([])
        writer.writerow(["Key Insights"])
        for insight in report["key_insights"] or []:
            writer.writerow([insight])
        writer.writerow([])
        writer.writerow(["Metrics"])
        for group, values in (report["metrics_calculated"] or {}).items():
            if isinstance(values, dict):
                for key, value in values.items():
                    writer.writerow([f"{group}.{key}", value])
            else:
                writer.writerow([group, values])
        return buffer.getvalue()

    @staticmethod
    def _render_text(report: dict[str, Any]) -> str:
        insights = "\n".join(f"{i}. {text}" for i, text in enumerate(report["key_insights"] or [], start=1))
        return "\n".join([
            f"Report: {report['report_title']}",
            f"Period: {report['date_range_start']} to {report['date_range_end']}",
            f"Generated: {report['generated_at']}",
            "",
            "EXECUTIVE SUMMARY",
            json.dumps(report["executive_summary"], indent=2),
            "",
            "KEY INSIGHTS",
            insights,
            "",
            "DETAILED METRICS",
            json.dumps(report["metrics_calculated"], indent=2),
        ])

    def distribute_report(self, execution_id: str, recipients: list[str], format: str) -> list[ReportDistribution]:
        """Record delivery of a report to each recipient."""
        if format not in EXPORT_FORMATS:
            raise ValidationError("format", f"Must be one of: {', '.join(EXPORT_FORMATS)}")
        if not recipients:
            raise ValidationError("recipients", "At least one recipient is required")
        self.get_execution(execution_id)

        distributions = [
            ReportDistribution(execution_id=execution_id, recipient_email=email, export_format=format)
            for email in recipients
        ]
        for distribution in distributions:
            self.session.add(distribution)
        self.session.commit()

        sent_at = to_iso(utcnow())
        for distribution in distributions:
            distribution.status = "sent"
            distribution.sent_at = sent_at
            self.session.add(distribution)
        self.session.commit()
        for distribution in distributions:
            self.session.refresh(distribution)

        log.info("report_distributed", execution_id=execution_id, recipients=len(recipients), format=format)
        return distributions

    # =========================================================================
    # Schedules
    # =========================================================================

    def schedule_report(
        self,
        template_id: str,
        schedule_name: str,
        frequency: str,
        recipients: list[str],
        export_format: str = "pdf",
        actor_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ReportSchedule:
        if frequency not in FREQUENCIES:
            raise ValidationError("frequency", f"Must be one of: {', '.join(FREQUENCIES)}")
        if export_format not in EXPORT_FORMATS:
            raise ValidationError("export_format", f"Must be one of: {', '.join(EXPORT_FORMATS)}")
        self.get_template(template_id)

        schedule = ReportSchedule(
            schedule_name=schedule_name,
            template_id=template_id,
            frequency=frequency,
            recipients=json.dumps(recipients),
            export_format=export_format,
            next_run_at=to_iso((now or utcnow()) + timedelta(days=1)),
            created_by=actor_id,
        )
        self.session.add(schedule)
        self.session.commit()
        self.session.refresh(schedule)
        return schedule

    def list_schedules(self, active_only: bool = True) -> list[ReportSchedule]:
        statement = select(ReportSchedule)
        if active_only:
            statement = statement.where(ReportSchedule.is_active == True)  # noqa: E712
        return list(self.session.exec(statement.order_by(ReportSchedule.next_run_at)).all())

    def deactivate_schedule(self, schedule_id: str) -> ReportSchedule:
        schedule = self.session.get(ReportSchedule, schedule_id)
        if schedule is None:
            raise NotFoundError("Report schedule", schedule_id)
        schedule.is_active = False
        self.session.add(schedule)
        self.session.commit()
        self.session.refresh(schedule)
        return schedule

    def run_due_schedules(self, now: Optional[datetime] = None) -> list[str]:
        """Generate and distribute every active schedule that is due.

        Returns:
            IDs of the executions produced
        """
        now = now or utcnow()
        statement = select(ReportSchedule).where(
            ReportSchedule.is_active == True,  # noqa: E712
            ReportSchedule.next_run_at <= to_iso(now),
        )
        execution_ids = []
        for schedule in self.session.exec(statement).all():
            period = FREQUENCIES[schedule.frequency]
            execution = self.generate_report(
                schedule.template_id, now - period, now,
                actor_id=schedule.created_by, execution_type="scheduled", schedule_id=schedule.id,
            )
            recipients = json.loads(schedule.recipients)
            if recipients:
                self.distribute_report(execution.id, recipients, schedule.export_format)
            schedule.last_run_at = to_iso(now)
            schedule.next_run_at = to_iso(now + period)
            self.session.add(schedule)
            self.session.commit()
            execution_ids.append(execution.id)
        return execution_ids

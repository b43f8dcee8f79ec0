"""SQLModel table definitions for the report engine."""

from typing import Optional

from sqlmodel import Field, Relationship, SQLModel

from promptdesk.storage.models import generate_uuid, now_iso


class ReportTemplate(SQLModel, table=True):
    """Reusable report definition."""

    __tablename__ = "report_templates"

    id: str = Field(default_factory=generate_uuid, primary_key=True)
    template_name: str = Field(..., description="Display name")
    template_slug: str = Field(..., unique=True, index=True, description="Stable identifier")
    description: Optional[str] = Field(default=None)
    category: str = Field(..., description="performance, usage, quality, ...")
    report_type: str = Field(..., description="executive, analytical or operational")
    metrics: str = Field(default="[]", description="JSON-serialized list of metric names")
    breakdown_dimensions: str = Field(default="[]", description="JSON-serialized list of dimensions")
    date_range_type: str = Field(default="last_30_days")
    is_active: bool = Field(default=True)
    created_at: str = Field(default_factory=now_iso)


class ReportSchedule(SQLModel, table=True):
    """Recurring generation and distribution of a template."""

    __tablename__ = "report_schedules"

    id: str = Field(default_factory=generate_uuid, primary_key=True)
    schedule_name: str = Field(...)
    template_id: str = Field(foreign_key="report_templates.id", index=True)
    frequency: str = Field(..., description="daily, weekly or monthly")
    recipients: str = Field(default="[]", description="JSON-serialized list of recipient emails")
    export_format: str = Field(default="pdf")
    next_run_at: Optional[str] = Field(default=None, index=True)
    last_run_at: Optional[str] = Field(default=None)
    is_active: bool = Field(default=True)
    created_by: Optional[str] = Field(default=None)
    created_at: str = Field(default_factory=now_iso)


class ReportExecution(SQLModel, table=True):
    """One generated report."""

    __tablename__ = "report_executions"

    id: str = Field(default_factory=generate_uuid, primary_key=True)
    template_id: Optional[str] = Field(default=None, foreign_key="report_templates.id")
    schedule_id: Optional[str] = Field(default=None, foreign_key="report_schedules.id")
    report_title: str = Field(...)
    report_subtitle: Optional[str] = Field(default=None)
    execution_type: str = Field(default="manual", description="manual, scheduled or api")
    date_range_start: str = Field(..., description="ISO date")
    date_range_end: str = Field(..., description="ISO date")
    status: str = Field(default="pending", description="pending, processing, completed, failed")
    executive_summary: Optional[str] = Field(default=None, description="JSON-serialized summary")
    key_insights: Optional[str] = Field(default=None, description="JSON-serialized list of insights")
    metrics_calculated: Optional[str] = Field(default=None, description="JSON-serialized metrics")
    generated_by: Optional[str] = Field(default=None)
    generated_at: str = Field(default_factory=now_iso, index=True)
    processing_time_seconds: Optional[float] = Field(default=None)
    error_message: Optional[str] = Field(default=None)

    sections: list["ReportSection"] = Relationship(
        back_populates="execution",
        sa_relationship_kwargs={
            "cascade": "all, delete-orphan",
            "lazy": "selectin",
            "order_by": "ReportSection.section_order",
        },
    )


class ReportSection(SQLModel, table=True):
    """Ordered section of a generated report."""

    __tablename__ = "report_sections"

    id: str = Field(default_factory=generate_uuid, primary_key=True)
    section_order: int = Field(...)
    section_type: str = Field(..., description="summary, metrics, chart, ...")
    section_title: str = Field(...)
    content: str = Field(..., description="JSON-serialized section content")
    visualization_type: Optional[str] = Field(default=None)
    created_at: str = Field(default_factory=now_iso)

    execution_id: str = Field(foreign_key="report_executions.id", index=True, ondelete="CASCADE")
    execution: Optional["ReportExecution"] = Relationship(back_populates="sections")


class ReportDistribution(SQLModel, table=True):
    """Delivery of a report to one recipient."""

    __tablename__ = "report_distributions"

    id: str = Field(default_factory=generate_uuid, primary_key=True)
    execution_id: str = Field(foreign_key="report_executions.id", index=True, ondelete="CASCADE")
    recipient_email: str = Field(...)
    recipient_type: str = Field(default="to")
    distribution_method: str = Field(default="email")
    export_format: str = Field(...)
    status: str = Field(default="pending", description="pending, sent or failed")
    sent_at: Optional[str] = Field(default=None)
    error_message: Optional[str] = Field(default=None)
    created_at: str = Field(default_factory=now_iso)


class ReportExport(SQLModel, table=True):
    """Rendered export of a report."""

    __tablename__ = "report_exports"

    id: str = Field(default_factory=generate_uuid, primary_key=True)
    execution_id: str = Field(foreign_key="report_executions.id", index=True, ondelete="CASCADE")
    export_format: str = Field(...)
    file_name: str = Field(...)
    file_size_bytes: int = Field(default=0)
    download_count: int = Field(default=0)
    created_at: str = Field(default_factory=now_iso)


ReportExecution.model_rebuild()
ReportSection.model_rebuild()

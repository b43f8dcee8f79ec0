"""Report engine request and response models."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class ExportFormat(str, Enum):
    CSV = "csv"
    JSON = "json"
    PDF = "pdf"


class Frequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class GenerateReportRequest(BaseModel):
    template_id: str
    start: datetime | None = Field(default=None, description="Defaults to 30 days before end")
    end: datetime | None = Field(default=None, description="Defaults to now")


class DistributeRequest(BaseModel):
    recipients: list[str] = Field(..., min_length=1)
    format: ExportFormat = ExportFormat.PDF


class ScheduleRequest(BaseModel):
    template_id: str
    schedule_name: str = Field(..., min_length=1)
    frequency: Frequency
    recipients: list[str] = Field(default_factory=list)
    export_format: ExportFormat = ExportFormat.PDF


class TemplateRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    template_name: str
    template_slug: str
    description: str | None
    category: str
    report_type: str
    metrics: str
    breakdown_dimensions: str
    date_range_type: str


class ExecutionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    template_id: str | None
    schedule_id: str | None
    report_title: str
    report_subtitle: str | None
    execution_type: str
    date_range_start: str
    date_range_end: str
    status: str
    generated_by: str | None
    generated_at: str
    processing_time_seconds: float | None
    error_message: str | None


class ScheduleRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    schedule_name: str
    template_id: str
    frequency: str
    recipients: str
    export_format: str
    next_run_at: str | None
    last_run_at: str | None
    is_active: bool


class DistributionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    execution_id: str
    recipient_email: str
    export_format: str
    status: str
    sent_at: str | None

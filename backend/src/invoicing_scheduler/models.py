from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator

from .recipients import invalid_recipients

Cadence = Literal["daily", "weekly", "monthly"]
WorkRecordStatus = Literal["in_progress", "completed", "invoiced", "paid"]
InvoiceStatus = Literal["draft", "sent", "paid", "cancelled"]
RunSummaryStatus = Literal["completed", "failed", "queued"]

CENTS = Decimal("0.01")


def _as_decimal(value: float | int | Decimal) -> Decimal:
    return Decimal(str(value))


def compute_line_amount(hourly_rate: float, hours: float) -> Decimal:
    return (_as_decimal(hourly_rate) * _as_decimal(hours)).quantize(CENTS, rounding=ROUND_HALF_UP)


def compute_invoice_total(lines: list["InvoiceLineDraft"] | list["InvoiceLineRecord"]) -> Decimal:
    total = Decimal("0")
    for line in lines:
        total += _as_decimal(line.amount)
    return total.quantize(CENTS, rounding=ROUND_HALF_UP)


def _strip_required(value: str, field_label: str) -> str:
    normalized = str(value).strip()
    if not normalized:
        raise ValueError(f"{field_label} cannot be blank")
    return normalized


def _strip_optional(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = str(value).strip()
    return normalized or None


def _check_tenant_id(value: str | None) -> str | None:
    if value is not None and "-" in value:
        raise ValueError("tenant_id cannot contain '-' because it prefixes invoice numbers")
    return value


class ScheduleCadence(BaseModel):
    """Periodicity plus the local wall-clock slot of a schedule."""

    cadence: Cadence = "daily"
    weekday: int | None = Field(default=None, ge=0, le=6)
    day_of_month: int | None = Field(default=None, ge=1, le=31)
    hour_of_day: int = Field(default=6, ge=0, le=23)

    @model_validator(mode="after")
    def _validate_slot(self) -> ScheduleCadence:
        if self.cadence == "weekly" and self.weekday is None:
            raise ValueError("weekday is required for weekly schedules")
        if self.cadence == "monthly" and self.day_of_month is None:
            raise ValueError("day_of_month is required for monthly schedules")
        return self


class ScheduleUpsertRequest(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    tenant_id: str | None = Field(default=None, max_length=64)
    cadence: Cadence = "daily"
    weekday: int | None = Field(default=None, ge=0, le=6)
    day_of_month: int | None = Field(default=None, ge=1, le=31)
    hour_of_day: int | None = Field(default=None, ge=0, le=23)
    recipients: str = Field(default="", max_length=1000)
    active: bool = True
    description: str | None = Field(default=None, max_length=500)
    recompute_next: bool = False

    @field_validator("name")
    @classmethod
    def _normalize_name(cls, value: str) -> str:
        return _strip_required(value, "name")

    @field_validator("tenant_id", "description")
    @classmethod
    def _normalize_optional(cls, value: str | None) -> str | None:
        return _strip_optional(value)

    @field_validator("tenant_id")
    @classmethod
    def _reject_separator(cls, value: str | None) -> str | None:
        return _check_tenant_id(value)

    @field_validator("recipients")
    @classmethod
    def _validate_recipients(cls, value: str) -> str:
        invalid = invalid_recipients(value)
        if invalid:
            raise ValueError(f"invalid recipient addresses: {', '.join(invalid)}")
        return value.strip()

    @model_validator(mode="after")
    def _validate_cadence_fields(self) -> ScheduleUpsertRequest:
        if self.cadence == "weekly" and self.weekday is None:
            raise ValueError("weekday is required for weekly schedules")
        if self.cadence == "monthly" and self.day_of_month is None:
            raise ValueError("day_of_month is required for monthly schedules")
        return self

    def to_cadence(self, *, default_hour: int) -> ScheduleCadence:
        return ScheduleCadence(
            cadence=self.cadence,
            weekday=self.weekday if self.cadence == "weekly" else None,
            day_of_month=self.day_of_month if self.cadence == "monthly" else None,
            hour_of_day=self.hour_of_day if self.hour_of_day is not None else default_hour,
        )


class ScheduleRecord(BaseModel):
    schedule_id: int
    name: str
    tenant_id: str | None = None
    cadence: Cadence
    weekday: int | None = None
    day_of_month: int | None = None
    hour_of_day: int
    recipients: str
    active: bool
    last_run_at: datetime | None = None
    next_run_at: datetime | None = None
    description: str | None = None
    created_at: datetime
    updated_at: datetime

    def to_cadence(self) -> ScheduleCadence:
        return ScheduleCadence(
            cadence=self.cadence,
            weekday=self.weekday,
            day_of_month=self.day_of_month,
            hour_of_day=self.hour_of_day,
        )


class RunLogRecord(BaseModel):
    run_id: int
    schedule_id: int
    run_started_at: datetime
    run_completed_at: datetime | None = None
    invoice_id: int | None = None
    tasks_count: int = 0
    is_success: bool = False
    error: str | None = None


class RunHistoryResponse(BaseModel):
    schedule_id: int
    runs: list[RunLogRecord]


class RecentRunsResponse(BaseModel):
    runs: list[RunLogRecord]


class ScheduleDetailResponse(BaseModel):
    schedule: ScheduleRecord
    latest_run: RunLogRecord | None = None


class RunSummary(BaseModel):
    schedule_id: int
    status: RunSummaryStatus
    executed: bool
    run: RunLogRecord | None = None
    invoice_number: str | None = None
    message: str


class SweepResult(BaseModel):
    started_at: datetime
    finished_at: datetime | None = None
    skipped: bool = False
    due_count: int = 0
    processed_count: int = 0
    failed_count: int = 0


class SchedulerStatusResponse(BaseModel):
    enabled: bool
    started: bool
    sweep_active: bool
    interval_seconds: float
    warmup_seconds: float
    timezone: str
    last_sweep: SweepResult | None = None


# ---------------------------------------------------------------------------
# Reference data read by the assembler
# ---------------------------------------------------------------------------


class TenantUpsertItem(BaseModel):
    tenant_id: str = Field(min_length=1, max_length=64)
    name: str = Field(min_length=1, max_length=200)

    @field_validator("tenant_id", "name")
    @classmethod
    def _normalize_text(cls, value: str) -> str:
        return _strip_required(value, "tenant fields")

    @field_validator("tenant_id")
    @classmethod
    def _reject_separator(cls, value: str) -> str:
        return _check_tenant_id(value)


class TenantUpsertRequest(BaseModel):
    tenants: list[TenantUpsertItem] = Field(min_length=1, max_length=500)


class TenantRecord(BaseModel):
    tenant_id: str
    name: str


class GradeUpsertItem(BaseModel):
    grade_id: str = Field(min_length=1, max_length=64)
    name: str = Field(min_length=1, max_length=100)
    hourly_rate: float = Field(ge=0)

    @field_validator("grade_id", "name")
    @classmethod
    def _normalize_text(cls, value: str) -> str:
        return _strip_required(value, "grade fields")


class GradeUpsertRequest(BaseModel):
    grades: list[GradeUpsertItem] = Field(min_length=1, max_length=500)


class GradeRecord(BaseModel):
    grade_id: str
    name: str
    hourly_rate: float


class PerformerUpsertItem(BaseModel):
    performer_id: str = Field(min_length=1, max_length=64)
    name: str = Field(min_length=1, max_length=100)
    grade_id: str | None = Field(default=None, max_length=64)

    @field_validator("performer_id", "name")
    @classmethod
    def _normalize_text(cls, value: str) -> str:
        return _strip_required(value, "performer fields")

    @field_validator("grade_id")
    @classmethod
    def _normalize_grade(cls, value: str | None) -> str | None:
        return _strip_optional(value)


class PerformerUpsertRequest(BaseModel):
    performers: list[PerformerUpsertItem] = Field(min_length=1, max_length=500)


class PerformerRecord(BaseModel):
    performer_id: str
    name: str
    grade_id: str | None = None


class WorkRecordUpsertItem(BaseModel):
    work_record_id: str = Field(min_length=1, max_length=64)
    tenant_id: str = Field(min_length=1, max_length=64)
    project_id: str | None = Field(default=None, max_length=64)
    performer_id: str | None = Field(default=None, max_length=64)
    title: str = Field(min_length=1, max_length=200)
    hours: float = Field(ge=0)
    status: WorkRecordStatus = "in_progress"

    @field_validator("work_record_id", "tenant_id", "title")
    @classmethod
    def _normalize_text(cls, value: str) -> str:
        return _strip_required(value, "work record fields")

    @field_validator("tenant_id")
    @classmethod
    def _reject_separator(cls, value: str) -> str:
        return _check_tenant_id(value)

    @field_validator("project_id", "performer_id")
    @classmethod
    def _normalize_optional(cls, value: str | None) -> str | None:
        return _strip_optional(value)


class WorkRecordUpsertRequest(BaseModel):
    work_records: list[WorkRecordUpsertItem] = Field(min_length=1, max_length=1000)


class WorkRecord(BaseModel):
    work_record_id: str
    tenant_id: str
    project_id: str | None = None
    performer_id: str | None = None
    title: str
    hours: float
    status: WorkRecordStatus


class UpsertResponse(BaseModel):
    processed_count: int


# ---------------------------------------------------------------------------
# Invoices and delivery audit
# ---------------------------------------------------------------------------


class InvoiceLineDraft(BaseModel):
    work_record_id: str
    title: str
    performer_name: str | None = None
    grade_name: str | None = None
    hourly_rate: float
    hours: float
    amount: float


class InvoiceDraft(BaseModel):
    tenant_id: str
    issued_at: datetime
    description: str
    customer_name: str | None = None
    project_id: str | None = None
    lines: list[InvoiceLineDraft] = Field(min_length=1)


class InvoiceLineRecord(BaseModel):
    line_id: int
    invoice_id: int
    work_record_id: str | None = None
    title: str
    performer_name: str | None = None
    grade_name: str | None = None
    hourly_rate: float
    hours: float
    amount: float


class InvoiceRecord(BaseModel):
    invoice_id: int
    tenant_id: str
    number: str
    issued_at: datetime
    description: str | None = None
    customer_name: str | None = None
    project_id: str | None = None
    status: InvoiceStatus = "draft"
    total: float
    email_sent_at: datetime | None = None
    created_at: datetime
    lines: list[InvoiceLineRecord]


class DeliveryLogRecord(BaseModel):
    delivery_id: int
    invoice_id: int
    recipient: str
    subject: str
    body: str
    is_success: bool
    error: str | None = None
    sent_at: datetime


class InvoiceDetailResponse(BaseModel):
    invoice: InvoiceRecord
    deliveries: list[DeliveryLogRecord]


class InvoiceGenerateRequest(BaseModel):
    recipients: str = Field(default="", max_length=1000)

    @field_validator("recipients")
    @classmethod
    def _validate_recipients(cls, value: str) -> str:
        invalid = invalid_recipients(value)
        if invalid:
            raise ValueError(f"invalid recipient addresses: {', '.join(invalid)}")
        return value.strip()


class InvoiceGenerateResponse(BaseModel):
    generated: bool
    invoice: InvoiceRecord | None = None
    deliveries: list[DeliveryLogRecord] = Field(default_factory=list)

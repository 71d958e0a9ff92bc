from __future__ import annotations

import re
from collections.abc import Iterable
from datetime import datetime
from typing import Protocol

from .models import (
    DeliveryLogRecord,
    GradeRecord,
    GradeUpsertItem,
    InvoiceDraft,
    InvoiceRecord,
    PerformerRecord,
    PerformerUpsertItem,
    RunLogRecord,
    ScheduleCadence,
    ScheduleRecord,
    TenantRecord,
    TenantUpsertItem,
    WorkRecord,
    WorkRecordUpsertItem,
)

INVOICE_SEQUENCE_WIDTH = 5


class ScheduleNotFoundError(KeyError):
    """Raised when an operation references a schedule id that does not exist."""


class InvoiceNotFoundError(KeyError):
    """Raised when an operation references an invoice id that does not exist."""


class RunLogNotFoundError(KeyError):
    """Raised when a run log id does not exist."""


class DuplicateInvoiceNumberError(ValueError):
    """Raised when an invoice number is already taken for the tenant."""


def format_invoice_number(tenant_id: str, sequence: int) -> str:
    return f"{tenant_id}-{sequence:0{INVOICE_SEQUENCE_WIDTH}d}"


def parse_invoice_sequence(tenant_id: str, number: str) -> int | None:
    match = re.fullmatch(rf"{re.escape(tenant_id)}-(\d+)", number.strip())
    if match is None:
        return None
    return int(match.group(1))


def highest_invoice_sequence(tenant_id: str, numbers: Iterable[str]) -> int:
    highest = 0
    for number in numbers:
        sequence = parse_invoice_sequence(tenant_id, number)
        if sequence is not None and sequence > highest:
            highest = sequence
    return highest


class ScheduleStore(Protocol):
    def reset(self) -> None: ...

    # Schedules

    def create_schedule(
        self,
        *,
        name: str,
        tenant_id: str | None,
        cadence: ScheduleCadence,
        recipients: str,
        active: bool,
        description: str | None,
        next_run_at: datetime | None,
    ) -> ScheduleRecord: ...

    def update_schedule(
        self,
        schedule_id: int,
        *,
        name: str,
        tenant_id: str | None,
        cadence: ScheduleCadence,
        recipients: str,
        active: bool,
        description: str | None,
        next_run_at: datetime | None,
    ) -> ScheduleRecord: ...

    def set_schedule_state(self, schedule_id: int, *, active: bool, next_run_at: datetime | None) -> ScheduleRecord: ...

    def get_schedule(self, schedule_id: int) -> ScheduleRecord | None: ...

    def list_schedules(self) -> list[ScheduleRecord]: ...

    def list_due_schedules(self, now: datetime) -> list[ScheduleRecord]: ...

    def delete_schedule(self, schedule_id: int) -> bool: ...

    # Run logs

    def open_run_log(self, schedule_id: int, *, started_at: datetime) -> RunLogRecord: ...

    def complete_run(
        self,
        run_id: int,
        *,
        completed_at: datetime,
        invoice_id: int | None,
        tasks_count: int,
        is_success: bool,
        error: str | None,
        next_run_at: datetime | None,
    ) -> RunLogRecord: ...

    def list_run_logs(self, schedule_id: int, *, limit: int) -> list[RunLogRecord]: ...

    def list_recent_runs(self, *, limit: int) -> list[RunLogRecord]: ...

    # Reference data

    def upsert_tenants(self, items: list[TenantUpsertItem]) -> int: ...

    def upsert_grades(self, items: list[GradeUpsertItem]) -> int: ...

    def upsert_performers(self, items: list[PerformerUpsertItem]) -> int: ...

    def upsert_work_records(self, items: list[WorkRecordUpsertItem]) -> int: ...

    def get_tenant(self, tenant_id: str) -> TenantRecord | None: ...

    def get_grade(self, grade_id: str) -> GradeRecord | None: ...

    def get_performer(self, performer_id: str) -> PerformerRecord | None: ...

    def get_work_record(self, work_record_id: str) -> WorkRecord | None: ...

    def list_completed_work(self, tenant_id: str) -> list[WorkRecord]: ...

    # Invoices

    def commit_invoice(self, draft: InvoiceDraft) -> InvoiceRecord | None: ...

    def import_invoice(
        self,
        *,
        tenant_id: str,
        number: str,
        issued_at: datetime,
        customer_name: str | None,
        description: str | None,
    ) -> InvoiceRecord: ...

    def get_invoice(self, invoice_id: int) -> InvoiceRecord | None: ...

    def list_invoices(self, tenant_id: str) -> list[InvoiceRecord]: ...

    def add_delivery_log(
        self,
        invoice_id: int,
        *,
        recipient: str,
        subject: str,
        body: str,
        is_success: bool,
        error: str | None,
        sent_at: datetime,
    ) -> DeliveryLogRecord: ...

    def list_delivery_logs(self, invoice_id: int) -> list[DeliveryLogRecord]: ...

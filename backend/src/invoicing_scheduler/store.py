from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from itertools import count
from threading import Lock

from .models import (
    DeliveryLogRecord,
    GradeRecord,
    GradeUpsertItem,
    InvoiceDraft,
    InvoiceLineRecord,
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
    compute_invoice_total,
)
from .repositories import (
    DuplicateInvoiceNumberError,
    InvoiceNotFoundError,
    RunLogNotFoundError,
    ScheduleNotFoundError,
    format_invoice_number,
    highest_invoice_sequence,
    parse_invoice_sequence,
)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class _ScheduleRow:
    schedule_id: int
    name: str
    tenant_id: str | None
    cadence: ScheduleCadence
    recipients: str
    active: bool
    description: str | None
    last_run_at: datetime | None
    next_run_at: datetime | None
    created_at: datetime
    updated_at: datetime


@dataclass
class _RunLogRow:
    run_id: int
    schedule_id: int
    run_started_at: datetime
    run_completed_at: datetime | None = None
    invoice_id: int | None = None
    tasks_count: int = 0
    is_success: bool = False
    error: str | None = None


@dataclass
class _InvoiceRow:
    invoice_id: int
    tenant_id: str
    number: str
    issued_at: datetime
    description: str | None
    customer_name: str | None
    project_id: str | None
    status: str
    email_sent_at: datetime | None
    created_at: datetime
    lines: list[InvoiceLineRecord] = field(default_factory=list)


class InMemoryScheduleStore:
    """Deterministic in-memory store with incremental integer ids."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._schedule_ids = count(1)
        self._run_ids = count(1)
        self._invoice_ids = count(1)
        self._line_ids = count(1)
        self._delivery_ids = count(1)

        self._schedules: dict[int, _ScheduleRow] = {}
        self._run_logs: dict[int, _RunLogRow] = {}
        self._tenants: dict[str, TenantRecord] = {}
        self._grades: dict[str, GradeRecord] = {}
        self._performers: dict[str, PerformerRecord] = {}
        self._work_records: dict[str, WorkRecord] = {}
        self._invoices: dict[int, _InvoiceRow] = {}
        self._deliveries: dict[int, list[DeliveryLogRecord]] = {}
        self._invoice_counters: dict[str, int] = {}

    def reset(self) -> None:
        with self._lock:
            self._schedule_ids = count(1)
            self._run_ids = count(1)
            self._invoice_ids = count(1)
            self._line_ids = count(1)
            self._delivery_ids = count(1)

            self._schedules.clear()
            self._run_logs.clear()
            self._tenants.clear()
            self._grades.clear()
            self._performers.clear()
            self._work_records.clear()
            self._invoices.clear()
            self._deliveries.clear()
            self._invoice_counters.clear()

    # ------------------------------------------------------------------
    # Schedules
    # ------------------------------------------------------------------

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
    ) -> ScheduleRecord:
        now = _now_utc()
        with self._lock:
            row = _ScheduleRow(
                schedule_id=next(self._schedule_ids),
                name=name,
                tenant_id=tenant_id,
                cadence=cadence,
                recipients=recipients,
                active=active,
                description=description,
                last_run_at=None,
                next_run_at=next_run_at,
                created_at=now,
                updated_at=now,
            )
            self._schedules[row.schedule_id] = row
            return self._to_schedule_record(row)

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
    ) -> ScheduleRecord:
        with self._lock:
            row = self._require_schedule(schedule_id)
            row.name = name
            row.tenant_id = tenant_id
            row.cadence = cadence
            row.recipients = recipients
            row.active = active
            row.description = description
            row.next_run_at = next_run_at
            row.updated_at = _now_utc()
            return self._to_schedule_record(row)

    def set_schedule_state(self, schedule_id: int, *, active: bool, next_run_at: datetime | None) -> ScheduleRecord:
        with self._lock:
            row = self._require_schedule(schedule_id)
            row.active = active
            row.next_run_at = next_run_at
            row.updated_at = _now_utc()
            return self._to_schedule_record(row)

    def get_schedule(self, schedule_id: int) -> ScheduleRecord | None:
        with self._lock:
            row = self._schedules.get(schedule_id)
            return self._to_schedule_record(row) if row is not None else None

    def list_schedules(self) -> list[ScheduleRecord]:
        with self._lock:
            rows = sorted(
                self._schedules.values(),
                key=lambda value: (value.tenant_id or "", value.name, value.schedule_id),
            )
            return [self._to_schedule_record(row) for row in rows]

    def list_due_schedules(self, now: datetime) -> list[ScheduleRecord]:
        with self._lock:
            due = [
                row
                for row in self._schedules.values()
                if row.active and row.next_run_at is not None and row.next_run_at <= now
            ]
            due.sort(key=lambda value: (value.next_run_at, value.schedule_id))
            return [self._to_schedule_record(row) for row in due]

    def delete_schedule(self, schedule_id: int) -> bool:
        with self._lock:
            if self._schedules.pop(schedule_id, None) is None:
                return False
            for run_id in [key for key, run in self._run_logs.items() if run.schedule_id == schedule_id]:
                del self._run_logs[run_id]
            return True

    # ------------------------------------------------------------------
    # Run logs
    # ------------------------------------------------------------------

    def open_run_log(self, schedule_id: int, *, started_at: datetime) -> RunLogRecord:
        with self._lock:
            self._require_schedule(schedule_id)
            row = _RunLogRow(run_id=next(self._run_ids), schedule_id=schedule_id, run_started_at=started_at)
            self._run_logs[row.run_id] = row
            return self._to_run_log_record(row)

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
    ) -> RunLogRecord:
        with self._lock:
            row = self._run_logs.get(run_id)
            if row is None:
                raise RunLogNotFoundError(run_id)
            row.run_completed_at = completed_at
            row.invoice_id = invoice_id
            row.tasks_count = tasks_count
            row.is_success = is_success
            row.error = error

            schedule = self._schedules.get(row.schedule_id)
            if schedule is not None:
                schedule.last_run_at = completed_at
                schedule.next_run_at = next_run_at
                schedule.updated_at = completed_at
            return self._to_run_log_record(row)

    def list_run_logs(self, schedule_id: int, *, limit: int) -> list[RunLogRecord]:
        with self._lock:
            rows = [row for row in self._run_logs.values() if row.schedule_id == schedule_id]
            rows.sort(key=lambda value: (value.run_started_at, value.run_id), reverse=True)
            return [self._to_run_log_record(row) for row in rows[:limit]]

    def list_recent_runs(self, *, limit: int) -> list[RunLogRecord]:
        with self._lock:
            rows = sorted(self._run_logs.values(), key=lambda value: (value.run_started_at, value.run_id), reverse=True)
            return [self._to_run_log_record(row) for row in rows[:limit]]

    # ------------------------------------------------------------------
    # Reference data
    # ------------------------------------------------------------------

    def upsert_tenants(self, items: list[TenantUpsertItem]) -> int:
        with self._lock:
            for item in items:
                self._tenants[item.tenant_id] = TenantRecord(tenant_id=item.tenant_id, name=item.name)
            return len(items)

    def upsert_grades(self, items: list[GradeUpsertItem]) -> int:
        with self._lock:
            for item in items:
                self._grades[item.grade_id] = GradeRecord(
                    grade_id=item.grade_id,
                    name=item.name,
                    hourly_rate=round(float(item.hourly_rate), 2),
                )
            return len(items)

    def upsert_performers(self, items: list[PerformerUpsertItem]) -> int:
        with self._lock:
            for item in items:
                self._performers[item.performer_id] = PerformerRecord(
                    performer_id=item.performer_id,
                    name=item.name,
                    grade_id=item.grade_id,
                )
            return len(items)

    def upsert_work_records(self, items: list[WorkRecordUpsertItem]) -> int:
        with self._lock:
            for item in items:
                self._work_records[item.work_record_id] = WorkRecord(**item.model_dump())
            return len(items)

    def get_tenant(self, tenant_id: str) -> TenantRecord | None:
        with self._lock:
            return self._tenants.get(tenant_id)

    def get_grade(self, grade_id: str) -> GradeRecord | None:
        with self._lock:
            return self._grades.get(grade_id)

    def get_performer(self, performer_id: str) -> PerformerRecord | None:
        with self._lock:
            return self._performers.get(performer_id)

    def get_work_record(self, work_record_id: str) -> WorkRecord | None:
        with self._lock:
            return self._work_records.get(work_record_id)

    def list_completed_work(self, tenant_id: str) -> list[WorkRecord]:
        with self._lock:
            records = [
                record
                for record in self._work_records.values()
                if record.tenant_id == tenant_id and record.status == "completed" and record.hours > 0
            ]
            return sorted(records, key=lambda value: value.work_record_id)

    # ------------------------------------------------------------------
    # Invoices
    # ------------------------------------------------------------------

    def commit_invoice(self, draft: InvoiceDraft) -> InvoiceRecord | None:
        now = _now_utc()
        with self._lock:
            lines = [
                line
                for line in draft.lines
                if (record := self._work_records.get(line.work_record_id)) is not None
                and record.status == "completed"
            ]
            if not lines:
                return None

            row = _InvoiceRow(
                invoice_id=next(self._invoice_ids),
                tenant_id=draft.tenant_id,
                number=self._allocate_number(draft.tenant_id),
                issued_at=draft.issued_at,
                description=draft.description,
                customer_name=draft.customer_name,
                project_id=draft.project_id,
                status="draft",
                email_sent_at=None,
                created_at=now,
            )
            self._invoices[row.invoice_id] = row
            self._deliveries[row.invoice_id] = []

            for line in lines:
                row.lines.append(
                    InvoiceLineRecord(
                        line_id=next(self._line_ids),
                        invoice_id=row.invoice_id,
                        work_record_id=line.work_record_id,
                        title=line.title,
                        performer_name=line.performer_name,
                        grade_name=line.grade_name,
                        hourly_rate=line.hourly_rate,
                        hours=line.hours,
                        amount=line.amount,
                    )
                )
            for line in lines:
                record = self._work_records[line.work_record_id]
                self._work_records[line.work_record_id] = record.model_copy(update={"status": "invoiced"})
            return self._to_invoice_record(row)

    def import_invoice(
        self,
        *,
        tenant_id: str,
        number: str,
        issued_at: datetime,
        customer_name: str | None,
        description: str | None,
    ) -> InvoiceRecord:
        now = _now_utc()
        with self._lock:
            taken = {row.number for row in self._invoices.values() if row.tenant_id == tenant_id}
            if number in taken:
                raise DuplicateInvoiceNumberError(number)
            sequence = parse_invoice_sequence(tenant_id, number)
            if sequence is not None and tenant_id in self._invoice_counters:
                self._invoice_counters[tenant_id] = max(self._invoice_counters[tenant_id], sequence)

            row = _InvoiceRow(
                invoice_id=next(self._invoice_ids),
                tenant_id=tenant_id,
                number=number,
                issued_at=issued_at,
                description=description,
                customer_name=customer_name,
                project_id=None,
                status="draft",
                email_sent_at=None,
                created_at=now,
            )
            self._invoices[row.invoice_id] = row
            self._deliveries[row.invoice_id] = []
            return self._to_invoice_record(row)

    def get_invoice(self, invoice_id: int) -> InvoiceRecord | None:
        with self._lock:
            row = self._invoices.get(invoice_id)
            return self._to_invoice_record(row) if row is not None else None

    def list_invoices(self, tenant_id: str) -> list[InvoiceRecord]:
        with self._lock:
            rows = [row for row in self._invoices.values() if row.tenant_id == tenant_id]
            rows.sort(key=lambda value: value.invoice_id)
            return [self._to_invoice_record(row) for row in rows]

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
    ) -> DeliveryLogRecord:
        with self._lock:
            invoice = self._invoices.get(invoice_id)
            if invoice is None:
                raise InvoiceNotFoundError(invoice_id)
            record = DeliveryLogRecord(
                delivery_id=next(self._delivery_ids),
                invoice_id=invoice_id,
                recipient=recipient,
                subject=subject,
                body=body,
                is_success=is_success,
                error=error,
                sent_at=sent_at,
            )
            self._deliveries[invoice_id].append(record)
            if is_success:
                if invoice.email_sent_at is None:
                    invoice.email_sent_at = sent_at
                if invoice.status == "draft":
                    invoice.status = "sent"
            return record

    def list_delivery_logs(self, invoice_id: int) -> list[DeliveryLogRecord]:
        with self._lock:
            if invoice_id not in self._invoices:
                raise InvoiceNotFoundError(invoice_id)
            return list(self._deliveries.get(invoice_id, []))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _allocate_number(self, tenant_id: str) -> str:
        current = self._invoice_counters.get(tenant_id)
        if current is None:
            current = highest_invoice_sequence(
                tenant_id,
                (row.number for row in self._invoices.values() if row.tenant_id == tenant_id),
            )
        current += 1
        self._invoice_counters[tenant_id] = current
        return format_invoice_number(tenant_id, current)

    def _require_schedule(self, schedule_id: int) -> _ScheduleRow:
        row = self._schedules.get(schedule_id)
        if row is None:
            raise ScheduleNotFoundError(schedule_id)
        return row

    def _to_schedule_record(self, row: _ScheduleRow) -> ScheduleRecord:
        return ScheduleRecord(
            schedule_id=row.schedule_id,
            name=row.name,
            tenant_id=row.tenant_id,
            cadence=row.cadence.cadence,
            weekday=row.cadence.weekday,
            day_of_month=row.cadence.day_of_month,
            hour_of_day=row.cadence.hour_of_day,
            recipients=row.recipients,
            active=row.active,
            last_run_at=row.last_run_at,
            next_run_at=row.next_run_at,
            description=row.description,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def _to_run_log_record(self, row: _RunLogRow) -> RunLogRecord:
        return RunLogRecord(
            run_id=row.run_id,
            schedule_id=row.schedule_id,
            run_started_at=row.run_started_at,
            run_completed_at=row.run_completed_at,
            invoice_id=row.invoice_id,
            tasks_count=row.tasks_count,
            is_success=row.is_success,
            error=row.error,
        )

    def _to_invoice_record(self, row: _InvoiceRow) -> InvoiceRecord:
        return InvoiceRecord(
            invoice_id=row.invoice_id,
            tenant_id=row.tenant_id,
            number=row.number,
            issued_at=row.issued_at,
            description=row.description,
            customer_name=row.customer_name,
            project_id=row.project_id,
            status=row.status,
            total=float(compute_invoice_total(row.lines)),
            email_sent_at=row.email_sent_at,
            created_at=row.created_at,
            lines=list(row.lines),
        )

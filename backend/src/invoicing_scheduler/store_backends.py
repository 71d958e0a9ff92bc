from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    delete,
    func,
    select,
)
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker

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
    ScheduleStore,
    format_invoice_number,
    highest_invoice_sequence,
    parse_invoice_sequence,
)
from .store import InMemoryScheduleStore

logger = logging.getLogger(__name__)


class InvoiceSchedulerBase(DeclarativeBase):
    pass


class _ScheduleRow(InvoiceSchedulerBase):
    __tablename__ = "invoice_schedules"

    schedule_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    tenant_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    cadence: Mapped[str] = mapped_column(String(16), nullable=False)
    weekday: Mapped[int | None] = mapped_column(Integer, nullable=True)
    day_of_month: Mapped[int | None] = mapped_column(Integer, nullable=True)
    hour_of_day: Mapped[int] = mapped_column(Integer, nullable=False, default=6)
    recipients: Mapped[str] = mapped_column(String(1000), nullable=False, default="")
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    last_run_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    next_run_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class _TenantRow(InvoiceSchedulerBase):
    __tablename__ = "tenants"

    tenant_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)


class _GradeRow(InvoiceSchedulerBase):
    __tablename__ = "grades"

    grade_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    hourly_rate: Mapped[float] = mapped_column(Numeric(12, 2, asdecimal=False), nullable=False)


class _PerformerRow(InvoiceSchedulerBase):
    __tablename__ = "performers"

    performer_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    grade_id: Mapped[str | None] = mapped_column(String(64), nullable=True)


class _WorkRecordRow(InvoiceSchedulerBase):
    __tablename__ = "work_records"

    work_record_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    project_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    performer_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    hours: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    status: Mapped[str] = mapped_column(String(32), nullable=False, index=True)


class _InvoiceRow(InvoiceSchedulerBase):
    __tablename__ = "invoices"
    __table_args__ = (UniqueConstraint("tenant_id", "number", name="uq_invoices_tenant_number"),)

    invoice_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    number: Mapped[str] = mapped_column(String(96), nullable=False)
    issued_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    customer_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    project_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="draft")
    email_sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class _InvoiceLineRow(InvoiceSchedulerBase):
    __tablename__ = "invoice_lines"

    line_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    invoice_id: Mapped[int] = mapped_column(Integer, ForeignKey("invoices.invoice_id"), nullable=False, index=True)
    work_record_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    performer_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    grade_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    hourly_rate: Mapped[float] = mapped_column(Numeric(12, 2, asdecimal=False), nullable=False)
    hours: Mapped[float] = mapped_column(Float, nullable=False)
    amount: Mapped[float] = mapped_column(Numeric(12, 2, asdecimal=False), nullable=False)


class _InvoiceCounterRow(InvoiceSchedulerBase):
    __tablename__ = "invoice_counters"

    tenant_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    last_sequence: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class _RunLogRow(InvoiceSchedulerBase):
    __tablename__ = "invoice_schedule_runs"

    run_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    schedule_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("invoice_schedules.schedule_id"), nullable=False, index=True
    )
    run_started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    run_completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    invoice_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("invoices.invoice_id"), nullable=True)
    tasks_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_success: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)


class _DeliveryLogRow(InvoiceSchedulerBase):
    __tablename__ = "invoice_delivery_logs"

    delivery_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    invoice_id: Mapped[int] = mapped_column(Integer, ForeignKey("invoices.invoice_id"), nullable=False, index=True)
    recipient: Mapped[str] = mapped_column(String(256), nullable=False)
    subject: Mapped[str] = mapped_column(String(256), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    is_success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    sent_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _coerce_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class SqlAlchemyScheduleStore:
    def __init__(self, database_url: str) -> None:
        if not database_url:
            raise RuntimeError("DATABASE_URL is required for SCHEDULE_STORE_BACKEND=postgres")
        self._engine = create_engine(database_url, future=True, pool_pre_ping=True)
        self._session_factory = sessionmaker(self._engine, expire_on_commit=False, future=True)
        # SQLite is used in tests. Production Postgres should rely on migrations.
        if database_url.startswith("sqlite"):
            InvoiceSchedulerBase.metadata.create_all(self._engine)

    def _session(self) -> Session:
        return self._session_factory()

    def reset(self) -> None:
        with self._session() as session:
            with session.begin():
                session.execute(delete(_DeliveryLogRow))
                session.execute(delete(_RunLogRow))
                session.execute(delete(_InvoiceLineRow))
                session.execute(delete(_InvoiceRow))
                session.execute(delete(_InvoiceCounterRow))
                session.execute(delete(_ScheduleRow))
                session.execute(delete(_WorkRecordRow))
                session.execute(delete(_PerformerRow))
                session.execute(delete(_GradeRow))
                session.execute(delete(_TenantRow))

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
        with self._session() as session:
            with session.begin():
                row = _ScheduleRow(
                    name=name,
                    tenant_id=tenant_id,
                    cadence=cadence.cadence,
                    weekday=cadence.weekday,
                    day_of_month=cadence.day_of_month,
                    hour_of_day=cadence.hour_of_day,
                    recipients=recipients,
                    active=active,
                    description=description,
                    last_run_at=None,
                    next_run_at=next_run_at,
                    created_at=now,
                    updated_at=now,
                )
                session.add(row)
                session.flush()
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
        with self._session() as session:
            with session.begin():
                row = self._require_schedule(session, schedule_id)
                row.name = name
                row.tenant_id = tenant_id
                row.cadence = cadence.cadence
                row.weekday = cadence.weekday
                row.day_of_month = cadence.day_of_month
                row.hour_of_day = cadence.hour_of_day
                row.recipients = recipients
                row.active = active
                row.description = description
                row.next_run_at = next_run_at
                row.updated_at = _now_utc()
                return self._to_schedule_record(row)

    def set_schedule_state(self, schedule_id: int, *, active: bool, next_run_at: datetime | None) -> ScheduleRecord:
        with self._session() as session:
            with session.begin():
                row = self._require_schedule(session, schedule_id)
                row.active = active
                row.next_run_at = next_run_at
                row.updated_at = _now_utc()
                return self._to_schedule_record(row)

    def get_schedule(self, schedule_id: int) -> ScheduleRecord | None:
        with self._session() as session:
            row = session.get(_ScheduleRow, schedule_id)
            return self._to_schedule_record(row) if row is not None else None

    def list_schedules(self) -> list[ScheduleRecord]:
        with self._session() as session:
            rows = session.execute(
                select(_ScheduleRow).order_by(
                    func.coalesce(_ScheduleRow.tenant_id, ""),
                    _ScheduleRow.name,
                    _ScheduleRow.schedule_id,
                )
            ).scalars().all()
            return [self._to_schedule_record(row) for row in rows]

    def list_due_schedules(self, now: datetime) -> list[ScheduleRecord]:
        with self._session() as session:
            rows = session.execute(
                select(_ScheduleRow)
                .where(
                    _ScheduleRow.active.is_(True),
                    _ScheduleRow.next_run_at.is_not(None),
                    _ScheduleRow.next_run_at <= now,
                )
                .order_by(_ScheduleRow.next_run_at, _ScheduleRow.schedule_id)
            ).scalars().all()
            return [self._to_schedule_record(row) for row in rows]

    def delete_schedule(self, schedule_id: int) -> bool:
        with self._session() as session:
            with session.begin():
                row = session.get(_ScheduleRow, schedule_id)
                if row is None:
                    return False
                session.execute(delete(_RunLogRow).where(_RunLogRow.schedule_id == schedule_id))
                session.delete(row)
        return True

    # ------------------------------------------------------------------
    # Run logs
    # ------------------------------------------------------------------

    def open_run_log(self, schedule_id: int, *, started_at: datetime) -> RunLogRecord:
        with self._session() as session:
            with session.begin():
                self._require_schedule(session, schedule_id)
                row = _RunLogRow(
                    schedule_id=schedule_id,
                    run_started_at=started_at,
                    tasks_count=0,
                    is_success=False,
                )
                session.add(row)
                session.flush()
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
        with self._session() as session:
            with session.begin():
                row = session.get(_RunLogRow, run_id)
                if row is None:
                    raise RunLogNotFoundError(run_id)
                row.run_completed_at = completed_at
                row.invoice_id = invoice_id
                row.tasks_count = tasks_count
                row.is_success = is_success
                row.error = error

                schedule = session.get(_ScheduleRow, row.schedule_id)
                if schedule is not None:
                    schedule.last_run_at = completed_at
                    schedule.next_run_at = next_run_at
                    schedule.updated_at = completed_at
                return self._to_run_log_record(row)

    def list_run_logs(self, schedule_id: int, *, limit: int) -> list[RunLogRecord]:
        with self._session() as session:
            rows = session.execute(
                select(_RunLogRow)
                .where(_RunLogRow.schedule_id == schedule_id)
                .order_by(_RunLogRow.run_started_at.desc(), _RunLogRow.run_id.desc())
                .limit(limit)
            ).scalars().all()
            return [self._to_run_log_record(row) for row in rows]

    def list_recent_runs(self, *, limit: int) -> list[RunLogRecord]:
        with self._session() as session:
            rows = session.execute(
                select(_RunLogRow)
                .order_by(_RunLogRow.run_started_at.desc(), _RunLogRow.run_id.desc())
                .limit(limit)
            ).scalars().all()
            return [self._to_run_log_record(row) for row in rows]

    # ------------------------------------------------------------------
    # Reference data
    # ------------------------------------------------------------------

    def upsert_tenants(self, items: list[TenantUpsertItem]) -> int:
        with self._session() as session:
            with session.begin():
                for item in items:
                    row = session.get(_TenantRow, item.tenant_id)
                    if row is None:
                        session.add(_TenantRow(tenant_id=item.tenant_id, name=item.name))
                    else:
                        row.name = item.name
        return len(items)

    def upsert_grades(self, items: list[GradeUpsertItem]) -> int:
        with self._session() as session:
            with session.begin():
                for item in items:
                    hourly_rate = round(float(item.hourly_rate), 2)
                    row = session.get(_GradeRow, item.grade_id)
                    if row is None:
                        session.add(_GradeRow(grade_id=item.grade_id, name=item.name, hourly_rate=hourly_rate))
                    else:
                        row.name = item.name
                        row.hourly_rate = hourly_rate
        return len(items)

    def upsert_performers(self, items: list[PerformerUpsertItem]) -> int:
        with self._session() as session:
            with session.begin():
                for item in items:
                    row = session.get(_PerformerRow, item.performer_id)
                    if row is None:
                        session.add(
                            _PerformerRow(performer_id=item.performer_id, name=item.name, grade_id=item.grade_id)
                        )
                    else:
                        row.name = item.name
                        row.grade_id = item.grade_id
        return len(items)

    def upsert_work_records(self, items: list[WorkRecordUpsertItem]) -> int:
        with self._session() as session:
            with session.begin():
                for item in items:
                    row = session.get(_WorkRecordRow, item.work_record_id)
                    if row is None:
                        session.add(_WorkRecordRow(**item.model_dump()))
                        continue
                    row.tenant_id = item.tenant_id
                    row.project_id = item.project_id
                    row.performer_id = item.performer_id
                    row.title = item.title
                    row.hours = item.hours
                    row.status = item.status
        return len(items)

    def get_tenant(self, tenant_id: str) -> TenantRecord | None:
        with self._session() as session:
            row = session.get(_TenantRow, tenant_id)
            return TenantRecord(tenant_id=row.tenant_id, name=row.name) if row is not None else None

    def get_grade(self, grade_id: str) -> GradeRecord | None:
        with self._session() as session:
            row = session.get(_GradeRow, grade_id)
            if row is None:
                return None
            return GradeRecord(grade_id=row.grade_id, name=row.name, hourly_rate=float(row.hourly_rate))

    def get_performer(self, performer_id: str) -> PerformerRecord | None:
        with self._session() as session:
            row = session.get(_PerformerRow, performer_id)
            if row is None:
                return None
            return PerformerRecord(performer_id=row.performer_id, name=row.name, grade_id=row.grade_id)

    def get_work_record(self, work_record_id: str) -> WorkRecord | None:
        with self._session() as session:
            row = session.get(_WorkRecordRow, work_record_id)
            return self._to_work_record(row) if row is not None else None

    def list_completed_work(self, tenant_id: str) -> list[WorkRecord]:
        with self._session() as session:
            rows = session.execute(
                select(_WorkRecordRow)
                .where(
                    _WorkRecordRow.tenant_id == tenant_id,
                    _WorkRecordRow.status == "completed",
                    _WorkRecordRow.hours > 0,
                )
                .order_by(_WorkRecordRow.work_record_id)
            ).scalars().all()
            return [self._to_work_record(row) for row in rows]

    # ------------------------------------------------------------------
    # Invoices
    # ------------------------------------------------------------------

    def commit_invoice(self, draft: InvoiceDraft) -> InvoiceRecord | None:
        try:
            return self._commit_invoice_once(draft)
        except IntegrityError:
            # A concurrent commit seeded the tenant counter or took the number first.
            logger.warning("invoice numbering conflict for tenant %s; retrying commit", draft.tenant_id)
            return self._commit_invoice_once(draft)

    def _commit_invoice_once(self, draft: InvoiceDraft) -> InvoiceRecord | None:
        now = _now_utc()
        work_record_ids = [line.work_record_id for line in draft.lines]
        with self._session() as session:
            with session.begin():
                claimable = {
                    row.work_record_id: row
                    for row in session.execute(
                        select(_WorkRecordRow)
                        .where(
                            _WorkRecordRow.work_record_id.in_(work_record_ids),
                            _WorkRecordRow.status == "completed",
                        )
                        .with_for_update()
                    ).scalars()
                }
                lines = [line for line in draft.lines if line.work_record_id in claimable]
                if not lines:
                    return None

                invoice = _InvoiceRow(
                    tenant_id=draft.tenant_id,
                    number=self._allocate_number(session, draft.tenant_id),
                    issued_at=draft.issued_at,
                    description=draft.description,
                    customer_name=draft.customer_name,
                    project_id=draft.project_id,
                    status="draft",
                    email_sent_at=None,
                    created_at=now,
                )
                session.add(invoice)
                session.flush()

                line_rows = [
                    _InvoiceLineRow(
                        invoice_id=invoice.invoice_id,
                        work_record_id=line.work_record_id,
                        title=line.title,
                        performer_name=line.performer_name,
                        grade_name=line.grade_name,
                        hourly_rate=line.hourly_rate,
                        hours=line.hours,
                        amount=line.amount,
                    )
                    for line in lines
                ]
                session.add_all(line_rows)
                for line in lines:
                    claimable[line.work_record_id].status = "invoiced"
                session.flush()
                return self._to_invoice_record(invoice, line_rows)

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
        try:
            with self._session() as session:
                with session.begin():
                    existing = session.execute(
                        select(_InvoiceRow.invoice_id).where(
                            _InvoiceRow.tenant_id == tenant_id,
                            _InvoiceRow.number == number,
                        )
                    ).scalar_one_or_none()
                    if existing is not None:
                        raise DuplicateInvoiceNumberError(number)

                    sequence = parse_invoice_sequence(tenant_id, number)
                    counter = session.get(_InvoiceCounterRow, tenant_id)
                    if sequence is not None and counter is not None and sequence > counter.last_sequence:
                        counter.last_sequence = sequence

                    invoice = _InvoiceRow(
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
                    session.add(invoice)
                    session.flush()
                    return self._to_invoice_record(invoice, [])
        except IntegrityError as exc:
            raise DuplicateInvoiceNumberError(number) from exc

    def get_invoice(self, invoice_id: int) -> InvoiceRecord | None:
        with self._session() as session:
            row = session.get(_InvoiceRow, invoice_id)
            if row is None:
                return None
            return self._to_invoice_record(row, self._load_lines(session, invoice_id))

    def list_invoices(self, tenant_id: str) -> list[InvoiceRecord]:
        with self._session() as session:
            rows = session.execute(
                select(_InvoiceRow).where(_InvoiceRow.tenant_id == tenant_id).order_by(_InvoiceRow.invoice_id)
            ).scalars().all()
            return [self._to_invoice_record(row, self._load_lines(session, row.invoice_id)) for row in rows]

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
        with self._session() as session:
            with session.begin():
                invoice = session.get(_InvoiceRow, invoice_id)
                if invoice is None:
                    raise InvoiceNotFoundError(invoice_id)
                row = _DeliveryLogRow(
                    invoice_id=invoice_id,
                    recipient=recipient,
                    subject=subject,
                    body=body,
                    is_success=is_success,
                    error=error,
                    sent_at=sent_at,
                )
                session.add(row)
                if is_success:
                    if invoice.email_sent_at is None:
                        invoice.email_sent_at = sent_at
                    if invoice.status == "draft":
                        invoice.status = "sent"
                session.flush()
                return self._to_delivery_record(row)

    def list_delivery_logs(self, invoice_id: int) -> list[DeliveryLogRecord]:
        with self._session() as session:
            if session.get(_InvoiceRow, invoice_id) is None:
                raise InvoiceNotFoundError(invoice_id)
            rows = session.execute(
                select(_DeliveryLogRow)
                .where(_DeliveryLogRow.invoice_id == invoice_id)
                .order_by(_DeliveryLogRow.delivery_id)
            ).scalars().all()
            return [self._to_delivery_record(row) for row in rows]

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _allocate_number(self, session: Session, tenant_id: str) -> str:
        counter = session.execute(
            select(_InvoiceCounterRow).where(_InvoiceCounterRow.tenant_id == tenant_id).with_for_update()
        ).scalar_one_or_none()
        if counter is None:
            counter = self._seed_counter(session, tenant_id)
        counter.last_sequence += 1
        return format_invoice_number(tenant_id, counter.last_sequence)

    def _seed_counter(self, session: Session, tenant_id: str) -> _InvoiceCounterRow:
        numbers = session.execute(select(_InvoiceRow.number).where(_InvoiceRow.tenant_id == tenant_id)).scalars()
        counter = _InvoiceCounterRow(tenant_id=tenant_id, last_sequence=highest_invoice_sequence(tenant_id, numbers))
        session.add(counter)
        return counter

    def _require_schedule(self, session: Session, schedule_id: int) -> _ScheduleRow:
        row = session.get(_ScheduleRow, schedule_id)
        if row is None:
            raise ScheduleNotFoundError(schedule_id)
        return row

    def _load_lines(self, session: Session, invoice_id: int) -> list[_InvoiceLineRow]:
        return list(
            session.execute(
                select(_InvoiceLineRow)
                .where(_InvoiceLineRow.invoice_id == invoice_id)
                .order_by(_InvoiceLineRow.line_id)
            ).scalars()
        )

    def _to_schedule_record(self, row: _ScheduleRow) -> ScheduleRecord:
        return ScheduleRecord(
            schedule_id=row.schedule_id,
            name=row.name,
            tenant_id=row.tenant_id,
            cadence=row.cadence,
            weekday=row.weekday,
            day_of_month=row.day_of_month,
            hour_of_day=row.hour_of_day,
            recipients=row.recipients,
            active=row.active,
            last_run_at=_coerce_utc(row.last_run_at),
            next_run_at=_coerce_utc(row.next_run_at),
            description=row.description,
            created_at=_coerce_utc(row.created_at),
            updated_at=_coerce_utc(row.updated_at),
        )

    def _to_run_log_record(self, row: _RunLogRow) -> RunLogRecord:
        return RunLogRecord(
            run_id=row.run_id,
            schedule_id=row.schedule_id,
            run_started_at=_coerce_utc(row.run_started_at),
            run_completed_at=_coerce_utc(row.run_completed_at),
            invoice_id=row.invoice_id,
            tasks_count=row.tasks_count,
            is_success=row.is_success,
            error=row.error,
        )

    def _to_work_record(self, row: _WorkRecordRow) -> WorkRecord:
        return WorkRecord(
            work_record_id=row.work_record_id,
            tenant_id=row.tenant_id,
            project_id=row.project_id,
            performer_id=row.performer_id,
            title=row.title,
            hours=float(row.hours),
            status=row.status,
        )

    def _to_invoice_record(self, row: _InvoiceRow, line_rows: list[_InvoiceLineRow]) -> InvoiceRecord:
        lines = [
            InvoiceLineRecord(
                line_id=line.line_id,
                invoice_id=line.invoice_id,
                work_record_id=line.work_record_id,
                title=line.title,
                performer_name=line.performer_name,
                grade_name=line.grade_name,
                hourly_rate=float(line.hourly_rate),
                hours=float(line.hours),
                amount=float(line.amount),
            )
            for line in line_rows
        ]
        return InvoiceRecord(
            invoice_id=row.invoice_id,
            tenant_id=row.tenant_id,
            number=row.number,
            issued_at=_coerce_utc(row.issued_at),
            description=row.description,
            customer_name=row.customer_name,
            project_id=row.project_id,
            status=row.status,
            total=float(compute_invoice_total(lines)),
            email_sent_at=_coerce_utc(row.email_sent_at),
            created_at=_coerce_utc(row.created_at),
            lines=lines,
        )

    def _to_delivery_record(self, row: _DeliveryLogRow) -> DeliveryLogRecord:
        return DeliveryLogRecord(
            delivery_id=row.delivery_id,
            invoice_id=row.invoice_id,
            recipient=row.recipient,
            subject=row.subject,
            body=row.body,
            is_success=row.is_success,
            error=row.error,
            sent_at=_coerce_utc(row.sent_at),
        )


def create_schedule_store(*, backend: str, database_url: str) -> ScheduleStore:
    normalized = backend.strip().lower()
    if normalized == "postgres":
        return SqlAlchemyScheduleStore(database_url)
    if normalized == "inmemory":
        return InMemoryScheduleStore()
    raise RuntimeError(f"unsupported SCHEDULE_STORE_BACKEND: {backend}")

from __future__ import annotations

from datetime import datetime, timezone

from invoicing_scheduler.assembler import InvoiceAssembler
from invoicing_scheduler.delivery import DeliveryDispatcher
from invoicing_scheduler.mailer import StubMailer
from invoicing_scheduler.models import (
    GradeUpsertItem,
    InvoiceDraft,
    InvoiceRecord,
    PerformerUpsertItem,
    ScheduleCadence,
    ScheduleRecord,
    TenantUpsertItem,
    WorkRecordUpsertItem,
)
from invoicing_scheduler.runner import ScheduleRunner
from invoicing_scheduler.store import InMemoryScheduleStore

NOW = datetime(2026, 3, 10, 9, 0, tzinfo=timezone.utc)
NEXT_SLOT = datetime(2026, 3, 11, 6, 0, tzinfo=timezone.utc)


class _ExplodingCommitStore(InMemoryScheduleStore):
    def commit_invoice(self, draft: InvoiceDraft) -> InvoiceRecord | None:
        raise RuntimeError("database unavailable")


def _clock() -> datetime:
    return NOW


def _seed(store: InMemoryScheduleStore) -> None:
    store.upsert_tenants([TenantUpsertItem(tenant_id="T1", name="Tenant One")])
    store.upsert_grades([GradeUpsertItem(grade_id="senior", name="Senior", hourly_rate=50.0)])
    store.upsert_performers([PerformerUpsertItem(performer_id="p1", name="Dana", grade_id="senior")])
    store.upsert_work_records(
        [
            WorkRecordUpsertItem(
                work_record_id="w1", tenant_id="T1", performer_id="p1", title="Design", hours=2, status="completed"
            ),
            WorkRecordUpsertItem(
                work_record_id="w2", tenant_id="T1", performer_id="p1", title="Build", hours=3, status="completed"
            ),
        ]
    )


def _schedule(store: InMemoryScheduleStore, *, tenant_id: str | None = "T1") -> ScheduleRecord:
    return store.create_schedule(
        name="Daily T1",
        tenant_id=tenant_id,
        cadence=ScheduleCadence(cadence="daily", hour_of_day=6),
        recipients="a@x.com;b@x.com",
        active=True,
        description=None,
        next_run_at=NOW,
    )


def _runner(store: InMemoryScheduleStore, mailer: StubMailer | None = None) -> ScheduleRunner:
    assembler = InvoiceAssembler(store, clock=_clock)
    dispatcher = DeliveryDispatcher(store, mailer or StubMailer(enabled=True), clock=_clock)
    return ScheduleRunner(store, assembler, dispatcher, clock=_clock)


def test_run_generates_delivers_and_advances_schedule() -> None:
    store = InMemoryScheduleStore()
    _seed(store)
    schedule = _schedule(store)
    mailer = StubMailer(enabled=True)

    run, invoice = _runner(store, mailer).run(schedule)

    assert invoice is not None
    assert invoice.number == "T1-00001"
    assert len(invoice.lines) == 2
    assert invoice.total == 250.0
    assert [email.recipient for email in mailer.sent] == ["a@x.com", "b@x.com"]

    assert run.is_success is True
    assert run.error is None
    assert run.tasks_count == 2
    assert run.invoice_id == invoice.invoice_id
    assert run.run_completed_at == NOW

    deliveries = store.list_delivery_logs(invoice.invoice_id)
    assert [log.is_success for log in deliveries] == [True, True]
    assert store.get_invoice(invoice.invoice_id).status == "sent"

    updated = store.get_schedule(schedule.schedule_id)
    assert updated.last_run_at == NOW
    assert updated.next_run_at == NEXT_SLOT
    assert store.list_run_logs(schedule.schedule_id, limit=10) == [run]


def test_run_without_completed_work_succeeds_with_no_invoice() -> None:
    store = InMemoryScheduleStore()
    store.upsert_tenants([TenantUpsertItem(tenant_id="T1", name="Tenant One")])
    schedule = _schedule(store)

    run, invoice = _runner(store).run(schedule)

    assert invoice is None
    assert run.is_success is True
    assert run.tasks_count == 0
    assert run.invoice_id is None
    assert store.get_schedule(schedule.schedule_id).next_run_at == NEXT_SLOT


def test_tenantless_schedule_records_failure_and_still_advances() -> None:
    store = InMemoryScheduleStore()
    _seed(store)
    schedule = _schedule(store, tenant_id=None)

    run, invoice = _runner(store).run(schedule)

    assert invoice is None
    assert run.is_success is False
    assert run.error == "schedule has no tenant"
    assert store.get_schedule(schedule.schedule_id).next_run_at == NEXT_SLOT
    assert store.get_work_record("w1").status == "completed"


def test_store_failure_during_commit_fails_the_run_without_consuming_work() -> None:
    store = _ExplodingCommitStore()
    _seed(store)
    schedule = _schedule(store)

    run, invoice = _runner(store).run(schedule)

    assert invoice is None
    assert run.is_success is False
    assert run.error == "database unavailable"
    assert run.run_completed_at == NOW
    assert store.get_schedule(schedule.schedule_id).next_run_at == NEXT_SLOT
    assert [record.status for record in store.list_completed_work("T1")] == ["completed", "completed"]


def test_delivery_failures_do_not_fail_the_run() -> None:
    store = InMemoryScheduleStore()
    _seed(store)
    schedule = _schedule(store)

    run, invoice = _runner(store, StubMailer(enabled=False)).run(schedule)

    assert invoice is not None
    assert run.is_success is True
    deliveries = store.list_delivery_logs(invoice.invoice_id)
    assert [log.is_success for log in deliveries] == [False, False]
    assert store.get_invoice(invoice.invoice_id).email_sent_at is None

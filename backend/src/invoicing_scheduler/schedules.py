from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Callable

from .assembler import InvoiceAssembler
from .delivery import DeliveryDispatcher
from .models import (
    InvoiceGenerateResponse,
    RunLogRecord,
    RunSummary,
    ScheduleCadence,
    ScheduleDetailResponse,
    ScheduleRecord,
    ScheduleUpsertRequest,
)
from .repositories import ScheduleNotFoundError, ScheduleStore
from .schedule_timing import compute_initial_next_run
from .sweep import InvoiceSweepLoop

logger = logging.getLogger(__name__)

FORCE_RUN_BACKDATE = timedelta(seconds=5)
DEFAULT_RECENT_RUNS = 100


class ScheduleInactiveError(RuntimeError):
    """Raised when a paused schedule is asked to run."""


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class ScheduleService:
    def __init__(
        self,
        store: ScheduleStore,
        sweep_loop: InvoiceSweepLoop,
        assembler: InvoiceAssembler,
        dispatcher: DeliveryDispatcher,
        *,
        zone: tzinfo = timezone.utc,
        default_hour_of_day: int = 6,
        run_history_limit_max: int = 200,
        clock: Callable[[], datetime] = _now_utc,
    ) -> None:
        self._store = store
        self._sweep_loop = sweep_loop
        self._assembler = assembler
        self._dispatcher = dispatcher
        self._zone = zone
        self._default_hour_of_day = default_hour_of_day
        self._run_history_limit_max = run_history_limit_max
        self._clock = clock

    def create_schedule(self, payload: ScheduleUpsertRequest) -> ScheduleRecord:
        cadence = payload.to_cadence(default_hour=self._default_hour_of_day)
        next_run_at = self._initial_next_run(cadence) if payload.active else None
        schedule = self._store.create_schedule(
            name=payload.name,
            tenant_id=payload.tenant_id,
            cadence=cadence,
            recipients=payload.recipients,
            active=payload.active,
            description=payload.description,
            next_run_at=next_run_at,
        )
        logger.info("schedule %s created (%s, next_run_at=%s)", schedule.schedule_id, cadence.cadence, next_run_at)
        return schedule

    def update_schedule(self, schedule_id: int, payload: ScheduleUpsertRequest) -> ScheduleRecord:
        existing = self._require_schedule(schedule_id)
        cadence = payload.to_cadence(default_hour=self._default_hour_of_day)
        cadence_changed = cadence != existing.to_cadence()

        if payload.active:
            if existing.next_run_at is None or cadence_changed or payload.recompute_next:
                next_run_at = self._initial_next_run(cadence)
            else:
                next_run_at = existing.next_run_at
        elif cadence_changed or payload.recompute_next:
            # recomputed on reactivation
            next_run_at = None
        else:
            next_run_at = existing.next_run_at

        return self._store.update_schedule(
            schedule_id,
            name=payload.name,
            tenant_id=payload.tenant_id,
            cadence=cadence,
            recipients=payload.recipients,
            active=payload.active,
            description=payload.description,
            next_run_at=next_run_at,
        )

    def toggle_active(self, schedule_id: int) -> ScheduleRecord:
        existing = self._require_schedule(schedule_id)
        if existing.active:
            schedule = self._store.set_schedule_state(schedule_id, active=False, next_run_at=existing.next_run_at)
            logger.info("schedule %s paused", schedule_id)
            return schedule

        next_run_at = existing.next_run_at or self._initial_next_run(existing.to_cadence())
        schedule = self._store.set_schedule_state(schedule_id, active=True, next_run_at=next_run_at)
        logger.info("schedule %s resumed (next_run_at=%s)", schedule_id, next_run_at)
        return schedule

    def force_run(self, schedule_id: int) -> RunSummary:
        existing = self._require_schedule(schedule_id)
        if not existing.active:
            raise ScheduleInactiveError(f"schedule {schedule_id} is not active")

        schedule = self._store.set_schedule_state(
            schedule_id,
            active=True,
            next_run_at=self._clock() - FORCE_RUN_BACKDATE,
        )
        outcome = self._sweep_loop.run_exclusive(schedule)
        if outcome is None:
            logger.info("force-run of schedule %s deferred to the active sweep", schedule_id)
            return RunSummary(
                schedule_id=schedule_id,
                status="queued",
                executed=False,
                message="A sweep is in progress; the schedule is due and will run on the next sweep.",
            )

        run, invoice = outcome
        if not run.is_success:
            message = f"Run failed: {run.error}"
        elif invoice is None:
            message = "No completed work to invoice."
        else:
            message = f"Invoice {invoice.number} generated with {run.tasks_count} lines."
        return RunSummary(
            schedule_id=schedule_id,
            status="completed" if run.is_success else "failed",
            executed=True,
            run=run,
            invoice_number=invoice.number if invoice is not None else None,
            message=message,
        )

    def delete_schedule(self, schedule_id: int) -> None:
        if not self._store.delete_schedule(schedule_id):
            raise ScheduleNotFoundError(schedule_id)
        logger.info("schedule %s deleted", schedule_id)

    def list_schedules(self) -> list[ScheduleRecord]:
        return self._store.list_schedules()

    def get_schedule(self, schedule_id: int) -> ScheduleDetailResponse:
        schedule = self._require_schedule(schedule_id)
        latest = self._store.list_run_logs(schedule_id, limit=1)
        return ScheduleDetailResponse(schedule=schedule, latest_run=latest[0] if latest else None)

    def run_history(self, schedule_id: int, limit: int) -> list[RunLogRecord]:
        self._require_schedule(schedule_id)
        bounded = max(1, min(limit, self._run_history_limit_max))
        return self._store.list_run_logs(schedule_id, limit=bounded)

    def recent_runs(self, limit: int = DEFAULT_RECENT_RUNS) -> list[RunLogRecord]:
        bounded = max(1, min(limit, self._run_history_limit_max))
        return self._store.list_recent_runs(limit=bounded)

    def generate_invoice(self, tenant_id: str, recipients: str | None = None) -> InvoiceGenerateResponse:
        invoice = self._assembler.assemble(tenant_id)
        if invoice is None:
            return InvoiceGenerateResponse(generated=False)
        deliveries = self._dispatcher.deliver(invoice, recipients) if recipients else []
        refreshed = self._store.get_invoice(invoice.invoice_id) or invoice
        return InvoiceGenerateResponse(generated=True, invoice=refreshed, deliveries=deliveries)

    def _initial_next_run(self, cadence: ScheduleCadence) -> datetime:
        return compute_initial_next_run(cadence, self._clock(), self._zone)

    def _require_schedule(self, schedule_id: int) -> ScheduleRecord:
        schedule = self._store.get_schedule(schedule_id)
        if schedule is None:
            raise ScheduleNotFoundError(schedule_id)
        return schedule

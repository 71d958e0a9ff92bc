from __future__ import annotations

import logging
from datetime import datetime, timezone, tzinfo
from typing import Callable

from .assembler import InvoiceAssembler
from .delivery import DeliveryDispatcher
from .models import InvoiceRecord, RunLogRecord, ScheduleRecord
from .repositories import ScheduleStore
from .schedule_timing import compute_next_run_after

logger = logging.getLogger(__name__)


class ScheduleNotRunnableError(RuntimeError):
    """Raised inside a run when the schedule has no tenant to bill."""


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class ScheduleRunner:
    """Executes one schedule: assemble, deliver, log, advance."""

    def __init__(
        self,
        store: ScheduleStore,
        assembler: InvoiceAssembler,
        dispatcher: DeliveryDispatcher,
        *,
        zone: tzinfo = timezone.utc,
        clock: Callable[[], datetime] = _now_utc,
    ) -> None:
        self._store = store
        self._assembler = assembler
        self._dispatcher = dispatcher
        self._zone = zone
        self._clock = clock

    def run(self, schedule: ScheduleRecord) -> tuple[RunLogRecord, InvoiceRecord | None]:
        run = self._store.open_run_log(schedule.schedule_id, started_at=self._clock())
        logger.info("schedule %s (%s) run %s started", schedule.schedule_id, schedule.name, run.run_id)

        invoice: InvoiceRecord | None = None
        error: str | None = None
        try:
            if not schedule.tenant_id:
                raise ScheduleNotRunnableError("schedule has no tenant")
            invoice = self._assembler.assemble(schedule.tenant_id)
            if invoice is not None:
                self._dispatcher.deliver(invoice, schedule.recipients)
        except Exception as exc:
            error = str(exc) or exc.__class__.__name__
            logger.exception("schedule %s run %s failed", schedule.schedule_id, run.run_id)

        completed_at = self._clock()
        next_run_at = compute_next_run_after(schedule.to_cadence(), completed_at, self._zone)
        completed = self._store.complete_run(
            run.run_id,
            completed_at=completed_at,
            invoice_id=invoice.invoice_id if invoice is not None else None,
            tasks_count=len(invoice.lines) if invoice is not None else 0,
            is_success=error is None,
            error=error,
            next_run_at=next_run_at,
        )
        logger.info(
            "schedule %s run %s finished success=%s invoice=%s next_run_at=%s",
            schedule.schedule_id,
            run.run_id,
            completed.is_success,
            invoice.number if invoice is not None else None,
            next_run_at.isoformat(),
        )
        return completed, invoice

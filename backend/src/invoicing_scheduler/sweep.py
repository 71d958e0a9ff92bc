from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Callable

from .models import InvoiceRecord, RunLogRecord, ScheduleRecord, SweepResult
from .repositories import ScheduleStore
from .runner import ScheduleRunner

logger = logging.getLogger(__name__)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class InvoiceSweepLoop:
    """Fixed-interval background driver that runs every due schedule.

    A sweep holds the loop's guard for its whole duration. Ticks and
    on-demand runs that find the guard held do nothing, so schedules never
    run twice concurrently inside one process.
    """

    def __init__(
        self,
        store: ScheduleStore,
        runner: ScheduleRunner,
        *,
        interval_seconds: float = 300.0,
        warmup_seconds: float = 30.0,
        clock: Callable[[], datetime] = _now_utc,
    ) -> None:
        self._store = store
        self._runner = runner
        self._interval_seconds = interval_seconds
        self._warmup_seconds = warmup_seconds
        self._clock = clock
        self._guard = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._last_sweep: SweepResult | None = None

    @property
    def interval_seconds(self) -> float:
        return self._interval_seconds

    @property
    def warmup_seconds(self) -> float:
        return self._warmup_seconds

    @property
    def started(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def sweep_active(self) -> bool:
        return self._guard.locked()

    @property
    def last_sweep(self) -> SweepResult | None:
        return self._last_sweep

    def start(self) -> None:
        if self.started:
            logger.warning("invoice sweep loop already started")
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, daemon=True, name="invoice-sweep")
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        """Signal the loop to stop; an in-flight sweep finishes first."""
        self._stop_event.set()
        thread = self._thread
        if thread is None:
            return
        thread.join(timeout=timeout)
        if thread.is_alive():
            logger.warning("invoice sweep loop did not stop within %.1fs", timeout)
        else:
            self._thread = None
            logger.info("invoice sweep loop stopped")

    def _loop(self) -> None:
        logger.info(
            "invoice sweep loop started (warmup=%.1fs interval=%.1fs)",
            self._warmup_seconds,
            self._interval_seconds,
        )
        if self._stop_event.wait(self._warmup_seconds):
            return
        while True:
            try:
                self.sweep_once()
            except Exception:
                logger.exception("invoice sweep failed")
            if self._stop_event.wait(self._interval_seconds):
                return

    def sweep_once(self) -> SweepResult:
        started_at = self._clock()
        if not self._guard.acquire(blocking=False):
            logger.info("invoice sweep skipped; previous sweep still running")
            return SweepResult(started_at=started_at, finished_at=started_at, skipped=True)

        try:
            due = self._store.list_due_schedules(started_at)
            processed = 0
            failed = 0
            for schedule in due:
                try:
                    run, _ = self._runner.run(schedule)
                except Exception:
                    failed += 1
                    logger.exception("schedule %s could not be executed", schedule.schedule_id)
                    continue
                if run.is_success:
                    processed += 1
                else:
                    failed += 1

            result = SweepResult(
                started_at=started_at,
                finished_at=self._clock(),
                due_count=len(due),
                processed_count=processed,
                failed_count=failed,
            )
            self._last_sweep = result
            if due:
                logger.info("invoice sweep ran %d schedules (%d failed)", len(due), failed)
            return result
        finally:
            self._guard.release()

    def run_exclusive(self, schedule: ScheduleRecord) -> tuple[RunLogRecord, InvoiceRecord | None] | None:
        """Run one schedule under the sweep guard; ``None`` when a sweep holds it."""
        if not self._guard.acquire(blocking=False):
            return None
        try:
            return self._runner.run(schedule)
        finally:
            self._guard.release()

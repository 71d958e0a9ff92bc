from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable

from .assembler import InvoiceAssembler
from .config import Settings
from .delivery import DeliveryDispatcher, InvoiceRenderer
from .mailer import Mailer
from .repositories import ScheduleStore
from .runner import ScheduleRunner
from .schedules import ScheduleService
from .sweep import InvoiceSweepLoop


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def build_runtime(
    settings: Settings,
    store: ScheduleStore,
    mailer: Mailer,
    *,
    renderer: InvoiceRenderer | None = None,
    clock: Callable[[], datetime] = _now_utc,
) -> tuple[InvoiceSweepLoop, ScheduleService]:
    """Wire assembler, dispatcher, runner, sweep loop and control service."""
    zone = settings.resolve_timezone()
    assembler = InvoiceAssembler(store, zone=zone, clock=clock)
    dispatcher = DeliveryDispatcher(store, mailer, renderer=renderer, attach_pdf=settings.attach_pdf, clock=clock)
    runner = ScheduleRunner(store, assembler, dispatcher, zone=zone, clock=clock)
    loop = InvoiceSweepLoop(
        store,
        runner,
        interval_seconds=settings.sweep_interval_seconds,
        warmup_seconds=settings.sweep_warmup_seconds,
        clock=clock,
    )
    service = ScheduleService(
        store,
        loop,
        assembler,
        dispatcher,
        zone=zone,
        default_hour_of_day=settings.default_hour_of_day,
        run_history_limit_max=settings.run_history_limit_max,
        clock=clock,
    )
    return loop, service

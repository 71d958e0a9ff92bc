from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable

from fastapi import APIRouter, HTTPException, Query, Response, status

from .config import get_settings
from .delivery import InvoiceRenderer
from .mailer import Mailer, create_mailer
from .models import (
    GradeUpsertRequest,
    InvoiceDetailResponse,
    InvoiceGenerateRequest,
    InvoiceGenerateResponse,
    InvoiceRecord,
    PerformerUpsertRequest,
    RecentRunsResponse,
    RunHistoryResponse,
    RunSummary,
    ScheduleDetailResponse,
    ScheduleRecord,
    SchedulerStatusResponse,
    ScheduleUpsertRequest,
    SweepResult,
    TenantUpsertRequest,
    UpsertResponse,
    WorkRecordUpsertRequest,
)
from .pdf_renderer import render_invoice_pdf
from .repositories import InvoiceNotFoundError, ScheduleNotFoundError, ScheduleStore
from .runtime import build_runtime
from .schedules import DEFAULT_RECENT_RUNS, ScheduleInactiveError
from .store_backends import create_schedule_store

_settings = get_settings()
router = APIRouter(prefix=f"{_settings.api_prefix}/invoicing", tags=["invoicing"])
schedule_store: ScheduleStore = create_schedule_store(
    backend=_settings.store_backend,
    database_url=_settings.database_url,
)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


mailer: Mailer = create_mailer(_settings)
sweep_loop, schedule_service = build_runtime(_settings, schedule_store, mailer)


def reset_runtime_state_for_tests(
    *,
    mailer_override: Mailer | None = None,
    renderer: InvoiceRenderer | None = None,
    clock: Callable[[], datetime] | None = None,
) -> None:
    global mailer, sweep_loop, schedule_service
    sweep_loop.stop()
    schedule_store.reset()
    mailer = mailer_override or create_mailer(_settings)
    sweep_loop, schedule_service = build_runtime(
        _settings,
        schedule_store,
        mailer,
        renderer=renderer,
        clock=clock or _now_utc,
    )


# ---------------------------------------------------------------------------
# Schedules
# ---------------------------------------------------------------------------


@router.post("/schedules", response_model=ScheduleRecord, status_code=status.HTTP_201_CREATED)
def create_schedule(payload: ScheduleUpsertRequest) -> ScheduleRecord:
    return schedule_service.create_schedule(payload)


@router.get("/schedules", response_model=list[ScheduleRecord])
def list_schedules() -> list[ScheduleRecord]:
    return schedule_service.list_schedules()


@router.get("/schedules/runs/recent", response_model=RecentRunsResponse)
def list_recent_runs(limit: int = Query(default=DEFAULT_RECENT_RUNS, ge=1)) -> RecentRunsResponse:
    return RecentRunsResponse(runs=schedule_service.recent_runs(limit))


@router.get("/schedules/{schedule_id}", response_model=ScheduleDetailResponse)
def get_schedule(schedule_id: int) -> ScheduleDetailResponse:
    try:
        return schedule_service.get_schedule(schedule_id)
    except ScheduleNotFoundError as exc:
        raise HTTPException(status_code=404, detail=f"schedule not found: {schedule_id}") from exc


@router.put("/schedules/{schedule_id}", response_model=ScheduleRecord)
def update_schedule(schedule_id: int, payload: ScheduleUpsertRequest) -> ScheduleRecord:
    try:
        return schedule_service.update_schedule(schedule_id, payload)
    except ScheduleNotFoundError as exc:
        raise HTTPException(status_code=404, detail=f"schedule not found: {schedule_id}") from exc


@router.delete("/schedules/{schedule_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_schedule(schedule_id: int) -> Response:
    try:
        schedule_service.delete_schedule(schedule_id)
    except ScheduleNotFoundError as exc:
        raise HTTPException(status_code=404, detail=f"schedule not found: {schedule_id}") from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/schedules/{schedule_id}/toggle", response_model=ScheduleRecord)
def toggle_schedule(schedule_id: int) -> ScheduleRecord:
    try:
        return schedule_service.toggle_active(schedule_id)
    except ScheduleNotFoundError as exc:
        raise HTTPException(status_code=404, detail=f"schedule not found: {schedule_id}") from exc


@router.post("/schedules/{schedule_id}/run", response_model=RunSummary)
def force_run_schedule(schedule_id: int) -> RunSummary:
    try:
        return schedule_service.force_run(schedule_id)
    except ScheduleNotFoundError as exc:
        raise HTTPException(status_code=404, detail=f"schedule not found: {schedule_id}") from exc
    except ScheduleInactiveError as exc:
        raise HTTPException(status_code=409, detail=f"schedule is not active: {schedule_id}") from exc


@router.get("/schedules/{schedule_id}/runs", response_model=RunHistoryResponse)
def get_run_history(schedule_id: int, limit: int = Query(default=20, ge=1)) -> RunHistoryResponse:
    try:
        runs = schedule_service.run_history(schedule_id, limit)
    except ScheduleNotFoundError as exc:
        raise HTTPException(status_code=404, detail=f"schedule not found: {schedule_id}") from exc
    return RunHistoryResponse(schedule_id=schedule_id, runs=runs)


# ---------------------------------------------------------------------------
# Sweep loop
# ---------------------------------------------------------------------------


@router.get("/scheduler/status", response_model=SchedulerStatusResponse)
def get_scheduler_status() -> SchedulerStatusResponse:
    return SchedulerStatusResponse(
        enabled=_settings.scheduler_enabled,
        started=sweep_loop.started,
        sweep_active=sweep_loop.sweep_active,
        interval_seconds=sweep_loop.interval_seconds,
        warmup_seconds=sweep_loop.warmup_seconds,
        timezone=str(_settings.resolve_timezone()),
        last_sweep=sweep_loop.last_sweep,
    )


@router.post("/scheduler/sweep", response_model=SweepResult)
def run_sweep() -> SweepResult:
    return sweep_loop.sweep_once()


# ---------------------------------------------------------------------------
# Reference data
# ---------------------------------------------------------------------------


@router.post("/tenants/upsert", response_model=UpsertResponse)
def upsert_tenants(payload: TenantUpsertRequest) -> UpsertResponse:
    return UpsertResponse(processed_count=schedule_store.upsert_tenants(payload.tenants))


@router.post("/grades/upsert", response_model=UpsertResponse)
def upsert_grades(payload: GradeUpsertRequest) -> UpsertResponse:
    return UpsertResponse(processed_count=schedule_store.upsert_grades(payload.grades))


@router.post("/performers/upsert", response_model=UpsertResponse)
def upsert_performers(payload: PerformerUpsertRequest) -> UpsertResponse:
    return UpsertResponse(processed_count=schedule_store.upsert_performers(payload.performers))


@router.post("/work-records/upsert", response_model=UpsertResponse)
def upsert_work_records(payload: WorkRecordUpsertRequest) -> UpsertResponse:
    return UpsertResponse(processed_count=schedule_store.upsert_work_records(payload.work_records))


# ---------------------------------------------------------------------------
# Invoices
# ---------------------------------------------------------------------------


@router.post("/tenants/{tenant_id}/invoices/generate", response_model=InvoiceGenerateResponse)
def generate_invoice(tenant_id: str, payload: InvoiceGenerateRequest | None = None) -> InvoiceGenerateResponse:
    recipients = payload.recipients if payload is not None else ""
    return schedule_service.generate_invoice(tenant_id, recipients)


@router.get("/tenants/{tenant_id}/invoices", response_model=list[InvoiceRecord])
def list_tenant_invoices(tenant_id: str) -> list[InvoiceRecord]:
    return schedule_store.list_invoices(tenant_id)


@router.get("/invoices/{invoice_id}", response_model=InvoiceDetailResponse)
def get_invoice(invoice_id: int) -> InvoiceDetailResponse:
    invoice = schedule_store.get_invoice(invoice_id)
    if invoice is None:
        raise HTTPException(status_code=404, detail=f"invoice not found: {invoice_id}")
    try:
        deliveries = schedule_store.list_delivery_logs(invoice_id)
    except InvoiceNotFoundError as exc:
        raise HTTPException(status_code=404, detail=f"invoice not found: {invoice_id}") from exc
    return InvoiceDetailResponse(invoice=invoice, deliveries=deliveries)


@router.get("/invoices/{invoice_id}/pdf")
def get_invoice_pdf(invoice_id: int) -> Response:
    invoice = schedule_store.get_invoice(invoice_id)
    if invoice is None:
        raise HTTPException(status_code=404, detail=f"invoice not found: {invoice_id}")
    pdf_content = render_invoice_pdf(invoice)
    headers = {"Content-Disposition": f'inline; filename="{invoice.number}.pdf"'}
    return Response(content=pdf_content, media_type="application/pdf", headers=headers)

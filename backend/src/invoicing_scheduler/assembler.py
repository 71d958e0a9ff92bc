from __future__ import annotations

import logging
from datetime import datetime, timezone, tzinfo
from typing import Callable

from .models import InvoiceDraft, InvoiceLineDraft, InvoiceRecord, WorkRecord, compute_line_amount
from .repositories import ScheduleStore

logger = logging.getLogger(__name__)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class InvoiceAssembler:
    """Turns a tenant's completed work into a committed invoice."""

    def __init__(
        self,
        store: ScheduleStore,
        *,
        zone: tzinfo = timezone.utc,
        clock: Callable[[], datetime] = _now_utc,
    ) -> None:
        self._store = store
        self._zone = zone
        self._clock = clock

    def assemble(self, tenant_id: str) -> InvoiceRecord | None:
        """Build and commit an invoice for every eligible work record of the tenant.

        Returns ``None`` when the tenant has no completed work with positive
        hours, or when every drafted record was claimed by a concurrent run
        before the commit.
        """
        work = self._store.list_completed_work(tenant_id)
        if not work:
            logger.info("no completed work for tenant %s", tenant_id)
            return None

        draft = self._build_draft(tenant_id, work)
        invoice = self._store.commit_invoice(draft)
        if invoice is None:
            logger.info("completed work for tenant %s was claimed before commit", tenant_id)
            return None

        logger.info(
            "invoice %s committed for tenant %s with %d lines totalling %.2f",
            invoice.number,
            tenant_id,
            len(invoice.lines),
            invoice.total,
        )
        return invoice

    def _build_draft(self, tenant_id: str, work: list[WorkRecord]) -> InvoiceDraft:
        issued_at = self._clock()
        tenant = self._store.get_tenant(tenant_id)
        local_day = issued_at.astimezone(self._zone).date()
        return InvoiceDraft(
            tenant_id=tenant_id,
            issued_at=issued_at,
            description=f"Automatic invoice for work completed through {local_day.isoformat()}",
            customer_name=tenant.name if tenant is not None else None,
            project_id=work[0].project_id,
            lines=[self._build_line(record) for record in work],
        )

    def _build_line(self, record: WorkRecord) -> InvoiceLineDraft:
        performer = self._store.get_performer(record.performer_id) if record.performer_id else None
        grade = self._store.get_grade(performer.grade_id) if performer is not None and performer.grade_id else None
        hourly_rate = grade.hourly_rate if grade is not None else 0.0
        return InvoiceLineDraft(
            work_record_id=record.work_record_id,
            title=record.title,
            performer_name=performer.name if performer is not None else None,
            grade_name=grade.name if grade is not None else None,
            hourly_rate=hourly_rate,
            hours=record.hours,
            amount=float(compute_line_amount(hourly_rate, record.hours)),
        )

from __future__ import annotations

import html
import logging
from collections import OrderedDict
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Protocol

from .mailer import MailAttachment, MailDeliveryError, Mailer, OutgoingEmail, mask_email
from .models import CENTS, DeliveryLogRecord, InvoiceRecord
from .pdf_renderer import render_invoice_pdf
from .recipients import parse_recipients
from .repositories import ScheduleStore

logger = logging.getLogger(__name__)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def invoice_subject(invoice: InvoiceRecord) -> str:
    return f"Invoice {invoice.number}"


def fallback_body(invoice: InvoiceRecord) -> str:
    return (
        f"<div><h2>Invoice {html.escape(invoice.number)}</h2>"
        f"<p>Total amount: {invoice.total:,.2f}</p></div>"
    )


class InvoiceRenderer(Protocol):
    def render(self, invoice: InvoiceRecord) -> str: ...


class HtmlInvoiceRenderer:
    """Renders an HTML summary with one row per performer and the grand total."""

    def render(self, invoice: InvoiceRecord) -> str:
        totals: OrderedDict[str, tuple[Decimal, Decimal]] = OrderedDict()
        for line in invoice.lines:
            performer = line.performer_name or "Unassigned"
            hours, amount = totals.get(performer, (Decimal("0"), Decimal("0")))
            totals[performer] = (hours + Decimal(str(line.hours)), amount + Decimal(str(line.amount)))

        rows = "".join(
            "<tr>"
            f"<td>{html.escape(performer)}</td>"
            f"<td style='text-align:right'>{hours.normalize():f}</td>"
            f"<td style='text-align:right'>{amount.quantize(CENTS):,.2f}</td>"
            "</tr>"
            for performer, (hours, amount) in totals.items()
        )
        customer = html.escape(invoice.customer_name or invoice.tenant_id)
        description = f"<p>{html.escape(invoice.description)}</p>" if invoice.description else ""
        return (
            "<div>"
            f"<h2>Invoice {html.escape(invoice.number)}</h2>"
            f"<p>Bill to: {customer}</p>"
            f"{description}"
            "<table border='1' cellpadding='4' cellspacing='0'>"
            "<thead><tr><th>Performer</th><th>Hours</th><th>Amount</th></tr></thead>"
            f"<tbody>{rows}</tbody>"
            f"<tfoot><tr><th colspan='2'>Total</th><th style='text-align:right'>{invoice.total:,.2f}</th></tr></tfoot>"
            "</table>"
            "</div>"
        )


class DeliveryDispatcher:
    def __init__(
        self,
        store: ScheduleStore,
        mailer: Mailer,
        *,
        renderer: InvoiceRenderer | None = None,
        attach_pdf: bool = False,
        clock: Callable[[], datetime] = _now_utc,
    ) -> None:
        self._store = store
        self._mailer = mailer
        self._renderer = renderer or HtmlInvoiceRenderer()
        self._attach_pdf = attach_pdf
        self._clock = clock

    def deliver(self, invoice: InvoiceRecord, recipients: str | None) -> list[DeliveryLogRecord]:
        """Send the invoice to every parsed recipient and record one log row each.

        Transport failures are captured on the log row and never interrupt the
        remaining recipients. A log row that cannot be written is logged and
        left out of the returned list.
        """
        addresses = parse_recipients(recipients)
        if not addresses:
            logger.info("invoice %s has no recipients; skipping delivery", invoice.number)
            return []

        subject = invoice_subject(invoice)
        body = self._render_body(invoice)
        attachments = self._build_attachments(invoice)

        logs: list[DeliveryLogRecord] = []
        for address in addresses:
            error: str | None = None
            try:
                self._mailer.send(
                    OutgoingEmail(recipient=address, subject=subject, html_body=body, attachments=attachments)
                )
            except MailDeliveryError as exc:
                error = exc.message
                logger.warning(
                    "delivery of invoice %s to %s failed: %s (%s)",
                    invoice.number,
                    mask_email(address),
                    exc.message,
                    exc.error_code,
                )
            except Exception as exc:
                error = str(exc) or exc.__class__.__name__
                logger.exception("delivery of invoice %s to %s raised", invoice.number, mask_email(address))

            try:
                logs.append(
                    self._store.add_delivery_log(
                        invoice.invoice_id,
                        recipient=address,
                        subject=subject,
                        body=body,
                        is_success=error is None,
                        error=error,
                        sent_at=self._clock(),
                    )
                )
            except Exception:
                logger.exception(
                    "delivery log for invoice %s to %s could not be written (success=%s)",
                    invoice.number,
                    mask_email(address),
                    error is None,
                )
        return logs

    def _render_body(self, invoice: InvoiceRecord) -> str:
        try:
            return self._renderer.render(invoice)
        except Exception:
            logger.exception("rendering invoice %s failed; using fallback body", invoice.number)
            return fallback_body(invoice)

    def _build_attachments(self, invoice: InvoiceRecord) -> tuple[MailAttachment, ...]:
        if not self._attach_pdf:
            return ()
        try:
            content = render_invoice_pdf(invoice)
        except Exception:
            logger.exception("pdf rendering for invoice %s failed; sending without attachment", invoice.number)
            return ()
        return (MailAttachment(filename=f"invoice-{invoice.number}.pdf", content=content),)

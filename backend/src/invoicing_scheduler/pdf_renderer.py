from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from io import BytesIO
from datetime import datetime

from reportlab.lib import colors
from reportlab.lib.enums import TA_RIGHT
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from .models import CENTS, InvoiceRecord

_INK = colors.HexColor("#111827")
_RULE = colors.HexColor("#d1d5db")


def _format_timestamp(value: datetime) -> str:
    return value.strftime("%Y-%m-%d %H:%M UTC")


def _format_money(value: float | Decimal) -> str:
    amount = Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)
    return f"{amount:,.2f}"


def _format_hours(value: float) -> str:
    normalized = format(Decimal(str(value)).normalize(), "f")
    if "." in normalized:
        normalized = normalized.rstrip("0").rstrip(".")
    return normalized


def render_invoice_pdf(invoice: InvoiceRecord) -> bytes:
    buffer = BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=A4,
        leftMargin=0.75 * inch,
        rightMargin=0.75 * inch,
        topMargin=0.75 * inch,
        bottomMargin=0.75 * inch,
        title=f"Invoice {invoice.number}",
        author="Invoice Scheduler",
    )

    styles = getSampleStyleSheet()
    title_style = ParagraphStyle(
        "invoice_title",
        parent=styles["Heading1"],
        fontName="Helvetica-Bold",
        fontSize=20,
        leading=24,
        textColor=_INK,
    )
    heading_style = ParagraphStyle(
        "invoice_heading",
        parent=styles["Heading3"],
        fontName="Helvetica-Bold",
        fontSize=11,
        leading=14,
        textColor=_INK,
        spaceAfter=3,
    )
    body_style = ParagraphStyle(
        "invoice_body",
        parent=styles["BodyText"],
        fontName="Helvetica",
        fontSize=10,
        leading=14,
        textColor=_INK,
    )
    cell_style = ParagraphStyle("invoice_cell", parent=body_style, fontSize=8.5, leading=10)
    header_cell_style = ParagraphStyle("invoice_header_cell", parent=cell_style, fontName="Helvetica-Bold")
    numeric_style = ParagraphStyle("invoice_numeric", parent=cell_style, alignment=TA_RIGHT)

    story: list = []
    story.append(Paragraph(f"INVOICE {invoice.number}", title_style))
    story.append(Spacer(1, 0.12 * inch))

    summary = Table(
        [
            ["Issued:", _format_timestamp(invoice.issued_at)],
            ["Status:", invoice.status.title()],
            ["Project:", invoice.project_id or "-"],
        ],
        colWidths=[1.2 * inch, 5.3 * inch],
        hAlign="LEFT",
    )
    summary.setStyle(
        TableStyle(
            [
                ("FONTNAME", (0, 0), (0, -1), "Helvetica-Bold"),
                ("FONTNAME", (1, 0), (1, -1), "Helvetica"),
                ("FONTSIZE", (0, 0), (-1, -1), 10),
                ("TEXTCOLOR", (0, 0), (-1, -1), _INK),
                ("LEFTPADDING", (0, 0), (-1, -1), 2),
                ("TOPPADDING", (0, 0), (-1, -1), 2),
                ("BOTTOMPADDING", (0, 0), (-1, -1), 2),
            ]
        )
    )
    story.append(summary)
    story.append(Spacer(1, 0.14 * inch))

    story.append(Paragraph("Bill To:", heading_style))
    story.append(Paragraph(invoice.customer_name or invoice.tenant_id, body_style))
    if invoice.description:
        story.append(Spacer(1, 0.1 * inch))
        story.append(Paragraph(invoice.description, body_style))
    story.append(Spacer(1, 0.14 * inch))

    rows: list[list[object]] = [
        [
            Paragraph("Work Item", header_cell_style),
            Paragraph("Performer", header_cell_style),
            Paragraph("Grade", header_cell_style),
            Paragraph("Rate", header_cell_style),
            Paragraph("Hours", header_cell_style),
            Paragraph("Amount", header_cell_style),
        ]
    ]
    for line in invoice.lines:
        rows.append(
            [
                Paragraph(line.title, cell_style),
                Paragraph(line.performer_name or "-", cell_style),
                Paragraph(line.grade_name or "-", cell_style),
                Paragraph(_format_money(line.hourly_rate), numeric_style),
                Paragraph(_format_hours(line.hours), numeric_style),
                Paragraph(_format_money(line.amount), numeric_style),
            ]
        )
    rows.append(["", "", "", "", Paragraph("Total", header_cell_style), Paragraph(_format_money(invoice.total), numeric_style)])

    lines_table = Table(
        rows,
        colWidths=[2.0 * inch, 1.3 * inch, 1.0 * inch, 0.8 * inch, 0.6 * inch, 1.0 * inch],
        repeatRows=1,
        hAlign="LEFT",
    )
    lines_table.setStyle(
        TableStyle(
            [
                ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#f3f4f6")),
                ("GRID", (0, 0), (-1, -2), 0.6, _RULE),
                ("LINEABOVE", (4, -1), (-1, -1), 1, colors.HexColor("#6b7280")),
                ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
                ("ROWBACKGROUNDS", (0, 1), (-1, -2), [colors.white, colors.HexColor("#fafafa")]),
                ("LEFTPADDING", (0, 0), (-1, -1), 4),
                ("RIGHTPADDING", (0, 0), (-1, -1), 4),
                ("TOPPADDING", (0, 0), (-1, -1), 5),
                ("BOTTOMPADDING", (0, 0), (-1, -1), 5),
            ]
        )
    )
    story.append(lines_table)

    doc.build(story)
    return buffer.getvalue()

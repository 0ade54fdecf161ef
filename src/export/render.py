"""
Claim export documents (xlsx via openpyxl, pdf via reportlab).
"""

import io
import logging
from datetime import datetime
from typing import List, Optional, Sequence
from xml.sax.saxutils import escape
from zoneinfo import ZoneInfo

from openpyxl import Workbook
from openpyxl.styles import Font
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4, landscape
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from ..storage.claim_store import StoredClaim
from .params import ExportFormat, ExportRequest

logger = logging.getLogger(__name__)

HEADERS = [
    "ID",
    "User",
    "Title",
    "Claim Type",
    "Status",
    "Amount (minor units)",
    "Created At",
    "Updated At",
    "Admin Comment",
]


def format_local(value: Optional[datetime], zone: ZoneInfo) -> str:
    """UTC instant -> 'YYYY-MM-DD HH:MM:SS' on the local calendar."""
    if value is None:
        return ""
    return value.astimezone(zone).strftime("%Y-%m-%d %H:%M:%S")


def export_row(claim: StoredClaim, zone: ZoneInfo) -> List[object]:
    return [
        claim.id,
        claim.owner_email or claim.owner_name or claim.owner_id,
        claim.title,
        claim.claim_type.value,
        claim.status.value,
        claim.amount_minor_units,
        format_local(claim.created_at, zone),
        format_local(claim.updated_at, zone),
        claim.admin_comment or "",
    ]


def render_xlsx(claims: Sequence[StoredClaim], zone: ZoneInfo) -> bytes:
    workbook = Workbook()
    sheet = workbook.active
    sheet.title = "Claims"

    sheet.append(HEADERS)
    for cell in sheet[1]:
        cell.font = Font(bold=True)
    for claim in claims:
        sheet.append(export_row(claim, zone))

    for column, width in zip("ABCDEFGHI", (8, 28, 36, 18, 12, 20, 20, 20, 40)):
        sheet.column_dimensions[column].width = width
    sheet.freeze_panes = "A2"

    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def render_pdf(claims: Sequence[StoredClaim], zone: ZoneInfo, title: str = "Claims") -> bytes:
    buffer = io.BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=landscape(A4),
        leftMargin=0.4 * inch,
        rightMargin=0.4 * inch,
        topMargin=0.5 * inch,
        bottomMargin=0.5 * inch,
        title=title,
    )
    styles = getSampleStyleSheet()
    cell_style = styles["BodyText"].clone("ExportCell", fontSize=7, leading=9)

    story = [Paragraph(escape(title), styles["Heading2"]), Spacer(1, 0.15 * inch)]

    data = [HEADERS]
    for claim in claims:
        row = export_row(claim, zone)
        # Free-text columns wrap inside their cell
        row[1] = Paragraph(escape(str(row[1])), cell_style)
        row[2] = Paragraph(escape(row[2]), cell_style)
        row[8] = Paragraph(escape(row[8]), cell_style)
        data.append(row)

    table = Table(
        data,
        colWidths=[0.5 * inch, 1.6 * inch, 2.0 * inch, 1.1 * inch, 0.8 * inch,
                   0.9 * inch, 1.2 * inch, 1.2 * inch, 1.7 * inch],
        repeatRows=1,
    )
    table.setStyle(TableStyle([
        ('BACKGROUND', (0, 0), (-1, 0), colors.lightgrey),
        ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
        ('FONTSIZE', (0, 0), (-1, -1), 7),
        ('GRID', (0, 0), (-1, -1), 0.5, colors.grey),
        ('VALIGN', (0, 0), (-1, -1), 'TOP'),
        ('ALIGN', (5, 1), (5, -1), 'RIGHT'),
    ]))
    story.append(table)

    doc.build(story)
    return buffer.getvalue()


def render_export(request: ExportRequest, claims: Sequence[StoredClaim], zone: ZoneInfo) -> bytes:
    """Render claims in the requested format."""
    logger.info(f"Rendering {len(claims)} claim(s) as {request.format.value}")
    if request.format is ExportFormat.PDF:
        title = f"Claims {request.date_from.isoformat()} to {request.date_to.isoformat()}"
        if request.status:
            title += f" ({request.status})"
        return render_pdf(claims, zone, title=title)
    return render_xlsx(claims, zone)

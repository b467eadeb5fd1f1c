"""
Worklog PDF rendering using reportlab.

Renders the time report rows of one invoice into a printable work report:
header (customer, invoice number, period), one table row per time record
with its material items listed underneath, and a total hours footer.
Labels are available in Swedish and English.
"""
import hashlib
import io
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

_LABELS = {
    "sv": {
        "title": "Arbetsrapport",
        "customer": "Kund",
        "invoice": "Faktura",
        "pending": "ej fakturerad",
        "period": "Period",
        "date": "Datum",
        "user": "Utförd av",
        "description": "Beskrivning",
        "hours": "Timmar",
        "total": "Totalt",
        "items": "Material",
        "empty": "Inga tidrapporter",
    },
    "en": {
        "title": "Work report",
        "customer": "Customer",
        "invoice": "Invoice",
        "pending": "not invoiced",
        "period": "Period",
        "date": "Date",
        "user": "Performed by",
        "description": "Description",
        "hours": "Hours",
        "total": "Total",
        "items": "Materials",
        "empty": "No time reports",
    },
}


@dataclass(frozen=True)
class RenderedDocument:
    content: bytes
    content_hash: str

    @property
    def size_bytes(self) -> int:
        return len(self.content)


def _hours(value) -> Decimal:
    try:
        return Decimal(str(value or 0))
    except (InvalidOperation, ValueError):
        return Decimal("0")


def _text(value) -> str:
    return escape(str(value)) if value not in (None, "") else ""


def _row_description(row: dict, labels: dict, small: ParagraphStyle) -> list:
    parts = []
    label = row.get("workLabel") or row.get("category")
    if label:
        parts.append(f"<b>{_text(label)}</b>")
    project = row.get("project")
    if isinstance(project, dict) and project.get("name"):
        parts.append(_text(project["name"]))
    if row.get("note"):
        parts.append(_text(row["note"]))
    cells = [Paragraph(" · ".join(parts) or "&nbsp;", small)]

    items = row.get("items") or []
    if items:
        lines = []
        for item in items:
            name = (item.get("articleName") or item.get("articleNumber")
                    or item.get("description") or "")
            lines.append(f"{_text(item.get('quantity', 0))} × {_text(name)}")
        cells.append(Paragraph(f"<i>{labels['items']}:</i> " + "; ".join(lines), small))
    return cells


def render(rows, period=None, language: str = "sv", *,
           document_number: str | None = None, customer_name: str = "") -> RenderedDocument:
    """Render a worklog PDF and return its bytes with a sha256 content hash."""
    labels = _LABELS.get(language, _LABELS["sv"])
    period = period or {}

    buffer = io.BytesIO()
    # invariant output keeps the content hash stable across re-renders
    doc = SimpleDocTemplate(buffer, pagesize=A4, topMargin=15 * mm, bottomMargin=15 * mm,
                            invariant=True,
                            title=f"{labels['title']} {document_number or ''}".strip())
    styles = getSampleStyleSheet()
    title_style = ParagraphStyle("Title", parent=styles["Heading1"], fontSize=20,
                                 textColor=colors.HexColor("#0f172a"))
    header_style = ParagraphStyle("Header", parent=styles["Normal"], fontSize=10,
                                  textColor=colors.HexColor("#475569"))
    small = ParagraphStyle("Small", parent=styles["Normal"], fontSize=9, leading=11)

    elements = [
        Paragraph(labels["title"], title_style),
        Spacer(1, 4),
        Paragraph(f"<b>{labels['customer']}:</b> {_text(customer_name)}", header_style),
        Paragraph(f"<b>{labels['invoice']}:</b> {_text(document_number) or labels['pending']}",
                  header_style),
    ]
    if period.get("from") or period.get("to"):
        elements.append(Paragraph(
            f"<b>{labels['period']}:</b> {_text(period.get('from'))} – {_text(period.get('to'))}",
            header_style,
        ))
    elements.append(Spacer(1, 12))

    data = [[labels["date"], labels["user"], labels["description"], labels["hours"]]]
    total = Decimal("0")
    for row in sorted(rows or [], key=lambda r: (str(r.get("date") or ""), r.get("id") or 0)):
        hours = _hours(row.get("hours"))
        total += hours
        data.append([
            _text(row.get("date")),
            Paragraph(_text(row.get("userName")), small),
            _row_description(row, labels, small),
            f"{hours:.2f}",
        ])
    if len(data) == 1:
        data.append(["", "", labels["empty"], ""])
    data.append(["", "", labels["total"], f"{total:.2f}"])

    table = Table(data, colWidths=[24 * mm, 34 * mm, 98 * mm, 20 * mm], repeatRows=1)
    table.setStyle(TableStyle([
        ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
        ("FONTSIZE", (0, 0), (-1, -1), 9),
        ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#e2e8f0")),
        ("VALIGN", (0, 0), (-1, -1), "TOP"),
        ("ALIGN", (-1, 0), (-1, -1), "RIGHT"),
        ("LINEBELOW", (0, 0), (-1, -2), 0.25, colors.HexColor("#cbd5e1")),
        ("FONTNAME", (0, -1), (-1, -1), "Helvetica-Bold"),
        ("LINEABOVE", (0, -1), (-1, -1), 1, colors.HexColor("#0f172a")),
    ]))
    elements.append(table)

    doc.build(elements)
    content = buffer.getvalue()
    return RenderedDocument(content=content, content_hash=hashlib.sha256(content).hexdigest())

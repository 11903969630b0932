from __future__ import annotations

import csv
import io
import logging
import os
from typing import List, NamedTuple, Optional, Sequence, Tuple
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.ttfonts import TTFont
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from calculator import LineItem, describe_result, format_number

logger = logging.getLogger(__name__)

DEFAULT_FONT = "Helvetica"
EMBEDDED_FONT = "SheetFont"
COLUMNS: tuple[str, ...] = ("#", "Item", "Values", "Qty", "Unit result", "Total")


class ExportResult(NamedTuple):
    content: bytes
    mimetype: str
    filename: str
    warnings: Tuple[str, ...] = ()


def line_item_cells(item: LineItem) -> List[str]:
    if item.is_grand_total:
        return ["", item.template_name, "", "", "", format_number(item.total)]
    return [
        str(item.index),
        item.template_name,
        item.bound_variables,
        format_number(item.quantity or 0.0),
        describe_result(item.unit_result),
        format_number(item.total),
    ]


def register_font(font_path: Optional[str]) -> Tuple[str, Optional[str]]:
    """Embed the optional TTF font. Falls back to Helvetica with a warning."""
    if not font_path:
        return DEFAULT_FONT, None
    if not os.path.exists(font_path):
        warning = f"Font {font_path} not found; using {DEFAULT_FONT}"
        logger.warning(warning)
        return DEFAULT_FONT, warning
    try:
        pdfmetrics.registerFont(TTFont(EMBEDDED_FONT, font_path))
    except Exception as exc:
        warning = f"Font {font_path} could not be loaded ({exc}); using {DEFAULT_FONT}"
        logger.warning(warning)
        return DEFAULT_FONT, warning
    return EMBEDDED_FONT, None


def _styles(base_font: str) -> dict:
    s = getSampleStyleSheet()
    return {
        "title": ParagraphStyle(name="SheetTitle", parent=s["Title"], fontName=base_font, fontSize=18, leading=22),
        "body": ParagraphStyle(name="SheetBody", parent=s["Normal"], fontName=base_font, fontSize=9, leading=11),
    }


def render_pdf(
    items: Sequence[LineItem],
    title: str = "Calculation Sheet",
    font_path: Optional[str] = None,
) -> ExportResult:
    base_font, warning = register_font(font_path)
    styles = _styles(base_font)

    rows = [list(COLUMNS)]
    for item in items:
        cells = line_item_cells(item)
        cells[1] = Paragraph(escape(cells[1]), styles["body"])
        cells[2] = Paragraph(escape(cells[2]), styles["body"])
        rows.append(cells)

    table = Table(rows, colWidths=[10 * mm, 45 * mm, 60 * mm, 18 * mm, 24 * mm, 24 * mm], repeatRows=1)
    table.setStyle(TableStyle([
        ("FONTNAME", (0, 0), (-1, -1), base_font),
        ("FONTSIZE", (0, 0), (-1, -1), 9),
        ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#f3f4f6")),
        ("LINEBELOW", (0, 0), (-1, -1), 0.25, colors.HexColor("#e5e7eb")),
        ("ALIGN", (3, 1), (-1, -1), "RIGHT"),
        ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
        ("LINEABOVE", (0, -1), (-1, -1), 0.75, colors.black),
    ]))

    buf = io.BytesIO()
    doc = SimpleDocTemplate(
        buf, pagesize=A4,
        leftMargin=15 * mm, rightMargin=15 * mm, topMargin=15 * mm, bottomMargin=15 * mm,
        title=title,
    )
    doc.build([Paragraph(escape(title), styles["title"]), Spacer(1, 6 * mm), table])
    warnings = (warning,) if warning else ()
    return ExportResult(buf.getvalue(), "application/pdf", "calculation.pdf", warnings)


def render_csv(items: Sequence[LineItem]) -> ExportResult:
    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow(COLUMNS)
    for item in items:
        writer.writerow(line_item_cells(item))
    return ExportResult(buf.getvalue().encode("utf-8-sig"), "text/csv", "calculation.csv")

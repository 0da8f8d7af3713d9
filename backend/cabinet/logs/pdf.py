"""
Daily activity journal (DLOG) rendering.

Builds a multi-page A4 report for one calendar day: a summary of actions
per type followed by one block per log entry. Page footers read
"Page i sur N - DLOG <date>", which needs the total page count, so the
canvas buffers every page and draws footers on save.
"""

import io
import json
from datetime import date, datetime
from functools import partial
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import cm
from reportlab.pdfgen import canvas
from reportlab.platypus import KeepTogether, Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from cabinet.common.base_models import as_utc, load_json, utcnow
from cabinet.logs.models import ActivityLog
from cabinet.logs.service import count_by_action

TITLE = "DLOG - Journal des Activités"
EMPTY_DAY_TEXT = "Aucune action enregistrée pour cette date."

COLOR_PRIMARY = colors.HexColor("#1e3a8a")
COLOR_GRAY = colors.HexColor("#6b7280")
COLOR_ROW_ALT = colors.HexColor("#f3f4f6")


def footer_text(page: int, total: int, day: date) -> str:
    return f"Page {page} sur {total} - DLOG {day.isoformat()}"


def pdf_filename(day: date) -> str:
    return f"DLOG_{day:%Y_%m_%d}.pdf"


class NumberedCanvas(canvas.Canvas):
    """Canvas that defers footers until the page count is known."""

    def __init__(self, *args, day: date, **kwargs):
        super().__init__(*args, **kwargs)
        self._saved_page_states = []
        self._day = day

    def showPage(self):
        self._saved_page_states.append(dict(self.__dict__))
        self._startPage()

    def save(self):
        num_pages = len(self._saved_page_states)
        for state in self._saved_page_states:
            self.__dict__.update(state)
            self.draw_footer(num_pages)
            super().showPage()
        super().save()

    def draw_footer(self, page_count: int) -> None:
        self.saveState()
        self.setFont("Helvetica", 8)
        self.setFillColor(COLOR_GRAY)
        self.drawRightString(A4[0] - 2 * cm, 1.2 * cm, footer_text(self._pageNumber, page_count, self._day))
        self.restoreState()


def _styles() -> dict[str, ParagraphStyle]:
    base = getSampleStyleSheet()
    return {
        "title": ParagraphStyle("DlogTitle", parent=base["Title"], textColor=COLOR_PRIMARY, fontSize=18),
        "subtitle": ParagraphStyle("DlogSubtitle", parent=base["Normal"], textColor=COLOR_GRAY, fontSize=9),
        "heading": ParagraphStyle("DlogHeading", parent=base["Heading2"], textColor=COLOR_PRIMARY, spaceBefore=12),
        "entry": ParagraphStyle("DlogEntry", parent=base["Heading4"], spaceBefore=6, spaceAfter=2),
        "cell": ParagraphStyle("DlogCell", parent=base["Normal"], fontSize=8, leading=10),
        "detail": ParagraphStyle(
            "DlogDetail", parent=base["Normal"], fontSize=8, leading=10, leftIndent=0.3 * cm, spaceBefore=2
        ),
        "body": base["Normal"],
    }


def _format_metadata(entry: ActivityLog) -> str:
    metadata = load_json(entry.metadata_json)
    if not metadata:
        return "-"
    return json.dumps(metadata, ensure_ascii=False, default=str)


def _actor(email: str | None) -> str:
    return email or "-"


def _summary_table(entries: list[ActivityLog], styles: dict) -> Table:
    rows = [["Type d'action", "Nombre"], ["Total", str(len(entries))]]
    rows.extend([action, str(count)] for action, count in count_by_action(entries))
    table = Table(rows, colWidths=[10 * cm, 4 * cm])
    table.setStyle(
        TableStyle(
            [
                ("BACKGROUND", (0, 0), (-1, 0), COLOR_PRIMARY),
                ("TEXTCOLOR", (0, 0), (-1, 0), colors.white),
                ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
                ("FONTNAME", (0, 1), (-1, 1), "Helvetica-Bold"),
                ("ROWBACKGROUNDS", (0, 1), (-1, -1), [colors.white, COLOR_ROW_ALT]),
                ("GRID", (0, 0), (-1, -1), 0.5, COLOR_GRAY),
                ("FONTSIZE", (0, 0), (-1, -1), 9),
            ]
        )
    )
    return table


def _entry_block(index: int, entry: ActivityLog, styles: dict) -> list:
    """Short fields go in a table kept with the heading; free text follows as
    paragraphs, which can split across pages."""
    stamp = as_utc(entry.timestamp)
    cell = styles["cell"]
    rows = [
        ("Heure", stamp.strftime("%H:%M:%S") if stamp else "-"),
        ("Type", entry.action.value if hasattr(entry.action, "value") else str(entry.action)),
        ("Utilisateur", _actor(entry.user_email)),
        ("Utilisateur cible", _actor(entry.target_user_email)),
        ("IP", entry.ip_address or "-"),
    ]
    table = Table(
        [[Paragraph(escape(label), cell), Paragraph(escape(value), cell)] for label, value in rows],
        colWidths=[4 * cm, 12.5 * cm],
    )
    table.setStyle(
        TableStyle(
            [
                ("GRID", (0, 0), (-1, -1), 0.25, COLOR_GRAY),
                ("BACKGROUND", (0, 0), (0, -1), COLOR_ROW_ALT),
                ("VALIGN", (0, 0), (-1, -1), "TOP"),
            ]
        )
    )
    return [
        KeepTogether([Paragraph(f"Action #{index}", styles["entry"]), table]),
        _labelled("Description", entry.description or "-", styles),
        _labelled("Métadonnées", _format_metadata(entry), styles),
    ]


def _labelled(label: str, value: str, styles: dict) -> Paragraph:
    return Paragraph(f"<b>{escape(label)} :</b> {escape(value)}", styles["detail"])


def build_dlog_story(entries: list[ActivityLog], day: date, generated_at: datetime | None = None) -> list:
    styles = _styles()
    generated_at = generated_at or utcnow()
    story = [
        Paragraph(TITLE, styles["title"]),
        Paragraph(f"Date : {day:%d/%m/%Y}", styles["subtitle"]),
        Paragraph(f"Généré le {generated_at:%d/%m/%Y à %H:%M:%S} UTC", styles["subtitle"]),
        Spacer(1, 0.5 * cm),
        Paragraph("Synthèse", styles["heading"]),
        _summary_table(entries, styles),
        Paragraph("Détail des Actions", styles["heading"]),
    ]
    if not entries:
        story.append(Paragraph(EMPTY_DAY_TEXT, styles["body"]))
        return story

    for index, entry in enumerate(entries, start=1):
        story.extend(_entry_block(index, entry, styles))
    return story


def render_dlog_pdf(entries: list[ActivityLog], day: date) -> bytes:
    buffer = io.BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=A4,
        leftMargin=2 * cm,
        rightMargin=2 * cm,
        topMargin=2 * cm,
        bottomMargin=2 * cm,
        title=TITLE,
    )
    doc.build(build_dlog_story(entries, day), canvasmaker=partial(NumberedCanvas, day=day))
    return buffer.getvalue()

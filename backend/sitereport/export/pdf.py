from __future__ import annotations

import io
import logging
from typing import Optional

from reportlab.lib.colors import HexColor
from reportlab.lib.pagesizes import letter
from reportlab.lib.utils import simpleSplit
from reportlab.pdfgen import canvas

from sitereport.errors import RenderError
from sitereport.schemas.document import (
    ComparisonBlock,
    MediaBlock,
    MediaEntry,
    MediaItem,
    PlaceholderBlock,
    ProgressBlock,
    RenderedDocument,
    TableBlock,
    TextBlock,
)

FONT = "Helvetica"
BOLD_FONT = "Helvetica-Bold"
MARGIN = 50
TOP = letter[1] - 80
BOTTOM = 80
CONTENT_WIDTH = letter[0] - 2 * MARGIN

# Base-14 fonts have no star glyphs.
_GLYPHS = str.maketrans({"★": "*", "☆": "-"})


def safe_filename(name: str) -> str:
    cleaned = "".join(ch if ch.isalnum() or ch in "-_." else "_" for ch in name.strip())
    cleaned = cleaned.strip("._") or "report"
    if not cleaned.lower().endswith(".pdf"):
        cleaned = f"{cleaned}.pdf"
    return cleaned


class _Page:
    """Cursor over a canvas that starts a new page when it runs out of room."""

    def __init__(self, c: canvas.Canvas, footer: str) -> None:
        self.c = c
        self.footer = footer
        self.number = 1
        self.y = TOP
        self._draw_footer()

    def _draw_footer(self) -> None:
        self.c.setFont(FONT, 9)
        self.c.setFillColorRGB(0.5, 0.5, 0.5)
        self.c.drawCentredString(letter[0] / 2, 30, f"{self.footer} - Page {self.number}")
        self.c.setFillColorRGB(0, 0, 0)

    def ensure(self, height: float) -> None:
        if self.y - height < BOTTOM:
            self.c.showPage()
            self.number += 1
            self._draw_footer()
            self.y = TOP

    def line(self, text: str, font: str = FONT, size: int = 11, indent: float = 0, color: Optional[str] = None) -> None:
        wrapped = simpleSplit(text.translate(_GLYPHS), font, size, CONTENT_WIDTH - indent) or [""]
        for part in wrapped:
            self.ensure(size + 7)
            self.c.setFont(font, size)
            if color:
                self.c.setFillColor(HexColor(color))
            self.c.drawString(MARGIN + indent, self.y, part)
            self.c.setFillColorRGB(0, 0, 0)
            self.y -= size + 7

    def heading(self, text: str) -> None:
        self.ensure(40)
        self.y -= 8
        self.line(text, BOLD_FONT, 13)

    def gap(self, amount: float = 8) -> None:
        self.y -= amount


def _media_line(entry: MediaEntry) -> tuple[str, Optional[str]]:
    if isinstance(entry, MediaItem):
        parts = [entry.caption or "Photo"]
        if entry.taken_on:
            parts.append(f"({entry.taken_on})")
        return f"[Photo] {' '.join(parts)} - {entry.url}", None
    return f"[{entry.message}: {entry.ref_id}]", "#9e9e9e"


class PdfRenderer:
    """Lays a :class:`RenderedDocument` out onto letter-size pages."""

    def __init__(self, footer: str = "Site Report", logger: Optional[logging.Logger] = None) -> None:
        self.footer = footer
        self.logger = logger or logging.getLogger(__name__)

    def _draw_text(self, page: _Page, block: TextBlock) -> None:
        page.heading(block.heading)
        for paragraph in block.text.split("\n"):
            page.line(paragraph)

    def _draw_table(self, page: _Page, block: TableBlock) -> None:
        page.heading(block.heading)
        column_width = CONTENT_WIDTH / max(len(block.columns), 1)
        page.ensure(18)
        page.c.setFont(BOLD_FONT, 10)
        for index, column in enumerate(block.columns):
            page.c.drawString(MARGIN + index * column_width, page.y, column)
        page.y -= 16
        rows = list(block.rows)
        colors = list(block.row_colors or [])
        if block.footer:
            rows.append(block.footer)
        for row_index, row in enumerate(rows):
            cells = [simpleSplit(str(cell).translate(_GLYPHS), FONT, 10, column_width - 6) or [""] for cell in row]
            height = max(len(cell) for cell in cells) * 14
            page.ensure(height + 4)
            color = colors[row_index] if row_index < len(colors) else None
            if color:
                page.c.setFillColor(HexColor(color))
                page.c.circle(MARGIN - 10, page.y + 3, 3, stroke=0, fill=1)
                page.c.setFillColorRGB(0, 0, 0)
            is_footer = block.footer is not None and row_index == len(rows) - 1
            page.c.setFont(BOLD_FONT if is_footer else FONT, 10)
            for index, lines in enumerate(cells):
                for offset, text in enumerate(lines):
                    page.c.drawString(MARGIN + index * column_width, page.y - offset * 14, text)
            page.y -= height + 4

    def _draw_media(self, page: _Page, block: MediaBlock) -> None:
        page.heading(block.heading)
        for entry in block.items:
            text, color = _media_line(entry)
            page.line(text, size=10, indent=10, color=color)

    def _draw_comparison(self, page: _Page, block: ComparisonBlock) -> None:
        page.heading(block.heading)
        half = CONTENT_WIDTH / 2
        page.ensure(60)
        for index, (label, entry) in enumerate((("Before", block.before), ("After", block.after))):
            x = MARGIN + index * half
            text, color = _media_line(entry)
            page.c.setFont(BOLD_FONT, 10)
            page.c.drawString(x, page.y, label)
            page.c.setFont(FONT, 9)
            if color:
                page.c.setFillColor(HexColor(color))
            for offset, part in enumerate(simpleSplit(text, FONT, 9, half - 10)[:3]):
                page.c.drawString(x, page.y - 14 - offset * 12, part)
            page.c.setFillColorRGB(0, 0, 0)
        page.y -= 56
        if block.description:
            page.line(block.description, size=10)
        if block.materials:
            page.line(f"Materials: {', '.join(block.materials)}", size=10)

    def _draw_progress(self, page: _Page, block: ProgressBlock) -> None:
        page.heading(block.heading)
        page.ensure(30)
        bar_width = CONTENT_WIDTH * 0.6
        page.c.setFillColorRGB(0.9, 0.9, 0.9)
        page.c.rect(MARGIN, page.y - 4, bar_width, 12, stroke=0, fill=1)
        page.c.setFillColor(HexColor("#4caf50"))
        page.c.rect(MARGIN, page.y - 4, bar_width * block.percentage / 100, 12, stroke=0, fill=1)
        page.c.setFillColorRGB(0, 0, 0)
        page.c.setFont(FONT, 10)
        page.c.drawString(MARGIN + bar_width + 10, page.y - 2, block.label)
        page.y -= 24

    def _draw_missing(self, page: _Page, block: PlaceholderBlock) -> None:
        page.heading(block.heading)
        page.line(block.message, size=10, color="#9e9e9e")

    def _draw(self, document: RenderedDocument) -> bytes:
        buffer = io.BytesIO()
        c = canvas.Canvas(buffer, pagesize=letter)
        c.setTitle(document.title)
        page = _Page(c, self.footer)

        page.line(document.title, BOLD_FONT, 18)
        if document.subtitle:
            page.line(document.subtitle, size=12)
        page.line(document.summary, size=10, color="#555555")
        page.gap()
        c.line(MARGIN, page.y, letter[0] - MARGIN, page.y)
        page.gap(16)

        drawers = {
            "text": self._draw_text,
            "table": self._draw_table,
            "media": self._draw_media,
            "comparison": self._draw_comparison,
            "progress": self._draw_progress,
            "missing": self._draw_missing,
        }
        for block in document.blocks:
            drawers[block.kind](page, block)

        c.save()
        return buffer.getvalue()

    def render(self, document: RenderedDocument) -> bytes:
        try:
            data = self._draw(document)
        except Exception as exc:
            self.logger.error(
                "PDF render failed: %s", exc, extra={"report_id": document.report_id, "report_type": document.report_type}
            )
            raise RenderError(f"Could not render report {document.report_id}: {exc}") from exc
        self.logger.debug("Rendered %d bytes", len(data), extra={"report_id": document.report_id})
        return data

from __future__ import annotations

import logging
from datetime import date
from io import BytesIO
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.utils import ImageReader
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.ttfonts import TTFont
from reportlab.platypus import CondPageBreak, Flowable, Image, Paragraph, SimpleDocTemplate, Spacer

from trafficreport.constants import priority_label, status_label
from trafficreport.images import ImageLoader
from trafficreport.settings import DEFAULT_FONT_CANDIDATES

log = logging.getLogger("uvicorn.error")

PAGE_SIZE = A4
PAGE_MARGIN = 50
# Less room than this left under a block starts the next block on a new page.
PAGE_BREAK_RESERVE = 100
IMAGE_MAX_WIDTH = 500
IMAGE_MAX_HEIGHT = 300

TITLE_PREFIX = "Problem report"
ALL_LABEL = "All"
NO_RECORDS_TEXT = "No problems for the selected filter."
IMAGE_PLACEHOLDER_TEXT = "(Cannot embed image in PDF)"

FALLBACK_FONT = "Helvetica"
_REPORT_FONT = "ReportSans"


def register_report_font(font_path: Optional[Path] = None) -> str:
    """Register a Unicode TTF for report text and return its font name.

    Falls back to Helvetica when no usable font file is found, in which case
    characters outside WinAnsi will not render.
    """
    if _REPORT_FONT in pdfmetrics.getRegisteredFontNames():
        return _REPORT_FONT
    candidates = [font_path] if font_path else []
    candidates.extend(DEFAULT_FONT_CANDIDATES)
    for candidate in candidates:
        if not candidate or not Path(candidate).exists():
            continue
        try:
            pdfmetrics.registerFont(TTFont(_REPORT_FONT, str(candidate)))
        except Exception:
            log.warning("Unable to register report font %s", candidate, exc_info=True)
            continue
        return _REPORT_FONT
    log.warning("No Unicode font found for PDF reports; using %s", FALLBACK_FONT)
    return FALLBACK_FONT


def report_filter_label(status_filter: Optional[str]) -> str:
    if not status_filter:
        return ALL_LABEL
    return status_label(status_filter)


def report_filename(status_filter: Optional[str], generated_on: date) -> str:
    return f"report_{status_filter or 'all'}_{generated_on.isoformat()}.pdf"


def _styles(font_name: str) -> Dict[str, ParagraphStyle]:
    base = getSampleStyleSheet()
    return {
        "title": ParagraphStyle("ReportTitle", parent=base["Title"], fontName=font_name, fontSize=20, leading=24, alignment=0),
        "date": ParagraphStyle("ReportDate", parent=base["Normal"], fontName=font_name, fontSize=10, textColor=colors.HexColor("#444444")),
        "heading": ParagraphStyle("ProblemHeading", parent=base["Normal"], fontName=font_name, fontSize=14, leading=18),
        "body": ParagraphStyle("ProblemBody", parent=base["Normal"], fontName=font_name, fontSize=11, leading=14),
    }


def _text(value: Any) -> str:
    return escape("" if value is None else str(value))


def _image_flowable(data: bytes, placeholder_style: ParagraphStyle) -> Flowable:
    try:
        # Decode fully up front so a corrupt body fails here and not in doc.build().
        ImageReader(BytesIO(data)).getRGBData()
        img = Image(BytesIO(data))
        img.hAlign = "CENTER"
        img._restrictSize(IMAGE_MAX_WIDTH, IMAGE_MAX_HEIGHT)
        return img
    except Exception:
        log.warning("Unable to embed image in report", exc_info=True)
        return Paragraph(IMAGE_PLACEHOLDER_TEXT, placeholder_style)


def _problem_block(index: int, problem: Dict[str, Any], styles: Dict[str, ParagraphStyle], load_image: ImageLoader) -> List[Flowable]:
    body = styles["body"]
    block: List[Flowable] = [
        Paragraph(f"<u>Problem {index}</u>", styles["heading"]),
        Spacer(1, 5),
        Paragraph(f"Title: {_text(problem.get('title'))}", body),
        Paragraph(f"Description: {_text(problem.get('description'))}", body),
        Paragraph(f"Problem type: {_text(problem.get('problem_type'))}", body),
    ]
    if problem.get("proposed_solution"):
        block.append(Paragraph(f"Proposed solution: {_text(problem['proposed_solution'])}", body))
    block.append(Paragraph(f"Priority: {_text(priority_label(problem.get('priority')))}", body))
    block.append(Paragraph(f"Status: {_text(status_label(problem.get('status')))}", body))

    data = load_image(problem.get("image_url"))
    if data:
        block.append(Spacer(1, 6))
        block.append(Paragraph("Image:", body))
        block.append(Spacer(1, 3))
        block.append(_image_flowable(data, body))
    block.append(Spacer(1, 14))
    return block


def build_report_story(
    problems: Sequence[Dict[str, Any]],
    status_filter: Optional[str],
    *,
    load_image: ImageLoader,
    generated_on: date,
    font_name: str = FALLBACK_FONT,
) -> List[Flowable]:
    styles = _styles(font_name)
    story: List[Flowable] = [
        Paragraph(f"{TITLE_PREFIX} - {_text(report_filter_label(status_filter))}", styles["title"]),
        Spacer(1, 2),
        Paragraph(f"Date: {generated_on.isoformat()}", styles["date"]),
        Spacer(1, 14),
    ]
    if not problems:
        story.append(Paragraph(NO_RECORDS_TEXT, styles["body"]))
        return story

    last = len(problems) - 1
    for position, problem in enumerate(problems):
        story.extend(_problem_block(position + 1, problem, styles, load_image))
        if position != last:
            story.append(CondPageBreak(PAGE_BREAK_RESERVE))
    return story


def render_problem_report(
    problems: Sequence[Dict[str, Any]],
    status_filter: Optional[str],
    *,
    load_image: ImageLoader,
    generated_on: Optional[date] = None,
    font_path: Optional[Path] = None,
) -> bytes:
    """Build the whole PDF in memory and return its bytes.

    Raises whatever the document library raises; callers never see a partial
    document.
    """
    generated_on = generated_on or date.today()
    font_name = register_report_font(font_path)
    story = build_report_story(
        problems,
        status_filter,
        load_image=load_image,
        generated_on=generated_on,
        font_name=font_name,
    )
    buffer = BytesIO()
    try:
        doc = SimpleDocTemplate(
            buffer,
            pagesize=PAGE_SIZE,
            leftMargin=PAGE_MARGIN,
            rightMargin=PAGE_MARGIN,
            topMargin=PAGE_MARGIN,
            bottomMargin=PAGE_MARGIN,
            title=f"{TITLE_PREFIX} - {report_filter_label(status_filter)}",
        )
        doc.build(story)
        return buffer.getvalue()
    finally:
        buffer.close()


__all__ = [
    "build_report_story",
    "register_report_font",
    "render_problem_report",
    "report_filename",
    "report_filter_label",
]

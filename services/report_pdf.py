"""
Report renderer: a paginated A4 PDF built from a title, an introduction,
numbered sections with optional images, and a conclusion.

Images are acquired before layout starts (see load_section_images) so the
layout pass itself never waits on the network.
"""

import io
import logging
from typing import List, Optional, Union

from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER, TA_JUSTIFY, TA_RIGHT
from reportlab.lib.pagesizes import A4
from reportlab.pdfgen import canvas
from reportlab.platypus import CondPageBreak, HRFlowable, SimpleDocTemplate

from models.errors import DocumentGenerationError, ServiceError
from models.schemas import ReportContent, ReportSection
from services.image_loader import load_image_bytes, validate_image_bytes
from services.pdf_common import (LINE, caption, image_error_note, image_with_fallback,
                                 move_down, paragraph, style)
from utils import french_date

logger = logging.getLogger(__name__)

PAGE_WIDTH, PAGE_HEIGHT = A4
MARGIN = 50

# Start a new page when less than this much room is left (margin included)
SECTION_BREAK_THRESHOLD = 150
IMAGE_MAX_HEIGHT = 300
IMAGE_BREAK_THRESHOLD = IMAGE_MAX_HEIGHT + 100

SectionImage = Union[bytes, Exception, None]

TITLE = style('ReportTitle', font='Helvetica-Bold', size=26, color='#1e40af', alignment=TA_CENTER)
DATE = style('ReportDate', size=10, color='#6b7280', alignment=TA_RIGHT)
HEADING = style('ReportHeading', font='Helvetica-Bold', size=16, color='#1f2937')
SECTION_HEADING = style('SectionHeading', font='Helvetica-Bold', size=14, color='#1e40af')
BODY = style('ReportBody', size=11, color='#374151', line_gap=3, alignment=TA_JUSTIFY)


class NumberedCanvas(canvas.Canvas):
    """Canvas that defers page output so every page can show 'Page i sur N'."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._saved_page_states = []

    def showPage(self):
        self._saved_page_states.append(dict(self.__dict__))
        self._startPage()

    def save(self):
        total = len(self._saved_page_states)
        for state in self._saved_page_states:
            self.__dict__.update(state)
            self.draw_page_number(total)
            super().showPage()
        super().save()

    def draw_page_number(self, total: int):
        self.setFont('Helvetica', 8)
        self.setFillColor(colors.HexColor('#9ca3af'))
        self.drawCentredString(PAGE_WIDTH / 2, MARGIN - 8,
                               f"Page {self._pageNumber} sur {total}")


async def load_section_images(sections: List[ReportSection]) -> List[SectionImage]:
    """
    Acquire the image of every section, in order.

    Failures are kept in the list instead of raised: a broken image turns
    into an error note in the document, not a failed request.
    """
    images: List[SectionImage] = []
    for index, section in enumerate(sections):
        if not section.has_source:
            images.append(None)
            continue
        try:
            data = await load_image_bytes(
                image_url=section.image_url,
                image_path=section.image_path,
                image_base64=section.image,
            )
            validate_image_bytes(data)
            images.append(data)
        except Exception as e:
            logger.error(f"Image for section {index + 1} could not be loaded: {e}")
            images.append(e)
    return images


def _error_reason(error: Exception) -> str:
    if isinstance(error, ServiceError):
        return error.message
    return str(error) or type(error).__name__


def _image_flowables(image: SectionImage, section: ReportSection) -> list:
    if isinstance(image, Exception):
        return image_error_note("Erreur lors du chargement de l'image", _error_reason(image)) + [move_down()]

    max_width = PAGE_WIDTH - 2 * MARGIN
    try:
        flowables = [
            CondPageBreak(IMAGE_BREAK_THRESHOLD - MARGIN),
            image_with_fallback(image, max_width, IMAGE_MAX_HEIGHT),
            move_down(),
        ]
    except Exception as e:
        logger.error(f"Image could not be inserted: {e}")
        return image_error_note("Erreur lors du chargement de l'image", _error_reason(e)) + [move_down()]

    if section.image_caption:
        flowables += [caption(section.image_caption), move_down()]
    return flowables


def build_story(content: ReportContent, images: Optional[List[SectionImage]] = None) -> list:
    sections = content.sections or []
    images = images or [None] * len(sections)

    story = [
        paragraph(content.title, TITLE),
        HRFlowable(width='100%', thickness=2, color=colors.HexColor('#3b82f6'),
                   spaceBefore=LINE / 2, spaceAfter=LINE / 2),
        paragraph(f"Date: {french_date()}", DATE),
        move_down(2),
    ]

    if content.introduction:
        story += [
            paragraph("Introduction", HEADING),
            move_down(0.5),
            paragraph(content.introduction, BODY),
            move_down(2),
        ]

    for index, section in enumerate(sections):
        story += [
            CondPageBreak(SECTION_BREAK_THRESHOLD - MARGIN),
            paragraph(f"{index + 1}. {section.title or 'Section'}", SECTION_HEADING),
            move_down(0.5),
        ]
        if section.content:
            story += [paragraph(section.content, BODY), move_down()]
        if section.has_source:
            story += _image_flowables(images[index], section)
        story.append(move_down(1.5))

    if content.conclusion:
        story += [
            CondPageBreak(SECTION_BREAK_THRESHOLD - MARGIN),
            paragraph("Conclusion", HEADING),
            move_down(0.5),
            paragraph(content.conclusion, BODY),
        ]

    return story


def render_report_pdf(content: ReportContent, images: Optional[List[SectionImage]] = None) -> bytes:
    """Render the report and return the PDF bytes"""
    buffer = io.BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=A4,
        leftMargin=MARGIN,
        rightMargin=MARGIN,
        topMargin=MARGIN,
        bottomMargin=MARGIN,
        title=content.title or '',
        author="Assistant GPT",
        subject=content.title or '',
    )
    try:
        doc.build(build_story(content, images), canvasmaker=NumberedCanvas)
    except Exception as e:
        raise DocumentGenerationError(
            message="Erreur lors de la génération du PDF",
            error_type="pdf_generation_error",
            details=str(e),
        )

    pdf_bytes = buffer.getvalue()
    logger.info(f"Report PDF generated: {len(pdf_bytes)} bytes, {len(content.sections or [])} sections")
    return pdf_bytes

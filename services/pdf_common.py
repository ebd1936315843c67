"""
Building blocks shared by the report and offer PDF renderers.
"""

import io
import logging
from typing import List, Optional
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER
from reportlab.lib.styles import ParagraphStyle
from reportlab.lib.utils import ImageReader
from reportlab.platypus import Flowable, Image, Paragraph, Spacer

from services.image_loader import normalize_image, validate_image_bytes

logger = logging.getLogger(__name__)

# One pdfkit-style "line" of vertical space at 11pt
LINE = 14

ERROR_RED = colors.HexColor('#ef4444')
MUTED_GREY = colors.HexColor('#9ca3af')
CAPTION_GREY = colors.HexColor('#6b7280')


def style(name: str, font: str = 'Helvetica', size: float = 11,
          color: str = '#111827', line_gap: float = 0, **kwargs) -> ParagraphStyle:
    return ParagraphStyle(
        name,
        fontName=font,
        fontSize=size,
        leading=size * 1.2 + line_gap,
        textColor=colors.HexColor(color) if isinstance(color, str) else color,
        **kwargs
    )


def markup(text) -> str:
    """Escape text for reportlab's paragraph markup, keeping line breaks"""
    return escape(str(text or '')).replace('\n', '<br/>')


def paragraph(text, paragraph_style: ParagraphStyle) -> Paragraph:
    return Paragraph(markup(text), paragraph_style)


def move_down(lines: float = 1) -> Spacer:
    return Spacer(1, LINE * lines)


def fitted_image(data: bytes, max_width: float, max_height: float) -> Image:
    """
    Build an image flowable scaled to fit max_width x max_height.

    Decodes the image immediately so undecodable bytes fail here rather
    than halfway through the document build.
    """
    reader = ImageReader(io.BytesIO(data))
    width, height = reader.getSize()
    if not width or not height:
        raise ValueError(f"invalid image size {width}x{height}")
    reader.getRGBData()
    scale = min(max_width / width, max_height / height)
    flowable = Image(io.BytesIO(data), width=width * scale, height=height * scale)
    flowable.hAlign = 'CENTER'
    return flowable


def image_with_fallback(data: bytes, max_width: float, max_height: float) -> Image:
    """Insert the raw bytes; if the renderer rejects them, retry re-encoded as PNG"""
    try:
        return fitted_image(data, max_width, max_height)
    except Exception as e:
        logger.warning(f"Image insert error: {e}")

    logger.info("Normalising image to PNG before retrying")
    normalized = normalize_image(data, 'png')
    validate_image_bytes(normalized)
    return fitted_image(normalized, max_width, max_height)


def image_error_note(headline: str, reason, align: int = TA_CENTER) -> List[Flowable]:
    return [
        paragraph(headline, style('ImageError', size=10, color=ERROR_RED, alignment=align)),
        paragraph(f"({reason})", style('ImageErrorReason', size=8, color=MUTED_GREY, alignment=align)),
    ]


def caption(text: Optional[str]) -> Paragraph:
    return paragraph(text, style('Caption', font='Helvetica-Oblique', size=9,
                                 color=CAPTION_GREY, alignment=TA_CENTER))

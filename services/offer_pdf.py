"""
Commercial offer renderer.

Every page carries the same letterhead: a blue top bar, the issuing site's
address block on the left, the company logo on the right and a second blue
bar underneath. The body holds the customer block, a subject banner, the
offer sections, the signature and an optional appendix image on its own page.
"""

import io
import logging
from typing import Dict, List, Optional

from reportlab.lib import colors
from reportlab.lib.enums import TA_JUSTIFY, TA_LEFT
from reportlab.lib.pagesizes import A4
from reportlab.lib.utils import ImageReader
from reportlab.platypus import (CondPageBreak, PageBreak, Paragraph, SimpleDocTemplate,
                                Table, TableStyle)

import config
from models.errors import DocumentGenerationError, ServiceError
from models.schemas import Offer
from services.image_loader import (decode_base64_image, load_image_bytes, normalize_image,
                                   validate_image_bytes)
from services.pdf_common import (caption, fitted_image, image_error_note, markup, move_down,
                                 paragraph, style)
from utils import french_date

logger = logging.getLogger(__name__)

PAGE_WIDTH, PAGE_HEIGHT = A4
MARGIN = 50

BRAND_BLUE = colors.HexColor('#0b5fa5')
TOP_BAR_H = 16
HEADER_BLOCK_H = 90
BOTTOM_BAR_H = 10
HEADER_TOTAL_H = TOP_BAR_H + HEADER_BLOCK_H + BOTTOM_BAR_H
HEADER_PADDING = 12
LOGO_WIDTH = 140

SECTION_BREAK_THRESHOLD = 160
APPENDIX_MAX_HEIGHT = 420

_FRANCE = [
    "AVOCarbon France - 9 rue des imprimeurs - Z.I. de la République n° 1 - 86000 POITIERS France",
    "au capital de 3 224 460 € - RCS Poitiers B339 348 450 – Code APE 2732 Z – "
    "N° identification TVA FR 01339348450",
    "Phone : +33 5 49 62 25 00",
]
_GERMANY = ["AVOCarbon Germany", "AVOCarbon Germany GmbH", "Talstrasse 112", "D-60437 Frankfurt am Main"]
_INDIA = [
    "AVOCarbon India",
    "25/A2, Dairy Plant Road SIDCO Industrial Estate (NP)",
    "Pattaravakka Ambattur Chennai – 600098",
    "Tamilnadu",
]
_KOREA = ["AVOCarbon Korea", "306, Nongong-ro, Nongong-eup", "Dalseong-Gun, Daegu"]
_MONTERREY = ["ASSYMEX MONTERREY", "San Sebastian 110", "Co. Los Lermas", "GUADALUPE, N.L", "Mexico 67190"]
_TUNISIA = ["AVOCarbon", "Tunisia", "SCEET & SAME", "Zone industrielle Elfahs", "1140 Zaghouane"]

COMPANY_ADDRESS_MAP: Dict[str, List[str]] = {
    "avocarbon france": _FRANCE,
    "france": _FRANCE,
    "avocarbon germany": _GERMANY,
    "germany": _GERMANY,
    "avocarbon india": _INDIA,
    "india": _INDIA,
    "avocarbon korea": _KOREA,
    "korea": _KOREA,
    "assymex monterrey": _MONTERREY,
    "monterrey": _MONTERREY,
    "tunisia": _TUNISIA,
    "tunis": _TUNISIA,
    "tianjin": ["AVOCarbon Tianjin", "Junling Road 17 # Beizhakou", "Jinnan District"],
    "kunshan": ["AVOCarbon Kunshan", "N°9, Dongtinghu Road", "215335 Kunshan"],
}

TITLE = style('OfferTitle', font='Helvetica-Bold', size=18)
DATE = style('OfferDate', size=10, color='#374151')
LABEL = style('OfferLabel', font='Helvetica-Bold', size=11)
CUSTOMER = style('OfferCustomer', size=10, color='#374151')
BANNER = style('OfferBanner', font='Helvetica-Bold', size=10)
BODY = style('OfferBody', size=11, line_gap=3, alignment=TA_JUSTIFY)
SECTION_HEADING = style('OfferSectionHeading', font='Helvetica-Bold', size=12, color='#1e40af')
SIGNATURE = style('OfferSignature', size=11)
ADDRESS = style('OfferAddress', size=8, line_gap=1)


def get_company_address_lines(offer: Offer) -> List[str]:
    return COMPANY_ADDRESS_MAP.get(offer.letterhead_key, COMPANY_ADDRESS_MAP['france'])


async def load_logo(logo_path: Optional[str] = None) -> Optional[bytes]:
    """Load the letterhead logo; a missing logo only costs the logo"""
    try:
        logo = await load_image_bytes(image_path=logo_path or config.LOGO_PATH)
        validate_image_bytes(logo)
        return logo
    except Exception as e:
        reason = e.message if isinstance(e, ServiceError) else str(e)
        logger.warning(f"Logo not loaded: {reason}")
        return None


class Letterhead:
    """Page callback drawing the header block on every page."""

    def __init__(self, address_lines: List[str], logo: Optional[bytes] = None):
        self.address_lines = address_lines
        self.logo = None
        if logo:
            self.logo = ImageReader(io.BytesIO(logo))
            self.logo_size = self.logo.getSize()

    def __call__(self, canv, doc):
        canv.saveState()
        canv.setFillColor(BRAND_BLUE)
        canv.rect(0, PAGE_HEIGHT - TOP_BAR_H, PAGE_WIDTH, TOP_BAR_H, stroke=0, fill=1)
        canv.rect(0, PAGE_HEIGHT - HEADER_TOTAL_H, PAGE_WIDTH, BOTTOM_BAR_H, stroke=0, fill=1)

        block_top = PAGE_HEIGHT - TOP_BAR_H - HEADER_PADDING
        if self.address_lines:
            address = Paragraph('<br/>'.join(markup(line) for line in self.address_lines), ADDRESS)
            _, height = address.wrapOn(canv, PAGE_WIDTH - 2 * MARGIN - 170, HEADER_BLOCK_H)
            address.drawOn(canv, MARGIN, block_top - height)

        if self.logo is not None:
            width, height = self.logo_size
            logo_height = LOGO_WIDTH * height / width
            logo_width = LOGO_WIDTH
            max_height = HEADER_BLOCK_H - HEADER_PADDING
            if logo_height > max_height:
                logo_width, logo_height = logo_width * max_height / logo_height, max_height
            canv.drawImage(self.logo, PAGE_WIDTH - MARGIN - logo_width, block_top - logo_height,
                           width=logo_width, height=logo_height, mask='auto')
        canv.restoreState()


def _subject_banner(subject: str) -> Table:
    banner = Table([[paragraph(subject, BANNER)]], colWidths=[PAGE_WIDTH - 2 * MARGIN])
    banner.setStyle(TableStyle([
        ('BACKGROUND', (0, 0), (-1, -1), colors.HexColor('#dbeafe')),
        ('LEFTPADDING', (0, 0), (-1, -1), 8),
        ('TOPPADDING', (0, 0), (-1, -1), 6),
        ('BOTTOMPADDING', (0, 0), (-1, -1), 6),
    ]))
    return banner


def _appendix(offer: Offer) -> list:
    story = [
        PageBreak(),
        move_down(0.5),
        paragraph(offer.appendix_image_title or "Appendix - Drawing / Photo", LABEL),
        move_down(0.5),
    ]
    try:
        image = decode_base64_image(offer.appendix_image_base64)
        validate_image_bytes(image)
        normalized = normalize_image(image, 'png')
        story += [
            fitted_image(normalized, PAGE_WIDTH - 2 * MARGIN, APPENDIX_MAX_HEIGHT),
            move_down(0.5),
        ]
        if offer.appendix_image_caption:
            story.append(caption(offer.appendix_image_caption))
    except Exception as e:
        reason = e.message if isinstance(e, ServiceError) else str(e)
        logger.error(f"Appendix image not loaded: {reason}")
        story += image_error_note("Appendix image not loaded.", reason, align=TA_LEFT)
    return story


def build_story(offer: Offer) -> list:
    story = [
        paragraph(offer.title or "COMMERCIAL OFFER", TITLE),
        move_down(0.4),
        paragraph(f"Date: {offer.date or french_date()}", DATE),
        move_down(),
    ]

    if offer.has_customer:
        story.append(paragraph("Customer", LABEL))
        if offer.customer_lines:
            story.append(paragraph('\n'.join(offer.customer_lines), CUSTOMER))
        else:
            if offer.customer_name:
                story.append(paragraph(offer.customer_name, CUSTOMER))
            if offer.customer_address:
                story.append(paragraph(offer.customer_address, CUSTOMER))
            if offer.to_person:
                story.append(paragraph(f"To: {offer.to_person}", CUSTOMER))
        story.append(move_down())

    if offer.subject:
        story += [_subject_banner(offer.subject), move_down(2)]

    if offer.intro:
        story += [paragraph(offer.intro, BODY), move_down()]

    for section in offer.sections:
        story += [
            CondPageBreak(SECTION_BREAK_THRESHOLD - MARGIN),
            paragraph(section.title or "Section", SECTION_HEADING),
            move_down(0.3),
            paragraph(section.content or "", BODY),
            move_down(0.8),
        ]

    story.append(move_down())
    for line in (offer.closing, offer.signature_name, offer.signature_title):
        if line:
            story.append(paragraph(line, SIGNATURE))

    if offer.appendix_image_base64:
        story += _appendix(offer)

    return story


def render_offer_pdf(offer: Offer, logo: Optional[bytes] = None) -> bytes:
    """Render the offer and return the PDF bytes"""
    buffer = io.BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=A4,
        leftMargin=MARGIN,
        rightMargin=MARGIN,
        topMargin=HEADER_TOTAL_H + 18,
        bottomMargin=MARGIN,
        title=offer.subject or "Commercial Offer",
        author="AVOCarbon",
        subject=offer.subject or "Offer",
    )

    try:
        letterhead = Letterhead(get_company_address_lines(offer), logo)
    except Exception as e:
        logger.warning(f"Logo rejected by the renderer, drawing letterhead without it: {e}")
        letterhead = Letterhead(get_company_address_lines(offer))

    try:
        doc.build(build_story(offer), onFirstPage=letterhead, onLaterPages=letterhead)
    except Exception as e:
        raise DocumentGenerationError(
            message="Erreur lors de la génération du PDF",
            error_type="pdf_generation_error",
            details=str(e),
        )

    pdf_bytes = buffer.getvalue()
    logger.info(f"Offer PDF generated: {len(pdf_bytes)} bytes, letterhead '{offer.letterhead_key}'")
    return pdf_bytes

import io
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from PIL import Image, UnidentifiedImageError
from PyPDF2 import PdfReader, PdfWriter
from PyPDF2.errors import PdfReadError
from reportlab.lib import colors
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas

logger = logging.getLogger(__name__)

# Tried in order when decoding a captured signature
SIGNATURE_IMAGE_FORMATS = ("PNG", "JPEG")

DISCLAIMER_X = 36
DISCLAIMER_Y = 18
DISCLAIMER_FONT_SIZE = 7


def to_render_y(page_height: float, y_top: float, height: float) -> float:
    """
    Convert a rectangle's top edge measured from the top of the page into the
    bottom-left origin PDF renderers draw in.
    """
    return page_height - y_top - height


def decode_signature_image(data: bytes) -> Optional[ImageReader]:
    """
    Decode signature bytes as PNG, falling back to JPEG. Returns None when
    neither format can be read.
    """
    for image_format in SIGNATURE_IMAGE_FORMATS:
        try:
            image = Image.open(io.BytesIO(data), formats=[image_format])
            image.load()
            return ImageReader(image)
        except Image.DecompressionBombError as e:
            logger.warning(f"Signature image rejected by the pixel limit: {str(e)}")
            return None
        except (UnidentifiedImageError, OSError, SyntaxError, ValueError) as e:
            logger.debug(f"Signature image is not a valid {image_format}: {str(e)}")
    return None


def verify_signature_image(data: bytes) -> bool:
    """
    Check that bytes hold a readable PNG or JPEG within Pillow's pixel limit,
    without decoding the pixel data.
    """
    try:
        with Image.open(io.BytesIO(data), formats=list(SIGNATURE_IMAGE_FORMATS)) as image:
            image.verify()
        return True
    except (Image.DecompressionBombError, UnidentifiedImageError, OSError, SyntaxError, ValueError) as e:
        logger.warning(f"Signature image failed verification: {str(e)}")
        return False


def open_pdf(pdf_content: bytes) -> PdfReader:
    """
    Parse PDF bytes, rejecting empty or page-less documents
    """
    if not pdf_content or not pdf_content.startswith(b'%PDF'):
        raise ValueError("Content does not appear to be a valid PDF (missing %PDF header)")
    try:
        reader = PdfReader(io.BytesIO(pdf_content))
        if len(reader.pages) == 0:
            raise ValueError("PDF has no pages")
        return reader
    except PdfReadError as e:
        raise ValueError(f"Error reading PDF: {str(e)}") from e


def page_size(reader: PdfReader, page_index: int) -> Tuple[float, float]:
    box = reader.pages[page_index].mediabox
    return float(box.width), float(box.height)


@dataclass
class ImagePlacement:
    """An image to draw on a page, in renderer (bottom-left origin) coordinates"""
    page_index: int
    image: ImageReader
    x: float
    y: float
    width: float
    height: float


def _build_overlay(page_dimensions: Tuple[float, float], placements: Sequence[ImagePlacement],
                   opacity: float, disclaimer: Optional[str]) -> PdfReader:
    buffer = io.BytesIO()
    c = canvas.Canvas(buffer, pagesize=page_dimensions)

    c.saveState()
    # Images are painted with the non-stroking alpha
    c.setFillAlpha(opacity)
    for placement in placements:
        c.drawImage(
            placement.image,
            placement.x,
            placement.y,
            width=placement.width,
            height=placement.height,
            mask="auto",
        )
    c.restoreState()

    if disclaimer:
        c.setFont("Helvetica", DISCLAIMER_FONT_SIZE)
        c.setFillColor(colors.grey)
        c.drawString(DISCLAIMER_X, DISCLAIMER_Y, disclaimer)

    c.showPage()
    c.save()
    buffer.seek(0)
    return PdfReader(buffer)


def compose_pdf(reader: PdfReader, placements: Sequence[ImagePlacement],
                disclaimer: Optional[str], opacity: float) -> bytes:
    """
    Merge one overlay per touched page onto the original pages and serialize the
    result. The first page always receives the disclaimer.
    """
    by_page: dict = defaultdict(list)
    for placement in placements:
        by_page[placement.page_index].append(placement)

    pdf_writer = PdfWriter()
    for index, page in enumerate(reader.pages):
        page_placements: List[ImagePlacement] = by_page.get(index, [])
        page_disclaimer = disclaimer if index == 0 else None

        if page_placements or page_disclaimer:
            overlay = _build_overlay(page_size(reader, index), page_placements, opacity, page_disclaimer)
            page.merge_page(overlay.pages[0])

        pdf_writer.add_page(page)

    output_buffer = io.BytesIO()
    pdf_writer.write(output_buffer)
    return output_buffer.getvalue()

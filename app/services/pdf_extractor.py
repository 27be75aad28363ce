"""Positioned text extraction from PDF bytes with pypdf."""

import io
import logging
import math
from dataclasses import dataclass

from pypdf import PdfReader
from pypdf.errors import PdfReadError

from app.exceptions.chat import DocumentValidationError
from app.services.layout import Paragraph, TextFragment, construct_layout, page_texts

logger = logging.getLogger(__name__)


@dataclass
class ExtractedPDF:
    num_pages: int
    paragraphs: list[Paragraph]
    pages: dict[int, str]

    @property
    def has_text(self) -> bool:
        return any(text.strip() for text in self.pages.values())


def _fragment_position(cm: list[float], tm: list[float]) -> tuple[float, float]:
    # Device position of the text origin: translation part of tm x cm.
    x = tm[4] * cm[0] + tm[5] * cm[2] + cm[4]
    y = tm[4] * cm[1] + tm[5] * cm[3] + cm[5]
    return x, y


def _effective_font_size(font_size: float | None, tm: list[float]) -> float | None:
    if not font_size:
        return None
    scale = math.hypot(tm[2], tm[3]) or 1.0
    return abs(font_size * scale)


def extract_fragments(content: bytes) -> tuple[list[TextFragment], int]:
    """Read every page and collect the text runs pypdf reports."""
    try:
        reader = PdfReader(io.BytesIO(content))
    except (PdfReadError, ValueError) as e:
        raise DocumentValidationError(f"Unreadable PDF: {e}") from e

    fragments: list[TextFragment] = []
    for page_number, page in enumerate(reader.pages, start=1):

        def visit(text, cm, tm, _font_dict, font_size, page_number=page_number):
            if not text or not text.strip():
                return
            x, y = _fragment_position(cm, tm)
            fragments.append(
                TextFragment(
                    page=page_number,
                    text=text.strip(),
                    x=x,
                    y=y,
                    font_size=_effective_font_size(font_size, tm),
                )
            )

        try:
            page.extract_text(visitor_text=visit)
        except Exception as e:
            # A single malformed page should not sink the whole document.
            logger.warning(f"Skipping page {page_number}: text extraction failed: {e}")
    return fragments, len(reader.pages)


def extract_pdf(content: bytes) -> ExtractedPDF:
    fragments, num_pages = extract_fragments(content)
    paragraphs = construct_layout(fragments, num_pages)
    return ExtractedPDF(num_pages=num_pages, paragraphs=paragraphs, pages=page_texts(paragraphs))

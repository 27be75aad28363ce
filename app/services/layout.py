"""Rebuild reading-order lines and paragraphs from positioned PDF text."""

from dataclasses import dataclass, field

LINE_TOLERANCE = 0.15
UNKNOWN_FONT_LINE_TOLERANCE = 2.0
PARAGRAPH_TOLERANCE = 1.5
DEFAULT_FONT_SIZE = 12.0


@dataclass
class TextFragment:
    """A run of text as placed on the page (PDF y grows upwards)."""

    page: int
    text: str
    x: float
    y: float
    font_size: float | None = None


@dataclass
class Line:
    text: str
    y_top: float
    y_bottom: float
    font_size: float | None
    line_number: int


@dataclass
class Paragraph:
    page: int
    paragraph_number: int
    text: str
    lines: list[Line] = field(default_factory=list)


def _line_threshold(font_size: float | None) -> float:
    if not font_size:
        return UNKNOWN_FONT_LINE_TOLERANCE
    return font_size * LINE_TOLERANCE


def _build_lines(fragments: list[TextFragment]) -> list[Line]:
    ordered = sorted(fragments, key=lambda f: (-f.y, f.x))
    lines: list[Line] = []
    current: list[TextFragment] = []
    last_y: float | None = None

    def close():
        ys = [f.y for f in current]
        lines.append(
            Line(
                text=" ".join(f.text for f in current),
                y_top=max(ys),
                y_bottom=min(ys),
                font_size=current[0].font_size,
                line_number=len(lines) + 1,
            )
        )

    for fragment in ordered:
        if current and abs(fragment.y - last_y) > _line_threshold(fragment.font_size):
            close()
            current = []
        current.append(fragment)
        last_y = fragment.y
    if current:
        close()
    return lines


def _build_paragraphs(page: int, lines: list[Line]) -> list[Paragraph]:
    paragraphs: list[Paragraph] = []
    current: list[Line] = []

    def close():
        paragraphs.append(
            Paragraph(
                page=page,
                paragraph_number=len(paragraphs) + 1,
                text=" ".join(line.text for line in current),
                lines=list(current),
            )
        )

    for line in lines:
        if current:
            gap = abs(line.y_top - current[-1].y_top)
            if gap > (line.font_size or DEFAULT_FONT_SIZE) * PARAGRAPH_TOLERANCE:
                close()
                current = []
        current.append(line)
    if current:
        close()
    return paragraphs


def construct_layout(fragments: list[TextFragment], num_pages: int) -> list[Paragraph]:
    """Group fragments into paragraphs for pages ``1..num_pages``.

    Within a page fragments are read top-to-bottom then left-to-right. A
    fragment joins the current line while its vertical offset from the
    previous fragment stays within 15% of its font size (2 units when the
    size is unknown). A line joins the current paragraph while its top is
    within 1.5x its font size (12 when unknown) of the previous line's top.
    Paragraph and line numbers restart at 1 on each page.
    """
    by_page: dict[int, list[TextFragment]] = {}
    for fragment in fragments:
        if fragment.text:
            by_page.setdefault(fragment.page, []).append(fragment)

    paragraphs: list[Paragraph] = []
    for page in range(1, num_pages + 1):
        page_fragments = by_page.get(page)
        if not page_fragments:
            continue
        paragraphs.extend(_build_paragraphs(page, _build_lines(page_fragments)))
    return paragraphs


def page_texts(paragraphs: list[Paragraph]) -> dict[int, str]:
    """Join each page's paragraphs with blank lines."""
    pages: dict[int, list[str]] = {}
    for paragraph in paragraphs:
        pages.setdefault(paragraph.page, []).append(paragraph.text)
    return {page: "\n\n".join(texts) for page, texts in pages.items()}

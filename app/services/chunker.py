"""Page-scoped overlapping text chunks."""

from dataclasses import dataclass

from langchain_text_splitters import RecursiveCharacterTextSplitter


@dataclass
class TextChunk:
    """A window of one page's text.

    ``start`` is the offset of the chunk in the page text and ``overlap`` the
    number of leading characters it shares with the previous chunk of the
    same page (0 for a page's first chunk).
    """

    page: int
    text: str
    start: int
    overlap: int = 0

    @property
    def end(self) -> int:
        return self.start + len(self.text)


class TextChunker:
    def __init__(self, chunk_size: int = 1000, chunk_overlap: int = 200):
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if chunk_overlap < 0 or chunk_overlap >= chunk_size:
            raise ValueError("chunk_overlap must be non-negative and smaller than chunk_size")
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        # Separators are kept and whitespace is not stripped so every chunk is
        # an exact substring of the page and offsets can be recovered.
        self._splitter = RecursiveCharacterTextSplitter(
            chunk_size=chunk_size,
            chunk_overlap=chunk_overlap,
            keep_separator=True,
            strip_whitespace=False,
        )

    def split_text(self, text: str, page: int = 1) -> list[TextChunk]:
        chunks: list[TextChunk] = []
        for piece in self._splitter.split_text(text):
            if chunks:
                previous = chunks[-1]
                # The next window starts inside the previous one's overlap tail.
                search_from = max(previous.start + 1, previous.end - self.chunk_overlap)
            else:
                search_from = 0
            start = text.find(piece, search_from)
            if start < 0:
                raise ValueError("Splitter produced text that is not part of the page")
            overlap = max(0, chunks[-1].end - start) if chunks else 0
            chunks.append(TextChunk(page=page, text=piece, start=start, overlap=overlap))
        return chunks

    def split_pages(self, pages: dict[int, str]) -> list[TextChunk]:
        """Split each page independently; chunks never span pages."""
        chunks: list[TextChunk] = []
        for page in sorted(pages):
            chunks.extend(self.split_text(pages[page], page=page))
        return chunks

    @staticmethod
    def reconstruct(chunks: list[TextChunk]) -> str:
        """Re-join one page's chunks with their overlaps removed."""
        return "".join(chunk.text[chunk.overlap:] for chunk in chunks)

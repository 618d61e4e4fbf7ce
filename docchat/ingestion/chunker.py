import logging
from typing import List, Sequence
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PageText:
    page_number: int
    text: str


@dataclass(frozen=True)
class ChunkResult:
    page_number: int
    chunk_index: int
    text: str
    preview: str


class DocumentChunker:
    """Fixed-window character chunker.

    Each page is cut into windows of at most ``chunk_size`` characters,
    consecutive windows sharing exactly ``chunk_overlap`` characters.
    Dropping the first ``chunk_overlap`` characters of every window but
    the first and joining the rest gives back the page text unchanged.
    Chunk indexes run across pages, so they are unique within a document.
    """

    def __init__(self, chunk_size: int = 2000, chunk_overlap: int = 200, preview_length: int = 200):
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        if not 0 <= chunk_overlap < chunk_size:
            raise ValueError(f"chunk_overlap ({chunk_overlap}) must be >= 0 and < chunk_size ({chunk_size})")
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self.preview_length = preview_length

    def chunk(self, pages: Sequence[PageText]) -> List[ChunkResult]:
        chunks: List[ChunkResult] = []
        for page in pages:
            for text in self._split(page.text):
                chunks.append(ChunkResult(
                    page_number=page.page_number,
                    chunk_index=len(chunks),
                    text=text,
                    preview=text[:self.preview_length],
                ))
        return chunks

    def _split(self, text: str) -> List[str]:
        step = self.chunk_size - self.chunk_overlap
        windows = []
        start = 0
        while start < len(text):
            end = start + self.chunk_size
            windows.append(text[start:end])
            if end >= len(text):
                break
            start += step
        return windows

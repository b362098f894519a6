"""
Boundary-aware text chunker for course materials.

Strategy:
1. Walk the text with a window of chunk_size characters.
2. Cut at the best boundary inside the second half of the window:
   paragraph break > sentence end > whitespace > hard cut.
3. Start the next window overlap characters before the cut, moved forward
   to the next word start, so consecutive chunks share context.

Offsets (start, end) index into the text passed to chunk(), so a chunk can
always be located in the material's stored content.
"""

import re
from dataclasses import dataclass
from typing import List

DEFAULT_CHUNK_SIZE = 1000   # characters
DEFAULT_OVERLAP = 100       # characters

SENTENCE_END = re.compile(r"[.!?](?=\s)")


@dataclass(frozen=True)
class TextChunk:
    """One chunk of a material's text."""
    text: str
    index: int
    start: int
    end: int


class TextChunker:
    """Splits material text into overlapping chunks for embedding."""

    def __init__(self, chunk_size: int = DEFAULT_CHUNK_SIZE, overlap: int = DEFAULT_OVERLAP):
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if overlap < 0 or overlap * 2 >= chunk_size:
            raise ValueError("overlap must be non-negative and less than half of chunk_size")
        self.chunk_size = chunk_size
        self.overlap = overlap

    def chunk(self, text: str) -> List[TextChunk]:
        if not text or not text.strip():
            return []

        chunks: List[TextChunk] = []
        length = len(text)
        start = self._skip_whitespace(text, 0)

        while start < length:
            end = min(start + self.chunk_size, length)
            if end < length:
                end = self._find_boundary(text, start, end)

            piece = text[start:end]
            stripped = piece.strip()
            if stripped:
                lead = len(piece) - len(piece.lstrip())
                chunk_start = start + lead
                chunks.append(TextChunk(
                    text=stripped,
                    index=len(chunks),
                    start=chunk_start,
                    end=chunk_start + len(stripped),
                ))

            if end >= length:
                break
            start = self._next_start(text, start, end)

        return chunks

    def _find_boundary(self, text: str, start: int, end: int) -> int:
        """Best cut position in (start + chunk_size/2, end]."""
        floor = start + self.chunk_size // 2

        paragraph = text.rfind("\n\n", floor, end)
        if paragraph != -1:
            return paragraph + 2

        last_sentence = None
        for match in SENTENCE_END.finditer(text, floor, end):
            last_sentence = match
        if last_sentence is not None:
            return last_sentence.end()

        for i in range(end - 1, floor - 1, -1):
            if text[i].isspace():
                return i + 1

        return end

    def _next_start(self, text: str, start: int, end: int) -> int:
        if self.overlap == 0:
            return self._skip_whitespace(text, end)
        candidate = max(end - self.overlap, start + 1)
        # Don't begin a chunk mid-word
        while candidate < end and not text[candidate - 1].isspace():
            candidate += 1
        return self._skip_whitespace(text, candidate)

    @staticmethod
    def _skip_whitespace(text: str, pos: int) -> int:
        while pos < len(text) and text[pos].isspace():
            pos += 1
        return pos


def chunk_text(text: str, chunk_size: int = DEFAULT_CHUNK_SIZE, overlap: int = DEFAULT_OVERLAP) -> List[TextChunk]:
    """Module-level shortcut."""
    return TextChunker(chunk_size, overlap).chunk(text)

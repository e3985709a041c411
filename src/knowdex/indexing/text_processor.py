"""Split extracted text into overlapping chunks sized for the embedding model."""

from __future__ import annotations

import re
from dataclasses import dataclass

from knowdex.config import ChunkingCfg
from knowdex.db.models import TextSegment
from knowdex.embedding import model_token_limit

# Fraction of the model's token limit a chunk may use, and chars per token.
_SAFETY_RATIO = 0.3
_CHARS_PER_TOKEN = 2
_MIN_CHUNK_CHARS = 500
_MIN_OVERLAP_CHARS = 50

# One match per line, newline included; the last line may lack one.
_LINE_RE = re.compile(r"[^\n]*\n|[^\n]+$")


@dataclass(frozen=True)
class LineChunk:
    """A chunk of text with the 1-based, inclusive line range it covers."""

    text: str
    start_line: int
    end_line: int


class TextProcessor:
    """Sliding-window chunker.

    Chunk size is derived from the embedding model's token limit
    (``token_limit * 0.3 * 2`` characters, clamped to
    ``[500, max_chars_per_chunk]``) so swapping models changes chunk
    granularity. Without a token limit the configured maximum is used.
    """

    def __init__(
        self,
        token_limit: int | None = None,
        *,
        max_chars_per_chunk: int = 4_000,
        overlap: float = 0.05,
        max_overlap_chars: int = 200,
    ) -> None:
        if max_chars_per_chunk < 1:
            raise ValueError("max_chars_per_chunk must be >= 1")
        if not 0.0 <= overlap < 1.0:
            raise ValueError("overlap must be in [0.0, 1.0)")

        if token_limit:
            derived = int(token_limit * _SAFETY_RATIO * _CHARS_PER_TOKEN)
            self.chunk_size = min(max(derived, _MIN_CHUNK_CHARS), max_chars_per_chunk)
        else:
            self.chunk_size = max_chars_per_chunk

        overlap_chars = int(self.chunk_size * overlap)
        if overlap > 0:
            overlap_chars = max(overlap_chars, _MIN_OVERLAP_CHARS)
        self.overlap_chars = min(overlap_chars, max_overlap_chars, self.chunk_size // 2)

    @classmethod
    def for_model(cls, model: str, cfg: ChunkingCfg) -> TextProcessor:
        """Build a processor sized for the embedding *model*."""
        return cls(
            model_token_limit(model),
            max_chars_per_chunk=cfg.max_chars_per_chunk,
            overlap=cfg.overlap,
            max_overlap_chars=cfg.max_overlap_chars,
        )

    # ------------------------------------------------------------------
    # Plain chunking
    # ------------------------------------------------------------------

    def chunk_text(self, text: str) -> list[str]:
        """Split *text* into overlapping windows.

        Blank text yields no chunks; text that fits in one window yields
        exactly one chunk equal to the input. Blank windows are dropped.
        """
        if not text.strip():
            return []
        if len(text) <= self.chunk_size:
            return [text]

        step = max(1, self.chunk_size - self.overlap_chars)
        chunks: list[str] = []
        pos = 0
        length = len(text)
        while pos < length:
            end = min(pos + self.chunk_size, length)
            window = text[pos:end]
            if window.strip():
                chunks.append(window)
            if end >= length:
                break
            pos += step
        return chunks

    # ------------------------------------------------------------------
    # Line-tracked chunking
    # ------------------------------------------------------------------

    def chunk_text_with_line_numbers(self, text: str) -> list[LineChunk]:
        """Split *text* on line boundaries, recording 1-based line ranges.

        Whole lines are accumulated until the next line would overflow the
        window. The next chunk starts with as many trailing lines of the
        previous one as fit the overlap budget, never all of them, so each
        chunk starts on a later line than the one before. A line longer than
        a window is split into pieces that each report that line as both
        start and end.
        """
        if not text.strip():
            return []
        lines = _LINE_RE.findall(text)
        if len(text) <= self.chunk_size:
            return [LineChunk(text, 1, len(lines))]

        chunks: list[LineChunk] = []
        current: list[tuple[int, str]] = []
        current_len = 0

        for number, line in enumerate(lines, start=1):
            if len(line) > self.chunk_size:
                self._emit(chunks, current)
                current, current_len = [], 0
                for start in range(0, len(line), self.chunk_size):
                    piece = line[start : start + self.chunk_size]
                    if piece.strip():
                        chunks.append(LineChunk(piece, number, number))
                continue

            if current and current_len + len(line) > self.chunk_size:
                self._emit(chunks, current)
                current = self._overlap_tail(current, len(line))
                current_len = sum(len(t) for _, t in current)

            current.append((number, line))
            current_len += len(line)

        self._emit(chunks, current)
        return chunks

    def _overlap_tail(
        self, lines: list[tuple[int, str]], next_len: int
    ) -> list[tuple[int, str]]:
        """Trailing lines of *lines* to carry into the next chunk."""
        tail: list[tuple[int, str]] = []
        total = 0
        # Never carry the first line, so the next chunk starts later.
        for number, line in reversed(lines[1:]):
            size = len(line)
            if total + size > self.overlap_chars or total + size + next_len > self.chunk_size:
                break
            tail.insert(0, (number, line))
            total += size
        return tail

    @staticmethod
    def _emit(chunks: list[LineChunk], lines: list[tuple[int, str]]) -> None:
        if not lines:
            return
        text = "".join(t for _, t in lines)
        if text.strip():
            chunks.append(LineChunk(text, lines[0][0], lines[-1][0]))

    # ------------------------------------------------------------------
    # Segments
    # ------------------------------------------------------------------

    @staticmethod
    def create_text_segment(text: str, metadata: dict[str, str]) -> TextSegment:
        return TextSegment(text=text, metadata=dict(metadata))

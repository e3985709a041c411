"""Tests for the sliding-window TextProcessor."""

from __future__ import annotations

import pytest

from knowdex.config import ChunkingCfg
from knowdex.indexing.text_processor import LineChunk, TextProcessor


@pytest.fixture
def processor():
    # chunk_size 100, overlap capped at 30 chars
    return TextProcessor(None, max_chars_per_chunk=100, overlap=0.2, max_overlap_chars=30)


def _numbered_lines(n: int) -> str:
    return "".join(f"line {i:02d}\n" for i in range(1, n + 1))


# ------------------------------------------------------------------
# Sizing
# ------------------------------------------------------------------


def test_sizing_without_token_limit(processor):
    assert processor.chunk_size == 100
    assert processor.overlap_chars == 30


def test_sizing_derived_from_token_limit():
    assert TextProcessor(1_000, max_chars_per_chunk=4_000).chunk_size == 600
    # Tiny limits are clamped up, large ones capped by max_chars_per_chunk.
    assert TextProcessor(100, max_chars_per_chunk=4_000).chunk_size == 500
    assert TextProcessor(100_000, max_chars_per_chunk=4_000).chunk_size == 4_000


def test_zero_overlap():
    p = TextProcessor(None, max_chars_per_chunk=100, overlap=0.0)
    assert p.overlap_chars == 0


def test_for_model_unknown_model_uses_configured_maximum():
    cfg = ChunkingCfg(max_chars_per_chunk=600, overlap=0.1, max_overlap_chars=100)
    p = TextProcessor.for_model("fake/embed", cfg)
    assert p.chunk_size == 600
    assert p.overlap_chars == 60


@pytest.mark.parametrize("kwargs", [{"max_chars_per_chunk": 0}, {"overlap": 1.0}, {"overlap": -0.5}])
def test_invalid_settings_raise(kwargs):
    with pytest.raises(ValueError):
        TextProcessor(None, **kwargs)


# ------------------------------------------------------------------
# chunk_text
# ------------------------------------------------------------------


@pytest.mark.parametrize("text", ["", "   ", "\n\n\t\n"])
def test_blank_text_yields_no_chunks(processor, text):
    assert processor.chunk_text(text) == []
    assert processor.chunk_text_with_line_numbers(text) == []


def test_short_text_single_chunk(processor):
    assert processor.chunk_text("hello world") == ["hello world"]


def test_chunk_text_windows_overlap(processor):
    text = "".join(chr(ord("a") + i % 26) for i in range(250))
    chunks = processor.chunk_text(text)
    assert len(chunks) == 4
    assert all(len(c) <= 100 for c in chunks)
    assert chunks[0] == text[:100]
    assert chunks[1][:30] == chunks[0][-30:]
    assert chunks[-1] == text[210:]


def test_chunk_text_drops_blank_windows(processor):
    text = "x" * 90 + " " * 200 + "y" * 50
    chunks = processor.chunk_text(text)
    assert all(c.strip() for c in chunks)
    assert chunks[-1].endswith("y" * 50)


# ------------------------------------------------------------------
# chunk_text_with_line_numbers
# ------------------------------------------------------------------


def test_short_text_single_line_chunk(processor):
    assert processor.chunk_text_with_line_numbers("a\nb\nc") == [LineChunk("a\nb\nc", 1, 3)]


def test_line_chunks_cover_whole_lines(processor):
    text = _numbered_lines(40)  # 8 chars per line
    lines = text.splitlines(keepends=True)
    chunks = processor.chunk_text_with_line_numbers(text)

    assert chunks[0].start_line == 1
    assert chunks[0].end_line == 12
    assert chunks[-1].end_line == 40
    for chunk in chunks:
        assert len(chunk.text) <= 100
        assert chunk.text == "".join(lines[chunk.start_line - 1 : chunk.end_line])


def test_line_chunks_overlap_and_advance(processor):
    chunks = processor.chunk_text_with_line_numbers(_numbered_lines(40))
    # Three 8-char lines fit the 30-char overlap budget.
    assert chunks[1].start_line == 10
    starts = [c.start_line for c in chunks]
    assert starts == sorted(set(starts))
    for prev, nxt in zip(chunks, chunks[1:]):
        assert nxt.start_line <= prev.end_line + 1


def test_overlong_line_split_in_place(processor):
    text = "short\n" + "z" * 250 + "\nafter\n"
    chunks = processor.chunk_text_with_line_numbers(text)
    long_pieces = [c for c in chunks if c.start_line == 2]
    assert all(c.end_line == 2 for c in long_pieces)
    assert "".join(c.text for c in long_pieces) == "z" * 250 + "\n"
    assert chunks[0] == LineChunk("short\n", 1, 1)
    assert chunks[-1].text == "after\n"
    assert chunks[-1].start_line == 3


def test_create_text_segment_copies_metadata():
    meta = {"file_path": "/a"}
    seg = TextProcessor.create_text_segment("body", meta)
    meta["file_path"] = "/changed"
    assert seg.metadata == {"file_path": "/a"}

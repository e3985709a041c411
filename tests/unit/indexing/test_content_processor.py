"""Tests for ResourceContentProcessor and path helpers."""

from __future__ import annotations

import os

import pytest

from knowdex.indexing.content_processor import (
    ResourceContentProcessor,
    file_metadata,
    normalize_path,
)
from knowdex.indexing.text_processor import TextProcessor


@pytest.fixture
def processor():
    return ResourceContentProcessor(
        TextProcessor(None, max_chars_per_chunk=100, overlap=0.2, max_overlap_chars=30)
    )


def test_normalize_path_is_absolute_posix(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    result = normalize_path("docs/a.md")
    assert result == (tmp_path / "docs" / "a.md").as_posix()
    assert os.path.isabs(result)


def test_normalize_path_collapses_dot_segments(tmp_path):
    assert normalize_path(tmp_path / "x" / ".." / "a.md") == (tmp_path / "a.md").as_posix()


def test_file_metadata(tmp_path):
    meta = file_metadata(tmp_path / "Report.PDF")
    assert meta == {
        "file_path": (tmp_path / "Report.PDF").as_posix(),
        "file_name": "Report.PDF",
        "extension": "pdf",
    }


def test_text_like_segments_carry_line_ranges(processor):
    text = "".join(f"line {i:02d}\n" for i in range(1, 41))
    segments = processor.build_segments(text, text_like=True, base_metadata={"file_path": "/a.txt"})

    assert len(segments) > 1
    assert [s.chunk_index for s in segments] == list(range(len(segments)))
    assert all(s.chunk_total == len(segments) for s in segments)
    assert segments[0].start_line == 1
    assert segments[-1].end_line == 40
    assert all(s.file_path == "/a.txt" for s in segments)


def test_non_text_segments_have_no_line_numbers(processor):
    segments = processor.build_segments(
        "word " * 60, text_like=False, base_metadata={"file_path": "/doc.pdf"}
    )
    assert len(segments) == 4
    assert all(s.start_line is None and s.end_line is None for s in segments)
    assert [s.metadata["chunk_index"] for s in segments] == ["0", "1", "2", "3"]


def test_blank_text_yields_no_segments(processor):
    assert processor.build_segments("  \n", text_like=True, base_metadata={}) == []
    assert processor.build_segments("", text_like=False, base_metadata={}) == []


def test_base_metadata_not_mutated(processor):
    base = {"file_path": "/a.txt"}
    processor.build_segments("hello", text_like=True, base_metadata=base)
    assert base == {"file_path": "/a.txt"}

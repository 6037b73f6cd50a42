"""Chunker interfaces, the text and code strategies, and content validation.

Chunkers take raw document text and return a list of dicts with ``text`` and
``chunk_index`` keys; indexes are contiguous from 0 over the chunks actually
returned (whitespace-only slices are dropped).
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol

from ragstore.config import config
from ragstore.utils.exceptions import BinaryContentError, EmptyContentError, FileTooLargeError

# Control characters allowed in text: tab, newline, carriage return
_ALLOWED_CONTROL = {9, 10, 13}


class BaseChunker(Protocol):
    def chunk(self, text: str) -> List[Dict[str, Any]]:
        ...


def _normalize_newlines(text: str) -> str:
    return text.replace("\r\n", "\n")


class OverlapChunker:
    """Fixed-size character windows sharing ``overlap`` characters with the previous one."""

    def __init__(self, chunk_size: Optional[int] = None, overlap: Optional[int] = None):
        self.chunk_size = chunk_size or int(config.get("chunking.text_chunk_size", 1000))
        self.overlap = overlap if overlap is not None else int(config.get("chunking.text_chunk_overlap", 200))

    def chunk(self, text: str) -> List[Dict[str, Any]]:
        normalized = _normalize_newlines(text)
        chunks: List[Dict[str, Any]] = []
        overlap = min(self.overlap, self.chunk_size)
        start = 0
        while start < len(normalized):
            end = min(start + self.chunk_size, len(normalized))
            trimmed = normalized[start:end].strip()
            if trimmed:
                chunks.append({"text": trimmed, "chunk_index": len(chunks), "chunk_type": "text"})
            if end == len(normalized):
                break
            # Always move forward, even when overlap equals the chunk size
            start = max(end - overlap, start + 1)
        return chunks


class CodeChunker:
    """Line windows for source code, sharing ``line_overlap`` lines between neighbours."""

    def __init__(self, max_lines: Optional[int] = None, line_overlap: Optional[int] = None):
        self.max_lines = max_lines or int(config.get("chunking.code_max_lines", 80))
        self.line_overlap = (
            line_overlap if line_overlap is not None else int(config.get("chunking.code_line_overlap", 10))
        )

    def chunk(self, text: str) -> List[Dict[str, Any]]:
        lines = _normalize_newlines(text).split("\n")
        chunks: List[Dict[str, Any]] = []
        start = 0
        while start < len(lines):
            end = min(start + self.max_lines, len(lines))
            joined = "\n".join(lines[start:end]).strip()
            if joined:
                chunks.append(
                    {
                        "text": joined,
                        "chunk_index": len(chunks),
                        "chunk_type": "code",
                        "line_start": start,
                        "line_end": end - 1,
                    }
                )
            if end == len(lines):
                break
            start = max(end - self.line_overlap, start + 1)
        return chunks


@dataclass
class ChunkerFactory:
    """Pick a chunker for a document kind."""

    text_chunk_size: Optional[int] = None
    text_chunk_overlap: Optional[int] = None
    code_max_lines: Optional[int] = None
    code_line_overlap: Optional[int] = None

    def for_kind(self, kind: Optional[str]) -> BaseChunker:
        if (kind or "").lower() == "code":
            return CodeChunker(self.code_max_lines, self.code_line_overlap)
        return OverlapChunker(self.text_chunk_size, self.text_chunk_overlap)


def is_binary_content(content: str) -> bool:
    """Null bytes, or more than 1% control characters other than tab/newline/CR."""
    if "\0" in content:
        return True
    non_printable = sum(1 for ch in content if ord(ch) < 32 and ord(ch) not in _ALLOWED_CONTROL)
    return non_printable > len(content) // 100


def validate_content(content: str, max_size_bytes: Optional[int] = None) -> None:
    """Raise an IndexingError subclass if ``content`` should not be indexed."""
    limit = max_size_bytes or int(config.get("chunking.max_file_size_bytes", 10_000_000))
    size = len(content.encode("utf-8"))
    if size > limit:
        raise FileTooLargeError(size=size, limit=limit)
    if is_binary_content(content):
        raise BinaryContentError()
    if not content.strip():
        raise EmptyContentError()


__all__ = [
    "BaseChunker",
    "OverlapChunker",
    "CodeChunker",
    "ChunkerFactory",
    "is_binary_content",
    "validate_content",
]

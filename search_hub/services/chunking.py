"""Markdown-aware chunking for embeddings and full-text search.

Content is split into blocks (headings, paragraphs, lists, fenced code,
thematic breaks). Headings, pseudo-headings and thematic breaks start a
new chunk; otherwise blocks accumulate until ``chunk_size`` characters of
search text, with the trailing ``overlap_blocks`` non-boundary blocks
carried into the next chunk. Output is deterministic for a given input.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 2000
DEFAULT_OVERLAP_BLOCKS = 1
MAX_HEADING_DEPTH = 3

_HEADING_RE = re.compile(r"^(#{1,6})\s+(.*?)\s*#*\s*$")
_FENCE_RE = re.compile(r"^\s*(```|~~~)")
_THEMATIC_BREAK_RE = re.compile(r"^\s*([-*_])(?:\s*\1){2,}\s*$")
_LIST_MARKER_RE = re.compile(r"^\s*(?:[-*+]|\d+[.)])\s+(?:\[[ xX]\]\s+)?")
_LINK_RE = re.compile(r"!?\[([^\]]*)\]\([^)]*\)")
_INLINE_MARKUP_RE = re.compile(r"(\*\*|__|\*|_|`|~~)")
_PSEUDO_OPENER_RE = re.compile(
    r"^(when|why|how|example|examples|templates?|core idea|invariants?|notes?)\b", re.IGNORECASE
)


@dataclass
class MarkdownChunk:
    idx: int
    raw_markdown: str
    search_text: str
    heading_path: List[str] = field(default_factory=list)


@dataclass
class _Section:
    markdown: str
    search_text: str
    heading_path: List[str]
    is_boundary: bool


def _normalize_prose(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


def _strip_inline(text: str) -> str:
    text = _LINK_RE.sub(r"\1", text)
    return _INLINE_MARKUP_RE.sub("", text)


def _split_blocks(markdown: str) -> List[tuple[str, str]]:
    """Split raw markdown into ``(kind, text)`` blocks."""
    blocks: List[tuple[str, str]] = []
    paragraph: List[str] = []
    lines = markdown.replace("\r\n", "\n").replace("\r", "\n").split("\n")

    def flush_paragraph() -> None:
        if paragraph:
            text = "\n".join(paragraph).strip()
            if text:
                kind = "list" if _LIST_MARKER_RE.match(paragraph[0]) else "paragraph"
                blocks.append((kind, text))
            paragraph.clear()

    i = 0
    while i < len(lines):
        line = lines[i]
        fence = _FENCE_RE.match(line)
        if fence:
            flush_paragraph()
            marker = fence.group(1)
            code_lines = [line]
            i += 1
            while i < len(lines):
                code_lines.append(lines[i])
                if lines[i].strip().startswith(marker):
                    break
                i += 1
            blocks.append(("code", "\n".join(code_lines)))
            i += 1
            continue
        if _HEADING_RE.match(line):
            flush_paragraph()
            blocks.append(("heading", line.strip()))
        elif _THEMATIC_BREAK_RE.match(line):
            flush_paragraph()
            blocks.append(("break", line.strip()))
        elif not line.strip():
            flush_paragraph()
        else:
            paragraph.append(line)
        i += 1
    flush_paragraph()
    return blocks


def _is_pseudo_heading(text: str) -> bool:
    plain = _strip_inline(text).strip()
    if not plain or len(plain) > 120 or "\n" in text.strip():
        return False
    if plain.endswith(":"):
        return True
    if _PSEUDO_OPENER_RE.match(plain):
        return True
    stripped = text.lstrip()
    if stripped.startswith(("**", "__", "*", "_", "`")):
        return len(plain) <= 80
    return False


def _search_text(kind: str, text: str) -> str:
    if kind == "code":
        body = text.split("\n")[1:]
        if body and _FENCE_RE.match(body[-1]):
            body = body[:-1]
        return "\n".join(body).strip()
    if kind == "list":
        items = [_normalize_prose(_strip_inline(_LIST_MARKER_RE.sub("", line))) for line in text.split("\n")]
        return "\n".join(item for item in items if item)
    return _normalize_prose(_strip_inline(text))


def _split_long_text(text: str, chunk_size: int) -> List[str]:
    """Break oversized text near ``chunk_size`` at sentence or word boundaries."""
    pieces: List[str] = []
    remaining = text
    while len(remaining) > chunk_size:
        window = remaining[:chunk_size]
        cut = max(window.rfind(". "), window.rfind("\n"))
        if cut < chunk_size // 2:
            cut = window.rfind(" ")
        if cut <= 0:
            cut = chunk_size
        pieces.append(remaining[: cut + 1].strip())
        remaining = remaining[cut + 1 :]
    if remaining.strip():
        pieces.append(remaining.strip())
    return [piece for piece in pieces if piece]


def _sections(markdown: str, chunk_size: int) -> List[_Section]:
    sections: List[_Section] = []
    heading_stack: List[tuple[int, str]] = []
    pseudo: Optional[str] = None

    def path(extra: Optional[str] = None) -> List[str]:
        base = [title for depth, title in heading_stack if depth <= MAX_HEADING_DEPTH]
        label = extra or pseudo
        return base + [label] if label else base

    for kind, text in _split_blocks(markdown):
        if kind == "heading":
            match = _HEADING_RE.match(text)
            depth, title = len(match.group(1)), _strip_inline(match.group(2)).strip()
            while heading_stack and heading_stack[-1][0] >= depth:
                heading_stack.pop()
            heading_stack.append((depth, title))
            pseudo = None
            sections.append(_Section(text, _normalize_prose(title), path(), True))
            continue
        if kind == "break":
            pseudo = None
            sections.append(_Section(text, "", path(), True))
            continue
        if kind == "paragraph" and _is_pseudo_heading(text):
            label = _strip_inline(text).strip().rstrip(":").strip()
            pseudo = label
            sections.append(_Section(text, _normalize_prose(_strip_inline(text)), path(label), True))
            continue

        search_text = _search_text(kind, text)
        if len(search_text) > chunk_size:
            for piece in _split_long_text(search_text, chunk_size):
                sections.append(_Section(piece, piece, path(), False))
        elif text.strip() or search_text:
            sections.append(_Section(text.strip(), search_text, path(), False))
    return sections


def _merge(sections: List[_Section], chunk_size: int, overlap_blocks: int) -> List[MarkdownChunk]:
    chunks: List[MarkdownChunk] = []
    buffer: List[_Section] = []

    def joined(items: List[_Section]) -> str:
        return "\n\n".join(section.search_text for section in items if section.search_text)

    def flush() -> None:
        search_text = joined(buffer).strip()
        if not search_text:
            return
        boundary = next((s for s in buffer if s.is_boundary and s.heading_path), None)
        chunks.append(
            MarkdownChunk(
                idx=len(chunks),
                raw_markdown="\n\n".join(s.markdown for s in buffer if s.markdown).strip(),
                search_text=search_text,
                heading_path=list((boundary or buffer[0]).heading_path),
            )
        )

    for section in sections:
        if section.is_boundary and buffer:
            flush()
            buffer = [section]
            continue
        if buffer and len(joined(buffer + [section])) > chunk_size:
            flush()
            carry = [s for s in buffer if not s.is_boundary and s.search_text]
            carry = carry[len(carry) - overlap_blocks :] if overlap_blocks > 0 else []
            buffer = carry + [section]
            continue
        buffer.append(section)

    if buffer:
        flush()
    return chunks


def chunk_markdown(
    markdown: str,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    overlap_blocks: int = DEFAULT_OVERLAP_BLOCKS,
) -> List[MarkdownChunk]:
    if not markdown or not markdown.strip():
        return []
    chunks = _merge(_sections(markdown, chunk_size), chunk_size, overlap_blocks)
    logger.debug("chunking.completed chunks=%s chars=%s", len(chunks), len(markdown))
    return chunks

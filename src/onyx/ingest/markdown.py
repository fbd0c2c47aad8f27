"""Markdown chunker: heading-aware sections with paragraph-level sub-splits."""

from __future__ import annotations

import re
from dataclasses import dataclass

from onyx.tokens import estimate_tokens

DEFAULT_MAX_TOKENS = 512
DEFAULT_OVERLAP_TOKENS = 50

# H1 through H6 at the start of a line.
_HEADING_RE = re.compile(r"^(#{1,6})\s+(.+)$")
_PARAGRAPH_SPLIT_RE = re.compile(r"\n\n+")


@dataclass(frozen=True)
class ChunkDraft:
    """A chunk produced by the chunker, not yet persisted."""

    content: str
    heading_path: str
    chunk_index: int
    token_count: int


@dataclass
class _Section:
    content: str
    heading_path: str


def chunk_markdown(
    markdown: str,
    max_tokens: int = DEFAULT_MAX_TOKENS,
    overlap_tokens: int = DEFAULT_OVERLAP_TOKENS,
) -> list[ChunkDraft]:
    """Split *markdown* into heading-aware chunks.

    Strategy:
    - Walk the lines, keeping a stack of open headings. A heading of level L
      closes every open heading of level >= L and opens a new section whose
      path is the stack rendered as ``"# A > ## B"``.
    - Heading lines themselves are not part of the section content; empty
      sections (e.g. a heading directly followed by another) emit nothing.
    - A document without headings is a single section with an empty path.
    - CRLF and lone CR line endings are read as LF, so content comes back
      with LF endings.
    - Sections above ``max_tokens`` are re-packed on paragraph boundaries;
      each new sub-chunk starts with the trailing paragraphs of the previous
      one, up to ``overlap_tokens``. A single paragraph larger than
      ``max_tokens`` is kept whole.

    Returns:
        Chunks with sequential ``chunk_index`` starting at 0.

    Raises:
        ValueError: if ``max_tokens < 1`` or ``overlap_tokens`` is outside
            ``[0, max_tokens)``.
    """
    if max_tokens < 1:
        raise ValueError("max_tokens must be >= 1")
    if not 0 <= overlap_tokens < max_tokens:
        raise ValueError("overlap_tokens must be >= 0 and < max_tokens")

    markdown = markdown.replace("\r\n", "\n").replace("\r", "\n")
    drafts: list[ChunkDraft] = []
    for section in _split_on_headings(markdown):
        token_count = estimate_tokens(section.content)
        if token_count <= max_tokens:
            pieces = [section.content]
        else:
            pieces = _sub_split(section.content, max_tokens, overlap_tokens)
        for piece in pieces:
            drafts.append(
                ChunkDraft(
                    content=piece,
                    heading_path=section.heading_path,
                    chunk_index=len(drafts),
                    token_count=estimate_tokens(piece),
                )
            )
    return drafts


class MarkdownChunker:
    """Chunker bound to a fixed token budget (see ``chunk_markdown``)."""

    def __init__(
        self,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        overlap_tokens: int = DEFAULT_OVERLAP_TOKENS,
    ) -> None:
        if max_tokens < 1:
            raise ValueError("max_tokens must be >= 1")
        if not 0 <= overlap_tokens < max_tokens:
            raise ValueError("overlap_tokens must be >= 0 and < max_tokens")
        self.max_tokens = max_tokens
        self.overlap_tokens = overlap_tokens

    def chunk(self, markdown: str) -> list[ChunkDraft]:
        return chunk_markdown(markdown, self.max_tokens, self.overlap_tokens)


def _split_on_headings(markdown: str) -> list[_Section]:
    sections: list[_Section] = []
    stack: list[tuple[int, str]] = []
    lines: list[str] = []

    def flush() -> None:
        content = "\n".join(lines).strip()
        if content:
            path = " > ".join(f"{'#' * level} {text}" for level, text in stack)
            sections.append(_Section(content=content, heading_path=path))
        lines.clear()

    for line in markdown.split("\n"):
        match = _HEADING_RE.match(line)
        if match is None:
            lines.append(line)
            continue
        flush()
        level = len(match.group(1))
        while stack and stack[-1][0] >= level:
            stack.pop()
        stack.append((level, match.group(2).strip()))

    flush()
    return sections


def _sub_split(text: str, max_tokens: int, overlap_tokens: int) -> list[str]:
    """Greedy paragraph packing with trailing-paragraph overlap."""
    result: list[str] = []
    current: list[str] = []
    current_tokens = 0

    for para in _PARAGRAPH_SPLIT_RE.split(text):
        para_tokens = estimate_tokens(para)

        if current and current_tokens + para_tokens > max_tokens:
            result.append("\n\n".join(current))

            overlap: list[str] = []
            overlap_count = 0
            for prev in reversed(current):
                t = estimate_tokens(prev)
                if overlap_count + t > overlap_tokens:
                    break
                overlap.insert(0, prev)
                overlap_count += t

            current = [*overlap, para]
            current_tokens = overlap_count + para_tokens
        else:
            current.append(para)
            current_tokens += para_tokens

    if current:
        result.append("\n\n".join(current))
    return result

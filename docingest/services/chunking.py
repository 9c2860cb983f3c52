"""Document chunking service."""

import logging
import re
from typing import List, NamedTuple, Optional, Tuple

from docingest.core.config import Settings, settings as default_settings
from docingest.models.document import Chunk

logger = logging.getLogger(__name__)

SENTENCE_TERMINATORS = ".!?"
SENTENCE_WINDOW = 100
PARAGRAPH_BREAK = "\n\n"
PARAGRAPH_WINDOW = 200
CODE_FENCE = "```"
CODE_INDENTS = ("    ", "\t")
CODE_BLOCK_ALLOWANCE = 1.5

CHUNKING_STRATEGIES = ("fixed", "semantic", "hybrid")

_HEADER_PATTERN = re.compile(
    r"^(?:#{1,6}[ \t]+(?P<atx>[^\n]+?)[ \t#]*"
    r"|(?P<setext>[^\n]*\S[^\n]*)\n(?:={2,}|-{2,})[ \t]*)$",
    re.MULTILINE,
)


class Section(NamedTuple):
    """A heading-delimited slice of a document."""

    content: str
    header: Optional[str] = None


def _code_block_bounds(text: str, position: int) -> Optional[Tuple[int, int]]:
    """Return the ``(start, end)`` of the code block containing ``position``, if any."""
    if text.count(CODE_FENCE, 0, position) % 2:
        opening = text.rfind(CODE_FENCE, 0, position)
        closing = text.find(
            CODE_FENCE, max(opening + len(CODE_FENCE), position - len(CODE_FENCE) + 1))
        return opening, len(text) if closing == -1 else closing + len(CODE_FENCE)

    line_start = text.rfind("\n", 0, position) + 1
    if not text.startswith(CODE_INDENTS, line_start):
        return None

    block_start = line_start
    while block_start > 0:
        previous = text.rfind("\n", 0, block_start - 1) + 1
        if not text.startswith(CODE_INDENTS, previous):
            break
        block_start = previous

    # Blank lines do not end an indented block.
    block_end = text.find("\n", position)
    while block_end != -1:
        next_end = text.find("\n", block_end + 1)
        line = text[block_end + 1:len(text) if next_end == -1 else next_end]
        if line.strip() and not line.startswith(CODE_INDENTS):
            return block_start, block_end + 1
        block_end = next_end
    return block_start, len(text)


def _find_break(text: str, start: int, end: int, max_chunk_size: int, reach: int) -> int:
    """
    Pick the exclusive end of the chunk that starts at ``start``.

    Args:
        text: Text being split.
        start: Offset of the chunk.
        end: Hard boundary, ``start + max_chunk_size``.
        max_chunk_size: Maximum characters per chunk.
        reach: How far before ``end`` a natural break may fall.

    Returns:
        Break offset, always greater than ``start``.
    """
    block = _code_block_bounds(text, end)
    if block is not None:
        block_start, block_end = block
        if block_end - start <= max_chunk_size * CODE_BLOCK_ALLOWANCE:
            return block_end
        if start < block_start and end - block_start <= reach:
            return block_start
        return end

    window = min(PARAGRAPH_WINDOW, max_chunk_size // 2, reach)
    paragraph = text.rfind(PARAGRAPH_BREAK, start + 1, end)
    if paragraph != -1 and paragraph + len(PARAGRAPH_BREAK) >= end - window:
        return paragraph + len(PARAGRAPH_BREAK)

    window = min(SENTENCE_WINDOW, max_chunk_size // 5, reach)
    for pos in range(end, max(start + 1, end - window) - 1, -1):
        if (
            pos - 2 >= start
            and text[pos - 2] in SENTENCE_TERMINATORS
            and text[pos - 1].isspace()
        ):
            return pos

    window = min(max_chunk_size // 2, reach)
    for pos in range(end, max(start + 1, end - window) - 1, -1):
        if text[pos - 1].isspace():
            return pos

    return end


def chunk_spans(text: str, max_chunk_size: int, overlap: int) -> List[Tuple[int, int]]:
    """
    Compute chunk boundaries as ``(start, end)`` offsets into ``text``.

    Consecutive spans overlap by at most ``overlap`` characters and every
    span starts at or before the previous span's end, so the text can always
    be rebuilt from the spans.

    Spans start on a fixed ``max_chunk_size - overlap`` cadence. A natural
    break within ``overlap`` of the boundary shortens the overlap instead of
    delaying the next span. Breaks further back draw on a lag budget of one
    chunk, so when ``overlap < max_chunk_size`` the span count never exceeds
    ``ceil(len(text) / (max_chunk_size - overlap)) + 1``. Code blocks may
    stretch a span to ``1.5 * max_chunk_size``.

    Args:
        text: Text to split.
        max_chunk_size: Maximum characters per chunk.
        overlap: Characters shared with the previous chunk.

    Returns:
        Ordered list of non-empty spans covering the whole text.
    """
    if max_chunk_size <= 0:
        raise ValueError("max_chunk_size must be positive")
    if overlap < 0:
        raise ValueError("overlap must not be negative")

    length = len(text)
    if length == 0:
        return []
    if length <= max_chunk_size:
        return [(0, length)]

    spans = []
    start = 0
    lag_budget = max_chunk_size
    while True:
        end = start + max_chunk_size
        if end >= length:
            spans.append((start, length))
            break
        breakpoint_ = _find_break(text, start, end, max_chunk_size, overlap + lag_budget)
        spans.append((start, breakpoint_))
        if breakpoint_ >= length:
            break
        lag_budget -= max(0, end - breakpoint_ - overlap)
        start = max(
            breakpoint_ - overlap,
            min(breakpoint_, end - overlap),
            start + 1,
        )
    return spans


def split_text(text: str, max_chunk_size: int, overlap: int) -> List[str]:
    """
    Split text into overlapping chunks on natural break points.

    Args:
        text: Text to split.
        max_chunk_size: Maximum characters per chunk.
        overlap: Characters shared with the previous chunk.

    Returns:
        Ordered list of chunk strings.
    """
    return [text[start:end] for start, end in chunk_spans(text, max_chunk_size, overlap)]


def split_by_headers(text: str) -> List[Section]:
    """
    Split text into sections at markdown or underline-style headings.

    Args:
        text: Text to split.

    Returns:
        Sections in document order. Text before the first heading becomes a
        section without a header.
    """
    matches = list(_HEADER_PATTERN.finditer(text))
    if not matches:
        return [Section(content=text)]

    sections = []
    leading = text[: matches[0].start()].strip()
    if leading:
        sections.append(Section(content=leading))

    for idx, match in enumerate(matches):
        section_end = matches[idx + 1].start() if idx + 1 < len(matches) else len(text)
        content = text[match.start():section_end].strip()
        header = (match.group("atx") or match.group("setext")).strip()
        if content:
            sections.append(Section(content=content, header=header))

    return sections or [Section(content=text)]


def is_informative_chunk(text: str) -> bool:
    """Check whether a chunk carries enough content to be worth embedding."""
    if not text or not text.strip():
        return False

    if "#" in text or "|" in text or "```" in text:
        return True

    if len(text.strip()) < 10:
        return False

    unique_words = {word for word in text.lower().split() if len(word) > 1}
    return len(unique_words) >= 3


class ChunkingService:
    """Service for chunking documents into smaller pieces."""

    def __init__(self, config: Optional[Settings] = None) -> None:
        """
        Initialize the chunking service.

        Args:
            config: Settings providing chunk size, overlap and strategy.
        """
        config = config or default_settings
        if config.chunking_strategy not in CHUNKING_STRATEGIES:
            raise ValueError(
                f"Unknown chunking strategy: {config.chunking_strategy}")
        self.chunk_size = config.chunk_size
        self.chunk_overlap = config.chunk_overlap
        self.strategy = config.chunking_strategy

    def split(self, content: str) -> List[str]:
        """Split content into raw chunk strings using the configured strategy."""
        if self.strategy == "fixed":
            return split_text(content, self.chunk_size, self.chunk_overlap)

        sections = split_by_headers(content)
        if self.strategy == "hybrid" and len(sections) <= 1:
            return split_text(content, self.chunk_size, self.chunk_overlap)

        chunks = []
        for section in sections:
            chunks.extend(
                split_text(section.content, self.chunk_size, self.chunk_overlap))
        return chunks

    def chunk_document(self, content: str, document_id: str) -> List[Chunk]:
        """
        Chunk a document into smaller pieces.

        Args:
            content: Document content to chunk.
            document_id: ID of the source document.

        Returns:
            List of informative chunks with contiguous indices.
        """
        raw_chunks = self.split(content)
        texts = [text for text in raw_chunks if is_informative_chunk(text)]
        if len(texts) < len(raw_chunks):
            logger.info(
                f"Skipped {len(raw_chunks) - len(texts)} non-informative chunks "
                f"for document {document_id}"
            )

        return [
            Chunk(
                id=Chunk.make_id(document_id, idx),
                document_id=document_id,
                index=idx,
                content=text,
            )
            for idx, text in enumerate(texts)
        ]

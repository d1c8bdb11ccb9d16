"""
Paragraph-based text chunking for document embeddings.

Chunking is designed to be:
- Deterministic: Same input always produces same chunks
- Budget-bounded: Chunks stay under an approximate token budget
- Overlap-aware: Each chunk starts with the tail of the previous one

Token counts are estimated with a characters-per-token heuristic, which
is close enough for sizing embedding requests.
"""
import math
import re
import logging
from dataclasses import dataclass
from typing import List

logger = logging.getLogger(__name__)

# Default chunking parameters
DEFAULT_MAX_TOKENS = 1000
DEFAULT_OVERLAP_TOKENS = 100
CHARS_PER_TOKEN = 4

PARAGRAPH_SEPARATOR = '\n\n'
_PARAGRAPH_BREAK = re.compile(r'\n\s*\n')


@dataclass
class TextChunk:
    """A chunk of text with its index."""
    index: int
    text: str

    @property
    def char_count(self) -> int:
        return len(self.text)

    @property
    def estimated_tokens(self) -> int:
        return estimate_tokens(self.text)


def estimate_tokens(text: str, chars_per_token: int = CHARS_PER_TOKEN) -> int:
    """Approximate token count: ceil(len / chars_per_token)."""
    return math.ceil(len(text) / chars_per_token)


def split_paragraphs(text: str) -> List[str]:
    """Split on blank lines, dropping empty paragraphs."""
    text = text.replace('\r\n', '\n').replace('\r', '\n')
    return [p.strip() for p in _PARAGRAPH_BREAK.split(text) if p.strip()]


def overlap_tail(text: str, overlap_chars: int) -> str:
    """
    Trailing whole words of text fitting within overlap_chars.

    Returns an empty string when overlap is disabled or the last word
    alone is longer than the budget.
    """
    if overlap_chars <= 0:
        return ''

    words = text.split()
    tail: List[str] = []
    length = 0
    for word in reversed(words):
        added = len(word) + (1 if tail else 0)
        if length + added > overlap_chars:
            break
        tail.append(word)
        length += added

    return ' '.join(reversed(tail))


def chunk_text(
    text: str,
    max_tokens: int = DEFAULT_MAX_TOKENS,
    overlap_tokens: int = DEFAULT_OVERLAP_TOKENS,
    chars_per_token: int = CHARS_PER_TOKEN,
) -> List[TextChunk]:
    """
    Split text into overlapping, budget-bounded chunks.

    Paragraphs are accumulated greedily. When the next paragraph would
    push the running chunk over max_tokens, the chunk is closed and the
    next one is seeded with the trailing ~overlap_tokens worth of words
    before the paragraph is appended. A single paragraph larger than the
    budget is kept whole rather than split mid-paragraph.

    Args:
        text: The text to chunk
        max_tokens: Approximate token budget per chunk
        overlap_tokens: Approximate tokens carried over between chunks
        chars_per_token: Heuristic used for token estimation

    Returns:
        List of TextChunk objects (empty for empty input)
    """
    if not text or not text.strip():
        logger.warning("Empty text provided for chunking")
        return []

    paragraphs = split_paragraphs(text)
    overlap_chars = overlap_tokens * chars_per_token

    chunks: List[TextChunk] = []
    current = ''

    for paragraph in paragraphs:
        if not current:
            current = paragraph
            continue

        candidate = f"{current}{PARAGRAPH_SEPARATOR}{paragraph}"
        if estimate_tokens(candidate, chars_per_token) <= max_tokens:
            current = candidate
            continue

        chunks.append(TextChunk(index=len(chunks), text=current))

        seed = overlap_tail(current, overlap_chars)
        seeded = f"{seed}{PARAGRAPH_SEPARATOR}{paragraph}" if seed else paragraph
        # The overlap never pushes a chunk over budget on its own
        if estimate_tokens(seeded, chars_per_token) > max_tokens:
            seeded = paragraph
        current = seeded

    if current:
        chunks.append(TextChunk(index=len(chunks), text=current))

    logger.info(f"Created {len(chunks)} chunks from {len(text)} characters")

    return chunks

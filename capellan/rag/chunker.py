"""
Chunker module for splitting document text into overlapping passages.

Sentences are accumulated until the next one would overflow the chunk size.
Each new chunk is seeded with the trailing words of the previous one so that
ideas spanning a boundary stay retrievable from both sides.
"""

import logging
import re
from typing import List

logger = logging.getLogger(__name__)

SENTENCE_BOUNDARY = re.compile(r"[.!?]+")

# Characters per word used to turn the character overlap into a word count
CHARS_PER_WORD = 5


def split_sentences(text: str) -> List[str]:
    """Split text on runs of sentence terminators, dropping blank pieces."""
    return [s for s in SENTENCE_BOUNDARY.split(text) if s.strip()]


def _overlap_words(chunk: str, overlap: int) -> str:
    word_count = overlap // CHARS_PER_WORD
    if word_count <= 0:
        return ""
    return " ".join(chunk.split()[-word_count:])


def chunk_text(text: str, size: int, overlap: int) -> List[str]:
    """Split text into passages of at most `size` characters.

    Args:
        text: Raw document text.
        size: Maximum characters per chunk.
        overlap: Approximate characters carried over from the previous chunk,
                 converted to `overlap // 5` words.

    Returns:
        List of chunk strings. Empty only when the input is blank. A sentence
        longer than `size` is cut to exactly `size` characters and emitted
        on its own.

    Raises:
        ValueError: If size is not positive or overlap is negative.
    """
    if size <= 0:
        raise ValueError(f"Chunk size must be positive, got {size}")
    if overlap < 0:
        raise ValueError(f"Chunk overlap cannot be negative, got {overlap}")

    if not text or not text.strip():
        return []

    sentences = split_sentences(text)
    if not sentences:
        # Nothing but terminators, keep it as a single passage
        return [text.strip()[:size]]

    chunks: List[str] = []
    current = ""

    for sentence in sentences:
        candidate = current + sentence + "."
        if len(candidate.strip()) <= size:
            current = candidate
            continue

        piece = sentence.strip() + "."

        if current.strip():
            previous = current.strip()
            chunks.append(previous)
            seed = _overlap_words(previous, overlap)
            current = f"{seed} {piece}" if seed else piece
            if len(current) > size:
                current = piece
        else:
            current = piece

        if len(current) > size:
            chunks.append(current[:size])
            current = ""

    if current.strip():
        chunks.append(current.strip())

    logger.debug(f"[CHUNKER] Split {len(text):,} chars into {len(chunks)} chunks (size={size}, overlap={overlap})")
    return chunks

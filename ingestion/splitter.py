"""Chapter text splitting module.

Splits chapter text into bounded chunks for the enhancement worker. Cuts are
made at paragraph boundaries first and at sentence boundaries only when a
single paragraph is too large. Undersized chunks are merged into a neighbour
afterwards so a small tail never costs a whole rate-limited request.
"""
import re
from functools import lru_cache
from typing import List, Optional

import tiktoken

from utils.logger import setup_logger
from ingestion.models import ChunkingSettings
import config

logger = setup_logger(__name__)

PARAGRAPH_BREAK_RE = re.compile(r"\n\s*\n+")
SENTENCE_BREAK_RE = re.compile(r"(?<=[.!?])\s+")

PARAGRAPH_SEPARATOR = "\n\n"
SENTENCE_SEPARATOR = " "


@lru_cache(maxsize=1)
def _get_encoding():
    # cl100k_base as approximation for any model
    return tiktoken.get_encoding("cl100k_base")


def count_tokens(text: str) -> int:
    """Count tokens in text.

    Args:
        text: Input text

    Returns:
        Token count
    """
    if not text:
        return 0
    return len(_get_encoding().encode(text))


def _split_units(text: str, max_chunk_size: int) -> List[List[str]]:
    """Break text into [separator, unit] pairs.

    The separator is the one that preceded the unit in the source text, so
    joining units back together only normalizes whitespace.
    """
    units = []
    for paragraph in PARAGRAPH_BREAK_RE.split(text):
        paragraph = paragraph.strip()
        if not paragraph:
            continue

        if len(paragraph) <= max_chunk_size:
            units.append([PARAGRAPH_SEPARATOR, paragraph])
            continue

        sentences = [s.strip() for s in SENTENCE_BREAK_RE.split(paragraph) if s.strip()]
        for position, sentence in enumerate(sentences):
            separator = PARAGRAPH_SEPARATOR if position == 0 else SENTENCE_SEPARATOR
            units.append([separator, sentence])

    return units


def _pack_units(units: List[List[str]], max_chunk_size: int) -> List[List[str]]:
    """Greedily pack units into chunks that stay within max_chunk_size."""
    chunks = []
    current = None

    for separator, unit in units:
        if current is None:
            current = [separator, unit]
        elif len(current[1]) + len(separator) + len(unit) > max_chunk_size:
            chunks.append(current)
            current = [separator, unit]
        else:
            current[1] = current[1] + separator + unit

    if current is not None:
        chunks.append(current)

    return chunks


def _merge_small_chunks(
    chunks: List[List[str]],
    min_chunk_length: int,
    max_chunk_size: int
) -> List[List[str]]:
    """Merge chunks shorter than min_chunk_length into a neighbour.

    A small chunk goes into its right neighbour; the last chunk goes into its
    left one. A merge that would exceed max_chunk_size falls back to the other
    neighbour and is skipped if neither fits.
    """
    merged = [list(c) for c in chunks]
    i = 0

    while i < len(merged) and len(merged) > 1:
        separator, text = merged[i]
        if len(text) >= min_chunk_length:
            i += 1
            continue

        if i + 1 < len(merged):
            right_separator, right_text = merged[i + 1]
            candidate = text + right_separator + right_text
            if len(candidate) <= max_chunk_size:
                merged[i + 1] = [separator, candidate]
                del merged[i]
                continue

        if i > 0:
            left_separator, left_text = merged[i - 1]
            candidate = left_text + separator + text
            if len(candidate) <= max_chunk_size:
                merged[i - 1] = [left_separator, candidate]
                del merged[i]
                continue

        logger.debug(f"Chunk {i} ({len(text)} chars) is small but cannot be merged within limits")
        i += 1

    return merged


def split_text(
    text: str,
    max_chunk_size: int = config.CHUNK_SIZE,
    min_chunk_length: int = config.MIN_CHUNK_LENGTH
) -> List[str]:
    """Split text into ordered chunks bounded by max_chunk_size.

    Args:
        text: Chapter text (paragraphs separated by blank lines)
        max_chunk_size: Maximum characters per chunk
        min_chunk_length: Chunks shorter than this are merged into a neighbour

    Returns:
        List of chunk strings; empty when text is empty

    Raises:
        ValueError: If max_chunk_size is not positive
    """
    if max_chunk_size <= 0:
        raise ValueError(f"max_chunk_size must be positive, got {max_chunk_size}")

    if not text or not text.strip():
        return []

    if len(text) <= max_chunk_size:
        return [text]

    units = _split_units(text, max_chunk_size)
    packed = _pack_units(units, max_chunk_size)
    merged = _merge_small_chunks(packed, min_chunk_length, max_chunk_size)

    return [chunk_text for _, chunk_text in merged]


class TextSplitter:
    """Splits chapter text according to chunking settings."""

    def __init__(self, settings: Optional[ChunkingSettings] = None):
        """Initialize splitter.

        Args:
            settings: Chunking settings, defaults from config
        """
        self.settings = settings or ChunkingSettings()

    def split(self, text: str) -> List[str]:
        """Split text into chunks, honouring chunking_enabled.

        Args:
            text: Chapter text

        Returns:
            List of chunk strings
        """
        if not text or not text.strip():
            logger.info("Nothing to split: empty document")
            return []

        if not self.settings.chunking_enabled:
            logger.info(f"Chunking disabled, processing {len(text)} chars as one piece")
            return [text]

        chunks = split_text(
            text,
            max_chunk_size=self.settings.chunk_size,
            min_chunk_length=self.settings.min_chunk_length
        )

        logger.info(
            f"Split {len(text)} chars into {len(chunks)} chunks "
            f"(max {self.settings.chunk_size}): "
            + ", ".join(f"[{i}]={len(c)}" for i, c in enumerate(chunks))
        )
        return chunks

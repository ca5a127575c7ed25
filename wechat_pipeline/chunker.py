from __future__ import annotations

import re
from typing import List

from .config import DEFAULT_CHUNK_LIMIT, TextChunk

TERMINATORS = "。！？；.?!;\n"

# A sentence is a run of text plus the terminators that close it. A leading
# run of bare terminators forms its own sentence so nothing is dropped.
_SENTENCE_RE = re.compile(
    rf"[^{re.escape(TERMINATORS)}]+[{re.escape(TERMINATORS)}]*|[{re.escape(TERMINATORS)}]+"
)


def split_sentences(text: str) -> List[str]:
    """Split text after sentence-ending punctuation, keeping the terminator."""
    return _SENTENCE_RE.findall(text)


def chunk_text(text: str, limit: int = DEFAULT_CHUNK_LIMIT) -> List[str]:
    """Greedily pack sentences into chunks of at most ``limit`` characters.

    A single sentence longer than ``limit`` becomes its own oversized chunk.
    Blank chunks are never emitted.
    """
    if limit <= 0:
        raise ValueError(f"Chunk limit must be positive, got {limit}")

    chunks: List[str] = []
    buffer = ""
    for sentence in split_sentences(text):
        if buffer and len(buffer) + len(sentence) > limit:
            if buffer.strip():
                chunks.append(buffer.strip())
            buffer = sentence
        else:
            buffer += sentence

    if buffer.strip():
        chunks.append(buffer.strip())
    return chunks


def split_into_chunks(text: str, limit: int = DEFAULT_CHUNK_LIMIT) -> List[TextChunk]:
    return [
        TextChunk(sequence_index=idx, text=chunk)
        for idx, chunk in enumerate(chunk_text(text, limit))
    ]

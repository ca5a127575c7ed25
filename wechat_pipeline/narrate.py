from __future__ import annotations

import asyncio
from typing import List, Optional

from .chunker import split_into_chunks
from .config import (
    DEFAULT_CHUNK_LIMIT,
    NARRATION_CONCURRENCY,
    AudioArtifact,
    LogFn,
    TextChunk,
)
from .errors import MalformedPayload
from .io import pcm_to_wav


class NarrationPipeline:
    """Best-effort narration: one WAV per chunk, in chunk order.

    Chunks are synthesized concurrently. A failed chunk yields nothing and
    never affects its siblings; results are ordered by chunk index, not by
    completion time. ``narrate`` never raises.
    """

    def __init__(
        self,
        client,
        log: LogFn = print,
        chunk_limit: int = DEFAULT_CHUNK_LIMIT,
        max_concurrency: int = NARRATION_CONCURRENCY,
    ) -> None:
        self.client = client
        self.log = log
        self.chunk_limit = chunk_limit
        self.max_concurrency = max_concurrency

    def narrate(self, text: str) -> List[AudioArtifact]:
        try:
            return asyncio.run(self.narrate_async(text))
        except Exception as e:
            self.log(f"    ❌ Narration failed: {e}")
            return []

    async def narrate_async(self, text: str) -> List[AudioArtifact]:
        chunks = split_into_chunks(text, self.chunk_limit)
        if not chunks:
            return []
        self.log(f"    Synthesizing {len(chunks)} chunks...")

        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def bounded(chunk: TextChunk) -> Optional[AudioArtifact]:
            async with semaphore:
                return await asyncio.to_thread(self._synthesize, chunk)

        results = await asyncio.gather(*(bounded(chunk) for chunk in chunks))
        artifacts = sorted(
            (artifact for artifact in results if artifact is not None),
            key=lambda artifact: artifact.sequence_index,
        )
        self.log(f"    ✓ Narrated {len(artifacts)} of {len(chunks)} chunks")
        return artifacts

    def _synthesize(self, chunk: TextChunk) -> Optional[AudioArtifact]:
        try:
            pcm = self.client.generate_audio(chunk.text)
            if not pcm:
                raise MalformedPayload("Empty audio payload")
            return AudioArtifact(
                sequence_index=chunk.sequence_index,
                text=chunk.text,
                wav=pcm_to_wav(pcm),
            )
        except Exception as e:
            self.log(f"        ❌ Chunk {chunk.sequence_index + 1} failed: {e}")
            return None

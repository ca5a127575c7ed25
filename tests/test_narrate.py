from __future__ import annotations

import io
import threading
import time
import wave
from typing import List

from wechat_pipeline.config import PCM_SAMPLE_RATE
from wechat_pipeline.narrate import NarrationPipeline

from conftest import FakeGenerationClient

STORY = "Alpha one. Bravo two. Charlie 3. Delta four. Echo five."


def test_failed_chunk_is_dropped_and_order_kept(logs: List[str]) -> None:
    client = FakeGenerationClient(failing_audio={"Charlie"}, audio_delays={"Alpha": 0.2})
    pipeline = NarrationPipeline(client, log=logs.append, chunk_limit=12)

    artifacts = pipeline.narrate(STORY)

    assert [a.sequence_index for a in artifacts] == [0, 1, 3, 4]
    assert [a.text for a in artifacts] == ["Alpha one.", "Bravo two.", "Delta four.", "Echo five."]
    assert len(client.audio_texts) == 5
    assert any("Chunk 3 failed" in line for line in logs)


def test_each_artifact_is_a_playable_wav(logs: List[str]) -> None:
    artifacts = NarrationPipeline(FakeGenerationClient(), log=logs.append).narrate("你好，世界。")

    assert len(artifacts) == 1
    wav = artifacts[0].wav
    assert wav[:4] == b"RIFF"
    assert wav[8:12] == b"WAVE"
    with wave.open(io.BytesIO(wav), "rb") as wf:
        assert wf.getnchannels() == 1
        assert wf.getsampwidth() == 2
        assert wf.getframerate() == PCM_SAMPLE_RATE


def test_empty_text_yields_nothing(logs: List[str]) -> None:
    client = FakeGenerationClient()
    assert NarrationPipeline(client, log=logs.append).narrate("  \n ") == []
    assert client.audio_texts == []


def test_all_chunks_failing_yields_nothing(logs: List[str]) -> None:
    client = FakeGenerationClient(failing_audio={"."})
    assert NarrationPipeline(client, log=logs.append, chunk_limit=12).narrate(STORY) == []


def test_invalid_chunk_limit_never_raises(logs: List[str]) -> None:
    pipeline = NarrationPipeline(FakeGenerationClient(), log=logs.append, chunk_limit=0)
    assert pipeline.narrate(STORY) == []
    assert any("Narration failed" in line for line in logs)


def test_empty_audio_payload_is_skipped(logs: List[str]) -> None:
    class SilentClient(FakeGenerationClient):
        def generate_audio(self, text: str) -> bytes:
            if "Bravo" in text:
                return b""
            return super().generate_audio(text)

    artifacts = NarrationPipeline(SilentClient(), log=logs.append, chunk_limit=12).narrate(STORY)

    assert [a.sequence_index for a in artifacts] == [0, 2, 3, 4]
    assert any("malformed_payload" in line for line in logs)


def test_concurrency_is_bounded(logs: List[str]) -> None:
    class CountingClient(FakeGenerationClient):
        def __init__(self) -> None:
            super().__init__()
            self.active = 0
            self.peak = 0
            self.counter_lock = threading.Lock()

        def generate_audio(self, text: str) -> bytes:
            with self.counter_lock:
                self.active += 1
                self.peak = max(self.peak, self.active)
            time.sleep(0.05)
            with self.counter_lock:
                self.active -= 1
            return super().generate_audio(text)

    client = CountingClient()
    text = " ".join(f"Sentence {n}." for n in range(10))
    artifacts = NarrationPipeline(client, log=logs.append, chunk_limit=12, max_concurrency=2).narrate(text)

    assert len(artifacts) == 10
    assert client.peak <= 2

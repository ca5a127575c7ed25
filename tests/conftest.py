from __future__ import annotations

import threading
import time
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import pytest

from wechat_pipeline.config import PipelineConfig, PipelineState, Provider

PNG_MAGIC = b"\x89PNG\r\n\x1a\n"


class FakeGenerationClient:
    """In-memory stand-in for the Gemini/OpenAI back ends."""

    def __init__(
        self,
        article: Any = "",
        plans: Any = None,
        failing_images: Iterable[str] = (),
        failing_audio: Iterable[str] = (),
        audio_delays: Optional[Dict[str, float]] = None,
    ) -> None:
        self.article = article
        self.plans = plans
        self.failing_images = set(failing_images)
        self.failing_audio = set(failing_audio)
        self.audio_delays = audio_delays or {}
        self.text_prompts: List[str] = []
        self.json_prompts: List[str] = []
        self.image_prompts: List[str] = []
        self.audio_texts: List[str] = []
        self._lock = threading.Lock()

    def generate_text(self, prompt: str) -> str:
        self.text_prompts.append(prompt)
        if isinstance(self.article, Exception):
            raise self.article
        return self.article

    def generate_json(self, prompt: str, schema_name: str, schema: Dict[str, Any]) -> Any:
        self.json_prompts.append(prompt)
        if isinstance(self.plans, Exception):
            raise self.plans
        return self.plans

    def generate_image(self, prompt: str, aspect_ratio: str) -> bytes:
        with self._lock:
            self.image_prompts.append(prompt)
        for marker in self.failing_images:
            if marker in prompt:
                raise RuntimeError(f"image backend rejected '{marker}'")
        return PNG_MAGIC + prompt[-12:].encode("utf-8")

    def generate_audio(self, text: str) -> bytes:
        with self._lock:
            self.audio_texts.append(text)
        for marker, delay in self.audio_delays.items():
            if marker in text:
                time.sleep(delay)
        for marker in self.failing_audio:
            if marker in text:
                raise ConnectionError(f"speech backend dropped '{marker}'")
        pcm = text.encode("utf-8")
        return pcm + b"\x00" * (len(pcm) % 2)


def make_plans(*snippets: str) -> Dict[str, Any]:
    """Cover plan followed by one inline plan per snippet."""
    plans = [{"isCover": True, "contextSnippet": "", "imagePrompt": "a lighthouse at dawn"}]
    for idx, snippet in enumerate(snippets, start=2):
        plans.append(
            {"isCover": False, "contextSnippet": snippet, "imagePrompt": f"scene number {idx}"}
        )
    return {"plans": plans}


@pytest.fixture()
def logs() -> List[str]:
    return []


@pytest.fixture()
def make_state(tmp_path: Path):
    def _make(client: Any, **overrides: Any) -> PipelineState:
        output_dir = tmp_path / "run"
        content_dir = output_dir / "content"
        content_dir.mkdir(parents=True)
        values: Dict[str, Any] = dict(
            provider=Provider.GEMINI,
            topic="灯塔",
            timestamp="20260101-120000",
            output_dir=output_dir,
            content_dir=content_dir,
            images_dir=output_dir / "images",
            audio_dir=output_dir / "audio",
            title_rules="少儿科普故事《{topic}》",
            article_rules="以故事的方式讲述科普知识。",
        )
        values.update(overrides)
        return PipelineState(config=PipelineConfig(**values), client=client)

    return _make

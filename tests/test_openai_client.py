from __future__ import annotations

import base64
from types import SimpleNamespace
from typing import Any, Dict, List

import pytest

from wechat_pipeline.errors import MalformedPayload
from wechat_pipeline.openai_client import (
    OpenAIGenerationClient,
    clean_json_response,
    response_json,
    response_text,
)


class FakeOpenAI:
    """Records calls and returns canned SDK-shaped responses."""

    def __init__(self, response: Any = None, image_b64: str = "", pcm: bytes = b"") -> None:
        self.calls: List[Dict[str, Any]] = []
        self.responses = SimpleNamespace(create=self._record(response))
        self.images = SimpleNamespace(
            generate=self._record(SimpleNamespace(data=[SimpleNamespace(b64_json=image_b64)]))
        )
        self.audio = SimpleNamespace(
            speech=SimpleNamespace(create=self._record(SimpleNamespace(read=lambda: pcm)))
        )

    def _record(self, result: Any):
        def call(**kwargs: Any) -> Any:
            self.calls.append(kwargs)
            return result

        return call


def test_clean_json_response_strips_fences_and_noise() -> None:
    raw = '```json\nHere you go: {"plans": []} thanks\n```'
    assert clean_json_response(raw) == '{"plans": []}'


def test_response_text_prefers_output_text() -> None:
    assert response_text(SimpleNamespace(output_text="  hello ")) == "hello"
    nested = {"output": [{"content": [{"text": "a"}, {"text": "b"}]}]}
    assert response_text(nested) == "ab"
    assert response_text(None) == ""


def test_response_json_uses_parsed_block_then_text() -> None:
    parsed = {"output": [{"content": [{"parsed": {"plans": [1]}}]}]}
    assert response_json(parsed) == {"plans": [1]}

    text_only = SimpleNamespace(output_text='```json\n{"plans": []}\n```', output=None)
    assert response_json(text_only) == {"plans": []}

    assert response_json(SimpleNamespace(output_text="not json", output=None)) is None


def test_generate_json_sends_strict_schema() -> None:
    fake = FakeOpenAI(response=SimpleNamespace(output_text='{"plans": []}', output=None))
    schema = {"type": "object"}

    result = OpenAIGenerationClient(client=fake).generate_json("plan it", "placement_plans", schema)

    assert result == {"plans": []}
    text_format = fake.calls[0]["text"]["format"]
    assert text_format["name"] == "placement_plans"
    assert text_format["strict"] is True
    assert text_format["schema"] is schema


def test_generate_json_without_payload_is_malformed() -> None:
    fake = FakeOpenAI(response=SimpleNamespace(output_text="", output=None))
    with pytest.raises(MalformedPayload):
        OpenAIGenerationClient(client=fake).generate_json("plan it", "placement_plans", {})


def test_generate_image_decodes_base64_and_maps_ratio() -> None:
    fake = FakeOpenAI(image_b64=base64.b64encode(b"\x89PNGdata").decode("ascii"))

    image = OpenAIGenerationClient(client=fake).generate_image("a fox", "16:9")

    assert image == b"\x89PNGdata"
    assert fake.calls[0]["size"] == "1536x1024"


def test_generate_image_without_data_is_malformed() -> None:
    with pytest.raises(MalformedPayload):
        OpenAIGenerationClient(client=FakeOpenAI()).generate_image("a fox", "1:1")


def test_generate_audio_requests_raw_pcm() -> None:
    fake = FakeOpenAI(pcm=b"\x00\x01")

    assert OpenAIGenerationClient(client=fake).generate_audio("你好") == b"\x00\x01"
    assert fake.calls[0]["response_format"] == "pcm"
    assert fake.calls[0]["input"] == "你好"


def test_generate_audio_without_data_is_malformed() -> None:
    with pytest.raises(MalformedPayload):
        OpenAIGenerationClient(client=FakeOpenAI()).generate_audio("你好")

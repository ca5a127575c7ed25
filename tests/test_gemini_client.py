from __future__ import annotations

import base64
from types import SimpleNamespace
from typing import Any, List

import pytest

from wechat_pipeline.errors import MalformedPayload
from wechat_pipeline.gemini_client import GeminiGenerationClient, extract_inline_data


def _response(*parts: Any, text: str = "", parsed: Any = None) -> SimpleNamespace:
    content = SimpleNamespace(parts=list(parts))
    return SimpleNamespace(
        candidates=[SimpleNamespace(content=content)],
        text=text,
        parsed=parsed,
    )


def _inline(data: Any) -> SimpleNamespace:
    return SimpleNamespace(inline_data=SimpleNamespace(data=data, mime_type="image/png"))


def _text_part(text: str) -> SimpleNamespace:
    return SimpleNamespace(inline_data=None, text=text)


class FakeGenai:
    def __init__(self, response: SimpleNamespace) -> None:
        self.calls: List[dict] = []
        self.models = SimpleNamespace(generate_content=self._generate)
        self.response = response

    def _generate(self, **kwargs: Any) -> SimpleNamespace:
        self.calls.append(kwargs)
        return self.response


def test_extract_inline_data_skips_text_parts() -> None:
    response = _response(_text_part("caption"), _inline(b"\x89PNG"))
    assert extract_inline_data(response) == b"\x89PNG"


def test_extract_inline_data_decodes_base64_strings() -> None:
    response = _response(_inline(base64.b64encode(b"pcm-bytes").decode("ascii")))
    assert extract_inline_data(response) == b"pcm-bytes"


def test_extract_inline_data_handles_empty_candidates() -> None:
    assert extract_inline_data(SimpleNamespace(candidates=[])) is None
    assert extract_inline_data(_response(_text_part("only text"))) is None


def test_generate_image_passes_aspect_ratio() -> None:
    fake = FakeGenai(_response(_inline(b"\x89PNG")))

    assert GeminiGenerationClient(client=fake).generate_image("a fox", "16:9") == b"\x89PNG"
    config = fake.calls[0]["config"]
    assert config.image_config.aspect_ratio == "16:9"
    assert config.response_modalities == ["IMAGE"]


def test_generate_image_without_data_is_malformed() -> None:
    fake = FakeGenai(_response(_text_part("I cannot draw that")))
    with pytest.raises(MalformedPayload):
        GeminiGenerationClient(client=fake).generate_image("a fox", "16:9")


def test_generate_audio_without_data_is_malformed() -> None:
    fake = FakeGenai(SimpleNamespace(candidates=[], text="", parsed=None))
    with pytest.raises(MalformedPayload):
        GeminiGenerationClient(client=fake).generate_audio("你好")


def test_generate_json_prefers_parsed_then_text() -> None:
    parsed = GeminiGenerationClient(client=FakeGenai(_response(parsed={"plans": []})))
    assert parsed.generate_json("plan", "placement_plans", {"type": "object"}) == {"plans": []}

    fenced = FakeGenai(_response(text='```json\n{"plans": [{"isCover": true}]}\n```'))
    result = GeminiGenerationClient(client=fenced).generate_json("plan", "placement_plans", {"type": "object"})
    assert result == {"plans": [{"isCover": True}]}
    assert fenced.calls[0]["config"].response_mime_type == "application/json"


def test_generate_json_garbage_is_malformed() -> None:
    fake = FakeGenai(_response(text="no json here"))
    with pytest.raises(MalformedPayload):
        GeminiGenerationClient(client=fake).generate_json("plan", "placement_plans", {"type": "object"})

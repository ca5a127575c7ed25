from __future__ import annotations

import base64
import json
import re
from typing import Any, Dict, Iterator, Optional

from openai import OpenAI

from .config import (
    OPENAI_ANALYSIS_MODEL,
    OPENAI_IMAGE_MODEL,
    OPENAI_TEXT_MODEL,
    OPENAI_TTS_MODEL,
    OPENAI_TTS_VOICE,
)
from .errors import MalformedPayload

# The Images API takes fixed sizes rather than ratios.
IMAGE_SIZES: Dict[str, str] = {
    "16:9": "1536x1024",
    "3:2": "1536x1024",
    "1:1": "1024x1024",
    "9:16": "1024x1536",
    "2:3": "1024x1536",
}


def clean_json_response(text: str) -> str:
    """Strip Markdown fences and any chatter around the outermost JSON object."""
    text = text.strip()
    if text.startswith("```"):
        text = re.sub(r"^```\w*\s*", "", text)
        text = re.sub(r"\s*```$", "", text)

    start, end = text.find("{"), text.rfind("}")
    if start != -1 and end > start:
        text = text[start : end + 1]
    return text.strip()


def _field(obj: Any, name: str) -> Any:
    # Responses may be SDK models or plain dicts (e.g. from a cached run).
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)


def _content_blocks(resp: Any) -> Iterator[Any]:
    for item in _field(resp, "output") or []:
        yield from _field(item, "content") or []


def response_text(resp: Any) -> str:
    """Plain text of a Responses API result."""
    if resp is None:
        return ""
    output_text = _field(resp, "output_text")
    if isinstance(output_text, str) and output_text.strip():
        return output_text.strip()

    parts = [_field(block, "text") for block in _content_blocks(resp)]
    return "".join(part for part in parts if isinstance(part, str)).strip()


def response_json(resp: Any) -> Optional[Dict[str, Any]]:
    """JSON object of a Structured Outputs result, parsed or recovered from text."""
    if resp is None:
        return None
    for block in _content_blocks(resp):
        payload = _field(block, "parsed") or _field(block, "json")
        if isinstance(payload, dict):
            return payload

    text = response_text(resp)
    if not text:
        return None
    try:
        data = json.loads(clean_json_response(text))
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


class OpenAIGenerationClient:
    """Text, structured JSON, image and speech calls backed by OpenAI."""

    def __init__(self, client: Optional[OpenAI] = None) -> None:
        self.client = client or OpenAI()

    def generate_text(self, prompt: str) -> str:
        response = self.client.responses.create(
            model=OPENAI_TEXT_MODEL,
            input=prompt,
            max_output_tokens=12000,
            reasoning={"effort": "medium"},
        )
        return response_text(response)

    def generate_json(self, prompt: str, schema_name: str, schema: Dict[str, Any]) -> Dict[str, Any]:
        response = self.client.responses.create(
            model=OPENAI_ANALYSIS_MODEL,
            input=prompt,
            max_output_tokens=4096,
            text={
                "format": {
                    "type": "json_schema",
                    "name": schema_name,
                    "schema": schema,
                    "strict": True,
                }
            },
        )
        parsed = response_json(response)
        if parsed is None:
            raise MalformedPayload(
                f"Empty or invalid {schema_name} output",
                details={"raw": response_text(response)[:200]},
            )
        return parsed

    def generate_image(self, prompt: str, aspect_ratio: str) -> bytes:
        response = self.client.images.generate(
            model=OPENAI_IMAGE_MODEL,
            prompt=prompt,
            size=IMAGE_SIZES.get(aspect_ratio, "auto"),
        )
        if not response.data or not response.data[0].b64_json:
            raise MalformedPayload("No image data received")
        return base64.b64decode(response.data[0].b64_json)

    def generate_audio(self, text: str) -> bytes:
        # "pcm" is raw 24 kHz, 16-bit, mono samples without a header.
        response = self.client.audio.speech.create(
            model=OPENAI_TTS_MODEL,
            voice=OPENAI_TTS_VOICE,
            input=text,
            response_format="pcm",
        )
        data = response.read()
        if not data:
            raise MalformedPayload("No audio data received")
        return data

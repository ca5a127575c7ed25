from __future__ import annotations

import base64
import json
from typing import Any, Dict, Optional

from google import genai
from google.genai import types

from .config import (
    GEMINI_ANALYSIS_MODEL,
    GEMINI_IMAGE_MODEL,
    GEMINI_TEXT_MODEL,
    GEMINI_TTS_MODEL,
    GEMINI_TTS_VOICE,
)
from .errors import MalformedPayload
from .openai_client import clean_json_response


def extract_inline_data(response: Any) -> Optional[bytes]:
    """Return the first inline payload of the first candidate, if any."""
    if not response.candidates:
        return None
    content = response.candidates[0].content
    if content is None or not content.parts:
        return None
    for part in content.parts:
        if part.inline_data and part.inline_data.data:
            data = part.inline_data.data
            if isinstance(data, str):
                data = base64.b64decode(data)
            return data
    return None


class GeminiGenerationClient:
    """Text, structured JSON, image and speech calls backed by Gemini."""

    def __init__(self, client: Optional[genai.Client] = None) -> None:
        self.client = client or genai.Client()

    def generate_text(self, prompt: str) -> str:
        response = self.client.models.generate_content(
            model=GEMINI_TEXT_MODEL,
            contents=prompt,
            config=types.GenerateContentConfig(
                temperature=1.0,
                max_output_tokens=12000,
            ),
        )
        return response.text or ""

    def generate_json(self, prompt: str, schema_name: str, schema: Dict[str, Any]) -> Dict[str, Any]:
        response = self.client.models.generate_content(
            model=GEMINI_ANALYSIS_MODEL,
            contents=prompt,
            config=types.GenerateContentConfig(
                temperature=0.3,
                max_output_tokens=4096,
                response_mime_type="application/json",
                response_json_schema=schema,
            ),
        )

        if isinstance(response.parsed, dict):
            return response.parsed

        response_text = response.text or ""
        try:
            data = json.loads(clean_json_response(response_text))
        except json.JSONDecodeError as json_err:
            raise MalformedPayload(
                f"Failed to parse {schema_name} JSON: {json_err}",
                details={"raw": response_text[:200]},
            ) from json_err
        if not isinstance(data, dict):
            raise MalformedPayload(f"Expected a JSON object for {schema_name}")
        return data

    def generate_image(self, prompt: str, aspect_ratio: str) -> bytes:
        response = self.client.models.generate_content(
            model=GEMINI_IMAGE_MODEL,
            contents=prompt,
            config=types.GenerateContentConfig(
                response_modalities=["IMAGE"],
                image_config=types.ImageConfig(aspect_ratio=aspect_ratio),
            ),
        )
        image_data = extract_inline_data(response)
        if not image_data:
            raise MalformedPayload("No image data received")
        return image_data

    def generate_audio(self, text: str) -> bytes:
        response = self.client.models.generate_content(
            model=GEMINI_TTS_MODEL,
            contents=text,
            config=types.GenerateContentConfig(
                response_modalities=["AUDIO"],
                speech_config=types.SpeechConfig(
                    voice_config=types.VoiceConfig(
                        prebuilt_voice_config=types.PrebuiltVoiceConfig(
                            voice_name=GEMINI_TTS_VOICE,
                        )
                    )
                ),
            ),
        )
        audio_data = extract_inline_data(response)
        if not audio_data:
            raise MalformedPayload("No audio data received")
        return audio_data

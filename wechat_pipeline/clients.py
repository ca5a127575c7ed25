from __future__ import annotations

from typing import Any, Dict, Protocol

from .config import Provider


class GenerationClient(Protocol):
    """The four generation calls the pipeline depends on."""

    def generate_text(self, prompt: str) -> str: ...

    def generate_json(self, prompt: str, schema_name: str, schema: Dict[str, Any]) -> Dict[str, Any]: ...

    def generate_image(self, prompt: str, aspect_ratio: str) -> bytes: ...

    def generate_audio(self, text: str) -> bytes: ...


def create_client(provider: Provider) -> GenerationClient:
    """Build the back end for ``provider``; SDKs are imported on demand."""
    if provider == Provider.GEMINI:
        from .gemini_client import GeminiGenerationClient

        return GeminiGenerationClient()

    from .openai_client import OpenAIGenerationClient

    return OpenAIGenerationClient()

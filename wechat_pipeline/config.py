from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Any, Callable, Dict, Final, List, Mapping, Optional


class Provider(Enum):
    """Supported generation back ends."""
    GEMINI = "gemini"
    OPENAI = "openai"


# Model Configuration
GEMINI_TEXT_MODEL: Final[str] = "gemini-3-pro-preview"
GEMINI_ANALYSIS_MODEL: Final[str] = "gemini-2.5-flash"
GEMINI_IMAGE_MODEL: Final[str] = "gemini-2.5-flash-image"
GEMINI_TTS_MODEL: Final[str] = "gemini-2.5-flash-preview-tts"
GEMINI_TTS_VOICE: Final[str] = "Kore"

OPENAI_TEXT_MODEL: Final[str] = "gpt-5.2"
OPENAI_ANALYSIS_MODEL: Final[str] = "gpt-5-mini"
OPENAI_IMAGE_MODEL: Final[str] = "gpt-image-1.5"
OPENAI_TTS_MODEL: Final[str] = "gpt-4o-mini-tts"
OPENAI_TTS_VOICE: Final[str] = "alloy"

# Limits
DEFAULT_IMAGE_COUNT: Final[int] = 3
MAX_IMAGES: Final[int] = 8
DEFAULT_CHUNK_LIMIT: Final[int] = 300
ANALYSIS_TEXT_LIMIT: Final[int] = 10000
IMAGE_ASPECT_RATIO: Final[str] = "16:9"
IMAGE_CONCURRENCY: Final[int] = 3
NARRATION_CONCURRENCY: Final[int] = 4

# Snippet anchoring
PREFIX_MATCH_LENGTH: Final[int] = 15
MIN_PREFIX_LENGTH: Final[int] = 10

# Audio: raw PCM returned by both speech back ends
PCM_SAMPLE_RATE: Final[int] = 24000
PCM_CHANNELS: Final[int] = 1
PCM_BIT_DEPTH: Final[int] = 16

# Paths
PROMPTS_DIR = Path(__file__).resolve().parent / "prompts"
DEFAULT_OUTPUT_ROOT: Final[str] = "wechat_output"
DEFAULT_IMAGEKIT_FOLDER: Final[str] = "/wechat-articles/"

PLACEHOLDER_ARTICLE: Final[str] = (
    "<h1>生成失败</h1>"
    "<p>生成文章时遇到错误，请稍后重试。</p>"
    "<p>请检查网络连接或 API 配额。</p>"
)

# Structured Outputs schema for illustration planning
PLACEMENT_PLAN_SCHEMA: Final[Dict[str, Any]] = {
    "type": "object",
    "properties": {
        "plans": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "isCover": {"type": "boolean"},
                    "contextSnippet": {"type": "string"},
                    "imagePrompt": {"type": "string"},
                },
                "required": ["isCover", "contextSnippet", "imagePrompt"],
                "additionalProperties": False,
            },
        }
    },
    "required": ["plans"],
    "additionalProperties": False,
}

# WeChat styling. The editor strips classes but keeps inline styles.
BOX_SIZING_RESET: Final[str] = "box-sizing: border-box;"

WECHAT_TAG_STYLES: Final[Mapping[str, str]] = MappingProxyType({
    "h1": "font-size: 22px; font-weight: bold; text-align: center; margin: 30px 0 20px; color: #222; line-height: 1.4;",
    "h2": "font-size: 18px; font-weight: bold; text-align: center; margin: 30px 0 15px; color: #07c160; line-height: 1.4;",
    "h3": "font-size: 17px; font-weight: bold; text-align: center; margin: 25px 0 12px; color: #333; line-height: 1.4;",
    "p": "font-size: 16px; line-height: 1.8; margin: 0 0 20px; text-align: justify; color: #333;",
    "img": "display: block; max-width: 100%; height: auto; margin: 0 auto; border-radius: 8px;",
    "em": "font-style: normal; font-weight: bold; color: #fa5151;",
    "mark": "font-weight: bold; color: #fa5151; background-color: transparent;",
    "u": "text-decoration: none; border-bottom: 2px solid #07c160; padding-bottom: 1px;",
    "strong": "color: #07c160; font-weight: bold;",
    "b": "color: #07c160; font-weight: bold;",
    "ul": "margin: 0 0 20px; padding-left: 20px; list-style-type: disc; color: #555;",
    "ol": "margin: 0 0 20px; padding-left: 20px; list-style-type: decimal; color: #555;",
    "li": "margin-bottom: 8px; line-height: 1.6;",
    "blockquote": "background-color: #f7f7f7; border-left: 4px solid #d1d5db; padding: 16px; margin: 20px 0; color: #666; font-size: 15px; border-radius: 4px;",
    "figure": "margin: 20px 0; text-align: center;",
    "figcaption": "display: block; margin-top: 8px; font-size: 14px; color: #888; text-align: center;",
})

CONTAINER_TAG: Final[str] = "section"
CONTAINER_MARKER: Final[str] = "wechat-pipeline"
CONTAINER_STYLE: Final[str] = (
    "font-size: 16px; line-height: 1.8; letter-spacing: 0.5px; text-align: justify; "
    "color: #333; font-family: -apple-system, BlinkMacSystemFont, 'PingFang SC', "
    "'Hiragino Sans GB', 'Microsoft YaHei', sans-serif; padding: 0 8px;"
)

LogFn = Callable[[str], None]


@dataclass
class PlacementPlan:
    """One illustration to produce and where it belongs."""
    is_cover: bool
    image_prompt: str
    context_snippet: Optional[str] = None
    plan_number: int = 0

    @classmethod
    def from_payload(cls, item: Mapping[str, Any], plan_number: int) -> "PlacementPlan":
        snippet = str(item.get("contextSnippet") or "").strip()
        return cls(
            is_cover=bool(item.get("isCover", False)),
            image_prompt=str(item.get("imagePrompt") or "").strip(),
            context_snippet=snippet or None,
            plan_number=plan_number,
        )


@dataclass(frozen=True)
class TextChunk:
    """A span of article text queued for narration."""
    sequence_index: int
    text: str


@dataclass(frozen=True)
class AudioArtifact:
    """WAV audio for one chunk, keyed by its original position."""
    sequence_index: int
    text: str
    wav: bytes
    local_path: Optional[Path] = None


@dataclass
class PipelineConfig:
    """Configuration for a pipeline run."""
    provider: Provider
    topic: str
    timestamp: str
    output_dir: Path
    content_dir: Path
    images_dir: Path
    audio_dir: Path
    title_rules: str
    article_rules: str
    image_count: int = DEFAULT_IMAGE_COUNT
    enable_images: bool = True
    enable_audio: bool = True
    parallel_images: bool = True
    chunk_limit: int = DEFAULT_CHUNK_LIMIT
    imagekit_folder: str = DEFAULT_IMAGEKIT_FOLDER
    input_file: Optional[Path] = None


@dataclass
class PipelineState:
    """Holds state during pipeline execution."""
    config: PipelineConfig
    client: Optional[object] = None
    imagekit_client: Optional[object] = None
    title: str = ""
    step_outputs: Dict[str, str] = field(default_factory=dict)
    illustration_report: Optional[object] = None
    image_paths: Dict[int, Path] = field(default_factory=dict)
    audio_artifacts: List[AudioArtifact] = field(default_factory=list)
    log_messages: List[str] = field(default_factory=list)

    def log(self, message: str, print_it: bool = True) -> None:
        """Log a message and optionally print it."""
        timestamped = f"[{datetime.now().strftime('%H:%M:%S')}] {message}"
        self.log_messages.append(timestamped)
        if print_it:
            print(message)

    def save_log(self) -> None:
        """Save the log to a file."""
        log_path = self.config.output_dir / "pipeline.log"
        log_path.write_text("\n".join(self.log_messages), encoding="utf-8")

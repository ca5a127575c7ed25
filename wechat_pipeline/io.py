from __future__ import annotations

import hashlib
import html
import io
import json
import os
import re
import sys
import wave
from dataclasses import replace
from html.parser import HTMLParser
from importlib import metadata
from pathlib import Path
from typing import Dict, List, Optional

from .config import (
    GEMINI_ANALYSIS_MODEL,
    GEMINI_IMAGE_MODEL,
    GEMINI_TEXT_MODEL,
    GEMINI_TTS_MODEL,
    OPENAI_ANALYSIS_MODEL,
    OPENAI_IMAGE_MODEL,
    OPENAI_TEXT_MODEL,
    OPENAI_TTS_MODEL,
    PCM_BIT_DEPTH,
    PCM_CHANNELS,
    PCM_SAMPLE_RATE,
    PROMPTS_DIR,
    AudioArtifact,
    PipelineState,
    Provider,
)


VOID_TAGS = frozenset(
    "area base br col embed hr img input link meta param source track wbr".split()
)

PROVIDER_MODELS: Dict[Provider, Dict[str, str]] = {
    Provider.GEMINI: {
        "text": GEMINI_TEXT_MODEL,
        "analysis": GEMINI_ANALYSIS_MODEL,
        "image": GEMINI_IMAGE_MODEL,
        "speech": GEMINI_TTS_MODEL,
    },
    Provider.OPENAI: {
        "text": OPENAI_TEXT_MODEL,
        "analysis": OPENAI_ANALYSIS_MODEL,
        "image": OPENAI_IMAGE_MODEL,
        "speech": OPENAI_TTS_MODEL,
    },
}


class TagBalanceChecker(HTMLParser):
    """Basic tag balance checker to catch obvious HTML issues."""

    def __init__(self) -> None:
        super().__init__()
        self.stack: List[str] = []
        self.issues: List[str] = []

    def handle_starttag(self, tag: str, attrs) -> None:
        if tag in VOID_TAGS:
            return
        if tag == "p" and self.stack and self.stack[-1] == "p":
            self.stack.pop()
        self.stack.append(tag)

    def handle_endtag(self, tag: str) -> None:
        if tag in VOID_TAGS:
            return
        if not self.stack:
            self.issues.append(f"Unexpected closing tag </{tag}>.")
            return
        if tag in self.stack:
            while self.stack and self.stack[-1] != tag:
                self.stack.pop()
            if self.stack and self.stack[-1] == tag:
                self.stack.pop()
        else:
            self.issues.append(f"Unmatched closing tag </{tag}>.")

    def close(self) -> None:
        super().close()
        if self.stack:
            leftover = ", ".join(self.stack[-5:])
            self.issues.append(f"Unclosed tags remain: {leftover}.")


def validate_environment(provider: Provider) -> tuple[bool, List[str]]:
    """Check required environment variables."""
    missing = []

    if provider == Provider.GEMINI:
        if not (os.environ.get("GOOGLE_API_KEY") or os.environ.get("GEMINI_API_KEY")):
            missing.append("GOOGLE_API_KEY / GEMINI_API_KEY")
    elif not os.environ.get("OPENAI_API_KEY"):
        missing.append("OPENAI_API_KEY")

    return len(missing) == 0, missing


def load_prompt(name: str | Path) -> str:
    """Load a prompt from the packaged prompts directory or an explicit path."""
    path = Path(name)
    if not path.is_absolute() and not path.exists():
        path = PROMPTS_DIR / path
    if not path.exists():
        raise FileNotFoundError(f"Prompt file not found: {path}")
    return path.read_text(encoding="utf-8")


def normalize_text(text: str) -> str:
    """Normalize whitespace and entities for matching."""
    return re.sub(r"\s+", " ", html.unescape(text)).strip()


def validate_html_fragment(html_content: str) -> List[str]:
    """Return a list of HTML sanity issues (empty if none)."""
    checker = TagBalanceChecker()
    checker.feed(html_content)
    checker.close()
    return checker.issues


def pcm_to_wav(
    pcm: bytes,
    sample_rate: int = PCM_SAMPLE_RATE,
    channels: int = PCM_CHANNELS,
    bit_depth: int = PCM_BIT_DEPTH,
) -> bytes:
    """Wrap raw little-endian PCM samples in a 44-byte RIFF/WAVE header."""
    if bit_depth % 8:
        raise ValueError(f"Bit depth must be a whole number of bytes, got {bit_depth}")
    output = io.BytesIO()
    with wave.open(output, "wb") as wf:
        wf.setnchannels(channels)
        wf.setsampwidth(bit_depth // 8)
        wf.setframerate(sample_rate)
        wf.writeframes(pcm)
    return output.getvalue()


def _hash_file(path: Path) -> Optional[str]:
    if not path.exists():
        return None
    hasher = hashlib.sha256()
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(8192), b""):
            hasher.update(chunk)
    return hasher.hexdigest()


def collect_prompt_metadata(prompt_paths: Dict[str, Path]) -> Dict[str, Dict[str, str]]:
    metadata: Dict[str, Dict[str, str]] = {}
    for key, path in prompt_paths.items():
        digest = _hash_file(path)
        if digest:
            metadata[key] = {"path": str(path), "sha256": digest}
    return metadata


def _package_version(name: str) -> Optional[str]:
    try:
        return metadata.version(name)
    except metadata.PackageNotFoundError:
        return None


def _manifest_src(src: Optional[str]) -> Optional[str]:
    # Inline images are megabytes of base64; the local file stands in for them.
    if src is None or src.startswith("data:"):
        return None
    return src


def _optional_path(path: Optional[Path]) -> Optional[str]:
    return str(path) if path else None


def build_run_manifest(
    state: PipelineState,
    final_path: Optional[Path],
    prompt_paths: Dict[str, Path],
) -> Dict[str, object]:
    config = state.config
    report = state.illustration_report

    step_output_paths = {
        key: str(config.content_dir / filename)
        for key, filename in STEP_FILENAMES.items()
        if key in state.step_outputs
    }

    images = []
    if report is not None:
        for plan, result in zip(report.plans, report.results):
            images.append(
                {
                    "plan_number": plan.plan_number,
                    "is_cover": plan.is_cover,
                    "context_snippet": plan.context_snippet,
                    "image_prompt": plan.image_prompt,
                    "inserted": result.inserted,
                    "strategy": result.anchor.strategy.value if result.anchor else None,
                    "skip_reason": result.reason,
                    "src": _manifest_src(report.sources.get(plan.plan_number)),
                    "local_path": _optional_path(state.image_paths.get(plan.plan_number)),
                }
            )

    manifest = {
        "timestamp": config.timestamp,
        "provider": config.provider.value,
        "topic": config.topic,
        "title": state.title,
        "output_dir": str(config.output_dir),
        "content_dir": str(config.content_dir),
        "images_dir": str(config.images_dir),
        "audio_dir": str(config.audio_dir),
        "enable_images": config.enable_images,
        "enable_audio": config.enable_audio,
        "image_count": config.image_count,
        "chunk_limit": config.chunk_limit,
        "imagekit_folder": config.imagekit_folder,
        "input_file": str(config.input_file) if config.input_file else None,
        "pipeline_log": str(config.output_dir / "pipeline.log"),
        "models": PROVIDER_MODELS[config.provider],
        "prompts": collect_prompt_metadata(prompt_paths),
        "step_outputs": step_output_paths,
        "final_output": str(final_path) if final_path else None,
        "images": images,
        "audio": [
            {
                "sequence_index": artifact.sequence_index,
                "characters": len(artifact.text),
                "bytes": len(artifact.wav),
                "local_path": str(artifact.local_path) if artifact.local_path else None,
            }
            for artifact in state.audio_artifacts
        ],
        "runtime": {
            "python": sys.version.split()[0],
            "google-genai": _package_version("google-genai"),
            "openai": _package_version("openai"),
            "beautifulsoup4": _package_version("beautifulsoup4"),
        },
    }

    return manifest


def save_run_manifest(
    state: PipelineState,
    final_path: Optional[Path],
    prompt_paths: Dict[str, Path],
) -> Optional[Path]:
    """Save a manifest JSON describing the run."""
    manifest = build_run_manifest(state, final_path, prompt_paths)
    manifest_path = state.config.output_dir / "manifest.json"
    manifest_path.write_text(json.dumps(manifest, indent=2, ensure_ascii=False), encoding="utf-8")
    return manifest_path


STEP_FILENAMES: Dict[str, str] = {
    "draft": "Step1_Draft.html",
    "formatted": "Step2_Formatted.html",
    "illustrated": "Step3_Illustrated.html",
    "final": "Step4_Final.html",
}


def save_step_output(state: PipelineState, key: str, html_content: str) -> Path:
    """Record a stage's HTML and write it under content/."""
    state.step_outputs[key] = html_content
    output_path = state.config.content_dir / STEP_FILENAMES[key]
    output_path.write_text(html_content, encoding="utf-8")
    return output_path


def save_final_output(state: PipelineState) -> Path:
    """Save the final HTML output and the title beside it."""
    for key in ("final", "illustrated", "formatted", "draft"):
        if key in state.step_outputs:
            final_html = state.step_outputs[key]
            break
    else:
        raise KeyError("No HTML output recorded for this run")

    output_path = state.config.content_dir / STEP_FILENAMES["final"]
    output_path.write_text(final_html, encoding="utf-8")
    (state.config.content_dir / "title.txt").write_text(state.title, encoding="utf-8")
    return output_path


def save_audio_artifacts(state: PipelineState) -> List[Path]:
    """Write one WAV file per narrated chunk, numbered by chunk position."""
    if not state.audio_artifacts:
        return []
    state.config.audio_dir.mkdir(parents=True, exist_ok=True)

    paths: List[Path] = []
    saved: List[AudioArtifact] = []
    for artifact in state.audio_artifacts:
        path = state.config.audio_dir / f"part_{artifact.sequence_index + 1:02d}.wav"
        path.write_bytes(artifact.wav)
        paths.append(path)
        saved.append(replace(artifact, local_path=path))
    state.audio_artifacts = saved
    return paths

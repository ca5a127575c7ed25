from __future__ import annotations

import argparse
import os
from datetime import datetime
from pathlib import Path
from typing import Optional

try:
    from imagekitio import ImageKit
    IMAGEKIT_AVAILABLE = True
except ImportError:
    IMAGEKIT_AVAILABLE = False

from .clients import create_client
from .config import (
    DEFAULT_CHUNK_LIMIT,
    DEFAULT_IMAGE_COUNT,
    DEFAULT_IMAGEKIT_FOLDER,
    DEFAULT_OUTPUT_ROOT,
    MAX_IMAGES,
    PROMPTS_DIR,
    PipelineConfig,
    PipelineState,
    Provider,
)
from .io import load_prompt, save_final_output, save_run_manifest, save_step_output, validate_environment
from .stages import (
    stage_finalize,
    stage_format_article,
    stage_illustrate,
    stage_narrate,
    stage_write_article,
)


def display_banner() -> None:
    print("\n" + "=" * 65)
    print("  ✨ WECHAT ARTICLE PIPELINE ✨")
    print("=" * 65)


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="WeChat Article Pipeline")
    parser.add_argument("--topic", "-t", help="Topic for the article")
    parser.add_argument(
        "--provider",
        choices=[p.value for p in Provider],
        default=os.environ.get("WECHAT_PIPELINE_PROVIDER", Provider.GEMINI.value),
        help="Generation back end",
    )
    parser.add_argument("--input-file", "-i", help="Existing article HTML; skips drafting")
    parser.add_argument(
        "--images",
        type=int,
        default=DEFAULT_IMAGE_COUNT,
        help=f"Number of illustrations including the cover (1-{MAX_IMAGES})",
    )
    parser.add_argument("--no-images", action="store_true", help="Skip illustration")
    parser.add_argument("--no-audio", action="store_true", help="Skip narration")
    parser.add_argument("--sequential-images", action="store_true", help="Generate images one at a time")
    parser.add_argument(
        "--chunk-limit",
        type=int,
        default=DEFAULT_CHUNK_LIMIT,
        help="Maximum characters per narration chunk",
    )
    parser.add_argument("--title-rules", help="File with title generation rules ({topic} placeholder allowed)")
    parser.add_argument("--article-rules", help="File with article content rules")
    return parser.parse_args(argv)


def _format_timestamp(now: datetime) -> str:
    return now.strftime("%Y%m%d-%H%M%S")


def _prompt_paths(args: argparse.Namespace) -> dict[str, Path]:
    return {
        "article": PROMPTS_DIR / "article.txt",
        "illustration_analysis": PROMPTS_DIR / "illustration_analysis.txt",
        "title_rules": Path(args.title_rules) if args.title_rules else PROMPTS_DIR / "title_rules.txt",
        "article_rules": Path(args.article_rules) if args.article_rules else PROMPTS_DIR / "article_rules.txt",
    }


def main(argv: Optional[list[str]] = None) -> int:
    args = parse_args(argv)
    display_banner()

    provider = Provider(args.provider)
    print(f"\n🤖 Provider: {provider.value}")

    enable_images = not args.no_images
    if enable_images and not 1 <= args.images <= MAX_IMAGES:
        print(f"❌ --images must be between 1 and {MAX_IMAGES}.")
        return 1
    if args.chunk_limit <= 0:
        print("❌ --chunk-limit must be positive.")
        return 1

    if not enable_images:
        print("\n📷 Illustration: Disabled (--no-images)")
    elif IMAGEKIT_AVAILABLE and os.environ.get("IMAGEKIT_PRIVATE_KEY"):
        print(f"\n📷 Illustration: {args.images} images (ImageKit Hosting)")
    else:
        print(f"\n📷 Illustration: {args.images} images (embedded inline)")

    valid, missing = validate_environment(provider)
    if not valid:
        print("\n❌ Missing environment variables:")
        for var in missing:
            print(f"   • {var}")
        return 1

    prompt_paths = _prompt_paths(args)
    try:
        title_rules = load_prompt(prompt_paths["title_rules"])
        article_rules = load_prompt(prompt_paths["article_rules"])
    except FileNotFoundError as e:
        print(f"\n❌ {e}")
        return 1

    input_path = Path(args.input_file).expanduser() if args.input_file else None

    if args.topic:
        topic = args.topic
        print(f"\n📝 Topic: {topic}")
    elif input_path:
        topic = "Imported article"
        print("\n📝 Topic: (using imported article)")
    else:
        topic = input("\nEnter the article topic: ").strip()

    if not topic:
        print("❌ Topic cannot be empty.")
        return 1

    timestamp = _format_timestamp(datetime.now())
    output_dir = Path.cwd() / DEFAULT_OUTPUT_ROOT / timestamp
    content_dir = output_dir / "content"
    images_dir = output_dir / "images"
    audio_dir = output_dir / "audio"

    output_dir.mkdir(parents=True, exist_ok=True)
    content_dir.mkdir(exist_ok=True)

    print("\n⚙️  Initializing clients...")
    client = create_client(provider)

    imagekit_client = None
    if enable_images and IMAGEKIT_AVAILABLE and os.environ.get("IMAGEKIT_PRIVATE_KEY"):
        try:
            imagekit_client = ImageKit(
                private_key=os.environ.get("IMAGEKIT_PRIVATE_KEY"),
            )
            print("   ✓ ImageKit client ready")
        except Exception as e:
            print(f"   ⚠️ ImageKit init failed: {e}")

    config = PipelineConfig(
        provider=provider,
        topic=topic,
        timestamp=timestamp,
        output_dir=output_dir,
        content_dir=content_dir,
        images_dir=images_dir,
        audio_dir=audio_dir,
        title_rules=title_rules,
        article_rules=article_rules,
        image_count=args.images,
        enable_images=enable_images,
        enable_audio=not args.no_audio,
        parallel_images=not args.sequential_images,
        chunk_limit=args.chunk_limit,
        imagekit_folder=os.environ.get("IMAGEKIT_FOLDER", DEFAULT_IMAGEKIT_FOLDER),
        input_file=input_path,
    )

    state = PipelineState(
        config=config,
        client=client,
        imagekit_client=imagekit_client,
    )

    success = True
    final_path = None

    if input_path:
        if not input_path.exists():
            print(f"\n❌ Input file not found: {input_path}")
            return 1
        try:
            imported_html = input_path.read_text(encoding="utf-8")
        except Exception as e:
            print(f"\n❌ Failed to read input file: {e}")
            return 1
        if not imported_html.strip():
            print("\n❌ Input file is empty.")
            return 1
        save_step_output(state, "draft", imported_html)
        state.log(f"    ✓ Loaded article HTML from {input_path}")
    else:
        success = stage_write_article(state)

    if success:
        success = stage_format_article(state)

    if success and config.enable_images:
        if not stage_illustrate(state):
            state.log("    ⚠️ Continuing without illustrations")

    if success:
        success = stage_finalize(state)

    if success and config.enable_audio:
        stage_narrate(state)

    if success:
        final_path = save_final_output(state)
        state.log(f"\n✅ Final output: {final_path}")

    state.save_log()

    if success:
        save_run_manifest(state, final_path, prompt_paths)
        print(f"\n✅ PIPELINE COMPLETE! Check directory: {output_dir}")
        if final_path:
            print(f"📄 Open file: {final_path}")
    else:
        print("\n❌ PIPELINE FAILED. Check log.")

    return 0 if success else 1

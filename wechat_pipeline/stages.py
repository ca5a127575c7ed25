from __future__ import annotations

from .article import draft_article, html_to_text, split_title
from .config import PipelineState, PlacementPlan
from .errors import PipelineError
from .formatter import WeChatFormatter
from .illustrate import IllustrationPlanner, ImageSink, data_uri, image_mime_type
from .io import save_audio_artifacts, save_step_output, validate_html_fragment
from .narrate import NarrationPipeline

IMAGE_EXTENSIONS = {"image/png": "png", "image/jpeg": "jpg", "image/webp": "webp"}


def stage_write_article(state: PipelineState) -> bool:
    """Draft the article HTML; failures degrade to a placeholder page."""
    state.log("\n📝 [1/5] Writing article...")

    html_content = draft_article(
        state.client,
        topic=state.config.topic,
        title_rules=state.config.title_rules,
        article_rules=state.config.article_rules,
        log=state.log,
    )
    output_path = save_step_output(state, "draft", html_content)
    state.log(f"    ✓ Draft ({len(html_content):,} chars) → {output_path.name}")
    return True


def stage_format_article(state: PipelineState) -> bool:
    """Split off the title and apply WeChat inline styles to the body."""
    state.log("\n🎨 [2/5] Formatting for WeChat...")

    try:
        title, body = split_title(state.step_outputs["draft"])
        state.title = title
        if title:
            state.log(f"    ✓ Title: {title}")
        else:
            state.log("    ⚠️ No <h1> found; using the whole draft as body")

        formatted = WeChatFormatter().normalize(body)
        output_path = save_step_output(state, "formatted", formatted)
        state.log(f"    ✓ Styled HTML ({len(formatted):,} chars) → {output_path.name}")
        return True

    except Exception as e:
        state.log(f"    ❌ Formatting Error: {e}")
        return False


def make_image_sink(state: PipelineState) -> ImageSink:
    """Save each image locally and host it on ImageKit when a client is set."""

    def sink(plan: PlacementPlan, image: bytes) -> str:
        extension = IMAGE_EXTENSIONS.get(image_mime_type(image), "png")
        local_filename = f"fig{plan.plan_number}-{state.config.timestamp}.{extension}"
        state.config.images_dir.mkdir(parents=True, exist_ok=True)
        local_path = state.config.images_dir / local_filename
        local_path.write_bytes(image)
        state.image_paths[plan.plan_number] = local_path
        state.log(f"        ✓ Saved local: {local_filename}")

        if state.imagekit_client:
            state.log("        ↑ Uploading to ImageKit...")
            result = state.imagekit_client.files.upload(
                file=image,
                file_name=local_filename,
                folder=state.config.imagekit_folder,
                use_unique_file_name=True,
                is_private_file=False,
                tags=["wechat", "article", "ai-generated"],
            )
            if result and getattr(result, "url", None):
                state.log(f"        ✓ Hosted: {result.url}")
                return result.url
            state.log("        ⚠️ Upload failed or no URL returned, embedding inline")

        return data_uri(image)

    return sink


def stage_illustrate(state: PipelineState) -> bool:
    """Plan, generate and insert illustrations; False only when planning fails."""
    state.log(f"\n🖼️  [3/5] Illustrating ({state.config.image_count} images)...")

    html_content = state.step_outputs["formatted"]
    planner = IllustrationPlanner(
        state.client,
        log=state.log,
        image_sink=make_image_sink(state),
        parallel=state.config.parallel_images,
    )

    try:
        report = planner.run(html_content, state.config.image_count)
    except (PipelineError, OSError) as e:
        # Covers AnalysisIncomplete, a failed planning call and a missing prompt.
        state.log(f"    ❌ Illustration skipped: {e}")
        save_step_output(state, "illustrated", html_content)
        return False

    state.illustration_report = report
    for issue in validate_html_fragment(report.html):
        state.log(f"    ⚠️ HTML sanity: {issue}")

    output_path = save_step_output(state, "illustrated", report.html)
    state.log(f"    ✓ Illustrated HTML → {output_path.name}")
    return True


def stage_finalize(state: PipelineState) -> bool:
    """Re-run the formatter so inserted figures are styled and flattened."""
    state.log("\n🧹 [4/5] Finalizing markup...")

    source_key = "illustrated" if "illustrated" in state.step_outputs else "formatted"
    try:
        final_html = WeChatFormatter().normalize(state.step_outputs[source_key])
    except Exception as e:
        state.log(f"    ❌ Finalize Error: {e}")
        return False

    output_path = save_step_output(state, "final", final_html)
    state.log(f"    ✓ Final HTML → {output_path.name}")
    return True


def stage_narrate(state: PipelineState) -> bool:
    """Narrate title and body; partial or empty results are acceptable."""
    state.log("\n🔊 [5/5] Narrating article...")

    body_text = html_to_text(state.step_outputs.get("final", ""))
    text = "\n".join(part for part in (state.title, body_text) if part)

    narrator = NarrationPipeline(
        state.client,
        log=state.log,
        chunk_limit=state.config.chunk_limit,
    )
    state.audio_artifacts = narrator.narrate(text)

    if not state.audio_artifacts:
        state.log("    ⚠️ No audio produced; continuing without narration")
        return False

    try:
        paths = save_audio_artifacts(state)
    except OSError as e:
        state.log(f"    ❌ Failed to write audio: {e}")
        return False
    state.log(f"    ✓ Wrote {len(paths)} audio files → {state.config.audio_dir.name}/")
    return True

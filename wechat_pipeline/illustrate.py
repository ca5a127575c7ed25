from __future__ import annotations

import asyncio
import base64
import html
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from .anchor import AnchorPoint, InsertionResult, cover_point, insert, locate
from .article import html_to_text
from .config import (
    ANALYSIS_TEXT_LIMIT,
    IMAGE_ASPECT_RATIO,
    IMAGE_CONCURRENCY,
    PLACEMENT_PLAN_SCHEMA,
    WECHAT_TAG_STYLES,
    LogFn,
    PlacementPlan,
)
from .errors import AnalysisIncomplete, AnchorNotFound, PipelineError, UpstreamFailure
from .formatter import merge_styles
from .io import load_prompt

# The downstream cover crop is 2.4:1, so the subject has to survive losing the
# top and bottom quarter of a 16:9 frame.
IMAGE_PROMPT_TEMPLATE = (
    "3D cartoon anime style, 16:9 aspect ratio. "
    "IMPORTANT: Generate a full-screen image without any black bars, borders, or letterboxing. "
    "Fill the entire canvas. "
    "COMPOSITION: The main subject (character/object) must be strictly centered vertically and horizontally. "
    "CRITICAL: The subject must be small enough to fit entirely within the middle 50% of the image height. "
    "The top 25% and bottom 25% of the image must be filled with extended background "
    "(sky, ground, environment) to allow for 2.4:1 cropping without cutting off the subject's head or feet. "
    "Cinematic lighting, high quality, vivid colors. {image_prompt}"
)

FIGURE_ALT = "AI插图"

ImageSink = Callable[[PlacementPlan, bytes], str]


def build_image_prompt(image_prompt: str) -> str:
    return IMAGE_PROMPT_TEMPLATE.format(image_prompt=image_prompt.strip())


def image_mime_type(image: bytes) -> str:
    if image.startswith(b"\x89PNG"):
        return "image/png"
    if image.startswith(b"\xff\xd8"):
        return "image/jpeg"
    if image[:4] == b"RIFF" and image[8:12] == b"WEBP":
        return "image/webp"
    return "image/png"


def data_uri(image: bytes) -> str:
    encoded = base64.b64encode(image).decode("ascii")
    return f"data:{image_mime_type(image)};base64,{encoded}"


def build_figure(src: str, alt: str = FIGURE_ALT) -> str:
    """Figure fragment styled the way the WeChat formatter styles it."""
    figure_style = merge_styles(WECHAT_TAG_STYLES["figure"])
    img_style = merge_styles(WECHAT_TAG_STYLES["img"])
    return (
        f'<figure style="{figure_style}">'
        f'<img src="{html.escape(src)}" alt="{html.escape(alt)}" style="{img_style}"/>'
        "</figure>"
    )


def parse_plans(payload: object, desired_count: int) -> List[PlacementPlan]:
    """Turn the analysis payload into exactly ``desired_count`` plans.

    The first plan is always the cover; every other plan is anchored by its
    snippet.
    """
    items = payload.get("plans") if isinstance(payload, dict) else payload
    if not isinstance(items, list):
        raise AnalysisIncomplete("Analysis returned no plan list")

    items = [item for item in items if isinstance(item, dict)]
    if len(items) < desired_count:
        raise AnalysisIncomplete(
            f"Analysis returned {len(items)} of {desired_count} requested plans",
            details={"returned": len(items), "requested": desired_count},
        )

    plans = []
    for idx, item in enumerate(items[:desired_count], start=1):
        plan = PlacementPlan.from_payload(item, plan_number=idx)
        plan.is_cover = idx == 1
        plans.append(plan)
    return plans


@dataclass
class IllustrationReport:
    """Enriched HTML plus what happened to each plan."""
    html: str
    plans: List[PlacementPlan] = field(default_factory=list)
    results: List[InsertionResult] = field(default_factory=list)
    sources: Dict[int, str] = field(default_factory=dict)

    @property
    def inserted_count(self) -> int:
        return sum(1 for result in self.results if result.inserted)


class IllustrationPlanner:
    """Plans, generates and splices illustrations into article HTML.

    Planning is fail-fast. Everything after it is per plan: a failed image,
    a failed upload or a snippet that cannot be found only drops that image.
    Images may be generated concurrently but are always spliced one at a time
    in plan order, each against the document as left by the previous splice.
    """

    def __init__(
        self,
        client,
        log: LogFn = print,
        image_sink: Optional[ImageSink] = None,
        parallel: bool = True,
        max_concurrency: int = IMAGE_CONCURRENCY,
        aspect_ratio: str = IMAGE_ASPECT_RATIO,
    ) -> None:
        self.client = client
        self.log = log
        self.image_sink = image_sink
        self.parallel = parallel
        self.max_concurrency = max_concurrency
        self.aspect_ratio = aspect_ratio

    def build_analysis_prompt(self, html_content: str, desired_count: int) -> str:
        article_text = html_to_text(html_content)[:ANALYSIS_TEXT_LIMIT]
        template = load_prompt("illustration_analysis.txt")
        return (
            template.replace("{count}", str(desired_count))
            .replace("{inline_count}", str(desired_count - 1))
            .replace("{article_text}", article_text)
        )

    def request_plans(self, html_content: str, desired_count: int) -> List[PlacementPlan]:
        if desired_count < 1:
            raise ValueError(f"desired_count must be at least 1, got {desired_count}")

        prompt = self.build_analysis_prompt(html_content, desired_count)
        try:
            payload = self.client.generate_json(prompt, "placement_plans", PLACEMENT_PLAN_SCHEMA)
        except PipelineError:
            raise
        except Exception as e:
            raise UpstreamFailure(f"Illustration analysis failed: {e}") from e
        return parse_plans(payload, desired_count)

    def illustrate(self, html_content: str, desired_count: int) -> str:
        return self.run(html_content, desired_count).html

    def run(self, html_content: str, desired_count: int) -> IllustrationReport:
        return asyncio.run(self.run_async(html_content, desired_count))

    async def run_async(self, html_content: str, desired_count: int) -> IllustrationReport:
        plans = self.request_plans(html_content, desired_count)
        self.log(f"    ✓ Planned {len(plans)} illustrations (1 cover)")

        if self.parallel:
            semaphore = asyncio.Semaphore(self.max_concurrency)

            async def bounded(plan: PlacementPlan) -> Optional[bytes]:
                async with semaphore:
                    return await asyncio.to_thread(self._generate, plan)

            images = await asyncio.gather(*(bounded(plan) for plan in plans))
        else:
            images = [self._generate(plan) for plan in plans]

        report = IllustrationReport(html=html_content, plans=plans)
        for plan, image in zip(plans, images):
            report.results.append(self._place(report, plan, image))

        self.log(f"    ✓ Placed {report.inserted_count} of {len(plans)} illustrations")
        return report

    def _generate(self, plan: PlacementPlan) -> Optional[bytes]:
        if not plan.image_prompt:
            self.log(f"    ⚠️ Plan {plan.plan_number}: empty image prompt; skipping")
            return None
        self.log(f"    Plan {plan.plan_number}: Generating...")
        try:
            return self.client.generate_image(build_image_prompt(plan.image_prompt), self.aspect_ratio)
        except Exception as e:
            self.log(f"        ❌ Plan {plan.plan_number} image failed: {e}")
            return None

    def _anchor_for(self, html_content: str, plan: PlacementPlan) -> AnchorPoint:
        if plan.is_cover:
            return cover_point(html_content)
        point = locate(html_content, plan.context_snippet or "")
        if point is None:
            raise AnchorNotFound(
                f"Context not found for plan {plan.plan_number}",
                details={"snippet": plan.context_snippet},
            )
        return point

    def _source_for(self, plan: PlacementPlan, image: bytes) -> str:
        if self.image_sink is None:
            return data_uri(image)
        try:
            return self.image_sink(plan, image)
        except Exception as e:
            self.log(f"        ⚠️ Plan {plan.plan_number} image sink failed, embedding inline: {e}")
            return data_uri(image)

    def _place(
        self, report: IllustrationReport, plan: PlacementPlan, image: Optional[bytes]
    ) -> InsertionResult:
        if image is None:
            return InsertionResult.skipped(plan.plan_number, "image generation failed")

        try:
            point = self._anchor_for(report.html, plan)
        except AnchorNotFound as e:
            self.log(f"    ❌ {e.message}")
            self.log(f"       Context looked for: '{plan.context_snippet or ''}'")
            return InsertionResult.skipped(plan.plan_number, e.code)

        src = self._source_for(plan, image)
        report.html = insert(report.html, point, build_figure(src))
        report.sources[plan.plan_number] = src
        label = "cover" if plan.is_cover else point.strategy.value
        self.log(f"    ✓ Inserted plan {plan.plan_number} ({label})")
        return InsertionResult(plan_number=plan.plan_number, anchor=point)

"""
Pipeline Executor - runs the creative-diversity stages in order.

Stage order:
    product_analysis -> clustering -> persona -> creative_brief -> fallback_summary

persona, creative_brief and fallback_summary are optional and controlled
only by the caller's ``CreativeDiversityOptions`` flags; the executor has no
notion of subscription tiers. creative_brief also needs at least one persona.

Any stage failure aborts the run and propagates unchanged; no partial result
is returned.

Per-image analysis: images are analyzed concurrently, up to
``max_concurrency`` at a time. Each image's analysis is independent and
usage counters are summed under a lock, so this is an implementation choice
and not a change in behavior; results are always reassembled in input
order. ``max_concurrency=1`` analyzes the images one at a time in order.
"""

import importlib
import json
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Sequence

from ..core.constants import MAX_IMAGE_ANALYSIS_CONCURRENCY
from ..core.cost_calculator import add_buffer, calculate_cost_breakdown
from ..models import CostSummary, CreativeDiversityOptions, CreativeDiversityResult
from .context import PipelineContext

logger = logging.getLogger(__name__)

STAGE_ORDER: List[str] = [
    "product_analysis",
    "clustering",
    "persona",
    "creative_brief",
    "fallback_summary",
]

STAGE_CONDITIONS: Dict[str, Callable[[PipelineContext], bool]] = {
    "persona": lambda ctx: ctx.options.generate_personas,
    "creative_brief": lambda ctx: ctx.options.generate_creative_briefs and len(ctx.personas) > 0,
    "fallback_summary": lambda ctx: ctx.options.run_fallback_summary,
}


class PipelineInputError(ValueError):
    """Raised before any external call when the pipeline input is unusable."""
    pass


class CreativeDiversityPipeline:
    """Executes the creative-diversity stages for one image batch per ``run`` call."""

    def __init__(
        self,
        gateway: Any,
        annotator: Any,
        model_config: Optional[Dict[str, List[str]]] = None,
        max_concurrency: int = MAX_IMAGE_ANALYSIS_CONCURRENCY,
    ):
        self.gateway = gateway
        self.annotator = annotator
        self.model_config = model_config or {}
        self.max_concurrency = max(1, max_concurrency)

    def _should_run(self, stage_name: str, ctx: PipelineContext) -> bool:
        condition = STAGE_CONDITIONS.get(stage_name)
        return condition is None or condition(ctx)

    async def run(
        self,
        images: Sequence[str],
        options: Optional[CreativeDiversityOptions] = None,
    ) -> CreativeDiversityResult:
        """
        Analyze an ordered batch of base64-encoded images.

        Raises:
            PipelineInputError: If ``images`` is empty (no external call is made).
            GatewayError: If any LLM stage exhausts its models or returns malformed JSON.
        """
        if not images:
            raise PipelineInputError("At least one image is required for analysis")

        ctx = PipelineContext(
            images=list(images),
            options=options or CreativeDiversityOptions(),
            gateway=self.gateway,
            annotator=self.annotator,
            model_config=self.model_config,
            max_concurrency=self.max_concurrency,
        )
        await self.run_stages(ctx)
        return self.build_result(ctx)

    async def run_stages(self, ctx: PipelineContext) -> PipelineContext:
        """Execute all applicable stages in order."""
        ctx.log(f"Starting creative diversity pipeline for {len(ctx.images)} image(s)")
        overall_start_time = time.time()

        for stage_name in STAGE_ORDER:
            if not self._should_run(stage_name, ctx):
                ctx.log(f"Skipping stage {stage_name}")
                continue

            stage_start_time = time.time()
            ctx.log(f"--- Stage: {stage_name} ---")
            stage_module = importlib.import_module(f"audiencelens.stages.{stage_name}")

            try:
                await stage_module.run(ctx)
            except Exception as e:
                stage_duration = time.time() - stage_start_time
                ctx.log(f"ERROR in stage {stage_name}: {type(e).__name__}: {e}")
                ctx.log(f"Stage {stage_name} failed after {stage_duration:.2f}s")
                logger.error(f"[{ctx.run_id}] Pipeline state at failure: {json.dumps(ctx.to_dict(), ensure_ascii=False)}")
                raise

            stage_duration = time.time() - stage_start_time
            ctx.log(f"Stage {stage_name} completed in {stage_duration:.2f}s")

        overall_duration = time.time() - overall_start_time
        ctx.log(f"Pipeline execution completed in {overall_duration:.2f}s")
        return ctx

    @staticmethod
    def build_result(ctx: PipelineContext) -> CreativeDiversityResult:
        metrics = ctx.metrics.snapshot()
        breakdown = calculate_cost_breakdown(metrics)
        buffered = add_buffer(breakdown, ctx.options.buffer_percentage)

        return CreativeDiversityResult(
            clusters=ctx.clusters,
            personas=ctx.personas,
            creative_briefs=ctx.creative_briefs,
            product_analyses=[analysis.product for analysis in ctx.single_image_results],
            vision_insights=[analysis.vision for analysis in ctx.single_image_results],
            fallback_summary=ctx.fallback_summary,
            cost=CostSummary(metrics=metrics, breakdown=breakdown, buffered=buffered),
        )

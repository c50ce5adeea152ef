"""
Cost Calculator for the AudienceLens Analysis Pipeline
======================================================

Converts raw API usage counters into a cost breakdown in USD, JPY and
estimated internal credits.

Pricing assumptions live in ``constants.py``:
- OpenAI GPT-4o family: $5 / 1M input tokens, $15 / 1M output tokens
- Google Vision: $1.75 / 1,000 calls (average of $1.5-$2 per feature type)
- 1 USD = 150 JPY, 1 credit = 10 JPY

Design Pattern:
- UsageMetrics: mutable accumulator owned by exactly one pipeline run
- CostBreakdown: immutable snapshot derived from a metrics snapshot
- A buffered breakdown is derived from a raw one; the raw one is never discarded
"""

import logging
import math
import threading
from dataclasses import dataclass
from typing import Any, Dict

from .constants import (
    OPENAI_INPUT_PRICE_PER_1M_TOKENS,
    OPENAI_OUTPUT_PRICE_PER_1M_TOKENS,
    GOOGLE_VISION_PRICE_PER_1000_CALLS,
    USD_TO_JPY_RATE,
    JPY_PER_CREDIT,
    USD_DECIMALS,
    JPY_DECIMALS,
    CREDIT_DECIMALS,
    DEFAULT_BUFFER_PERCENTAGE,
    ANNOTATION_CALLS_PER_IMAGE,
    ESTIMATE_PER_IMAGE_INPUT_TOKENS,
    ESTIMATE_PER_IMAGE_OUTPUT_TOKENS,
    ESTIMATE_CLUSTERING_INPUT_TOKENS,
    ESTIMATE_CLUSTERING_OUTPUT_TOKENS,
    ESTIMATE_PERSONA_INPUT_TOKENS,
    ESTIMATE_PERSONA_OUTPUT_TOKENS,
    ESTIMATE_CREATIVE_INPUT_TOKENS,
    ESTIMATE_CREATIVE_OUTPUT_TOKENS,
    ESTIMATE_PRO_META_QUERIES,
    ESTIMATE_FALLBACK_BASE_INPUT_TOKENS,
    ESTIMATE_FALLBACK_PER_IMAGE_INPUT_TOKENS,
    ESTIMATE_FALLBACK_OUTPUT_TOKENS,
)

logger = logging.getLogger(__name__)


@dataclass
class UsageMetrics:
    """
    Per-run usage counters.

    Every stage that performs an external call adds to these counters.
    Additions are guarded by a lock so per-image work running in parallel
    can accumulate into the same instance; addition order does not matter.
    """
    openai_input_tokens: int = 0
    openai_output_tokens: int = 0
    google_vision_calls: int = 0
    meta_queries: int = 0

    def __post_init__(self) -> None:
        # Not a dataclass field, so it stays out of equality and serialization
        self._lock = threading.Lock()

    def add_llm_usage(self, input_tokens: int, output_tokens: int) -> None:
        with self._lock:
            self.openai_input_tokens += input_tokens or 0
            self.openai_output_tokens += output_tokens or 0

    def add_vision_calls(self, count: int = 1) -> None:
        with self._lock:
            self.google_vision_calls += count

    def add_meta_queries(self, count: int = 1) -> None:
        with self._lock:
            self.meta_queries += count

    def snapshot(self) -> "UsageMetrics":
        """Return an independent copy of the current counters."""
        with self._lock:
            return UsageMetrics(
                openai_input_tokens=self.openai_input_tokens,
                openai_output_tokens=self.openai_output_tokens,
                google_vision_calls=self.google_vision_calls,
                meta_queries=self.meta_queries,
            )

    def to_dict(self) -> Dict[str, int]:
        """Convert to dictionary for JSON serialization."""
        copy = self.snapshot()
        return {
            "openai_input_tokens": copy.openai_input_tokens,
            "openai_output_tokens": copy.openai_output_tokens,
            "google_vision_calls": copy.google_vision_calls,
            "meta_queries": copy.meta_queries,
        }


@dataclass(frozen=True)
class CostBreakdown:
    """Cost breakdown for one set of usage metrics."""
    openai_cost_usd: float = 0.0
    google_vision_cost_usd: float = 0.0
    total_cost_usd: float = 0.0
    total_cost_jpy: float = 0.0
    estimated_credits: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "openai_cost_usd": self.openai_cost_usd,
            "google_vision_cost_usd": self.google_vision_cost_usd,
            "total_cost_usd": self.total_cost_usd,
            "total_cost_jpy": self.total_cost_jpy,
            "estimated_credits": self.estimated_credits,
        }


# ================================
# PRICING PRIMITIVES
# ================================

def calculate_openai_cost(input_tokens: int, output_tokens: int) -> float:
    """Cost in USD of LLM usage. Linear in both counts; input is priced lower than output."""
    input_cost = (input_tokens / 1_000_000) * OPENAI_INPUT_PRICE_PER_1M_TOKENS
    output_cost = (output_tokens / 1_000_000) * OPENAI_OUTPUT_PRICE_PER_1M_TOKENS
    return input_cost + output_cost


def calculate_google_vision_cost(total_api_calls: int) -> float:
    """
    Cost in USD of image-annotation usage.

    Each image analysis involves 4 API calls (objects, labels, text, properties).
    """
    return (total_api_calls / 1000) * GOOGLE_VISION_PRICE_PER_1000_CALLS


def round_half_up(value: float, decimals: int) -> float:
    """Round half up (0.625 -> 0.63) where the builtin round() rounds half to even."""
    factor = 10 ** decimals
    return math.floor(value * factor + 0.5) / factor


def convert_usd_to_jpy(usd: float) -> float:
    return round_half_up(usd * USD_TO_JPY_RATE, JPY_DECIMALS)


def convert_jpy_to_credits(jpy: float) -> float:
    return round_half_up(jpy / JPY_PER_CREDIT, CREDIT_DECIMALS)


# ================================
# BREAKDOWNS
# ================================

def calculate_cost_breakdown(metrics: UsageMetrics) -> CostBreakdown:
    """
    Calculate the complete cost breakdown for a metrics snapshot.

    USD sub-costs are rounded to 4 places, JPY and credits to 2. JPY is derived
    from the unrounded USD total so rounding error does not compound.
    """
    openai_cost_usd = calculate_openai_cost(
        metrics.openai_input_tokens,
        metrics.openai_output_tokens,
    )
    google_vision_cost_usd = calculate_google_vision_cost(metrics.google_vision_calls)

    total_cost_usd = openai_cost_usd + google_vision_cost_usd
    total_cost_jpy = convert_usd_to_jpy(total_cost_usd)
    estimated_credits = convert_jpy_to_credits(total_cost_jpy)

    return CostBreakdown(
        openai_cost_usd=round_half_up(openai_cost_usd, USD_DECIMALS),
        google_vision_cost_usd=round_half_up(google_vision_cost_usd, USD_DECIMALS),
        total_cost_usd=round_half_up(total_cost_usd, USD_DECIMALS),
        total_cost_jpy=total_cost_jpy,
        estimated_credits=estimated_credits,
    )


def add_buffer(cost: CostBreakdown, buffer_percentage: float = DEFAULT_BUFFER_PERCENTAGE) -> CostBreakdown:
    """Return a new breakdown scaled by ``1 + buffer_percentage / 100`` as a safety margin."""
    multiplier = 1 + buffer_percentage / 100

    return CostBreakdown(
        openai_cost_usd=round_half_up(cost.openai_cost_usd * multiplier, USD_DECIMALS),
        google_vision_cost_usd=round_half_up(cost.google_vision_cost_usd * multiplier, USD_DECIMALS),
        total_cost_usd=round_half_up(cost.total_cost_usd * multiplier, USD_DECIMALS),
        total_cost_jpy=round_half_up(cost.total_cost_jpy * multiplier, JPY_DECIMALS),
        estimated_credits=round_half_up(cost.estimated_credits * multiplier, CREDIT_DECIMALS),
    )


def combine_breakdowns(first: CostBreakdown, second: CostBreakdown) -> CostBreakdown:
    """Field-wise sum of two breakdowns, rounded like its inputs."""
    return CostBreakdown(
        openai_cost_usd=round_half_up(first.openai_cost_usd + second.openai_cost_usd, USD_DECIMALS),
        google_vision_cost_usd=round_half_up(first.google_vision_cost_usd + second.google_vision_cost_usd, USD_DECIMALS),
        total_cost_usd=round_half_up(first.total_cost_usd + second.total_cost_usd, USD_DECIMALS),
        total_cost_jpy=round_half_up(first.total_cost_jpy + second.total_cost_jpy, JPY_DECIMALS),
        estimated_credits=round_half_up(first.estimated_credits + second.estimated_credits, CREDIT_DECIMALS),
    )


# ================================
# PRE-RUN ESTIMATES
# ================================

def estimate_single_image_cost() -> CostBreakdown:
    """Estimate for one image: ~1,500 input + ~250 output tokens and 4 annotation calls."""
    return calculate_cost_breakdown(UsageMetrics(
        openai_input_tokens=ESTIMATE_PER_IMAGE_INPUT_TOKENS,
        openai_output_tokens=ESTIMATE_PER_IMAGE_OUTPUT_TOKENS,
        google_vision_calls=ANNOTATION_CALLS_PER_IMAGE,
    ))


def estimate_free_task_cost(image_count: int = 10) -> CostBreakdown:
    """Estimate for per-image analysis plus clustering (the free tier)."""
    return calculate_cost_breakdown(UsageMetrics(
        openai_input_tokens=image_count * ESTIMATE_PER_IMAGE_INPUT_TOKENS + ESTIMATE_CLUSTERING_INPUT_TOKENS,
        openai_output_tokens=image_count * ESTIMATE_PER_IMAGE_OUTPUT_TOKENS + ESTIMATE_CLUSTERING_OUTPUT_TOKENS,
        google_vision_calls=image_count * ANNOTATION_CALLS_PER_IMAGE,
    ))


def estimate_pro_task_cost(image_count: int = 10) -> CostBreakdown:
    """Estimate for the free tier plus persona and creative-brief generation."""
    free_task = estimate_free_task_cost(image_count)
    additional = calculate_cost_breakdown(UsageMetrics(
        openai_input_tokens=ESTIMATE_PERSONA_INPUT_TOKENS + ESTIMATE_CREATIVE_INPUT_TOKENS,
        openai_output_tokens=ESTIMATE_PERSONA_OUTPUT_TOKENS + ESTIMATE_CREATIVE_OUTPUT_TOKENS,
        meta_queries=ESTIMATE_PRO_META_QUERIES,
    ))
    return combine_breakdowns(free_task, additional)


def estimate_fallback_summary_cost(image_count: int = 10) -> CostBreakdown:
    """Estimate for the whole-product fallback summary over all images."""
    return calculate_cost_breakdown(UsageMetrics(
        openai_input_tokens=ESTIMATE_FALLBACK_BASE_INPUT_TOKENS + image_count * ESTIMATE_FALLBACK_PER_IMAGE_INPUT_TOKENS,
        openai_output_tokens=ESTIMATE_FALLBACK_OUTPUT_TOKENS,
    ))

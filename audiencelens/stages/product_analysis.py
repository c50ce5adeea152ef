"""
Product Analysis Stage - per-image vision + classification analysis.

For each uploaded image:
1. A vision-capable LLM returns structured product attributes (primary source).
2. The image-annotation service returns objects, labels, OCR text and colors.
3. The rule-based classifier runs over the annotation results.
4. Each attribute takes the LLM value when present and non-empty, otherwise
   the classifier's value; confidence is clamped to [0.1, 0.99].

Neither an LLM failure nor an annotation failure aborts an image; both
degrade to the next source. Images run concurrently, bounded by
``ctx.max_concurrency``, and results keep input order.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from ..core.ai_gateway import GatewayError
from ..core.constants import (
    MAX_CONFIDENCE,
    MIN_CONFIDENCE,
    PRODUCT_VISION_MODEL_ID,
    STAGE_MAX_TOKENS,
)
from ..core.cost_calculator import UsageMetrics
from ..core.product_classifier import (
    classify_product,
    generate_keywords,
    generate_target_audience,
)
from ..core.vision_annotator import collect_vision_insights
from ..models import ProductAttributes, SingleImageAnalysis, VisionInsights
from ..pipeline.context import PipelineContext

logger = logging.getLogger(__name__)

STAGE_NAME = "product_analysis"

DEFAULT_USER_PROMPT = "Please analyze this product image for Facebook advertising insights."

SYSTEM_PROMPT = """You are a professional e-commerce product analyst. Analyze the product image and provide detailed classification in JSON format.

Focus on:
1. Product identification and category classification
2. Target audience demographics (Traditional Chinese)
3. Marketing keywords (English)
4. Analysis confidence score (0-1)

Categories: electronics, fashion, food, health, beauty, home, sports, automotive, books, toys, jewelry, other.

Respond strictly as JSON with keys: productName, productCategory (array), targetAudience (array), keywords (array), confidence."""


class ProductAnalysisError(Exception):
    """Custom exception for single-image analysis failures."""
    pass


def clamp_confidence(value: float) -> float:
    return max(MIN_CONFIDENCE, min(MAX_CONFIDENCE, value))


def _build_messages(image_base64: str, product_name_hint: str = "") -> List[Dict[str, Any]]:
    hint_text = f"Use this context when relevant: {product_name_hint}" if product_name_hint else DEFAULT_USER_PROMPT
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {
            "role": "user",
            "content": [
                {"type": "text", "text": hint_text},
                {"type": "image_url", "image_url": {"url": f"data:image/jpeg;base64,{image_base64}"}},
            ],
        },
    ]


async def _request_llm_attributes(
    gateway: Any,
    model_candidates: List[str],
    image_base64: str,
    metrics: UsageMetrics,
    product_name_hint: str,
) -> Dict[str, Any]:
    """Vision LLM attributes, or ``{}`` when no usable response came back."""
    try:
        return await gateway.complete_json(
            STAGE_NAME,
            model_candidates,
            _build_messages(image_base64, product_name_hint),
            STAGE_MAX_TOKENS[STAGE_NAME],
            metrics,
        )
    except GatewayError as e:
        logger.warning(f"Vision LLM unavailable, falling back to rule-based classification: {e}")
        return {}


def _non_empty_list(value: Any) -> Optional[List[Any]]:
    if isinstance(value, list) and value:
        return value
    return None


def merge_product_attributes(llm_result: Dict[str, Any], vision: VisionInsights) -> ProductAttributes:
    """Prefer each LLM field when present and non-empty; fill the rest from the classifier."""
    detected_items = vision.objects + vision.labels
    classification = classify_product(detected_items, " ".join(vision.text))

    name = llm_result.get("productName")
    product_name = name.strip() if isinstance(name, str) and name.strip() else classification.product_name

    product_category = _non_empty_list(llm_result.get("productCategory")) or [classification.category]
    target_audience = _non_empty_list(llm_result.get("targetAudience")) or generate_target_audience(
        classification.category, classification.product_name
    )
    keywords = _non_empty_list(llm_result.get("keywords")) or generate_keywords(
        classification.category, classification.product_name, detected_items
    )

    confidence = llm_result.get("confidence")
    if isinstance(confidence, (int, float)) and not isinstance(confidence, bool):
        confidence = clamp_confidence(float(confidence))
    else:
        confidence = clamp_confidence(classification.confidence / 100)

    return ProductAttributes(
        product_name=product_name,
        product_category=[str(c) for c in product_category],
        target_audience=[str(a) for a in target_audience],
        keywords=[str(k) for k in keywords],
        confidence=confidence,
    )


async def analyze_single_image(
    image_base64: str,
    index: int,
    gateway: Any,
    annotator: Any,
    metrics: UsageMetrics,
    model_candidates: Optional[List[str]] = None,
    product_name_hint: str = "",
) -> SingleImageAnalysis:
    """Analyze one image. The LLM call and the annotation calls run concurrently."""
    logger.info(f"Analyzing image {index + 1}")
    model_candidates = model_candidates or [PRODUCT_VISION_MODEL_ID]

    llm_result, vision = await asyncio.gather(
        _request_llm_attributes(gateway, model_candidates, image_base64, metrics, product_name_hint),
        collect_vision_insights(annotator, image_base64, metrics),
    )

    product = merge_product_attributes(llm_result, vision)
    return SingleImageAnalysis(index=index, image_base64=image_base64, product=product, vision=vision)


async def analyze_product_image(
    image_base64: str,
    gateway: Any,
    annotator: Any,
    model_candidates: Optional[List[str]] = None,
) -> ProductAttributes:
    """Single-image entry point with its own metrics."""
    metrics = UsageMetrics()
    try:
        result = await analyze_single_image(image_base64, 0, gateway, annotator, metrics, model_candidates)
    except Exception as e:
        logger.error(f"Error in product image analysis: {type(e).__name__}: {e}")
        raise ProductAnalysisError(f"Failed to analyze product image: {e}") from e

    logger.info(
        f"Single image analysis complete: product={result.product.product_name}, "
        f"confidence={result.product.confidence}, google_vision_calls={metrics.google_vision_calls}"
    )
    return result.product


async def run(ctx: PipelineContext) -> None:
    """Analyze every image in ``ctx.images``; fills ``ctx.single_image_results`` in input order."""
    semaphore = asyncio.Semaphore(max(1, ctx.max_concurrency))
    model_candidates = ctx.models_for(STAGE_NAME) or [PRODUCT_VISION_MODEL_ID]

    async def bounded(index: int, image_base64: str) -> SingleImageAnalysis:
        async with semaphore:
            return await analyze_single_image(
                image_base64,
                index,
                ctx.gateway,
                ctx.annotator,
                ctx.metrics,
                model_candidates,
                ctx.options.product_name_hint,
            )

    # gather returns results in argument order regardless of completion order
    results = await asyncio.gather(*(bounded(i, image) for i, image in enumerate(ctx.images)))
    ctx.single_image_results = list(results)
    ctx.log(f"Analyzed {len(results)} image(s)")

"""
Fallback Summary Stage - one whole-batch product summary with a confidence.

Confidence defaults to 0.7 when the model omits it and is clamped to
[0.1, 0.99] otherwise.
"""

from ..core.constants import DEFAULT_FALLBACK_CONFIDENCE, MAX_CONFIDENCE, MIN_CONFIDENCE
from ..models import FallbackSummaryResult
from ..pipeline.context import PipelineContext
from .stage_utils import request_stage_json, to_prompt_json

STAGE_NAME = "fallback_summary"

SYSTEM_PROMPT = '你是一名電商行銷專家。請綜合所有素材生成 80 字內的產品彙整摘要 (繁體中文)，並估計 0-1 信心值。回傳 JSON：{ "summary": "...", "confidence": 0.87 }。'


def parse_fallback_summary(payload: dict) -> FallbackSummaryResult:
    summary = payload.get("summary")
    confidence = payload.get("confidence")

    if isinstance(confidence, (int, float)) and not isinstance(confidence, bool):
        confidence = max(MIN_CONFIDENCE, min(MAX_CONFIDENCE, float(confidence)))
    else:
        confidence = DEFAULT_FALLBACK_CONFIDENCE

    return FallbackSummaryResult(
        summary=summary if isinstance(summary, str) else "",
        confidence=confidence,
    )


async def run(ctx: PipelineContext) -> None:
    user_prompt = "素材資訊如下：\n" + to_prompt_json({"images": ctx.analyses_payload()})

    response = await request_stage_json(ctx, STAGE_NAME, SYSTEM_PROMPT, user_prompt)
    ctx.fallback_summary = parse_fallback_summary(response)
    ctx.log(f"Fallback summary generated (confidence={ctx.fallback_summary.confidence})")

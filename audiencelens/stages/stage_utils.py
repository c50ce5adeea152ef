"""
Shared helpers for the text-only JSON stages (clustering, persona,
creative brief, fallback summary).
"""

import json
import logging
from typing import Any, Dict, List, Type, TypeVar

from pydantic import BaseModel, ValidationError

from ..core.ai_gateway import StructuredOutputError
from ..core.constants import STAGE_MAX_TOKENS
from ..pipeline.context import PipelineContext

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


def to_prompt_json(payload: Any) -> str:
    """Pretty-printed JSON for a user prompt; non-ASCII text is kept as-is."""
    return json.dumps(payload, ensure_ascii=False, indent=2)


async def request_stage_json(ctx: PipelineContext, stage_name: str, system_prompt: str, user_prompt: str) -> Dict[str, Any]:
    """One gateway call in JSON mode for ``stage_name``, usage added to the run's metrics."""
    return await ctx.gateway.complete_json(
        stage_name,
        ctx.models_for(stage_name),
        [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ],
        STAGE_MAX_TOKENS[stage_name],
        ctx.metrics,
    )


def parse_item_list(stage_name: str, payload: Dict[str, Any], key: str, model: Type[ModelT]) -> List[ModelT]:
    """
    Validate ``payload[key]`` as a list of ``model``.

    A missing key yields an empty list. Anything that is not a list of
    well-formed items raises StructuredOutputError. No length checks.
    """
    items = payload.get(key)
    if items is None:
        logger.warning(f"{stage_name}: response has no '{key}' array")
        return []
    if not isinstance(items, list):
        raise StructuredOutputError(stage_name, f"'{key}' must be an array, got {type(items).__name__}")

    try:
        return [model.model_validate(item) for item in items]
    except ValidationError as e:
        raise StructuredOutputError(stage_name, f"malformed '{key}' item: {e.errors()[0].get('msg', e)}") from e

"""
Creative Brief Stage - creative direction per persona.

Depends on personas; the executor skips this stage when none were produced.
"""

from ..models import CreativeBrief
from ..pipeline.context import PipelineContext
from .stage_utils import parse_item_list, request_stage_json, to_prompt_json

STAGE_NAME = "creative_brief"

SYSTEM_PROMPT = """你是一位 Meta 廣告創意總監。請針對 Persona 與素材生成繁體中文創意建議，格式限制：
- headlineHook: 15 字內
- coreMessage: 2-3 句 (60 字內)
- copyIdeas: 2 個方向 (各 30 字內)
- visualDirection: 2-3 點 bullet
- ctaSuggestion: 1 句
每則建議需包含 personaName。所有輸出維持策略性且親和，避免 emoji。
請以 JSON 物件回傳，建議列表放在 "creativeBriefs" 欄位。"""


async def run(ctx: PipelineContext) -> None:
    payload = {
        "personas": [persona.model_dump(by_alias=True) for persona in ctx.personas],
        "analyses": ctx.analyses_payload(),
    }
    user_prompt = "請依 Persona 產出 JSON：\n" + to_prompt_json(payload)

    response = await request_stage_json(ctx, STAGE_NAME, SYSTEM_PROMPT, user_prompt)
    ctx.creative_briefs = parse_item_list(STAGE_NAME, response, "creativeBriefs", CreativeBrief)
    ctx.log(f"Generated {len(ctx.creative_briefs)} creative brief(s)")

"""
Persona Stage - derives target personas from the images and their clusters.
"""

from ..models import PersonaInsight
from ..pipeline.context import PipelineContext
from .stage_utils import parse_item_list, request_stage_json, to_prompt_json

STAGE_NAME = "persona"

SYSTEM_PROMPT = """你是廣告受眾策略專家，請依據素材與創意集群生成 Persona 洞察。每個 Persona 回傳欄位：
- personaName (繁中 6-8 字內)
- coreNeed (繁中一句話)
- keyMotivation (繁中 bullet 最多 3 點)
- coverageStatus ("covered" 或 "gap")
- linkedClusters (對應 clusterId array)
所有文字維持專業語氣，避免 emoji。
請以 JSON 物件回傳，persona 列表放在 "personas" 欄位。"""


async def run(ctx: PipelineContext) -> None:
    payload = {
        "images": ctx.analyses_payload(),
        "clusters": [cluster.model_dump(by_alias=True) for cluster in ctx.clusters],
    }
    user_prompt = "請輸出 JSON：\n" + to_prompt_json(payload)

    response = await request_stage_json(ctx, STAGE_NAME, SYSTEM_PROMPT, user_prompt)
    ctx.personas = parse_item_list(STAGE_NAME, response, "personas", PersonaInsight)
    ctx.log(f"Generated {len(ctx.personas)} persona(s)")

"""
Clustering Stage - groups the uploaded creatives into creative clusters.

One gateway call over the full per-image result set. The prompt asks for
2-4 clusters; the returned count is whatever the model produces and is not
validated or clamped. Cluster confidence is passed through unclamped.
"""

from ..models import ClusterSummary
from ..pipeline.context import PipelineContext
from .stage_utils import parse_item_list, request_stage_json, to_prompt_json

STAGE_NAME = "clustering"

SYSTEM_PROMPT = """你是 Meta 廣告創意策略專家，任務是統整多張素材的重點。請辨識素材的創意集群 (cluster)，描述差異化亮點，並將訊息維持在 60 字內。回傳 JSON，欄位：
- clusterId (英數字)
- clusterName (繁中 8 字內)
- coreMessage (繁中 60 字內)
- supportingAssets (索引 array)
- headlineExample (15 字內)
- recommendedKeywords (英文關鍵字 array, 最多 5 個)
- confidence (0-1 小數)"""


async def run(ctx: PipelineContext) -> None:
    user_prompt = "以下是素材分析結果，請產生 2-4 個創意集群：\n" + to_prompt_json({"images": ctx.analyses_payload()})

    payload = await request_stage_json(ctx, STAGE_NAME, SYSTEM_PROMPT, user_prompt)
    ctx.clusters = parse_item_list(STAGE_NAME, payload, "clusters", ClusterSummary)
    ctx.log(f"Generated {len(ctx.clusters)} cluster(s)")

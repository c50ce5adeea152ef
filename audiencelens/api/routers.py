import asyncio
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from audiencelens.api.dependencies import (
    get_current_user_id,
    get_graph_client,
    get_pipeline,
    get_session,
    get_token_manager,
)
from audiencelens.api.schemas import (
    AnalysisDetailResponse,
    AnalysisRecordResponse,
    AnalyzeResponse,
    AudienceKeywordsRequest,
    AudienceKeywordsResponse,
    CostEstimateResponse,
    DashboardStatsResponse,
)
from audiencelens.core.constants import (
    DEFAULT_HISTORY_LIMIT,
    MAX_HISTORY_LIMIT,
    MAX_IMAGES_PER_REQUEST,
    PRO_SUBSCRIPTION_TIERS,
)
from audiencelens.core.cost_calculator import (
    UsageMetrics,
    estimate_fallback_summary_cost,
    estimate_free_task_cost,
    estimate_pro_task_cost,
    estimate_single_image_cost,
)
from audiencelens.core.image_utils import ImagePreprocessingError, preprocess_image
from audiencelens.models import CreativeDiversityOptions
from audiencelens.pipeline.executor import CreativeDiversityPipeline
from audiencelens.pipeline.persistence import (
    get_dashboard_stats,
    get_user_analysis,
    list_user_analyses,
    persist_creative_result,
    record_audience_usage,
)
from audiencelens.stages.audience_keywords import generate_audience_keywords

logger = logging.getLogger(__name__)

ANALYSIS_FAILED_MESSAGE = "Analysis failed, please retry later"

api_router = APIRouter(prefix="/api/v1")
analysis_router = APIRouter(tags=["Analysis"])
audience_router = APIRouter(tags=["Audience"])
history_router = APIRouter(tags=["History"])


def is_pro_tier(subscription_tier: Optional[str]) -> bool:
    return (subscription_tier or "").strip().lower() in PRO_SUBSCRIPTION_TIERS


def build_options(
    subscription_tier: Optional[str],
    enable_fallback: bool,
    product_name_hint: Optional[str],
) -> CreativeDiversityOptions:
    """Entitlement gating: personas and briefs for pro tiers, fallback summary only when a pro user asks."""
    is_pro = is_pro_tier(subscription_tier)
    return CreativeDiversityOptions(
        generate_personas=is_pro,
        generate_creative_briefs=is_pro,
        run_fallback_summary=is_pro and enable_fallback,
        product_name_hint=product_name_hint or "",
    )


@analysis_router.post("/analyze", response_model=AnalyzeResponse)
async def analyze_images(
    images: Optional[List[UploadFile]] = File(None, description="Product creatives (1-10 images)"),
    subscription_tier: str = Form("free", description="Caller's subscription tier"),
    enable_fallback: bool = Form(False, description="Request the whole-product fallback summary (pro only)"),
    product_name_hint: Optional[str] = Form(None, description="Context passed to the vision model"),
    confirmed_product_name: Optional[str] = Form(None, description="User-confirmed product name"),
    price_range: Optional[str] = Form(None),
    sales_region: Optional[str] = Form(None),
    is_confirmed: bool = Form(False),
    user_id: str = Depends(get_current_user_id),
    pipeline: CreativeDiversityPipeline = Depends(get_pipeline),
    session: AsyncSession = Depends(get_session),
):
    """Run the creative-diversity pipeline over an uploaded image batch and store the result."""
    files = images or []
    if not files:
        raise HTTPException(status_code=400, detail="At least one image is required")
    if len(files) > MAX_IMAGES_PER_REQUEST:
        raise HTTPException(status_code=400, detail=f"At most {MAX_IMAGES_PER_REQUEST} images per request")

    options = build_options(subscription_tier, enable_fallback, product_name_hint)
    logger.info(
        f"📥 Analysis request: user={user_id}, images={len(files)}, "
        f"tier={subscription_tier}, fallback={options.run_fallback_summary}"
    )

    try:
        raw_images = [await upload.read() for upload in files]
        processed = await asyncio.gather(*(asyncio.to_thread(preprocess_image, data) for data in raw_images))
    except ImagePreprocessingError as e:
        raise HTTPException(status_code=400, detail=str(e))

    try:
        result = await pipeline.run(processed, options)
        persisted = await persist_creative_result(
            session,
            user_id,
            processed,
            result,
            confirmed_product_name=confirmed_product_name,
            price_range=price_range,
            sales_region=sales_region,
            is_confirmed=is_confirmed,
        )
    except Exception as e:
        logger.error(f"❌ Error analyzing creative diversity: {type(e).__name__}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=ANALYSIS_FAILED_MESSAGE)

    return AnalyzeResponse.from_records(persisted, result)


@audience_router.post("/audience-keywords", response_model=AudienceKeywordsResponse)
async def audience_keywords(
    request: AudienceKeywordsRequest,
    user_id: str = Depends(get_current_user_id),
    graph_client=Depends(get_graph_client),
    token_manager=Depends(get_token_manager),
    session: AsyncSession = Depends(get_session),
):
    """Ad-platform interest suggestions for a product; empty when the platform is unavailable."""
    metrics = UsageMetrics()
    keywords = await generate_audience_keywords(request.product, graph_client, token_manager, metrics)
    await record_audience_usage(session, user_id, len(keywords))
    return AudienceKeywordsResponse(keywords=keywords, meta_queries=metrics.meta_queries)


@audience_router.get("/ad-token/status")
async def ad_token_status(token_manager=Depends(get_token_manager)):
    return token_manager.status()


@analysis_router.get("/cost-estimate", response_model=CostEstimateResponse)
async def cost_estimate(image_count: int = Query(MAX_IMAGES_PER_REQUEST, ge=1, le=MAX_IMAGES_PER_REQUEST)):
    """Planning estimates per tier for a batch of ``image_count`` images."""
    return CostEstimateResponse(
        image_count=image_count,
        single_image=estimate_single_image_cost().to_dict(),
        free_task=estimate_free_task_cost(image_count).to_dict(),
        pro_task=estimate_pro_task_cost(image_count).to_dict(),
        fallback_summary=estimate_fallback_summary_cost(image_count).to_dict(),
    )


@history_router.get("/analyses", response_model=List[AnalysisRecordResponse])
async def list_analyses(
    limit: int = Query(DEFAULT_HISTORY_LIMIT, ge=1, le=MAX_HISTORY_LIMIT),
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
):
    """The caller's analysis history, newest first."""
    analyses = await list_user_analyses(session, user_id, limit)
    return [AnalysisRecordResponse.model_validate(analysis, from_attributes=True) for analysis in analyses]


@history_router.get("/analyses/{analysis_id}", response_model=AnalysisDetailResponse)
async def get_analysis(
    analysis_id: int,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
):
    persisted = await get_user_analysis(session, user_id, analysis_id)
    if persisted is None:
        raise HTTPException(status_code=404, detail="Analysis not found")
    return AnalysisDetailResponse.from_records(persisted)


@history_router.get("/dashboard/stats", response_model=DashboardStatsResponse)
async def dashboard_stats(
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
):
    stats = await get_dashboard_stats(session, user_id)
    return DashboardStatsResponse.model_validate(stats, from_attributes=True)


api_router.include_router(analysis_router)
api_router.include_router(audience_router)
api_router.include_router(history_router)

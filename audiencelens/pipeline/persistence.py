"""
Persistence of a finished pipeline run.

One run writes:
- one ``Analysis`` row (primary product = first image; categories flattened
  across all images; a confirmed product name overrides the detected one),
- one ``AnalysisImage`` row per input image, index-aligned with the upload,
- one ``AnalysisCost`` row with the metered (unbuffered) breakdown,
- one more analysis on the user's ``UsageStats`` row for the current month.

History and dashboard reads are always scoped to the requesting user.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Sequence

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from ..api.database import Analysis, AnalysisCost, AnalysisImage, UsageStats
from ..core.constants import DEFAULT_HISTORY_LIMIT, MONTHLY_ANALYSIS_LIMIT
from ..models import CreativeDiversityResult, ProductAttributes, VisionInsights

logger = logging.getLogger(__name__)

DEFAULT_PRIMARY_PRODUCT = ProductAttributes(
    product_name="未命名產品",
    product_category=["other"],
    target_audience=["一般消費者"],
    keywords=["product"],
    confidence=0.7,
)


def image_data_url(image_base64: str) -> str:
    return f"data:image/jpeg;base64,{image_base64}"


@dataclass
class PersistedAnalysis:
    analysis: Analysis
    images: List[AnalysisImage]
    cost: Optional[AnalysisCost]


@dataclass
class DashboardStats:
    total_analyses: int
    total_audiences: int
    current_month_analyses: int
    monthly_limit: int = MONTHLY_ANALYSIS_LIMIT


def current_month(now: Optional[datetime] = None) -> str:
    return (now or datetime.utcnow()).strftime("%Y-%m")


def build_analysis_record(
    user_id: str,
    images: Sequence[str],
    result: CreativeDiversityResult,
    confirmed_product_name: Optional[str] = None,
    price_range: Optional[str] = None,
    sales_region: Optional[str] = None,
    is_confirmed: bool = False,
) -> Analysis:
    primary = result.product_analyses[0] if result.product_analyses else DEFAULT_PRIMARY_PRODUCT
    confirmed = (confirmed_product_name or "").strip()
    fallback = result.fallback_summary

    return Analysis(
        user_id=user_id,
        cover_image_url=image_data_url(images[0]),
        product_name=confirmed or primary.product_name,
        product_category=[category for product in result.product_analyses for category in product.product_category],
        target_audience=list(primary.target_audience),
        keywords=list(primary.keywords),
        confidence=f"{primary.confidence:.2f}",
        price_range=price_range,
        sales_region=sales_region,
        cluster_summary=[c.model_dump(by_alias=True) for c in result.clusters],
        persona_insights=[p.model_dump(by_alias=True) for p in result.personas],
        creative_briefs=[b.model_dump(by_alias=True) for b in result.creative_briefs],
        final_product_summary=fallback.summary if fallback else None,
        fallback_confidence=f"{fallback.confidence:.3f}" if fallback else None,
        is_confirmed=is_confirmed,
    )


def build_image_records(analysis_id: int, images: Sequence[str], result: CreativeDiversityResult) -> List[AnalysisImage]:
    records = []
    for index, image_base64 in enumerate(images):
        vision = result.vision_insights[index] if index < len(result.vision_insights) else VisionInsights()
        records.append(AnalysisImage(
            analysis_id=analysis_id,
            image_url=image_data_url(image_base64),
            position=index,
            google_vision_objects=list(vision.objects),
            google_vision_labels=list(vision.labels),
            ocr_texts=list(vision.text),
            dominant_colors=list(vision.colors),
        ))
    return records


async def upsert_analysis_cost(session: AsyncSession, analysis_id: int, image_count: int, result: CreativeDiversityResult) -> AnalysisCost:
    metrics = result.cost.metrics
    breakdown = result.cost.breakdown

    existing = await session.execute(select(AnalysisCost).where(AnalysisCost.analysis_id == analysis_id))
    cost = existing.scalars().first() or AnalysisCost(analysis_id=analysis_id, image_count=image_count)

    cost.image_count = image_count
    cost.openai_input_tokens = metrics.openai_input_tokens
    cost.openai_output_tokens = metrics.openai_output_tokens
    cost.openai_cost_usd = f"{breakdown.openai_cost_usd:.4f}"
    cost.google_vision_calls = metrics.google_vision_calls
    cost.google_vision_cost_usd = f"{breakdown.google_vision_cost_usd:.4f}"
    cost.meta_queries = metrics.meta_queries
    cost.total_cost_usd = f"{breakdown.total_cost_usd:.4f}"
    cost.total_cost_jpy = f"{breakdown.total_cost_jpy:.2f}"
    cost.estimated_credits = f"{breakdown.estimated_credits:.2f}"

    session.add(cost)
    return cost


async def persist_creative_result(
    session: AsyncSession,
    user_id: str,
    images: Sequence[str],
    result: CreativeDiversityResult,
    confirmed_product_name: Optional[str] = None,
    price_range: Optional[str] = None,
    sales_region: Optional[str] = None,
    is_confirmed: bool = False,
) -> PersistedAnalysis:
    """Write the analysis, its image rows, its cost row and the monthly usage count in one transaction."""
    if not images:
        raise ValueError("Cannot persist an analysis without images")

    analysis = build_analysis_record(
        user_id, images, result, confirmed_product_name, price_range, sales_region, is_confirmed,
    )
    session.add(analysis)
    await session.flush()

    image_records = build_image_records(analysis.id, images, result)
    session.add_all(image_records)
    cost = await upsert_analysis_cost(session, analysis.id, len(images), result)
    await increment_usage_stats(session, user_id, analyses=1)

    await session.commit()
    logger.info(f"Persisted analysis {analysis.id} for user {user_id} with {len(image_records)} image(s)")
    return PersistedAnalysis(analysis=analysis, images=image_records, cost=cost)


async def increment_usage_stats(
    session: AsyncSession,
    user_id: str,
    analyses: int = 0,
    audiences: int = 0,
    month: Optional[str] = None,
) -> UsageStats:
    """Add to the user's counters for ``month`` (default: the current UTC month). The caller commits."""
    month = month or current_month()
    existing = await session.execute(
        select(UsageStats).where(UsageStats.user_id == user_id, UsageStats.month == month)
    )
    stats = existing.scalars().first() or UsageStats(user_id=user_id, month=month)

    stats.analysis_count += analyses
    stats.total_audiences += audiences
    stats.updated_at = datetime.utcnow()

    session.add(stats)
    return stats


async def record_audience_usage(session: AsyncSession, user_id: str, audience_count: int) -> Optional[UsageStats]:
    if audience_count <= 0:
        return None
    stats = await increment_usage_stats(session, user_id, audiences=audience_count)
    await session.commit()
    logger.info(f"Recorded {audience_count} audience suggestion(s) for user {user_id}")
    return stats


async def list_user_analyses(session: AsyncSession, user_id: str, limit: int = DEFAULT_HISTORY_LIMIT) -> List[Analysis]:
    """The user's most recent analyses, newest first."""
    result = await session.execute(
        select(Analysis)
        .where(Analysis.user_id == user_id)
        .order_by(Analysis.created_at.desc(), Analysis.id.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def get_user_analysis(session: AsyncSession, user_id: str, analysis_id: int) -> Optional[PersistedAnalysis]:
    """
    One stored analysis with its images (in upload order) and cost row.

    Returns None when the analysis does not exist or belongs to another user,
    so callers cannot tell the two apart.
    """
    result = await session.execute(
        select(Analysis).where(Analysis.id == analysis_id, Analysis.user_id == user_id)
    )
    analysis = result.scalars().first()
    if analysis is None:
        return None

    images = await session.execute(
        select(AnalysisImage).where(AnalysisImage.analysis_id == analysis_id).order_by(AnalysisImage.position)
    )
    cost = await session.execute(select(AnalysisCost).where(AnalysisCost.analysis_id == analysis_id))
    return PersistedAnalysis(analysis=analysis, images=list(images.scalars().all()), cost=cost.scalars().first())


async def get_dashboard_stats(session: AsyncSession, user_id: str, month: Optional[str] = None) -> DashboardStats:
    total_analyses = await session.execute(
        select(func.count(Analysis.id)).where(Analysis.user_id == user_id)
    )
    total_audiences = await session.execute(
        select(func.coalesce(func.sum(UsageStats.total_audiences), 0)).where(UsageStats.user_id == user_id)
    )
    monthly = await session.execute(
        select(UsageStats).where(UsageStats.user_id == user_id, UsageStats.month == (month or current_month()))
    )
    month_stats = monthly.scalars().first()

    return DashboardStats(
        total_analyses=total_analyses.scalar_one(),
        total_audiences=total_audiences.scalar_one(),
        current_month_analyses=month_stats.analysis_count if month_stats else 0,
    )

import logging
import os
from datetime import datetime
from typing import Any, List, Optional

from sqlalchemy import JSON, Column, DateTime, UniqueConstraint, event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.sql import func
from sqlmodel import Field, SQLModel

logger = logging.getLogger(__name__)


class Analysis(SQLModel, table=True):
    """One multi-image analysis request"""
    __tablename__ = "analyses"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    cover_image_url: str = Field(description="data: URL of the first processed image")

    # Primary product (first image) with the flattened category list of all images
    product_name: str
    product_category: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    target_audience: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    keywords: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    confidence: str = Field(description="Primary product confidence formatted to 2 decimals")

    price_range: Optional[str] = Field(default=None)
    sales_region: Optional[str] = Field(default=None)

    # Stage outputs (camelCase JSON)
    cluster_summary: List[Any] = Field(default_factory=list, sa_column=Column(JSON))
    persona_insights: List[Any] = Field(default_factory=list, sa_column=Column(JSON))
    creative_briefs: List[Any] = Field(default_factory=list, sa_column=Column(JSON))
    final_product_summary: Optional[str] = Field(default=None)
    fallback_confidence: Optional[str] = Field(default=None, description="Formatted to 3 decimals")

    is_confirmed: bool = Field(default=False)
    created_at: datetime = Field(default_factory=datetime.utcnow, sa_column=Column(DateTime(timezone=True), server_default=func.now()))


class AnalysisImage(SQLModel, table=True):
    """One uploaded image of an analysis, index-aligned with the upload order"""
    __tablename__ = "analysis_images"

    id: Optional[int] = Field(default=None, primary_key=True)
    analysis_id: int = Field(foreign_key="analyses.id", index=True)
    image_url: str
    position: int
    google_vision_objects: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    google_vision_labels: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    ocr_texts: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    dominant_colors: List[str] = Field(default_factory=list, sa_column=Column(JSON))


class AnalysisCost(SQLModel, table=True):
    """Metered usage and cost of one analysis (one row per analysis)"""
    __tablename__ = "analysis_costs"

    id: Optional[int] = Field(default=None, primary_key=True)
    analysis_id: int = Field(foreign_key="analyses.id", unique=True)
    image_count: int
    openai_input_tokens: int = Field(default=0)
    openai_output_tokens: int = Field(default=0)
    openai_cost_usd: str = Field(default="0.0000")
    google_vision_calls: int = Field(default=0)
    google_vision_cost_usd: str = Field(default="0.0000")
    meta_queries: int = Field(default=0)
    total_cost_usd: str = Field(default="0.0000")
    total_cost_jpy: str = Field(default="0.00")
    estimated_credits: str = Field(default="0.00")


class UsageStats(SQLModel, table=True):
    """Per-user monthly usage counters (month is YYYY-MM, UTC)"""
    __tablename__ = "usage_stats"
    __table_args__ = (UniqueConstraint("user_id", "month", name="uq_usage_stats_user_month"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    month: str
    analysis_count: int = Field(default=0)
    total_audiences: int = Field(default=0)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./data/audiencelens.db")


def create_engine(database_url: str = DATABASE_URL, **kwargs: Any) -> AsyncEngine:
    """Async engine; SQLite connections get foreign keys enabled."""
    if database_url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})
    async_engine = create_async_engine(database_url, echo=False, **kwargs)

    if database_url.startswith("sqlite"):
        @event.listens_for(async_engine.sync_engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return async_engine


def create_session_factory(async_engine: AsyncEngine) -> sessionmaker:
    return sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)


async def create_db_and_tables(async_engine: AsyncEngine) -> None:
    if async_engine.url.database and async_engine.url.drivername.startswith("sqlite"):
        directory = os.path.dirname(async_engine.url.database)
        if directory:
            os.makedirs(directory, exist_ok=True)

    async with async_engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    logger.info("Database tables created")

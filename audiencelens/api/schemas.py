from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from audiencelens.models import AudienceKeyword, CreativeDiversityResult, ProductAttributes


class AnalysisImageResponse(BaseModel):
    """Stored image record of an analysis"""
    id: Optional[int] = None
    position: int
    image_url: str
    google_vision_objects: List[str] = Field(default_factory=list)
    google_vision_labels: List[str] = Field(default_factory=list)
    ocr_texts: List[str] = Field(default_factory=list)
    dominant_colors: List[str] = Field(default_factory=list)


class AnalysisRecordResponse(BaseModel):
    """Stored analysis record"""
    id: Optional[int] = None
    user_id: str
    product_name: str
    product_category: List[str]
    target_audience: List[str]
    keywords: List[str]
    confidence: str
    price_range: Optional[str] = None
    sales_region: Optional[str] = None
    final_product_summary: Optional[str] = None
    fallback_confidence: Optional[str] = None
    is_confirmed: bool = False
    created_at: Optional[datetime] = None


class AnalyzeResponse(BaseModel):
    """Response of POST /analyze"""
    analysis: AnalysisRecordResponse
    images: List[AnalysisImageResponse]
    creative_result: Dict[str, Any] = Field(..., description="CreativeDiversityResult dumped with camelCase keys")

    @classmethod
    def from_records(cls, persisted: Any, result: CreativeDiversityResult) -> "AnalyzeResponse":
        return cls(
            analysis=AnalysisRecordResponse.model_validate(persisted.analysis, from_attributes=True),
            images=[AnalysisImageResponse.model_validate(image, from_attributes=True) for image in persisted.images],
            creative_result=result.model_dump(mode="json", by_alias=True),
        )


class AnalysisCostResponse(BaseModel):
    """Stored metered cost of an analysis"""
    image_count: int
    openai_input_tokens: int = 0
    openai_output_tokens: int = 0
    openai_cost_usd: str
    google_vision_calls: int = 0
    google_vision_cost_usd: str
    meta_queries: int = 0
    total_cost_usd: str
    total_cost_jpy: str
    estimated_credits: str


class AnalysisDetailResponse(BaseModel):
    """Response of GET /analyses/{analysis_id}"""
    analysis: AnalysisRecordResponse
    cluster_summary: List[Dict[str, Any]] = Field(default_factory=list)
    persona_insights: List[Dict[str, Any]] = Field(default_factory=list)
    creative_briefs: List[Dict[str, Any]] = Field(default_factory=list)
    images: List[AnalysisImageResponse]
    cost: Optional[AnalysisCostResponse] = None

    @classmethod
    def from_records(cls, persisted: Any) -> "AnalysisDetailResponse":
        analysis = persisted.analysis
        return cls(
            analysis=AnalysisRecordResponse.model_validate(analysis, from_attributes=True),
            cluster_summary=analysis.cluster_summary or [],
            persona_insights=analysis.persona_insights or [],
            creative_briefs=analysis.creative_briefs or [],
            images=[AnalysisImageResponse.model_validate(image, from_attributes=True) for image in persisted.images],
            cost=AnalysisCostResponse.model_validate(persisted.cost, from_attributes=True) if persisted.cost else None,
        )


class DashboardStatsResponse(BaseModel):
    total_analyses: int
    total_audiences: int
    current_month_analyses: int
    monthly_limit: int


class AudienceKeywordsRequest(BaseModel):
    """Product attributes to look up ad-platform interests for"""
    product: ProductAttributes


class AudienceKeywordsResponse(BaseModel):
    keywords: List[AudienceKeyword]
    meta_queries: int = Field(0, description="Ad-platform queries issued for this request")


class CostEstimateResponse(BaseModel):
    image_count: int
    single_image: Dict[str, float]
    free_task: Dict[str, float]
    pro_task: Dict[str, float]
    fallback_summary: Dict[str, float]

"""
Pydantic models for the AudienceLens analysis pipeline.

LLM stages exchange camelCase JSON; every model accepts both the camelCase
alias and the snake_case field name, and dumps camelCase with ``by_alias=True``.
"""

from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from ..core.constants import (
    DEFAULT_BUFFER_PERCENTAGE,
    DEFAULT_FALLBACK_CONFIDENCE,
)
from ..core.cost_calculator import CostBreakdown, UsageMetrics


class CamelModel(BaseModel):
    """Base model accepting camelCase (LLM payloads) or snake_case input."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _as_text(value: Any) -> Any:
    # Models sometimes emit numeric ids (1 instead of "1")
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return value


def _as_text_list(value: Any) -> Any:
    if value is None:
        return []
    if isinstance(value, (str, int, float)) and not isinstance(value, bool):
        value = [value]
    if isinstance(value, list):
        return [_as_text(item) for item in value]
    return value


# --- Per-image analysis ---
class ProductAttributes(CamelModel):
    """Structured product attributes for one image (LLM output merged with the rule-based classifier)."""
    product_name: str = Field(..., description="Concise product name.")
    product_category: List[str] = Field(..., description="Category tags from the fixed taxonomy.")
    target_audience: List[str] = Field(..., description="Ordered demographic descriptors (Traditional Chinese).")
    keywords: List[str] = Field(..., description="Ordered marketing keywords (English).")
    confidence: float = Field(..., ge=0.0, le=1.0, description="Analysis confidence, clamped to [0.1, 0.99] by the analyzer.")


class VisionInsights(CamelModel):
    """Image-annotation results. Empty lists when annotation failed; never null."""
    objects: List[str] = Field(default_factory=list)
    labels: List[str] = Field(default_factory=list)
    text: List[str] = Field(default_factory=list, description="First OCR text fragments.")
    colors: List[str] = Field(default_factory=list, description="Dominant colors as 'rgb(r, g, b)' strings.")


class SingleImageAnalysis(CamelModel):
    """Analysis of one uploaded image. ``index`` is its position in the batch."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    index: int
    image_base64: str
    product: ProductAttributes
    vision: VisionInsights

    def to_llm_payload(self) -> dict:
        """Shape sent to downstream LLM stages (image bytes omitted)."""
        return {
            "index": self.index,
            "product": self.product.model_dump(by_alias=True),
            "vision": self.vision.model_dump(by_alias=True),
        }


# --- Stage outputs ---
class ClusterSummary(CamelModel):
    """A creative cluster grouping images that share a core message."""
    cluster_id: str = Field(..., description="Alphanumeric cluster identifier.")
    cluster_name: str = Field(..., description="Short cluster name (Traditional Chinese, 8 characters or fewer).")
    core_message: str = Field("", description="Differentiating message of the cluster.")
    supporting_assets: List[int] = Field(default_factory=list, description="Indices into the uploaded image batch.")
    headline_example: str = ""
    recommended_keywords: List[str] = Field(default_factory=list)
    confidence: Optional[float] = Field(None, description="Model-reported confidence, passed through unclamped.")

    @field_validator("cluster_id", mode="before")
    @classmethod
    def coerce_cluster_id(cls, value: Any) -> Any:
        return _as_text(value)

    @field_validator("recommended_keywords", mode="before")
    @classmethod
    def coerce_keywords(cls, value: Any) -> Any:
        return _as_text_list(value)


class PersonaInsight(CamelModel):
    """A target persona derived from the clusters."""
    persona_name: str
    core_need: str = ""
    key_motivation: List[str] = Field(default_factory=list)
    coverage_status: Literal["covered", "gap"] = Field("gap", description="Whether the uploaded creatives already address this persona.")
    linked_clusters: List[str] = Field(default_factory=list, description="References to ClusterSummary.cluster_id.")

    @field_validator("key_motivation", "linked_clusters", mode="before")
    @classmethod
    def coerce_lists(cls, value: Any) -> Any:
        return _as_text_list(value)

    @field_validator("coverage_status", mode="before")
    @classmethod
    def normalize_coverage_status(cls, value: Any) -> str:
        """Anything other than covered/gap (any case) is reported as a gap."""
        if isinstance(value, str) and value.strip().lower() == "covered":
            return "covered"
        return "gap"


class CreativeBrief(CamelModel):
    """Creative direction for one persona."""
    persona_name: str = Field(..., description="References PersonaInsight.persona_name.")
    headline_hook: str = ""
    core_message: str = ""
    copy_ideas: List[str] = Field(default_factory=list)
    visual_direction: List[str] = Field(default_factory=list)
    cta_suggestion: str = ""

    @field_validator("copy_ideas", "visual_direction", mode="before")
    @classmethod
    def coerce_lists(cls, value: Any) -> Any:
        return _as_text_list(value)


class FallbackSummaryResult(CamelModel):
    """Whole-batch product summary."""
    summary: str = ""
    confidence: float = DEFAULT_FALLBACK_CONFIDENCE


class AudienceKeyword(CamelModel):
    """A group of ad-platform interests returned for one search term."""
    category: str
    keywords: List[str]


# --- Pipeline I/O ---
class CreativeDiversityOptions(CamelModel):
    """
    Caller-controlled flags for the optional stages.

    The pipeline has no knowledge of subscription tiers; the caller maps
    entitlement to these flags.
    """
    generate_personas: bool = True
    generate_creative_briefs: bool = True
    run_fallback_summary: bool = False
    buffer_percentage: float = DEFAULT_BUFFER_PERCENTAGE
    product_name_hint: str = ""


class CostSummary(BaseModel):
    """Metrics snapshot together with the metered and buffered breakdowns."""
    model_config = ConfigDict(frozen=True)

    metrics: UsageMetrics
    breakdown: CostBreakdown
    buffered: CostBreakdown


class CreativeDiversityResult(CamelModel):
    """Single return value of one pipeline run."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    clusters: List[ClusterSummary] = Field(default_factory=list)
    personas: List[PersonaInsight] = Field(default_factory=list)
    creative_briefs: List[CreativeBrief] = Field(default_factory=list)
    product_analyses: List[ProductAttributes] = Field(default_factory=list, description="One per input image, index-aligned.")
    vision_insights: List[VisionInsights] = Field(default_factory=list, description="One per input image, index-aligned.")
    fallback_summary: Optional[FallbackSummaryResult] = None
    cost: CostSummary

"""
Pipeline context for maintaining state across stages.
One context per pipeline invocation; it owns the run's UsageMetrics.
"""

import datetime
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..core.cost_calculator import UsageMetrics
from ..models import (
    ClusterSummary,
    CreativeBrief,
    CreativeDiversityOptions,
    FallbackSummaryResult,
    PersonaInsight,
    SingleImageAnalysis,
)

logger = logging.getLogger(__name__)


@dataclass
class PipelineContext:
    """
    Context object that carries inputs, collaborators and stage outputs
    through one run of the creative-diversity pipeline.
    """

    # Pipeline settings
    run_id: str = field(default_factory=lambda: datetime.datetime.now().strftime("%Y%m%d_%H%M%S_%f"))
    max_concurrency: int = 1

    # User inputs
    images: List[str] = field(default_factory=list)
    options: CreativeDiversityOptions = field(default_factory=CreativeDiversityOptions)

    # Usage tracking
    metrics: UsageMetrics = field(default_factory=UsageMetrics)

    # Collaborators (injected by the executor)
    gateway: Optional[Any] = None
    annotator: Optional[Any] = None
    model_config: Dict[str, List[str]] = field(default_factory=dict)

    # Processing results
    single_image_results: List[SingleImageAnalysis] = field(default_factory=list)
    clusters: List[ClusterSummary] = field(default_factory=list)
    personas: List[PersonaInsight] = field(default_factory=list)
    creative_briefs: List[CreativeBrief] = field(default_factory=list)
    fallback_summary: Optional[FallbackSummaryResult] = None

    # Logs
    logs: List[str] = field(default_factory=list)

    def log(self, message: str) -> None:
        """Add a log message with timestamp."""
        timestamp = datetime.datetime.now().strftime("%H:%M:%S.%f")[:-3]
        self.logs.append(f"[{timestamp}] {message}")
        logger.info(f"[{self.run_id}] {message}")

    def models_for(self, stage_name: str) -> List[str]:
        """Candidate model list configured for a stage."""
        return list(self.model_config.get(stage_name, []))

    def analyses_payload(self) -> List[Dict[str, Any]]:
        """Per-image results in the shape sent to the text-only LLM stages."""
        return [analysis.to_llm_payload() for analysis in self.single_image_results]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pipeline_settings": {
                "run_id": self.run_id,
                "max_concurrency": self.max_concurrency,
            },
            "user_inputs": {
                "image_count": len(self.images),
                "options": self.options.model_dump(),
            },
            "processing_context": {
                "single_image_results": self.analyses_payload(),
                "clusters": [c.model_dump(by_alias=True) for c in self.clusters],
                "personas": [p.model_dump(by_alias=True) for p in self.personas],
                "creative_briefs": [b.model_dump(by_alias=True) for b in self.creative_briefs],
                "fallback_summary": self.fallback_summary.model_dump(by_alias=True) if self.fallback_summary else None,
                "usage_metrics": self.metrics.to_dict(),
            },
        }

"""
End-to-end tests for CreativeDiversityPipeline with fake gateway and annotator.
"""

import asyncio
import base64
import json
import logging
from types import SimpleNamespace
from unittest.mock import Mock

import pytest

from audiencelens.core.ai_gateway import AllModelsFailedError, StructuredOutputError
from audiencelens.models import CreativeDiversityOptions
from audiencelens.pipeline.executor import CreativeDiversityPipeline, PipelineInputError
from audiencelens.stages.fallback_summary import parse_fallback_summary

STAGE_USAGE = {
    "product_analysis": (1500, 250),
    "clustering": (2000, 500),
    "persona": (1500, 800),
    "creative_brief": (2000, 1200),
    "fallback_summary": (800, 200),
}

CLUSTERS = {"clusters": [
    {"clusterId": "c1", "clusterName": "通勤", "coreMessage": "輕巧好攜帶", "supportingAssets": [0, 1], "confidence": 1.4},
    {"clusterId": "c2", "clusterName": "運動", "coreMessage": "防水耐汗", "supportingAssets": [2], "confidence": 0.6},
]}

PERSONAS = {"personas": [
    {"personaName": "通勤上班族", "coreNeed": "降噪", "coverageStatus": "covered", "linkedClusters": ["c1"]},
    {"personaName": "健身愛好者", "coreNeed": "穩固", "coverageStatus": "gap", "linkedClusters": ["c2"]},
]}

BRIEFS = {"creativeBriefs": [
    {"personaName": "通勤上班族", "headlineHook": "地鐵也安靜", "copyIdeas": ["a", "b"]},
    {"personaName": "健身愛好者", "headlineHook": "流汗不掉", "visualDirection": ["gym"]},
]}


def image(i):
    return base64.b64encode(f"image-{i}".encode()).decode()


class FakeGateway:
    """Returns canned JSON per stage and records usage like the real gateway."""

    def __init__(self, payloads=None, errors=None, delays=None):
        self.payloads = {
            "clustering": CLUSTERS,
            "persona": PERSONAS,
            "creative_brief": BRIEFS,
            "fallback_summary": {"summary": "無線耳機系列", "confidence": 0.85},
        }
        self.payloads.update(payloads or {})
        self.errors = errors or {}
        self.delays = delays or {}
        self.calls = []

    async def complete_json(self, stage_name, model_candidates, messages, max_tokens, metrics=None):
        self.calls.append(stage_name)
        if stage_name in self.errors:
            raise self.errors[stage_name]

        if stage_name == "product_analysis":
            url = messages[1]["content"][1]["image_url"]["url"]
            image_base64 = url.split(",", 1)[1]
            await asyncio.sleep(self.delays.get(image_base64, 0))
            payload = {
                "productName": f"product for {base64.b64decode(image_base64).decode()}",
                "productCategory": ["electronics"],
                "targetAudience": ["20-35歲通勤族"],
                "keywords": ["earbuds"],
                "confidence": 0.9,
            }
        else:
            payload = self.payloads[stage_name]

        if metrics is not None:
            metrics.add_llm_usage(*STAGE_USAGE[stage_name])
        return payload


def make_annotator():
    annotator = Mock()
    annotator.detect_objects = Mock(return_value=[SimpleNamespace(name="Headphones")])
    annotator.detect_labels = Mock(return_value=[SimpleNamespace(description="Audio equipment")])
    annotator.detect_text = Mock(return_value=[])
    annotator.detect_dominant_colors = Mock(return_value=[])
    return annotator


PRO_OPTIONS = CreativeDiversityOptions(generate_personas=True, generate_creative_briefs=True, run_fallback_summary=False)
FREE_OPTIONS = CreativeDiversityOptions(generate_personas=False, generate_creative_briefs=False, run_fallback_summary=False)


class TestEndToEnd:

    @pytest.mark.asyncio
    async def test_three_images_all_stages(self):
        gateway = FakeGateway()
        annotator = make_annotator()
        pipeline = CreativeDiversityPipeline(gateway, annotator)

        result = await pipeline.run([image(0), image(1), image(2)], PRO_OPTIONS)

        assert [p.product_name for p in result.product_analyses] == [
            "product for image-0", "product for image-1", "product for image-2",
        ]
        assert len(result.vision_insights) == 3
        assert result.vision_insights[0].objects == ["Headphones"]
        assert [c.cluster_id for c in result.clusters] == ["c1", "c2"]
        assert len(result.personas) == 2
        assert len(result.creative_briefs) == 2
        assert result.fallback_summary is None

        metrics = result.cost.metrics
        assert metrics.openai_input_tokens == 10000
        assert metrics.openai_output_tokens == 3250
        assert metrics.google_vision_calls == 12

        breakdown = result.cost.breakdown
        assert breakdown.openai_cost_usd == pytest.approx(0.09875, abs=1e-4)
        assert breakdown.google_vision_cost_usd == pytest.approx(0.021)
        assert breakdown.total_cost_usd == pytest.approx(0.11975, abs=1e-4)
        assert breakdown.total_cost_jpy == pytest.approx(17.96, abs=0.01)
        assert result.cost.buffered.total_cost_usd == pytest.approx(0.11975 * 1.3, abs=1e-4)

    @pytest.mark.asyncio
    async def test_stage_outputs_pass_through_unvalidated(self):
        result = await CreativeDiversityPipeline(FakeGateway(), make_annotator()).run([image(0)], PRO_OPTIONS)

        # two clusters for a single image, confidence above 1 kept as returned
        assert len(result.clusters) == 2
        assert result.clusters[0].confidence == 1.4

    @pytest.mark.asyncio
    async def test_loosely_typed_stage_output_is_accepted(self):
        gateway = FakeGateway(payloads={
            "clustering": {"clusters": [
                {"clusterId": 1, "clusterName": "通勤", "supportingAssets": [0], "confidence": None},
                {"clusterId": 2, "clusterName": "運動", "supportingAssets": ["1"]},
            ]},
            "persona": {"personas": [
                {"personaName": "通勤上班族", "coverageStatus": "Covered", "linkedClusters": [1]},
                {"personaName": "健身愛好者", "coverageStatus": "partially", "linkedClusters": 2},
                {"personaName": "學生族群", "coverageStatus": None},
            ]},
        })

        result = await CreativeDiversityPipeline(gateway, make_annotator()).run([image(0), image(1)], PRO_OPTIONS)

        assert [c.cluster_id for c in result.clusters] == ["1", "2"]
        assert result.clusters[0].confidence is None
        assert result.clusters[1].supporting_assets == [1]
        assert [p.coverage_status for p in result.personas] == ["covered", "gap", "gap"]
        assert result.personas[0].linked_clusters == ["1"]
        assert result.personas[1].linked_clusters == ["2"]
        assert len(result.creative_briefs) == 2

    @pytest.mark.asyncio
    async def test_default_options(self):
        gateway = FakeGateway()

        result = await CreativeDiversityPipeline(gateway, make_annotator()).run([image(0)])

        assert gateway.calls == ["product_analysis", "clustering", "persona", "creative_brief"]
        assert result.fallback_summary is None


class TestStageGating:

    @pytest.mark.asyncio
    async def test_free_run_stops_after_clustering(self):
        gateway = FakeGateway()

        result = await CreativeDiversityPipeline(gateway, make_annotator()).run([image(0), image(1)], FREE_OPTIONS)

        assert gateway.calls == ["product_analysis", "product_analysis", "clustering"]
        assert result.personas == []
        assert result.creative_briefs == []

    @pytest.mark.asyncio
    async def test_no_personas_means_no_briefs(self):
        gateway = FakeGateway(payloads={"persona": {"personas": []}})

        result = await CreativeDiversityPipeline(gateway, make_annotator()).run([image(0)], PRO_OPTIONS)

        assert "creative_brief" not in gateway.calls
        assert result.personas == []
        assert result.creative_briefs == []

    @pytest.mark.asyncio
    async def test_briefs_without_personas_flag_are_skipped(self):
        gateway = FakeGateway()
        options = CreativeDiversityOptions(generate_personas=False, generate_creative_briefs=True)

        await CreativeDiversityPipeline(gateway, make_annotator()).run([image(0)], options)

        assert gateway.calls == ["product_analysis", "clustering"]

    @pytest.mark.asyncio
    async def test_fallback_summary_runs_last(self):
        gateway = FakeGateway()
        options = CreativeDiversityOptions(run_fallback_summary=True)

        result = await CreativeDiversityPipeline(gateway, make_annotator()).run([image(0)], options)

        assert gateway.calls[-1] == "fallback_summary"
        assert result.fallback_summary.summary == "無線耳機系列"
        assert result.fallback_summary.confidence == 0.85
        assert result.cost.metrics.openai_input_tokens == 1500 + 2000 + 1500 + 2000 + 800


class TestFailures:

    @pytest.mark.asyncio
    async def test_empty_input_makes_no_calls(self):
        gateway = FakeGateway()
        annotator = make_annotator()

        with pytest.raises(PipelineInputError):
            await CreativeDiversityPipeline(gateway, annotator).run([], PRO_OPTIONS)

        assert gateway.calls == []
        annotator.detect_objects.assert_not_called()

    @pytest.mark.asyncio
    async def test_clustering_failure_propagates(self):
        gateway = FakeGateway(errors={"clustering": AllModelsFailedError(["gpt-5-mini"])})

        with pytest.raises(AllModelsFailedError):
            await CreativeDiversityPipeline(gateway, make_annotator()).run([image(0)], PRO_OPTIONS)

        assert "persona" not in gateway.calls

    @pytest.mark.asyncio
    async def test_failure_logs_pipeline_state(self, caplog):
        gateway = FakeGateway(errors={"persona": AllModelsFailedError(["gpt-5-mini"])})

        with caplog.at_level(logging.ERROR, logger="audiencelens.pipeline.executor"):
            with pytest.raises(AllModelsFailedError):
                await CreativeDiversityPipeline(gateway, make_annotator()).run([image(0)], PRO_OPTIONS)

        [record] = [r for r in caplog.records if "Pipeline state at failure" in r.getMessage()]
        state = json.loads(record.getMessage().split("Pipeline state at failure: ", 1)[1])
        assert state["user_inputs"]["image_count"] == 1
        assert [c["clusterId"] for c in state["processing_context"]["clusters"]] == ["c1", "c2"]
        assert state["processing_context"]["personas"] == []
        assert state["processing_context"]["usage_metrics"]["openai_input_tokens"] == 1500 + 2000

    @pytest.mark.asyncio
    async def test_malformed_persona_output_propagates(self):
        gateway = FakeGateway(payloads={"persona": {"personas": "not a list"}})

        with pytest.raises(StructuredOutputError) as exc_info:
            await CreativeDiversityPipeline(gateway, make_annotator()).run([image(0)], PRO_OPTIONS)

        assert exc_info.value.stage_name == "persona"

    @pytest.mark.asyncio
    async def test_per_image_llm_failure_does_not_abort(self):
        gateway = FakeGateway(errors={"product_analysis": AllModelsFailedError(["gpt-4o"])})

        result = await CreativeDiversityPipeline(gateway, make_annotator()).run([image(0), image(1)], FREE_OPTIONS)

        assert len(result.product_analyses) == 2
        assert all(0.1 <= p.confidence <= 0.99 for p in result.product_analyses)
        assert len(result.clusters) == 2


class TestOrdering:

    @pytest.mark.asyncio
    async def test_results_align_with_input_order(self):
        images = [image(i) for i in range(5)]
        delays = {images[0]: 0.05, images[1]: 0.0, images[2]: 0.04, images[3]: 0.01, images[4]: 0.02}
        gateway = FakeGateway(delays=delays)

        result = await CreativeDiversityPipeline(gateway, make_annotator(), max_concurrency=5).run(images, FREE_OPTIONS)

        assert [p.product_name for p in result.product_analyses] == [f"product for image-{i}" for i in range(5)]

    @pytest.mark.asyncio
    async def test_sequential_mode_gives_same_result(self):
        images = [image(i) for i in range(3)]

        parallel = await CreativeDiversityPipeline(FakeGateway(), make_annotator(), max_concurrency=3).run(images, PRO_OPTIONS)
        sequential = await CreativeDiversityPipeline(FakeGateway(), make_annotator(), max_concurrency=1).run(images, PRO_OPTIONS)

        assert parallel.product_analyses == sequential.product_analyses
        assert parallel.cost.metrics == sequential.cost.metrics


class TestFallbackSummaryParsing:

    def test_missing_confidence_defaults(self):
        assert parse_fallback_summary({"summary": "耳機"}).confidence == 0.7

    def test_confidence_is_clamped(self):
        assert parse_fallback_summary({"summary": "耳機", "confidence": 1.7}).confidence == 0.99
        assert parse_fallback_summary({"summary": "耳機", "confidence": 0.0}).confidence == 0.1

    def test_non_string_summary(self):
        assert parse_fallback_summary({"summary": None}).summary == ""

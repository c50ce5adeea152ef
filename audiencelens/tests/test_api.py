"""
Tests for the HTTP surface: upload validation, entitlement gating, error
mapping and the auxiliary endpoints.
"""

import io
from unittest.mock import AsyncMock, Mock

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from audiencelens.api import routers
from audiencelens.api.database import AnalysisCost
from audiencelens.api.dependencies import (
    get_current_user_id,
    get_graph_client,
    get_pipeline,
    get_session,
    get_token_manager,
)
from audiencelens.api.main import app
from audiencelens.api.routers import build_options
from audiencelens.core.ai_gateway import AllModelsFailedError
from audiencelens.core.client_config import MODEL_ENV_VARS, ClientConfig
from audiencelens.core.cost_calculator import UsageMetrics, add_buffer, calculate_cost_breakdown
from audiencelens.models import CostSummary, CreativeDiversityResult, ProductAttributes, VisionInsights
from audiencelens.pipeline.persistence import (
    DashboardStats,
    PersistedAnalysis,
    build_analysis_record,
    build_image_records,
)


def png_bytes(color=(200, 30, 30)):
    buffer = io.BytesIO()
    Image.new("RGB", (64, 48), color).save(buffer, format="PNG")
    return buffer.getvalue()


def make_result(image_count):
    metrics = UsageMetrics(openai_input_tokens=1500 * image_count, openai_output_tokens=250 * image_count,
                           google_vision_calls=4 * image_count)
    breakdown = calculate_cost_breakdown(metrics)
    product = ProductAttributes(product_name="Sneaker", product_category=["fashion"],
                                target_audience=["運動愛好者"], keywords=["sneaker"], confidence=0.8)
    return CreativeDiversityResult(
        product_analyses=[product] * image_count,
        vision_insights=[VisionInsights(objects=["Shoe"])] * image_count,
        cost=CostSummary(metrics=metrics, breakdown=breakdown, buffered=add_buffer(breakdown)),
    )


class FakePipeline:
    def __init__(self, error=None):
        self.error = error
        self.calls = []

    async def run(self, images, options=None):
        self.calls.append((list(images), options))
        if self.error:
            raise self.error
        return make_result(len(images))


def fake_stored_analysis(user_id="user-1", images=("aW1hZ2U=",), result=None, **kwargs):
    result = result or make_result(len(images))
    analysis = build_analysis_record(user_id, images, result, **kwargs)
    analysis.id = 1
    return PersistedAnalysis(
        analysis=analysis,
        images=build_image_records(1, images, result),
        cost=AnalysisCost(analysis_id=1, image_count=len(images)),
    )


async def fake_persist(session, user_id, images, result, **kwargs):
    return fake_stored_analysis(user_id, images, result, **kwargs)


def upload(count):
    return [("images", (f"image-{i}.png", png_bytes(), "image/png")) for i in range(count)]


class TestAnalyzeEndpoint:

    def setup_method(self):
        self.pipeline = FakePipeline()
        app.dependency_overrides[get_pipeline] = lambda: self.pipeline
        app.dependency_overrides[get_session] = lambda: Mock()
        app.dependency_overrides[get_current_user_id] = lambda: "user-1"
        self.client = TestClient(app)

    def teardown_method(self):
        app.dependency_overrides.clear()

    @pytest.fixture(autouse=True)
    def patch_persistence(self, monkeypatch):
        self.persist = AsyncMock(side_effect=fake_persist)
        monkeypatch.setattr(routers, "persist_creative_result", self.persist)

    def test_free_tier_analysis(self):
        response = self.client.post("/api/v1/analyze", files=upload(2), data={"subscription_tier": "free"})

        assert response.status_code == 200
        body = response.json()
        assert body["analysis"]["product_name"] == "Sneaker"
        assert [image["position"] for image in body["images"]] == [0, 1]
        assert body["creative_result"]["productAnalyses"][0]["productName"] == "Sneaker"
        assert body["creative_result"]["cost"]["metrics"]["google_vision_calls"] == 8

        images, options = self.pipeline.calls[0]
        assert len(images) == 2
        assert options.generate_personas is False
        assert options.generate_creative_briefs is False
        assert options.run_fallback_summary is False

    def test_pro_tier_enables_optional_stages(self):
        response = self.client.post(
            "/api/v1/analyze",
            files=upload(1),
            data={"subscription_tier": "Premium", "enable_fallback": "true", "product_name_hint": "跑鞋"},
        )

        assert response.status_code == 200
        _, options = self.pipeline.calls[0]
        assert options.generate_personas is True
        assert options.generate_creative_briefs is True
        assert options.run_fallback_summary is True
        assert options.product_name_hint == "跑鞋"

    def test_confirmed_fields_are_persisted(self):
        response = self.client.post(
            "/api/v1/analyze",
            files=upload(1),
            data={"confirmed_product_name": "Air Runner", "price_range": "3000-4000", "is_confirmed": "true"},
        )

        assert response.status_code == 200
        assert response.json()["analysis"]["product_name"] == "Air Runner"
        kwargs = self.persist.call_args.kwargs
        assert kwargs["price_range"] == "3000-4000"
        assert kwargs["is_confirmed"] is True

    def test_images_are_preprocessed_to_jpeg_base64(self):
        self.client.post("/api/v1/analyze", files=upload(1))

        images, _ = self.pipeline.calls[0]
        assert images[0].startswith("/9j/")  # base64 of the JPEG SOI marker

    def test_no_images_is_rejected(self):
        response = self.client.post("/api/v1/analyze", data={"subscription_tier": "free"})

        assert response.status_code == 400
        assert self.pipeline.calls == []

    def test_too_many_images_is_rejected(self):
        response = self.client.post("/api/v1/analyze", files=upload(11))

        assert response.status_code == 400
        assert self.pipeline.calls == []

    def test_undecodable_image_is_rejected(self):
        files = [("images", ("broken.png", b"not an image", "image/png"))]

        response = self.client.post("/api/v1/analyze", files=files)

        assert response.status_code == 400
        assert self.pipeline.calls == []

    def test_pipeline_failure_returns_generic_error(self):
        self.pipeline.error = AllModelsFailedError(["gpt-5-mini"], RuntimeError("secret upstream detail"))

        response = self.client.post("/api/v1/analyze", files=upload(1))

        assert response.status_code == 500
        assert response.json()["detail"] == "Analysis failed, please retry later"
        self.persist.assert_not_called()

    def test_missing_user_is_unauthorized(self):
        del app.dependency_overrides[get_current_user_id]

        response = self.client.post("/api/v1/analyze", files=upload(1))

        assert response.status_code == 401


class TestBuildOptions:

    @pytest.mark.parametrize("tier,fallback,expected", [
        ("free", True, (False, False, False)),
        ("pro", False, (True, True, False)),
        ("pro", True, (True, True, True)),
        (" PREMIUM ", True, (True, True, True)),
        (None, True, (False, False, False)),
    ])
    def test_entitlement(self, tier, fallback, expected):
        options = build_options(tier, fallback, None)
        assert (options.generate_personas, options.generate_creative_briefs, options.run_fallback_summary) == expected


class TestAudienceEndpoints:

    def setup_method(self):
        self.graph_client = Mock()
        self.graph_client.search_interests = Mock(return_value=["Running", "Marathon"])
        self.token_manager = Mock()
        self.token_manager.get_valid_token = AsyncMock(return_value="token")
        self.token_manager.status = Mock(return_value={"is_valid": True, "expires_at": None, "token_type": "system"})
        app.dependency_overrides[get_graph_client] = lambda: self.graph_client
        app.dependency_overrides[get_token_manager] = lambda: self.token_manager
        app.dependency_overrides[get_current_user_id] = lambda: "user-1"
        self.session = Mock()
        app.dependency_overrides[get_session] = lambda: self.session
        self.client = TestClient(app)

    def teardown_method(self):
        app.dependency_overrides.clear()

    @pytest.fixture(autouse=True)
    def patch_usage(self, monkeypatch):
        self.record_usage = AsyncMock(return_value=None)
        monkeypatch.setattr(routers, "record_audience_usage", self.record_usage)

    def test_audience_keywords(self):
        product = {
            "productName": "Sneaker",
            "productCategory": ["sports"],
            "targetAudience": ["跑者"],
            "keywords": ["running shoes"],
            "confidence": 0.8,
        }

        response = self.client.post("/api/v1/audience-keywords", json={"product": product})

        assert response.status_code == 200
        body = response.json()
        assert body["meta_queries"] == 2
        assert body["keywords"][0]["keywords"] == ["Running", "Marathon"]
        self.record_usage.assert_awaited_once_with(self.session, "user-1", len(body["keywords"]))

    def test_token_status(self):
        response = self.client.get("/api/v1/ad-token/status")

        assert response.status_code == 200
        assert response.json()["token_type"] == "system"


class TestCostEstimate:

    def setup_method(self):
        self.client = TestClient(app)

    def test_estimates_scale_with_image_count(self):
        small = self.client.get("/api/v1/cost-estimate", params={"image_count": 1}).json()
        large = self.client.get("/api/v1/cost-estimate", params={"image_count": 10}).json()

        assert large["free_task"]["total_cost_usd"] > small["free_task"]["total_cost_usd"]
        assert large["pro_task"]["total_cost_usd"] > large["free_task"]["total_cost_usd"]
        assert small["single_image"] == large["single_image"]

    def test_image_count_is_bounded(self):
        assert self.client.get("/api/v1/cost-estimate", params={"image_count": 0}).status_code == 422
        assert self.client.get("/api/v1/cost-estimate", params={"image_count": 11}).status_code == 422


def test_health():
    response = TestClient(app).get("/health")
    assert response.json()["status"] == "healthy"


def test_health_reports_client_configuration(monkeypatch, tmp_path):
    for name in MODEL_ENV_VARS + ("OPENAI_API_KEY", "GOOGLE_APPLICATION_CREDENTIALS"):
        monkeypatch.delenv(name, raising=False)
    config = ClientConfig(env_path=str(tmp_path / "missing.env"))
    monkeypatch.setattr(app.state, "client_summary", config.get_client_summary(), raising=False)

    clients = TestClient(app).get("/health").json()["clients"]

    assert clients["openai_api_key"] is False
    assert clients["google_credentials"] is False
    assert clients["model_config"]["clustering"] == ["gpt-4o-mini"]


class TestHistoryEndpoints:

    def setup_method(self):
        self.session = Mock()
        app.dependency_overrides[get_session] = lambda: self.session
        app.dependency_overrides[get_current_user_id] = lambda: "user-1"
        self.client = TestClient(app)

    def teardown_method(self):
        app.dependency_overrides.clear()

    @pytest.fixture(autouse=True)
    def patch_queries(self, monkeypatch):
        self.stored = fake_stored_analysis()
        self.list_analyses = AsyncMock(return_value=[self.stored.analysis])
        self.get_analysis = AsyncMock(return_value=self.stored)
        self.get_stats = AsyncMock(return_value=DashboardStats(total_analyses=4, total_audiences=9, current_month_analyses=3))
        monkeypatch.setattr(routers, "list_user_analyses", self.list_analyses)
        monkeypatch.setattr(routers, "get_user_analysis", self.get_analysis)
        monkeypatch.setattr(routers, "get_dashboard_stats", self.get_stats)

    def test_history_defaults_to_ten(self):
        response = self.client.get("/api/v1/analyses")

        assert response.status_code == 200
        assert [item["id"] for item in response.json()] == [1]
        self.list_analyses.assert_awaited_once_with(self.session, "user-1", 10)

    def test_history_limit_is_bounded(self):
        assert self.client.get("/api/v1/analyses", params={"limit": 3}).status_code == 200
        self.list_analyses.assert_awaited_once_with(self.session, "user-1", 3)
        assert self.client.get("/api/v1/analyses", params={"limit": 0}).status_code == 422
        assert self.client.get("/api/v1/analyses", params={"limit": 101}).status_code == 422

    def test_detail(self):
        response = self.client.get("/api/v1/analyses/1")

        assert response.status_code == 200
        body = response.json()
        assert body["analysis"]["product_name"] == "Sneaker"
        assert [image["position"] for image in body["images"]] == [0]
        assert body["cost"]["image_count"] == 1
        self.get_analysis.assert_awaited_once_with(self.session, "user-1", 1)

    def test_missing_or_foreign_analysis_is_not_found(self):
        self.get_analysis.return_value = None

        response = self.client.get("/api/v1/analyses/99")

        assert response.status_code == 404
        assert response.json()["detail"] == "Analysis not found"

    def test_dashboard_stats(self):
        response = self.client.get("/api/v1/dashboard/stats")

        assert response.status_code == 200
        assert response.json() == {
            "total_analyses": 4,
            "total_audiences": 9,
            "current_month_analyses": 3,
            "monthly_limit": 50,
        }
        self.get_stats.assert_awaited_once_with(self.session, "user-1")

    def test_history_requires_a_user(self):
        del app.dependency_overrides[get_current_user_id]

        assert self.client.get("/api/v1/analyses").status_code == 401
        assert self.client.get("/api/v1/dashboard/stats").status_code == 401

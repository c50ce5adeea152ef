"""
Tests for environment loading and per-stage model lists.
"""

import os
from unittest.mock import Mock

import pytest

from audiencelens.core.ai_gateway import ChatGateway
from audiencelens.core.client_config import MODEL_ENV_VARS, ClientConfig


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    for name in MODEL_ENV_VARS + ("OPENAI_API_KEY", "GOOGLE_APPLICATION_CREDENTIALS"):
        monkeypatch.delenv(name, raising=False)
    return tmp_path


class TestClientConfig:

    def test_default_model_lists(self, clean_env):
        config = ClientConfig(env_path=str(clean_env / "missing.env"))

        assert config.model_config == {
            "product_analysis": ["gpt-4o"],
            "clustering": ["gpt-4o-mini"],
            "persona": ["gpt-5-mini", "gpt-4o-mini"],
            "creative_brief": ["gpt-5-mini", "gpt-4o-mini"],
            "fallback_summary": ["gpt-4o-mini"],
        }
        assert config.openai_api_key is None

    def test_overrides_come_first_without_duplicates(self, clean_env, monkeypatch):
        monkeypatch.setenv("OPENAI_TEXT_MODEL", "gpt-4.1-mini")
        monkeypatch.setenv("OPENAI_PERSONA_MODEL", "gpt-5")
        monkeypatch.setenv("OPENAI_CREATIVE_MODEL", "gpt-5")

        config = ClientConfig(env_path=str(clean_env / "missing.env"))

        assert config.model_config["clustering"] == ["gpt-4.1-mini"]
        assert config.model_config["persona"] == ["gpt-5", "gpt-5-mini", "gpt-4.1-mini"]
        assert config.model_config["creative_brief"] == ["gpt-5", "gpt-5-mini", "gpt-4.1-mini"]

    def test_env_file_is_loaded(self, clean_env):
        env_file = clean_env / ".env"
        env_file.write_text("OPENAI_API_KEY=sk-test\nOPENAI_CLUSTER_MODEL=gpt-4o\n")

        try:
            config = ClientConfig(env_path=str(env_file))
        finally:
            # load_dotenv writes into os.environ
            os.environ.pop("OPENAI_API_KEY", None)
            os.environ.pop("OPENAI_CLUSTER_MODEL", None)

        assert config.openai_api_key == "sk-test"
        assert config.model_config["clustering"] == ["gpt-4o", "gpt-4o-mini"]
        assert config.get_client_summary()["openai_api_key"] is True

    def test_create_gateway_with_injected_client(self, clean_env):
        client = Mock()
        gateway = ClientConfig(env_path=str(clean_env / "missing.env")).create_gateway(client)

        assert isinstance(gateway, ChatGateway)
        assert gateway.client is client

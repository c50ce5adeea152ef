"""
Client Configuration Module

Handles API key loading, LLM / image-annotation client setup, and the
per-stage candidate model lists.
"""

import logging
import os
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from openai import OpenAI

from .ai_gateway import ChatGateway, build_model_list
from .constants import (
    DEFAULT_TEXT_MODEL_ID,
    LLM_REQUEST_TIMEOUT_SECONDS,
    MAX_LLM_RETRIES,
    PERSONA_PREFERRED_MODEL_ID,
    PRODUCT_VISION_MODEL_ID,
    TRANSIENT_RETRY_ATTEMPTS,
)

logger = logging.getLogger(__name__)

# Environment variable -> model override
MODEL_ENV_VARS = (
    "OPENAI_PRODUCT_VISION_MODEL",
    "OPENAI_TEXT_MODEL",
    "OPENAI_CLUSTER_MODEL",
    "OPENAI_PERSONA_MODEL",
    "OPENAI_CREATIVE_MODEL",
    "OPENAI_FALLBACK_MODEL",
)


class ClientConfig:
    """Manages API client configuration and setup."""

    def __init__(self, env_path: Optional[str] = None):
        self.env_path = env_path or ".env"

        self.openai_api_key: Optional[str] = None
        self.google_credentials: Optional[str] = None
        self.max_llm_retries = MAX_LLM_RETRIES
        self.model_overrides: Dict[str, str] = {}

        self._load_environment()
        self.model_config = self.build_model_config()

    def _load_environment(self) -> None:
        """Load API keys from the environment file and collect model overrides."""
        if os.path.exists(self.env_path):
            load_dotenv(dotenv_path=self.env_path)
            logger.info(f"✅ Loaded .env file from: {self.env_path}")
        else:
            logger.info(f"⚠️ .env file not found at {self.env_path}; using process environment only")

        self.openai_api_key = os.getenv("OPENAI_API_KEY")
        self.google_credentials = os.getenv("GOOGLE_APPLICATION_CREDENTIALS")

        for env_var in MODEL_ENV_VARS:
            value = os.getenv(env_var)
            if value:
                self.model_overrides[env_var] = value
                logger.info(f"🔧 Model config override: {env_var} = {value}")

        logger.info(f"  OPENAI_API_KEY: {'✅ Available' if self.openai_api_key else '❌ Missing'}")
        logger.info(f"  GOOGLE_APPLICATION_CREDENTIALS: {'✅ Available' if self.google_credentials else '❌ Missing (default auth)'}")

    def build_model_config(self) -> Dict[str, List[str]]:
        """Ordered candidate model list per stage, overrides first."""
        env = self.model_overrides
        text_model = env.get("OPENAI_TEXT_MODEL") or DEFAULT_TEXT_MODEL_ID

        return {
            "product_analysis": build_model_list(env.get("OPENAI_PRODUCT_VISION_MODEL") or PRODUCT_VISION_MODEL_ID),
            "clustering": build_model_list(env.get("OPENAI_CLUSTER_MODEL"), text_model),
            "persona": build_model_list(env.get("OPENAI_PERSONA_MODEL"), PERSONA_PREFERRED_MODEL_ID, text_model),
            "creative_brief": build_model_list(
                env.get("OPENAI_CREATIVE_MODEL"),
                env.get("OPENAI_PERSONA_MODEL"),
                PERSONA_PREFERRED_MODEL_ID,
                text_model,
            ),
            "fallback_summary": build_model_list(env.get("OPENAI_FALLBACK_MODEL"), text_model),
        }

    def create_openai_client(self) -> OpenAI:
        if not self.openai_api_key:
            logger.warning("⚠️ OPENAI_API_KEY not found; the OpenAI client will rely on the SDK's own lookup")
        return OpenAI(api_key=self.openai_api_key, max_retries=self.max_llm_retries)

    def create_gateway(self, client: Optional[Any] = None) -> ChatGateway:
        return ChatGateway(
            client or self.create_openai_client(),
            request_timeout=LLM_REQUEST_TIMEOUT_SECONDS,
            transient_retry_attempts=TRANSIENT_RETRY_ATTEMPTS,
        )

    def create_annotator(self, client: Optional[Any] = None) -> Any:
        from .vision_annotator import GoogleVisionAnnotator, create_vision_client

        return GoogleVisionAnnotator(client or create_vision_client(self.google_credentials or ""))

    def get_client_summary(self) -> Dict[str, Any]:
        return {
            "openai_api_key": bool(self.openai_api_key),
            "google_credentials": bool(self.google_credentials),
            "model_config": self.model_config,
        }

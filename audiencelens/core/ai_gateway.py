"""
AI Gateway - shared call wrapper for every LLM stage.

Tries an ordered list of candidate models and returns the first non-empty
text response. Token usage reported by the provider is added to the caller's
``UsageMetrics``. A candidate that raises or returns empty content is logged
and skipped; only when every candidate fails does the call raise.

The order of candidates is the tie-break policy: first success wins, there
is no quality comparison between candidates.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence

from openai import APIConnectionError, APITimeoutError, RateLimitError
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .constants import (
    LLM_REQUEST_TIMEOUT_SECONDS,
    MAX_COMPLETION_TOKENS_MODEL_PREFIXES,
    TRANSIENT_RETRY_ATTEMPTS,
)
from .cost_calculator import UsageMetrics
from .json_parser import JSONExtractionError, RobustJSONParser

logger = logging.getLogger(__name__)

JSON_RESPONSE_FORMAT = {"type": "json_object"}

TRANSIENT_ERRORS = (APIConnectionError, APITimeoutError, RateLimitError)


class GatewayError(Exception):
    """Base exception for gateway failures."""
    pass


class AllModelsFailedError(GatewayError):
    """Every candidate model raised or returned empty content."""

    def __init__(self, model_candidates: Sequence[str], last_error: Optional[BaseException] = None):
        self.model_candidates = list(model_candidates)
        self.last_error = last_error
        super().__init__("All model attempts failed")


class StructuredOutputError(GatewayError):
    """A model responded, but not with a well-formed JSON object."""

    def __init__(self, stage_name: str, detail: str):
        self.stage_name = stage_name
        super().__init__(f"Invalid JSON response for {stage_name}: {detail}")


def build_model_list(*candidates: Optional[str]) -> List[str]:
    """Drop empty candidates and duplicates, keeping first-seen order."""
    deduped: List[str] = []
    for candidate in candidates:
        if candidate and candidate not in deduped:
            deduped.append(candidate)
    return deduped


def uses_max_completion_tokens(model_id: str) -> bool:
    """Newer model families (gpt-5, o1) reject ``max_tokens``."""
    return model_id.startswith(MAX_COMPLETION_TOKENS_MODEL_PREFIXES)


class ChatGateway:
    """Retry-over-candidate-models wrapper around an OpenAI-compatible client."""

    def __init__(
        self,
        client: Any,
        request_timeout: float = LLM_REQUEST_TIMEOUT_SECONDS,
        transient_retry_attempts: int = TRANSIENT_RETRY_ATTEMPTS,
    ):
        self.client = client
        self.request_timeout = request_timeout
        self.transient_retry_attempts = max(1, transient_retry_attempts)
        self._json_parser = RobustJSONParser()

    async def complete(
        self,
        model_candidates: Sequence[str],
        messages: List[Dict[str, Any]],
        max_tokens: int,
        metrics: Optional[UsageMetrics] = None,
        json_mode: bool = False,
    ) -> str:
        """
        Return the first non-empty text response among ``model_candidates``.

        Raises:
            AllModelsFailedError: If no candidate produced content.
        """
        last_error: Optional[BaseException] = None

        for model_id in model_candidates:
            try:
                response = await self._create_with_retry(model_id, messages, max_tokens, json_mode)
            except RetryError as e:
                last_error = e.last_attempt.exception()
                logger.error(f"Model {model_id} failed after {self.transient_retry_attempts} attempts: {last_error}")
                continue
            except Exception as e:
                last_error = e
                logger.error(f"Model {model_id} failed: {type(e).__name__}: {e}")
                continue

            usage = getattr(response, "usage", None)
            if usage is not None and metrics is not None:
                metrics.add_llm_usage(
                    getattr(usage, "prompt_tokens", 0) or 0,
                    getattr(usage, "completion_tokens", 0) or 0,
                )

            content = self._extract_content(response)
            if content:
                return content

            logger.warning(f"Model {model_id} returned empty content.")

        raise AllModelsFailedError(model_candidates, last_error)

    async def complete_json(
        self,
        stage_name: str,
        model_candidates: Sequence[str],
        messages: List[Dict[str, Any]],
        max_tokens: int,
        metrics: Optional[UsageMetrics] = None,
    ) -> Dict[str, Any]:
        """
        ``complete`` in JSON mode, parsed into a dict.

        Raises:
            AllModelsFailedError: If no candidate produced content.
            StructuredOutputError: If the content is not a JSON object.
        """
        content = await self.complete(model_candidates, messages, max_tokens, metrics, json_mode=True)
        try:
            return self._json_parser.extract_and_parse(content)
        except JSONExtractionError as e:
            logger.error(f"Failed to parse JSON for {stage_name}: {content[:500]}")
            raise StructuredOutputError(stage_name, str(e)) from e

    async def _create_with_retry(
        self,
        model_id: str,
        messages: List[Dict[str, Any]],
        max_tokens: int,
        json_mode: bool,
    ) -> Any:
        """One candidate call; rate limits and dropped connections are retried on the same model."""
        request = self._build_request(model_id, messages, max_tokens, json_mode)

        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.transient_retry_attempts),
            wait=wait_exponential(multiplier=0.5, max=4),
            retry=retry_if_exception_type(TRANSIENT_ERRORS),
        ):
            with attempt:
                return await asyncio.to_thread(self.client.chat.completions.create, **request)

    def _build_request(
        self,
        model_id: str,
        messages: List[Dict[str, Any]],
        max_tokens: int,
        json_mode: bool,
    ) -> Dict[str, Any]:
        request: Dict[str, Any] = {
            "model": model_id,
            "messages": messages,
            "timeout": self.request_timeout,
        }
        if uses_max_completion_tokens(model_id):
            request["max_completion_tokens"] = max_tokens
        else:
            request["max_tokens"] = max_tokens
        if json_mode:
            request["response_format"] = JSON_RESPONSE_FORMAT
        return request

    @staticmethod
    def _extract_content(response: Any) -> Optional[str]:
        choices = getattr(response, "choices", None)
        if not choices:
            return None
        message = getattr(choices[0], "message", None)
        if message is None:
            return None
        content = getattr(message, "content", None)
        if isinstance(content, str) and content.strip():
            return content
        return None

"""
JSON Parsing Utilities for LLM Responses
========================================

Every text-only stage asks the provider for a single JSON object. Most
providers honour ``response_format={"type": "json_object"}``, but fallback
models do not always, so the parser tolerates:
- Markdown code blocks (```json...``` and ```...```)
- Explanatory text before/after the object
- Trailing commas
- "Extra data" after a complete object

Usage:
    from audiencelens.core.json_parser import RobustJSONParser

    parser = RobustJSONParser()
    data = parser.extract_and_parse(raw_llm_response)
"""

import json
import logging
import re
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class JSONExtractionError(Exception):
    """Raised when no JSON object can be recovered from an LLM response."""
    pass


class RobustJSONParser:
    """Extracts a single JSON object from raw LLM output."""

    def __init__(self, debug_mode: bool = False):
        self.debug_mode = debug_mode

    def extract_and_parse(self, raw_response: str) -> Dict[str, Any]:
        """
        Extract and parse a JSON object from an LLM response.

        Raises:
            JSONExtractionError: If no JSON object can be extracted, or the
                top-level value is not an object.
        """
        json_str = self.extract_json_string(raw_response)
        if json_str is None:
            preview = raw_response[:200] if isinstance(raw_response, str) else repr(raw_response)
            raise JSONExtractionError(f"Could not extract JSON from response. Raw content preview: {preview}...")

        parsed = json.loads(json_str)
        if not isinstance(parsed, dict):
            raise JSONExtractionError(f"Expected a JSON object, got {type(parsed).__name__}")
        return parsed

    def extract_json_string(self, raw_text: str) -> Optional[str]:
        """Try each extraction strategy in turn; return the first valid JSON string."""
        if not isinstance(raw_text, str) or not raw_text.strip():
            return None

        text = raw_text.strip()

        for strategy in (
            self._extract_direct_json,
            self._extract_from_markdown_blocks,
            self._extract_partial_json,
            self._extract_by_brace_matching,
        ):
            json_str = strategy(text)
            if json_str is not None:
                return json_str

        if self.debug_mode:
            logger.debug(f"All extraction strategies failed for text: {raw_text[:300]}...")
        return None

    def _extract_direct_json(self, text: str) -> Optional[str]:
        if self._is_valid_json(text):
            return text
        repaired = self._attempt_json_repair(text)
        if repaired is not None:
            return repaired
        return None

    def _extract_from_markdown_blocks(self, text: str) -> Optional[str]:
        match = re.search(r"```json\s*([\s\S]+?)\s*```", text, re.IGNORECASE)
        if match:
            candidate = match.group(1).strip()
            if self._is_valid_json(candidate):
                return candidate
            return self._attempt_json_repair(candidate)

        match = re.search(r"```\s*([\s\S]+?)\s*```", text)
        if match:
            candidate = match.group(1).strip()
            if candidate.startswith("{") and self._is_valid_json(candidate):
                return candidate
        return None

    def _extract_partial_json(self, text: str) -> Optional[str]:
        """Handle 'Extra data' decode errors by keeping the valid prefix."""
        try:
            json.loads(text)
        except json.JSONDecodeError as e:
            if "Extra data" in str(e) and e.pos > 0:
                candidate = text[:e.pos].strip()
                if self._is_valid_json(candidate):
                    return candidate
        return None

    def _extract_by_brace_matching(self, text: str) -> Optional[str]:
        first_brace = text.find("{")
        last_brace = text.rfind("}")
        if first_brace == -1 or last_brace <= first_brace:
            return None

        candidate = text[first_brace:last_brace + 1]
        if self._is_valid_json(candidate):
            return candidate
        return self._attempt_json_repair(candidate)

    def _attempt_json_repair(self, json_str: str) -> Optional[str]:
        """Fix trailing commas, the most common defect in model-written JSON."""
        repaired = re.sub(r",(\s*[}\]])", r"\1", json_str)
        if repaired != json_str and self._is_valid_json(repaired):
            return repaired
        return None

    @staticmethod
    def _is_valid_json(text: str) -> bool:
        try:
            json.loads(text)
            return True
        except json.JSONDecodeError:
            return False

"""
Minimal blocking client for the Meta Graph API endpoints used here:
token debugging, long-lived token exchange, and ad-interest search.

Callers on the event loop wrap these methods in ``asyncio.to_thread``.
"""

import logging
from typing import Any, Dict, List, Optional

import requests

from .constants import (
    META_GRAPH_API_BASE_URL,
    META_INTEREST_SEARCH_LIMIT,
    META_REQUEST_TIMEOUT_SECONDS,
)

logger = logging.getLogger(__name__)


class MetaGraphError(Exception):
    """Non-success response from the Graph API."""

    def __init__(self, status_code: int, body: str):
        self.status_code = status_code
        self.body = body
        super().__init__(f"Graph API error ({status_code}): {body[:300]}")


class MetaGraphClient:
    def __init__(
        self,
        app_id: str = "",
        app_secret: str = "",
        base_url: str = META_GRAPH_API_BASE_URL,
        timeout: float = META_REQUEST_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
    ):
        self.app_id = app_id
        self.app_secret = app_secret
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

        if not app_id or not app_secret:
            logger.warning("⚠️ Facebook App ID or Secret not configured")

    def _get(self, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        response = self.session.get(f"{self.base_url}/{path}", params=params, timeout=self.timeout)
        if not response.ok:
            raise MetaGraphError(response.status_code, response.text)
        return response.json()

    def debug_token(self, token: str) -> Dict[str, Any]:
        """``data`` block of /debug_token; ``expires_at`` of 0 or missing means the token never expires."""
        payload = self._get("debug_token", {"input_token": token, "access_token": token})
        return payload.get("data") or {}

    def exchange_for_long_lived_token(self, token: str) -> Dict[str, Any]:
        """Returns ``{"access_token": ..., "expires_in": seconds}``."""
        if not self.app_id or not self.app_secret:
            raise MetaGraphError(0, "Facebook App ID and Secret required for token exchange")
        return self._get(
            "oauth/access_token",
            {
                "grant_type": "fb_exchange_token",
                "client_id": self.app_id,
                "client_secret": self.app_secret,
                "fb_exchange_token": token,
            },
        )

    def search_interests(self, query: str, access_token: str, limit: int = META_INTEREST_SEARCH_LIMIT) -> List[str]:
        payload = self._get(
            "search",
            {"type": "adinterest", "q": query, "limit": limit, "access_token": access_token},
        )
        return [item["name"] for item in payload.get("data") or [] if item.get("name")]

"""
Ad-platform access token manager.

An explicit service object: the API lifespan creates one instance at
startup and hands it to whatever needs a token. Token types:

- ``system``: system-user token, never expires, never refreshed
- ``long``:   long-lived token (~60 days), re-exchanged near expiry
- ``short``:  short-lived fallback (1 hour) when the exchange fails
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import requests
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from .constants import (
    AD_SHORT_LIVED_TOKEN_TTL_SECONDS,
    AD_TOKEN_EXCHANGE_ATTEMPTS,
    AD_TOKEN_REFRESH_WINDOW_SECONDS,
)
from .meta_graph_client import MetaGraphError

logger = logging.getLogger(__name__)


class TokenManagerError(Exception):
    """Raised when no usable ad-platform token is available."""
    pass


@dataclass
class TokenData:
    access_token: str
    expires_at: Optional[float]  # epoch seconds; None for tokens that never expire
    token_type: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "expires_at": self.expires_at,
            "token_type": self.token_type,
        }


class AdPlatformTokenManager:
    """Keeps a valid ad-platform token, exchanging and refreshing it through ``graph_client``."""

    def __init__(
        self,
        graph_client: Any,
        clock: Callable[[], float] = time.time,
        refresh_window_seconds: float = AD_TOKEN_REFRESH_WINDOW_SECONDS,
        exchange_attempts: int = AD_TOKEN_EXCHANGE_ATTEMPTS,
    ):
        self.graph_client = graph_client
        self.clock = clock
        self.refresh_window_seconds = refresh_window_seconds
        self.exchange_attempts = max(1, exchange_attempts)
        self.token_data: Optional[TokenData] = None

    async def initialize(self, initial_token: str) -> None:
        """Detect the token type and upgrade short-lived tokens where possible."""
        logger.info("🔄 Initializing ad-platform token manager...")

        if await self._is_system_user_token(initial_token):
            self.token_data = TokenData(initial_token, None, "system")
            logger.info("✅ System user token detected - permanent access enabled")
            return

        exchanged = await self._exchange(initial_token)
        if exchanged:
            self.token_data = TokenData(
                exchanged["access_token"],
                self.clock() + float(exchanged.get("expires_in", 0)),
                "long",
            )
            logger.info("✅ Successfully obtained long-lived token")
        else:
            self.token_data = TokenData(
                initial_token,
                self.clock() + AD_SHORT_LIVED_TOKEN_TTL_SECONDS,
                "short",
            )
            logger.warning("⚠️ Using short-lived token as fallback")

    async def get_valid_token(self) -> str:
        if self.token_data is None:
            raise TokenManagerError("Token manager not initialized")

        if self.token_data.token_type == "system":
            return self.token_data.access_token

        if self.token_data.expires_at - self.clock() < self.refresh_window_seconds:
            logger.info("🔄 Token expiring soon, attempting refresh...")
            await self.refresh()

        return self.token_data.access_token

    async def refresh(self) -> bool:
        """Re-exchange a long-lived token. Returns True if the token was replaced."""
        if self.token_data is None:
            raise TokenManagerError("No token data available for refresh")
        if self.token_data.token_type != "long":
            return False

        refreshed = await self._exchange(self.token_data.access_token)
        if not refreshed:
            logger.warning("⚠️ Failed to refresh long-lived token")
            return False

        self.token_data = TokenData(
            refreshed["access_token"],
            self.clock() + float(refreshed.get("expires_in", 0)),
            "long",
        )
        logger.info("✅ Long-lived token refreshed successfully")
        return True

    def status(self) -> Dict[str, Any]:
        if self.token_data is None:
            return {"is_valid": False, "expires_at": 0, "token_type": "none"}

        expires_at = self.token_data.expires_at
        return {
            "is_valid": expires_at is None or expires_at > self.clock(),
            **self.token_data.to_dict(),
        }

    async def _is_system_user_token(self, token: str) -> bool:
        try:
            info = await asyncio.to_thread(self.graph_client.debug_token, token)
        except (MetaGraphError, requests.RequestException) as e:
            logger.error(f"❌ Failed to get token info: {e}")
            return False
        return bool(info) and not info.get("expires_at")

    async def _exchange(self, token: str) -> Optional[Dict[str, Any]]:
        """Long-lived token exchange; network errors are retried, API errors are not."""
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.exchange_attempts),
                wait=wait_exponential(multiplier=0.5, max=4),
                retry=retry_if_exception_type(requests.RequestException),
                reraise=True,
            ):
                with attempt:
                    data = await asyncio.to_thread(self.graph_client.exchange_for_long_lived_token, token)
        except (MetaGraphError, requests.RequestException) as e:
            logger.error(f"❌ Token exchange failed: {e}")
            return None

        if not data.get("access_token"):
            logger.error(f"❌ Token exchange returned no access token: {data}")
            return None
        return data

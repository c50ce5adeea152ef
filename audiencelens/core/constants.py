"""
Constants for the AudienceLens analysis pipeline.
=================================================

🎯 CENTRALIZED CONFIGURATION - Single Source of Truth
-----------------------------------------------------
This file is the ONLY place to define:
- Default model identifiers for every LLM stage
- Pricing assumptions used by the cost calculator
- Timeouts, concurrency limits and retry settings
- Output caps for the image-annotation mapping

⚠️  DO NOT duplicate these constants in other files!
   Other modules should import from here to maintain consistency.

Environment overrides for model identifiers are applied by
``ClientConfig`` (see ``client_config.py``), not here.
"""

from typing import Dict, List

# --- LLM Configuration ---
MAX_LLM_RETRIES = 2  # Passed to the OpenAI SDK client (connection-level retries)
TRANSIENT_RETRY_ATTEMPTS = 2  # Gateway-level retries per candidate model for rate limits / connection drops
LLM_REQUEST_TIMEOUT_SECONDS = 60.0
ANNOTATION_REQUEST_TIMEOUT_SECONDS = 30.0

# Models that take ``max_completion_tokens`` instead of ``max_tokens``
MAX_COMPLETION_TOKENS_MODEL_PREFIXES = ("gpt-5", "o1")

# --- Model Definitions ---
PRODUCT_VISION_MODEL_ID = "gpt-4o"  # Vision-capable model for per-image product analysis
DEFAULT_TEXT_MODEL_ID = "gpt-4o-mini"  # Text model shared by the JSON stages
PERSONA_PREFERRED_MODEL_ID = "gpt-5-mini"  # Tried before the default text model for personas / briefs

# --- Max output tokens per stage call ---
STAGE_MAX_TOKENS: Dict[str, int] = {
    "product_analysis": 900,
    "clustering": 900,
    "persona": 1000,
    "creative_brief": 1200,
    "fallback_summary": 600,
}

# --- Pipeline defaults ---
DEFAULT_BUFFER_PERCENTAGE = 30
DEFAULT_FALLBACK_CONFIDENCE = 0.7
MIN_CONFIDENCE = 0.1
MAX_CONFIDENCE = 0.99
MAX_IMAGE_ANALYSIS_CONCURRENCY = 4
MAX_IMAGES_PER_REQUEST = 10

# --- Image annotation mapping ---
ANNOTATION_CALLS_PER_IMAGE = 4  # objects, labels, text, dominant colors
MAX_OCR_SNIPPETS = 5
MAX_DOMINANT_COLORS = 3

# --- Image preprocessing ---
IMAGE_MAX_DIMENSION = 1024
IMAGE_JPEG_QUALITY = 80

# --- Pricing (as of 2025.11) ---
# OpenAI GPT-4o family: $5 / 1M input tokens, $15 / 1M output tokens
OPENAI_INPUT_PRICE_PER_1M_TOKENS = 5.0
OPENAI_OUTPUT_PRICE_PER_1M_TOKENS = 15.0
# Google Vision: $1.5-$2 / 1,000 calls per feature type, averaged
GOOGLE_VISION_PRICE_PER_1000_CALLS = 1.75
USD_TO_JPY_RATE = 150
JPY_PER_CREDIT = 10

USD_DECIMALS = 4
JPY_DECIMALS = 2
CREDIT_DECIMALS = 2

# --- Estimation assumptions (per call, used for quoting before a run) ---
ESTIMATE_PER_IMAGE_INPUT_TOKENS = 1500
ESTIMATE_PER_IMAGE_OUTPUT_TOKENS = 250
ESTIMATE_CLUSTERING_INPUT_TOKENS = 2000
ESTIMATE_CLUSTERING_OUTPUT_TOKENS = 500
ESTIMATE_PERSONA_INPUT_TOKENS = 1500
ESTIMATE_PERSONA_OUTPUT_TOKENS = 800
ESTIMATE_CREATIVE_INPUT_TOKENS = 2000
ESTIMATE_CREATIVE_OUTPUT_TOKENS = 1200
ESTIMATE_PRO_META_QUERIES = 5
ESTIMATE_FALLBACK_BASE_INPUT_TOKENS = 3000
ESTIMATE_FALLBACK_PER_IMAGE_INPUT_TOKENS = 500
ESTIMATE_FALLBACK_OUTPUT_TOKENS = 1500

# --- Product taxonomy ---
PRODUCT_CATEGORIES: List[str] = [
    "electronics", "fashion", "food", "health", "home", "sports",
    "automotive", "books", "toys", "jewelry", "other",
]

# --- Subscription tiers (entitlement gating lives in the API layer) ---
PRO_SUBSCRIPTION_TIERS = ("pro", "premium")

# --- History and usage ---
DEFAULT_HISTORY_LIMIT = 10
MAX_HISTORY_LIMIT = 100
MONTHLY_ANALYSIS_LIMIT = 50  # Reported on the dashboard; not enforced

# --- Ad-platform (Meta Graph API) ---
META_GRAPH_API_BASE_URL = "https://graph.facebook.com/v19.0"
META_REQUEST_TIMEOUT_SECONDS = 15.0
META_INTEREST_SEARCH_LIMIT = 10
INTERESTS_PER_CATEGORY = 5
INTERESTS_PER_KEYWORD = 3
KEYWORDS_FOR_INTEREST_SEARCH = 3
AD_TOKEN_REFRESH_WINDOW_SECONDS = 10 * 60  # Refresh long-lived tokens this close to expiry
AD_SHORT_LIVED_TOKEN_TTL_SECONDS = 3600
AD_TOKEN_EXCHANGE_ATTEMPTS = 3

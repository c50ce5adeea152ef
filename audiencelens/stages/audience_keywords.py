"""
Audience Keywords - ad-platform interest suggestions for an analyzed product.

Not part of the pipeline stage order; called by the API layer after a
successful analysis. Each interest-search query counts as one ad-platform
query in the supplied metrics. Any failure degrades to an empty list.
"""

import asyncio
import logging
from typing import Any, List, Optional

from ..core.constants import (
    INTERESTS_PER_CATEGORY,
    INTERESTS_PER_KEYWORD,
    KEYWORDS_FOR_INTEREST_SEARCH,
)
from ..core.cost_calculator import UsageMetrics
from ..models import AudienceKeyword, ProductAttributes

logger = logging.getLogger(__name__)


async def _search(graph_client: Any, token_manager: Any, query: str, metrics: Optional[UsageMetrics]) -> List[str]:
    token = await token_manager.get_valid_token()
    if metrics is not None:
        metrics.add_meta_queries()
    logger.info(f"🔍 Getting ad-platform interests for: {query}")
    return await asyncio.to_thread(graph_client.search_interests, query, token)


async def generate_audience_keywords(
    product: ProductAttributes,
    graph_client: Any,
    token_manager: Any,
    metrics: Optional[UsageMetrics] = None,
) -> List[AudienceKeyword]:
    """Top interests per product category, then per leading keyword."""
    queries = [(category, INTERESTS_PER_CATEGORY) for category in product.product_category]
    queries += [(keyword, INTERESTS_PER_KEYWORD) for keyword in product.keywords[:KEYWORDS_FOR_INTEREST_SEARCH]]

    keywords: List[AudienceKeyword] = []
    try:
        for query, limit in queries:
            interests = await _search(graph_client, token_manager, query, metrics)
            if interests:
                keywords.append(AudienceKeyword(category="interests", keywords=interests[:limit]))
                logger.info(f"Found {len(interests)} interests for {query}")
            else:
                logger.info(f"⚠️ No interests found for: {query}")
    except Exception as e:
        logger.error(f"❌ Error generating audience keywords: {type(e).__name__}: {e}")
        return []

    return keywords

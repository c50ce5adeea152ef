from typing import AsyncIterator, Optional

from fastapi import Header, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from audiencelens.core.ad_token_manager import AdPlatformTokenManager
from audiencelens.core.meta_graph_client import MetaGraphClient
from audiencelens.pipeline.executor import CreativeDiversityPipeline


def get_pipeline(request: Request) -> CreativeDiversityPipeline:
    """Dependency to get the shared CreativeDiversityPipeline instance."""
    return request.app.state.pipeline


async def get_session(request: Request) -> AsyncIterator[AsyncSession]:
    """Dependency yielding a database session from the app's session factory."""
    async with request.app.state.session_factory() as session:
        yield session


def get_graph_client(request: Request) -> MetaGraphClient:
    return request.app.state.graph_client


def get_token_manager(request: Request) -> AdPlatformTokenManager:
    return request.app.state.token_manager


def get_current_user_id(x_user_id: Optional[str] = Header(None)) -> str:
    """Caller identity as forwarded by the authenticating gateway in ``X-User-Id``."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return x_user_id

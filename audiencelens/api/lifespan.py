import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI

from audiencelens.api.database import create_db_and_tables, create_engine, create_session_factory
from audiencelens.core.ad_token_manager import AdPlatformTokenManager
from audiencelens.core.client_config import ClientConfig
from audiencelens.core.meta_graph_client import MetaGraphClient
from audiencelens.pipeline.executor import CreativeDiversityPipeline

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifespan events - startup and shutdown."""
    logger.info("🚀 Starting AudienceLens API...")

    app.state.engine = create_engine()
    await create_db_and_tables(app.state.engine)
    app.state.session_factory = create_session_factory(app.state.engine)
    logger.info("Database tables created/verified")

    try:
        config = ClientConfig()
        app.state.pipeline = CreativeDiversityPipeline(
            gateway=config.create_gateway(),
            annotator=config.create_annotator(),
            model_config=config.model_config,
        )
        app.state.client_summary = config.get_client_summary()
        logger.info(f"✅ Pipeline initialized: {app.state.client_summary}")
    except Exception as e:
        logger.error(f"❌ Failed to initialize pipeline: {e}")
        raise  # Fail fast - don't start the app without a pipeline

    app.state.graph_client = MetaGraphClient(
        app_id=os.getenv("FACEBOOK_APP_ID", ""),
        app_secret=os.getenv("FACEBOOK_APP_SECRET", ""),
    )
    app.state.token_manager = AdPlatformTokenManager(app.state.graph_client)

    initial_token = os.getenv("FACEBOOK_ACCESS_TOKEN")
    if initial_token:
        await app.state.token_manager.initialize(initial_token)
    else:
        logger.warning("⚠️ FACEBOOK_ACCESS_TOKEN not set; audience keyword lookups will return no results")

    logger.info("🎉 Application startup completed successfully")

    yield

    logger.info("🛑 Shutting down AudienceLens API...")
    await app.state.engine.dispose()
    logger.info("✅ Application shutdown completed")

import os
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from audiencelens.api.routers import ANALYSIS_FAILED_MESSAGE, api_router
from audiencelens.api.lifespan import lifespan


# Configure logging
log_level = os.getenv('LOG_LEVEL', 'INFO').upper()
numeric_level = getattr(logging, log_level, logging.INFO)
logging.basicConfig(
    level=numeric_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)
logger.info(f"🔧 API Logger initialized with level: {log_level}")


app = FastAPI(
    title="AudienceLens API",
    description="""
    Multi-image product creative analysis for ad targeting.

    Upload a batch of product creatives and receive:
    1. Per-image product attributes and image annotations
    2. Creative clusters across the batch
    3. Target personas and creative briefs (pro tiers)
    4. A whole-product fallback summary (pro tiers, on request)
    5. The metered cost of the run
    """,
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin for origin in os.getenv("CORS_ORIGINS", "http://localhost:5173,http://localhost:3000").split(",") if origin],
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    """Anything that escaped a route's own error mapping; details only outside production."""
    logger.error(f"❌ Unhandled {type(exc).__name__} on {request.method} {request.url.path}: {exc}", exc_info=True)
    detail = str(exc) if os.getenv("ENV") == "development" else ANALYSIS_FAILED_MESSAGE
    return JSONResponse(status_code=500, content={"detail": detail})


@app.get("/health")
async def health_check(request: Request):
    token_manager = getattr(request.app.state, "token_manager", None)
    return {
        "status": "healthy",
        "service": "audiencelens-api",
        "version": app.version,
        "pipeline_ready": hasattr(request.app.state, "pipeline"),
        "ad_token": token_manager.status()["token_type"] if token_manager else "none",
        "clients": getattr(request.app.state, "client_summary", None),
    }


app.include_router(api_router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "audiencelens.api.main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        reload=os.getenv("ENV") == "development",
        log_level=log_level.lower(),
    )

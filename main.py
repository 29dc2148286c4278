"""
FastAPI Application Entry Point

Integrates:
  - Generation endpoints (plain and streaming)
  - Health checks
  - Middleware for logging & error handling

Run: uvicorn main:app --host 0.0.0.0 --port 8080
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from api import generate_router
from config import Config
from infra import InfraBootstrap, bootstrap_infrastructure

# Setup logging
logging.basicConfig(
    level=getattr(logging, Config.LOG_LEVEL, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan: startup and shutdown handlers.
    """
    # Startup
    infra = bootstrap_infrastructure()
    selection = infra.selection
    logger.info("=" * 60)
    logger.info("Generation gateway starting up...")
    logger.info(f"Environment: {Config.ENVIRONMENT}")
    logger.info(f"LLM Backend: {selection.kind.value} (model={selection.model})")
    if selection.degraded:
        logger.warning(
            f"Requested backend '{selection.requested_kind}' unavailable, "
            f"serving stub: {selection.fallback_reason}"
        )
    logger.info(f"Interaction log: {infra.config.interaction_log_path}")
    logger.info("=" * 60)

    yield

    # Shutdown
    logger.info("Generation gateway shutting down...")
    InfraBootstrap.reset()


# Create FastAPI app
app = FastAPI(
    title="Generation Gateway API",
    description="Local prompt-response gateway with streaming output",
    version="1.0.0",
    lifespan=lifespan,
)


# Middleware for logging
@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all requests."""
    logger.debug(f"{request.method} {request.url.path}")
    try:
        response = await call_next(request)
        return response
    except Exception as e:
        logger.error(f"Request error: {str(e)}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )


# Include routers
app.include_router(generate_router)


# Health check endpoints
@app.get("/health/live")
async def health_live():
    """Live health check (Kubernetes liveness probe)."""
    return {"status": "alive"}


@app.get("/health/ready")
async def health_ready():
    """Readiness health check; reports degraded backend selection."""
    infra = InfraBootstrap.current()
    if infra is None:
        return JSONResponse(status_code=503, content={"status": "not_ready", "reason": "not bootstrapped"})

    if infra.get_interaction_log().closed:
        return JSONResponse(status_code=503, content={"status": "not_ready", "reason": "interaction log closed"})

    return {
        "status": "degraded" if infra.selection.degraded else "ready",
        "backend": infra.selection.describe(),
    }


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "name": "Generation Gateway API",
        "version": "1.0.0",
        "status": "running",
        "endpoints": {
            "generate": "POST /generate",
            "generate_stream": "POST /generate/stream",
            "health_live": "GET /health/live",
            "health_ready": "GET /health/ready",
            "config_info": "GET /config/info",
        },
    }


@app.get("/config/info")
async def config_info():
    """Get non-sensitive configuration info."""
    infra = InfraBootstrap.current()
    return {
        "environment": Config.ENVIRONMENT,
        "llm_backend": Config.LLM_BACKEND,
        "gateway_port": Config.GATEWAY_PORT,
        "backend": infra.selection.describe() if infra is not None else None,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        app,
        host=Config.GATEWAY_HOST,
        port=Config.GATEWAY_PORT,
    )

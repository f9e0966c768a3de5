"""Main FastAPI application for the forest analytics gateway."""

import logging
import traceback
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from gfw_gateway.api.endpoints import router as gfw_router
from gfw_gateway.api.error_handlers import register_error_handlers
from gfw_gateway.config import API_VERSION, CACHE_BACKEND, CACHE_PREFIX, DEBUG, HOST, PORT, REDIS_URL
from gfw_gateway.forest.cache import ExpiringMemoryBackend, ResponseCache, redis_backend
from gfw_gateway.forest.client import UpstreamClients
from gfw_gateway.forest.service import ForestAnalysisService
from gfw_gateway.logging_config import configure_logging

configure_logging()
logger = logging.getLogger(__name__)


def build_response_cache(backend_name: str = CACHE_BACKEND) -> ResponseCache:
    """Create the process-wide response cache for the configured backend."""
    if backend_name == "redis":
        logger.info(f"Using Redis response cache at {REDIS_URL}")
        return ResponseCache(redis_backend(REDIS_URL), prefix=CACHE_PREFIX)
    logger.info("Using in-memory response cache")
    return ResponseCache(ExpiringMemoryBackend(), prefix=CACHE_PREFIX)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    owned: Optional[ForestAnalysisService] = None
    try:
        if getattr(app.state, "analysis_service", None) is None:
            owned = ForestAnalysisService(UpstreamClients.from_config(), build_response_cache())
            app.state.analysis_service = owned
        logger.info("Starting forest analytics gateway")
        yield
    except Exception as e:
        logger.error(f"Startup error: {e}")
        logger.error(traceback.format_exc())
        raise
    finally:
        logger.info("Shutting down forest analytics gateway")
        if owned is not None:
            await owned.aclose()
            app.state.analysis_service = None


def create_app(analysis_service: Optional[ForestAnalysisService] = None) -> FastAPI:
    """Create and configure FastAPI application.

    Args:
        analysis_service: Pre-built service; when omitted the lifespan
            builds one from configuration

    Returns:
        Configured FastAPI application instance
    """
    app = FastAPI(
        title="Forest Analytics Gateway",
        description="Resolves coordinates into Global Forest Watch analytics",
        version=API_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.analysis_service = analysis_service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_error_handlers(app, debug=DEBUG)
    app.include_router(gfw_router)

    @app.get("/", tags=["root"])
    async def root() -> dict:
        """API information endpoint."""
        return {
            "message": "Forest Analytics Gateway API is running",
            "docs": "/docs",
            "health": "/api/gfw/health",
        }

    return app


# Create app instance for uvicorn
app = create_app()


def main() -> None:
    """Main entry point for the application."""
    logger.info(f"Starting server on {HOST}:{PORT}")
    uvicorn.run(
        "gfw_gateway.main:app",
        host=HOST,
        port=PORT,
        reload=DEBUG,
        log_level="info" if not DEBUG else "debug"
    )


if __name__ == "__main__":
    main()

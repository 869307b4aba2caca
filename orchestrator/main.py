"""
Main FastAPI application entry point.
"""
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import httpx
from fastapi import FastAPI
from fastapi.responses import JSONResponse

from orchestrator.api.middleware import setup_middleware
from orchestrator.api.routes import monitoring, providers
from orchestrator.core.cache import RedisCache
from orchestrator.core.config import Settings, get_settings
from orchestrator.core.database import Database
from orchestrator.core.logger import get_logger
from orchestrator.services.orchestrator import ProviderOrchestrator

logger = get_logger(__name__)

VERSION = "1.0.0"


# ============================================================================
# Application Lifespan
# ============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    Builds the orchestrator on startup and tears it down on shutdown.
    """
    settings: Settings = app.state.settings
    logger.info("Starting provider orchestrator", environment=settings.app_env, debug=settings.app_debug)

    database = Database(settings.database_url, echo=settings.app_debug)
    try:
        await database.init()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {str(e)}", exc_info=True)
        raise

    cache = RedisCache(settings.redis_url, enabled=settings.redis_enabled, default_ttl=settings.redis_cache_ttl)
    await cache.connect()

    client = app.state.probe_client
    owns_client = client is None
    if owns_client:
        client = httpx.AsyncClient(follow_redirects=True)

    orchestrator = ProviderOrchestrator.build(settings, database.session_factory, client, cache=cache)
    app.state.database = database
    app.state.orchestrator = orchestrator

    if settings.seed_default_providers:
        count = await orchestrator.registry.seed_defaults()
        logger.info("Provider seeding finished", providers=count)

    orchestrator.start_background_tasks(health_checks=settings.health_check_enabled)
    logger.info("Application startup complete")

    yield

    logger.info("Shutting down provider orchestrator")
    await orchestrator.stop_background_tasks()
    if owns_client:
        await client.aclose()
    await cache.disconnect()
    await database.close()


# ============================================================================
# Application Factory
# ============================================================================

def create_app(
    settings: Optional[Settings] = None,
    probe_client: Optional[httpx.AsyncClient] = None,
) -> FastAPI:
    """
    Create and configure FastAPI application.

    Args:
        settings: Settings to use instead of the environment-derived ones
        probe_client: HTTP client for health probes; one is created when omitted

    Returns:
        Configured FastAPI application instance
    """
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="Provider registry, health checking, usage accounting and failover selection",
        version=VERSION,
        docs_url="/docs" if settings.app_debug else None,
        redoc_url="/redoc" if settings.app_debug else None,
        openapi_url="/openapi.json" if settings.app_debug else None,
        lifespan=lifespan
    )
    app.state.settings = settings
    app.state.probe_client = probe_client

    setup_middleware(app, settings.cors_origins_list)

    app.include_router(providers.router, prefix="/api")
    app.include_router(monitoring.router, prefix="/api")

    @app.get("/api", tags=["root"])
    async def api_info():
        """API information endpoint."""
        return {
            "name": settings.app_name,
            "version": VERSION,
            "status": "running",
            "docs": "/docs" if settings.app_debug else "disabled",
        }

    @app.get("/health", tags=["root"])
    @app.get("/healthz", tags=["root"])
    async def health_check():
        """Health check endpoint for load balancers."""
        return {
            "status": "healthy",
            "service": settings.app_name
        }

    @app.exception_handler(404)
    async def not_found_handler(request, exc):
        return JSONResponse(
            status_code=404,
            content={
                "error": {
                    "code": "not_found",
                    "message": "The requested resource was not found",
                    "details": {"path": str(request.url.path)},
                },
                "request_id": getattr(request.state, "request_id", None),
            }
        )

    logger.info("Routes registered")
    return app


# ============================================================================
# Application Instance
# ============================================================================

app = create_app()


# ============================================================================
# Development Server
# ============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "orchestrator.main:app",
        host=get_settings().app_host,
        port=get_settings().app_port,
        reload=get_settings().app_debug,
        log_level=get_settings().log_level.lower(),
        access_log=True,
    )

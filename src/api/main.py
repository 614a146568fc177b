"""
Stream Chat API — Application Factory
=======================================
Entry point for the FastAPI application.

Responsibilities:
    - Create FastAPI app with metadata
    - CORS middleware (configurable)
    - Lifespan management (upstream client init/shutdown)
    - Include all routers
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.chat.config import CORS_ORIGINS, SERVICE_NAME, VERSION

from .dependencies import UpstreamClientState
from .routes import router

logger = logging.getLogger(__name__)


# =============================================================================
# LIFESPAN
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup:
        - Create the pooled upstream HTTP client

    Shutdown:
        - Close it (and every idle upstream connection)
    """
    logger.info("=" * 60)
    logger.info(f"{SERVICE_NAME} starting up...")
    logger.info("=" * 60)

    UpstreamClientState.initialize()

    logger.info(f"{SERVICE_NAME} ready")

    yield  # ---- APP IS RUNNING ----

    logger.info(f"{SERVICE_NAME} shutting down...")
    await UpstreamClientState.shutdown()
    logger.info("Shutdown complete")


# =============================================================================
# APP FACTORY
# =============================================================================

def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        Configured FastAPI app instance.
    """
    app = FastAPI(
        title=f"{SERVICE_NAME} API",
        description=(
            "Relays a streaming conversational-AI answer to browser and "
            "terminal clients as server-sent events."
        ),
        version=VERSION,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    # ----- CORS Middleware -----
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[o.strip() for o in CORS_ORIGINS.split(",")],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ----- Routers -----
    app.include_router(router)

    # ----- Root descriptor -----
    @app.get("/", include_in_schema=False)
    async def root():
        return {
            "service": SERVICE_NAME,
            "version": VERSION,
            "chat": "/api/chat?q=...&cid=...",
            "health": "/health",
        }

    return app

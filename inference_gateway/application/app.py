"""
FastAPI Application Entry Point

Configures the gateway's HTTP surface: lifespan (state store and
orchestrator), middleware, exception handlers and routes.

Run with:
    python -m inference_gateway.application.app
or:
    uvicorn inference_gateway.application.app:create_app --factory
"""

import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from inference_gateway.analysis.services.orchestrator_factory import build_orchestrator
from inference_gateway.analysis.services.request_orchestrator import RequestOrchestrator
from inference_gateway.application.api.middleware.error_handler import (
    ErrorHandlingMiddleware,
    register_exception_handlers,
)
from inference_gateway.application.api.routes.analyze import router as analyze_router
from inference_gateway.application.api.routes.health import router as health_router
from inference_gateway.core.config.constants import (
    HEADER_RATE_LIMIT_LIMIT,
    HEADER_RATE_LIMIT_REMAINING,
    HEADER_RATE_LIMIT_RESET,
    HEADER_REQUEST_ID,
)
from inference_gateway.core.config.settings import Settings, get_settings
from inference_gateway.core.interfaces.state_store import StateStore
from inference_gateway.core.logging.logger import (
    clear_request_id,
    get_logger,
    set_request_id,
    setup_logging,
)
from inference_gateway.infrastructure.state.factory import create_state_store

logger = get_logger(__name__)

_MAX_REQUEST_ID_LENGTH = 128


# ============================================================================
# LIFESPAN MANAGEMENT
# ============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application lifecycle (startup and shutdown).

    Components injected through create_app are used as given and left open
    on shutdown; anything built here is closed here.
    """
    settings: Settings = app.state.settings

    setup_logging(log_level=settings.logging.LOG_LEVEL, log_format=settings.logging.LOG_FORMAT)

    logger.info(
        "Starting Inference Gateway",
        stage="APP.0",
        environment=settings.app.ENVIRONMENT,
        version=settings.app.APP_VERSION,
        state_backend=settings.STATE_BACKEND.value,
    )

    owns_store = getattr(app.state, "store", None) is None
    owns_orchestrator = getattr(app.state, "orchestrator", None) is None

    try:
        if owns_store:
            app.state.store = await create_state_store(settings)
            logger.info("State store ready", stage="APP.1")

        if owns_orchestrator:
            app.state.orchestrator = build_orchestrator(settings, app.state.store)
            logger.info("Request orchestrator ready", stage="APP.2")

        logger.info("Application startup complete", stage="APP.3")

        yield

    finally:
        logger.info("Shutting down application", stage="APP.4")

        orchestrator = getattr(app.state, "orchestrator", None)
        if orchestrator is not None:
            await orchestrator.drain(timeout=settings.limits.REQUEST_TIMEOUT_SECONDS)
            if owns_orchestrator:
                await orchestrator.close()
                app.state.orchestrator = None

        store = getattr(app.state, "store", None)
        if owns_store and store is not None:
            await store.close()
            app.state.store = None

        logger.info("Application shutdown complete", stage="APP.5")


# ============================================================================
# APPLICATION FACTORY
# ============================================================================


def create_app(
    settings: Settings | None = None,
    store: StateStore | None = None,
    orchestrator: RequestOrchestrator | None = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        settings: Settings snapshot (defaults to the process singleton)
        store: Pre-built state store (tests); built from settings otherwise
        orchestrator: Pre-built orchestrator (tests); built from settings otherwise

    Returns:
        FastAPI: Configured application instance
    """
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.app.APP_NAME,
        version=settings.app.APP_VERSION,
        description="Multi-provider image analysis gateway",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.settings = settings
    app.state.store = store
    app.state.orchestrator = orchestrator

    # Innermost: last line of defense for unclassified exceptions
    app.add_middleware(
        ErrorHandlingMiddleware,
        include_traceback=(settings.app.ENVIRONMENT == "development"),
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.app.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[
            HEADER_REQUEST_ID,
            HEADER_RATE_LIMIT_LIMIT,
            HEADER_RATE_LIMIT_REMAINING,
            HEADER_RATE_LIMIT_RESET,
            "Retry-After",
        ],
    )

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        """Inject a request ID into every request for correlation."""
        request_id = request.headers.get(HEADER_REQUEST_ID)
        if not request_id or len(request_id) > _MAX_REQUEST_ID_LENGTH:
            request_id = uuid.uuid4().hex

        request.state.request_id = request_id
        set_request_id(request_id)

        try:
            response = await call_next(request)
            response.headers[HEADER_REQUEST_ID] = request_id
            return response
        finally:
            clear_request_id()

    register_exception_handlers(app)

    base_path = settings.app.API_BASE_PATH
    app.include_router(health_router, prefix=base_path)
    app.include_router(analyze_router, prefix=base_path)

    @app.get("/", tags=["Root"])
    async def root():
        """Root endpoint with API information."""
        return {
            "name": settings.app.APP_NAME,
            "version": settings.app.APP_VERSION,
            "environment": settings.app.ENVIRONMENT,
            "docs": "/docs",
            "health": f"{base_path}/health",
        }

    return app


def main() -> None:
    import uvicorn

    settings = get_settings()

    uvicorn.run(
        "inference_gateway.application.app:create_app",
        factory=True,
        host=settings.app.API_HOST,
        port=settings.app.API_PORT,
        reload=settings.app.ENVIRONMENT == "development",
        log_level=settings.logging.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()

"""
FastAPI application for the approval engine.

Wires CORS, correlation ids, the error envelope and the versioned API
router. In development the outbox dispatcher runs inside the process.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config.settings import settings
from .api.routes import api_router
from .api.middleware import CorrelationIdMiddleware, register_error_handlers
from .api.middleware.correlation import CORRELATION_HEADER
from .repositories.mongo_client import create_indexes, close_connection, health_check
from .scheduler.dev_scheduler import start_scheduler, stop_scheduler
from .utils.logger import setup_logging, get_logger

setup_logging()
logger = get_logger(__name__)


# =============================================================================
# Lifespan
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Ensure indexes and run the dispatcher for the lifetime of the app."""
    logger.info(f"{settings.app_name} {settings.app_version} booting ({settings.environment})")

    try:
        create_indexes()
    except Exception as e:
        # The API still serves reads; writes will surface the storage error
        logger.error(f"Index creation failed: {e}")

    dispatcher_enabled = settings.environment == "development"
    if dispatcher_enabled:
        try:
            start_scheduler()
        except Exception as e:
            logger.error(f"Outbox dispatcher not started: {e}")

    yield

    if dispatcher_enabled:
        stop_scheduler()
    close_connection()
    logger.info(f"{settings.app_name} stopped")


# =============================================================================
# Factory
# =============================================================================

def _docs_path(suffix: str):
    return f"/api/{suffix}" if settings.debug else None


def create_app() -> FastAPI:
    application = FastAPI(
        title=settings.app_name,
        description="Multi-step approvals with delegation, quorum and routing rules",
        version=settings.app_version,
        lifespan=lifespan,
        docs_url=_docs_path("docs"),
        redoc_url=_docs_path("redoc"),
        openapi_url=_docs_path("openapi.json"),
    )

    open_cors = settings.cors_origins.strip() == "*"
    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if open_cors else settings.cors_origins_list,
        allow_credentials=not open_cors,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[CORRELATION_HEADER],
    )
    application.add_middleware(CorrelationIdMiddleware)

    register_error_handlers(application)
    application.include_router(api_router, prefix=settings.api_prefix)
    _add_service_endpoints(application)

    return application


def _add_service_endpoints(application: FastAPI) -> None:

    @application.get("/health", tags=["Health"])
    async def health():
        database = health_check()
        return {
            "status": "healthy" if database.get("status") == "healthy" else "degraded",
            "version": settings.app_version,
            "environment": settings.environment,
            "mongo": database,
        }

    @application.get("/", tags=["Health"])
    async def root():
        return {
            "name": settings.app_name,
            "version": settings.app_version,
            "docs": _docs_path("docs"),
        }


app = create_app()

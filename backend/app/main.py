"""Workflow Automation Engine - FastAPI Application."""

from contextlib import asynccontextmanager
from datetime import timedelta

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import get_settings
from api.v1.router import api_v1_router
from core.utils import utc_now
from db.database import AsyncSessionLocal, close_db, init_db
from triggers.dispatcher import get_trigger_dispatcher
from workflow.recorder import SqlRunRecorder
from core.logging_config import setup_logging
from core.middleware import RequestTrackingMiddleware, setup_exception_handlers

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown events."""
    # Startup
    settings = get_settings()
    setup_logging()

    await init_db()
    logger.info("Database ready")

    # Runs left `running` by a stopped process would block their workflows
    cutoff = utc_now() - timedelta(seconds=settings.RUN_TIMEOUT_SECONDS * 2)
    await SqlRunRecorder(AsyncSessionLocal).fail_abandoned_runs(cutoff)

    # Builds the engine, its run services and the notification channels
    dispatcher = get_trigger_dispatcher()
    logger.info(
        "Application started",
        app=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
    )
    yield
    # Shutdown
    await dispatcher.engine.shutdown()
    await close_db()
    logger.info("Application shut down")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Workflow automation: triggers, sequential steps, "
                    "integrations, strategy updates and run history.",
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        lifespan=lifespan,
    )

    # Request tracking middleware
    app.add_middleware(RequestTrackingMiddleware)

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "X-Request-ID", "X-Signature"],
    )

    # Global exception handlers
    setup_exception_handlers(app)

    # All endpoints under /api/v1
    app.include_router(api_v1_router, prefix=settings.API_V1_PREFIX)

    return app


app = create_app()

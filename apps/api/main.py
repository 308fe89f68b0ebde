"""
Finance Tracker AI Categorization API - FastAPI application entry point
"""
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy import text
from starlette.responses import Response

from apps.api.middleware.user_identity import UserIdentityMiddleware
from apps.api.routers import ai_categorization
from packages.common.config import get_settings
from packages.common.database import sessionmanager
from packages.domain.ai_categorization.launcher import AsyncioJobLauncher
from packages.domain.ai_categorization.service import build_orchestrator, build_store

settings = get_settings()

# Configure structured logging
structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, settings.log_level)),
    context_class=dict,
    logger_factory=structlog.PrintLoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()


def build_launcher():
    if settings.ai_job_launcher == "celery":
        # Imported lazily so the asyncio mode never needs a broker
        from apps.api.tasks import CeleryJobLauncher
        return CeleryJobLauncher()
    return AsyncioJobLauncher()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan context manager"""
    logger.info("starting_categorization_api",
                environment=settings.environment,
                job_store=settings.ai_job_store_backend,
                job_launcher=settings.ai_job_launcher,
                version="0.1.0")

    # Initialize database connection pool
    sessionmanager.init(settings.database_url)

    store = build_store(settings)
    launcher = build_launcher()
    app.state.job_store = store
    app.state.job_launcher = launcher
    app.state.orchestrator = build_orchestrator(settings, store=store, launcher=launcher)

    yield

    # Cleanup
    logger.info("shutting_down_categorization_api")
    if isinstance(launcher, AsyncioJobLauncher):
        await launcher.cancel_all()
    if hasattr(store, "close"):
        await store.close()
    await sessionmanager.close()


# Create FastAPI application
app = FastAPI(
    title="Finance Tracker AI Categorization API",
    description="Background AI categorization of uncategorized transactions",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs" if settings.environment != "production" else None,
    redoc_url="/redoc" if settings.environment != "production" else None,
)


# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.environment != "production" else [],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Gateway-provided user identity (skip in dev if configured)
if not settings.skip_auth_validation:
    app.add_middleware(UserIdentityMiddleware)


# Exception handlers
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle validation errors with structured logging"""
    logger.warning("validation_error",
                   path=request.url.path,
                   errors=exc.errors())
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": exc.errors()},
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle unexpected errors"""
    logger.error("unhandled_exception",
                 path=request.url.path,
                 error=str(exc),
                 exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "detail": "Internal server error",
            "request_id": request.headers.get("x-request-id"),
        },
    )


# Include routers
app.include_router(
    ai_categorization.router,
    prefix="/api/v1/ai/categorization",
    tags=["AI Categorization"],
)


# Health check endpoint
@app.get("/health", tags=["System"])
async def health_check():
    """Health check endpoint for Docker and monitoring"""
    try:
        async with sessionmanager.session() as session:
            await session.execute(text("SELECT 1"))

        return {
            "status": "healthy",
            "environment": settings.environment,
            "version": "0.1.0",
            "services": {
                "database": "connected",
                "job_store": settings.ai_job_store_backend,
            }
        }
    except Exception as e:
        logger.error("health_check_failed", error=str(e))
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={
                "status": "unhealthy",
                "error": str(e),
            }
        )


# Metrics endpoint (Prometheus)
@app.get("/metrics", tags=["System"])
async def metrics():
    """Prometheus metrics endpoint"""
    if not settings.metrics_enabled:
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content={"detail": "Metrics disabled"}
        )

    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "apps.api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.environment == "development",
        log_level=settings.log_level.lower(),
    )

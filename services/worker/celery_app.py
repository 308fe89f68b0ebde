"""
Celery application configuration for background tasks
"""
import asyncio
import logging

import structlog
from celery import Celery
from celery.signals import worker_process_init, worker_process_shutdown

from packages.common.config import get_settings
from packages.common.database import sessionmanager

settings = get_settings()

# Same JSON log format as the API
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

# Create Celery app
app = Celery(
    "finance_tracker_worker",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
)

# Celery configuration
app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="America/Sao_Paulo",
    enable_utc=True,

    # Task execution settings
    # A job is never redelivered: the API already claimed the user, and a
    # half-run job must not classify its batches twice
    task_acks_late=False,
    task_time_limit=3 * 60 * 60,  # 3 hours hard limit (50 batches with retries)
    task_soft_time_limit=3 * 60 * 60 - 60,

    # Result backend settings
    result_expires=3600,  # Results expire after 1 hour
    result_extended=True,

    # Worker settings
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=50,

    # Task routing
    task_routes={
        "services.worker.tasks.categorize_transactions.*": {"queue": "ai"},
    },
)

# Import tasks explicitly to register them
from services.worker.tasks import categorize_transactions  # noqa: E402,F401


@worker_process_init.connect
def init_worker(**kwargs):
    """Initialize worker process"""
    logger.info("celery_worker_starting",
                concurrency=kwargs.get("concurrency", "unknown"))

    # Initialize database session manager for async tasks
    sessionmanager.init(settings.database_url)
    logger.info("celery_database_initialized")


@worker_process_shutdown.connect
def shutdown_worker(**kwargs):
    """Clean up worker process"""
    logger.info("celery_worker_shutting_down")

    try:
        asyncio.run(sessionmanager.close())
        logger.info("celery_database_closed")
    except Exception as e:
        logger.error("celery_database_close_failed", error=str(e))


if __name__ == "__main__":
    app.start()

"""
Categorization Service - Wires the orchestrator to its production collaborators

Shared by the API process and the Celery worker so both run jobs with the
same repositories, classifier and batching/retry settings.

Deployment modes (AI_JOB_LAUNCHER / AI_JOB_STORE_BACKEND):
- asyncio + memory: jobs run inside the API process (single instance)
- celery  + redis:  API queues jobs, worker runs them, state shared in Redis
"""
from typing import Optional

import structlog

from packages.common.category_repository import CategoryRepository
from packages.common.config import Settings
from packages.common.suggestion_repository import SuggestionRepository
from packages.common.transaction_repository import TransactionRepository
from packages.domain.ai_categorization.job_store import JobStateStore, build_job_store
from packages.domain.ai_categorization.launcher import JobLauncher
from packages.domain.ai_categorization.orchestrator import CategorizationOrchestrator
from packages.domain.ai_categorization.transaction_classifier import AnthropicTransactionClassifier

logger = structlog.get_logger()


def build_store(settings: Settings) -> JobStateStore:
    """Job state backend selected by settings."""
    return build_job_store(
        settings.ai_job_store_backend,
        redis_url=settings.redis_url,
        ttl_seconds=settings.ai_job_ttl_seconds,
    )


def build_orchestrator(
    settings: Settings,
    store: JobStateStore,
    launcher: Optional[JobLauncher] = None,
) -> CategorizationOrchestrator:
    """
    Build a CategorizationOrchestrator backed by Postgres and Claude.

    Args:
        settings: Application settings
        store: Job state backend (one per process, never a module global)
        launcher: Background executor; AsyncioJobLauncher when omitted
    """
    classifier = AnthropicTransactionClassifier(
        api_key=settings.anthropic_api_key,
        model=settings.anthropic_model,
    )

    logger.info("categorization_orchestrator_built",
                store=type(store).__name__,
                launcher=type(launcher).__name__ if launcher else "AsyncioJobLauncher",
                model=settings.anthropic_model,
                batch_size=settings.ai_batch_size,
                max_batches=settings.ai_max_batches)

    return CategorizationOrchestrator.from_settings(
        settings,
        transactions=TransactionRepository(),
        categories=CategoryRepository(),
        suggestions=SuggestionRepository(),
        classifier=classifier,
        store=store,
        launcher=launcher,
    )

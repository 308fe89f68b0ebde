"""
AI categorization task - Runs a job queued by the API

Flow:
1. API claims the user in the Redis job store and queues the job payload
2. Worker rebuilds the orchestrator with the same Redis store
3. orchestrator.run() processes every batch and releases the user when done

The task never raises for job failures: they are stored as the user's last
error and surfaced by the status endpoint.
"""
import asyncio
from typing import Any, Dict

import structlog

from packages.common.config import get_settings
from packages.common.database import sessionmanager
from packages.domain.ai_categorization.job_store import RedisJobStateStore
from packages.domain.ai_categorization.schemas import CategorizationJob
from packages.domain.ai_categorization.service import build_orchestrator
from services.worker.celery_app import app

logger = structlog.get_logger()


async def _run(payload: Dict[str, Any]) -> Dict[str, Any]:
    settings = get_settings()
    job = CategorizationJob.model_validate(payload)

    # Engines are bound to the event loop that created them; each task gets a
    # fresh loop from asyncio.run()
    sessionmanager.init(settings.database_url)
    store = RedisJobStateStore.from_url(settings.redis_url, ttl_seconds=settings.ai_job_ttl_seconds)
    try:
        orchestrator = build_orchestrator(settings, store=store)
        await orchestrator.run(job)
        state = await store.get_state(job.user_id)
    finally:
        await store.close()
        await sessionmanager.close()

    return {
        "job_id": job.job_id,
        "user_id": str(job.user_id),
        "transactions": len(job.transactions),
        "error_code": state.last_error.code.value if state.last_error else None,
    }


@app.task(name="services.worker.tasks.categorize_transactions.run_categorization_task")
def run_categorization_task(payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Run one categorization job.

    Args:
        payload: CategorizationJob as JSON (user_id, job_id, transactions)

    Returns:
        Summary with the job id and the stored error code, if any
    """
    logger.info("categorization_task_received",
                job_id=payload.get("job_id"),
                user_id=payload.get("user_id"))
    return asyncio.run(_run(payload))

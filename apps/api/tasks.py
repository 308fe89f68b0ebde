"""Task queue wrappers - API sends task names, never imports worker code."""
import structlog
from celery import Celery

from packages.common.config import get_settings
from packages.domain.ai_categorization.launcher import JobRunner
from packages.domain.ai_categorization.schemas import CategorizationJob

logger = structlog.get_logger()
settings = get_settings()

celery_app = Celery('finance_tracker')
celery_app.conf.broker_url = settings.celery_broker_url
celery_app.conf.result_backend = settings.celery_result_backend

CATEGORIZATION_TASK = 'services.worker.tasks.categorize_transactions.run_categorization_task'


def queue_categorization(job: CategorizationJob) -> str:
    """Queue a registered categorization job for the worker."""
    task = celery_app.send_task(
        CATEGORIZATION_TASK,
        args=[job.model_dump(mode="json")],
    )
    return task.id


class CeleryJobLauncher:
    """
    Runs jobs in the Celery worker.

    Requires a job store shared with the worker (redis), since the worker
    clears the processing flag when the job ends.
    """

    def launch(self, job: CategorizationJob, runner: JobRunner) -> None:
        task_id = queue_categorization(job)
        logger.info("categorization_job_launched",
                    launcher="celery",
                    job_id=job.job_id,
                    user_id=str(job.user_id),
                    task_id=task_id)

"""
Categorization Orchestrator - Runs AI categorization jobs per user

Job lifecycle (one per user at a time):
    Idle -> Starting -> Running -> Completed | Aborted

start():
1. Reject if the user already has a job (single-flight)
2. Clear the previous job error
3. Load transactions, keep the uncategorized ones (none -> reject)
4. Claim the user in the job store with a fresh job id
5. Hand the job to the launcher and return immediately

run() (background, one batch at a time):
1. Load the user's categories once
2. Plan merchant-grouped batches
3. For each batch: pace, classify under a timeout, retry rate limits,
   persist suggestions right away, update progress
4. Any other failure aborts the job; suggestions already saved are kept

Failures inside run() are never raised. They are classified and stored as the
user's last error, which get_status() reports.
"""
import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Sequence
from uuid import UUID, uuid4

import structlog

from packages.common.config import Settings
from packages.domain.ai_categorization.batch_planner import Batch, BatchPlanner
from packages.domain.ai_categorization.error_classifier import ErrorClassifier
from packages.domain.ai_categorization.exceptions import (
    AlreadyProcessingError,
    NothingToCategorizeError,
)
from packages.domain.ai_categorization.job_store import JobStateStore
from packages.domain.ai_categorization.launcher import AsyncioJobLauncher, JobLauncher
from packages.domain.ai_categorization.metrics import (
    BATCHES_PROCESSED,
    JOBS_FINISHED,
    JOBS_STARTED,
    RATE_LIMIT_RETRIES,
    SUGGESTIONS_SAVED,
)
from packages.domain.ai_categorization.ports import (
    CategorySource,
    SuggestionSink,
    TransactionClassifier,
    TransactionSource,
)
from packages.domain.ai_categorization.retry_policy import RetryPolicy
from packages.domain.ai_categorization.schemas import (
    CategorizationJob,
    CategorizationStatus,
    CategoryForClassification,
    ClassificationResult,
    ClassificationSuggestion,
    OwnerType,
    ProcessingProgress,
    StartCategorizationResult,
    TransactionForClassification,
    TransactionRecord,
)

logger = structlog.get_logger()

Sleep = Callable[[float], Awaitable[None]]


@dataclass
class _JobRun:
    """Mutable bookkeeping for one run() call"""
    job: CategorizationJob
    log: structlog.BoundLogger
    saved_count: int = 0
    outcome: str = "aborted"


class CategorizationOrchestrator:
    """
    Drives categorization jobs through the remote classifier.

    Usage:
        orchestrator = CategorizationOrchestrator(
            transactions=TransactionRepository(),
            categories=CategoryRepository(),
            suggestions=SuggestionRepository(),
            classifier=AnthropicTransactionClassifier(),
            store=InMemoryJobStateStore(),
        )
        started = await orchestrator.start(user_id)
        status = await orchestrator.get_status(user_id)
    """

    def __init__(
        self,
        transactions: TransactionSource,
        categories: CategorySource,
        suggestions: SuggestionSink,
        classifier: TransactionClassifier,
        store: JobStateStore,
        planner: Optional[BatchPlanner] = None,
        error_classifier: Optional[ErrorClassifier] = None,
        retry_policy: Optional[RetryPolicy] = None,
        launcher: Optional[JobLauncher] = None,
        batch_timeout: float = 45.0,
        batch_delay: float = 5.0,
        sleep: Sleep = asyncio.sleep,
    ):
        self.transactions = transactions
        self.categories = categories
        self.suggestions = suggestions
        self.classifier = classifier
        self.store = store
        self.planner = planner or BatchPlanner()
        self.error_classifier = error_classifier or ErrorClassifier()
        self.retry_policy = retry_policy or RetryPolicy()
        self.launcher = launcher or AsyncioJobLauncher()
        self.batch_timeout = batch_timeout
        self.batch_delay = batch_delay
        self._sleep = sleep

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        transactions: TransactionSource,
        categories: CategorySource,
        suggestions: SuggestionSink,
        classifier: TransactionClassifier,
        store: JobStateStore,
        launcher: Optional[JobLauncher] = None,
    ) -> "CategorizationOrchestrator":
        """Build an orchestrator with batching/retry knobs from settings."""
        return cls(
            transactions=transactions,
            categories=categories,
            suggestions=suggestions,
            classifier=classifier,
            store=store,
            planner=BatchPlanner(
                batch_size=settings.ai_batch_size,
                max_batches=settings.ai_max_batches,
            ),
            error_classifier=ErrorClassifier(locale=settings.ai_error_locale),
            retry_policy=RetryPolicy(
                base_delay=settings.ai_default_retry_delay_seconds,
                buffer=settings.ai_retry_delay_buffer_seconds,
                max_delay=settings.ai_max_retry_delay_seconds,
                max_retries=settings.ai_max_retries,
            ),
            launcher=launcher,
            batch_timeout=settings.ai_batch_timeout_seconds,
            batch_delay=settings.ai_batch_delay_seconds,
        )

    # ---- Start ------------------------------------------------------------------------

    async def start(self, user_id: UUID) -> StartCategorizationResult:
        """
        Register and launch a categorization job for a user.

        Returns:
            Job id and number of uncategorized transactions

        Raises:
            AlreadyProcessingError: The user already has an active job
            NothingToCategorizeError: The user has no uncategorized transactions
        """
        log = logger.bind(user_id=str(user_id))

        if await self.store.is_processing(user_id):
            log.info("categorization_rejected_already_processing")
            raise AlreadyProcessingError()

        await self.store.clear_error(user_id)

        uncategorized = await self._get_uncategorized(user_id)
        if not uncategorized:
            log.info("categorization_rejected_nothing_to_do")
            raise NothingToCategorizeError()

        job_id = str(uuid4())

        # Lost a race with a concurrent start() for the same user
        if not await self.store.try_start(user_id, job_id):
            log.info("categorization_rejected_already_processing", race=True)
            raise AlreadyProcessingError()

        job = CategorizationJob(
            user_id=user_id,
            job_id=job_id,
            transactions=[TransactionForClassification.from_record(tx) for tx in uncategorized],
        )

        try:
            self.launcher.launch(job, self.run)
        except Exception:
            log.error("categorization_launch_failed", job_id=job_id, exc_info=True)
            await self.store.finish(user_id, job_id)
            raise

        JOBS_STARTED.inc()
        log.info("categorization_started",
                 job_id=job_id,
                 uncategorized_count=len(uncategorized))

        return StartCategorizationResult(
            job_id=job_id,
            uncategorized_count=len(uncategorized),
            message=f"AI categorization started for {len(uncategorized)} uncategorized transactions",
        )

    async def _get_uncategorized(self, user_id: UUID) -> List[TransactionRecord]:
        transactions = await self.transactions.list_transactions(user_id)
        return [tx for tx in transactions if tx.category_id is None]

    # ---- Run --------------------------------------------------------------------------

    async def run(self, job: CategorizationJob) -> None:
        """
        Execute a registered job to completion or abort.

        Never raises (except on task cancellation); the outcome is visible
        through get_status().
        """
        started_at = time.monotonic()
        run = _JobRun(
            job=job,
            log=logger.bind(job_id=job.job_id,
                            user_id=str(job.user_id),
                            transaction_count=len(job.transactions)),
        )
        run.log.info("categorization_job_started")

        try:
            await self._process(run)
        except Exception as e:
            run.log.error("categorization_job_crashed", error=str(e), exc_info=True)
            run.outcome = "aborted"
            await self._abort(run, e)
        finally:
            try:
                await self.store.finish(job.user_id, job.job_id)
            except Exception as e:
                run.log.error("job_state_finish_failed", error=str(e), exc_info=True)

            JOBS_FINISHED.labels(outcome=run.outcome).inc()
            run.log.info("categorization_job_finished",
                         outcome=run.outcome,
                         saved_suggestions=run.saved_count,
                         duration_seconds=round(time.monotonic() - started_at, 3))

    async def _process(self, run: _JobRun) -> None:
        job = run.job

        try:
            category_records = await self.categories.list_categories(OwnerType.USER, job.user_id)
        except Exception as e:
            run.log.error("categories_load_failed", error=str(e), exc_info=True)
            await self._abort(run, e)
            return

        categories = [CategoryForClassification.from_record(c) for c in category_records]
        run.log.info("categories_loaded", category_count=len(categories))

        plan = self.planner.plan(job.transactions)
        total_batches = len(plan)
        total_count = len(job.transactions)

        run.log.info("batches_planned",
                     batch_count=total_batches,
                     batch_size=self.planner.batch_size,
                     dropped=plan.dropped_count)

        await self._set_progress(run, ProcessingProgress(
            processed_count=0,
            total_count=total_count,
            current_batch=0,
            total_batches=total_batches,
        ))

        processed = 0
        for index, batch in enumerate(plan.batches):
            batch_log = run.log.bind(batch=index + 1,
                                     total_batches=total_batches,
                                     batch_transactions=len(batch))

            await self._set_progress(run, ProcessingProgress(
                processed_count=processed,
                total_count=total_count,
                current_batch=index + 1,
                total_batches=total_batches,
            ))

            if index > 0:
                batch_log.info("waiting_between_batches", delay_seconds=self.batch_delay)
                await self._sleep(self.batch_delay)

            try:
                results = await self._classify_with_retry(job.user_id, batch, categories, batch_log)
            except Exception as e:
                await self._abort(run, e)
                return

            await self._save_suggestions(run, results, batch_log)

            processed += len(batch)
            await self._set_progress(run, ProcessingProgress(
                processed_count=processed,
                total_count=total_count,
                current_batch=index + 1,
                total_batches=total_batches,
            ))

        run.outcome = "completed"
        run.log.info("categorization_all_batches_completed",
                     total_saved_suggestions=run.saved_count)

    async def _classify_with_retry(
        self,
        user_id: UUID,
        batch: Batch,
        categories: Sequence[CategoryForClassification],
        batch_log: structlog.BoundLogger,
    ) -> List[ClassificationResult]:
        """Submit one batch, resubmitting it after rate limits. Raises the last error."""
        attempt = 0
        while True:
            attempt_started = time.monotonic()
            try:
                results = await asyncio.wait_for(
                    self.classifier.classify(user_id, batch, categories),
                    timeout=self.batch_timeout,
                )
            except Exception as e:
                if self.error_classifier.is_rate_limited(e) and self.retry_policy.can_retry(attempt):
                    delay = self.retry_policy.next_delay(e, attempt)
                    batch_log.warning("batch_rate_limited_retrying",
                                      error=str(e),
                                      attempt=attempt + 1,
                                      max_retries=self.retry_policy.max_retries,
                                      retry_delay_seconds=delay)
                    RATE_LIMIT_RETRIES.inc()
                    await self._sleep(delay)
                    attempt += 1
                    continue

                BATCHES_PROCESSED.labels(outcome="failed").inc()
                batch_log.error("batch_processing_failed",
                                error=str(e) or type(e).__name__,
                                attempt=attempt + 1,
                                duration_seconds=round(time.monotonic() - attempt_started, 3))
                raise

            BATCHES_PROCESSED.labels(outcome="success").inc()
            batch_log.info("batch_completed",
                           result_count=len(results),
                           attempt=attempt + 1,
                           duration_seconds=round(time.monotonic() - attempt_started, 3))
            return results

    async def _save_suggestions(
        self,
        run: _JobRun,
        results: Sequence[ClassificationResult],
        batch_log: structlog.BoundLogger,
    ) -> None:
        suggestions = []
        for result in results:
            suggestion = ClassificationSuggestion.from_result(run.job.user_id, result)
            if suggestion is not None:
                suggestions.append(suggestion)

        if not suggestions:
            return

        try:
            await self.suggestions.create_suggestions(suggestions)
        except Exception as e:
            # Keep going: later batches can still produce suggestions
            batch_log.error("batch_suggestions_save_failed",
                            error=str(e),
                            count=len(suggestions),
                            exc_info=True)
            return

        run.saved_count += len(suggestions)
        SUGGESTIONS_SAVED.inc(len(suggestions))
        batch_log.info("batch_suggestions_saved",
                       count=len(suggestions),
                       total_saved=run.saved_count)

    async def _abort(self, run: _JobRun, error: BaseException) -> None:
        run.outcome = "aborted"
        processing_error = self.error_classifier.classify(error, saved_count=run.saved_count)
        run.log.warning("categorization_job_aborted",
                        code=processing_error.code.value,
                        retryable=processing_error.retryable,
                        saved_suggestions=run.saved_count)
        try:
            await self.store.set_error(run.job.user_id, processing_error)
        except Exception as e:
            run.log.error("job_state_error_update_failed", error=str(e), exc_info=True)

    async def _set_progress(self, run: _JobRun, progress: ProcessingProgress) -> None:
        try:
            await self.store.set_progress(run.job.user_id, run.job.job_id, progress)
        except Exception as e:
            run.log.error("job_state_progress_update_failed", error=str(e), exc_info=True)

    # ---- Status -----------------------------------------------------------------------

    async def get_status(self, user_id: UUID) -> CategorizationStatus:
        """Read-only snapshot of the user's categorization state."""
        state = await self.store.get_state(user_id)
        uncategorized_count = await self.transactions.count_uncategorized(user_id)
        pending_count = await self.suggestions.count_pending(user_id)

        progress = None
        if state.processing and state.progress is not None and state.progress.total_count > 0:
            progress = state.progress

        return CategorizationStatus(
            uncategorized_count=uncategorized_count,
            is_processing=state.processing,
            pending_suggestions_count=pending_count,
            job_id=state.job_id or None,
            has_error=state.last_error is not None,
            error=state.last_error,
            progress=progress,
        )

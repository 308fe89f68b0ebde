"""
Prometheus metrics for AI categorization jobs

Exposed through the API's /metrics endpoint.
"""
from prometheus_client import Counter

JOBS_STARTED = Counter(
    "ai_categorization_jobs_started_total",
    "Categorization jobs accepted by start()",
)

JOBS_FINISHED = Counter(
    "ai_categorization_jobs_finished_total",
    "Categorization jobs that reached a terminal state",
    ["outcome"],  # completed | aborted
)

BATCHES_PROCESSED = Counter(
    "ai_categorization_batches_total",
    "Batches submitted to the remote classifier",
    ["outcome"],  # success | failed
)

RATE_LIMIT_RETRIES = Counter(
    "ai_categorization_rate_limit_retries_total",
    "Batch resubmissions after a rate-limited response",
)

TRANSACTIONS_DROPPED = Counter(
    "ai_categorization_transactions_dropped_total",
    "Transactions left out of a run by the batch-count cap",
)

SUGGESTIONS_SAVED = Counter(
    "ai_categorization_suggestions_saved_total",
    "Suggestions persisted by categorization jobs",
)

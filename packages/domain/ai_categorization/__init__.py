"""
AI Categorization Module - Suggest categories for uncategorized transactions

Background job per user:
1. Merchant grouping: sort transactions by merchant key so similar ones share a batch
2. Batching: fixed-size batches, capped per job
3. Classification (AI): one Claude call per batch, rate limits retried with backoff
4. Suggestions: saved after every batch, so an aborted job keeps earlier work

Example flow (45 uncategorized transactions, batch size 40):
- 30x "UBER *TRIP" + 15x "NETFLIX.COM" -> keys "UBER", "NETFLIX"
- Batch 1: 15 NETFLIX + 25 UBER, Batch 2: 5 UBER
- Suggestions: "UBER" -> Transporte, "NETFLIX" -> Streaming
"""

from packages.domain.ai_categorization.batch_planner import BatchPlan, BatchPlanner
from packages.domain.ai_categorization.error_classifier import ErrorClassifier
from packages.domain.ai_categorization.exceptions import (
    AlreadyProcessingError,
    CategorizationError,
    ClassifierResponseError,
    ClassifierServiceError,
    NothingToCategorizeError,
)
from packages.domain.ai_categorization.job_store import (
    InMemoryJobStateStore,
    JobStateStore,
    RedisJobStateStore,
    build_job_store,
)
from packages.domain.ai_categorization.launcher import AsyncioJobLauncher, JobLauncher
from packages.domain.ai_categorization.merchant_keys import extract_merchant_key
from packages.domain.ai_categorization.orchestrator import CategorizationOrchestrator
from packages.domain.ai_categorization.retry_policy import RetryPolicy
from packages.domain.ai_categorization.schemas import (
    CategorizationStatus,
    ErrorKind,
    ProcessingError,
    ProcessingProgress,
    StartCategorizationResult,
)

__all__ = [
    'AlreadyProcessingError',
    'AsyncioJobLauncher',
    'BatchPlan',
    'BatchPlanner',
    'CategorizationError',
    'CategorizationOrchestrator',
    'CategorizationStatus',
    'ClassifierResponseError',
    'ClassifierServiceError',
    'ErrorClassifier',
    'ErrorKind',
    'InMemoryJobStateStore',
    'JobLauncher',
    'JobStateStore',
    'NothingToCategorizeError',
    'ProcessingError',
    'ProcessingProgress',
    'RedisJobStateStore',
    'RetryPolicy',
    'StartCategorizationResult',
    'build_job_store',
    'extract_merchant_key',
]

"""
Job State Store - Per-user categorization job state

Holds, per user:
- the single-flight processing flag + job id
- the last progress snapshot
- the last terminal error

Two interchangeable backends implement JobStateStore:
- InMemoryJobStateStore: process-local, lost on restart (default)
- RedisJobStateStore: shared across API and worker processes

Neither is a singleton; the application builds one and injects it into the
orchestrator.
"""
import json
import threading
from typing import Dict, Optional, Protocol
from uuid import UUID

import structlog
from redis import asyncio as aioredis

from packages.domain.ai_categorization.schemas import (
    JobState,
    ProcessingError,
    ProcessingProgress,
)

logger = structlog.get_logger()

# KEYS: job, progress. ARGV: job id. Deletes both only for the owning job.
RELEASE_SCRIPT = """
if redis.call("GET", KEYS[1]) == ARGV[1] then
    return redis.call("DEL", KEYS[1], KEYS[2])
end
return 0
"""

# KEYS: job, progress. ARGV: job id, progress JSON, ttl.
# Refreshes the claim TTL on every write and re-claims an expired claim;
# refuses when another job holds the user.
PROGRESS_SCRIPT = """
local owner = redis.call("GET", KEYS[1])
if owner and owner ~= ARGV[1] then
    return 0
end
redis.call("SET", KEYS[1], ARGV[1], "EX", ARGV[3])
redis.call("SET", KEYS[2], ARGV[2], "EX", ARGV[3])
return 1
"""


class JobStateStore(Protocol):
    """
    Protocol for job state backends.

    try_start() is the only way to set the processing flag and must be an
    atomic check-and-set: it returns False without changing anything when a
    job is already registered for the user.

    finish() and set_progress() take the job id of the caller and are no-ops
    when another job owns the user, so a stale job can never release or
    overwrite a newer job's state.
    """

    async def get_state(self, user_id: UUID) -> JobState:
        ...

    async def is_processing(self, user_id: UUID) -> bool:
        ...

    async def try_start(self, user_id: UUID, job_id: str) -> bool:
        ...

    async def finish(self, user_id: UUID, job_id: str) -> bool:
        """Clear the processing flag, job id and progress if job_id owns them."""
        ...

    async def set_progress(self, user_id: UUID, job_id: str, progress: ProcessingProgress) -> bool:
        ...

    async def set_error(self, user_id: UUID, error: ProcessingError) -> None:
        ...

    async def clear_error(self, user_id: UUID) -> None:
        ...


class InMemoryJobStateStore:
    """
    Mutex-guarded dictionaries.

    Uses a threading lock (not asyncio.Lock) so sync handlers running in a
    threadpool and coroutines on the event loop are both safe. No method
    awaits while holding the lock.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._jobs: Dict[UUID, str] = {}
        self._progress: Dict[UUID, ProcessingProgress] = {}
        self._errors: Dict[UUID, ProcessingError] = {}

    async def get_state(self, user_id: UUID) -> JobState:
        with self._lock:
            job_id = self._jobs.get(user_id, "")
            progress = self._progress.get(user_id)
            return JobState(
                processing=bool(job_id),
                job_id=job_id,
                progress=progress.model_copy() if progress else None,
                last_error=self._errors.get(user_id),
            )

    async def is_processing(self, user_id: UUID) -> bool:
        with self._lock:
            return user_id in self._jobs

    async def try_start(self, user_id: UUID, job_id: str) -> bool:
        if not job_id:
            raise ValueError("job_id must not be empty")
        with self._lock:
            if user_id in self._jobs:
                return False
            self._jobs[user_id] = job_id
            return True

    async def finish(self, user_id: UUID, job_id: str) -> bool:
        with self._lock:
            if self._jobs.get(user_id) != job_id:
                return False
            del self._jobs[user_id]
            self._progress.pop(user_id, None)
            return True

    async def set_progress(self, user_id: UUID, job_id: str, progress: ProcessingProgress) -> bool:
        with self._lock:
            if self._jobs.get(user_id) != job_id:
                return False
            self._progress[user_id] = progress.model_copy()
            return True

    async def set_error(self, user_id: UUID, error: ProcessingError) -> None:
        with self._lock:
            self._errors[user_id] = error

    async def clear_error(self, user_id: UUID) -> None:
        with self._lock:
            self._errors.pop(user_id, None)


class RedisJobStateStore:
    """
    Redis-backed store for deployments where jobs run in a Celery worker.

    Key layout (prefix defaults to "ai_categorization"):
        {prefix}:job:{user_id}       -> job id, claimed with SET NX
        {prefix}:progress:{user_id}  -> ProcessingProgress JSON
        {prefix}:error:{user_id}     -> ProcessingError JSON

    Every key carries a TTL so a worker killed mid-job releases the user
    eventually instead of blocking new jobs forever. Progress writes refresh
    the claim, so only a job that stops reporting loses it. Release and
    progress go through Lua scripts that compare the stored job id first.
    """

    def __init__(
        self,
        client: aioredis.Redis,
        ttl_seconds: int = 21600,
        key_prefix: str = "ai_categorization",
    ):
        self.client = client
        self.ttl_seconds = ttl_seconds
        self.key_prefix = key_prefix

    @classmethod
    def from_url(cls, redis_url: str, ttl_seconds: int = 21600) -> "RedisJobStateStore":
        client = aioredis.from_url(redis_url, decode_responses=True)
        logger.info("redis_job_store_initialized", ttl_seconds=ttl_seconds)
        return cls(client, ttl_seconds=ttl_seconds)

    def _key(self, kind: str, user_id: UUID) -> str:
        return f"{self.key_prefix}:{kind}:{user_id}"

    @staticmethod
    def _text(value) -> Optional[str]:
        if value is None:
            return None
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    async def get_state(self, user_id: UUID) -> JobState:
        job_id, progress_raw, error_raw = await self.client.mget(
            self._key("job", user_id),
            self._key("progress", user_id),
            self._key("error", user_id),
        )
        job_id = self._text(job_id) or ""
        progress_raw = self._text(progress_raw)
        error_raw = self._text(error_raw)

        return JobState(
            processing=bool(job_id),
            job_id=job_id,
            progress=ProcessingProgress.model_validate_json(progress_raw) if progress_raw else None,
            last_error=ProcessingError.model_validate_json(error_raw) if error_raw else None,
        )

    async def is_processing(self, user_id: UUID) -> bool:
        return bool(await self.client.exists(self._key("job", user_id)))

    async def try_start(self, user_id: UUID, job_id: str) -> bool:
        if not job_id:
            raise ValueError("job_id must not be empty")
        claimed = await self.client.set(
            self._key("job", user_id),
            job_id,
            nx=True,
            ex=self.ttl_seconds,
        )
        return bool(claimed)

    async def finish(self, user_id: UUID, job_id: str) -> bool:
        released = await self.client.eval(
            RELEASE_SCRIPT, 2,
            self._key("job", user_id),
            self._key("progress", user_id),
            job_id,
        )
        if not released:
            logger.warning("job_state_release_skipped", user_id=str(user_id), job_id=job_id)
        return bool(released)

    async def set_progress(self, user_id: UUID, job_id: str, progress: ProcessingProgress) -> bool:
        written = await self.client.eval(
            PROGRESS_SCRIPT, 2,
            self._key("job", user_id),
            self._key("progress", user_id),
            job_id,
            progress.model_dump_json(),
            self.ttl_seconds,
        )
        if not written:
            logger.warning("job_state_progress_skipped", user_id=str(user_id), job_id=job_id)
        return bool(written)

    async def set_error(self, user_id: UUID, error: ProcessingError) -> None:
        await self.client.set(
            self._key("error", user_id),
            error.model_dump_json(),
            ex=self.ttl_seconds,
        )

    async def clear_error(self, user_id: UUID) -> None:
        await self.client.delete(self._key("error", user_id))

    async def close(self) -> None:
        await self.client.aclose()


def build_job_store(backend: str, redis_url: Optional[str] = None, ttl_seconds: int = 21600) -> JobStateStore:
    """Create the configured job state backend."""
    if backend == "redis":
        if not redis_url:
            raise ValueError("redis_url is required for the redis job store")
        return RedisJobStateStore.from_url(redis_url, ttl_seconds=ttl_seconds)
    if backend == "memory":
        return InMemoryJobStateStore()
    raise ValueError(f"Unknown job store backend: {backend}")

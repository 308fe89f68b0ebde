"""
Job launchers - Run a categorization job outside the triggering request

The job must keep running after the HTTP request that started it returns, so
it is never awaited by the request handler. The host runtime provides the
spawning primitive:

- AsyncioJobLauncher: task on the current event loop (in-memory job store)
- CeleryJobLauncher (apps/api/tasks.py): task queued to the worker (Redis job store)
"""
import asyncio
from typing import Awaitable, Callable, Protocol, Set

import structlog

from packages.domain.ai_categorization.schemas import CategorizationJob

logger = structlog.get_logger()

JobRunner = Callable[[CategorizationJob], Awaitable[None]]


class JobLauncher(Protocol):
    """Hands a registered job to a background executor."""

    def launch(self, job: CategorizationJob, runner: JobRunner) -> None:
        """
        Start the job without waiting for it.

        Args:
            job: The registered job
            runner: Coroutine function executing the job in-process.
                    Launchers that run jobs elsewhere may ignore it.
        """
        ...


class AsyncioJobLauncher:
    """
    Runs jobs as asyncio tasks on the running loop.

    The loop only keeps weak references to tasks, so launched tasks are held
    here until they finish.
    """

    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()

    @property
    def active_count(self) -> int:
        return len(self._tasks)

    def launch(self, job: CategorizationJob, runner: JobRunner) -> None:
        task = asyncio.get_running_loop().create_task(
            runner(job),
            name=f"ai-categorization-{job.job_id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

        logger.info("categorization_job_launched",
                    launcher="asyncio",
                    job_id=job.job_id,
                    user_id=str(job.user_id))

    async def wait_all(self) -> None:
        """Wait for every launched job (tests and graceful shutdown)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def cancel_all(self) -> None:
        """Cancel running jobs; their cleanup still releases the job state."""
        if not self._tasks:
            return
        logger.warning("categorization_jobs_cancelled", count=len(self._tasks))
        for task in list(self._tasks):
            task.cancel()
        await self.wait_all()

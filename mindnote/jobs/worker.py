"""Executes queued processing jobs.

The worker has no caller to report to. Every outcome ends in a state
write on the job (and the thought when relevant); nothing propagates.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Set

from mindnote.entitlement import AccessGate
from mindnote.jobs.models import JobStatus, ProcessingJob
from mindnote.logging_config import log_job_transition
from mindnote.notifications import BestEffortNotifier
from mindnote.protocols import RateLimitedError, UsageTracker
from mindnote.rate_limit import RateLimiter
from mindnote.storage.repositories import JobRepository, ThoughtRepository
from mindnote.types import ProcessingStatus
from mindnote.updates import ThoughtPatch

logger = logging.getLogger(__name__)

Processor = Callable[[str, ProcessingJob], Awaitable[None]]


class JobWorker:
    def __init__(
        self,
        jobs: JobRepository,
        thoughts: ThoughtRepository,
        rate_limiter: RateLimiter,
        access_gate: AccessGate,
        processor: Processor,
        notifier: Optional[BestEffortNotifier] = None,
        usage_tracker: Optional[UsageTracker] = None,
    ):
        self.jobs = jobs
        self.thoughts = thoughts
        self.rate_limiter = rate_limiter
        self.access_gate = access_gate
        self.processor = processor
        self.notifier = notifier or BestEffortNotifier()
        self.usage_tracker = usage_tracker

    async def _transition(
        self,
        user_id: str,
        job: ProcessingJob,
        status: JobStatus,
        error: Optional[str] = None,
    ) -> ProcessingJob:
        updated = await asyncio.to_thread(self.jobs.transition, user_id, job.id, status, error)
        await asyncio.to_thread(
            log_job_transition, user_id, job.id, job.status.value, status.value, error
        )
        return updated

    async def _set_thought(
        self, user_id: str, thought_id: str, status: ProcessingStatus, error: str
    ) -> None:
        await asyncio.to_thread(
            self.thoughts.apply_patch, user_id, thought_id, ThoughtPatch.status(status, error)
        )

    async def run(self, user_id: str, job_id: str) -> Optional[ProcessingJob]:
        """Run one job to a terminal state. Returns the final job, or None if it was skipped."""
        job = await asyncio.to_thread(self.jobs.get, user_id, job_id)
        if job is None:
            logger.warning("Job %s not found for %s", job_id, user_id)
            return None
        if job.status != JobStatus.QUEUED:
            logger.info("Job %s is %s, not queued; skipping", job_id, job.status.value)
            return None

        try:
            return await self._execute(user_id, job)
        except Exception as exc:
            # Only reached when a state write itself fails.
            logger.exception("Could not finalize job %s: %s", job_id, exc)
            return None

    async def _execute(self, user_id: str, job: ProcessingJob) -> ProcessingJob:
        if not job.thought_id:
            return await self._transition(user_id, job, JobStatus.FAILED, "Missing thoughtId")

        try:
            await asyncio.to_thread(self.rate_limiter.check_daily_cap, user_id)
        except RateLimitedError as exc:
            message = str(exc)
            job = await self._transition(user_id, job, JobStatus.RATE_LIMITED, message)
            await self._set_thought(user_id, job.thought_id, ProcessingStatus.FAILED, message)
            return job

        access = await asyncio.to_thread(self.access_gate.check, user_id)
        if not access.allowed:
            job = await self._transition(user_id, job, JobStatus.FAILED, access.message)
            await self._set_thought(user_id, job.thought_id, ProcessingStatus.BLOCKED, access.message)
            return job

        job = await self._transition(user_id, job, JobStatus.PROCESSING)

        try:
            await self.processor(user_id, job)
        except Exception as exc:
            message = str(exc) or exc.__class__.__name__
            logger.warning("Job %s failed: %s", job.id, message)
            return await self._transition(user_id, job, JobStatus.FAILED, message)

        try:
            await asyncio.to_thread(self.rate_limiter.increment_daily, user_id)
        except Exception as exc:
            message = str(exc) or exc.__class__.__name__
            logger.error("Could not count job %s against the daily cap: %s", job.id, message)
            job = await self._transition(user_id, job, JobStatus.FAILED, message)
            await self._set_thought(user_id, job.thought_id, ProcessingStatus.FAILED, message)
            return job

        job = await self._transition(user_id, job, JobStatus.COMPLETED)
        if self.usage_tracker is not None:
            tracker = self.usage_tracker
            self.notifier.dispatch("usage-tracking", lambda: tracker.increment_usage(user_id))
        return job


class TaskScheduler:
    """Runs worker jobs as background tasks on the running event loop."""

    def __init__(self, worker: JobWorker):
        self.worker = worker
        self._tasks: Set[asyncio.Task] = set()

    def schedule(self, user_id: str, job_id: str) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(self.worker.run(user_id, job_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

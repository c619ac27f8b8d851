"""Idempotent enqueue of processing jobs.

At most one queued/processing job per thought is enforced by a
query-then-create check, not a lock. Two enqueue calls that interleave
exactly between the query and the create can both create a job; the
worker's mid-flight check keeps the second one from touching the thought.
"""

import logging
from datetime import datetime
from typing import Callable, Iterable, Optional

from mindnote.entitlement import AccessGate
from mindnote.jobs.models import EnqueueResult, EnqueueStatus, ProcessingJob
from mindnote.logging_config import log_enqueue
from mindnote.protocols import (
    FailedPreconditionError,
    NotFoundError,
    PermissionDeniedError,
    ResourceExhaustedError,
    ToolSpecResolver,
)
from mindnote.storage.repositories import EnrollmentRepository, JobRepository, ThoughtRepository
from mindnote.types import ProcessingStatus, Trigger, utc_now
from mindnote.updates import ThoughtPatch

logger = logging.getLogger(__name__)


class JobQueue:
    def __init__(
        self,
        thoughts: ThoughtRepository,
        jobs: JobRepository,
        enrollments: EnrollmentRepository,
        resolver: ToolSpecResolver,
        access_gate: AccessGate,
        now: Callable[[], datetime] = utc_now,
        max_reprocess_count: Optional[int] = None,
    ):
        self.thoughts = thoughts
        self.jobs = jobs
        self.enrollments = enrollments
        self.resolver = resolver
        self.access_gate = access_gate
        self._now = now
        self.max_reprocess_count = max_reprocess_count

    def enqueue(
        self,
        user_id: str,
        thought_id: str,
        trigger: Trigger,
        tool_spec_ids: Optional[Iterable[str]] = None,
        allow_reprocess: bool = False,
    ) -> EnqueueResult:
        """Create a queued job for a thought, or return the live one.

        Raises:
            PermissionDeniedError: The user may not run AI processing.
            NotFoundError: The thought does not exist.
            FailedPreconditionError: Already processed, or no applicable enrolled tools.
            ResourceExhaustedError: A reprocess would exceed the per-thought cap.

        Blocking: touches the store and the event log file, so async callers
        run it in a worker thread.
        """
        access = self.access_gate.check(user_id)
        if not access.allowed:
            raise PermissionDeniedError(access.message)

        thought = self.thoughts.get(user_id, thought_id)
        if thought is None:
            raise NotFoundError(f"Thought {thought_id} not found")
        if thought.is_processed and not allow_reprocess:
            raise FailedPreconditionError("Thought already processed")
        if (
            trigger == Trigger.REPROCESS
            and self.max_reprocess_count is not None
            and thought.reprocess_count >= self.max_reprocess_count
        ):
            raise ResourceExhaustedError(
                f"Maximum reprocess limit reached ({self.max_reprocess_count})"
            )

        live = self.jobs.find_live(user_id, thought_id)
        if live is not None:
            logger.info("Thought %s already has live job %s", thought_id, live.id)
            log_enqueue(user_id, thought_id, live.id, trigger.value, EnqueueStatus.ALREADY_QUEUED.value)
            return EnqueueResult(live.id, EnqueueStatus.ALREADY_QUEUED)

        enrolled = self.enrollments.enrolled_tool_ids(user_id)
        if not enrolled:
            raise FailedPreconditionError("No tool enrollments found for user.")

        if tool_spec_ids:
            selected = set(tool_spec_ids) & enrolled
        else:
            selected = self.resolver.resolve_applicable_tool_ids(thought, enrolled)
        if not selected:
            raise FailedPreconditionError("No enrolled tools available for this thought.")

        job = ProcessingJob(
            id=self.jobs.new_id(),
            thought_id=thought_id,
            trigger=trigger,
            requested_by=user_id,
            requested_at=self._now(),
            tool_spec_ids=sorted(selected),
        )
        self.jobs.create(user_id, job)
        self.thoughts.apply_patch(user_id, thought_id, ThoughtPatch.status(ProcessingStatus.PENDING))

        logger.info("Queued job %s for thought %s (trigger=%s)", job.id, thought_id, trigger.value)
        log_enqueue(user_id, thought_id, job.id, trigger.value, EnqueueStatus.QUEUED.value)
        return EnqueueResult(job.id, EnqueueStatus.QUEUED)

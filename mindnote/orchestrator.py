"""Thought processing orchestrator.

Entry points (all async):

- ``enqueue_or_process``: explicit trigger; rate limited; errors surface.
- ``reprocess``: explicit re-run, capped per thought, optionally reverting first.
- ``on_thought_created``: automatic trigger; denials are silent no-ops.
- ``revert``: restore the pre-AI baseline.
- ``accept_suggestion`` / ``reject_suggestion``: resolve a pending suggestion.
- ``run_job``: execute a queued job (what the scheduler calls).

Store access is synchronous and runs in worker threads via
``asyncio.to_thread``; the provider call is the only other await point.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional

from mindnote.actions import arbitrate_actions
from mindnote.config import ProcessingConfig
from mindnote.entitlement import AccessGate, EntitlementCache
from mindnote.jobs.models import EnqueueResult, EnqueueStatus, ProcessingJob
from mindnote.jobs.queue import JobQueue
from mindnote.jobs.worker import JobWorker, TaskScheduler
from mindnote.logging_config import log_revert
from mindnote.notifications import BestEffortNotifier
from mindnote.protocols import (
    AIProvider,
    ContextGatherer,
    FailedPreconditionError,
    InteractionLogger,
    InternalError,
    InvalidArgumentError,
    NotFoundError,
    PermissionDeniedError,
    ResourceExhaustedError,
    ToolSpecResolver,
    UnauthenticatedError,
    UsageTracker,
)
from mindnote.rate_limit import RateLimiter
from mindnote.storage.base import DocumentStore
from mindnote.storage.repositories import (
    AccountRepository,
    EnrollmentRepository,
    JobRepository,
    LinkRepository,
    ThoughtRepository,
)
from mindnote.tools import TagToolSpecResolver, ToolRegistry
from mindnote.types import ProcessingStatus, ProviderResult, Thought, TokenUsage, Trigger, utc_now
from mindnote.updates import (
    ThoughtPatch,
    build_failure_update,
    build_revert_update,
    build_suggestion_update,
    build_thought_update,
    count_changes,
)

logger = logging.getLogger(__name__)

EXPLICIT_TRIGGERS = frozenset({Trigger.MANUAL, Trigger.REPROCESS})


class EmptyContextGatherer:
    """Context gatherer for deployments without a read layer."""

    async def gather_context(self, user_id: str) -> Dict[str, Any]:
        return {"goals": [], "projects": [], "people": [], "tasks": [], "moods": []}


class ThoughtOrchestrator:
    """Composes gating, queueing, processing and revert for thoughts."""

    def __init__(
        self,
        store: DocumentStore,
        provider: AIProvider,
        context_gatherer: Optional[ContextGatherer] = None,
        config: Optional[ProcessingConfig] = None,
        resolver: Optional[ToolSpecResolver] = None,
        tool_registry: Optional[ToolRegistry] = None,
        interaction_logger: Optional[InteractionLogger] = None,
        usage_tracker: Optional[UsageTracker] = None,
        notifier: Optional[BestEffortNotifier] = None,
        entitlement_cache: Optional[EntitlementCache] = None,
        now: Callable[[], datetime] = utc_now,
        schedule_jobs: bool = True,
    ):
        self.config = config or ProcessingConfig()
        self.provider = provider
        self.context_gatherer = context_gatherer or EmptyContextGatherer()
        self.tool_registry = tool_registry or ToolRegistry()
        self.interaction_logger = interaction_logger
        self.notifier = notifier or BestEffortNotifier()
        self._now = now

        self.thoughts = ThoughtRepository(store)
        self.jobs = JobRepository(store)
        self.links = LinkRepository(store)
        self.enrollments = EnrollmentRepository(store)
        self.accounts = AccountRepository(store)

        self.access_gate = AccessGate(
            self.accounts,
            cache=entitlement_cache
            or EntitlementCache(ttl_seconds=self.config.entitlement_cache_ttl_seconds),
            override_key=self.config.anonymous_override_key,
            now=now,
        )
        self.rate_limiter = RateLimiter(store, self.config, now=now)
        self.queue = JobQueue(
            self.thoughts,
            self.jobs,
            self.enrollments,
            resolver or TagToolSpecResolver(self.tool_registry),
            self.access_gate,
            now=now,
            max_reprocess_count=self.config.max_reprocess_count,
        )
        self.worker = JobWorker(
            self.jobs,
            self.thoughts,
            self.rate_limiter,
            self.access_gate,
            processor=self.process_thought,
            notifier=self.notifier,
            usage_tracker=usage_tracker,
        )
        self.scheduler = TaskScheduler(self.worker) if schedule_jobs else None

    # === Triggers ===

    @staticmethod
    def _validate(user_id: Optional[str], thought_id: Optional[str]) -> None:
        if not user_id:
            raise UnauthenticatedError("Authentication required")
        if not thought_id:
            raise InvalidArgumentError("thoughtId is required")

    async def _enqueue(
        self,
        user_id: str,
        thought_id: str,
        trigger: Trigger,
        tool_spec_ids: Optional[Iterable[str]],
        allow_reprocess: bool,
        run_inline: bool,
    ) -> EnqueueResult:
        ids = list(tool_spec_ids) if tool_spec_ids else None
        result = await asyncio.to_thread(
            self.queue.enqueue, user_id, thought_id, trigger, ids, allow_reprocess
        )
        if result.status == EnqueueStatus.QUEUED:
            if run_inline:
                await self.run_job(user_id, result.job_id)
            elif self.scheduler is not None:
                self.scheduler.schedule(user_id, result.job_id)
        return result

    async def enqueue_or_process(
        self,
        user_id: str,
        thought_id: str,
        trigger: Trigger = Trigger.MANUAL,
        tool_spec_ids: Optional[Iterable[str]] = None,
        allow_reprocess: bool = False,
        run_inline: bool = False,
    ) -> EnqueueResult:
        """Queue processing for a thought on behalf of the user.

        Explicit triggers (manual, reprocess) check the daily and interval
        limits first. With ``run_inline`` the job runs before returning;
        otherwise it is handed to the scheduler, if one is configured.

        Raises:
            UnauthenticatedError, InvalidArgumentError, NotFoundError,
            FailedPreconditionError, RateLimitedError, PermissionDeniedError,
            ResourceExhaustedError (reprocess cap)
        """
        self._validate(user_id, thought_id)
        if trigger == Trigger.REVERT:
            raise InvalidArgumentError("revert is not a processing trigger")
        if trigger in EXPLICIT_TRIGGERS:
            await asyncio.to_thread(self.rate_limiter.check_explicit_request, user_id)
        return await self._enqueue(
            user_id, thought_id, trigger, tool_spec_ids, allow_reprocess, run_inline
        )

    async def reprocess(
        self,
        user_id: str,
        thought_id: str,
        tool_spec_ids: Optional[Iterable[str]] = None,
        revert_first: bool = False,
        run_inline: bool = False,
    ) -> EnqueueResult:
        """Process an already-processed thought again, up to the reprocess cap."""
        self._validate(user_id, thought_id)
        thought = await asyncio.to_thread(self.thoughts.get, user_id, thought_id)
        if thought is None:
            raise NotFoundError(f"Thought {thought_id} not found")

        max_count = self.config.max_reprocess_count
        if thought.reprocess_count >= max_count:
            raise ResourceExhaustedError(f"Maximum reprocess limit reached ({max_count})")

        await asyncio.to_thread(self.rate_limiter.check_explicit_request, user_id)

        if revert_first and thought.ai_applied_changes is not None:
            live = await asyncio.to_thread(self.jobs.find_live, user_id, thought_id)
            if live is not None:
                return EnqueueResult(live.id, EnqueueStatus.ALREADY_QUEUED)
            await self.revert(user_id, thought_id)

        return await self._enqueue(
            user_id, thought_id, Trigger.REPROCESS, tool_spec_ids, True, run_inline
        )

    async def on_thought_created(
        self, user_id: str, thought_id: str, run_inline: bool = False
    ) -> Optional[EnqueueResult]:
        """Automatic trigger. Returns None whenever processing is skipped or denied."""
        if not user_id or not thought_id:
            return None
        thought = await asyncio.to_thread(self.thoughts.get, user_id, thought_id)
        if thought is None or thought.has_status or thought.is_processed:
            return None

        try:
            await asyncio.to_thread(self.rate_limiter.check_daily_cap, user_id)
            return await self._enqueue(user_id, thought_id, Trigger.AUTO, None, False, run_inline)
        except (PermissionDeniedError, ResourceExhaustedError, FailedPreconditionError) as exc:
            logger.info("Auto-processing skipped for thought %s: %s", thought_id, exc)
            return None

    async def run_job(self, user_id: str, job_id: str) -> Optional[ProcessingJob]:
        return await self.worker.run(user_id, job_id)

    async def get_job(self, user_id: str, job_id: str) -> ProcessingJob:
        job = await asyncio.to_thread(self.jobs.get, user_id, job_id)
        if job is None:
            raise NotFoundError(f"Job {job_id} not found")
        return job

    async def drain(self) -> None:
        """Wait for scheduled jobs and detached side effects."""
        if self.scheduler is not None:
            await self.scheduler.drain()
        await self.notifier.drain()

    # === Processing body ===

    async def _set_status(self, user_id: str, thought_id: str, status: ProcessingStatus, error=None):
        await asyncio.to_thread(
            self.thoughts.apply_patch, user_id, thought_id, ThoughtPatch.status(status, error)
        )

    async def _log_interaction(
        self,
        user_id: str,
        job: ProcessingJob,
        result: Optional[ProviderResult],
        actions: List[Dict[str, Any]],
        usage: Optional[TokenUsage] = None,
        error: Optional[str] = None,
    ) -> None:
        if self.interaction_logger is None:
            return
        interaction_logger = self.interaction_logger
        await self.notifier.call(
            "interaction-log",
            lambda: interaction_logger.log(
                user_id=user_id,
                thought_id=job.thought_id,
                trigger=job.trigger,
                prompt=result.raw_prompt if result else "",
                raw_response=result.raw_response if result else "",
                actions=actions,
                tool_spec_ids=list(job.tool_spec_ids),
                usage=usage,
                error=error,
            ),
        )

    async def _propose(self, user_id: str, job: ProcessingJob, thought: Thought) -> ProviderResult:
        context = await self.context_gatherer.gather_context(user_id)
        guidance = self.tool_registry.render_guidance(job.tool_spec_ids)
        timeout = self.config.provider_timeout_seconds
        try:
            return await asyncio.wait_for(
                self.provider.propose(thought.text, context, guidance), timeout=timeout
            )
        except asyncio.TimeoutError as exc:
            error = InternalError(f"AI provider timed out after {timeout:g}s")
            await self._log_interaction(user_id, job, None, [], error=str(error))
            raise error from exc
        except Exception as exc:
            await self._log_interaction(user_id, job, None, [], error=str(exc))
            raise

    async def process_thought(self, user_id: str, job: ProcessingJob) -> None:
        """Run one processing pass for a job's thought.

        Any failure after the thought is marked processing writes a failed
        status (and history entry) before re-raising.
        """
        thought_id = job.thought_id
        thought = await asyncio.to_thread(self.thoughts.get, user_id, thought_id)
        if thought is None:
            raise NotFoundError(f"Thought {thought_id} not found")

        other = await asyncio.to_thread(self.jobs.find_other_processing, user_id, thought_id, job.id)
        if other is not None:
            raise FailedPreconditionError(
                f"Thought {thought_id} is already being processed by job {other.id}"
            )

        access = await asyncio.to_thread(self.access_gate.check, user_id)
        if not access.allowed:
            await self._set_status(user_id, thought_id, ProcessingStatus.BLOCKED, access.message)
            raise PermissionDeniedError(access.message)

        await self._set_status(user_id, thought_id, ProcessingStatus.PROCESSING)

        try:
            result = await self._propose(user_id, job, thought)
            await self._log_interaction(user_id, job, result, result.actions, usage=result.usage)

            arbitration = arbitrate_actions(
                result.actions,
                thought,
                auto_apply_threshold=self.config.auto_apply_threshold,
                suggest_threshold=self.config.suggest_threshold,
                now=self._now(),
            )
            if arbitration.links_to_create:
                await asyncio.to_thread(
                    self.links.upsert_links, user_id, thought_id, arbitration.links_to_create
                )

            now = self._now()
            updated = await asyncio.to_thread(
                self.thoughts.update,
                user_id,
                thought_id,
                lambda current: build_thought_update(
                    arbitration, current, result.usage, job.trigger, now=now
                ),
            )
            entry = updated.processing_history[-1]
            logger.info(
                "Processed thought %s: %s changes, %s suggestions",
                thought_id,
                entry.changes_applied,
                entry.suggestions_count,
            )
        except Exception as exc:
            message = str(exc) or exc.__class__.__name__
            logger.error("Processing failed for thought %s: %s", thought_id, message)
            try:
                await asyncio.to_thread(
                    self.thoughts.apply_patch,
                    user_id,
                    thought_id,
                    build_failure_update(job.trigger, message, now=self._now()),
                )
            except Exception as write_exc:
                logger.exception("Could not record failure on thought %s: %s", thought_id, write_exc)
            raise

    # === Revert and suggestions ===

    async def revert(self, user_id: str, thought_id: str) -> Thought:
        """Restore the pre-AI text and tags.

        Raises:
            NotFoundError: The thought does not exist.
            FailedPreconditionError: There are no AI changes to revert.
        """
        self._validate(user_id, thought_id)
        now = self._now()
        thought = await asyncio.to_thread(
            self.thoughts.update,
            user_id,
            thought_id,
            lambda current: build_revert_update(current, now=now),
        )
        reverted = thought.processing_history[-1].reverted_changes
        await asyncio.to_thread(
            log_revert, user_id, thought_id, count_changes(reverted) if reverted else 0
        )
        logger.info("Reverted AI changes on thought %s", thought_id)
        return thought

    async def _resolve_suggestion(
        self, user_id: str, thought_id: str, suggestion_id: str, accept: bool
    ) -> Thought:
        self._validate(user_id, thought_id)
        if not suggestion_id:
            raise InvalidArgumentError("suggestionId is required")

        now = self._now()
        links = []

        def build(current: Thought) -> ThoughtPatch:
            patch, staged_links = build_suggestion_update(current, suggestion_id, accept, now=now)
            links[:] = staged_links
            return patch

        thought = await asyncio.to_thread(self.thoughts.update, user_id, thought_id, build)
        if links:
            await asyncio.to_thread(self.links.upsert_links, user_id, thought_id, links)
        logger.info(
            "Suggestion %s on thought %s %s",
            suggestion_id,
            thought_id,
            "accepted" if accept else "rejected",
        )
        return thought

    async def accept_suggestion(self, user_id: str, thought_id: str, suggestion_id: str) -> Thought:
        return await self._resolve_suggestion(user_id, thought_id, suggestion_id, accept=True)

    async def reject_suggestion(self, user_id: str, thought_id: str, suggestion_id: str) -> Thought:
        return await self._resolve_suggestion(user_id, thought_id, suggestion_id, accept=False)

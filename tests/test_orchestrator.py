"""End-to-end tests for ThoughtOrchestrator triggers and processing."""

import asyncio

import pytest

from mindnote.config import ProcessingConfig
from mindnote.jobs.models import EnqueueStatus, JobStatus
from mindnote.orchestrator import ThoughtOrchestrator
from mindnote.protocols import (
    FailedPreconditionError,
    InvalidArgumentError,
    NotFoundError,
    PermissionDeniedError,
    RateLimitedError,
    ResourceExhaustedError,
    UnauthenticatedError,
)
from mindnote.types import HistoryStatus, ProcessingStatus, Trigger

ENHANCE = {
    "type": "enhanceThought",
    "confidence": 0.99,
    "data": {"improvedText": "Had coffee with Sarah"},
}


class TestEnqueueOrProcess:
    @pytest.mark.asyncio
    async def test_manual_trigger_processes_inline(self, orchestrator, provider, pro_user, make_thought):
        provider.actions = [ENHANCE]
        thought = make_thought()

        result = await orchestrator.enqueue_or_process(pro_user, thought.id, run_inline=True)

        assert result.status == EnqueueStatus.QUEUED
        stored = orchestrator.thoughts.get(pro_user, thought.id)
        assert stored.text == "Had coffee with Sarah"
        assert "processed" in stored.tags
        assert stored.ai_applied_changes.text_enhanced is True
        assert stored.original_text == "had coffee w/ sar"
        assert orchestrator.jobs.get(pro_user, result.job_id).status == JobStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_guidance_and_text_reach_provider(self, orchestrator, provider, pro_user, make_thought):
        thought = make_thought()
        await orchestrator.enqueue_or_process(pro_user, thought.id, run_inline=True)
        call = provider.calls[0]
        assert call["thought_text"] == "had coffee w/ sar"
        assert "Tool: Thought Processing (thoughts)" in call["tool_guidance"]
        assert set(call["context"]) == {"goals", "projects", "people", "tasks", "moods"}

    @pytest.mark.asyncio
    async def test_without_scheduler_job_stays_queued(self, orchestrator, provider, pro_user, make_thought):
        thought = make_thought()
        result = await orchestrator.enqueue_or_process(pro_user, thought.id)
        assert orchestrator.jobs.get(pro_user, result.job_id).status == JobStatus.QUEUED
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_scheduler_runs_job(self, store, provider, config, clock, pro_user, make_thought):
        orchestrator = ThoughtOrchestrator(store, provider, config=config, now=clock)
        thought = make_thought()

        result = await orchestrator.enqueue_or_process(pro_user, thought.id)
        await orchestrator.drain()

        assert orchestrator.jobs.get(pro_user, result.job_id).status == JobStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_second_request_within_interval_is_rate_limited(self, orchestrator, pro_user, make_thought):
        first = make_thought()
        second = make_thought()
        await orchestrator.enqueue_or_process(pro_user, first.id)
        with pytest.raises(RateLimitedError, match="Please wait a few seconds"):
            await orchestrator.enqueue_or_process(pro_user, second.id)

    @pytest.mark.asyncio
    async def test_daily_cap_blocks_explicit_trigger(self, orchestrator, pro_user, make_thought, config):
        for _ in range(config.max_processing_per_day):
            orchestrator.rate_limiter.increment_daily(pro_user)
        thought = make_thought()
        with pytest.raises(RateLimitedError, match=r"Daily processing limit reached \(5\)\.") as exc_info:
            await orchestrator.enqueue_or_process(pro_user, thought.id)
        assert exc_info.value.retry_after_seconds > 0

    @pytest.mark.asyncio
    async def test_requires_user(self, orchestrator):
        with pytest.raises(UnauthenticatedError):
            await orchestrator.enqueue_or_process("", "t1")

    @pytest.mark.asyncio
    async def test_requires_thought_id(self, orchestrator, pro_user):
        with pytest.raises(InvalidArgumentError):
            await orchestrator.enqueue_or_process(pro_user, "")

    @pytest.mark.asyncio
    async def test_revert_is_not_a_trigger(self, orchestrator, pro_user):
        with pytest.raises(InvalidArgumentError):
            await orchestrator.enqueue_or_process(pro_user, "t1", trigger=Trigger.REVERT)

    @pytest.mark.asyncio
    async def test_unentitled_user(self, orchestrator, make_thought):
        thought = make_thought()
        with pytest.raises(PermissionDeniedError):
            await orchestrator.enqueue_or_process("user-1", thought.id)

    @pytest.mark.asyncio
    async def test_processed_thought_rejected(self, orchestrator, provider, pro_user, make_thought, clock):
        provider.actions = [ENHANCE]
        thought = make_thought()
        await orchestrator.enqueue_or_process(pro_user, thought.id, run_inline=True)
        clock.advance(30)
        with pytest.raises(FailedPreconditionError, match="Thought already processed"):
            await orchestrator.enqueue_or_process(pro_user, thought.id)

    @pytest.mark.asyncio
    async def test_missing_thought(self, orchestrator, pro_user):
        with pytest.raises(NotFoundError):
            await orchestrator.enqueue_or_process(pro_user, "missing")


class TestAutoTrigger:
    @pytest.mark.asyncio
    async def test_new_thought_is_processed(self, orchestrator, provider, pro_user, make_thought):
        provider.actions = [{"type": "addTag", "confidence": 0.9, "data": {"tag": "social"}}]
        thought = make_thought()

        result = await orchestrator.on_thought_created(pro_user, thought.id, run_inline=True)

        assert result.status == EnqueueStatus.QUEUED
        stored = orchestrator.thoughts.get(pro_user, thought.id)
        assert stored.tags == ["social", "processed"]
        assert stored.processing_history[-1].trigger == Trigger.AUTO
        assert stored.ai_applied_changes.applied_by.value == "auto"

    @pytest.mark.asyncio
    async def test_thought_with_status_is_skipped(self, orchestrator, provider, pro_user, make_thought):
        thought = make_thought(ai_processing_status=ProcessingStatus.FAILED)
        assert await orchestrator.on_thought_created(pro_user, thought.id) is None
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_processed_thought_is_skipped(self, orchestrator, pro_user, make_thought):
        thought = make_thought(tags=["processed"])
        assert await orchestrator.on_thought_created(pro_user, thought.id) is None

    @pytest.mark.asyncio
    async def test_unentitled_user_is_silent_noop(self, orchestrator, make_thought):
        thought = make_thought()
        assert await orchestrator.on_thought_created("user-1", thought.id) is None
        assert orchestrator.thoughts.get("user-1", thought.id).ai_processing_status is None

    @pytest.mark.asyncio
    async def test_daily_cap_is_silent_noop(self, orchestrator, pro_user, make_thought, config):
        for _ in range(config.max_processing_per_day):
            orchestrator.rate_limiter.increment_daily(pro_user)
        thought = make_thought()
        assert await orchestrator.on_thought_created(pro_user, thought.id) is None

    @pytest.mark.asyncio
    async def test_interval_does_not_apply(self, orchestrator, pro_user, make_thought):
        first = make_thought()
        second = make_thought()
        await orchestrator.enqueue_or_process(pro_user, first.id)
        result = await orchestrator.on_thought_created(pro_user, second.id)
        assert result.status == EnqueueStatus.QUEUED

    @pytest.mark.asyncio
    async def test_no_enrollments_is_silent_noop(self, orchestrator, store, make_thought):
        store.set("users/user-1/subscription/status", {"tier": "pro", "status": "active"})
        thought = make_thought()
        assert await orchestrator.on_thought_created("user-1", thought.id) is None


class TestProcessingBody:
    @pytest.mark.asyncio
    async def test_suggestions_and_discards(self, orchestrator, provider, pro_user, make_thought):
        provider.actions = [
            {"type": "linkToPerson", "confidence": 0.95, "data": {"personId": "sarah"}},
            {"type": "addTag", "confidence": 0.2, "data": {"tag": "noise"}},
        ]
        thought = make_thought()
        await orchestrator.enqueue_or_process(pro_user, thought.id, run_inline=True)

        stored = orchestrator.thoughts.get(pro_user, thought.id)
        assert [s.type for s in stored.ai_suggestions] == ["linkToPerson"]
        assert "noise" not in stored.tags
        assert "processed" not in stored.tags
        assert orchestrator.links.list_for_thought(pro_user, thought.id) == []
        assert stored.processing_history[-1].suggestions_count == 1

    @pytest.mark.asyncio
    async def test_links_written(self, orchestrator, provider, pro_user, make_thought):
        provider.actions = [{"type": "linkToGoal", "confidence": 0.9, "data": {"goalId": "g1"}}]
        thought = make_thought()
        await orchestrator.enqueue_or_process(pro_user, thought.id, run_inline=True)

        links = orchestrator.links.list_for_thought(pro_user, thought.id)
        assert len(links) == 1
        assert links[0]["targetType"] == "goal"
        assert links[0]["targetId"] == "g1"
        assert links[0]["strength"] == 90
        assert links[0]["createdBy"] == "ai"

    @pytest.mark.asyncio
    async def test_interaction_logged(self, orchestrator, provider, pro_user, make_thought, interaction_logger):
        provider.actions = [ENHANCE]
        thought = make_thought()
        await orchestrator.enqueue_or_process(pro_user, thought.id, run_inline=True)

        entry = interaction_logger.entries[0]
        assert entry["thought_id"] == thought.id
        assert entry["trigger"] == Trigger.MANUAL
        assert entry["tool_spec_ids"] == ["thoughts"]
        assert entry["usage"].total_tokens == 150
        assert entry["error"] is None

    @pytest.mark.asyncio
    async def test_interaction_log_failure_is_swallowed(
        self, orchestrator, provider, pro_user, make_thought, interaction_logger
    ):
        interaction_logger.fail = True
        provider.actions = [ENHANCE]
        thought = make_thought()
        result = await orchestrator.enqueue_or_process(pro_user, thought.id, run_inline=True)

        assert orchestrator.jobs.get(pro_user, result.job_id).status == JobStatus.COMPLETED
        assert orchestrator.notifier.recent_errors[-1][0] == "interaction-log"

    @pytest.mark.asyncio
    async def test_provider_error_logged_and_recorded(
        self, orchestrator, provider, pro_user, make_thought, interaction_logger
    ):
        provider.error = RuntimeError("upstream 503")
        thought = make_thought()
        await orchestrator.enqueue_or_process(pro_user, thought.id, run_inline=True)

        stored = orchestrator.thoughts.get(pro_user, thought.id)
        assert stored.ai_processing_status == ProcessingStatus.FAILED
        assert stored.processing_history[-1].status == HistoryStatus.FAILED
        assert interaction_logger.entries[0]["error"] == "upstream 503"

    @pytest.mark.asyncio
    async def test_provider_timeout(self, store, provider, clock, pro_user, make_thought):
        config = ProcessingConfig(provider_timeout_seconds=0.05)
        orchestrator = ThoughtOrchestrator(store, provider, config=config, now=clock, schedule_jobs=False)
        provider.delay = 1.0
        thought = make_thought()

        result = await orchestrator.enqueue_or_process(pro_user, thought.id, run_inline=True)

        job = orchestrator.jobs.get(pro_user, result.job_id)
        assert job.status == JobStatus.FAILED
        assert "timed out" in job.error
        stored = orchestrator.thoughts.get(pro_user, thought.id)
        assert stored.ai_processing_status == ProcessingStatus.FAILED

    @pytest.mark.asyncio
    async def test_never_left_processing(self, orchestrator, provider, pro_user, make_thought):
        provider.error = ValueError("")
        thought = make_thought()
        await orchestrator.enqueue_or_process(pro_user, thought.id, run_inline=True)
        stored = orchestrator.thoughts.get(pro_user, thought.id)
        assert stored.ai_processing_status == ProcessingStatus.FAILED
        assert stored.ai_error == "ValueError"

    @pytest.mark.asyncio
    async def test_duplicate_processing_job_does_not_touch_thought(
        self, orchestrator, provider, pro_user, make_thought
    ):
        """A second job that slipped past the enqueue check stops before writing."""
        thought = make_thought()
        first = await asyncio.to_thread(orchestrator.queue.enqueue, pro_user, thought.id, Trigger.AUTO)
        orchestrator.jobs.transition(pro_user, first.job_id, JobStatus.PROCESSING)
        duplicate = orchestrator.jobs.get(pro_user, first.job_id)
        duplicate.id = "job_duplicate"
        duplicate.status = JobStatus.QUEUED
        orchestrator.jobs.create(pro_user, duplicate)

        job = await orchestrator.run_job(pro_user, "job_duplicate")

        assert job.status == JobStatus.FAILED
        assert "already being processed" in job.error
        assert provider.calls == []
        stored = orchestrator.thoughts.get(pro_user, thought.id)
        assert stored.ai_processing_status == ProcessingStatus.PENDING
        assert stored.processing_history == []


class TestReprocess:
    @pytest.mark.asyncio
    async def test_reprocess_keeps_baseline(self, orchestrator, provider, pro_user, make_thought, clock):
        provider.actions = [ENHANCE]
        thought = make_thought(tags=["work"])
        await orchestrator.enqueue_or_process(pro_user, thought.id, run_inline=True)

        clock.advance(30)
        provider.actions = [
            {"type": "enhanceThought", "confidence": 0.9, "data": {"improvedText": "Coffee with Sarah."}}
        ]
        await orchestrator.reprocess(pro_user, thought.id, run_inline=True)

        stored = orchestrator.thoughts.get(pro_user, thought.id)
        assert stored.text == "Coffee with Sarah."
        assert stored.original_text == "had coffee w/ sar"
        assert stored.original_tags == ["work"]
        assert stored.reprocess_count == 1
        assert stored.processing_history[-1].trigger == Trigger.REPROCESS

    @pytest.mark.asyncio
    async def test_reprocess_cap(self, orchestrator, pro_user, make_thought, config):
        thought = make_thought(tags=["processed"], reprocess_count=config.max_reprocess_count)
        with pytest.raises(ResourceExhaustedError, match=r"Maximum reprocess limit reached \(2\)"):
            await orchestrator.reprocess(pro_user, thought.id)

    @pytest.mark.asyncio
    async def test_reprocess_trigger_is_capped_on_direct_enqueue(
        self, orchestrator, provider, pro_user, make_thought, config, clock
    ):
        provider.actions = [{"type": "addTag", "confidence": 0.9, "data": {"tag": "social"}}]
        thought = make_thought()
        await orchestrator.enqueue_or_process(pro_user, thought.id, run_inline=True)

        for _ in range(config.max_reprocess_count):
            clock.advance(20)
            await orchestrator.enqueue_or_process(
                pro_user, thought.id, Trigger.REPROCESS, allow_reprocess=True, run_inline=True
            )

        clock.advance(20)
        with pytest.raises(ResourceExhaustedError, match=r"Maximum reprocess limit reached \(2\)"):
            await orchestrator.enqueue_or_process(
                pro_user, thought.id, Trigger.REPROCESS, allow_reprocess=True, run_inline=True
            )
        stored = orchestrator.thoughts.get(pro_user, thought.id)
        assert stored.reprocess_count == config.max_reprocess_count
        assert orchestrator.jobs.find_live(pro_user, thought.id) is None

    @pytest.mark.asyncio
    async def test_reprocess_missing_thought(self, orchestrator, pro_user):
        with pytest.raises(NotFoundError):
            await orchestrator.reprocess(pro_user, "missing")

    @pytest.mark.asyncio
    async def test_revert_first(self, orchestrator, provider, pro_user, make_thought, clock):
        provider.actions = [{"type": "addTag", "confidence": 0.9, "data": {"tag": "social"}}]
        thought = make_thought()
        await orchestrator.enqueue_or_process(pro_user, thought.id, run_inline=True)

        clock.advance(30)
        provider.actions = []
        await orchestrator.reprocess(pro_user, thought.id, revert_first=True, run_inline=True)

        stored = orchestrator.thoughts.get(pro_user, thought.id)
        assert stored.tags == []
        triggers = [h.trigger for h in stored.processing_history]
        assert triggers == [Trigger.MANUAL, Trigger.REVERT, Trigger.REPROCESS]

    @pytest.mark.asyncio
    async def test_revert_first_with_live_job(self, orchestrator, provider, pro_user, make_thought, clock):
        provider.actions = [{"type": "addTag", "confidence": 0.9, "data": {"tag": "social"}}]
        thought = make_thought()
        await orchestrator.enqueue_or_process(pro_user, thought.id, run_inline=True)
        clock.advance(30)
        pending = await orchestrator.reprocess(pro_user, thought.id)

        clock.advance(30)
        result = await orchestrator.reprocess(pro_user, thought.id, revert_first=True)

        assert result.status == EnqueueStatus.ALREADY_QUEUED
        assert result.job_id == pending.job_id
        assert "social" in orchestrator.thoughts.get(pro_user, thought.id).tags


class TestGetJob:
    @pytest.mark.asyncio
    async def test_missing_job(self, orchestrator, pro_user):
        with pytest.raises(NotFoundError):
            await orchestrator.get_job(pro_user, "job_missing")

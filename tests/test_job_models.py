"""Tests for the processing job model and state machine."""

from datetime import datetime, timezone

import pytest

from mindnote.jobs.models import (
    VALID_JOB_TRANSITIONS,
    EnqueueResult,
    EnqueueStatus,
    JobStatus,
    ProcessingJob,
)
from mindnote.protocols import InvalidJobTransitionError, NotFoundError
from mindnote.storage.repositories import JobRepository
from mindnote.types import Trigger

REQUESTED = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


def _job(status=JobStatus.QUEUED, thought_id="t1", job_id="job_1"):
    return ProcessingJob(
        id=job_id,
        thought_id=thought_id,
        trigger=Trigger.MANUAL,
        requested_by="user-1",
        status=status,
        requested_at=REQUESTED,
        tool_spec_ids=["thoughts", "cbt"],
    )


class TestStateMachine:
    def test_queued_moves(self):
        job = _job()
        assert job.can_transition_to(JobStatus.PROCESSING)
        assert job.can_transition_to(JobStatus.FAILED)
        assert job.can_transition_to(JobStatus.RATE_LIMITED)
        assert not job.can_transition_to(JobStatus.COMPLETED)

    def test_processing_moves(self):
        job = _job(JobStatus.PROCESSING)
        assert job.can_transition_to(JobStatus.COMPLETED)
        assert job.can_transition_to(JobStatus.FAILED)
        assert not job.can_transition_to(JobStatus.QUEUED)

    @pytest.mark.parametrize("status", [JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.RATE_LIMITED])
    def test_terminal_states(self, status):
        job = _job(status)
        assert job.is_terminal
        assert not job.is_live
        assert not any(job.can_transition_to(s) for s in JobStatus)

    def test_every_status_has_an_entry(self):
        assert set(VALID_JOB_TRANSITIONS) == set(JobStatus)

    def test_live_statuses(self):
        assert _job(JobStatus.QUEUED).is_live
        assert _job(JobStatus.PROCESSING).is_live


class TestSerialization:
    def test_to_dict_uses_camel_case(self):
        data = _job().to_dict()
        assert data["thoughtId"] == "t1"
        assert data["requestedBy"] == "user-1"
        assert data["toolSpecIds"] == ["cbt", "thoughts"]
        assert data["status"] == "queued"
        assert data["requestedAt"] == REQUESTED.isoformat()

    def test_from_dict_restores_fields(self):
        job = ProcessingJob.from_dict(_job(JobStatus.PROCESSING).to_dict())
        assert job.status == JobStatus.PROCESSING
        assert job.requested_at == REQUESTED
        assert job.trigger == Trigger.MANUAL

    def test_enqueue_result_dict(self):
        result = EnqueueResult("job_1", EnqueueStatus.ALREADY_QUEUED)
        assert result.to_dict() == {"jobId": "job_1", "status": "alreadyQueued"}


class TestJobRepository:
    def test_new_ids_are_unique(self):
        ids = {JobRepository.new_id() for _ in range(50)}
        assert len(ids) == 50
        assert all(i.startswith("job_") for i in ids)

    def test_create_and_get(self, store):
        repo = JobRepository(store)
        repo.create("user-1", _job())
        assert repo.get("user-1", "job_1").thought_id == "t1"
        assert repo.get("user-2", "job_1") is None

    def test_find_live(self, store):
        repo = JobRepository(store)
        repo.create("user-1", _job(JobStatus.COMPLETED, job_id="job_old"))
        assert repo.find_live("user-1", "t1") is None
        repo.create("user-1", _job(JobStatus.QUEUED, job_id="job_new"))
        assert repo.find_live("user-1", "t1").id == "job_new"
        assert repo.find_live("user-1", "t2") is None

    def test_transition_to_processing_stamps_and_counts(self, store):
        repo = JobRepository(store)
        repo.create("user-1", _job())
        job = repo.transition("user-1", "job_1", JobStatus.PROCESSING)
        assert job.status == JobStatus.PROCESSING
        assert job.attempts == 1
        assert job.started_at is not None
        assert job.completed_at is None

    def test_transition_to_terminal_stamps_completion(self, store):
        repo = JobRepository(store)
        repo.create("user-1", _job())
        job = repo.transition("user-1", "job_1", JobStatus.FAILED, "boom")
        assert job.completed_at is not None
        assert job.error == "boom"

    def test_invalid_transition_does_not_write(self, store):
        repo = JobRepository(store)
        repo.create("user-1", _job(JobStatus.COMPLETED))
        with pytest.raises(InvalidJobTransitionError):
            repo.transition("user-1", "job_1", JobStatus.PROCESSING)
        assert repo.get("user-1", "job_1").status == JobStatus.COMPLETED

    def test_transition_missing_job(self, store):
        with pytest.raises(NotFoundError):
            JobRepository(store).transition("user-1", "nope", JobStatus.PROCESSING)

    def test_find_other_processing_excludes_self(self, store):
        repo = JobRepository(store)
        repo.create("user-1", _job(JobStatus.PROCESSING, job_id="job_a"))
        assert repo.find_other_processing("user-1", "t1", "job_a") is None
        repo.create("user-1", _job(JobStatus.PROCESSING, job_id="job_b"))
        assert repo.find_other_processing("user-1", "t1", "job_a").id == "job_b"

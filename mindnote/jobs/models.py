"""Processing job model and state machine."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from mindnote.types import Trigger, format_datetime, parse_datetime, utc_now


class JobStatus(str, Enum):
    """Lifecycle of a processing job."""

    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    RATE_LIMITED = "rate_limited"


LIVE_JOB_STATUSES = frozenset({JobStatus.QUEUED, JobStatus.PROCESSING})

# Transitions only move forward. A job never returns to an earlier state.
VALID_JOB_TRANSITIONS: Dict[JobStatus, frozenset] = {
    JobStatus.QUEUED: frozenset(
        {JobStatus.PROCESSING, JobStatus.FAILED, JobStatus.RATE_LIMITED}
    ),
    JobStatus.PROCESSING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
    JobStatus.RATE_LIMITED: frozenset(),
}


class EnqueueStatus(str, Enum):
    QUEUED = "queued"
    ALREADY_QUEUED = "alreadyQueued"


@dataclass(frozen=True)
class EnqueueResult:
    job_id: str
    status: EnqueueStatus

    def to_dict(self) -> Dict[str, str]:
        return {"jobId": self.job_id, "status": self.status.value}


@dataclass
class ProcessingJob:
    """A durable unit of queued processing work for one thought."""

    id: str
    thought_id: str
    trigger: Trigger
    requested_by: str
    status: JobStatus = JobStatus.QUEUED
    requested_at: datetime = field(default_factory=utc_now)
    tool_spec_ids: List[str] = field(default_factory=list)
    attempts: int = 0
    error: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def is_live(self) -> bool:
        return self.status in LIVE_JOB_STATUSES

    @property
    def is_terminal(self) -> bool:
        return not VALID_JOB_TRANSITIONS[self.status]

    def can_transition_to(self, new_status: JobStatus) -> bool:
        return new_status in VALID_JOB_TRANSITIONS[self.status]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "thoughtId": self.thought_id,
            "trigger": self.trigger.value,
            "status": self.status.value,
            "requestedAt": format_datetime(self.requested_at),
            "requestedBy": self.requested_by,
            "toolSpecIds": sorted(self.tool_spec_ids),
            "attempts": self.attempts,
            "error": self.error,
            "startedAt": format_datetime(self.started_at),
            "completedAt": format_datetime(self.completed_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProcessingJob":
        return cls(
            id=data["id"],
            thought_id=data.get("thoughtId") or "",
            trigger=Trigger(data.get("trigger", Trigger.MANUAL.value)),
            requested_by=data.get("requestedBy") or "",
            status=JobStatus(data.get("status", JobStatus.QUEUED.value)),
            requested_at=parse_datetime(data.get("requestedAt")) or utc_now(),
            tool_spec_ids=list(data.get("toolSpecIds") or []),
            attempts=int(data.get("attempts") or 0),
            error=data.get("error"),
            started_at=parse_datetime(data.get("startedAt")),
            completed_at=parse_datetime(data.get("completedAt")),
        )

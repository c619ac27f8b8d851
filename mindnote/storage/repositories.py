"""Typed access to the documents the orchestrator reads and writes.

Document layout (per user unless noted)::

    users/<uid>/thoughts/<thoughtId>
    users/<uid>/processingQueue/<jobId>
    users/<uid>/dailyProcessingCount/<YYYY-MM-DD>
    users/<uid>/processingUsage/meta
    users/<uid>/subscription/status
    users/<uid>/toolEnrollments/<toolId>
    users/<uid>/entityLinks/<linkId>
    accounts/<uid>
    anonymousSessions/<uid>
"""

import logging
import uuid
from typing import Callable, List, Optional, Set

from mindnote.jobs.models import LIVE_JOB_STATUSES, JobStatus, ProcessingJob
from mindnote.protocols import InvalidJobTransitionError, NotFoundError
from mindnote.storage.base import DocumentStore
from mindnote.types import (
    AnonymousSession,
    LinkRequest,
    SubscriptionSnapshot,
    Thought,
    format_datetime,
    utc_now,
)

logger = logging.getLogger(__name__)

INACTIVE_ENROLLMENT = "inactive"


def thoughts_collection(user_id: str) -> str:
    return f"users/{user_id}/thoughts"


def jobs_collection(user_id: str) -> str:
    return f"users/{user_id}/processingQueue"


def links_collection(user_id: str) -> str:
    return f"users/{user_id}/entityLinks"


def enrollments_collection(user_id: str) -> str:
    return f"users/{user_id}/toolEnrollments"


def daily_count_path(user_id: str, day: str) -> str:
    return f"users/{user_id}/dailyProcessingCount/{day}"


def usage_meta_path(user_id: str) -> str:
    return f"users/{user_id}/processingUsage/meta"


class ThoughtRepository:
    def __init__(self, store: DocumentStore):
        self.store = store

    def _path(self, user_id: str, thought_id: str) -> str:
        return f"{thoughts_collection(user_id)}/{thought_id}"

    def get(self, user_id: str, thought_id: str) -> Optional[Thought]:
        doc = self.store.get(self._path(user_id, thought_id))
        if doc is None:
            return None
        doc.setdefault("id", thought_id)
        return Thought.from_dict(doc)

    def save(self, user_id: str, thought: Thought) -> None:
        self.store.set(self._path(user_id, thought.id), thought.to_dict())

    def update(self, user_id: str, thought_id: str, build: Callable) -> Thought:
        """Apply ``build(current) -> ThoughtPatch`` in one transaction.

        Raises NotFoundError if the thought does not exist. Exceptions from
        ``build`` abort the write.
        """

        def mutate(doc):
            if doc is None:
                raise NotFoundError(f"Thought {thought_id} not found")
            doc.setdefault("id", thought_id)
            current = Thought.from_dict(doc)
            patch = build(current)
            return patch.apply_to(current).to_dict()

        return Thought.from_dict(self.store.transact(self._path(user_id, thought_id), mutate))

    def apply_patch(self, user_id: str, thought_id: str, patch) -> Thought:
        return self.update(user_id, thought_id, lambda _current: patch)


class JobRepository:
    def __init__(self, store: DocumentStore):
        self.store = store

    def _path(self, user_id: str, job_id: str) -> str:
        return f"{jobs_collection(user_id)}/{job_id}"

    @staticmethod
    def new_id() -> str:
        return f"job_{uuid.uuid4().hex[:16]}"

    def create(self, user_id: str, job: ProcessingJob) -> str:
        self.store.set(self._path(user_id, job.id), job.to_dict())
        return job.id

    def get(self, user_id: str, job_id: str) -> Optional[ProcessingJob]:
        doc = self.store.get(self._path(user_id, job_id))
        if doc is None:
            return None
        doc.setdefault("id", job_id)
        return ProcessingJob.from_dict(doc)

    def find_live(self, user_id: str, thought_id: str) -> Optional[ProcessingJob]:
        """Return a queued or processing job for this thought, if any."""
        rows = self.store.query(
            jobs_collection(user_id),
            where=[
                ("thoughtId", "==", thought_id),
                ("status", "in", [s.value for s in LIVE_JOB_STATUSES]),
            ],
            limit=1,
        )
        if not rows:
            return None
        doc_id, doc = rows[0]
        doc.setdefault("id", doc_id)
        return ProcessingJob.from_dict(doc)

    def find_other_processing(
        self, user_id: str, thought_id: str, exclude_job_id: str
    ) -> Optional[ProcessingJob]:
        rows = self.store.query(
            jobs_collection(user_id),
            where=[("thoughtId", "==", thought_id), ("status", "==", JobStatus.PROCESSING.value)],
        )
        for doc_id, doc in rows:
            if doc_id != exclude_job_id:
                doc.setdefault("id", doc_id)
                return ProcessingJob.from_dict(doc)
        return None

    def transition(
        self,
        user_id: str,
        job_id: str,
        new_status: JobStatus,
        error: Optional[str] = None,
    ) -> ProcessingJob:
        """Move a job forward, stamping timestamps and attempts.

        Raises:
            NotFoundError: The job does not exist.
            InvalidJobTransitionError: The move is not allowed from the current status.
        """

        def mutate(doc):
            if doc is None:
                raise NotFoundError(f"Job {job_id} not found")
            doc.setdefault("id", job_id)
            job = ProcessingJob.from_dict(doc)
            if not job.can_transition_to(new_status):
                raise InvalidJobTransitionError(
                    f"Cannot transition job {job_id} from {job.status.value} to {new_status.value}"
                )
            job.status = new_status
            now = utc_now()
            if new_status == JobStatus.PROCESSING:
                job.started_at = now
                job.attempts += 1
            elif job.is_terminal:
                job.completed_at = now
            if error is not None:
                job.error = error
            return job.to_dict()

        return ProcessingJob.from_dict(self.store.transact(self._path(user_id, job_id), mutate))


class LinkRepository:
    """Relationship documents created from arbitration link requests."""

    def __init__(self, store: DocumentStore):
        self.store = store

    @staticmethod
    def link_id(thought_id: str, link: LinkRequest) -> str:
        # Stable per (thought, target) so reprocessing rewrites instead of duplicating.
        return f"thought_{thought_id}__{link.target_type}_{link.target_id}"

    def upsert_links(self, user_id: str, thought_id: str, links: List[LinkRequest]) -> int:
        now = format_datetime(utc_now())
        for link in links:
            link_id = self.link_id(thought_id, link)
            self.store.set(
                f"{links_collection(user_id)}/{link_id}",
                {
                    "id": link_id,
                    "sourceType": "thought",
                    "sourceId": thought_id,
                    "targetType": link.target_type,
                    "targetId": link.target_id,
                    "relationshipType": link.relationship_type,
                    "strength": round(link.confidence * 100),
                    "createdBy": "ai",
                    "status": "active",
                    "updatedAt": now,
                },
            )
        return len(links)

    def list_for_thought(self, user_id: str, thought_id: str) -> List[dict]:
        return [
            doc
            for _, doc in self.store.query(
                links_collection(user_id),
                where=[("sourceType", "==", "thought"), ("sourceId", "==", thought_id)],
            )
        ]


class EnrollmentRepository:
    def __init__(self, store: DocumentStore):
        self.store = store

    def enrolled_tool_ids(self, user_id: str) -> Set[str]:
        """Tool ids the user is enrolled in; inactive enrollments do not count."""
        rows = self.store.query(
            enrollments_collection(user_id),
            where=[("status", "!=", INACTIVE_ENROLLMENT)],
        )
        return {doc.get("toolId") or doc_id for doc_id, doc in rows}

    def enroll(self, user_id: str, tool_id: str, status: str = "active") -> None:
        self.store.set(
            f"{enrollments_collection(user_id)}/{tool_id}",
            {"toolId": tool_id, "status": status, "enrolledAt": format_datetime(utc_now())},
        )


class AccountRepository:
    """Account kind, subscription snapshot and guest session records."""

    def __init__(self, store: DocumentStore):
        self.store = store

    def is_anonymous(self, user_id: str) -> bool:
        doc = self.store.get(f"accounts/{user_id}")
        return bool(doc and doc.get("isAnonymous"))

    def get_subscription(self, user_id: str) -> Optional[SubscriptionSnapshot]:
        doc = self.store.get(f"users/{user_id}/subscription/status")
        return SubscriptionSnapshot.from_dict(doc) if doc is not None else None

    def get_anonymous_session(self, user_id: str) -> Optional[AnonymousSession]:
        doc = self.store.get(f"anonymousSessions/{user_id}")
        return AnonymousSession.from_dict(user_id, doc) if doc is not None else None

    def update_anonymous_session(self, user_id: str, updates: dict) -> None:
        def mutate(doc):
            merged = dict(doc or {})
            merged.update(updates)
            return merged

        self.store.transact(f"anonymousSessions/{user_id}", mutate)

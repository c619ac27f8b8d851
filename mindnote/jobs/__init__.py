"""Processing job queue.

Models:
- ProcessingJob: one queued unit of work for a thought
- JobStatus: queued -> processing -> completed | failed | rate_limited
- EnqueueResult: job id plus whether it was newly queued

The queue (``mindnote.jobs.queue``) and worker (``mindnote.jobs.worker``)
are imported from their modules directly.
"""

from mindnote.jobs.models import (
    LIVE_JOB_STATUSES,
    VALID_JOB_TRANSITIONS,
    EnqueueResult,
    EnqueueStatus,
    JobStatus,
    ProcessingJob,
)

__all__ = [
    "LIVE_JOB_STATUSES",
    "VALID_JOB_TRANSITIONS",
    "EnqueueResult",
    "EnqueueStatus",
    "JobStatus",
    "ProcessingJob",
]

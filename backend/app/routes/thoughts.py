"""Thought processing routes.

Maps the mindnote error taxonomy onto HTTP statuses. Queued jobs run as
background tasks after the response is sent.
"""

import asyncio
import logging
import uuid

from fastapi import APIRouter, BackgroundTasks, HTTPException, Request, status

from mindnote.jobs.models import EnqueueResult, EnqueueStatus, ProcessingJob
from mindnote.protocols import (
    FailedPreconditionError,
    InvalidArgumentError,
    MindnoteError,
    NotFoundError,
    PermissionDeniedError,
    RateLimitedError,
    ResourceExhaustedError,
    UnauthenticatedError,
)
from mindnote.types import Thought, Trigger, utc_now

from ..auth import CurrentUser
from ..models import (
    EnqueueResponse,
    JobResponse,
    ProcessRequest,
    ReprocessRequest,
    ThoughtCreate,
    ThoughtCreatedResponse,
    ThoughtResponse,
)
from ..processing import Orchestrator
from ..rate_limit import limiter

logger = logging.getLogger("mindnote.api.thoughts")

router = APIRouter(prefix="/api/v1", tags=["thoughts"])

ERROR_STATUS = [
    (UnauthenticatedError, status.HTTP_401_UNAUTHORIZED),
    (InvalidArgumentError, status.HTTP_400_BAD_REQUEST),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (FailedPreconditionError, status.HTTP_412_PRECONDITION_FAILED),
    (ResourceExhaustedError, status.HTTP_429_TOO_MANY_REQUESTS),
    (PermissionDeniedError, status.HTTP_403_FORBIDDEN),
]


def to_http_exception(exc: MindnoteError) -> HTTPException:
    """Translate a mindnote error into an HTTPException."""
    code = status.HTTP_500_INTERNAL_SERVER_ERROR
    for error_type, http_status in ERROR_STATUS:
        if isinstance(exc, error_type):
            code = http_status
            break

    headers = None
    if isinstance(exc, RateLimitedError) and exc.retry_after_seconds is not None:
        headers = {"Retry-After": str(max(1, int(exc.retry_after_seconds + 0.999)))}

    if code >= 500:
        logger.error("Internal error: %s", exc)
        return HTTPException(status_code=code, detail="Internal processing error", headers=headers)
    return HTTPException(status_code=code, detail=str(exc), headers=headers)


def _schedule(
    background_tasks: BackgroundTasks,
    orchestrator,
    user_id: str,
    result: EnqueueResult,
) -> None:
    if result.status == EnqueueStatus.QUEUED:
        background_tasks.add_task(orchestrator.run_job, user_id, result.job_id)


def _job_response(job: ProcessingJob) -> JobResponse:
    return JobResponse(
        id=job.id,
        thought_id=job.thought_id,
        trigger=job.trigger.value,
        status=job.status.value,
        attempts=job.attempts,
        error=job.error,
        tool_spec_ids=list(job.tool_spec_ids),
        requested_at=job.requested_at,
        started_at=job.started_at,
        completed_at=job.completed_at,
    )


@router.post(
    "/thoughts",
    response_model=ThoughtCreatedResponse,
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit("60/minute")
async def create_thought(
    request: Request,
    body: ThoughtCreate,
    auth: CurrentUser,
    orchestrator: Orchestrator,
    background_tasks: BackgroundTasks,
):
    """Create a thought and fire automatic processing (silently skipped when not allowed)."""
    thought = Thought(
        id=f"th_{uuid.uuid4().hex[:16]}",
        text=body.text,
        tags=list(dict.fromkeys(t.strip() for t in body.tags if t.strip())),
        created_at=utc_now(),
    )
    await asyncio.to_thread(orchestrator.thoughts.save, auth.user_id, thought)
    result = await orchestrator.on_thought_created(auth.user_id, thought.id)
    if result is not None:
        _schedule(background_tasks, orchestrator, auth.user_id, result)
    return ThoughtCreatedResponse(
        thought_id=thought.id,
        job_id=result.job_id if result else None,
        queued=result is not None,
    )


@router.get("/thoughts/{thought_id}", response_model=ThoughtResponse)
async def get_thought(thought_id: str, auth: CurrentUser, orchestrator: Orchestrator):
    thought = await asyncio.to_thread(orchestrator.thoughts.get, auth.user_id, thought_id)
    if thought is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Thought not found")
    return ThoughtResponse(thought=thought.to_dict())


@router.post(
    "/thoughts/{thought_id}/process",
    response_model=EnqueueResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
@limiter.limit("30/minute")
async def process_thought(
    request: Request,
    thought_id: str,
    auth: CurrentUser,
    orchestrator: Orchestrator,
    background_tasks: BackgroundTasks,
    body: ProcessRequest | None = None,
):
    """Manually queue AI processing for a thought."""
    body = body or ProcessRequest()
    logger.info("POST /thoughts/%s/process | user=%s", thought_id, auth.user_id)
    try:
        result = await orchestrator.enqueue_or_process(
            auth.user_id, thought_id, Trigger.MANUAL, tool_spec_ids=body.tool_spec_ids
        )
    except MindnoteError as exc:
        raise to_http_exception(exc) from exc
    _schedule(background_tasks, orchestrator, auth.user_id, result)
    return EnqueueResponse(job_id=result.job_id, status=result.status.value)


@router.post(
    "/thoughts/{thought_id}/reprocess",
    response_model=EnqueueResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
@limiter.limit("30/minute")
async def reprocess_thought(
    request: Request,
    thought_id: str,
    auth: CurrentUser,
    orchestrator: Orchestrator,
    background_tasks: BackgroundTasks,
    body: ReprocessRequest | None = None,
):
    """Process an already-processed thought again."""
    body = body or ReprocessRequest()
    logger.info(
        "POST /thoughts/%s/reprocess | user=%s | revert_first=%s",
        thought_id,
        auth.user_id,
        body.revert_first,
    )
    try:
        result = await orchestrator.reprocess(
            auth.user_id,
            thought_id,
            tool_spec_ids=body.tool_spec_ids,
            revert_first=body.revert_first,
        )
    except MindnoteError as exc:
        raise to_http_exception(exc) from exc
    _schedule(background_tasks, orchestrator, auth.user_id, result)
    return EnqueueResponse(job_id=result.job_id, status=result.status.value)


@router.post("/thoughts/{thought_id}/revert", response_model=ThoughtResponse)
@limiter.limit("30/minute")
async def revert_thought(
    request: Request,
    thought_id: str,
    auth: CurrentUser,
    orchestrator: Orchestrator,
):
    """Undo AI changes on a thought."""
    try:
        thought = await orchestrator.revert(auth.user_id, thought_id)
    except MindnoteError as exc:
        raise to_http_exception(exc) from exc
    return ThoughtResponse(thought=thought.to_dict())


@router.post(
    "/thoughts/{thought_id}/suggestions/{suggestion_id}/accept",
    response_model=ThoughtResponse,
)
async def accept_suggestion(
    thought_id: str,
    suggestion_id: str,
    auth: CurrentUser,
    orchestrator: Orchestrator,
):
    try:
        thought = await orchestrator.accept_suggestion(auth.user_id, thought_id, suggestion_id)
    except MindnoteError as exc:
        raise to_http_exception(exc) from exc
    return ThoughtResponse(thought=thought.to_dict())


@router.post(
    "/thoughts/{thought_id}/suggestions/{suggestion_id}/reject",
    response_model=ThoughtResponse,
)
async def reject_suggestion(
    thought_id: str,
    suggestion_id: str,
    auth: CurrentUser,
    orchestrator: Orchestrator,
):
    try:
        thought = await orchestrator.reject_suggestion(auth.user_id, thought_id, suggestion_id)
    except MindnoteError as exc:
        raise to_http_exception(exc) from exc
    return ThoughtResponse(thought=thought.to_dict())


@router.get("/jobs/{job_id}", response_model=JobResponse)
async def get_job(job_id: str, auth: CurrentUser, orchestrator: Orchestrator):
    try:
        job = await orchestrator.get_job(auth.user_id, job_id)
    except MindnoteError as exc:
        raise to_http_exception(exc) from exc
    return _job_response(job)

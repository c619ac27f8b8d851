"""Pydantic models for API requests and responses."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# =============================================================================
# Requests
# =============================================================================

class ThoughtCreate(_CamelModel):
    """Request to create a thought (fires the automatic trigger)."""
    text: str = Field(..., min_length=1, max_length=20000)
    tags: list[str] = Field(default_factory=list, max_length=100)


class ProcessRequest(_CamelModel):
    """Manual processing request."""
    tool_spec_ids: list[str] | None = Field(None, alias="toolSpecIds", max_length=50)


class ReprocessRequest(ProcessRequest):
    """Reprocess request; optionally revert AI changes first."""
    revert_first: bool = Field(False, alias="revertFirst")


# =============================================================================
# Responses
# =============================================================================

class EnqueueResponse(_CamelModel):
    job_id: str = Field(..., alias="jobId")
    status: str  # queued | alreadyQueued


class ThoughtCreatedResponse(_CamelModel):
    thought_id: str = Field(..., alias="thoughtId")
    job_id: str | None = Field(None, alias="jobId")
    queued: bool = False


class ThoughtResponse(_CamelModel):
    thought: dict[str, Any]


class JobResponse(_CamelModel):
    id: str
    thought_id: str = Field(..., alias="thoughtId")
    trigger: str
    status: str
    attempts: int
    error: str | None = None
    tool_spec_ids: list[str] = Field(default_factory=list, alias="toolSpecIds")
    requested_at: datetime = Field(..., alias="requestedAt")
    started_at: datetime | None = Field(None, alias="startedAt")
    completed_at: datetime | None = Field(None, alias="completedAt")

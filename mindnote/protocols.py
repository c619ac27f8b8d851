"""
mindnote interface contracts
============================

Error taxonomy and the boundaries to external collaborators.

Error handling philosophy:
- Caller-facing operations (enqueue, reprocess, revert, suggestion
  resolution) raise a MindnoteError subclass; the HTTP layer maps each
  subclass to a status code.
- The job worker has no caller. It reports failures only by writing job
  and thought state.
- Interaction logging and usage tracking are side channels. Their failures
  are logged and never propagate.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol, Set, runtime_checkable

from mindnote.types import ProviderResult, Thought, TokenUsage, Trigger


class MindnoteError(Exception):
    """Base for all mindnote errors."""

    code = "internal"


class UnauthenticatedError(MindnoteError):
    """No authenticated user was supplied."""

    code = "unauthenticated"


class InvalidArgumentError(MindnoteError):
    code = "invalid-argument"


class NotFoundError(MindnoteError):
    code = "not-found"


class FailedPreconditionError(MindnoteError):
    """Already processed, no applicable tools, nothing to revert."""

    code = "failed-precondition"


class ResourceExhaustedError(MindnoteError):
    """Rate limits and the reprocess cap."""

    code = "resource-exhausted"


class RateLimitedError(ResourceExhaustedError):
    """Daily or interval processing limit hit.

    Callers must not retry automatically. ``retry_after_seconds`` is the
    earliest point a new explicit request could succeed, when known.
    """

    def __init__(self, message: str, retry_after_seconds: Optional[float] = None):
        super().__init__(message)
        self.retry_after_seconds = retry_after_seconds


class PermissionDeniedError(MindnoteError):
    """Entitlement or anonymous-session denial."""

    code = "permission-denied"


class InternalError(MindnoteError):
    """Provider or storage failure."""

    code = "internal"


class InvalidJobTransitionError(InternalError):
    """A job was asked to move to a state its current state cannot reach."""


# === External collaborators ===


@runtime_checkable
class ContextGatherer(Protocol):
    """Read-only snapshot of the user's goals, projects, people, tasks and moods."""

    async def gather_context(self, user_id: str) -> Dict[str, Any]: ...


@runtime_checkable
class AIProvider(Protocol):
    """Proposes actions for a thought.

    ``tool_guidance`` is the rendered guidance of the resolved tool specs.
    Raising any exception is treated as a processing failure.
    """

    async def propose(
        self,
        thought_text: str,
        context: Dict[str, Any],
        tool_guidance: str,
    ) -> ProviderResult: ...


class ToolSpecResolver(Protocol):
    def resolve_applicable_tool_ids(self, thought: Thought, enrolled_tool_ids: Set[str]) -> Set[str]: ...


class InteractionLogger(Protocol):
    """Records each provider exchange. Best-effort."""

    async def log(
        self,
        user_id: str,
        thought_id: str,
        trigger: Trigger,
        prompt: str,
        raw_response: str,
        actions: List[Dict[str, Any]],
        tool_spec_ids: List[str],
        usage: Optional[TokenUsage] = None,
        error: Optional[str] = None,
    ) -> Optional[str]: ...


class UsageTracker(Protocol):
    async def increment_usage(self, user_id: str) -> None: ...

"""Shared data types for mindnote.

Persisted documents use camelCase keys; the dataclasses use snake_case
attributes and convert with ``to_dict`` / ``from_dict``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from dateutil.parser import parse as _parse_date


def utc_now() -> datetime:
    """Get current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse an ISO string (or pass through a datetime) into an aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        dt = _parse_date(str(value))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def format_datetime(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class ProcessingStatus(str, Enum):
    """AI processing state of a thought."""

    NONE = "none"
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    BLOCKED = "blocked"


class Trigger(str, Enum):
    """What caused a processing pass (or history entry)."""

    AUTO = "auto"
    MANUAL = "manual"
    REPROCESS = "reprocess"
    REVERT = "revert"


class HistoryStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"


class SuggestionStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class AppliedBy(str, Enum):
    AUTO = "auto"
    MANUAL_TRIGGER = "manual-trigger"

    @classmethod
    def for_trigger(cls, trigger: Trigger) -> "AppliedBy":
        return cls.AUTO if trigger == Trigger.AUTO else cls.MANUAL_TRIGGER


class EntitlementCode(str, Enum):
    """Reason code attached to an entitlement decision."""

    ALLOWED = "allowed"
    NO_RECORD = "no-record"
    TIER_MISMATCH = "tier-mismatch"
    INACTIVE = "inactive"
    DISABLED = "disabled"
    EXHAUSTED = "exhausted"


PROCESSED_TAG = "processed"


# === Thought and its AI-derived parts ===


@dataclass
class TextChange:
    """One edit made by a text enhancement."""

    type: str
    from_text: str = ""
    to_text: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "from": self.from_text, "to": self.to_text}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TextChange":
        return cls(
            type=str(data.get("type") or "edit"),
            from_text=str(data.get("from") or ""),
            to_text=str(data.get("to") or ""),
        )


@dataclass
class AppliedChanges:
    """Summary of what AI processing changed on a thought."""

    text_enhanced: bool
    text_changes: List[TextChange]
    tags_added: List[str]
    links_created: int
    applied_at: datetime
    applied_by: AppliedBy

    def to_dict(self) -> Dict[str, Any]:
        return {
            "textEnhanced": self.text_enhanced,
            "textChanges": [c.to_dict() for c in self.text_changes],
            "tagsAdded": list(self.tags_added),
            "linksCreated": self.links_created,
            "appliedAt": format_datetime(self.applied_at),
            "appliedBy": self.applied_by.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AppliedChanges":
        return cls(
            text_enhanced=bool(data.get("textEnhanced", False)),
            text_changes=[TextChange.from_dict(c) for c in data.get("textChanges") or []],
            tags_added=list(data.get("tagsAdded") or []),
            links_created=int(data.get("linksCreated") or 0),
            applied_at=parse_datetime(data.get("appliedAt")) or utc_now(),
            applied_by=AppliedBy(data.get("appliedBy", AppliedBy.AUTO.value)),
        )


@dataclass
class Suggestion:
    """A mid-confidence AI action waiting for the user to accept or reject it."""

    id: str
    type: str
    confidence: float
    data: Dict[str, Any]
    reasoning: str
    created_at: datetime
    status: SuggestionStatus = SuggestionStatus.PENDING

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "confidence": self.confidence,
            "data": dict(self.data),
            "reasoning": self.reasoning,
            "createdAt": format_datetime(self.created_at),
            "status": self.status.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Suggestion":
        return cls(
            id=data["id"],
            type=data["type"],
            confidence=float(data.get("confidence", 0.0)),
            data=dict(data.get("data") or {}),
            reasoning=data.get("reasoning") or "",
            created_at=parse_datetime(data.get("createdAt")) or utc_now(),
            status=SuggestionStatus(data.get("status", SuggestionStatus.PENDING.value)),
        )


@dataclass
class HistoryEntry:
    """Immutable audit record appended to a thought's processing history."""

    processed_at: datetime
    trigger: Trigger
    status: HistoryStatus
    tokens_used: Optional[int] = None
    changes_applied: Optional[int] = None
    suggestions_count: Optional[int] = None
    reverted_changes: Optional[AppliedChanges] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "processedAt": format_datetime(self.processed_at),
            "trigger": self.trigger.value,
            "status": self.status.value,
        }
        if self.tokens_used is not None:
            result["tokensUsed"] = self.tokens_used
        if self.changes_applied is not None:
            result["changesApplied"] = self.changes_applied
        if self.suggestions_count is not None:
            result["suggestionsCount"] = self.suggestions_count
        if self.reverted_changes is not None:
            result["revertedChanges"] = self.reverted_changes.to_dict()
        if self.error is not None:
            result["error"] = self.error
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HistoryEntry":
        reverted = data.get("revertedChanges")
        return cls(
            processed_at=parse_datetime(data.get("processedAt")) or utc_now(),
            trigger=Trigger(data["trigger"]),
            status=HistoryStatus(data["status"]),
            tokens_used=data.get("tokensUsed"),
            changes_applied=data.get("changesApplied"),
            suggestions_count=data.get("suggestionsCount"),
            reverted_changes=AppliedChanges.from_dict(reverted) if reverted else None,
            error=data.get("error"),
        )


@dataclass
class Thought:
    """A user-authored note that may be AI-processed."""

    id: str
    text: str
    tags: List[str] = field(default_factory=list)
    ai_processing_status: Optional[ProcessingStatus] = None
    ai_error: Optional[str] = None
    original_text: Optional[str] = None
    original_tags: Optional[List[str]] = None
    ai_applied_changes: Optional[AppliedChanges] = None
    ai_suggestions: Optional[List[Suggestion]] = None
    processing_history: List[HistoryEntry] = field(default_factory=list)
    reprocess_count: int = 0
    created_at: Optional[datetime] = None

    def has_tag(self, tag: str) -> bool:
        return tag in self.tags

    @property
    def is_processed(self) -> bool:
        return PROCESSED_TAG in self.tags

    @property
    def has_status(self) -> bool:
        return self.ai_processing_status not in (None, ProcessingStatus.NONE)

    def find_suggestion(self, suggestion_id: str) -> Optional[Suggestion]:
        for suggestion in self.ai_suggestions or []:
            if suggestion.id == suggestion_id:
                return suggestion
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "text": self.text,
            "tags": list(self.tags),
            "aiProcessingStatus": (
                self.ai_processing_status.value if self.ai_processing_status else None
            ),
            "aiError": self.ai_error,
            "originalText": self.original_text,
            "originalTags": list(self.original_tags) if self.original_tags is not None else None,
            "aiAppliedChanges": (
                self.ai_applied_changes.to_dict() if self.ai_applied_changes else None
            ),
            "aiSuggestions": (
                [s.to_dict() for s in self.ai_suggestions]
                if self.ai_suggestions is not None
                else None
            ),
            "processingHistory": [h.to_dict() for h in self.processing_history],
            "reprocessCount": self.reprocess_count,
            "createdAt": format_datetime(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Thought":
        status = data.get("aiProcessingStatus")
        applied = data.get("aiAppliedChanges")
        suggestions = data.get("aiSuggestions")
        original_tags = data.get("originalTags")
        return cls(
            id=data["id"],
            text=data.get("text") or "",
            tags=list(data.get("tags") or []),
            ai_processing_status=ProcessingStatus(status) if status else None,
            ai_error=data.get("aiError"),
            original_text=data.get("originalText"),
            original_tags=list(original_tags) if original_tags is not None else None,
            ai_applied_changes=AppliedChanges.from_dict(applied) if applied else None,
            ai_suggestions=(
                [Suggestion.from_dict(s) for s in suggestions] if suggestions is not None else None
            ),
            processing_history=[
                HistoryEntry.from_dict(h) for h in data.get("processingHistory") or []
            ],
            reprocess_count=int(data.get("reprocessCount") or 0),
            created_at=parse_datetime(data.get("createdAt")),
        )


# === Arbitration output ===


@dataclass(frozen=True)
class LinkRequest:
    """A relationship the arbitrator wants created between the thought and an entity."""

    target_type: str
    target_id: str
    confidence: float
    relationship_type: str = "linked-to"

    @property
    def key(self) -> tuple:
        return (self.target_type, self.target_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "targetType": self.target_type,
            "targetId": self.target_id,
            "relationshipType": self.relationship_type,
            "confidence": self.confidence,
        }


# === Provider exchange ===


@dataclass
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "promptTokens": self.prompt_tokens,
            "completionTokens": self.completion_tokens,
            "totalTokens": self.total_tokens,
        }


@dataclass
class ProviderResult:
    """What an AI provider returns for one thought."""

    actions: List[Dict[str, Any]]
    usage: TokenUsage = field(default_factory=TokenUsage)
    raw_prompt: str = ""
    raw_response: str = ""


# === Entitlement inputs and outputs ===


@dataclass
class SubscriptionSnapshot:
    """The subscription fields entitlement evaluation looks at."""

    tier: Optional[str] = None
    status: Optional[str] = None
    ai_processing: Optional[bool] = None
    ai_credits_remaining: Optional[int] = None
    cancel_at_period_end: bool = False
    current_period_end: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SubscriptionSnapshot":
        entitlements = data.get("entitlements") or {}
        credits = entitlements.get("aiCreditsRemaining")
        return cls(
            tier=data.get("tier"),
            status=data.get("status"),
            ai_processing=entitlements.get("aiProcessing"),
            ai_credits_remaining=int(credits) if credits is not None else None,
            cancel_at_period_end=bool(data.get("cancelAtPeriodEnd", False)),
            current_period_end=parse_datetime(data.get("currentPeriodEnd")),
        )


@dataclass(frozen=True)
class EntitlementDecision:
    allowed: bool
    code: EntitlementCode


@dataclass
class AnonymousSession:
    """Guest session record consulted by the anonymous access gate."""

    user_id: str
    allow_ai: bool = False
    cleanup_pending: bool = False
    expires_at: Optional[datetime] = None
    ci_override_key: Optional[str] = None
    status: Optional[str] = None

    @classmethod
    def from_dict(cls, user_id: str, data: Dict[str, Any]) -> "AnonymousSession":
        return cls(
            user_id=user_id,
            allow_ai=data.get("allowAi") is True,
            cleanup_pending=data.get("cleanupPending") is True,
            expires_at=parse_datetime(data.get("expiresAt")),
            ci_override_key=data.get("ciOverrideKey"),
            status=data.get("status"),
        )

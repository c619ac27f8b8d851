"""Thought updates as explicit patches.

Builders here are pure: they look at the current thought and return a
``ThoughtPatch``. The repository applies a patch to the whole stored
entity inside one transaction, so the field updates, the history append
and the reprocess counter land together.

Baseline rule: ``original_text`` / ``original_tags`` are only written when
absent. Revert is the only operation that clears them.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from mindnote.actions import ArbitrationResult, ProposedAction, apply_confirmed_action
from mindnote.protocols import FailedPreconditionError, NotFoundError
from mindnote.types import (
    PROCESSED_TAG,
    AppliedBy,
    AppliedChanges,
    HistoryEntry,
    HistoryStatus,
    LinkRequest,
    ProcessingStatus,
    SuggestionStatus,
    TextChange,
    Thought,
    TokenUsage,
    Trigger,
    utc_now,
)


@dataclass
class ThoughtPatch:
    """Field updates plus an optional history append for one thought.

    ``fields`` maps Thought attribute names to new values; None clears.
    """

    fields: Dict[str, Any] = field(default_factory=dict)
    history_entry: Optional[HistoryEntry] = None
    increment_reprocess: bool = False

    @classmethod
    def status(cls, status: ProcessingStatus, error: Optional[str] = None) -> "ThoughtPatch":
        return cls(fields={"ai_processing_status": status, "ai_error": error})

    def apply_to(self, thought: Thought) -> Thought:
        updated = dataclasses.replace(thought, **self.fields)
        if self.history_entry is not None:
            updated.processing_history = list(thought.processing_history) + [self.history_entry]
        if self.increment_reprocess:
            updated.reprocess_count = thought.reprocess_count + 1
        return updated


def count_changes(applied: AppliedChanges) -> int:
    return (1 if applied.text_enhanced else 0) + len(applied.tags_added) + applied.links_created


@dataclass
class _StagedChanges:
    text: Optional[str]
    text_changes: List[TextChange]
    tags_added: List[str]
    tags: List[str]

    @property
    def text_enhanced(self) -> bool:
        return self.text is not None


def _stage(result: ArbitrationResult, thought: Thought) -> _StagedChanges:
    staged_text = result.auto_apply.text
    text_enhanced = staged_text is not None and staged_text != thought.text
    tags_added = [t for t in result.auto_apply.tags_to_add if t not in thought.tags]
    return _StagedChanges(
        text=staged_text if text_enhanced else None,
        text_changes=list(result.auto_apply.text_changes) if text_enhanced else [],
        tags_added=tags_added,
        tags=list(thought.tags) + tags_added,
    )


def _baseline_fields(thought: Thought) -> Dict[str, Any]:
    fields: Dict[str, Any] = {}
    if thought.original_text is None:
        fields["original_text"] = thought.text
    if thought.original_tags is None:
        fields["original_tags"] = list(thought.tags)
    return fields


def build_thought_update(
    result: ArbitrationResult,
    thought: Thought,
    usage: Optional[TokenUsage],
    trigger: Trigger,
    now: Optional[datetime] = None,
) -> ThoughtPatch:
    """Turn an arbitration result into the completed-processing patch."""
    now = now or utc_now()
    staged = _stage(result, thought)

    applied = AppliedChanges(
        text_enhanced=staged.text_enhanced,
        text_changes=staged.text_changes,
        tags_added=staged.tags_added,
        links_created=len(result.links_to_create),
        applied_at=now,
        applied_by=AppliedBy.for_trigger(trigger),
    )
    changes = count_changes(applied)

    tags = staged.tags
    if changes > 0 and PROCESSED_TAG not in tags:
        tags.append(PROCESSED_TAG)

    fields = _baseline_fields(thought)
    if staged.text_enhanced:
        fields["text"] = staged.text
    fields.update(
        tags=tags,
        ai_processing_status=ProcessingStatus.COMPLETED,
        ai_error=None,
        ai_applied_changes=applied,
        ai_suggestions=list(result.suggestions),
    )

    entry = HistoryEntry(
        processed_at=now,
        trigger=trigger,
        status=HistoryStatus.COMPLETED,
        tokens_used=usage.total_tokens if usage else None,
        changes_applied=changes,
        suggestions_count=len(result.suggestions),
    )
    return ThoughtPatch(
        fields=fields,
        history_entry=entry,
        increment_reprocess=trigger == Trigger.REPROCESS,
    )


def build_failure_update(
    trigger: Trigger,
    message: str,
    now: Optional[datetime] = None,
) -> ThoughtPatch:
    """Mark processing failed and record the failure in history."""
    patch = ThoughtPatch.status(ProcessingStatus.FAILED, message)
    patch.history_entry = HistoryEntry(
        processed_at=now or utc_now(),
        trigger=trigger,
        status=HistoryStatus.FAILED,
        error=message,
    )
    return patch


def build_revert_update(thought: Thought, now: Optional[datetime] = None) -> ThoughtPatch:
    """Restore the pre-AI baseline and clear every AI-derived field."""
    if thought.ai_applied_changes is None:
        raise FailedPreconditionError("No AI changes to revert")

    text = thought.original_text if thought.original_text is not None else thought.text
    tags = thought.original_tags if thought.original_tags is not None else thought.tags

    return ThoughtPatch(
        fields={
            "text": text,
            "tags": list(tags),
            "ai_processing_status": None,
            "ai_applied_changes": None,
            "ai_suggestions": None,
            "ai_error": None,
            "original_text": None,
            "original_tags": None,
        },
        history_entry=HistoryEntry(
            processed_at=now or utc_now(),
            trigger=Trigger.REVERT,
            status=HistoryStatus.COMPLETED,
            reverted_changes=thought.ai_applied_changes,
        ),
    )


def build_suggestion_update(
    thought: Thought,
    suggestion_id: str,
    accept: bool,
    now: Optional[datetime] = None,
) -> Tuple[ThoughtPatch, List[LinkRequest]]:
    """Resolve a pending suggestion.

    Accepting applies the suggestion through the same rules as an
    auto-applied action and folds the result into ``ai_applied_changes`` so
    a later revert undoes it too. Returns the patch and any links to create.
    """
    now = now or utc_now()
    suggestion = thought.find_suggestion(suggestion_id)
    if suggestion is None:
        raise NotFoundError(f"Suggestion {suggestion_id} not found")
    if suggestion.status != SuggestionStatus.PENDING:
        raise FailedPreconditionError(f"Suggestion already {suggestion.status.value}")

    new_status = SuggestionStatus.ACCEPTED if accept else SuggestionStatus.REJECTED
    suggestions = [
        dataclasses.replace(s, status=new_status) if s.id == suggestion_id else s
        for s in thought.ai_suggestions or []
    ]
    if not accept:
        return ThoughtPatch(fields={"ai_suggestions": suggestions}), []

    result = apply_confirmed_action(ProposedAction.from_suggestion(suggestion), thought)
    staged = _stage(result, thought)
    links = list(result.links_to_create)
    fields: Dict[str, Any] = {"ai_suggestions": suggestions}

    if staged.text_enhanced or staged.tags_added or links:
        previous = thought.ai_applied_changes
        merged = AppliedChanges(
            text_enhanced=staged.text_enhanced or bool(previous and previous.text_enhanced),
            text_changes=(list(previous.text_changes) if previous else []) + staged.text_changes,
            tags_added=(list(previous.tags_added) if previous else []) + staged.tags_added,
            links_created=(previous.links_created if previous else 0) + len(links),
            applied_at=now,
            applied_by=AppliedBy.MANUAL_TRIGGER,
        )
        tags = staged.tags
        if PROCESSED_TAG not in tags:
            tags.append(PROCESSED_TAG)
        fields.update(_baseline_fields(thought))
        if staged.text_enhanced:
            fields["text"] = staged.text
        fields.update(tags=tags, ai_applied_changes=merged)

    return ThoughtPatch(fields=fields), links

"""Confidence-based arbitration of AI-proposed actions.

Each action lands in exactly one bucket, decided by its confidence alone:

- ``confidence >= auto_apply_threshold``: applied now (per-kind rules below).
- ``suggest_threshold <= confidence < auto_apply_threshold``: a pending suggestion.
- below ``suggest_threshold``: discarded.

Identity links (``linkToPerson``) are never applied automatically; at the
auto-apply tier they are demoted to suggestions.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional

from mindnote.types import LinkRequest, Suggestion, SuggestionStatus, TextChange, Thought, utc_now

logger = logging.getLogger(__name__)

DEFAULT_AUTO_APPLY_THRESHOLD = 0.8
DEFAULT_SUGGEST_THRESHOLD = 0.5

DEPRECATED_PERSON_TAG_PREFIX = "person-"
TAG_LINK_PREFIXES = {"goal-": "goal", "project-": "project"}


class ActionKind(str, Enum):
    """Known action types. Anything else parses to UNKNOWN."""

    ENHANCE_THOUGHT = "enhanceThought"
    ADD_TAG = "addTag"
    LINK_TO_GOAL = "linkToGoal"
    LINK_TO_PROJECT = "linkToProject"
    LINK_TO_PERSON = "linkToPerson"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, raw: Any) -> "ActionKind":
        try:
            kind = cls(raw)
        except ValueError:
            return cls.UNKNOWN
        return kind


IDENTITY_LINK_KINDS = frozenset({ActionKind.LINK_TO_PERSON})


class Disposition(str, Enum):
    AUTO_APPLY = "auto_apply"
    SUGGEST = "suggest"
    DISCARD = "discard"


def classify_confidence(
    confidence: float,
    auto_apply_threshold: float = DEFAULT_AUTO_APPLY_THRESHOLD,
    suggest_threshold: float = DEFAULT_SUGGEST_THRESHOLD,
) -> Disposition:
    if confidence >= auto_apply_threshold:
        return Disposition.AUTO_APPLY
    if confidence >= suggest_threshold:
        return Disposition.SUGGEST
    return Disposition.DISCARD


@dataclass(frozen=True)
class ProposedAction:
    """One action as proposed by the AI provider."""

    kind: ActionKind
    type: str
    confidence: float
    data: Dict[str, Any] = field(default_factory=dict)
    reasoning: str = ""

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "ProposedAction":
        raw_type = str(raw.get("type") or "")
        try:
            confidence = float(raw.get("confidence", 0.0))
        except (TypeError, ValueError):
            confidence = 0.0
        data = raw.get("data")
        return cls(
            kind=ActionKind.parse(raw_type),
            type=raw_type,
            confidence=confidence,
            data=dict(data) if isinstance(data, dict) else {},
            reasoning=str(raw.get("reasoning") or ""),
        )

    @classmethod
    def from_suggestion(cls, suggestion: Suggestion) -> "ProposedAction":
        return cls(
            kind=ActionKind.parse(suggestion.type),
            type=suggestion.type,
            confidence=suggestion.confidence,
            data=dict(suggestion.data),
            reasoning=suggestion.reasoning,
        )


@dataclass
class AutoApply:
    text: Optional[str] = None
    text_changes: List[TextChange] = field(default_factory=list)
    tags_to_add: List[str] = field(default_factory=list)


@dataclass
class ArbitrationResult:
    auto_apply: AutoApply = field(default_factory=AutoApply)
    suggestions: List[Suggestion] = field(default_factory=list)
    links_to_create: List[LinkRequest] = field(default_factory=list)
    discarded: List[ProposedAction] = field(default_factory=list)
    ignored: List[ProposedAction] = field(default_factory=list)


def _new_suggestion_id() -> str:
    return f"sug_{uuid.uuid4().hex[:12]}"


class _Staging:
    """Accumulates auto-applied changes for one arbitration pass."""

    def __init__(self, thought: Thought, result: ArbitrationResult):
        self.existing_tags = set(thought.tags)
        self.result = result
        self._staged_tags: set = set()
        self._link_keys: set = set()

    def stage_tag(self, tag: str) -> None:
        if tag in self.existing_tags or tag in self._staged_tags:
            return
        self._staged_tags.add(tag)
        self.result.auto_apply.tags_to_add.append(tag)

    def stage_link(self, target_type: str, target_id: str, confidence: float) -> None:
        link = LinkRequest(target_type=target_type, target_id=target_id, confidence=confidence)
        if link.key in self._link_keys:
            return
        self._link_keys.add(link.key)
        self.result.links_to_create.append(link)

    def stage_text(self, text: str, changes: List[TextChange]) -> None:
        self.result.auto_apply.text = text
        self.result.auto_apply.text_changes = changes


def _id_from(data: Dict[str, Any], key: str) -> str:
    value = data.get(key)
    return str(value).strip() if value is not None else ""


def _apply(action: ProposedAction, staging: _Staging) -> None:
    """Apply one action that cleared the auto-apply bar."""
    kind = action.kind

    if kind == ActionKind.ENHANCE_THOUGHT:
        improved = action.data.get("improvedText")
        if not isinstance(improved, str) or not improved.strip():
            logger.debug("enhanceThought without improvedText ignored")
            return
        changes = [
            TextChange.from_dict(c) for c in action.data.get("changes") or [] if isinstance(c, dict)
        ]
        staging.stage_text(improved, changes)

    elif kind == ActionKind.ADD_TAG:
        tag = str(action.data.get("tag") or "").strip()
        if not tag:
            return
        lowered = tag.lower()
        if lowered.startswith(DEPRECATED_PERSON_TAG_PREFIX):
            logger.info("Dropping person tag %r; people are linked explicitly", tag)
            return
        for prefix, target_type in TAG_LINK_PREFIXES.items():
            if lowered.startswith(prefix):
                target_id = tag[len(prefix):].strip()
                if target_id:
                    staging.stage_link(target_type, target_id, action.confidence)
                return
        staging.stage_tag(tag)

    elif kind == ActionKind.LINK_TO_GOAL:
        goal_id = _id_from(action.data, "goalId")
        if goal_id:
            staging.stage_link("goal", goal_id, action.confidence)

    elif kind == ActionKind.LINK_TO_PROJECT:
        project_id = _id_from(action.data, "projectId")
        if project_id:
            staging.stage_link("project", project_id, action.confidence)

    elif kind == ActionKind.LINK_TO_PERSON:
        # Arbitration demotes these to suggestions; only confirmed links get here.
        person_id = _id_from(action.data, "personId")
        if person_id:
            staging.stage_link("person", person_id, action.confidence)

    else:
        logger.warning("Unknown high-confidence action type: %s", action.type)
        staging.result.ignored.append(action)


def arbitrate_actions(
    actions: Iterable[Any],
    thought: Thought,
    auto_apply_threshold: float = DEFAULT_AUTO_APPLY_THRESHOLD,
    suggest_threshold: float = DEFAULT_SUGGEST_THRESHOLD,
    now: Optional[datetime] = None,
    id_factory: Callable[[], str] = _new_suggestion_id,
) -> ArbitrationResult:
    """Partition proposed actions into auto-applied changes, suggestions and discards.

    Args:
        actions: ProposedAction instances or raw provider dicts, in proposal order.
        thought: The thought being processed (its current tags prevent re-adding).
        auto_apply_threshold: Minimum confidence for immediate application.
        suggest_threshold: Minimum confidence for a suggestion.
        now: Timestamp for created suggestions.
        id_factory: Suggestion id generator.

    Returns:
        ArbitrationResult with staged text/tags, suggestions and link requests.
    """
    created_at = now or utc_now()
    result = ArbitrationResult()
    staging = _Staging(thought, result)

    for raw in actions:
        action = raw if isinstance(raw, ProposedAction) else ProposedAction.from_dict(raw)
        disposition = classify_confidence(action.confidence, auto_apply_threshold, suggest_threshold)

        if disposition == Disposition.AUTO_APPLY and action.kind in IDENTITY_LINK_KINDS:
            disposition = Disposition.SUGGEST

        if disposition == Disposition.AUTO_APPLY:
            _apply(action, staging)
        elif disposition == Disposition.SUGGEST:
            result.suggestions.append(
                Suggestion(
                    id=id_factory(),
                    type=action.type,
                    confidence=action.confidence,
                    data=dict(action.data),
                    reasoning=action.reasoning,
                    created_at=created_at,
                    status=SuggestionStatus.PENDING,
                )
            )
        else:
            result.discarded.append(action)

    return result


def apply_confirmed_action(action: ProposedAction, thought: Thought) -> ArbitrationResult:
    """Stage a user-confirmed action as if it had cleared the auto-apply bar.
    """
    result = ArbitrationResult()
    _apply(action, _Staging(thought, result))
    return result

"""Who may run AI processing.

Two orthogonal gates:

- Registered users: ``evaluate_ai_entitlement`` turns a subscription
  snapshot into an allow/deny decision with a reason code. Decisions are
  reused for a short TTL through ``EntitlementCache``.
- Anonymous (guest) users: ``evaluate_anonymous_session`` checks the guest
  session record. Every denial flags the record for cleanup.

``AccessGate`` composes both against the document store.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Optional, Tuple

from mindnote.storage.repositories import AccountRepository
from mindnote.types import (
    AnonymousSession,
    EntitlementCode,
    EntitlementDecision,
    SubscriptionSnapshot,
    format_datetime,
    utc_now,
)

logger = logging.getLogger(__name__)

REQUIRED_TIER = "pro"
ACTIVE_LIFECYCLE_STATUSES = frozenset({"active", "trialing", "past_due"})

ANONYMOUS_BLOCK_MESSAGE = "Anonymous sessions cannot run AI processing"

BLOCK_MESSAGES: Dict[EntitlementCode, str] = {
    EntitlementCode.INACTIVE: (
        "Your Focus Notebook Pro subscription is inactive. "
        "Update billing to resume AI processing."
    ),
    EntitlementCode.DISABLED: (
        "AI processing is disabled for your account. Contact support if this is unexpected."
    ),
    EntitlementCode.EXHAUSTED: (
        "You have used all available AI processing credits. "
        "Add more credits or wait for the next cycle."
    ),
}
DEFAULT_BLOCK_MESSAGE = "Focus Notebook Pro is required to process thoughts with AI."


def evaluate_ai_entitlement(
    snapshot: Optional[SubscriptionSnapshot],
    now: Optional[datetime] = None,
) -> EntitlementDecision:
    """Decide whether a subscription allows AI processing. First matching rule wins."""
    if snapshot is None:
        return EntitlementDecision(False, EntitlementCode.NO_RECORD)

    if snapshot.ai_processing is True:
        return EntitlementDecision(True, EntitlementCode.ALLOWED)
    if snapshot.ai_processing is False:
        return EntitlementDecision(False, EntitlementCode.DISABLED)

    if snapshot.ai_credits_remaining is not None:
        if snapshot.ai_credits_remaining > 0:
            return EntitlementDecision(True, EntitlementCode.ALLOWED)
        if snapshot.ai_credits_remaining == 0:
            return EntitlementDecision(False, EntitlementCode.EXHAUSTED)

    if (snapshot.tier or "").lower() != REQUIRED_TIER:
        return EntitlementDecision(False, EntitlementCode.TIER_MISMATCH)

    if (snapshot.status or "").lower() not in ACTIVE_LIFECYCLE_STATUSES:
        return EntitlementDecision(False, EntitlementCode.INACTIVE)

    if snapshot.cancel_at_period_end and snapshot.current_period_end is not None:
        if snapshot.current_period_end < (now or utc_now()):
            return EntitlementDecision(False, EntitlementCode.INACTIVE)

    return EntitlementDecision(True, EntitlementCode.ALLOWED)


def get_block_message(code: EntitlementCode) -> str:
    """User-facing message for a denied entitlement."""
    return BLOCK_MESSAGES.get(code, DEFAULT_BLOCK_MESSAGE)


@dataclass
class AnonymousGateResult:
    allowed: bool
    session_update: Optional[dict] = None


def evaluate_anonymous_session(
    session: Optional[AnonymousSession],
    now: datetime,
    override_key: Optional[str] = None,
) -> AnonymousGateResult:
    """Decide whether a guest session may use AI.

    Returns the fields to merge into the session record when denied.
    """
    if session is not None:
        override_match = bool(override_key) and session.ci_override_key == override_key
        allow_ai = session.allow_ai or override_match
    else:
        allow_ai = False

    if session is None or not allow_ai or session.cleanup_pending:
        return AnonymousGateResult(
            allowed=False,
            session_update={
                "cleanupPending": True,
                "status": "blocked",
                "updatedAt": format_datetime(now),
            },
        )

    if session.expires_at is not None and session.expires_at <= now:
        return AnonymousGateResult(
            allowed=False,
            session_update={
                "cleanupPending": True,
                "status": "expired",
                "expiredAt": format_datetime(now),
                "updatedAt": format_datetime(now),
            },
        )

    return AnonymousGateResult(allowed=True)


class EntitlementCache:
    """Short-lived per-user cache of entitlement decisions.

    Denials are cached too, so a blocked user hammering triggers does not
    reload their subscription on every call.
    """

    def __init__(self, ttl_seconds: float = 60.0, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, Tuple[EntitlementDecision, float]] = {}
        self._lock = threading.Lock()

    def get(self, user_id: str) -> Optional[EntitlementDecision]:
        with self._lock:
            entry = self._entries.get(user_id)
            if entry is None:
                return None
            decision, expires_at = entry
            if self._clock() >= expires_at:
                del self._entries[user_id]
                return None
            return decision

    def put(self, user_id: str, decision: EntitlementDecision) -> None:
        with self._lock:
            self._entries[user_id] = (decision, self._clock() + self.ttl_seconds)

    def invalidate(self, user_id: Optional[str] = None) -> None:
        with self._lock:
            if user_id is None:
                self._entries.clear()
            else:
                self._entries.pop(user_id, None)


@dataclass
class AccessResult:
    allowed: bool
    message: str = ""
    code: Optional[EntitlementCode] = None
    anonymous: bool = False


class AccessGate:
    """Resolves whether a user may run AI processing right now."""

    def __init__(
        self,
        accounts: AccountRepository,
        cache: Optional[EntitlementCache] = None,
        override_key: Optional[str] = None,
        now: Callable[[], datetime] = utc_now,
    ):
        self.accounts = accounts
        self.cache = cache or EntitlementCache()
        self.override_key = override_key
        self._now = now

    def check(self, user_id: str) -> AccessResult:
        if self.accounts.is_anonymous(user_id):
            return self._check_anonymous(user_id)

        decision = self.cache.get(user_id)
        if decision is None:
            snapshot = self.accounts.get_subscription(user_id)
            decision = evaluate_ai_entitlement(snapshot, now=self._now())
            self.cache.put(user_id, decision)

        if not decision.allowed:
            logger.info("AI processing blocked for %s: %s", user_id, decision.code.value)
            return AccessResult(False, get_block_message(decision.code), decision.code)
        return AccessResult(True, code=decision.code)

    def _check_anonymous(self, user_id: str) -> AccessResult:
        session = self.accounts.get_anonymous_session(user_id)
        result = evaluate_anonymous_session(session, self._now(), self.override_key)
        if result.allowed:
            return AccessResult(True, anonymous=True)
        self.accounts.update_anonymous_session(user_id, result.session_update or {})
        logger.info("Anonymous session %s blocked from AI processing", user_id)
        return AccessResult(False, ANONYMOUS_BLOCK_MESSAGE, anonymous=True)

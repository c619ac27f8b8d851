"""Per-user processing throttles.

Two independent limits, each a single-document transaction:

- Daily cap: a counter document per user per UTC day. Checking never
  increments; the worker increments after a job completes.
- Interval cap: a per-user ``lastProcessedAt`` timestamp. A passing check
  stamps the timestamp in the same transaction, so two concurrent explicit
  triggers cannot both pass.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from mindnote.config import ProcessingConfig
from mindnote.protocols import RateLimitedError
from mindnote.storage.base import DocumentStore
from mindnote.storage.repositories import daily_count_path, usage_meta_path
from mindnote.types import format_datetime, parse_datetime, utc_now

logger = logging.getLogger(__name__)

INTERVAL_MESSAGE = "Please wait a few seconds before processing another thought."


def _day_key(now: datetime) -> str:
    return now.strftime("%Y-%m-%d")


def _seconds_until_tomorrow(now: datetime) -> float:
    tomorrow = (now + timedelta(days=1)).replace(hour=0, minute=0, second=0, microsecond=0)
    return (tomorrow - now).total_seconds()


class RateLimiter:
    """Daily and interval limits backed by the document store."""

    def __init__(
        self,
        store: DocumentStore,
        config: Optional[ProcessingConfig] = None,
        now: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.config = config or ProcessingConfig()
        self._now = now

    def daily_count(self, user_id: str) -> int:
        doc = self.store.get(daily_count_path(user_id, _day_key(self._now())))
        return int((doc or {}).get("count", 0))

    def check_daily_cap(self, user_id: str) -> None:
        """Raise RateLimitedError if today's count has reached the cap."""
        now = self._now()
        limit = self.config.max_processing_per_day

        def check(doc):
            count = int((doc or {}).get("count", 0))
            if count >= limit:
                raise RateLimitedError(
                    f"Daily processing limit reached ({limit}).",
                    retry_after_seconds=_seconds_until_tomorrow(now),
                )
            return None

        self.store.transact(daily_count_path(user_id, _day_key(now)), check)

    def increment_daily(self, user_id: str) -> int:
        """Count one completed processing run for today. Returns the new count."""
        now = self._now()

        def increment(doc):
            updated = dict(doc or {})
            updated["count"] = int(updated.get("count", 0)) + 1
            updated["updatedAt"] = format_datetime(now)
            return updated

        result = self.store.transact(daily_count_path(user_id, _day_key(now)), increment)
        return int(result["count"])

    def check_and_mark_interval(self, user_id: str) -> None:
        """Enforce the minimum gap between explicit triggers, then stamp now."""
        now = self._now()
        min_interval = self.config.min_processing_interval_seconds

        def check_and_stamp(doc):
            last = parse_datetime((doc or {}).get("lastProcessedAt"))
            if last is not None:
                elapsed = (now - last).total_seconds()
                if elapsed < min_interval:
                    raise RateLimitedError(
                        INTERVAL_MESSAGE,
                        retry_after_seconds=max(min_interval - elapsed, 0.0),
                    )
            updated = dict(doc or {})
            updated["lastProcessedAt"] = format_datetime(now)
            updated["updatedAt"] = format_datetime(now)
            return updated

        self.store.transact(usage_meta_path(user_id), check_and_stamp)

    def check_explicit_request(self, user_id: str) -> None:
        """Both limits, in the order a user-initiated trigger applies them."""
        try:
            self.check_daily_cap(user_id)
            self.check_and_mark_interval(user_id)
        except RateLimitedError as exc:
            logger.info("Rate limited %s: %s", user_id, exc)
            raise

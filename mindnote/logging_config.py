"""Local logging for mindnote.

Two outputs live under ``$MINDNOTE_DATA_DIR/logs`` (default ``~/.mindnote/logs``):

- ``local-YYYY-MM-DD.log``: the ``mindnote`` logger tree.
- ``processing-events-YYYY-MM-DD.log``: a one-line-per-event audit trail of
  enqueues, job transitions and reverts.
"""

import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
LOGGER_NAME = "mindnote"

logger = logging.getLogger(__name__)


def get_log_dir() -> Path:
    """Resolve the log directory from MINDNOTE_DATA_DIR."""
    base = os.environ.get("MINDNOTE_DATA_DIR")
    root = Path(base) if base else Path.home() / ".mindnote"
    return root / "logs"


def _today() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%d")


def setup_mindnote_logging(user_id: str = "default", level: str = "INFO") -> logging.Logger:
    """Configure the ``mindnote`` logger with a dated file handler.

    A console handler is added only at DEBUG. Unknown level names fall back
    to INFO. Repeated calls reuse the existing handlers.
    """
    resolved = getattr(logging, str(level).upper(), None)
    if not isinstance(resolved, int):
        resolved = logging.INFO

    root = logging.getLogger(LOGGER_NAME)
    root.setLevel(resolved)

    log_dir = get_log_dir()
    log_dir.mkdir(parents=True, exist_ok=True)
    formatter = logging.Formatter(LOG_FORMAT)

    if not any(isinstance(h, logging.FileHandler) for h in root.handlers):
        file_handler = logging.FileHandler(log_dir / f"local-{_today()}.log", encoding="utf-8")
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    has_console = any(
        isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler)
        for h in root.handlers
    )
    if resolved <= logging.DEBUG and not has_console:
        console = logging.StreamHandler()
        console.setFormatter(formatter)
        root.addHandler(console)

    root.debug("Logging configured for user=%s", user_id)
    return root


def log_processing_event(event_type: str, details: str, user_id: str = "default") -> None:
    """Append one audit line: ``timestamp | event | user=<id> | details``.

    The audit trail is a side channel; write failures are logged and dropped.
    """
    line = f"{datetime.now(timezone.utc).isoformat()} | {event_type} | user={user_id} | {details}\n"
    try:
        log_dir = get_log_dir()
        log_dir.mkdir(parents=True, exist_ok=True)
        with open(log_dir / f"processing-events-{_today()}.log", "a", encoding="utf-8") as fh:
            fh.write(line)
    except OSError as exc:
        logger.warning("Could not write processing event %s: %s", event_type, exc)


def log_enqueue(user_id: str, thought_id: str, job_id: str, trigger: str, status: str) -> None:
    log_processing_event(
        "enqueue",
        f"thought={thought_id}, job={job_id}, trigger={trigger}, status={status}",
        user_id=user_id,
    )


def log_job_transition(
    user_id: str,
    job_id: str,
    from_status: str,
    to_status: str,
    error: Optional[str] = None,
) -> None:
    details = f"job={job_id}, {from_status}->{to_status}"
    if error:
        details += f", error={error[:120]}"
    log_processing_event("job", details, user_id=user_id)


def log_revert(user_id: str, thought_id: str, changes_reverted: int) -> None:
    log_processing_event(
        "revert",
        f"thought={thought_id}, changes_reverted={changes_reverted}",
        user_id=user_id,
    )

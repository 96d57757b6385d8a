"""
Run log recorder for the Support Triage Copilot.

Every pipeline step leaves one append-only audit record with its status,
timing, error detail and a short redacted preview of its payload. Writing
the record is best-effort: a failure here is reported through the Python
logger and never reaches the caller.
"""

import json
import logging
import re
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterator, Optional

from .models import LogStatus, LogStep, RunLogEntry
from .store import TriageStore


logger = logging.getLogger(__name__)


PREVIEW_MAX_LENGTH = 200
REDACTED = "[REDACTED]"
EMAIL_PATTERN = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")


@contextmanager
def best_effort(description: str) -> Iterator[None]:
    """
    Run a side-channel operation whose failure must not propagate.

    The exception is logged with its traceback and discarded.

    Example:
        with best_effort("webhook delivery"):
            dispatcher.deliver(...)
    """
    try:
        yield
    except Exception:
        logger.exception(f"Best-effort operation failed: {description}")


def build_payload_preview(payload: Any) -> str:
    """
    Serialize a payload to a short, redacted preview string.

    Email addresses are replaced before truncation so a partially cut
    address can never leak.

    Args:
        payload: Any JSON-serializable value (other values use str()).

    Returns:
        At most 200 characters of redacted JSON, or "" for no payload.
    """
    if payload is None:
        return ""
    try:
        text = json.dumps(payload, default=str)
    except (TypeError, ValueError):
        return "Error stringifying payload"
    return EMAIL_PATTERN.sub(REDACTED, text)[:PREVIEW_MAX_LENGTH]


def compute_latency_ms(
    started_at: datetime,
    finished_at: Optional[datetime],
) -> Optional[int]:
    """Milliseconds between the timestamps, or None without a finish time."""
    if finished_at is None:
        return None
    delta = (finished_at - started_at).total_seconds() * 1000
    return max(0, int(round(delta)))


class RunLogRecorder:
    """Writes run log entries to the store."""

    def __init__(self, store: TriageStore):
        self._store = store

    def record(
        self,
        step: LogStep,
        status: LogStatus,
        started_at: datetime,
        finished_at: Optional[datetime] = None,
        ticket_id: Optional[str] = None,
        error_code: Optional[str] = None,
        error_message: Optional[str] = None,
        payload: Any = None,
    ) -> Optional[RunLogEntry]:
        """
        Append one run log entry.

        Returns:
            The stored entry, or None if it could not be written.
        """
        with best_effort(f"run log write ({step}/{status})"):
            entry = RunLogEntry(
                ticket_id=ticket_id,
                step=step,
                status=status,
                started_at=started_at,
                finished_at=finished_at,
                latency_ms=compute_latency_ms(started_at, finished_at),
                error_code=error_code,
                error_message=error_message,
                payload_preview=build_payload_preview(payload),
            )
            return self._store.add_run_log(entry)
        return None

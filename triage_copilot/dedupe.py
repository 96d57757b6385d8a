"""
Duplicate detection for inbound support messages.

A new message is attached to an existing ticket when the same customer sent
the same text (exact fingerprint match) or nearly the same text (token-set
Jaccard similarity) within the lookback window.
"""

import hashlib
import logging
import re
from datetime import datetime, timedelta
from typing import Callable, Optional

from .models import utcnow
from .run_log import RunLogRecorder
from .store import TriageStore


logger = logging.getLogger(__name__)


_NON_ALNUM = re.compile(r"[^a-z0-9]")
_NON_ALNUM_OR_SPACE = re.compile(r"[^a-z0-9\s]")


def compute_fingerprint(text: str) -> str:
    """
    Hash of the message with case, punctuation and whitespace removed.

    Example:
        compute_fingerprint("Hello, World!") == compute_fingerprint("hello world")
    """
    normalized = _NON_ALNUM.sub("", text.lower())
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()


def tokenize(text: str) -> set[str]:
    """Lowercase word tokens longer than two characters."""
    cleaned = _NON_ALNUM_OR_SPACE.sub("", text.lower())
    return {token for token in cleaned.split() if len(token) > 2}


def jaccard_similarity(text1: str, text2: str) -> float:
    """Intersection over union of the two token sets; 0.0 if either is empty."""
    tokens1 = tokenize(text1)
    tokens2 = tokenize(text2)
    if not tokens1 or not tokens2:
        return 0.0
    return len(tokens1 & tokens2) / len(tokens1 | tokens2)


class DuplicateDetector:
    """
    Finds the ticket an incoming message belongs to.

    Only a match is logged. A clean "no duplicate" outcome writes nothing,
    since ticket creation is recorded by the workflow.
    """

    def __init__(
        self,
        store: TriageStore,
        run_log: RunLogRecorder,
        lookback: timedelta = timedelta(minutes=10),
        similarity_threshold: float = 0.75,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._store = store
        self._run_log = run_log
        self._lookback = lookback
        self._threshold = similarity_threshold
        self._clock = clock

    def find_duplicate(self, email: str, message: str) -> Optional[str]:
        """
        Look for a recent ticket from `email` carrying the same message.

        Args:
            email: Sender address of the new message.
            message: Raw message text.

        Returns:
            The id of the ticket to attach to, or None to create a new one.
        """
        started_at = self._clock()
        since = started_at - self._lookback
        candidates = self._store.list_recent_messages(email, since)

        fingerprint = compute_fingerprint(message)
        for candidate in candidates:
            if candidate.fingerprint == fingerprint:
                logger.info(f"Exact duplicate of ticket {candidate.ticket_id}")
                self._run_log.record(
                    step="dedupe",
                    status="success",
                    started_at=started_at,
                    finished_at=self._clock(),
                    ticket_id=candidate.ticket_id,
                    payload={"duplicate_of": candidate.ticket_id, "type": "exact"},
                )
                return candidate.ticket_id

        # First candidate over the threshold wins, not the best one
        for candidate in candidates:
            similarity = jaccard_similarity(message, candidate.body)
            if similarity > self._threshold:
                logger.info(
                    f"Fuzzy duplicate of ticket {candidate.ticket_id} "
                    f"(similarity: {similarity:.2f})"
                )
                self._run_log.record(
                    step="dedupe",
                    status="success",
                    started_at=started_at,
                    finished_at=self._clock(),
                    ticket_id=candidate.ticket_id,
                    payload={
                        "duplicate_of": candidate.ticket_id,
                        "type": "fuzzy",
                        "similarity": similarity,
                    },
                )
                return candidate.ticket_id

        return None

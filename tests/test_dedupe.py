"""
Unit tests for duplicate detection.

Tests cover:
- Fingerprint normalization
- Jaccard similarity
- Lookback window boundaries
- Exact and fuzzy matching against stored messages
"""

from datetime import timedelta

import pytest

from triage_copilot.dedupe import (
    DuplicateDetector,
    compute_fingerprint,
    jaccard_similarity,
    tokenize,
)
from triage_copilot.models import Ticket, TicketMessage, utcnow


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def now():
    return utcnow()


@pytest.fixture
def detector(store, run_log, now) -> DuplicateDetector:
    return DuplicateDetector(store, run_log, clock=lambda: now)


def add_ticket_message(store, email: str, body: str, created_at) -> str:
    ticket = store.create_ticket(Ticket(customer_email=email, subject="Subject line"))
    store.add_message(
        TicketMessage(
            ticket_id=ticket.id,
            body=body,
            fingerprint=compute_fingerprint(body),
            created_at=created_at,
        )
    )
    return ticket.id


# =============================================================================
# Normalization Tests
# =============================================================================

class TestFingerprint:
    """Tests for compute_fingerprint."""

    def test_ignores_case_and_punctuation(self):
        """Test formatting differences give the same fingerprint."""
        assert compute_fingerprint("Hello, World!") == compute_fingerprint("hello world")

    def test_different_text(self):
        """Test different words give different fingerprints."""
        assert compute_fingerprint("hello world") != compute_fingerprint("hello there")

    def test_sha256_hex(self):
        """Test fingerprint is a 64-character hex digest."""
        assert len(compute_fingerprint("anything")) == 64


class TestJaccard:
    """Tests for tokenize and jaccard_similarity."""

    def test_short_tokens_dropped(self):
        """Test tokens of two characters or fewer are ignored."""
        assert tokenize("I am on it now") == {"now"}

    def test_identical(self):
        """Test identical text has similarity 1."""
        assert jaccard_similarity("billing page broken", "Billing page broken!") == 1.0

    def test_symmetric(self):
        """Test similarity does not depend on argument order."""
        a = "cannot login to my account today"
        b = "cannot login to account"
        assert jaccard_similarity(a, b) == jaccard_similarity(b, a)

    def test_empty_tokens(self):
        """Test text without usable tokens has similarity 0."""
        assert jaccard_similarity("a b c", "the login page") == 0.0

    def test_partial_overlap(self):
        """Test similarity is intersection over union."""
        assert jaccard_similarity("one two three four", "one two three five") == pytest.approx(3 / 5)


# =============================================================================
# DuplicateDetector Tests
# =============================================================================

class TestDuplicateDetector:
    """Tests for DuplicateDetector.find_duplicate."""

    def test_exact_match(self, store, detector, now):
        """Test a reformatted resend attaches to the original ticket."""
        ticket_id = add_ticket_message(
            store, "dana@example.com", "My invoice is wrong!", now - timedelta(minutes=2)
        )
        assert detector.find_duplicate("dana@example.com", "my invoice is wrong") == ticket_id

        logs = store.list_run_logs(step="dedupe")
        assert len(logs) == 1
        assert logs[0].status == "success"
        assert logs[0].ticket_id == ticket_id
        assert '"exact"' in logs[0].payload_preview

    def test_fuzzy_match(self, store, detector, now):
        """Test near-identical text above the threshold matches."""
        body = "The export button on the reports page crashes the whole browser tab"
        ticket_id = add_ticket_message(store, "dana@example.com", body, now)
        resend = "The export button on the reports page crashes the whole browser tab again"

        assert detector.find_duplicate("dana@example.com", resend) == ticket_id
        assert '"fuzzy"' in store.list_run_logs(step="dedupe")[0].payload_preview

    def test_below_threshold_no_match(self, store, detector, now):
        """Test loosely related text creates a new ticket and logs nothing."""
        add_ticket_message(store, "dana@example.com", "billing page broken today", now)
        assert detector.find_duplicate("dana@example.com", "login page broken yesterday") is None
        assert store.list_run_logs(step="dedupe") == []

    def test_other_customer_ignored(self, store, detector, now):
        """Test identical text from another customer is not a duplicate."""
        add_ticket_message(store, "other@example.com", "My invoice is wrong", now)
        assert detector.find_duplicate("dana@example.com", "My invoice is wrong") is None

    def test_window_boundary_inclusive(self, store, detector, now):
        """Test a message exactly ten minutes old is still a candidate."""
        ticket_id = add_ticket_message(
            store, "dana@example.com", "My invoice is wrong", now - timedelta(minutes=10)
        )
        assert detector.find_duplicate("dana@example.com", "My invoice is wrong") == ticket_id

    def test_outside_window(self, store, detector, now):
        """Test older messages are ignored."""
        add_ticket_message(
            store,
            "dana@example.com",
            "My invoice is wrong",
            now - timedelta(minutes=10, seconds=1),
        )
        assert detector.find_duplicate("dana@example.com", "My invoice is wrong") is None

    def test_exact_match_preferred_over_earlier_fuzzy(self, store, detector, now):
        """Test the exact pass runs before the fuzzy pass."""
        add_ticket_message(
            store, "dana@example.com", "refund request for order number twelve please", now
        )
        exact_id = add_ticket_message(
            store, "dana@example.com", "refund request for order number twelve", now
        )
        found = detector.find_duplicate("dana@example.com", "Refund request for order number twelve")
        assert found == exact_id

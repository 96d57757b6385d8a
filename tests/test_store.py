"""Tests for the in-memory store."""

from datetime import timedelta

import pytest
from pydantic import ValidationError

from triage_copilot.models import (
    AuditEvent,
    EmailOutboxEntry,
    KBMatch,
    RunLogEntry,
    Ticket,
    TicketMessage,
    utcnow,
)
from triage_copilot.store import InMemoryStore, RecordNotFoundError, StoreError


class TestTickets:
    """Tests for ticket operations."""

    def test_create_and_get(self, store):
        """Test a created ticket can be read back."""
        ticket = store.create_ticket(Ticket(customer_email="a@example.com", subject="Help me"))
        fetched = store.get_ticket(ticket.id)
        assert fetched == ticket

    def test_get_unknown(self, store):
        """Test unknown ids return None."""
        assert store.get_ticket("missing") is None

    def test_duplicate_id_rejected(self, store):
        """Test creating the same ticket twice fails."""
        ticket = Ticket(customer_email="a@example.com", subject="Help me")
        store.create_ticket(ticket)
        with pytest.raises(StoreError):
            store.create_ticket(ticket)

    def test_returned_copy_is_detached(self, store, ticket):
        """Test mutating a returned ticket does not change the stored one."""
        copy = store.get_ticket(ticket.id)
        copy.subject = "Changed"
        assert store.get_ticket(ticket.id).subject == "Password reset not working"

    def test_update_sets_fields(self, store, ticket):
        """Test updates are applied and updated_at advances."""
        updated = store.update_ticket(ticket.id, status="needs_info", ai_confidence=0.4)
        assert updated.status == "needs_info"
        assert updated.ai_confidence == 0.4
        assert updated.updated_at >= ticket.updated_at

    def test_update_unknown_ticket(self, store):
        """Test updating a missing ticket raises."""
        with pytest.raises(RecordNotFoundError):
            store.update_ticket("missing", status="failed")

    def test_invalid_update_leaves_ticket_untouched(self, store, ticket):
        """Test a bad value is rejected before anything is written."""
        with pytest.raises(ValidationError):
            store.update_ticket(ticket.id, status="needs_approval", ai_confidence=2.0)
        assert store.get_ticket(ticket.id).status == "new"

    def test_list_by_status(self, store, ticket):
        """Test status filter."""
        other = store.create_ticket(Ticket(customer_email="b@example.com", subject="Other one"))
        store.update_ticket(other.id, status="escalated")
        assert [t.id for t in store.list_tickets(status="escalated")] == [other.id]
        assert len(store.list_tickets()) == 2


class TestMessages:
    """Tests for message operations."""

    def test_message_requires_ticket(self, store):
        """Test messages cannot be attached to unknown tickets."""
        with pytest.raises(RecordNotFoundError):
            store.add_message(TicketMessage(ticket_id="missing", body="hello"))

    def test_recent_messages_filters_by_email_and_time(self, store, ticket):
        """Test lookback filtering by customer email and creation time."""
        now = utcnow()
        old = store.add_message(
            TicketMessage(ticket_id=ticket.id, body="old", created_at=now - timedelta(hours=1))
        )
        other = store.create_ticket(Ticket(customer_email="b@example.com", subject="Other one"))
        store.add_message(TicketMessage(ticket_id=other.id, body="not mine"))

        recent = store.list_recent_messages("dana@example.com", now - timedelta(minutes=10))
        bodies = [m.body for m in recent]
        assert old.body not in bodies
        assert "not mine" not in bodies
        assert len(recent) == 1

    def test_recent_messages_boundary_inclusive(self, store, ticket):
        """Test a message exactly at the cutoff is included."""
        since = utcnow()
        store.add_message(TicketMessage(ticket_id=ticket.id, body="edge", created_at=since))
        recent = store.list_recent_messages("dana@example.com", since)
        assert [m.body for m in recent] == ["edge"]


class TestKnowledgeBase:
    """Tests for KB match operations."""

    def test_delete_matches(self, store, ticket):
        """Test only the ticket's matches are removed."""
        for ticket_id in (ticket.id, ticket.id, "other"):
            store.add_kb_match(
                KBMatch(
                    ticket_id=ticket_id,
                    kb_document_id="doc",
                    score=3,
                    title_snapshot="T",
                    excerpt_snapshot="E",
                )
            )
        assert store.delete_kb_matches(ticket.id) == 2
        assert store.list_kb_matches(ticket.id) == []
        assert len(store.list_kb_matches("other")) == 1


class TestRunLog:
    """Tests for run log operations."""

    def test_filters(self, store):
        """Test step, status and ticket filters combine."""
        now = utcnow()
        store.add_run_log(RunLogEntry(step="triage", status="success", started_at=now, ticket_id="a"))
        store.add_run_log(RunLogEntry(step="triage", status="failed", started_at=now, ticket_id="a"))
        store.add_run_log(RunLogEntry(step="webhook", status="success", started_at=now, ticket_id="b"))

        assert len(store.list_run_logs()) == 3
        assert len(store.list_run_logs(step="triage")) == 2
        assert len(store.list_run_logs(step="triage", status="failed")) == 1
        assert len(store.list_run_logs(ticket_id="b")) == 1


class TestOutbox:
    """Tests for outbox operations."""

    def test_update_outbox(self, store):
        """Test outbox entries move from pending to sent."""
        entry = store.create_outbox(EmailOutboxEntry(to="a@example.com", subject="S", body="B"))
        store.update_outbox(entry.id, status="sent", sent_at=utcnow())
        assert [e.id for e in store.list_outbox(status="sent")] == [entry.id]
        assert store.list_outbox(status="pending") == []

    def test_update_unknown_outbox(self, store):
        """Test updating a missing entry raises."""
        with pytest.raises(RecordNotFoundError):
            store.update_outbox("missing", status="sent")


class TestAudit:
    """Tests for audit events."""

    def test_filter_by_action(self, store):
        """Test action filter."""
        store.add_audit_event(AuditEvent(ticket_id="a", action="approve"))
        store.add_audit_event(AuditEvent(ticket_id="b", action="escalate"))
        assert len(store.list_audit_events(action="approve")) == 1
        assert len(store.list_audit_events()) == 2


def test_store_satisfies_protocol():
    """Test InMemoryStore exposes every protocol operation."""
    from triage_copilot.store import TriageStore

    names = [n for n in vars(TriageStore) if not n.startswith("_")]
    store = InMemoryStore()
    assert all(callable(getattr(store, n)) for n in names)

"""
Storage layer for the Support Triage Copilot.

The pipeline only talks to the `TriageStore` protocol. `InMemoryStore` is
the reference implementation used by the CLI and the tests; it is strongly
consistent and safe to share with the webhook worker threads.
"""

import logging
import threading
from datetime import datetime
from typing import Any, Optional, Protocol

from .models import (
    AuditEvent,
    EmailOutboxEntry,
    KBDocument,
    KBMatch,
    RunLogEntry,
    Ticket,
    TicketMessage,
    utcnow,
)


logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Base exception for storage errors."""
    pass


class RecordNotFoundError(StoreError):
    """Raised when an update targets a record that does not exist."""
    pass


class TriageStore(Protocol):
    """Operations the triage pipeline needs from persistent storage."""

    # Tickets
    def create_ticket(self, ticket: Ticket) -> Ticket: ...
    def get_ticket(self, ticket_id: str) -> Optional[Ticket]: ...
    def update_ticket(self, ticket_id: str, **fields: Any) -> Ticket: ...
    def list_tickets(self, status: Optional[str] = None) -> list[Ticket]: ...

    # Messages
    def add_message(self, message: TicketMessage) -> TicketMessage: ...
    def list_messages(self, ticket_id: str) -> list[TicketMessage]: ...
    def list_recent_messages(self, email: str, since: datetime) -> list[TicketMessage]: ...

    # Knowledge base
    def add_kb_document(self, document: KBDocument) -> KBDocument: ...
    def list_kb_documents(self) -> list[KBDocument]: ...
    def delete_kb_matches(self, ticket_id: str) -> int: ...
    def add_kb_match(self, match: KBMatch) -> KBMatch: ...
    def list_kb_matches(self, ticket_id: str) -> list[KBMatch]: ...

    # Run log
    def add_run_log(self, entry: RunLogEntry) -> RunLogEntry: ...
    def list_run_logs(
        self,
        step: Optional[str] = None,
        status: Optional[str] = None,
        ticket_id: Optional[str] = None,
    ) -> list[RunLogEntry]: ...

    # Email outbox
    def create_outbox(self, entry: EmailOutboxEntry) -> EmailOutboxEntry: ...
    def update_outbox(self, outbox_id: str, **fields: Any) -> EmailOutboxEntry: ...
    def list_outbox(self, status: Optional[str] = None) -> list[EmailOutboxEntry]: ...

    # Audit
    def add_audit_event(self, event: AuditEvent) -> AuditEvent: ...
    def list_audit_events(self, action: Optional[str] = None) -> list[AuditEvent]: ...


class InMemoryStore:
    """
    Dictionary-backed implementation of `TriageStore`.

    Insertion order is preserved for every table, so list operations return
    records oldest first.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._tickets: dict[str, Ticket] = {}
        self._messages: dict[str, TicketMessage] = {}
        self._kb_documents: dict[str, KBDocument] = {}
        self._kb_matches: dict[str, KBMatch] = {}
        self._run_logs: list[RunLogEntry] = []
        self._outbox: dict[str, EmailOutboxEntry] = {}
        self._audit_events: list[AuditEvent] = []

    # ------------------------------------------------------------------
    # Tickets
    # ------------------------------------------------------------------

    def create_ticket(self, ticket: Ticket) -> Ticket:
        with self._lock:
            if ticket.id in self._tickets:
                raise StoreError(f"Ticket {ticket.id} already exists")
            self._tickets[ticket.id] = ticket.model_copy(deep=True)
            logger.debug(f"Created ticket {ticket.id}")
            return ticket.model_copy(deep=True)

    def get_ticket(self, ticket_id: str) -> Optional[Ticket]:
        with self._lock:
            ticket = self._tickets.get(ticket_id)
            return ticket.model_copy(deep=True) if ticket else None

    def update_ticket(self, ticket_id: str, **fields: Any) -> Ticket:
        """
        Update ticket fields in one step.

        Fields are validated against the model before anything is written,
        so a bad value leaves the stored ticket untouched.

        Raises:
            RecordNotFoundError: If the ticket does not exist.
        """
        with self._lock:
            current = self._tickets.get(ticket_id)
            if current is None:
                raise RecordNotFoundError(f"Ticket {ticket_id} not found")

            data = current.model_dump()
            data.update(fields)
            data["updated_at"] = utcnow()
            updated = Ticket.model_validate(data)

            self._tickets[ticket_id] = updated
            return updated.model_copy(deep=True)

    def list_tickets(self, status: Optional[str] = None) -> list[Ticket]:
        with self._lock:
            return [
                t.model_copy(deep=True)
                for t in self._tickets.values()
                if status is None or t.status == status
            ]

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def add_message(self, message: TicketMessage) -> TicketMessage:
        with self._lock:
            if message.ticket_id not in self._tickets:
                raise RecordNotFoundError(f"Ticket {message.ticket_id} not found")
            self._messages[message.id] = message
            return message

    def list_messages(self, ticket_id: str) -> list[TicketMessage]:
        with self._lock:
            return [m for m in self._messages.values() if m.ticket_id == ticket_id]

    def list_recent_messages(self, email: str, since: datetime) -> list[TicketMessage]:
        """Messages on tickets owned by `email` created at or after `since`."""
        with self._lock:
            ticket_ids = {
                t.id for t in self._tickets.values() if t.customer_email == email
            }
            return [
                m for m in self._messages.values()
                if m.ticket_id in ticket_ids and m.created_at >= since
            ]

    # ------------------------------------------------------------------
    # Knowledge base
    # ------------------------------------------------------------------

    def add_kb_document(self, document: KBDocument) -> KBDocument:
        with self._lock:
            self._kb_documents[document.id] = document
            return document

    def list_kb_documents(self) -> list[KBDocument]:
        with self._lock:
            return list(self._kb_documents.values())

    def delete_kb_matches(self, ticket_id: str) -> int:
        with self._lock:
            stale = [k for k, m in self._kb_matches.items() if m.ticket_id == ticket_id]
            for key in stale:
                del self._kb_matches[key]
            return len(stale)

    def add_kb_match(self, match: KBMatch) -> KBMatch:
        with self._lock:
            self._kb_matches[match.id] = match
            return match

    def list_kb_matches(self, ticket_id: str) -> list[KBMatch]:
        with self._lock:
            return [m for m in self._kb_matches.values() if m.ticket_id == ticket_id]

    # ------------------------------------------------------------------
    # Run log
    # ------------------------------------------------------------------

    def add_run_log(self, entry: RunLogEntry) -> RunLogEntry:
        with self._lock:
            self._run_logs.append(entry)
            return entry

    def list_run_logs(
        self,
        step: Optional[str] = None,
        status: Optional[str] = None,
        ticket_id: Optional[str] = None,
    ) -> list[RunLogEntry]:
        with self._lock:
            return [
                e for e in self._run_logs
                if (step is None or e.step == step)
                and (status is None or e.status == status)
                and (ticket_id is None or e.ticket_id == ticket_id)
            ]

    # ------------------------------------------------------------------
    # Email outbox
    # ------------------------------------------------------------------

    def create_outbox(self, entry: EmailOutboxEntry) -> EmailOutboxEntry:
        with self._lock:
            self._outbox[entry.id] = entry.model_copy()
            return entry.model_copy()

    def update_outbox(self, outbox_id: str, **fields: Any) -> EmailOutboxEntry:
        with self._lock:
            current = self._outbox.get(outbox_id)
            if current is None:
                raise RecordNotFoundError(f"Outbox entry {outbox_id} not found")
            data = current.model_dump()
            data.update(fields)
            updated = EmailOutboxEntry.model_validate(data)
            self._outbox[outbox_id] = updated
            return updated.model_copy()

    def list_outbox(self, status: Optional[str] = None) -> list[EmailOutboxEntry]:
        with self._lock:
            return [
                e.model_copy() for e in self._outbox.values()
                if status is None or e.status == status
            ]

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    def add_audit_event(self, event: AuditEvent) -> AuditEvent:
        with self._lock:
            self._audit_events.append(event)
            return event

    def list_audit_events(self, action: Optional[str] = None) -> list[AuditEvent]:
        with self._lock:
            return [
                e for e in self._audit_events
                if action is None or e.action == action
            ]

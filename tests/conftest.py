"""Shared fixtures for the triage pipeline tests."""

import pytest

from triage_copilot.models import Ticket, TicketMessage
from triage_copilot.retry import RetryPolicy
from triage_copilot.run_log import RunLogRecorder
from triage_copilot.store import InMemoryStore


@pytest.fixture
def store() -> InMemoryStore:
    """Fresh in-memory store."""
    return InMemoryStore()


@pytest.fixture
def run_log(store) -> RunLogRecorder:
    """Run log recorder writing to the shared store."""
    return RunLogRecorder(store)


@pytest.fixture
def sleeps() -> list:
    """Collects the waits requested by a retry policy."""
    return []


@pytest.fixture
def fast_retry(sleeps) -> RetryPolicy:
    """Default 3-attempt policy that records waits instead of sleeping."""
    return RetryPolicy(sleep=sleeps.append)


@pytest.fixture
def ticket(store) -> Ticket:
    """A stored ticket with one opening message."""
    created = store.create_ticket(
        Ticket(
            customer_email="dana@example.com",
            customer_name="Dana",
            subject="Password reset not working",
        )
    )
    store.add_message(
        TicketMessage(
            ticket_id=created.id,
            body="I tried to reset my password but never received the email.",
        )
    )
    return created

"""
Impact metrics computed from the run log and audit events.
"""

import logging
from statistics import median

from pydantic import BaseModel

from .store import TriageStore


logger = logging.getLogger(__name__)


WORKFLOW_COMPLETE_MARKER = '"workflow": "complete"'


class TriageMetrics(BaseModel):
    """Headline numbers for the support team."""

    tickets_triaged: int
    median_latency_ms: float
    approved: int
    escalated: int
    approval_rate: float
    escalation_rate: float
    hours_saved: float
    estimated_savings: float


def median_latency(latencies: list[int]) -> float:
    """Median of the latencies; 0 when there are none."""
    if not latencies:
        return 0.0
    return float(median(latencies))


def _rate(part: int, total: int) -> float:
    return round(part / total * 100, 1) if total else 0.0


def compute_metrics(
    store: TriageStore,
    minutes_saved_per_ticket: float = 4.0,
    hourly_cost: float = 25.0,
) -> TriageMetrics:
    """
    Summarize triage throughput and operator actions.

    Args:
        store: Store holding run log entries and audit events.
        minutes_saved_per_ticket: Agent time saved by each automated triage.
        hourly_cost: Agent cost per hour, for the savings estimate.

    Returns:
        TriageMetrics with counts, rates (in percent) and savings.
    """
    successes = store.list_run_logs(step="triage", status="success")
    # Only end-to-end workflow runs feed the median
    latencies = [
        e.latency_ms for e in successes
        if e.latency_ms is not None and WORKFLOW_COMPLETE_MARKER in e.payload_preview
    ]
    # A ticket rerun after failure still counts once
    triaged = len({e.ticket_id for e in successes if e.ticket_id})

    approved = len(store.list_audit_events(action="approve"))
    escalated = len(store.list_audit_events(action="escalate"))
    actions = approved + escalated

    hours_saved = round(triaged * minutes_saved_per_ticket / 60, 1)

    metrics = TriageMetrics(
        tickets_triaged=triaged,
        median_latency_ms=median_latency(latencies),
        approved=approved,
        escalated=escalated,
        approval_rate=_rate(approved, actions),
        escalation_rate=_rate(escalated, actions),
        hours_saved=hours_saved,
        estimated_savings=round(hours_saved * hourly_cost, 2),
    )
    logger.debug(f"Computed metrics: {metrics}")
    return metrics

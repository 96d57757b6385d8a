"""
Triage workflow for the Support Triage Copilot.

Runs knowledge base retrieval and analysis for one ticket and writes the
verdict back. This is the single place where pipeline failures are
absorbed: whatever goes wrong, the ticket ends the run either triaged or
marked `failed`, and the caller never sees an exception.
"""

import logging
from typing import Optional

from .analyzer import TriageAnalyzer
from .knowledge_base import KnowledgeBaseRetriever, format_kb_context
from .models import Ticket, TicketMessage, TicketStatus, TriageVerdict, utcnow
from .run_log import RunLogRecorder, best_effort
from .store import TriageStore


logger = logging.getLogger(__name__)


QUERY_BODY_CHARS = 200


class WorkflowError(Exception):
    """Error inside a workflow run (never raised out of `run`)."""
    pass


def build_search_query(subject: str, messages: list[TicketMessage]) -> tuple[str, str]:
    """
    Build the knowledge base query from the ticket's opening message.

    Returns:
        Tuple of (query, first_message_body).
    """
    body = messages[0].body if messages else ""
    return f"{subject} {body[:QUERY_BODY_CHARS]}", body


def status_for_confidence(confidence: float, threshold: float = 0.7) -> TicketStatus:
    """Low-confidence verdicts ask for more information instead of approval."""
    return "needs_info" if confidence < threshold else "needs_approval"


def verdict_fields(verdict: TriageVerdict) -> dict:
    """Ticket fields written from a verdict."""
    return {
        "ai_summary": verdict.summary,
        "ai_category": verdict.category,
        "ai_urgency": verdict.urgency,
        "ai_suggested_reply": verdict.suggested_reply,
        "ai_follow_up_questions": list(verdict.follow_up_questions),
        "ai_confidence": verdict.confidence,
        "ai_token_usage": verdict.token_usage,
    }


class TriageWorkflow:
    """
    Orchestrates retrieval and analysis for one ticket at a time.

    Re-running a ticket (manual retry) repeats the full sequence; knowledge
    base matches are replaced, so reruns do not accumulate state.
    """

    def __init__(
        self,
        store: TriageStore,
        retriever: KnowledgeBaseRetriever,
        analyzer: TriageAnalyzer,
        run_log: RunLogRecorder,
        confidence_threshold: float = 0.7,
    ):
        self._store = store
        self._retriever = retriever
        self._analyzer = analyzer
        self._run_log = run_log
        self._confidence_threshold = confidence_threshold

    def run(self, ticket_id: str) -> Optional[Ticket]:
        """
        Triage one ticket.

        Args:
            ticket_id: Ticket to process.

        Returns:
            The updated ticket on success, None if the run failed.
        """
        started_at = utcnow()
        logger.info(f"Starting triage workflow for ticket {ticket_id}")

        try:
            ticket = self._store.get_ticket(ticket_id)
            if ticket is None:
                raise WorkflowError(f"Ticket {ticket_id} not found")

            messages = self._store.list_messages(ticket_id)
            query, body = build_search_query(ticket.subject, messages)

            snippets = self._retriever.search(query, ticket_id)
            kb_context = format_kb_context(snippets)

            verdict = self._analyzer.analyze(ticket.id, ticket.subject, body, kb_context)
            status = status_for_confidence(verdict.confidence, self._confidence_threshold)

            updated = self._store.update_ticket(
                ticket_id, status=status, **verdict_fields(verdict)
            )

            self._run_log.record(
                step="triage",
                status="success",
                started_at=started_at,
                finished_at=utcnow(),
                ticket_id=ticket_id,
                payload={
                    "workflow": "complete",
                    "kb_docs_found": len(snippets),
                    "confidence": verdict.confidence,
                },
            )
            logger.info(
                f"Ticket {ticket_id} triaged: {status} "
                f"(confidence: {verdict.confidence:.2f}, kb docs: {len(snippets)})"
            )
            return updated

        except Exception as e:
            logger.error(f"Workflow failed for ticket {ticket_id}: {e}")

            with best_effort(f"mark ticket {ticket_id} failed"):
                self._store.update_ticket(ticket_id, status="failed")

            self._run_log.record(
                step="triage",
                status="failed",
                started_at=started_at,
                finished_at=utcnow(),
                ticket_id=ticket_id,
                error_code="WORKFLOW_FAILED",
                error_message=str(e.__cause__ or e),
            )
            return None

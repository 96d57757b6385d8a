"""
Support desk actions for the Support Triage Copilot.

`SupportDesk` wires the pipeline components together from an `AppConfig`
and exposes the operations the outer layers call: ticket intake and the
operator actions (approve, escalate, save draft, retry). The actions only
sequence pipeline calls; all triage logic lives in the components.
"""

import logging
import time
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Optional

import httpx
from openai import OpenAI
from pydantic import BaseModel

from .analyzer import TriageAnalyzer
from .config import AppConfig
from .dedupe import DuplicateDetector, compute_fingerprint
from .email_outbox import EmailTransport, OutboxMailer, build_transport
from .knowledge_base import KnowledgeBaseRetriever, load_kb_documents
from .models import (
    AuditAction,
    AuditEvent,
    KBDocument,
    KBSubmission,
    Ticket,
    TicketMessage,
    TicketSubmission,
    utcnow,
)
from .rate_limit import RateLimiter
from .retry import RetryPolicy
from .run_log import RunLogRecorder
from .store import InMemoryStore, TriageStore
from .webhook import WebhookDispatcher
from .workflow import TriageWorkflow


logger = logging.getLogger(__name__)


class DeskError(Exception):
    """An operator action cannot be carried out on the ticket."""
    pass


class SubmissionResult(BaseModel):
    """Outcome of one ticket submission."""

    ticket_id: Optional[str] = None
    status: Optional[str] = None
    deduplicated: bool = False
    rejected: bool = False


class SupportDesk:
    """
    Entry point for intake and operator actions.

    Components can be replaced for testing; everything not passed in is
    built from the configuration.
    """

    def __init__(
        self,
        config: AppConfig,
        store: Optional[TriageStore] = None,
        rate_limiter: Optional[RateLimiter] = None,
        llm_client: Optional[OpenAI] = None,
        email_transport: Optional[EmailTransport] = None,
        http_client_factory: Callable[..., httpx.Client] = httpx.Client,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.config = config
        self.store = store if store is not None else InMemoryStore()
        self.run_log = RunLogRecorder(self.store)

        retry = RetryPolicy.from_config(config.retry, sleep=sleep)
        triage = config.triage

        self.rate_limiter = rate_limiter or RateLimiter(
            limit=triage.rate_limit_requests,
            window_seconds=triage.rate_limit_window_seconds,
        )
        self.dedupe = DuplicateDetector(
            self.store,
            self.run_log,
            lookback=timedelta(minutes=triage.dedupe_window_minutes),
            similarity_threshold=triage.dedupe_similarity_threshold,
            clock=clock,
        )
        self.retriever = KnowledgeBaseRetriever(
            self.store,
            self.run_log,
            retry,
            top_k=triage.kb_top_k,
            excerpt_length=triage.kb_excerpt_length,
        )
        self.analyzer = TriageAnalyzer(
            config.llm,
            self.run_log,
            RetryPolicy(
                max_attempts=config.llm.max_retries,
                base_delay=config.retry.base_delay,
                max_delay=config.retry.max_delay,
                sleep=sleep,
            ),
            client=llm_client,
            sleep=sleep,
        )
        self.workflow = TriageWorkflow(
            self.store,
            self.retriever,
            self.analyzer,
            self.run_log,
            confidence_threshold=triage.confidence_threshold,
        )
        self.webhooks = WebhookDispatcher(
            config.webhook,
            self.store,
            self.run_log,
            retry,
            client_factory=http_client_factory,
        )
        self.mailer = OutboxMailer(
            config.email,
            self.store,
            self.run_log,
            retry,
            transport=email_transport or build_transport(config.email, sleep=sleep),
        )

    def __enter__(self) -> "SupportDesk":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def close(self) -> None:
        """Wait for queued webhook deliveries and release the executor."""
        self.webhooks.shutdown(wait=True)

    # ------------------------------------------------------------------
    # Intake
    # ------------------------------------------------------------------

    def submit_ticket(
        self,
        client_address: str,
        customer_email: str,
        customer_name: str,
        subject: str,
        message: str,
        product_area: str = "",
        attachment: Optional[str] = None,
        honeypot: Optional[str] = None,
    ) -> SubmissionResult:
        """
        Accept an inbound support message.

        The message is attached to an existing ticket when it duplicates
        recent traffic from the same customer; otherwise a ticket is created
        and triaged straight away.

        Args:
            client_address: Identity used for rate limiting (e.g. client IP).
            honeypot: Hidden form field; any value means a bot filled the form.

        Returns:
            SubmissionResult describing where the message went.

        Raises:
            RateLimitExceeded: If the client is over its allowance.
            pydantic.ValidationError: If the form fields are invalid.
        """
        if honeypot:
            logger.warning("Honeypot triggered. Rejecting submission.")
            return SubmissionResult(rejected=True)

        self.rate_limiter.enforce(client_address or "unknown")

        submission = TicketSubmission(
            customer_email=customer_email,
            customer_name=customer_name,
            subject=subject,
            message=message,
            product_area=product_area,
            attachment=attachment,
        )
        fingerprint = compute_fingerprint(submission.message)

        existing_id = self.dedupe.find_duplicate(submission.customer_email, submission.message)
        if existing_id:
            logger.info(f"Deduped submission to ticket {existing_id}")
            self.store.add_message(
                TicketMessage(
                    ticket_id=existing_id,
                    sender_type="customer",
                    body=submission.message,
                    attachment=submission.attachment,
                    fingerprint=fingerprint,
                )
            )
            existing = self.store.get_ticket(existing_id)
            return SubmissionResult(
                ticket_id=existing_id,
                status=existing.status if existing else None,
                deduplicated=True,
            )

        ticket = self.store.create_ticket(
            Ticket(
                customer_email=submission.customer_email,
                customer_name=submission.customer_name,
                subject=submission.subject,
                product_area=submission.product_area,
            )
        )
        self.store.add_message(
            TicketMessage(
                ticket_id=ticket.id,
                sender_type="customer",
                body=submission.message,
                attachment=submission.attachment,
                fingerprint=fingerprint,
            )
        )
        logger.info(f"Created ticket {ticket.id} for {submission.customer_email}")
        self.webhooks.dispatch("ticket.created", ticket.id)

        self._run_workflow(ticket.id)
        current = self.store.get_ticket(ticket.id)
        return SubmissionResult(ticket_id=ticket.id, status=current.status if current else None)

    # ------------------------------------------------------------------
    # Operator actions
    # ------------------------------------------------------------------

    def approve_ticket(self, ticket_id: str, actor: str = "admin") -> Ticket:
        """
        Send the suggested reply to the customer and mark the ticket replied.

        Raises:
            DeskError: If the ticket does not exist or has no suggested reply.
            EmailSendError: If the reply could not be sent.
        """
        ticket = self._require_ticket(ticket_id)
        if not ticket.ai_suggested_reply:
            raise DeskError(f"Ticket {ticket_id} has no suggested reply")

        self.mailer.send(
            to=ticket.customer_email,
            subject=f"Re: {ticket.subject}",
            body=ticket.ai_suggested_reply,
            ticket_id=ticket.id,
        )
        updated = self.store.update_ticket(ticket_id, status="replied")
        self._audit(ticket_id, "approve", actor, "Approved via desk")

        self.webhooks.dispatch("ticket.approved", ticket_id)
        return updated

    def escalate_ticket(self, ticket_id: str, actor: str = "admin") -> Ticket:
        """Hand the ticket to a human and notify the webhook."""
        self._require_ticket(ticket_id)
        updated = self.store.update_ticket(ticket_id, status="escalated")
        self._audit(ticket_id, "escalate", actor, "Escalated via desk")

        self.webhooks.dispatch("ticket.escalated", ticket_id)
        return updated

    def save_draft(self, ticket_id: str, draft: str, actor: str = "admin") -> Ticket:
        """Replace the suggested reply with an operator-edited draft."""
        self._require_ticket(ticket_id)
        updated = self.store.update_ticket(ticket_id, ai_suggested_reply=draft)
        self._audit(ticket_id, "save_draft", actor, "Draft edited")
        return updated

    def retry_pipeline(self, ticket_id: str, actor: str = "admin") -> Ticket:
        """Re-run the full triage workflow for a ticket."""
        self._require_ticket(ticket_id)
        self._audit(ticket_id, "retry", actor, "Pipeline retried")
        self._run_workflow(ticket_id)
        return self._require_ticket(ticket_id)

    # ------------------------------------------------------------------
    # Knowledge base
    # ------------------------------------------------------------------

    def add_kb_document(self, title: str, body: str, tags: Optional[str] = None) -> KBDocument:
        """
        Validate and store a knowledge base article.

        Raises:
            pydantic.ValidationError: If title or body are too short.
        """
        submission = KBSubmission(title=title, body=body, tags=tags)
        return self.store.add_kb_document(KBDocument(**submission.model_dump()))

    def load_kb(self, path: Path) -> int:
        """Load articles from a YAML file; returns the number loaded."""
        documents = load_kb_documents(path)
        for document in documents:
            self.store.add_kb_document(document)
        return len(documents)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _run_workflow(self, ticket_id: str) -> None:
        if self.workflow.run(ticket_id) is None:
            self.webhooks.dispatch("ticket.failed", ticket_id)

    def _require_ticket(self, ticket_id: str) -> Ticket:
        ticket = self.store.get_ticket(ticket_id)
        if ticket is None:
            raise DeskError(f"Ticket {ticket_id} not found")
        return ticket

    def _audit(self, ticket_id: str, action: AuditAction, actor: str, details: str) -> None:
        self.store.add_audit_event(
            AuditEvent(ticket_id=ticket_id, action=action, actor=actor, details=details)
        )

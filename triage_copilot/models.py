"""
Data models for the Support Triage Copilot.

Uses Pydantic for robust data validation and serialization.
Append-only records (messages, KB matches, run log, audit events) are
immutable; tickets and outbox entries are updated in place by the store.
"""

import uuid
from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator


TicketStatus = Literal[
    "new",
    "needs_approval",
    "needs_info",
    "replied",
    "waiting_on_customer",
    "escalated",
    "failed",
]
SenderType = Literal["customer", "agent", "system"]
LogStep = Literal["triage", "rag_search", "email_send", "dedupe", "webhook", "system"]
LogStatus = Literal["success", "failed", "pending"]
OutboxStatus = Literal["pending", "sent", "failed"]
AuditAction = Literal["approve", "escalate", "save_draft", "retry"]
TriageCategory = Literal["billing", "bug", "account", "feature_request", "how_to", "other"]
Urgency = Literal["low", "medium", "high"]
WebhookEvent = Literal["ticket.approved", "ticket.escalated", "ticket.created", "ticket.failed"]

TRIAGE_CATEGORIES: tuple[str, ...] = (
    "billing", "bug", "account", "feature_request", "how_to", "other",
)


def utcnow() -> datetime:
    """Timezone-aware current time used for every timestamp."""
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex


class Ticket(BaseModel):
    """
    A customer issue thread.

    Attributes:
        id: Unique identifier for the ticket
        customer_email: Email of the customer who opened it
        status: Lifecycle status
        ai_*: Fields written by the triage workflow
    """

    id: str = Field(default_factory=new_id, description="Unique ticket identifier")
    customer_email: str = Field(..., description="Customer's email")
    customer_name: str = Field(default="", description="Customer's display name")
    subject: str = Field(..., description="Ticket subject line")
    product_area: str = Field(default="", description="Product area chosen on intake")
    status: TicketStatus = Field(default="new", description="Lifecycle status")

    ai_category: Optional[str] = None
    ai_urgency: Optional[str] = None
    ai_summary: Optional[str] = None
    ai_suggested_reply: Optional[str] = None
    ai_follow_up_questions: list[str] = Field(default_factory=list)
    ai_confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    ai_token_usage: Optional[str] = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    model_config = {"frozen": False, "validate_assignment": True}

    def is_triaged(self) -> bool:
        """Check if the workflow has written a verdict onto the ticket."""
        return self.ai_confidence is not None


class TicketMessage(BaseModel):
    """One inbound or outbound utterance within a ticket."""

    id: str = Field(default_factory=new_id)
    ticket_id: str
    sender_type: SenderType = "customer"
    body: str
    attachment: Optional[str] = Field(default=None, description="Attachment reference")
    fingerprint: str = Field(default="", description="Normalized text hash")
    created_at: datetime = Field(default_factory=utcnow)

    model_config = {"frozen": True}


class KBDocument(BaseModel):
    """A knowledge base article."""

    id: str = Field(default_factory=new_id)
    title: str
    body: str
    tags: Optional[str] = Field(default=None, description="Comma-separated tags")

    model_config = {"frozen": True}

    def tag_list(self) -> list[str]:
        """Split the tag string into a list of trimmed, non-empty tags."""
        if not self.tags:
            return []
        return [tag.strip() for tag in self.tags.split(",") if tag.strip()]


class KBSnippet(BaseModel):
    """A ranked retrieval result."""

    id: str
    title: str
    excerpt: str
    score: int = Field(..., gt=0)

    model_config = {"frozen": True}


class KBMatch(BaseModel):
    """Snapshot of one retrieval result stored against a ticket."""

    id: str = Field(default_factory=new_id)
    ticket_id: str
    kb_document_id: str
    score: float
    title_snapshot: str
    excerpt_snapshot: str
    created_at: datetime = Field(default_factory=utcnow)

    model_config = {"frozen": True}


class RunLogEntry(BaseModel):
    """Audit record of one pipeline step execution."""

    id: str = Field(default_factory=new_id)
    ticket_id: Optional[str] = None
    step: LogStep
    status: LogStatus
    started_at: datetime
    finished_at: Optional[datetime] = None
    latency_ms: Optional[int] = Field(default=None, ge=0)
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    payload_preview: str = Field(default="", max_length=200)

    model_config = {"frozen": True}


class EmailOutboxEntry(BaseModel):
    """Durable staging record for one outbound email."""

    id: str = Field(default_factory=new_id)
    to: str
    subject: str
    body: str
    status: OutboxStatus = "pending"
    error: Optional[str] = None
    sent_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)

    model_config = {"frozen": False, "validate_assignment": True}


class AuditEvent(BaseModel):
    """An action taken on a ticket by a human operator."""

    id: str = Field(default_factory=new_id)
    ticket_id: str
    action: AuditAction
    actor: str = "admin"
    details: str = ""
    created_at: datetime = Field(default_factory=utcnow)

    model_config = {"frozen": True}


class TriageVerdict(BaseModel):
    """
    Validated result of the analysis step.

    The backend response is re-validated into this model, so a reply that
    violates any bound here counts as a failed call.
    """

    summary: str = Field(..., max_length=400, description="Issue summary")
    category: TriageCategory
    urgency: Urgency
    suggested_reply: str
    follow_up_questions: list[str] = Field(..., min_length=2, max_length=3)
    confidence: float = Field(..., ge=0.0, le=1.0)
    token_usage: str = Field(default="", description="Opaque usage descriptor")

    model_config = {"frozen": True}

    @field_validator("category", "urgency", mode="before")
    @classmethod
    def normalize_label(cls, v):
        """Accept labels with stray casing or whitespace."""
        if isinstance(v, str):
            return v.strip().lower()
        return v


class WebhookPayload(BaseModel):
    """JSON body posted to the webhook endpoint."""

    event: WebhookEvent
    ticket_id: str
    ticket_subject: str
    customer_email: str
    status: str
    timestamp: str
    ai_category: Optional[str] = None
    ai_urgency: Optional[str] = None
    ai_confidence: Optional[float] = None


class TicketSubmission(BaseModel):
    """Inbound support form as submitted by a customer."""

    customer_email: EmailStr
    customer_name: str = Field(..., min_length=2)
    subject: str = Field(..., min_length=5)
    message: str = Field(..., min_length=10)
    product_area: str = ""
    attachment: Optional[str] = None

    @field_validator("customer_name", "subject", "message", mode="before")
    @classmethod
    def strip_text(cls, v):
        if isinstance(v, str):
            return v.strip()
        return v


class KBSubmission(BaseModel):
    """Knowledge base article submitted by an operator."""

    title: str = Field(..., min_length=5)
    body: str = Field(..., min_length=20)
    tags: Optional[str] = None

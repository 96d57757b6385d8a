"""
LLM-based ticket analysis for the Support Triage Copilot.

Uses an OpenAI-compatible API with structured output to turn a ticket and
its knowledge base context into a triage verdict: summary, category,
urgency, suggested reply, follow-up questions and confidence.

Without an API key a fixed mock verdict is returned, so the whole pipeline
runs without external services.
"""

import logging
import time
from typing import Callable, Optional

from openai import OpenAI
from pydantic import BaseModel, Field

from .config import LLMConfig
from .models import TriageCategory, TriageVerdict, Urgency, utcnow
from .retry import RetryPolicy
from .run_log import RunLogRecorder


logger = logging.getLogger(__name__)


class AnalysisError(Exception):
    """Error during ticket analysis."""
    pass


class LLMTriageResponse(BaseModel):
    """Structured output schema requested from the LLM."""

    summary: str = Field(
        description="Summary of the customer's issue in at most 60 words"
    )
    category: TriageCategory = Field(
        description="The category that best matches the ticket"
    )
    urgency: Urgency = Field(
        description="How urgently the ticket needs a human response"
    )
    suggested_reply: str = Field(
        description="Polite, concise reply to send to the customer"
    )
    follow_up_questions: list[str] = Field(
        description="Two or three questions that would clarify the issue"
    )
    confidence: float = Field(
        ge=0.0,
        le=1.0,
        description="Confidence score from 0 to 1"
    )


MOCK_VERDICT = TriageVerdict(
    summary="Customer is asking about a feature.",
    category="feature_request",
    urgency="low",
    suggested_reply=(
        "Thank you for reaching out. We have logged your request. "
        "Based on our documentation, this feature is currently in beta."
    ),
    follow_up_questions=["Can you provide a use case?", "How critical is this?"],
    confidence=0.95,
    token_usage="mock-usage",
)


SYSTEM_PROMPT = """You are a support triage assistant. You read one customer support ticket and produce a structured triage verdict for the support team.

## INSTRUCTIONS:

1. **Summary**: Summarize the customer's issue in at most 60 words.

2. **Category**: Choose exactly one of:
   - billing: invoices, charges, refunds, plans and subscriptions
   - bug: something in the product is broken or behaves unexpectedly
   - account: login, password, access, profile and security settings
   - feature_request: the customer asks for something the product does not do
   - how_to: the customer asks how to use an existing feature
   - other: anything that fits none of the above

3. **Urgency**:
   - high: customer is blocked, losing money or data, or security is at risk
   - medium: degraded experience with a workaround
   - low: questions, requests and cosmetic issues

4. **Suggested Reply**: Draft a polite, helpful and concise reply.
   CRITICAL: If the provided Knowledge Base Articles are relevant, you MUST cite them in the reply using their exact titles (e.g. "Sources: [Title]").
   Never invent articles that were not provided.

5. **Follow-up Questions**: Write 2-3 questions that would clarify the issue.

6. **Confidence Scoring**:
   - 0.9-1.0: The issue is clear and the reply fully answers it
   - 0.7-0.9: The issue is clear, the reply needs minor interpretation
   - 0.5-0.7: The issue is ambiguous, more information is likely needed
   - <0.5: You cannot tell what the customer needs"""


def build_user_prompt(subject: str, message: str, kb_context: str = "") -> str:
    """
    Build the user prompt for analysis.

    The knowledge base context is embedded exactly as given so the model
    can quote article titles verbatim.

    Args:
        subject: Ticket subject.
        message: Customer message body.
        kb_context: Formatted knowledge base snippets, or "".

    Returns:
        Formatted prompt string.
    """
    return f"""## TICKET TO TRIAGE:

**Ticket Subject**: {subject}
**Ticket Message**: {message}

---

## Relevant Knowledge Base Articles:

{kb_context or "None"}

---

Analyze this ticket and provide the triage verdict."""


class TriageAnalyzer:
    """
    Produces triage verdicts with the configured LLM backend.

    Every call is retried under the retry policy. Only the outcome of the
    whole call reaches the run log: intermediate failures are reported
    through the Python logger only.
    """

    def __init__(
        self,
        config: LLMConfig,
        run_log: RunLogRecorder,
        retry_policy: Optional[RetryPolicy] = None,
        client: Optional[OpenAI] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the analyzer.

        Args:
            config: LLM configuration.
            run_log: Recorder for triage run log entries.
            retry_policy: Retry schedule for backend calls.
            client: Pre-built OpenAI client (built from config if omitted).
            sleep: Function used for the mock backend's simulated delay.
        """
        self._config = config
        self._run_log = run_log
        self._retry = retry_policy or RetryPolicy(max_attempts=config.max_retries)
        self._sleep = sleep
        self._client = client

        if self._client is None and not config.use_mock:
            client_kwargs = {
                "api_key": config.api_key,
                # Retries are handled by the retry policy
                "max_retries": 0,
            }
            if config.api_base_url:
                client_kwargs["base_url"] = config.api_base_url
            self._client = OpenAI(**client_kwargs)

        if self.uses_mock:
            logger.info("No LLM API key configured, using mock analyzer")
        else:
            logger.info(f"Initialized analyzer with model: {config.model}")

    @property
    def uses_mock(self) -> bool:
        return self._config.use_mock and self._client is None

    def analyze(
        self,
        ticket_id: str,
        subject: str,
        message: str,
        kb_context: str = "",
    ) -> TriageVerdict:
        """
        Analyze a single ticket.

        Args:
            ticket_id: Ticket the run log entry is recorded against.
            subject: Ticket subject.
            message: Customer message body.
            kb_context: Formatted knowledge base snippets, passed through unmodified.

        Returns:
            Validated TriageVerdict.

        Raises:
            AnalysisError: If every attempt failed.
        """
        started_at = utcnow()

        if self.uses_mock:
            self._sleep(self._config.mock_delay)
            verdict = MOCK_VERDICT
        else:
            try:
                verdict = self._retry.call(self._request_verdict, subject, message, kb_context)
            except Exception as e:
                logger.error(f"Analysis failed for ticket {ticket_id}: {e}")
                self._run_log.record(
                    step="triage",
                    status="failed",
                    started_at=started_at,
                    finished_at=utcnow(),
                    ticket_id=ticket_id,
                    error_code=str(getattr(e, "code", None) or type(e).__name__),
                    error_message=str(e),
                    payload={"attempts": self._retry.max_attempts},
                )
                raise AnalysisError(f"Failed to analyze ticket {ticket_id}: {e}") from e

        self._run_log.record(
            step="triage",
            status="success",
            started_at=started_at,
            finished_at=utcnow(),
            ticket_id=ticket_id,
            payload=verdict.model_dump(),
        )

        logger.debug(
            f"Analyzed {ticket_id}: {verdict.category} / {verdict.urgency} "
            f"(confidence: {verdict.confidence:.2f})"
        )
        return verdict

    def _request_verdict(self, subject: str, message: str, kb_context: str) -> TriageVerdict:
        """One backend call; any exception here counts as a failed attempt."""
        response = self._client.chat.completions.parse(
            model=self._config.model,
            temperature=self._config.temperature,
            max_tokens=self._config.max_tokens,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": build_user_prompt(subject, message, kb_context)},
            ],
            response_format=LLMTriageResponse,
        )

        parsed = response.choices[0].message.parsed
        if not parsed:
            raise AnalysisError("Empty response from language model")

        usage = getattr(response, "usage", None)
        total_tokens = getattr(usage, "total_tokens", 0) if usage else 0

        # Re-validate against the stricter verdict schema
        return TriageVerdict(
            **parsed.model_dump(),
            token_usage=f"{total_tokens or 0} tokens",
        )

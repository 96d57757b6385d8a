"""
Outbound webhook notifications for ticket events.

Deliveries run on a background executor so the action that triggered them
returns immediately. A delivery is retried under the retry policy and its
final outcome is written to the run log; it never raises to the caller and
never changes the ticket.
"""

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Optional

import httpx

from .config import WebhookConfig
from .models import Ticket, WebhookEvent, WebhookPayload, utcnow
from .retry import RetryPolicy
from .run_log import RunLogRecorder, best_effort
from .store import TriageStore


logger = logging.getLogger(__name__)


class WebhookDeliveryError(Exception):
    """The endpoint answered with a non-2xx status."""

    def __init__(self, status_code: int):
        super().__init__(f"Webhook failed with status: {status_code}")
        self.status_code = status_code


def build_webhook_payload(event: WebhookEvent, ticket: Ticket) -> WebhookPayload:
    """Project the ticket's current state into the webhook body."""
    return WebhookPayload(
        event=event,
        ticket_id=ticket.id,
        ticket_subject=ticket.subject,
        customer_email=ticket.customer_email,
        status=ticket.status,
        timestamp=utcnow().isoformat(),
        ai_category=ticket.ai_category,
        ai_urgency=ticket.ai_urgency,
        ai_confidence=ticket.ai_confidence,
    )


class WebhookDispatcher:
    """
    Delivers ticket events to the configured HTTP endpoint.

    Without a configured URL every call is a no-op: no request is made and
    nothing is logged.
    """

    def __init__(
        self,
        config: WebhookConfig,
        store: TriageStore,
        run_log: RunLogRecorder,
        retry_policy: Optional[RetryPolicy] = None,
        executor: Optional[ThreadPoolExecutor] = None,
        client_factory: Callable[..., httpx.Client] = httpx.Client,
    ):
        """
        Initialize the dispatcher.

        Args:
            config: Webhook configuration with endpoint and timeout.
            store: Store the ticket is re-read from at delivery time.
            run_log: Recorder for webhook run log entries.
            retry_policy: Retry schedule for delivery attempts.
            executor: Executor for background deliveries (created lazily).
            client_factory: Factory for the HTTP client.
        """
        self._config = config
        self._store = store
        self._run_log = run_log
        self._retry = retry_policy or RetryPolicy()
        self._executor = executor
        self._client_factory = client_factory

    @property
    def enabled(self) -> bool:
        return self._config.enabled

    def dispatch(self, event: WebhookEvent, ticket_id: str) -> Optional[Future]:
        """
        Deliver an event in the background.

        Returns:
            Future resolving to the delivery outcome, or None when no
            endpoint is configured.
        """
        if not self.enabled:
            return None

        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self._config.max_workers,
                thread_name_prefix="webhook",
            )

        logger.debug(f"Queued webhook {event} for ticket {ticket_id}")
        return self._executor.submit(self._deliver_in_background, event, ticket_id)

    def _deliver_in_background(self, event: WebhookEvent, ticket_id: str) -> bool:
        with best_effort(f"webhook {event} for ticket {ticket_id}"):
            return self.deliver(event, ticket_id)
        return False

    def deliver(self, event: WebhookEvent, ticket_id: str) -> bool:
        """
        Deliver an event synchronously.

        The ticket is fetched at this point, so the payload reflects the
        latest committed state rather than the caller's copy.

        Returns:
            True if the endpoint accepted the event.
        """
        if not self.enabled:
            return False

        ticket = self._store.get_ticket(ticket_id)
        if ticket is None:
            logger.error(f"Webhook: ticket {ticket_id} not found")
            return False

        payload = build_webhook_payload(event, ticket).model_dump()
        started_at = utcnow()
        attempts = 0

        try:
            with self._client_factory(timeout=self._config.timeout) as client:
                for attempt in self._retry.retrying(f"webhook {event}"):
                    with attempt:
                        attempts = attempt.retry_state.attempt_number
                        self._post(client, event, payload, attempts)
        except Exception as e:
            logger.error(f"Webhook {event} for ticket {ticket_id} failed: {e}")
            self._run_log.record(
                step="webhook",
                status="failed",
                started_at=started_at,
                finished_at=utcnow(),
                ticket_id=ticket_id,
                error_code="WEBHOOK_FAILED",
                error_message=str(e),
                payload={"event": event, "attempts": attempts, "url": self._config.url},
            )
            return False

        self._run_log.record(
            step="webhook",
            status="success",
            started_at=started_at,
            finished_at=utcnow(),
            ticket_id=ticket_id,
            payload={"event": event, "attempts": attempts, "url": self._config.url},
        )
        logger.info(f"Webhook {event} delivered for ticket {ticket_id}")
        return True

    def _post(
        self,
        client: httpx.Client,
        event: WebhookEvent,
        payload: dict,
        attempt_number: int,
    ) -> None:
        response = client.post(
            self._config.url,
            json=payload,
            headers={
                "Content-Type": "application/json",
                "User-Agent": self._config.user_agent,
                "X-Webhook-Event": event,
                "X-Webhook-Delivery-Attempt": str(attempt_number),
            },
        )
        if not response.is_success:
            raise WebhookDeliveryError(response.status_code)

    def shutdown(self, wait: bool = True) -> None:
        """Stop the background executor, draining queued deliveries if `wait`."""
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
            self._executor = None

"""
Email outbox for the Support Triage Copilot.

Every reply is written to the outbox as `pending` before the transport is
called and updated to `sent` or `failed` afterwards, so an interrupted send
leaves a visible record. Two transports are available: a simulated one
(default, no network) and SMTP with STARTTLS.
"""

import logging
import smtplib
import time
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Callable, Optional, Protocol

from .config import EmailConfig
from .models import EmailOutboxEntry, utcnow
from .retry import RetryPolicy
from .run_log import RunLogRecorder
from .store import TriageStore


logger = logging.getLogger(__name__)


class EmailSendError(Exception):
    """Error during email sending."""
    pass


class EmailTransport(Protocol):
    """Delivers one plain-text email or raises."""

    def send(self, to_email: str, subject: str, body: str) -> None: ...


class SimulatedTransport:
    """
    Transport that only waits, for running without a mail server.

    Set SIMULATE_EMAIL_FAILURE=true to exercise the failure path.
    """

    def __init__(self, config: EmailConfig, sleep: Callable[[float], None] = time.sleep):
        self._config = config
        self._sleep = sleep

    def send(self, to_email: str, subject: str, body: str) -> None:
        self._sleep(self._config.send_delay)
        if self._config.simulate_failure:
            raise EmailSendError("Simulated email provider failure")
        logger.debug(f"Simulated email to {to_email}: {subject}")


class SMTPTransport:
    """
    SMTP-based transport with TLS encryption.

    Security:
        - Uses STARTTLS for encryption
        - Credentials loaded from environment variables
    """

    def __init__(self, config: EmailConfig):
        self._config = config

    def send(self, to_email: str, subject: str, body: str) -> None:
        """
        Send email via SMTP with TLS.

        Raises:
            EmailSendError: If sending fails.
        """
        logger.info(f"Sending email to {to_email} via SMTP")

        msg = MIMEMultipart()
        msg["From"] = f"{self._config.from_name} <{self._config.from_email}>"
        msg["To"] = to_email
        msg["Subject"] = subject
        msg.attach(MIMEText(body, "plain", "utf-8"))

        try:
            with smtplib.SMTP(self._config.smtp_host, self._config.smtp_port) as server:
                if self._config.smtp_use_tls:
                    server.starttls()
                server.login(self._config.smtp_username, self._config.smtp_password)
                server.send_message(msg)
        except smtplib.SMTPAuthenticationError as e:
            logger.error(f"SMTP authentication failed: {e}")
            raise EmailSendError(
                "SMTP authentication failed. Check SMTP_USERNAME and SMTP_PASSWORD."
            ) from e
        except smtplib.SMTPException as e:
            logger.error(f"SMTP error: {e}")
            raise EmailSendError(f"SMTP error: {e}") from e

        logger.info(f"Email sent successfully to {to_email}")


def build_transport(
    config: EmailConfig,
    sleep: Callable[[float], None] = time.sleep,
) -> EmailTransport:
    """Select the transport named by EMAIL_TRANSPORT."""
    if config.transport == "smtp":
        return SMTPTransport(config)
    return SimulatedTransport(config, sleep=sleep)


class OutboxMailer:
    """Sends customer emails through the outbox."""

    def __init__(
        self,
        config: EmailConfig,
        store: TriageStore,
        run_log: RunLogRecorder,
        retry_policy: Optional[RetryPolicy] = None,
        transport: Optional[EmailTransport] = None,
    ):
        self._config = config
        self._store = store
        self._run_log = run_log
        self._retry = retry_policy or RetryPolicy()
        self._transport = transport or build_transport(config)

    def send(
        self,
        to: str,
        subject: str,
        body: str,
        ticket_id: Optional[str] = None,
    ) -> str:
        """
        Queue and send one email.

        Args:
            to: Recipient address.
            subject: Subject line.
            body: Plain-text body.
            ticket_id: Ticket the run log entry is recorded against.

        Returns:
            Id of the outbox entry.

        Raises:
            EmailSendError: If the transport kept failing.
        """
        started_at = utcnow()
        entry = self._store.create_outbox(EmailOutboxEntry(to=to, subject=subject, body=body))

        try:
            self._retry.call(self._transport.send, to, subject, body)
        except Exception as e:
            logger.error(f"Email send failed for outbox entry {entry.id}: {e}")
            self._store.update_outbox(entry.id, status="failed", error=str(e))
            self._run_log.record(
                step="email_send",
                status="failed",
                started_at=started_at,
                finished_at=utcnow(),
                ticket_id=ticket_id,
                error_code=type(e).__name__,
                error_message=str(e),
                payload={"email_id": entry.id, "to": to},
            )
            if isinstance(e, EmailSendError):
                raise
            raise EmailSendError(f"Failed to send email: {e}") from e

        self._store.update_outbox(entry.id, status="sent", sent_at=utcnow())
        self._run_log.record(
            step="email_send",
            status="success",
            started_at=started_at,
            finished_at=utcnow(),
            ticket_id=ticket_id,
            payload={"email_id": entry.id, "to": to},
        )
        return entry.id

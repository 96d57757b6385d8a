"""
Configuration module for the Support Triage Copilot.

Handles all configuration through environment variables with secure defaults.
Never stores sensitive data directly in code.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

from dotenv import load_dotenv


# Load environment variables from .env file
load_dotenv()


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class LLMConfig:
    """Configuration for the LLM backend (OpenAI compatible)."""

    # An empty key switches the analyzer to its deterministic mock
    api_key: str = field(
        default_factory=lambda: os.getenv("OPENAI_API_KEY", "")
    )
    api_base_url: Optional[str] = field(
        default_factory=lambda: os.getenv("OPENAI_API_BASE", None)
    )
    model: str = field(
        default_factory=lambda: os.getenv("LLM_MODEL", "gpt-4o-mini")
    )
    temperature: float = field(
        default_factory=lambda: float(os.getenv("LLM_TEMPERATURE", "0.2"))
    )
    max_tokens: int = field(
        default_factory=lambda: int(os.getenv("LLM_MAX_TOKENS", "800"))
    )
    max_retries: int = field(
        default_factory=lambda: int(os.getenv("LLM_MAX_RETRIES", "3"))
    )

    # Simulated latency of the mock backend, in seconds
    mock_delay: float = field(
        default_factory=lambda: float(os.getenv("LLM_MOCK_DELAY", "0.5"))
    )

    @property
    def use_mock(self) -> bool:
        """True when no usable API key is configured."""
        return not self.api_key or self.api_key == "mock-key"


@dataclass(frozen=True)
class RetryConfig:
    """Retry schedule shared by retrieval, analysis, webhook and email."""

    max_attempts: int = field(
        default_factory=lambda: int(os.getenv("RETRY_MAX_ATTEMPTS", "3"))
    )
    base_delay: float = field(
        default_factory=lambda: float(os.getenv("RETRY_BASE_DELAY", "1.0"))
    )
    max_delay: float = field(
        default_factory=lambda: float(os.getenv("RETRY_MAX_DELAY", "4.0"))
    )


@dataclass(frozen=True)
class WebhookConfig:
    """Configuration for outbound event webhooks."""

    url: str = field(
        default_factory=lambda: os.getenv("WEBHOOK_URL", "")
    )

    # Per-attempt request timeout in seconds
    timeout: float = field(
        default_factory=lambda: float(os.getenv("WEBHOOK_TIMEOUT", "10"))
    )
    max_workers: int = field(
        default_factory=lambda: int(os.getenv("WEBHOOK_WORKERS", "2"))
    )
    user_agent: str = field(
        default_factory=lambda: os.getenv("WEBHOOK_USER_AGENT", "SupportTriageCopilot/1.0")
    )

    @property
    def enabled(self) -> bool:
        """Check if a webhook endpoint is configured."""
        return bool(self.url.strip())


@dataclass(frozen=True)
class EmailConfig:
    """
    Configuration for customer replies.

    Every send goes through the outbox. The transport is either the
    simulated one (default) or SMTP with STARTTLS.
    """

    transport: str = field(
        default_factory=lambda: os.getenv("EMAIL_TRANSPORT", "simulated").lower()
    )
    send_delay: float = field(
        default_factory=lambda: float(os.getenv("EMAIL_SEND_DELAY", "2.0"))
    )
    simulate_failure: bool = field(
        default_factory=lambda: _env_flag("SIMULATE_EMAIL_FAILURE")
    )

    # SMTP settings
    smtp_host: str = field(
        default_factory=lambda: os.getenv("SMTP_HOST", "smtp.gmail.com")
    )
    smtp_port: int = field(
        default_factory=lambda: int(os.getenv("SMTP_PORT", "587"))
    )
    smtp_username: str = field(
        default_factory=lambda: os.getenv("SMTP_USERNAME", "")
    )
    smtp_password: str = field(
        default_factory=lambda: os.getenv("SMTP_PASSWORD", "")
    )
    smtp_use_tls: bool = field(
        default_factory=lambda: _env_flag("SMTP_USE_TLS", "true")
    )

    # Sender settings
    from_email: str = field(
        default_factory=lambda: os.getenv("FROM_EMAIL", "support@example.com")
    )
    from_name: str = field(
        default_factory=lambda: os.getenv("FROM_NAME", "Support Team")
    )


@dataclass(frozen=True)
class TriageConfig:
    """Thresholds and windows for the triage pipeline."""

    dedupe_window_minutes: int = field(
        default_factory=lambda: int(os.getenv("DEDUPE_WINDOW_MINUTES", "10"))
    )
    dedupe_similarity_threshold: float = field(
        default_factory=lambda: float(os.getenv("DEDUPE_SIMILARITY_THRESHOLD", "0.75"))
    )

    # Verdicts below this confidence go to needs_info instead of needs_approval
    confidence_threshold: float = field(
        default_factory=lambda: float(os.getenv("CONFIDENCE_THRESHOLD", "0.7"))
    )
    kb_top_k: int = field(
        default_factory=lambda: int(os.getenv("KB_TOP_K", "3"))
    )
    kb_excerpt_length: int = field(
        default_factory=lambda: int(os.getenv("KB_EXCERPT_LENGTH", "150"))
    )
    rate_limit_requests: int = field(
        default_factory=lambda: int(os.getenv("RATE_LIMIT_REQUESTS", "5"))
    )
    rate_limit_window_seconds: float = field(
        default_factory=lambda: float(os.getenv("RATE_LIMIT_WINDOW_SECONDS", "60"))
    )


@dataclass(frozen=True)
class OutputConfig:
    """Configuration for output files."""

    output_dir: Path = field(
        default_factory=lambda: Path(os.getenv("OUTPUT_DIR", "./output"))
    )
    report_filename: str = field(
        default_factory=lambda: os.getenv("REPORT_FILENAME", "triage_report.xlsx")
    )

    @property
    def report_path(self) -> Path:
        """Get full path to the report file."""
        return self.output_dir / self.report_filename


@dataclass(frozen=True)
class AppConfig:
    """Main application configuration aggregating all config sections."""

    llm: LLMConfig = field(default_factory=LLMConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    webhook: WebhookConfig = field(default_factory=WebhookConfig)
    email: EmailConfig = field(default_factory=EmailConfig)
    triage: TriageConfig = field(default_factory=TriageConfig)
    output: OutputConfig = field(default_factory=OutputConfig)

    # Logging level
    log_level: str = field(
        default_factory=lambda: os.getenv("LOG_LEVEL", "INFO")
    )

    # YAML file with knowledge base articles loaded at startup
    kb_seed_path: Optional[Path] = field(
        default_factory=lambda: (
            Path(os.environ["KB_SEED_PATH"]) if os.getenv("KB_SEED_PATH") else None
        )
    )

    def validate(self) -> list[str]:
        """
        Validate configuration and return list of errors.

        Returns:
            List of validation error messages (empty if valid).
        """
        errors = []

        if self.webhook.enabled:
            scheme = urlparse(self.webhook.url).scheme
            if scheme not in ("http", "https"):
                errors.append("WEBHOOK_URL must be an http(s) URL")
        if self.webhook.timeout <= 0:
            errors.append("WEBHOOK_TIMEOUT must be positive")

        if self.email.transport not in ("simulated", "smtp"):
            errors.append("EMAIL_TRANSPORT must be 'simulated' or 'smtp'")
        if self.email.transport == "smtp":
            if not self.email.smtp_username:
                errors.append("SMTP_USERNAME is required for the smtp transport")
            if not self.email.smtp_password:
                errors.append("SMTP_PASSWORD is required for the smtp transport")
            if not self.email.from_email:
                errors.append("FROM_EMAIL is required for the smtp transport")

        if self.retry.max_attempts < 1:
            errors.append("RETRY_MAX_ATTEMPTS must be at least 1")

        if not 0.0 <= self.triage.confidence_threshold <= 1.0:
            errors.append("CONFIDENCE_THRESHOLD must be between 0 and 1")
        if not 0.0 <= self.triage.dedupe_similarity_threshold <= 1.0:
            errors.append("DEDUPE_SIMILARITY_THRESHOLD must be between 0 and 1")
        if self.triage.rate_limit_requests < 1:
            errors.append("RATE_LIMIT_REQUESTS must be at least 1")

        if self.kb_seed_path and not self.kb_seed_path.exists():
            errors.append(f"KB_SEED_PATH does not exist: {self.kb_seed_path}")

        return errors


def get_config() -> AppConfig:
    """
    Get application configuration.

    Returns:
        AppConfig instance with all settings loaded from environment.
    """
    return AppConfig()

"""Tests for configuration module."""

import os
from pathlib import Path
from unittest.mock import patch

from triage_copilot.config import (
    AppConfig,
    EmailConfig,
    LLMConfig,
    OutputConfig,
    RetryConfig,
    TriageConfig,
    WebhookConfig,
    get_config,
)


class TestLLMConfig:
    """Tests for LLMConfig."""

    def test_default_model(self):
        """Test default model is set."""
        with patch.dict(os.environ, {}, clear=True):
            config = LLMConfig()
            assert config.model == "gpt-4o-mini"
            assert config.max_retries == 3

    def test_mock_without_key(self):
        """Test an empty API key selects the mock backend."""
        assert LLMConfig(api_key="").use_mock is True
        assert LLMConfig(api_key="mock-key").use_mock is True
        assert LLMConfig(api_key="sk-test").use_mock is False

    def test_env_override(self):
        """Test environment variable override."""
        with patch.dict(os.environ, {"OPENAI_API_KEY": "sk-env", "LLM_MOCK_DELAY": "0"}):
            config = LLMConfig()
            assert config.api_key == "sk-env"
            assert config.mock_delay == 0.0


class TestRetryConfig:
    """Tests for RetryConfig."""

    def test_default_schedule(self):
        """Test default retry settings match the 1s/2s/4s schedule."""
        with patch.dict(os.environ, {}, clear=True):
            config = RetryConfig()
            assert config.max_attempts == 3
            assert config.base_delay == 1.0
            assert config.max_delay == 4.0


class TestWebhookConfig:
    """Tests for WebhookConfig."""

    def test_disabled_by_default(self):
        """Test webhooks are off without a URL."""
        with patch.dict(os.environ, {}, clear=True):
            config = WebhookConfig()
            assert config.enabled is False
            assert config.timeout == 10.0

    def test_enabled_with_url(self):
        """Test webhooks are on with a URL."""
        config = WebhookConfig(url="https://hooks.example.com/triage")
        assert config.enabled is True

    def test_whitespace_url_is_disabled(self):
        """Test a blank URL does not enable webhooks."""
        assert WebhookConfig(url="   ").enabled is False


class TestEmailConfig:
    """Tests for EmailConfig."""

    def test_defaults(self):
        """Test default transport and SMTP settings."""
        with patch.dict(os.environ, {}, clear=True):
            config = EmailConfig()
            assert config.transport == "simulated"
            assert config.simulate_failure is False
            assert config.smtp_port == 587
            assert config.smtp_use_tls is True

    def test_simulate_failure_flag(self):
        """Test the failure toggle is read from the environment."""
        with patch.dict(os.environ, {"SIMULATE_EMAIL_FAILURE": "true"}):
            assert EmailConfig().simulate_failure is True


class TestTriageConfig:
    """Tests for TriageConfig."""

    def test_defaults(self):
        """Test pipeline thresholds."""
        with patch.dict(os.environ, {}, clear=True):
            config = TriageConfig()
            assert config.dedupe_window_minutes == 10
            assert config.dedupe_similarity_threshold == 0.75
            assert config.confidence_threshold == 0.7
            assert config.kb_top_k == 3
            assert config.rate_limit_requests == 5
            assert config.rate_limit_window_seconds == 60.0


class TestOutputConfig:
    """Tests for OutputConfig."""

    def test_report_path(self):
        """Test report path property."""
        config = OutputConfig(output_dir=Path("/tmp/out"), report_filename="r.xlsx")
        assert config.report_path == Path("/tmp/out/r.xlsx")


class TestAppConfig:
    """Tests for AppConfig."""

    def test_default_config_is_valid(self):
        """Test validation passes with defaults."""
        with patch.dict(os.environ, {}, clear=True):
            assert AppConfig().validate() == []

    def test_validate_webhook_scheme(self):
        """Test validation rejects non-http webhook URLs."""
        config = AppConfig(webhook=WebhookConfig(url="ftp://example.com"))
        errors = config.validate()
        assert any("WEBHOOK_URL" in e for e in errors)

    def test_validate_smtp_credentials(self):
        """Test SMTP transport requires credentials."""
        config = AppConfig(
            email=EmailConfig(transport="smtp", smtp_username="", smtp_password=""),
        )
        errors = config.validate()
        assert any("SMTP_USERNAME" in e for e in errors)
        assert any("SMTP_PASSWORD" in e for e in errors)

    def test_validate_unknown_transport(self):
        """Test validation catches unknown transports."""
        config = AppConfig(email=EmailConfig(transport="pigeon"))
        assert any("EMAIL_TRANSPORT" in e for e in config.validate())

    def test_validate_threshold_bounds(self):
        """Test thresholds must lie in [0, 1]."""
        config = AppConfig(triage=TriageConfig(confidence_threshold=1.5))
        assert any("CONFIDENCE_THRESHOLD" in e for e in config.validate())

    def test_validate_missing_kb_seed(self):
        """Test a missing KB seed file is reported."""
        config = AppConfig(kb_seed_path=Path("/nonexistent/kb.yaml"))
        assert any("KB_SEED_PATH" in e for e in config.validate())


class TestGetConfig:
    """Tests for get_config function."""

    def test_returns_app_config(self):
        """Test get_config returns AppConfig instance."""
        config = get_config()
        assert isinstance(config, AppConfig)

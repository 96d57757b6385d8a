"""Tests for the run log recorder."""

from datetime import timedelta
from unittest.mock import Mock

from triage_copilot.models import utcnow
from triage_copilot.run_log import (
    PREVIEW_MAX_LENGTH,
    REDACTED,
    RunLogRecorder,
    best_effort,
    build_payload_preview,
    compute_latency_ms,
)


# =============================================================================
# Payload Preview Tests
# =============================================================================

class TestBuildPayloadPreview:
    """Tests for payload preview serialization."""

    def test_none_payload(self):
        """Test missing payload gives an empty preview."""
        assert build_payload_preview(None) == ""

    def test_emails_redacted(self):
        """Test email addresses never reach the preview."""
        preview = build_payload_preview({"to": "dana.smith+support@example.co.uk", "n": 1})
        assert "example" not in preview
        assert REDACTED in preview

    def test_truncated(self):
        """Test previews are cut to the maximum length."""
        preview = build_payload_preview({"text": "x" * 1000})
        assert len(preview) == PREVIEW_MAX_LENGTH

    def test_redaction_before_truncation(self):
        """Test an address straddling the cut is still redacted."""
        prefix = "y" * (PREVIEW_MAX_LENGTH - 20)
        preview = build_payload_preview({"t": prefix + " someone@example.com"})
        assert "someone" not in preview

    def test_non_json_values_stringified(self):
        """Test values like datetimes are rendered with str()."""
        now = utcnow()
        assert str(now.year) in build_payload_preview({"at": now})

    def test_circular_payload(self):
        """Test unserializable payloads give a fixed marker."""
        payload: dict = {}
        payload["self"] = payload
        assert build_payload_preview(payload) == "Error stringifying payload"


class TestComputeLatency:
    """Tests for latency computation."""

    def test_no_finish(self):
        """Test latency is absent without a finish time."""
        assert compute_latency_ms(utcnow(), None) is None

    def test_milliseconds(self):
        """Test latency is expressed in milliseconds."""
        start = utcnow()
        assert compute_latency_ms(start, start + timedelta(seconds=1.5)) == 1500

    def test_never_negative(self):
        """Test clock skew does not produce negative latency."""
        start = utcnow()
        assert compute_latency_ms(start, start - timedelta(seconds=1)) == 0


# =============================================================================
# Recorder Tests
# =============================================================================

class TestRunLogRecorder:
    """Tests for RunLogRecorder."""

    def test_record_writes_entry(self, store, run_log):
        """Test an entry with latency and preview is appended."""
        start = utcnow()
        entry = run_log.record(
            step="triage",
            status="success",
            started_at=start,
            finished_at=start + timedelta(milliseconds=250),
            ticket_id="t1",
            payload={"ok": True},
        )
        assert entry is not None
        assert entry.latency_ms == 250
        assert store.list_run_logs() == [entry]

    def test_write_failure_is_swallowed(self):
        """Test a failing store does not raise to the caller."""
        failing_store = Mock()
        failing_store.add_run_log.side_effect = RuntimeError("disk full")
        recorder = RunLogRecorder(failing_store)

        assert recorder.record(step="system", status="failed", started_at=utcnow()) is None
        failing_store.add_run_log.assert_called_once()


class TestBestEffort:
    """Tests for the best_effort context manager."""

    def test_exception_swallowed(self):
        """Test errors inside the block are discarded."""
        with best_effort("test"):
            raise RuntimeError("ignored")

    def test_body_runs(self):
        """Test the block runs normally without errors."""
        calls = []
        with best_effort("test"):
            calls.append(1)
        assert calls == [1]

"""Tests for the Excel report generator."""

from datetime import timedelta
from pathlib import Path
from tempfile import TemporaryDirectory

import pytest
from openpyxl import load_workbook

from triage_copilot.config import OutputConfig
from triage_copilot.models import RunLogEntry, Ticket, utcnow
from triage_copilot.report import (
    RUN_LOG_COLUMNS,
    TICKET_COLUMNS,
    ExcelReportGenerator,
    ReportError,
    generate_report,
    run_log_to_row,
    sort_tickets,
    ticket_to_row,
)


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def tickets() -> list[Ticket]:
    base = utcnow()
    return [
        Ticket(
            id="replied-1",
            customer_email="a@example.com",
            subject="Done",
            status="replied",
            created_at=base,
        ),
        Ticket(
            id="approval-low",
            customer_email="b@example.com",
            subject="Low",
            status="needs_approval",
            ai_urgency="low",
            created_at=base,
        ),
        Ticket(
            id="approval-high",
            customer_email="c@example.com",
            subject="High",
            status="needs_approval",
            ai_urgency="high",
            ai_confidence=0.9,
            created_at=base + timedelta(minutes=1),
        ),
        Ticket(
            id="failed-1",
            customer_email="d@example.com",
            subject="Broken",
            status="failed",
            created_at=base,
        ),
    ]


@pytest.fixture
def run_logs() -> list[RunLogEntry]:
    base = utcnow()
    return [
        RunLogEntry(step="triage", status="failed", started_at=base + timedelta(seconds=1),
                    ticket_id="failed-1", error_code="WORKFLOW_FAILED"),
        RunLogEntry(step="triage", status="success", started_at=base,
                    ticket_id="approval-high", latency_ms=120),
    ]


# =============================================================================
# Row Conversion Tests
# =============================================================================

class TestRows:
    """Tests for sorting and row conversion."""

    def test_sort_order(self, tickets):
        """Test failed first, then by status, urgency and age."""
        ordered = [t.id for t in sort_tickets(tickets)]
        assert ordered == ["failed-1", "approval-high", "approval-low", "replied-1"]

    def test_ticket_row_matches_columns(self, tickets):
        """Test ticket rows line up with the header."""
        row = ticket_to_row(tickets[2])
        assert len(row) == len(TICKET_COLUMNS)
        assert row[0] == "approval-high"
        assert row[4] == 0.9

    def test_run_log_row_matches_columns(self, run_logs):
        """Test run log rows line up with the header."""
        row = run_log_to_row(run_logs[0])
        assert len(row) == len(RUN_LOG_COLUMNS)
        assert row[5] == "WORKFLOW_FAILED"


# =============================================================================
# Workbook Tests
# =============================================================================

class TestExcelReportGenerator:
    """Tests for ExcelReportGenerator."""

    def test_generate(self, tickets, run_logs):
        """Test both sheets are written with headers and rows."""
        with TemporaryDirectory() as tmpdir:
            config = OutputConfig(output_dir=Path(tmpdir) / "nested", report_filename="r.xlsx")
            path = ExcelReportGenerator(config).generate(tickets, run_logs)

            assert path.exists()
            wb = load_workbook(path)
            assert wb.sheetnames == ["Tickets", "Run Log"]

            ws = wb["Tickets"]
            assert ws.cell(row=1, column=1).value == "Ticket ID"
            assert ws.cell(row=2, column=1).value == "failed-1"
            assert ws.max_row == len(tickets) + 1
            assert ws.freeze_panes == "A2"

            logs = wb["Run Log"]
            # Oldest entry first
            assert logs.cell(row=2, column=4).value == "success"
            assert logs.cell(row=3, column=6).value == "WORKFLOW_FAILED"

    def test_empty_report(self):
        """Test an empty store still produces a workbook."""
        with TemporaryDirectory() as tmpdir:
            config = OutputConfig(output_dir=Path(tmpdir), report_filename="empty.xlsx")
            path = generate_report([], [], config)
            assert load_workbook(path)["Tickets"].max_row == 1

    def test_unwritable_path(self, tickets, run_logs, tmp_path):
        """Test save errors are raised as ReportError."""
        blocker = tmp_path / "file"
        blocker.write_text("not a directory", encoding="utf-8")
        config = OutputConfig(output_dir=blocker, report_filename="r.xlsx")
        with pytest.raises(ReportError):
            generate_report(tickets, run_logs, config)

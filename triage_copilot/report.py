"""
Excel report generator for the Support Triage Copilot.

Generates a workbook with two sheets:
- Tickets: current state of every ticket and its triage verdict
- Run Log: the audit trail, oldest first
"""

import logging
from pathlib import Path
from typing import Any, Callable

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.worksheet import Worksheet

from .config import OutputConfig
from .models import RunLogEntry, Ticket


logger = logging.getLogger(__name__)


class ReportError(Exception):
    """Error during Excel generation."""
    pass


TICKET_COLUMNS = [
    {"header": "Ticket ID", "width": 34},
    {"header": "Status", "width": 16},
    {"header": "Urgency", "width": 10},
    {"header": "Category", "width": 16},
    {"header": "Confidence", "width": 12},
    {"header": "Customer Email", "width": 30},
    {"header": "Subject", "width": 40},
    {"header": "Summary", "width": 60},
    {"header": "Created At", "width": 22},
]

RUN_LOG_COLUMNS = [
    {"header": "Started At", "width": 22},
    {"header": "Ticket ID", "width": 34},
    {"header": "Step", "width": 12},
    {"header": "Status", "width": 10},
    {"header": "Latency (ms)", "width": 14},
    {"header": "Error Code", "width": 20},
    {"header": "Error Message", "width": 40},
    {"header": "Payload Preview", "width": 60},
]

STATUS_ORDER = {
    "failed": 0,
    "needs_info": 1,
    "needs_approval": 2,
    "escalated": 3,
    "new": 4,
    "waiting_on_customer": 5,
    "replied": 6,
}
URGENCY_ORDER = {"high": 0, "medium": 1, "low": 2}


def sort_tickets(tickets: list[Ticket]) -> list[Ticket]:
    """
    Sort tickets so the ones needing attention come first.

    Sorting order:
    1. status (failed, needs_info, needs_approval, ...)
    2. urgency (high to low, untriaged last)
    3. created_at (oldest first)
    """
    return sorted(
        tickets,
        key=lambda t: (
            STATUS_ORDER.get(t.status, len(STATUS_ORDER)),
            URGENCY_ORDER.get(t.ai_urgency or "", len(URGENCY_ORDER)),
            t.created_at,
        ),
    )


def _timestamp(value) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S") if value else ""


def ticket_to_row(ticket: Ticket) -> list[Any]:
    """Convert a Ticket to a row of values matching TICKET_COLUMNS."""
    return [
        ticket.id,
        ticket.status,
        ticket.ai_urgency or "",
        ticket.ai_category or "",
        ticket.ai_confidence,
        ticket.customer_email,
        ticket.subject,
        ticket.ai_summary or "",
        _timestamp(ticket.created_at),
    ]


def run_log_to_row(entry: RunLogEntry) -> list[Any]:
    """Convert a RunLogEntry to a row of values matching RUN_LOG_COLUMNS."""
    return [
        _timestamp(entry.started_at),
        entry.ticket_id or "",
        entry.step,
        entry.status,
        entry.latency_ms,
        entry.error_code or "",
        entry.error_message or "",
        entry.payload_preview,
    ]


class ExcelReportGenerator:
    """
    Generator for formatted Excel reports.

    Produces styled headers, alternating row fills, fixed column widths
    and a frozen header row on every sheet.
    """

    # Style configuration
    HEADER_FONT = Font(bold=True, color="FFFFFF", size=11)
    HEADER_FILL = PatternFill(start_color="2F5496", end_color="2F5496", fill_type="solid")
    HEADER_ALIGNMENT = Alignment(horizontal="center", vertical="center", wrap_text=True)

    CELL_ALIGNMENT = Alignment(vertical="top", wrap_text=True)
    CELL_BORDER = Border(
        left=Side(style="thin", color="D0D0D0"),
        right=Side(style="thin", color="D0D0D0"),
        top=Side(style="thin", color="D0D0D0"),
        bottom=Side(style="thin", color="D0D0D0"),
    )

    ROW_FILL_ODD = PatternFill(start_color="F2F2F2", end_color="F2F2F2", fill_type="solid")
    ROW_FILL_EVEN = PatternFill(start_color="FFFFFF", end_color="FFFFFF", fill_type="solid")

    # Rows for failed work stand out
    FAILED_FONT = Font(color="C00000")

    def __init__(self, config: OutputConfig):
        self._config = config

    def generate(self, tickets: list[Ticket], run_logs: list[RunLogEntry]) -> Path:
        """
        Generate the workbook.

        Args:
            tickets: Tickets to list.
            run_logs: Run log entries to list.

        Returns:
            Path to the generated Excel file.

        Raises:
            ReportError: If report generation fails.
        """
        try:
            wb = Workbook()

            ws_tickets = wb.active
            ws_tickets.title = "Tickets"
            self._write_sheet(
                ws_tickets,
                TICKET_COLUMNS,
                [ticket_to_row(t) for t in sort_tickets(tickets)],
                is_failed=lambda row: row[1] == "failed",
            )

            ws_logs = wb.create_sheet("Run Log")
            ordered_logs = sorted(run_logs, key=lambda e: e.started_at)
            self._write_sheet(
                ws_logs,
                RUN_LOG_COLUMNS,
                [run_log_to_row(e) for e in ordered_logs],
                is_failed=lambda row: row[3] == "failed",
            )

            self._config.output_dir.mkdir(parents=True, exist_ok=True)
            output_path = self._config.report_path
            wb.save(output_path)

            logger.info(
                f"Excel report saved to: {output_path} "
                f"({len(tickets)} tickets, {len(run_logs)} run log entries)"
            )
            return output_path

        except Exception as e:
            logger.error(f"Failed to generate Excel report: {e}")
            raise ReportError(f"Report generation failed: {e}") from e

    def _write_sheet(
        self,
        ws: Worksheet,
        columns: list[dict],
        rows: list[list[Any]],
        is_failed: Callable[[list[Any]], bool],
    ) -> None:
        for col_idx, col_config in enumerate(columns, 1):
            cell = ws.cell(row=1, column=col_idx, value=col_config["header"])
            cell.font = self.HEADER_FONT
            cell.fill = self.HEADER_FILL
            cell.alignment = self.HEADER_ALIGNMENT
            cell.border = self.CELL_BORDER
            ws.column_dimensions[get_column_letter(col_idx)].width = col_config["width"]
        ws.row_dimensions[1].height = 30

        for row_idx, row_data in enumerate(rows, 2):
            fill = self.ROW_FILL_ODD if row_idx % 2 == 0 else self.ROW_FILL_EVEN
            failed = is_failed(row_data)
            for col_idx, value in enumerate(row_data, 1):
                cell = ws.cell(row=row_idx, column=col_idx, value=value)
                cell.alignment = self.CELL_ALIGNMENT
                cell.border = self.CELL_BORDER
                cell.fill = fill
                if failed:
                    cell.font = self.FAILED_FONT

        ws.freeze_panes = "A2"


def generate_report(
    tickets: list[Ticket],
    run_logs: list[RunLogEntry],
    config: OutputConfig,
) -> Path:
    """Convenience function to generate the Excel report."""
    return ExcelReportGenerator(config).generate(tickets, run_logs)

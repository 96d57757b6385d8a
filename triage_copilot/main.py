"""
Main entry point for the Support Triage Copilot.

Replays an inbox file through the complete pipeline:
1. Load the knowledge base
2. Submit each inbound message (rate limit, dedupe, triage)
3. Optionally approve every ticket waiting for approval
4. Print impact metrics and write the Excel report
"""

import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import Optional

import click
import yaml
from pydantic import ValidationError

from .config import AppConfig, get_config
from .desk import DeskError, SupportDesk
from .email_outbox import EmailSendError
from .knowledge_base import KnowledgeBaseError
from .metrics import compute_metrics
from .rate_limit import RateLimitExceeded
from .report import ReportError, generate_report


def setup_logging(level: str) -> None:
    """
    Configure application logging.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR).
    """
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[
            logging.StreamHandler(sys.stdout),
        ],
    )

    # Reduce noise from third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


logger = logging.getLogger(__name__)


class PipelineError(Exception):
    """Error during pipeline execution."""
    pass


def validate_config(config: AppConfig) -> None:
    """
    Validate configuration before running.

    Raises:
        PipelineError: If configuration is invalid.
    """
    errors = config.validate()
    if errors:
        for error in errors:
            logger.error(f"Configuration error: {error}")
        raise PipelineError(
            f"Configuration validation failed with {len(errors)} error(s)"
        )


def load_inbox(path: Path) -> list[dict]:
    """
    Read inbound submissions from a YAML file.

    The file holds a list of mappings (or a mapping with a `messages` list)
    with the ticket form fields plus an optional `client_address`.

    Raises:
        PipelineError: If the file cannot be read or parsed.
    """
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as e:
        raise PipelineError(f"Cannot read inbox file {path}: {e}") from e

    if isinstance(data, dict):
        data = data.get("messages", [])
    if not isinstance(data, list):
        raise PipelineError(f"Inbox file {path} must contain a list of messages")

    return [item for item in data if isinstance(item, dict)]


def run_pipeline(
    config: Optional[AppConfig] = None,
    inbox_path: Optional[Path] = None,
    kb_path: Optional[Path] = None,
    approve: bool = False,
    output_path: Optional[Path] = None,
    desk: Optional[SupportDesk] = None,
) -> Path:
    """
    Execute the complete triage pipeline over an inbox file.

    Args:
        config: Optional configuration override.
        inbox_path: YAML file of inbound submissions.
        kb_path: YAML file of knowledge base articles (overrides KB_SEED_PATH).
        approve: If True, approve every ticket left in needs_approval.
        output_path: Optional custom output path for the report.
        desk: Pre-built desk (built from config if omitted).

    Returns:
        Path to the generated report.

    Raises:
        PipelineError: If any step fails.
    """
    if config is None:
        config = get_config()

    if output_path:
        config = replace(
            config,
            output=replace(
                config.output,
                output_dir=output_path.parent,
                report_filename=output_path.name,
            ),
        )

    setup_logging(config.log_level)
    logger.info("=" * 60)
    logger.info("Starting Support Triage Pipeline")
    logger.info("=" * 60)

    validate_config(config)

    desk = desk or SupportDesk(config)
    try:
        # Step 1: Knowledge base
        logger.info("-" * 40)
        logger.info("Step 1: Loading knowledge base")
        logger.info("-" * 40)

        kb_source = kb_path or config.kb_seed_path
        if kb_source:
            try:
                count = desk.load_kb(kb_source)
                logger.info(f"Loaded {count} knowledge base articles")
            except KnowledgeBaseError as e:
                raise PipelineError(f"Knowledge base load failed: {e}") from e
        else:
            logger.info("No knowledge base file configured")

        # Step 2: Intake
        logger.info("-" * 40)
        logger.info("Step 2: Submitting inbound messages")
        logger.info("-" * 40)

        submissions = load_inbox(inbox_path) if inbox_path else []
        for idx, item in enumerate(submissions, 1):
            try:
                result = desk.submit_ticket(
                    client_address=str(item.get("client_address", "cli")),
                    customer_email=item.get("customer_email", ""),
                    customer_name=item.get("customer_name", ""),
                    subject=item.get("subject", ""),
                    message=item.get("message", ""),
                    product_area=item.get("product_area", ""),
                    attachment=item.get("attachment"),
                    honeypot=item.get("website_url"),
                )
            except (RateLimitExceeded, ValidationError) as e:
                logger.warning(f"Message {idx} rejected: {e}")
                continue

            if result.rejected:
                logger.warning(f"Message {idx} rejected silently")
            elif result.deduplicated:
                logger.info(f"Message {idx} attached to ticket {result.ticket_id}")
            else:
                logger.info(f"Message {idx} -> ticket {result.ticket_id} ({result.status})")

        # Step 3: Approvals (optional)
        if approve:
            logger.info("-" * 40)
            logger.info("Step 3: Approving suggested replies")
            logger.info("-" * 40)

            for ticket in desk.store.list_tickets(status="needs_approval"):
                try:
                    desk.approve_ticket(ticket.id, actor="cli")
                    logger.info(f"Approved ticket {ticket.id}")
                except (DeskError, EmailSendError) as e:
                    logger.error(f"Approval failed for ticket {ticket.id}: {e}")
        else:
            logger.info("-" * 40)
            logger.info("Step 3: Skipping approvals (no --approve flag)")
            logger.info("-" * 40)
    finally:
        desk.close()

    # Step 4: Metrics and report
    logger.info("-" * 40)
    logger.info("Step 4: Writing metrics and report")
    logger.info("-" * 40)

    metrics = compute_metrics(desk.store)
    logger.info(
        f"Tickets triaged: {metrics.tickets_triaged} | "
        f"median latency: {metrics.median_latency_ms:.0f}ms | "
        f"approved: {metrics.approved} | escalated: {metrics.escalated} | "
        f"time saved: {metrics.hours_saved} hrs"
    )

    try:
        report_path = generate_report(
            desk.store.list_tickets(),
            desk.store.list_run_logs(),
            config.output,
        )
    except ReportError as e:
        raise PipelineError(f"Report generation failed: {e}") from e

    logger.info("=" * 60)
    logger.info("Pipeline completed successfully!")
    logger.info(f"Report saved to: {report_path}")
    logger.info("=" * 60)

    return report_path


@click.command()
@click.option(
    "--inbox",
    "-i",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="YAML file of inbound support messages",
)
@click.option(
    "--kb",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="YAML file of knowledge base articles",
)
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Custom output path for the report",
)
@click.option(
    "--approve",
    is_flag=True,
    default=False,
    help="Approve every ticket that ends in needs_approval",
)
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug logging",
)
@click.option(
    "--validate-only",
    is_flag=True,
    default=False,
    help="Only validate configuration without running the pipeline",
)
def main(
    inbox: Optional[Path],
    kb: Optional[Path],
    output: Optional[Path],
    approve: bool,
    debug: bool,
    validate_only: bool,
) -> None:
    """
    Support Triage Copilot.

    Deduplicates inbound support messages, enriches them with knowledge
    base context and triages them with an LLM (or a mock without an API
    key), then writes an Excel report of tickets and the run log.
    """
    try:
        config = get_config()

        if debug:
            config = replace(config, log_level="DEBUG")

        if validate_only:
            setup_logging(config.log_level)
            logger.info("Validating configuration...")
            validate_config(config)
            logger.info("Configuration is valid!")
            return

        run_pipeline(config, inbox_path=inbox, kb_path=kb, approve=approve, output_path=output)

    except PipelineError as e:
        click.echo(f"Pipeline failed: {e}", err=True)
        sys.exit(1)
    except KeyboardInterrupt:
        click.echo("\nOperation cancelled by user", err=True)
        sys.exit(130)
    except Exception as e:
        click.echo(f"Unexpected error: {e}", err=True)
        if debug:
            import traceback
            traceback.print_exc()
        sys.exit(1)


if __name__ == "__main__":
    main()

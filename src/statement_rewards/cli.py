"""CLI entry point for statement-rewards."""

from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from dataclasses import asdict
from pathlib import Path
from typing import TYPE_CHECKING, Any

import click

from statement_rewards.adapters.base import SearchQuery
from statement_rewards.adapters.imap import ImapMailbox
from statement_rewards.classifier import ContentClassifier, extract_card_number
from statement_rewards.config import get_imap_config, get_ocr_config, get_spool_path
from statement_rewards.db import ensure_schema, get_connection
from statement_rewards.dedup import filter_latest, statement_stats
from statement_rewards.errors import (
    MailboxConnectionError,
    MailboxSearchError,
    StatementError,
)
from statement_rewards.extraction import RewardExtractionNormalizer
from statement_rewards.models import ProcessingStatus, RawDocument, StatementSource
from statement_rewards.pipeline import StatementIngestor
from statement_rewards.repository import PostgresStatementRepository
from statement_rewards.store import AttachmentSpool
from statement_rewards.text_extraction import TextExtractor

if TYPE_CHECKING:
    from collections.abc import Iterator
    from datetime import datetime

    from statement_rewards.models import StatementRecord


def _echo_json(payload: Any) -> None:
    click.echo(json.dumps(payload, indent=2, default=str))


def _record_json(record: StatementRecord) -> dict[str, Any]:
    return record.model_dump(mode="json", by_alias=True, exclude={"raw_extracted_text"})


@contextmanager
def _ingestor() -> Iterator[StatementIngestor]:
    spool_path = get_spool_path()
    try:
        normalizer = RewardExtractionNormalizer()
        conn = get_connection()
    except ValueError as exc:
        raise click.ClickException(str(exc)) from exc
    try:
        yield StatementIngestor(
            repository=PostgresStatementRepository(conn),
            extractor=TextExtractor(get_ocr_config(), work_dir=spool_path),
            normalizer=normalizer,
            spool=AttachmentSpool(spool_path),
        )
    finally:
        conn.close()


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
def cli(verbose: bool) -> None:
    """Statement Rewards: track credit card reward points from statements."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@cli.command()
def init_db() -> None:
    """Create the statements table."""
    try:
        conn = get_connection()
    except ValueError as exc:
        raise click.ClickException(str(exc)) from exc
    with conn:
        ensure_schema(conn)
    click.echo("Schema ready.")


@cli.command()
@click.argument(
    "pdfs",
    nargs=-1,
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
@click.option("--user", "user_id", required=True, help="Owner of the statements.")
def upload(pdfs: tuple[Path, ...], user_id: str) -> None:
    """Process statement PDFs from disk."""
    with _ingestor() as ingestor:
        for path in pdfs:
            record = ingestor.ingest_upload(
                user_id,
                RawDocument(
                    data=path.read_bytes(),
                    filename=path.name,
                    source=StatementSource.MANUAL,
                ),
            )
            _echo_json(_record_json(record))


@cli.command()
@click.option("--user", "user_id", required=True, help="Owner of the statements.")
@click.option("--after", type=click.DateTime(formats=["%Y-%m-%d"]), default=None)
@click.option("--before", type=click.DateTime(formats=["%Y-%m-%d"]), default=None)
@click.option("--from", "sender", default=None, help="Restrict to one sender.")
@click.option("--max-results", default=100, show_default=True, type=int)
def fetch(
    user_id: str,
    after: datetime | None,
    before: datetime | None,
    sender: str | None,
    max_results: int,
) -> None:
    """Fetch statement attachments from the configured IMAP mailbox."""
    try:
        imap_config = get_imap_config()
    except ValueError as exc:
        raise click.ClickException(str(exc)) from exc

    query = SearchQuery(
        after=after.date() if after else None,
        before=before.date() if before else None,
        sender=sender,
        max_results=max_results,
    )
    try:
        with _ingestor() as ingestor, ImapMailbox(imap_config) as mailbox:
            summary = ingestor.ingest_inbox(user_id, mailbox, query)
    except (MailboxConnectionError, MailboxSearchError) as exc:
        raise click.ClickException(str(exc)) from exc

    _echo_json(
        {
            "searched": summary.searched,
            "processed": summary.processed,
            "failed": summary.failed,
            "rejected": summary.rejected,
            "duplicate": summary.duplicate,
            "documents": [asdict(outcome) for outcome in summary.outcomes],
        }
    )


@cli.command()
@click.option("--user", "user_id", required=True, help="Owner of the statements.")
def latest(user_id: str) -> None:
    """Show the latest completed statement per bank and card."""
    try:
        conn = get_connection()
    except ValueError as exc:
        raise click.ClickException(str(exc)) from exc
    with conn:
        records = PostgresStatementRepository(conn).list_for_user(
            user_id, ProcessingStatus.COMPLETED
        )

    result = filter_latest(records)
    _echo_json(
        {
            "summary": asdict(result.summary),
            "latest": [_record_json(r) for r in result.latest],
            "filteredIds": [str(r.id) for r in result.filtered],
            "duplicateIds": [str(r.id) for r in result.duplicates],
            "undatedIds": [str(r.id) for r in result.undated],
            "groups": [asdict(s) for s in statement_stats(records)],
        }
    )


@cli.command()
@click.argument("pdf", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def classify(pdf: Path) -> None:
    """Extract text from a PDF and report the statement heuristics."""
    try:
        extracted = TextExtractor(get_ocr_config()).extract_file(pdf)
    except StatementError as exc:
        raise click.ClickException(str(exc)) from exc

    classifier = ContentClassifier()
    verdict = classifier.classify(extracted.text)
    doc_type, doc_confidence = classifier.estimate_document_type(extracted.text)
    _echo_json(
        {
            "file": pdf.name,
            "method": extracted.method,
            "pages": extracted.page_count,
            "scanned": extracted.scanned,
            "ocrConfidence": extracted.ocr_confidence,
            "ocrWarning": extracted.ocr_warning,
            "verdict": asdict(verdict),
            "documentType": doc_type,
            "documentTypeConfidence": doc_confidence,
            "cardNumber": extract_card_number(extracted.text),
            "filenameScore": classifier.score_filename(pdf.name),
        }
    )

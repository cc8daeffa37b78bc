"""Tests for statement_rewards.pipeline."""

from __future__ import annotations

from typing import TYPE_CHECKING
from unittest.mock import MagicMock

import pytest

from statement_rewards.adapters.base import SearchQuery
from statement_rewards.errors import (
    ExtractionError,
    MailboxSearchError,
    MessageFetchError,
    ModelRateLimitError,
)
from statement_rewards.models import (
    UNKNOWN_BANK,
    AttachmentRef,
    ExtractedText,
    ExtractionMethod,
    InboxMessage,
    ProcessingStatus,
    RawDocument,
    RewardExtraction,
    RewardPoints,
    StatementSource,
    TriageCase,
)
from statement_rewards.pipeline import (
    ALREADY_PROCESSED,
    OutcomeStatus,
    StatementIngestor,
)
from statement_rewards.repository import InMemoryStatementRepository
from statement_rewards.store import AttachmentSpool

if TYPE_CHECKING:
    from pathlib import Path

CORRUPT = b"%CORRUPT"
INVOICE_TEXT = (
    "TAX INVOICE No. 4471 issued by Acme Supplies Pvt Ltd for office chairs. "
    "Amount payable within thirty days of the invoice date by bank transfer."
)


class FakeExtractor:
    """Treats PDF bytes as their own text; CORRUPT bytes fail to parse."""

    def __init__(self) -> None:
        self.files_seen: list[Path] = []

    def extract(self, data: bytes) -> ExtractedText:
        if data.startswith(CORRUPT):
            msg = "Failed to parse PDF: corrupt"
            raise ExtractionError(msg)
        return ExtractedText(
            text=data.decode(),
            page_count=1,
            scanned=False,
            method=ExtractionMethod.DIRECT,
        )

    def extract_file(self, path: Path) -> ExtractedText:
        assert path.exists()
        self.files_seen.append(path)
        return self.extract(path.read_bytes())


class FakeMailbox:
    """In-memory Mailbox keyed by message id."""

    def __init__(self) -> None:
        self.messages: dict[str, InboxMessage] = {}
        self.attachments: dict[tuple[str, str], bytes] = {}
        self.broken: set[str] = set()
        self.garbled: set[str] = set()
        self.downloads: list[tuple[str, str]] = []

    def add(
        self,
        message_id: str,
        *,
        sender: str = "Cards <emailstatements.cards@hdfcbank.net>",
        subject: str = "Your HDFC Bank Infinia statement",
        body: str = "Please find attached.",
        files: dict[str, bytes] | None = None,
    ) -> None:
        refs = []
        for index, (filename, data) in enumerate((files or {}).items()):
            refs.append(AttachmentRef(str(index), filename, "application/pdf"))
            self.attachments[(message_id, str(index))] = data
        self.messages[message_id] = InboxMessage(
            message_id=message_id,
            subject=subject,
            sender=sender,
            text_body=body,
            attachments=refs,
        )

    def search_messages(self, query: SearchQuery) -> list[str]:
        return list(self.messages)[: query.max_results]

    def get_message(self, message_id: str) -> InboxMessage:
        if message_id in self.broken:
            msg = f"Failed to fetch message {message_id}: timed out"
            raise MessageFetchError(msg)
        if message_id in self.garbled:
            msg = "unknown encoding: unknown-8bit"
            raise LookupError(msg)
        return self.messages[message_id]

    def download_attachment(self, message_id: str, attachment_id: str) -> bytes:
        self.downloads.append((message_id, attachment_id))
        return self.attachments[(message_id, attachment_id)]


@pytest.fixture
def repository() -> InMemoryStatementRepository:
    return InMemoryStatementRepository()


@pytest.fixture
def normalizer() -> MagicMock:
    normalizer = MagicMock()
    normalizer.extract.return_value = (
        RewardExtraction(
            bank_name="HDFC Bank",
            statement_period="03 Jan, 2026 - 02 Feb, 2026",
            reward_points=RewardPoints(opening=12500, closing=14340),
            confidence="high",
        ),
        {"bankName": "HDFC Bank", "confidence": "high"},
    )
    return normalizer


@pytest.fixture
def extractor() -> FakeExtractor:
    return FakeExtractor()


@pytest.fixture
def ingestor(
    repository: InMemoryStatementRepository,
    extractor: FakeExtractor,
    normalizer: MagicMock,
    spool_root: Path,
) -> StatementIngestor:
    return StatementIngestor(
        repository, extractor, normalizer, AttachmentSpool(spool_root)
    )


class TestIngestUpload:
    """Tests for StatementIngestor.ingest_upload."""

    def test_completed_record(
        self,
        ingestor: StatementIngestor,
        repository: InMemoryStatementRepository,
        statement_text: str,
    ) -> None:
        document = RawDocument(statement_text.encode(), "Jan.pdf")

        record = ingestor.ingest_upload("user-1", document)

        assert record.processing_status is ProcessingStatus.COMPLETED
        assert record.bank_name == "HDFC Bank"
        assert record.statement_period == "03 Jan, 2026 - 02 Feb, 2026"
        assert record.reward_points.closing == 14340.0
        assert record.card_number == "4321"
        assert record.card_variant == "Infinia"
        assert record.source is StatementSource.MANUAL
        assert record.ai_response == {"bankName": "HDFC Bank", "confidence": "high"}
        assert record.raw_extracted_text == statement_text
        assert repository.get(record.id) == record

    def test_missing_bank_becomes_unknown(
        self,
        ingestor: StatementIngestor,
        normalizer: MagicMock,
        statement_text: str,
    ) -> None:
        normalizer.extract.return_value = (RewardExtraction(), {})

        record = ingestor.ingest_upload(
            "user-1", RawDocument(statement_text.encode(), "a.pdf")
        )

        assert record.processing_status is ProcessingStatus.COMPLETED
        assert record.bank_name == UNKNOWN_BANK

    def test_insufficient_text_fails_without_model_call(
        self, ingestor: StatementIngestor, normalizer: MagicMock
    ) -> None:
        record = ingestor.ingest_upload("user-1", RawDocument(b"Page 1", "a.pdf"))

        assert record.processing_status is ProcessingStatus.FAILED
        assert record.error_message == "Insufficient text extracted from PDF"
        assert record.raw_extracted_text == "Page 1"
        normalizer.extract.assert_not_called()

    def test_extraction_error_marks_failed(
        self,
        ingestor: StatementIngestor,
        repository: InMemoryStatementRepository,
    ) -> None:
        record = ingestor.ingest_upload("user-1", RawDocument(CORRUPT, "bad.pdf"))

        stored = repository.get(record.id)
        assert stored is not None
        assert stored.processing_status is ProcessingStatus.FAILED
        assert stored.error_message == "Failed to parse PDF: corrupt"

    def test_model_error_marks_failed(
        self,
        ingestor: StatementIngestor,
        normalizer: MagicMock,
        statement_text: str,
    ) -> None:
        normalizer.extract.side_effect = ModelRateLimitError("rate limited")

        record = ingestor.ingest_upload(
            "user-1", RawDocument(statement_text.encode(), "a.pdf")
        )

        assert record.processing_status is ProcessingStatus.FAILED
        assert record.error_message == "rate limited"

    def test_unexpected_error_marks_failed(
        self,
        ingestor: StatementIngestor,
        normalizer: MagicMock,
        statement_text: str,
    ) -> None:
        normalizer.extract.side_effect = KeyError("surprise")

        record = ingestor.ingest_upload(
            "user-1", RawDocument(statement_text.encode(), "a.pdf")
        )

        assert record.processing_status is ProcessingStatus.FAILED


class TestIngestInbox:
    """Tests for StatementIngestor.ingest_inbox."""

    def test_bank_sender_is_processed(
        self,
        ingestor: StatementIngestor,
        repository: InMemoryStatementRepository,
        statement_text: str,
        spool_root: Path,
    ) -> None:
        mailbox = FakeMailbox()
        mailbox.add("181", files={"Statement_Jan.pdf": statement_text.encode()})

        summary = ingestor.ingest_inbox("user-1", mailbox, SearchQuery())

        assert summary.searched == 1
        assert summary.processed == 1
        outcome = summary.outcomes[0]
        record = repository.get(outcome.record_id)
        assert record is not None
        assert record.source is StatementSource.GMAIL
        assert record.inbox is not None
        assert record.inbox.message_id == "181"
        assert record.inbox.triage_case is TriageCase.BANK_DOMAIN
        assert record.inbox.is_from_bank is True
        assert record.inbox.sender_domain == "hdfcbank.net"
        assert record.inbox.filename_score == 1
        assert record.inbox.classification_score is not None
        assert list(spool_root.iterdir()) == []

    def test_second_run_is_idempotent(
        self,
        ingestor: StatementIngestor,
        repository: InMemoryStatementRepository,
        extractor: FakeExtractor,
        statement_text: str,
    ) -> None:
        mailbox = FakeMailbox()
        mailbox.add("181", files={"Statement_Jan.pdf": statement_text.encode()})

        first = ingestor.ingest_inbox("user-1", mailbox, SearchQuery())
        second = ingestor.ingest_inbox("user-1", mailbox, SearchQuery())

        assert first.processed == 1
        assert second.processed == 0
        assert second.duplicate == 1
        assert second.outcomes[0].reason == ALREADY_PROCESSED
        assert second.outcomes[0].record_id == first.outcomes[0].record_id
        assert len(repository.list_for_user("user-1")) == 1
        assert len(extractor.files_seen) == 1

    def test_failed_record_is_not_retried(
        self,
        ingestor: StatementIngestor,
        repository: InMemoryStatementRepository,
    ) -> None:
        mailbox = FakeMailbox()
        mailbox.add("181", files={"Statement_Jan.pdf": CORRUPT})

        first = ingestor.ingest_inbox("user-1", mailbox, SearchQuery())
        second = ingestor.ingest_inbox("user-1", mailbox, SearchQuery())

        assert first.failed == 1
        assert second.duplicate == 1
        assert len(repository.list_for_user("user-1")) == 1

    def test_one_failure_does_not_stop_the_batch(
        self,
        ingestor: StatementIngestor,
        statement_text: str,
    ) -> None:
        mailbox = FakeMailbox()
        mailbox.add("1", files={"Statement_Dec.pdf": CORRUPT})
        mailbox.add("2", files={"Statement_Jan.pdf": statement_text.encode()})

        summary = ingestor.ingest_inbox("user-1", mailbox, SearchQuery())

        assert summary.failed == 1
        assert summary.processed == 1
        failed = summary.outcomes[0]
        assert failed.status is OutcomeStatus.FAILED
        assert failed.reason == "Failed to parse PDF: corrupt"

    def test_unfetchable_message_is_reported(
        self,
        ingestor: StatementIngestor,
        statement_text: str,
    ) -> None:
        mailbox = FakeMailbox()
        mailbox.add("1", files={"Statement.pdf": statement_text.encode()})
        mailbox.add("2", files={"Statement.pdf": statement_text.encode()})
        mailbox.broken.add("1")

        summary = ingestor.ingest_inbox("user-1", mailbox, SearchQuery())

        assert summary.failed == 1
        assert summary.processed == 1
        assert summary.outcomes[0].message_id == "1"
        assert summary.outcomes[0].file_name is None

    def test_undecodable_message_does_not_stop_the_batch(
        self,
        ingestor: StatementIngestor,
        statement_text: str,
    ) -> None:
        mailbox = FakeMailbox()
        mailbox.add("1", files={"Statement.pdf": statement_text.encode()})
        mailbox.add("2", files={"Statement.pdf": statement_text.encode()})
        mailbox.garbled.add("1")

        summary = ingestor.ingest_inbox("user-1", mailbox, SearchQuery())

        assert summary.failed == 1
        assert summary.processed == 1
        assert summary.outcomes[0].message_id == "1"
        assert summary.outcomes[0].reason == "unknown encoding: unknown-8bit"
        assert summary.outcomes[1].message_id == "2"

    def test_spool_error_during_content_analysis_is_isolated(
        self,
        ingestor: StatementIngestor,
        repository: InMemoryStatementRepository,
        monkeypatch: pytest.MonkeyPatch,
        statement_text: str,
    ) -> None:
        mailbox = FakeMailbox()
        mailbox.add(
            "1",
            sender="me@example.org",
            subject="documents",
            body="",
            files={"scan.pdf": statement_text.encode()},
        )
        mailbox.add("2")
        monkeypatch.setattr(
            ingestor.spool, "hold", MagicMock(side_effect=OSError("disk full"))
        )

        summary = ingestor.ingest_inbox("user-1", mailbox, SearchQuery())

        assert summary.failed == 1
        assert summary.rejected == 1
        failed = summary.outcomes[0]
        assert failed.file_name == "scan.pdf"
        assert failed.reason == "disk full"
        assert repository.list_for_user("user-1") == []

    def test_search_failure_aborts(self, ingestor: StatementIngestor) -> None:
        mailbox = MagicMock()
        mailbox.search_messages.side_effect = MailboxSearchError("auth expired")

        with pytest.raises(MailboxSearchError, match="auth expired"):
            ingestor.ingest_inbox("user-1", mailbox, SearchQuery())

    def test_message_without_pdf_is_rejected(
        self,
        ingestor: StatementIngestor,
        repository: InMemoryStatementRepository,
    ) -> None:
        mailbox = FakeMailbox()
        mailbox.add("5")

        summary = ingestor.ingest_inbox("user-1", mailbox, SearchQuery())

        assert summary.rejected == 1
        assert summary.outcomes[0].file_name is None
        assert summary.outcomes[0].reason == "No PDF attachments"
        assert repository.list_for_user("user-1") == []

    def test_keyword_match_ingests_every_pdf(
        self,
        ingestor: StatementIngestor,
        repository: InMemoryStatementRepository,
        statement_text: str,
    ) -> None:
        mailbox = FakeMailbox()
        mailbox.add(
            "7",
            sender="me@example.org",
            subject="Fwd: my credit card statement",
            files={
                "jan.pdf": statement_text.encode(),
                "feb.pdf": statement_text.encode(),
            },
        )

        summary = ingestor.ingest_inbox("user-1", mailbox, SearchQuery())

        assert summary.processed == 2
        records = repository.list_for_user("user-1")
        assert {r.inbox.triage_case for r in records if r.inbox} == {
            TriageCase.KEYWORD_MATCH
        }

    def test_content_analysis_accepts_and_reuses_text(
        self,
        ingestor: StatementIngestor,
        repository: InMemoryStatementRepository,
        extractor: FakeExtractor,
        statement_text: str,
        spool_root: Path,
    ) -> None:
        mailbox = FakeMailbox()
        mailbox.add(
            "9",
            sender="me@example.org",
            subject="documents",
            body="see attached",
            files={"scan.pdf": statement_text.encode()},
        )

        summary = ingestor.ingest_inbox("user-1", mailbox, SearchQuery())

        assert summary.processed == 1
        assert mailbox.downloads == [("9", "0")]
        assert len(extractor.files_seen) == 1
        record = repository.list_for_user("user-1")[0]
        assert record.inbox is not None
        assert record.inbox.triage_case is TriageCase.CONTENT_ANALYSIS
        assert record.inbox.is_from_bank is False
        assert list(spool_root.iterdir()) == []

    def test_content_analysis_rejects_invoice(
        self,
        ingestor: StatementIngestor,
        repository: InMemoryStatementRepository,
        normalizer: MagicMock,
    ) -> None:
        mailbox = FakeMailbox()
        mailbox.add(
            "10",
            sender="billing@acme.example",
            subject="Your order",
            body="Thanks for shopping",
            files={"invoice.pdf": INVOICE_TEXT.encode()},
        )

        summary = ingestor.ingest_inbox("user-1", mailbox, SearchQuery())

        assert summary.rejected == 1
        assert summary.outcomes[0].file_name == "invoice.pdf"
        assert summary.outcomes[0].reason is not None
        assert "content analysis rejected" in summary.outcomes[0].reason
        assert repository.list_for_user("user-1") == []
        normalizer.extract.assert_not_called()

    def test_content_probe_failure_is_reported(
        self,
        ingestor: StatementIngestor,
        repository: InMemoryStatementRepository,
    ) -> None:
        mailbox = FakeMailbox()
        mailbox.add(
            "11",
            sender="me@example.org",
            subject="documents",
            body="",
            files={"scan.pdf": CORRUPT},
        )

        summary = ingestor.ingest_inbox("user-1", mailbox, SearchQuery())

        assert summary.failed == 1
        assert summary.outcomes[0].record_id is None
        assert repository.list_for_user("user-1") == []

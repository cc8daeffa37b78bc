"""Ingestion orchestration for manual uploads and inbox batches.

Documents are processed one at a time. A failure in one document marks
its record failed and the batch moves on; only a failed mailbox search
aborts a batch.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

from statement_rewards.classifier import (
    MIN_SAMPLE_CHARS,
    ContentClassifier,
    extract_card_number,
    quick_sample,
)
from statement_rewards.dedup import detect_card_variant
from statement_rewards.errors import ClassificationInsufficientTextError, StatementError
from statement_rewards.extraction import ExtractionMetadata, RewardExtractionNormalizer
from statement_rewards.models import (
    UNKNOWN_BANK,
    InboxMetadata,
    ProcessingStatus,
    StatementRecord,
    StatementSource,
    TriageCase,
)
from statement_rewards.triage import EmailTriage, is_bank_domain, message_body_text

if TYPE_CHECKING:
    from uuid import UUID

    from statement_rewards.adapters.base import Mailbox, SearchQuery
    from statement_rewards.models import (
        AttachmentRef,
        ClassificationVerdict,
        ExtractedText,
        InboxMessage,
        RawDocument,
        TriageDecision,
    )
    from statement_rewards.repository import StatementRepository
    from statement_rewards.store import AttachmentSpool
    from statement_rewards.text_extraction import TextExtractor

logger = logging.getLogger(__name__)

ALREADY_PROCESSED = "Already processed"


class OutcomeStatus(StrEnum):
    PROCESSED = "processed"
    FAILED = "failed"
    REJECTED = "rejected"
    DUPLICATE = "duplicate"


@dataclass(frozen=True)
class DocumentOutcome:
    """What happened to one attachment or upload."""

    status: OutcomeStatus
    file_name: str | None
    message_id: str | None = None
    record_id: UUID | None = None
    reason: str | None = None


@dataclass
class BatchSummary:
    """Partial-success report for one ingestion run."""

    searched: int = 0
    outcomes: list[DocumentOutcome] = field(default_factory=list)

    def count(self, status: OutcomeStatus) -> int:
        return sum(1 for outcome in self.outcomes if outcome.status is status)

    @property
    def processed(self) -> int:
        return self.count(OutcomeStatus.PROCESSED)

    @property
    def failed(self) -> int:
        return self.count(OutcomeStatus.FAILED)

    @property
    def rejected(self) -> int:
        return self.count(OutcomeStatus.REJECTED)

    @property
    def duplicate(self) -> int:
        return self.count(OutcomeStatus.DUPLICATE)


class _AttachmentProbe:
    """Download, extract and classify one attachment at most once.

    Passed to EmailTriage as the content-analysis callback; the result
    is reused if the attachment is then accepted.
    """

    def __init__(
        self,
        ingestor: StatementIngestor,
        mailbox: Mailbox,
        message_id: str,
        attachment: AttachmentRef,
    ) -> None:
        self.ingestor = ingestor
        self.mailbox = mailbox
        self.message_id = message_id
        self.attachment = attachment
        self.extracted: ExtractedText | None = None
        self.verdict: ClassificationVerdict | None = None

    def __call__(self) -> ClassificationVerdict:
        if self.verdict is None:
            self.extracted = self.ingestor.fetch_attachment_text(
                self.mailbox, self.message_id, self.attachment
            )
            self.verdict = self.ingestor.classifier.classify(self.extracted.text)
        return self.verdict


class StatementIngestor:
    """Turn PDFs into persisted StatementRecords."""

    def __init__(
        self,
        repository: StatementRepository,
        extractor: TextExtractor,
        normalizer: RewardExtractionNormalizer,
        spool: AttachmentSpool,
        *,
        classifier: ContentClassifier | None = None,
        triage: EmailTriage | None = None,
    ) -> None:
        self.repository = repository
        self.extractor = extractor
        self.normalizer = normalizer
        self.spool = spool
        self.classifier = classifier or ContentClassifier()
        self.triage = triage or EmailTriage()

    def ingest_upload(self, user_id: str, document: RawDocument) -> StatementRecord:
        """Process one manually uploaded PDF; failures are recorded, not raised."""
        record = StatementRecord(
            user_id=user_id,
            file_name=document.filename,
            source=document.source,
        )
        self.repository.create(record)
        logger.info("Processing upload %s for user %s", document.filename, user_id)

        try:
            extracted = self.extractor.extract(document.data)
            self._complete(record, extracted)
        except StatementError as exc:
            self._fail(record, exc)
        except Exception as exc:
            logger.exception("Unexpected error processing %s", document.filename)
            self._fail(record, exc)
        return record

    def ingest_inbox(
        self, user_id: str, mailbox: Mailbox, query: SearchQuery
    ) -> BatchSummary:
        """Search the mailbox and process every accepted PDF attachment.

        Raises MailboxSearchError if the search itself fails.
        """
        summary = BatchSummary()
        message_ids = self.mailbox_search(mailbox, query)
        summary.searched = len(message_ids)

        for message_id in message_ids:
            try:
                message = mailbox.get_message(message_id)
            except StatementError as exc:
                logger.warning("Skipping message %s: %s", message_id, exc)
                summary.outcomes.append(_message_failure(message_id, None, exc))
                continue
            except Exception as exc:
                logger.exception("Unexpected error reading message %s", message_id)
                summary.outcomes.append(_message_failure(message_id, None, exc))
                continue
            summary.outcomes.extend(self._ingest_message(user_id, mailbox, message))

        logger.info(
            "Inbox batch done: %d searched, %d processed, %d failed, "
            "%d rejected, %d duplicate",
            summary.searched,
            summary.processed,
            summary.failed,
            summary.rejected,
            summary.duplicate,
        )
        return summary

    @staticmethod
    def mailbox_search(mailbox: Mailbox, query: SearchQuery) -> list[str]:
        message_ids = mailbox.search_messages(query)
        logger.info("Found %d candidate message(s)", len(message_ids))
        return message_ids

    def fetch_attachment_text(
        self, mailbox: Mailbox, message_id: str, attachment: AttachmentRef
    ) -> ExtractedText:
        """Download an attachment to the spool and extract its text."""
        data = mailbox.download_attachment(message_id, attachment.attachment_id)
        with self.spool.hold(attachment.filename, data, StatementSource.GMAIL) as path:
            return self.extractor.extract_file(path)

    def _ingest_message(
        self, user_id: str, mailbox: Mailbox, message: InboxMessage
    ) -> list[DocumentOutcome]:
        outcomes: list[DocumentOutcome] = []
        pdfs = message.pdf_attachments

        pending = []
        for attachment in pdfs:
            existing = self.repository.find_by_inbox_key(
                user_id, attachment.filename, message.message_id
            )
            if existing is None:
                pending.append(attachment)
                continue
            logger.debug(
                "Skipping %s from %s: already processed",
                attachment.filename,
                message.message_id,
            )
            outcomes.append(
                DocumentOutcome(
                    status=OutcomeStatus.DUPLICATE,
                    file_name=attachment.filename,
                    message_id=message.message_id,
                    record_id=existing.id,
                    reason=ALREADY_PROCESSED,
                )
            )
        if pdfs and not pending:
            return outcomes

        probe = (
            _AttachmentProbe(self, mailbox, message.message_id, pending[0])
            if pending
            else None
        )
        probe_name = pending[0].filename if pending else None
        try:
            decision = self.triage.decide(
                message.sender,
                message.subject,
                message_body_text(message),
                bool(pending),
                analyze_content=probe or _no_content,
            )
        except StatementError as exc:
            logger.warning(
                "Content analysis failed for message %s: %s", message.message_id, exc
            )
            outcomes.append(_message_failure(message.message_id, probe_name, exc))
            return outcomes
        except Exception as exc:
            logger.exception("Unexpected error triaging message %s", message.message_id)
            outcomes.append(_message_failure(message.message_id, probe_name, exc))
            return outcomes

        if not decision.accepted:
            targets = pending or [None]
            outcomes.extend(
                DocumentOutcome(
                    status=OutcomeStatus.REJECTED,
                    file_name=attachment.filename if attachment else None,
                    message_id=message.message_id,
                    reason=decision.reason,
                )
                for attachment in targets
            )
            return outcomes

        if decision.case is TriageCase.CONTENT_ANALYSIS and probe is not None:
            outcomes.append(
                self._ingest_attachment(
                    user_id,
                    mailbox,
                    message,
                    probe.attachment,
                    decision,
                    extracted=probe.extracted,
                    verdict=probe.verdict,
                )
            )
            return outcomes

        for attachment in pending:
            outcomes.append(
                self._ingest_attachment(user_id, mailbox, message, attachment, decision)
            )
        return outcomes

    def _ingest_attachment(
        self,
        user_id: str,
        mailbox: Mailbox,
        message: InboxMessage,
        attachment: AttachmentRef,
        decision: TriageDecision,
        *,
        extracted: ExtractedText | None = None,
        verdict: ClassificationVerdict | None = None,
    ) -> DocumentOutcome:
        record = StatementRecord(
            user_id=user_id,
            file_name=attachment.filename,
            source=StatementSource.GMAIL,
            inbox=InboxMetadata(
                message_id=message.message_id,
                subject=message.subject,
                sender=message.sender,
                date=message.date,
                sender_domain=decision.sender_domain,
                triage_case=decision.case,
                triage_reason=decision.reason,
                subject_score=self.classifier.score_subject(message.subject),
                filename_score=self.classifier.score_filename(attachment.filename),
                is_from_bank=is_bank_domain(decision.sender_domain),
            ),
        )
        self.repository.create(record)
        logger.info(
            "Processing %s from message %s", attachment.filename, message.message_id
        )

        try:
            if extracted is None:
                extracted = self.fetch_attachment_text(
                    mailbox, message.message_id, attachment
                )
            if verdict is None:
                verdict = self.classifier.classify(extracted.text)
            if record.inbox is not None:
                record.inbox.classification_confidence = verdict.confidence
                record.inbox.classification_score = verdict.score
            self._complete(record, extracted)
        except StatementError as exc:
            self._fail(record, exc)
        except Exception as exc:
            logger.exception("Unexpected error processing %s", attachment.filename)
            self._fail(record, exc)

        status = (
            OutcomeStatus.PROCESSED
            if record.processing_status is ProcessingStatus.COMPLETED
            else OutcomeStatus.FAILED
        )
        return DocumentOutcome(
            status=status,
            file_name=attachment.filename,
            message_id=message.message_id,
            record_id=record.id,
            reason=record.error_message,
        )

    def _complete(self, record: StatementRecord, extracted: ExtractedText) -> None:
        """Run model extraction on extracted text and fill in the record."""
        record.raw_extracted_text = extracted.text
        self.repository.update(record)

        if len(quick_sample(extracted.text)) < MIN_SAMPLE_CHARS:
            msg = "Insufficient text extracted from PDF"
            raise ClassificationInsufficientTextError(msg)

        if not self.classifier.has_card_number_pattern(extracted.text):
            logger.debug("No masked card number found in %s", record.file_name)

        extraction, payload = self.normalizer.extract(
            extracted.text, ExtractionMetadata.from_extracted(extracted)
        )

        record.bank_name = extraction.bank_name or UNKNOWN_BANK
        record.statement_period = extraction.statement_period
        record.reward_points = extraction.reward_points
        record.ai_response = payload
        record.card_number = extract_card_number(extracted.text)
        record.card_variant = detect_card_variant(extracted.text, record.bank_name)
        record.processing_status = ProcessingStatus.COMPLETED
        record.error_message = None
        self.repository.update(record)
        logger.info(
            "Completed %s (bank=%s, variant=%s)",
            record.file_name,
            record.bank_name,
            record.card_variant,
        )

    def _fail(self, record: StatementRecord, exc: Exception) -> None:
        logger.warning("Failed to process %s: %s", record.file_name, exc)
        record.processing_status = ProcessingStatus.FAILED
        record.error_message = str(exc)
        self.repository.update(record)


def _message_failure(
    message_id: str, file_name: str | None, exc: Exception
) -> DocumentOutcome:
    return DocumentOutcome(
        status=OutcomeStatus.FAILED,
        file_name=file_name,
        message_id=message_id,
        reason=str(exc),
    )


def _no_content() -> ClassificationVerdict:
    msg = "Content analysis requested for a message without PDF attachments"
    raise RuntimeError(msg)

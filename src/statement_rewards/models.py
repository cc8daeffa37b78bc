"""Domain and extraction models for statement processing."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

UNKNOWN_BANK = "Unknown"
UNKNOWN_VARIANT = "Unknown Variant"


class StatementSource(StrEnum):
    MANUAL = "manual"
    GMAIL = "gmail"


class ProcessingStatus(StrEnum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ExtractionMethod(StrEnum):
    DIRECT = "direct"
    OCR = "ocr"


class ConfidenceTier(StrEnum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class TriageCase(StrEnum):
    BANK_DOMAIN = "bank-domain"
    KEYWORD_MATCH = "keyword-match"
    CONTENT_ANALYSIS = "content-analysis"
    REJECTED = "rejected"


@dataclass
class RawDocument:
    """A PDF as received, before any text extraction."""

    data: bytes
    filename: str
    source: StatementSource = StatementSource.MANUAL


@dataclass(frozen=True)
class ExtractedText:
    """Text recovered from a PDF, by text layer or OCR."""

    text: str
    page_count: int
    scanned: bool
    method: ExtractionMethod
    ocr_confidence: float | None = None
    ocr_warning: str | None = None


@dataclass(frozen=True)
class ClassificationVerdict:
    """Outcome of the keyword heuristic over a document's text."""

    is_statement: bool
    confidence: ConfidenceTier
    score: int = 0
    matches: tuple[str, ...] = ()
    reason: str | None = None
    negative_matches: tuple[str, ...] = ()
    has_bank_name: bool = False


@dataclass(frozen=True)
class TriageDecision:
    """Terminal decision for one inbox message."""

    case: TriageCase
    reason: str
    sender_domain: str
    verdict: ClassificationVerdict | None = None
    keyword_location: str | None = None

    @property
    def accepted(self) -> bool:
        return self.case is not TriageCase.REJECTED


@dataclass(frozen=True)
class AttachmentRef:
    """An attachment listed on an inbox message, not yet downloaded."""

    attachment_id: str
    filename: str
    content_type: str
    size: int = 0

    @property
    def is_pdf(self) -> bool:
        return (
            self.content_type.lower() == "application/pdf"
            or self.filename.lower().endswith(".pdf")
        )


@dataclass
class InboxMessage:
    """Headers, body and attachment listing of a mailbox message."""

    message_id: str
    subject: str
    sender: str
    date: datetime | None = None
    text_body: str | None = None
    html_body: str | None = None
    attachments: list[AttachmentRef] = field(default_factory=list)

    @property
    def pdf_attachments(self) -> list[AttachmentRef]:
        return [att for att in self.attachments if att.is_pdf]


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class BreakdownEntry(_CamelModel):
    """Points attributed to one spend category on the statement."""

    category: str = Field(min_length=1)
    points: float


class RewardPoints(_CamelModel):
    """Reward-point summary; a field is None when the statement omits it."""

    opening: float | None = None
    earned: float | None = None
    redeemed: float | None = None
    adjusted_lapsed: float | None = None
    closing: float | None = None
    breakdown: list[BreakdownEntry] | None = None


class RewardExtraction(_CamelModel):
    """Normalized model response for one statement."""

    bank_name: str | None = None
    statement_period: str | None = None
    reward_points: RewardPoints = Field(default_factory=RewardPoints)
    confidence: str | None = None
    notes: str | None = None


class InboxMetadata(_CamelModel):
    """Where an inbox-sourced statement came from and why it was accepted."""

    message_id: str
    subject: str | None = None
    sender: str | None = None
    date: datetime | None = None
    sender_domain: str | None = None
    triage_case: TriageCase | None = None
    triage_reason: str | None = None
    classification_confidence: ConfidenceTier | None = None
    classification_score: int | None = None
    subject_score: int | None = None
    filename_score: int | None = None
    is_from_bank: bool = False


class StatementRecord(_CamelModel):
    """A processed (or in-flight) statement owned by one user."""

    id: UUID = Field(default_factory=uuid4)
    user_id: str
    file_name: str
    bank_name: str = UNKNOWN_BANK
    statement_period: str | None = None
    card_variant: str = UNKNOWN_VARIANT
    card_number: str | None = None
    reward_points: RewardPoints = Field(default_factory=RewardPoints)
    raw_extracted_text: str | None = None
    ai_response: dict[str, object] | None = None
    processing_status: ProcessingStatus = ProcessingStatus.PROCESSING
    error_message: str | None = None
    source: StatementSource = StatementSource.MANUAL
    upload_date: datetime = Field(default_factory=lambda: datetime.now(tz=UTC))
    inbox: InboxMetadata | None = None

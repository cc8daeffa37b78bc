"""Keyword heuristics deciding whether text is a credit-card statement."""

from __future__ import annotations

import logging
import re
from functools import cache

from statement_rewards.lexicon import (
    BANK_NAME_INDICATORS,
    EMAIL_STATEMENT_KEYWORDS,
    FILENAME_STATEMENT_HINTS,
    NEGATIVE_INDICATORS,
    POSITIVE_INDICATORS,
    REQUIRED_INDICATORS,
)
from statement_rewards.models import ClassificationVerdict, ConfidenceTier

logger = logging.getLogger(__name__)

SAMPLE_CHARS = 2000
MIN_SAMPLE_CHARS = 100

REQUIRED_WEIGHT = 3
BANK_WEIGHT = 2
POSITIVE_WEIGHT = 1
NEGATIVE_WEIGHT = -5

HIGH_SCORE = 5
MEDIUM_SCORE = 3
LOW_SCORE = 1

INSUFFICIENT_TEXT = "Insufficient text extracted"
MISSING_REQUIRED = "No credit card statement keywords found"

_CARD_NUMBER_PATTERNS = (
    re.compile(r"\*{4,}\s?(\d{4})"),
    re.compile(r"x{4}\s?(\d{4})", re.IGNORECASE),
    re.compile(r"(\d{4})\s?\*{4,}"),
    re.compile(r"card\s+ending\s+(\d{4})", re.IGNORECASE),
    re.compile(r"ending\s+in\s+(\d{4})", re.IGNORECASE),
)

_DOCUMENT_TYPE_SIGNALS: tuple[tuple[str, tuple[str, ...], int], ...] = (
    ("credit_card_statement", ("credit card", "card account"), 3),
    ("credit_card_statement", ("reward points", "cashback"), 2),
    ("credit_card_statement", ("minimum payment", "payment due"), 2),
    ("invoice", ("invoice", "tax invoice"), 3),
    ("invoice", ("gst", "vat"), 1),
    ("receipt", ("receipt", "purchase receipt"), 2),
    ("bank_statement", ("savings account", "current account"), 2),
)


@cache
def _phrase_pattern(phrase: str) -> re.Pattern[str]:
    return re.compile(rf"(?<![a-z0-9]){re.escape(phrase)}(?:s|es|d|ed)?(?![a-z0-9])")


def contains_phrase(text: str, phrase: str) -> bool:
    """Word-start phrase test allowing plural and past-tense endings.

    Case-sensitive; callers lower-case first.
    """
    return _phrase_pattern(phrase).search(text) is not None


def quick_sample(text: str | None, max_chars: int = SAMPLE_CHARS) -> str:
    """Lower-cased leading slice of a document, used for all heuristics."""
    if not text:
        return ""
    return text[:max_chars].lower()


class ContentClassifier:
    """Score extracted text against statement indicator lists.

    Stateless: the same text always yields the same verdict.
    """

    def classify(self, text: str | None) -> ClassificationVerdict:
        sample = quick_sample(text)

        if len(sample) < MIN_SAMPLE_CHARS:
            logger.debug("Text too short for classification (%d chars)", len(sample))
            return ClassificationVerdict(
                is_statement=False,
                confidence=ConfidenceTier.LOW,
                reason=INSUFFICIENT_TEXT,
            )

        required = [p for p in REQUIRED_INDICATORS if contains_phrase(sample, p)]
        if not required:
            logger.debug("Missing required credit card indicators")
            return ClassificationVerdict(
                is_statement=False,
                confidence=ConfidenceTier.HIGH,
                reason=MISSING_REQUIRED,
            )

        banks = [p for p in BANK_NAME_INDICATORS if contains_phrase(sample, p)]
        positive = [p for p in POSITIVE_INDICATORS if contains_phrase(sample, p)]
        negative = [p for p in NEGATIVE_INDICATORS if contains_phrase(sample, p)]

        score = (
            REQUIRED_WEIGHT * len(required)
            + BANK_WEIGHT * len(banks)
            + POSITIVE_WEIGHT * len(positive)
            + NEGATIVE_WEIGHT * len(negative)
        )
        matches = (*required, *banks, *positive)

        if negative:
            reason = f"Non-statement indicators present: {', '.join(negative)}"
            verdict = ClassificationVerdict(
                is_statement=False,
                confidence=ConfidenceTier.LOW,
                score=score,
                matches=matches,
                reason=reason,
                negative_matches=tuple(negative),
                has_bank_name=bool(banks),
            )
        else:
            tier, is_statement = _tier_for(score)
            verdict = ClassificationVerdict(
                is_statement=is_statement,
                confidence=tier,
                score=score,
                matches=matches,
                reason=None if is_statement else "Statement score too low",
                has_bank_name=bool(banks),
            )

        logger.debug(
            "Statement validation score=%d confidence=%s matches=%s",
            verdict.score,
            verdict.confidence,
            ", ".join(matches[:3]),
        )
        return verdict

    @staticmethod
    def has_card_number_pattern(text: str | None) -> bool:
        """True if the sample shows a masked card number; corroborating only."""
        return extract_card_number(text) is not None

    @staticmethod
    def estimate_document_type(text: str | None) -> tuple[str, ConfidenceTier]:
        """Best guess at what kind of financial document the text is."""
        sample = quick_sample(text, 3000)
        scores = {
            "credit_card_statement": 0,
            "invoice": 0,
            "receipt": 0,
            "bank_statement": 0,
        }
        for doc_type, phrases, weight in _DOCUMENT_TYPE_SIGNALS:
            if any(contains_phrase(sample, p) for p in phrases):
                scores[doc_type] += weight

        best_type, best_score = "other", 0
        for doc_type, score in scores.items():
            if score > best_score:
                best_type, best_score = doc_type, score

        if best_score >= 3:
            return best_type, ConfidenceTier.HIGH
        if best_score >= 2:
            return best_type, ConfidenceTier.MEDIUM
        return best_type, ConfidenceTier.LOW

    @staticmethod
    def score_subject(subject: str | None) -> int:
        """Count statement keywords in an email subject line."""
        lowered = (subject or "").lower()
        return sum(1 for k in EMAIL_STATEMENT_KEYWORDS if contains_phrase(lowered, k))

    @staticmethod
    def score_filename(filename: str | None) -> int:
        """Count statement hints in an attachment filename."""
        lowered = (filename or "").lower()
        return sum(1 for hint in FILENAME_STATEMENT_HINTS if hint in lowered)


def extract_card_number(text: str | None) -> str | None:
    """Return the last four digits of the first masked card number."""
    sample = quick_sample(text)
    for pattern in _CARD_NUMBER_PATTERNS:
        match = pattern.search(sample)
        if match:
            return match.group(1)
    return None


def _tier_for(score: int) -> tuple[ConfidenceTier, bool]:
    if score >= HIGH_SCORE:
        return ConfidenceTier.HIGH, True
    if score >= MEDIUM_SCORE:
        return ConfidenceTier.MEDIUM, True
    if score >= LOW_SCORE:
        return ConfidenceTier.LOW, True
    return ConfidenceTier.LOW, False

"""Reduce a user's statements to the latest one per bank and card variant.

Statement periods are free text, so each record's period is parsed into an
end date through an ordered cascade of patterns. Records whose period
cannot be parsed never win a group but are never dropped either.
"""

from __future__ import annotations

import calendar
import logging
import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import date

from statement_rewards.classifier import contains_phrase
from statement_rewards.lexicon import BANK_ALIASES, CARD_VARIANTS, MONTHS
from statement_rewards.models import UNKNOWN_VARIANT, StatementRecord

logger = logging.getLogger(__name__)

UNKNOWN_BANK_KEY = "unknown"

EXACT_VARIANT_SCORE = 100.0
PARTIAL_VARIANT_WEIGHT = 80.0
MIN_VARIANT_SCORE = 40.0
MIN_VARIANT_WORD_LENGTH = 3

GroupKey = tuple[str, str]


def normalize_bank_name(bank_name: str | None) -> str:
    """Lower-case a bank name and collapse known aliases ("HDFC" -> "hdfc bank")."""
    if not bank_name or not bank_name.strip():
        return UNKNOWN_BANK_KEY
    normalized = " ".join(bank_name.lower().split())
    for alias, canonical in BANK_ALIASES:
        if contains_phrase(normalized, alias):
            return canonical
    return normalized


def _variant_score(variant: str, text: str) -> float:
    name = variant.lower()
    if name in text:
        return EXACT_VARIANT_SCORE
    words = name.split()
    matched = [w for w in words if len(w) >= MIN_VARIANT_WORD_LENGTH and w in text]
    return len(matched) / len(words) * PARTIAL_VARIANT_WEIGHT


def detect_card_variant(text: str | None, bank_name: str | None) -> str:
    """Fuzzy-match free text against the bank's known card products.

    An exact (case-insensitive) substring scores 100; otherwise the share
    of the variant's words found in the text scales 80. The best score of
    at least 40 wins, preferring the longer name on a tie.
    """
    if not text or not bank_name:
        return UNKNOWN_VARIANT

    variants = CARD_VARIANTS.get(normalize_bank_name(bank_name))
    if not variants:
        return UNKNOWN_VARIANT

    haystack = text.lower()
    best, best_score = UNKNOWN_VARIANT, 0.0
    for variant in variants:
        score = _variant_score(variant, haystack)
        if score > best_score or (
            score == best_score and score > 0 and len(variant) > len(best)
        ):
            best, best_score = variant, score

    return best if best_score >= MIN_VARIANT_SCORE else UNKNOWN_VARIANT


def _safe_date(year: int, month: int, day: int) -> date | None:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def _day_month_name(match: re.Match[str]) -> date | None:
    month = MONTHS.get(match.group(2).lower())
    if month is None:
        return None
    return _safe_date(int(match.group(3)), month, int(match.group(1)))


def _month_name_day(match: re.Match[str]) -> date | None:
    month = MONTHS.get(match.group(1).lower())
    if month is None:
        return None
    return _safe_date(int(match.group(3)), month, int(match.group(2)))


def _numeric_day_first(match: re.Match[str]) -> date | None:
    first, second, year = int(match.group(1)), int(match.group(3)), int(match.group(4))
    return _safe_date(year, second, first) or _safe_date(year, first, second)


def _iso(match: re.Match[str]) -> date | None:
    return _safe_date(int(match.group(1)), int(match.group(3)), int(match.group(4)))


def _month_year(match: re.Match[str]) -> date | None:
    month = MONTHS.get(match.group(1).lower())
    if month is None:
        return None
    year = int(match.group(2))
    return _safe_date(year, month, calendar.monthrange(year, month)[1])


# Each pattern is anchored at the end of the period string, so a range
# ("<start> - <end>", "<start> to <end>") resolves to its end date and a
# single date resolves to itself.
DateBuilder = Callable[[re.Match[str]], date | None]

_DATE_PATTERNS: tuple[tuple[re.Pattern[str], DateBuilder], ...] = (
    (
        re.compile(
            r"(?<!\d)(\d{1,2})(?:st|nd|rd|th)?[\s-]+([a-z]+)\.?,?[\s-]+(\d{4})\s*$",
            re.IGNORECASE,
        ),
        _day_month_name,
    ),
    (
        re.compile(
            r"(?<![a-z])([a-z]+)\.?\s+(\d{1,2})(?:st|nd|rd|th)?,?\s+(\d{4})\s*$",
            re.IGNORECASE,
        ),
        _month_name_day,
    ),
    (re.compile(r"(?<!\d)(\d{1,2})([/.-])(\d{1,2})\2(\d{4})\s*$"), _numeric_day_first),
    (re.compile(r"(?<!\d)(\d{4})([/.-])(\d{1,2})\2(\d{1,2})\s*$"), _iso),
    (re.compile(r"(?<![a-z])([a-z]+)\.?,?\s+(\d{4})\s*$", re.IGNORECASE), _month_year),
)


def parse_statement_date(period: str | None) -> date | None:
    """Return the end date of a statement period, or None if unparseable."""
    if not period:
        return None
    text = period.strip()
    for pattern, build in _DATE_PATTERNS:
        match = pattern.search(text)
        if match is None:
            continue
        parsed = build(match)
        if parsed is not None:
            return parsed
    return None


def are_duplicates(first: StatementRecord, second: StatementRecord) -> bool:
    """Same raw period, and either the same masked card or the same file."""
    if first.statement_period != second.statement_period:
        return False
    if first.card_number and second.card_number:
        if first.card_number == second.card_number:
            return True
    return first.file_name == second.file_name


@dataclass(frozen=True)
class FilterSummary:
    total_statements: int = 0
    unique_banks: int = 0
    unique_cards: int = 0
    latest_statements: int = 0
    filtered_statements: int = 0
    duplicates: int = 0
    undated: int = 0


@dataclass
class FilterResult:
    """Partition of a record set; latest + filtered + duplicates is the input."""

    latest: list[StatementRecord] = field(default_factory=list)
    filtered: list[StatementRecord] = field(default_factory=list)
    duplicates: list[StatementRecord] = field(default_factory=list)
    undated: list[StatementRecord] = field(default_factory=list)
    summary: FilterSummary = field(default_factory=FilterSummary)


@dataclass(frozen=True)
class GroupStats:
    bank_name: str
    card_variant: str
    total_statements: int
    latest_date: date | None
    oldest_date: date | None
    date_range: str


@dataclass(frozen=True)
class PeriodCheck:
    original: str | None
    parsed_date: date | None
    is_valid: bool
    formatted_date: str | None


class StatementDeduplicator:
    """Group statements per card and pick the latest of each group."""

    def group_key(self, record: StatementRecord) -> GroupKey:
        bank = normalize_bank_name(record.bank_name)
        variant = record.card_variant or UNKNOWN_VARIANT
        if variant == UNKNOWN_VARIANT:
            variant = detect_card_variant(record.raw_extracted_text, record.bank_name)
        return bank, variant

    def group(
        self, records: Iterable[StatementRecord]
    ) -> dict[GroupKey, list[StatementRecord]]:
        groups: dict[GroupKey, list[StatementRecord]] = {}
        for record in records:
            groups.setdefault(self.group_key(record), []).append(record)
        return groups

    def filter_latest(self, records: Iterable[StatementRecord]) -> FilterResult:
        groups = self.group(records)
        result = FilterResult()

        for (bank, variant), members in groups.items():
            logger.debug("Group %s / %s: %d statement(s)", bank, variant, len(members))
            if len(members) == 1:
                result.latest.append(members[0])
                continue
            self._resolve_group(members, result)

        total = sum(len(members) for members in groups.values())
        result.summary = FilterSummary(
            total_statements=total,
            unique_banks=len({bank for bank, _variant in groups}),
            unique_cards=len(groups),
            latest_statements=len(result.latest),
            filtered_statements=len(result.filtered),
            duplicates=len(result.duplicates),
            undated=len(result.undated),
        )
        logger.info(
            "Kept %d latest of %d statement(s): %d older, %d duplicate(s), %d undated",
            len(result.latest),
            total,
            len(result.filtered),
            len(result.duplicates),
            len(result.undated),
        )
        return result

    @staticmethod
    def _resolve_group(members: list[StatementRecord], result: FilterResult) -> None:
        dated = []
        undated = []
        for record in members:
            parsed = parse_statement_date(record.statement_period)
            if parsed is None:
                undated.append(record)
            else:
                dated.append((parsed, record))

        result.undated.extend(undated)
        if undated:
            logger.warning(
                "%d statement(s) without a valid period date in group", len(undated)
            )

        if not dated:
            latest = max(undated, key=lambda r: r.upload_date)
            result.latest.append(latest)
            result.filtered.extend(r for r in undated if r is not latest)
            return

        dated.sort(key=lambda item: (item[0], item[1].upload_date), reverse=True)

        kept: list[StatementRecord] = []
        for _parsed, record in dated:
            if any(are_duplicates(record, other) for other in kept):
                result.duplicates.append(record)
            else:
                kept.append(record)

        result.latest.append(kept[0])
        result.filtered.extend(kept[1:])
        result.filtered.extend(undated)


def filter_latest(records: Iterable[StatementRecord]) -> FilterResult:
    """Convenience wrapper around StatementDeduplicator.filter_latest."""
    return StatementDeduplicator().filter_latest(records)


def sort_by_statement_date(records: Iterable[StatementRecord]) -> list[StatementRecord]:
    """Most recent period first; undated records last, in input order."""
    keyed = [(parse_statement_date(r.statement_period), r) for r in records]
    dated = sorted(
        ((d, r) for d, r in keyed if d is not None),
        key=lambda item: item[0],
        reverse=True,
    )
    return [r for _d, r in dated] + [r for d, r in keyed if d is None]


def _format_day(value: date) -> str:
    return value.strftime("%d/%m/%Y")


def statement_stats(records: Iterable[StatementRecord]) -> list[GroupStats]:
    """Per-group counts and covered date range, largest group first."""
    stats = []
    for (bank, variant), members in StatementDeduplicator().group(records).items():
        parsed = (parse_statement_date(r.statement_period) for r in members)
        dates = sorted((d for d in parsed if d is not None), reverse=True)
        if len(dates) > 1:
            date_range = f"{_format_day(dates[-1])} - {_format_day(dates[0])}"
        elif dates:
            date_range = _format_day(dates[0])
        else:
            date_range = "No valid dates"
        stats.append(
            GroupStats(
                bank_name=bank,
                card_variant=variant,
                total_statements=len(members),
                latest_date=dates[0] if dates else None,
                oldest_date=dates[-1] if dates else None,
                date_range=date_range,
            )
        )
    return sorted(stats, key=lambda s: s.total_statements, reverse=True)


def validate_statement_period(period: str | None) -> PeriodCheck:
    """Report whether a period string parses, for diagnostics."""
    parsed = parse_statement_date(period)
    return PeriodCheck(
        original=period,
        parsed_date=parsed,
        is_valid=parsed is not None,
        formatted_date=parsed.strftime("%d %b %Y") if parsed else None,
    )

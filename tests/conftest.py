"""Shared test fixtures."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

import fitz  # PyMuPDF
import pytest

from statement_rewards.config import ImapConfig
from statement_rewards.models import (
    ExtractedText,
    ExtractionMethod,
    ProcessingStatus,
    RewardPoints,
    StatementRecord,
)

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

STATEMENT_TEXT = """\
HDFC Bank Credit Card Statement
Card Number: XXXX XXXX XXXX 4321
Infinia Credit Card
Statement Period: 03 Jan, 2026 - 02 Feb, 2026
Payment Due Date: 22 Feb, 2026
Total Amount Due: 45,210.00
Credit Limit: 8,00,000.00  Available Credit: 7,54,790.00
Reward Points Summary
Opening Balance Earned Redeemed Adjusted/Lapsed Closing Balance
12,500 1,840 0 0 14,340
"""


@pytest.fixture
def spool_root(tmp_path: Path) -> Path:
    """Provide a temporary directory as the attachment spool root."""
    root = tmp_path / "spool"
    root.mkdir()
    return root


@pytest.fixture
def imap_config() -> ImapConfig:
    """Provide a test IMAP configuration."""
    return ImapConfig(
        host="imap.example.com",
        username="test@example.com",
        password="secret",  # pragma: allowlist secret
        port=993,
        folder="INBOX",
        gmail_search=True,
    )


@pytest.fixture
def statement_text() -> str:
    """Text of a typical card statement's first page."""
    return STATEMENT_TEXT


@pytest.fixture
def extracted_statement(statement_text: str) -> ExtractedText:
    return ExtractedText(
        text=statement_text,
        page_count=1,
        scanned=False,
        method=ExtractionMethod.DIRECT,
    )


@pytest.fixture
def make_pdf() -> Callable[..., bytes]:
    """Build a PDF whose text layer holds the given lines, one page per list."""

    def _make(*pages: str) -> bytes:
        doc = fitz.open()
        try:
            for text in pages or ("",):
                page = doc.new_page()
                for i, line in enumerate(text.splitlines()):
                    page.insert_text((72, 72 + i * 14), line, fontsize=10)
            return doc.tobytes()
        finally:
            doc.close()

    return _make


@pytest.fixture
def make_record() -> Callable[..., StatementRecord]:
    """Build a completed StatementRecord with sensible defaults."""

    def _make(**overrides: object) -> StatementRecord:
        fields: dict[str, object] = {
            "user_id": "user-1",
            "file_name": "statement.pdf",
            "bank_name": "HDFC Bank",
            "statement_period": "03 Jan, 2026 - 02 Feb, 2026",
            "card_variant": "Infinia",
            "processing_status": ProcessingStatus.COMPLETED,
            "reward_points": RewardPoints(closing=14340),
            "upload_date": datetime(2026, 2, 5, 9, 0, tzinfo=UTC),
        }
        fields.update(overrides)
        return StatementRecord(**fields)  # type: ignore[arg-type]

    return _make

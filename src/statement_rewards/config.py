"""Configuration via environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class ImapConfig:
    """IMAP connection configuration."""

    host: str
    username: str
    password: str
    port: int = 993
    folder: str = "INBOX"
    gmail_search: bool = True


@dataclass(frozen=True)
class OcrConfig:
    """Rasterization and Tesseract settings."""

    dpi: int = 300
    lang: str = "eng"
    tesseract_cmd: str | None = None


def get_database_url() -> str:
    """Return the DATABASE_URL from the environment."""
    url = os.environ.get("DATABASE_URL")
    if not url:
        msg = "DATABASE_URL environment variable is required"
        raise ValueError(msg)
    return url


def get_spool_path() -> Path:
    """Return the STATEMENT_SPOOL_PATH, defaulting to ./data/spool.

    Downloaded attachments and rasterized pages live here only while a
    single document is being processed.
    """
    return Path(os.environ.get("STATEMENT_SPOOL_PATH", "./data/spool")).resolve()


def get_imap_config() -> ImapConfig:
    """Build IMAP configuration from environment variables.

    Required: IMAP_HOST, IMAP_USERNAME, IMAP_PASSWORD
    Optional: IMAP_PORT (default 993), IMAP_FOLDER (default INBOX),
    IMAP_GMAIL_SEARCH (default true; use X-GM-RAW search syntax)
    """
    host = os.environ.get("IMAP_HOST")
    username = os.environ.get("IMAP_USERNAME")
    password = os.environ.get("IMAP_PASSWORD")

    missing = []
    if not host:
        missing.append("IMAP_HOST")
    if not username:
        missing.append("IMAP_USERNAME")
    if not password:
        missing.append("IMAP_PASSWORD")

    if missing:
        msg = f"Required environment variables not set: {', '.join(missing)}"
        raise ValueError(msg)

    port = int(os.environ.get("IMAP_PORT", "993"))
    folder = os.environ.get("IMAP_FOLDER", "INBOX")
    gmail_search = os.environ.get("IMAP_GMAIL_SEARCH", "true").lower() in _TRUTHY

    return ImapConfig(
        host=host,  # type: ignore[arg-type]
        username=username,  # type: ignore[arg-type]
        password=password,  # type: ignore[arg-type]
        port=port,
        folder=folder,
        gmail_search=gmail_search,
    )


def get_ocr_config() -> OcrConfig:
    """Build OCR configuration from OCR_DPI, OCR_LANG and TESSERACT_CMD."""
    return OcrConfig(
        dpi=int(os.environ.get("OCR_DPI", "300")),
        lang=os.environ.get("OCR_LANG", "eng"),
        tesseract_cmd=os.environ.get("TESSERACT_CMD") or None,
    )


def get_anthropic_api_key() -> str:
    """Return the ANTHROPIC_API_KEY from the environment."""
    key = os.environ.get("ANTHROPIC_API_KEY")
    if not key:
        msg = "ANTHROPIC_API_KEY environment variable is required"
        raise ValueError(msg)
    return key


def get_llm_model() -> str:
    """Return the LLM model identifier.

    Defaults to claude-haiku-4-5-20251001.
    """
    return os.environ.get("LLM_MODEL", "claude-haiku-4-5-20251001")

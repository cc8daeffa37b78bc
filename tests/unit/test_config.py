"""Tests for statement_rewards.config."""

from __future__ import annotations

from pathlib import Path

import pytest

from statement_rewards.config import (
    ImapConfig,
    OcrConfig,
    get_anthropic_api_key,
    get_database_url,
    get_imap_config,
    get_llm_model,
    get_ocr_config,
    get_spool_path,
)


@pytest.fixture
def imap_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("IMAP_HOST", "imap.gmail.com")
    monkeypatch.setenv("IMAP_USERNAME", "user@example.com")
    monkeypatch.setenv("IMAP_PASSWORD", "pass123")  # pragma: allowlist secret
    for name in ("IMAP_PORT", "IMAP_FOLDER", "IMAP_GMAIL_SEARCH"):
        monkeypatch.delenv(name, raising=False)


class TestGetImapConfig:
    """Tests for get_imap_config()."""

    @pytest.mark.usefixtures("imap_env")
    def test_valid_config(self) -> None:
        config = get_imap_config()

        assert config.host == "imap.gmail.com"
        assert config.username == "user@example.com"
        assert config.password == "pass123"  # pragma: allowlist secret
        assert config.port == 993
        assert config.folder == "INBOX"
        assert config.gmail_search is True

    @pytest.mark.usefixtures("imap_env")
    def test_custom_port_folder_and_search(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("IMAP_PORT", "143")
        monkeypatch.setenv("IMAP_FOLDER", "Statements")
        monkeypatch.setenv("IMAP_GMAIL_SEARCH", "false")

        config = get_imap_config()

        assert config.port == 143
        assert config.folder == "Statements"
        assert config.gmail_search is False

    @pytest.mark.usefixtures("imap_env")
    def test_missing_password_raises(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("IMAP_PASSWORD")

        with pytest.raises(ValueError, match="IMAP_PASSWORD"):
            get_imap_config()

    def test_missing_all_required_raises(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("IMAP_HOST", raising=False)
        monkeypatch.delenv("IMAP_USERNAME", raising=False)
        monkeypatch.delenv("IMAP_PASSWORD", raising=False)

        with pytest.raises(
            ValueError, match=r"IMAP_HOST.*IMAP_USERNAME.*IMAP_PASSWORD"
        ):
            get_imap_config()

    def test_config_is_frozen(self) -> None:
        config = ImapConfig(
            host="imap.example.com",
            username="user@example.com",
            password="pass",  # pragma: allowlist secret
        )
        with pytest.raises(AttributeError):
            config.host = "other.example.com"  # type: ignore[misc]


class TestGetOcrConfig:
    """Tests for get_ocr_config()."""

    def test_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        for name in ("OCR_DPI", "OCR_LANG", "TESSERACT_CMD"):
            monkeypatch.delenv(name, raising=False)

        assert get_ocr_config() == OcrConfig(dpi=300, lang="eng", tesseract_cmd=None)

    def test_overrides(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("OCR_DPI", "200")
        monkeypatch.setenv("OCR_LANG", "eng+hin")
        monkeypatch.setenv("TESSERACT_CMD", "/usr/local/bin/tesseract")

        config = get_ocr_config()

        assert config.dpi == 200
        assert config.lang == "eng+hin"
        assert config.tesseract_cmd == "/usr/local/bin/tesseract"


class TestPathsAndSecrets:
    """Tests for database URL, spool path and API key lookups."""

    def test_database_url_present(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("DATABASE_URL", "postgresql://localhost/rewards")
        assert get_database_url() == "postgresql://localhost/rewards"

    def test_database_url_missing_raises(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("DATABASE_URL", raising=False)
        with pytest.raises(ValueError, match="DATABASE_URL"):
            get_database_url()

    def test_spool_path_default(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("STATEMENT_SPOOL_PATH", raising=False)
        assert get_spool_path() == Path("./data/spool").resolve()

    def test_spool_path_override(
        self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path
    ) -> None:
        monkeypatch.setenv("STATEMENT_SPOOL_PATH", str(tmp_path / "spool"))
        assert get_spool_path() == tmp_path / "spool"

    def test_api_key_present(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant-test-key")
        assert get_anthropic_api_key() == "sk-ant-test-key"

    def test_api_key_missing_raises(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        with pytest.raises(ValueError, match="ANTHROPIC_API_KEY"):
            get_anthropic_api_key()


class TestGetLlmModel:
    """Tests for get_llm_model()."""

    def test_default_model(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("LLM_MODEL", raising=False)
        assert get_llm_model() == "claude-haiku-4-5-20251001"

    def test_custom_model(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("LLM_MODEL", "claude-sonnet-4-20250514")
        assert get_llm_model() == "claude-sonnet-4-20250514"

"""Mailbox protocol and search query."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from datetime import date

    from statement_rewards.models import InboxMessage


@dataclass(frozen=True)
class SearchQuery:
    """Messages with PDF attachments, optionally within a date range."""

    after: date | None = None
    before: date | None = None
    sender: str | None = None
    max_results: int = 100

    def to_gmail_query(self) -> str:
        """Gmail search syntax, as used by the web UI and X-GM-RAW."""
        terms = ["has:attachment", "filename:pdf"]
        if self.after:
            terms.append(f"after:{self.after:%Y/%m/%d}")
        if self.before:
            terms.append(f"before:{self.before:%Y/%m/%d}")
        if self.sender:
            terms.append(f"from:{self.sender}")
        return " ".join(terms)

    def to_imap_criteria(self) -> list[str]:
        """Plain RFC 3501 SEARCH criteria; attachments are filtered later."""
        criteria: list[str] = []
        if self.after:
            criteria.extend(["SINCE", self.after.strftime("%d-%b-%Y")])
        if self.before:
            criteria.extend(["BEFORE", self.before.strftime("%d-%b-%Y")])
        if self.sender:
            criteria.extend(["FROM", quote_imap_string(self.sender)])
        return criteria or ["ALL"]


def quote_imap_string(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


@runtime_checkable
class Mailbox(Protocol):
    """Protocol for mailbox sources of statement attachments."""

    def search_messages(self, query: SearchQuery) -> list[str]: ...

    def get_message(self, message_id: str) -> InboxMessage: ...

    def download_attachment(self, message_id: str, attachment_id: str) -> bytes: ...

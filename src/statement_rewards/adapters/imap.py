"""IMAP mailbox adapter."""

from __future__ import annotations

import imaplib
import logging
from email import message_from_bytes
from email.header import decode_header
from email.utils import parsedate_to_datetime
from typing import TYPE_CHECKING, cast

from statement_rewards.adapters.base import quote_imap_string
from statement_rewards.errors import (
    MailboxConnectionError,
    MailboxSearchError,
    MessageFetchError,
)
from statement_rewards.models import AttachmentRef, InboxMessage

if TYPE_CHECKING:
    from collections.abc import Iterator
    from email.message import Message
    from types import TracebackType

    from statement_rewards.adapters.base import SearchQuery
    from statement_rewards.config import ImapConfig

logger = logging.getLogger(__name__)


class ImapMailbox:
    """Read-only view of one IMAP folder, addressed by message UID.

    Use as a context manager; the connection is logged out on exit.
    """

    def __init__(self, config: ImapConfig) -> None:
        self.config = config
        self._conn: imaplib.IMAP4_SSL | None = None
        # Holds only the most recently fetched message.
        self._cached: tuple[str, Message] | None = None

    def __enter__(self) -> ImapMailbox:
        self.open()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def open(self) -> None:
        """Establish an IMAP4_SSL connection, authenticate, select the folder.

        Raises MailboxConnectionError if any of those steps fails.
        """
        try:
            conn = imaplib.IMAP4_SSL(self.config.host, self.config.port)
            conn.login(self.config.username, self.config.password)
            status, _data = conn.select(self.config.folder, readonly=True)
        except (imaplib.IMAP4.error, OSError) as exc:
            msg = f"Could not open mailbox on {self.config.host}: {exc}"
            raise MailboxConnectionError(msg) from exc
        self._conn = conn
        if status != "OK":
            self.close()
            msg = f"Could not select folder {self.config.folder}"
            raise MailboxConnectionError(msg)

    def close(self) -> None:
        conn, self._conn = self._conn, None
        self._cached = None
        if conn is None:
            return
        try:
            conn.logout()
        except (imaplib.IMAP4.error, OSError):
            logger.debug("Error during IMAP logout", exc_info=True)

    def search_messages(self, query: SearchQuery) -> list[str]:
        """Return matching UIDs, newest first, capped at max_results."""
        conn = self._connection()
        try:
            if self.config.gmail_search:
                status, data = conn.uid(
                    "SEARCH", "X-GM-RAW", quote_imap_string(query.to_gmail_query())
                )
            else:
                status, data = conn.uid("SEARCH", None, *query.to_imap_criteria())
        except (imaplib.IMAP4.error, OSError) as exc:
            msg = f"Mailbox search failed: {exc}"
            raise MailboxSearchError(msg) from exc

        if status != "OK":
            msg = f"Mailbox search failed with status {status}"
            raise MailboxSearchError(msg)

        raw = data[0] if data else None
        if not raw:
            return []
        uids = [uid.decode() for uid in cast("bytes", raw).split()]
        uids.reverse()
        logger.info("Mailbox search matched %d message(s)", len(uids))
        return uids[: query.max_results]

    def get_message(self, message_id: str) -> InboxMessage:
        """Fetch a message by UID and list its body and attachments.

        Raises MessageFetchError if the message cannot be fetched or parsed.
        """
        msg = self._load(message_id)
        try:
            return self._to_inbox_message(message_id, msg)
        except (LookupError, ValueError, UnicodeError) as exc:
            text = f"Failed to parse message {message_id}: {exc}"
            raise MessageFetchError(text) from exc

    def _to_inbox_message(self, message_id: str, msg: Message) -> InboxMessage:
        date_str = msg.get("Date")
        try:
            email_date = parsedate_to_datetime(date_str) if date_str else None
        except (TypeError, ValueError):
            logger.debug("Unparseable Date header on %s: %r", message_id, date_str)
            email_date = None

        html_body, text_body = self._extract_bodies(msg)
        attachments = [
            AttachmentRef(
                attachment_id=str(index),
                filename=part.get_filename() or "unnamed",
                content_type=part.get_content_type(),
                size=len(cast("bytes", part.get_payload(decode=True) or b"")),
            )
            for index, part in enumerate(self._attachment_parts(msg))
        ]

        return InboxMessage(
            message_id=message_id,
            subject=self._decode_header_value(msg.get("Subject", "")),
            sender=self._decode_header_value(msg.get("From", "")),
            date=email_date,
            text_body=text_body,
            html_body=html_body,
            attachments=attachments,
        )

    def download_attachment(self, message_id: str, attachment_id: str) -> bytes:
        """Return the decoded bytes of one attachment."""
        msg = self._load(message_id)
        for index, part in enumerate(self._attachment_parts(msg)):
            if str(index) == attachment_id:
                return cast("bytes", part.get_payload(decode=True) or b"")
        msg_text = f"Attachment {attachment_id} not found on message {message_id}"
        raise MessageFetchError(msg_text)

    def _connection(self) -> imaplib.IMAP4_SSL:
        if self._conn is None:
            msg = "Mailbox is not open"
            raise RuntimeError(msg)
        return self._conn

    def _load(self, message_id: str) -> Message:
        """Fetch the parsed message for a UID, reusing the last one loaded."""
        if self._cached is not None and self._cached[0] == message_id:
            return self._cached[1]

        conn = self._connection()
        try:
            _status, data = conn.uid("FETCH", message_id, "(RFC822)")
        except (imaplib.IMAP4.error, OSError) as exc:
            msg = f"Failed to fetch message {message_id}: {exc}"
            raise MessageFetchError(msg) from exc

        raw_email = None
        for part in data or []:
            if isinstance(part, tuple):
                raw_email = part[1]
                break
        if raw_email is None:
            msg = f"Message {message_id} returned no content"
            raise MessageFetchError(msg)

        parsed = message_from_bytes(raw_email)
        self._cached = (message_id, parsed)
        return parsed

    @staticmethod
    def _attachment_parts(msg: Message) -> Iterator[Message]:
        """Yield MIME parts carrying a filename or attachment disposition."""
        if not msg.is_multipart():
            return
        for part in msg.walk():
            if part.get_content_maintype() == "multipart":
                continue
            disposition = str(part.get("Content-Disposition", ""))
            if part.get_filename() or "attachment" in disposition.lower():
                yield part

    @staticmethod
    def _decode_header_value(value: str | None) -> str:
        """Decode an RFC 2047 encoded header value."""
        if not value:
            return ""
        parts = decode_header(value)
        decoded_parts: list[str] = []
        for data, charset in parts:
            if isinstance(data, bytes):
                decoded_parts.append(_decode_bytes(data, charset))
            else:
                decoded_parts.append(data)
        return "".join(decoded_parts)

    @staticmethod
    def _extract_bodies(msg: Message) -> tuple[str | None, str | None]:
        """Return the first inline HTML and plain-text bodies."""
        html_body: str | None = None
        text_body: str | None = None

        parts = msg.walk() if msg.is_multipart() else iter([msg])
        for part in parts:
            if part.get_content_maintype() == "multipart":
                continue
            disposition = str(part.get("Content-Disposition", ""))
            if part.get_filename() or "attachment" in disposition.lower():
                continue

            raw_payload = part.get_payload(decode=True)
            if raw_payload is None:
                continue
            payload = cast("bytes", raw_payload)
            charset = part.get_content_charset()
            content_type = part.get_content_type()

            if content_type == "text/html" and html_body is None:
                html_body = _decode_bytes(payload, charset)
            elif content_type == "text/plain" and text_body is None:
                text_body = _decode_bytes(payload, charset)

        return html_body, text_body


def _decode_bytes(data: bytes, charset: str | None) -> str:
    """Decode with the declared charset, falling back to utf-8 if it is unknown."""
    try:
        return data.decode(charset or "utf-8", errors="replace")
    except LookupError:
        logger.debug("Unknown charset %r, decoding as utf-8", charset)
        return data.decode("utf-8", errors="replace")

"""Exception hierarchy for the statement pipeline.

Everything a single document can fail with derives from
``StatementError``; the ingestion pipeline catches it at the per-document
boundary and records ``str(exc)`` on the statement.
"""

from __future__ import annotations


class StatementError(Exception):
    """Base class for per-document processing failures."""

    retryable = False


class ExtractionError(StatementError):
    """The file could not be opened or read as a PDF."""


class OcrError(ExtractionError):
    """Rasterization or text recognition failed after all fallbacks."""


class ClassificationInsufficientTextError(StatementError):
    """Too little text was recovered to classify or extract from."""


class ExtractionFailure(StatementError):
    """The generative-model extraction step failed."""


class MalformedResponseError(ExtractionFailure):
    """Model output was not a JSON object or lacked required keys.

    Not retried automatically, but the user may retry by hand.
    """

    retryable = True


class ModelRateLimitError(ExtractionFailure):
    """The model API rejected the call with a rate limit; try later."""

    retryable = True


class ModelAuthError(ExtractionFailure):
    """The model API rejected the credentials; fix configuration."""


class MessageFetchError(StatementError):
    """A single mailbox message or attachment could not be retrieved."""


class MailboxSearchError(Exception):
    """No messages could be listed at all; fatal for a fetch batch."""


class MailboxConnectionError(Exception):
    """The mailbox could not be connected to or logged into."""

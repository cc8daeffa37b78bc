"""Inbox triage: decide whether a message's PDFs are worth processing.

Cheap signals run first (attachment presence, sender domain, keywords);
PDF content analysis runs only when they are inconclusive. The cascade is
an ordered tuple of rules and the first rule to return a decision wins.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from email.utils import parseaddr
from html.parser import HTMLParser
from typing import TYPE_CHECKING

from statement_rewards.classifier import contains_phrase
from statement_rewards.lexicon import BANK_EMAIL_DOMAINS, EMAIL_STATEMENT_KEYWORDS
from statement_rewards.models import ClassificationVerdict, TriageCase, TriageDecision

if TYPE_CHECKING:
    from statement_rewards.models import InboxMessage

logger = logging.getLogger(__name__)

ContentProbe = Callable[[], ClassificationVerdict]


@dataclass(frozen=True)
class _Email:
    sender_domain: str
    subject: str
    body: str
    has_pdf_attachment: bool


Rule = Callable[[_Email, ContentProbe], TriageDecision | None]


def sender_domain(sender: str) -> str:
    """Lower-cased domain of a From header ("Bank <a@b.com>" -> "b.com")."""
    _name, address = parseaddr(sender or "")
    if "@" not in address:
        address = sender or ""
    return address.rpartition("@")[2].strip().strip(">").lower()


def is_bank_domain(domain: str) -> bool:
    """True if domain is, or is a subdomain of, a known issuer domain."""
    return any(
        domain == known or domain.endswith(f".{known}") for known in BANK_EMAIL_DOMAINS
    )


def _require_pdf(email: _Email, _probe: ContentProbe) -> TriageDecision | None:
    if email.has_pdf_attachment:
        return None
    return TriageDecision(
        case=TriageCase.REJECTED,
        reason="No PDF attachments",
        sender_domain=email.sender_domain,
    )


def _match_bank_domain(email: _Email, _probe: ContentProbe) -> TriageDecision | None:
    if not is_bank_domain(email.sender_domain):
        return None
    return TriageDecision(
        case=TriageCase.BANK_DOMAIN,
        reason=f"Sender domain {email.sender_domain} is a known bank",
        sender_domain=email.sender_domain,
    )


def _match_keywords(email: _Email, _probe: ContentProbe) -> TriageDecision | None:
    subject = email.subject.lower()
    body = email.body.lower()
    in_subject = [k for k in EMAIL_STATEMENT_KEYWORDS if contains_phrase(subject, k)]
    in_body = [k for k in EMAIL_STATEMENT_KEYWORDS if contains_phrase(body, k)]
    if not (in_subject or in_body):
        return None

    if in_subject and in_body:
        location = "both"
    elif in_subject:
        location = "subject"
    else:
        location = "body"
    keyword = (in_subject or in_body)[0]
    return TriageDecision(
        case=TriageCase.KEYWORD_MATCH,
        reason=f"Keyword '{keyword}' found in {location}",
        sender_domain=email.sender_domain,
        keyword_location=location,
    )


def _analyze_content(email: _Email, probe: ContentProbe) -> TriageDecision:
    verdict = probe()
    if verdict.is_statement:
        return TriageDecision(
            case=TriageCase.CONTENT_ANALYSIS,
            reason=(
                f"PDF content looks like a statement "
                f"(confidence {verdict.confidence}, score {verdict.score})"
            ),
            sender_domain=email.sender_domain,
            verdict=verdict,
        )
    return TriageDecision(
        case=TriageCase.REJECTED,
        reason=f"PDF content analysis rejected: {verdict.reason or 'not a statement'}",
        sender_domain=email.sender_domain,
        verdict=verdict,
    )


class EmailTriage:
    """Three-case decision cascade for inbox messages."""

    rules: tuple[Rule, ...] = (
        _require_pdf,
        _match_bank_domain,
        _match_keywords,
        _analyze_content,
    )

    def decide(
        self,
        sender: str,
        subject: str | None,
        body: str | None,
        has_pdf_attachment: bool,
        *,
        analyze_content: ContentProbe,
    ) -> TriageDecision:
        """Return the terminal decision for one message.

        analyze_content is called only when neither the sender domain nor
        the keywords settle the question.
        """
        email = _Email(
            sender_domain=sender_domain(sender),
            subject=subject or "",
            body=body or "",
            has_pdf_attachment=has_pdf_attachment,
        )
        for rule in self.rules:
            decision = rule(email, analyze_content)
            if decision is not None:
                logger.info("Triage %s: %s", decision.case, decision.reason)
                return decision

        msg = "Triage rules must end with a terminal rule"
        raise RuntimeError(msg)


def message_body_text(message: InboxMessage) -> str:
    """Plain-text body of a message, stripping tags from HTML-only mail."""
    if message.text_body:
        return message.text_body
    if message.html_body:
        return strip_html_tags(message.html_body)
    return ""


def strip_html_tags(html: str) -> str:
    """Remove HTML tags, returning only text content."""
    stripper = _HTMLTagStripper()
    stripper.feed(html)
    return stripper.get_text()


class _HTMLTagStripper(HTMLParser):
    """HTMLParser subclass that strips tags and returns text."""

    def __init__(self) -> None:
        super().__init__()
        self._parts: list[str] = []

    def handle_data(self, data: str) -> None:
        self._parts.append(data)

    def get_text(self) -> str:
        return "".join(self._parts)

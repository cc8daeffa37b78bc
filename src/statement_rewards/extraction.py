"""LLM-based reward-point extraction and response normalization."""

from __future__ import annotations

import json
import logging
import math
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

from pydantic_ai import Agent
from pydantic_ai.exceptions import ModelHTTPError, UnexpectedModelBehavior

from statement_rewards.config import get_anthropic_api_key, get_llm_model
from statement_rewards.errors import (
    ExtractionFailure,
    MalformedResponseError,
    ModelAuthError,
    ModelRateLimitError,
)
from statement_rewards.models import BreakdownEntry, RewardExtraction, RewardPoints

if TYPE_CHECKING:
    from statement_rewards.models import ExtractedText

logger = logging.getLogger(__name__)

_SYSTEM_PROMPT = """\
You extract reward-point balances from credit card statement text. \
You reply with a single JSON object and nothing else: no markdown, no code \
fences, no commentary.\
"""

_NULL_WORDS = frozenset({"", "null", "none", "undefined", "n/a", "na", "nil", "-"})
_NUMBER = r"\d[\d,]*(?:\.\d+)?"
_POINTS_UNIT = re.compile(r"\s*(?:reward\s+)?(?:points?|pts?)\.?$")
_LAPSED_LABEL = re.compile(
    r"(?:adjusted\s*/\s*lapsed|adjusted|lapsed|expired|forfeited)"
    rf"[^\d\n]{{0,40}}?({_NUMBER})",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class TextRewrite:
    """Rewrite of one bank's column-interleaved summary into labelled lines.

    The PDF text layer emits a row of column headers followed by the
    row of values on the same physical line; the rewrite pairs them up.
    """

    bank: str
    pattern: re.Pattern[str]
    replacement: str
    prompt_hint: str

    def apply(self, text: str) -> str:
        return self.pattern.sub(self.replacement, text, count=1)


def _rule(bank: str, pattern: str, replacement: str, prompt_hint: str) -> TextRewrite:
    return TextRewrite(
        bank=bank,
        pattern=re.compile(pattern, re.IGNORECASE),
        replacement=replacement,
        prompt_hint=prompt_hint,
    )


_N = rf"({_NUMBER})"

REWRITE_RULES: tuple[TextRewrite, ...] = (
    _rule(
        "Axis Bank",
        r"eDGE\s+REWARD\s+POINTS\s+BALANCE\s+AS\s+ON\s+DATE\s+CUSTOMER\s+ID\s+"
        r"(\d[\d,]*)\s+([\d/-]+)\s+(\d+)",
        r"eDGE REWARD POINTS BALANCE: \1\nBALANCE AS ON DATE: \2\nCUSTOMER ID: \3",
        '"eDGE REWARD POINTS BALANCE: <n>" is the closing balance. '
        '"CUSTOMER ID" is never a points value.',
    ),
    _rule(
        "HDFC Bank",
        r"Opening\s+Balance\s+Earned\s+Redeemed\s+Adjusted\s*/\s*Lapsed\s+"
        rf"Closing\s+Balance\s+{_N}\s+{_N}\s+{_N}\s+{_N}\s+{_N}",
        r"Opening Balance: \1\nEarned: \2\nRedeemed: \3\nAdjusted/Lapsed: \4\n"
        r"Closing Balance: \5",
        '"Opening Balance" -> opening, "Earned" -> earned, "Redeemed" -> '
        'redeemed, "Adjusted/Lapsed" -> adjustedLapsed, "Closing Balance" -> '
        "closing. Adjusted/Lapsed and Closing Balance are different fields.",
    ),
    _rule(
        "SBI Card",
        r"Previous\s+Balance\s+Earned\s+Redeemed\s+Expired\s*/\s*Forfeited\s+"
        rf"Closing\s+Balance\s+{_N}\s+{_N}\s+{_N}\s+{_N}\s+{_N}",
        r"Previous Balance: \1\nEarned: \2\nRedeemed: \3\nExpired/Forfeited: \4\n"
        r"Closing Balance: \5",
        '"Previous Balance" -> opening, "Expired/Forfeited" -> adjustedLapsed, '
        '"Closing Balance" -> closing.',
    ),
    _rule(
        "ICICI Bank",
        r"Opening\s+Points\s+Points\s+Earned\s+Points\s+Redeemed\s*/\s*Transferred\s+"
        rf"Points\s+Expired\s+Closing\s+Points\s+{_N}\s+{_N}\s+{_N}\s+{_N}\s+{_N}",
        r"Opening Points: \1\nPoints Earned: \2\nPoints Redeemed/Transferred: \3\n"
        r"Points Expired: \4\nClosing Points: \5",
        '"Points Redeemed/Transferred" -> redeemed, "Points Expired" -> '
        'adjustedLapsed, "Closing Points" -> closing.',
    ),
    _rule(
        "American Express",
        r"Membership\s+Rewards\s+Opening\s+Balance\s+Earned\s+Bonus\s+Redeemed\s+"
        rf"Closing\s+Balance\s+{_N}\s+{_N}\s+{_N}\s+{_N}\s+{_N}",
        r"MR Opening Balance: \1\nMR Earned: \2\nMR Bonus: \3\nMR Redeemed: \4\n"
        r"MR Closing Balance: \5",
        '"MR Earned" plus "MR Bonus" -> earned, "MR Redeemed" -> redeemed, '
        '"MR Closing Balance" -> closing. There is no lapsed field; use null.',
    ),
    _rule(
        "Kotak Mahindra Bank",
        r"Opening\s+Reward\s+Points\s+Points\s+Earned\s+Points\s+Redeemed\s+"
        rf"Points\s+Lapsed\s+Available\s+Points\s+{_N}\s+{_N}\s+{_N}\s+{_N}\s+{_N}",
        r"Opening Reward Points: \1\nPoints Earned: \2\nPoints Redeemed: \3\n"
        r"Points Lapsed: \4\nAvailable Points: \5",
        '"Points Lapsed" -> adjustedLapsed, "Available Points" -> closing.',
    ),
)


def preprocess_statement_text(text: str) -> str:
    """Apply every bank rewrite rule; each is a no-op when it does not match."""
    processed = text
    for rule in REWRITE_RULES:
        rewritten = rule.apply(processed)
        if rewritten != processed:
            logger.debug("Reassembled %s reward summary block", rule.bank)
        processed = rewritten
    return processed


@dataclass(frozen=True)
class ExtractionMetadata:
    """What is known about how the statement text was obtained."""

    scanned: bool = False
    ocr_confidence: float | None = None
    ocr_warning: str | None = None

    @classmethod
    def from_extracted(cls, extracted: ExtractedText) -> ExtractionMetadata:
        return cls(
            scanned=extracted.scanned,
            ocr_confidence=extracted.ocr_confidence,
            ocr_warning=extracted.ocr_warning,
        )


def build_prompt(text: str, metadata: ExtractionMetadata | None = None) -> str:
    """Compose the extraction instructions around preprocessed text."""
    metadata = metadata or ExtractionMetadata()
    bank_rules = "\n".join(
        f"   - {rule.bank}: {rule.prompt_hint}" for rule in REWRITE_RULES
    )

    parts = [
        "Analyze the credit card statement text below and extract its reward "
        "points summary.",
        "",
        "RULES:",
        "1. Reward points go by many names: reward points, loyalty points, "
        "cashback points, Membership Rewards, eDGE REWARD POINTS (Axis Bank), "
        "JetPrivilege points (ICICI), Bpoints (Bank of Baroda), RPay points, "
        "miles, ThankYou points, Ultimate Rewards.",
        "2. Report only values EXPLICITLY printed in the text. Never calculate "
        "points from transaction amounts, never assume earn rates, never "
        "derive one field from the others.",
        "3. Use null (not 0) for any value that is not printed.",
        "4. If only a single points balance is printed, it is the closing "
        "balance.",
        "5. breakdown is null unless the statement itself lists points per "
        "category.",
        "6. adjustedLapsed is only the adjusted, lapsed, expired or forfeited "
        "points. Never copy the closing balance into it.",
        "7. Identify the bank name and the statement period exactly as printed.",
        "8. Summary blocks have been rewritten into 'Label: value' lines. "
        "Map them like this:",
        bank_rules,
        "   - Any bank: 'Previous Balance', 'Opening Balance', 'Balance "
        "Forward' -> opening; 'Points Earned', 'Rewards Earned' -> earned; "
        "'Points Redeemed', 'Points Used' -> redeemed; 'Current Balance', "
        "'Closing Balance', 'Available Points' -> closing.",
    ]

    if metadata.scanned:
        parts.extend(["", "NOTE: This is a scanned PDF processed with OCR."])
        if metadata.ocr_confidence is not None:
            parts.append(f"OCR Confidence: {metadata.ocr_confidence:.2f}%")
        if metadata.ocr_warning:
            parts.append(f"OCR Warning: {metadata.ocr_warning}")
            parts.append(
                "The text may contain OCR errors (0/O, 1/I/l, 5/S, 8/B, rn/m). "
                "Be flexible when matching labels."
            )

    parts.extend(
        [
            "",
            "--- Statement Text ---",
            text,
            "--- End Statement Text ---",
            "",
            "Respond with exactly this JSON shape:",
            "{",
            '  "bankName": "string or null",',
            '  "statementPeriod": "string or null",',
            '  "rewardPoints": {',
            '    "opening": number or null,',
            '    "earned": number or null,',
            '    "redeemed": number or null,',
            '    "adjustedLapsed": number or null,',
            '    "closing": number or null,',
            '    "breakdown": [{"category": "string", "points": number}] or null',
            "  },",
            '  "confidence": "high" | "medium" | "low",',
            '  "notes": "string or null"',
            "}",
        ]
    )
    return "\n".join(parts)


def strip_code_fences(text: str) -> str:
    """Remove markdown code fences a model may wrap around JSON."""
    cleaned = text.strip()
    cleaned = re.sub(r"```(?:json)?\s*", "", cleaned, flags=re.IGNORECASE)
    return cleaned.strip()


def parse_model_output(text: str) -> dict[str, Any]:
    """Parse the raw completion into a JSON object."""
    try:
        payload = json.loads(strip_code_fences(text))
    except json.JSONDecodeError as exc:
        msg = "Failed to parse model response as JSON"
        raise MalformedResponseError(msg) from exc
    if not isinstance(payload, dict):
        msg = "Model response is not a JSON object"
        raise MalformedResponseError(msg)
    return payload


def coerce_points(value: object) -> float | None:
    """Turn a model-supplied number into a float, or None if absent."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        number = float(value)
    elif isinstance(value, str):
        cleaned = value.strip().lower().replace(",", "")
        cleaned = _POINTS_UNIT.sub("", cleaned)
        if cleaned in _NULL_WORDS:
            return None
        try:
            number = float(cleaned)
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def _coerce_breakdown(value: object) -> list[BreakdownEntry] | None:
    if not isinstance(value, list):
        return None
    entries = []
    for item in value:
        if not isinstance(item, dict):
            continue
        category = item.get("category")
        points = coerce_points(item.get("points"))
        if isinstance(category, str) and category.strip() and points is not None:
            entries.append(BreakdownEntry(category=category.strip(), points=points))
    return entries or None


def _optional_text(value: object) -> str | None:
    if isinstance(value, str):
        stripped = value.strip()
        if stripped.lower() not in _NULL_WORDS:
            return stripped
    return None


def normalize_reward_points(raw: dict[str, Any]) -> RewardPoints:
    """Build the fixed schema from a model's rewardPoints object."""
    return RewardPoints(
        opening=coerce_points(raw.get("opening")),
        earned=coerce_points(raw.get("earned")),
        redeemed=coerce_points(raw.get("redeemed")),
        adjusted_lapsed=coerce_points(raw.get("adjustedLapsed")),
        closing=coerce_points(raw.get("closing")),
        breakdown=_coerce_breakdown(raw.get("breakdown")),
    )


def stated_lapsed_values(text: str) -> set[float]:
    """Numbers printed right after an adjusted/lapsed/expired label."""
    values = set()
    for match in _LAPSED_LABEL.finditer(text):
        number = coerce_points(match.group(1))
        if number is not None:
            values.add(number)
    return values


def normalize_response(payload: dict[str, Any], source_text: str) -> RewardExtraction:
    """Validate a parsed model response against the reward schema.

    source_text is the preprocessed statement text, used to catch the
    model copying the closing balance into adjustedLapsed.
    """
    raw_points = payload.get("rewardPoints")
    if not isinstance(raw_points, dict):
        msg = "Model response is missing the rewardPoints object"
        raise MalformedResponseError(msg)

    points = normalize_reward_points(raw_points)
    notes = _optional_text(payload.get("notes"))

    if (
        points.adjusted_lapsed is not None
        and points.adjusted_lapsed == points.closing
        and points.adjusted_lapsed not in stated_lapsed_values(source_text)
    ):
        logger.warning(
            "Model put the closing balance %s into adjustedLapsed; clearing it",
            points.closing,
        )
        points = points.model_copy(update={"adjusted_lapsed": None})
        correction = "adjustedLapsed cleared: it duplicated the closing balance."
        notes = f"{notes} {correction}" if notes else correction

    return RewardExtraction(
        bank_name=_optional_text(payload.get("bankName")),
        statement_period=_optional_text(payload.get("statementPeriod")),
        reward_points=points,
        confidence=_optional_text(payload.get("confidence")),
        notes=notes,
    )


class CompletionModel(Protocol):
    """Generative model that turns a prompt into raw text."""

    def complete(self, prompt: str) -> str: ...


class AnthropicCompletionModel:
    """CompletionModel backed by a pydantic-ai Agent with text output."""

    def __init__(self, agent: Agent[None, str] | None = None) -> None:
        self.agent = agent if agent is not None else create_completion_agent()

    def complete(self, prompt: str) -> str:
        try:
            result: Any = self.agent.run_sync(prompt)
        except ModelHTTPError as exc:
            if exc.status_code == 429:
                msg = "Model API rate limit exceeded. Wait a moment and try again."
                raise ModelRateLimitError(msg) from exc
            if exc.status_code in (401, 403):
                msg = "Model API rejected the credentials. Check ANTHROPIC_API_KEY."
                raise ModelAuthError(msg) from exc
            msg = f"Model extraction failed: {exc}"
            raise ExtractionFailure(msg) from exc
        except UnexpectedModelBehavior as exc:
            msg = f"Model extraction failed: {exc}"
            raise ExtractionFailure(msg) from exc

        text = result.output
        if not text:
            msg = "No response received from the model"
            raise ExtractionFailure(msg)
        return str(text)


def create_completion_agent() -> Agent[None, str]:
    """Create a pydantic-ai Agent configured for JSON-only text replies."""
    # Ensure API key is available (fail fast)
    get_anthropic_api_key()

    model_name = get_llm_model()
    return Agent(
        f"anthropic:{model_name}",
        output_type=str,
        system_prompt=_SYSTEM_PROMPT,
        model_settings={"temperature": 0.1, "max_tokens": 2048},
    )


class RewardExtractionNormalizer:
    """Prompt the model for reward points and normalize its answer."""

    def __init__(self, model: CompletionModel | None = None) -> None:
        self.model = model if model is not None else AnthropicCompletionModel()

    def extract(
        self, text: str, metadata: ExtractionMetadata | None = None
    ) -> tuple[RewardExtraction, dict[str, Any]]:
        """Return the normalized extraction and the raw parsed response."""
        cleaned = preprocess_statement_text(text)
        prompt = build_prompt(cleaned, metadata)

        logger.info("Sending %d characters to the extraction model", len(cleaned))
        completion = self.model.complete(prompt)

        payload = parse_model_output(completion)
        extraction = normalize_response(payload, cleaned)
        logger.info(
            "Extraction complete (bank=%s, confidence=%s)",
            extraction.bank_name or "Unknown",
            extraction.confidence,
        )
        return extraction, payload

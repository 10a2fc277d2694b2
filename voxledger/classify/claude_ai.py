"""Remote expense classification with Claude.

Sends the spoken text plus the taxonomy to Claude and decodes the reply
into ExpenseData. Uses the claude_fn callback pattern: a callable
(system: str, prompt: str) -> str, so tests pass a stub and production
passes a wrapper around the Anthropic client.

The reply is not trusted to be pure JSON: the first well-formed JSON
object anywhere in the text is used. Decoding is strict about types but
lenient about absence: missing fields get defaults, wrongly typed fields
raise ClassificationParseError.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime

from voxledger.classify.fallback import detect_category, detect_currency
from voxledger.database.models import DEFAULT_PRIORITY, PRIORITIES, ExpenseData
from voxledger.taxonomy import Taxonomy

logger = logging.getLogger(__name__)


class ClassificationError(Exception):
    """Base for every way the remote classification can fail."""


class ClassificationTimeout(ClassificationError):
    """The remote call did not finish within the timeout."""


class ClassificationNetworkError(ClassificationError):
    """Transport failure or non-2xx response."""


class ClassificationParseError(ClassificationError):
    """The reply had no usable JSON object or a field had the wrong type."""

    def __init__(self, reason: str, field: str | None = None):
        self.reason = reason
        self.field = field
        where = f" (field '{field}')" if field else ""
        super().__init__(f"{reason}{where}")


SYSTEM_PROMPT = (
    "You turn short spoken descriptions of purchases into structured expense "
    "records. Return ONLY a JSON object, no other text."
)


def build_prompt(text: str, taxonomy: Taxonomy, now: datetime) -> str:
    """User prompt embedding the taxonomy and the field schema."""
    taxonomy_lines = "\n".join(
        f"  - {category}: {', '.join(subs)}" for category, subs in taxonomy.items()
    )
    return (
        f'Analyze this expense text: "{text}"\n\n'
        "Return a JSON object with these fields:\n"
        '  "amount": number,\n'
        '  "currency": string (ISO code such as EUR, USD, RUB, GBP),\n'
        '  "category": string (one of the categories below),\n'
        '  "subcategory": string (one of that category\'s subcategories),\n'
        '  "description": string (brief description of the expense),\n'
        '  "location": string (city, store or restaurant if mentioned),\n'
        f'  "date": string (YYYY-MM-DD, use {now:%Y-%m-%d} if not mentioned),\n'
        f'  "time": string (HH:MM, use {now:%H:%M} if not mentioned),\n'
        '  "paymentMethod": string (cash, card, mobile, ... if mentioned),\n'
        '  "quantity": number (if multiple items are mentioned),\n'
        '  "unit": string (pieces, kg, liters, ... if mentioned),\n'
        '  "merchant": string (store or restaurant name if mentioned),\n'
        '  "tags": array of strings (relevant keywords),\n'
        '  "priority": string (low, medium or high, based on amount and category),\n'
        '  "isRecurring": boolean (true for subscriptions and regular expenses),\n'
        '  "notes": string (any additional relevant information)\n\n'
        f"Categories and subcategories:\n{taxonomy_lines}\n\n"
        "Choose the closest category and subcategory from the lists above.\n"
        "Use null for fields that are not mentioned."
    )


def extract_json_object(text: str) -> dict:
    """First well-formed JSON object embedded in text.

    Raises:
        ClassificationParseError: No JSON object found.
    """
    decoder = json.JSONDecoder()
    start = text.find("{")
    while start != -1:
        try:
            obj, _ = decoder.raw_decode(text, start)
        except json.JSONDecodeError:
            start = text.find("{", start + 1)
            continue
        if isinstance(obj, dict):
            return obj
        start = text.find("{", start + 1)
    raise ClassificationParseError("No JSON object found in response")


# ── Strict field decoding ────────────────────────────────


def _opt_str(data: dict, key: str) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ClassificationParseError(f"expected string, got {type(value).__name__}", key)
    return value.strip() or None


def _opt_number(data: dict, key: str) -> float | None:
    value = data.get(key)
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ClassificationParseError("expected number, got bool", key)
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.replace(",", "."))
        except ValueError:
            pass
    raise ClassificationParseError(f"expected number, got {value!r}", key)


def decode_expense(data: dict, text: str, now: datetime,
                   default_category: str | None = None) -> ExpenseData:
    """Validate a decoded reply and fill defaults field by field.

    Raises:
        ClassificationParseError: A present field has an unusable value.
    """
    amount = _opt_number(data, "amount") or 0.0
    if amount < 0:
        raise ClassificationParseError("amount must be non-negative", "amount")

    quantity = _opt_number(data, "quantity")
    if quantity is not None and quantity <= 0:
        quantity = None

    tags = data.get("tags")
    if tags is None:
        tags = []
    if not isinstance(tags, list) or not all(isinstance(t, str) for t in tags):
        raise ClassificationParseError("expected list of strings", "tags")

    priority = (_opt_str(data, "priority") or DEFAULT_PRIORITY).lower()
    if priority not in PRIORITIES:
        raise ClassificationParseError(f"unknown priority {priority!r}", "priority")

    is_recurring = data.get("isRecurring", False)
    if is_recurring is None:
        is_recurring = False
    if not isinstance(is_recurring, bool):
        raise ClassificationParseError("expected boolean", "isRecurring")

    category = _opt_str(data, "category")
    if category is None:
        category = detect_category(text, default_category) if default_category else detect_category(text)

    currency = _opt_str(data, "currency")
    return ExpenseData(
        amount=amount,
        currency=currency.upper() if currency else detect_currency(text),
        category=category,
        subcategory=_opt_str(data, "subcategory") or "",
        description=_opt_str(data, "description") or text.strip(),
        location=_opt_str(data, "location"),
        date=_opt_str(data, "date") or now.strftime("%Y-%m-%d"),
        time=_opt_str(data, "time") or now.strftime("%H:%M:%S"),
        payment_method=_opt_str(data, "paymentMethod"),
        quantity=quantity,
        unit=_opt_str(data, "unit"),
        merchant=_opt_str(data, "merchant"),
        tags=[t.strip() for t in tags if t.strip()],
        priority=priority,
        is_recurring=is_recurring,
        notes=_opt_str(data, "notes"),
    )


def classify_remote(text: str, taxonomy: Taxonomy, claude_fn, now: datetime,
                    default_category: str | None = None) -> ExpenseData:
    """Ask Claude to structure text.

    claude_fn may raise ClassificationTimeout or ClassificationNetworkError;
    any other exception from it is reported as a network error.

    Raises:
        ClassificationError: Any failure, for the caller to fall back on.
    """
    prompt = build_prompt(text, taxonomy, now)
    try:
        response = claude_fn(SYSTEM_PROMPT, prompt)
    except ClassificationError:
        raise
    except Exception as e:
        raise ClassificationNetworkError(str(e)) from e

    if not isinstance(response, str):
        raise ClassificationParseError(f"response is {type(response).__name__}, not text")

    data = extract_json_object(response)
    return decode_expense(data, text, now, default_category=default_category)

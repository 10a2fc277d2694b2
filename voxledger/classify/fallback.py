"""Deterministic keyword/regex parser used when the remote classifier fails.

Pure and network-free: for any input string it returns a valid
ExpenseData. Amount comes from the first "<number> <currency word>" match,
currency and category from keyword scans in Russian and English.
"""

from __future__ import annotations

import re
from datetime import datetime

from voxledger.database.models import DEFAULT_CURRENCY, ExpenseData

FALLBACK_CATEGORY = "Всякая всячина"
FALLBACK_SUBCATEGORY = "Прочее"

_CURRENCY_WORDS = r"евро|euro|eur|€|рубл|руб|₽|rub|доллар|dollar|usd|\$|фунт|pound|gbp|£"

AMOUNT_RE = re.compile(
    rf"(\d+(?:[.,]\d{{1,2}})?)\s*({_CURRENCY_WORDS})",
    re.IGNORECASE,
)

# Checked in order, first hit wins
CURRENCY_KEYWORDS: list[tuple[str, tuple[str, ...]]] = [
    ("EUR", ("евро", "euro", "eur", "€")),
    ("USD", ("доллар", "dollar", "usd", "$")),
    ("RUB", ("рубл", "руб", "rub", "₽")),
    ("GBP", ("фунт", "pound", "gbp", "£")),
]

CATEGORY_KEYWORDS: list[tuple[str, tuple[str, ...]]] = [
    ("Еда", (
        "еда", "обед", "ужин", "завтрак", "кафе", "ресторан", "кофе",
        "food", "lunch", "dinner", "breakfast", "cafe", "restaurant", "coffee",
    )),
    ("Транспорт", (
        "транспорт", "такси", "метро", "автобус",
        "transport", "taxi", "metro", "bus",
    )),
    ("Всякая всячина", (
        "развлечения", "кино", "театр",
        "entertainment", "cinema", "theater",
    )),
    ("Всякая всячина", (
        "покупки", "магазин",
        "shopping", "store", "shop",
    )),
]


def detect_currency(text: str, default: str = DEFAULT_CURRENCY) -> str:
    lower = text.lower()
    for code, words in CURRENCY_KEYWORDS:
        if any(w in lower for w in words):
            return code
    return default


def detect_category(text: str, default: str = FALLBACK_CATEGORY) -> str:
    lower = text.lower()
    for category, words in CATEGORY_KEYWORDS:
        if any(w in lower for w in words):
            return category
    return default


def detect_amount(text: str) -> float:
    """First "<number> <currency>" amount in text, 0.0 if none."""
    m = AMOUNT_RE.search(text)
    if m is None:
        return 0.0
    return float(m.group(1).replace(",", "."))


def parse_expense_fallback(
    text: str,
    now: datetime | None = None,
    default_currency: str = DEFAULT_CURRENCY,
    default_category: str = FALLBACK_CATEGORY,
) -> ExpenseData:
    """Build an expense from text without any network call. Never raises."""
    text = text or ""
    now = now or datetime.now()
    return ExpenseData(
        amount=detect_amount(text),
        currency=detect_currency(text, default_currency),
        category=detect_category(text, default_category),
        subcategory=FALLBACK_SUBCATEGORY,
        description=text.strip(),
        date=now.strftime("%Y-%m-%d"),
        time=now.strftime("%H:%M:%S"),
        priority="medium",
        is_recurring=False,
    )

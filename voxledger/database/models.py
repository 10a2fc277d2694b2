"""Dataclass models for expense records.

ExpenseData is the candidate produced by the classifier; Expense is the
stored record, which adds an id and a creation timestamp. Both serialize
to plain dicts whose keys match the field names exactly.
"""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime
from uuid import uuid4

PRIORITIES = ("low", "medium", "high")
DEFAULT_CURRENCY = "EUR"
DEFAULT_PRIORITY = "medium"


def now_ms() -> int:
    return int(time.time() * 1000)


def new_expense_id(timestamp: int) -> str:
    """Creation-time derived id; the suffix keeps same-millisecond ids distinct."""
    return f"{timestamp}-{uuid4().hex[:8]}"


def _validate(amount: float, priority: str) -> None:
    if amount < 0:
        raise ValueError(f"Expense amount must be non-negative, got {amount}")
    if priority not in PRIORITIES:
        raise ValueError(f"Unknown priority '{priority}', expected one of {PRIORITIES}")


@dataclass
class ExpenseData:
    amount: float
    category: str
    subcategory: str = ""
    currency: str = DEFAULT_CURRENCY
    description: str | None = None
    location: str | None = None
    date: str | None = None
    time: str | None = None
    payment_method: str | None = None
    quantity: float | None = None
    unit: str | None = None
    merchant: str | None = None
    tags: list[str] = field(default_factory=list)
    priority: str = DEFAULT_PRIORITY
    is_recurring: bool = False
    notes: str | None = None

    def __post_init__(self):
        _validate(self.amount, self.priority)


@dataclass(frozen=True)
class Expense:
    """A stored expense. Immutable: the store replaces records, never edits them."""
    id: str
    timestamp: int
    amount: float
    category: str
    subcategory: str = ""
    currency: str = DEFAULT_CURRENCY
    description: str | None = None
    location: str | None = None
    date: str | None = None
    time: str | None = None
    payment_method: str | None = None
    quantity: float | None = None
    unit: str | None = None
    merchant: str | None = None
    tags: list[str] = field(default_factory=list)
    priority: str = DEFAULT_PRIORITY
    is_recurring: bool = False
    notes: str | None = None

    def __post_init__(self):
        _validate(self.amount, self.priority)

    @classmethod
    def from_data(cls, data: ExpenseData, timestamp: int | None = None) -> Expense:
        """Assign id and timestamp to a classifier candidate."""
        ts = now_ms() if timestamp is None else timestamp
        return cls(id=new_expense_id(ts), timestamp=ts, **asdict(data))

    @classmethod
    def from_dict(cls, data: dict) -> Expense:
        """Build from a persisted dict, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        kwargs = {k: v for k, v in data.items() if k in known}
        kwargs["tags"] = list(kwargs.get("tags") or [])
        return cls(**kwargs)

    def to_dict(self) -> dict:
        return asdict(self)

    @property
    def created_at(self) -> datetime:
        """Creation time in local time."""
        return datetime.fromtimestamp(self.timestamp / 1000)

    @property
    def effective_date(self) -> str:
        """The date field, or the creation date when absent."""
        return self.date or self.created_at.strftime("%Y-%m-%d")

    @property
    def effective_time(self) -> str:
        return self.time or self.created_at.strftime("%H:%M:%S")

"""Derived aggregates over an expense list.

All functions are pure: they take a snapshot of records and never mutate it.
Dates come from the record's date field, falling back to the creation date.
"""

from __future__ import annotations

from collections import defaultdict

from voxledger.database.models import Expense


def sort_newest_first(expenses: list[Expense]) -> list[Expense]:
    return sorted(expenses, key=lambda e: e.timestamp, reverse=True)


def total_by_category(expenses: list[Expense], category: str) -> float:
    return sum(e.amount for e in expenses if e.category == category)


def total_by_category_and_date(expenses: list[Expense], category: str, date: str) -> float:
    """Sum for category on a YYYY-MM-DD date."""
    return sum(
        e.amount for e in expenses
        if e.category == category and e.effective_date == date
    )


def categories(expenses: list[Expense]) -> list[str]:
    """Sorted distinct categories present in expenses."""
    return sorted({e.category for e in expenses})


def group_by_category_then_date(
    expenses: list[Expense],
) -> dict[str, dict[str, list[Expense]]]:
    """Nest expenses as {category: {date: [expense, ...]}}.

    Categories are in sorted order, dates newest first, and each leaf list
    newest first.
    """
    grouped: dict[str, dict[str, list[Expense]]] = defaultdict(lambda: defaultdict(list))
    for e in expenses:
        grouped[e.category][e.effective_date].append(e)

    result: dict[str, dict[str, list[Expense]]] = {}
    for category in sorted(grouped):
        by_date = grouped[category]
        result[category] = {
            date: sort_newest_first(by_date[date])
            for date in sorted(by_date, reverse=True)
        }
    return result


def totals_summary(expenses: list[Expense]) -> dict[str, float]:
    """Category → total, categories sorted."""
    return {c: total_by_category(expenses, c) for c in categories(expenses)}

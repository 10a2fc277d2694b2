"""Merge of locally persisted expenses with expenses read back from Sheets.

There is no shared identity between the two stores: Sheets rows do not
carry the local id reliably. A remote record is treated as a duplicate of
a local one when timestamp, amount and description all match exactly.
Anything else is appended as new. The result is sorted newest first.
"""

from __future__ import annotations

import logging

from voxledger.database.models import Expense
from voxledger.database.queries import sort_newest_first

logger = logging.getLogger(__name__)


def dedup_key(expense: Expense) -> tuple[int, float, str]:
    """Identity used for cross-store matching. None description equals ''."""
    return (expense.timestamp, float(expense.amount), expense.description or "")


def is_duplicate(a: Expense, b: Expense) -> bool:
    return dedup_key(a) == dedup_key(b)


def merge_with_local(local: list[Expense], remote: list[Expense]) -> list[Expense]:
    """Union of local and remote, skipping remote records already present.

    Local records always win: a matching remote record is dropped, never
    used to overwrite local fields. Remote records that repeat each other
    are kept once.
    """
    seen = {dedup_key(e) for e in local}
    merged = list(local)
    added = 0
    for expense in remote:
        key = dedup_key(expense)
        if key in seen:
            continue
        seen.add(key)
        merged.append(expense)
        added += 1

    if added:
        logger.info("Merged %d remote expense(s) into %d local", added, len(local))
    return sort_newest_first(merged)

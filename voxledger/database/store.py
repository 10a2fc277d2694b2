"""ExpenseStore: the authoritative in-memory expense list.

The list is newest first and replaced wholesale on every mutation
(copy-on-write), so readers never see a half-updated list. After each
mutation the list is mirrored to the key-value store as a JSON array.
Persistence failures are logged, never raised: the in-memory list stays
authoritative for the session.

Sheets is a second mirror, reconciled opportunistically. Per-expense
appends are best effort; only ContainerNotFound propagates, so the caller
can recreate the container and retry once (retry_remote_append).
"""

from __future__ import annotations

import json
import logging
import threading

from voxledger.database import queries
from voxledger.database.dedup import merge_with_local
from voxledger.database.models import Expense, ExpenseData, now_ms
from voxledger.database.repository import KeyValueStore, PersistenceError
from voxledger.sheets.base import ContainerNotFound, RemoteSyncError, SheetsSync
from voxledger.sheets.client import MissingCredential

logger = logging.getLogger(__name__)

EXPENSES_KEY = "expenses"
SPREADSHEET_ID_KEY = "spreadsheetId"


class ExpenseStore:
    """Owns the expense list, its local mirror and its Sheets mirror.

    Args:
        kv: Key-value persistence.
        sync: Optional Sheets sync layout. None means local only.
        clock: Callable returning epoch milliseconds, for new timestamps.
    """

    def __init__(self, kv: KeyValueStore, sync: SheetsSync | None = None, clock=now_ms):
        self.kv = kv
        self.sync = sync
        self._clock = clock
        self._lock = threading.Lock()
        self._expenses: list[Expense] = []
        self._last_timestamp = 0

    # ── Reads ────────────────────────────────────────────

    @property
    def expenses(self) -> list[Expense]:
        """Snapshot of the current list, newest first."""
        return list(self._expenses)

    def get(self, expense_id: str) -> Expense | None:
        for e in self._expenses:
            if e.id == expense_id:
                return e
        return None

    def total_by_category(self, category: str) -> float:
        return queries.total_by_category(self._expenses, category)

    def total_by_category_and_date(self, category: str, date: str) -> float:
        return queries.total_by_category_and_date(self._expenses, category, date)

    def categories(self) -> list[str]:
        return queries.categories(self._expenses)

    def group_by_category_then_date(self) -> dict[str, dict[str, list[Expense]]]:
        return queries.group_by_category_then_date(self._expenses)

    # ── Persistence ──────────────────────────────────────

    def _read_persisted(self) -> list[Expense]:
        try:
            raw = self.kv.get(EXPENSES_KEY)
        except PersistenceError as e:
            logger.error("Failed to read persisted expenses: %s", e)
            return []
        if not raw:
            return []
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.error("Persisted expenses are not valid JSON, ignoring: %s", e)
            return []
        if not isinstance(data, list):
            logger.error("Persisted expenses are not a list: %s", type(data))
            return []

        expenses = []
        for item in data:
            try:
                expenses.append(Expense.from_dict(item))
            except (TypeError, ValueError) as e:
                logger.warning("Skipping unreadable persisted expense: %s", e)
        return expenses

    def _persist(self, expenses: list[Expense]) -> None:
        payload = json.dumps([e.to_dict() for e in expenses], ensure_ascii=False)
        try:
            self.kv.set(EXPENSES_KEY, payload)
        except PersistenceError as e:
            logger.error("Failed to persist %d expenses: %s", len(expenses), e)

    def _replace(self, expenses: list[Expense]) -> list[Expense]:
        snapshot = queries.sort_newest_first(expenses)
        with self._lock:
            self._expenses = snapshot
        self._persist(snapshot)
        return snapshot

    # ── Lifecycle ────────────────────────────────────────

    def load(self, reconcile: bool = True) -> list[Expense]:
        """Read persisted expenses and, if possible, merge in Sheets expenses.

        Safe to call again; each call rebuilds the list from storage.
        """
        local = self._read_persisted()
        merged = local
        if reconcile and self.sync is not None:
            try:
                remote = self.sync.load_all()
                merged = merge_with_local(local, remote)
            except MissingCredential as e:
                logger.warning("Skipping Sheets reconciliation: %s", e)
            except RemoteSyncError as e:
                logger.warning("Sheets reconciliation failed, using local expenses: %s", e)
        snapshot = self._replace(merged)
        logger.info("Loaded %d expenses (%d local)", len(snapshot), len(local))
        return snapshot

    def _next_timestamp(self) -> int:
        # Strictly increasing within the store so ids and ordering never tie
        with self._lock:
            ts = max(self._clock(), self._last_timestamp + 1)
            self._last_timestamp = ts
        return ts

    def add(self, data: ExpenseData) -> Expense:
        """Store a classified expense and mirror it to Sheets.

        Local persistence happens before the remote append is attempted.

        Raises:
            ContainerNotFound: The Sheets container is gone. The expense is
                already stored locally and attached to the exception.
        """
        expense = Expense.from_data(data, timestamp=self._next_timestamp())
        with self._lock:
            snapshot = [expense, *self._expenses]
            self._expenses = snapshot
        self._persist(snapshot)
        logger.info("Added expense %s: %.2f %s (%s)",
                    expense.id, expense.amount, expense.currency, expense.category)
        self._append_remote(expense)
        return expense

    def _append_remote(self, expense: Expense) -> None:
        if self.sync is None:
            return
        try:
            self.sync.append_record(expense)
        except ContainerNotFound:
            raise
        except MissingCredential as e:
            logger.warning("Skipping Sheets append for %s: %s", expense.id, e)
        except RemoteSyncError as e:
            logger.warning("Sheets append failed for %s: %s", expense.id, e)

    def retry_remote_append(self, exc: ContainerNotFound) -> None:
        """Recreate the missing container and append exc.expense once more.

        Raises whatever the retry raises; there is no second retry.
        """
        if self.sync is None or exc.expense is None:
            return
        self.sync.recreate_container(exc)
        self.sync.append_record(exc.expense)
        logger.info("Appended expense %s after recreating %s '%s'",
                    exc.expense.id, exc.scope, exc.sheet_name)

    def remove(self, expense_id: str) -> bool:
        """Delete one expense. Returns False (and changes nothing) if absent."""
        with self._lock:
            snapshot = [e for e in self._expenses if e.id != expense_id]
            if len(snapshot) == len(self._expenses):
                return False
            self._expenses = snapshot
        self._persist(snapshot)
        logger.info("Removed expense %s", expense_id)
        return True

    def clear(self) -> None:
        with self._lock:
            self._expenses = []
        try:
            self.kv.remove(EXPENSES_KEY)
        except PersistenceError as e:
            logger.error("Failed to clear persisted expenses: %s", e)

    # ── Bulk sync ────────────────────────────────────────

    def upload_all(self) -> int:
        """Replace Sheets contents with the local list.

        Returns the number of expenses uploaded, 0 when Sheets is not
        configured or the credential is missing.

        Raises:
            RemoteSyncError: The upload failed partway.
        """
        if self.sync is None:
            logger.warning("Sheets not configured, nothing uploaded")
            return 0
        try:
            return self.sync.upload_all(list(self._expenses))
        except MissingCredential as e:
            logger.warning("Skipping upload: %s", e)
            return 0

    def download_all(self) -> list[Expense]:
        """Replace the local list with the Sheets contents.

        Without Sheets or a credential the local list is left untouched and
        an empty list is returned.

        Raises:
            RemoteSyncError: Reading from Sheets failed.
        """
        if self.sync is None:
            logger.warning("Sheets not configured, nothing downloaded")
            return []
        try:
            remote = self.sync.download_all()
        except MissingCredential as e:
            logger.warning("Skipping download: %s", e)
            return []
        return self._replace(remote)

    # ── Saved spreadsheet id ─────────────────────────────

    def saved_spreadsheet_id(self) -> str | None:
        try:
            return self.kv.get(SPREADSHEET_ID_KEY)
        except PersistenceError as e:
            logger.error("Failed to read saved spreadsheet id: %s", e)
            return None

    def save_spreadsheet_id(self, spreadsheet_id: str) -> None:
        try:
            self.kv.set(SPREADSHEET_ID_KEY, spreadsheet_id)
        except PersistenceError as e:
            logger.error("Failed to save spreadsheet id: %s", e)

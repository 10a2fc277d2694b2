"""Shared machinery for Google Sheets sync layouts.

SheetsSync is the one interface both layouts implement: the row layout
(one row per expense, push.py) and the grid layout (category/subcategory
running totals, grid.py). The base class owns the parts that do not depend
on layout: sheet naming, lazy sheet creation, the existence probe, the
single-writer lock, write rate limiting and bulk upload/download.

The spreadsheet connection is injected (see client.py) so tests can pass
an in-memory fake.
"""

from __future__ import annotations

import logging
import re
import threading
import time
from collections import deque
from datetime import datetime
from typing import TYPE_CHECKING

from gspread.exceptions import APIError, WorksheetNotFound

from voxledger.database.models import Expense
from voxledger.database.queries import sort_newest_first
from voxledger.taxonomy import Taxonomy

if TYPE_CHECKING:
    from voxledger.sheets.client import SpreadsheetConnection

logger = logging.getLogger(__name__)

DEFAULT_SHEET_NAME = "Расходы"

MONTH_NAMES = {
    "ru": [
        "январь", "февраль", "март", "апрель", "май", "июнь",
        "июль", "август", "сентябрь", "октябрь", "ноябрь", "декабрь",
    ],
    "en": [
        "January", "February", "March", "April", "May", "June",
        "July", "August", "September", "October", "November", "December",
    ],
}

# Rate limiting
MAX_WRITES_PER_MINUTE = 50


# ── Errors ───────────────────────────────────────────────


class RemoteSyncError(Exception):
    """Generic failure talking to the spreadsheet."""


class ContainerNotFound(RemoteSyncError):
    """The target spreadsheet or sheet was deleted externally.

    Raised separately from RemoteSyncError so the caller can recreate the
    container and retry the append exactly once.

    Attributes:
        sheet_name: Sheet title (or spreadsheet id when scope is "spreadsheet").
        scope: "spreadsheet" or "sheet".
        expense: The expense whose append failed, when known.
    """

    def __init__(self, sheet_name: str, scope: str = "sheet", expense: Expense | None = None):
        self.sheet_name = sheet_name
        self.scope = scope
        self.expense = expense
        super().__init__(f"{scope.capitalize()} '{sheet_name}' not found")


def _status_code(exc: APIError) -> int | None:
    code = getattr(exc, "code", None)
    if code is None:
        response = getattr(exc, "response", None)
        code = getattr(response, "status_code", None)
    return code


def is_already_exists(exc: Exception) -> bool:
    return "already exists" in str(exc).lower()


def is_not_found(exc: Exception) -> bool:
    """True for API errors meaning the spreadsheet or range is gone."""
    if isinstance(exc, APIError) and _status_code(exc) == 404:
        return True
    return "unable to parse range" in str(exc).lower()


# ── Value parsing ────────────────────────────────────────


def parse_decimal(value: object, default: float = 0.0) -> float:
    """Parse a cell value as a number: accepts ints, floats, "5,5" and "5.5"."""
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip().replace(" ", "").replace(" ", "")
    if not text:
        return default
    try:
        return float(text.replace(",", "."))
    except ValueError:
        return default


# ── Sheet naming ─────────────────────────────────────────


class SheetNaming:
    """Resolves the destination sheet for an expense.

    Args:
        mode: "monthly" for "<month-name> <year>" sheets, "fixed" for a
            single sheet named fixed_name.
        fixed_name: Sheet title in fixed mode.
        locale: Month name language in monthly mode ("ru" or "en").
    """

    def __init__(self, mode: str = "monthly", fixed_name: str = DEFAULT_SHEET_NAME,
                 locale: str = "ru"):
        if mode not in ("monthly", "fixed"):
            raise ValueError(f"Unknown sheet naming mode: {mode}")
        if locale not in MONTH_NAMES:
            raise ValueError(f"Unknown month locale: {locale}")
        self.mode = mode
        self.fixed_name = fixed_name
        self.locale = locale
        names = "|".join(MONTH_NAMES[locale])
        self._pattern = re.compile(rf"^({names}) (\d{{4}})$", re.IGNORECASE)

    def title_for_datetime(self, dt: datetime) -> str:
        if self.mode == "fixed":
            return self.fixed_name
        return f"{MONTH_NAMES[self.locale][dt.month - 1]} {dt.year}"

    def title_for(self, expense: Expense) -> str:
        return self.title_for_datetime(expense.created_at)

    def matches(self, title: str) -> bool:
        if self.mode == "fixed":
            return title == self.fixed_name
        return self._pattern.match(title.strip()) is not None

    def month_of(self, title: str) -> tuple[int, int] | None:
        """(year, month) encoded in a monthly title, or None."""
        m = self._pattern.match(title.strip())
        if m is None:
            return None
        lowered = [n.lower() for n in MONTH_NAMES[self.locale]]
        return int(m.group(2)), lowered.index(m.group(1).lower()) + 1


# ── Single writer per spreadsheet ────────────────────────

_writer_locks: dict[str, threading.RLock] = {}
_writer_locks_guard = threading.Lock()


def writer_lock(spreadsheet_id: str) -> threading.RLock:
    """Process-wide lock serializing remote mutations of one spreadsheet."""
    with _writer_locks_guard:
        lock = _writer_locks.get(spreadsheet_id)
        if lock is None:
            lock = threading.RLock()
            _writer_locks[spreadsheet_id] = lock
        return lock


class WriteRateLimiter:
    """Sliding-window limiter for Sheets write calls."""

    def __init__(self, max_per_minute: int = MAX_WRITES_PER_MINUTE,
                 clock=time.monotonic, sleep=time.sleep):
        self.max_per_minute = max_per_minute
        self._clock = clock
        self._sleep = sleep
        self._write_times: deque[float] = deque()

    def wait(self) -> None:
        """Sleep if we're approaching the write rate limit."""
        now = self._clock()
        cutoff = now - 60.0
        while self._write_times and self._write_times[0] <= cutoff:
            self._write_times.popleft()

        if len(self._write_times) >= self.max_per_minute:
            sleep_until = self._write_times[0] + 60.0
            self._sleep(sleep_until - now)

    def record(self) -> None:
        self._write_times.append(self._clock())


# ── SheetsSync ───────────────────────────────────────────


class SheetsSync:
    """Base class for the row and grid sync layouts.

    Subclasses implement _create_container, _write_record,
    _read_container and _clear_container.

    Args:
        connection: SpreadsheetConnection (or fake) giving access to the
            spreadsheet and its credential.
        taxonomy: Category taxonomy.
        naming: Sheet naming policy.
    """

    layout = ""

    def __init__(self, connection: SpreadsheetConnection, taxonomy: Taxonomy | None = None,
                 naming: SheetNaming | None = None,
                 rate_limiter: WriteRateLimiter | None = None):
        self.connection = connection
        self.taxonomy = taxonomy or Taxonomy()
        self.naming = naming or SheetNaming()
        self.rate_limiter = rate_limiter or WriteRateLimiter()

    # ── Layout hooks ─────────────────────────────────────

    def _create_container(self, spreadsheet, sheet_name: str):
        raise NotImplementedError

    def _write_record(self, worksheet, expense: Expense) -> None:
        raise NotImplementedError

    def _read_container(self, worksheet) -> list[Expense]:
        raise NotImplementedError

    def _clear_container(self, worksheet) -> None:
        raise NotImplementedError

    # ── Containers ───────────────────────────────────────

    def sheet_name_for(self, expense: Expense) -> str:
        return self.naming.title_for(expense)

    def ensure_container_exists(self, sheet_name: str):
        """Return the named sheet, creating it with its template if absent.

        A concurrent creation reported as "already exists" counts as success.
        """
        spreadsheet = self.connection.spreadsheet
        try:
            return spreadsheet.worksheet(sheet_name)
        except WorksheetNotFound:
            pass

        try:
            worksheet = self._create_container(spreadsheet, sheet_name)
            logger.info("Created %s sheet '%s'", self.layout, sheet_name)
            return worksheet
        except APIError as e:
            if is_already_exists(e):
                logger.debug("Sheet '%s' already exists", sheet_name)
                return spreadsheet.worksheet(sheet_name)
            raise RemoteSyncError(f"Failed to create sheet '{sheet_name}': {e}") from e

    def matching_sheets(self) -> list:
        """Sheets whose title follows the naming pattern, in spreadsheet order."""
        return [ws for ws in self.connection.spreadsheet.worksheets()
                if self.naming.matches(ws.title)]

    def recreate_container(self, exc: ContainerNotFound) -> None:
        """Recreate whatever a ContainerNotFound reported missing.

        Raises:
            RemoteSyncError: The container could not be recreated.
        """
        with writer_lock(self.connection.spreadsheet_id):
            try:
                if exc.scope == "spreadsheet":
                    self.connection.recreate()
                else:
                    self.ensure_container_exists(exc.sheet_name)
            except RemoteSyncError:
                raise
            except Exception as e:
                raise RemoteSyncError(
                    f"Failed to recreate {exc.scope} '{exc.sheet_name}': {e}"
                ) from e

    # ── Per-record append ────────────────────────────────

    def append_record(self, expense: Expense) -> None:
        """Append one expense to its destination sheet.

        Raises:
            MissingCredential: No usable credential; nothing was sent.
            ContainerNotFound: The spreadsheet (probe) or the sheet (during
                the write) no longer exists.
            RemoteSyncError: Any other failure.
        """
        self.connection.require_credential()
        with writer_lock(self.connection.spreadsheet_id):
            try:
                self.connection.probe()
                sheet_name = self.sheet_name_for(expense)
                worksheet = self.ensure_container_exists(sheet_name)
                try:
                    self._write_record(worksheet, expense)
                except WorksheetNotFound as e:
                    raise ContainerNotFound(sheet_name, "sheet") from e
                except APIError as e:
                    if is_not_found(e):
                        raise ContainerNotFound(sheet_name, "sheet") from e
                    raise
            except ContainerNotFound as e:
                e.expense = expense
                raise
            except RemoteSyncError:
                raise
            except Exception as e:
                raise RemoteSyncError(f"Append of expense {expense.id} failed: {e}") from e
        logger.debug("Appended expense %s to '%s'", expense.id, sheet_name)

    # ── Bulk operations ──────────────────────────────────

    def load_all(self) -> list[Expense]:
        """Read every expense from every matching sheet."""
        self.connection.require_credential()
        expenses: list[Expense] = []
        try:
            for worksheet in self.matching_sheets():
                expenses.extend(self._read_container(worksheet))
        except RemoteSyncError:
            raise
        except Exception as e:
            raise RemoteSyncError(f"Failed to read expenses from Sheets: {e}") from e
        return expenses

    def download_all(self) -> list[Expense]:
        """load_all sorted newest first; the caller replaces its local list."""
        return sort_newest_first(self.load_all())

    def upload_all(self, expenses: list[Expense]) -> int:
        """Clear data from every matching sheet, then append expenses in order.

        No rollback: a failure partway leaves the sheets partially populated
        and raises RemoteSyncError.

        Returns the number of expenses written.
        """
        self.connection.require_credential()
        written = 0
        with writer_lock(self.connection.spreadsheet_id):
            try:
                for worksheet in self.matching_sheets():
                    self.rate_limiter.wait()
                    self._clear_container(worksheet)
                    self.rate_limiter.record()

                for expense in expenses:
                    worksheet = self.ensure_container_exists(self.sheet_name_for(expense))
                    self.rate_limiter.wait()
                    self._write_record(worksheet, expense)
                    self.rate_limiter.record()
                    written += 1
            except Exception as e:
                logger.error("Upload stopped after %d of %d expenses: %s",
                             written, len(expenses), e)
                raise RemoteSyncError(
                    f"Upload failed after {written} of {len(expenses)} expenses: {e}"
                ) from e
        logger.info("Uploaded %d expenses to Sheets", written)
        return written

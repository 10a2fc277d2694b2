"""Row layout: one Sheets row per expense.

Transforms expenses into sheet rows with a fixed column order and back.
Rows written here must read back to an equal expense (by timestamp,
amount and description), so values are written RAW and the creation
timestamp travels in its own column. Reading tolerates short rows:
missing trailing columns take their defaults.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime

from voxledger.database.models import DEFAULT_CURRENCY, DEFAULT_PRIORITY, PRIORITIES, Expense
from voxledger.sheets.base import SheetsSync, parse_decimal
from voxledger.sheets.grid import column_to_label

logger = logging.getLogger(__name__)


# ── Sheet column schema ──────────────────────────────────

BASE_HEADERS = ["Date", "Time", "Category", "Description", "Amount", "Currency"]
EXTENDED_HEADERS = ["PaymentMethod", "Location", "Tags", "Priority", "Subcategory", "Timestamp"]
HEADERS = BASE_HEADERS + EXTENDED_HEADERS

COL_DATE = 0
COL_TIME = 1
COL_CATEGORY = 2
COL_DESCRIPTION = 3
COL_AMOUNT = 4
COL_CURRENCY = 5
COL_PAYMENT_METHOD = 6
COL_LOCATION = 7
COL_TAGS = 8
COL_PRIORITY = 9
COL_SUBCATEGORY = 10
COL_TIMESTAMP = 11

LAST_COLUMN = column_to_label(len(HEADERS) - 1)
SHEET_ROWS = 1000

HEADER_FORMAT = {
    "backgroundColor": {"red": 0.27, "green": 0.35, "blue": 0.39},
    "textFormat": {
        "foregroundColor": {"red": 1, "green": 1, "blue": 1},
        "bold": True,
        "fontSize": 11,
    },
    "horizontalAlignment": "CENTER",
    "verticalAlignment": "MIDDLE",
}

CATEGORY_COLORS = {
    "Еда": {"red": 0.85, "green": 0.92, "blue": 0.827},
    "Транспорт": {"red": 0.827, "green": 0.91, "blue": 0.965},
    "Всякая всячина": {"red": 0.976, "green": 0.873, "blue": 0.976},
    "Здоровье": {"red": 1, "green": 0.851, "blue": 0.851},
    "Образование": {"red": 0.851, "green": 0.851, "blue": 1},
    "Услуги": {"red": 0.937, "green": 0.937, "blue": 0.937},
    "Дом": {"red": 0.976, "green": 0.949, "blue": 0.831},
}
OTHER_COLOR = {"red": 0.95, "green": 0.95, "blue": 0.95}

_UPDATED_ROW_RE = re.compile(r"![A-Z]+(\d+)")


# ── Data transformation ──────────────────────────────────


def _val(v: object) -> str | float | int:
    """Convert a value for Sheets: None → empty string, else pass through."""
    if v is None:
        return ""
    return v


def expense_to_row(expense: Expense) -> list:
    """Convert an Expense to a Sheets row in HEADERS order."""
    return [
        expense.effective_date,
        expense.effective_time,
        expense.category,
        _val(expense.description),
        expense.amount,
        expense.currency,
        _val(expense.payment_method),
        _val(expense.location),
        ", ".join(expense.tags),
        expense.priority,
        expense.subcategory,
        str(expense.timestamp),
    ]


def _cell(row: list, col: int) -> str:
    if col >= len(row) or row[col] is None:
        return ""
    return str(row[col]).strip()


def _parse_timestamp(row: list) -> int:
    """Timestamp column, else Date + Time, else Date alone, else 0."""
    raw = _cell(row, COL_TIMESTAMP)
    if raw:
        value = parse_decimal(raw, default=-1)
        if value >= 0:
            return int(value)

    date = _cell(row, COL_DATE)
    time_ = _cell(row, COL_TIME)
    for text, fmt in (
        (f"{date} {time_}", "%Y-%m-%d %H:%M:%S"),
        (f"{date} {time_}", "%Y-%m-%d %H:%M"),
        (date, "%Y-%m-%d"),
    ):
        try:
            return int(datetime.strptime(text, fmt).timestamp() * 1000)
        except ValueError:
            continue
    return 0


def row_to_expense(row: list, sheet_title: str, row_index: int) -> Expense:
    """Convert a Sheets row back to an Expense.

    The id is derived from the row position. Raises ValueError on rows
    that cannot form a valid expense (e.g., negative amount).
    """
    priority = _cell(row, COL_PRIORITY).lower() or DEFAULT_PRIORITY
    if priority not in PRIORITIES:
        priority = DEFAULT_PRIORITY
    tags = [t.strip() for t in _cell(row, COL_TAGS).split(",") if t.strip()]

    return Expense(
        id=f"{sheet_title}!{row_index}",
        timestamp=_parse_timestamp(row),
        amount=parse_decimal(row[COL_AMOUNT] if len(row) > COL_AMOUNT else None),
        category=_cell(row, COL_CATEGORY),
        subcategory=_cell(row, COL_SUBCATEGORY),
        currency=_cell(row, COL_CURRENCY) or DEFAULT_CURRENCY,
        description=_cell(row, COL_DESCRIPTION) or None,
        location=_cell(row, COL_LOCATION) or None,
        date=_cell(row, COL_DATE) or None,
        time=_cell(row, COL_TIME) or None,
        payment_method=_cell(row, COL_PAYMENT_METHOD) or None,
        tags=tags,
        priority=priority,
    )


def appended_row_number(response: object) -> int | None:
    """1-indexed row number from an append response's updatedRange."""
    if not isinstance(response, dict):
        return None
    updated = response.get("updates", {}).get("updatedRange", "")
    m = _UPDATED_ROW_RE.search(updated)
    return int(m.group(1)) if m else None


# ── RowSheetsSync ────────────────────────────────────────


class RowSheetsSync(SheetsSync):
    """Sync layout appending one row per expense under a header row."""

    layout = "rows"

    def _create_container(self, spreadsheet, sheet_name: str):
        worksheet = spreadsheet.add_worksheet(title=sheet_name, rows=SHEET_ROWS, cols=len(HEADERS))
        worksheet.update(range_name="A1", values=[HEADERS])
        try:
            worksheet.format(f"A1:{LAST_COLUMN}1", HEADER_FORMAT)
        except Exception as e:
            logger.warning("Failed to format header of '%s': %s", sheet_name, e)
        return worksheet

    def _write_record(self, worksheet, expense: Expense) -> None:
        response = worksheet.append_row(expense_to_row(expense), value_input_option="RAW")
        self._color_row(worksheet, appended_row_number(response), expense.category)

    @staticmethod
    def _color_row(worksheet, row_number: int | None, category: str) -> None:
        if row_number is None:
            return
        try:
            worksheet.format(
                f"A{row_number}:{LAST_COLUMN}{row_number}",
                {"backgroundColor": CATEGORY_COLORS.get(category, OTHER_COLOR),
                 "textFormat": {"fontSize": 10}},
            )
        except Exception as e:
            logger.warning("Failed to color row %d: %s", row_number, e)

    def _read_container(self, worksheet) -> list[Expense]:
        values = worksheet.get_all_values()
        expenses: list[Expense] = []
        for row_idx, row in enumerate(values[1:], start=2):  # 1-indexed, skip header
            if not any(str(c).strip() for c in row):
                continue
            try:
                expenses.append(row_to_expense(row, worksheet.title, row_idx))
            except ValueError as e:
                logger.warning("Skipping row %d of '%s': %s", row_idx, worksheet.title, e)
        return expenses

    def _clear_container(self, worksheet) -> None:
        """Clear data rows, keeping the header."""
        worksheet.batch_clear([f"A2:{LAST_COLUMN}"])

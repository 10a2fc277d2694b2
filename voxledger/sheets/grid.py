"""Grid layout: per-month category/subcategory running totals.

Each category owns a fixed block of BLOCK_WIDTH columns (label, running
total, spacer), laid out left to right in taxonomy order. Row 1 holds the
sheet title, row 2 the category headers, then one row per subcategory and
a =SUM total row per block. A grand-total row sits two rows below the
tallest block.

Adding an expense projects its (category, subcategory) onto one total
cell and adds the amount to it (read-modify-write; see accumulate_cell).

Coordinates in this module are 0-indexed; A1 labels are built by a1_label.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from voxledger.database.models import Expense
from voxledger.sheets.base import RemoteSyncError, SheetsSync, parse_decimal
from voxledger.taxonomy import Taxonomy

logger = logging.getLogger(__name__)

BLOCK_WIDTH = 3
TITLE_ROW = 0
HEADER_ROW = 1
FIRST_SUBCATEGORY_ROW = 2
GRAND_TOTAL_LABEL = "Всего € :"

# Match kinds, weakest last
EXACT = "exact"
FUZZY = "fuzzy"
DEFAULT = "default"
_KIND_RANK = {EXACT: 0, FUZZY: 1, DEFAULT: 2}

COLORS = {
    "block": {"red": 1, "green": 0.6, "blue": 0},
    "subcategory": {"red": 0.9, "green": 1, "blue": 0.9},
    "amount": {"red": 0.8, "green": 0.95, "blue": 0.8},
    "grand_total": {"red": 0.6, "green": 0.5, "blue": 1},
}


# ── Template ─────────────────────────────────────────────


@dataclass
class CategoryBlock:
    """Placement of one category inside the grid."""
    category: str
    subcategories: list[str]
    column_offset: int

    @property
    def total_column(self) -> int:
        return self.column_offset + 1

    @property
    def total_row(self) -> int:
        return FIRST_SUBCATEGORY_ROW + len(self.subcategories)


@dataclass(frozen=True)
class CellRef:
    row: int
    column: int

    @property
    def label(self) -> str:
        return a1_label(self.row, self.column)


def build_template(taxonomy: Taxonomy) -> list[CategoryBlock]:
    """Assign each category a contiguous column block in taxonomy order."""
    return [
        CategoryBlock(category=category, subcategories=subs,
                      column_offset=i * BLOCK_WIDTH)
        for i, (category, subs) in enumerate(taxonomy.items())
    ]


def grand_total_row(template: list[CategoryBlock]) -> int:
    return max(block.total_row for block in template) + 2


def column_to_label(index: int) -> str:
    """0-indexed column → letters (bijective base 26). 0 → A, 26 → AA."""
    if index < 0:
        raise ValueError(f"Column index must be non-negative, got {index}")
    label = ""
    c = index + 1
    while c > 0:
        c, remainder = divmod(c - 1, 26)
        label = chr(65 + remainder) + label
    return label


def a1_label(row: int, column: int) -> str:
    """0-indexed (row, column) → A1 notation. E.g., (2, 1) → 'B3'."""
    return f"{column_to_label(column)}{row + 1}"


# ── Projection ───────────────────────────────────────────


def _norm(value: str | None) -> str:
    return (value or "").strip().lower()


def locate_cell(template: list[CategoryBlock], category: str, subcategory: str) -> CellRef | None:
    """Total cell for (category, subcategory), or None.

    Matching is exact after trimming and lowercasing. No guessing here:
    run normalize_to_taxonomy first for near-miss names.
    """
    cat_key = _norm(category)
    sub_key = _norm(subcategory)
    for block in template:
        if _norm(block.category) != cat_key:
            continue
        for idx, sub in enumerate(block.subcategories):
            if _norm(sub) == sub_key:
                return CellRef(FIRST_SUBCATEGORY_ROW + idx, block.total_column)
        return None
    return None


@dataclass(frozen=True)
class TaxonomyMatch:
    """Resolved taxonomy pair and how confidently it was found.

    kind is the weaker of the category and subcategory resolutions:
    EXACT, FUZZY (substring containment) or DEFAULT (first entry).
    """
    category: str
    subcategory: str
    kind: str
    category_kind: str
    subcategory_kind: str

    @property
    def is_confident(self) -> bool:
        return self.kind != DEFAULT


def _resolve(value: str | None, candidates: list[str]) -> tuple[str, str]:
    key = _norm(value)
    if key:
        for candidate in candidates:
            if _norm(candidate) == key:
                return candidate, EXACT
        for candidate in candidates:
            norm = _norm(candidate)
            if key in norm or norm in key:
                return candidate, FUZZY
    return candidates[0], DEFAULT


def normalize_to_taxonomy(taxonomy: Taxonomy, category: str | None,
                          subcategory: str | None) -> TaxonomyMatch:
    """Best-effort correction of a (category, subcategory) pair.

    Exact case-insensitive match, then substring containment either way,
    then the first category / first subcategory. Never fails.
    """
    cat, cat_kind = _resolve(category, taxonomy.categories)
    sub, sub_kind = _resolve(subcategory, taxonomy.subcategories(cat))
    kind = max(cat_kind, sub_kind, key=_KIND_RANK.__getitem__)
    return TaxonomyMatch(cat, sub, kind, cat_kind, sub_kind)


def accumulate_cell(worksheet, row: int, column: int, delta: float) -> float:
    """Add delta to the numeric value of a cell and return the new value.

    Read-modify-write: empty or unparseable cells count as 0. Not atomic;
    two callers racing on one cell can lose an update, so callers go
    through the spreadsheet's writer lock.
    """
    label = a1_label(row, column)
    current = parse_decimal(worksheet.acell(label).value)
    new_value = current + delta
    worksheet.update_acell(label, new_value)
    return new_value


# ── Template rendering ───────────────────────────────────


def _cell(value: object = None, background: dict | None = None, bold: bool = False,
          font_size: int | None = None, centered: bool = False) -> dict:
    cell: dict = {}
    if isinstance(value, str) and value.startswith("="):
        cell["userEnteredValue"] = {"formulaValue": value}
    elif isinstance(value, str):
        cell["userEnteredValue"] = {"stringValue": value}
    elif value is not None:
        cell["userEnteredValue"] = {"numberValue": value}
    fmt: dict = {}
    if background:
        fmt["backgroundColor"] = background
    if bold or font_size:
        fmt["textFormat"] = {"bold": bold}
        if font_size:
            fmt["textFormat"]["fontSize"] = font_size
    if centered:
        fmt["horizontalAlignment"] = "CENTER"
    if fmt:
        cell["userEnteredFormat"] = fmt
    return cell


def _update_cells(sheet_id: int, row: int, column: int, cells: list[dict]) -> dict:
    return {
        "updateCells": {
            "rows": [{"values": cells}],
            "fields": "userEnteredValue,userEnteredFormat",
            "range": {
                "sheetId": sheet_id,
                "startRowIndex": row,
                "endRowIndex": row + 1,
                "startColumnIndex": column,
                "endColumnIndex": column + len(cells),
            },
        }
    }


def template_requests(sheet_id: int, template: list[CategoryBlock], title: str) -> list[dict]:
    """batchUpdate requests drawing the empty grid for one month."""
    block_color = COLORS["block"]
    requests = [_update_cells(sheet_id, TITLE_ROW, 0, [_cell(title, bold=True, font_size=14)])]

    for block in template:
        requests.append(_update_cells(sheet_id, HEADER_ROW, block.column_offset, [
            _cell(f"{block.category} €", block_color, bold=True, font_size=13, centered=True),
            _cell("∑", block_color, bold=True, centered=True),
        ]))
        for idx, sub in enumerate(block.subcategories):
            requests.append(_update_cells(sheet_id, FIRST_SUBCATEGORY_ROW + idx, block.column_offset, [
                _cell(sub, COLORS["subcategory"]),
                _cell(0, COLORS["amount"]),
            ]))
        first = a1_label(FIRST_SUBCATEGORY_ROW, block.total_column)
        last = a1_label(block.total_row - 1, block.total_column)
        requests.append(_update_cells(sheet_id, block.total_row, block.column_offset, [
            _cell("", block_color),
            _cell(f"=SUM({first}:{last})", block_color, bold=True),
        ]))

    totals = ",".join(a1_label(b.total_row, b.total_column) for b in template)
    grand_color = COLORS["grand_total"]
    requests.append(_update_cells(sheet_id, grand_total_row(template), 0, [
        _cell(GRAND_TOTAL_LABEL, grand_color, bold=True, font_size=14),
        _cell(f"=SUM({totals})", grand_color, bold=True, font_size=14),
    ]))
    return requests


# ── GridSheetsSync ───────────────────────────────────────


class GridSheetsSync(SheetsSync):
    """Sync layout keeping running totals per (category, subcategory)."""

    layout = "grid"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.template = build_template(self.taxonomy)

    def _create_container(self, spreadsheet, sheet_name: str):
        rows = grand_total_row(self.template) + 1
        cols = len(self.template) * BLOCK_WIDTH
        worksheet = spreadsheet.add_worksheet(title=sheet_name, rows=rows, cols=cols)
        spreadsheet.batch_update({
            "requests": template_requests(worksheet.id, self.template, sheet_name),
        })
        return worksheet

    def project(self, expense: Expense) -> tuple[TaxonomyMatch, CellRef]:
        match = normalize_to_taxonomy(self.taxonomy, expense.category, expense.subcategory)
        if not match.is_confident:
            logger.warning(
                "Expense %s: '%s / %s' not in taxonomy, filed under '%s / %s'",
                expense.id, expense.category, expense.subcategory,
                match.category, match.subcategory,
            )
        cell = locate_cell(self.template, match.category, match.subcategory)
        if cell is None:
            raise RemoteSyncError(
                f"No grid cell for '{match.category} / {match.subcategory}'"
            )
        return match, cell

    def _write_record(self, worksheet, expense: Expense) -> None:
        _, cell = self.project(expense)
        accumulate_cell(worksheet, cell.row, cell.column, expense.amount)

    def _month_start(self, title: str) -> datetime:
        month = self.naming.month_of(title)
        if month is None:
            now = datetime.now()
            return datetime(now.year, now.month, 1)
        return datetime(month[0], month[1], 1)

    def _read_container(self, worksheet) -> list[Expense]:
        """One aggregate expense per non-zero total cell.

        The grid keeps totals only, so individual expenses cannot be
        recovered; each cell comes back as a single dated-to-month record.
        """
        values = worksheet.get_all_values()
        start = self._month_start(worksheet.title)
        timestamp = int(start.timestamp() * 1000)
        expenses: list[Expense] = []
        for block in self.template:
            for idx, sub in enumerate(block.subcategories):
                row = FIRST_SUBCATEGORY_ROW + idx
                if row >= len(values) or block.total_column >= len(values[row]):
                    continue
                amount = parse_decimal(values[row][block.total_column])
                if amount <= 0:
                    continue
                expenses.append(Expense(
                    id=f"{worksheet.title}!{a1_label(row, block.total_column)}",
                    timestamp=timestamp,
                    amount=amount,
                    category=block.category,
                    subcategory=sub,
                    description=f"{block.category} / {sub}",
                    date=start.strftime("%Y-%m-%d"),
                ))
        return expenses

    def _clear_container(self, worksheet) -> None:
        """Reset every subcategory total to 0, keeping labels and formulas."""
        data = []
        for block in self.template:
            first = a1_label(FIRST_SUBCATEGORY_ROW, block.total_column)
            last = a1_label(block.total_row - 1, block.total_column)
            data.append({
                "range": f"{first}:{last}",
                "values": [[0] for _ in block.subcategories],
            })
        worksheet.batch_update(data)

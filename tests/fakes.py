"""In-memory stand-ins for the gspread client, spreadsheet and worksheet.

Only the calls voxledger makes are implemented. Cells are addressed
0-indexed internally and read back as strings, like get_all_values().
"""

from __future__ import annotations

import re
from types import SimpleNamespace
from unittest.mock import MagicMock

from gspread.exceptions import APIError, SpreadsheetNotFound, WorksheetNotFound

_A1_RE = re.compile(r"^([A-Z]+)(\d*)$")


def make_api_error(code: int, message: str, status: str = "FAILED_PRECONDITION") -> APIError:
    response = MagicMock()
    response.status_code = code
    response.json.return_value = {"error": {"code": code, "message": message, "status": status}}
    response.text = message
    return APIError(response)


def _col_index(letters: str) -> int:
    n = 0
    for ch in letters:
        n = n * 26 + (ord(ch) - 64)
    return n - 1


def parse_a1(label: str) -> tuple[int | None, int]:
    """'B3' → (2, 1); 'L' → (None, 11)."""
    label = label.split("!")[-1]
    m = _A1_RE.match(label)
    if m is None:
        raise ValueError(f"Bad A1 label: {label}")
    row = int(m.group(2)) - 1 if m.group(2) else None
    return row, _col_index(m.group(1))


class FakeWorksheet:
    def __init__(self, title: str, sheet_id: int, rows: int = 1000, cols: int = 26):
        self.title = title
        self.id = sheet_id
        self.row_count = rows
        self.col_count = cols
        self.cells: dict[tuple[int, int], object] = {}
        self.formats: list[tuple[str, dict]] = []
        self.deleted = False
        self.append_calls = 0

    def _check(self) -> None:
        if self.deleted:
            raise make_api_error(400, f"Unable to parse range: '{self.title}'!A1", "INVALID_ARGUMENT")

    def _last_row(self) -> int:
        return max((r for r, _ in self.cells), default=-1)

    def set(self, row: int, col: int, value) -> None:
        if value is None or value == "":
            self.cells.pop((row, col), None)
        else:
            self.cells[(row, col)] = value

    def value(self, row: int, col: int):
        return self.cells.get((row, col))

    # gspread surface

    def get_all_values(self) -> list[list[str]]:
        self._check()
        if not self.cells:
            return []
        n_rows = self._last_row() + 1
        n_cols = max(c for _, c in self.cells) + 1
        return [
            [str(self.cells[(r, c)]) if (r, c) in self.cells else "" for c in range(n_cols)]
            for r in range(n_rows)
        ]

    def append_row(self, values, value_input_option="RAW"):
        self._check()
        self.append_calls += 1
        row = self._last_row() + 1
        for col, v in enumerate(values):
            self.set(row, col, v)
        return {"updates": {"updatedRange": f"'{self.title}'!A{row + 1}:L{row + 1}"}}

    def update(self, range_name="A1", values=None, **kwargs):
        self._check()
        start_row, start_col = parse_a1(range_name.split(":")[0])
        for r, row_values in enumerate(values or []):
            for c, v in enumerate(row_values):
                self.set((start_row or 0) + r, start_col + c, v)

    def batch_update(self, data, **kwargs):
        self._check()
        for entry in data:
            self.update(range_name=entry["range"], values=entry["values"])

    def format(self, ranges, fmt):
        self._check()
        self.formats.append((ranges, fmt))

    def batch_clear(self, ranges):
        self._check()
        for rng in ranges:
            start, _, end = rng.partition(":")
            r0, c0 = parse_a1(start)
            r1, c1 = parse_a1(end or start)
            for (r, c) in list(self.cells):
                if r >= (r0 or 0) and (r1 is None or r <= r1) and c0 <= c <= c1:
                    del self.cells[(r, c)]

    def acell(self, label: str):
        self._check()
        row, col = parse_a1(label)
        value = self.cells.get((row, col))
        return SimpleNamespace(value=None if value is None else str(value))

    def update_acell(self, label: str, value):
        self._check()
        row, col = parse_a1(label)
        self.set(row, col, value)


class FakeSpreadsheet:
    def __init__(self, spreadsheet_id: str, title: str = "Test"):
        self.id = spreadsheet_id
        self.title = title
        self._worksheets: list[FakeWorksheet] = [FakeWorksheet("Sheet1", 0)]
        self._next_sheet_id = 1
        self.batch_requests: list[dict] = []

    def worksheets(self) -> list[FakeWorksheet]:
        return list(self._worksheets)

    def worksheet(self, title: str) -> FakeWorksheet:
        for ws in self._worksheets:
            if ws.title == title:
                return ws
        raise WorksheetNotFound(title)

    def add_worksheet(self, title: str, rows: int = 1000, cols: int = 26, index=None):
        if any(ws.title == title for ws in self._worksheets):
            raise make_api_error(
                400, f'Invalid requests[0].addSheet: A sheet with the name "{title}" already exists.',
                "INVALID_ARGUMENT",
            )
        ws = FakeWorksheet(title, self._next_sheet_id, rows, cols)
        self._next_sheet_id += 1
        self._worksheets.append(ws)
        return ws

    def del_worksheet(self, worksheet: FakeWorksheet) -> None:
        self._worksheets.remove(worksheet)
        worksheet.deleted = True

    def batch_update(self, body: dict):
        for request in body.get("requests", []):
            self.batch_requests.append(request)
            update = request.get("updateCells")
            if update is None:
                continue
            rng = update["range"]
            ws = next(w for w in self._worksheets if w.id == rng["sheetId"])
            for r, row in enumerate(update["rows"]):
                for c, cell in enumerate(row["values"]):
                    value = cell.get("userEnteredValue", {})
                    if value:
                        ws.set(rng["startRowIndex"] + r, rng["startColumnIndex"] + c,
                               next(iter(value.values())))
        return {"replies": []}


class FakeClient:
    def __init__(self):
        self.spreadsheets: dict[str, FakeSpreadsheet] = {}
        self._counter = 0
        self.open_calls = 0

    def create(self, title: str) -> FakeSpreadsheet:
        self._counter += 1
        ss = FakeSpreadsheet(f"ss-{self._counter}", title)
        self.spreadsheets[ss.id] = ss
        return ss

    def open_by_key(self, key: str) -> FakeSpreadsheet:
        self.open_calls += 1
        try:
            return self.spreadsheets[key]
        except KeyError:
            raise SpreadsheetNotFound(key) from None

    def delete(self, key: str) -> None:
        del self.spreadsheets[key]

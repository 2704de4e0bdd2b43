"""Log store - append-only log sheet written between rounds.

The store is a spreadsheet range: a sheet name plus a starting cell. Each
log line becomes a [timestamp, message] row. Writers pass the row offset
to write at, so repeated rounds append without overwriting or duplicating
earlier lines.

SheetsService is the narrow spreadsheet interface the store needs. The
real implementation lives with the spreadsheet host; InMemorySheetsService
is the in-process sheet used by the CLI and tests.
"""

import json
import re
from typing import Any, Iterable, Protocol, runtime_checkable

from audiencerunner.schemas import LogEntry

_CELL_RE = re.compile(r"^([A-Z]+)(\d+)$")
_RANGE_RE = re.compile(r"^([A-Z]+)(\d+)(?::([A-Z]+)(\d*))?$")


def column_number(letters: str) -> int:
    """A -> 1, Z -> 26, AA -> 27."""
    number = 0
    for char in letters.upper():
        number = number * 26 + (ord(char) - ord("A") + 1)
    return number


def column_letters(number: int) -> str:
    """1 -> A, 26 -> Z, 27 -> AA."""
    if number < 1:
        raise ValueError(f"Column number must be >= 1, got {number}")
    letters = ""
    while number:
        number, remainder = divmod(number - 1, 26)
        letters = chr(ord("A") + remainder) + letters
    return letters


def parse_cell(cell: str) -> tuple[int, int]:
    """Parse an A1 cell into (row, column), both 1-based."""
    match = _CELL_RE.match(cell.strip().upper())
    if not match:
        raise ValueError(f"Invalid A1 cell: {cell!r}")
    return int(match.group(2)), column_number(match.group(1))


def a1_range(start_cell: str, row_offset: int, n_rows: int, n_cols: int) -> str:
    """
    Build the A1 address of a block placed row_offset rows below start_cell.

    Example:
        a1_range("A2", 3, 2, 2) -> "A5:B6"
    """
    if n_rows < 1 or n_cols < 1:
        raise ValueError("A range needs at least one row and one column")
    row, col = parse_cell(start_cell)
    first_row = row + row_offset
    return (
        f"{column_letters(col)}{first_row}:"
        f"{column_letters(col + n_cols - 1)}{first_row + n_rows - 1}"
    )


def open_range(start_cell: str, n_cols: int) -> str:
    """Address from start_cell down to the end of the sheet, e.g. A2:B."""
    row, col = parse_cell(start_cell)
    return f"{column_letters(col)}{row}:{column_letters(col + n_cols - 1)}"


@runtime_checkable
class SheetsService(Protocol):
    """Spreadsheet range I/O used by the log store."""

    def set_values_in_range(self, sheet: str, range_address: str, rows: list[list[Any]]) -> None:
        """Write rows into an A1 range; the range must match the rows' shape."""
        ...

    def clear_range(self, sheet: str, range_address: str) -> None:
        """Clear an A1 range; an open range (A2:B) runs to the last row."""
        ...


@runtime_checkable
class LogStore(Protocol):
    """Append-only store for job log lines."""

    def clear(self) -> None:
        """Remove every stored line."""
        ...

    def log(self, entries: list[Any], offset: int) -> int:
        """Write entries starting at offset and return the new offset."""
        ...


class InMemorySheetsService:
    """A workbook held in memory: sheet name -> {(row, col): value}."""

    def __init__(self) -> None:
        self.sheets: dict[str, dict[tuple[int, int], Any]] = {}
        self.writes = 0

    def _bounds(self, range_address: str) -> tuple[int, int, int | None, int]:
        match = _RANGE_RE.match(range_address.strip().upper())
        if not match:
            raise ValueError(f"Invalid A1 range: {range_address!r}")
        first_col_letters, first_row, last_col_letters, last_row = match.groups()
        first_col = column_number(first_col_letters)
        last_col = column_number(last_col_letters) if last_col_letters else first_col
        if last_col_letters and not last_row:
            end_row = None
        elif last_row:
            end_row = int(last_row)
        else:
            end_row = int(first_row)
        return int(first_row), first_col, end_row, last_col

    def set_values_in_range(self, sheet: str, range_address: str, rows: list[list[Any]]) -> None:
        first_row, first_col, last_row, last_col = self._bounds(range_address)
        if last_row is None or last_row - first_row + 1 != len(rows):
            raise ValueError(f"Range {range_address} does not match {len(rows)} row(s)")
        cells = self.sheets.setdefault(sheet, {})
        for r, row in enumerate(rows):
            if len(row) != last_col - first_col + 1:
                raise ValueError(f"Range {range_address} does not match row width {len(row)}")
            for c, value in enumerate(row):
                cells[(first_row + r, first_col + c)] = value
        self.writes += 1

    def clear_range(self, sheet: str, range_address: str) -> None:
        first_row, first_col, last_row, last_col = self._bounds(range_address)
        cells = self.sheets.get(sheet, {})
        for row, col in list(cells):
            if row >= first_row and (last_row is None or row <= last_row) and first_col <= col <= last_col:
                del cells[(row, col)]

    def get_values(self, sheet: str, range_address: str) -> list[list[Any]]:
        """Read a range; an open range stops at the last non-empty row."""
        first_row, first_col, last_row, last_col = self._bounds(range_address)
        cells = self.sheets.get(sheet, {})
        if last_row is None:
            used = [row for row, col in cells if first_col <= col <= last_col and row >= first_row]
            last_row = max(used) if used else first_row - 1
        return [
            [cells.get((row, col), "") for col in range(first_col, last_col + 1)]
            for row in range(first_row, last_row + 1)
        ]


def log_row(item: Any) -> list[Any]:
    """Format a log item as a [timestamp, message] row."""
    if isinstance(item, LogEntry):
        return [item.timestamp.isoformat(), item.message]
    if isinstance(item, dict):
        return [str(item.get("date", "")), str(item.get("message", json.dumps(item, default=str)))]
    return ["", str(item)]


class SheetLogStore:
    """LogStore writing [timestamp, message] rows below a starting cell."""

    COLUMNS = 2

    def __init__(self, sheets: SheetsService, sheet_name: str = "Logs", start_cell: str = "A2"):
        parse_cell(start_cell)
        self.sheets = sheets
        self.sheet_name = sheet_name
        self.start_cell = start_cell

    def clear(self) -> None:
        self.sheets.clear_range(self.sheet_name, open_range(self.start_cell, self.COLUMNS))

    def log(self, entries: Iterable[Any], offset: int) -> int:
        rows = [log_row(item) for item in entries]
        if not rows:
            return offset
        address = a1_range(self.start_cell, offset, len(rows), self.COLUMNS)
        self.sheets.set_values_in_range(self.sheet_name, address, rows)
        return offset + len(rows)

"""Ledger stores: rectangular reads/writes over named sheets.

Coordinates are 1-based like a spreadsheet: row 1 is the header row, data
starts at row 2. Two implementations are provided:

- :class:`MemoryBook` / :class:`MemorySheet` keep grids in memory and can
  attach validation predicates to cells (used by tests and embedders);
- :class:`WorkbookLedger` / :class:`WorkbookSheet` operate on an ``.xlsx``
  workbook through openpyxl.

Values written to either store pass through :func:`to_ledger_value`: aware
datetimes become naive wall-clock readings in the ledger time zone, and the
in-memory markers (``UNSET``, ``INVALID_DATE``, ``NaN``, ``CellError``) become
plain cell contents.
"""

from __future__ import annotations

import math
from collections.abc import Callable, Iterator, Mapping, Sequence
from contextlib import contextmanager
from datetime import datetime, tzinfo
from os import PathLike
from pathlib import Path
from typing import Any, NamedTuple, Protocol, TypeAlias
from zoneinfo import ZoneInfo

from openpyxl import Workbook, load_workbook
from openpyxl.utils import get_column_letter, quote_sheetname
from openpyxl.worksheet.cell_range import CellRange
from openpyxl.worksheet.datavalidation import DataValidation
from openpyxl.worksheet.worksheet import Worksheet

from .logging_setup import get_logger
from .models import UNSET, CellError, InvalidDate

_logger = get_logger("ledger_import.ledger")

XLSX_MAX_ROWS = 1_048_576


class SheetRange(NamedTuple):
    """A 1-based rectangle: top-left ``(row, col)`` plus its size."""

    row: int
    col: int
    n_rows: int
    n_cols: int

    @property
    def last_row(self) -> int:
        return self.row + self.n_rows - 1

    @property
    def last_col(self) -> int:
        return self.col + self.n_cols - 1

    @property
    def a1(self) -> str:
        return a1_notation(self)


def a1_notation(rng: SheetRange) -> str:
    first = f"{get_column_letter(rng.col)}{rng.row}"
    if rng.n_rows == 1 and rng.n_cols == 1:
        return first
    return f"{first}:{get_column_letter(rng.last_col)}{rng.last_row}"


class LedgerSheet(Protocol):
    @property
    def name(self) -> str: ...

    def last_row(self) -> int: ...

    def last_column(self) -> int: ...

    def max_rows(self) -> int: ...

    def insert_rows_after(self, row: int, n: int) -> None: ...

    def get_values(self, rng: SheetRange) -> list[list[Any]]: ...

    def get_formulas(self, rng: SheetRange) -> list[list[Any]]: ...

    def set_values(self, rng: SheetRange, values: Sequence[Sequence[Any]]) -> None: ...

    def get_validations(self, rng: SheetRange) -> Any: ...

    def clear_validations(self, rng: SheetRange) -> None: ...

    def set_validations(self, rng: SheetRange, snapshot: Any) -> None: ...

    def sort(self, column: int, *, ascending: bool) -> None: ...

    def cell_link(self, row: int, col: int) -> str: ...


class LedgerBook(Protocol):
    def sheet(self, name: str) -> LedgerSheet | None: ...


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------


def _blank(value: Any) -> bool:
    return value is None or value == ""


def to_ledger_value(value: Any, tz: tzinfo) -> Any:
    if value is UNSET or isinstance(value, InvalidDate):
        return None
    if isinstance(value, CellError):
        return value.type
    if isinstance(value, float) and math.isnan(value):
        return None
    if isinstance(value, datetime) and value.tzinfo is not None:
        return value.astimezone(tz).replace(tzinfo=None)
    return value


def _sort_key(value: Any) -> tuple[int, Any]:
    if isinstance(value, bool):
        return (2, value)
    if isinstance(value, int | float):
        return (0, float(value))
    if isinstance(value, datetime):
        # Dates sort among numbers, as day serials do in a spreadsheet.
        return (0, (value.replace(tzinfo=None) - datetime(1899, 12, 30)).total_seconds() / 86400)
    return (1, str(value).upper())


def sort_rows(rows: Sequence[Sequence[Any]], j: int, *, ascending: bool) -> list[list[Any]]:
    """Stable sort on zero-based column ``j``; blank cells always sort last."""

    def cell(row: Sequence[Any]) -> Any:
        return row[j] if j < len(row) else None

    filled = [list(r) for r in rows if not _blank(cell(r))]
    blank = [list(r) for r in rows if _blank(cell(r))]
    filled.sort(key=lambda r: _sort_key(cell(r)), reverse=not ascending)
    return filled + blank


@contextmanager
def suppressed_validations(sheet: LedgerSheet, rng: SheetRange) -> Iterator[None]:
    """Clear the data validations over ``rng`` and restore them on exit."""

    snapshot = sheet.get_validations(rng)
    sheet.clear_validations(rng)
    try:
        yield
    finally:
        sheet.set_validations(rng, snapshot)


def write_values(sheet: LedgerSheet, rng: SheetRange, values: Sequence[Sequence[Any]]) -> None:
    """Write a rectangle without tripping the target cells' validations."""

    padded = [[None if v is UNSET else v for v in row] + [None] * (rng.n_cols - len(row)) for row in values]
    with suppressed_validations(sheet, rng):
        sheet.set_values(rng, padded)


def read_header(sheet: LedgerSheet) -> list[Any]:
    n = sheet.last_column()
    if n < 1:
        return []
    rng = SheetRange(1, 1, 1, n)
    _logger.info("Get headers from range %s", rng.a1)
    return sheet.get_values(rng)[0]


def read_column(sheet: LedgerSheet, col: int) -> list[Any]:
    """Data cells of 1-based column ``col``, from row 2 to the last row."""

    m = sheet.last_row() - 1
    if m < 1:
        return []
    rng = SheetRange(2, col, m, 1)
    _logger.info("Get column from range %s", rng.a1)
    return [row[0] for row in sheet.get_values(rng)]


def read_grid(sheet: LedgerSheet, *, formulas: bool = False) -> list[list[Any]]:
    """The sheet's data range, header row included.

    With ``formulas`` a cell holding a formula reads as its formula text
    instead of its computed value.
    """

    m, n = sheet.last_row(), sheet.last_column()
    if m < 1 or n < 1:
        return []
    rng = SheetRange(1, 1, m, n)
    _logger.info("Get %s from range %s", sheet.name, rng.a1)
    return sheet.get_formulas(rng) if formulas else sheet.get_values(rng)


# ---------------------------------------------------------------------------
# In-memory store
# ---------------------------------------------------------------------------

Validator: TypeAlias = Callable[[Any], bool]


class MemorySheet:
    """A grid in memory with optional per-cell validation predicates.

    ``writes`` records every successful :meth:`set_values` call as
    ``(a1_notation, values)``.
    """

    def __init__(
        self,
        name: str,
        rows: Sequence[Sequence[Any]] = (),
        *,
        max_rows: int | None = None,
        time_zone: str = "UTC",
    ) -> None:
        self._name = name
        self.rows: list[list[Any]] = [list(r) for r in rows]
        self._max_rows = max(len(self.rows), 1000) if max_rows is None else max_rows
        if self._max_rows < len(self.rows):
            raise ValueError("max_rows is smaller than the number of rows")
        self._tz = ZoneInfo(time_zone)
        self.validations: dict[tuple[int, int], Validator] = {}
        self.writes: list[tuple[str, list[list[Any]]]] = []

    @property
    def name(self) -> str:
        return self._name

    def last_row(self) -> int:
        for i in range(len(self.rows), 0, -1):
            if any(not _blank(v) for v in self.rows[i - 1]):
                return i
        return 0

    def last_column(self) -> int:
        n = 0
        for row in self.rows:
            for j in range(len(row), n, -1):
                if not _blank(row[j - 1]):
                    n = j
                    break
        return n

    def max_rows(self) -> int:
        return self._max_rows

    def insert_rows_after(self, row: int, n: int) -> None:
        if row < len(self.rows):
            self.rows[row:row] = [[] for _ in range(n)]
        self._max_rows += n

    def _cell(self, r: int, c: int) -> Any:
        if r - 1 < len(self.rows):
            row = self.rows[r - 1]
            if c - 1 < len(row):
                return row[c - 1]
        return None

    def get_values(self, rng: SheetRange) -> list[list[Any]]:
        return [
            [self._cell(r, c) for c in range(rng.col, rng.last_col + 1)]
            for r in range(rng.row, rng.last_row + 1)
        ]

    def get_formulas(self, rng: SheetRange) -> list[list[Any]]:
        return self.get_values(rng)

    def set_values(self, rng: SheetRange, values: Sequence[Sequence[Any]]) -> None:
        if len(values) != rng.n_rows or any(len(row) != rng.n_cols for row in values):
            raise ValueError(f"values do not match the dimensions of range {rng.a1}")
        if rng.last_row > self._max_rows:
            raise ValueError(f"range {rng.a1} is out of bounds of sheet {self._name!r}")
        converted = [[to_ledger_value(v, self._tz) for v in row] for row in values]
        for di, row in enumerate(converted):
            for dj, value in enumerate(row):
                check = self.validations.get((rng.row + di, rng.col + dj))
                if check is not None and not check(value):
                    cell = a1_notation(SheetRange(rng.row + di, rng.col + dj, 1, 1))
                    raise ValueError(f"value {value!r} violates the data validation of {cell}")
        while len(self.rows) < rng.last_row:
            self.rows.append([])
        for di, row in enumerate(converted):
            target = self.rows[rng.row - 1 + di]
            if len(target) < rng.last_col:
                target.extend([None] * (rng.last_col - len(target)))
            target[rng.col - 1 : rng.last_col] = row
        self.writes.append((rng.a1, converted))

    def get_validations(self, rng: SheetRange) -> dict[tuple[int, int], Validator]:
        return {
            (r, c): v
            for (r, c), v in self.validations.items()
            if rng.row <= r <= rng.last_row and rng.col <= c <= rng.last_col
        }

    def clear_validations(self, rng: SheetRange) -> None:
        for key in self.get_validations(rng):
            del self.validations[key]

    def set_validations(self, rng: SheetRange, snapshot: Mapping[tuple[int, int], Validator]) -> None:
        self.validations.update(snapshot)

    def sort(self, column: int, *, ascending: bool) -> None:
        self.rows[1:] = sort_rows(self.rows[1:], column - 1, ascending=ascending)

    def cell_link(self, row: int, col: int) -> str:
        return f"#{quote_sheetname(self._name)}!{get_column_letter(col)}{row}"


class MemoryBook:
    def __init__(self, sheets: Sequence[MemorySheet] = ()) -> None:
        self._sheets = {s.name: s for s in sheets}

    @classmethod
    def from_grids(cls, grids: Mapping[str, Sequence[Sequence[Any]]], **kwargs: Any) -> MemoryBook:
        return cls([MemorySheet(name, rows, **kwargs) for name, rows in grids.items()])

    def sheet(self, name: str) -> MemorySheet | None:
        return self._sheets.get(name)

    def __getitem__(self, name: str) -> MemorySheet:
        return self._sheets[name]


# ---------------------------------------------------------------------------
# openpyxl workbook store
# ---------------------------------------------------------------------------


class WorkbookSheet:
    """A worksheet of an openpyxl workbook viewed as a ledger sheet.

    ``computed`` is the same sheet loaded with ``data_only=True``: formula
    cells read as the values last calculated by the spreadsheet application.
    Rows inserted or sorted here are tracked so a formula cell still finds
    its computed value after it moved.
    """

    def __init__(self, ws: Worksheet, tz: tzinfo, computed: Worksheet | None = None) -> None:
        self._ws = ws
        self._tz = tz
        self._computed = computed
        # Current row -> row in ``computed``; None until rows move.
        self._origin: list[int | None] | None = None

    @property
    def name(self) -> str:
        return self._ws.title

    @property
    def worksheet(self) -> Worksheet:
        return self._ws

    # ws.max_row/max_column count formatted but empty cells, so scan for
    # the last cell that actually holds a value.
    def last_row(self) -> int:
        for r in range(self._ws.max_row, 0, -1):
            for c in range(1, self._ws.max_column + 1):
                if not _blank(self._ws.cell(row=r, column=c).value):
                    return r
        return 0

    def last_column(self) -> int:
        for c in range(self._ws.max_column, 0, -1):
            for r in range(1, self._ws.max_row + 1):
                if not _blank(self._ws.cell(row=r, column=c).value):
                    return c
        return 0

    def max_rows(self) -> int:
        return XLSX_MAX_ROWS

    def _origins(self, upto: int) -> list[int | None]:
        if self._origin is None:
            self._origin = list(range(self._ws.max_row + 1))
        if len(self._origin) <= upto:
            self._origin.extend([None] * (upto + 1 - len(self._origin)))
        return self._origin

    def insert_rows_after(self, row: int, n: int) -> None:
        if row + n > XLSX_MAX_ROWS:
            raise ValueError(f"cannot grow sheet {self.name!r} beyond {XLSX_MAX_ROWS} rows")
        self._ws.insert_rows(row + 1, amount=n)
        self._origins(row)[row + 1 : row + 1] = [None] * n

    def _computed_value(self, r: int, c: int) -> Any:
        if self._computed is None:
            return None
        if self._origin is None:
            source: int | None = r
        else:
            source = self._origin[r] if r < len(self._origin) else None
        if source is None:
            return None
        return self._computed.cell(row=source, column=c).value

    def get_values(self, rng: SheetRange) -> list[list[Any]]:
        return [
            [
                self._computed_value(cell.row, cell.column) if cell.data_type == "f" else cell.value
                for cell in row
            ]
            for row in self._ws.iter_rows(
                min_row=rng.row, max_row=rng.last_row, min_col=rng.col, max_col=rng.last_col
            )
        ]

    def get_formulas(self, rng: SheetRange) -> list[list[Any]]:
        return [
            list(row)
            for row in self._ws.iter_rows(
                min_row=rng.row,
                max_row=rng.last_row,
                min_col=rng.col,
                max_col=rng.last_col,
                values_only=True,
            )
        ]

    def set_values(self, rng: SheetRange, values: Sequence[Sequence[Any]]) -> None:
        if len(values) != rng.n_rows or any(len(row) != rng.n_cols for row in values):
            raise ValueError(f"values do not match the dimensions of range {rng.a1}")
        for di, row in enumerate(values):
            for dj, value in enumerate(row):
                # Assigning None explicitly clears the cell.
                self._ws.cell(row=rng.row + di, column=rng.col + dj).value = to_ledger_value(value, self._tz)

    def _intersecting(self, rng: SheetRange) -> list[DataValidation]:
        target = CellRange(rng.a1)
        return [
            dv
            for dv in self._ws.data_validations.dataValidation
            if any(not target.isdisjoint(cr) for cr in dv.sqref.ranges)
        ]

    def get_validations(self, rng: SheetRange) -> list[DataValidation]:
        return self._intersecting(rng)

    def clear_validations(self, rng: SheetRange) -> None:
        detached = {id(dv) for dv in self._intersecting(rng)}
        self._ws.data_validations.dataValidation = [
            dv for dv in self._ws.data_validations.dataValidation if id(dv) not in detached
        ]

    def set_validations(self, rng: SheetRange, snapshot: Sequence[DataValidation]) -> None:
        current = self._ws.data_validations.dataValidation
        present = {id(dv) for dv in current}
        for dv in snapshot:
            if id(dv) not in present:
                current.append(dv)

    def sort(self, column: int, *, ascending: bool) -> None:
        """Reorder the data rows, moving whole rows.

        Every cell moves with its style, and relative references in formulas
        are translated by the distance their row moved. Rows are parked below
        the used area and then moved back into sorted order.
        """

        m = self.last_row()
        if m < 3:
            return
        column_values = self.get_values(SheetRange(2, column, m - 1, 1))
        keys = [[r, v] for r, (v,) in zip(range(2, m + 1), column_values, strict=True)]
        order = [r for r, _ in sort_rows(keys, 1, ascending=ascending)]
        width = get_column_letter(max(self._ws.max_column, 1))
        park = self._ws.max_row
        self._ws.move_range(f"A2:{width}{m}", rows=park, translate=True)
        for target, source in enumerate(order, start=2):
            parked = source + park
            self._ws.move_range(f"A{parked}:{width}{parked}", rows=target - parked, translate=True)
        origin = self._origins(m)
        origin[2 : m + 1] = [origin[r] for r in order]

    def cell_link(self, row: int, col: int) -> str:
        return f"#{quote_sheetname(self.name)}!{get_column_letter(col)}{row}"


class WorkbookLedger:
    """An ``.xlsx`` workbook holding the ledger and its rule sheets."""

    def __init__(
        self,
        workbook: Workbook,
        *,
        time_zone: str = "UTC",
        path: str | PathLike[str] | None = None,
        computed: Workbook | None = None,
    ) -> None:
        self.workbook = workbook
        self.path = Path(path) if path is not None else None
        self.computed = computed
        self._tz = ZoneInfo(time_zone)
        self._sheets: dict[str, WorkbookSheet] = {}

    @classmethod
    def load(cls, path: str | PathLike[str], *, time_zone: str = "UTC") -> WorkbookLedger:
        p = Path(path)
        _logger.debug("Loading workbook %s", p)
        # A second, value-only copy supplies the cached results of formula cells.
        return cls(
            load_workbook(p),
            time_zone=time_zone,
            path=p,
            computed=load_workbook(p, data_only=True),
        )

    def sheet(self, name: str) -> WorkbookSheet | None:
        if name not in self.workbook.sheetnames:
            return None
        if name not in self._sheets:
            computed = None
            if self.computed is not None and name in self.computed.sheetnames:
                computed = self.computed[name]
            self._sheets[name] = WorkbookSheet(self.workbook[name], self._tz, computed)
        return self._sheets[name]

    def save(self, path: str | PathLike[str] | None = None) -> Path:
        target = Path(path) if path is not None else self.path
        if target is None:
            raise ValueError("no path to save the workbook to")
        self.workbook.save(target)
        _logger.info("Saved workbook %s", target)
        return target


__all__ = [
    "LedgerBook",
    "LedgerSheet",
    "MemoryBook",
    "MemorySheet",
    "SheetRange",
    "WorkbookLedger",
    "WorkbookSheet",
    "XLSX_MAX_ROWS",
    "a1_notation",
    "read_column",
    "read_grid",
    "read_header",
    "sort_rows",
    "suppressed_validations",
    "to_ledger_value",
    "write_values",
]

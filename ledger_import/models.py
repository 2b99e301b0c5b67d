"""Data models and cell value types for ``ledger_import``.

Rows on both sides of an import are plain Python lists of cell values. A cell
value is a literal (``str``, ``int``, ``float``, ``bool``, ``None``), a
``datetime``, or one of two explicit markers carried as ordinary data:

- :class:`CellError` for per-cell formula evaluation errors, and
- :data:`INVALID_DATE` for date cells that failed to parse.

Positions that were never written (a column derived after a row was built, or
a ragged CSV row) read back as :data:`UNSET` so later stages can tell "no
value" apart from an explicit empty value.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, NamedTuple, TypeAlias

from pydantic import BaseModel, ConfigDict

# ---------------------------------------------------------------------------
# Cell markers
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class CellError:
    """A structured per-cell error produced by formula evaluation.

    ``type`` is the spreadsheet error code (``#VALUE!``, ``#NAME?`` ...),
    ``message`` a human readable explanation and ``link`` an optional pointer
    back to the rule cell the error originated from.
    """

    type: str
    message: str
    link: str | None = None

    def __str__(self) -> str:
        return self.type


class InvalidDate:
    """Marker for a date cell that could not be parsed.

    Like ``NaN`` it never compares equal to anything, itself included.
    """

    __slots__ = ()

    def __eq__(self, other: object) -> bool:
        return False

    def __hash__(self) -> int:
        return id(self)

    def __repr__(self) -> str:
        return "INVALID_DATE"


class _Unset:
    __slots__ = ()

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


INVALID_DATE = InvalidDate()
UNSET = _Unset()

CellValue: TypeAlias = str | int | float | bool | datetime | CellError | InvalidDate | None
"""A single cell as read from CSV, a formula engine, or the ledger."""

Row: TypeAlias = list[Any]
"""A row of cell values, possibly shorter than its header."""


def is_error(value: Any) -> bool:
    return isinstance(value, CellError)


def get_cell(row: Sequence[Any], j: int | None) -> Any:
    """Return ``row[j]`` or :data:`UNSET` when ``j`` is missing/out of range."""

    if j is None or j >= len(row):
        return UNSET
    return row[j]


def set_cell(row: Row, j: int, value: Any) -> None:
    """Assign ``row[j]``, padding any gap with :data:`UNSET`."""

    if j >= len(row):
        row.extend([UNSET] * (j + 1 - len(row)))
    row[j] = value


def to_json_instant(value: datetime) -> str:
    """Format ``value`` as UTC ISO-8601 with milliseconds and a ``Z`` suffix."""

    utc = value.astimezone(UTC)
    return utc.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc.microsecond // 1000:03d}Z"


def to_text(value: Any) -> str:
    """Render a cell the way a spreadsheet shows it as plain text.

    Integral floats drop their fraction (``5.0 -> "5"``) and booleans use the
    upper-case spreadsheet spelling.
    """

    if value is None or value is UNSET:
        return ""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, float):
        if value.is_integer():
            return str(int(value))
        return repr(value)
    if isinstance(value, datetime):
        return to_json_instant(value)
    return str(value)


# ---------------------------------------------------------------------------
# Header map
# ---------------------------------------------------------------------------


class HeaderMap:
    """Ordered mapping from column name to zero-based column index.

    The incoming instance only grows through :meth:`derive`. Ledger instances
    are built with :meth:`from_ledger_row` and are read-only.
    """

    __slots__ = ("_index", "_frozen")

    def __init__(self, names: Iterable[str] = (), *, frozen: bool = False) -> None:
        self._index: dict[str, int] = {}
        for name in names:
            self._index.setdefault(name, len(self._index))
        self._frozen = frozen

    @classmethod
    def from_ledger_row(cls, row: Sequence[Any]) -> HeaderMap:
        """Snapshot a ledger header row.

        Non-string or blank cells (the first cell is usually decorative) are
        ignored and the last occurrence of a repeated name wins.
        """

        hm = cls(frozen=True)
        for j, name in enumerate(row):
            if isinstance(name, str) and name != "":
                hm._index[name] = j
        return hm

    def get(self, name: str) -> int | None:
        return self._index.get(name)

    def derive(self, name: str) -> int:
        """Return the index of ``name``, appending a new column when absent."""

        j = self._index.get(name)
        if j is not None:
            return j
        if self._frozen:
            raise TypeError("ledger header map is read-only")
        j = len(self._index)
        self._index[name] = j
        return j

    def names(self) -> list[str]:
        return list(self._index)

    def __contains__(self, name: object) -> bool:
        return name in self._index

    def __iter__(self) -> Iterator[str]:
        return iter(self._index)

    def __len__(self) -> int:
        return len(self._index)

    def __repr__(self) -> str:
        return f"HeaderMap({self._index!r})"


# ---------------------------------------------------------------------------
# Bounding rectangle
# ---------------------------------------------------------------------------


class Rect(NamedTuple):
    """Inclusive, zero-based rectangle over the ledger data area."""

    row_min: int
    row_max: int
    col_min: int
    col_max: int

    @property
    def n_rows(self) -> int:
        return self.row_max - self.row_min + 1

    @property
    def n_cols(self) -> int:
        return self.col_max - self.col_min + 1


# ---------------------------------------------------------------------------
# Preview response
# ---------------------------------------------------------------------------


class CellErrorInfo(BaseModel):
    model_config = ConfigDict(strict=True, extra="forbid")

    type: str
    message: str
    link: str | None = None

    @classmethod
    def from_error(cls, error: CellError) -> CellErrorInfo:
        return cls(type=error.type, message=error.message, link=error.link)


class ColumnSummary(BaseModel):
    """Per incoming column metadata shown before committing an import.

    ``found`` tells whether the ledger has a column of the same name. Either
    ``error`` (the first row's evaluation error) or ``summary`` (a constant
    value, date range or numeric sum over the rows to add) is populated.
    """

    model_config = ConfigDict(strict=True, extra="forbid")

    name: str
    found: bool
    summary: str | None = None
    error: CellErrorInfo | None = None


class ImportPreview(BaseModel):
    """Top-level preview response returned by ``import_csv(..., preview=True)``."""

    model_config = ConfigDict(strict=True, extra="forbid")

    crosswalk: str
    crosswalks: list[str]
    n_add: int
    n_modify: int
    n_total: int
    header: list[ColumnSummary]


__all__ = [
    "CellError",
    "CellErrorInfo",
    "CellValue",
    "ColumnSummary",
    "HeaderMap",
    "INVALID_DATE",
    "ImportPreview",
    "InvalidDate",
    "Rect",
    "Row",
    "UNSET",
    "get_cell",
    "is_error",
    "set_cell",
    "to_json_instant",
    "to_text",
]

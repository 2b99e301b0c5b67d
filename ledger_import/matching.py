"""Match incoming rows to ledger rows and compute minimal write regions.

Incoming rows are matched to ledger rows by ``Transaction ID``. A ledger may
legitimately contain the same ID more than once; the n-th incoming row with
an ID is paired with the n-th ledger row carrying it. Rows left unpaired are
additions.

Comparisons use :func:`loose_equals`, which mirrors how a spreadsheet shows
values rather than how Python types them: ``"5" == 5``, a date equals any
instant on the same ledger calendar day, and an empty cell equals ``""``.
"""

from __future__ import annotations

import math
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, tzinfo
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from .identity import ID_COLUMN
from .models import UNSET, CellError, HeaderMap, InvalidDate, Rect, Row, get_cell, to_text

DATE_ADDED = "Date Added"

_EPOCH = datetime(1899, 12, 30)
_NUMERIC_RE = re.compile(r"^[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?$")


# ---------------------------------------------------------------------------
# Loose equality
# ---------------------------------------------------------------------------


def to_serial_number(value: datetime, tz: tzinfo) -> float:
    """Days since 1899-12-30 on the ledger's wall clock.

    Naive datetimes are already ledger wall-clock readings.
    """

    wall = value if value.tzinfo is None else value.astimezone(tz).replace(tzinfo=None)
    return (wall - _EPOCH).total_seconds() / 86400


def to_number(value: Any, tz: tzinfo) -> float:
    """Numeric reading of a cell; ``NaN`` when it has none."""

    if value is None or value is UNSET:
        return 0.0
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, int | float):
        return float(value)
    if isinstance(value, datetime):
        return to_serial_number(value, tz)
    if isinstance(value, str):
        s = value.strip()
        if not s:
            return 0.0
        if _NUMERIC_RE.match(s):
            return float(s)
        if s in ("Infinity", "+Infinity", "-Infinity"):
            return float(s.replace("Infinity", "inf"))
    return math.nan


def _comparable(value: Any, tz: tzinfo) -> Any:
    if value is None or value is UNSET:
        return ""
    if isinstance(value, datetime):
        return float(math.floor(to_serial_number(value, tz)))
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, int):
        return float(value)
    return value


def loose_equals(a: Any, b: Any, tz: tzinfo) -> bool:
    """Spreadsheet-style equality used for diffing and ``EQUALS`` rules.

    Errors, invalid dates and ``NaN`` never compare equal.
    """

    x, y = _comparable(a, tz), _comparable(b, tz)
    for v in (x, y):
        if isinstance(v, CellError | InvalidDate):
            return False
    if isinstance(x, str) and isinstance(y, str):
        return x == y
    if isinstance(x, float) and isinstance(y, float):
        return x == y
    if isinstance(x, float) and isinstance(y, str):
        return x == to_number(y, tz)
    if isinstance(x, str) and isinstance(y, float):
        return to_number(x, tz) == y
    return False


# ---------------------------------------------------------------------------
# Import plan
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class ImportPlan:
    """Where every incoming row and column lands in the ledger.

    ``rect`` spans the ledger rows targeted by modifications (``None`` when
    there are none) and every mapped column. ``additions`` are laid out from
    ``add_col_min``; ``modifications`` are keyed by row offset from
    ``rect.row_min`` and laid out from ``rect.col_min``.
    """

    column_map: list[int | None]
    row_map: list[int | None]
    col_min: int | None
    col_max: int | None
    add_col_min: int | None
    rect: Rect | None
    additions: list[Row] = field(default_factory=list)
    modifications: dict[int, Row] = field(default_factory=dict)

    @property
    def n_total(self) -> int:
        return len(self.row_map)


def index_ids(column: Sequence[Any]) -> dict[Any, list[int]]:
    """Transaction ID -> zero-based data rows holding it, in ledger order."""

    by_id: dict[Any, list[int]] = {}
    for i, value in enumerate(column):
        by_id.setdefault(value, []).append(i)
    return by_id


def _overlay(row: Row, column_map: Sequence[int | None]) -> dict[int, Any]:
    out: dict[int, Any] = {}
    for j, value in enumerate(row):
        target = column_map[j] if j < len(column_map) else None
        # Rows made sparse by derived columns contribute nothing there.
        if target is not None and value is not UNSET:
            out[target] = value
    return out


def _layout(overlay: Mapping[int, Any], start: int) -> Row:
    if not overlay:
        return []
    return [overlay.get(c, UNSET) for c in range(start, max(overlay) + 1)]


def plan_import(
    header: HeaderMap,
    data: Sequence[Row],
    ledger_header: HeaderMap,
    ids: Mapping[Any, Sequence[int]],
    now: datetime,
) -> ImportPlan:
    j_id = header.get(ID_COLUMN)
    seen: dict[Any, int] = {}
    row_map: list[int | None] = []
    for row in data:
        key = get_cell(row, j_id)
        n = seen.get(key, 0)
        seen[key] = n + 1
        rows = ids.get(key, ())
        row_map.append(rows[n] if n < len(rows) else None)

    column_map = [ledger_header.get(name) for name in header]
    mapped_rows = [i for i in row_map if i is not None]
    mapped_cols = [j for j in column_map if j is not None]
    col_min = min(mapped_cols, default=None)
    col_max = max(mapped_cols, default=None)
    j_added = ledger_header.get(DATE_ADDED)
    candidates = [j for j in (col_min, j_added) if j is not None]
    add_col_min = min(candidates, default=None)
    rect = None
    if mapped_rows and col_min is not None and col_max is not None:
        rect = Rect(min(mapped_rows), max(mapped_rows), col_min, col_max)

    plan = ImportPlan(column_map, row_map, col_min, col_max, add_col_min, rect)
    for row, target in zip(data, row_map, strict=True):
        overlay = _overlay(row, column_map)
        if target is None:
            if j_added is not None:
                overlay[j_added] = now
            plan.additions.append(_layout(overlay, add_col_min) if add_col_min is not None else [])
        elif rect is not None:
            plan.modifications[target - rect.row_min] = _layout(overlay, rect.col_min)
    return plan


# ---------------------------------------------------------------------------
# Shrinking modifications
# ---------------------------------------------------------------------------


def _diff_columns(row: Row, existing: Sequence[Any], tz: tzinfo) -> list[int]:
    return [
        j
        for j, value in enumerate(row)
        if value is not UNSET and not loose_equals(value, get_cell(existing, j), tz)
    ]


def count_modified(
    modifications: Mapping[int, Row], existing: Sequence[Sequence[Any]], tz: tzinfo
) -> int:
    """Number of modification rows with at least one differing cell."""

    return sum(1 for i, row in modifications.items() if _diff_columns(row, existing[i], tz))


def shrink(
    modifications: Mapping[int, Row],
    existing: Sequence[Sequence[Any]],
    origin: Rect,
    tz: tzinfo,
) -> tuple[Rect, list[Row]] | None:
    """Shrink ``origin`` to the rows, then columns, that actually differ.

    ``existing`` is the ledger content of ``origin``. Returns the absolute
    rectangle to write and its merged values, or ``None`` when every
    modification already matches the ledger.
    """

    diffs = {i: cols for i in sorted(modifications) if (cols := _diff_columns(modifications[i], existing[i], tz))}
    if not diffs:
        return None
    r_lo, r_hi = min(diffs), max(diffs)
    c_lo = min(cols[0] for cols in diffs.values())
    c_hi = max(cols[-1] for cols in diffs.values())

    values: list[Row] = []
    for i in range(r_lo, r_hi + 1):
        merged = [get_cell(existing[i], j) for j in range(c_lo, c_hi + 1)]
        for j, value in enumerate(modifications.get(i, ())):
            if c_lo <= j <= c_hi and value is not UNSET:
                merged[j - c_lo] = value
        values.append(merged)
    rect = Rect(
        origin.row_min + r_lo,
        origin.row_min + r_hi,
        origin.col_min + c_lo,
        origin.col_min + c_hi,
    )
    return rect, values


# ---------------------------------------------------------------------------
# Preview summaries
# ---------------------------------------------------------------------------


def _format_day(value: datetime, tz: tzinfo) -> str:
    local = value.astimezone(tz) if value.tzinfo is not None else value
    return f"{local:%b} {local.day}, {local.year}"


def _format_number(value: float) -> str:
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "-∞" if value < 0 else "∞"
    d = Decimal(repr(value)).quantize(Decimal("0.001"), rounding=ROUND_HALF_UP).normalize()
    return format(d, ",f")


def summarize(additions: Sequence[Row], j: int | None, tz: tzinfo) -> str | None:
    """Summarize one column of the rows to add.

    A column of dates yields its range, a constant column its value and a
    numeric column its sum. Anything else has no summary.
    """

    if not additions or j is None or j < 0:
        return None
    column = [get_cell(row, j) for row in additions]
    first = column[0]
    if isinstance(first, datetime) and all(isinstance(v, datetime) for v in column):
        lo = _format_day(min(column, key=lambda v: to_serial_number(v, tz)), tz)
        hi = _format_day(max(column, key=lambda v: to_serial_number(v, tz)), tz)
        return lo if lo == hi else f"{lo} – {hi}"
    constant = to_text(first)
    if all(to_text(v) == constant for v in column[1:]):
        return constant
    if isinstance(first, int | float) and not isinstance(first, bool):
        total = sum(to_number(v, tz) for v in column)
        return f"Sum: {_format_number(total)}"
    return None


__all__ = [
    "DATE_ADDED",
    "ImportPlan",
    "count_modified",
    "index_ids",
    "loose_equals",
    "plan_import",
    "shrink",
    "summarize",
    "to_number",
    "to_serial_number",
]

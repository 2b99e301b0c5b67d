"""Formula Evaluation Engine.

The crosswalk layer only depends on the :class:`FormulaEngine` protocol: given
the incoming grid once, evaluate a list of formulas for the first ``n_rows``
rows and return one value (or :class:`~ledger_import.models.CellError`) per
formula per row. Errors never raise out of :meth:`FormulaEngine.evaluate`.

:class:`GridFormulaEngine` compiles each bound formula with the ``formulas``
library and runs it once per incoming row, like an array formula placed next
to the data: a whole-column reference (``B:B``) reads that row's cell and a
cell reference (``B1``) reads the grid directly. Blank CSV cells are empty
strings. Spreadsheet error values come back as :class:`CellError`.

``PARSEDATE(date, [time_zone,] format)`` is added to the library's function
table. It parses ``date`` with a Java ``SimpleDateFormat`` pattern, in the
engine's time zone unless one is given, and returns an ISO instant string.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Sequence
from contextvars import ContextVar
from datetime import datetime
from typing import Any, Protocol, TypeAlias
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import formulas
import numpy as np
from formulas.tokens.operand import XlError

from .formula import FormulaSyntaxError, column_index, referenced_names
from .logging_setup import get_logger
from .models import CellError, to_json_instant

_logger = get_logger("ledger_import.engine")


class FormulaEngine(Protocol):
    def evaluate(self, formulas: Sequence[str], n_rows: int) -> list[list[Any]]: ...


_MESSAGES = {
    "#DIV/0!": "Division by zero.",
    "#N/A": "Value not available.",
    "#NAME?": "Name not recognized.",
    "#NULL!": "Ranges do not intersect.",
    "#NUM!": "Invalid numeric value.",
    "#REF!": "Invalid reference.",
    "#VALUE!": "Value has the wrong type.",
}


def _scalar(value: Any) -> Any:
    if isinstance(value, np.ndarray):
        value = value.ravel()[0] if value.size else ""
    if isinstance(value, np.generic):
        value = value.item()
    return value


def to_cell(value: Any) -> Any:
    """Convert a library result into a plain cell value."""

    value = _scalar(value)
    if isinstance(value, XlError):
        code = str(value)
        return CellError(code, _MESSAGES.get(code, "Formula error."))
    if value is None:
        return ""
    if isinstance(value, int) and not isinstance(value, bool):
        return float(value)
    return value


# ---------------------------------------------------------------------------
# PARSEDATE
# ---------------------------------------------------------------------------

_JAVA_TOKEN_RE = re.compile(r"'[^']*'|y+|M+|d+|H+|h+|m+|s+|S+|a+|E+|Z+|X+|[^'yMdHhmsSaEZX]+")


def java_to_strptime(pattern: str) -> str:
    """Translate a Java ``SimpleDateFormat`` pattern to a ``strptime`` format."""

    out: list[str] = []
    for tok in _JAVA_TOKEN_RE.findall(pattern):
        ch, n = tok[0], len(tok)
        if ch == "'":
            out.append("'" if tok == "''" else tok[1:-1].replace("%", "%%"))
        elif ch == "y":
            out.append("%y" if n == 2 else "%Y")
        elif ch == "M":
            out.append("%m" if n <= 2 else "%b" if n == 3 else "%B")
        elif ch == "d":
            out.append("%d")
        elif ch == "H":
            out.append("%H")
        elif ch == "h":
            out.append("%I")
        elif ch == "m":
            out.append("%M")
        elif ch == "s":
            out.append("%S")
        elif ch == "S":
            out.append("%f")
        elif ch == "a":
            out.append("%p")
        elif ch == "E":
            out.append("%a" if n <= 3 else "%A")
        elif ch in ("Z", "X"):
            out.append("%z")
        else:
            out.append(tok.replace("%", "%%"))
    return "".join(out)


# Time zone for two-argument PARSEDATE calls, set by the evaluating engine.
_parse_date_zone: ContextVar[str] = ContextVar("parse_date_zone", default="UTC")


def parse_date(*args: Any) -> Any:
    values = [_scalar(a) for a in args]
    for value in values:
        if isinstance(value, XlError):
            return value
    if len(values) == 2:
        text, pattern = values
        zone = _parse_date_zone.get()
    elif len(values) == 3:
        text, zone, pattern = values
    else:
        return XlError("#N/A")
    try:
        tz = ZoneInfo(str(zone))
        parsed = datetime.strptime(str(text).strip(), java_to_strptime(str(pattern)))
    except (ZoneInfoNotFoundError, ValueError) as exc:
        _logger.debug("PARSEDATE(%r, %r, %r) failed: %s", text, zone, pattern, exc)
        return XlError("#VALUE!")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=tz)
    return to_json_instant(parsed)


FUNCTIONS = formulas.get_functions()
FUNCTIONS["PARSEDATE"] = parse_date


def _known_function(name: str) -> bool:
    return name in FUNCTIONS or f"_XLFN.{name}" in FUNCTIONS


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

_REF_RE = re.compile(
    r"^(?:.*!)?\$?(?P<c1>[A-Z]{1,3})\$?(?P<r1>[0-9]*)(?::\$?(?P<c2>[A-Z]{1,3})\$?(?P<r2>[0-9]*))?$"
)
_LAST_ROW = "1048576"

# Reads one input for row ``i``.
_Feed: TypeAlias = Callable[[int], Any]


class GridFormulaEngine:
    """Row-wise evaluator over an in-memory grid of incoming cells."""

    def __init__(self, data: Sequence[Sequence[Any]], *, time_zone: str = "UTC") -> None:
        self._data = [list(row) for row in data]
        self._time_zone = time_zone

    def evaluate(self, formulas: Sequence[str], n_rows: int) -> list[list[Any]]:
        compiled = [self._compile(f) for f in formulas]
        out: list[list[Any]] = []
        token = _parse_date_zone.set(self._time_zone)
        try:
            for i in range(n_rows):
                out.append([self._run(c, i) for c in compiled])
        finally:
            _parse_date_zone.reset(token)
        return out

    def _run(self, compiled: tuple[Any, list[_Feed]] | CellError, i: int) -> Any:
        if isinstance(compiled, CellError):
            return compiled
        func, feeds = compiled
        try:
            return to_cell(func(*[feed(i) for feed in feeds]))
        except Exception as exc:  # the library raises assorted types
            _logger.debug("Formula evaluation failed on row %d: %s", i, exc)
            return CellError("#ERROR!", f"Evaluation error. {exc}")

    def _compile(self, formula: str) -> tuple[Any, list[_Feed]] | CellError:
        try:
            functions, names = referenced_names(formula)
        except FormulaSyntaxError:
            functions, names = [], []
        for name in functions:
            if not _known_function(name):
                return CellError("#NAME?", f"Function name {name} not recognized.")
        if names:
            return CellError("#NAME?", f"Named expression {names[0]} not recognized.")
        try:
            func = formulas.Parser().ast(formula)[1].compile()
        except Exception as exc:  # the library raises assorted types
            _logger.debug("Formula %r failed to parse: %s", formula, exc)
            return CellError("#ERROR!", f"Parsing error. {exc}")
        feeds: list[_Feed] = []
        for ref in func.inputs:
            feed = self._feed(str(ref))
            if feed is None:
                return CellError("#VALUE!", f"Unsupported reference {ref}.")
            feeds.append(feed)
        return func, feeds

    def _feed(self, ref: str) -> _Feed | None:
        m = _REF_RE.match(ref.upper())
        if m is None:
            return None
        c1, r1, c2, r2 = m.group("c1", "r1", "c2", "r2")
        col = column_index(c1)
        if c2 is None and r1:
            row = int(r1) - 1
            return lambda i: self._cell(row, col)
        whole_column = not r1 or (r1 == "1" and r2 == _LAST_ROW)
        if c2 == c1 and whole_column:
            return lambda i: self._cell(i, col)
        return None

    def _cell(self, i: int, j: int) -> Any:
        if i < 0 or i >= len(self._data):
            return ""
        row = self._data[i]
        value = row[j] if j < len(row) else None
        return "" if value is None else value


__all__ = [
    "FUNCTIONS",
    "FormulaEngine",
    "GridFormulaEngine",
    "java_to_strptime",
    "parse_date",
    "to_cell",
]

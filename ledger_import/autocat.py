"""AutoCat: ordered, first-match-wins categorization rules.

The rules grid's header row names two kinds of columns:

- comparator columns, whose name ends in a predicate suffix such as
  ``"Description CONTAINS"`` or ``"Amount MIN"``; the cell value is compared
  against the row's base column (``Description``, ``Amount``);
- assignment columns, named after the output column they set (``Category``).

For each incoming row the rules are scanned top to bottom. A rule matches
when every non-blank comparator cell holds; the first match copies its
non-blank assignment cells into the row.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import tzinfo
from typing import Any, TypeAlias

from .errors import ConfigurationError
from .logging_setup import get_logger
from .matching import loose_equals, to_number
from .models import HeaderMap, Row, get_cell, set_cell, to_text

_logger = get_logger("ledger_import.autocat")

Predicate: TypeAlias = Callable[[Any, Any], bool]


def _upper(value: Any) -> str:
    return to_text(value).upper()


def _ordered(a: Any, b: Any, tz: tzinfo) -> tuple[Any, Any]:
    if isinstance(a, str) and isinstance(b, str):
        return a, b
    return to_number(a, tz), to_number(b, tz)


def _predicates(tz: tzinfo) -> list[tuple[str, Predicate]]:
    def at_least(a: Any, b: Any) -> bool:
        x, y = _ordered(a, b, tz)
        return x >= y

    def at_most(a: Any, b: Any) -> bool:
        x, y = _ordered(a, b, tz)
        return x <= y

    return [
        (" CONTAINS", lambda a, b: _upper(b) in _upper(a)),
        (
            " EQUALS",
            lambda a, b: loose_equals(a.upper() if isinstance(a, str) else a, _upper(b), tz),
        ),
        (" STARTS WITH", lambda a, b: _upper(a).startswith(_upper(b))),
        (" ENDS WITH", lambda a, b: _upper(a).endswith(_upper(b))),
        (" REGEX", lambda a, b: b.search(to_text(a)) is not None),
        (" MIN", at_least),
        (" MAX", at_most),
    ]


def _blank(value: Any) -> bool:
    return value is None or value == ""


@dataclass(frozen=True, slots=True)
class _Comparator:
    column: int
    target: int | None
    predicate: Predicate
    regex: bool


def auto_cat(
    header: HeaderMap,
    data: Sequence[Row],
    rules_grid: Sequence[Sequence[Any]] | None,
    *,
    ledger_tz: tzinfo,
) -> list[str]:
    """Apply AutoCat rules in place and return the output columns it created."""

    if rules_grid is None:
        _logger.info("AutoCat sheet not found")
        return []
    if not rules_grid:
        raise ConfigurationError("Empty AutoCat sheet")
    rules_header, *rules = rules_grid
    predicates = _predicates(ledger_tz)

    comparators: list[_Comparator] = []
    assignments: list[tuple[int, int]] = []
    created: list[str] = []
    for j, raw in enumerate(rules_header):
        if _blank(raw):
            continue
        name = str(raw)
        for suffix, predicate in predicates:
            if name.upper().endswith(suffix):
                base = name[: -len(suffix)]
                comparators.append(_Comparator(j, header.get(base), predicate, suffix == " REGEX"))
                break
        else:
            if name not in header:
                created.append(name)
            assignments.append((j, header.derive(name)))

    # Compile regex cells once so a bad pattern fails before anything is written.
    compiled: list[list[Any]] = []
    for rule in rules:
        cells = list(rule)
        for c in comparators:
            if c.regex and c.column < len(cells) and not _blank(cells[c.column]):
                try:
                    cells[c.column] = re.compile(to_text(cells[c.column]), re.IGNORECASE)
                except re.error as exc:
                    raise ConfigurationError(
                        f"Invalid AutoCat regex {cells[c.column]!r}: {exc}"
                    ) from exc
        compiled.append(cells)

    _logger.info("Run AutoCat on import")
    n_matched = 0
    for row in data:
        for cells in compiled:
            if _matches(row, cells, comparators):
                for j, target in assignments:
                    value = cells[j] if j < len(cells) else None
                    if not _blank(value):
                        set_cell(row, target, value)
                n_matched += 1
                break
    _logger.debug("AutoCat matched %d of %d rows", n_matched, len(data))
    return created


def _matches(row: Row, cells: Sequence[Any], comparators: Sequence[_Comparator]) -> bool:
    for c in comparators:
        expected = cells[c.column] if c.column < len(cells) else None
        if _blank(expected):
            continue
        if not c.predicate(get_cell(row, c.target), expected):
            return False
    return True


__all__ = ["auto_cat"]

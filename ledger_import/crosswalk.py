"""Crosswalks: remap a foreign CSV schema into the ledger's schema.

A crosswalk catalog is a grid. Its first row holds output column names; every
following row is one crosswalk whose first cell is the display name and whose
other cells are either literals or formulas (``=...``) referencing incoming
CSV columns by name.

``remap`` supports three selector modes:

- :data:`BYPASS` returns the input unchanged.
- A crosswalk name evaluates that crosswalk over the whole batch.
- ``""`` auto-detects: candidates are tried in catalog order against the
  first data row only, and the first one that evaluates without errors is
  applied to the whole batch. When none qualifies the input is bypassed.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any, TypeAlias

from .engine import FormulaEngine
from .errors import ConfigurationError
from .formula import bind
from .logging_setup import get_logger
from .models import CellError, Row

_logger = get_logger("ledger_import.crosswalk")

BYPASS = "Tiller (bypass remap)"

CellLink: TypeAlias = Callable[[int, int], str]
"""``(data_row, column)`` in the catalog grid (zero-based) -> link text."""


def _blank(value: Any) -> bool:
    return value is None or value == ""


def _is_formula(value: Any) -> bool:
    return isinstance(value, str) and value.startswith("=")


@dataclass(frozen=True, slots=True)
class Crosswalk:
    """One catalog row with blank names/values filtered out.

    ``sources[k]`` is the catalog column the ``k``-th output came from;
    ``formulas`` and ``literals`` map output positions to their rule.
    """

    name: str
    row: int
    names: tuple[str, ...]
    sources: tuple[int, ...]
    formulas: dict[int, str]
    literals: dict[int, Any]

    @classmethod
    def from_row(cls, header_row: Sequence[Any], row: Sequence[Any], index: int) -> Crosswalk:
        names: list[str] = []
        sources: list[int] = []
        formulas: dict[int, str] = {}
        literals: dict[int, Any] = {}
        for j, name in enumerate(header_row):
            value = row[j] if j < len(row) else None
            if _blank(name) or _blank(value):
                continue
            k = len(names)
            names.append(str(name))
            sources.append(j)
            if _is_formula(value):
                formulas[k] = value
            else:
                literals[k] = value
        display = row[0] if row else ""
        return cls(
            name="" if display is None else str(display),
            row=index,
            names=tuple(names),
            sources=tuple(sources),
            formulas=formulas,
            literals=literals,
        )

    @property
    def empty(self) -> bool:
        return not self.names

    def evaluate(self, engine: FormulaEngine, header_row: Sequence[str], n_rows: int) -> list[Row]:
        """Evaluate the formulas for ``n_rows`` rows and overlay the literals."""

        positions = list(self.formulas)
        bound = [bind(self.formulas[k], header_row) for k in positions]
        results = engine.evaluate(bound, n_rows) if bound else [[] for _ in range(n_rows)]
        out: list[Row] = []
        for values in results:
            row: Row = [""] * len(self.names)
            for k, value in zip(positions, values, strict=True):
                row[k] = value
            for k, value in self.literals.items():
                row[k] = value
            out.append(row)
        return out


@dataclass(frozen=True, slots=True)
class CrosswalkCatalog:
    header_row: tuple[Any, ...]
    crosswalks: tuple[Crosswalk, ...]
    link: CellLink | None = None

    @classmethod
    def from_grid(cls, grid: Sequence[Sequence[Any]], link: CellLink | None = None) -> CrosswalkCatalog:
        if not grid:
            raise ConfigurationError("Empty crosswalks sheet")
        header_row, *rows = grid
        return cls(
            header_row=tuple(header_row),
            crosswalks=tuple(Crosswalk.from_row(header_row, row, i) for i, row in enumerate(rows)),
            link=link,
        )

    def names(self) -> list[str]:
        return [c.name for c in self.crosswalks]

    def find(self, name: str) -> Crosswalk | None:
        for c in self.crosswalks:
            if c.name == name:
                return c
        return None

    def decorate(self, crosswalk: Crosswalk, data: Sequence[Row]) -> None:
        """Point every error cell back to the rule cell that produced it."""

        if self.link is None:
            return
        for row in data:
            for k, value in enumerate(row):
                if isinstance(value, CellError) and value.link is None:
                    row[k] = dataclasses.replace(
                        value, link=self.link(crosswalk.row, crosswalk.sources[k])
                    )


@dataclass(slots=True)
class RemapResult:
    header_row: list[str]
    data: list[Row]
    crosswalk: str
    crosswalks: list[str]


def remap(
    header_row: Sequence[str],
    data: Sequence[Row],
    selector: str,
    catalog: CrosswalkCatalog | None,
    *,
    engine_factory: Callable[[Sequence[Sequence[Any]]], FormulaEngine],
) -> RemapResult:
    if catalog is None:
        _logger.info("Crosswalks sheet not found")
        return RemapResult(list(header_row), list(data), BYPASS, [])
    names = catalog.names()
    if selector == BYPASS:
        _logger.info("Bypass remap")
        return RemapResult(list(header_row), list(data), BYPASS, names)

    engine = engine_factory(data)
    if selector:
        _logger.info("Remap via %s crosswalk", selector)
        crosswalk = catalog.find(selector)
        if crosswalk is None:
            raise ConfigurationError(f"Crosswalk not found: {selector}")
        if crosswalk.empty:
            raise ConfigurationError("Empty crosswalk row/headers")
        result = crosswalk.evaluate(engine, header_row, len(data))
        catalog.decorate(crosswalk, result)
        return RemapResult(list(crosswalk.names), result, selector, names)

    for crosswalk in catalog.crosswalks:
        if crosswalk.empty:
            continue
        first = crosswalk.evaluate(engine, header_row, 1)
        if any(isinstance(v, CellError) for row in first for v in row):
            _logger.debug("Crosswalk %s rejected on the first row", crosswalk.name)
            continue
        _logger.info("Detected %s crosswalk", crosswalk.name)
        result = crosswalk.evaluate(engine, header_row, len(data))
        catalog.decorate(crosswalk, result)
        return RemapResult(list(crosswalk.names), result, crosswalk.name, names)
    _logger.info("No compatible crosswalk detected")
    return RemapResult(list(header_row), list(data), BYPASS, names)


__all__ = ["BYPASS", "Crosswalk", "CrosswalkCatalog", "RemapResult", "remap"]

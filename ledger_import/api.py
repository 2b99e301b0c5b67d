"""Public API and orchestration for the ``ledger_import`` package.

:func:`import_csv` is the single entry point. One call runs the whole
pipeline against the book held by its :class:`~ledger_import.config.ImportContext`:

CSV text -> crosswalk remap -> normalize -> content IDs -> AutoCat -> plan ->
(preview | add rows, modify rows, sort by date).

Configuration problems raise :class:`~ledger_import.errors.ConfigurationError`
before anything is written. The add and modify phases are two independent
writes; a failure in the second leaves the first in place.
"""

from __future__ import annotations

import csv
from collections.abc import Sequence
from datetime import tzinfo
from io import StringIO
from typing import Any

from .autocat import auto_cat
from .config import ImportContext
from .crosswalk import BYPASS, CrosswalkCatalog, RemapResult, remap
from .errors import ConfigurationError
from .identity import ID_COLUMN, prep_id
from .ledger import LedgerSheet, SheetRange, read_column, read_grid, read_header, write_values
from .logging_setup import get_logger
from .matching import ImportPlan, count_modified, index_ids, plan_import, shrink, summarize
from .models import (
    UNSET,
    CellError,
    CellErrorInfo,
    ColumnSummary,
    HeaderMap,
    ImportPreview,
    Row,
    get_cell,
)
from .normalizers import prep_amount, prep_date, prep_description

_logger = get_logger("ledger_import.api")


def parse_csv(csv_text: str) -> tuple[list[str], list[Row]]:
    """Split CSV text into its header row and data rows.

    The first row is the header and must have at least one non-blank cell;
    otherwise the document is a configuration error. Blank data lines are
    skipped.
    """

    with StringIO(csv_text) as f:
        rows = list(csv.reader(f))
    if not rows or all(cell.strip() == "" for cell in rows[0]):
        raise ConfigurationError("Empty CSV/headers")
    header_row, *data = rows
    return header_row, [list(row) for row in data if any(cell != "" for cell in row)]


def load_catalog(ctx: ImportContext) -> CrosswalkCatalog | None:
    """Read the crosswalk catalog, or ``None`` when the book has no such sheet."""

    sheet = ctx.book.sheet(ctx.settings.crosswalks_sheet)
    if sheet is None:
        return None
    # Catalog rows start below the header row; columns are 1-based.
    return CrosswalkCatalog.from_grid(
        read_grid(sheet, formulas=True), link=lambda i, j: sheet.cell_link(i + 2, j + 1)
    )


def _ledger_sheet(ctx: ImportContext) -> tuple[LedgerSheet, HeaderMap]:
    sheet = ctx.book.sheet(ctx.settings.transactions_sheet)
    if sheet is None:
        raise ConfigurationError(f"{ctx.settings.transactions_sheet} sheet not found")
    ledger_header = HeaderMap.from_ledger_row(read_header(sheet))
    for required in (ID_COLUMN, "Date"):
        if required not in ledger_header:
            raise ConfigurationError(f"Ledger has no {required!r} column")
    return sheet, ledger_header


def import_csv(
    csv_text: str,
    crosswalk: str = "",
    preview: bool = False,
    *,
    ctx: ImportContext,
) -> ImportPreview | None:
    """Import ``csv_text`` into the ledger, or preview what would change.

    Parameters
    ----------
    crosswalk:
        Crosswalk display name, ``""`` to auto-detect, or
        :data:`~ledger_import.crosswalk.BYPASS` to skip remapping.
    preview:
        When true nothing is written and an :class:`ImportPreview` is
        returned.
    """

    sheet, ledger_header = _ledger_sheet(ctx)
    j_id = ledger_header.get(ID_COLUMN)
    assert j_id is not None
    ids = index_ids(read_column(sheet, j_id + 1))

    csv_header, csv_data = parse_csv(csv_text)
    result = remap(csv_header, csv_data, crosswalk, load_catalog(ctx), engine_factory=ctx.make_engine)
    header = HeaderMap(result.header_row)
    if len(header) != len(result.header_row):
        raise ConfigurationError(
            "Duplicate CSV headers" if result.crosswalk == BYPASS else "Duplicate crosswalk headers"
        )
    data = result.data

    prep_date(header, data, ctx)
    prep_amount(header, data)
    prep_description(header, data)
    prep_id(header, data, ledger_header)
    autocat_sheet = ctx.book.sheet(ctx.settings.autocat_sheet)
    auto_cat(
        header,
        data,
        read_grid(autocat_sheet) if autocat_sheet is not None else None,
        ledger_tz=ctx.ledger_tz,
    )

    plan = plan_import(header, data, ledger_header, ids, ctx.now)
    existing: list[list[Any]] = []
    if plan.modifications and plan.rect is not None:
        rng = _data_range(plan.rect.row_min, plan.rect.col_min, plan.rect.n_rows, plan.rect.n_cols)
        _logger.info("Get range %s for comparison", rng.a1)
        existing = sheet.get_values(rng)

    if preview:
        return _preview(result.header_row, data, ledger_header, plan, existing, result, ctx.ledger_tz)

    _add(sheet, plan)
    _modify(sheet, plan, existing, ctx.ledger_tz)
    j_date = ledger_header.get("Date")
    assert j_date is not None
    sheet.sort(j_date + 1, ascending=False)
    _logger.info(
        "Imported %d rows via %s (%d added)", plan.n_total, result.crosswalk, len(plan.additions)
    )
    return None


def _data_range(row: int, col: int, n_rows: int, n_cols: int) -> SheetRange:
    # Zero-based data coordinates -> 1-based sheet range below the header.
    return SheetRange(row + 2, col + 1, n_rows, n_cols)


def _preview(
    header_row: Sequence[str],
    data: Sequence[Row],
    ledger_header: HeaderMap,
    plan: ImportPlan,
    existing: Sequence[Sequence[Any]],
    result: RemapResult,
    tz: tzinfo,
) -> ImportPreview:
    columns: list[ColumnSummary] = []
    for j, name in enumerate(header_row):
        # Formula errors surface in the first row.
        first = get_cell(data[0], j) if data else UNSET
        if isinstance(first, CellError):
            columns.append(
                ColumnSummary(
                    name=name,
                    found=name in ledger_header,
                    error=CellErrorInfo.from_error(first),
                )
            )
            continue
        target = plan.column_map[j]
        offset = None if target is None or plan.add_col_min is None else target - plan.add_col_min
        columns.append(
            ColumnSummary(
                name=name,
                found=name in ledger_header,
                summary=summarize(plan.additions, offset, tz),
            )
        )
    return ImportPreview(
        crosswalk=result.crosswalk,
        crosswalks=list(result.crosswalks),
        n_add=len(plan.additions),
        n_modify=count_modified(plan.modifications, existing, tz) if existing else 0,
        n_total=plan.n_total,
        header=columns,
    )


def _add(sheet: LedgerSheet, plan: ImportPlan) -> None:
    # Nothing to add, or no column in common with the ledger.
    if not plan.additions or plan.col_min is None or plan.add_col_min is None:
        return
    width = max(len(row) for row in plan.additions)
    if width < 1:
        return
    n_grow = sheet.last_row() + len(plan.additions) - sheet.max_rows()
    if n_grow > 0:
        _logger.info("Grow sheet by %d rows", n_grow)
        sheet.insert_rows_after(sheet.max_rows(), n_grow)
    rng = SheetRange(sheet.last_row() + 1, plan.add_col_min + 1, len(plan.additions), width)
    _logger.info("Add transactions to range %s", rng.a1)
    write_values(sheet, rng, plan.additions)


def _modify(sheet: LedgerSheet, plan: ImportPlan, existing: Sequence[Sequence[Any]], tz: tzinfo) -> None:
    if not plan.modifications or plan.rect is None:
        return
    shrunk = shrink(plan.modifications, existing, plan.rect, tz)
    if shrunk is None:
        _logger.info("All %d matched transactions are already up to date", len(plan.modifications))
        return
    rect, values = shrunk
    rng = _data_range(rect.row_min, rect.col_min, rect.n_rows, rect.n_cols)
    _logger.info("Modify transactions in range %s", rng.a1)
    write_values(sheet, rng, values)


__all__ = ["import_csv", "load_catalog", "parse_csv"]

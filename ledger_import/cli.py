"""CLI for the ``ledger_import`` package.

This module exposes callable command handlers (``cmd_import``,
``cmd_crosswalks``) and a Typer-based console interface over an ``.xlsx``
ledger workbook. Settings (``LEDGER_IMPORT_*``) are loaded from a local
``.env`` using ``python-dotenv`` before delegating to command logic. Business
logic lives in ``ledger_import.api``.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Annotated

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table
from typer.models import OptionInfo

from .logging_setup import configure_logging
from .models import ImportPreview

console = Console()


def _render_preview(preview: ImportPreview) -> None:
    console.print(
        f"[cyan]Crosswalk:[/cyan] {preview.crosswalk}  "
        f"[cyan]add:[/cyan] {preview.n_add}  "
        f"[cyan]modify:[/cyan] {preview.n_modify}  "
        f"[cyan]total:[/cyan] {preview.n_total}"
    )
    table = Table(show_header=True, header_style="bold")
    table.add_column("Column")
    table.add_column("In ledger")
    table.add_column("Summary")
    for col in preview.header:
        if col.error is not None:
            summary = f"[red]{col.error.type}[/red] {col.error.message}"
            if col.error.link:
                summary += f" ({col.error.link})"
        else:
            summary = col.summary or ""
        table.add_row(col.name, "yes" if col.found else "[yellow]no[/yellow]", summary)
    console.print(table)


def cmd_import(
    csv_path: str,
    workbook_path: str,
    *,
    crosswalk: str = "",
    preview: bool = False,
) -> int:
    """Import a CSV file into the ledger workbook.

    With ``preview`` the workbook is left untouched and a summary table is
    printed instead. The workbook is saved only after a successful commit.
    Errors are written to stderr and a non-zero exit status is returned.
    """

    from .api import import_csv
    from .config import ImportContext, ImportSettings
    from .errors import ConfigurationError
    from .ledger import WorkbookLedger

    try:
        settings = ImportSettings.from_env()
        text = Path(csv_path).read_text(encoding="utf-8-sig")
        book = WorkbookLedger.load(workbook_path, time_zone=settings.time_zone)
    except (OSError, ConfigurationError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except Exception as e:
        print(f"Error: failed to load workbook '{workbook_path}': {e}", file=sys.stderr)
        return 1

    ctx = ImportContext(book=book, settings=settings)
    try:
        result = import_csv(text, crosswalk, preview, ctx=ctx)
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except Exception as e:
        print(f"Error: import failed: {e}", file=sys.stderr)
        return 1

    if result is not None:
        _render_preview(result)
        return 0

    try:
        book.save()
    except OSError as e:
        print(f"Error: failed to save workbook: {e}", file=sys.stderr)
        return 1
    console.print(f"[green]Imported[/green] {csv_path} into {workbook_path}")
    return 0


def cmd_crosswalks(workbook_path: str) -> int:
    """Print the crosswalk names available in the workbook, one per line."""

    from .api import load_catalog
    from .config import ImportContext, ImportSettings
    from .errors import ConfigurationError
    from .ledger import WorkbookLedger

    try:
        settings = ImportSettings.from_env()
        book = WorkbookLedger.load(workbook_path, time_zone=settings.time_zone)
        catalog = load_catalog(ImportContext(book=book, settings=settings))
    except (OSError, ConfigurationError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except Exception as e:
        print(f"Error: failed to read crosswalks from '{workbook_path}': {e}", file=sys.stderr)
        return 1

    if catalog is None:
        print(f"Error: {settings.crosswalks_sheet} sheet not found", file=sys.stderr)
        return 1
    for name in catalog.names():
        print(name)
    return 0


# ---- Typer-based console interface -------------------------------------------


app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help=(
        "Import bank CSV exports into an .xlsx transaction ledger. "
        "Loads LEDGER_IMPORT_* settings from a local .env before running."
    ),
)

# Module-level option objects to satisfy ruff B008 (no calls in parameter
# defaults).
CSV_PATH_OPTION: OptionInfo = typer.Option(
    ...,
    "--csv-path",
    help="Path to the CSV export to import",
    dir_okay=False,
    file_okay=True,
    exists=False,  # the handler reports missing files
)
WORKBOOK_OPTION: OptionInfo = typer.Option(
    ...,
    "--workbook",
    help="Path to the .xlsx workbook holding the Transactions sheet",
    dir_okay=False,
    file_okay=True,
    exists=False,
)

LOG_LEVEL_OPTION: OptionInfo = typer.Option(
    ...,
    "--log-level",
    help="Log level (DEBUG, INFO, ...); defaults to LEDGER_IMPORT_LOG_LEVEL or WARNING",
)


@app.command("import")
def import_cmd(
    csv_path: Annotated[Path, CSV_PATH_OPTION],
    workbook: Annotated[Path, WORKBOOK_OPTION],
    *,
    crosswalk: str = typer.Option("", help="Crosswalk to remap through; empty auto-detects."),
    bypass: bool = typer.Option(False, help="Skip crosswalk remapping entirely."),
    preview: bool = typer.Option(False, help="Show what would change without writing."),
) -> None:
    """Import a CSV into the ledger (or preview the import)."""

    from .crosswalk import BYPASS

    if bypass and crosswalk:
        print("Error: --bypass and --crosswalk are mutually exclusive", file=sys.stderr)
        raise typer.Exit(2)
    code = cmd_import(
        str(csv_path),
        str(workbook),
        crosswalk=BYPASS if bypass else crosswalk,
        preview=preview,
    )
    raise typer.Exit(code)


@app.command("crosswalks")
def crosswalks_cmd(workbook: Annotated[Path, WORKBOOK_OPTION]) -> None:
    """List the crosswalks defined in the workbook."""

    raise typer.Exit(cmd_crosswalks(str(workbook)))


@app.callback()
def _root(log_level: Annotated[str, LOG_LEVEL_OPTION] = "") -> None:
    """Root command.

    Loads ``.env`` from the current working directory (without overriding any
    already-set environment variables) and then configures logging, so the
    log level may come from that file.
    """

    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)
    configure_logging(log_level)


if __name__ == "__main__":  # pragma: no cover
    app()

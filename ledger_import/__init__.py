"""Public interface for the ``ledger_import`` package.

This module exposes the import entry point, its context/settings, the ledger
stores and the public models as the stable import surface. There is no
runtime logic here, only symbol re-exports.
"""

from .api import import_csv, load_catalog
from .config import ImportContext, ImportSettings
from .crosswalk import BYPASS, CrosswalkCatalog
from .errors import ConfigurationError
from .ledger import MemoryBook, MemorySheet, WorkbookLedger
from .models import (
    INVALID_DATE,
    CellError,
    CellErrorInfo,
    ColumnSummary,
    HeaderMap,
    ImportPreview,
    Rect,
)

__all__ = [
    # API
    "import_csv",
    "load_catalog",
    "ImportContext",
    "ImportSettings",
    "ConfigurationError",
    # Crosswalks
    "BYPASS",
    "CrosswalkCatalog",
    # Ledger stores
    "MemoryBook",
    "MemorySheet",
    "WorkbookLedger",
    # Models / types
    "CellError",
    "CellErrorInfo",
    "ColumnSummary",
    "HeaderMap",
    "INVALID_DATE",
    "ImportPreview",
    "Rect",
]

"""Error taxonomy for ``ledger_import``.

Only configuration problems are raised. Cell-level evaluation errors and
unparseable values travel through the pipeline as data (see
:class:`~ledger_import.models.CellError` and
:data:`~ledger_import.models.INVALID_DATE`); write failures from a ledger
store propagate unchanged.
"""

from __future__ import annotations


class ConfigurationError(ValueError):
    """The import cannot start: a sheet, header or rule row is missing or malformed.

    Always raised before the first write to the ledger.
    """


__all__ = ["ConfigurationError"]

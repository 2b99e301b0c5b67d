"""Logging for the ``ledger_import`` package.

Library modules call ``get_logger("ledger_import.<module>")`` and never attach
handlers. The CLI calls ``configure_logging`` after ``.env`` has been loaded,
so ``LEDGER_IMPORT_LOG_LEVEL`` may come from either the environment or that
file.

openpyxl reports unsupported workbook features (extensions, conditional
formats it cannot read) through :mod:`warnings` while loading a ledger.
``configure_logging`` turns on :func:`logging.captureWarnings` and gives the
``py.warnings`` logger the same handler, so those land in the import log.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import IO

PACKAGE_LOGGER = "ledger_import"
LEVEL_ENV = "LEDGER_IMPORT_LOG_LEVEL"
WARNINGS_LOGGER = "py.warnings"
DEFAULT_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"

_handler: logging.Handler | None = None


def resolve_level(level: int | str | None = None) -> int:
    """Turn ``level`` (or ``$LEDGER_IMPORT_LOG_LEVEL``) into a logging level.

    Unknown names fall back to ``WARNING``; an import run is quiet unless asked.
    """

    if level is None or (isinstance(level, str) and not level.strip()):
        level = os.getenv(LEVEL_ENV, "")
    if isinstance(level, int):
        return level
    name = level.strip().upper()
    if name.isdigit():
        return int(name)
    value = logging.getLevelName(name)
    return value if isinstance(value, int) else logging.WARNING


def configure_logging(
    level: int | str | None = None,
    *,
    stream: IO[str] | None = None,
    fmt: str = DEFAULT_FORMAT,
) -> logging.Logger:
    """Attach the package's stream handler, replacing any earlier one.

    Calling this again (for example from a second CLI invocation in the same
    process) swaps the handler instead of stacking a duplicate.
    """

    global _handler
    logger = logging.getLogger(PACKAGE_LOGGER)
    captured = logging.getLogger(WARNINGS_LOGGER)
    if _handler is not None:
        logger.removeHandler(_handler)
        captured.removeHandler(_handler)
    for h in [h for h in logger.handlers if isinstance(h, logging.NullHandler)]:
        logger.removeHandler(h)

    _handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    _handler.setFormatter(logging.Formatter(fmt))
    logger.addHandler(_handler)
    logger.setLevel(resolve_level(level))
    logger.propagate = False

    logging.captureWarnings(True)
    captured.addHandler(_handler)
    captured.propagate = False
    return logger


def get_logger(name: str) -> logging.Logger:
    pkg = logging.getLogger(PACKAGE_LOGGER)
    if _handler is None and not pkg.handlers:
        pkg.addHandler(logging.NullHandler())
    return logging.getLogger(name)


__all__ = ["configure_logging", "get_logger", "resolve_level"]

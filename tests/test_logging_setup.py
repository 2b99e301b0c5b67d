import io
import logging
import warnings

import pytest

import ledger_import.logging_setup as logging_setup
from ledger_import.logging_setup import configure_logging, get_logger, resolve_level


@pytest.fixture
def pkg_logger(monkeypatch: pytest.MonkeyPatch):
    logger = logging.getLogger("ledger_import")
    captured = logging.getLogger("py.warnings")
    for lg in (logger, captured):
        monkeypatch.setattr(lg, "handlers", [])
        monkeypatch.setattr(lg, "propagate", lg.propagate)
    level = logger.level
    monkeypatch.setattr(logging_setup, "_handler", None)
    yield logger
    logging.captureWarnings(False)
    logger.setLevel(level)


@pytest.mark.parametrize(
    ("level", "env", "expected"),
    [
        ("debug", None, logging.DEBUG),
        (15, None, 15),
        ("20", None, logging.INFO),
        (None, "ERROR", logging.ERROR),
        ("", "info", logging.INFO),
        (None, None, logging.WARNING),
        ("chatty", None, logging.WARNING),
    ],
)
def test_resolve_level(monkeypatch: pytest.MonkeyPatch, level, env, expected):
    if env is not None:
        monkeypatch.setenv("LEDGER_IMPORT_LOG_LEVEL", env)

    assert resolve_level(level) == expected


def test_configure_replaces_handler(pkg_logger):
    first, second = io.StringIO(), io.StringIO()

    configure_logging("INFO", stream=first, fmt="%(name)s %(message)s")
    configure_logging("INFO", stream=second, fmt="%(name)s %(message)s")
    get_logger("ledger_import.api").info("imported %d rows", 2)

    assert len(pkg_logger.handlers) == 1
    assert logging.getLogger("py.warnings").handlers == pkg_logger.handlers
    assert first.getvalue() == ""
    assert second.getvalue() == "ledger_import.api imported 2 rows\n"


def test_warnings_are_logged(pkg_logger):
    out = io.StringIO()
    configure_logging("WARNING", stream=out, fmt="%(name)s %(message)s")

    with warnings.catch_warnings():
        warnings.simplefilter("always")
        warnings.warn("Data Validation extension is not supported", UserWarning)

    logged = out.getvalue()
    assert logged.startswith("py.warnings ")
    assert "UserWarning: Data Validation extension is not supported" in logged


def test_get_logger_is_silent_until_configured(pkg_logger):
    get_logger("ledger_import.ledger")

    assert [type(h) for h in pkg_logger.handlers] == [logging.NullHandler]

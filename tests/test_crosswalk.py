import pytest

from ledger_import.crosswalk import BYPASS, Crosswalk, CrosswalkCatalog, remap
from ledger_import.engine import GridFormulaEngine
from ledger_import.errors import ConfigurationError
from ledger_import.models import CellError
from tests.helpers.ledger import CountingEngineFactory

HEADER = ["PostingDate", "Details", "Debit", "Credit"]
DATA = [
    ["01/05/2024", "COFFEE SHOP", "4.50", ""],
    ["01/06/2024", "PAYROLL", "", "1200"],
]

CATALOG_GRID = [
    ["Account", "Date", "Description", "Amount", "Memo"],
    ["Alpha", "=TxnDate", "=Narrative", "=Value", ""],
    [
        "Bravo",
        '=PARSEDATE(PostingDate, "MM/dd/yyyy")',
        "=Details",
        '=IF(Debit<>"", -Debit, Credit*1)',
        "imported",
    ],
    ["Charlie", "=PostingDate", "=Details", "=Credit", ""],
]


def _link(i, j):
    return f"rule:{i}:{j}"


def _catalog(link=_link):
    return CrosswalkCatalog.from_grid(CATALOG_GRID, link)


def _engine(data):
    return GridFormulaEngine(data)


def test_from_row_filters_blank_names_and_values():
    cw = Crosswalk.from_row(["Account", "", "Date", "Memo"], ["Bank", "=X", "=Y", None], 3)

    assert cw.name == "Bank"
    assert cw.row == 3
    assert cw.names == ("Account", "Date")
    assert cw.sources == (0, 2)
    assert cw.formulas == {1: "=Y"}
    assert cw.literals == {0: "Bank"}


def test_catalog_names_and_find():
    catalog = _catalog()

    assert catalog.names() == ["Alpha", "Bravo", "Charlie"]
    assert catalog.find("Bravo").row == 1
    assert catalog.find("Delta") is None


def test_empty_grid_is_a_configuration_error():
    with pytest.raises(ConfigurationError, match="Empty crosswalks sheet"):
        CrosswalkCatalog.from_grid([])


def test_no_catalog_bypasses():
    result = remap(HEADER, DATA, "", None, engine_factory=_engine)

    assert result.crosswalk == BYPASS
    assert result.crosswalks == []
    assert result.header_row == HEADER
    assert result.data == DATA


def test_explicit_bypass_keeps_input():
    factory = CountingEngineFactory()

    result = remap(HEADER, DATA, BYPASS, _catalog(), engine_factory=factory)

    assert result.crosswalk == BYPASS
    assert result.crosswalks == ["Alpha", "Bravo", "Charlie"]
    assert result.data == DATA
    assert factory.calls == []


def test_named_crosswalk_evaluates_whole_batch():
    result = remap(HEADER, DATA, "Bravo", _catalog(), engine_factory=_engine)

    assert result.crosswalk == "Bravo"
    assert result.header_row == ["Account", "Date", "Description", "Amount", "Memo"]
    assert result.data == [
        ["Bravo", "2024-01-05T00:00:00.000Z", "COFFEE SHOP", -4.5, "imported"],
        ["Bravo", "2024-01-06T00:00:00.000Z", "PAYROLL", 1200.0, "imported"],
    ]


def test_named_crosswalk_errors_link_back_to_rule_cells():
    result = remap(HEADER, DATA, "Alpha", _catalog(), engine_factory=_engine)

    first = result.data[0]
    assert first[0] == "Alpha"
    assert isinstance(first[1], CellError)
    assert first[1].type == "#NAME?"
    # Catalog row 0, catalog column 1 ("Date").
    assert first[1].link == "rule:0:1"
    assert first[3].link == "rule:0:3"


def test_unknown_and_empty_crosswalks_raise():
    with pytest.raises(ConfigurationError, match="Crosswalk not found: Delta"):
        remap(HEADER, DATA, "Delta", _catalog(), engine_factory=_engine)
    # The display name column has no output name, so nothing is left.
    blank = CrosswalkCatalog.from_grid([["", "Date"], ["Blank", ""]])
    assert blank.find("Blank").empty
    with pytest.raises(ConfigurationError, match="Empty crosswalk row/headers"):
        remap(HEADER, DATA, "Blank", blank, engine_factory=_engine)


def test_auto_detect_stops_at_first_clean_candidate():
    factory = CountingEngineFactory()

    result = remap(HEADER, DATA, "", _catalog(), engine_factory=factory)

    assert result.crosswalk == "Bravo"
    assert [n for _, n in factory.calls] == [1, 1, 2]
    assert result.data[1][3] == 1200.0


def test_auto_detect_without_match_bypasses():
    grid = [["Account", "Date"], ["Alpha", "=Nope"]]

    result = remap(HEADER, DATA, "", CrosswalkCatalog.from_grid(grid), engine_factory=_engine)

    assert result.crosswalk == BYPASS
    assert result.crosswalks == ["Alpha"]
    assert result.header_row == HEADER


def test_literal_only_crosswalk_skips_engine():
    grid = [["Account", "Currency"], ["Cash", "USD"]]
    factory = CountingEngineFactory()

    result = remap(HEADER, DATA, "Cash", CrosswalkCatalog.from_grid(grid), engine_factory=factory)

    assert result.data == [["Cash", "USD"], ["Cash", "USD"]]
    assert factory.calls == []

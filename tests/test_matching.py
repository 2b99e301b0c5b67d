import math
from datetime import UTC, datetime
from zoneinfo import ZoneInfo

import pytest

from ledger_import.matching import (
    count_modified,
    index_ids,
    loose_equals,
    plan_import,
    shrink,
    summarize,
    to_number,
    to_serial_number,
)
from ledger_import.models import INVALID_DATE, UNSET, CellError, HeaderMap, Rect
from tests.helpers.ledger import LEDGER_HEADER, NOW

LEDGER = HeaderMap.from_ledger_row(LEDGER_HEADER)
D = datetime(2024, 1, 5, tzinfo=UTC)


# ---------------------------------------------------------------------------
# loose_equals
# ---------------------------------------------------------------------------


def test_serial_number_epoch():
    assert to_serial_number(datetime(2024, 1, 1), UTC) == 45292.0
    assert to_serial_number(datetime(1899, 12, 31, 12), UTC) == 1.5


@pytest.mark.parametrize(
    ("a", "b"),
    [
        ("5", 5),
        (5.0, "5"),
        ("", None),
        (None, UNSET),
        (True, 1),
        (datetime(2024, 1, 1, 15, tzinfo=UTC), datetime(2024, 1, 1)),
        (datetime(2024, 1, 1, 23, tzinfo=UTC), 45292),
        ("Coffee", "Coffee"),
    ],
)
def test_loose_equals_true(a, b):
    assert loose_equals(a, b, UTC)
    assert loose_equals(b, a, UTC)


@pytest.mark.parametrize(
    ("a", "b"),
    [
        ("Coffee", "COFFEE"),
        (1.0, "abc"),
        (math.nan, math.nan),
        (INVALID_DATE, INVALID_DATE),
        (CellError("#N/A", "x"), CellError("#N/A", "x")),
        (datetime(2024, 1, 1, tzinfo=UTC), datetime(2024, 1, 2)),
        (0.0, "x"),
    ],
)
def test_loose_equals_false(a, b):
    assert not loose_equals(a, b, UTC)


def test_loose_equals_uses_ledger_calendar_day():
    ny = ZoneInfo("America/New_York")
    late = datetime(2024, 1, 2, 3, tzinfo=UTC)  # Jan 1, 22:00 in New York

    assert loose_equals(late, datetime(2024, 1, 1), ny)
    assert not loose_equals(late, datetime(2024, 1, 1), UTC)


def test_to_number_readings():
    assert to_number("", UTC) == 0.0
    assert to_number(" 12.5 ", UTC) == 12.5
    assert to_number("-Infinity", UTC) == -math.inf
    assert math.isnan(to_number("1,000", UTC))


# ---------------------------------------------------------------------------
# plan_import
# ---------------------------------------------------------------------------


def test_index_ids_keeps_ledger_order():
    assert index_ids(["A", "B", None, "B"]) == {"A": [0], "B": [1, 3], None: [2]}


def test_plan_pairs_nth_occurrences_and_lays_out_rows():
    header = HeaderMap(["Transaction ID", "Date", "Amount", "Memo"])
    data = [
        ["A", D, 1.0, "m"],
        ["B", D, 2.0, "m"],
        ["B", D, 3.0, "m"],
        ["B", D, 4.0, "m"],
        ["C", D, 5.0, "m"],
    ]
    ids = {"A": [0], "B": [1, 3]}

    plan = plan_import(header, data, LEDGER, ids, NOW)

    assert plan.column_map == [6, 1, 4, None]
    assert plan.row_map == [0, 1, 3, None, None]
    assert plan.n_total == 5
    assert (plan.col_min, plan.col_max, plan.add_col_min) == (1, 6, 1)
    assert plan.rect == Rect(0, 3, 1, 6)
    assert plan.additions[0] == [D, UNSET, UNSET, 4.0, UNSET, "B", UNSET, NOW]
    assert plan.additions[1][5] == "C"
    assert sorted(plan.modifications) == [0, 1, 3]
    assert plan.modifications[0] == [D, UNSET, UNSET, 1.0, UNSET, "A"]


def test_plan_skips_unset_cells_of_ragged_rows():
    header = HeaderMap(["Transaction ID", "Amount", "Category"])
    data = [["A", 1.0]]

    plan = plan_import(header, data, LEDGER, {}, NOW)

    assert plan.rect is None
    # Category (column 3) was never written for this row.
    assert plan.add_col_min == 3
    assert plan.additions == [[UNSET, 1.0, UNSET, "A", UNSET, NOW]]


def test_plan_without_mapped_columns_adds_empty_rows():
    ledger = HeaderMap.from_ledger_row([None, "Transaction ID"])
    header = HeaderMap(["Memo"])

    plan = plan_import(header, [["x"], ["y"]], ledger, {}, NOW)

    assert plan.add_col_min is None
    assert plan.additions == [[], []]


# ---------------------------------------------------------------------------
# shrink / count_modified
# ---------------------------------------------------------------------------

EXISTING = [
    [D, "Coffee", "Dining", -4.0],
    [D, "Rent", "Home", -1000.0],
    [D, "Gas", "Auto", -30.0],
]


def test_shrink_to_differing_rows_and_columns():
    modifications = {
        0: [D, "Coffee", UNSET, -5.0],
        2: [D, "Gas", "Travel", -30.0],
    }

    rect, values = shrink(modifications, EXISTING, Rect(10, 12, 1, 4), UTC)

    assert rect == Rect(10, 12, 3, 4)
    assert values == [["Dining", -5.0], ["Home", -1000.0], ["Travel", -30.0]]
    assert count_modified(modifications, EXISTING, UTC) == 2


def test_shrink_returns_none_when_loosely_equal():
    modifications = {
        0: [datetime(2024, 1, 5, 9, tzinfo=UTC), "Coffee", "Dining", "-4"],
        1: [UNSET, UNSET, UNSET, UNSET],
    }

    assert shrink(modifications, EXISTING, Rect(0, 1, 0, 3), UTC) is None
    assert count_modified(modifications, EXISTING, UTC) == 0


# ---------------------------------------------------------------------------
# summarize
# ---------------------------------------------------------------------------


def test_summarize_date_range_and_single_day():
    rows = [[datetime(2024, 1, 6, tzinfo=UTC)], [datetime(2024, 1, 5, tzinfo=UTC)]]

    assert summarize(rows, 0, UTC) == "Jan 5, 2024 – Jan 6, 2024"
    assert summarize(rows[:1], 0, UTC) == "Jan 6, 2024"


def test_summarize_constant_and_sum():
    assert summarize([["Checking"], ["Checking"]], 0, UTC) == "Checking"
    assert summarize([[5.0], [5.0]], 0, UTC) == "5"
    assert summarize([[-4.5], [1200.0]], 0, UTC) == "Sum: 1,195.5"
    assert summarize([[1000.0], [234.0]], 0, UTC) == "Sum: 1,234"
    assert summarize([[math.nan], [1.0]], 0, UTC) == "Sum: NaN"


def test_summarize_without_summary():
    assert summarize([["a"], ["b"]], 0, UTC) is None
    assert summarize([], 0, UTC) is None
    assert summarize([["a"]], None, UTC) is None

from datetime import UTC, datetime

from ledger_import.identity import ID_COLUMN, canonical_fields, content_id, group_key, prep_id
from ledger_import.models import HeaderMap
from tests.helpers.ledger import LEDGER_HEADER

LEDGER = HeaderMap.from_ledger_row(LEDGER_HEADER)
JAN_1 = datetime(2024, 1, 1, tzinfo=UTC)


def test_content_id_is_named_sha256():
    assert content_id('{"AMOUNT":100,"DATE":"2024-01-01T00:00:00.000Z"}0') == (
        "ni:///sha-256;d63EaUQCWKParzdzOk-6w9Fldf0Fh7ClXMkqj7k2sqo"
    )


def test_canonical_fields_only_shared_columns_sorted():
    header = HeaderMap(["Date", "Amount", "Memo", "Month", "Week", "Full Description"])

    assert canonical_fields(header, LEDGER) == ["Amount", "Date"]


def test_group_key_skips_blanks_and_upper_cases():
    header = HeaderMap(["Description", "Amount", "Account"])
    row = ["Coffee", 4.5, ""]

    assert group_key(row, header, ["Account", "Amount", "Description"]) == (
        '{"AMOUNT":4.5,"DESCRIPTION":"COFFEE"}'
    )


def test_prep_id_numbers_duplicates_by_occurrence():
    header = HeaderMap(["Date", "Amount", "Memo"])
    data = [
        [JAN_1, 100.0, "first"],
        [JAN_1, 100.0, "second"],
    ]

    prep_id(header, data, LEDGER)

    j = header.get(ID_COLUMN)
    assert j == 3
    # Memo is not a ledger column, so both rows share a group.
    assert data[0][j] == "ni:///sha-256;d63EaUQCWKParzdzOk-6w9Fldf0Fh7ClXMkqj7k2sqo"
    assert data[1][j] == "ni:///sha-256;q-y7-f3Y1Hxl3eQcDQSbHivH81VHdVDPn9P4vjRqOrQ"


def test_prep_id_is_deterministic_and_case_insensitive():
    header_a = HeaderMap(["Description", "Amount"])
    header_b = HeaderMap(["Description", "Amount"])
    a = [["coffee", -3.0]]
    b = [["COFFEE", -3.0]]

    prep_id(header_a, a, LEDGER)
    prep_id(header_b, b, LEDGER)

    assert a[0][2] == b[0][2]
    assert a[0][2].startswith("ni:///sha-256;")


def test_prep_id_keeps_existing_ids():
    header = HeaderMap(["Transaction ID", "Amount"])
    data = [["abc", 1.0]]

    prep_id(header, data, LEDGER)

    assert header.names() == ["Transaction ID", "Amount"]
    assert data == [["abc", 1.0]]


def test_prep_id_swapping_duplicates_swaps_their_ids():
    header_a = HeaderMap(["Date", "Amount", "Memo"])
    header_b = HeaderMap(["Date", "Amount", "Memo"])
    a = [[JAN_1, 100.0, "first"], [JAN_1, 100.0, "second"]]
    b = [[JAN_1, 100.0, "second"], [JAN_1, 100.0, "first"]]

    prep_id(header_a, a, LEDGER)
    prep_id(header_b, b, LEDGER)

    ids_a = {row[2]: row[3] for row in a}
    ids_b = {row[2]: row[3] for row in b}
    assert ids_a["first"] == ids_b["second"]
    assert ids_a["second"] == ids_b["first"]
    assert ids_a["first"] != ids_a["second"]

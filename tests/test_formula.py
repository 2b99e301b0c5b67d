import pytest

from ledger_import.formula import (
    FormulaSyntaxError,
    bind,
    column_index,
    column_letter,
    reference_table,
    referenced_names,
)

HEADER = ["Date", "Debit", "Credit", "Full Description"]


@pytest.mark.parametrize(
    ("j", "letters"),
    [(0, "A"), (25, "Z"), (26, "AA"), (701, "ZZ"), (702, "AAA")],
)
def test_column_letters_round_trip(j, letters):
    assert column_letter(j) == letters
    assert column_index(letters) == j


def test_column_letter_rejects_negative():
    with pytest.raises(ValueError):
        column_letter(-1)


def test_reference_table_sanitizes_names():
    table = reference_table(HEADER)

    assert table["FULLDESCRIPTION"] == "D"
    assert table["DEBIT"] == "B"


def test_reference_table_earlier_column_wins_on_clash():
    assert reference_table(["Ref #", "Ref"])["REF"] == "A"


def test_bind_rewrites_identifiers_but_not_functions_or_strings():
    formula = '=IF(Debit<>"", -Debit, Credit)&"Debit"'

    assert bind(formula, HEADER) == '=IF(B:B<>"", -B:B, C:C)&"Debit"'


def test_bind_is_case_insensitive_and_strips_punctuation():
    assert bind("=upper(fulldescription)", HEADER) == "=upper(D:D)"


def test_bind_leaves_literals_and_unknown_names():
    assert bind("Bank A", HEADER) == "Bank A"
    assert bind("=Memo", HEADER) == "=Memo"
    assert bind("=A:A", HEADER) == "=A:A"


def test_bind_returns_untokenizable_formula_unchanged():
    assert bind('="open', HEADER) == '="open'


def test_referenced_names_splits_functions_from_leftover_names():
    functions, names = referenced_names('=IF(B:B<>"", Memo, upper(A1))&TRUE&"Ref"')

    assert functions == ["IF", "UPPER"]
    assert names == ["MEMO"]


def test_referenced_names_skips_range_endpoints():
    assert referenced_names("=SUM(A:B)") == (["SUM"], [])


def test_referenced_names_rejects_untokenizable():
    with pytest.raises(FormulaSyntaxError):
        referenced_names('="open')

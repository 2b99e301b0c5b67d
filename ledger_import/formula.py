"""Spreadsheet formula tokens and column binding.

Crosswalk formulas reference incoming CSV columns by name, e.g.
``=IF(Debit<>"", -Debit, Credit)``. Before evaluation :func:`bind` rewrites
every identifier that names an incoming column into a whole-column reference
(``Debit`` -> ``B:B``). Binding works on tokens, so text inside string
literals and function names are never touched.

:func:`referenced_names` lists the functions and leftover names a bound
formula uses, so unknown ones can be reported before evaluation.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from typing import NamedTuple


class FormulaSyntaxError(ValueError):
    """Raised when a formula cannot be tokenized or parsed."""


# ---------------------------------------------------------------------------
# Column letters
# ---------------------------------------------------------------------------


def column_letter(j: int) -> str:
    """Return the bijective base-26 letters for zero-based column ``j``.

    ``0 -> "A"``, ``25 -> "Z"``, ``26 -> "AA"``.
    """

    if j < 0:
        raise ValueError(f"column index must be >= 0, got {j}")
    letters = ""
    q = j + 1
    while q:
        q, r = divmod(q - 1, 26)
        letters = chr(65 + r) + letters
    return letters


def column_index(letters: str) -> int:
    """Inverse of :func:`column_letter`."""

    if not letters or not letters.isalpha() or not letters.isascii():
        raise ValueError(f"invalid column letters: {letters!r}")
    q = 0
    for ch in letters.upper():
        q = q * 26 + (ord(ch) - 64)
    return q - 1


# ---------------------------------------------------------------------------
# Tokens
# ---------------------------------------------------------------------------


class Token(NamedTuple):
    kind: str  # ws | string | number | ident | op
    text: str
    pos: int


_TOKEN_RE = re.compile(
    r"""
      (?P<ws>\s+)
    | (?P<string>"(?:[^"]|"")*")
    | (?P<number>(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)
    | (?P<ident>[A-Za-z_][A-Za-z0-9_.]*)
    | (?P<op><>|<=|>=|[-+*/^&=<>(),;:%])
    """,
    re.VERBOSE,
)


def tokenize(text: str) -> list[Token]:
    tokens: list[Token] = []
    pos = 0
    while pos < len(text):
        m = _TOKEN_RE.match(text, pos)
        if m is None:
            if text[pos] == '"':
                raise FormulaSyntaxError(f"unterminated string at position {pos}")
            raise FormulaSyntaxError(f"unexpected character {text[pos]!r} at position {pos}")
        kind = m.lastgroup
        assert kind is not None
        tokens.append(Token(kind, m.group(), pos))
        pos = m.end()
    return tokens


def _neighbor(tokens: Sequence[Token], k: int, step: int) -> Token | None:
    k += step
    while 0 <= k < len(tokens):
        if tokens[k].kind != "ws":
            return tokens[k]
        k += step
    return None


def _is_op(tok: Token | None, text: str) -> bool:
    return tok is not None and tok.kind == "op" and tok.text == text


# ---------------------------------------------------------------------------
# Binding
# ---------------------------------------------------------------------------


def _sanitize(name: str) -> str:
    return re.sub(r"[^0-9A-Za-z_]", "", name).upper()


def reference_table(header_row: Sequence[str]) -> dict[str, str]:
    """Map sanitized, upper-cased column names to their column letters.

    Names are registered longest first; on a clash between two names that
    sanitize identically the earlier column wins.
    """

    table: dict[str, str] = {}
    entries = [(_sanitize(str(name)), j) for j, name in enumerate(header_row)]
    for key, j in sorted(entries, key=lambda e: -len(e[0])):
        if key:
            table.setdefault(key, column_letter(j))
    return table


def bind(formula: str, header_row: Sequence[str]) -> str:
    """Rewrite column-name identifiers in ``formula`` to ``X:X`` references.

    Identifiers are matched case-insensitively against the header names with
    every character outside ``[0-9A-Za-z_]`` removed (``"Full Description"``
    is referenced as ``FullDescription``). Function names, explicit ranges and
    string literals are left alone. Formulas that do not tokenize are
    returned unchanged so evaluation reports the syntax error.
    """

    if not formula.startswith("="):
        return formula
    try:
        tokens = tokenize(formula[1:])
    except FormulaSyntaxError:
        return formula
    table = reference_table(header_row)
    out = ["="]
    for k, tok in enumerate(tokens):
        if tok.kind == "ident":
            nxt = _neighbor(tokens, k, 1)
            prev = _neighbor(tokens, k, -1)
            if not (_is_op(nxt, "(") or _is_op(nxt, ":") or _is_op(prev, ":")):
                letters = table.get(tok.text.upper())
                if letters is not None:
                    out.append(f"{letters}:{letters}")
                    continue
        out.append(tok.text)
    return "".join(out)



_CELL_RE = re.compile(r"^[A-Za-z]{1,3}[1-9][0-9]*$")


def referenced_names(formula: str) -> tuple[list[str], list[str]]:
    """Return ``(functions, names)`` used by ``formula``, upper-cased.

    ``names`` are bare identifiers that are neither cell references, range
    endpoints nor booleans: after :func:`bind` these are names no column
    matched. Raises :class:`FormulaSyntaxError` when the formula does not
    tokenize.
    """

    text = formula[1:] if formula.startswith("=") else formula
    tokens = tokenize(text)
    functions: list[str] = []
    names: list[str] = []
    for k, tok in enumerate(tokens):
        if tok.kind != "ident":
            continue
        nxt = _neighbor(tokens, k, 1)
        if _is_op(nxt, "("):
            functions.append(tok.text.upper())
        elif _is_op(nxt, ":") or _is_op(_neighbor(tokens, k, -1), ":"):
            continue
        elif tok.text.upper() not in ("TRUE", "FALSE") and not _CELL_RE.match(tok.text):
            names.append(tok.text.upper())
    return functions, names


__all__ = [
    "FormulaSyntaxError",
    "Token",
    "bind",
    "column_index",
    "column_letter",
    "reference_table",
    "referenced_names",
    "tokenize",
]

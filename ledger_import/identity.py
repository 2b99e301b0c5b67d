"""Content-derived transaction identities.

Rows without a ``Transaction ID`` get one computed from their canonical
fields: the incoming columns that also exist in the ledger, minus the derived
``Month``/``Week`` columns and ``Full Description``. Identical rows within a
batch are told apart by their occurrence index inside the group, so the
identity of a duplicate depends on the order the batch lists it in.

Identifiers follow RFC 6920 named-hash syntax::

    ni:///sha-256;<base64url digest without padding>
"""

from __future__ import annotations

import base64
import hashlib
import json
import math
from collections.abc import Sequence
from datetime import datetime
from typing import Any

from .logging_setup import get_logger
from .models import UNSET, CellError, HeaderMap, InvalidDate, Row, get_cell, set_cell, to_json_instant

_logger = get_logger("ledger_import.identity")

ID_COLUMN = "Transaction ID"
_EXCLUDED = frozenset({"Month", "Week", "Full Description"})


def content_id(text: str) -> str:
    digest = hashlib.sha256(text.encode("utf-8")).digest()
    encoded = base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")
    return f"ni:///sha-256;{encoded}"


def _json_scalar(value: Any) -> Any:
    if isinstance(value, CellError):
        return value.type
    if isinstance(value, InvalidDate):
        return None
    if isinstance(value, datetime):
        return to_json_instant(value)
    if isinstance(value, float) and not isinstance(value, bool):
        if not math.isfinite(value):
            return None
        if value.is_integer():
            return int(value)
    return value


def canonical_fields(header: HeaderMap, ledger_header: HeaderMap) -> list[str]:
    return sorted(name for name in header if name not in _EXCLUDED and name in ledger_header)


def group_key(row: Row, header: HeaderMap, fields: Sequence[str]) -> str:
    """Serialize the canonical projection of ``row`` as an upper-cased JSON key."""

    obj: dict[str, Any] = {}
    for name in fields:
        value = get_cell(row, header.get(name))
        if value is UNSET or value == "":
            continue
        obj[name] = _json_scalar(value)
    return json.dumps(obj, ensure_ascii=False, separators=(",", ":")).upper()


def prep_id(header: HeaderMap, data: Sequence[Row], ledger_header: HeaderMap) -> None:
    if ID_COLUMN in header:
        return
    _logger.info("Give transactions content IDs")
    fields = canonical_fields(header, ledger_header)
    j_id = header.derive(ID_COLUMN)

    # dicts keep first-seen order, so groups are visited deterministically.
    groups: dict[str, list[Row]] = {}
    for row in data:
        groups.setdefault(group_key(row, header, fields), []).append(row)
    for key, rows in groups.items():
        for i, row in enumerate(rows):
            set_cell(row, j_id, content_id(key + str(i)))
    _logger.debug("Assigned %d content IDs across %d groups", len(data), len(groups))


__all__ = ["ID_COLUMN", "canonical_fields", "content_id", "group_key", "prep_id"]

"""Normalize raw incoming cells into typed ledger values.

Each ``prep_*`` step mutates one well-known column of the incoming batch in
place and may derive further columns through :meth:`HeaderMap.derive`:

- ``Date``: parsed to timezone-aware datetimes, plus derived ``Month`` and
  ``Week`` columns.
- ``Amount``: currency text coerced to ``float``.
- ``Description`` / ``Full Description``: whichever is missing is derived
  from the other.

A step is skipped entirely when its column is missing, or when the first
row's cell in that column is a :class:`~ledger_import.models.CellError`
propagated from formula evaluation.
"""

from __future__ import annotations

import math
import re
from collections.abc import Sequence
from datetime import UTC, datetime, tzinfo
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any

from dateutil import parser as date_parser
from dateutil.relativedelta import relativedelta, weekdays

from .logging_setup import get_logger
from .models import INVALID_DATE, UNSET, HeaderMap, InvalidDate, Row, get_cell, is_error, set_cell, to_text

if TYPE_CHECKING:
    from .config import ImportContext

_logger = get_logger("ledger_import.normalizers")


def _skip(header: HeaderMap, data: Sequence[Row], name: str) -> int | None:
    j = header.get(name)
    if j is None:
        return None
    if data and is_error(get_cell(data[0], j)):
        return None
    return j


# ---------------------------------------------------------------------------
# Dates
# ---------------------------------------------------------------------------

_ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_NUMERIC_RE = re.compile(r"^[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?$")
_FILL_DEFAULTS = (datetime(2000, 1, 1), datetime(2001, 2, 2))


def parse_date(value: Any, local_tz: tzinfo) -> datetime | InvalidDate:
    """Parse one incoming cell into an aware datetime.

    Bare ``YYYY-MM-DD`` strings are read as UTC midnight, other strings
    without an offset in ``local_tz``. Numbers, booleans, blanks and numeric
    strings are invalid, as are strings missing a year, month or day.
    """

    if isinstance(value, datetime):
        return value if value.tzinfo is not None else value.replace(tzinfo=local_tz)
    if not isinstance(value, str):
        return INVALID_DATE
    s = value.strip()
    if not s or _NUMERIC_RE.match(s):
        return INVALID_DATE
    if _ISO_DATE_RE.match(s):
        try:
            return datetime.strptime(s, "%Y-%m-%d").replace(tzinfo=UTC)
        except ValueError:
            return INVALID_DATE
    try:
        parsed, check = (date_parser.parse(s, default=d) for d in _FILL_DEFAULTS)
    except (ValueError, OverflowError):
        return INVALID_DATE
    # dateutil fills missing fields from the default; require a full date.
    if parsed != check:
        return INVALID_DATE
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=local_tz)
    return parsed


def _is_midnight(value: Any, tz: tzinfo) -> bool:
    if not isinstance(value, datetime):
        return False
    t = value.astimezone(tz).time()
    return t.hour == 0 and t.minute == 0 and t.second == 0 and t.microsecond == 0


def shift_zone(value: datetime, to: tzinfo, src: tzinfo) -> datetime:
    """Keep the wall-clock reading of ``value`` in ``src`` but place it in ``to``."""

    return value.astimezone(src).replace(tzinfo=None).replace(tzinfo=to)


def prep_date(header: HeaderMap, data: Sequence[Row], ctx: ImportContext) -> None:
    j_date = _skip(header, data, "Date")
    if j_date is None:
        return
    local_tz, ledger_tz = ctx.local_tz, ctx.ledger_tz
    for row in data:
        set_cell(row, j_date, parse_date(get_cell(row, j_date), local_tz))

    # A batch of midnights was most likely a batch of calendar days.
    src: tzinfo | None = None
    if all(_is_midnight(row[j_date], local_tz) for row in data):
        src = local_tz
    elif all(_is_midnight(row[j_date], UTC) for row in data):
        src = UTC
    if src is not None:
        _logger.info("Interpret date-only values using the ledger time zone %s", ledger_tz)
        for row in data:
            row[j_date] = shift_zone(row[j_date], ledger_tz, src)

    j_month = header.derive("Month")
    j_week = header.derive("Week")
    week_start = weekdays[ctx.settings.week_start](-1)
    for row in data:
        value = row[j_date]
        if not isinstance(value, datetime):
            set_cell(row, j_month, INVALID_DATE)
            set_cell(row, j_week, INVALID_DATE)
            continue
        day = value.astimezone(ledger_tz).replace(hour=0, minute=0, second=0, microsecond=0)
        set_cell(row, j_month, day + relativedelta(day=1))
        set_cell(row, j_week, day + relativedelta(weekday=week_start))


# ---------------------------------------------------------------------------
# Amounts
# ---------------------------------------------------------------------------


def to_amount(raw: Any) -> float:
    """Coerce a currency cell to ``float``; blanks are ``0.0``, junk is ``NaN``."""

    if isinstance(raw, bool) or raw is None or raw is UNSET:
        return math.nan
    if isinstance(raw, int | float):
        return float(raw)
    s = str(raw).strip()
    if not s:
        return 0.0
    negative = False
    # Strip leading sign, currency symbol and surrounding parentheses in any order.
    while True:
        changed = False
        if s.startswith("+"):
            s = s[1:].lstrip()
            changed = True
        elif s.startswith("-"):
            negative = not negative
            s = s[1:].lstrip()
            changed = True
        if s.startswith("$"):
            s = s[1:].lstrip()
            changed = True
        if s.startswith("(") and s.endswith(")") and len(s) >= 2:
            negative = True
            s = s[1:-1].strip()
            changed = True
        if not changed:
            break
    s = s.replace(",", "").replace("$", "").strip()
    try:
        d = Decimal(s)
    except InvalidOperation:
        return math.nan
    if d.is_nan():
        return math.nan
    return float(-d if negative else d)


def prep_amount(header: HeaderMap, data: Sequence[Row]) -> None:
    j = _skip(header, data, "Amount")
    if j is None:
        return
    for row in data:
        set_cell(row, j, to_amount(get_cell(row, j)))


# ---------------------------------------------------------------------------
# Descriptions
# ---------------------------------------------------------------------------

_MINOR_WORDS = frozenset(
    "A AN AND AT BUT BY FOR IN NOR OF OFF ON OR OUT SO THE TO UP VIA YET".split()
)
# US states, Canadian provinces and territories. OH reads as a word.
_REGIONS = frozenset(
    """
    AB AK AL AR AZ BC CA CO CT DC DE FL GA HI IA ID IL IN KS KY LA MA MB MD ME
    MI MN MO MS MT NB NC ND NE NH NJ NL NM NS NT NU NV NY OK ON OR PA PEI QC RI
    SC SD SK TN TX UT VA VT WA WI WV WY YT
    """.split()
)

_SPACES_RE = re.compile(r" {2,}")
_ACCOUNT_DIGIT_RE = re.compile(r"[0-9](?=[- 0-9]+[0-9]{3})")
_WORD_RE = re.compile(r"[^- ]{2}[^ ]*")
_REDACTED_RE = re.compile(r"X{3,}", re.IGNORECASE)


def _title_word(m: re.Match[str]) -> str:
    word = m.group()
    upper = word.upper()
    if upper in _MINOR_WORDS:
        if m.start() != 0:
            return word.lower()
    elif upper in _REGIONS:
        return word
    return word[0].upper() + word[1:].lower()


def to_description(full_description: str) -> str:
    """Derive a short, readable description from a raw bank description.

    >>> to_description("PAYMENT TO 1234567890 CA FOR SERVICES")
    'Payment to x7890 CA for Services'
    """

    s = _SPACES_RE.sub(" ", full_description)
    s = _ACCOUNT_DIGIT_RE.sub("X", s)
    s = _WORD_RE.sub(_title_word, s)
    return _REDACTED_RE.sub("x", s)


def prep_description(header: HeaderMap, data: Sequence[Row]) -> None:
    has_short = "Description" in header
    has_full = "Full Description" in header
    if has_short == has_full:
        return
    src = _skip(header, data, "Full Description" if has_full else "Description")
    if src is None:
        return
    j_short = header.derive("Description")
    j_full = header.derive("Full Description")
    for row in data:
        value = get_cell(row, src)
        set_cell(row, j_full, value)
        set_cell(row, j_short, to_description(to_text(value)))


__all__ = [
    "parse_date",
    "prep_amount",
    "prep_date",
    "prep_description",
    "shift_zone",
    "to_amount",
    "to_description",
]

"""Settings and the per-call import context.

``ImportSettings`` holds static configuration read from the environment
(``LEDGER_IMPORT_*`` variables, usually populated from a local ``.env`` by the
CLI). ``ImportContext`` bundles those settings with the collaborators of one
import call: the ledger book, the formula engine factory and the timestamp
stamped on added rows. A context is built once per call and threaded through
every stage; nothing is cached at module level.
"""

from __future__ import annotations

import os
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .errors import ConfigurationError

if TYPE_CHECKING:
    from .engine import FormulaEngine
    from .ledger import LedgerBook

_ENV_PREFIX = "LEDGER_IMPORT_"


def _env(name: str) -> str | None:
    val = os.getenv(_ENV_PREFIX + name)
    if val is None or not val.strip():
        return None
    return val.strip()


def _zone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ConfigurationError(f"Unknown time zone: {name!r}") from exc


@dataclass(frozen=True, slots=True)
class ImportSettings:
    """Static configuration for an import.

    Attributes
    ----------
    time_zone:
        IANA name of the ledger's time zone. Calendar days written to the
        ledger and day-serial comparisons are expressed in this zone.
    local_time_zone:
        Reference zone used to interpret date strings without an explicit
        offset. Defaults to ``time_zone``.
    week_start:
        First day of the week for the derived ``Week`` column (``0`` = Monday
        ... ``6`` = Sunday).
    """

    time_zone: str = "UTC"
    local_time_zone: str | None = None
    week_start: int = 6
    transactions_sheet: str = "Transactions"
    crosswalks_sheet: str = "Crosswalks"
    autocat_sheet: str = "AutoCat"

    def __post_init__(self) -> None:
        if isinstance(self.week_start, bool) or not 0 <= self.week_start <= 6:
            raise ConfigurationError("week_start must be an integer between 0 and 6")
        # Fail fast on unknown zones.
        _zone(self.time_zone)
        if self.local_time_zone is not None:
            _zone(self.local_time_zone)

    @classmethod
    def from_env(cls) -> ImportSettings:
        """Build settings from ``LEDGER_IMPORT_*`` environment variables."""

        kwargs: dict[str, Any] = {}
        if (tz := _env("TIME_ZONE")) is not None:
            kwargs["time_zone"] = tz
        if (local := _env("LOCAL_TIME_ZONE")) is not None:
            kwargs["local_time_zone"] = local
        if (week := _env("WEEK_START")) is not None:
            try:
                kwargs["week_start"] = int(week)
            except ValueError as exc:
                raise ConfigurationError(f"Invalid LEDGER_IMPORT_WEEK_START: {week!r}") from exc
        for key, env_name in (
            ("transactions_sheet", "TRANSACTIONS_SHEET"),
            ("crosswalks_sheet", "CROSSWALKS_SHEET"),
            ("autocat_sheet", "AUTOCAT_SHEET"),
        ):
            if (val := _env(env_name)) is not None:
                kwargs[key] = val
        return cls(**kwargs)

    @property
    def ledger_tz(self) -> ZoneInfo:
        return _zone(self.time_zone)

    @property
    def local_tz(self) -> ZoneInfo:
        return _zone(self.local_time_zone or self.time_zone)


def _default_engine_factory(settings: ImportSettings) -> Callable[[Sequence[Sequence[Any]]], FormulaEngine]:
    from .engine import GridFormulaEngine

    def factory(data: Sequence[Sequence[Any]]) -> FormulaEngine:
        return GridFormulaEngine(data, time_zone=settings.time_zone)

    return factory


@dataclass(slots=True)
class ImportContext:
    """Collaborators and settings for exactly one import call."""

    book: LedgerBook
    settings: ImportSettings = field(default_factory=ImportSettings)
    now: datetime = field(default_factory=lambda: datetime.now(UTC))
    engine_factory: Callable[[Sequence[Sequence[Any]]], FormulaEngine] | None = None

    def __post_init__(self) -> None:
        if self.engine_factory is None:
            self.engine_factory = _default_engine_factory(self.settings)
        if self.now.tzinfo is None:
            raise ValueError("ImportContext.now must be timezone-aware")

    @property
    def ledger_tz(self) -> ZoneInfo:
        return self.settings.ledger_tz

    @property
    def local_tz(self) -> ZoneInfo:
        return self.settings.local_tz

    def make_engine(self, data: Sequence[Sequence[Any]]) -> FormulaEngine:
        assert self.engine_factory is not None  # bound in __post_init__
        return self.engine_factory(data)


__all__ = ["ImportContext", "ImportSettings"]

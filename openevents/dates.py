"""Resolve the date range a listing should cover from raw request input."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Literal

from dateutil import parser as date_parser
from dateutil.relativedelta import relativedelta

from .config import settings
from .utils import local_today

DateKind = Literal["start", "end"]


@dataclass(frozen=True)
class DateRange:
    start: date
    end: date
    warnings: list[str] = field(default_factory=list)


def default_start_date() -> date:
    return local_today()


def default_end_date() -> date:
    return local_today() + relativedelta(months=settings.default_range_months)


_DEFAULTS = {"start": default_start_date, "end": default_end_date}


def is_present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (Mapping, list, tuple)):
        return len(value) > 0
    return True


def parse_date(raw: str) -> date:
    """Parse a user supplied date, raising ``ValueError`` when it is not one."""
    try:
        return date_parser.parse(raw).date()
    except OverflowError as exc:
        raise ValueError(f"Date out of range: {raw!r}") from exc


def date_or_default_for(
    raw_date_params: Any, kind: DateKind
) -> tuple[date, str | None]:
    """Return the requested ``kind`` of date or its default plus a warning.

    ``raw_date_params`` is the ``date`` section of the request. A missing
    section silently yields the default; every other problem yields the
    default together with a message meant for the user.
    """
    default = _DEFAULTS[kind]
    if not is_present(raw_date_params):
        return default(), None
    if not isinstance(raw_date_params, Mapping):
        return default(), f"Can't filter by a malformed {kind} date."
    if kind not in raw_date_params:
        return default(), f"Can't filter by a missing {kind} date."
    value = raw_date_params[kind]
    if not is_present(value):
        return default(), f"Can't filter by an empty {kind} date."
    if not isinstance(value, str):
        return default(), f"Can't filter by an invalid {kind} date."
    try:
        return parse_date(value), None
    except ValueError:
        return default(), f"Can't filter by an invalid {kind} date."


def resolve_date_range(raw_date_params: Any) -> DateRange:
    start, start_warning = date_or_default_for(raw_date_params, "start")
    end, end_warning = date_or_default_for(raw_date_params, "end")
    warnings = [warning for warning in (start_warning, end_warning) if warning]
    return DateRange(start=start, end=end, warnings=warnings)

from __future__ import annotations

from datetime import date

import pytest
from dateutil.relativedelta import relativedelta

from openevents.dates import (
    date_or_default_for,
    default_end_date,
    default_start_date,
    parse_date,
    resolve_date_range,
)
from openevents.utils import local_today


def test_defaults_cover_today_through_three_months():
    today = local_today()
    assert default_start_date() == today
    assert default_end_date() == today + relativedelta(months=3)


def test_missing_date_section_is_silent():
    resolved = resolve_date_range(None)
    assert resolved.start == default_start_date()
    assert resolved.end == default_end_date()
    assert resolved.warnings == []


def test_valid_dates_are_parsed():
    resolved = resolve_date_range({"start": "2024-01-01", "end": "2024-01-31"})
    assert resolved.start == date(2024, 1, 1)
    assert resolved.end == date(2024, 1, 31)
    assert resolved.warnings == []


def test_invalid_end_date_falls_back_with_one_warning():
    resolved = resolve_date_range({"start": "2024-01-01", "end": "not-a-date"})
    assert resolved.start == date(2024, 1, 1)
    assert resolved.end == local_today() + relativedelta(months=3)
    assert resolved.warnings == ["Can't filter by an invalid end date."]


@pytest.mark.parametrize(
    ("raw", "warning"),
    [
        ({"end": "2024-01-31"}, "Can't filter by a missing start date."),
        ({"start": "  ", "end": "2024-01-31"}, "Can't filter by an empty start date."),
        ({"start": ["2024-01-01"], "end": "2024-01-31"}, "Can't filter by an invalid start date."),
    ],
)
def test_each_bad_start_field_yields_its_warning(raw, warning):
    value, message = date_or_default_for(raw, "start")
    assert value == default_start_date()
    assert message == warning


def test_malformed_section_warns_for_both_dates():
    resolved = resolve_date_range("yesterday-ish")
    assert resolved.warnings == [
        "Can't filter by a malformed start date.",
        "Can't filter by a malformed end date.",
    ]


def test_parse_date_rejects_garbage():
    with pytest.raises(ValueError):
        parse_date("not-a-date")

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from model_selector.usage.models import UsageWindow, clamp_percent
from model_selector.usage.parsing import (
    format_reset,
    next_occurrence,
    normalize_label,
    parse_duration,
    parse_month_day,
    parse_month_name_day,
    strip_ansi,
)
from tests.conftest import NOW

pytestmark = pytest.mark.unit


def test_strip_ansi_removes_colour_codes():
    assert strip_ansi("\x1b[32m42% used\x1b[0m") == "42% used"


def test_normalize_label_folds_case_and_whitespace():
    assert normalize_label("  Bonus   Credits ") == "bonus credits"


def test_parse_month_day_before_date_uses_this_year():
    now = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)
    assert parse_month_day("02/10", now) == datetime(2026, 2, 10, tzinfo=timezone.utc)


def test_parse_month_day_after_date_rolls_to_next_year():
    now = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
    assert parse_month_day("02/10", now) == datetime(2027, 2, 10, tzinfo=timezone.utc)


def test_parse_month_day_on_same_day_stays_this_year():
    now = datetime(2026, 2, 10, 18, 30, tzinfo=timezone.utc)
    assert parse_month_day("02/10", now) == datetime(2026, 2, 10, tzinfo=timezone.utc)


def test_feb_29_rolls_to_next_leap_year():
    now = datetime(2026, 1, 15, tzinfo=timezone.utc)
    assert next_occurrence(2, 29, now) == datetime(2028, 2, 29, tzinfo=timezone.utc)


@pytest.mark.parametrize("value", ["13/01", "02/31x", "garbage", "1/2/3"])
def test_parse_month_day_rejects_invalid_values(value):
    assert parse_month_day(value, NOW) is None


def test_parse_month_name_day():
    assert parse_month_name_day("Mar 6, 9:59am", NOW) == datetime(2026, 3, 6, tzinfo=timezone.utc)
    assert parse_month_name_day("Foo 6", NOW) is None


def test_parse_duration():
    assert parse_duration("3h 45m") == timedelta(hours=3, minutes=45)
    assert parse_duration("6d 2h") == timedelta(days=6, hours=2)
    assert parse_duration("45 minutes") == timedelta(minutes=45)
    assert parse_duration("soon") is None


@pytest.mark.parametrize(
    ("delta", "expected"),
    [
        (timedelta(seconds=-5), "now"),
        (timedelta(minutes=45), "45m"),
        (timedelta(hours=3), "3h"),
        (timedelta(hours=3, minutes=5), "3h 5m"),
        (timedelta(days=2, hours=4), "2d 4h"),
        (timedelta(days=2), "2d"),
        (timedelta(days=30), "Feb 14"),
    ],
)
def test_format_reset(delta, expected):
    assert format_reset(NOW + delta, NOW) == expected


def test_window_clamps_used_percent():
    assert UsageWindow(label="x", used_percent=140).used_percent == 100.0
    assert UsageWindow(label="x", used_percent=-3).used_percent == 0.0


def test_window_remaining_is_complement_of_used():
    window = UsageWindow(label="x", used_percent=37.5)
    assert window.remaining_percent == 62.5
    assert window.format_status() == "62.5% left"


def test_clamp_percent_keeps_nan():
    assert clamp_percent(float("nan")) != clamp_percent(float("nan"))

from datetime import date, datetime

import pytest

from inspection_api.fiscal_week import (
    first_saturday_of_july,
    fiscal_week_number,
    fiscal_week_range,
    fiscal_week_to_year_month,
    fiscal_year,
    format_fiscal_week,
    last_saturday_of_june,
)


def test_anchor_saturdays():
    assert last_saturday_of_june(2024) == date(2024, 6, 29)
    assert last_saturday_of_june(2023) == date(2023, 6, 24)
    assert first_saturday_of_july(2024) == date(2024, 7, 6)
    # July 1st 2023 is itself a Saturday
    assert first_saturday_of_july(2023) == date(2023, 7, 1)


@pytest.mark.parametrize(
    "day, week, fy",
    [
        (date(2024, 6, 29), 1, 2025),   # last Saturday of June opens the new year
        (date(2024, 7, 1), 1, 2025),    # before the first July Saturday
        (date(2024, 7, 5), 1, 2025),
        (date(2024, 7, 6), 2, 2025),
        (date(2024, 7, 12), 2, 2025),
        (date(2024, 7, 13), 3, 2025),
        (date(2024, 6, 28), 52, 2024),  # clamped at the end of the year
        (date(2025, 1, 15), 29, 2025),
    ],
)
def test_week_number_and_year(day, week, fy):
    assert fiscal_week_number(day) == week
    assert fiscal_year(day) == fy


def test_accepts_datetimes_and_iso_strings():
    assert fiscal_week_number(datetime(2024, 7, 13, 23, 59)) == 3
    assert fiscal_week_number("2024-07-13") == 3
    assert fiscal_year("2024-07-13T08:00:00") == 2025
    with pytest.raises(ValueError):
        fiscal_week_number("13/07/2024")


def test_week_range_matches_week_number():
    assert fiscal_week_range(2025, 1) == (date(2024, 6, 29), date(2024, 7, 5))
    assert fiscal_week_range(2025, 2) == (date(2024, 7, 6), date(2024, 7, 12))
    start, end = fiscal_week_range(2025, 30)
    assert (end - start).days == 6
    assert fiscal_week_number(start) == 30
    assert fiscal_year(start) == 2025


@pytest.mark.parametrize("week", [0, 53, -1])
def test_week_range_rejects_out_of_range_weeks(week):
    with pytest.raises(ValueError):
        fiscal_week_range(2025, week)


def test_format_fiscal_week():
    assert format_fiscal_week(date(2024, 7, 13)) == "2025-03"
    assert format_fiscal_week(date(2024, 7, 13), style="long") == "2025 Week 03"
    with pytest.raises(ValueError):
        format_fiscal_week(date(2024, 7, 13), style="iso")


def test_fiscal_week_to_year_month():
    assert fiscal_week_to_year_month("202501") == "2406"
    assert fiscal_week_to_year_month("202502") == "2407"
    assert fiscal_week_to_year_month("202401") == "2306"


@pytest.mark.parametrize("value", ["", "2024", "2024AB", "20240101", "202400", "202460"])
def test_fiscal_week_to_year_month_rejects_bad_input(value):
    with pytest.raises(ValueError):
        fiscal_week_to_year_month(value)

from datetime import date

import pytest

from periods import (
    InvalidMonthFilter,
    add_months,
    month_key,
    month_label,
    month_period,
    parse_month,
    short_date,
    trailing_window_start,
)


def test_month_period_covers_whole_calendar_month() -> None:
    period = month_period("2024-03")
    assert period.slug == "2024-03"
    assert period.start == date(2024, 3, 1)
    assert period.end == date(2024, 3, 31)


def test_month_period_handles_leap_february_and_december() -> None:
    assert month_period("2024-02").end == date(2024, 2, 29)
    assert month_period("2023-02").end == date(2023, 2, 28)
    december = month_period("2023-12")
    assert (december.start, december.end) == (date(2023, 12, 1), date(2023, 12, 31))


@pytest.mark.parametrize(
    "token", ["2024-13", "2024-00", "abc", "2024-1", "2024-03-01", "", "0000-05"]
)
def test_parse_month_rejects_malformed_tokens(token: str) -> None:
    with pytest.raises(InvalidMonthFilter):
        parse_month(token)


def test_month_key_round_trips_through_parse_month() -> None:
    for year, month in [(2024, 1), (2023, 12), (999, 7)]:
        assert parse_month(month_key(year, month)) == (year, month)


def test_trailing_window_spans_twelve_months_including_current() -> None:
    assert trailing_window_start(date(2024, 2, 10)) == date(2023, 3, 1)
    assert trailing_window_start(date(2024, 12, 31)) == date(2024, 1, 1)
    assert trailing_window_start(date(2024, 1, 1)) == date(2023, 2, 1)


def test_add_months_crosses_year_boundaries() -> None:
    assert add_months(date(2023, 11, 15), 3) == date(2024, 2, 1)
    assert add_months(date(2024, 1, 1), -1) == date(2023, 12, 1)


def test_labels_and_short_dates_are_locale_independent() -> None:
    assert month_label(2024, 1) == "Jan 2024"
    assert short_date(date(2024, 1, 5)) == "Jan 5, 2024"
    assert short_date(date(2023, 12, 25)) == "Dec 25, 2023"

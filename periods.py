import re
from dataclasses import dataclass
from datetime import date
from typing import Optional

MONTH_ABBR = (
    "Jan",
    "Feb",
    "Mar",
    "Apr",
    "May",
    "Jun",
    "Jul",
    "Aug",
    "Sep",
    "Oct",
    "Nov",
    "Dec",
)

TRAILING_MONTHS = 12

_MONTH_TOKEN = re.compile(r"^([0-9]{4})-([0-9]{2})$")


class InvalidMonthFilter(ValueError):
    pass


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date

    def contains(self, value: date) -> bool:
        return self.start <= value <= self.end


def month_start(year: int, month: int) -> date:
    return date(year, month, 1)


def month_end(year: int, month: int) -> date:
    if month == 12:
        return date(year, 12, 31)
    return date(year, month + 1, 1) - date.resolution


def add_months(d: date, count: int) -> date:
    month_index = (d.year * 12) + (d.month - 1) + count
    year = month_index // 12
    month = (month_index % 12) + 1
    return date(year, month, 1)


def month_key(year: int, month: int) -> str:
    return f"{year:04d}-{month:02d}"


def month_label(year: int, month: int) -> str:
    return f"{MONTH_ABBR[month - 1]} {year}"


def short_date(value: date) -> str:
    """Render a date as ``Jan 5, 2024`` independent of the process locale."""
    return f"{MONTH_ABBR[value.month - 1]} {value.day}, {value.year}"


def parse_month(token: str) -> tuple[int, int]:
    """Parse a ``YYYY-MM`` token into ``(year, month)``.

    Raises InvalidMonthFilter for anything else, including out of range
    months such as ``2024-13``.
    """
    match = _MONTH_TOKEN.match(token.strip())
    if not match:
        raise InvalidMonthFilter(f"Invalid month '{token}', expected YYYY-MM")
    year, month = int(match.group(1)), int(match.group(2))
    if year < 1:
        raise InvalidMonthFilter(f"Invalid year in month '{token}'")
    if not 1 <= month <= 12:
        raise InvalidMonthFilter(f"Invalid month number in '{token}'")
    return year, month


def month_period(token: str) -> Period:
    year, month = parse_month(token)
    return Period(
        month_key(year, month), month_start(year, month), month_end(year, month)
    )


def trailing_window_start(
    today: Optional[date] = None, months: int = TRAILING_MONTHS
) -> date:
    today = today or date.today()
    return add_months(today.replace(day=1), -(months - 1))

# inspection_api/fiscal_week.py
#
# Fiscal calendar used for IQA data:
# - FY<N> runs from the last Saturday of June <N-1> to the Friday before that in June <N>
# - week 1 is the partial week up to the first Saturday on or after July 1
# - week 2 starts on that Saturday; later weeks are plain Saturday-Friday blocks
# - week numbers are clamped to 1..52
from __future__ import annotations
import re
from datetime import date, datetime, timedelta
from typing import Tuple, Union

DateLike = Union[date, datetime, str]

SATURDAY = 5  # date.weekday()
MAX_WEEK = 52
_YEAR_WEEK_RE = re.compile(r"^(\d{4})(\d{2})$")


def _as_date(value: DateLike) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip()[:10])
        except ValueError:
            raise ValueError(f"Invalid date: {value!r}") from None
    raise TypeError(f"Expected date, datetime or ISO string, got {type(value).__name__}")


def last_saturday_of_june(year: int) -> date:
    d = date(year, 6, 30)
    return d - timedelta(days=(d.weekday() - SATURDAY) % 7)


def first_saturday_of_july(year: int) -> date:
    d = date(year, 7, 1)
    return d + timedelta(days=(SATURDAY - d.weekday()) % 7)


def fiscal_week_number(value: DateLike) -> int:
    d = _as_date(value)
    if d.month == 6 and d >= last_saturday_of_june(d.year):
        return 1

    start_year = d.year if d.month >= 7 else d.year - 1
    first_saturday = first_saturday_of_july(start_year)
    if d < first_saturday:
        return 1

    week = (d - first_saturday).days // 7 + 2
    return max(1, min(MAX_WEEK, week))


def fiscal_year(value: DateLike) -> int:
    d = _as_date(value)
    if d.month >= 7:
        return d.year + 1
    if d.month == 6 and d >= last_saturday_of_june(d.year):
        # late June is already week 1 of the next fiscal year
        return d.year + 1
    return d.year


def fiscal_week_range(fy: int, week: int) -> Tuple[date, date]:
    """Return the (start, end) dates, both inclusive, of a fiscal week."""
    if not 1 <= week <= MAX_WEEK:
        raise ValueError(f"Week number must be between 1 and {MAX_WEEK}")

    first_saturday = first_saturday_of_july(fy - 1)
    if week == 1:
        return last_saturday_of_june(fy - 1), first_saturday - timedelta(days=1)

    start = first_saturday + timedelta(days=(week - 2) * 7)
    return start, start + timedelta(days=6)


def format_fiscal_week(value: DateLike, style: str = "short") -> str:
    """'2025-07' (short) or '2025 Week 07' (long)."""
    fy = fiscal_year(value)
    ww = fiscal_week_number(value)
    if style == "long":
        return f"{fy} Week {ww:02d}"
    if style != "short":
        raise ValueError(f"Unknown fiscal week style: {style}")
    return f"{fy}-{ww:02d}"


def fiscal_week_to_year_month(year_week: str) -> str:
    """Translate 'YYYYWW' into the 'YYMM' calendar month the week starts in."""
    match = _YEAR_WEEK_RE.match((year_week or "").strip())
    if not match:
        raise ValueError('Invalid fiscal year week format. Expected YYYYWW (e.g., "202401")')
    fy, week = int(match.group(1)), int(match.group(2))
    start, _ = fiscal_week_range(fy, week)
    return f"{start.year % 100:02d}{start.month:02d}"

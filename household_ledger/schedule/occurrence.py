"""
Occurrence Calculator

Expands a plan transaction into the concrete calendar dates on which it
happens. Pure: the result depends only on the plan's fields.

Rules by frequency:
- day:     the single date TRANDATE_TO
- daily:   every `interval` days from TRANDATE_FROM
- weekly:  the CYCLE_UNIT weekdays (SU..SA) of every `interval`-th
           Sunday-starting week, beginning with the week of TRANDATE_FROM
- monthly: the CYCLE_UNIT days (1..31, or -1/-2/-3 counted from the
           month's last day) of every `interval`-th month
- yearly:  the CYCLE_UNIT MMDD (or MM-DD) dates of every `interval`-th year
- anything else behaves like day

An interval of 0 keeps only the first period (first day, week, month or
year). Every date returned lies within [TRANDATE_FROM, TRANDATE_TO].
"""

import calendar
from datetime import date, timedelta
from typing import Iterator, Optional

from dateutil.relativedelta import relativedelta

from household_ledger.models.finance import Frequency, Transaction


# Sunday-first, matching the week alignment.
WEEKDAY_CODES = ("SU", "MO", "TU", "WE", "TH", "FR", "SA")

# Day tokens counted back from the end of the month.
LAST_DAY_OFFSETS = {-1: 0, -2: 1, -3: 2}


def _split_tokens(cycle_unit: str) -> list[str]:
    return [part.strip() for part in (cycle_unit or "").split(",") if part.strip()]


def _weekday_code(day: date) -> str:
    # date.weekday(): Monday is 0
    return WEEKDAY_CODES[(day.weekday() + 1) % 7]


def _sunday_of_week(day: date) -> date:
    return day - timedelta(days=(day.weekday() + 1) % 7)


def _last_day_of_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def _periods(first: date, last: date, step, interval: int) -> Iterator[date]:
    """Period starts from `first` while <= `last`; only `first` when interval is 0."""
    current = first
    index = 0
    while current <= last:
        yield current
        if interval == 0:
            return
        index += interval
        current = first + step * index


def _resolve_month_day(token: str, year: int, month: int) -> Optional[int]:
    try:
        number = int(token)
    except ValueError:
        return None
    last = _last_day_of_month(year, month)
    if number in LAST_DAY_OFFSETS:
        return max(1, last - LAST_DAY_OFFSETS[number])
    if 1 <= number <= 31:
        return min(number, last)
    return None


def _parse_month_day(token: str) -> Optional[tuple[int, int]]:
    """'0315' or '03-15' -> (3, 15); None when malformed."""
    text = token.replace("-", "")
    if len(text) != 4 or not text.isdigit():
        return None
    month, day = int(text[:2]), int(text[2:])
    if not 1 <= month <= 12 or not 1 <= day <= 31:
        return None
    return month, day


def _daily(start: date, end: date, interval: int) -> list[date]:
    return list(_periods(start, end, timedelta(days=1), interval))


def _weekly(start: date, end: date, interval: int, cycle_unit: str) -> list[date]:
    codes = {token.upper() for token in _split_tokens(cycle_unit)}
    if not codes:
        return []
    dates = []
    for week_start in _periods(_sunday_of_week(start), end, timedelta(weeks=1), interval):
        for offset in range(7):
            day = week_start + timedelta(days=offset)
            if start <= day <= end and _weekday_code(day) in codes:
                dates.append(day)
    return dates


def _monthly(start: date, end: date, interval: int, cycle_unit: str) -> list[date]:
    tokens = _split_tokens(cycle_unit)
    if not tokens:
        return []
    dates = []
    for month_start in _periods(start.replace(day=1), end, relativedelta(months=1), interval):
        found = set()
        for token in tokens:
            day = _resolve_month_day(token, month_start.year, month_start.month)
            if day is None:
                continue
            candidate = month_start.replace(day=day)
            if start <= candidate <= end:
                found.add(candidate)
        dates.extend(sorted(found))
    return dates


def _yearly(start: date, end: date, interval: int, cycle_unit: str) -> list[date]:
    month_days = [md for md in map(_parse_month_day, _split_tokens(cycle_unit)) if md]
    if not month_days:
        return []
    dates = []
    for year_start in _periods(date(start.year, 1, 1), end, relativedelta(years=1), interval):
        found = set()
        for month, day in month_days:
            candidate = date(
                year_start.year,
                month,
                min(day, _last_day_of_month(year_start.year, month)),
            )
            if start <= candidate <= end:
                found.add(candidate)
        dates.extend(sorted(found))
    return dates


def occurrence_dates(plan: Transaction) -> list[date]:
    """
    Ordered occurrence dates of a plan.

    Returns [] when the window is unusable: TRANDATE_TO missing, or
    TRANDATE_FROM missing (or after TRANDATE_TO) for any frequency that
    needs a start date.
    """
    start, end = plan.date_from, plan.date_to
    if end is None:
        return []
    if start is not None and start > end:
        return []

    frequency = plan.frequency
    if frequency not in (
        Frequency.DAILY.value,
        Frequency.WEEKLY.value,
        Frequency.MONTHLY.value,
        Frequency.YEARLY.value,
    ):
        return [end]

    if start is None:
        return []
    if frequency == Frequency.DAILY.value:
        return _daily(start, end, plan.interval)
    if frequency == Frequency.WEEKLY.value:
        return _weekly(start, end, plan.interval, plan.cycle_unit)
    if frequency == Frequency.MONTHLY.value:
        return _monthly(start, end, plan.interval, plan.cycle_unit)
    return _yearly(start, end, plan.interval, plan.cycle_unit)

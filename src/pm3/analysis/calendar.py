"""
PM3 Calendar and Time-Bin Utilities (Functional Core)

Pure, memoised functions.  No I/O.

NPMRDS data is reported in 5-minute epochs (288 per day).  Calculators work
on coarser time bins of 5, 15 or 60 minutes; these helpers convert between
the two and count the valid bins of a year, which are the denominators of
several reported statistics.

Package Location: src/pm3/analysis/calendar.py

Day-of-week convention:
    0 = Sunday ... 6 = Saturday, everywhere in the package.

Daylight Saving Rule:
    On the spring-forward date the local clock skips from 02:00 to 03:00,
    so every bin whose hour is 2 on that date does not exist and is excluded
    from all counts.  The fall-back duplicate hour is not special-cased.
    The spring-forward date is resolved with pytz for the given timezone
    (``US/Eastern`` by default: the second Sunday of March).  A timezone
    without daylight saving skips nothing.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from functools import lru_cache
from types import MappingProxyType
from typing import Callable, Dict, Mapping, Optional, Tuple

from ..utils.timezone import resolve_pytz

EPOCHS_PER_DAY = 288
MINUTES_PER_EPOCH = 5
MINUTES_PER_HOUR = 60

TIME_BIN_SIZES = (5, 15, 60)
DEFAULT_TIMEZONE = "US/Eastern"

_DST_SKIPPED_HOUR = 2


def _check_time_bin_size(time_bin_size: int) -> None:
    if time_bin_size not in TIME_BIN_SIZES:
        raise ValueError(
            f"Unsupported time bin size {time_bin_size!r}; "
            f"expected one of {TIME_BIN_SIZES}"
        )


@lru_cache(maxsize=None)
def get_num_bins_in_day(time_bin_size: int) -> int:
    _check_time_bin_size(time_bin_size)
    return (MINUTES_PER_EPOCH * EPOCHS_PER_DAY) // time_bin_size


@lru_cache(maxsize=None)
def build_time_bin_num_to_hour_table(time_bin_size: int) -> Tuple[int, ...]:
    """Hour of day for each bin number: ``floor(time_bin_size * n / 60)``."""
    return tuple(
        (time_bin_size * n) // MINUTES_PER_HOUR
        for n in range(get_num_bins_in_day(time_bin_size))
    )


def is_leap_year(year: int) -> bool:
    return year % 4 == 0 and (year % 100 != 0 or year % 400 == 0)


@lru_cache(maxsize=None)
def get_num_days_per_month(year: int) -> Tuple[int, ...]:
    return (31, 29 if is_leap_year(year) else 28, 31, 30, 31, 30,
            31, 31, 30, 31, 30, 31)


@lru_cache(maxsize=None)
def get_dst_start_date(year: int, timezone: str = DEFAULT_TIMEZONE) -> Optional[date]:
    """
    Return the local date on which daylight saving time begins.

    The date is the first day of the year whose local noon is in DST while
    the previous day's noon was not.

    Args:
        year: Calendar year.
        timezone: IANA timezone name.

    Returns:
        The spring-forward ``date``, or ``None`` when the zone observes no
        DST transition in that year.
    """
    tz = resolve_pytz(timezone)
    day = date(year, 1, 1)
    previous_in_dst = bool(tz.localize(datetime(year, 1, 1, 12)).dst())

    while day.year == year:
        noon = datetime(day.year, day.month, day.day, 12)
        in_dst = bool(tz.localize(noon).dst())
        if in_dst and not previous_in_dst:
            return day
        previous_in_dst = in_dst
        day += timedelta(days=1)

    return None


@lru_cache(maxsize=None)
def build_date_to_dow_table(year: int) -> Mapping[str, int]:
    """
    Map every ``'YYYY-MM-DD'`` date of *year* to its day of week.

    Returns:
        Read-only mapping; 0 = Sunday.
    """
    table: Dict[str, int] = {}
    day = date(year, 1, 1)
    while day.year == year:
        table[day.isoformat()] = (day.weekday() + 1) % 7
        day += timedelta(days=1)
    return MappingProxyType(table)


def _iter_valid_bins(year: int, time_bin_size: int, timezone: str):
    """Yield ``(dow, hour)`` for every bin of the year that exists locally."""
    dst_start = get_dst_start_date(year, timezone)
    date_to_dow = build_date_to_dow_table(year)
    bin_to_hour = build_time_bin_num_to_hour_table(time_bin_size)

    for month, num_days in enumerate(get_num_days_per_month(year), start=1):
        for day_of_month in range(1, num_days + 1):
            day = date(year, month, day_of_month)
            dow = date_to_dow[day.isoformat()]
            skip_dst_hour = day == dst_start
            for hour in bin_to_hour:
                if skip_dst_hour and hour == _DST_SKIPPED_HOUR:
                    continue
                yield dow, hour


@lru_cache(maxsize=None)
def get_num_bins_for_year(
    year: int,
    time_bin_size: int,
    timezone: str = DEFAULT_TIMEZONE,
) -> int:
    """Number of time bins that exist in *year* at *time_bin_size*."""
    return sum(1 for _ in _iter_valid_bins(year, time_bin_size, timezone))


@lru_cache(maxsize=None)
def get_num_bins_per_time_period_for_year(
    year: int,
    time_bin_size: int,
    time_period_identifier: Callable[..., Optional[str]],
    timezone: str = DEFAULT_TIMEZONE,
) -> Mapping[str, int]:
    """
    Count the existing bins of *year* that fall in each time period.

    Args:
        year: Calendar year.
        time_bin_size: Bin size in minutes.
        time_period_identifier: Hashable callable ``(dow, hour) -> period``,
            normally a ``TimePeriodIdentifier``.
        timezone: IANA timezone used for the spring-forward date.

    Returns:
        Read-only ``{period: count}``.  Bins outside every period are not
        counted and periods with no bins are absent.
    """
    counts: Dict[str, int] = {}
    for dow, hour in _iter_valid_bins(year, time_bin_size, timezone):
        period = time_period_identifier(dow, hour)
        if period is None:
            continue
        counts[period] = counts.get(period, 0) + 1
    return MappingProxyType(counts)

"""
PM3 Time Period Specifications (Functional Core)

Pure data definitions and classification.  No I/O.

A time period spec is a named set of periods; each period is a set of
windows, each window a day-of-week range and an hour range:

    first_dow..last_dow   inclusive, 0 = Sunday ... 6 = Saturday
    start_hour..end_hour  half-open, ``[start_hour, end_hour)``

A window that wraps midnight (e.g. overnight, 20:00 - 06:00) is written as
two windows.  Windows in one spec must never overlap on a ``(dow, hour)``
pair, so classification is unambiguous.

Package Location: src/pm3/analysis/time_periods.py

Registered specs:
    PM3_TIME_PERIOD_SPEC            AMP, MIDD, PMP, WE, OVN
    PM3_ALT_PEAKS_TIME_PERIOD_SPEC  AMP (6-10), PMP (15-19)
    PEAK_HOURS_TIME_PERIOD_SPEC     AMP (6-9),  PMP (16-19)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from .calendar import build_time_bin_num_to_hour_table

NUM_DAYS_IN_WEEK = 7
NUM_HOURS_IN_DAY = 24

# ---------------------------------------------------------------------------
# Period names
# ---------------------------------------------------------------------------

AMP = "AMP"    # AM Peak
MIDD = "MIDD"  # Midday
PMP = "PMP"    # PM Peak
WE = "WE"      # Weekend
OVN = "OVN"    # Overnight

# ---------------------------------------------------------------------------
# Spec names
# ---------------------------------------------------------------------------

MEASURE_DEFAULT_TIME_PERIOD_SPEC = "MEASURE_DEFAULT_TIME_PERIOD_SPEC"
PM3_TIME_PERIOD_SPEC = "PM3_TIME_PERIOD_SPEC"
PM3_ALT_PEAKS_TIME_PERIOD_SPEC = "PM3_ALT_PEAKS_TIME_PERIOD_SPEC"
PEAK_HOURS_TIME_PERIOD_SPEC = "PEAK_HOURS_TIME_PERIOD_SPEC"


class TimePeriodSpecError(ValueError):
    """Raised for malformed, overlapping, or unknown time period specs."""
    pass


@dataclass(frozen=True)
class TimePeriodWindow:
    first_dow: int
    last_dow: int
    start_hour: int
    end_hour: int

    def __post_init__(self) -> None:
        if not 0 <= self.first_dow <= self.last_dow < NUM_DAYS_IN_WEEK:
            raise TimePeriodSpecError(
                f"Invalid day-of-week range {self.first_dow}..{self.last_dow}"
            )
        if not 0 <= self.start_hour < self.end_hour <= NUM_HOURS_IN_DAY:
            raise TimePeriodSpecError(
                f"Invalid hour range [{self.start_hour}, {self.end_hour})"
            )

    def cells(self) -> Iterable[Tuple[int, int]]:
        """Yield every ``(dow, hour)`` pair covered by the window."""
        for dow in range(self.first_dow, self.last_dow + 1):
            for hour in range(self.start_hour, self.end_hour):
                yield dow, hour


@dataclass(frozen=True)
class TimePeriodSpec:
    """
    Immutable mapping of period name to its windows.

    Instances are hashable so that calendar bin counts can be memoised per
    spec.  Overlapping windows raise ``TimePeriodSpecError`` at construction.
    """

    name: str
    periods: Tuple[Tuple[str, Tuple[TimePeriodWindow, ...]], ...]

    def __post_init__(self) -> None:
        seen: Dict[Tuple[int, int], str] = {}
        for period, windows in self.periods:
            for window in windows:
                for cell in window.cells():
                    if cell in seen:
                        raise TimePeriodSpecError(
                            f"{self.name}: {period} overlaps {seen[cell]} "
                            f"at dow={cell[0]}, hour={cell[1]}"
                        )
                    seen[cell] = period

    @classmethod
    def from_mapping(
        cls,
        name: str,
        periods: Mapping[str, Iterable[Tuple[int, int, int, int]]],
    ) -> "TimePeriodSpec":
        """Build a spec from ``{period: [(first_dow, last_dow, start_hour, end_hour), ...]}``."""
        return cls(
            name=name,
            periods=tuple(
                (period, tuple(TimePeriodWindow(*w) for w in windows))
                for period, windows in periods.items()
            ),
        )

    @property
    def time_periods(self) -> List[str]:
        return [period for period, _ in self.periods]

    def subset(self, names: Iterable[str]) -> "TimePeriodSpec":
        wanted = list(names)
        unknown = set(wanted) - set(self.time_periods)
        if unknown:
            raise TimePeriodSpecError(
                f"{self.name} has no periods named {sorted(unknown)}"
            )
        return TimePeriodSpec(
            name=self.name,
            periods=tuple(p for p in self.periods if p[0] in wanted),
        )


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

_WEEKDAYS = (1, 5)
_WEEKEND_DAYS = ((0, 0), (6, 6))
_ALL_DAYS = (0, 6)

TIME_PERIOD_SPECS: Dict[str, TimePeriodSpec] = {
    PM3_TIME_PERIOD_SPEC: TimePeriodSpec.from_mapping(
        PM3_TIME_PERIOD_SPEC,
        {
            AMP: [(*_WEEKDAYS, 6, 10)],
            MIDD: [(*_WEEKDAYS, 10, 16)],
            PMP: [(*_WEEKDAYS, 16, 20)],
            WE: [(*days, 6, 20) for days in _WEEKEND_DAYS],
            OVN: [(*_ALL_DAYS, 20, 24), (*_ALL_DAYS, 0, 6)],
        },
    ),
    PM3_ALT_PEAKS_TIME_PERIOD_SPEC: TimePeriodSpec.from_mapping(
        PM3_ALT_PEAKS_TIME_PERIOD_SPEC,
        {
            AMP: [(*_WEEKDAYS, 6, 10)],
            PMP: [(*_WEEKDAYS, 15, 19)],
        },
    ),
    PEAK_HOURS_TIME_PERIOD_SPEC: TimePeriodSpec.from_mapping(
        PEAK_HOURS_TIME_PERIOD_SPEC,
        {
            AMP: [(*_WEEKDAYS, 6, 9)],
            PMP: [(*_WEEKDAYS, 16, 19)],
        },
    ),
}


def get_time_period_spec(
    name: str,
    measure_default: Optional[TimePeriodSpec] = None,
) -> TimePeriodSpec:
    """
    Resolve a spec name from the registry.

    Args:
        name: A key of ``TIME_PERIOD_SPECS`` or
            ``MEASURE_DEFAULT_TIME_PERIOD_SPEC``.
        measure_default: Spec returned for the measure-default sentinel.

    Raises:
        TimePeriodSpecError: For unknown names, or the sentinel without a
            *measure_default*.
    """
    if name == MEASURE_DEFAULT_TIME_PERIOD_SPEC:
        if measure_default is None:
            raise TimePeriodSpecError("No measure default time period spec given")
        return measure_default
    try:
        return TIME_PERIOD_SPECS[name]
    except KeyError:
        raise TimePeriodSpecError(f"Unknown time period spec: {name!r}") from None


# ---------------------------------------------------------------------------
# Identifier
# ---------------------------------------------------------------------------

class TimePeriodIdentifier:
    """
    Classifies an observation into at most one period of a spec.

    The ``(dow, hour)`` lookup table is built once; when *time_bin_size* is
    given, the bin-number-to-hour table is shared from the calendar module.

    Example::

        identifier = TimePeriodIdentifier(TIME_PERIOD_SPECS[PM3_TIME_PERIOD_SPEC])
        identifier.identify(dow=1, hour=7)          # 'AMP'
        identifier.identify(dow=6, hour=7)          # 'WE'
    """

    def __init__(self, spec: TimePeriodSpec, time_bin_size: Optional[int] = None):
        self.spec = spec
        self.time_bin_size = time_bin_size
        self._table: List[List[Optional[str]]] = [
            [None] * NUM_HOURS_IN_DAY for _ in range(NUM_DAYS_IN_WEEK)
        ]
        for period, windows in spec.periods:
            for window in windows:
                for dow, hour in window.cells():
                    self._table[dow][hour] = period

        self._bin_to_hour: Optional[Tuple[int, ...]] = (
            build_time_bin_num_to_hour_table(time_bin_size)
            if time_bin_size is not None else None
        )

    @property
    def time_periods(self) -> List[str]:
        return self.spec.time_periods

    def identify(
        self,
        dow: int,
        hour: Optional[int] = None,
        time_bin_num: Optional[int] = None,
    ) -> Optional[str]:
        """
        Return the period name for an observation, or ``None``.

        Args:
            dow: Day of week, 0 = Sunday.
            hour: Hour of day.  Takes precedence over *time_bin_num*.
            time_bin_num: Bin number within the day; requires the identifier
                to have been built with a *time_bin_size*.
        """
        if hour is None:
            if time_bin_num is None:
                raise ValueError("identify() requires an hour or a time_bin_num")
            if self._bin_to_hour is None:
                raise ValueError(
                    "identify() by time_bin_num requires a time_bin_size"
                )
            hour = self._bin_to_hour[time_bin_num]

        return self._table[dow][hour]

    def __call__(self, dow: int, hour: Optional[int] = None,
                 time_bin_num: Optional[int] = None) -> Optional[str]:
        return self.identify(dow, hour=hour, time_bin_num=time_bin_num)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TimePeriodIdentifier):
            return NotImplemented
        return (self.spec, self.time_bin_size) == (other.spec, other.time_bin_size)

    def __hash__(self) -> int:
        return hash((self.spec, self.time_bin_size))

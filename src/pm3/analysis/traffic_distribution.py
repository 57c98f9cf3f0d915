"""
PM3 Traffic Distribution Profile Engine (Functional Core)

Pure functions over immutable profile tables.  No I/O: the profile set is
loaded by the Imperative Shell (``pm3.data.reader``) and injected.

Derives, for one class of road segment and one time resolution, the fraction
of a day's directional AADT expected in each (day-of-week, time-bin) cell.
PHED multiplies directional AADT by this fraction to obtain the traffic
volume exposed to each bin's excessive delay.

Package Location: src/pm3/analysis/traffic_distribution.py

Pipeline:
    1. Select the canonical profile name for the day type, congestion level,
       directionality and functional class.
    2. Normalise the native profile to 5-minute bins.  AVAIL profiles are
       native 5-minute; CATTLab profiles are hourly and each hour is split
       evenly across its twelve 5-minute sub-bins (flat split, no smoothing).
    3. Resample to the traffic distribution bin size by summing contiguous
       5-minute fractions.
    4. Map each observation bin onto the distribution bins:
         dist size >= obs size : covering bin's fraction * obs / dist
         dist size <  obs size : sum of the fully contained bins
    5. Multiply by the day-of-week adjustment factor (and, for the monthly
       table, the month adjustment factor).

Caching:
    Steps 1-3 and the per-(dow, bin) tables are memoised per engine in plain
    dicts keyed by frozen dataclasses.  Population is guarded by a lock; a
    lost race only recomputes an identical value.
"""

from __future__ import annotations

import math
import threading
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Dict, Mapping, Sequence, Tuple, Union

from .calendar import EPOCHS_PER_DAY, MINUTES_PER_EPOCH, TIME_BIN_SIZES, get_num_bins_in_day

NUM_DAYS_IN_WEEK = 7
NUM_MONTHS = 12

_SUM_TOLERANCE = 1e-3

DowTable = Tuple[Tuple[float, ...], ...]


class TrafficDistributionProfileError(ValueError):
    """Raised for unknown profiles or tables of the wrong shape."""
    pass


class TrafficDistributionProfilesVersion(str, Enum):
    AVAIL = "AVAIL"      # native 5-minute bins
    CATTLAB = "CATTLAB"  # native hourly bins


class DayType(str, Enum):
    WEEKDAY = "WEEKDAY"
    WEEKEND = "WEEKEND"


class FunctionalClass(str, Enum):
    FREEWAY = "FREEWAY"
    NONFREEWAY = "NONFREEWAY"


class CongestionLevel(str, Enum):
    NO2LOW_CONGESTION = "NO2LOW_CONGESTION"
    MODERATE_CONGESTION = "MODERATE_CONGESTION"
    SEVERE_CONGESTION = "SEVERE_CONGESTION"


class Directionality(str, Enum):
    EVEN_DIST = "EVEN_DIST"
    PEAK_AM = "PEAK_AM"
    PEAK_PM = "PEAK_PM"


def day_type_for_dow(dow: int) -> DayType:
    """Sunday (0) and Saturday (6) are weekend days."""
    return DayType.WEEKDAY if dow % 6 else DayType.WEEKEND


def _value(member: Union[str, Enum]) -> str:
    return member.value if isinstance(member, Enum) else str(member)


def get_traffic_distribution_profile_name(
    day_type: Union[DayType, str],
    congestion_level: Union[CongestionLevel, str],
    directionality: Union[Directionality, str],
    functional_class: Union[FunctionalClass, str],
) -> str:
    """
    Canonical profile name.

    Weekend profiles vary by functional class only; weekday profiles also
    vary by congestion level and directionality.

    Example::

        >>> get_traffic_distribution_profile_name(
        ...     "WEEKDAY", "MODERATE_CONGESTION", "PEAK_PM", "FREEWAY")
        'WEEKDAY_MODERATE_CONGESTION_PEAK_PM_FREEWAY'
    """
    if DayType(_value(day_type)) is DayType.WEEKEND:
        return f"{DayType.WEEKEND.value}_{_value(functional_class)}"
    return "_".join((
        DayType.WEEKDAY.value,
        _value(congestion_level),
        _value(directionality),
        _value(functional_class),
    ))


# ---------------------------------------------------------------------------
# Profile set
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TrafficDistributionProfileSet:
    """
    Immutable source data for the engine.

    Attributes:
        profiles: ``{version: {profile_name: fractions}}`` at the version's
            native resolution.  The fraction count must divide 288.
        dow_adjustment_factors: Seven multipliers, index 0 = Sunday.  They
            are expected to average to 1 over the week; this is not enforced.
        month_adjustment_factors: Twelve multipliers, index 0 = January.
    """

    profiles: Mapping[str, Mapping[str, Tuple[float, ...]]]
    dow_adjustment_factors: Tuple[float, ...] = (1.0,) * NUM_DAYS_IN_WEEK
    month_adjustment_factors: Tuple[float, ...] = (1.0,) * NUM_MONTHS

    def __post_init__(self) -> None:
        if len(self.dow_adjustment_factors) != NUM_DAYS_IN_WEEK:
            raise TrafficDistributionProfileError(
                f"Expected {NUM_DAYS_IN_WEEK} day-of-week adjustment factors, "
                f"got {len(self.dow_adjustment_factors)}"
            )
        if len(self.month_adjustment_factors) != NUM_MONTHS:
            raise TrafficDistributionProfileError(
                f"Expected {NUM_MONTHS} month adjustment factors, "
                f"got {len(self.month_adjustment_factors)}"
            )

        frozen: Dict[str, Mapping[str, Tuple[float, ...]]] = {}
        for version, named in self.profiles.items():
            checked: Dict[str, Tuple[float, ...]] = {}
            for name, fractions in named.items():
                checked[name] = _validate_native_profile(version, name, fractions)
            frozen[_value(version)] = MappingProxyType(checked)
        object.__setattr__(self, "profiles", MappingProxyType(frozen))

    def get_native_profile(
        self,
        version: Union[TrafficDistributionProfilesVersion, str],
        profile_name: str,
    ) -> Tuple[float, ...]:
        try:
            return self.profiles[_value(version)][profile_name]
        except KeyError:
            raise TrafficDistributionProfileError(
                f"No {_value(version)} traffic distribution profile named {profile_name!r}"
            ) from None


def _validate_native_profile(
    version: str, name: str, fractions: Sequence[float]
) -> Tuple[float, ...]:
    values = tuple(float(f) for f in fractions)
    if not values or EPOCHS_PER_DAY % len(values):
        raise TrafficDistributionProfileError(
            f"{_value(version)} profile {name!r} has {len(values)} bins; "
            f"the count must divide {EPOCHS_PER_DAY}"
        )
    if any(v < 0 or math.isnan(v) for v in values):
        raise TrafficDistributionProfileError(
            f"{_value(version)} profile {name!r} has negative or missing fractions"
        )
    if abs(sum(values) - 1.0) > _SUM_TOLERANCE:
        raise TrafficDistributionProfileError(
            f"{_value(version)} profile {name!r} sums to {sum(values)!r}, not 1"
        )
    return values


def to_five_minute_bins(native: Sequence[float]) -> Tuple[float, ...]:
    """Evenly split each native bin across its covered 5-minute epochs."""
    epochs_per_bin = EPOCHS_PER_DAY // len(native)
    return tuple(
        fraction / epochs_per_bin
        for fraction in native
        for _ in range(epochs_per_bin)
    )


def resample_profile(five_minute: Sequence[float], time_bin_size: int) -> Tuple[float, ...]:
    """Sum contiguous 5-minute fractions into *time_bin_size*-minute bins."""
    chunk = time_bin_size // MINUTES_PER_EPOCH
    return tuple(
        sum(five_minute[i:i + chunk])
        for i in range(0, len(five_minute), chunk)
    )


def get_fraction_of_daily_aadt_for_time_bin(
    profile: Sequence[float],
    traffic_distribution_time_bin_size: int,
    time_bin_size: int,
    time_bin_num: int,
) -> float:
    """
    Fraction of daily AADT in one observation bin, before DOW adjustment.

    Args:
        profile: Profile already resampled to
            *traffic_distribution_time_bin_size*.
        traffic_distribution_time_bin_size: Bin size of *profile*, minutes.
        time_bin_size: Observation bin size, minutes.
        time_bin_num: Observation bin number within the day.
    """
    ratio = time_bin_size / traffic_distribution_time_bin_size

    if traffic_distribution_time_bin_size >= time_bin_size:
        # slice of a single distribution bin
        return profile[math.floor(ratio * time_bin_num)] * ratio

    start = math.floor(ratio * time_bin_num)
    end = start + math.floor(ratio)
    return sum(profile[start:end])


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class _BinnedProfileKey:
    version: str
    profile_name: str
    traffic_distribution_time_bin_size: int


@dataclass(frozen=True)
class ProfileTableKey:
    """Canonical cache key of a per-(dow, bin) fraction table."""

    functional_class: str
    congestion_level: str
    directionality: str
    version: str
    traffic_distribution_time_bin_size: int
    time_bin_size: int


@dataclass(eq=False)
class TrafficDistributionProfileEngine:
    """
    Memoising front end over a ``TrafficDistributionProfileSet``.

    One engine is shared, read-only, by every calculator and worker of a
    run.  Results are identical with or without the caches.

    Example::

        engine = TrafficDistributionProfileEngine(profile_set)
        table = engine.get_fraction_of_daily_aadt_by_dow_by_time_bin(
            functional_class="FREEWAY",
            congestion_level="MODERATE_CONGESTION",
            directionality="EVEN_DIST",
            version="CATTLAB",
            traffic_distribution_time_bin_size=60,
            time_bin_size=15,
        )
        table[1][32]   # Monday 08:00-08:15
    """

    profile_set: TrafficDistributionProfileSet
    _binned: Dict[_BinnedProfileKey, Tuple[float, ...]] = field(default_factory=dict, repr=False)
    _tables: Dict[ProfileTableKey, DowTable] = field(default_factory=dict, repr=False)
    _monthly: Dict[ProfileTableKey, Tuple[DowTable, ...]] = field(default_factory=dict, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def _cached(self, cache: dict, key, compute):
        with self._lock:
            if key in cache:
                return cache[key]
        value = compute()
        with self._lock:
            return cache.setdefault(key, value)

    def get_time_binned_profile(
        self,
        version: Union[TrafficDistributionProfilesVersion, str],
        profile_name: str,
        traffic_distribution_time_bin_size: int,
    ) -> Tuple[float, ...]:
        """Canonical profile resampled to *traffic_distribution_time_bin_size*."""
        if traffic_distribution_time_bin_size not in TIME_BIN_SIZES:
            raise TrafficDistributionProfileError(
                f"Unsupported traffic distribution time bin size "
                f"{traffic_distribution_time_bin_size!r}"
            )
        key = _BinnedProfileKey(_value(version), profile_name,
                                traffic_distribution_time_bin_size)

        def compute() -> Tuple[float, ...]:
            native = self.profile_set.get_native_profile(version, profile_name)
            return resample_profile(to_five_minute_bins(native),
                                    traffic_distribution_time_bin_size)

        return self._cached(self._binned, key, compute)

    def get_fraction_of_daily_aadt_by_dow_by_time_bin(
        self,
        functional_class: Union[FunctionalClass, str],
        congestion_level: Union[CongestionLevel, str],
        directionality: Union[Directionality, str],
        version: Union[TrafficDistributionProfilesVersion, str],
        traffic_distribution_time_bin_size: int,
        time_bin_size: int,
        adjust_for_dow: bool = True,
    ) -> DowTable:
        """
        Seven rows (Sunday first) of per-bin fractions of daily AADT.

        Args:
            adjust_for_dow: Apply the day-of-week adjustment factors.  The
                unadjusted table sums to 1 per day.

        Returns:
            ``table[dow][time_bin_num]``.
        """
        key = ProfileTableKey(
            _value(functional_class), _value(congestion_level), _value(directionality),
            _value(version), traffic_distribution_time_bin_size, time_bin_size,
        )
        unadjusted = self._cached(self._tables, key, lambda: self._build_dow_table(key))
        if not adjust_for_dow:
            return unadjusted

        factors = self.profile_set.dow_adjustment_factors
        return tuple(
            tuple(fraction * factors[dow] for fraction in row)
            for dow, row in enumerate(unadjusted)
        )

    def get_fraction_of_daily_aadt_by_month_by_dow_by_time_bin(
        self,
        functional_class: Union[FunctionalClass, str],
        congestion_level: Union[CongestionLevel, str],
        directionality: Union[Directionality, str],
        version: Union[TrafficDistributionProfilesVersion, str],
        traffic_distribution_time_bin_size: int,
        time_bin_size: int,
    ) -> Tuple[DowTable, ...]:
        """
        Twelve DOW-adjusted tables, index ``month - 1``, each scaled by the
        month adjustment factor.
        """
        key = ProfileTableKey(
            _value(functional_class), _value(congestion_level), _value(directionality),
            _value(version), traffic_distribution_time_bin_size, time_bin_size,
        )

        def compute() -> Tuple[DowTable, ...]:
            by_dow = self.get_fraction_of_daily_aadt_by_dow_by_time_bin(
                functional_class, congestion_level, directionality, version,
                traffic_distribution_time_bin_size, time_bin_size,
            )
            return tuple(
                tuple(tuple(fraction * month_factor for fraction in row) for row in by_dow)
                for month_factor in self.profile_set.month_adjustment_factors
            )

        return self._cached(self._monthly, key, compute)

    def _build_dow_table(self, key: ProfileTableKey) -> DowTable:
        profiles = {
            day_type: self.get_time_binned_profile(
                key.version,
                get_traffic_distribution_profile_name(
                    day_type, key.congestion_level, key.directionality, key.functional_class,
                ),
                key.traffic_distribution_time_bin_size,
            )
            for day_type in (DayType.WEEKEND, DayType.WEEKDAY)
        }
        num_bins = get_num_bins_in_day(key.time_bin_size)

        return tuple(
            tuple(
                get_fraction_of_daily_aadt_for_time_bin(
                    profiles[day_type_for_dow(dow)],
                    key.traffic_distribution_time_bin_size,
                    key.time_bin_size,
                    time_bin_num,
                )
                for time_bin_num in range(num_bins)
            )
            for dow in range(NUM_DAYS_IN_WEEK)
        )

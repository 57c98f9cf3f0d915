"""
Shared fixtures for the PM3 test suite.

Provides a synthetic traffic distribution profile set covering every
profile name, builders for TMC attributes and observation rows, and a
small SQLite database populated through ``DatabaseManager``.
"""

import itertools
from typing import Any, Dict, Iterable, List, Optional

import pandas as pd
import pytest

from pm3.analysis.traffic_distribution import (
    CongestionLevel,
    DayType,
    Directionality,
    FunctionalClass,
    TrafficDistributionProfileEngine,
    TrafficDistributionProfileSet,
    TrafficDistributionProfilesVersion,
    get_traffic_distribution_profile_name,
)


def all_profile_names() -> List[str]:
    names = [
        get_traffic_distribution_profile_name(DayType.WEEKEND, None, None, fc)
        for fc in FunctionalClass
    ]
    for cong, dirn, fc in itertools.product(CongestionLevel, Directionality, FunctionalClass):
        names.append(get_traffic_distribution_profile_name(DayType.WEEKDAY, cong, dirn, fc))
    return names


def uniform_profile(num_bins: int) -> tuple:
    return (1.0 / num_bins,) * num_bins


def peaked_hourly_profile() -> tuple:
    """Hourly profile with 10% of the day's traffic in hour 8."""
    rest = 0.9 / 23
    return tuple(0.1 if hour == 8 else rest for hour in range(24))


@pytest.fixture
def profile_set() -> TrafficDistributionProfileSet:
    names = all_profile_names()
    return TrafficDistributionProfileSet(
        profiles={
            TrafficDistributionProfilesVersion.CATTLAB: {n: uniform_profile(24) for n in names},
            TrafficDistributionProfilesVersion.AVAIL: {n: uniform_profile(288) for n in names},
        }
    )


@pytest.fixture
def engine(profile_set) -> TrafficDistributionProfileEngine:
    return TrafficDistributionProfileEngine(profile_set)


@pytest.fixture
def freeway_attrs() -> Dict[str, Any]:
    """One-mile freeway TMC, 60 mph limit, 9600 directional AADT."""
    return {
        "tmc": "110+04482",
        "miles": 1.0,
        "avg_speedlimit": 60,
        "functional_class": "FREEWAY",
        "congestion_level": "MODERATE_CONGESTION",
        "directionality": "EVEN_DIST",
        "directional_aadt": 9600.0,
        "avg_vehicle_occupancy": 1.5,
        "directional_aadt_pass": 8640.0,
        "avg_vehicle_occupancy_pass": 1.7,
        "directional_aadt_singl": 480.0,
        "avg_vehicle_occupancy_singl": 10.7,
        "directional_aadt_combi": 480.0,
        "avg_vehicle_occupancy_combi": 1.0,
        "directional_aadt_truck": 960.0,
        "avg_vehicle_occupancy_truck": 5.85,
    }


def make_observation(
    tmc: str,
    date: str,
    dow: int,
    time_bin_num: int,
    time_bin_size: int = 15,
    **values: Optional[float],
) -> Dict[str, Any]:
    """One observation row; *values* are the metric columns."""
    row = {
        "tmc": tmc,
        "date": date,
        "month": int(date[5:7]),
        "dow": dow,
        "hour": time_bin_size * time_bin_num // 60,
        "time_bin_num": time_bin_num,
    }
    row.update(values)
    return row


def make_observations(
    tmc: str,
    key: str,
    values: Iterable[float],
    date: str = "2019-03-04",
    dow: int = 1,
    first_bin: int = 32,
    time_bin_size: int = 15,
) -> pd.DataFrame:
    """Consecutive bins of one day carrying *values* under *key*."""
    return pd.DataFrame([
        make_observation(tmc, date, dow, first_bin + i, time_bin_size, **{key: v})
        for i, v in enumerate(values)
    ])


@pytest.fixture
def observation_builder():
    return make_observation

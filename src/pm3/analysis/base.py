"""
PM3 Calculator Interface and Shared Helpers (Functional Core)

Package Location: src/pm3/analysis/base.py

Calculator Contract:
    Every measure calculator exposes exactly two members to the driver:

    ``required_tmc_metadata``
        Read-only set of TMC attribute names the calculator reads, so the
        metadata source can project only the needed columns.
    ``calculate_for_tmc(attrs, data)``
        Compute the measure for one TMC from its attributes and its
        observation rows.  Accumulators are local to the call.

Observation rows:
    A DataFrame (or iterable of mappings) with columns
    ``tmc, date, month, dow, hour, time_bin_num`` plus one column per
    metric data key (see ``config.npmrds_data_key``).  Rows are processed
    in ``(date, time_bin_num)`` order; a row belonging to another TMC is a
    fatal input-contract violation.
"""

from __future__ import annotations

import math
from enum import Enum
from typing import (
    Any, Dict, FrozenSet, Iterable, Mapping, NamedTuple, Optional, Protocol,
    Tuple, Union, runtime_checkable,
)

import pandas as pd

from .config import NpmrdsDataSource

OBSERVATION_COLUMNS = ("tmc", "date", "month", "dow", "hour", "time_bin_num")

SEC_PER_HOUR = 3600
SEC_PER_MINUTE = 60

Observations = Union[pd.DataFrame, Iterable[Mapping[str, Any]]]


class TmcMismatchError(ValueError):
    """Raised when an observation row belongs to a different TMC."""
    pass


class MissingTmcAttributeError(ValueError):
    """Raised when a TMC attribute a calculation cannot do without is empty."""
    pass


@runtime_checkable
class MeasureCalculator(Protocol):
    """Two-member contract shared by every measure calculator."""

    @property
    def required_tmc_metadata(self) -> FrozenSet[str]:
        ...

    def calculate_for_tmc(self, attrs: Mapping[str, Any], data: Observations) -> Dict[str, Any]:
        ...


class ThresholdSpeedCalculator:
    """
    PHED threshold speed: 60% of the posted speed limit, never below 20 mph.
    """

    SPEED_LIMIT_FACTOR = 0.6
    MIN_THRESHOLD_SPEED_MPH = 20

    @property
    def required_tmc_metadata(self) -> FrozenSet[str]:
        return frozenset({"avg_speedlimit"})

    def calculate_threshold_speed(self, attrs: Mapping[str, Any]) -> float:
        speed_limit = require_tmc_attribute(attrs, "avg_speedlimit")
        return max(speed_limit * self.SPEED_LIMIT_FACTOR,
                   self.MIN_THRESHOLD_SPEED_MPH)


# ---------------------------------------------------------------------------
# Vehicle classes
# ---------------------------------------------------------------------------

class VehicleClass(str, Enum):
    ALL = "all"
    PASS = "pass"
    SINGL = "singl"  # single-unit trucks and buses
    COMBI = "combi"  # combination trucks
    TRUCK = "truck"  # singl + combi


class VehicleClassAttributes(NamedTuple):
    directional_aadt: str
    avg_vehicle_occupancy: str


VEHICLE_CLASS_ATTRIBUTES: Dict[VehicleClass, VehicleClassAttributes] = {
    VehicleClass.ALL: VehicleClassAttributes("directional_aadt", "avg_vehicle_occupancy"),
    VehicleClass.PASS: VehicleClassAttributes("directional_aadt_pass", "avg_vehicle_occupancy_pass"),
    VehicleClass.SINGL: VehicleClassAttributes("directional_aadt_singl", "avg_vehicle_occupancy_singl"),
    VehicleClass.COMBI: VehicleClassAttributes("directional_aadt_combi", "avg_vehicle_occupancy_combi"),
    VehicleClass.TRUCK: VehicleClassAttributes("directional_aadt_truck", "avg_vehicle_occupancy_truck"),
}

VEHICLE_CLASSES_BY_DATA_SOURCE: Dict[NpmrdsDataSource, Tuple[VehicleClass, ...]] = {
    NpmrdsDataSource.ALL: (VehicleClass.ALL,),
    NpmrdsDataSource.PASS: (VehicleClass.PASS,),
    NpmrdsDataSource.TRUCK: (VehicleClass.SINGL, VehicleClass.COMBI, VehicleClass.TRUCK),
}


# ---------------------------------------------------------------------------
# Observation helpers
# ---------------------------------------------------------------------------

def prepare_observations(data: Observations, tmc: str) -> pd.DataFrame:
    """
    Return the observations as a DataFrame sorted by ``(date, time_bin_num)``.

    Raises:
        TmcMismatchError: If any row's ``tmc`` differs from *tmc*.
        KeyError: If a required observation column is missing.
    """
    df = data if isinstance(data, pd.DataFrame) else pd.DataFrame(list(data))
    if df.empty:
        return pd.DataFrame(columns=list(OBSERVATION_COLUMNS))

    missing = [c for c in OBSERVATION_COLUMNS if c not in df.columns]
    if missing:
        raise KeyError(f"Observation rows are missing columns: {missing}")

    mismatched = df.loc[df["tmc"] != tmc, "tmc"]
    if not mismatched.empty:
        raise TmcMismatchError(
            f"Observation for TMC {mismatched.iloc[0]!r} passed to the "
            f"calculation of TMC {tmc!r}"
        )

    return df.sort_values(["date", "time_bin_num"], kind="mergesort").reset_index(drop=True)


def is_missing(value: Any) -> bool:
    if value is None:
        return True
    try:
        return math.isnan(value)
    except TypeError:
        return False


def require_tmc_attribute(attrs: Mapping[str, Any], name: str) -> float:
    """
    Numeric TMC attribute that must be present.

    Raises:
        MissingTmcAttributeError: If *name* is absent, ``None`` or NaN.
    """
    value = attrs.get(name)
    if is_missing(value):
        raise MissingTmcAttributeError(
            f"TMC {attrs.get('tmc')!r} has no value for {name!r}"
        )
    return float(value)


def select_metric_value(
    row: Mapping[str, Any],
    primary_key: str,
    secondary_key: Optional[str] = None,
) -> Optional[float]:
    """Primary metric value, falling back to the secondary key, else ``None``."""
    value = row.get(primary_key)
    if is_missing(value) and secondary_key is not None:
        value = row.get(secondary_key)
    return None if is_missing(value) else float(value)


def speed_to_travel_time(miles: float, speed: float) -> Optional[float]:
    """Travel time in seconds: ``miles / mph * 3600``.  Zero speed is missing."""
    if not speed:
        return None
    return miles / speed * SEC_PER_HOUR

"""
PM3 Travel Time Index Calculator (Functional Core)

Pure computation.  No I/O.

Package Location: src/pm3/analysis/tti.py

Definitions:
    Free-flow travel time
        15th percentile (R-7) of the travel times observed between 06:00 and
        22:00 outside the weekday peaks: weekends, weekdays 09:00-16:00 and
        weekdays 19:00-22:00.
    TTI (per peak)
        Mean travel time of the peak's observations / free-flow travel time.
    TTI (overall)
        Mean travel time over every peak observation / free-flow travel time.

    Travel times of zero are treated as missing.  A peak with no data is
    omitted from ``tti_by_time_period``; without free-flow data every TTI is
    ``None``.
"""

from __future__ import annotations

from typing import Any, Dict, FrozenSet, List, Mapping, Optional

import numpy as np
import pandas as pd

from .base import Observations, is_missing, prepare_observations, speed_to_travel_time
from .config import (
    CalculatorConfig,
    MeanType,
    NpmrdsDataSource,
    NpmrdsMetric,
    npmrds_data_key,
    resolve_config,
)
from .math_utils import quantile_sorted
from .time_periods import (
    MEASURE_DEFAULT_TIME_PERIOD_SPEC,
    PEAK_HOURS_TIME_PERIOD_SPEC,
    TIME_PERIOD_SPECS,
    TimePeriodIdentifier,
    TimePeriodSpec,
    get_time_period_spec,
)

TTI = "TTI"

FREEFLOW_PCTL = 0.15
FREEFLOW = "FREEFLOW"

# Off-peak daytime hours from which free flow is drawn.
FREEFLOW_TIME_PERIOD_SPEC = TimePeriodSpec.from_mapping(
    "FREEFLOW_TIME_PERIOD_SPEC",
    {
        FREEFLOW: [
            (0, 0, 6, 22),
            (6, 6, 6, 22),
            (1, 5, 9, 16),
            (1, 5, 19, 22),
        ],
    },
)


class TravelTimeIndexCalculator:
    """
    Travel Time Index for one TMC at a time.

    ``calculate_freeflow`` is a separate method so callers (and tests) can
    substitute an externally computed free-flow travel time.
    """

    measure = TTI

    config_defaults: Dict[str, Any] = {
        "mean_type": MeanType.ARITHMETIC,
        "npmrds_data_source": NpmrdsDataSource.ALL,
        "npmrds_metric": NpmrdsMetric.TRAVEL_TIME,
        "time_period_spec": MEASURE_DEFAULT_TIME_PERIOD_SPEC,
        "time_bin_size": 15,
    }
    config_options: Dict[str, Any] = {
        "mean_type": tuple(MeanType),
        "npmrds_data_source": tuple(NpmrdsDataSource),
        "npmrds_metric": tuple(NpmrdsMetric),
    }

    default_time_period_spec = TIME_PERIOD_SPECS[PEAK_HOURS_TIME_PERIOD_SPEC]

    def __init__(self, **params: Any):
        self.config: CalculatorConfig = resolve_config(
            self.config_defaults, self.config_options, **params
        )
        cfg = self.config

        self.time_period_spec = get_time_period_spec(
            cfg.time_period_spec, self.default_time_period_spec
        )
        self.time_period_identifier = TimePeriodIdentifier(
            self.time_period_spec, cfg.time_bin_size
        )
        self.freeflow_identifier = TimePeriodIdentifier(
            FREEFLOW_TIME_PERIOD_SPEC, cfg.time_bin_size
        )
        self.npmrds_data_key = npmrds_data_key(
            cfg.mean_type, cfg.npmrds_metric, cfg.npmrds_data_source
        )
        self.npmrds_data_keys: List[str] = [self.npmrds_data_key]
        self.is_canonical = cfg.is_canonical(self.config_defaults)

    @property
    def required_tmc_metadata(self) -> FrozenSet[str]:
        if self.config.is_speed_based:
            return frozenset({"tmc", "miles"})
        return frozenset({"tmc"})

    def _travel_times(self, attrs: Mapping[str, Any], observations: pd.DataFrame) -> pd.Series:
        """Per-row travel times in seconds; missing and zero values are NaN."""
        if observations.empty or self.npmrds_data_key not in observations.columns:
            return pd.Series(np.nan, index=observations.index, dtype=float)

        values = observations[self.npmrds_data_key].astype(float)
        if self.config.is_speed_based:
            miles = attrs["miles"]
            values = values.map(
                lambda v: np.nan if is_missing(v) else speed_to_travel_time(miles, v)
            ).astype(float)
        return values.where(values > 0)

    def calculate_freeflow(self, attrs: Mapping[str, Any], observations: pd.DataFrame) -> Dict[str, Optional[float]]:
        travel_times = self._travel_times(attrs, observations)
        in_freeflow = [
            self.freeflow_identifier(dow, hour) is not None
            for dow, hour in zip(observations["dow"], observations["hour"])
        ]
        sample = np.sort(travel_times[in_freeflow].dropna().to_numpy())
        if sample.size == 0:
            return {"fifteenth_pctl_travel_time": None}
        return {"fifteenth_pctl_travel_time": quantile_sorted(sample, FREEFLOW_PCTL)}

    def calculate_for_tmc(self, attrs: Mapping[str, Any], data: Observations) -> Dict[str, Any]:
        """
        Returns:
            ``{tmc, freeflow_tt, tti, tti_by_time_period}``.
        """
        tmc = attrs["tmc"]
        observations = prepare_observations(data, tmc)

        freeflow_tt = self.calculate_freeflow(attrs, observations)["fifteenth_pctl_travel_time"]

        travel_times = self._travel_times(attrs, observations)
        periods = pd.Series(
            [self.time_period_identifier(dow, hour)
             for dow, hour in zip(observations["dow"], observations["hour"])],
            index=observations.index,
            dtype=object,
        )
        peak = travel_times[periods.notna()].dropna()

        tti_by_time_period: Dict[str, Optional[float]] = {}
        tti: Optional[float] = None

        if freeflow_tt:
            for time_period, group in peak.groupby(periods[peak.index]):
                tti_by_time_period[time_period] = float(group.mean()) / freeflow_tt
            if not peak.empty:
                tti = float(peak.mean()) / freeflow_tt

        return {
            "tmc": tmc,
            "freeflow_tt": freeflow_tt,
            "tti": tti,
            "tti_by_time_period": tti_by_time_period,
        }

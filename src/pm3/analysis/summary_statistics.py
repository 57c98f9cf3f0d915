"""
PM3 Summary Statistics Calculator (Functional Core)

Pure computation.  No I/O.

Package Location: src/pm3/analysis/summary_statistics.py

Describes the distribution of one binned metric in each time period of a
spec (by default every PM3 period).  Statistics are taken over the
period's non-missing, positive values in the configured metric's own
units, so a speed configuration summarises speeds:

    count, mean, min, max, and the R-7 percentiles in ``PERCENTILES``

A period with no usable value is omitted.
"""

from __future__ import annotations

from functools import cmp_to_key
from typing import Any, Dict, FrozenSet, List, Mapping

import numpy as np

from .base import Observations, is_missing, prepare_observations
from .config import (
    CalculatorConfig,
    MeanType,
    NpmrdsDataSource,
    NpmrdsMetric,
    npmrds_data_key,
    resolve_config,
)
from .math_utils import numbers_comparator, quantile_sorted
from .time_periods import (
    MEASURE_DEFAULT_TIME_PERIOD_SPEC,
    PM3_TIME_PERIOD_SPEC,
    TIME_PERIOD_SPECS,
    TimePeriodIdentifier,
    get_time_period_spec,
)

SUMMARY_STATISTICS = "SUMMARY_STATISTICS"

PERCENTILES = (5, 25, 50, 75, 95)


def _pctl_name(pctl: int) -> str:
    return f"pctl_{pctl}"


class SummaryStatisticsCalculator:
    """
    Per-period distribution of one metric for one TMC at a time.

    Example::

        calc = SummaryStatisticsCalculator(npmrds_metric="speed")
        stats = calc.calculate_for_tmc(attrs, observations_df)
        stats["summary_statistics_by_time_period"]["AMP"]["pctl_50"]
    """

    measure = SUMMARY_STATISTICS

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
        "npmrds_metric": (NpmrdsMetric.TRAVEL_TIME, NpmrdsMetric.SPEED),
    }

    default_time_period_spec = TIME_PERIOD_SPECS[PM3_TIME_PERIOD_SPEC]

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
        self.npmrds_data_key = npmrds_data_key(
            cfg.mean_type, cfg.npmrds_metric, cfg.npmrds_data_source
        )
        self.npmrds_data_keys: List[str] = [self.npmrds_data_key]
        self.is_canonical = cfg.is_canonical(self.config_defaults)

    @property
    def required_tmc_metadata(self) -> FrozenSet[str]:
        return frozenset({"tmc"})

    def calculate_for_tmc(self, attrs: Mapping[str, Any], data: Observations) -> Dict[str, Any]:
        """
        Summarise the metric in every time period that has data.

        Returns:
            ``{tmc, npmrds_data_key, summary_statistics_by_time_period}``
            with one ``{count, mean, min, max, pctl_*}`` mapping per period.

        Raises:
            TmcMismatchError: If a row belongs to another TMC.
        """
        tmc = attrs["tmc"]
        observations = prepare_observations(data, tmc)

        values_by_time_period: Dict[str, List[float]] = {}
        for row in observations.to_dict("records"):
            time_period = self.time_period_identifier(row["dow"], row["hour"])
            if time_period is None:
                continue
            value = row.get(self.npmrds_data_key)
            if is_missing(value) or value <= 0:
                continue
            values_by_time_period.setdefault(time_period, []).append(float(value))

        stats_by_time_period: Dict[str, Dict[str, float]] = {}
        for time_period in self.time_period_spec.time_periods:
            values = values_by_time_period.get(time_period)
            if not values:
                continue
            values.sort(key=cmp_to_key(numbers_comparator))

            stats: Dict[str, float] = {
                "count": len(values),
                "mean": float(np.mean(values)),
                "min": values[0],
                "max": values[-1],
            }
            for pctl in PERCENTILES:
                stats[_pctl_name(pctl)] = quantile_sorted(values, pctl / 100)
            stats_by_time_period[time_period] = stats

        return {
            "tmc": tmc,
            "npmrds_data_key": self.npmrds_data_key,
            "summary_statistics_by_time_period": stats_by_time_period,
        }

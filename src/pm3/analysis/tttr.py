"""
PM3 Truck Travel Time Reliability Calculator (Functional Core)

Pure computation.  No I/O.

Package Location: src/pm3/analysis/tttr.py

Final Rule (23 CFR 490.611):
    TTTR for a reporting segment and time period is the 95th percentile
    truck travel time divided by the 50th percentile truck travel time,
    rounded to the nearest hundredth.  The percentile travel times used in
    the ratio are NOT rounded; the reported percentile travel times are
    rounded to the nearest second.

Percentiles:
    R-7 sample quantiles (``h = p * (n - 1)``, linear interpolation between
    order statistics), over the period's non-missing values sorted
    ascending.

Speed configuration:
    Speeds are inverted to travel times (``miles / mph * 3600``) before the
    percentiles are taken; the reported percentiles are inverted back to
    speeds before rounding.
"""

from __future__ import annotations

from functools import cmp_to_key
from typing import Any, Dict, FrozenSet, List, Mapping

from .base import (
    SEC_PER_HOUR,
    Observations,
    is_missing,
    prepare_observations,
    speed_to_travel_time,
)
from .config import (
    CalculatorConfig,
    MeanType,
    NpmrdsDataSource,
    NpmrdsMetric,
    npmrds_data_key,
    resolve_config,
)
from .math_utils import numbers_comparator, precision_round, quantile_sorted
from .time_periods import (
    AMP,
    MEASURE_DEFAULT_TIME_PERIOD_SPEC,
    MIDD,
    OVN,
    PM3_TIME_PERIOD_SPEC,
    PMP,
    TIME_PERIOD_SPECS,
    WE,
    TimePeriodIdentifier,
    get_time_period_spec,
)

TTTR = "TTTR"

FIFTIETH_PCTL = 0.5
NINETYFIFTH_PCTL = 0.95


class TttrCalculator:
    """
    Truck Travel Time Reliability for one TMC at a time.

    Example::

        calc = TttrCalculator(year=2019)
        calc.calculate_for_tmc(attrs, observations_df)["tttr_by_time_period"]
        # {'AMP': 1.31, 'MIDD': 1.12, 'PMP': 1.54, 'WE': 1.08, 'OVN': 1.05}
    """

    measure = TTTR

    config_defaults: Dict[str, Any] = {
        "mean_type": MeanType.ARITHMETIC,
        "npmrds_data_source": NpmrdsDataSource.TRUCK,
        "npmrds_metric": NpmrdsMetric.TRAVEL_TIME,
        "time_period_spec": MEASURE_DEFAULT_TIME_PERIOD_SPEC,
        "time_bin_size": 15,
    }
    config_options: Dict[str, Any] = {
        "mean_type": tuple(MeanType),
        "npmrds_data_source": tuple(NpmrdsDataSource),
        "npmrds_metric": tuple(NpmrdsMetric),
    }

    default_time_period_spec = TIME_PERIOD_SPECS[PM3_TIME_PERIOD_SPEC].subset(
        [AMP, MIDD, PMP, WE, OVN]
    )

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
        if self.config.is_speed_based:
            return frozenset({"tmc", "miles"})
        return frozenset({"tmc"})

    def calculate_for_tmc(self, attrs: Mapping[str, Any], data: Observations) -> Dict[str, Any]:
        """
        Compute per-period percentile travel times and their ratio.

        Periods without a single non-missing value are omitted from every
        output mapping.

        Returns:
            ``{tmc, fiftieth_pctls_by_time_period,
            ninetyfifth_pctls_by_time_period, tttr_by_time_period, tttr}``
            where ``tttr`` is the largest period ratio (``None`` if no
            period has data).
        """
        tmc = attrs["tmc"]
        speed_based = self.config.is_speed_based
        miles = attrs["miles"] if speed_based else None

        observations = prepare_observations(data, tmc)

        travel_times_by_time_period: Dict[str, List[float]] = {}
        for row in observations.to_dict("records"):
            time_period = self.time_period_identifier(row["dow"], row["hour"])
            if time_period is None:
                continue

            value = row.get(self.npmrds_data_key)
            if is_missing(value):
                continue
            travel_time = speed_to_travel_time(miles, value) if speed_based else float(value)
            if travel_time is None or travel_time <= 0:
                continue

            travel_times_by_time_period.setdefault(time_period, []).append(travel_time)

        fiftieth: Dict[str, float] = {}
        ninetyfifth: Dict[str, float] = {}
        tttr_by_time_period: Dict[str, float] = {}

        for time_period in self.time_period_spec.time_periods:
            travel_times = travel_times_by_time_period.get(time_period)
            if not travel_times:
                continue
            travel_times.sort(key=cmp_to_key(numbers_comparator))

            p50 = quantile_sorted(travel_times, FIFTIETH_PCTL)
            p95 = quantile_sorted(travel_times, NINETYFIFTH_PCTL)

            tttr_by_time_period[time_period] = precision_round(p95 / p50, 2)
            fiftieth[time_period] = self._report(p50, miles)
            ninetyfifth[time_period] = self._report(p95, miles)

        return {
            "tmc": tmc,
            "fiftieth_pctls_by_time_period": fiftieth,
            "ninetyfifth_pctls_by_time_period": ninetyfifth,
            "tttr_by_time_period": tttr_by_time_period,
            "tttr": max(tttr_by_time_period.values(), default=None),
        }

    def _report(self, travel_time_pctl: float, miles: float) -> float:
        """Round a percentile for reporting, as a speed when speed based."""
        if self.config.is_speed_based:
            return precision_round(miles / travel_time_pctl * SEC_PER_HOUR)
        return precision_round(travel_time_pctl)

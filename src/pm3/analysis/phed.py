"""
PM3 Peak Hour Excessive Delay Calculator (Functional Core)

Pure computation.  No I/O: the traffic distribution engine is injected and
observation rows are handed in fully materialised.

Package Location: src/pm3/analysis/phed.py

Per observation (sorted by date, time bin):
    1. Classify into a peak period; rows outside every period are skipped.
    2. Travel time, seconds (``miles / speed * 3600`` when speed based).
    3. Threshold travel time = ``miles / threshold_speed * 3600`` with
       ``threshold_speed = max(0.6 * speed limit, 20 mph)``.
    4. Excessive delay = ``min(tt - threshold, 60 * bin minutes)`` seconds,
       converted to hours and floored at zero.
    5. Traffic volume = directional AADT * fraction of daily AADT for the
       (month, dow, bin); vehicle-hours = delay hours * volume, accumulated
       per period and vehicle class.
    6. Person-hours = vehicle-hours * average vehicle occupancy.

Rounding Order (``round_travel_times``):
    Half away from zero, at exactly these points and in this order:

        threshold travel time   round(round(miles, 3) / speed * 3600)
        travel time             0 decimals
        excess delay seconds    0 decimals
        excess delay hours      3 decimals
        traffic volume          1 decimal
        person-hours            3 decimals, from the UNROUNDED summed
                                vehicle-hours * AVO
        vehicle-hours           3 decimals, after the whole year is summed

    The Final Rule does not round the per-bin delay * volume products, nor
    their sum before multiplying by AVO, nor AVO itself.  Vehicle-hours are
    therefore rounded only after person-hours are derived from them.
"""

from __future__ import annotations

from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Tuple

from .base import (
    SEC_PER_HOUR,
    SEC_PER_MINUTE,
    VEHICLE_CLASS_ATTRIBUTES,
    VEHICLE_CLASSES_BY_DATA_SOURCE,
    Observations,
    ThresholdSpeedCalculator,
    VehicleClass,
    is_missing,
    prepare_observations,
    require_tmc_attribute,
    select_metric_value,
    speed_to_travel_time,
)
from .config import (
    CONFIG_OPTIONS,
    CalculatorConfig,
    MeanType,
    NpmrdsDataSource,
    NpmrdsMetric,
    npmrds_data_key,
    resolve_config,
)
from .math_utils import precision_round
from .time_periods import (
    MEASURE_DEFAULT_TIME_PERIOD_SPEC,
    PM3_ALT_PEAKS_TIME_PERIOD_SPEC,
    TIME_PERIOD_SPECS,
    TimePeriodIdentifier,
    get_time_period_spec,
)
from .traffic_distribution import (
    NUM_MONTHS,
    TrafficDistributionProfileEngine,
    TrafficDistributionProfileError,
    TrafficDistributionProfilesVersion,
)

PHED = "PHED"

_MEASURE_NAMES = {
    NpmrdsDataSource.ALL: PHED,
    NpmrdsDataSource.PASS: f"{PHED}_PASS",
    NpmrdsDataSource.TRUCK: f"{PHED}_TRUCK",
}


def _occupancy(value: Any) -> float:
    return 0.0 if is_missing(value) else float(value)


class PhedCalculator:
    """
    Peak Hour Excessive Delay for one TMC at a time.

    Example::

        calc = PhedCalculator(engine, year=2019, time_bin_size=15)
        result = calc.calculate_for_tmc(attrs, observations_df)
        result["xdelay_per_hrs_by_veh_class"]["all"]

    Args:
        traffic_distribution_engine: Shared, read-only profile engine.
        **params: Configuration overrides; see ``config_defaults`` and
            ``pm3.analysis.config``.

    Raises:
        CalculatorConfigError: On any unrecognised option or value.
    """

    measure = PHED

    config_defaults: Dict[str, Any] = {
        "mean_type": MeanType.ARITHMETIC,
        "npmrds_data_source": NpmrdsDataSource.ALL,
        "npmrds_metric": NpmrdsMetric.TRAVEL_TIME,
        "time_period_spec": MEASURE_DEFAULT_TIME_PERIOD_SPEC,
        "time_bin_size": 15,
        "traffic_distribution_time_bin_size": 60,
        "traffic_distribution_profiles_version": TrafficDistributionProfilesVersion.CATTLAB,
        "round_travel_times": True,
    }
    config_options = CONFIG_OPTIONS

    default_time_period_spec = TIME_PERIOD_SPECS[PM3_ALT_PEAKS_TIME_PERIOD_SPEC]

    def __init__(self, traffic_distribution_engine: TrafficDistributionProfileEngine, **params: Any):
        self.config: CalculatorConfig = resolve_config(
            self.config_defaults, self.config_options, **params
        )
        self.traffic_distribution_engine = traffic_distribution_engine
        self.threshold_speed_calculator = ThresholdSpeedCalculator()

        cfg = self.config
        self.measure = _MEASURE_NAMES[cfg.npmrds_data_source]

        self.time_period_spec = get_time_period_spec(
            cfg.time_period_spec, self.default_time_period_spec
        )
        self.time_period_identifier = TimePeriodIdentifier(
            self.time_period_spec, cfg.time_bin_size
        )
        self.time_periods: List[str] = self.time_period_spec.time_periods

        self.vehicle_classes: Tuple[VehicleClass, ...] = (
            VEHICLE_CLASSES_BY_DATA_SOURCE[cfg.npmrds_data_source]
        )

        self.primary_npmrds_data_key = npmrds_data_key(
            cfg.mean_type, cfg.npmrds_metric, cfg.npmrds_data_source
        )
        self.secondary_npmrds_data_key = npmrds_data_key(
            cfg.mean_type, cfg.npmrds_metric, NpmrdsDataSource.ALL
        )
        self.npmrds_data_keys: List[str] = list(dict.fromkeys(
            [self.primary_npmrds_data_key, self.secondary_npmrds_data_key]
        ))

        self.is_canonical = cfg.is_canonical(self.config_defaults)

    # ------------------------------------------------------------------
    # Calculator contract
    # ------------------------------------------------------------------

    @property
    def required_tmc_metadata(self) -> FrozenSet[str]:
        per_class = {
            attr
            for vehicle_class in self.vehicle_classes
            for attr in VEHICLE_CLASS_ATTRIBUTES[vehicle_class]
        }
        return frozenset(
            {"tmc", "miles", "functional_class", "congestion_level", "directionality"}
            | per_class
            | self.threshold_speed_calculator.required_tmc_metadata
        )

    def calculate_for_tmc(self, attrs: Mapping[str, Any], data: Observations) -> Dict[str, Any]:
        """
        Compute excessive delay for one TMC.

        Args:
            attrs: TMC attributes including every ``required_tmc_metadata``
                name.
            data: Observation rows for the TMC for the configured year.

        Returns:
            Dict of delay hours, vehicle-hours and person-hours by time
            period and vehicle class, plus totals and the inputs that
            produced them.

        Raises:
            TmcMismatchError: If a row belongs to another TMC.
            TrafficDistributionProfileError: If the fraction-of-AADT table
                does not hold exactly twelve months.
            MissingTmcAttributeError: If the length, speed limit or a
                directional AADT is empty.
        """
        cfg = self.config
        tmc = attrs["tmc"]
        miles = require_tmc_attribute(attrs, "miles")
        rounding = cfg.round_travel_times

        observations = prepare_observations(data, tmc)

        dir_aadt_by_veh_class = {
            vc.value: require_tmc_attribute(attrs, VEHICLE_CLASS_ATTRIBUTES[vc].directional_aadt)
            for vc in self.vehicle_classes
        }
        # no occupancy means no vehicles of the class, hence no person-hours
        avo_by_veh_class = {
            vc.value: _occupancy(attrs.get(VEHICLE_CLASS_ATTRIBUTES[vc].avg_vehicle_occupancy))
            for vc in self.vehicle_classes
        }
        veh_classes = list(dir_aadt_by_veh_class)

        fraction_table = self.traffic_distribution_engine.get_fraction_of_daily_aadt_by_month_by_dow_by_time_bin(
            functional_class=attrs["functional_class"],
            congestion_level=attrs["congestion_level"],
            directionality=attrs["directionality"],
            version=cfg.traffic_distribution_profiles_version,
            traffic_distribution_time_bin_size=cfg.traffic_distribution_time_bin_size,
            time_bin_size=cfg.time_bin_size,
        )
        if len(fraction_table) != NUM_MONTHS:
            raise TrafficDistributionProfileError(
                f"Fraction of daily AADT table has {len(fraction_table)} months, "
                f"expected {NUM_MONTHS}"
            )

        threshold_speed = self.threshold_speed_calculator.calculate_threshold_speed(attrs)
        threshold_travel_time_sec = self._threshold_travel_time(miles, threshold_speed)
        max_delay_sec = SEC_PER_MINUTE * cfg.time_bin_size

        # ---- accumulators (local to this call) ---------------------------
        xdelay_hrs_by_time_period = {tp: 0.0 for tp in self.time_periods}
        xdelay_veh_hrs_by_tp = {
            tp: {vc: 0.0 for vc in veh_classes} for tp in self.time_periods
        }
        total_xdelay_veh_hrs = {vc: 0.0 for vc in veh_classes}
        total_xdelay_hrs = 0.0

        for row in observations.to_dict("records"):
            time_period = self.time_period_identifier(row["dow"], row["hour"])
            if time_period is None:
                continue

            metric_value = select_metric_value(
                row, self.primary_npmrds_data_key, self.secondary_npmrds_data_key
            )
            xdelay_hrs = self._excess_delay_hrs(
                metric_value, miles, threshold_travel_time_sec, max_delay_sec
            )

            xdelay_hrs_by_time_period[time_period] += xdelay_hrs
            total_xdelay_hrs += xdelay_hrs

            fraction = fraction_table[int(row["month"]) - 1][int(row["dow"])][int(row["time_bin_num"])]

            for vc in veh_classes:
                traffic_vol = dir_aadt_by_veh_class[vc] * fraction
                if rounding:
                    traffic_vol = precision_round(traffic_vol, 1)
                xdelay_veh_hrs = xdelay_hrs * traffic_vol

                xdelay_veh_hrs_by_tp[time_period][vc] += xdelay_veh_hrs
                total_xdelay_veh_hrs[vc] += xdelay_veh_hrs

        # ---- person-hours from the unrounded vehicle-hours ---------------
        xdelay_per_hrs_by_tp = {
            tp: {
                vc: self._round(xdelay_veh_hrs_by_tp[tp][vc] * avo_by_veh_class[vc], 3)
                for vc in veh_classes
            }
            for tp in self.time_periods
        }
        total_xdelay_per_hrs = {
            vc: self._round(avo_by_veh_class[vc] * total_xdelay_veh_hrs[vc], 3)
            for vc in veh_classes
        }

        # ---- only now round the summed vehicle-hours ---------------------
        for by_veh_class in xdelay_veh_hrs_by_tp.values():
            for vc in veh_classes:
                by_veh_class[vc] = self._round(by_veh_class[vc], 3)
        for vc in veh_classes:
            total_xdelay_veh_hrs[vc] = self._round(total_xdelay_veh_hrs[vc], 3)

        return {
            "tmc": tmc,
            "miles": miles,
            "npmrds_data_key": self.primary_npmrds_data_key,
            "avg_speedlimit": attrs["avg_speedlimit"],
            "threshold_speed": threshold_speed,
            "threshold_travel_time_sec": threshold_travel_time_sec,
            "functional_class": attrs["functional_class"],
            "congestion_level": attrs["congestion_level"],
            "directionality": attrs["directionality"],
            "dir_aadt_by_veh_class": dir_aadt_by_veh_class,
            "avg_vehicle_occupancy_by_veh_class": avo_by_veh_class,
            "xdelay_hrs_by_time_period": xdelay_hrs_by_time_period,
            "xdelay_hrs": total_xdelay_hrs,
            "xdelay_veh_hrs_by_veh_class_by_time_period": xdelay_veh_hrs_by_tp,
            "xdelay_veh_hrs_by_veh_class": total_xdelay_veh_hrs,
            "xdelay_per_hrs_by_veh_class_by_time_period": xdelay_per_hrs_by_tp,
            "xdelay_per_hrs_by_veh_class": total_xdelay_per_hrs,
        }

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _round(self, value: float, decimals: int = 0) -> float:
        return precision_round(value, decimals) if self.config.round_travel_times else value

    def _threshold_travel_time(self, miles: float, threshold_speed: float) -> float:
        # mi / (mi/hr) * (sec/hr) == sec
        if self.config.round_travel_times:
            return precision_round(precision_round(miles, 3) / threshold_speed * SEC_PER_HOUR)
        return miles / threshold_speed * SEC_PER_HOUR

    def _excess_delay_hrs(
        self,
        metric_value: Optional[float],
        miles: float,
        threshold_travel_time_sec: float,
        max_delay_sec: float,
    ) -> float:
        """Excessive delay of one bin in hours, in ``[0, bin length]``."""
        if metric_value is None:
            return 0.0

        travel_time = (
            speed_to_travel_time(miles, metric_value)
            if self.config.is_speed_based else metric_value
        )
        if travel_time is None:
            return 0.0

        travel_time = self._round(travel_time)
        xdelay_sec = self._round(travel_time - threshold_travel_time_sec)
        xdelay_sec = min(xdelay_sec, max_delay_sec)
        xdelay_hrs = self._round(xdelay_sec / SEC_PER_HOUR, 3)

        return xdelay_hrs if xdelay_hrs > 0 else 0.0

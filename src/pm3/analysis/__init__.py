"""
PM3 Analysis Package (Functional Core)

This package contains pure computation with no I/O.  All functions and
calculators accept plain data (dicts, tuples, DataFrames) and return plain
data.

Modules:
- math_utils:           Regulation rounding and R-7 quantiles
- calendar:             Bin counts, leap years, DST spring-forward
- time_periods:         Time period specs and the period identifier
- traffic_distribution: Traffic distribution profile engine
- config:               Calculator configuration value object
- base:                 Calculator contract and observation helpers
- phed:                 Peak Hour Excessive Delay
- tttr:                 Truck Travel Time Reliability
- tti:                  Travel Time Index
- summary_statistics:   Per-period distribution of one metric
"""

from .math_utils import (
    precision_round,
    numbers_comparator,
    quantile_sorted,
)

from .calendar import (
    get_num_bins_in_day,
    build_time_bin_num_to_hour_table,
    is_leap_year,
    get_dst_start_date,
    build_date_to_dow_table,
    get_num_bins_for_year,
    get_num_bins_per_time_period_for_year,
)

from .time_periods import (
    TimePeriodSpecError,
    TimePeriodWindow,
    TimePeriodSpec,
    TimePeriodIdentifier,
    TIME_PERIOD_SPECS,
    MEASURE_DEFAULT_TIME_PERIOD_SPEC,
    get_time_period_spec,
)

from .traffic_distribution import (
    TrafficDistributionProfileError,
    TrafficDistributionProfilesVersion,
    TrafficDistributionProfileSet,
    TrafficDistributionProfileEngine,
    get_traffic_distribution_profile_name,
)

from .config import (
    CalculatorConfigError,
    CalculatorConfig,
    MeanType,
    NpmrdsDataSource,
    NpmrdsMetric,
    resolve_config,
    npmrds_data_key,
)

from .base import (
    TmcMismatchError,
    MissingTmcAttributeError,
    MeasureCalculator,
    ThresholdSpeedCalculator,
    VehicleClass,
)

from .phed import PhedCalculator
from .tttr import TttrCalculator
from .tti import TravelTimeIndexCalculator
from .summary_statistics import SummaryStatisticsCalculator

__all__ = [
    # Math
    'precision_round',
    'numbers_comparator',
    'quantile_sorted',
    # Calendar
    'get_num_bins_in_day',
    'build_time_bin_num_to_hour_table',
    'is_leap_year',
    'get_dst_start_date',
    'build_date_to_dow_table',
    'get_num_bins_for_year',
    'get_num_bins_per_time_period_for_year',
    # Time periods
    'TimePeriodSpecError',
    'TimePeriodWindow',
    'TimePeriodSpec',
    'TimePeriodIdentifier',
    'TIME_PERIOD_SPECS',
    'MEASURE_DEFAULT_TIME_PERIOD_SPEC',
    'get_time_period_spec',
    # Traffic distribution
    'TrafficDistributionProfileError',
    'TrafficDistributionProfilesVersion',
    'TrafficDistributionProfileSet',
    'TrafficDistributionProfileEngine',
    'get_traffic_distribution_profile_name',
    # Config
    'CalculatorConfigError',
    'CalculatorConfig',
    'MeanType',
    'NpmrdsDataSource',
    'NpmrdsMetric',
    'resolve_config',
    'npmrds_data_key',
    # Calculators
    'TmcMismatchError',
    'MissingTmcAttributeError',
    'MeasureCalculator',
    'ThresholdSpeedCalculator',
    'VehicleClass',
    'PhedCalculator',
    'TttrCalculator',
    'TravelTimeIndexCalculator',
    'SummaryStatisticsCalculator',
]

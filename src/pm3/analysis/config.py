"""
PM3 Calculator Configuration (Functional Core)

Every calculator is configured by an immutable ``CalculatorConfig``
resolved once, at construction, from caller parameters and the measure's
defaults.  An unrecognised option name or value raises
``CalculatorConfigError`` before any TMC is processed.

Package Location: src/pm3/analysis/config.py

Recognised options:
    year                                  int
    mean_type                             arithmetic | harmonic
    npmrds_data_source                    all | pass | truck
    npmrds_metric                         travel_time | speed
    time_period_spec                      registered spec name or
                                          MEASURE_DEFAULT_TIME_PERIOD_SPEC
    time_bin_size                         5 | 15 | 60
    traffic_distribution_time_bin_size    5 | 15 | 60
    traffic_distribution_profiles_version AVAIL | CATTLAB
    round_travel_times                    bool
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from enum import Enum
from typing import Any, Dict, Iterable, Mapping, Optional

from .calendar import TIME_BIN_SIZES
from .time_periods import MEASURE_DEFAULT_TIME_PERIOD_SPEC, TIME_PERIOD_SPECS
from .traffic_distribution import TrafficDistributionProfilesVersion


class CalculatorConfigError(ValueError):
    """Raised for unrecognised configuration options or values."""
    pass


class MeanType(str, Enum):
    ARITHMETIC = "arithmetic"
    HARMONIC = "harmonic"


class NpmrdsDataSource(str, Enum):
    ALL = "all"
    PASS = "pass"
    TRUCK = "truck"


class NpmrdsMetric(str, Enum):
    TRAVEL_TIME = "travel_time"
    SPEED = "speed"


TIME_PERIOD_SPEC_NAMES = (MEASURE_DEFAULT_TIME_PERIOD_SPEC, *TIME_PERIOD_SPECS)

# Every recognised option and its allowed values.
CONFIG_OPTIONS: Dict[str, Iterable[Any]] = {
    "mean_type": tuple(MeanType),
    "npmrds_data_source": tuple(NpmrdsDataSource),
    "npmrds_metric": tuple(NpmrdsMetric),
    "time_period_spec": TIME_PERIOD_SPEC_NAMES,
    "time_bin_size": TIME_BIN_SIZES,
    "traffic_distribution_time_bin_size": TIME_BIN_SIZES,
    "traffic_distribution_profiles_version": tuple(TrafficDistributionProfilesVersion),
    "round_travel_times": (True, False),
}

_ENUM_OPTIONS = {
    "mean_type": MeanType,
    "npmrds_data_source": NpmrdsDataSource,
    "npmrds_metric": NpmrdsMetric,
    "traffic_distribution_profiles_version": TrafficDistributionProfilesVersion,
}


@dataclass(frozen=True)
class CalculatorConfig:
    year: Optional[int] = None
    mean_type: MeanType = MeanType.ARITHMETIC
    npmrds_data_source: NpmrdsDataSource = NpmrdsDataSource.ALL
    npmrds_metric: NpmrdsMetric = NpmrdsMetric.TRAVEL_TIME
    time_period_spec: str = MEASURE_DEFAULT_TIME_PERIOD_SPEC
    time_bin_size: int = 15
    traffic_distribution_time_bin_size: int = 60
    traffic_distribution_profiles_version: TrafficDistributionProfilesVersion = (
        TrafficDistributionProfilesVersion.CATTLAB
    )
    round_travel_times: bool = True

    @property
    def is_speed_based(self) -> bool:
        return self.npmrds_metric is NpmrdsMetric.SPEED

    def is_canonical(self, defaults: Mapping[str, Any]) -> bool:
        """
        True when the config is the measure's defaults at a 15-minute bin,
        the only configuration eligible to be an authoritative version.
        """
        return self.time_bin_size == 15 and all(
            getattr(self, name) == value
            for name, value in defaults.items()
            if name != "year"
        )

    def to_dict(self) -> Dict[str, Any]:
        """JSON-friendly representation (enum members as their values)."""
        return {
            name: value.value if isinstance(value, Enum) else value
            for name, value in asdict(self).items()
        }


_CONFIG_FIELDS = frozenset(f.name for f in fields(CalculatorConfig))


def _coerce(name: str, value: Any) -> Any:
    enum_type = _ENUM_OPTIONS.get(name)
    if enum_type is not None:
        try:
            return enum_type(value.value if isinstance(value, Enum) else value)
        except ValueError:
            raise CalculatorConfigError(
                f"Unrecognised {name} {value!r}; expected one of "
                f"{[m.value for m in enum_type]}"
            ) from None

    if name == "round_travel_times":
        if not isinstance(value, bool):
            raise CalculatorConfigError(f"round_travel_times must be a bool, got {value!r}")
        return value

    if name in ("time_bin_size", "traffic_distribution_time_bin_size"):
        # bools are ints; reject them explicitly
        if isinstance(value, bool) or value not in TIME_BIN_SIZES:
            raise CalculatorConfigError(
                f"Unrecognised {name} {value!r}; expected one of {TIME_BIN_SIZES}"
            )
        return int(value)

    if name == "time_period_spec" and value not in TIME_PERIOD_SPEC_NAMES:
        raise CalculatorConfigError(
            f"Unrecognised time_period_spec {value!r}; expected one of "
            f"{list(TIME_PERIOD_SPEC_NAMES)}"
        )

    if name == "year" and value is not None and (isinstance(value, bool) or not isinstance(value, int)):
        raise CalculatorConfigError(f"year must be an int, got {value!r}")

    return value


def resolve_config(
    defaults: Mapping[str, Any],
    options: Optional[Mapping[str, Iterable[Any]]] = None,
    **params: Any,
) -> CalculatorConfig:
    """
    Resolve caller parameters against a measure's defaults.

    Parameters that are absent or ``None`` take the measure default, then
    the ``CalculatorConfig`` field default.

    Args:
        defaults: Measure defaults, e.g. ``PhedCalculator.config_defaults``.
        options: Allowed values per option for this measure; a subset of
            ``CONFIG_OPTIONS``.  Defaults to ``CONFIG_OPTIONS``.
        **params: Caller overrides.

    Returns:
        Fully populated, immutable ``CalculatorConfig``.

    Raises:
        CalculatorConfigError: On unknown option names or disallowed values.
    """
    options = CONFIG_OPTIONS if options is None else options

    unknown = set(params) - _CONFIG_FIELDS
    if unknown:
        raise CalculatorConfigError(f"Unrecognised configuration options: {sorted(unknown)}")

    resolved: Dict[str, Any] = {}
    for name in _CONFIG_FIELDS:
        value = params.get(name)
        if value is None:
            value = defaults.get(name)
        if value is None:
            continue
        value = _coerce(name, value)
        allowed = options.get(name)
        if allowed is not None and value not in tuple(allowed):
            raise CalculatorConfigError(f"{name}={value!r} is not supported by this measure")
        resolved[name] = value

    return CalculatorConfig(**resolved)


def npmrds_data_key(
    mean_type: MeanType,
    npmrds_metric: NpmrdsMetric,
    npmrds_data_source: NpmrdsDataSource,
) -> str:
    """
    Observation column carrying one binned metric.

    Example::

        >>> npmrds_data_key(MeanType.ARITHMETIC, NpmrdsMetric.TRAVEL_TIME,
        ...                 NpmrdsDataSource.TRUCK)
        'arithmetic_travel_time_truck'
    """
    return f"{mean_type.value}_{npmrds_metric.value}_{npmrds_data_source.value}"

"""Per-period summary statistics."""

import pandas as pd
import pytest

from conftest import make_observation, make_observations
from pm3.analysis.base import MeasureCalculator, TmcMismatchError
from pm3.analysis.config import CalculatorConfigError
from pm3.analysis.summary_statistics import SummaryStatisticsCalculator

TMC = "110+04482"
ALL_TT = "arithmetic_travel_time_all"


@pytest.fixture
def calc():
    return SummaryStatisticsCalculator(year=2019)


def test_defaults(calc):
    assert isinstance(calc, MeasureCalculator)
    assert calc.npmrds_data_keys == [ALL_TT]
    assert calc.time_period_spec.name == "PM3_TIME_PERIOD_SPEC"
    assert calc.required_tmc_metadata == {"tmc"}
    assert calc.is_canonical


def test_statistics_of_one_period(calc):
    # Monday 07:00 onwards: all five bins are AMP
    data = make_observations(TMC, ALL_TT, [130, 100, 200, 120, 110], first_bin=28)

    result = calc.calculate_for_tmc({"tmc": TMC}, data)

    assert result["npmrds_data_key"] == ALL_TT
    assert result["summary_statistics_by_time_period"] == {
        "AMP": {
            "count": 5,
            "mean": pytest.approx(132.0),
            "min": 100.0,
            "max": 200.0,
            "pctl_5": pytest.approx(102.0),
            "pctl_25": pytest.approx(110.0),
            "pctl_50": pytest.approx(120.0),
            "pctl_75": pytest.approx(130.0),
            "pctl_95": pytest.approx(186.0),
        }
    }


def test_missing_and_zero_values_are_skipped(calc):
    data = pd.DataFrame([
        make_observation(TMC, "2019-03-04", 1, 28, **{ALL_TT: 0.0}),
        make_observation(TMC, "2019-03-04", 1, 29, **{ALL_TT: None}),
        make_observation(TMC, "2019-03-04", 1, 30, **{ALL_TT: 90.0}),
        make_observation(TMC, "2019-03-09", 6, 40, **{ALL_TT: 80.0}),  # Saturday 10:00
    ])
    stats = calc.calculate_for_tmc({"tmc": TMC}, data)["summary_statistics_by_time_period"]

    assert set(stats) == {"AMP", "WE"}
    assert stats["AMP"]["count"] == 1
    assert stats["AMP"]["pctl_95"] == 90.0
    assert stats["WE"]["mean"] == 80.0


def test_speeds_are_summarised_as_speeds():
    calc = SummaryStatisticsCalculator(npmrds_metric="speed")
    data = make_observations(TMC, "arithmetic_speed_all", [30.0, 60.0], first_bin=28)
    stats = calc.calculate_for_tmc({"tmc": TMC}, data)["summary_statistics_by_time_period"]
    assert stats["AMP"]["mean"] == pytest.approx(45.0)
    assert not calc.is_canonical


def test_no_data(calc):
    result = calc.calculate_for_tmc({"tmc": TMC}, [])
    assert result["summary_statistics_by_time_period"] == {}


def test_rejects_unknown_options():
    with pytest.raises(CalculatorConfigError):
        SummaryStatisticsCalculator(npmrds_metric="volume")


def test_other_tmc_is_fatal(calc):
    with pytest.raises(TmcMismatchError):
        calc.calculate_for_tmc({"tmc": TMC}, make_observations("110-99999", ALL_TT, [100.0]))

"""Traffic distribution profiles and the fraction-of-AADT engine."""

import pytest

from conftest import all_profile_names, peaked_hourly_profile, uniform_profile
from pm3.analysis.traffic_distribution import (
    TrafficDistributionProfileEngine,
    TrafficDistributionProfileError,
    TrafficDistributionProfileSet,
    day_type_for_dow,
    get_fraction_of_daily_aadt_for_time_bin,
    get_traffic_distribution_profile_name,
    resample_profile,
    to_five_minute_bins,
)

TABLE_ARGS = dict(
    functional_class="FREEWAY",
    congestion_level="MODERATE_CONGESTION",
    directionality="EVEN_DIST",
    version="CATTLAB",
    traffic_distribution_time_bin_size=60,
    time_bin_size=15,
)


def test_profile_names():
    assert get_traffic_distribution_profile_name(
        "WEEKDAY", "SEVERE_CONGESTION", "PEAK_AM", "NONFREEWAY"
    ) == "WEEKDAY_SEVERE_CONGESTION_PEAK_AM_NONFREEWAY"
    assert get_traffic_distribution_profile_name(
        "WEEKEND", "SEVERE_CONGESTION", "PEAK_AM", "FREEWAY"
    ) == "WEEKEND_FREEWAY"
    assert len(set(all_profile_names())) == 20


def test_day_type_for_dow():
    assert [day_type_for_dow(d).value for d in range(7)] == [
        "WEEKEND", "WEEKDAY", "WEEKDAY", "WEEKDAY", "WEEKDAY", "WEEKDAY", "WEEKEND",
    ]


class TestProfileSetValidation:
    def test_bin_count_must_divide_288(self):
        with pytest.raises(TrafficDistributionProfileError):
            TrafficDistributionProfileSet(profiles={"CATTLAB": {"X": uniform_profile(25)}})

    def test_profile_must_sum_to_one(self):
        with pytest.raises(TrafficDistributionProfileError):
            TrafficDistributionProfileSet(profiles={"CATTLAB": {"X": (0.5 / 24,) * 24}})

    def test_negative_fraction(self):
        values = list(uniform_profile(24))
        values[0], values[1] = -values[0], values[1] + 2 * values[0]
        with pytest.raises(TrafficDistributionProfileError):
            TrafficDistributionProfileSet(profiles={"CATTLAB": {"X": values}})

    def test_factor_counts(self):
        with pytest.raises(TrafficDistributionProfileError):
            TrafficDistributionProfileSet(profiles={}, dow_adjustment_factors=(1.0,) * 6)
        with pytest.raises(TrafficDistributionProfileError):
            TrafficDistributionProfileSet(profiles={}, month_adjustment_factors=(1.0,) * 11)

    def test_unknown_profile(self, profile_set):
        with pytest.raises(TrafficDistributionProfileError):
            profile_set.get_native_profile("CATTLAB", "WEEKDAY_NOPE")


def test_hourly_profile_is_split_evenly_across_epochs():
    five_minute = to_five_minute_bins(peaked_hourly_profile())
    assert len(five_minute) == 288
    assert five_minute[8 * 12] == pytest.approx(0.1 / 12)
    assert sum(five_minute) == pytest.approx(1.0)

    quarter_hours = resample_profile(five_minute, 15)
    assert len(quarter_hours) == 96
    assert quarter_hours[32] == pytest.approx(0.025)


def test_fraction_for_time_bin_finer_and_coarser():
    hourly = peaked_hourly_profile()
    # 15-minute observation bin inside hour 8 of an hourly profile
    assert get_fraction_of_daily_aadt_for_time_bin(hourly, 60, 15, 33) == pytest.approx(0.025)

    quarter_hours = resample_profile(to_five_minute_bins(hourly), 15)
    # hourly observation bin built from four 15-minute profile bins
    assert get_fraction_of_daily_aadt_for_time_bin(quarter_hours, 15, 60, 8) == pytest.approx(0.1)


class TestEngine:
    def test_unadjusted_table_sums_to_one_per_day(self, engine):
        table = engine.get_fraction_of_daily_aadt_by_dow_by_time_bin(**TABLE_ARGS, adjust_for_dow=False)
        assert len(table) == 7
        for row in table:
            assert len(row) == 96
            assert sum(row) == pytest.approx(1.0)

    @pytest.mark.parametrize("version, td_size", [("AVAIL", 5), ("AVAIL", 15), ("CATTLAB", 15)])
    def test_sums_at_every_resolution(self, engine, version, td_size):
        args = dict(TABLE_ARGS, version=version, traffic_distribution_time_bin_size=td_size)
        for time_bin_size in (5, 15, 60):
            table = engine.get_fraction_of_daily_aadt_by_dow_by_time_bin(
                **dict(args, time_bin_size=time_bin_size)
            )
            assert sum(table[3]) == pytest.approx(1.0)

    def test_dow_and_month_factors(self):
        names = all_profile_names()
        profile_set = TrafficDistributionProfileSet(
            profiles={"CATTLAB": {n: uniform_profile(24) for n in names}},
            dow_adjustment_factors=(0.8, 1.0, 1.0, 1.0, 1.0, 1.2, 1.0),
            month_adjustment_factors=tuple(0.9 if m == 0 else 1.0 for m in range(12)),
        )
        engine = TrafficDistributionProfileEngine(profile_set)

        by_dow = engine.get_fraction_of_daily_aadt_by_dow_by_time_bin(**TABLE_ARGS)
        assert sum(by_dow[0]) == pytest.approx(0.8)
        assert sum(by_dow[5]) == pytest.approx(1.2)

        by_month = engine.get_fraction_of_daily_aadt_by_month_by_dow_by_time_bin(**TABLE_ARGS)
        assert len(by_month) == 12
        assert sum(by_month[0][5]) == pytest.approx(0.9 * 1.2)
        assert by_month[6] == by_dow

    def test_tables_are_memoised(self, engine):
        first = engine.get_fraction_of_daily_aadt_by_month_by_dow_by_time_bin(**TABLE_ARGS)
        second = engine.get_fraction_of_daily_aadt_by_month_by_dow_by_time_bin(**TABLE_ARGS)
        assert first is second

    def test_weekend_uses_weekend_profile(self):
        names = all_profile_names()
        profiles = {n: uniform_profile(24) for n in names}
        profiles["WEEKEND_FREEWAY"] = peaked_hourly_profile()
        engine = TrafficDistributionProfileEngine(
            TrafficDistributionProfileSet(profiles={"CATTLAB": profiles})
        )
        table = engine.get_fraction_of_daily_aadt_by_dow_by_time_bin(**TABLE_ARGS)
        assert table[6][32] == pytest.approx(0.025)
        assert table[1][32] == pytest.approx(1 / 96)

    def test_unsupported_bin_size(self, engine):
        with pytest.raises(TrafficDistributionProfileError):
            engine.get_time_binned_profile("CATTLAB", "WEEKEND_FREEWAY", 30)

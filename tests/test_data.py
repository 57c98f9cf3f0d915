"""SQLite storage, reading, the measure runner and output writing."""

import json
import math
from datetime import datetime, timezone

import pandas as pd
import pytest

from conftest import all_profile_names, make_observations, peaked_hourly_profile, uniform_profile
from pm3.analysis.base import MissingTmcAttributeError
from pm3.analysis.phed import PhedCalculator
from pm3.analysis.traffic_distribution import TrafficDistributionProfileEngine
from pm3.analysis.tttr import TttrCalculator
from pm3.data import (
    DatabaseManager,
    MeasureRunner,
    OutputWriter,
    get_binned_year_npmrds_data_for_tmc,
    get_metadata_for_tmcs,
    list_tmcs,
    load_traffic_distribution_profile_set,
)
from pm3.data.reader import parse_npmrds_data_key

TMC_A = "104+04100"
TMC_B = "104-04101"


def _metadata_frame():
    base = {
        "year": 2019, "miles": 1.0, "f_system": 1, "faciltype": 2,
        "aadt": 19200, "aadt_singl": 960, "aadt_combi": 960, "avg_speedlimit": 60,
        "congestion_level": "MODERATE_CONGESTION", "directionality": "EVEN_DIST",
        "ua_code": "63217", "isprimary": 1, "state": "ny",
    }
    return pd.DataFrame([
        dict(base, tmc=TMC_A),
        dict(base, tmc=TMC_B, f_system=3, faciltype=1, ua_code="99999"),
    ])


def _npmrds_frame():
    # Monday 2019-03-04 08:00-08:15 (epochs 96-98) and a Saturday epoch
    return pd.DataFrame([
        {"tmc": TMC_A, "date": "2019-03-04", "epoch": 96,
         "travel_time_all": 150.0, "travel_time_pass": 140.0, "travel_time_truck": 200.0},
        {"tmc": TMC_A, "date": "2019-03-04", "epoch": 97,
         "travel_time_all": 160.0, "travel_time_pass": None, "travel_time_truck": 220.0},
        {"tmc": TMC_A, "date": "2019-03-04", "epoch": 98,
         "travel_time_all": 170.0, "travel_time_pass": 150.0, "travel_time_truck": 0.0},
        {"tmc": TMC_A, "date": "2019-03-09", "epoch": 100,
         "travel_time_all": 90.0, "travel_time_pass": 90.0, "travel_time_truck": 95.0},
        {"tmc": TMC_A, "date": "2018-12-31", "epoch": 100,
         "travel_time_all": 999.0, "travel_time_pass": 999.0, "travel_time_truck": 999.0},
    ])


@pytest.fixture
def profiles_csv(tmp_path):
    path = tmp_path / "cattlab.csv"
    profiles = {name: uniform_profile(24) for name in all_profile_names()}
    profiles["WEEKEND_FREEWAY"] = peaked_hourly_profile()
    pd.DataFrame(profiles).to_csv(path, index=False)
    return path


@pytest.fixture
def db_path(tmp_path, profiles_csv):
    path = tmp_path / "pm3.db"
    with DatabaseManager(path) as m:
        m.init_db()
        m.insert_tmc_metadata(_metadata_frame())
        m.insert_npmrds(_npmrds_frame())
        m.import_traffic_distribution_profiles(profiles_csv, "CATTLAB")
    return path


# ---------------------------------------------------------------------------
# DatabaseManager
# ---------------------------------------------------------------------------

def test_init_db_is_idempotent(db_path):
    with DatabaseManager(db_path) as m:
        m.init_db()
        count = m.conn.execute("SELECT COUNT(*) FROM npmrds").fetchone()[0]
    assert count == 5


def test_insert_requires_key_columns(tmp_path):
    with DatabaseManager(tmp_path / "x.db") as m:
        m.init_db()
        with pytest.raises(ValueError):
            m.insert_npmrds(pd.DataFrame([{"tmc": TMC_A, "travel_time_all": 1.0}]))


def test_manager_requires_context(tmp_path):
    with pytest.raises(RuntimeError):
        DatabaseManager(tmp_path / "x.db").init_db()


def test_adjustment_factors_round_trip(db_path, tmp_path):
    csv = tmp_path / "dow.csv"
    pd.DataFrame({"idx": range(7), "factor": [0.8, 1.0, 1.0, 1.0, 1.0, 1.2, 1.0]}).to_csv(csv, index=False)
    with DatabaseManager(db_path) as m:
        assert m.import_adjustment_factors(csv, "dow") == 7

    profile_set = load_traffic_distribution_profile_set(db_path)
    assert profile_set.dow_adjustment_factors == (0.8, 1.0, 1.0, 1.0, 1.0, 1.2, 1.0)
    assert profile_set.month_adjustment_factors == (1.0,) * 12


def test_adjustment_factors_must_be_complete(db_path, tmp_path):
    csv = tmp_path / "month.csv"
    pd.DataFrame({"idx": range(1, 12), "factor": [1.0] * 11}).to_csv(csv, index=False)
    with DatabaseManager(db_path) as m:
        with pytest.raises(ValueError):
            m.import_adjustment_factors(csv, "month")
        with pytest.raises(ValueError):
            m.import_adjustment_factors(csv, "week")


# ---------------------------------------------------------------------------
# Reader
# ---------------------------------------------------------------------------

def test_list_tmcs(db_path):
    assert list_tmcs(db_path, 2019) == [TMC_A, TMC_B]
    assert list_tmcs(db_path, 2020) == []


def test_derived_metadata(db_path):
    a, b = get_metadata_for_tmcs(
        db_path, 2019, [TMC_A, TMC_B],
        ["functional_class", "directional_aadt", "directional_aadt_truck",
         "directional_aadt_pass", "avg_vehicle_occupancy_singl", "avg_vehicle_occupancy"],
    )
    assert a["tmc"] == TMC_A
    assert a["functional_class"] == "FREEWAY"
    assert a["directional_aadt"] == 9600.0
    assert a["directional_aadt_truck"] == 960.0
    assert a["directional_aadt_pass"] == 8640.0
    assert a["avg_vehicle_occupancy_singl"] == 16.8
    # (1.7 * 17280 + 16.8 * 960 + 1.0 * 960) / 19200
    assert a["avg_vehicle_occupancy"] == pytest.approx(2.42)

    assert b["functional_class"] == "NONFREEWAY"
    assert b["directional_aadt"] == 19200.0
    assert b["avg_vehicle_occupancy_singl"] == 10.7
    assert "miles" not in b


def test_unknown_metadata_column(db_path):
    with pytest.raises(ValueError):
        get_metadata_for_tmcs(db_path, 2019, [TMC_A], ["colour"])


def test_parse_npmrds_data_key():
    mean, metric, source = parse_npmrds_data_key("harmonic_travel_time_pass")
    assert (mean.value, metric.value, source.value) == ("harmonic", "travel_time", "pass")
    with pytest.raises(ValueError):
        parse_npmrds_data_key("median_travel_time_all")


def test_binned_observations(db_path):
    keys = [
        "arithmetic_travel_time_all",
        "harmonic_travel_time_all",
        "arithmetic_travel_time_pass",
        "arithmetic_travel_time_truck",
        "harmonic_speed_all",
    ]
    df = get_binned_year_npmrds_data_for_tmc(db_path, 2019, TMC_A, 15, keys, miles=1.0)

    assert list(df.columns[:6]) == ["tmc", "date", "month", "dow", "hour", "time_bin_num"]
    assert len(df) == 2  # the 2018 row is outside the year

    monday = df.iloc[0]
    assert (monday["date"], monday["month"], monday["dow"], monday["hour"], monday["time_bin_num"]) == (
        "2019-03-04", 3, 1, 8, 32,
    )
    assert monday["arithmetic_travel_time_all"] == pytest.approx(160.0)
    assert monday["harmonic_travel_time_all"] == pytest.approx(3 / (1 / 150 + 1 / 160 + 1 / 170))
    assert monday["arithmetic_travel_time_pass"] == pytest.approx(145.0)
    assert monday["arithmetic_travel_time_truck"] == pytest.approx(210.0)
    assert monday["harmonic_speed_all"] == pytest.approx(3600 / 160)

    saturday = df.iloc[1]
    assert (saturday["dow"], saturday["time_bin_num"]) == (6, 33)


def test_binned_observations_hourly(db_path):
    df = get_binned_year_npmrds_data_for_tmc(
        db_path, 2019, TMC_A, 60, ["arithmetic_travel_time_all"]
    )
    assert list(df["time_bin_num"]) == [8, 8]


def test_binned_observations_without_data(db_path):
    df = get_binned_year_npmrds_data_for_tmc(
        db_path, 2019, TMC_B, 15, ["arithmetic_travel_time_all"]
    )
    assert df.empty
    assert "arithmetic_travel_time_all" in df.columns


def test_speed_keys_require_miles(db_path):
    with pytest.raises(ValueError):
        get_binned_year_npmrds_data_for_tmc(db_path, 2019, TMC_A, 15, ["arithmetic_speed_all"])


def test_load_profile_set(db_path):
    profile_set = load_traffic_distribution_profile_set(db_path)
    assert set(profile_set.profiles) == {"CATTLAB"}
    assert len(profile_set.profiles["CATTLAB"]) == 20
    assert profile_set.get_native_profile("CATTLAB", "WEEKEND_FREEWAY")[8] == pytest.approx(0.1)


# ---------------------------------------------------------------------------
# Runner and writer
# ---------------------------------------------------------------------------

@pytest.fixture
def calculators(db_path):
    engine = TrafficDistributionProfileEngine(load_traffic_distribution_profile_set(db_path))
    return [PhedCalculator(engine, year=2019), TttrCalculator(year=2019)]


@pytest.mark.parametrize("workers", [1, 2])
def test_runner(db_path, calculators, workers):
    runner = MeasureRunner(db_path, 2019, calculators, workers=workers)
    results = list(runner.run())

    assert [(measure, r["tmc"]) for measure, r in results] == [
        ("PHED", TMC_A), ("TTTR", TMC_A), ("PHED", TMC_B), ("TTTR", TMC_B),
    ]

    phed_a = results[0][1]
    # mean 160 s against a 100 s threshold in the Monday 08:00 AM peak bin
    assert phed_a["xdelay_hrs_by_time_period"]["AMP"] == 0.017
    assert phed_a["xdelay_veh_hrs_by_veh_class"] == {"all": 1.7}

    tttr_a = results[1][1]
    assert tttr_a["tttr_by_time_period"] == {"AMP": 1.0, "WE": 1.0}

    assert results[3][1]["tttr"] is None
    assert runner.get_run_stats()["tmcs_processed"] == 2


def test_runner_rejects_mixed_bin_sizes(db_path, calculators):
    with pytest.raises(ValueError):
        MeasureRunner(db_path, 2019, [calculators[0], TttrCalculator(time_bin_size=60)])
    with pytest.raises(ValueError):
        MeasureRunner(db_path, 2019, [])


def test_writer(tmp_path, db_path, calculators):
    runner = MeasureRunner(db_path, 2019, calculators)
    stamp = datetime(2020, 5, 1, 12, 30, tzinfo=timezone.utc)
    writer = OutputWriter(tmp_path / "out", timestamp=stamp)

    assert writer.add_all(runner.run([TMC_A])) == 2
    written = writer.write(calculators, year=2019)

    assert writer.output_dir.name == "20200501T123000"
    assert set(written) == {"PHED", "TTTR"}

    tttr = pd.read_csv(written["TTTR"])
    assert tttr.loc[0, "tmc"] == TMC_A
    assert tttr.loc[0, "tttr_by_time_period.AMP"] == 1.0

    phed = pd.read_csv(written["PHED"])
    assert math.isclose(phed.loc[0, "xdelay_veh_hrs_by_veh_class.all"], 1.7)

    metadata = json.loads((writer.output_dir / "calculator_metadata.json").read_text())
    assert metadata["year"] == 2019
    assert metadata["authoritative_version_candidate"] is True
    assert [c["measure"] for c in metadata["calculators"]] == ["PHED", "TTTR"]
    assert metadata["calculators"][1]["config"]["npmrds_data_source"] == "truck"
    assert metadata["calculators"][0]["output_file_name"] == "PHED.csv"


def test_tmc_without_trucks_has_no_truck_delay(db_path):
    tmc = "104+04102"
    with DatabaseManager(db_path) as m:
        m.insert_tmc_metadata(pd.DataFrame([dict(
            _metadata_frame().iloc[0].to_dict(), tmc=tmc, aadt_singl=0, aadt_combi=0,
        )]))

    engine = TrafficDistributionProfileEngine(load_traffic_distribution_profile_set(db_path))
    calc = PhedCalculator(engine, year=2019, npmrds_data_source="truck")
    (attrs,) = get_metadata_for_tmcs(db_path, 2019, [tmc], calc.required_tmc_metadata)
    assert attrs["avg_vehicle_occupancy_truck"] == 0.0

    data = make_observations(tmc, "arithmetic_travel_time_truck", [160.0])
    result = calc.calculate_for_tmc(attrs, data)

    assert result["xdelay_hrs"] == pytest.approx(0.017)
    assert result["xdelay_veh_hrs_by_veh_class"] == {"singl": 0.0, "combi": 0.0, "truck": 0.0}
    assert result["xdelay_per_hrs_by_veh_class"] == {"singl": 0.0, "combi": 0.0, "truck": 0.0}


def test_tmc_without_aadt_is_a_named_error(db_path):
    tmc = "104+04103"
    row = dict(_metadata_frame().iloc[0].to_dict(), tmc=tmc)
    row.pop("aadt")
    with DatabaseManager(db_path) as m:
        m.insert_tmc_metadata(pd.DataFrame([row]))

    engine = TrafficDistributionProfileEngine(load_traffic_distribution_profile_set(db_path))
    calc = PhedCalculator(engine, year=2019)
    (attrs,) = get_metadata_for_tmcs(db_path, 2019, [tmc], calc.required_tmc_metadata)
    assert attrs["avg_vehicle_occupancy"] == 0.0

    with pytest.raises(MissingTmcAttributeError):
        calc.calculate_for_tmc(attrs, make_observations(tmc, "arithmetic_travel_time_all", [160.0]))


@pytest.mark.parametrize("workers", [1, 4])
def test_run_stats_count_every_tmc(db_path, workers):
    extra = [f"104+05{n:03d}" for n in range(12)]
    with DatabaseManager(db_path) as m:
        base = _metadata_frame().iloc[0].to_dict()
        m.insert_tmc_metadata(pd.DataFrame([dict(base, tmc=tmc) for tmc in extra]))
        # two epochs of one 15-minute bin per TMC
        m.insert_npmrds(pd.DataFrame([
            {"tmc": tmc, "date": "2019-03-05", "epoch": epoch, "travel_time_truck": 100.0}
            for tmc in extra for epoch in (96, 97)
        ]))

    runner = MeasureRunner(db_path, 2019, [TttrCalculator(year=2019)], workers=workers)
    results = list(runner.run())
    stats = runner.get_run_stats()

    assert len(results) == 14
    assert stats["tmcs_processed"] == 14
    # TMC_A bins into two observations, TMC_B has none
    assert stats["observations_read"] == 2 + len(extra)

"""
Data Reader for PM3 System (Imperative Shell)

Reads TMC metadata, binned NPMRDS observations and traffic distribution
profiles out of SQLite and hands them to the Functional Core as plain data.

Package Location: src/pm3/data/reader.py

Derived TMC attributes (computed in SQL):
    functional_class             FREEWAY when f_system <= 2, else NONFREEWAY
    directional_aadt[_<class>]   aadt / MIN(COALESCE(faciltype, 2), 2)
    aadt_truck                   aadt_singl + aadt_combi
    aadt_pass                    aadt - aadt_truck
    avg_vehicle_occupancy_pass   1.7
    avg_vehicle_occupancy_singl  16.8 in urbanized area 63217, else 10.7
    avg_vehicle_occupancy_combi  1.0
    avg_vehicle_occupancy        AADT-weighted blend of the three above
    avg_vehicle_occupancy_truck  AADT-weighted blend of singl and combi

Observation binning:
    5-minute epochs are grouped into ``time_bin_size`` bins per date.  For
    each requested data key ``<mean>_<metric>_<source>`` the bin value is:

        arithmetic_travel_time   mean(tt)
        harmonic_travel_time     n / sum(1 / tt)
        arithmetic_speed         mean(miles * 3600 / tt)
        harmonic_speed           miles * 3600 / mean(tt)

    Non-positive and missing travel times are excluded; a bin with no valid
    epoch for a key yields NaN for that key.
"""

import logging
import sqlite3
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

import numpy as np
import pandas as pd

from ..analysis.base import SEC_PER_HOUR
from ..analysis.calendar import (
    MINUTES_PER_EPOCH,
    TIME_BIN_SIZES,
    build_date_to_dow_table,
    build_time_bin_num_to_hour_table,
)
from ..analysis.config import MeanType, NpmrdsDataSource, NpmrdsMetric
from ..analysis.traffic_distribution import (
    NUM_DAYS_IN_WEEK,
    NUM_MONTHS,
    FunctionalClass,
    TrafficDistributionProfileSet,
)
from .manager import TMC_METADATA_COLUMNS, DatabaseManager

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# TMC metadata
# ---------------------------------------------------------------------------

def _dir_aadt(expr: str) -> str:
    return f"(CAST({expr} AS REAL) / MIN(COALESCE(faciltype, 2), 2))"


_AADT_TRUCK = "(aadt_singl + aadt_combi)"
_AADT_PASS = f"(aadt - {_AADT_TRUCK})"

_AVO_PASS = "1.7"
_AVO_SINGL = "(CASE ua_code WHEN '63217' THEN 16.8 ELSE 10.7 END)"
_AVO_COMBI = "1.0"

# Attribute name -> SQL expression over the tmc_metadata table.
DERIVED_TMC_ATTRIBUTES: Dict[str, str] = {
    "functional_class": (
        f"(CASE WHEN f_system <= 2 THEN '{FunctionalClass.FREEWAY.value}' "
        f"ELSE '{FunctionalClass.NONFREEWAY.value}' END)"
    ),
    "aadt_truck": _AADT_TRUCK,
    "aadt_pass": _AADT_PASS,
    "directional_aadt": _dir_aadt("aadt"),
    "directional_aadt_singl": _dir_aadt("aadt_singl"),
    "directional_aadt_combi": _dir_aadt("aadt_combi"),
    "directional_aadt_truck": _dir_aadt(_AADT_TRUCK),
    "directional_aadt_pass": _dir_aadt(_AADT_PASS),
    "avg_vehicle_occupancy_pass": _AVO_PASS,
    "avg_vehicle_occupancy_singl": _AVO_SINGL,
    "avg_vehicle_occupancy_combi": _AVO_COMBI,
    # zero (or unknown) AADT carries no people
    "avg_vehicle_occupancy": (
        f"COALESCE(({_AVO_PASS} * {_AADT_PASS} + {_AVO_SINGL} * aadt_singl "
        f"+ {_AVO_COMBI} * aadt_combi) / NULLIF(aadt, 0), 0.0)"
    ),
    "avg_vehicle_occupancy_truck": (
        f"COALESCE(({_AVO_SINGL} * aadt_singl + {_AVO_COMBI} * aadt_combi) "
        f"/ NULLIF({_AADT_TRUCK}, 0), 0.0)"
    ),
}


def _column_expression(name: str) -> str:
    if name in DERIVED_TMC_ATTRIBUTES:
        return f"{DERIVED_TMC_ATTRIBUTES[name]} AS {name}"
    if name in TMC_METADATA_COLUMNS:
        return name
    raise ValueError(f"Unknown TMC metadata attribute {name!r}")


def get_metadata_for_tmcs(
    db_path: Path,
    year: int,
    tmcs: Optional[Iterable[str]] = None,
    columns: Optional[Iterable[str]] = None,
) -> List[Dict[str, Any]]:
    """
    Fetch TMC attributes, including derived ones, for one year.

    Args:
        db_path: Path to SQLite database.
        year: Data year.
        tmcs: TMCs to fetch.  ``None`` fetches every TMC of the year.
        columns: Attribute names to project (stored or derived).  ``tmc`` is
            always included.  ``None`` projects every stored column.

    Returns:
        One dict per TMC, ordered by TMC.

    Raises:
        ValueError: If an attribute name is unknown.
    """
    names = list(dict.fromkeys(["tmc", *(columns or TMC_METADATA_COLUMNS)]))
    select = ",\n            ".join(_column_expression(n) for n in names)

    sql = f"""
        SELECT
            {select}
        FROM tmc_metadata
        WHERE year = ?
    """
    params: List[Any] = [year]
    if tmcs is not None:
        tmcs = list(tmcs)
        if not tmcs:
            return []
        sql += f" AND tmc IN ({', '.join('?' for _ in tmcs)})"
        params.extend(tmcs)
    sql += " ORDER BY tmc"

    with DatabaseManager(db_path) as manager:
        df = pd.read_sql_query(sql, manager.conn, params=params)

    df = df.astype(object).where(df.notna(), None)
    records = df.to_dict("records")

    if tmcs is not None and len(records) != len(set(tmcs)):
        found = {r["tmc"] for r in records}
        log.warning(
            "TMC metadata not found for some TMCs",
            extra={"year": year, "missing": sorted(set(tmcs) - found)},
        )
    return records


def list_tmcs(db_path: Path, year: int) -> List[str]:
    """All TMCs with metadata for *year*, sorted."""
    with DatabaseManager(db_path) as manager:
        rows = manager.conn.execute(
            "SELECT tmc FROM tmc_metadata WHERE year = ? ORDER BY tmc", (year,)
        ).fetchall()
    return [r[0] for r in rows]


# ---------------------------------------------------------------------------
# NPMRDS observations
# ---------------------------------------------------------------------------

def parse_npmrds_data_key(data_key: str) -> Tuple[MeanType, NpmrdsMetric, NpmrdsDataSource]:
    """Inverse of ``npmrds_data_key``."""
    mean, _, rest = data_key.partition("_")
    metric, _, source = rest.rpartition("_")
    try:
        return MeanType(mean), NpmrdsMetric(metric), NpmrdsDataSource(source)
    except ValueError:
        raise ValueError(f"Malformed NPMRDS data key {data_key!r}") from None


def _aggregate_bin_values(
    travel_times: pd.Series,
    groups: List[pd.Series],
    mean_type: MeanType,
    metric: NpmrdsMetric,
    miles: Optional[float],
) -> pd.Series:
    tt = travel_times.where(travel_times > 0)

    if metric is NpmrdsMetric.SPEED and miles is None:
        raise ValueError("Speed data keys require the TMC length in miles")

    if metric is NpmrdsMetric.TRAVEL_TIME:
        if mean_type is MeanType.ARITHMETIC:
            return tt.groupby(groups).mean()
        inverse = (1.0 / tt).groupby(groups)
        return inverse.count() / inverse.sum(min_count=1)

    if mean_type is MeanType.ARITHMETIC:
        return (miles * SEC_PER_HOUR / tt).groupby(groups).mean()
    return miles * SEC_PER_HOUR / tt.groupby(groups).mean()


def get_binned_year_npmrds_data_for_tmc(
    db_path: Path,
    year: int,
    tmc: str,
    time_bin_size: int,
    data_keys: Iterable[str],
    miles: Optional[float] = None,
) -> pd.DataFrame:
    """
    Read one TMC's year of 5-minute NPMRDS data and bin it.

    Args:
        db_path: Path to SQLite database.
        year: Data year.
        tmc: TMC code.
        time_bin_size: Bin length in minutes (5, 15 or 60).
        data_keys: Metric columns to produce, e.g.
            ``['arithmetic_travel_time_all', 'arithmetic_travel_time_pass']``.
        miles: TMC length, required for speed data keys.

    Returns:
        DataFrame with ``tmc, date, month, dow, hour, time_bin_num`` plus one
        column per data key, sorted by ``(date, time_bin_num)``.  Bins with
        no rows in the database are absent.
    """
    data_keys = list(dict.fromkeys(data_keys))
    parsed = {key: parse_npmrds_data_key(key) for key in data_keys}
    epochs_per_bin = time_bin_size // MINUTES_PER_EPOCH
    if time_bin_size not in TIME_BIN_SIZES:
        raise ValueError(f"Unsupported time bin size {time_bin_size!r}")

    sql = """
        SELECT date, epoch, travel_time_all, travel_time_pass, travel_time_truck
        FROM npmrds
        WHERE tmc = ? AND date >= ? AND date <= ?
        ORDER BY date, epoch
    """
    with DatabaseManager(db_path) as manager:
        raw = pd.read_sql_query(
            sql, manager.conn, params=(tmc, f"{year}-01-01", f"{year}-12-31")
        )

    columns = ["tmc", "date", "month", "dow", "hour", "time_bin_num", *data_keys]
    if raw.empty:
        log.debug("No NPMRDS data", extra={"tmc": tmc, "year": year})
        return pd.DataFrame(columns=columns)

    raw["time_bin_num"] = raw["epoch"].astype(int) // epochs_per_bin
    groups = [raw["date"], raw["time_bin_num"]]

    binned = pd.DataFrame({
        key: _aggregate_bin_values(
            raw[f"travel_time_{source.value}"].astype(float), groups, mean_type, metric, miles
        )
        for key, (mean_type, metric, source) in parsed.items()
    })
    binned.index.names = ["date", "time_bin_num"]
    binned = binned.reset_index()

    dow_table = build_date_to_dow_table(year)
    hour_table = build_time_bin_num_to_hour_table(time_bin_size)

    binned.insert(0, "tmc", tmc)
    binned.insert(2, "month", binned["date"].str.slice(5, 7).astype(int))
    binned.insert(3, "dow", binned["date"].map(dict(dow_table)).astype(int))
    binned.insert(4, "hour", binned["time_bin_num"].map(lambda n: hour_table[n]))

    return (
        binned[columns]
        .replace([np.inf, -np.inf], np.nan)
        .sort_values(["date", "time_bin_num"], kind="mergesort")
        .reset_index(drop=True)
    )


# ---------------------------------------------------------------------------
# Traffic distribution profiles
# ---------------------------------------------------------------------------

def _read_adjustment_factors(conn: sqlite3.Connection, kind: str, size: int) -> Tuple[float, ...]:
    rows = conn.execute(
        "SELECT idx, factor FROM traffic_distribution_adjustment_factors "
        "WHERE kind = ? ORDER BY idx",
        (kind,),
    ).fetchall()
    if not rows:
        log.info(f"No {kind} adjustment factors stored; using 1.0")
        return (1.0,) * size
    return tuple(float(factor) for _, factor in rows)


def load_traffic_distribution_profile_set(db_path: Path) -> TrafficDistributionProfileSet:
    """
    Build the immutable profile set from the stored profiles and factors.

    Raises:
        TrafficDistributionProfileError: If a stored profile or factor list
            is malformed.
    """
    with DatabaseManager(db_path) as manager:
        df = pd.read_sql_query(
            """
            SELECT version, profile_name, bin_num, fraction
            FROM traffic_distribution_profiles
            ORDER BY version, profile_name, bin_num
            """,
            manager.conn,
        )
        dow_factors = _read_adjustment_factors(manager.conn, "dow", NUM_DAYS_IN_WEEK)
        month_factors = _read_adjustment_factors(manager.conn, "month", NUM_MONTHS)

    profiles: Dict[str, Dict[str, Tuple[float, ...]]] = {}
    for (version, name), group in df.groupby(["version", "profile_name"], sort=False):
        profiles.setdefault(version, {})[name] = tuple(group["fraction"].astype(float))

    log.info(
        "Loaded traffic distribution profiles",
        extra={v: len(named) for v, named in profiles.items()},
    )
    return TrafficDistributionProfileSet(
        profiles=profiles,
        dow_adjustment_factors=dow_factors,
        month_adjustment_factors=month_factors,
    )

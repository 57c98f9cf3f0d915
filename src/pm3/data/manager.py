"""
Database Manager for PM3 System (Imperative Shell)

Handles all SQLite storage: schema initialisation, bulk inserts of TMC
metadata and NPMRDS travel times, and import of the traffic distribution
profile and adjustment-factor tables from CSV.

Package Location: src/pm3/data/manager.py

Schema:
    tmc_metadata                              one row per (year, tmc)
    npmrds                                    5-minute travel times per
                                              (tmc, date, epoch); epoch
                                              0..287
    traffic_distribution_profiles             native-resolution fractions
                                              per (version, profile, bin)
    traffic_distribution_adjustment_factors   kind 'dow' (0 = Sunday) or
                                              'month' (1 = January)
"""

import logging
import sqlite3
from pathlib import Path
from typing import List, Optional, Union

import pandas as pd

from ..analysis.traffic_distribution import TrafficDistributionProfilesVersion

log = logging.getLogger(__name__)

TMC_METADATA_COLUMNS: List[str] = [
    "year", "tmc", "miles", "f_system", "faciltype", "aadt", "aadt_singl",
    "aadt_combi", "avg_speedlimit", "congestion_level", "directionality",
    "ua_code", "isprimary", "state",
]

NPMRDS_COLUMNS: List[str] = [
    "tmc", "date", "epoch", "travel_time_all", "travel_time_pass", "travel_time_truck",
]

ADJUSTMENT_FACTOR_KINDS = ("dow", "month")


class DatabaseManager:
    """Manages SQLite database operations for the PM3 system.

    Responsibilities:
        - Database initialisation with WAL mode and full schema.
        - Bulk inserts of TMC metadata and NPMRDS rows.
        - Import of traffic distribution profiles and adjustment factors.
        - Transaction management via context-manager protocol.
    """

    def __init__(self, db_path: Path):
        """Initialise with path to the SQLite database.

        Args:
            db_path: Path to the SQLite database file.
        """
        self.db_path = Path(db_path)
        self.conn: Optional[sqlite3.Connection] = None

    def __enter__(self) -> "DatabaseManager":
        self.conn = sqlite3.connect(self.db_path)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self.conn:
            self.conn.close()

    def _require_conn(self) -> sqlite3.Connection:
        if not self.conn:
            raise RuntimeError("No connection. Use 'with DatabaseManager(...) as m:'.")
        return self.conn

    # ------------------------------------------------------------------
    # Schema initialisation
    # ------------------------------------------------------------------

    def init_db(self) -> None:
        """Initialise database schema and indices.  Safe to re-run."""
        conn = self._require_conn()
        cur = conn.cursor()
        cur.execute("PRAGMA journal_mode=WAL")

        cur.execute("""
            CREATE TABLE IF NOT EXISTS tmc_metadata (
                year             INTEGER NOT NULL,
                tmc              TEXT    NOT NULL,
                miles            REAL    NOT NULL,
                f_system         INTEGER,
                faciltype        INTEGER,
                aadt             REAL,
                aadt_singl       REAL,
                aadt_combi       REAL,
                avg_speedlimit   REAL,
                congestion_level TEXT,
                directionality   TEXT,
                ua_code          TEXT,
                isprimary        INTEGER,
                state            TEXT,
                PRIMARY KEY (year, tmc) ON CONFLICT REPLACE
            )
        """)

        cur.execute("""
            CREATE TABLE IF NOT EXISTS npmrds (
                tmc               TEXT    NOT NULL,
                date              TEXT    NOT NULL,
                epoch             INTEGER NOT NULL CHECK (epoch BETWEEN 0 AND 287),
                travel_time_all   REAL,
                travel_time_pass  REAL,
                travel_time_truck REAL,
                PRIMARY KEY (tmc, date, epoch) ON CONFLICT REPLACE
            )
        """)

        cur.execute("""
            CREATE TABLE IF NOT EXISTS traffic_distribution_profiles (
                version      TEXT    NOT NULL,
                profile_name TEXT    NOT NULL,
                bin_num      INTEGER NOT NULL,
                fraction     REAL    NOT NULL,
                PRIMARY KEY (version, profile_name, bin_num) ON CONFLICT REPLACE
            )
        """)

        cur.execute("""
            CREATE TABLE IF NOT EXISTS traffic_distribution_adjustment_factors (
                kind   TEXT    NOT NULL CHECK (kind IN ('dow', 'month')),
                idx    INTEGER NOT NULL,
                factor REAL    NOT NULL,
                PRIMARY KEY (kind, idx) ON CONFLICT REPLACE
            )
        """)

        conn.commit()
        log.info("Database initialised", extra={"db_path": str(self.db_path)})

    # ------------------------------------------------------------------
    # Bulk inserts
    # ------------------------------------------------------------------

    def _insert_frame(self, table: str, df: pd.DataFrame, columns: List[str]) -> int:
        conn = self._require_conn()
        missing = [c for c in columns if c not in df.columns]
        required_missing = [c for c in missing if c in ("year", "tmc", "miles", "date", "epoch")]
        if required_missing:
            raise ValueError(f"{table} rows are missing columns: {required_missing}")

        frame = df.reindex(columns=columns)
        frame = frame.astype(object).where(frame.notna(), None)
        placeholders = ", ".join("?" for _ in columns)
        conn.executemany(
            f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})",
            frame.itertuples(index=False, name=None),
        )
        conn.commit()
        return len(frame)

    def insert_tmc_metadata(self, df: pd.DataFrame) -> int:
        """Insert or replace TMC metadata rows.  Returns the row count."""
        count = self._insert_frame("tmc_metadata", df, TMC_METADATA_COLUMNS)
        log.info("Inserted TMC metadata", extra={"rows": count})
        return count

    def insert_npmrds(self, df: pd.DataFrame) -> int:
        """Insert or replace 5-minute NPMRDS rows.  Returns the row count."""
        count = self._insert_frame("npmrds", df, NPMRDS_COLUMNS)
        log.info("Inserted NPMRDS rows", extra={"rows": count})
        return count

    # ------------------------------------------------------------------
    # Traffic distribution imports
    # ------------------------------------------------------------------

    def import_traffic_distribution_profiles(
        self,
        csv_path: Path,
        version: Union[TrafficDistributionProfilesVersion, str],
    ) -> int:
        """Import native-resolution profiles for one profiles version.

        The CSV is wide: one column per profile name, one row per native
        bin in time order (288 rows for AVAIL, 24 for CATTLab).

        Args:
            csv_path: Path to the profile CSV.
            version: Profiles version the file belongs to.

        Returns:
            Number of profiles imported.
        """
        conn = self._require_conn()
        version = TrafficDistributionProfilesVersion(
            version.value if isinstance(version, TrafficDistributionProfilesVersion) else version
        )
        csv_path = Path(csv_path)
        if not csv_path.exists():
            raise FileNotFoundError(f"Profile file not found: {csv_path}")

        df = pd.read_csv(csv_path)
        if df.empty:
            raise ValueError(f"No profile rows found in {csv_path}")

        long_df = (
            df.reset_index(names="bin_num")
            .melt(id_vars="bin_num", var_name="profile_name", value_name="fraction")
        )
        long_df.insert(0, "version", version.value)

        conn.execute(
            "DELETE FROM traffic_distribution_profiles WHERE version = ?",
            (version.value,),
        )
        conn.executemany(
            "INSERT INTO traffic_distribution_profiles "
            "(version, profile_name, bin_num, fraction) VALUES (?, ?, ?, ?)",
            long_df[["version", "profile_name", "bin_num", "fraction"]]
            .itertuples(index=False, name=None),
        )
        conn.commit()

        log.info(
            f"Imported {df.shape[1]} {version.value} profiles from {csv_path}",
            extra={"version": version.value, "bins": len(df)},
        )
        return df.shape[1]

    def import_adjustment_factors(self, csv_path: Path, kind: str) -> int:
        """Import day-of-week or month adjustment factors.

        The CSV has two columns, ``idx`` and ``factor``.

        Args:
            csv_path: Path to the factors CSV.
            kind: ``'dow'`` (idx 0 = Sunday .. 6) or ``'month'`` (1 .. 12).

        Returns:
            Number of factors imported.
        """
        conn = self._require_conn()
        if kind not in ADJUSTMENT_FACTOR_KINDS:
            raise ValueError(f"Unknown adjustment factor kind {kind!r}")

        df = pd.read_csv(csv_path)
        if list(df.columns[:2]) != ["idx", "factor"]:
            raise ValueError(f"{csv_path} must have columns 'idx,factor'")

        expected = list(range(7)) if kind == "dow" else list(range(1, 13))
        if sorted(df["idx"].astype(int)) != expected:
            raise ValueError(f"{kind} factors must cover idx {expected[0]}..{expected[-1]}")

        conn.execute(
            "DELETE FROM traffic_distribution_adjustment_factors WHERE kind = ?", (kind,)
        )
        conn.executemany(
            "INSERT INTO traffic_distribution_adjustment_factors (kind, idx, factor) "
            "VALUES (?, ?, ?)",
            [(kind, int(i), float(f)) for i, f in zip(df["idx"], df["factor"])],
        )
        conn.commit()
        log.info(f"Imported {len(df)} {kind} adjustment factors from {csv_path}")
        return len(df)


def init_db(db_path: Path) -> None:
    """Convenience wrapper: initialise the schema at *db_path*."""
    with DatabaseManager(db_path) as m:
        m.init_db()

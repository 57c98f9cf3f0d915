"""
PM3 Unified Command-Line Interface

Exposes five subcommands:

    pm3 init-db          --db PATH                        Create the SQLite schema
    pm3 import-profiles  --db PATH --csv FILE --version   Load traffic distribution profiles
    pm3 import-factors   --db PATH --csv FILE --kind      Load dow / month adjustment factors
    pm3 calculate        --db PATH --year YYYY [...]      Compute the measures
    pm3 bin-counts       --year YYYY [...]                Print the bin counts of a year

The package must be installed (``pip install -e .``) for the ``pm3`` entry
point to be available.

Package Location: src/pm3/cli.py
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from .utils.logging import configure_logging

log = logging.getLogger(__name__)

MEASURE_CHOICES = ("PHED", "TTTR", "TTI", "SUMMARY_STATISTICS")
DEFAULT_MEASURES = ("PHED", "TTTR", "TTI")


# ===========================================================================
# Shared helpers
# ===========================================================================

def _die(message: str) -> None:
    """Print an error message and exit with status 1.

    Args:
        message: Human-readable error text.
    """
    print(f"\nError: {message}", file=sys.stderr)
    sys.exit(1)


def _require_db(db_path: Path) -> Path:
    if not db_path.exists():
        _die(
            f"Database not found: {db_path}\n"
            f"Tip: run 'pm3 init-db --db {db_path}' first."
        )
    return db_path


# ===========================================================================
# Subcommand handlers
# ===========================================================================

def handle_init_db(args: argparse.Namespace) -> None:
    """Create (or upgrade) the database schema."""
    from .data import init_db

    try:
        init_db(args.db)
    except Exception as exc:
        _die(f"Database initialisation failed: {exc}")
    print(f"Database ready: {args.db}")


def handle_import_profiles(args: argparse.Namespace) -> None:
    """Import one version's traffic distribution profiles from CSV."""
    from .data import DatabaseManager

    db_path = _require_db(args.db)
    try:
        with DatabaseManager(db_path) as m:
            m.init_db()
            count = m.import_traffic_distribution_profiles(args.csv, args.version)
    except Exception as exc:
        _die(f"Profile import failed: {exc}")
    print(f"Imported {count} {args.version} profiles")


def handle_import_factors(args: argparse.Namespace) -> None:
    """Import day-of-week or month adjustment factors from CSV."""
    from .data import DatabaseManager

    db_path = _require_db(args.db)
    try:
        with DatabaseManager(db_path) as m:
            m.init_db()
            count = m.import_adjustment_factors(args.csv, args.kind)
    except Exception as exc:
        _die(f"Adjustment factor import failed: {exc}")
    print(f"Imported {count} {args.kind} adjustment factors")


def _build_calculators(args: argparse.Namespace, db_path: Path) -> List:
    """Construct the requested calculators; PHED gets the profile engine."""
    from .analysis import (
        PhedCalculator,
        SummaryStatisticsCalculator,
        TrafficDistributionProfileEngine,
        TravelTimeIndexCalculator,
        TttrCalculator,
    )
    from .data import load_traffic_distribution_profile_set

    params: Dict[str, object] = {
        "year": args.year,
        "time_bin_size": args.time_bin_size,
        "time_period_spec": args.time_period_spec,
        "mean_type": args.mean_type,
        "npmrds_metric": args.metric,
    }

    calculators = []
    for measure in dict.fromkeys(args.measures):
        if measure == "PHED":
            engine = TrafficDistributionProfileEngine(
                load_traffic_distribution_profile_set(db_path)
            )
            calculators.append(PhedCalculator(engine, **params))
        elif measure == "TTTR":
            calculators.append(TttrCalculator(**params))
        elif measure == "TTI":
            calculators.append(TravelTimeIndexCalculator(**params))
        elif measure == "SUMMARY_STATISTICS":
            calculators.append(SummaryStatisticsCalculator(**params))
    return calculators


def handle_calculate(args: argparse.Namespace) -> None:
    """Compute the requested measures and write them to the output directory.

    Every calculator is constructed (and its configuration validated)
    before any TMC is read.  An error for any TMC aborts the run.

    Args:
        args: Parsed CLI arguments.
    """
    from .data import MeasureRunner, OutputWriter

    db_path = _require_db(args.db)

    try:
        calculators = _build_calculators(args, db_path)
    except ValueError as exc:
        _die(f"Invalid calculator configuration: {exc}")

    runner = MeasureRunner(db_path, args.year, calculators, workers=args.workers)
    writer = OutputWriter(args.output_dir)

    try:
        count = writer.add_all(runner.run(args.tmcs))
        written = writer.write(calculators, year=args.year)
    except Exception as exc:
        log.debug("Calculation failed", exc_info=True)
        _die(f"Calculation failed: {exc}")

    stats = runner.get_run_stats()
    print("\nCalculation Complete!")
    print(f"  TMCs processed    : {stats['tmcs_processed']}")
    print(f"  Observations read : {stats['observations_read']:,}")
    print(f"  Results           : {count}")
    print(f"  Output directory  : {writer.output_dir}")
    for measure, path in written.items():
        print(f"    {measure:<6} {path.name}")


def handle_bin_counts(args: argparse.Namespace) -> None:
    """Print the number of bins in a year, in total and per time period."""
    from .analysis import (
        TimePeriodIdentifier,
        get_num_bins_for_year,
        get_num_bins_per_time_period_for_year,
        get_time_period_spec,
    )
    from .utils.timezone import resolve_pytz

    timezone = resolve_pytz(args.timezone, fallback_to_utc=True).zone

    try:
        result: Dict[str, object] = {
            "year": args.year,
            "time_bin_size": args.time_bin_size,
            "timezone": timezone,
            "num_bins": get_num_bins_for_year(args.year, args.time_bin_size, timezone),
        }
        if args.time_period_spec:
            identifier = TimePeriodIdentifier(
                get_time_period_spec(args.time_period_spec), args.time_bin_size
            )
            result["num_bins_by_time_period"] = dict(
                get_num_bins_per_time_period_for_year(
                    args.year, args.time_bin_size, identifier, timezone
                )
            )
    except ValueError as exc:
        _die(str(exc))

    print(json.dumps(result, indent=4))


# ===========================================================================
# Argument parser construction
# ===========================================================================

def _add_db_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--db",
        required=True,
        type=Path,
        metavar="PATH",
        help="Path to the SQLite database.",
    )


def _build_parser() -> argparse.ArgumentParser:
    """Construct and return the top-level argument parser.

    Returns:
        Configured ``ArgumentParser`` with every subcommand attached.
    """
    from .analysis.calendar import DEFAULT_TIMEZONE, TIME_BIN_SIZES
    from .analysis.config import MeanType, NpmrdsMetric, TIME_PERIOD_SPEC_NAMES
    from .analysis.time_periods import TIME_PERIOD_SPECS
    from .analysis.traffic_distribution import TrafficDistributionProfilesVersion

    parser = argparse.ArgumentParser(
        prog="pm3",
        description=(
            "PM3 - Federal highway system performance measures\n"
            "PHED, TTTR and TTI from NPMRDS travel times."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: WARNING).",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        default=False,
        help="Emit log records as single-line JSON.",
    )
    subs = parser.add_subparsers(dest="command", metavar="<command>")
    subs.required = True

    # ------------------------------------------------------------------
    # init-db
    # ------------------------------------------------------------------
    p_init = subs.add_parser("init-db", help="Create the SQLite schema.")
    _add_db_argument(p_init)
    p_init.set_defaults(func=handle_init_db)

    # ------------------------------------------------------------------
    # import-profiles
    # ------------------------------------------------------------------
    p_prof = subs.add_parser(
        "import-profiles",
        help="Import traffic distribution profiles for one version.",
        description=(
            "Import a wide CSV with one column per profile name and one row\n"
            "per native bin (288 rows for AVAIL, 24 for CATTLAB)."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    _add_db_argument(p_prof)
    p_prof.add_argument("--csv", required=True, type=Path, metavar="FILE")
    p_prof.add_argument(
        "--version",
        required=True,
        choices=[v.value for v in TrafficDistributionProfilesVersion],
    )
    p_prof.set_defaults(func=handle_import_profiles)

    # ------------------------------------------------------------------
    # import-factors
    # ------------------------------------------------------------------
    p_fact = subs.add_parser(
        "import-factors",
        help="Import day-of-week or month adjustment factors.",
        description="Import a CSV with columns 'idx,factor'.",
    )
    _add_db_argument(p_fact)
    p_fact.add_argument("--csv", required=True, type=Path, metavar="FILE")
    p_fact.add_argument("--kind", required=True, choices=["dow", "month"])
    p_fact.set_defaults(func=handle_import_factors)

    # ------------------------------------------------------------------
    # calculate
    # ------------------------------------------------------------------
    p_calc = subs.add_parser(
        "calculate",
        help="Compute measures for the TMCs of one year.",
        description=(
            "Compute the requested measures and write one CSV per measure\n"
            "plus calculator_metadata.json to a timestamped directory:\n"
            "  <output-dir>/<YYYYMMDDTHHMMSS>/"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    _add_db_argument(p_calc)
    p_calc.add_argument("--year", required=True, type=int, metavar="YYYY")
    p_calc.add_argument(
        "--measures",
        nargs="+",
        default=list(DEFAULT_MEASURES),
        choices=MEASURE_CHOICES,
        help="Measures to compute (default: PHED TTTR TTI).",
    )
    p_calc.add_argument(
        "--tmcs",
        nargs="+",
        default=None,
        metavar="TMC",
        help="Restrict the run to these TMCs (default: every TMC of the year).",
    )
    p_calc.add_argument(
        "--time-bin-size",
        type=int,
        default=15,
        choices=TIME_BIN_SIZES,
        help="Observation bin size in minutes (default: 15).",
    )
    p_calc.add_argument(
        "--time-period-spec",
        default=None,
        choices=TIME_PERIOD_SPEC_NAMES,
        help="Override each measure's default time period spec.",
    )
    p_calc.add_argument(
        "--mean-type",
        default=None,
        choices=[m.value for m in MeanType],
    )
    p_calc.add_argument(
        "--metric",
        default=None,
        choices=[m.value for m in NpmrdsMetric],
    )
    p_calc.add_argument(
        "--output-dir",
        type=Path,
        default=Path("output"),
        metavar="DIR",
        help="Root output directory (default: ./output).",
    )
    p_calc.add_argument(
        "--workers",
        type=int,
        default=1,
        metavar="N",
        help="Number of TMCs computed concurrently (default: 1).",
    )
    p_calc.set_defaults(func=handle_calculate)

    # ------------------------------------------------------------------
    # bin-counts
    # ------------------------------------------------------------------
    p_bins = subs.add_parser(
        "bin-counts",
        help="Print the number of time bins in a year.",
    )
    p_bins.add_argument("--year", required=True, type=int, metavar="YYYY")
    p_bins.add_argument(
        "--time-bin-size",
        type=int,
        default=15,
        choices=TIME_BIN_SIZES,
    )
    p_bins.add_argument(
        "--time-period-spec",
        default=None,
        choices=list(TIME_PERIOD_SPECS),
        help="Also count bins per time period of this spec.",
    )
    p_bins.add_argument(
        "--timezone",
        default=DEFAULT_TIMEZONE,
        metavar="TZ",
        help=f"IANA timezone for the spring-forward date (default: {DEFAULT_TIMEZONE}).",
    )
    p_bins.set_defaults(func=handle_bin_counts)

    return parser


# ===========================================================================
# Entry point
# ===========================================================================

def main(argv: Optional[Sequence[str]] = None) -> None:
    """Parse CLI arguments and dispatch to the appropriate handler.

    This function is registered as the ``pm3`` console script entry point
    in ``pyproject.toml``.
    """
    parser = _build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level, json_format=args.json_logs)
    args.func(args)


if __name__ == "__main__":
    main()

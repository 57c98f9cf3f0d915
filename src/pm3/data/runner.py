"""
PM3 Measure Runner (Imperative Shell)

Drives one or more measure calculators over the TMCs of a year: reads the
metadata once, reads and bins each TMC's NPMRDS data once, hands both to
every calculator and yields the results.

Package Location: src/pm3/data/runner.py

Concurrency
===========
TMCs are independent.  With ``workers > 1`` they are processed on a
``ThreadPoolExecutor``; results are still yielded in TMC order.  The only
state shared across threads is the traffic distribution engine, whose
caches are idempotent and lock guarded.

Errors
======
An error raised for any TMC propagates out of ``run``.  There is no
log-and-continue.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

import pandas as pd

from ..analysis.base import MeasureCalculator
from .reader import (
    get_binned_year_npmrds_data_for_tmc,
    get_metadata_for_tmcs,
    list_tmcs,
)

log = logging.getLogger(__name__)

MeasureResult = Tuple[str, Dict[str, Any]]


class MeasureRunner:
    """Runs measure calculators over the TMCs of one year.

    Responsibilities:
        - Projecting the union of the calculators' required TMC metadata.
        - Binning each TMC's observations once for all calculators.
        - Dispatching TMCs to a thread pool when ``workers > 1``.
        - Tracking run statistics.
    """

    def __init__(
        self,
        db_path: Path,
        year: int,
        calculators: Sequence[MeasureCalculator],
        workers: int = 1,
    ):
        """Initialise the runner.

        Args:
            db_path:     Path to the SQLite database.
            year:        Data year.
            calculators: Calculators to run.  All must share one
                         ``time_bin_size``.
            workers:     Number of TMCs computed concurrently.

        Raises:
            ValueError: If no calculators are given, their time bin sizes
                        differ, or ``workers < 1``.
        """
        if not calculators:
            raise ValueError("At least one calculator is required")
        if workers < 1:
            raise ValueError(f"workers must be >= 1, got {workers}")

        bin_sizes = {c.config.time_bin_size for c in calculators}
        if len(bin_sizes) != 1:
            raise ValueError(f"Calculators disagree on time_bin_size: {sorted(bin_sizes)}")

        self.db_path = Path(db_path)
        self.year = year
        self.calculators = list(calculators)
        self.workers = workers
        self.time_bin_size = bin_sizes.pop()

        self.required_tmc_metadata = sorted(
            set().union(*(c.required_tmc_metadata for c in self.calculators))
        )
        self.npmrds_data_keys: List[str] = list(dict.fromkeys(
            key for c in self.calculators for key in c.npmrds_data_keys
        ))

        self._tmcs_processed: int = 0
        self._observations_read: int = 0

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    def run(self, tmcs: Optional[Sequence[str]] = None) -> Iterator[MeasureResult]:
        """Compute every measure for every TMC.

        Args:
            tmcs: TMCs to process.  ``None`` processes every TMC with
                  metadata for the year.

        Yields:
            ``(measure, result)`` pairs, grouped by TMC in TMC order.
        """
        if tmcs is None:
            tmcs = list_tmcs(self.db_path, self.year)

        metadata = get_metadata_for_tmcs(
            self.db_path, self.year, tmcs, self.required_tmc_metadata
        )
        log.info(
            f"Running {[c.measure for c in self.calculators]} for {len(metadata)} TMCs",
            extra={"year": self.year, "workers": self.workers},
        )

        if self.workers == 1:
            for attrs in metadata:
                yield from self._collect(*self._run_tmc(attrs))
            return

        # workers only compute; the counters are updated here, on one thread
        with ThreadPoolExecutor(max_workers=self.workers) as pool:
            for results, num_observations in pool.map(self._run_tmc, metadata):
                yield from self._collect(results, num_observations)

    def get_run_stats(self) -> Dict[str, Any]:
        """Return summary statistics from the current run."""
        return {
            "year": self.year,
            "measures": [c.measure for c in self.calculators],
            "tmcs_processed": self._tmcs_processed,
            "observations_read": self._observations_read,
        }

    # ------------------------------------------------------------------
    # Per-TMC work
    # ------------------------------------------------------------------

    def _read_observations(self, attrs: Mapping[str, Any]) -> pd.DataFrame:
        return get_binned_year_npmrds_data_for_tmc(
            self.db_path,
            self.year,
            attrs["tmc"],
            self.time_bin_size,
            self.npmrds_data_keys,
            miles=attrs.get("miles"),
        )

    def _collect(self, results: List[MeasureResult], num_observations: int) -> List[MeasureResult]:
        self._tmcs_processed += 1
        self._observations_read += num_observations
        return results

    def _run_tmc(self, attrs: Mapping[str, Any]) -> Tuple[List[MeasureResult], int]:
        observations = self._read_observations(attrs)
        log.debug(
            "Computing measures",
            extra={"tmc": attrs["tmc"], "observations": len(observations)},
        )

        results = [
            (calculator.measure, calculator.calculate_for_tmc(attrs, observations))
            for calculator in self.calculators
        ]

        return results, len(observations)

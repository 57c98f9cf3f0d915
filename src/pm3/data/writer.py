"""
PM3 Output Writer (Imperative Shell)

Writes measure results and run metadata to a timestamped run directory.

Package Location: src/pm3/data/writer.py

Layout::

    {output_dir}/{YYYYMMDDTHHMMSS}/
        PHED.csv                   one row per TMC, nested dicts flattened
        TTTR.csv                   to dotted columns, e.g.
        ...                        ``tttr_by_time_period.AMP``
        calculator_metadata.json
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import pandas as pd

from .. import __version__

log = logging.getLogger(__name__)

METADATA_FILE_NAME = "calculator_metadata.json"


class OutputWriter:
    """
    Buffers results per measure and writes them as CSV files.

    Args:
        output_dir: Root directory for calculator output.  A sub-directory
            named after the run timestamp is created inside it.
        timestamp: Run timestamp; defaults to now (UTC).
    """

    def __init__(self, output_dir: Path, timestamp: Optional[datetime] = None) -> None:
        self.timestamp = timestamp or datetime.now(timezone.utc)
        self.output_dir = Path(output_dir) / self.timestamp.strftime("%Y%m%dT%H%M%S")
        self._results: Dict[str, List[Dict[str, Any]]] = {}

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    def add(self, measure: str, result: Dict[str, Any]) -> None:
        self._results.setdefault(measure, []).append(result)

    def add_all(self, results: Iterable[Tuple[str, Dict[str, Any]]]) -> int:
        """Buffer ``(measure, result)`` pairs.  Returns the number added."""
        count = 0
        for measure, result in results:
            self.add(measure, result)
            count += 1
        return count

    def write(self, calculators: Sequence[Any], year: Optional[int] = None) -> Dict[str, Path]:
        """
        Write one CSV per measure plus ``calculator_metadata.json``.

        Args:
            calculators: The calculators that produced the results.
            year: Data year, recorded in the metadata.

        Returns:
            ``{measure: csv_path}`` for every measure written.
        """
        self.output_dir.mkdir(parents=True, exist_ok=True)

        written: Dict[str, Path] = {}
        for measure, rows in self._results.items():
            path = self.output_dir / f"{measure}.csv"
            pd.json_normalize(rows).to_csv(path, index=False)
            written[measure] = path
            log.info(f"Wrote {len(rows)} {measure} rows", extra={"path": str(path)})

        self._write_metadata(calculators, year, written)
        return written

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _write_metadata(
        self,
        calculators: Sequence[Any],
        year: Optional[int],
        written: Dict[str, Path],
    ) -> Path:
        canonical = all(c.is_canonical for c in calculators)
        if not canonical:
            log.warning(
                "This run is ineligible to become an authoritative version: "
                "a calculator is not configured with its measure defaults."
            )

        metadata = {
            "pm3_version": __version__,
            "timestamp": self.timestamp.isoformat(),
            "year": year,
            "authoritative_version_candidate": canonical,
            "calculators": [
                {
                    "measure": c.measure,
                    "is_canonical": c.is_canonical,
                    "output_file_name": written[c.measure].name if c.measure in written else None,
                    "config": c.config.to_dict(),
                    "time_period_spec": c.time_period_spec.name,
                }
                for c in calculators
            ],
        }

        path = self.output_dir / METADATA_FILE_NAME
        with open(path, "w") as fh:
            json.dump(metadata, fh, indent=4)
        return path

"""
PM3 Data Package (Imperative Shell)

This package handles all I/O operations: SQLite storage, reading and
binning NPMRDS data, driving the calculators and writing output files.

Modules:
- manager: DatabaseManager for SQLite operations
- reader:  TMC metadata, binned observations and profile loading
- runner:  MeasureRunner driving calculators over TMCs
- writer:  OutputWriter for CSV results and run metadata
"""

from .manager import DatabaseManager, init_db
from .reader import (
    get_metadata_for_tmcs,
    list_tmcs,
    get_binned_year_npmrds_data_for_tmc,
    load_traffic_distribution_profile_set,
)
from .runner import MeasureRunner
from .writer import OutputWriter

__all__ = [
    # Storage
    'DatabaseManager',
    'init_db',
    # Reading
    'get_metadata_for_tmcs',
    'list_tmcs',
    'get_binned_year_npmrds_data_for_tmc',
    'load_traffic_distribution_profile_set',
    # Running
    'MeasureRunner',
    'OutputWriter',
]

"""
PM3 - Federal Highway Performance Measures

A Python package computing the PM3 system performance measures (PHED,
TTTR, TTI) from NPMRDS travel-time data, using the Functional Core,
Imperative Shell architecture.

Structure:
- analysis/ : Functional Core (pure measure calculations)
- data/     : Imperative Shell (SQLite storage, driver, output writers)
- utils/    : Logging and timezone helpers
"""

__version__ = "0.1.0"

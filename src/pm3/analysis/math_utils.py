"""
PM3 Numeric Primitives (Functional Core)

Pure functions only. No I/O, no side effects.

Every measure calculator depends on these helpers for the rounding and
ordering rules mandated by the Final Rule (23 CFR 490).

Package Location: src/pm3/analysis/math_utils.py

Rounding Rule:
    ``precision_round`` rounds half away from zero.  The value is quantized
    from its shortest ``repr`` so that a binary-float artefact such as
    ``1.005 * 100 == 100.49999999999999`` cannot bias the result downward.
"""

from __future__ import annotations

import math
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Sequence

import numpy as np


def _is_missing(value: Optional[float]) -> bool:
    return value is None or (isinstance(value, float) and math.isnan(value))


def precision_round(value: Optional[float], decimals: int = 0) -> Optional[float]:
    """
    Round *value* half away from zero to *decimals* decimal places.

    Args:
        value: Number to round.  ``None``, NaN and infinities are returned
            unchanged.
        decimals: Number of decimal places (may be negative).

    Returns:
        The rounded value as a ``float``.
    """
    if _is_missing(value) or math.isinf(value):
        return value

    quantum = Decimal(1).scaleb(-decimals)
    rounded = Decimal(repr(float(value))).quantize(quantum, rounding=ROUND_HALF_UP)
    return float(rounded)


def numbers_comparator(a: Optional[float], b: Optional[float]) -> int:
    """
    Three-way comparison for numeric sorting with ``functools.cmp_to_key``.

    Missing values (``None`` / NaN) sort after every number and compare
    equal to each other.
    """
    a_missing = _is_missing(a)
    b_missing = _is_missing(b)

    if a_missing or b_missing:
        return int(a_missing) - int(b_missing)
    if a < b:
        return -1
    if a > b:
        return 1
    return 0


def quantile_sorted(values: Sequence[float], p: float) -> float:
    """
    R-7 sample quantile of an ascending sequence.

    ``h = p * (n - 1)``; the result interpolates linearly between the order
    statistics at ``floor(h)`` and ``ceil(h)``.

    Args:
        values: Ascending, missing-free sequence of numbers.
        p: Probability in ``[0, 1]``.

    Raises:
        ValueError: If *values* is empty or *p* is out of range.
    """
    if len(values) == 0:
        raise ValueError("quantile_sorted requires at least one value")
    if not 0.0 <= p <= 1.0:
        raise ValueError(f"Quantile probability out of range: {p}")

    return float(np.quantile(np.asarray(values, dtype=float), p, method="linear"))

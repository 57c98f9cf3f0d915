"""Rounding, ordering and quantile primitives."""

import math
from functools import cmp_to_key

import pytest

from pm3.analysis.math_utils import numbers_comparator, precision_round, quantile_sorted


class TestPrecisionRound:
    def test_half_rounds_away_from_zero(self):
        assert precision_round(2.5) == 3.0
        assert precision_round(-2.5) == -3.0
        assert precision_round(0.0165, 3) == 0.017

    def test_binary_float_artefacts_do_not_round_down(self):
        assert precision_round(1.005, 2) == 1.01
        assert precision_round(1.545, 2) == 1.55

    def test_negative_decimals(self):
        assert precision_round(1250, -2) == 1300.0

    @pytest.mark.parametrize("value", [1.005, -2.5, 2.5, 0.0165, 190.08, -0.0005, 1250.0])
    @pytest.mark.parametrize("decimals", [-2, 0, 1, 2, 3])
    def test_rounding_twice_changes_nothing(self, value, decimals):
        once = precision_round(value, decimals)
        assert precision_round(once, decimals) == once

    def test_missing_values_pass_through(self):
        assert precision_round(None) is None
        assert math.isnan(precision_round(float("nan"), 2))
        assert precision_round(float("inf")) == float("inf")


def test_numbers_comparator_sorts_missing_last():
    values = [3.0, None, 1.0, float("nan"), 2.0]
    ordered = sorted(values, key=cmp_to_key(numbers_comparator))
    assert ordered[:3] == [1.0, 2.0, 3.0]
    assert ordered[3] is None or math.isnan(ordered[3])
    assert numbers_comparator(None, float("nan")) == 0


class TestQuantileSorted:
    def test_r7_interpolation(self):
        values = [100, 110, 120, 130, 200]
        assert quantile_sorted(values, 0.5) == 120.0
        # h = 0.95 * 4 = 3.8 -> 130 + 0.8 * (200 - 130)
        assert quantile_sorted(values, 0.95) == pytest.approx(186.0)

    def test_single_value(self):
        assert quantile_sorted([42.0], 0.95) == 42.0

    def test_extremes(self):
        assert quantile_sorted([1, 2, 3], 0.0) == 1.0
        assert quantile_sorted([1, 2, 3], 1.0) == 3.0

    @pytest.mark.parametrize("values, p", [([], 0.5), ([1.0], 1.5), ([1.0], -0.1)])
    def test_invalid_input(self, values, p):
        with pytest.raises(ValueError):
            quantile_sorted(values, p)

"""
test_interest_rate.py - Unit tests for InterestRateCurve

Tests:
- Construction validation
- Clamping below the first and above the last control point
- Linear interpolation between control points
- Flat and single-point curves
"""

import pytest

from lending import InterestRateCurve, Decimal


class TestValidation:
    """Tests for curve construction."""

    def test_length_mismatch(self):
        with pytest.raises(ValueError, match="differ in length"):
            InterestRateCurve([0, 100], [0])

    def test_empty(self):
        with pytest.raises(ValueError):
            InterestRateCurve([], [])

    def test_decreasing_utilization(self):
        with pytest.raises(ValueError, match="non-decreasing"):
            InterestRateCurve([0, 80, 50], [0, 100, 200])

    def test_utilization_out_of_range(self):
        with pytest.raises(ValueError):
            InterestRateCurve([0, 120], [0, 100])

    def test_negative_apr(self):
        with pytest.raises(ValueError):
            InterestRateCurve([0, 100], [-1, 100])

    def test_control_points_are_read_only(self):
        curve = InterestRateCurve([0, 100], [0, 1000])
        with pytest.raises(ValueError):
            curve.utils[0] = 5

    def test_equality(self):
        assert InterestRateCurve([0, 100], [0, 1000]) == InterestRateCurve((0, 100), (0, 1000))
        assert InterestRateCurve([0, 100], [0, 1000]) != InterestRateCurve([0, 100], [0, 2000])


class TestApr:
    """Tests for apr(utilization)."""

    @pytest.fixture
    def curve(self):
        # 0% -> 1%, 80% -> 10%, 100% -> 100%
        return InterestRateCurve([0, 80, 100], [100, 1000, 10000])

    def test_at_control_points(self, curve):
        assert curve.apr(Decimal.zero()) == Decimal.from_percent(1)
        assert curve.apr(Decimal.from_percent(80)) == Decimal.from_percent(10)
        assert curve.apr(Decimal.one()) == Decimal.from_percent(100)

    def test_interpolates(self, curve):
        # Halfway between 0% and 80% -> halfway between 1% and 10%
        assert curve.apr(Decimal.from_percent(40)) == Decimal.from_bps(550)
        # Halfway between 80% and 100% -> halfway between 10% and 100%
        assert curve.apr(Decimal.from_percent(90)) == Decimal.from_bps(5500)

    def test_interpolates_fractional_utilization(self, curve):
        # 40.5% -> 1% + 9% * 40.5/80
        util = Decimal.from_str("0.405")
        expected = Decimal.from_percent(1).add(Decimal.from_percent(9).mul(Decimal.from_str("40.5")).div(80))
        assert curve.apr(util) == expected

    def test_clamps_below_first_point(self):
        curve = InterestRateCurve([20, 100], [500, 1000])
        assert curve.apr(Decimal.from_percent(5)) == Decimal.from_bps(500)

    def test_clamps_above_last_point(self):
        curve = InterestRateCurve([0, 50], [0, 2000])
        assert curve.apr(Decimal.from_percent(90)) == Decimal.from_bps(2000)

    def test_decreasing_segment(self):
        curve = InterestRateCurve([0, 100], [1000, 0])
        assert curve.apr(Decimal.from_percent(25)) == Decimal.from_bps(750)

    def test_flat(self):
        curve = InterestRateCurve.flat(300)
        assert curve.apr(Decimal.zero()) == Decimal.from_bps(300)
        assert curve.apr(Decimal.from_percent(77)) == Decimal.from_bps(300)

    def test_is_not_constant(self, curve):
        assert curve.apr(Decimal.from_percent(10)) != curve.apr(Decimal.from_percent(60))

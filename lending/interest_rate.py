"""
interest_rate.py - Utilization to APR Curve

A reserve's borrow APR is a piecewise-linear function of its utilization,
defined by parallel control-point arrays:

    utilization_pct: [0, 80, 100]      (non-decreasing, each in [0, 100])
    apr_bps:         [200, 1000, 15000]

Between two control points the APR is interpolated linearly; below the
first point the first APR applies, above the last point the last APR.
Control points are held as integer numpy arrays and the bracketing
segment is found with np.searchsorted. The interpolation itself is done
in WAD fixed point so results are exact and deterministic.
"""

from __future__ import annotations
from typing import Sequence, Tuple

import numpy as np

from .fixed_point import Decimal


class InterestRateCurve:
    """
    Piecewise-linear APR(utilization) curve.

    Attributes:
        utils: Utilization control points in percent, as an int64 array
        aprs: APR control points in basis points, as an int64 array

    Example:
        curve = InterestRateCurve([0, 80, 100], [0, 1000, 5000])
        curve.apr(Decimal.from_percent(40))   # 5% -> Decimal(0.05)
    """

    __slots__ = ("utils", "aprs")

    def __init__(self, utilization_pct: Sequence[int], apr_bps: Sequence[int]):
        utils = np.asarray(utilization_pct, dtype=np.int64)
        aprs = np.asarray(apr_bps, dtype=np.int64)

        if utils.ndim != 1 or aprs.ndim != 1:
            raise ValueError("interest rate control points must be one-dimensional")
        if len(utils) == 0:
            raise ValueError("interest rate curve needs at least one control point")
        if len(utils) != len(aprs):
            raise ValueError(
                f"utilization and apr arrays differ in length: {len(utils)} != {len(aprs)}"
            )
        if np.any(utils < 0) or np.any(utils > 100):
            raise ValueError(f"utilization points must be within [0, 100], got {utils.tolist()}")
        if np.any(np.diff(utils) < 0):
            raise ValueError(f"utilization points must be non-decreasing, got {utils.tolist()}")
        if np.any(aprs < 0):
            raise ValueError(f"apr points cannot be negative, got {aprs.tolist()}")

        utils.setflags(write=False)
        aprs.setflags(write=False)
        self.utils = utils
        self.aprs = aprs

    @classmethod
    def flat(cls, apr_bps: int) -> InterestRateCurve:
        """Curve charging the same APR at every utilization."""
        return cls([0], [apr_bps])

    @property
    def points(self) -> Tuple[Tuple[int, int], ...]:
        return tuple(zip(self.utils.tolist(), self.aprs.tolist()))

    def apr(self, utilization: Decimal) -> Decimal:
        """
        Return the annual rate (as a fraction, e.g. 0.05 for 5%) at a utilization.

        Args:
            utilization: Fraction of supply that is borrowed, in [0, 1]

        Returns:
            Interpolated APR as a fixed-point Decimal
        """
        util_pct = utilization.mul(100)

        # First control point strictly above the utilization. Control points are
        # integers, so comparing against floor(util_pct) selects the same segment.
        idx = int(np.searchsorted(self.utils, util_pct.floor(), side="right"))

        if idx == 0:
            return Decimal.from_bps(int(self.aprs[0]))
        if idx == len(self.utils):
            return Decimal.from_bps(int(self.aprs[-1]))

        lo_util, hi_util = int(self.utils[idx - 1]), int(self.utils[idx])
        lo_apr, hi_apr = int(self.aprs[idx - 1]), int(self.aprs[idx])

        # hi_util > floor(util_pct) >= lo_util, so the segment has non-zero width
        progress = util_pct.sub(lo_util).div(hi_util - lo_util)
        lo = Decimal.from_bps(lo_apr)
        hi = Decimal.from_bps(hi_apr)
        if hi_apr >= lo_apr:
            return lo.add(hi.sub(lo).mul(progress))
        return lo.sub(lo.sub(hi).mul(progress))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, InterestRateCurve):
            return NotImplemented
        return np.array_equal(self.utils, other.utils) and np.array_equal(self.aprs, other.aprs)

    def __hash__(self) -> int:
        return hash(self.points)

    def __repr__(self) -> str:
        return f"InterestRateCurve({self.points})"

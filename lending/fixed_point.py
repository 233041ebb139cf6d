"""
fixed_point.py - Unsigned WAD Fixed-Point Arithmetic

Every quantity the protocol computes with (prices, rates, USD values,
normalized debt) is a Decimal: an unsigned integer scaled by 10^18.
Python integers are unbounded, so products never overflow before the
rescaling division; results are truncated toward zero.

Key Formulas:
    mul(a, b) = a.value * b.value // WAD
    div(a, b) = a.value * WAD // b.value
    floor(a)  = a.value // WAD
    ceil(a)   = -(-a.value // WAD)
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal as _StdDecimal, InvalidOperation, ROUND_DOWN, localcontext
from typing import Union

from .core import WAD, ArithmeticUnderflow, DivisionByZero


_Operand = Union["Decimal", int]


@dataclass(frozen=True, slots=True, order=True)
class Decimal:
    """
    Unsigned fixed-point number with 18 decimal places.

    Attributes:
        value: Raw scaled integer (1.0 is stored as 10**18)
    """
    value: int

    def __post_init__(self):
        if isinstance(self.value, bool) or not isinstance(self.value, int):
            raise ValueError(f"Decimal raw value must be int, got {type(self.value).__name__}")
        if self.value < 0:
            raise ArithmeticUnderflow(f"Decimal cannot be negative, got raw value {self.value}")

    # ------------------------------------------------------------------
    # Constructors
    # ------------------------------------------------------------------

    @classmethod
    def from_int(cls, n: int) -> Decimal:
        return cls(n * WAD)

    @classmethod
    def from_percent(cls, pct: int) -> Decimal:
        return cls(pct * WAD // 100)

    @classmethod
    def from_bps(cls, bps: int) -> Decimal:
        return cls(bps * WAD // 10_000)

    @classmethod
    def from_scaled_val(cls, raw: int) -> Decimal:
        return cls(raw)

    @classmethod
    def from_str(cls, text: str) -> Decimal:
        """
        Parse a decimal literal exactly, truncating beyond 18 places.

        Example:
            Decimal.from_str("1.5").value == 1_500_000_000_000_000_000
        """
        with localcontext() as ctx:
            ctx.prec = 80
            try:
                parsed = _StdDecimal(text)
            except InvalidOperation:
                raise ValueError(f"Invalid decimal literal: {text!r}")
            if not parsed.is_finite():
                raise ValueError(f"Decimal must be finite, got {text!r}")
            scaled = (parsed * WAD).to_integral_value(rounding=ROUND_DOWN)
        return cls(int(scaled))

    @classmethod
    def zero(cls) -> Decimal:
        return cls(0)

    @classmethod
    def one(cls) -> Decimal:
        return cls(WAD)

    # ------------------------------------------------------------------
    # Arithmetic
    # ------------------------------------------------------------------

    def add(self, other: _Operand) -> Decimal:
        return Decimal(self.value + _coerce(other).value)

    def sub(self, other: _Operand) -> Decimal:
        other = _coerce(other)
        if self.value < other.value:
            raise ArithmeticUnderflow(f"{self} - {other} would be negative")
        return Decimal(self.value - other.value)

    def saturating_sub(self, other: _Operand) -> Decimal:
        """Subtract, clamping at zero instead of raising."""
        other = _coerce(other)
        if self.value <= other.value:
            return Decimal(0)
        return Decimal(self.value - other.value)

    def mul(self, other: _Operand) -> Decimal:
        return Decimal(self.value * _coerce(other).value // WAD)

    def div(self, other: _Operand) -> Decimal:
        other = _coerce(other)
        if other.value == 0:
            raise DivisionByZero(f"{self} / 0")
        return Decimal(self.value * WAD // other.value)

    def floor(self) -> int:
        return self.value // WAD

    def ceil(self) -> int:
        return -(-self.value // WAD)

    def eq(self, other: _Operand) -> bool:
        return self.value == _coerce(other).value

    def min(self, other: _Operand) -> Decimal:
        other = _coerce(other)
        return self if self.value <= other.value else other

    def max(self, other: _Operand) -> Decimal:
        other = _coerce(other)
        return self if self.value >= other.value else other

    def is_zero(self) -> bool:
        return self.value == 0

    # Operator sugar for the named operations above
    __add__ = add
    __sub__ = sub
    __mul__ = mul
    __truediv__ = div

    def __str__(self) -> str:
        whole, frac = divmod(self.value, WAD)
        if frac == 0:
            return str(whole)
        return f"{whole}.{frac:018d}".rstrip("0")

    def __repr__(self) -> str:
        return f"Decimal({self})"


def _coerce(other: _Operand) -> Decimal:
    if isinstance(other, Decimal):
        return other
    if isinstance(other, int) and not isinstance(other, bool):
        return Decimal.from_int(other)
    raise TypeError(f"Cannot combine fixed-point Decimal with {type(other).__name__}")

"""
Values -- Immutable, self-validating money and rate value objects.

Responsibility:
    Provides the foundational value types for every tax and payroll
    computation: Money (whole-đồng amounts) and Percentage (statutory rates).
    Also exposes ``round_money``, the single rounding policy of the engine.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    Imported by every engine module. No outward dependencies.

Invariants enforced:
    - Decimal only: floats are rejected at construction, never coerced.
    - Single rounding policy: every terminal monetary figure is rounded to a
      whole đồng with ROUND_HALF_UP (ties away from zero).
    - No intermediate rounding: arithmetic on Money keeps full precision;
      only ``round()`` quantizes.

Failure modes:
    - TypeError when a float (or bool) is supplied as an amount or rate.
    - ValueError when an amount or rate is NaN or infinite.

Audit relevance:
    Auditors recompute statutory figures line by line.  Keeping full
    precision until one explicit rounding step means the engine's output
    matches that recomputation to the đồng.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

WHOLE_DONG = Decimal("1")
HUNDRED = Decimal("100")


def to_decimal(value: Any, label: str = "value") -> Decimal:
    """
    Convert an int, str or Decimal to a finite Decimal.

    Preconditions:
        - ``value`` is not a float (floats carry binary rounding error).
    Postconditions:
        - Returns a finite Decimal.
    Raises:
        TypeError: on float, bool or unsupported types.
        ValueError: on unparseable, NaN or infinite values.
    """
    if isinstance(value, bool) or isinstance(value, float):
        raise TypeError(f"{label} must not be {type(value).__name__}; use Decimal or str")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, str)):
        try:
            result = Decimal(str(value))
        except InvalidOperation as e:
            raise ValueError(f"Invalid {label}: {value!r}") from e
    else:
        raise TypeError(f"{label} must be Decimal, int or str, got {type(value).__name__}")
    if not result.is_finite():
        raise ValueError(f"{label} must be finite, got {result}")
    return result


def round_money(value: Decimal) -> Decimal:
    """Round to a whole đồng, ties away from zero."""
    return value.quantize(WHOLE_DONG, rounding=ROUND_HALF_UP)


@dataclass(frozen=True, slots=True)
class Money:
    """
    Monetary amount in Vietnamese đồng.

    Contract:
        Wraps a finite Decimal.  The engine works in a single currency,
        so Money carries no currency code.

    Guarantees:
        - Immutable and hashable (frozen dataclass with slots)
        - amount is always a finite Decimal (never float)
        - Arithmetic never rounds; ``round()`` is the only quantizing step

    Non-goals:
        - Does NOT auto-round -- callers must explicitly call .round()
        - Does NOT model foreign currencies
    """

    amount: Decimal

    def __post_init__(self) -> None:
        object.__setattr__(self, "amount", to_decimal(self.amount, "amount"))

    @classmethod
    def of(cls, amount: Decimal | str | int) -> Money:
        """
        Factory method for creating Money.

        Raises:
            TypeError: If amount is a float.
            ValueError: If amount is not a finite number.
        """
        return cls(amount=amount)

    @classmethod
    def zero(cls) -> Money:
        """Create a zero amount."""
        return cls(amount=Decimal("0"))

    @classmethod
    def sum(cls, values: Iterable[Money]) -> Money:
        """Sum Money values at full precision."""
        total = Decimal("0")
        for v in values:
            total += v.amount
        return cls(amount=total)

    @property
    def is_zero(self) -> bool:
        return self.amount == 0

    @property
    def is_positive(self) -> bool:
        return self.amount > 0

    @property
    def is_negative(self) -> bool:
        return self.amount < 0

    def round(self) -> Money:
        """
        Round to a whole đồng using ROUND_HALF_UP.

        Postconditions:
            - Returns a new Money with no fractional part.
            - Original Money is unchanged (immutable).
        """
        return Money(amount=round_money(self.amount))

    def clamp_min(self, floor: Money | None = None) -> Money:
        """Return ``max(self, floor)``; floor defaults to zero."""
        floor_amount = floor.amount if floor is not None else Decimal("0")
        return self if self.amount >= floor_amount else Money(amount=floor_amount)

    def __add__(self, other: Money) -> Money:
        if not isinstance(other, Money):
            return NotImplemented
        return Money(amount=self.amount + other.amount)

    def __sub__(self, other: Money) -> Money:
        if not isinstance(other, Money):
            return NotImplemented
        return Money(amount=self.amount - other.amount)

    def __neg__(self) -> Money:
        return Money(amount=-self.amount)

    def __abs__(self) -> Money:
        return Money(amount=abs(self.amount))

    def __mul__(self, factor: Decimal | int | str) -> Money:
        """Multiply by a scalar."""
        if isinstance(factor, Money) or isinstance(factor, float):
            return NotImplemented
        if isinstance(factor, Percentage):
            return Money(amount=self.amount * factor.fraction)
        return Money(amount=self.amount * to_decimal(factor, "factor"))

    def __rmul__(self, factor: Decimal | int | str) -> Money:
        return self.__mul__(factor)

    def __truediv__(self, divisor: Decimal | int | str) -> Money:
        """Divide by a scalar."""
        if isinstance(divisor, Money) or isinstance(divisor, float):
            return NotImplemented
        return Money(amount=self.amount / to_decimal(divisor, "divisor"))

    def __lt__(self, other: Money) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        return self.amount < other.amount

    def __le__(self, other: Money) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        return self.amount <= other.amount

    def __gt__(self, other: Money) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        return self.amount > other.amount

    def __ge__(self, other: Money) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        return self.amount >= other.amount

    def __str__(self) -> str:
        return f"{self.amount} VND"

    def __repr__(self) -> str:
        return f"Money({self.amount!r})"


@dataclass(frozen=True, slots=True)
class Percentage:
    """
    A rate expressed in percent (``Percentage.of("8")`` is 8%).

    Guarantees:
        - value is a finite Decimal
        - ``fraction`` is ``value / 100`` at full precision
    """

    value: Decimal

    def __post_init__(self) -> None:
        object.__setattr__(self, "value", to_decimal(self.value, "percentage"))

    @classmethod
    def of(cls, value: Decimal | str | int) -> Percentage:
        return cls(value=value)

    @classmethod
    def from_fraction(cls, fraction: Decimal) -> Percentage:
        return cls(value=to_decimal(fraction, "fraction") * HUNDRED)

    @property
    def fraction(self) -> Decimal:
        return self.value / HUNDRED

    def apply(self, money: Money) -> Money:
        """Unrounded ``money * rate``."""
        return Money(amount=money.amount * self.fraction)

    def __str__(self) -> str:
        return f"{self.value}%"

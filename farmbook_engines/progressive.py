"""
Module: farmbook_engines.progressive -- Bracket-based cumulative tax.

Responsibility:
    Computes progressive (partial-step) tax: each slice of income is taxed
    at the rate of the bracket it falls in.  Used by personal income tax.
    Builds the bracket table from ``PIT_BRACKET_n`` rules so a change of law
    is a new rule row, not a code change.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    Imports only kernel domain values, rules and exceptions.

Invariants enforced:
    - Bracket table is ascending, non-overlapping and open-ended: upper
      bounds strictly increase and only the last bracket is unbounded.
    - Single terminal rounding: slice taxes are summed at full precision
      and rounded once, half-up, to a whole đồng.
    - Non-positive income is taxed at zero.

Failure modes:
    - InvalidBracketTableError for an empty, unordered or closed table.
    - InvalidRuleValueError when a bracket rule is not a PERCENTAGE.

Audit relevance:
    ``bracket_breakdown`` reproduces the statutory worksheet slice by
    slice, so an auditor can recompute the figure by hand.

Usage:
    from farmbook_engines.progressive import progressive_tax, brackets_from_rules

    brackets = brackets_from_rules(registry, date(2025, 1, 31))
    tax = progressive_tax(Money.of("15850000"), brackets)   # Money(1627500)
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from farmbook_engines.tracer import traced_engine
from farmbook_kernel.domain.rule_registry import RuleRegistry
from farmbook_kernel.domain.rules import RuleValueType
from farmbook_kernel.domain.values import Money, Percentage
from farmbook_kernel.exceptions import InvalidBracketTableError, InvalidRuleValueError
from farmbook_kernel.logging_config import get_logger

logger = get_logger("engines.progressive")

PIT_BRACKET_PREFIX = "PIT_BRACKET_"


@dataclass(frozen=True)
class TaxBracket:
    """One step of a progressive table; ``upper_bound`` None means unbounded."""

    upper_bound: Decimal | None
    rate: Percentage

    @property
    def is_unbounded(self) -> bool:
        return self.upper_bound is None


@dataclass(frozen=True)
class BracketSlice:
    """The part of an income taxed inside one bracket."""

    bracket_number: int
    lower: Decimal
    upper: Decimal | None
    rate: Percentage
    taxed_amount: Money
    tax: Money  # unrounded


def validate_bracket_table(brackets: Sequence[TaxBracket]) -> None:
    """
    Check a bracket table.

    Raises:
        InvalidBracketTableError: if the table is empty, bounds do not strictly
            increase, an unbounded bracket is not last, the last bracket is
            bounded, or a rate or bound is negative.
    """
    if not brackets:
        raise InvalidBracketTableError("table is empty")

    previous = Decimal("0")
    for index, bracket in enumerate(brackets, start=1):
        if bracket.rate.value < 0:
            raise InvalidBracketTableError(f"bracket {index} has negative rate {bracket.rate}")
        is_last = index == len(brackets)
        if bracket.upper_bound is None:
            if not is_last:
                raise InvalidBracketTableError(
                    f"bracket {index} is unbounded but is not the last bracket"
                )
            continue
        if bracket.upper_bound <= previous:
            raise InvalidBracketTableError(
                f"bracket {index} upper bound {bracket.upper_bound} does not "
                f"exceed previous bound {previous}"
            )
        if is_last:
            raise InvalidBracketTableError(
                f"last bracket is bounded at {bracket.upper_bound}; it must be unbounded"
            )
        previous = bracket.upper_bound


def _slices(taxable_income: Money, brackets: Sequence[TaxBracket]) -> list[BracketSlice]:
    slices: list[BracketSlice] = []
    remaining = taxable_income.amount
    lower = Decimal("0")
    for index, bracket in enumerate(brackets, start=1):
        if remaining <= 0:
            break
        if bracket.upper_bound is None:
            taxed_here = remaining
        else:
            taxed_here = min(remaining, bracket.upper_bound - lower)
        slices.append(BracketSlice(
            bracket_number=index,
            lower=lower,
            upper=bracket.upper_bound,
            rate=bracket.rate,
            taxed_amount=Money.of(taxed_here),
            tax=Money.of(taxed_here * bracket.rate.fraction),
        ))
        remaining -= taxed_here
        if bracket.upper_bound is not None:
            lower = bracket.upper_bound
    return slices


@traced_engine("progressive_tax", "1.0", fingerprint_fields=("taxable_income", "brackets"))
def progressive_tax(taxable_income: Money, brackets: Sequence[TaxBracket]) -> Money:
    """
    Progressive tax on ``taxable_income``, rounded to a whole đồng.

    Preconditions:
        - ``brackets`` passes ``validate_bracket_table``.
    Postconditions:
        - Returns Money.zero() for taxable_income <= 0.
        - Result is monotonically non-decreasing in taxable_income.
    """
    validate_bracket_table(brackets)
    if taxable_income.amount <= 0:
        return Money.zero()
    total = Money.sum(s.tax for s in _slices(taxable_income, brackets))
    return total.round()


def bracket_breakdown(
    taxable_income: Money,
    brackets: Sequence[TaxBracket],
) -> tuple[BracketSlice, ...]:
    """Per-bracket slices for display; empty for non-positive income."""
    validate_bracket_table(brackets)
    if taxable_income.amount <= 0:
        return ()
    return tuple(_slices(taxable_income, brackets))


def brackets_from_rules(rules: RuleRegistry, as_of: date) -> tuple[TaxBracket, ...]:
    """
    Build the PIT bracket table from ``PIT_BRACKET_n`` rules in effect.

    Each rule's ``value`` is the rate in percent and ``limit_value`` the
    upper bound; a null ``limit_value`` is the open-ended top bracket.

    Raises:
        InvalidRuleValueError: if a bracket rule is not a PERCENTAGE.
        InvalidBracketTableError: if the resulting table is invalid
            (including when no bracket rule is in effect).
    """
    bracket_rules = rules.series(PIT_BRACKET_PREFIX, as_of)
    brackets: list[TaxBracket] = []
    for rule in bracket_rules:
        if rule.value_type != RuleValueType.PERCENTAGE:
            raise InvalidRuleValueError(rule.code, "bracket rate must be a PERCENTAGE")
        brackets.append(TaxBracket(upper_bound=rule.limit_value, rate=rule.as_percentage()))

    table = tuple(brackets)
    validate_bracket_table(table)
    logger.debug("bracket_table_built", extra={
        "as_of": as_of.isoformat(),
        "bracket_count": len(table),
        "rates": [str(b.rate.value) for b in table],
    })
    return table

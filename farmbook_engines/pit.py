"""
Module: farmbook_engines.pit -- Personal income tax method and amount.

Responsibility:
    Decides which PIT method applies to a payment (progressive with family
    deductions, 10% flat withholding for casual labour, 20% flat for
    non-residents, or exempt) and computes the tax under that method.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Called by the payroll
    composer in step 7; usable on its own for one-off payments.

Invariants enforced:
    - Progressive taxable income is ``max(0, gross - employee insurance -
      personal deduction - dependents * dependent deduction)``.
    - Flat methods tax gross income with no deductions, rounded once.
    - Method selection is exhaustive over ``PITMethod``; every decision
      carries a human-readable reason.

Failure modes:
    - InvalidFactsError on a negative dependents count or negative gross.
    - Configuration errors from ``PITRates.from_rules``.

Audit relevance:
    ``PITResult.reason`` records why a method was chosen, which is what a
    tax inspector asks first when a casual worker was not withheld.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date
from enum import Enum

from farmbook_engines.insurance import InsuranceConfig
from farmbook_engines.progressive import (
    BracketSlice,
    TaxBracket,
    bracket_breakdown,
    progressive_tax,
)
from farmbook_kernel.domain.rule_registry import RuleRegistry
from farmbook_kernel.domain.values import Money, Percentage
from farmbook_kernel.exceptions import InvalidFactsError
from farmbook_kernel.logging_config import get_logger

logger = get_logger("engines.pit")


class PITMethod(str, Enum):
    PROGRESSIVE = "PROGRESSIVE"
    FLAT_10 = "FLAT_10"
    FLAT_20 = "FLAT_20"
    EXEMPT = "EXEMPT"


class LaborType(str, Enum):
    """Labour relationship, as it matters for PIT withholding."""

    FULL_TIME = "FULL_TIME"
    CASUAL = "CASUAL"
    PROBATION = "PROBATION"


@dataclass(frozen=True)
class PITMethodFacts:
    """Facts about the worker that decide the PIT method."""

    labor_type: LaborType = LaborType.FULL_TIME
    contract_months: int | None = None
    has_commitment_08: bool = False
    is_resident: bool = True


@dataclass(frozen=True)
class PITRates:
    """Flat-rate PIT parameters in effect for one computation."""

    casual_rate: Percentage
    non_resident_rate: Percentage
    casual_threshold: Money
    short_contract_months: int

    @classmethod
    def from_rules(cls, rules: RuleRegistry, as_of: date) -> PITRates:
        return cls(
            casual_rate=rules.percentage("PIT_CASUAL_RATE", as_of),
            non_resident_rate=rules.percentage("PIT_NON_RESIDENT_RATE", as_of),
            casual_threshold=rules.money("PIT_CASUAL_THRESHOLD", as_of),
            short_contract_months=rules.count("PIT_SHORT_CONTRACT_MONTHS", as_of),
        )


@dataclass(frozen=True)
class PITMethodDecision:
    method: PITMethod
    reason: str


@dataclass(frozen=True)
class PITResult:
    method: PITMethod
    reason: str
    taxable_income: Money
    tax: Money
    breakdown: tuple[BracketSlice, ...] = ()


def select_pit_method(
    facts: PITMethodFacts,
    gross_income: Money,
    rates: PITRates,
) -> PITMethodDecision:
    """
    Choose the PIT method for one payment.

    Order of precedence: non-resident, then casual or short contract,
    then progressive.
    """
    if not facts.is_resident:
        return PITMethodDecision(PITMethod.FLAT_20, "Non-resident individual")

    short_contract = (
        facts.contract_months is not None
        and facts.contract_months < rates.short_contract_months
    )
    if facts.labor_type in (LaborType.CASUAL, LaborType.PROBATION) or short_contract:
        if facts.has_commitment_08:
            return PITMethodDecision(
                PITMethod.EXEMPT, "Commitment form 08 filed (annual income below threshold)",
            )
        if gross_income < rates.casual_threshold:
            return PITMethodDecision(
                PITMethod.EXEMPT,
                f"Casual payment below {rates.casual_threshold.amount} per payment",
            )
        return PITMethodDecision(
            PITMethod.FLAT_10, "Casual labour or contract shorter than the threshold",
        )

    return PITMethodDecision(PITMethod.PROGRESSIVE, "Labour contract of three months or more")


def progressive_taxable_income(
    gross: Money,
    employee_insurance: Money,
    dependents_count: int,
    config: InsuranceConfig,
) -> Money:
    """``max(0, gross - insurance - personal - dependents * dependent)``."""
    taxable = (
        gross
        - employee_insurance
        - config.personal_deduction
        - config.dependent_deduction * dependents_count
    )
    return taxable.clamp_min()


def calculate_pit(
    gross: Money,
    employee_insurance: Money,
    dependents_count: int,
    method_facts: PITMethodFacts | None,
    brackets: Sequence[TaxBracket],
    config: InsuranceConfig,
    rates: PITRates | None = None,
) -> PITResult:
    """
    PIT for one worker-period.

    Without ``method_facts`` the progressive method applies.

    Raises:
        InvalidFactsError: on negative gross or dependents.
        ValueError: if ``method_facts`` is given without ``rates``.
    """
    problems: list[tuple[str, str]] = []
    if gross.is_negative:
        problems.append(("gross", "must be >= 0"))
    if dependents_count < 0:
        problems.append(("dependents_count", "must be >= 0"))
    if problems:
        raise InvalidFactsError("pit", tuple(problems))

    if method_facts is None:
        decision = PITMethodDecision(PITMethod.PROGRESSIVE, "Default progressive method")
    else:
        if rates is None:
            raise ValueError("rates are required when method_facts are supplied")
        decision = select_pit_method(method_facts, gross, rates)

    match decision.method:
        case PITMethod.PROGRESSIVE:
            taxable = progressive_taxable_income(gross, employee_insurance, dependents_count, config)
            result = PITResult(
                method=decision.method,
                reason=decision.reason,
                taxable_income=taxable,
                tax=progressive_tax(taxable, brackets),
                breakdown=bracket_breakdown(taxable, brackets),
            )
        case PITMethod.FLAT_10 | PITMethod.FLAT_20:
            rate = rates.casual_rate if decision.method == PITMethod.FLAT_10 else rates.non_resident_rate
            result = PITResult(
                method=decision.method,
                reason=decision.reason,
                taxable_income=gross,
                tax=rate.apply(gross).round(),
            )
        case PITMethod.EXEMPT:
            result = PITResult(
                method=decision.method,
                reason=decision.reason,
                taxable_income=Money.zero(),
                tax=Money.zero(),
            )
        case _:
            raise ValueError(f"Unknown PIT method: {decision.method}")

    logger.debug("pit_calculated", extra={
        "method": result.method.value,
        "taxable_income": str(result.taxable_income.amount),
        "tax": str(result.tax.amount),
    })
    return result

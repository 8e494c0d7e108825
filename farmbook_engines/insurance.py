"""
Module: farmbook_engines.insurance -- Capped-base social insurance split.

Responsibility:
    Computes compulsory insurance contributions (BHXH social, BHYT health,
    BHTN unemployment, BHTNLĐ occupational accident) for the employee and
    employer sides from one insurance base.  Also carries the payroll
    constants that travel with the insurance snapshot (overtime multipliers
    and family deductions) in ``InsuranceConfig``.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Capped base: the base used never exceeds ``max_insurance_base``.
    - Line-by-line rounding: each component is ``round(base * rate)``, and
      each total is the sum of its rounded components, never
      ``round(base * sum(rates))``.
    - Immutable snapshot: ``InsuranceConfig`` is frozen and resolved once
      per computation.

Failure modes:
    - InvalidFactsError on a negative insurance base.
    - ValueError from ``InsuranceConfig`` on negative rates or amounts.
    - RuleNotConfiguredError / RuleAmbiguousError from ``from_rules``.

Audit relevance:
    The reported totals equal what an auditor gets by adding the rounded
    lines of the contribution declaration.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from datetime import date
from decimal import Decimal

from farmbook_engines.tracer import traced_engine
from farmbook_kernel.domain.rule_registry import RuleRegistry
from farmbook_kernel.domain.values import Money, Percentage
from farmbook_kernel.exceptions import InvalidFactsError
from farmbook_kernel.logging_config import get_logger

logger = get_logger("engines.insurance")


@dataclass(frozen=True)
class InsuranceConfig:
    """
    Insurance and payroll constants in effect for one computation.

    Rates are Percentages, multipliers are plain Decimals (1.5 = 150%),
    money limits are Money.
    """

    employee_bhxh_rate: Percentage
    employee_bhyt_rate: Percentage
    employee_bhtn_rate: Percentage
    employer_bhxh_rate: Percentage
    employer_bhyt_rate: Percentage
    employer_bhtn_rate: Percentage
    employer_bhtnld_rate: Percentage
    max_insurance_base: Money
    ot_normal_rate: Decimal
    ot_weekend_rate: Decimal
    ot_holiday_rate: Decimal
    night_bonus_rate: Decimal
    personal_deduction: Money
    dependent_deduction: Money

    def __post_init__(self) -> None:
        for f in fields(self):
            value = getattr(self, f.name)
            amount = value.value if isinstance(value, Percentage) else (
                value.amount if isinstance(value, Money) else value
            )
            if amount < 0:
                raise ValueError(f"{f.name} cannot be negative, got {amount}")

    @property
    def employee_total_rate(self) -> Percentage:
        return Percentage.of(
            self.employee_bhxh_rate.value
            + self.employee_bhyt_rate.value
            + self.employee_bhtn_rate.value
        )

    @classmethod
    def from_rules(cls, rules: RuleRegistry, as_of: date) -> InsuranceConfig:
        """
        Resolve every field from the rule registry as of ``as_of``.

        Raises:
            RuleNotConfiguredError: if any rule is missing.
            RuleAmbiguousError: if any rule has overlapping versions.
        """
        config = cls(
            employee_bhxh_rate=rules.percentage("INS_EMPLOYEE_BHXH", as_of),
            employee_bhyt_rate=rules.percentage("INS_EMPLOYEE_BHYT", as_of),
            employee_bhtn_rate=rules.percentage("INS_EMPLOYEE_BHTN", as_of),
            employer_bhxh_rate=rules.percentage("INS_EMPLOYER_BHXH", as_of),
            employer_bhyt_rate=rules.percentage("INS_EMPLOYER_BHYT", as_of),
            employer_bhtn_rate=rules.percentage("INS_EMPLOYER_BHTN", as_of),
            employer_bhtnld_rate=rules.percentage("INS_EMPLOYER_BHTNLD", as_of),
            max_insurance_base=rules.money("INS_MAX_BASE", as_of),
            ot_normal_rate=rules.multiplier("OT_NORMAL_RATE", as_of),
            ot_weekend_rate=rules.multiplier("OT_WEEKEND_RATE", as_of),
            ot_holiday_rate=rules.multiplier("OT_HOLIDAY_RATE", as_of),
            night_bonus_rate=rules.multiplier("OT_NIGHT_BONUS_RATE", as_of),
            personal_deduction=rules.money("PIT_DEDUCTION_SELF", as_of),
            dependent_deduction=rules.money("PIT_DEDUCTION_DEPENDENT", as_of),
        )
        logger.debug("insurance_config_resolved", extra={
            "as_of": as_of.isoformat(),
            "max_insurance_base": str(config.max_insurance_base.amount),
        })
        return config


@dataclass(frozen=True)
class EmployeeContribution:
    bhxh: Money
    bhyt: Money
    bhtn: Money

    @property
    def total(self) -> Money:
        return self.bhxh + self.bhyt + self.bhtn


@dataclass(frozen=True)
class EmployerContribution:
    bhxh: Money
    bhyt: Money
    bhtn: Money
    bhtnld: Money

    @property
    def total(self) -> Money:
        return self.bhxh + self.bhyt + self.bhtn + self.bhtnld


@dataclass(frozen=True)
class InsuranceSplit:
    """Employee and employer contributions computed on ``base_used``."""

    base_used: Money
    employee: EmployeeContribution
    employer: EmployerContribution

    @classmethod
    def none(cls) -> InsuranceSplit:
        """All-zero split for workers not subject to insurance."""
        zero = Money.zero()
        return cls(
            base_used=zero,
            employee=EmployeeContribution(bhxh=zero, bhyt=zero, bhtn=zero),
            employer=EmployerContribution(bhxh=zero, bhyt=zero, bhtn=zero, bhtnld=zero),
        )


def capped_base(insurance_base: Money, config: InsuranceConfig) -> Money:
    """``min(insurance_base, max_insurance_base)``."""
    return min(insurance_base, config.max_insurance_base)


@traced_engine("insurance", "1.0", fingerprint_fields=("insurance_base", "config"))
def contributions(insurance_base: Money, config: InsuranceConfig) -> InsuranceSplit:
    """
    Split contributions on the capped base.

    Preconditions:
        - ``insurance_base`` is non-negative.
    Postconditions:
        - ``result.base_used <= config.max_insurance_base``.
        - ``result.employee.total == bhxh + bhyt + bhtn`` exactly.
    Raises:
        InvalidFactsError: if the base is negative.
    """
    if insurance_base.is_negative:
        raise InvalidFactsError(
            "insurance", (("insurance_base", f"must be >= 0, got {insurance_base.amount}"),),
        )

    base = capped_base(insurance_base, config)

    def line(rate: Percentage) -> Money:
        return rate.apply(base).round()

    split = InsuranceSplit(
        base_used=base,
        employee=EmployeeContribution(
            bhxh=line(config.employee_bhxh_rate),
            bhyt=line(config.employee_bhyt_rate),
            bhtn=line(config.employee_bhtn_rate),
        ),
        employer=EmployerContribution(
            bhxh=line(config.employer_bhxh_rate),
            bhyt=line(config.employer_bhyt_rate),
            bhtn=line(config.employer_bhtn_rate),
            bhtnld=line(config.employer_bhtnld_rate),
        ),
    )

    if base < insurance_base:
        logger.info("insurance_base_capped", extra={
            "requested_base": str(insurance_base.amount),
            "capped_base": str(base.amount),
        })
    return split

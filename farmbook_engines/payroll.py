"""
Payroll Composer (``farmbook_engines.payroll``).

Responsibility
--------------
Turns one worker's attendance for one period into gross pay, employee and
employer insurance, personal income tax and net pay, in eight fixed steps:

1. hourly rate from the salary type (MONTHLY: base / 26 / 8, DAILY: base / 8,
   HOURLY: base);
2. base amount (MONTHLY: base, DAILY: base * days, HOURLY: base * hours);
3. four overtime amounts (normal, weekend, holiday, night bonus), each
   ``round(hourly_rate * hours * multiplier)``;
4. allowance and manual deduction totals;
5. ``gross = round(base_amount) + total_ot + total_allowance``;
6. insurance, only for MONTHLY workers who are not SEASONAL;
7. PIT, when the worker is subject to tax;
8. ``net = max(0, gross - employee insurance - tax - manual deductions)``.

Architecture position
---------------------
**Engines layer** -- pure functions, ZERO I/O.  The Ledger supplies
``WorkerPeriodFacts`` and persists the returned ``PayrollResult``.

Invariants enforced
-------------------
* Facts are validated before any arithmetic; every problem is reported in
  one ``InvalidFactsError``.
* All monetary fields are ``Money``; hours and days are ``Decimal`` --
  NEVER ``float``.
* Net pay is never negative.
* The engine only produces COMPUTED results; POSTED belongs to the Ledger.

Failure modes
-------------
* Negative or non-finite facts -> ``InvalidFactsError``.
* Missing or overlapping rules -> ``RuleNotConfiguredError`` /
  ``RuleAmbiguousError`` from ``compose_payroll_from_rules``.

Audit relevance
---------------
Each overtime line and insurance line is rounded on its own, so the
payslip adds up line by line the way a labour inspector recomputes it.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from enum import Enum

from farmbook_engines.insurance import InsuranceConfig, InsuranceSplit, contributions
from farmbook_engines.pit import PITMethod, PITMethodFacts, PITRates, calculate_pit
from farmbook_engines.progressive import TaxBracket, brackets_from_rules
from farmbook_engines.tracer import traced_engine
from farmbook_kernel.domain.rule_registry import RuleRegistry
from farmbook_kernel.domain.values import Money
from farmbook_kernel.exceptions import InvalidFactsError
from farmbook_kernel.logging_config import get_logger

logger = get_logger("engines.payroll")

WORK_DAYS_PER_MONTH = Decimal("26")
WORK_HOURS_PER_DAY = Decimal("8")


class SalaryType(str, Enum):
    MONTHLY = "MONTHLY"
    DAILY = "DAILY"
    HOURLY = "HOURLY"


class WorkerType(str, Enum):
    FULL_TIME = "FULL_TIME"
    PART_TIME = "PART_TIME"
    SEASONAL = "SEASONAL"
    CONTRACT = "CONTRACT"


class PayrollStatus(str, Enum):
    """Worker-period lifecycle: DRAFT -> COMPUTED -> POSTED (Ledger only)."""

    DRAFT = "DRAFT"
    COMPUTED = "COMPUTED"
    POSTED = "POSTED"


@dataclass(frozen=True)
class PayLine:
    """A named allowance or manual deduction."""

    name: str
    amount: Money

    def __post_init__(self) -> None:
        if not isinstance(self.amount, Money):
            object.__setattr__(self, "amount", Money.of(self.amount))


def _hours(name: str, value) -> Decimal:
    # Non-finite values are kept so validation can report them.
    if isinstance(value, Decimal):
        return value
    if isinstance(value, (bool, float)):
        raise TypeError(f"hours and days must be Decimal, int or str, not {type(value).__name__}")
    try:
        return Decimal(str(value).strip())
    except InvalidOperation as e:
        raise InvalidFactsError("worker_period", ((name, f"must be a number, got {value!r}"),)) from e


@dataclass(frozen=True)
class WorkerPeriodFacts:
    """Per-worker, per-period payroll input."""

    salary_type: SalaryType
    worker_type: WorkerType
    base_salary: Money
    work_days: Decimal = Decimal("0")
    work_hours: Decimal = Decimal("0")
    ot_normal_hours: Decimal = Decimal("0")
    ot_weekend_hours: Decimal = Decimal("0")
    ot_holiday_hours: Decimal = Decimal("0")
    night_hours: Decimal = Decimal("0")
    allowances: tuple[PayLine, ...] = ()
    manual_deductions: tuple[PayLine, ...] = ()
    insurance_base: Money | None = None
    dependents_count: int = 0
    is_subject_to_tax: bool = True
    worker_id: str | None = None
    period: str | None = None
    pit_method_facts: PITMethodFacts | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.base_salary, Money):
            object.__setattr__(self, "base_salary", Money.of(self.base_salary))
        if self.insurance_base is not None and not isinstance(self.insurance_base, Money):
            object.__setattr__(self, "insurance_base", Money.of(self.insurance_base))
        for name in _HOUR_FIELDS:
            object.__setattr__(self, name, _hours(name, getattr(self, name)))
        object.__setattr__(self, "allowances", tuple(self.allowances))
        object.__setattr__(self, "manual_deductions", tuple(self.manual_deductions))


_HOUR_FIELDS = (
    "work_days",
    "work_hours",
    "ot_normal_hours",
    "ot_weekend_hours",
    "ot_holiday_hours",
    "night_hours",
)


@dataclass(frozen=True)
class PayrollResult:
    """Computed payslip for one worker-period."""

    worker_id: str | None
    period: str | None
    status: PayrollStatus
    salary_type: SalaryType
    hourly_rate: Decimal
    base_amount: Money
    ot_normal_amount: Money
    ot_weekend_amount: Money
    ot_holiday_amount: Money
    night_amount: Money
    total_ot: Money
    total_allowance: Money
    gross: Money
    is_insurance_eligible: bool
    insurance: InsuranceSplit
    taxable_income: Money
    pit_method: PITMethod | None
    tax: Money
    total_manual_deduction: Money
    net: Money

    @property
    def employee_insurance_total(self) -> Money:
        return self.insurance.employee.total

    @property
    def employer_insurance_total(self) -> Money:
        return self.insurance.employer.total

    @property
    def employer_cost(self) -> Money:
        """Gross pay plus the employer's insurance share."""
        return self.gross + self.employer_insurance_total


def validate_worker_facts(facts: WorkerPeriodFacts) -> None:
    """
    Reject malformed facts before any calculation.

    Raises:
        InvalidFactsError: listing every negative or non-finite field.
    """
    problems: list[tuple[str, str]] = []

    if facts.base_salary.is_negative:
        problems.append(("base_salary", "must be >= 0"))
    for name in _HOUR_FIELDS:
        value: Decimal = getattr(facts, name)
        if not value.is_finite():
            problems.append((name, "must be a finite number"))
        elif value < 0:
            problems.append((name, "must be >= 0"))
    if facts.dependents_count < 0:
        problems.append(("dependents_count", "must be >= 0"))
    if facts.insurance_base is not None and facts.insurance_base.is_negative:
        problems.append(("insurance_base", "must be >= 0"))
    for i, line in enumerate(facts.allowances):
        if line.amount.is_negative:
            problems.append((f"allowances[{i}]", f"{line.name} must be >= 0"))
    for i, line in enumerate(facts.manual_deductions):
        if line.amount.is_negative:
            problems.append((f"manual_deductions[{i}]", f"{line.name} must be >= 0"))

    if problems:
        logger.warning("payroll_facts_rejected", extra={
            "worker_id": facts.worker_id,
            "problems": [f"{f}: {m}" for f, m in problems],
        })
        raise InvalidFactsError("worker_period", tuple(problems))


def hourly_rate(facts: WorkerPeriodFacts) -> Decimal:
    """Step 1, at full precision."""
    base = facts.base_salary.amount
    match facts.salary_type:
        case SalaryType.MONTHLY:
            return base / WORK_DAYS_PER_MONTH / WORK_HOURS_PER_DAY
        case SalaryType.DAILY:
            return base / WORK_HOURS_PER_DAY
        case SalaryType.HOURLY:
            return base
        case _:
            raise ValueError(f"Unknown salary type: {facts.salary_type}")


def base_amount(facts: WorkerPeriodFacts) -> Money:
    """Step 2, unrounded."""
    match facts.salary_type:
        case SalaryType.MONTHLY:
            return facts.base_salary
        case SalaryType.DAILY:
            return facts.base_salary * facts.work_days
        case SalaryType.HOURLY:
            return facts.base_salary * facts.work_hours
        case _:
            raise ValueError(f"Unknown salary type: {facts.salary_type}")


def is_insurance_eligible(facts: WorkerPeriodFacts) -> bool:
    """Only MONTHLY, non-seasonal workers contribute."""
    return facts.salary_type == SalaryType.MONTHLY and facts.worker_type != WorkerType.SEASONAL


@traced_engine("payroll", "1.0", fingerprint_fields=("facts", "config", "brackets"))
def compose_payroll(
    facts: WorkerPeriodFacts,
    config: InsuranceConfig,
    brackets: Sequence[TaxBracket],
    pit_rates: PITRates | None = None,
) -> PayrollResult:
    """
    Compute one worker-period payslip.

    Preconditions:
        - ``config`` and ``brackets`` come from one rule snapshot.
        - ``pit_rates`` is supplied when ``facts.pit_method_facts`` is set.
    Postconditions:
        - ``result.status`` is COMPUTED.
        - ``result.net >= 0``.
    Raises:
        InvalidFactsError: on malformed facts.
    """
    validate_worker_facts(facts)

    rate = hourly_rate(facts)
    base = base_amount(facts).round()

    def overtime(hours: Decimal, multiplier: Decimal) -> Money:
        return Money.of(rate * hours * multiplier).round()

    ot_normal = overtime(facts.ot_normal_hours, config.ot_normal_rate)
    ot_weekend = overtime(facts.ot_weekend_hours, config.ot_weekend_rate)
    ot_holiday = overtime(facts.ot_holiday_hours, config.ot_holiday_rate)
    night = overtime(facts.night_hours, config.night_bonus_rate)
    total_ot = ot_normal + ot_weekend + ot_holiday + night

    total_allowance = Money.sum(a.amount for a in facts.allowances).round()
    total_manual_deduction = Money.sum(d.amount for d in facts.manual_deductions).round()

    gross = base + total_ot + total_allowance

    eligible = is_insurance_eligible(facts)
    if eligible:
        insurance_base = facts.insurance_base if facts.insurance_base is not None else facts.base_salary
        insurance = contributions(insurance_base, config)
    else:
        insurance = InsuranceSplit.none()
    employee_insurance = insurance.employee.total

    if facts.is_subject_to_tax:
        pit = calculate_pit(
            gross=gross,
            employee_insurance=employee_insurance,
            dependents_count=facts.dependents_count,
            method_facts=facts.pit_method_facts,
            brackets=brackets,
            config=config,
            rates=pit_rates,
        )
        taxable_income, tax, pit_method = pit.taxable_income, pit.tax, pit.method
    else:
        taxable_income, tax, pit_method = Money.zero(), Money.zero(), None

    net = (gross - employee_insurance - tax - total_manual_deduction).clamp_min()

    result = PayrollResult(
        worker_id=facts.worker_id,
        period=facts.period,
        status=PayrollStatus.COMPUTED,
        salary_type=facts.salary_type,
        hourly_rate=rate,
        base_amount=base,
        ot_normal_amount=ot_normal,
        ot_weekend_amount=ot_weekend,
        ot_holiday_amount=ot_holiday,
        night_amount=night,
        total_ot=total_ot,
        total_allowance=total_allowance,
        gross=gross,
        is_insurance_eligible=eligible,
        insurance=insurance,
        taxable_income=taxable_income,
        pit_method=pit_method,
        tax=tax,
        total_manual_deduction=total_manual_deduction,
        net=net,
    )

    logger.info("payroll_computed", extra={
        "worker_id": facts.worker_id,
        "period": facts.period,
        "gross": str(gross.amount),
        "employee_insurance": str(employee_insurance.amount),
        "tax": str(tax.amount),
        "net": str(net.amount),
        "pit_method": pit_method.value if pit_method else None,
    })
    return result


def compose_payroll_from_rules(
    facts: WorkerPeriodFacts,
    rules: RuleRegistry,
    as_of: date,
) -> PayrollResult:
    """Resolve config and brackets from ``rules`` on ``as_of``, then compose."""
    config = InsuranceConfig.from_rules(rules, as_of)
    brackets = brackets_from_rules(rules, as_of)
    pit_rates = PITRates.from_rules(rules, as_of) if facts.pit_method_facts is not None else None
    return compose_payroll(facts, config, brackets, pit_rates)

"""
Module: farmbook_engines.cit -- Corporate income tax add-backs and aggregation.

Responsibility:
    Finds expenses the CIT law does not allow as deductions and turns them
    into ``CITAdjustment`` records, then aggregates accounting profit and
    adjustments into taxable income and CIT payable.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  The Ledger supplies the
    period's expenses and accounting profit; the depreciation engine
    supplies capped-vehicle postings.

Invariants enforced:
    - Each expense is added back under at most one category.
    - ``taxable_income = accounting_profit + sum(add-backs) - sum(deductions)``
      is reported unclipped; only the tax is floored at zero.
    - ``cit_amount = round(max(0, taxable_income) * rate)``, rounded once.
    - The CIT rate is a rule value, never a literal.

Failure modes:
    - InvalidFactsError on negative expense amounts or context totals.
    - RuleNotConfiguredError when CIT_TAX_RATE, CIT_ENTERTAINMENT_LIMIT or
      VAT_CASH_LIMIT is missing on the evaluation date.

Audit relevance:
    Each adjustment names the rule that produced it and the expenses it
    covers, which is the layout of appendix 03-1A of the CIT return.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date
from enum import Enum

from farmbook_engines.depreciation import DepreciationPosting
from farmbook_engines.tracer import traced_engine
from farmbook_kernel.domain.rule_registry import RuleRegistry
from farmbook_kernel.domain.values import Money, Percentage
from farmbook_kernel.exceptions import InvalidFactsError
from farmbook_kernel.logging_config import get_logger

logger = get_logger("engines.cit")


class AdjustmentType(str, Enum):
    """
    ADD_BACK lines come from ``detect_add_backs``.  DEDUCTION lines are
    never produced here; the caller supplies them to ``aggregate_cit``
    (tax-exempt income, prior-year corrections).
    """

    ADD_BACK = "ADD_BACK"
    DEDUCTION = "DEDUCTION"


class ExpenseCategory(str, Enum):
    """How the Ledger classified an expense line."""

    GENERAL = "GENERAL"
    ADMIN_PENALTY = "ADMIN_PENALTY"
    WELFARE = "WELFARE"
    ENTERTAINMENT = "ENTERTAINMENT"
    VEHICLE_DEPRECIATION = "VEHICLE_DEPRECIATION"


class AddBackCategory(str, Enum):
    ADMIN_PENALTY = "ADMIN_PENALTY"
    WELFARE = "WELFARE"
    ENTERTAINMENT = "ENTERTAINMENT"
    CASH_OVER_LIMIT = "CASH_OVER_LIMIT"
    NO_INVOICE = "NO_INVOICE"
    VEHICLE_DEPRECIATION = "VEHICLE_DEPRECIATION"


@dataclass(frozen=True)
class ExpenseFacts:
    """
    One expense line of the period.

    ``tax_deductible_amount`` is only read for VEHICLE_DEPRECIATION lines,
    where ``amount`` is the book depreciation.
    """

    expense_id: str
    amount: Money
    category: ExpenseCategory = ExpenseCategory.GENERAL
    has_invoice: bool = True
    paid_in_cash: bool = False
    tax_deductible_amount: Money | None = None
    description: str = ""

    def __post_init__(self) -> None:
        if not isinstance(self.amount, Money):
            object.__setattr__(self, "amount", Money.of(self.amount))
        if self.tax_deductible_amount is not None and not isinstance(self.tax_deductible_amount, Money):
            object.__setattr__(self, "tax_deductible_amount", Money.of(self.tax_deductible_amount))

    @classmethod
    def from_depreciation(cls, posting: DepreciationPosting) -> ExpenseFacts:
        """Book depreciation of one posting, with its tax-allowed part."""
        return cls(
            expense_id=f"{posting.asset_id}:{posting.period}",
            amount=posting.posted_amount,
            category=ExpenseCategory.VEHICLE_DEPRECIATION,
            tax_deductible_amount=posting.tax_posted_amount,
            description=f"Depreciation {posting.asset_id} {posting.period}",
        )


@dataclass(frozen=True)
class CITContext:
    """Period totals the pooled caps are measured against."""

    average_monthly_salary: Money
    deductible_expenses_total: Money

    def __post_init__(self) -> None:
        for name in ("average_monthly_salary", "deductible_expenses_total"):
            value = getattr(self, name)
            if not isinstance(value, Money):
                object.__setattr__(self, name, Money.of(value))


@dataclass(frozen=True)
class CITAdjustment:
    adjustment_type: AdjustmentType
    category: str
    amount: Money
    description: str = ""
    rule_code: str | None = None
    expense_ids: tuple[str, ...] = ()


@dataclass(frozen=True)
class CITResult:
    accounting_profit: Money
    total_add_backs: Money
    total_deductions: Money
    taxable_income: Money
    tax_rate: Percentage
    cit_amount: Money
    loss_carried_forward: Money
    adjustments: tuple[CITAdjustment, ...] = ()


def _validate_expenses(expenses: Sequence[ExpenseFacts], context: CITContext) -> None:
    problems: list[tuple[str, str]] = []
    for e in expenses:
        if e.amount.is_negative:
            problems.append((f"{e.expense_id}.amount", "must be >= 0"))
        if e.tax_deductible_amount is not None and e.tax_deductible_amount.is_negative:
            problems.append((f"{e.expense_id}.tax_deductible_amount", "must be >= 0"))
    if context.average_monthly_salary.is_negative:
        problems.append(("average_monthly_salary", "must be >= 0"))
    if context.deductible_expenses_total.is_negative:
        problems.append(("deductible_expenses_total", "must be >= 0"))
    if problems:
        raise InvalidFactsError("cit_expenses", tuple(problems))


def _add_back(
    category: AddBackCategory,
    amount: Money,
    description: str,
    rule_code: str | None,
    expense_ids: Iterable[str],
) -> CITAdjustment:
    return CITAdjustment(
        adjustment_type=AdjustmentType.ADD_BACK,
        category=category.value,
        amount=amount.round(),
        description=description,
        rule_code=rule_code,
        expense_ids=tuple(expense_ids),
    )


def detect_add_backs(
    expenses: Sequence[ExpenseFacts],
    context: CITContext,
    as_of: date,
    rules: RuleRegistry,
) -> tuple[CITAdjustment, ...]:
    """
    Add-back adjustments for one period's expenses.

    Per-line checks run first, in this order: administrative penalty, no
    invoice, cash payment at or above ``VAT_CASH_LIMIT``.  A line caught by
    one of them is added back in full and left out of the pooled caps.
    Welfare above one average monthly salary and entertainment above
    ``CIT_ENTERTAINMENT_LIMIT`` percent of deductible expenses are pooled
    across the period.  Capped vehicle depreciation adds back the book
    figure in excess of the tax figure.

    Raises:
        InvalidFactsError: on negative amounts.
    """
    _validate_expenses(expenses, context)
    cash_limit = rules.money("VAT_CASH_LIMIT", as_of)
    entertainment_limit = rules.percentage("CIT_ENTERTAINMENT_LIMIT", as_of)

    adjustments: list[CITAdjustment] = []
    welfare: list[ExpenseFacts] = []
    entertainment: list[ExpenseFacts] = []

    for e in expenses:
        if e.category == ExpenseCategory.ADMIN_PENALTY:
            adjustments.append(_add_back(
                AddBackCategory.ADMIN_PENALTY, e.amount,
                "Administrative penalty", None, (e.expense_id,),
            ))
        elif not e.has_invoice:
            adjustments.append(_add_back(
                AddBackCategory.NO_INVOICE, e.amount,
                "Expense without a valid invoice", None, (e.expense_id,),
            ))
        elif e.paid_in_cash and e.amount >= cash_limit:
            adjustments.append(_add_back(
                AddBackCategory.CASH_OVER_LIMIT, e.amount,
                f"Cash payment of {e.amount.amount} at or above {cash_limit.amount}",
                "VAT_CASH_LIMIT", (e.expense_id,),
            ))
        elif e.category == ExpenseCategory.WELFARE:
            welfare.append(e)
        elif e.category == ExpenseCategory.ENTERTAINMENT:
            entertainment.append(e)
        elif e.category == ExpenseCategory.VEHICLE_DEPRECIATION:
            allowed = e.tax_deductible_amount if e.tax_deductible_amount is not None else e.amount
            excess = e.amount - allowed
            if excess.is_positive:
                adjustments.append(_add_back(
                    AddBackCategory.VEHICLE_DEPRECIATION, excess,
                    "Depreciation above the vehicle cost cap", "CIT_VEHICLE_CAP",
                    (e.expense_id,),
                ))

    welfare_total = Money.sum(e.amount for e in welfare)
    welfare_excess = welfare_total - context.average_monthly_salary
    if welfare_excess.is_positive:
        adjustments.append(_add_back(
            AddBackCategory.WELFARE, welfare_excess,
            f"Welfare above one average monthly salary ({context.average_monthly_salary.amount})",
            None, (e.expense_id for e in welfare),
        ))

    entertainment_total = Money.sum(e.amount for e in entertainment)
    entertainment_cap = entertainment_limit.apply(context.deductible_expenses_total)
    entertainment_excess = entertainment_total - entertainment_cap
    if entertainment_excess.is_positive:
        adjustments.append(_add_back(
            AddBackCategory.ENTERTAINMENT, entertainment_excess,
            f"Entertainment above {entertainment_limit} of deductible expenses",
            "CIT_ENTERTAINMENT_LIMIT", (e.expense_id for e in entertainment),
        ))

    logger.info("cit_add_backs_detected", extra={
        "expense_count": len(expenses),
        "adjustment_count": len(adjustments),
        "total": str(Money.sum(a.amount for a in adjustments).amount),
    })
    return tuple(adjustments)


@traced_engine("cit", "1.0", fingerprint_fields=("accounting_profit", "adjustments", "tax_rate"))
def aggregate_cit(
    accounting_profit: Money,
    adjustments: Sequence[CITAdjustment],
    tax_rate: Percentage,
) -> CITResult:
    """
    Taxable income and CIT payable for one period.

    ``adjustments`` is the output of ``detect_add_backs`` plus any
    caller-supplied DEDUCTION lines.

    Postconditions:
        - ``cit_amount >= 0``.
        - ``loss_carried_forward`` is ``|taxable_income|`` when negative,
          zero otherwise.
    """
    adds = Money.sum(a.amount for a in adjustments if a.adjustment_type == AdjustmentType.ADD_BACK)
    deds = Money.sum(a.amount for a in adjustments if a.adjustment_type == AdjustmentType.DEDUCTION)
    taxable = accounting_profit + adds - deds

    cit_amount = tax_rate.apply(taxable.clamp_min()).round()
    loss = abs(taxable) if taxable.is_negative else Money.zero()

    result = CITResult(
        accounting_profit=accounting_profit,
        total_add_backs=adds,
        total_deductions=deds,
        taxable_income=taxable,
        tax_rate=tax_rate,
        cit_amount=cit_amount,
        loss_carried_forward=loss,
        adjustments=tuple(adjustments),
    )
    logger.info("cit_aggregated", extra={
        "accounting_profit": str(accounting_profit.amount),
        "taxable_income": str(taxable.amount),
        "cit_amount": str(cit_amount.amount),
    })
    return result


def aggregate_cit_from_rules(
    accounting_profit: Money,
    adjustments: Sequence[CITAdjustment],
    rules: RuleRegistry,
    as_of: date,
) -> CITResult:
    """``aggregate_cit`` with the CIT_TAX_RATE in effect on ``as_of``."""
    return aggregate_cit(accounting_profit, adjustments, rules.percentage("CIT_TAX_RATE", as_of))

"""
Rule Evaluator -- Declarative rule conditions and what each action means.

Responsibility:
    Decides whether a rule's ``condition`` holds for one case, then turns
    the rule's ``action`` into a ``RuleOutcome`` for that case.  A whole
    rule type can be evaluated against one case from a ``RuleRegistry``.

Architecture position:
    Kernel > Domain -- pure, zero I/O.  Conditions come from the rule store
    (``condition:`` in the YAML rule set, a JSON column in the database).

Condition language:
    A condition is a mapping.  ``AND`` and ``OR`` take a non-empty list of
    conditions, ``NOT`` takes one condition.  Every other key is a
    predicate from ``PREDICATES``.  Sibling keys are combined with AND, and
    a missing or empty condition always holds.

    Amount predicates compare ``RuleContext.base_amount`` (``amount``,
    else ``total_amount``).  Date predicates compare ``RuleContext.as_of``.

Invariants enforced:
    - Operands are parsed exactly: amounts and numbers are Decimals and
      YAML floats are refused.
    - ``match rule.action`` covers every ``RuleAction``; an unknown action
      raises instead of passing silently.

Failure modes:
    - InvalidRuleConditionError: unknown predicate or malformed operand.
    - InvalidRuleValueError: PARTIAL rule whose value is neither an
      amount cap nor a percentage.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, replace
from datetime import date
from decimal import Decimal
from typing import Any

from farmbook_kernel.domain.rule_registry import RuleRegistry
from farmbook_kernel.domain.rules import RuleAction, RuleType, RuleValueType, TaxRule
from farmbook_kernel.domain.values import Money, Percentage, to_decimal
from farmbook_kernel.exceptions import InvalidRuleConditionError, InvalidRuleValueError
from farmbook_kernel.logging_config import get_logger

logger = get_logger("kernel.rule_evaluator")

DAYS_PER_YEAR = Decimal("365.25")

_MONEY_PREDICATES = frozenset({
    "amount_gte",
    "amount_lte",
    "amount_gt",
    "amount_lt",
    "amount_per_person_gte",
})
_NUMBER_PREDICATES = frozenset({
    "seats_lt",
    "seats_gte",
    "invoice_age_years_gt",
    "entertainment_ratio_gt",
})
_TEXT_PREDICATES = frozenset({"payment_method", "payment_method_not", "vehicle_type"})
_NAMES_PREDICATES = frozenset({"category_in", "category_not_in"})
_DATE_PREDICATES = frozenset({"date_before", "date_after"})

PREDICATES: frozenset[str] = (
    _MONEY_PREDICATES
    | _NUMBER_PREDICATES
    | _TEXT_PREDICATES
    | _NAMES_PREDICATES
    | _DATE_PREDICATES
    | {"supplier_tax_code", "has_labor_contract"}
)


@dataclass(frozen=True)
class RuleContext:
    """
    The facts of one case, as conditions read them.

    Unset facts are None.  ``payment_method`` and ``vehicle_type`` compare
    equal to the engines' ``str`` enums.
    """

    as_of: date
    amount: Money | None = None
    total_amount: Money | None = None
    tax_amount: Money | None = None
    payment_method: str | None = None
    vehicle_type: str | None = None
    seats: int | None = None
    supplier_tax_code: str | None = None
    invoice_date: date | None = None
    has_labor_contract: bool | None = None
    amount_per_person: Money | None = None
    total_entertainment: Money | None = None
    total_expenses: Money | None = None
    category: str | None = None

    def __post_init__(self) -> None:
        for name in (
            "amount",
            "total_amount",
            "tax_amount",
            "amount_per_person",
            "total_entertainment",
            "total_expenses",
        ):
            value = getattr(self, name)
            if value is not None and not isinstance(value, Money):
                object.__setattr__(self, name, Money.of(value))

    @property
    def base_amount(self) -> Money:
        if self.amount is not None:
            return self.amount
        if self.total_amount is not None:
            return self.total_amount
        return Money.zero()

    @property
    def entertainment_ratio(self) -> Decimal:
        """Entertainment spend as a percentage of total expenses."""
        if self.total_expenses is None or not self.total_expenses.is_positive:
            return Decimal("0")
        spent = self.total_entertainment if self.total_entertainment is not None else Money.zero()
        return spent.amount / self.total_expenses.amount * 100


@dataclass(frozen=True)
class RuleOutcome:
    """
    What one rule means for one case.

    Attributes:
        in_effect: the rule's window contains ``as_of``
        condition_met: the condition holds for the case
        passed: False when the rule refuses all or part of the case
        amount: the figure the action produced (allowed amount, add-back,
            deductible tax or deduction)
        excess: the part refused by LIMIT or PARTIAL
        rate: the rate set by SET_RATE
        warning: True when a WARN rule fired
    """

    rule_code: str
    action: RuleAction
    in_effect: bool = True
    condition_met: bool = False
    passed: bool = True
    amount: Money | None = None
    excess: Money | None = None
    rate: Percentage | None = None
    warning: bool = False
    message: str = ""

    @classmethod
    def not_in_effect(cls, rule: TaxRule) -> RuleOutcome:
        return cls(rule_code=rule.code, action=rule.action, in_effect=False, message="not in effect")


@dataclass(frozen=True)
class RuleEvaluation:
    """Outcomes of every conditioned rule of one type for one case."""

    rule_type: RuleType
    as_of: date
    outcomes: tuple[RuleOutcome, ...] = ()

    @property
    def refusals(self) -> tuple[RuleOutcome, ...]:
        return tuple(
            o for o in self.outcomes
            if not o.passed and o.action in (RuleAction.DENY, RuleAction.ALLOW)
        )

    @property
    def is_allowed(self) -> bool:
        return not self.refusals

    @property
    def errors(self) -> tuple[str, ...]:
        return tuple(o.message for o in self.refusals)

    @property
    def warnings(self) -> tuple[str, ...]:
        return tuple(
            o.message for o in self.outcomes
            if o.warning or (o.action == RuleAction.LIMIT and not o.passed)
        )

    @property
    def add_back_total(self) -> Money:
        return Money.sum(
            o.amount for o in self.outcomes
            if o.action == RuleAction.ADD_BACK and o.condition_met and o.amount is not None
        )


# ---------------------------------------------------------------------------
# Conditions
# ---------------------------------------------------------------------------


def _decimal(name: str, operand: Any) -> Decimal:
    try:
        return to_decimal(operand, name)
    except TypeError as e:
        raise ValueError(str(e)) from e


def parse_operand(name: str, operand: Any) -> Any:
    """
    The typed operand of predicate ``name``.

    Raises:
        ValueError: unknown predicate or an operand of the wrong shape.
    """
    if name in _MONEY_PREDICATES:
        return Money.of(_decimal(name, operand))
    if name in _NUMBER_PREDICATES:
        return _decimal(name, operand)
    if name in _TEXT_PREDICATES:
        if not isinstance(operand, str):
            raise ValueError(f"{name} takes a string, got {operand!r}")
        return operand
    if name == "supplier_tax_code":
        if operand is not None and not isinstance(operand, str):
            raise ValueError(f"{name} takes a string or null, got {operand!r}")
        return operand
    if name == "has_labor_contract":
        if not isinstance(operand, bool):
            raise ValueError(f"{name} takes true or false, got {operand!r}")
        return operand
    if name in _NAMES_PREDICATES:
        if isinstance(operand, str) or not isinstance(operand, Sequence):
            raise ValueError(f"{name} takes a list of names, got {operand!r}")
        if not all(isinstance(item, str) for item in operand):
            raise ValueError(f"{name} takes a list of names, got {operand!r}")
        return frozenset(operand)
    if name in _DATE_PREDICATES:
        if isinstance(operand, date):
            return operand
        if isinstance(operand, str):
            return date.fromisoformat(operand)
        raise ValueError(f"{name} takes an ISO date, got {operand!r}")
    raise ValueError(f"unknown predicate {name!r}")


def _holds(name: str, value: Any, ctx: RuleContext) -> bool:
    match name:
        case "amount_gte":
            return ctx.base_amount >= value
        case "amount_lte":
            return ctx.base_amount <= value
        case "amount_gt":
            return ctx.base_amount > value
        case "amount_lt":
            return ctx.base_amount < value
        case "payment_method":
            return ctx.payment_method == value
        case "payment_method_not":
            return ctx.payment_method != value
        case "vehicle_type":
            return ctx.vehicle_type == value
        case "seats_lt":
            return (ctx.seats or 0) < value
        case "seats_gte":
            return (ctx.seats or 0) >= value
        case "supplier_tax_code":
            if value is None:
                return not ctx.supplier_tax_code
            return ctx.supplier_tax_code == value
        case "invoice_age_years_gt":
            if ctx.invoice_date is None:
                return False
            return Decimal((ctx.as_of - ctx.invoice_date).days) / DAYS_PER_YEAR > value
        case "has_labor_contract":
            return ctx.has_labor_contract is value
        case "amount_per_person_gte":
            per_person = ctx.amount_per_person if ctx.amount_per_person is not None else Money.zero()
            return per_person >= value
        case "entertainment_ratio_gt":
            return ctx.entertainment_ratio > value
        case "category_in":
            return (ctx.category or "") in value
        case "category_not_in":
            return (ctx.category or "") not in value
        case "date_before":
            return ctx.as_of < value
        case "date_after":
            return ctx.as_of > value
        case _:
            raise ValueError(f"unknown predicate {name!r}")


def _branches(key: str, operand: Any) -> Sequence[Mapping[str, Any]]:
    if isinstance(operand, str) or not isinstance(operand, Sequence) or not operand:
        raise ValueError(f"{key} takes a non-empty list of conditions")
    for branch in operand:
        if not isinstance(branch, Mapping):
            raise ValueError(f"{key} takes a non-empty list of conditions")
    return operand


def evaluate_condition(condition: Mapping[str, Any] | None, ctx: RuleContext) -> bool:
    """
    True when every entry of ``condition`` holds for ``ctx``.

    Raises:
        ValueError: unknown predicate or malformed operand on a branch that
            was evaluated.  ``condition_errors`` checks every branch.
    """
    if not condition:
        return True
    for key, operand in condition.items():
        match key:
            case "AND":
                holds = all(evaluate_condition(c, ctx) for c in _branches(key, operand))
            case "OR":
                holds = any(evaluate_condition(c, ctx) for c in _branches(key, operand))
            case "NOT":
                if not isinstance(operand, Mapping):
                    raise ValueError("NOT takes a single condition")
                holds = not evaluate_condition(operand, ctx)
            case _:
                holds = _holds(key, parse_operand(key, operand), ctx)
        if not holds:
            return False
    return True


def condition_errors(condition: Any, path: str = "condition") -> list[str]:
    """
    Every structural problem in ``condition``, without evaluating it.

    Postconditions:
        - Returns an empty list when ``evaluate_condition`` cannot raise.
    """
    if condition is None:
        return []
    if not isinstance(condition, Mapping):
        return [f"{path}: must be a mapping"]
    errors: list[str] = []
    for key, operand in condition.items():
        where = f"{path}.{key}"
        match key:
            case "AND" | "OR":
                try:
                    branches = _branches(key, operand)
                except ValueError as e:
                    errors.append(f"{where}: {e}")
                    continue
                for i, branch in enumerate(branches):
                    errors.extend(condition_errors(branch, f"{where}[{i}]"))
            case "NOT":
                if not isinstance(operand, Mapping):
                    errors.append(f"{where}: NOT takes a single condition")
                else:
                    errors.extend(condition_errors(operand, where))
            case _:
                try:
                    parse_operand(key, operand)
                except ValueError as e:
                    errors.append(f"{where}: {e}")
    return errors


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------


def _partial(rule: TaxRule, ctx: RuleContext, outcome: RuleOutcome) -> RuleOutcome:
    tax = ctx.tax_amount if ctx.tax_amount is not None else Money.zero()
    match rule.value_type:
        case RuleValueType.AMOUNT:
            cap = rule.as_money()
            if ctx.base_amount <= cap:
                return replace(outcome, amount=tax)
            ratio = cap.amount / ctx.base_amount.amount
        case RuleValueType.PERCENTAGE:
            ratio = rule.as_percentage().fraction
        case _:
            raise InvalidRuleValueError(
                rule.code, f"PARTIAL needs an AMOUNT or PERCENTAGE value, got {rule.value_type.value}",
            )
    deductible = (tax * ratio).round()
    excess = tax - deductible
    return replace(
        outcome,
        passed=excess.is_zero,
        amount=deductible,
        excess=excess,
        message=f"{_label(rule)}: {deductible.amount} of {tax.amount} deductible",
    )


def _label(rule: TaxRule) -> str:
    return rule.description or rule.name or rule.code


def _act(rule: TaxRule, met: bool, ctx: RuleContext) -> RuleOutcome:
    outcome = RuleOutcome(rule_code=rule.code, action=rule.action, condition_met=met)
    match rule.action:
        case RuleAction.DENY:
            return replace(outcome, passed=False, message=_label(rule)) if met else outcome
        case RuleAction.ALLOW:
            if met:
                return outcome
            return replace(outcome, passed=False, message=f"{_label(rule)}: condition not met")
        case RuleAction.LIMIT:
            if not met:
                return outcome
            limit = Money.of(rule.limit_value if rule.limit_value is not None else rule.value)
            if ctx.base_amount > limit:
                return replace(
                    outcome,
                    passed=False,
                    amount=limit,
                    excess=ctx.base_amount - limit,
                    message=f"{_label(rule)}: exceeds {limit.amount}",
                )
            return replace(outcome, amount=ctx.base_amount)
        case RuleAction.ADD_BACK:
            if not met:
                return outcome
            amount = ctx.amount if ctx.amount is not None else Money.zero()
            return replace(outcome, passed=False, amount=amount, message=_label(rule))
        case RuleAction.DEDUCT:
            return replace(outcome, amount=rule.as_money()) if met else outcome
        case RuleAction.SET_RATE:
            return replace(outcome, rate=rule.as_percentage()) if met else outcome
        case RuleAction.WARN:
            return replace(outcome, warning=True, message=_label(rule)) if met else outcome
        case RuleAction.PARTIAL:
            return _partial(rule, ctx, outcome) if met else outcome
        case RuleAction.CALCULATE:
            # The figure comes from the engine that reads this rule.
            return outcome
        case _:
            raise ValueError(f"Unknown rule action: {rule.action}")


def apply_rule(rule: TaxRule, context: RuleContext) -> RuleOutcome:
    """
    Evaluate ``rule`` against one case.

    A rule outside its window yields ``in_effect=False`` and passes.

    Raises:
        InvalidRuleConditionError: if the condition cannot be evaluated.
    """
    if not rule.is_effective(context.as_of):
        return RuleOutcome.not_in_effect(rule)
    try:
        met = evaluate_condition(rule.condition, context)
    except ValueError as e:
        raise InvalidRuleConditionError(rule.code, (str(e),)) from e

    outcome = _act(rule, met, context)
    logger.debug("rule_applied", extra={
        "rule_code": rule.code,
        "action": rule.action.value,
        "condition_met": met,
        "passed": outcome.passed,
        "amount": str(outcome.amount.amount) if outcome.amount is not None else None,
    })
    return outcome


def evaluate_rules(
    rules: RuleRegistry,
    rule_type: RuleType,
    context: RuleContext,
) -> RuleEvaluation:
    """
    Apply every conditioned rule of ``rule_type`` in effect on ``context.as_of``.

    Rules without a condition are parameters read by the engines and are
    not applied here.  Codes are applied in sorted order.

    Raises:
        RuleAmbiguousError: if a code has overlapping active versions.
        InvalidRuleConditionError: if a condition cannot be evaluated.
    """
    codes = sorted({
        r.code for r in rules.rules
        if r.rule_type == rule_type and r.condition is not None
    })
    outcomes: list[RuleOutcome] = []
    for code in codes:
        rule = rules.resolve_optional(code, context.as_of)
        if rule is not None and rule.condition is not None:
            outcomes.append(apply_rule(rule, context))

    evaluation = RuleEvaluation(rule_type=rule_type, as_of=context.as_of, outcomes=tuple(outcomes))
    logger.info("rules_evaluated", extra={
        "rule_type": rule_type.value,
        "as_of": context.as_of.isoformat(),
        "applied": len(outcomes),
        "is_allowed": evaluation.is_allowed,
        "warnings": len(evaluation.warnings),
    })
    return evaluation

"""
Tests for rule conditions and rule actions.

Covers:
- Condition predicates and AND / OR / NOT
- Static condition checks
- One outcome shape per RuleAction
- Evaluating a rule type from a registry
"""

from datetime import date
from decimal import Decimal

import pytest

from farmbook_engines.vat import PaymentMethod
from farmbook_kernel.domain.rule_evaluator import (
    PREDICATES,
    RuleContext,
    apply_rule,
    condition_errors,
    evaluate_condition,
    evaluate_rules,
)
from farmbook_kernel.domain.rule_registry import RuleRegistry
from farmbook_kernel.domain.rules import RuleAction, RuleType, RuleValueType, TaxRule
from farmbook_kernel.domain.values import Money, Percentage
from farmbook_kernel.exceptions import InvalidRuleConditionError, InvalidRuleValueError

AS_OF = date(2025, 1, 31)

CASH_OVER_LIMIT = {"AND": [{"amount_gte": "20000000"}, {"payment_method": "CASH"}]}


def _rule(
    action: RuleAction,
    value: str = "0",
    value_type: RuleValueType = RuleValueType.AMOUNT,
    condition=None,
    code: str = "TEST_RULE",
    rule_type: RuleType = RuleType.VAT,
    limit_value: str | None = None,
    effective_until: date | None = None,
    name: str = "",
) -> TaxRule:
    return TaxRule(
        code=code,
        rule_type=rule_type,
        category="TEST",
        action=action,
        value=Decimal(value),
        value_type=value_type,
        effective_from=date(2014, 1, 1),
        effective_until=effective_until,
        limit_value=Decimal(limit_value) if limit_value is not None else None,
        name=name,
        condition=condition,
    )


def _ctx(**facts) -> RuleContext:
    return RuleContext(as_of=facts.pop("as_of", AS_OF), **facts)


class TestEvaluateCondition:
    """Predicates and logical operators."""

    def test_no_condition_holds(self):
        assert evaluate_condition(None, _ctx())
        assert evaluate_condition({}, _ctx())

    def test_amount_falls_back_to_total(self):
        """amount wins over total_amount; total_amount is used when amount is unset."""
        condition = {"amount_gte": "20000000"}
        assert evaluate_condition(condition, _ctx(total_amount=Money.of("25000000")))
        assert not evaluate_condition(
            condition, _ctx(amount=Money.of("10000000"), total_amount=Money.of("25000000")),
        )

    def test_amount_boundaries(self):
        """gte and lte include the bound; gt and lt exclude it."""
        ctx = _ctx(amount=Money.of("20000000"))
        assert evaluate_condition({"amount_gte": "20000000"}, ctx)
        assert evaluate_condition({"amount_lte": "20000000"}, ctx)
        assert not evaluate_condition({"amount_gt": "20000000"}, ctx)
        assert not evaluate_condition({"amount_lt": "20000000"}, ctx)

    def test_and(self):
        """Cash over the limit meets the cash rule; a transfer does not."""
        cash = _ctx(total_amount=Money.of("25000000"), payment_method=PaymentMethod.CASH)
        transfer = _ctx(total_amount=Money.of("25000000"), payment_method=PaymentMethod.BANK_TRANSFER)
        assert evaluate_condition(CASH_OVER_LIMIT, cash)
        assert not evaluate_condition(CASH_OVER_LIMIT, transfer)

    def test_or(self):
        condition = {"OR": [{"payment_method": "CASH"}, {"payment_method": "CARD"}]}
        assert evaluate_condition(condition, _ctx(payment_method="CARD"))
        assert not evaluate_condition(condition, _ctx(payment_method="BANK_TRANSFER"))

    def test_not(self):
        condition = {"NOT": {"payment_method": "CASH"}}
        assert evaluate_condition(condition, _ctx(payment_method="BANK_TRANSFER"))
        assert not evaluate_condition(condition, _ctx(payment_method="CASH"))

    def test_sibling_keys_all_hold(self):
        """Keys of one mapping are combined with AND."""
        condition = {"payment_method": "CASH", "amount_gte": "1"}
        assert evaluate_condition(condition, _ctx(payment_method="CASH", amount=Money.of("5")))
        assert not evaluate_condition(condition, _ctx(payment_method="CASH"))

    def test_missing_supplier_tax_code(self):
        """A null operand matches an empty or missing tax code."""
        condition = {"supplier_tax_code": None}
        assert evaluate_condition(condition, _ctx())
        assert evaluate_condition(condition, _ctx(supplier_tax_code=""))
        assert not evaluate_condition(condition, _ctx(supplier_tax_code="0312345678"))

    def test_supplier_tax_code_match(self):
        condition = {"supplier_tax_code": "0312345678"}
        assert evaluate_condition(condition, _ctx(supplier_tax_code="0312345678"))

    def test_invoice_age(self):
        """Age is measured in 365.25-day years up to as_of."""
        condition = {"invoice_age_years_gt": "5"}
        assert evaluate_condition(condition, _ctx(invoice_date=date(2019, 1, 1)))
        assert not evaluate_condition(condition, _ctx(invoice_date=date(2021, 1, 1)))
        assert not evaluate_condition(condition, _ctx())

    def test_seats(self):
        """Missing seats count as zero."""
        assert evaluate_condition({"seats_lt": "9"}, _ctx(seats=7))
        assert not evaluate_condition({"seats_lt": "9"}, _ctx(seats=9))
        assert evaluate_condition({"seats_gte": "9"}, _ctx(seats=16))
        assert evaluate_condition({"seats_lt": "9"}, _ctx())

    def test_vehicle_type(self):
        assert evaluate_condition({"vehicle_type": "PASSENGER_CAR"}, _ctx(vehicle_type="PASSENGER_CAR"))
        assert not evaluate_condition({"vehicle_type": "PASSENGER_CAR"}, _ctx(vehicle_type="TRUCK"))

    def test_labor_contract(self):
        """An unknown contract status matches neither true nor false."""
        assert evaluate_condition({"has_labor_contract": True}, _ctx(has_labor_contract=True))
        assert not evaluate_condition({"has_labor_contract": False}, _ctx())

    def test_amount_per_person(self):
        condition = {"amount_per_person_gte": "500000"}
        assert evaluate_condition(condition, _ctx(amount_per_person=Money.of("500000")))
        assert not evaluate_condition(condition, _ctx(amount_per_person=Money.of("499999")))
        assert not evaluate_condition(condition, _ctx())

    def test_entertainment_ratio(self):
        """20M of 100M is 20%, above a 15% threshold."""
        condition = {"entertainment_ratio_gt": "15"}
        ctx = _ctx(total_entertainment=Money.of("20000000"), total_expenses=Money.of("100000000"))
        assert ctx.entertainment_ratio == Decimal("20")
        assert evaluate_condition(condition, ctx)
        assert not evaluate_condition(condition, _ctx(total_entertainment=Money.of("20000000")))

    def test_category_lists(self):
        assert evaluate_condition({"category_in": ["MIXED", "WELFARE"]}, _ctx(category="MIXED"))
        assert not evaluate_condition({"category_in": ["MIXED"]}, _ctx())
        assert evaluate_condition({"category_not_in": ["MIXED"]}, _ctx(category="GENERAL"))

    def test_dates_compare_as_of(self):
        assert evaluate_condition({"date_before": "2025-07-01"}, _ctx())
        assert not evaluate_condition({"date_after": "2025-07-01"}, _ctx())
        assert evaluate_condition({"date_after": date(2024, 12, 31)}, _ctx())

    def test_unknown_predicate(self):
        with pytest.raises(ValueError):
            evaluate_condition({"colour": "red"}, _ctx())

    def test_float_operand_refused(self):
        with pytest.raises(ValueError):
            evaluate_condition({"amount_gte": 1.5}, _ctx())


class TestConditionErrors:
    """Static checks report every problem with its path."""

    def test_valid(self):
        assert condition_errors(None) == []
        assert condition_errors(CASH_OVER_LIMIT) == []

    def test_not_a_mapping(self):
        assert condition_errors("amount_gte") == ["condition: must be a mapping"]

    def test_every_problem_reported(self):
        """Problems in branches that evaluation would skip are still found."""
        errors = condition_errors({
            "AND": [{"amount_gte": 1.5}, {"colour": "red"}],
            "NOT": "CASH",
            "OR": [],
        })
        assert len(errors) == 4
        assert errors[0].startswith("condition.AND[0].amount_gte")
        assert errors[1].startswith("condition.AND[1].colour")
        assert errors[2].startswith("condition.NOT")
        assert errors[3].startswith("condition.OR")

    def test_operand_shapes(self):
        assert condition_errors({"category_in": "MIXED"})
        assert condition_errors({"has_labor_contract": "yes"})
        assert condition_errors({"date_before": "someday"})
        assert condition_errors({"supplier_tax_code": 123})

    @pytest.mark.parametrize("predicate", sorted(PREDICATES))
    def test_every_predicate_known(self, predicate):
        """Each listed predicate is accepted by the checker with a sample operand."""
        samples = {
            "category_in": ["MIXED"],
            "category_not_in": ["MIXED"],
            "date_before": "2025-01-01",
            "date_after": "2025-01-01",
            "has_labor_contract": True,
            "payment_method": "CASH",
            "payment_method_not": "CASH",
            "vehicle_type": "PASSENGER_CAR",
            "supplier_tax_code": None,
        }
        condition = {predicate: samples.get(predicate, "1")}
        assert condition_errors(condition) == []
        evaluate_condition(condition, _ctx())


class TestApplyRule:
    """One outcome shape per action."""

    def test_deny(self):
        rule = _rule(RuleAction.DENY, condition=CASH_OVER_LIMIT, name="Cash over 20M")
        denied = apply_rule(rule, _ctx(total_amount=Money.of("25000000"), payment_method="CASH"))
        assert denied.condition_met
        assert not denied.passed
        assert denied.message == "Cash over 20M"
        assert apply_rule(rule, _ctx(total_amount=Money.of("5000000"), payment_method="CASH")).passed

    def test_allow(self):
        rule = _rule(RuleAction.ALLOW, condition={"has_labor_contract": True})
        assert apply_rule(rule, _ctx(has_labor_contract=True)).passed
        assert not apply_rule(rule, _ctx(has_labor_contract=False)).passed

    def test_limit(self):
        """Over the limit: the limit is allowed and the rest is excess."""
        rule = _rule(RuleAction.LIMIT, value="15000000")
        over = apply_rule(rule, _ctx(amount=Money.of("20000000")))
        assert not over.passed
        assert over.amount == Money.of("15000000")
        assert over.excess == Money.of("5000000")
        under = apply_rule(rule, _ctx(amount=Money.of("10000000")))
        assert under.passed
        assert under.amount == Money.of("10000000")

    def test_limit_value_overrides_value(self):
        rule = _rule(RuleAction.LIMIT, value="15", limit_value="1000")
        assert apply_rule(rule, _ctx(amount=Money.of("1500"))).amount == Money.of("1000")

    def test_add_back(self):
        rule = _rule(RuleAction.ADD_BACK, condition={"category_in": ["ADMIN_PENALTY"]})
        outcome = apply_rule(rule, _ctx(amount=Money.of("5000000"), category="ADMIN_PENALTY"))
        assert not outcome.passed
        assert outcome.amount == Money.of("5000000")
        assert apply_rule(rule, _ctx(amount=Money.of("5000000"))).amount is None

    def test_deduct(self):
        rule = _rule(RuleAction.DEDUCT, value="11000000")
        assert apply_rule(rule, _ctx()).amount == Money.of("11000000")

    def test_set_rate(self):
        rule = _rule(RuleAction.SET_RATE, value="8", value_type=RuleValueType.PERCENTAGE)
        assert apply_rule(rule, _ctx()).rate == Percentage.of("8")

    def test_warn(self):
        """A warning still passes."""
        rule = _rule(RuleAction.WARN, condition={"amount_per_person_gte": "500000"}, name="Per person")
        fired = apply_rule(rule, _ctx(amount_per_person=Money.of("600000")))
        assert fired.warning
        assert fired.passed
        assert not apply_rule(rule, _ctx(amount_per_person=Money.of("100000"))).warning

    def test_partial_amount_cap(self):
        """A 2B car deducts VAT on 1.6B of its price."""
        rule = _rule(RuleAction.PARTIAL, value="1600000000")
        outcome = apply_rule(rule, _ctx(amount=Money.of("2000000000"), tax_amount=Money.of("200000000")))
        assert not outcome.passed
        assert outcome.amount == Money.of("160000000")
        assert outcome.excess == Money.of("40000000")

    def test_partial_under_cap(self):
        rule = _rule(RuleAction.PARTIAL, value="1600000000")
        outcome = apply_rule(rule, _ctx(amount=Money.of("900000000"), tax_amount=Money.of("90000000")))
        assert outcome.passed
        assert outcome.amount == Money.of("90000000")

    def test_partial_percentage(self):
        """A 50% share is rounded half up."""
        rule = _rule(RuleAction.PARTIAL, value="50", value_type=RuleValueType.PERCENTAGE)
        outcome = apply_rule(rule, _ctx(tax_amount=Money.of("1000001")))
        assert outcome.amount == Money.of("500001")
        assert outcome.excess == Money.of("500000")

    def test_partial_count_refused(self):
        rule = _rule(RuleAction.PARTIAL, value="9", value_type=RuleValueType.COUNT)
        with pytest.raises(InvalidRuleValueError):
            apply_rule(rule, _ctx())

    def test_calculate(self):
        outcome = apply_rule(_rule(RuleAction.CALCULATE, value="5"), _ctx())
        assert outcome.passed
        assert outcome.amount is None

    @pytest.mark.parametrize("action", list(RuleAction))
    def test_every_action_handled(self, action):
        """No action falls through without an outcome."""
        outcome = apply_rule(_rule(action), _ctx())
        assert outcome.action == action
        assert outcome.in_effect

    def test_not_in_effect(self):
        rule = _rule(RuleAction.DENY, effective_until=date(2020, 12, 31))
        outcome = apply_rule(rule, _ctx())
        assert not outcome.in_effect
        assert outcome.passed

    def test_bad_condition(self):
        rule = _rule(RuleAction.DENY, condition={"colour": "red"})
        with pytest.raises(InvalidRuleConditionError) as exc_info:
            apply_rule(rule, _ctx())
        assert exc_info.value.code == "INVALID_RULE_CONDITION"
        assert exc_info.value.rule_code == "TEST_RULE"

    def test_condition_rejects_non_mapping(self):
        with pytest.raises(ValueError):
            _rule(RuleAction.DENY, condition=["CASH"])


class TestEvaluateRules:
    """A whole rule type against one case."""

    VAT_CHECKS = {
        "VAT_CASH_LIMIT",
        "VAT_INVOICE_RETENTION_YEARS",
        "VAT_VEHICLE_MIN_SEATS",
        "VAT_CAR_LUXURY_CAP",
        "VAT_ENTERTAINMENT_PER_PERSON",
        "VAT_MIXED_USE_RATIO",
    }

    def test_conditioned_rules_only(self, registry, as_of):
        """Only rules with a condition are applied."""
        evaluation = evaluate_rules(registry, RuleType.VAT, _ctx(as_of=as_of))
        assert {o.rule_code for o in evaluation.outcomes} == self.VAT_CHECKS
        assert evaluate_rules(registry, RuleType.PIT, _ctx(as_of=as_of)).outcomes == ()

    def test_clean_invoice(self, registry, as_of):
        ctx = _ctx(
            as_of=as_of,
            total_amount=Money.of("11000000"),
            payment_method=PaymentMethod.BANK_TRANSFER,
            invoice_date=date(2025, 1, 10),
        )
        evaluation = evaluate_rules(registry, RuleType.VAT, ctx)
        assert evaluation.is_allowed
        assert evaluation.errors == ()
        assert evaluation.warnings == ()

    def test_cash_invoice_denied(self, registry, as_of):
        ctx = _ctx(as_of=as_of, total_amount=Money.of("25000000"), payment_method=PaymentMethod.CASH)
        evaluation = evaluate_rules(registry, RuleType.VAT, ctx)
        assert not evaluation.is_allowed
        assert [o.rule_code for o in evaluation.refusals] == ["VAT_CASH_LIMIT"]
        assert len(evaluation.errors) == 1

    def test_entertainment_warning(self, registry, as_of):
        ctx = _ctx(as_of=as_of, amount_per_person=Money.of("600000"))
        evaluation = evaluate_rules(registry, RuleType.VAT, ctx)
        assert evaluation.is_allowed
        assert len(evaluation.warnings) == 1

    def test_luxury_car_partial(self, registry, as_of):
        """A 9-seat car at 2.2B deducts 160M of its 220M VAT."""
        ctx = _ctx(
            as_of=as_of,
            amount=Money.of("2200000000"),
            tax_amount=Money.of("220000000"),
            vehicle_type="PASSENGER_CAR",
            seats=9,
        )
        evaluation = evaluate_rules(registry, RuleType.VAT, ctx)
        cap = next(o for o in evaluation.outcomes if o.rule_code == "VAT_CAR_LUXURY_CAP")
        assert cap.amount == Money.of("160000000")
        assert cap.excess == Money.of("60000000")
        assert evaluation.is_allowed

    def test_failed_allow_refuses(self, as_of):
        rules = RuleRegistry([
            _rule(RuleAction.ALLOW, code="PIT_CONTRACT", rule_type=RuleType.PIT,
                  condition={"has_labor_contract": True}),
        ])
        evaluation = evaluate_rules(rules, RuleType.PIT, _ctx(as_of=as_of, has_labor_contract=False))
        assert not evaluation.is_allowed

    def test_add_back_total(self, as_of):
        rules = RuleRegistry([
            _rule(RuleAction.ADD_BACK, code="CIT_PENALTY", rule_type=RuleType.CIT,
                  condition={"category_in": ["ADMIN_PENALTY"]}),
            _rule(RuleAction.ADD_BACK, code="CIT_NO_INVOICE", rule_type=RuleType.CIT,
                  condition={"category_in": ["NO_INVOICE"]}),
        ])
        ctx = _ctx(as_of=as_of, amount=Money.of("5000000"), category="ADMIN_PENALTY")
        assert evaluate_rules(rules, RuleType.CIT, ctx).add_back_total == Money.of("5000000")

    def test_logged(self, registry, as_of, captured_logs):
        evaluate_rules(registry, RuleType.VAT, _ctx(as_of=as_of))
        records = [r for r in captured_logs() if r["message"] == "rules_evaluated"]
        assert records[0]["rule_type"] == "VAT"
        assert records[0]["applied"] == 6

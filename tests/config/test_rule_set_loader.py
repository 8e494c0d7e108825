"""
Tests for YAML rule-set loading and integrity validation.

Covers:
- The shipped VN_DEFAULT set loads and resolves the statutory values
- Checksum determinism
- Float, overlap and bad condition rejection
"""

import textwrap
from datetime import date
from decimal import Decimal

import pytest

from farmbook_config import DEFAULT_RULE_SET_PATH, compute_checksum, load_rule_set
from farmbook_config.loader import parse_date, parse_rule, parse_rule_set
from farmbook_config.validator import find_overlaps, validate_rule_set
from farmbook_kernel.domain.rules import RuleValueType
from farmbook_kernel.domain.values import Money, Percentage
from farmbook_kernel.exceptions import RuleSetIntegrityError


def _write(tmp_path, body: str):
    path = tmp_path / "rules.yaml"
    path.write_text(textwrap.dedent(body), encoding="utf-8")
    return path


_HEADER = """\
rule_set_id: TEST
version: 1
rules:
"""


class TestDefaultRuleSet:
    """The shipped Vietnamese rule set."""

    def test_loads(self, rule_set):
        """The default file exists and loads with a header."""
        assert DEFAULT_RULE_SET_PATH.exists()
        assert rule_set.rule_set_id == "VN_DEFAULT"
        assert rule_set.jurisdiction == "VN"
        assert rule_set.currency == "VND"
        assert len(rule_set.rules) > 40

    def test_passes_integrity(self, rule_set):
        """The default set has no integrity errors."""
        assert validate_rule_set(rule_set.rules) == ()

    def test_insurance_cap_switches_in_july_2024(self, registry):
        """INS_MAX_BASE is 36M until 2024-06-30 and 46.8M after."""
        assert registry.money("INS_MAX_BASE", date(2024, 6, 30)) == Money.of("36000000")
        assert registry.money("INS_MAX_BASE", date(2024, 7, 1)) == Money.of("46800000")

    def test_family_deductions(self, registry, as_of):
        """Personal 11M and dependent 4.4M."""
        assert registry.money("PIT_DEDUCTION_SELF", as_of) == Money.of("11000000")
        assert registry.money("PIT_DEDUCTION_DEPENDENT", as_of) == Money.of("4400000")

    def test_employee_rates(self, registry, as_of):
        """Employee BHXH/BHYT/BHTN are 8/1.5/1 percent."""
        assert registry.percentage("INS_EMPLOYEE_BHXH", as_of) == Percentage.of("8")
        assert registry.percentage("INS_EMPLOYEE_BHYT", as_of) == Percentage.of("1.5")
        assert registry.percentage("INS_EMPLOYEE_BHTN", as_of) == Percentage.of("1")

    def test_vat_and_cit_thresholds(self, registry, as_of):
        """Cash limit, seat minimum, caps and CIT rate."""
        assert registry.money("VAT_CASH_LIMIT", as_of) == Money.of("20000000")
        assert registry.count("VAT_VEHICLE_MIN_SEATS", as_of) == 9
        assert registry.money("VAT_ENTERTAINMENT_PER_PERSON", as_of) == Money.of("500000")
        assert registry.money("CIT_VEHICLE_CAP", as_of) == Money.of("1600000000")
        assert registry.percentage("CIT_TAX_RATE", as_of) == Percentage.of("20")

    def test_vat_conditions(self, registry, as_of):
        """The cash rule carries its condition from YAML."""
        rule = registry.resolve("VAT_CASH_LIMIT", as_of)
        assert rule.condition == {"AND": [{"amount_gte": "20000000"}, {"payment_method": "CASH"}]}
        assert registry.resolve("VAT_MIXED_USE_RATIO", as_of).condition == {"category_in": ["MIXED"]}

    def test_seven_brackets(self, registry, as_of):
        """Seven PIT brackets, last one open-ended."""
        series = registry.series("PIT_BRACKET_", as_of)
        assert len(series) == 7
        assert series[-1].limit_value is None
        assert series[0].limit_value == Decimal("5000000")

    def test_checksum_is_stable(self):
        """Loading twice gives the same checksum."""
        assert load_rule_set().checksum == load_rule_set().checksum


class TestChecksum:
    """compute_checksum ignores order and descriptive text."""

    def test_order_independent(self, rule_set):
        """Reversing the rules does not change the checksum."""
        rules = rule_set.rules
        assert compute_checksum(rules) == compute_checksum(tuple(reversed(rules)))

    def test_value_change_changes_checksum(self, tmp_path):
        """A different value gives a different checksum."""
        a = load_rule_set(_write(tmp_path, _HEADER + """\
          - {code: X, rule_type: VAT, category: C, action: LIMIT, value: "1", value_type: AMOUNT, effective_from: "2020-01-01"}
        """))
        b = parse_rule_set({
            "rule_set_id": "TEST",
            "rules": [{
                "code": "X", "rule_type": "VAT", "category": "C", "action": "LIMIT",
                "value": "2", "value_type": "AMOUNT", "effective_from": "2020-01-01",
            }],
        })
        assert a.checksum != b.checksum

    def test_condition_change_changes_checksum(self):
        """Two rules differing only in condition hash differently."""
        base = {
            "code": "X", "rule_type": "VAT", "category": "C", "action": "DENY",
            "value": "1", "value_type": "AMOUNT", "effective_from": "2020-01-01",
        }
        a = compute_checksum([parse_rule({**base, "condition": {"payment_method": "CASH"}})])
        b = compute_checksum([parse_rule({**base, "condition": {"payment_method": "CARD"}})])
        assert a != b


class TestParsing:
    """Rule parsing from YAML mappings."""

    def test_parse_rule(self):
        """A full mapping parses into a TaxRule."""
        rule = parse_rule({
            "code": "PIT_BRACKET_1",
            "rule_type": "PIT",
            "category": "PROGRESSIVE_BRACKET",
            "action": "CALCULATE",
            "value": "5",
            "value_type": "PERCENTAGE",
            "limit_value": "5000000",
            "effective_from": "2020-07-01",
        })
        assert rule.value == Decimal("5")
        assert rule.value_type == RuleValueType.PERCENTAGE
        assert rule.limit_value == Decimal("5000000")
        assert rule.effective_until is None

    def test_float_value_rejected(self):
        """Unquoted decimals are refused."""
        with pytest.raises(ValueError):
            parse_rule({
                "code": "X", "rule_type": "VAT", "category": "C", "action": "LIMIT",
                "value": 1.5, "value_type": "MULTIPLIER", "effective_from": "2020-01-01",
            })

    def test_missing_key(self):
        """A missing required key raises KeyError."""
        with pytest.raises(KeyError):
            parse_rule({"code": "X"})

    def test_unknown_enum(self):
        """An unknown rule_type raises ValueError."""
        with pytest.raises(ValueError):
            parse_rule({
                "code": "X", "rule_type": "NOPE", "category": "C", "action": "LIMIT",
                "value": "1", "value_type": "AMOUNT", "effective_from": "2020-01-01",
            })

    def test_condition_dates_become_text(self):
        """Unquoted YAML dates in a condition are stored as ISO strings."""
        rule = parse_rule({
            "code": "X", "rule_type": "VAT", "category": "C", "action": "DENY",
            "value": "1", "value_type": "AMOUNT", "effective_from": "2020-01-01",
            "condition": {"OR": [{"date_before": date(2025, 7, 1)}]},
        })
        assert rule.condition == {"OR": [{"date_before": "2025-07-01"}]}

    def test_condition_must_be_mapping(self):
        with pytest.raises(ValueError):
            parse_rule({
                "code": "X", "rule_type": "VAT", "category": "C", "action": "DENY",
                "value": "1", "value_type": "AMOUNT", "effective_from": "2020-01-01",
                "condition": ["CASH"],
            })

    def test_parse_date_accepts_date(self):
        """Unquoted YAML dates arrive as date objects."""
        assert parse_date(date(2020, 1, 1)) == date(2020, 1, 1)
        assert parse_date("2020-01-01") == date(2020, 1, 1)

    def test_missing_file(self, tmp_path):
        """A missing path raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            load_rule_set(tmp_path / "missing.yaml")


class TestIntegrity:
    """Overlapping windows and negative values are rejected on load."""

    OVERLAP = _HEADER + """\
      - {code: INS_MAX_BASE, rule_type: INSURANCE, category: BASE, action: LIMIT, value: "36000000", value_type: AMOUNT, effective_from: "2019-07-01"}
      - {code: INS_MAX_BASE, rule_type: INSURANCE, category: BASE, action: LIMIT, value: "46800000", value_type: AMOUNT, effective_from: "2024-07-01"}
    """

    def test_overlap_raises(self, tmp_path):
        """Two open-ended versions of one code are rejected."""
        with pytest.raises(RuleSetIntegrityError) as exc_info:
            load_rule_set(_write(tmp_path, self.OVERLAP))
        assert exc_info.value.code == "RULE_SET_INTEGRITY"
        assert "INS_MAX_BASE" in exc_info.value.errors[0]

    def test_overlap_loads_without_validation(self, tmp_path):
        """validate=False skips the integrity check."""
        rule_set = load_rule_set(_write(tmp_path, self.OVERLAP), validate=False)
        assert len(rule_set.rules) == 2
        assert len(find_overlaps(rule_set.rules)) == 1

    def test_negative_value(self, tmp_path):
        """Negative values are integrity errors."""
        path = _write(tmp_path, _HEADER + """\
          - {code: X, rule_type: VAT, category: C, action: LIMIT, value: "-1", value_type: AMOUNT, effective_from: "2020-01-01"}
        """)
        with pytest.raises(RuleSetIntegrityError):
            load_rule_set(path)

    def test_inactive_versions_do_not_overlap(self, tmp_path):
        """An inactive version never conflicts."""
        path = _write(tmp_path, _HEADER + """\
          - {code: X, rule_type: VAT, category: C, action: LIMIT, value: "1", value_type: AMOUNT, effective_from: "2020-01-01"}
          - {code: X, rule_type: VAT, category: C, action: LIMIT, value: "2", value_type: AMOUNT, effective_from: "2021-01-01", is_active: false}
        """)
        assert len(load_rule_set(path).rules) == 2

    def test_bad_condition(self, tmp_path):
        """An unknown predicate is an integrity error naming the rule."""
        path = _write(tmp_path, _HEADER + """\
          - {code: X, rule_type: VAT, category: C, action: DENY, value: "1", value_type: AMOUNT, effective_from: "2020-01-01", condition: {colour: red}}
        """)
        with pytest.raises(RuleSetIntegrityError) as exc_info:
            load_rule_set(path)
        assert exc_info.value.errors[0].startswith("X: condition.colour")

    def test_float_in_condition(self, tmp_path):
        """Condition amounts must be quoted like rule values."""
        path = _write(tmp_path, _HEADER + """\
          - {code: X, rule_type: VAT, category: C, action: DENY, value: "1", value_type: AMOUNT, effective_from: "2020-01-01", condition: {amount_gte: 1.5}}
        """)
        with pytest.raises(RuleSetIntegrityError):
            load_rule_set(path)

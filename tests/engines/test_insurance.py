"""
Tests for the insurance contribution calculator.

Covers:
- Employee and employer splits on an uncapped base
- Capped base and the July 2024 cap change
- Line-by-line rounding
- Config validation
"""

from dataclasses import replace
from datetime import date

import pytest

from farmbook_engines.insurance import InsuranceConfig, InsuranceSplit, capped_base, contributions
from farmbook_kernel.domain.values import Money, Percentage
from farmbook_kernel.exceptions import InvalidFactsError


class TestContributions:
    """Split on a 10,000,000 base."""

    def test_employee_lines(self, insurance_config):
        """8 / 1.5 / 1 percent of 10M."""
        split = contributions(Money.of("10000000"), insurance_config)
        assert split.employee.bhxh == Money.of("800000")
        assert split.employee.bhyt == Money.of("150000")
        assert split.employee.bhtn == Money.of("100000")
        assert split.employee.total == Money.of("1050000")

    def test_employer_lines(self, insurance_config):
        """17 / 3 / 1 / 0.5 percent of 10M."""
        split = contributions(Money.of("10000000"), insurance_config)
        assert split.employer.bhxh == Money.of("1700000")
        assert split.employer.bhyt == Money.of("300000")
        assert split.employer.bhtn == Money.of("100000")
        assert split.employer.bhtnld == Money.of("50000")
        assert split.employer.total == Money.of("2150000")

    def test_zero_base(self, insurance_config):
        """A zero base contributes nothing."""
        split = contributions(Money.zero(), insurance_config)
        assert split.employee.total == Money.zero()
        assert split.employer.total == Money.zero()

    def test_negative_base_rejected(self, insurance_config):
        """A negative base is invalid facts."""
        with pytest.raises(InvalidFactsError):
            contributions(Money.of("-1"), insurance_config)

    def test_none_split(self):
        """InsuranceSplit.none() is all zero."""
        split = InsuranceSplit.none()
        assert split.base_used == Money.zero()
        assert split.employee.total == Money.zero()
        assert split.employer.total == Money.zero()


class TestCappedBase:
    """The base used never exceeds max_insurance_base."""

    def test_cap_applies(self, insurance_config):
        """A 50M base is capped to 46.8M in 2025."""
        split = contributions(Money.of("50000000"), insurance_config)
        assert split.base_used == Money.of("46800000")
        assert split.employee.bhxh == Money.of("3744000")
        assert split.employee.total == Money.of("4914000")

    def test_old_cap(self, registry):
        """Before July 2024 the cap was 36M."""
        config = InsuranceConfig.from_rules(registry, date(2024, 6, 1))
        split = contributions(Money.of("50000000"), config)
        assert split.base_used == Money.of("36000000")
        assert split.employee.bhxh == Money.of("2880000")

    def test_below_cap_untouched(self, insurance_config):
        """A base under the cap is used as-is."""
        assert capped_base(Money.of("20000000"), insurance_config) == Money.of("20000000")

    def test_cap_logged(self, insurance_config, captured_logs):
        """Capping emits insurance_base_capped."""
        contributions(Money.of("50000000"), insurance_config)
        assert any(r["message"] == "insurance_base_capped" for r in captured_logs())


class TestLineRounding:
    """Each line is rounded on its own."""

    def test_total_is_sum_of_rounded_lines(self, insurance_config):
        """On a 30 đồng base the lines round to 2+0+0, not round(3.15)."""
        split = contributions(Money.of("30"), insurance_config)
        assert split.employee.bhxh == Money.of("2")
        assert split.employee.bhyt == Money.of("0")
        assert split.employee.bhtn == Money.of("0")
        assert split.employee.total == Money.of("2")
        assert insurance_config.employee_total_rate.apply(Money.of("30")).round() == Money.of("3")


class TestInsuranceConfig:
    """Config resolution and validation."""

    def test_from_rules(self, insurance_config):
        """All fields resolve from the default set."""
        assert insurance_config.employee_total_rate == Percentage.of("10.5")
        assert insurance_config.max_insurance_base == Money.of("46800000")
        assert insurance_config.personal_deduction == Money.of("11000000")

    def test_negative_rate_rejected(self, insurance_config):
        """A negative rate raises ValueError."""
        with pytest.raises(ValueError):
            replace(insurance_config, employee_bhxh_rate=Percentage.of("-1"))

    def test_frozen(self, insurance_config):
        """Config cannot be mutated."""
        with pytest.raises(AttributeError):
            insurance_config.employee_bhxh_rate = Percentage.of("9")

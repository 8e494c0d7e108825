"""
Rules -- Versioned tax rule records.

Responsibility:
    Defines ``TaxRule``, the immutable record of one legally mutable number
    (a rate, a ceiling, a threshold) with its effective window, and the
    closed enums that classify rules.

Architecture position:
    Kernel > Domain -- pure, zero I/O.  Produced by the rule store adapters
    (``farmbook_config.loader`` and ``farmbook_kernel.selectors``) and
    consumed through ``RuleRegistry``.

Invariants enforced:
    - ``effective_until`` is never before ``effective_from``.
    - ``value`` and ``limit_value`` are finite Decimals.
    - ``condition`` is None or a mapping; its predicates are checked by
      ``farmbook_kernel.domain.rule_evaluator``.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any

from farmbook_kernel.domain.values import Money, Percentage, to_decimal


class RuleType(str, Enum):
    """Tax area a rule belongs to."""

    VAT = "VAT"
    PIT = "PIT"
    CIT = "CIT"
    INSURANCE = "INSURANCE"
    PAYROLL = "PAYROLL"
    DEPRECIATION = "DEPRECIATION"


class RuleAction(str, Enum):
    """What the rule does when it applies."""

    DENY = "DENY"
    ALLOW = "ALLOW"
    LIMIT = "LIMIT"
    ADD_BACK = "ADD_BACK"
    DEDUCT = "DEDUCT"
    SET_RATE = "SET_RATE"
    WARN = "WARN"
    PARTIAL = "PARTIAL"
    CALCULATE = "CALCULATE"


class RuleValueType(str, Enum):
    """How ``TaxRule.value`` is read."""

    AMOUNT = "AMOUNT"  # đồng
    PERCENTAGE = "PERCENTAGE"  # 8 means 8%
    MULTIPLIER = "MULTIPLIER"  # 1.5 means 150%
    COUNT = "COUNT"  # seats, years, months


@dataclass(frozen=True)
class TaxRule:
    """
    One versioned policy fact.

    Contract:
        The rule is in effect on ``as_of`` when it is active, started on or
        before ``as_of``, and has no end date or ends on or after ``as_of``.
        ``condition`` narrows when the rule's ``action`` applies to a case;
        None means every case.

    Non-goals:
        - Does NOT decide precedence between overlapping rules; the registry
          treats overlap as a configuration error.
    """

    code: str
    rule_type: RuleType
    category: str
    action: RuleAction
    value: Decimal
    value_type: RuleValueType
    effective_from: date
    effective_until: date | None = None
    is_active: bool = True
    limit_value: Decimal | None = None
    name: str = ""
    description: str = ""
    legal_reference: str | None = None
    condition: Mapping[str, Any] | None = field(default=None, hash=False)

    def __post_init__(self) -> None:
        if not self.code:
            raise ValueError("Rule code is required")
        if self.condition is not None and not isinstance(self.condition, Mapping):
            raise ValueError(f"Rule {self.code}: condition must be a mapping")
        object.__setattr__(self, "value", to_decimal(self.value, f"{self.code}.value"))
        if self.limit_value is not None:
            object.__setattr__(
                self, "limit_value", to_decimal(self.limit_value, f"{self.code}.limit_value"),
            )
        if self.effective_until is not None and self.effective_until < self.effective_from:
            raise ValueError(
                f"Rule {self.code}: effective_until {self.effective_until} "
                f"before effective_from {self.effective_from}"
            )

    def is_effective(self, as_of: date) -> bool:
        """Check if the rule is active and its window contains ``as_of``."""
        if not self.is_active:
            return False
        if self.effective_from > as_of:
            return False
        if self.effective_until is not None and self.effective_until < as_of:
            return False
        return True

    def overlaps(self, other: TaxRule) -> bool:
        """Check if both rules are active for the same code on some common day."""
        if self.code != other.code or not (self.is_active and other.is_active):
            return False
        self_end = self.effective_until or date.max
        other_end = other.effective_until or date.max
        return self.effective_from <= other_end and other.effective_from <= self_end

    def as_money(self) -> Money:
        return Money.of(self.value)

    def as_percentage(self) -> Percentage:
        return Percentage.of(self.value)

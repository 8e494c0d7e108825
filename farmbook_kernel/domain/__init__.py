"""
Pure domain layer.

Value objects, rule records and the rule registry, with NO dependencies on
ORM, database, clock or I/O.  All domain objects are immutable.
"""

from farmbook_kernel.domain.rule_registry import RuleRegistry
from farmbook_kernel.domain.rules import RuleAction, RuleType, RuleValueType, TaxRule
from farmbook_kernel.domain.values import Money, Percentage, round_money, to_decimal

__all__ = [
    "Money",
    "Percentage",
    "RuleAction",
    "RuleRegistry",
    "RuleType",
    "RuleValueType",
    "TaxRule",
    "round_money",
    "to_decimal",
]

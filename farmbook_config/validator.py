"""
Rule Set Validator (``farmbook_config.validator``).

Responsibility
--------------
Checks a rule collection for integrity problems before it is used:
overlapping active windows for one code and negative values.  Rule
conditions are checked for unknown predicates and malformed operands.

Invariants enforced
-------------------
* At most one active rule per code on any date.  The registry would raise
  ``RuleAmbiguousError`` lazily; this check reports every overlap up front.

Failure modes
-------------
* Returns a tuple of human-readable error strings; never raises.
"""

from __future__ import annotations

from collections.abc import Iterable

from farmbook_kernel.domain.rule_evaluator import condition_errors
from farmbook_kernel.domain.rules import TaxRule


def find_overlaps(rules: Iterable[TaxRule]) -> list[tuple[TaxRule, TaxRule]]:
    """Every pair of active rules with the same code and intersecting windows."""
    by_code: dict[str, list[TaxRule]] = {}
    for rule in rules:
        if rule.is_active:
            by_code.setdefault(rule.code, []).append(rule)

    overlaps: list[tuple[TaxRule, TaxRule]] = []
    for versions in by_code.values():
        versions.sort(key=lambda r: r.effective_from)
        for i, first in enumerate(versions):
            for second in versions[i + 1:]:
                if first.overlaps(second):
                    overlaps.append((first, second))
    return overlaps


def validate_rule_set(rules: Iterable[TaxRule]) -> tuple[str, ...]:
    """
    Validate a rule collection.

    Postconditions:
        - Returns an empty tuple when the collection is consistent.
    """
    rules = list(rules)
    errors: list[str] = []

    for first, second in find_overlaps(rules):
        errors.append(
            f"{first.code}: active windows overlap "
            f"({first.effective_from}..{first.effective_until or 'open'} and "
            f"{second.effective_from}..{second.effective_until or 'open'})"
        )

    for rule in rules:
        if rule.value < 0:
            errors.append(f"{rule.code}: negative value {rule.value}")
        if rule.limit_value is not None and rule.limit_value < 0:
            errors.append(f"{rule.code}: negative limit_value {rule.limit_value}")
        errors.extend(f"{rule.code}: {problem}" for problem in condition_errors(rule.condition))

    return tuple(errors)

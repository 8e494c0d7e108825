"""
RuleRegistry -- Resolves "the rule in effect on date D" from a snapshot.

Responsibility:
    Holds an immutable snapshot of ``TaxRule`` records and resolves a rule
    code to the single active rule whose window contains the evaluation
    date.  Offers typed accessors so calculators read money amounts,
    percentages and plain numbers without touching ``TaxRule`` internals.

Architecture position:
    Kernel > Domain -- pure, zero I/O.  Built once per computation or batch
    by a rule store adapter, then passed explicitly into every calculator.

Invariants enforced:
    - Exactly one match: zero matches raise ``RuleNotConfiguredError``,
      more than one raise ``RuleAmbiguousError``.  The registry never
      guesses and never substitutes a default.
    - Snapshot isolation: the rule tuple is captured at construction, so a
      batch sees a consistent rule set even if the store changes.
    - Typed reads: ``money()`` only reads AMOUNT rules, ``percentage()``
      only reads PERCENTAGE rules.

Failure modes:
    - RuleNotConfiguredError: no active rule for the code on the date.
    - RuleAmbiguousError: overlapping active windows for the code.
    - InvalidRuleValueError: rule read with the wrong value type.

Audit relevance:
    Every resolution is logged at DEBUG with the code, date and window of
    the rule used, so any computed figure can be traced back to the exact
    rule version that produced it.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date
from decimal import Decimal

from farmbook_kernel.domain.rules import RuleValueType, TaxRule
from farmbook_kernel.domain.values import Money, Percentage
from farmbook_kernel.exceptions import (
    InvalidRuleValueError,
    RuleAmbiguousError,
    RuleNotConfiguredError,
)
from farmbook_kernel.logging_config import get_logger

logger = get_logger("kernel.rule_registry")


class RuleRegistry:
    """
    Immutable, date-aware view over a set of tax rules.

    Contract:
        ``resolve(code, as_of)`` returns the one active rule for ``code``
        in effect on ``as_of``, or raises.

    Guarantees:
        - Rules cannot be added or removed after construction.
        - The same (code, as_of) always resolves to the same rule.

    Non-goals:
        - Does NOT load rules; see ``RuleSelector`` and ``load_rule_set``.
        - Does NOT validate the whole set for overlaps up front; overlap is
          detected lazily at resolution time for the date actually asked.
    """

    def __init__(self, rules: Iterable[TaxRule]):
        self._rules: tuple[TaxRule, ...] = tuple(rules)
        by_code: dict[str, list[TaxRule]] = {}
        for rule in self._rules:
            by_code.setdefault(rule.code, []).append(rule)
        self._by_code: dict[str, tuple[TaxRule, ...]] = {
            code: tuple(candidates) for code, candidates in by_code.items()
        }

    def __len__(self) -> int:
        return len(self._rules)

    def __contains__(self, code: object) -> bool:
        return code in self._by_code

    @property
    def rules(self) -> tuple[TaxRule, ...]:
        return self._rules

    def codes(self) -> tuple[str, ...]:
        """All distinct rule codes, sorted."""
        return tuple(sorted(self._by_code))

    def resolve(self, code: str, as_of: date) -> TaxRule:
        """
        Resolve the single active rule for ``code`` on ``as_of``.

        Preconditions:
            - ``as_of`` is a ``date`` (not a datetime).
        Postconditions:
            - Returns a rule with ``is_effective(as_of)`` true.
        Raises:
            RuleNotConfiguredError: if no rule matches.
            RuleAmbiguousError: if more than one rule matches.
        """
        rule = self.resolve_optional(code, as_of)
        if rule is None:
            logger.warning("rule_not_configured", extra={
                "rule_code": code,
                "as_of": as_of.isoformat(),
            })
            raise RuleNotConfiguredError(code, as_of)
        return rule

    def resolve_optional(self, code: str, as_of: date) -> TaxRule | None:
        """
        Like ``resolve`` but returns None when nothing is in effect.

        Ambiguity is still fatal.
        """
        matches = [
            r for r in self._by_code.get(code, ()) if r.is_effective(as_of)
        ]
        if len(matches) > 1:
            logger.error("rule_resolution_ambiguous", extra={
                "rule_code": code,
                "as_of": as_of.isoformat(),
                "match_count": len(matches),
                "windows": [
                    (
                        r.effective_from.isoformat(),
                        r.effective_until.isoformat() if r.effective_until else None,
                    )
                    for r in matches
                ],
            })
            raise RuleAmbiguousError(code, as_of, len(matches))
        if not matches:
            return None

        rule = matches[0]
        logger.debug("rule_resolved", extra={
            "rule_code": code,
            "as_of": as_of.isoformat(),
            "value": str(rule.value),
            "effective_from": rule.effective_from.isoformat(),
        })
        return rule

    def series(self, prefix: str, as_of: date) -> tuple[TaxRule, ...]:
        """
        Resolve every code starting with ``prefix`` that is in effect.

        Codes with nothing in effect on ``as_of`` are left out.  Results are
        ordered by the numeric suffix where there is one, then by code.
        """
        codes = [c for c in self._by_code if c.startswith(prefix)]
        codes.sort(key=lambda c: _series_key(c, prefix))
        resolved = (self.resolve_optional(c, as_of) for c in codes)
        return tuple(r for r in resolved if r is not None)

    # ------------------------------------------------------------------
    # Typed accessors
    # ------------------------------------------------------------------

    def value(self, code: str, as_of: date) -> Decimal:
        """Raw Decimal value of the rule in effect."""
        return self.resolve(code, as_of).value

    def money(self, code: str, as_of: date) -> Money:
        rule = self.resolve(code, as_of)
        _expect_type(rule, RuleValueType.AMOUNT)
        return rule.as_money()

    def percentage(self, code: str, as_of: date) -> Percentage:
        rule = self.resolve(code, as_of)
        _expect_type(rule, RuleValueType.PERCENTAGE)
        return rule.as_percentage()

    def multiplier(self, code: str, as_of: date) -> Decimal:
        rule = self.resolve(code, as_of)
        _expect_type(rule, RuleValueType.MULTIPLIER)
        return rule.value

    def count(self, code: str, as_of: date) -> int:
        rule = self.resolve(code, as_of)
        _expect_type(rule, RuleValueType.COUNT)
        if rule.value != rule.value.to_integral_value():
            raise InvalidRuleValueError(code, f"count must be whole, got {rule.value}")
        return int(rule.value)


def _expect_type(rule: TaxRule, expected: RuleValueType) -> None:
    if rule.value_type != expected:
        raise InvalidRuleValueError(
            rule.code,
            f"expected {expected.value} value, rule holds {rule.value_type.value}",
        )


def _series_key(code: str, prefix: str) -> tuple[int, str]:
    suffix = code[len(prefix):]
    return (int(suffix), code) if suffix.isdigit() else (10**9, code)

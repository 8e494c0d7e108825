"""
Module: farmbook_kernel.selectors.rule_selector
Responsibility: Read-only rule store adapter.  Loads ``tax_rules`` rows and
    turns them into immutable ``TaxRule`` records or a ``RuleRegistry``
    snapshot.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - The snapshot is resolved once, before any calculator runs, so a batch
      sees one consistent rule set even if the table changes concurrently.
    - Rows are returned in a stable order (code, effective_from).

Failure modes:
    - ValueError from ``TaxRuleModel.to_rule`` on malformed rows.
"""

from __future__ import annotations

from datetime import date

from sqlalchemy import or_, select

from farmbook_kernel.domain.rule_registry import RuleRegistry
from farmbook_kernel.domain.rules import TaxRule
from farmbook_kernel.logging_config import get_logger
from farmbook_kernel.models.tax_rule import TaxRuleModel
from farmbook_kernel.selectors.base import BaseSelector

logger = get_logger("selectors.rules")


class RuleSelector(BaseSelector[TaxRuleModel]):
    """
    Read-only access to versioned tax rules.

    Non-goals:
        - Does NOT seed or edit rules; rule authoring is an administrator
          workflow outside the engine.
    """

    def all_rules(self) -> tuple[TaxRule, ...]:
        """Every rule row, active or not."""
        stmt = select(TaxRuleModel).order_by(
            TaxRuleModel.code, TaxRuleModel.effective_from,
        )
        return tuple(row.to_rule() for row in self.session.scalars(stmt))

    def candidates(self, code: str) -> tuple[TaxRule, ...]:
        """All versions of one rule code."""
        stmt = (
            select(TaxRuleModel)
            .where(TaxRuleModel.code == code)
            .order_by(TaxRuleModel.effective_from)
        )
        return tuple(row.to_rule() for row in self.session.scalars(stmt))

    def in_effect(self, as_of: date) -> tuple[TaxRule, ...]:
        """Active rules whose window contains ``as_of``."""
        stmt = (
            select(TaxRuleModel)
            .where(
                TaxRuleModel.is_active.is_(True),
                TaxRuleModel.effective_from <= as_of,
                or_(
                    TaxRuleModel.effective_until.is_(None),
                    TaxRuleModel.effective_until >= as_of,
                ),
            )
            .order_by(TaxRuleModel.code, TaxRuleModel.effective_from)
        )
        return tuple(row.to_rule() for row in self.session.scalars(stmt))

    def load_registry(self, as_of: date | None = None) -> RuleRegistry:
        """
        Snapshot the rule store into a registry.

        With ``as_of`` only the rules in effect on that date are loaded,
        which is enough for a batch evaluated on a single date.
        """
        rules = self.in_effect(as_of) if as_of is not None else self.all_rules()
        logger.info("rule_snapshot_loaded", extra={
            "rule_count": len(rules),
            "as_of": as_of.isoformat() if as_of else None,
        })
        return RuleRegistry(rules)

"""
Module: farmbook_kernel.models.tax_rule
Responsibility: ORM persistence for versioned tax rules.  Each row is one
    version of one legally mutable number (a rate, a ceiling, a threshold)
    with its effective window.
Architecture position: Kernel > Models.  May import from db/base.py and the
    pure domain rule types.  MUST NOT import from selectors/ or outer layers.

Invariants enforced:
    - value and limit_value are Numeric(38, 9); never float.
    - condition is stored as JSON; None means the rule applies to every case.
    - Conversion to the domain ``TaxRule`` re-runs its validation, so a row
      with effective_until before effective_from cannot enter a registry.

Failure modes:
    - ValueError from ``to_rule()`` when a row is internally inconsistent.
    - ValueError from enum conversion when a row holds an unknown rule_type,
      action or value_type.

Audit relevance:
    Rule rows are never updated in place by the engine.  A change of law is a
    new row with a new effective window, so historical computations can be
    replayed against the rule versions that were in effect at the time.
"""

from datetime import date
from decimal import Decimal
from typing import Any

from sqlalchemy import JSON, Boolean, Date, Index, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from farmbook_kernel.db.base import Base
from farmbook_kernel.domain.rules import RuleAction, RuleType, RuleValueType, TaxRule


class TaxRuleModel(Base):
    """
    One versioned tax rule row.

    Contract:
        Stores the enum fields by their string values and converts to and
        from the immutable ``TaxRule`` domain record.

    Non-goals:
        - Does NOT enforce non-overlapping windows; overlaps are detected by
          ``validate_rule_set`` and by ``RuleRegistry`` at resolution time.
    """

    __tablename__ = "tax_rules"

    __table_args__ = (
        Index("idx_tax_rule_code", "code"),
        Index("idx_tax_rule_lookup", "code", "is_active", "effective_from"),
    )

    code: Mapped[str] = mapped_column(String(100), nullable=False)
    rule_type: Mapped[str] = mapped_column(String(30), nullable=False)
    category: Mapped[str] = mapped_column(String(50), nullable=False)
    action: Mapped[str] = mapped_column(String(30), nullable=False)
    value: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    value_type: Mapped[str] = mapped_column(String(30), nullable=False)
    limit_value: Mapped[Decimal | None] = mapped_column(Numeric(38, 9), nullable=True)
    effective_from: Mapped[date] = mapped_column(Date, nullable=False)
    effective_until: Mapped[date | None] = mapped_column(Date, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    legal_reference: Mapped[str | None] = mapped_column(String(200), nullable=True)
    condition: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    def __repr__(self) -> str:
        return (
            f"<TaxRuleModel {self.code} {self.value} "
            f"{self.effective_from}..{self.effective_until or ''}>"
        )

    def to_rule(self) -> TaxRule:
        """Convert this row to the immutable domain record."""
        return TaxRule(
            code=self.code,
            rule_type=RuleType(self.rule_type),
            category=self.category,
            action=RuleAction(self.action),
            value=Decimal(self.value),
            value_type=RuleValueType(self.value_type),
            effective_from=self.effective_from,
            effective_until=self.effective_until,
            is_active=bool(self.is_active),
            limit_value=Decimal(self.limit_value) if self.limit_value is not None else None,
            name=self.name or "",
            description=self.description or "",
            legal_reference=self.legal_reference,
            condition=dict(self.condition) if self.condition is not None else None,
        )

    @classmethod
    def from_rule(cls, rule: TaxRule) -> "TaxRuleModel":
        """Build an unsaved row from a domain record (used for seeding)."""
        return cls(
            code=rule.code,
            rule_type=rule.rule_type.value,
            category=rule.category,
            action=rule.action.value,
            value=rule.value,
            value_type=rule.value_type.value,
            limit_value=rule.limit_value,
            effective_from=rule.effective_from,
            effective_until=rule.effective_until,
            is_active=rule.is_active,
            name=rule.name,
            description=rule.description,
            legal_reference=rule.legal_reference,
            condition=dict(rule.condition) if rule.condition is not None else None,
        )

"""ORM models for the rule store."""

from farmbook_kernel.models.tax_rule import TaxRuleModel

__all__ = ["TaxRuleModel"]
